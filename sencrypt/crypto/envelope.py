import typing
import logging

from sencrypt.error import KeyTypeMismatchError, DecryptionFailedError
from sencrypt.crypto import SESSION_KEY_SIZE
from sencrypt.crypto.provider import CryptoProvider, default_provider
from sencrypt.keys.material import KeyMaterial, RSAPublicKey, RSAPrivateKey, describe

log = logging.getLogger(__name__)


class EnvelopeCipher:
    """
    Wraps a session key for one recipient with RSA-OAEP (SHA-256 hash and MGF1)
    """

    def __init__(self, provider: typing.Optional[CryptoProvider] = None):
        self.provider = provider or default_provider

    def generate_session_key(self) -> bytes:
        return self.provider.random_bytes(SESSION_KEY_SIZE)

    def wrap(self, session_key: bytes, public_key: KeyMaterial) -> bytes:
        if not isinstance(public_key, RSAPublicKey):
            raise KeyTypeMismatchError("public", describe(public_key))
        if len(session_key) != SESSION_KEY_SIZE:
            raise ValueError(f"session key must be {SESSION_KEY_SIZE} bytes")
        return self.provider.rsa_oaep_encrypt(public_key, session_key)

    def unwrap(self, wrapped_key: bytes, private_key: KeyMaterial) -> bytes:
        if not isinstance(private_key, RSAPrivateKey):
            raise KeyTypeMismatchError("private", describe(private_key))
        try:
            session_key = self.provider.rsa_oaep_decrypt(private_key, wrapped_key)
        except ValueError:
            raise DecryptionFailedError()
        if len(session_key) != SESSION_KEY_SIZE:
            raise DecryptionFailedError()
        return session_key
