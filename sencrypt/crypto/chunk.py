import struct
import typing

from sencrypt.error import AuthenticationFailedError
from sencrypt.crypto import SESSION_KEY_SIZE
from sencrypt.crypto.provider import CryptoProvider, default_provider

NONCE_SIZE = 12
TAG_SIZE = 16
MAX_CHUNK_INDEX = 2 ** 32 - 1


def chunk_nonce(index: int) -> bytes:
    """
    Big-endian u32 chunk index followed by eight zero bytes.

    The nonce depends on nothing but the index, so a session key must never
    be used for more than one transfer.
    """
    if not 0 <= index <= MAX_CHUNK_INDEX:
        raise ValueError(f"chunk index {index} does not fit in 32 bits")
    return struct.pack('>I', index) + bytes(NONCE_SIZE - 4)


def _check_key(key: bytes):
    if len(key) != SESSION_KEY_SIZE:
        raise ValueError(f"chunk key must be {SESSION_KEY_SIZE} bytes, got {len(key)}")


class ChunkCipher:
    """
    AES-256-GCM over a single chunk, the tag is appended to the ciphertext
    """

    def __init__(self, provider: typing.Optional[CryptoProvider] = None):
        self.provider = provider or default_provider

    def encrypt(self, key: bytes, index: int, plaintext: bytes) -> bytes:
        _check_key(key)
        return self.provider.aes_gcm_encrypt(key, chunk_nonce(index), plaintext)

    def decrypt(self, key: bytes, index: int, ciphertext: bytes) -> bytes:
        _check_key(key)
        nonce = chunk_nonce(index)
        if len(ciphertext) < TAG_SIZE:
            raise AuthenticationFailedError(index)
        try:
            return self.provider.aes_gcm_decrypt(key, nonce, ciphertext)
        except ValueError:
            raise AuthenticationFailedError(index)
