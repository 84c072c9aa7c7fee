import os
import hashlib

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sencrypt.keys.material import RSAPublicKey, RSAPrivateKey


class CryptoProvider:
    """
    The primitives the key codec and the ciphers are built on.

    Implementations raise ValueError for any rejected ciphertext and for DER
    structures they cannot parse, and LookupError for well formed keys that
    are not RSA keys.
    """

    def random_bytes(self, length: int) -> bytes:
        raise NotImplementedError()

    def sha256(self, data: bytes) -> bytes:
        raise NotImplementedError()

    def load_spki(self, der: bytes) -> RSAPublicKey:
        raise NotImplementedError()

    def load_pkcs8(self, der: bytes) -> RSAPrivateKey:
        raise NotImplementedError()

    def rsa_oaep_encrypt(self, key: RSAPublicKey, plaintext: bytes) -> bytes:
        raise NotImplementedError()

    def rsa_oaep_decrypt(self, key: RSAPrivateKey, ciphertext: bytes) -> bytes:
        raise NotImplementedError()

    def aes_gcm_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        raise NotImplementedError()

    def aes_gcm_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        raise NotImplementedError()

    def generate_rsa_key(self, key_size: int) -> RSAPrivateKey:
        raise NotImplementedError()

    def export_openssh_private(self, key: RSAPrivateKey) -> bytes:
        raise NotImplementedError()


OAEP_SHA256 = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def _public_numbers(key: RSAPublicKey) -> rsa.RSAPublicNumbers:
    return rsa.RSAPublicNumbers(key.e, key.n)


def _private_numbers(key: RSAPrivateKey) -> rsa.RSAPrivateNumbers:
    return rsa.RSAPrivateNumbers(
        p=key.p, q=key.q, d=key.d, dmp1=key.dp, dmq1=key.dq, iqmp=key.qinv,
        public_numbers=_public_numbers(key.public_key)
    )


def _from_private_numbers(numbers: rsa.RSAPrivateNumbers) -> RSAPrivateKey:
    public = numbers.public_numbers
    return RSAPrivateKey(
        public.n, public.e, numbers.d, numbers.p, numbers.q, numbers.dmp1, numbers.dmq1, numbers.iqmp
    )


class CryptographyProvider(CryptoProvider):
    """
    CryptoProvider backed by the `cryptography` package
    """

    def random_bytes(self, length: int) -> bytes:
        return os.urandom(length)

    def sha256(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()

    def load_spki(self, der: bytes) -> RSAPublicKey:
        try:
            key = serialization.load_der_public_key(der)
        except (ValueError, UnsupportedAlgorithm) as err:
            raise ValueError("not a SubjectPublicKeyInfo structure") from err
        if not isinstance(key, rsa.RSAPublicKey):
            raise LookupError(type(key).__name__)
        numbers = key.public_numbers()
        return RSAPublicKey(numbers.n, numbers.e)

    def load_pkcs8(self, der: bytes) -> RSAPrivateKey:
        try:
            key = serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise ValueError("not a PrivateKeyInfo structure") from err
        if not isinstance(key, rsa.RSAPrivateKey):
            raise LookupError(type(key).__name__)
        return _from_private_numbers(key.private_numbers())

    def rsa_oaep_encrypt(self, key: RSAPublicKey, plaintext: bytes) -> bytes:
        return _public_numbers(key).public_key().encrypt(plaintext, OAEP_SHA256)

    def rsa_oaep_decrypt(self, key: RSAPrivateKey, ciphertext: bytes) -> bytes:
        return _private_numbers(key).private_key().decrypt(ciphertext, OAEP_SHA256)

    def aes_gcm_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        return AESGCM(key).encrypt(nonce, plaintext, None)

    def aes_gcm_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise ValueError("authentication tag mismatch")

    def generate_rsa_key(self, key_size: int) -> RSAPrivateKey:
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        return _from_private_numbers(key.private_numbers())

    def export_openssh_private(self, key: RSAPrivateKey) -> bytes:
        return _private_numbers(key).private_key().private_bytes(
            serialization.Encoding.PEM, serialization.PrivateFormat.OpenSSH, serialization.NoEncryption()
        )


default_provider = CryptographyProvider()
