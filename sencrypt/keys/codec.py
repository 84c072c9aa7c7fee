import re
import struct
import base64
import binascii
import logging
import typing

from sencrypt.error import (
    UnsupportedFormatError, UnsupportedKeyTypeError, EncryptedKeyUnsupportedError, MalformedKeyError,
    KeyIntegrityError, KeyTooLargeError
)
from sencrypt.crypto.util import int_to_mpint
from sencrypt.crypto.provider import CryptoProvider, default_provider
from sencrypt.keys import SSH_RSA, OPENSSH_MAGIC
from sencrypt.keys.material import KeyMaterial, RSAPublicKey, RSAPrivateKey
from sencrypt.keys.reader import WireReader

log = logging.getLogger(__name__)

FORMAT_SSH = 'ssh'
FORMAT_SPKI = 'spki'
FORMAT_PKCS1 = 'pkcs1'
FORMAT_PKCS8 = 'pkcs8'
FORMAT_OPENSSH = 'openssh'

RE_PEM_DELIMITER = re.compile(r'-----[^-]*-----')
RE_WHITESPACE = re.compile(r'\s')

# SEQUENCE { INTEGER 0, SEQUENCE { OID rsaEncryption, NULL }, OCTET STRING { <pkcs1> } }
# both lengths use the two byte long form and are patched in once the body length is known
PKCS8_RSA_HEADER = bytes([
    0x30, 0x82, 0x00, 0x00,
    0x02, 0x01, 0x00,
    0x30, 0x0d,
    0x06, 0x09, 0x2a, 0x86, 0x48, 0x86, 0xf7, 0x0d, 0x01, 0x01, 0x01,
    0x05, 0x00,
    0x04, 0x82, 0x00, 0x00,
])
MAX_DER_LENGTH = 0xffff


def detect_format(text: str) -> str:
    if text.lstrip().startswith('ssh-'):
        return FORMAT_SSH
    if 'BEGIN OPENSSH PRIVATE KEY' in text:
        return FORMAT_OPENSSH
    if 'BEGIN RSA PRIVATE KEY' in text:
        if 'ENCRYPTED' in text:
            raise EncryptedKeyUnsupportedError('pem')
        return FORMAT_PKCS1
    if 'BEGIN PRIVATE KEY' in text:
        return FORMAT_PKCS8
    if 'BEGIN PUBLIC KEY' in text:
        return FORMAT_SPKI
    if 'BEGIN ENCRYPTED PRIVATE KEY' in text:
        raise EncryptedKeyUnsupportedError('pkcs8')
    raise UnsupportedFormatError()


def b64decode(data: str, what: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedKeyError(f"{what} is not valid base64")


def pem_body(text: str) -> bytes:
    body = RE_WHITESPACE.sub('', RE_PEM_DELIMITER.sub('', text))
    if not body:
        raise MalformedKeyError("PEM block is empty")
    return b64decode(body, "PEM body")


def wrap_pkcs1_in_pkcs8(pkcs1: bytes) -> bytes:
    total_length = len(PKCS8_RSA_HEADER) + len(pkcs1) - 4
    if total_length > MAX_DER_LENGTH:
        raise KeyTooLargeError(len(pkcs1))
    header = bytearray(PKCS8_RSA_HEADER)
    struct.pack_into('>H', header, 2, total_length)
    struct.pack_into('>H', header, 24, len(pkcs1))
    return bytes(header) + pkcs1


def parse_ssh_public_key(text: str) -> RSAPublicKey:
    parts = text.split()
    if len(parts) < 2:
        raise MalformedKeyError("SSH public key line needs a key type and a base64 blob")
    reader = WireReader(b64decode(parts[1], "SSH public key blob"), "SSH public key")
    key_type = reader.read_string()
    if key_type != SSH_RSA:
        raise UnsupportedKeyTypeError(key_type)
    e = reader.read_mpint()
    n = reader.read_mpint()
    if not n or not e:
        raise MalformedKeyError("SSH public key has an empty modulus or exponent")
    return RSAPublicKey(n, e)


def parse_openssh_private_key(text: str) -> RSAPrivateKey:
    data = pem_body(text)
    if data[:len(OPENSSH_MAGIC)] != OPENSSH_MAGIC:
        raise MalformedKeyError("missing openssh-key-v1 magic")
    reader = WireReader(data, "OpenSSH key")
    reader.skip(len(OPENSSH_MAGIC))
    cipher_name = reader.read_string()
    reader.read_string()  # kdf name
    if cipher_name != 'none':
        raise EncryptedKeyUnsupportedError(cipher_name)
    reader.read_length_prefixed()  # kdf options
    key_count = reader.read_u32()
    if key_count != 1:
        raise MalformedKeyError(f"expected a single key, found {key_count}")
    reader.read_length_prefixed()  # public key blob

    private = WireReader(reader.read_length_prefixed(), "OpenSSH private section")
    check_1, check_2 = private.read_u32(), private.read_u32()
    if check_1 != check_2:
        raise KeyIntegrityError()
    key_type = private.read_string()
    if key_type != SSH_RSA:
        raise UnsupportedKeyTypeError(key_type)
    n = private.read_mpint()
    e = private.read_mpint()
    d = private.read_mpint()
    qinv = private.read_mpint()
    p = private.read_mpint()
    q = private.read_mpint()
    if p < 2 or q < 2 or p * q != n:
        raise MalformedKeyError("RSA primes do not match the modulus")
    return RSAPrivateKey(n, e, d, p, q, d % (p - 1), d % (q - 1), qinv)


def parse_spki(text: str, provider: CryptoProvider) -> RSAPublicKey:
    der = pem_body(text)
    try:
        return provider.load_spki(der)
    except LookupError as err:
        raise UnsupportedKeyTypeError(str(err))
    except ValueError:
        raise MalformedKeyError("could not parse SubjectPublicKeyInfo")


def parse_pkcs8(der: bytes, provider: CryptoProvider) -> RSAPrivateKey:
    try:
        return provider.load_pkcs8(der)
    except LookupError as err:
        raise UnsupportedKeyTypeError(str(err))
    except ValueError:
        raise MalformedKeyError("could not parse PrivateKeyInfo")


def decode(data: typing.Union[bytes, str], format_hint: typing.Optional[str] = None,
           provider: typing.Optional[CryptoProvider] = None) -> KeyMaterial:
    """
    Parse an RSA key from any of the supported text encodings.

    Accepts an SSH public key line, SPKI / PKCS1 / PKCS8 PEM blocks and
    unencrypted OpenSSH private keys. The format is sniffed from the text
    unless `format_hint` names it.
    """
    provider = provider or default_provider
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode('ascii')
        except UnicodeDecodeError:
            raise UnsupportedFormatError("Key data is not text, binary DER input is not supported.")
    fmt = format_hint or detect_format(data)
    if fmt == FORMAT_SSH:
        return parse_ssh_public_key(data)
    if fmt == FORMAT_SPKI:
        return parse_spki(data, provider)
    if fmt == FORMAT_PKCS1:
        return parse_pkcs8(wrap_pkcs1_in_pkcs8(pem_body(data)), provider)
    if fmt == FORMAT_PKCS8:
        return parse_pkcs8(pem_body(data), provider)
    if fmt == FORMAT_OPENSSH:
        return parse_openssh_private_key(data)
    raise UnsupportedFormatError(f"Unknown key format '{fmt}'.")


def decode_file(path: str, format_hint: typing.Optional[str] = None,
                provider: typing.Optional[CryptoProvider] = None) -> KeyMaterial:
    with open(path, 'rb') as key_file:
        key = decode(key_file.read(), format_hint, provider)
    log.debug("loaded %s from %s", fingerprint(key, provider), path)
    return key


def _ssh_string(value: bytes) -> bytes:
    return struct.pack('>I', len(value)) + value


def encode_ssh_public(key: KeyMaterial) -> bytes:
    if isinstance(key, RSAPrivateKey):
        key = key.public_key
    elif not isinstance(key, RSAPublicKey):
        raise TypeError(f"cannot encode {type(key).__name__}")
    return _ssh_string(SSH_RSA.encode()) + _ssh_string(int_to_mpint(key.e)) + _ssh_string(int_to_mpint(key.n))


def format_ssh_public(key: KeyMaterial, comment: str = '') -> str:
    line = f"{SSH_RSA} {base64.b64encode(encode_ssh_public(key)).decode()}"
    return f"{line} {comment}" if comment else line


def fingerprint(key: KeyMaterial, provider: typing.Optional[CryptoProvider] = None) -> str:
    """
    OpenSSH style SHA256 fingerprint, the same for a private key and its public half
    """
    digest = (provider or default_provider).sha256(encode_ssh_public(key))
    return "SHA256:" + base64.b64encode(digest).decode().rstrip('=')
