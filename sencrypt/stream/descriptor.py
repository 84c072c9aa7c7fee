import os
import re
import json
import time
import base64
import binascii
import logging
import typing

from sencrypt.error import InvalidTransferDescriptorError
from sencrypt.stream import DEFAULT_CHUNK_SIZE

log = logging.getLogger(__name__)

RE_ILLEGAL_FILENAME_CHARS = re.compile(
    r'('
    r'[<>:"/\\|?*]+|'                  # Illegal characters
    r'[\x00-\x1F]+|'                   # All characters in range 0-31
    r'[ \t]*(\.)+[ \t]*$|'             # Dots at the end
    r'(^[ \t]+|[ \t]+$)|'              # Leading and trailing whitespace
    r'^CON$|^PRN$|^AUX$|'              # Illegal names
    r'^NUL$|^COM[1-9]$|^LPT[1-9]$'     # ...
    r')'
)


def sanitize_file_name(dirty_name: str, default_file_name: str = 'sencrypt_download'):
    file_name, ext = os.path.splitext(dirty_name)
    file_name = re.sub(RE_ILLEGAL_FILENAME_CHARS, '', file_name)
    ext = re.sub(RE_ILLEGAL_FILENAME_CHARS, '', ext)

    if not file_name:
        log.warning('Unable to sanitize file name for %s, returning default value %s', dirty_name, default_file_name)
        file_name = default_file_name
    if len(ext) > 1:
        file_name += ext

    return file_name


def count_chunks(file_size: int, chunk_size: int) -> int:
    return -(-file_size // chunk_size)


def format_transfer_info(transfer_id: typing.Optional[str], receiver_id: str, file_name: str, file_size: int,
                         chunk_size: int, expected_chunks: int, wrapped_key: str, added_on: float) -> typing.Dict:
    return {
        "transferId": transfer_id,
        "receiverId": receiver_id,
        "fileName": file_name,
        "fileSizeBytes": file_size,
        "chunkSizeBytes": chunk_size,
        "expectedChunks": expected_chunks,
        "wrappedKey": wrapped_key,
        "addedOn": added_on,
    }


class TransferDescriptor:
    __slots__ = [
        'transfer_id',
        'receiver_id',
        'file_name',
        'file_size',
        'chunk_size',
        'expected_chunks',
        'wrapped_key',
        'added_on',
    ]

    def __init__(self, receiver_id: str, file_name: str, file_size: int, wrapped_key: bytes,
                 chunk_size: int = DEFAULT_CHUNK_SIZE, transfer_id: typing.Optional[str] = None,
                 added_on: typing.Optional[float] = None):
        if not isinstance(file_size, int) or file_size < 0:
            raise InvalidTransferDescriptorError(f"invalid file size: {file_size!r}")
        if not isinstance(chunk_size, int) or chunk_size <= 0:
            raise InvalidTransferDescriptorError(f"invalid chunk size: {chunk_size!r}")
        self.transfer_id = transfer_id
        self.receiver_id = receiver_id
        self.file_name = file_name
        self.file_size = file_size
        self.chunk_size = chunk_size
        self.expected_chunks = count_chunks(file_size, chunk_size)
        self.wrapped_key = wrapped_key
        self.added_on = added_on or time.time()

    def __repr__(self):
        return f"TransferDescriptor({self.transfer_id}, {self.file_size} bytes, {self.expected_chunks} chunks)"

    @property
    def suggested_file_name(self) -> str:
        return sanitize_file_name(self.file_name)

    def chunk_length(self, index: int) -> int:
        if not 0 <= index < self.expected_chunks:
            raise IndexError(f"chunk {index} is not part of a transfer with {self.expected_chunks} chunks")
        if index < self.expected_chunks - 1:
            return self.chunk_size
        return self.file_size - (self.expected_chunks - 1) * self.chunk_size

    def as_dict(self) -> typing.Dict:
        return format_transfer_info(
            self.transfer_id, self.receiver_id, self.file_name, self.file_size, self.chunk_size,
            self.expected_chunks, base64.b64encode(self.wrapped_key).decode(), self.added_on
        )

    def as_json(self) -> bytes:
        return json.dumps(self.as_dict(), sort_keys=True).encode()

    @classmethod
    def from_dict(cls, decoded: typing.Dict) -> 'TransferDescriptor':
        if not isinstance(decoded, dict):
            raise InvalidTransferDescriptorError("Transfer descriptor must be a JSON object")
        missing = [
            field for field in ('receiverId', 'fileName', 'fileSizeBytes', 'chunkSizeBytes', 'expectedChunks',
                                'wrappedKey')
            if field not in decoded
        ]
        if missing:
            raise InvalidTransferDescriptorError(f"Missing fields: {', '.join(missing)}")
        try:
            wrapped_key = base64.b64decode(decoded['wrappedKey'], validate=True)
        except (binascii.Error, TypeError, ValueError):
            raise InvalidTransferDescriptorError("Wrapped key is not valid base64")
        if not wrapped_key:
            raise InvalidTransferDescriptorError("Wrapped key is empty")
        descriptor = cls(
            decoded['receiverId'], decoded['fileName'], decoded['fileSizeBytes'], wrapped_key,
            decoded['chunkSizeBytes'], decoded.get('transferId'), decoded.get('addedOn')
        )
        if descriptor.expected_chunks != decoded['expectedChunks']:
            raise InvalidTransferDescriptorError(
                f"Expected chunk count {decoded['expectedChunks']} does not match "
                f"{descriptor.file_size} bytes in chunks of {descriptor.chunk_size}"
            )
        return descriptor

    @classmethod
    def from_json(cls, json_bytes: typing.Union[bytes, str]) -> 'TransferDescriptor':
        try:
            decoded = json.loads(json_bytes)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidTransferDescriptorError("Does not decode as valid JSON")
        return cls.from_dict(decoded)
