import struct

from sencrypt.error import MalformedKeyError
from sencrypt.crypto.util import bytes_to_int


class WireReader:
    """
    Bounds checked cursor over SSH wire encoded data (RFC 4251 section 5)
    """
    __slots__ = [
        'buffer',
        'position',
        'name',
    ]

    def __init__(self, buffer: bytes, name: str = 'key'):
        self.buffer = buffer
        self.position = 0
        self.name = name

    @property
    def remaining(self) -> int:
        return len(self.buffer) - self.position

    def at_end(self) -> bool:
        return self.position == len(self.buffer)

    def read(self, length: int) -> bytes:
        if length < 0 or length > self.remaining:
            raise MalformedKeyError(
                f"{self.name} truncated, needed {length} bytes at offset {self.position}, {self.remaining} left"
            )
        data = self.buffer[self.position:self.position + length]
        self.position += length
        return data

    def skip(self, length: int):
        self.read(length)

    def read_u32(self) -> int:
        return struct.unpack('>I', self.read(4))[0]

    def read_length_prefixed(self) -> bytes:
        return self.read(self.read_u32())

    def read_string(self) -> str:
        value = self.read_length_prefixed()
        try:
            return value.decode()
        except UnicodeDecodeError:
            raise MalformedKeyError(f"{self.name} contains a string that is not valid utf-8")

    def read_mpint(self) -> int:
        value = self.read_length_prefixed()
        if value[:1] == b'\x00':
            value = value[1:]
        return bytes_to_int(value)
