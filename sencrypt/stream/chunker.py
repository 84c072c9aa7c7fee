import typing

from sencrypt.stream import DEFAULT_CHUNK_SIZE, DEFAULT_READ_SIZE


class FileReads:
    """
    Re-iterable source of file reads, every iteration reopens the file at offset 0
    """

    def __init__(self, file_path: str, read_size: int = DEFAULT_READ_SIZE):
        if read_size <= 0:
            raise ValueError("read size must be positive")
        self.file_path = file_path
        self.read_size = read_size

    def __iter__(self) -> typing.Iterator[bytes]:
        with open(self.file_path, 'rb') as f:
            while True:
                data = f.read(self.read_size)
                if not data:
                    break
                yield data


class StreamChunker:
    """
    Regroups reads of any size into chunks of exactly `chunk_size` bytes, the
    last chunk may be shorter. Chunk boundaries depend only on the byte offset
    in the stream, never on how the source happened to split its reads.
    """

    def __init__(self, reads: typing.Iterable[bytes], chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk size must be positive")
        self.reads = reads
        self.chunk_size = chunk_size

    @classmethod
    def from_file(cls, file_path: str, chunk_size: int = DEFAULT_CHUNK_SIZE,
                  read_size: int = DEFAULT_READ_SIZE) -> 'StreamChunker':
        return cls(FileReads(file_path, read_size), chunk_size)

    def __iter__(self) -> typing.Iterator[bytes]:
        source = iter(self.reads)
        excess = b''
        exhausted = False
        while True:
            chunk = bytearray(excess[:self.chunk_size])
            excess = excess[self.chunk_size:]
            while len(chunk) < self.chunk_size and not exhausted:
                data = next(source, None)
                if data is None:
                    exhausted = True
                    break
                needed = self.chunk_size - len(chunk)
                chunk += data[:needed]
                excess = data[needed:]
            if chunk:
                yield bytes(chunk)
            if exhausted and not excess:
                return


def split_chunks(data: bytes, chunk_size: int) -> typing.List[bytes]:
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]
