import typing
import binascii
import os

from sencrypt.error import ChunkIndexOutOfRangeError

if typing.TYPE_CHECKING:
    from sencrypt.stream.descriptor import TransferDescriptor


def generate_transfer_id() -> str:
    return binascii.hexlify(os.urandom(16)).decode()


def check_index(index: int, expected_chunks: int):
    if not isinstance(index, int) or not 0 <= index < expected_chunks:
        raise ChunkIndexOutOfRangeError(index, expected_chunks)


class AbstractChunkStore:
    """
    Dumb storage for encrypted chunks and transfer descriptors

    Chunks are addressed by (transfer id, index). Writing an index that
    already exists replaces it, so a retried upload never adds a chunk.
    """

    async def create_transfer(self, descriptor: 'TransferDescriptor') -> str:
        """
        Store the descriptor of a new transfer and return its id
        """
        raise NotImplementedError()

    async def get_descriptor(self, transfer_id: str) -> 'TransferDescriptor':
        raise NotImplementedError()

    async def put(self, transfer_id: str, index: int, data: bytes):
        raise NotImplementedError()

    async def get(self, transfer_id: str, index: int) -> bytes:
        raise NotImplementedError()

    async def count(self, transfer_id: str) -> int:
        """
        Number of chunk objects actually present for the transfer
        """
        raise NotImplementedError()

    async def delete_transfer(self, transfer_id: str):
        raise NotImplementedError()

    async def close(self):
        pass
