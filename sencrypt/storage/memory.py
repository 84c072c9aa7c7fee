import typing

from sencrypt.error import TransferNotFoundError, ChunkNotFoundError
from sencrypt.storage.base import AbstractChunkStore, generate_transfer_id, check_index

if typing.TYPE_CHECKING:
    from sencrypt.stream.descriptor import TransferDescriptor


class MemoryChunkStore(AbstractChunkStore):
    """
    An in-memory only chunk store
    """

    def __init__(self):
        self.descriptors: typing.Dict[str, 'TransferDescriptor'] = {}
        self.chunks: typing.Dict[str, typing.Dict[int, bytes]] = {}

    def _get_descriptor(self, transfer_id: str) -> 'TransferDescriptor':
        if transfer_id not in self.descriptors:
            raise TransferNotFoundError(transfer_id)
        return self.descriptors[transfer_id]

    async def create_transfer(self, descriptor: 'TransferDescriptor') -> str:
        transfer_id = generate_transfer_id()
        descriptor.transfer_id = transfer_id
        self.descriptors[transfer_id] = descriptor
        self.chunks[transfer_id] = {}
        return transfer_id

    async def get_descriptor(self, transfer_id: str) -> 'TransferDescriptor':
        return self._get_descriptor(transfer_id)

    async def put(self, transfer_id: str, index: int, data: bytes):
        check_index(index, self._get_descriptor(transfer_id).expected_chunks)
        self.chunks[transfer_id][index] = bytes(data)

    async def get(self, transfer_id: str, index: int) -> bytes:
        self._get_descriptor(transfer_id)
        if index not in self.chunks[transfer_id]:
            raise ChunkNotFoundError(transfer_id, index)
        return self.chunks[transfer_id][index]

    async def count(self, transfer_id: str) -> int:
        self._get_descriptor(transfer_id)
        return len(self.chunks[transfer_id])

    async def delete_transfer(self, transfer_id: str):
        self._get_descriptor(transfer_id)
        del self.descriptors[transfer_id]
        del self.chunks[transfer_id]
