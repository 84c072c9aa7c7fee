import os
import re
import typing
import asyncio
import shutil
import logging

from sencrypt.error import TransferNotFoundError, ChunkNotFoundError
from sencrypt.stream.descriptor import TransferDescriptor
from sencrypt.storage.base import AbstractChunkStore, generate_transfer_id, check_index

log = logging.getLogger(__name__)

DESCRIPTOR_FILE_NAME = 'descriptor.json'
RE_TRANSFER_ID = re.compile(r'^[A-Za-z0-9_-]+$')
RE_CHUNK_FILE = re.compile(r'^(0|[1-9][0-9]*)$')


def _write_file(path: str, data: bytes):
    # write next to the target and swap it in, a retried chunk replaces the old file in one step
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'wb') as f:
        f.write(data)
    os.replace(tmp_path, path)


def _read_file(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


def _count_chunk_files(path: str, expected_chunks: int) -> int:
    with os.scandir(path) as entries:
        return sum(
            1 for item in entries
            if item.is_file() and RE_CHUNK_FILE.match(item.name) and int(item.name) < expected_chunks
        )


class DiskChunkStore(AbstractChunkStore):
    """
    Stores every transfer in its own directory: one file per chunk, named by
    its index, next to the descriptor
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, storage_dir: str):
        self.loop = loop
        self.storage_dir = storage_dir
        self.descriptors: typing.Dict[str, TransferDescriptor] = {}

    def transfer_dir(self, transfer_id: str) -> str:
        if not isinstance(transfer_id, str) or not RE_TRANSFER_ID.match(transfer_id):
            raise TransferNotFoundError(transfer_id)
        return os.path.join(self.storage_dir, transfer_id)

    def chunk_path(self, transfer_id: str, index: int) -> str:
        return os.path.join(self.transfer_dir(transfer_id), str(index))

    async def create_transfer(self, descriptor: TransferDescriptor) -> str:
        transfer_id = generate_transfer_id()
        path = self.transfer_dir(transfer_id)
        descriptor.transfer_id = transfer_id

        def _create():
            os.makedirs(path)
            _write_file(os.path.join(path, DESCRIPTOR_FILE_NAME), descriptor.as_json())

        await self.loop.run_in_executor(None, _create)
        self.descriptors[transfer_id] = descriptor
        log.info("created transfer %s in %s", transfer_id, self.storage_dir)
        return transfer_id

    async def get_descriptor(self, transfer_id: str) -> TransferDescriptor:
        if transfer_id in self.descriptors:
            return self.descriptors[transfer_id]
        path = os.path.join(self.transfer_dir(transfer_id), DESCRIPTOR_FILE_NAME)
        try:
            json_bytes = await self.loop.run_in_executor(None, _read_file, path)
        except FileNotFoundError:
            raise TransferNotFoundError(transfer_id)
        descriptor = TransferDescriptor.from_json(json_bytes)
        descriptor.transfer_id = transfer_id
        self.descriptors[transfer_id] = descriptor
        return descriptor

    async def put(self, transfer_id: str, index: int, data: bytes):
        descriptor = await self.get_descriptor(transfer_id)
        check_index(index, descriptor.expected_chunks)
        await self.loop.run_in_executor(None, _write_file, self.chunk_path(transfer_id, index), data)

    async def get(self, transfer_id: str, index: int) -> bytes:
        await self.get_descriptor(transfer_id)
        try:
            return await self.loop.run_in_executor(None, _read_file, self.chunk_path(transfer_id, index))
        except FileNotFoundError:
            raise ChunkNotFoundError(transfer_id, index)

    async def count(self, transfer_id: str) -> int:
        descriptor = await self.get_descriptor(transfer_id)
        return await self.loop.run_in_executor(
            None, _count_chunk_files, self.transfer_dir(transfer_id), descriptor.expected_chunks
        )

    async def delete_transfer(self, transfer_id: str):
        path = self.transfer_dir(transfer_id)
        if not os.path.isdir(path):
            raise TransferNotFoundError(transfer_id)
        self.descriptors.pop(transfer_id, None)
        await self.loop.run_in_executor(None, shutil.rmtree, path)
        log.info("deleted transfer %s", transfer_id)
