import json
import typing
import logging

import aiohttp

from sencrypt.error import ChunkStorageError, TransferNotFoundError, ChunkNotFoundError
from sencrypt.stream import DEFAULT_CHUNK_SIZE
from sencrypt.stream.descriptor import TransferDescriptor
from sencrypt.storage.base import AbstractChunkStore, check_index

log = logging.getLogger(__name__)


class HTTPChunkStore(AbstractChunkStore):
    """
    Client for a transmission server. The server authenticates requests and
    stores the opaque chunks, it never sees a key.

        POST   /api/transmissions/init               descriptor json -> {"transmissionId": ...}
        POST   /api/transmissions/{id}/chunk         X-Chunk-Id header, octet-stream body
        GET    /api/transmissions/{id}/chunk?chunkId=i
        GET    /api/transmissions/{id}/chunks        {"observedChunks": ...}
        GET    /api/transmissions/received           descriptors addressed to the caller
        DELETE /api/transmissions/{id}
    """

    def __init__(self, base_url: str, headers: typing.Optional[typing.Dict[str, str]] = None,
                 session: typing.Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self.headers = headers or {}
        self._session = session
        self.descriptors: typing.Dict[str, TransferDescriptor] = {}

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers)
        return self._session

    def url(self, path: str) -> str:
        return f"{self.base_url}/api/transmissions/{path}"

    async def _request(self, method: str, path: str, **kwargs) -> typing.Tuple[int, bytes]:
        try:
            async with self.session.request(method, self.url(path), **kwargs) as response:
                return response.status, await response.read()
        except aiohttp.ClientError as err:
            raise ChunkStorageError(f"{method} {path} failed: {err}")

    @staticmethod
    def _check_status(status: int, method: str, path: str, body: bytes):
        if not 200 <= status < 300:
            raise ChunkStorageError(f"{method} {path} returned HTTP {status}: {body[:200]!r}")

    async def _request_json(self, method: str, path: str, **kwargs):
        status, body = await self._request(method, path, **kwargs)
        self._check_status(status, method, path, body)
        try:
            return json.loads(body.decode())
        except ValueError:
            raise ChunkStorageError(f"{method} {path} did not return JSON")

    async def create_transfer(self, descriptor: TransferDescriptor) -> str:
        info = descriptor.as_dict()
        result = await self._request_json('POST', 'init', json={
            'receiverId': descriptor.receiver_id,
            'fileName': descriptor.file_name,
            'fileSize': descriptor.file_size,
            'encryptedKey': info['wrappedKey'],
            'expectedChunks': descriptor.expected_chunks,
            'chunkSize': descriptor.chunk_size,
        })
        if not isinstance(result, dict) or not result.get('transmissionId'):
            raise ChunkStorageError("server did not return a transmission id")
        descriptor.transfer_id = str(result['transmissionId'])
        self.descriptors[descriptor.transfer_id] = descriptor
        log.info("created transfer %s on %s", descriptor.transfer_id, self.base_url)
        return descriptor.transfer_id

    async def get_descriptor(self, transfer_id: str) -> TransferDescriptor:
        if transfer_id in self.descriptors:
            return self.descriptors[transfer_id]
        received = await self._request_json('GET', 'received')
        for item in received if isinstance(received, list) else []:
            if isinstance(item, dict) and item.get('id') == transfer_id:
                descriptor = TransferDescriptor.from_dict({
                    'transferId': transfer_id,
                    'receiverId': item.get('receiverId', ''),
                    'fileName': item.get('fileName'),
                    'fileSizeBytes': item.get('fileSize'),
                    'chunkSizeBytes': item.get('chunkSize', DEFAULT_CHUNK_SIZE),
                    'expectedChunks': item.get('totalChunks'),
                    'wrappedKey': item.get('encryptedKey'),
                })
                self.descriptors[transfer_id] = descriptor
                return descriptor
        raise TransferNotFoundError(transfer_id)

    async def put(self, transfer_id: str, index: int, data: bytes):
        if transfer_id in self.descriptors:
            check_index(index, self.descriptors[transfer_id].expected_chunks)
        path = f'{transfer_id}/chunk'
        status, body = await self._request(
            'POST', path, data=data,
            headers={'Content-Type': 'application/octet-stream', 'X-Chunk-Id': str(index)}
        )
        if status == 404:
            raise TransferNotFoundError(transfer_id)
        self._check_status(status, 'POST', path, body)

    async def get(self, transfer_id: str, index: int) -> bytes:
        path = f'{transfer_id}/chunk'
        status, body = await self._request('GET', path, params={'chunkId': str(index)})
        if status == 404:
            raise ChunkNotFoundError(transfer_id, index)
        self._check_status(status, 'GET', path, body)
        return body

    async def count(self, transfer_id: str) -> int:
        path = f'{transfer_id}/chunks'
        status, body = await self._request('GET', path)
        if status == 404:
            raise TransferNotFoundError(transfer_id)
        self._check_status(status, 'GET', path, body)
        try:
            return int(json.loads(body.decode())['observedChunks'])
        except (ValueError, KeyError, TypeError):
            raise ChunkStorageError(f"GET {path} returned an invalid chunk count")

    async def delete_transfer(self, transfer_id: str):
        status, body = await self._request('DELETE', transfer_id)
        if status == 404:
            raise TransferNotFoundError(transfer_id)
        self._check_status(status, 'DELETE', transfer_id, body)
        self.descriptors.pop(transfer_id, None)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
