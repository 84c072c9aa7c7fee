from sencrypt.storage.base import AbstractChunkStore
from sencrypt.storage.memory import MemoryChunkStore
from sencrypt.storage.disk import DiskChunkStore
from sencrypt.storage.http import HTTPChunkStore
