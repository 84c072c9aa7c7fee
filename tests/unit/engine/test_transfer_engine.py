import io
import os
import shutil
import asyncio
import tempfile
import unittest

from sencrypt.conf import Config
from sencrypt.error import (
    ChunkStorageError, TransferFailedError, TransferCancelledError, TransferIncompleteError,
    ChunkLengthMismatchError, AuthenticationFailedError, DecryptionFailedError, KeyTypeMismatchError,
    MissingTransferFileError, TransferNotFoundError
)
from sencrypt.crypto.envelope import EnvelopeCipher
from sencrypt.crypto.chunk import TAG_SIZE
from sencrypt.storage import MemoryChunkStore, DiskChunkStore
from sencrypt.stream.chunker import StreamChunker, split_chunks
from sencrypt.stream.engine import TransferEngine, get_next_available_file_name
from sencrypt.testcase import AsyncioTestCase, get_test_key

MiB = 2 ** 20


class FlakyStore(MemoryChunkStore):

    def __init__(self, failures, error=ChunkStorageError):
        super().__init__()
        self.failures = dict(failures)
        self.error = error
        self.put_attempts = []
        self.get_attempts = []

    def _maybe_fail(self, operation, index):
        remaining = self.failures.get((operation, index), 0)
        if remaining:
            self.failures[(operation, index)] = remaining - 1
            raise self.error(f"{operation} {index} failed")

    async def put(self, transfer_id, index, data):
        self.put_attempts.append(index)
        self._maybe_fail('put', index)
        await super().put(transfer_id, index, data)

    async def get(self, transfer_id, index):
        self.get_attempts.append(index)
        self._maybe_fail('get', index)
        return await super().get(transfer_id, index)


class CancellingStore(MemoryChunkStore):

    async def put(self, transfer_id, index, data):
        if index == 1:
            raise TransferCancelledError()
        await super().put(transfer_id, index, data)


class BlockingStore(MemoryChunkStore):

    def __init__(self):
        super().__init__()
        self.blocked = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, transfer_id, index, data):
        self.blocked.set()
        await self.release.wait()
        await super().put(transfer_id, index, data)


class EngineTestCase(AsyncioTestCase):
    chunk_size = 10

    async def asyncSetUp(self):
        self.private_key = get_test_key()
        self.public_key = self.private_key.public_key
        self.conf = Config(chunk_size=self.chunk_size, read_size=3, chunk_attempts=3)
        self.store = MemoryChunkStore()
        self.engine = TransferEngine(self.loop, self.conf, self.store)
        self.tmp_dir = tempfile.mkdtemp()
        self.addCleanup(lambda: shutil.rmtree(self.tmp_dir))

    async def send_bytes(self, data, engine=None, file_size=None, progress=None):
        engine = engine or self.engine
        return await engine.send(
            [data[i:i + 7] for i in range(0, len(data), 7)], self.public_key, 'bob', 'data.bin',
            len(data) if file_size is None else file_size, progress
        )

    def session_key(self, descriptor):
        return EnvelopeCipher().unwrap(descriptor.wrapped_key, self.private_key)


class TestRoundTrip(EngineTestCase):

    async def test_in_memory(self):
        data = os.urandom(25)
        descriptor = await self.send_bytes(data)
        self.assertEqual(TransferEngine.STATUS_FINISHED, self.engine.status)
        self.assertEqual(3, descriptor.expected_chunks)
        self.assertEqual(3, await self.store.count(descriptor.transfer_id))
        self.assertEqual(data, await self.engine.receive(descriptor.transfer_id, self.private_key))
        self.assertEqual(TransferEngine.STATUS_FINISHED, self.engine.status)

    async def test_store_only_sees_ciphertext(self):
        data = b'attack at dawn!' * 2
        descriptor = await self.send_bytes(data)
        stored = self.store.chunks[descriptor.transfer_id]
        self.assertEqual([10 + TAG_SIZE, 10 + TAG_SIZE, 10 + TAG_SIZE], [len(stored[i]) for i in range(3)])
        for index, plaintext in enumerate(split_chunks(data, 10)):
            self.assertNotIn(plaintext, stored[index])
        self.assertNotIn(data, descriptor.as_json())

    async def test_every_send_uses_a_fresh_session_key(self):
        data = os.urandom(30)
        first = await self.send_bytes(data)
        second = await self.send_bytes(data)
        self.assertNotEqual(self.session_key(first), self.session_key(second))
        self.assertNotEqual(self.store.chunks[first.transfer_id][0], self.store.chunks[second.transfer_id][0])

    async def test_streaming_sink(self):
        data = os.urandom(95)
        descriptor = await self.send_bytes(data)
        sink = io.BytesIO()
        result = await self.engine.receive(descriptor.transfer_id, self.private_key, sink)
        self.assertEqual(descriptor.transfer_id, result.transfer_id)
        self.assertEqual(data, sink.getvalue())

    async def test_output_path(self):
        data = os.urandom(95)
        descriptor = await self.send_bytes(data)
        output_path = os.path.join(self.tmp_dir, 'received.bin')
        await self.engine.receive(descriptor.transfer_id, self.private_key, output_path)
        with open(output_path, 'rb') as f:
            self.assertEqual(data, f.read())

    async def test_empty_file(self):
        progress = []
        descriptor = await self.send_bytes(b'', progress=progress.append)
        self.assertEqual(0, descriptor.expected_chunks)
        self.assertEqual([100], progress)
        progress.clear()
        self.assertEqual(b'', await self.engine.receive(descriptor.transfer_id, self.private_key,
                                                        progress_callback=progress.append))
        self.assertEqual([100], progress)

    async def test_send_file_through_disk_store(self):
        data = os.urandom(1000)
        file_path = os.path.join(self.tmp_dir, 'report.pdf')
        with open(file_path, 'wb') as f:
            f.write(data)
        store = DiskChunkStore(self.loop, os.path.join(self.tmp_dir, 'transfers'))
        os.mkdir(store.storage_dir)
        engine = TransferEngine(self.loop, self.conf, store)
        descriptor = await engine.send_file(file_path, self.public_key, 'bob')
        self.assertEqual('report.pdf', descriptor.file_name)
        self.assertEqual(100, descriptor.expected_chunks)
        receiver = TransferEngine(self.loop, self.conf, DiskChunkStore(self.loop, store.storage_dir))
        self.assertEqual(data, await receiver.receive(descriptor.transfer_id, self.private_key))

    async def test_send_missing_file(self):
        with self.assertRaises(MissingTransferFileError):
            await self.engine.send_file(os.path.join(self.tmp_dir, 'nope'), self.public_key)


class TestLargeTransfer(EngineTestCase):
    chunk_size = 10 * MiB

    async def test_25_mib_in_10_mib_chunks(self):
        data = os.urandom(25 * MiB)
        file_path = os.path.join(self.tmp_dir, 'big.bin')
        with open(file_path, 'wb') as f:
            f.write(data)
        self.conf.read_size = 64 * 1024
        progress = []
        descriptor = await self.engine.send_file(file_path, self.public_key, 'bob', progress.append)
        self.assertEqual(3, descriptor.expected_chunks)
        self.assertEqual([33, 67, 100], progress)
        stored = self.store.chunks[descriptor.transfer_id]
        self.assertEqual(
            [10 * MiB + TAG_SIZE, 10 * MiB + TAG_SIZE, 5 * MiB + TAG_SIZE], [len(stored[i]) for i in range(3)]
        )
        progress.clear()
        output_path = os.path.join(self.tmp_dir, 'big.out')
        await self.engine.receive(descriptor.transfer_id, self.private_key, output_path, progress.append)
        self.assertEqual([33, 67, 100], progress)
        with open(output_path, 'rb') as f:
            self.assertEqual(data, f.read())


class TestProgress(EngineTestCase):

    async def test_progress_values(self):
        progress = []
        descriptor = await self.send_bytes(os.urandom(70), progress=progress.append)
        self.assertEqual([14, 29, 43, 57, 71, 86, 100], progress)
        progress.clear()
        await self.engine.receive(descriptor.transfer_id, self.private_key, progress_callback=progress.append)
        self.assertEqual([14, 29, 43, 57, 71, 86, 100], progress)

    async def test_single_chunk(self):
        progress = []
        await self.send_bytes(b'tiny', progress=progress.append)
        self.assertEqual([100], progress)

    async def test_halves_round_up(self):
        self.conf.chunk_size = 1
        progress = []
        descriptor = await self.send_bytes(os.urandom(8), progress=progress.append)
        self.assertEqual([13, 25, 38, 50, 63, 75, 88, 100], progress)
        progress.clear()
        await self.engine.receive(descriptor.transfer_id, self.private_key, progress_callback=progress.append)
        self.assertEqual([13, 25, 38, 50, 63, 75, 88, 100], progress)


class TestRetries(EngineTestCase):

    async def test_put_retried_at_same_index(self):
        store = FlakyStore({('put', 1): 2})
        engine = TransferEngine(self.loop, self.conf, store)
        data = os.urandom(30)
        descriptor = await self.send_bytes(data, engine)
        self.assertEqual([0, 1, 1, 1, 2], store.put_attempts)
        self.assertEqual(3, await store.count(descriptor.transfer_id))
        self.assertEqual(data, await engine.receive(descriptor.transfer_id, self.private_key))

    async def test_get_retried_on_os_error(self):
        store = FlakyStore({('get', 0): 1}, error=ConnectionResetError)
        engine = TransferEngine(self.loop, self.conf, store)
        data = os.urandom(15)
        descriptor = await self.send_bytes(data, engine)
        self.assertEqual(data, await engine.receive(descriptor.transfer_id, self.private_key))
        self.assertEqual([0, 0, 1], store.get_attempts)

    async def test_attempts_exhausted(self):
        store = FlakyStore({('put', 1): 5})
        engine = TransferEngine(self.loop, self.conf, store)
        with self.assertRaises(TransferFailedError) as err:
            await self.send_bytes(os.urandom(30), engine)
        self.assertEqual(1, err.exception.index)
        self.assertIsInstance(err.exception.cause, ChunkStorageError)
        self.assertEqual([0, 1, 1, 1], store.put_attempts)
        self.assertEqual(TransferEngine.STATUS_FAILED, engine.status)

    async def test_single_attempt(self):
        self.conf.chunk_attempts = 1
        store = FlakyStore({('get', 2): 1})
        engine = TransferEngine(self.loop, self.conf, store)
        descriptor = await self.send_bytes(os.urandom(30), engine)
        output_path = os.path.join(self.tmp_dir, 'partial.bin')
        with self.assertRaises(TransferFailedError) as err:
            await engine.receive(descriptor.transfer_id, self.private_key, output_path)
        self.assertEqual(2, err.exception.index)
        self.assertFalse(os.path.exists(output_path))

    async def test_unexpected_store_error_is_wrapped(self):
        store = FlakyStore({('put', 1): 1}, error=RuntimeError)
        engine = TransferEngine(self.loop, self.conf, store)
        with self.assertRaises(TransferFailedError) as err:
            await self.send_bytes(os.urandom(30), engine)
        self.assertEqual(1, err.exception.index)
        self.assertIsInstance(err.exception.cause, RuntimeError)
        self.assertEqual([0, 1], store.put_attempts)
        self.assertEqual(TransferEngine.STATUS_FAILED, engine.status)

    async def test_permanent_storage_error_is_not_retried(self):
        store = FlakyStore({('get', 1): 1}, error=TransferNotFoundError)
        engine = TransferEngine(self.loop, self.conf, store)
        descriptor = await self.send_bytes(os.urandom(30), engine)
        with self.assertRaises(TransferFailedError) as err:
            await engine.receive(descriptor.transfer_id, self.private_key)
        self.assertEqual(1, err.exception.index)
        self.assertIsInstance(err.exception.cause, TransferNotFoundError)
        self.assertEqual([0, 1], store.get_attempts)


class TestOutputFileName(EngineTestCase):

    async def test_next_available_file_name(self):
        self.assertEqual('report.pdf', await get_next_available_file_name(self.loop, self.tmp_dir, 'report.pdf'))
        for name in ('report.pdf', 'report_1.pdf'):
            with open(os.path.join(self.tmp_dir, name), 'wb') as f:
                f.write(b'precious')
        self.assertEqual('report_2.pdf', await get_next_available_file_name(self.loop, self.tmp_dir, 'report.pdf'))
        self.assertEqual('notes', await get_next_available_file_name(self.loop, self.tmp_dir, 'notes'))


class TestCancellation(EngineTestCase):

    async def test_stop_during_send(self):
        def on_progress(percent):
            self.engine.stop()

        descriptor = await self.send_bytes(os.urandom(30), progress=on_progress)
        self.assertIsNone(descriptor)
        self.assertEqual(TransferEngine.STATUS_STOPPED, self.engine.status)
        self.assertEqual(1, await self.store.count(self.engine.transfer_id))

    async def test_stop_during_receive_removes_output(self):
        descriptor = await self.send_bytes(os.urandom(30))
        output_path = os.path.join(self.tmp_dir, 'stopped.bin')

        def on_progress(percent):
            self.engine.stop()

        result = await self.engine.receive(descriptor.transfer_id, self.private_key, output_path, on_progress)
        self.assertIsNone(result)
        self.assertEqual(TransferEngine.STATUS_STOPPED, self.engine.status)
        self.assertFalse(os.path.exists(output_path))

    async def test_store_abort(self):
        engine = TransferEngine(self.loop, self.conf, CancellingStore())
        self.assertIsNone(await self.send_bytes(os.urandom(30), engine))
        self.assertEqual(TransferEngine.STATUS_STOPPED, engine.status)

    async def test_task_cancelled(self):
        store = BlockingStore()
        engine = TransferEngine(self.loop, self.conf, store)
        task = asyncio.ensure_future(self.send_bytes(os.urandom(30), engine))
        await store.blocked.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(TransferEngine.STATUS_STOPPED, engine.status)

    async def test_next_transfer_runs_after_stop(self):
        self.engine.stop()
        data = os.urandom(30)
        descriptor = await self.send_bytes(data)
        self.assertEqual(data, await self.engine.receive(descriptor.transfer_id, self.private_key))


class TestFailures(EngineTestCase):

    async def test_public_key_required_to_send(self):
        with self.assertRaises(KeyTypeMismatchError):
            await self.engine.send([b'data'], self.private_key, 'bob', 'f', 4)
        self.assertEqual(TransferEngine.STATUS_FAILED, self.engine.status)
        self.assertEqual({}, self.store.descriptors)

    async def test_private_key_required_to_receive(self):
        descriptor = await self.send_bytes(b'data')
        with self.assertRaises(KeyTypeMismatchError):
            await self.engine.receive(descriptor.transfer_id, self.public_key)

    async def test_wrong_private_key(self):
        descriptor = await self.send_bytes(b'data')
        with self.assertRaises(DecryptionFailedError):
            await self.engine.receive(descriptor.transfer_id, get_test_key(slot=1))

    async def test_incomplete_transfer(self):
        descriptor = await self.send_bytes(os.urandom(30))
        del self.store.chunks[descriptor.transfer_id][1]
        with self.assertRaises(TransferIncompleteError) as err:
            await self.engine.receive(descriptor.transfer_id, self.private_key)
        self.assertEqual((2, 3), (err.exception.observed, err.exception.expected))

    async def test_tampered_chunk_removes_output(self):
        descriptor = await self.send_bytes(os.urandom(30))
        chunks = self.store.chunks[descriptor.transfer_id]
        tampered = bytearray(chunks[1])
        tampered[3] ^= 0x40
        chunks[1] = bytes(tampered)
        output_path = os.path.join(self.tmp_dir, 'tampered.bin')
        with self.assertRaises(AuthenticationFailedError) as err:
            await self.engine.receive(descriptor.transfer_id, self.private_key, output_path)
        self.assertEqual(1, err.exception.index)
        self.assertFalse(os.path.exists(output_path))
        self.assertEqual(TransferEngine.STATUS_FAILED, self.engine.status)

    async def test_reordered_chunks(self):
        descriptor = await self.send_bytes(os.urandom(30))
        chunks = self.store.chunks[descriptor.transfer_id]
        chunks[0], chunks[1] = chunks[1], chunks[0]
        with self.assertRaises(AuthenticationFailedError) as err:
            await self.engine.receive(descriptor.transfer_id, self.private_key)
        self.assertEqual(0, err.exception.index)

    async def test_chunk_length_mismatch(self):
        descriptor = await self.send_bytes(os.urandom(30))
        self.store.chunks[descriptor.transfer_id][2] = self.engine.chunk_cipher.encrypt(
            self.session_key(descriptor), 2, b'short'
        )
        with self.assertRaises(ChunkLengthMismatchError) as err:
            await self.engine.receive(descriptor.transfer_id, self.private_key)
        self.assertEqual((2, 10, 5), (err.exception.index, err.exception.expected, err.exception.actual))

    async def test_source_longer_than_declared(self):
        with self.assertRaises(TransferFailedError) as err:
            await self.send_bytes(os.urandom(25), file_size=20)
        self.assertEqual(2, err.exception.index)

    async def test_source_shorter_than_declared(self):
        with self.assertRaises(TransferFailedError) as err:
            await self.send_bytes(os.urandom(25), file_size=30)
        self.assertEqual(2, err.exception.index)
        with self.assertRaises(TransferFailedError):
            await self.send_bytes(os.urandom(20), file_size=30)

    async def test_existing_file_kept_when_transfer_is_missing(self):
        output_path = os.path.join(self.tmp_dir, 'keep.bin')
        with open(output_path, 'wb') as f:
            f.write(b'keep me')
        with self.assertRaises(Exception):
            await self.engine.receive('missing', self.private_key, output_path)
        with open(output_path, 'rb') as f:
            self.assertEqual(b'keep me', f.read())


class TestSynchronousCore(unittest.TestCase):

    def test_encrypt_then_decrypt_chunks(self):
        engine = TransferEngine(None, Config(), MemoryChunkStore())
        key = engine.envelope.generate_session_key()
        data = os.urandom(100)
        encrypted = list(engine.encrypt_chunks(StreamChunker([data], 30), key))
        self.assertEqual([0, 1, 2, 3], [index for index, _ in encrypted])
        decrypted = list(engine.decrypt_chunks([ciphertext for _, ciphertext in encrypted], key))
        self.assertEqual(split_chunks(data, 30), [plaintext for _, plaintext in decrypted])
        with self.assertRaises(AuthenticationFailedError):
            list(engine.decrypt_chunks([ciphertext for _, ciphertext in reversed(encrypted)], key))
