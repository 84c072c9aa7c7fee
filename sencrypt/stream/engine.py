import os
import typing
import asyncio
import logging

from sencrypt.error import (
    BaseError, ChunkStorageError, TransferFailedError, TransferCancelledError, TransferIncompleteError,
    ChunkLengthMismatchError, MissingTransferFileError
)
from sencrypt.crypto.provider import CryptoProvider, default_provider
from sencrypt.crypto.envelope import EnvelopeCipher
from sencrypt.crypto.chunk import ChunkCipher
from sencrypt.keys.codec import fingerprint
from sencrypt.keys.material import KeyMaterial
from sencrypt.stream.chunker import StreamChunker, FileReads
from sencrypt.stream.descriptor import TransferDescriptor
if typing.TYPE_CHECKING:
    from sencrypt.conf import Config
    from sencrypt.storage.base import AbstractChunkStore

log = logging.getLogger(__name__)

ProgressCallback = typing.Callable[[int], None]
RETRYABLE_ERRORS = (ChunkStorageError, OSError, asyncio.TimeoutError)


def _report(progress_callback: typing.Optional[ProgressCallback], completed: int, expected: int):
    if progress_callback is None:
        return
    # rounds halves up
    progress_callback(100 if not expected else (200 * completed + expected) // (2 * expected))


def _get_next_available_file_name(download_directory: str, file_name: str) -> str:
    base_name, ext = os.path.splitext(os.path.basename(file_name))
    i = 0
    while os.path.exists(os.path.join(download_directory, file_name)):
        i += 1
        file_name = "%s_%i%s" % (base_name, i, ext)
    return file_name


async def get_next_available_file_name(loop: asyncio.AbstractEventLoop, download_directory: str,
                                       file_name: str) -> str:
    return await loop.run_in_executor(None, _get_next_available_file_name, download_directory, file_name)


def _checked_chunks(chunks: typing.Iterable[bytes], descriptor: TransferDescriptor) -> typing.Iterator[bytes]:
    index = 0
    for chunk in chunks:
        if index >= descriptor.expected_chunks:
            raise TransferFailedError(index, "source produced more data than its declared size")
        expected = descriptor.chunk_length(index)
        if len(chunk) != expected:
            raise TransferFailedError(index, f"source produced {len(chunk)} bytes, expected {expected}")
        yield chunk
        index += 1
    if index != descriptor.expected_chunks:
        raise TransferFailedError(index, "source ended before its declared size")


class TransferEngine:
    """
    Moves one file at a time through a chunk store.

    Sending generates a fresh session key, wraps it for the receiver, then
    encrypts and uploads the file chunk by chunk. Receiving downloads, verifies
    and decrypts the chunks in order. Only ciphertext and the wrapped key ever
    reach the store.
    """

    STATUS_IDLE = "idle"
    STATUS_KEY_PREPARED = "key_prepared"
    STATUS_RUNNING = "running"
    STATUS_FINISHED = "finished"
    STATUS_STOPPED = "stopped"
    STATUS_FAILED = "failed"

    def __init__(self, loop: asyncio.AbstractEventLoop, config: 'Config', store: 'AbstractChunkStore',
                 provider: typing.Optional[CryptoProvider] = None):
        self.loop = loop
        self.config = config
        self.store = store
        self.provider = provider or default_provider
        self.envelope = EnvelopeCipher(self.provider)
        self.chunk_cipher = ChunkCipher(self.provider)
        self.status = self.STATUS_IDLE
        self.transfer_id: typing.Optional[str] = None
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self.status == self.STATUS_RUNNING

    def stop(self):
        self._stop_requested = True

    def _check_stop(self):
        if self._stop_requested:
            raise TransferCancelledError()

    def encrypt_chunks(self, chunks: typing.Iterable[bytes],
                       session_key: bytes) -> typing.Iterator[typing.Tuple[int, bytes]]:
        for index, chunk in enumerate(chunks):
            yield index, self.chunk_cipher.encrypt(session_key, index, chunk)

    def decrypt_chunks(self, ciphertexts: typing.Iterable[bytes],
                       session_key: bytes) -> typing.Iterator[typing.Tuple[int, bytes]]:
        for index, ciphertext in enumerate(ciphertexts):
            yield index, self.chunk_cipher.decrypt(session_key, index, ciphertext)

    async def _with_attempts(self, index: int, what: str, fn: typing.Callable[[], typing.Awaitable]):
        attempts = max(1, self.config.chunk_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await fn()
            except TransferCancelledError:
                raise
            except RETRYABLE_ERRORS as err:
                if attempt == attempts:
                    log.warning("giving up on %s of chunk %i after %i attempts: %s", what, index, attempts, err)
                    raise TransferFailedError(index, err) from err
                log.warning("%s of chunk %i failed (attempt %i/%i): %s", what, index, attempt, attempts, err)
            except Exception as err:
                log.warning("%s of chunk %i failed: %s", what, index, err)
                raise TransferFailedError(index, err) from err

    async def _put_chunk(self, transfer_id: str, index: int, ciphertext: bytes):
        await self._with_attempts(index, "upload", lambda: self.store.put(transfer_id, index, ciphertext))

    async def _get_chunk(self, transfer_id: str, index: int) -> bytes:
        return await self._with_attempts(index, "download", lambda: self.store.get(transfer_id, index))

    def _begin(self):
        self._stop_requested = False
        self.transfer_id = None
        self.status = self.STATUS_IDLE

    def _finish_with_error(self, err: BaseException) -> bool:
        """
        Set the terminal status for an exception, returns True when it was a user stop
        """
        if isinstance(err, TransferCancelledError):
            self.status = self.STATUS_STOPPED
            log.info("stopped transfer %s", self.transfer_id)
            return True
        if isinstance(err, asyncio.CancelledError):
            self.status = self.STATUS_STOPPED
            log.info("transfer %s was cancelled", self.transfer_id)
            return False
        self.status = self.STATUS_FAILED
        if isinstance(err, BaseError):
            log.warning("transfer %s failed: %s", self.transfer_id, err)
        else:
            log.exception("unexpected error in transfer %s", self.transfer_id)
        return False

    async def send(self, source: typing.Iterable[bytes], public_key: KeyMaterial, receiver_id: str,
                   file_name: str, file_size: int,
                   progress_callback: typing.Optional[ProgressCallback] = None
                   ) -> typing.Optional[TransferDescriptor]:
        """
        Encrypt the bytes read from `source` and upload them as a new transfer.

        `source` is any iterable of byte reads, they are regrouped into chunks
        of `config.chunk_size`. Returns the stored descriptor, or None if the
        transfer was stopped.
        """
        self._begin()
        session_key: typing.Optional[bytes] = self.envelope.generate_session_key()
        encrypted = None
        try:
            wrapped_key = self.envelope.wrap(session_key, public_key)
            self.status = self.STATUS_KEY_PREPARED
            descriptor = TransferDescriptor(
                receiver_id, file_name, file_size, wrapped_key, self.config.chunk_size
            )
            self.transfer_id = await self.store.create_transfer(descriptor)
            log.info("sending %s (%i bytes, %i chunks) to %s as transfer %s, receiver key %s", file_name,
                     file_size, descriptor.expected_chunks, receiver_id or "<unset>", self.transfer_id,
                     fingerprint(public_key, self.provider))
            self.status = self.STATUS_RUNNING
            chunks = _checked_chunks(StreamChunker(source, descriptor.chunk_size), descriptor)
            encrypted = self.encrypt_chunks(chunks, session_key)
            completed = 0
            while True:
                self._check_stop()
                item = await self.loop.run_in_executor(None, next, encrypted, None)
                if item is None:
                    break
                index, ciphertext = item
                await self._put_chunk(self.transfer_id, index, ciphertext)
                completed += 1
                log.debug("sent chunk %i/%i of %s", completed, descriptor.expected_chunks, self.transfer_id)
                _report(progress_callback, completed, descriptor.expected_chunks)
                await asyncio.sleep(0)
            if not descriptor.expected_chunks:
                _report(progress_callback, 0, 0)
            self.status = self.STATUS_FINISHED
            log.info("finished sending transfer %s", self.transfer_id)
            return descriptor
        except BaseException as err:
            if self._finish_with_error(err):
                return None
            raise
        finally:
            session_key = None
            encrypted = None

    async def send_file(self, file_path: str, public_key: KeyMaterial, receiver_id: str = '',
                        progress_callback: typing.Optional[ProgressCallback] = None
                        ) -> typing.Optional[TransferDescriptor]:
        if not os.path.isfile(file_path):
            raise MissingTransferFileError(file_path)
        file_size = os.path.getsize(file_path)
        return await self.send(
            FileReads(file_path, self.config.read_size), public_key, receiver_id, os.path.basename(file_path),
            file_size, progress_callback
        )

    async def _receive_chunks(self, descriptor: TransferDescriptor, session_key: bytes,
                              write: typing.Callable[[bytes], typing.Awaitable],
                              progress_callback: typing.Optional[ProgressCallback]):
        transfer_id = descriptor.transfer_id
        for index in range(descriptor.expected_chunks):
            self._check_stop()
            ciphertext = await self._get_chunk(transfer_id, index)
            plaintext = await self.loop.run_in_executor(
                None, self.chunk_cipher.decrypt, session_key, index, ciphertext
            )
            expected = descriptor.chunk_length(index)
            if len(plaintext) != expected:
                raise ChunkLengthMismatchError(index, expected, len(plaintext))
            await write(plaintext)
            log.debug("received chunk %i/%i of %s", index + 1, descriptor.expected_chunks, transfer_id)
            _report(progress_callback, index + 1, descriptor.expected_chunks)
            await asyncio.sleep(0)
        if not descriptor.expected_chunks:
            _report(progress_callback, 0, 0)

    async def receive(self, transfer_id: str, private_key: KeyMaterial,
                      output: typing.Union[None, str, typing.BinaryIO] = None,
                      progress_callback: typing.Optional[ProgressCallback] = None
                      ) -> typing.Union[None, bytes, TransferDescriptor]:
        """
        Download, verify and decrypt a transfer.

        `output` may be a writable binary sink, a path to write to or None to
        collect the plaintext in memory. Returns the plaintext bytes when
        collecting in memory, otherwise the descriptor. Returns None if the
        transfer was stopped, a partially written output file is removed.
        """
        self._begin()
        self.transfer_id = transfer_id
        session_key: typing.Optional[bytes] = None
        output_path = output if isinstance(output, (str, os.PathLike)) else None
        opened_output = False
        try:
            descriptor = await self.store.get_descriptor(transfer_id)
            observed = await self.store.count(transfer_id)
            if observed != descriptor.expected_chunks:
                raise TransferIncompleteError(transfer_id, observed, descriptor.expected_chunks)
            session_key = self.envelope.unwrap(descriptor.wrapped_key, private_key)
            self.status = self.STATUS_KEY_PREPARED
            log.info("receiving transfer %s (%i bytes, %i chunks) with key %s", transfer_id, descriptor.file_size,
                     descriptor.expected_chunks, fingerprint(private_key, self.provider))
            self.status = self.STATUS_RUNNING
            if output_path is not None:
                with open(output_path, 'wb') as f:
                    opened_output = True

                    async def write_file(data: bytes):
                        await self.loop.run_in_executor(None, f.write, data)
                    await self._receive_chunks(descriptor, session_key, write_file, progress_callback)
                result = descriptor
            elif output is not None:

                async def write_sink(data: bytes):
                    await self.loop.run_in_executor(None, output.write, data)
                await self._receive_chunks(descriptor, session_key, write_sink, progress_callback)
                result = descriptor
            else:
                received = []

                async def collect(data: bytes):
                    received.append(data)
                await self._receive_chunks(descriptor, session_key, collect, progress_callback)
                result = b''.join(received)
            self.status = self.STATUS_FINISHED
            log.info("finished receiving transfer %s", transfer_id)
            return result
        except BaseException as err:
            if opened_output and os.path.isfile(output_path):
                log.warning("removing incomplete output %s for transfer %s", output_path, transfer_id)
                os.remove(output_path)
            if self._finish_with_error(err):
                return None
            raise
        finally:
            session_key = None
