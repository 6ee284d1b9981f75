"""Streaming multipart upload pipeline for s3drive.

One ``UploadSession`` handles one multipart request. The form body is read
chunk by chunk; every file part is piped into its own streaming store write
running in a separate task, fed through a bounded queue so a slow store
throttles the inbound read instead of growing memory.

Session states::

    IDLE -> RECEIVING <-> PART_STREAMING -> ENDED
                      \\-> ABORTED | ERRORED

The session resolves only after the form ended and every part task reached
its own terminal state. A part failure fails the whole session immediately
and cancels the other in-flight parts; a disconnect or idle timeout aborts
it. Parts that completed before a failure are left in the store.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum

from s3drive.errors import AbortedError, BadRequestError, DriveError, StoreError
from s3drive.formparser import FormEvent, MultipartDecoder, PartBegin, PartData, PartEnd
from s3drive.oplog import OperationLog
from s3drive.storage.backend import ObjectStore, ObjectWriter
from s3drive.validation import file_key

logger = logging.getLogger(__name__)


class UploadState(str, Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    PART_STREAMING = "part_streaming"
    ENDED = "ended"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_STATES = (UploadState.ENDED, UploadState.ABORTED, UploadState.ERRORED)


# -- transitions --------------------------------------------------------------


@dataclass(frozen=True)
class PartStarted:
    key: str


@dataclass(frozen=True)
class PartCompleted:
    key: str
    size: int


@dataclass(frozen=True)
class PartFailed:
    key: str
    error: DriveError


@dataclass(frozen=True)
class FormEnded:
    pass


@dataclass(frozen=True)
class FormAborted:
    reason: str


@dataclass(frozen=True)
class FormFailed:
    reason: str


UploadEvent = PartStarted | PartCompleted | PartFailed | FormEnded | FormAborted | FormFailed


# -- results ------------------------------------------------------------------


@dataclass(frozen=True)
class UploadedFile:
    """A file part that was written to the store."""

    field: str
    name: str
    key: str
    size: int


@dataclass
class UploadResult:
    """Echo of what a multipart request contained."""

    fields: dict[str, str] = field(default_factory=dict)
    files: list[UploadedFile] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "fields": dict(self.fields),
            "files": [
                {"field": f.field, "name": f.name, "key": f.key, "size": f.size}
                for f in self.files
            ],
        }


@dataclass
class _PartUpload:
    field_name: str
    filename: str
    key: str
    writer: ObjectWriter
    queue: asyncio.Queue
    task: asyncio.Task | None = None
    size: int = 0


class UploadSession:
    """State machine driving one multipart upload into the store.

    Attributes:
        user_id: Owner of every uploaded file.
        state: Current ``UploadState``.
        history: Every transition applied so far, in order.
    """

    def __init__(
        self,
        store: ObjectStore,
        user_id: str,
        oplog: OperationLog,
        idle_timeout: float = 30.0,
        max_field_size: int = 64 * 1024,
        queue_depth: int = 8,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.oplog = oplog
        self.idle_timeout = idle_timeout
        self.max_field_size = max_field_size
        self.queue_depth = queue_depth

        self.state = UploadState.IDLE
        self.history: list[UploadEvent] = []

        self._parts: list[_PartUpload] = []
        self._active: set[str] = set()
        self._failure: DriveError | None = None
        self._failed = asyncio.Event()
        self._fields: dict[str, str] = {}

        # Per-part decoding state
        self._current: _PartUpload | None = None
        self._field_name: str | None = None
        self._field_buf: bytearray | None = None

    # -- state machine -------------------------------------------------------

    def _apply(self, event: UploadEvent) -> None:
        """Record ``event`` and move to the resulting state."""
        self.history.append(event)
        if self.state in TERMINAL_STATES and not isinstance(event, (FormAborted, FormFailed)):
            return

        if isinstance(event, PartStarted):
            self._active.add(event.key)
            self.state = UploadState.PART_STREAMING

        elif isinstance(event, PartCompleted):
            self._active.discard(event.key)
            if not self._active:
                self.state = UploadState.RECEIVING
            self.oplog.append(f"File upload finished: {event.key} ({event.size} bytes)")

        elif isinstance(event, PartFailed):
            self._active.discard(event.key)
            if isinstance(event.error, AbortedError):
                self.state = UploadState.ABORTED
            else:
                self.state = UploadState.ERRORED
            self.oplog.append(f"Part file upload error: {event.key}: {event.error}")

        elif isinstance(event, FormEnded):
            if self._active:
                raise RuntimeError(f"Form ended with parts still streaming: {sorted(self._active)}")
            self.state = UploadState.ENDED
            self.oplog.append(
                f"Successful file upload: user:{self.user_id}, files:{len(self._parts)}"
            )

        elif isinstance(event, FormAborted):
            if self.state not in TERMINAL_STATES:
                self.state = UploadState.ABORTED
            self.oplog.append(f"Aborted file upload: user:{self.user_id}: {event.reason}")

        elif isinstance(event, FormFailed):
            if self.state not in TERMINAL_STATES:
                self.state = UploadState.ERRORED
            self.oplog.append(f"Error uploading file: user:{self.user_id}: {event.reason}")

    def _fail(self, part: _PartUpload, error: DriveError) -> None:
        if self._failure is None:
            self._failure = error
            self._failed.set()
        self._apply(PartFailed(part.key, error))

    def _raise_if_failed(self) -> None:
        if self._failure is not None:
            raise self._failure

    # -- public API ----------------------------------------------------------

    async def run(self, chunks: AsyncIterator[bytes], content_type: str) -> UploadResult:
        """Consume a multipart body and upload every file part it contains.

        Args:
            chunks: The raw request body.
            content_type: The request's Content-Type header.

        Returns:
            The fields and files found in the form.

        Raises:
            BadRequestError: If the body or a file name is invalid.
            StoreError: If any part failed to upload.
            AbortedError: If the body was cut short or went idle.
        """
        if self.state is not UploadState.IDLE:
            raise RuntimeError("UploadSession.run() may only be called once")

        self.state = UploadState.RECEIVING
        try:
            decoder = MultipartDecoder(content_type)
            await self._receive(decoder, chunks)
            await self._wait_for_parts()
        except AbortedError as e:
            await self._cancel_parts()
            self._apply(FormAborted(e.message))
            raise
        except DriveError as e:
            await self._cancel_parts()
            self._apply(FormFailed(e.message))
            raise
        except asyncio.CancelledError:
            await self._cancel_parts()
            self._apply(FormAborted("request cancelled"))
            raise

        self._apply(FormEnded())
        return UploadResult(
            fields=dict(self._fields),
            files=[
                UploadedFile(field=p.field_name, name=p.filename, key=p.key, size=p.size)
                for p in self._parts
            ],
        )

    # -- receiving -----------------------------------------------------------

    async def _receive(self, decoder: MultipartDecoder, chunks: AsyncIterator[bytes]) -> None:
        iterator = chunks.__aiter__()
        while not decoder.ended:
            chunk = await self._next_chunk(iterator)
            if chunk is None:
                break
            for event in decoder.feed(chunk):
                await self._handle(event)
            self._raise_if_failed()

        for event in decoder.finalize():
            await self._handle(event)
        if not decoder.ended:
            raise AbortedError("Form stream ended before the closing boundary")

    async def _next_chunk(self, iterator: AsyncIterator[bytes]) -> bytes | None:
        """Wait for the next body chunk, or for a part to fail, whichever is first.

        Returns None at the end of the body.
        """
        read = asyncio.ensure_future(_read_next(iterator))
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            done, _ = await asyncio.wait(
                {read, failed},
                timeout=self.idle_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            failed.cancel()
            if not read.done():
                read.cancel()
        self._raise_if_failed()
        if read not in done:
            raise AbortedError(
                f"Upload idle timeout: no data received for {self.idle_timeout:g}s"
            )
        return read.result()

    async def _handle(self, event: FormEvent) -> None:
        if isinstance(event, PartBegin):
            if event.filename is None:
                self._field_name = event.field_name
                self._field_buf = bytearray()
            elif event.filename:
                self._start_part(event.field_name, event.filename)
            # An empty filename is an unselected file input: skip its body

        elif isinstance(event, PartData):
            if self._current is not None:
                await self._send(self._current, event.data)
            elif self._field_buf is not None:
                self._field_buf.extend(event.data)
                if len(self._field_buf) > self.max_field_size:
                    raise BadRequestError(
                        f"Form field '{self._field_name}' exceeds {self.max_field_size} bytes"
                    )

        elif isinstance(event, PartEnd):
            if self._current is not None:
                await self._send(self._current, None)
                self._current = None
            elif self._field_buf is not None:
                self._fields[self._field_name] = self._field_buf.decode("utf-8", errors="replace")
                self._field_name = None
                self._field_buf = None

    def _start_part(self, field_name: str, filename: str) -> None:
        key = file_key(self.user_id, filename)
        part = _PartUpload(
            field_name=field_name,
            filename=filename,
            key=key,
            writer=self.store.open_writer(key),
            queue=asyncio.Queue(maxsize=self.queue_depth),
        )
        self._parts.append(part)
        self._current = part
        self._apply(PartStarted(key))
        part.task = asyncio.create_task(self._pump(part))

    async def _send(self, part: _PartUpload, item: bytes | None) -> None:
        """Queue ``item`` for ``part``, waiting for room but not forever.

        ``None`` marks the end of the part.
        """
        self._raise_if_failed()
        put = asyncio.ensure_future(part.queue.put(item))
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            done, _ = await asyncio.wait(
                {put, failed, part.task},
                timeout=self.idle_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            failed.cancel()
        if put in done:
            return
        put.cancel()
        self._raise_if_failed()
        raise AbortedError(
            f"Store write for {part.key} stalled for more than {self.idle_timeout:g}s"
        )

    # -- part tasks ----------------------------------------------------------

    async def _pump(self, part: _PartUpload) -> None:
        """Copy queued chunks into the part's store writer."""
        try:
            while True:
                chunk = await part.queue.get()
                if chunk is None:
                    break
                await asyncio.wait_for(part.writer.write(chunk), self.idle_timeout)
            part.size = await asyncio.wait_for(part.writer.complete(), self.idle_timeout)
        except asyncio.CancelledError:
            await part.writer.abort()
            raise
        except asyncio.TimeoutError:
            await part.writer.abort()
            self._fail(part, AbortedError(f"Store write idle timeout for {part.key}"))
            return
        except DriveError as e:
            await part.writer.abort()
            self._fail(part, e)
            return
        except Exception as e:
            logger.exception("Unexpected error uploading %s", part.key)
            await part.writer.abort()
            self._fail(part, StoreError(str(e)))
            return

        self._apply(PartCompleted(part.key, part.size))

    async def _wait_for_parts(self) -> None:
        pending = {p.task for p in self._parts if p.task is not None and not p.task.done()}
        while pending:
            self._raise_if_failed()
            _, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        self._raise_if_failed()

    async def _cancel_parts(self) -> None:
        tasks = [p.task for p in self._parts if p.task is not None and not p.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def _read_next(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None
