"""User and file operations on top of an object store.

``Drive`` maps the domain model onto the bucket's flat key namespace:

    user marker:  {user_id}/          (zero bytes)
    file:         {user_id}/{file_name}

Every operation appends its outcome to the operation log, logs failures
through ``logging``, and counts itself in the operations metric. Store
failures are re-raised as ``StoreError``; nothing fails silently.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

from s3drive import metrics
from s3drive.config import UploadConfig
from s3drive.errors import AbortedError, DriveError, StoreError, UserNotFoundError
from s3drive.oplog import OperationLog
from s3drive.storage.backend import ObjectEntry, ObjectStore, ObjectStream
from s3drive.upload import UploadResult, UploadSession
from s3drive.validation import SEPARATOR, file_key, user_prefix, validate_user_id

logger = logging.getLogger(__name__)


class DeleteResult(str, Enum):
    """Outcome of ``Drive.delete_user``.

    ``NOT_FOUND`` is a result, not an error: the prefix held no objects and
    no delete call was made.
    """

    DELETED = "User deleted successfully"
    NOT_FOUND = "User not found"


@dataclass(frozen=True)
class FileInfo:
    """A user's file as reported by ``Drive.list_files``."""

    name: str
    size: int

    def to_dict(self) -> dict:
        return {"name": self.name, "size": self.size}


def _record(operation: str, status: str) -> None:
    """Count an operation outcome if metrics are enabled."""
    if metrics.operations_total is not None:
        metrics.operations_total.labels(operation=operation, status=status).inc()


class Drive:
    """Store facade: users and files over a key-prefix-addressed bucket.

    Attributes:
        store: The backing object store.
        oplog: Sink for the append-only operation log.
        upload_config: Limits applied to multipart upload sessions.
    """

    def __init__(
        self,
        store: ObjectStore,
        oplog: OperationLog,
        upload_config: UploadConfig | None = None,
    ) -> None:
        self.store = store
        self.oplog = oplog
        self.upload_config = upload_config or UploadConfig()

    def _failed(self, operation: str, action: str, error: Exception) -> None:
        """Log and count a failed operation."""
        self.oplog.append(f"Error {action}: {error}")
        logger.warning("%s failed: %s", operation, error)
        _record(operation, "error")

    async def _list_prefix(self, user_id: str) -> list[ObjectEntry]:
        return await self.store.list_objects(user_prefix(user_id))

    # -- users ---------------------------------------------------------------

    async def list_users(self) -> list[str]:
        """Return every user id (top-level common prefix) in the bucket.

        Raises:
            StoreError: If the listing fails.
        """
        try:
            prefixes = await self.store.list_common_prefixes(SEPARATOR)
        except StoreError as e:
            self._failed("list_users", "getting user list", e)
            raise
        _record("list_users", "ok")
        return [prefix[: -len(SEPARATOR)] for prefix in prefixes]

    async def create_user(self, user_id: str) -> None:
        """Write the zero-byte marker for ``user_id``.

        Idempotent: re-creating an existing user overwrites the marker.

        Raises:
            BadRequestError: If the user id is invalid.
            StoreError: If the write fails.
        """
        validate_user_id(user_id)
        try:
            await self.store.put_object(user_prefix(user_id), b"")
        except StoreError as e:
            self._failed("create_user", "creating user", e)
            raise
        self.oplog.append(f"New user created: {user_id}")
        _record("create_user", "ok")

    async def delete_user(self, user_id: str) -> DeleteResult:
        """Delete the user marker and every file under the user's prefix.

        Not atomic: a failure part-way through leaves a partially deleted
        prefix behind.

        Returns:
            ``DeleteResult.NOT_FOUND`` if the prefix is empty, otherwise
            ``DeleteResult.DELETED``.

        Raises:
            BadRequestError: If the user id is invalid.
            StoreError: If listing or deleting fails.
        """
        validate_user_id(user_id)
        try:
            entries = await self._list_prefix(user_id)
            if not entries:
                _record("delete_user", "not_found")
                return DeleteResult.NOT_FOUND
            await self.store.delete_objects([entry.key for entry in entries])
        except StoreError as e:
            self._failed("delete_user", "deleting user", e)
            raise
        self.oplog.append(f"User deleted: {user_id} ({len(entries)} objects)")
        _record("delete_user", "ok")
        return DeleteResult.DELETED

    # -- files ---------------------------------------------------------------

    async def list_files(self, user_id: str, must_exist: bool = False) -> list[FileInfo]:
        """List a user's files with their sizes.

        Zero-size entries (the user marker and any directory markers) are
        left out.

        Args:
            user_id: The user whose prefix is listed.
            must_exist: Raise ``UserNotFoundError`` instead of returning an
                empty list when the prefix holds no objects at all.

        Raises:
            BadRequestError: If the user id is invalid.
            UserNotFoundError: If ``must_exist`` and the prefix is empty.
            StoreError: If the listing fails.
        """
        validate_user_id(user_id)
        try:
            entries = await self._list_prefix(user_id)
        except StoreError as e:
            self._failed("list_files", "getting user files", e)
            raise
        if must_exist and not entries:
            _record("list_files", "not_found")
            raise UserNotFoundError(user_id)
        _record("list_files", "ok")
        offset = len(user_prefix(user_id))
        return [FileInfo(name=entry.key[offset:], size=entry.size) for entry in entries if entry.size]

    async def upload_files(
        self,
        user_id: str,
        chunks: AsyncIterator[bytes],
        content_type: str,
    ) -> UploadResult:
        """Stream every file part of a multipart body into the user's prefix.

        Each file part is written to ``{user_id}/{filename}``, overwriting
        any existing object.

        Raises:
            BadRequestError: If the body or a name is invalid.
            StoreError: If any part failed to upload.
            AbortedError: If the body was cut short or went idle.
        """
        validate_user_id(user_id)
        session = UploadSession(
            self.store,
            user_id,
            self.oplog,
            idle_timeout=self.upload_config.idle_timeout_seconds,
            max_field_size=self.upload_config.max_field_size,
            queue_depth=self.upload_config.queue_depth,
        )
        try:
            result = await session.run(chunks, content_type)
        except DriveError as e:
            logger.warning("upload_files failed for %s: %s", user_id, e)
            _record("upload_files", "aborted" if isinstance(e, AbortedError) else "error")
            raise

        if metrics.bytes_uploaded_total is not None:
            metrics.bytes_uploaded_total.inc(sum(f.size for f in result.files))
        _record("upload_files", "ok")
        return result

    async def delete_file(self, user_id: str, file_name: str) -> None:
        """Delete a single file.

        There is no existence check: deleting a missing file succeeds.

        Raises:
            BadRequestError: If either name is invalid.
            StoreError: If the delete fails.
        """
        key = file_key(user_id, file_name)
        try:
            await self.store.delete_object(key)
        except StoreError as e:
            self._failed("delete_file", "deleting file", e)
            raise
        self.oplog.append(f"File deleted: file:{file_name}, user:{user_id}")
        _record("delete_file", "ok")

    async def download_file(self, user_id: str, file_name: str) -> ObjectStream:
        """Open a file for streaming.

        Raises:
            BadRequestError: If either name is invalid.
            StoreError: If the file does not exist or the read fails.
        """
        key = file_key(user_id, file_name)
        try:
            stream = await self.store.open_object(key)
        except StoreError as e:
            self._failed("download_file", "downloading file", e)
            raise
        self.oplog.append(f"File downloaded: file:{file_name}, user:{user_id}")
        _record("download_file", "ok")
        return ObjectStream(key=stream.key, size=stream.size, chunks=_count_sent(stream.chunks))

    async def check(self) -> None:
        """Probe the store; raises ``StoreError`` when it is unreachable."""
        await self.store.check()


async def _count_sent(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Pass chunks through, adding their size to the download counter."""
    async for chunk in chunks:
        if metrics.bytes_downloaded_total is not None:
            metrics.bytes_downloaded_total.inc(len(chunk))
        yield chunk
