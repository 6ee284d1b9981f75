"""In-memory object store for s3drive.

Implements the ObjectStore protocol using a Python dictionary keyed by object
key. Intended for local development and tests; nothing survives a restart.

Streaming writes are collected per writer and only become visible on
``complete()``, matching the visibility rules of a real S3 multipart upload.
"""

import logging
from collections.abc import AsyncIterator

from s3drive.errors import StoreError
from s3drive.storage.backend import ObjectEntry, ObjectStream

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB (matches the AWS backend)
_CHUNK_SIZE = 64 * 1024


class MemoryCapacityError(StoreError):
    """Raised when a write would exceed the configured max_size_bytes."""


class MemoryObjectWriter:
    """Streaming writer that commits to a MemoryBucketStore on completion."""

    def __init__(self, store: "MemoryBucketStore", key: str) -> None:
        self.store = store
        self.key = key
        self._chunks: list[bytes] = []
        self._size = 0
        self._closed = False

    async def write(self, chunk: bytes) -> None:
        if self._closed:
            raise StoreError(f"Writer for {self.key} is closed")
        self.store._check_capacity(self._size + len(chunk))
        self._chunks.append(chunk)
        self._size += len(chunk)

    async def complete(self) -> int:
        if self._closed:
            raise StoreError(f"Writer for {self.key} is closed")
        self._closed = True
        self.store._add_object(self.key, b"".join(self._chunks))
        self._chunks = []
        return self._size

    async def abort(self) -> None:
        self._closed = True
        self._chunks = []


class MemoryBucketStore:
    """Object store that holds every object in memory.

    Attributes:
        max_size_bytes: Maximum total bytes allowed (0 = unlimited).
    """

    def __init__(self, max_size_bytes: int = 0) -> None:
        self.max_size_bytes = max_size_bytes
        self._objects: dict[str, bytes] = {}
        self._current_size: int = 0

    def _check_capacity(self, additional_bytes: int) -> None:
        """Raise MemoryCapacityError if additional_bytes would not fit."""
        if self.max_size_bytes > 0:
            if self._current_size + additional_bytes > self.max_size_bytes:
                raise MemoryCapacityError(
                    f"Cannot store {additional_bytes} bytes: would exceed "
                    f"max_size_bytes ({self._current_size} + {additional_bytes} "
                    f"> {self.max_size_bytes})"
                )

    def _add_object(self, key: str, data: bytes) -> None:
        """Store an object, updating size tracking for overwrites."""
        if key in self._objects:
            self._current_size -= len(self._objects[key])
        self._objects[key] = data
        self._current_size += len(data)

    def _remove_object(self, key: str) -> None:
        if key in self._objects:
            self._current_size -= len(self._objects[key])
            del self._objects[key]

    async def init(self) -> None:
        logger.info(
            "Memory object store initialized (max_size=%s)",
            self.max_size_bytes if self.max_size_bytes > 0 else "unlimited",
        )

    async def close(self) -> None:
        self._objects.clear()
        self._current_size = 0

    async def check(self) -> None:
        return None

    async def list_common_prefixes(self, delimiter: str = "/") -> list[str]:
        prefixes = {
            key[: key.index(delimiter) + len(delimiter)]
            for key in self._objects
            if delimiter in key
        }
        return sorted(prefixes)

    async def list_objects(self, prefix: str) -> list[ObjectEntry]:
        return [
            ObjectEntry(key=key, size=len(data))
            for key, data in sorted(self._objects.items())
            if key.startswith(prefix)
        ]

    async def put_object(self, key: str, data: bytes) -> None:
        old_size = len(self._objects.get(key, b""))
        net_additional = len(data) - old_size
        if net_additional > 0:
            self._check_capacity(net_additional)
        self._add_object(key, data)

    def open_writer(self, key: str) -> MemoryObjectWriter:
        return MemoryObjectWriter(self, key)

    async def open_object(self, key: str) -> ObjectStream:
        if key not in self._objects:
            raise StoreError("NoSuchKey: The specified key does not exist.")
        data = self._objects[key]
        return ObjectStream(key=key, size=len(data), chunks=_iter_chunks(data))

    async def delete_object(self, key: str) -> None:
        self._remove_object(key)

    async def delete_objects(self, keys: list[str]) -> None:
        for key in keys:
            self._remove_object(key)


async def _iter_chunks(data: bytes) -> AsyncIterator[bytes]:
    """Yield ``data`` in 64 KB chunks."""
    for offset in range(0, len(data), _CHUNK_SIZE):
        yield data[offset : offset + _CHUNK_SIZE]
