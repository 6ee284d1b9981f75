"""Abstract object store protocol for s3drive."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ObjectEntry:
    """One object returned by a prefix listing."""

    key: str
    size: int


@dataclass
class ObjectStream:
    """An opened object ready to be streamed to a client.

    Attributes:
        key: The object key.
        size: Content length in bytes, when the store reports it.
        chunks: Async iterator over the object's bytes, in order.
    """

    key: str
    size: int | None
    chunks: AsyncIterator[bytes]


class ObjectWriter(Protocol):
    """A streaming write to a single object key.

    Bytes passed to ``write`` become visible only after ``complete``.
    ``abort`` discards everything written so far and is safe to call more
    than once.
    """

    async def write(self, chunk: bytes) -> None:
        ...

    async def complete(self) -> int:
        """Commit the object and return its total size in bytes."""
        ...

    async def abort(self) -> None:
        ...


class ObjectStore(Protocol):
    """Protocol defining the flat key-value bucket interface.

    All methods raise ``StoreError`` on failure.
    """

    async def init(self) -> None:
        """Connect to the store and verify the bucket is reachable."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        ...

    async def check(self) -> None:
        """Probe the store, raising ``StoreError`` if it is unreachable."""
        ...

    async def list_common_prefixes(self, delimiter: str = "/") -> list[str]:
        """List top-level common prefixes, each ending in ``delimiter``."""
        ...

    async def list_objects(self, prefix: str) -> list[ObjectEntry]:
        """List every object whose key starts with ``prefix``."""
        ...

    async def put_object(self, key: str, data: bytes) -> None:
        """Store ``data`` at ``key``, replacing any previous object."""
        ...

    def open_writer(self, key: str) -> ObjectWriter:
        """Start a streaming write to ``key``."""
        ...

    async def open_object(self, key: str) -> ObjectStream:
        """Open the object at ``key`` for streaming.

        Raises ``StoreError`` before any bytes are produced if the object is
        missing.
        """
        ...

    async def delete_object(self, key: str) -> None:
        """Delete ``key``. Deleting a missing key is not an error."""
        ...

    async def delete_objects(self, keys: list[str]) -> None:
        """Delete every key in ``keys`` using batch calls."""
        ...
