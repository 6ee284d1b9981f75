"""Object store backends for s3drive."""

from typing import TYPE_CHECKING

from s3drive.storage.backend import ObjectEntry, ObjectStore, ObjectStream, ObjectWriter

if TYPE_CHECKING:
    from s3drive.config import StorageConfig

__all__ = [
    "create_object_store",
    "ObjectEntry",
    "ObjectStore",
    "ObjectStream",
    "ObjectWriter",
]


def create_object_store(config: "StorageConfig") -> ObjectStore:
    """Create an object store instance based on configuration.

    Args:
        config: The storage configuration.

    Returns:
        An object store implementing the ObjectStore protocol.

    Raises:
        ValueError: If the backend is unknown or required config is missing.
    """
    backend = config.backend

    if backend == "aws":
        if not config.bucket:
            raise ValueError("storage.aws.bucket is required when backend is 'aws'")
        from s3drive.storage.aws import AWSBucketStore

        return AWSBucketStore(
            bucket_name=config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
            use_path_style=config.use_path_style,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            part_size=config.part_size,
        )

    elif backend == "memory":
        from s3drive.storage.memory import MemoryBucketStore

        return MemoryBucketStore(max_size_bytes=config.memory_max_size_bytes)

    else:
        raise ValueError(f"Unknown storage backend: {backend}")
