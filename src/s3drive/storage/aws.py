"""AWS S3 object store for s3drive.

Talks to a single upstream S3 bucket via aiobotocore. Keys are used
verbatim: a user marker lives at ``{user}/`` and a file at
``{user}/{file}``, so existing bucket contents interoperate unchanged.

Credentials are taken from the configuration when present and otherwise
resolved via the standard AWS credential chain (env vars,
~/.aws/credentials, IAM role, etc.).

Streaming uploads never hold more than one part in memory: bytes are
buffered until ``part_size`` is reached, at which point an S3 multipart
upload is started and the part is sent. Bodies smaller than one part are
written with a single PutObject on completion.
"""

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager

from aiobotocore.session import AioSession
from botocore.exceptions import BotoCoreError, ClientError

from s3drive.errors import StoreError
from s3drive.storage.backend import ObjectEntry, ObjectStream

logger = logging.getLogger(__name__)

# Streaming chunk size for downloads: 64 KB
_CHUNK_SIZE = 64 * 1024

# S3 rejects multipart parts smaller than 5 MiB (except the last one)
MIN_PART_SIZE = 5 * 1024 * 1024

# S3 DeleteObjects accepts at most 1000 keys per request
_DELETE_BATCH = 1000


@contextmanager
def _store_errors() -> Iterator[None]:
    """Re-raise botocore failures as StoreError, keeping the backend text."""
    try:
        yield
    except ClientError as e:
        raise StoreError(str(e)) from e
    except BotoCoreError as e:
        raise StoreError(str(e)) from e


class S3StreamWriter:
    """Streaming writer for one key, backed by an S3 multipart upload.

    Attributes:
        bucket_name: The upstream bucket.
        key: The destination object key.
        part_size: Bytes buffered before a part is sent.
    """

    def __init__(self, client, bucket_name: str, key: str, part_size: int = MIN_PART_SIZE) -> None:
        self._client = client
        self.bucket_name = bucket_name
        self.key = key
        self.part_size = max(part_size, MIN_PART_SIZE)
        self.upload_id: str | None = None
        self._buffer = bytearray()
        self._parts: list[dict] = []
        self._size = 0
        self._closed = False

    async def _flush_part(self) -> None:
        """Send the buffered bytes as the next multipart part."""
        if self.upload_id is None:
            resp = await self._client.create_multipart_upload(
                Bucket=self.bucket_name, Key=self.key
            )
            self.upload_id = resp["UploadId"]
            logger.debug("Started multipart upload %s for %s", self.upload_id, self.key)

        part_number = len(self._parts) + 1
        resp = await self._client.upload_part(
            Bucket=self.bucket_name,
            Key=self.key,
            UploadId=self.upload_id,
            PartNumber=part_number,
            Body=bytes(self._buffer),
        )
        self._parts.append({"ETag": resp["ETag"], "PartNumber": part_number})
        self._buffer = bytearray()

    async def write(self, chunk: bytes) -> None:
        if self._closed:
            raise StoreError(f"Writer for {self.key} is closed")
        self._buffer.extend(chunk)
        self._size += len(chunk)
        if len(self._buffer) >= self.part_size:
            with _store_errors():
                await self._flush_part()

    async def complete(self) -> int:
        if self._closed:
            raise StoreError(f"Writer for {self.key} is closed")
        self._closed = True
        with _store_errors():
            if self.upload_id is None:
                await self._client.put_object(
                    Bucket=self.bucket_name, Key=self.key, Body=bytes(self._buffer)
                )
            else:
                if self._buffer:
                    await self._flush_part()
                await self._client.complete_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=self.key,
                    UploadId=self.upload_id,
                    MultipartUpload={"Parts": self._parts},
                )
        self._buffer = bytearray()
        return self._size

    async def abort(self) -> None:
        self._closed = True
        self._buffer = bytearray()
        if self.upload_id is None:
            return
        upload_id, self.upload_id = self.upload_id, None
        try:
            await self._client.abort_multipart_upload(
                Bucket=self.bucket_name, Key=self.key, UploadId=upload_id
            )
        except (ClientError, BotoCoreError):
            logger.warning("Failed to abort S3 multipart upload %s", upload_id)


class AWSBucketStore:
    """Object store backed by a real AWS S3 (or S3-compatible) bucket.

    Attributes:
        bucket_name: The upstream AWS S3 bucket name.
        region: The AWS region for the bucket.
        part_size: Multipart part size used by streaming writers.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        endpoint_url: str = "",
        use_path_style: bool = False,
        access_key_id: str = "",
        secret_access_key: str = "",
        part_size: int = MIN_PART_SIZE,
    ) -> None:
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.part_size = part_size
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    async def init(self) -> None:
        """Create the aiobotocore S3 client and verify the bucket exists.

        Raises:
            StoreError: If the bucket does not exist or is inaccessible.
        """
        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.use_path_style:
            from botocore.config import Config as BotoConfig
            client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})

        # Use explicit credentials if provided, otherwise fall back to chain
        if self.access_key_id and self.secret_access_key:
            session = AioSession()
            session.set_credentials(self.access_key_id, self.secret_access_key)
            self._session = session
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        try:
            await self._client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None
            raise StoreError(
                f"Cannot access S3 bucket '{self.bucket_name}': {code}"
            ) from e

        logger.info(
            "AWS object store initialized: bucket=%s region=%s",
            self.bucket_name,
            self.region,
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def check(self) -> None:
        with _store_errors():
            await self._client.head_bucket(Bucket=self.bucket_name)

    async def list_common_prefixes(self, delimiter: str = "/") -> list[str]:
        prefixes: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        with _store_errors():
            async for page in paginator.paginate(Bucket=self.bucket_name, Delimiter=delimiter):
                for entry in page.get("CommonPrefixes", []):
                    prefixes.append(entry["Prefix"])
        return prefixes

    async def list_objects(self, prefix: str) -> list[ObjectEntry]:
        entries: list[ObjectEntry] = []
        paginator = self._client.get_paginator("list_objects_v2")
        with _store_errors():
            async for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get("Contents", []):
                    entries.append(ObjectEntry(key=obj["Key"], size=int(obj.get("Size", 0))))
        return entries

    async def put_object(self, key: str, data: bytes) -> None:
        with _store_errors():
            await self._client.put_object(Bucket=self.bucket_name, Key=key, Body=data)

    def open_writer(self, key: str) -> S3StreamWriter:
        return S3StreamWriter(self._client, self.bucket_name, key, part_size=self.part_size)

    async def open_object(self, key: str) -> ObjectStream:
        with _store_errors():
            resp = await self._client.get_object(Bucket=self.bucket_name, Key=key)
        size = resp.get("ContentLength")
        return ObjectStream(key=key, size=size, chunks=self._iter_body(resp["Body"]))

    async def _iter_body(self, body) -> AsyncIterator[bytes]:
        """Stream a GetObject body in 64 KB chunks, closing it at the end."""
        async with body as stream:
            while True:
                with _store_errors():
                    chunk = await stream.read(_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    async def delete_object(self, key: str) -> None:
        """Delete a single object.

        Idempotent: S3 delete_object does not error on missing keys.
        """
        with _store_errors():
            await self._client.delete_object(Bucket=self.bucket_name, Key=key)

    async def delete_objects(self, keys: list[str]) -> None:
        """Batch-delete keys, up to 1000 per request.

        Raises:
            StoreError: If S3 reports per-key errors for any batch.
        """
        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start : start + _DELETE_BATCH]
            with _store_errors():
                resp = await self._client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            errors = resp.get("Errors", [])
            if errors:
                first = errors[0]
                raise StoreError(
                    f"Failed to delete {len(errors)} object(s); first: "
                    f"{first.get('Key', '')}: {first.get('Code', '')} {first.get('Message', '')}".rstrip()
                )
