from typing import Any, List, Optional
from contextlib import AsyncExitStack, asynccontextmanager
from aiobotocore.session import get_session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from ..models.files import ObjectPage, ObjectSummary
from ..utils.files import DEFAULT_MIMETYPE, FOLDER_MIMETYPE, to_folder_key
from ..errors import NotFoundError, StoreUnavailableError
import asyncio
import logging

# S3 accepts at most this many keys per DeleteObjects request
MAX_DELETE_BATCH = 1000

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def normalize_path_prefix(path_prefix: Optional[str]) -> str:
    if not path_prefix:
        return ""
    stripped = path_prefix.strip("/")
    return f"{stripped}/" if stripped else ""


class S3Service(object):

    def __init__(self, s3_endpoint_url: Optional[str], s3_access_key_id: Optional[str], s3_secret_access_key: Optional[str],
                 region: Optional[str], bucket: Optional[str], path_prefix: str = "", with_checksums: bool = False,
                 download_url_ttl: int = 300):
        """Initiate the S3 service.

        The underlying client is created on first use and kept for the lifetime
        of the service, call close() to release it.

        Args:
            s3_endpoint_url (str): The endpoint URL of the S3 service, None for AWS.
            s3_access_key_id (str): The access key ID for S3 authentication.
            s3_secret_access_key (str): The secret access key for S3 authentication.
            region (str): The AWS region where the S3 bucket is located.
            bucket (str): The name of the S3 bucket.
            path_prefix (str): The prefix path within the S3 bucket, keys are relative to it.
            with_checksums (bool, optional): Whether to enable checksum handling. When False (default),
            checksum use is disabled for compatibility with S3-compatible services that do not support checksums.
            download_url_ttl (int, optional): Validity in seconds of the signed download URLs.
        """
        self.s3_endpoint_url = s3_endpoint_url
        self.s3_access_key_id = s3_access_key_id
        self.s3_secret_access_key = s3_secret_access_key
        self.region = region
        self.path_prefix = normalize_path_prefix(path_prefix)
        self.bucket = bucket
        self.with_checksums = with_checksums
        self.download_url_ttl = download_url_ttl
        self._client = None
        self._exit_stack: Optional[AsyncExitStack] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "S3Service":
        return cls(
            s3_endpoint_url=settings.s3_endpoint_url,
            s3_access_key_id=settings.aws_access_key_id,
            s3_secret_access_key=settings.aws_secret_access_key,
            region=settings.aws_region,
            bucket=settings.aws_s3_bucket,
            path_prefix=settings.aws_s3_prefix,
            with_checksums=settings.s3_with_checksums,
            download_url_ttl=settings.download_url_ttl)

    def is_configured(self) -> bool:
        return all([self.region, self.s3_access_key_id, self.s3_secret_access_key, self.bucket])

    def to_s3_key(self, key: str) -> str:
        """Prepend the path prefix to a key.

        Args:
            key (str): The key relative to the path prefix

        Returns:
            str: The full key, ready to be used in S3 queries.
        """
        return f"{self.path_prefix}{key}"

    def from_s3_key(self, s3_key: str) -> str:
        """Remove the path prefix from a full S3 key."""
        if self.path_prefix and s3_key.startswith(self.path_prefix):
            return s3_key[len(self.path_prefix):]
        return s3_key

    async def put_object(self, key: str, data: bytes, content_type: Optional[str] = None) -> int:
        """Write an object, overwriting any existing object at that key.

        Args:
            key (str): Key of the object
            data (bytes): Content of the object
            content_type (str, optional): Object mimetype

        Returns:
            int: The object size in bytes
        """
        s3_key = self.to_s3_key(key)
        client = await self._get_client()
        async with self._translate_errors(key):
            await client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=data,
                ContentType=content_type or DEFAULT_MIMETYPE)
        logging.info(f"File uploaded path : {self.bucket}/{s3_key}")
        return len(data)

    async def create_folder(self, key: str) -> str:
        """Write a zero-byte folder marker.

        Args:
            key (str): Key of the folder, a trailing slash is added if missing

        Returns:
            str: The folder marker key
        """
        folder_key = to_folder_key(key)
        await self.put_object(folder_key, b"", FOLDER_MIMETYPE)
        return folder_key

    async def head_object(self, key: str) -> Optional[dict]:
        """Get the object metadata, None if the object does not exist.

        Args:
            key (str): Key of the object

        Returns:
            dict: The HEAD response, None when not found
        """
        client = await self._get_client()
        try:
            async with self._translate_errors(key):
                return await client.head_object(Bucket=self.bucket, Key=self.to_s3_key(key))
        except NotFoundError:
            return None

    async def object_exists(self, key: str) -> bool:
        return await self.head_object(key) is not None

    async def prefix_exists(self, prefix: str) -> bool:
        """Check at least one object is stored under a prefix."""
        page = await self.list_page(prefix, max_keys=1)
        return len(page.objects) > 0

    async def presigned_url(self, key: str) -> str:
        """Make a temporary download URL for an existing object.

        Args:
            key (str): Key of the object

        Raises:
            NotFoundError: When the object does not exist

        Returns:
            str: The signed URL
        """
        if await self.head_object(key) is None:
            raise NotFoundError(f"File {key} does not exist")
        client = await self._get_client()
        async with self._translate_errors(key):
            return await client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": self.to_s3_key(key)},
                ExpiresIn=self.download_url_ttl)

    async def delete_object(self, key: str) -> str:
        """Delete a single object, deleting a missing object succeeds.

        Args:
            key (str): Key of the object

        Returns:
            str: The deleted key
        """
        s3_key = self.to_s3_key(key)
        client = await self._get_client()
        async with self._translate_errors(key):
            await client.delete_object(Bucket=self.bucket, Key=s3_key)
        logging.info(f"File deleted path : {self.bucket}/{s3_key}")
        return key

    async def list_page(self, prefix: str, continuation_token: Optional[str] = None, max_keys: int = 1000) -> ObjectPage:
        """List one page of the objects under a prefix.

        Args:
            prefix (str): Prefix of the keys
            continuation_token (str, optional): Token returned by the previous page
            max_keys (int, optional): Page size, at most 1000

        Returns:
            ObjectPage: The objects with keys relative to the path prefix, and the pagination state
        """
        params = {
            "Bucket": self.bucket,
            "Prefix": self.to_s3_key(prefix),
            "MaxKeys": max_keys,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        client = await self._get_client()
        async with self._translate_errors(prefix):
            res = await client.list_objects_v2(**params)
        objects = [
            ObjectSummary(
                key=self.from_s3_key(content["Key"]),
                size=content.get("Size") or 0,
                last_modified=content.get("LastModified"))
            for content in res.get("Contents", [])
            if content.get("Key")
        ]
        truncated = bool(res.get("IsTruncated", False))
        return ObjectPage(
            objects=objects,
            truncated=truncated,
            next_token=res.get("NextContinuationToken") if truncated else None)

    async def delete_batch(self, keys: List[str]) -> List[str]:
        """Delete several objects, in requests of at most MAX_DELETE_BATCH keys.

        Args:
            keys (List[str]): Keys of the objects

        Returns:
            List[str]: The keys that could not be deleted
        """
        failed = []
        client = await self._get_client()
        for start in range(0, len(keys), MAX_DELETE_BATCH):
            batch = keys[start:start + MAX_DELETE_BATCH]
            async with self._translate_errors(batch[0]):
                res = await client.delete_objects(
                    Bucket=self.bucket,
                    Delete={
                        "Objects": [{"Key": self.to_s3_key(key)} for key in batch],
                        "Quiet": True,
                    })
            for error in res.get("Errors", []):
                failed_key = self.from_s3_key(error.get("Key", ""))
                logging.warning(f"File not deleted path : {self.bucket}/{error.get('Key')} ({error.get('Code')})")
                failed.append(failed_key)
            logging.info(f"Files deleted : {len(batch) - len(res.get('Errors', []))} under {self.bucket}/{self.path_prefix}")
        return failed

    async def copy_object(self, source_key: str, destination_key: str) -> str:
        """Copy an object server side, in the same bucket.

        Args:
            source_key (str): Key of the object to copy
            destination_key (str): Destination key

        Raises:
            NotFoundError: When the source does not exist

        Returns:
            str: The destination key
        """
        client = await self._get_client()
        async with self._translate_errors(source_key):
            await client.copy_object(
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": self.to_s3_key(source_key)},
                Key=self.to_s3_key(destination_key))
        logging.info(f"File copied path : {self.bucket}/{self.to_s3_key(destination_key)}")
        return destination_key

    async def close(self):
        """Release the S3 client, a new one is created on next use."""
        async with self._lock:
            if self._exit_stack is not None:
                await self._exit_stack.aclose()
            self._exit_stack = None
            self._client = None

    #
    # Private methods
    #

    async def _get_client(self) -> Any:
        """Get the shared S3 client, creating it on first use.

        Raises:
            StoreUnavailableError: When the service is not configured
        """
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is None:
                if not self.is_configured():
                    raise StoreUnavailableError("S3 is not configured. Check AWS_* environment variables.")
                exit_stack = AsyncExitStack()
                self._client = await exit_stack.enter_async_context(self._create_client())
                self._exit_stack = exit_stack
        return self._client

    def _create_client(self):
        """Create an S3 client using the provided credentials and endpoint URL.

        Returns:
            Any: The S3 client context manager.
        """
        settings = {
            'payload_signing_enabled': False,
            'use_accelerate_endpoint': False,
            'addressing_style': 'path'
        }
        if not self.with_checksums:
            # Completely disable checksums for S3-compatible services that don't support them
            settings['checksum_mode'] = 'DISABLED'
            settings['request_checksum_calculation'] = 'when_required'
            settings['response_checksum_validation'] = 'when_required'
        config = Config(
            s3=settings,
            signature_version='s3v4',
            disable_request_compression=True
        )

        session = get_session()
        return session.create_client(
            's3',
            region_name=self.region,
            endpoint_url=self.s3_endpoint_url,
            aws_secret_access_key=self.s3_secret_access_key,
            aws_access_key_id=self.s3_access_key_id,
            config=config)

    @asynccontextmanager
    async def _translate_errors(self, key: str):
        """Map botocore errors to the files errors."""
        try:
            yield
        except ClientError as e:
            error = e.response.get("Error", {})
            if error.get("Code") in NOT_FOUND_CODES:
                raise NotFoundError(f"File {key} does not exist") from e
            raise StoreUnavailableError(f"Object store error on {key}: {error.get('Code')}") from e
        except BotoCoreError as e:
            raise StoreUnavailableError(f"Object store unavailable: {e}") from e
