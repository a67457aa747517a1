"""
S3 client for attachment storage.
"""
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from typing import Optional, BinaryIO, Iterable, Iterator, List

from core.exceptions import TransientError
from core.logger import logger

# S3 DeleteObjects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000
LIST_PAGE_SIZE = 1000


def chunked(keys: Iterable[str], size: int = DELETE_BATCH_SIZE) -> Iterator[List[str]]:
    """Yield lists of at most ``size`` keys."""
    batch: List[str] = []
    for key in keys:
        batch.append(key)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


class S3Client:
    """S3 client for the public issue-images bucket."""

    def __init__(
        self,
        bucket_name: str,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: str = "us-east-1",
        endpoint_url: Optional[str] = None,  # For S3-compatible services (MinIO, etc.)
        public_base_url: Optional[str] = None,
        auto_create_bucket: bool = True
    ):
        """
        Initialize S3 client.

        Args:
            bucket_name: Bucket holding report and completion photos
            aws_access_key_id: AWS access key (or from env)
            aws_secret_access_key: AWS secret key (or from env)
            region_name: AWS region
            endpoint_url: Custom endpoint URL (for MinIO, etc.)
            public_base_url: Base URL objects are publicly served from
            auto_create_bucket: Create the bucket if it doesn't exist
        """
        self.bucket_name = bucket_name
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

        client_kwargs = {"region_name": region_name}
        if aws_access_key_id:
            client_kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            client_kwargs["aws_secret_access_key"] = aws_secret_access_key
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url

        self.s3_client = boto3.client("s3", **client_kwargs)
        if auto_create_bucket:
            self._ensure_bucket_exists()
        logger.info(f"S3 client initialized (bucket: {bucket_name})")

    def _ensure_bucket_exists(self):
        """Ensure bucket exists, create if it doesn't."""
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code not in ("404", "NoSuchBucket"):
                logger.error(f"Error checking bucket {self.bucket_name}: {e}")
                raise
            if self.region_name == "us-east-1":
                self.s3_client.create_bucket(Bucket=self.bucket_name)
            else:
                self.s3_client.create_bucket(
                    Bucket=self.bucket_name,
                    CreateBucketConfiguration={"LocationConstraint": self.region_name}
                )
            logger.info(f"Created bucket: {self.bucket_name}")

    def upload_fileobj(
        self,
        file_obj: BinaryIO,
        key: str,
        content_type: Optional[str] = None
    ) -> str:
        """
        Upload a file-like object.

        Args:
            file_obj: File-like object (BytesIO, SpooledTemporaryFile, ...)
            key: Object key
            content_type: MIME type

        Returns:
            The object key
        """
        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type
        try:
            self.s3_client.upload_fileobj(file_obj, self.bucket_name, key, ExtraArgs=extra_args)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {key} to S3: {e}", exc_info=True)
            raise TransientError("Could not upload the photo. Please try again.") from e
        logger.info(f"Uploaded s3://{self.bucket_name}/{key}")
        return key

    def list_objects(self, prefix: str = "", page_size: int = LIST_PAGE_SIZE) -> List[str]:
        """
        List every key under ``prefix``, following pagination.

        Keys are flat in S3, so this covers nested "folders" too.
        """
        keys = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(
                Bucket=self.bucket_name,
                Prefix=prefix,
                PaginationConfig={"PageSize": page_size}
            ):
                for obj in page.get("Contents") or []:
                    key = obj.get("Key")
                    # Zero-byte "folder" placeholders end with a slash
                    if key and not key.endswith("/"):
                        keys.append(key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list S3 objects under '{prefix}': {e}", exc_info=True)
            raise TransientError("Attachment storage is unavailable") from e
        return keys

    def delete_objects(self, keys: Iterable[str]) -> int:
        """
        Delete keys in batches of at most 1000.

        Returns:
            Number of keys deleted
        """
        deleted = 0
        for batch in chunked(keys):
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True}
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Failed to delete batch of {len(batch)} objects: {e}", exc_info=True)
                raise TransientError("Attachment storage is unavailable") from e
            errors = response.get("Errors") or []
            if errors:
                logger.error(f"S3 refused to delete {len(errors)} object(s): {errors[:5]}")
                raise TransientError(f"Failed to delete {len(errors)} attachment(s)")
            deleted += len(batch)
        logger.info(f"Deleted {deleted} object(s) from s3://{self.bucket_name}")
        return deleted

    def get_public_url(self, key: str) -> str:
        """Public URL of an object in the public bucket."""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.{self.region_name}.amazonaws.com/{key}"
