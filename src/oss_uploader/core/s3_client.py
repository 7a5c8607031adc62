"""S3-compatible object store client (Alibaba OSS, AWS S3, MinIO)."""

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import InsufficientStorageError, SessionNotFoundError, TransportError
from .models import CompletedPart, StorageConfig
from .store import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class S3ObjectStore(ObjectStore):
    """Object store backed by boto3.

    Botocore's own retries are switched off: retrying is the job of
    :class:`~oss_uploader.core.retry.RetryPolicy`.
    """

    def __init__(
        self,
        config: StorageConfig,
        connect_timeout: int = 60,
        read_timeout: int = 120,
    ):
        """Initialize the S3 client.

        Args:
            config: Credentials, bucket, region and endpoint
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
        """
        self.config = config
        self.bucket = config.bucket
        self.endpoint_url = config.resolve_endpoint()

        self.session = boto3.Session(
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.access_key_secret,
            region_name=config.signing_region,
        )
        self.botocore_cfg = Config(
            region_name=config.signing_region,
            retries={"max_attempts": 1, "mode": "standard"},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            s3={"addressing_style": self.addressing_style},
        )
        self.s3 = self.session.client(
            "s3", config=self.botocore_cfg, endpoint_url=self.endpoint_url
        )

    @property
    def addressing_style(self) -> str:
        # OSS only serves virtual-hosted requests; custom endpoints (MinIO) want paths
        if self.config.endpoint_url and "aliyuncs.com" not in self.config.endpoint_url:
            return "path"
        return "virtual"

    @staticmethod
    def is_insufficient_storage_error(exc: Exception) -> bool:
        """Return True if the exception wraps a 507 Insufficient Storage response."""
        if isinstance(exc, ClientError):
            meta = exc.response.get("ResponseMetadata", {})
            return meta.get("HTTPStatusCode") == 507
        return False

    @staticmethod
    def is_no_such_upload_error(exc: Exception) -> bool:
        """Return True if the exception reports a missing multipart upload."""
        if isinstance(exc, ClientError):
            err = exc.response.get("Error", {})
            return err.get("Code") == "NoSuchUpload"
        return False

    def _call(
        self,
        operation: str,
        func: Callable[[], T],
        session_id: Optional[str] = None,
    ) -> T:
        """Run a boto3 call and translate its failures into uploader errors."""
        try:
            return func()
        except ClientError as exc:
            if self.is_insufficient_storage_error(exc):
                logger.error(f"{operation}: received 507 Insufficient Storage")
                raise InsufficientStorageError(
                    "Server reported insufficient storage"
                ) from exc
            if session_id and self.is_no_such_upload_error(exc):
                raise SessionNotFoundError(session_id, operation=operation) from exc
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            raise TransportError(
                f"{operation} failed: {exc}", status_code=status, operation=operation
            ) from exc
        except BotoCoreError as exc:
            raise TransportError(f"{operation} failed: {exc}", operation=operation) from exc

    def object_url(self, key: str) -> str:
        quoted = quote(key, safe="/")
        if self.endpoint_url:
            parsed = urlparse(self.endpoint_url)
            if self.addressing_style == "path":
                return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{quoted}"
            return f"{parsed.scheme}://{self.bucket}.{parsed.netloc}/{quoted}"
        return f"https://{self.bucket}.s3.{self.config.signing_region}.amazonaws.com/{quoted}"

    def simple_put(self, key: str, path: str, content_type: str) -> str:
        logger.info(f"Uploading {path} to {self.bucket}/{key}")

        def put() -> Dict[str, Any]:
            with open(path, "rb") as body:
                return self.s3.put_object(
                    Bucket=self.bucket, Key=key, Body=body, ContentType=content_type
                )

        self._call("put_object", put)
        logger.info("Upload completed successfully")
        return self.object_url(key)

    def initiate_multipart(self, key: str, content_type: str) -> str:
        resp = self._call(
            "create_multipart_upload",
            lambda: self.s3.create_multipart_upload(
                Bucket=self.bucket, Key=key, ContentType=content_type
            ),
        )
        upload_id = resp["UploadId"]
        logger.info(f"Initiated new multipart upload: UploadId={upload_id}")
        return upload_id

    def upload_part(self, key: str, session_id: str, part_number: int, data: bytes) -> str:
        resp = self._call(
            "upload_part",
            lambda: self.s3.upload_part(
                Bucket=self.bucket,
                Key=key,
                PartNumber=part_number,
                UploadId=session_id,
                Body=data,
            ),
            session_id=session_id,
        )
        return resp["ETag"]

    def complete_multipart(
        self, key: str, session_id: str, parts: List[CompletedPart]
    ) -> str:
        parts_sorted = [
            {"PartNumber": p.part_number, "ETag": p.etag}
            for p in sorted(parts, key=lambda p: p.part_number)
        ]
        logger.info("Sending complete_multipart_upload request")
        self._call(
            "complete_multipart_upload",
            lambda: self.s3.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=session_id,
                MultipartUpload={"Parts": parts_sorted},
            ),
            session_id=session_id,
        )
        return self.object_url(key)

    def abort_multipart(self, key: str, session_id: str) -> None:
        self._call(
            "abort_multipart_upload",
            lambda: self.s3.abort_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=session_id
            ),
            session_id=session_id,
        )
        logger.info(f"Aborted multipart upload {session_id} for {key}")

    def list_multipart_uploads(self) -> List[Dict[str, Any]]:
        """List open multipart uploads in the bucket."""
        uploads = []
        paginator = self.s3.get_paginator("list_multipart_uploads")
        for page in self._call(
            "list_multipart_uploads", lambda: list(paginator.paginate(Bucket=self.bucket))
        ):
            for upload in page.get("Uploads", []):
                uploads.append(
                    {
                        "key": upload["Key"],
                        "upload_id": upload["UploadId"],
                        "initiated": upload["Initiated"],
                    }
                )
        return uploads

    def cleanup_abandoned_uploads(self, max_age_hours: int = 24) -> int:
        """Abort multipart uploads older than ``max_age_hours``.

        Returns:
            Number of uploads cleaned up
        """
        cutoff_time = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(
            hours=max_age_hours
        )
        cleaned_count = 0

        for upload in self.list_multipart_uploads():
            if upload["initiated"] >= cutoff_time:
                continue
            try:
                self.abort_multipart(upload["key"], upload["upload_id"])
                cleaned_count += 1
            except TransportError as e:
                logger.warning(f"Failed to clean up upload {upload['upload_id']}: {e}")

        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} abandoned uploads from {self.bucket}")
        return cleaned_count
