"""Programmatic API for OSS uploads."""

import logging
import math
import time
from pathlib import Path
from typing import Any, List, Optional, Union

from .checkpoint import CheckpointStore
from .exceptions import UploaderError, ValidationError
from .models import CheckpointInfo, StorageConfig, UploadOptions, UploadResult
from .retry import RetryPolicy
from .s3_client import S3ObjectStore
from .store import ObjectStore
from .uploader import ProgressCallback, ResumableUploader

logger = logging.getLogger(__name__)


def normalize_prefix(prefix: Optional[str]) -> str:
    """Return ``prefix`` ending with exactly one '/' (or '' when empty)."""
    if not prefix:
        return ""
    prefix = prefix.strip().lstrip("/")
    if not prefix:
        return ""
    return prefix.rstrip("/") + "/"


def build_object_key(
    local_path: Union[str, Path],
    prefix: Optional[str] = None,
    keep_original_name: bool = False,
    now: Optional[float] = None,
) -> str:
    """Derive the destination key for ``local_path``.

    The file name gets a ``<unix seconds>_`` prefix unless
    ``keep_original_name`` is set, and the destination prefix is prepended.
    """
    name = Path(local_path).name
    if not name:
        raise ValidationError("local_path", str(local_path), "has no file name")
    if not keep_original_name:
        timestamp = int(now if now is not None else time.time())
        name = f"{timestamp}_{name}"
    return f"{normalize_prefix(prefix)}{name}"


class OssUploader:
    """High-level API tying configuration, object store and uploader together."""

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        store: Optional[ObjectStore] = None,
        sleep=time.sleep,
    ):
        """Initialize the uploader.

        Args:
            config: Storage settings (read from OSS_* env vars when omitted)
            store: Object store to use instead of the boto3 client
            sleep: Function used to wait between retries
        """
        self._config = config
        self._store = store
        self.sleep = sleep

    @property
    def config(self) -> StorageConfig:
        if self._config is None:
            self._config = StorageConfig.from_env()
        return self._config

    @property
    def store(self) -> ObjectStore:
        if self._store is None:
            self._store = S3ObjectStore(self.config)
        return self._store

    def _bucket_name(self) -> Optional[str]:
        if self._config is not None:
            return self._config.bucket
        return getattr(self._store, "bucket", None)

    def create_uploader(
        self,
        local_path: Union[str, Path],
        options: Optional[UploadOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ResumableUploader:
        """Build a :class:`ResumableUploader` for ``local_path``."""
        options = options or UploadOptions()
        object_key = options.object_key or build_object_key(
            local_path, options.prefix, options.keep_original_name
        )
        return ResumableUploader(
            self.store,
            file_path=str(local_path),
            object_key=object_key,
            chunk_size=options.chunk_size,
            simple_threshold=options.simple_threshold,
            resumable=options.resumable,
            checkpoint_store=CheckpointStore(options.checkpoint_dir),
            bucket=self._bucket_name(),
            part_retry=RetryPolicy(
                max_retries=options.part_retries,
                base_delay=options.base_delay,
                max_delay=options.max_delay,
                sleep=self.sleep,
            ),
            operation_retry=RetryPolicy(
                max_retries=options.max_retries,
                base_delay=options.base_delay,
                max_delay=options.max_delay,
                sleep=self.sleep,
            ),
            progress_callback=progress_callback,
        )

    def upload_file(
        self,
        local_path: Union[str, Path],
        options: Optional[UploadOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """Upload a local file.

        Args:
            local_path: Local file path
            options: Naming, chunking and retry options
            progress_callback: Called with an integer percentage

        Returns:
            Details of the uploaded object
        """
        uploader = self.create_uploader(local_path, options, progress_callback)
        return uploader.upload()

    # Checkpoint management
    @staticmethod
    def list_checkpoints(checkpoint_dir: Union[str, Path]) -> List[CheckpointInfo]:
        """Summarize pending checkpoints in ``checkpoint_dir``."""
        infos = []
        for path, checkpoint in CheckpointStore(checkpoint_dir).list_checkpoints():
            infos.append(
                CheckpointInfo(
                    checkpoint_id=path.stem,
                    object_key=checkpoint.object_key,
                    source_path=checkpoint.source_path,
                    bucket=checkpoint.bucket,
                    session_id=checkpoint.session_id,
                    file_size=checkpoint.file_size,
                    chunk_size=checkpoint.chunk_size,
                    completed_parts=len(checkpoint.completed_parts),
                    total_parts=math.ceil(checkpoint.file_size / checkpoint.chunk_size),
                    created_at=checkpoint.created_at,
                    updated_at=checkpoint.updated_at,
                )
            )
        return infos

    def discard_checkpoint(
        self, checkpoint_dir: Union[str, Path], checkpoint_id: str, abort_remote: bool = True
    ) -> bool:
        """Remove a checkpoint and abort the multipart session it references.

        Returns:
            False if no readable checkpoint has that ID
        """
        checkpoints = CheckpointStore(checkpoint_dir)
        path = checkpoints.path_for_id(checkpoint_id)
        checkpoint = checkpoints.load(path)
        if checkpoint is None:
            return False

        if abort_remote:
            try:
                self.store.abort_multipart(checkpoint.object_key, checkpoint.session_id)
            except UploaderError as e:
                logger.warning(f"Could not abort upload {checkpoint.session_id}: {e}")
        checkpoints.remove(path)
        logger.info(f"Discarded checkpoint {checkpoint_id} ({checkpoint.object_key})")
        return True

    def cleanup_abandoned_uploads(self, max_age_hours: int = 24) -> int:
        """Abort multipart uploads older than ``max_age_hours`` in the bucket."""
        store = self.store
        if not isinstance(store, S3ObjectStore):
            raise UploaderError("Cleanup is only supported for S3-compatible stores")
        return store.cleanup_abandoned_uploads(max_age_hours)


# Convenience functions for quick usage
def upload_file(
    local_path: Union[str, Path],
    bucket: Optional[str] = None,
    region: Optional[str] = None,
    access_key_id: Optional[str] = None,
    access_key_secret: Optional[str] = None,
    progress_callback: Optional[ProgressCallback] = None,
    **options: Any,
) -> UploadResult:
    """Quick function to upload a file."""
    config = StorageConfig.from_env(
        bucket=bucket,
        region=region,
        access_key_id=access_key_id,
        access_key_secret=access_key_secret,
    )
    return OssUploader(config).upload_file(
        local_path, UploadOptions(**options), progress_callback
    )
