"""
OSS Uploader - resumable multipart uploads to Alibaba OSS and other S3-compatible stores.

This package provides:
- Python SDK with checkpoint-based resume and layered retries
- CLI tool for uploads and checkpoint housekeeping
- FastAPI server for REST API access
"""

__version__ = "1.0.0"
__author__ = "OSS Uploader Team"

from .core.api import OssUploader, build_object_key, upload_file
from .core.checkpoint import CheckpointStore
from .core.exceptions import (
    ConfigurationError,
    FileAccessError,
    TransportError,
    UploaderError,
    UploadFailedError,
    ValidationError,
)
from .core.models import (
    Checkpoint,
    OssRegion,
    StorageConfig,
    UploadOptions,
    UploadResult,
)
from .core.retry import RetryPolicy
from .core.s3_client import S3ObjectStore
from .core.store import ObjectStore
from .core.uploader import ResumableUploader, UploadState

__all__ = [
    # Core classes
    "OssUploader",
    "ResumableUploader",
    "UploadState",
    "CheckpointStore",
    "RetryPolicy",
    "ObjectStore",
    "S3ObjectStore",
    # Models
    "Checkpoint",
    "OssRegion",
    "StorageConfig",
    "UploadOptions",
    "UploadResult",
    # Exceptions
    "UploaderError",
    "ValidationError",
    "ConfigurationError",
    "FileAccessError",
    "TransportError",
    "UploadFailedError",
    # Convenience functions
    "build_object_key",
    "upload_file",
    # Metadata
    "__version__",
    "__author__",
]
