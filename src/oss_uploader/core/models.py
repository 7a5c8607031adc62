"""
Pydantic models for OSS Uploader.

These models cover configuration, the persisted checkpoint document, upload
results and the request/response bodies of the REST server.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * 1024

MIN_CHUNK_SIZE = 100 * KIB
DEFAULT_CHUNK_SIZE = 1 * MIB
SIMPLE_UPLOAD_THRESHOLD = 1 * MIB
MAX_RETRIES_CAP = 5

DEFAULT_CHECKPOINT_DIR = Path.home() / ".cache" / "oss-uploader" / "checkpoints"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OssRegion(str, Enum):
    """Alibaba Cloud OSS regions."""

    # China regions
    CN_HANGZHOU = "oss-cn-hangzhou"
    CN_SHANGHAI = "oss-cn-shanghai"
    CN_QINGDAO = "oss-cn-qingdao"
    CN_BEIJING = "oss-cn-beijing"
    CN_ZHANGJIAKOU = "oss-cn-zhangjiakou"
    CN_HUHEHAOTE = "oss-cn-huhehaote"
    CN_WULANCHABU = "oss-cn-wulanchabu"
    CN_SHENZHEN = "oss-cn-shenzhen"
    CN_HEYUAN = "oss-cn-heyuan"
    CN_GUANGZHOU = "oss-cn-guangzhou"
    CN_CHENGDU = "oss-cn-chengdu"
    CN_HONGKONG = "oss-cn-hongkong"

    # International regions
    US_WEST_1 = "oss-us-west-1"
    US_EAST_1 = "oss-us-east-1"
    AP_SOUTHEAST_1 = "oss-ap-southeast-1"
    AP_SOUTHEAST_2 = "oss-ap-southeast-2"
    AP_SOUTHEAST_3 = "oss-ap-southeast-3"
    AP_SOUTHEAST_5 = "oss-ap-southeast-5"
    AP_NORTHEAST_1 = "oss-ap-northeast-1"
    AP_SOUTH_1 = "oss-ap-south-1"
    EU_CENTRAL_1 = "oss-eu-central-1"
    EU_WEST_1 = "oss-eu-west-1"
    ME_EAST_1 = "oss-me-east-1"

    @property
    def endpoint(self) -> str:
        return f"https://{self.value}.aliyuncs.com"

    @property
    def signing_region(self) -> str:
        """Region name used for request signing (without the ``oss-`` prefix)."""
        return self.value[len("oss-"):]

    @classmethod
    def normalize(cls, region: str) -> str:
        """Normalize a region identifier, accepting ``cn-hangzhou`` style names."""
        if not region:
            return region
        normalized = region.strip().lower()
        known = {r.value for r in cls}
        if normalized not in known and f"oss-{normalized}" in known:
            return f"oss-{normalized}"
        return normalized


# Configuration Models
class StorageConfig(BaseModel):
    """Object store connection settings."""

    access_key_id: str = Field(..., min_length=1, description="Access key ID")
    access_key_secret: str = Field(..., min_length=1, description="Access key secret")
    bucket: str = Field(..., min_length=1, description="Destination bucket")
    region: str = Field(
        OssRegion.CN_HANGZHOU.value,
        description="OSS region (e.g. oss-cn-hangzhou) or any S3 region name",
        examples=["oss-cn-hangzhou"],
    )
    endpoint_url: Optional[str] = Field(
        None, description="Explicit endpoint URL (derived for OSS regions when omitted)"
    )

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Normalize region identifier."""
        return OssRegion.normalize(v)

    @property
    def oss_region(self) -> Optional[OssRegion]:
        try:
            return OssRegion(self.region)
        except ValueError:
            return None

    @property
    def signing_region(self) -> str:
        oss_region = self.oss_region
        return oss_region.signing_region if oss_region else self.region

    def resolve_endpoint(self) -> Optional[str]:
        """Return the endpoint to talk to, or None to let boto3 pick (AWS)."""
        if self.endpoint_url:
            return self.endpoint_url
        oss_region = self.oss_region
        return oss_region.endpoint if oss_region else None

    @classmethod
    def from_env(cls, **overrides: Any) -> "StorageConfig":
        """Build a config from OSS_* environment variables plus explicit overrides.

        Explicit overrides that are ``None`` fall back to the environment.
        """
        values = {
            "access_key_id": os.getenv("OSS_ACCESS_KEY_ID"),
            "access_key_secret": os.getenv("OSS_ACCESS_KEY_SECRET"),
            "bucket": os.getenv("OSS_BUCKET"),
            "region": os.getenv("OSS_REGION", OssRegion.CN_HANGZHOU.value),
            "endpoint_url": os.getenv("OSS_ENDPOINT"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        if not values["access_key_id"] or not values["access_key_secret"]:
            raise ConfigurationError(
                "Object store credentials required. Set OSS_ACCESS_KEY_ID and "
                "OSS_ACCESS_KEY_SECRET environment variables or pass them explicitly."
            )
        if not values["bucket"]:
            raise ConfigurationError(
                "Bucket required. Set OSS_BUCKET or pass the bucket explicitly."
            )
        return cls(**values)


class UploadOptions(BaseModel):
    """Per-upload behaviour: naming, chunking and retry budgets."""

    prefix: Optional[str] = Field(
        None, description="Destination prefix (a trailing '/' is added)", examples=["docs/"]
    )
    keep_original_name: bool = Field(
        False, description="Do not prepend a timestamp to the file name"
    )
    object_key: Optional[str] = Field(
        None, description="Explicit object key; overrides prefix and naming"
    )
    max_retries: int = Field(
        3, description="Whole-operation retries after the first attempt (0-5)"
    )
    part_retries: int = Field(3, description="Retries per chunk after the first try (0-5)")
    resumable: bool = Field(True, description="Persist a checkpoint to allow resuming")
    chunk_size: int = Field(
        DEFAULT_CHUNK_SIZE,
        ge=MIN_CHUNK_SIZE,
        description="Chunk size for multipart upload in bytes (minimum 100 KiB)",
    )
    simple_threshold: int = Field(
        SIMPLE_UPLOAD_THRESHOLD,
        ge=0,
        description="Files smaller than this are uploaded with a single put",
    )
    base_delay: float = Field(1.0, ge=0, description="First backoff delay in seconds")
    max_delay: float = Field(30.0, ge=0, description="Backoff delay cap in seconds")
    checkpoint_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("OSS_UPLOAD_CHECKPOINT_DIR", str(DEFAULT_CHECKPOINT_DIR))
        ),
        description="Directory holding checkpoint files",
    )

    @field_validator("max_retries", "part_retries")
    @classmethod
    def clamp_retries(cls, v: int) -> int:
        """Clamp retry budgets to 0..5."""
        clamped = max(0, min(int(v), MAX_RETRIES_CAP))
        if clamped != v:
            logger.warning(f"Retry budget {v} clamped to {clamped}")
        return clamped


class ServerSettings(BaseModel):
    """Settings of the REST server, read from the server's environment."""

    api_key: Optional[str] = Field(
        None, description="Key clients must send as Bearer token or X-API-Key header"
    )
    upload_root: Optional[Path] = Field(
        None, description="Only files under this directory may be uploaded"
    )
    checkpoint_dir: Path = Field(
        DEFAULT_CHECKPOINT_DIR, description="Directory holding checkpoint files"
    )

    @classmethod
    def from_env(cls) -> "ServerSettings":
        """Build settings from OSS_UPLOADER_API_KEY, OSS_UPLOADER_UPLOAD_ROOT and
        OSS_UPLOAD_CHECKPOINT_DIR."""
        upload_root = os.getenv("OSS_UPLOADER_UPLOAD_ROOT")
        return cls(
            api_key=os.getenv("OSS_UPLOADER_API_KEY") or None,
            upload_root=Path(upload_root) if upload_root else None,
            checkpoint_dir=Path(
                os.getenv("OSS_UPLOAD_CHECKPOINT_DIR", str(DEFAULT_CHECKPOINT_DIR))
            ),
        )


# Checkpoint Models
class CompletedPart(BaseModel):
    """A part the object store has acknowledged."""

    part_number: int = Field(..., ge=1)
    etag: str


class Checkpoint(BaseModel):
    """Resumable state of one multipart session, persisted as JSON."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., description="Remote multipart upload ID")
    object_key: str
    content_fingerprint: str
    file_size: int = Field(..., ge=0)
    chunk_size: int = Field(..., gt=0)
    completed_parts: List[CompletedPart] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    source_path: Optional[str] = None
    bucket: Optional[str] = None

    @field_validator("completed_parts")
    @classmethod
    def unique_part_numbers(cls, v: List[CompletedPart]) -> List[CompletedPart]:
        """Keep one entry per part number; a later entry replaces an earlier one."""
        by_number: Dict[int, CompletedPart] = {}
        for part in v:
            by_number[part.part_number] = part
        if len(by_number) != len(v):
            logger.warning(
                f"Checkpoint listed {len(v) - len(by_number)} duplicate part(s); keeping the last of each"
            )
        return list(by_number.values())

    @property
    def completed_part_numbers(self) -> set:
        return {p.part_number for p in self.completed_parts}

    def record_part(self, part_number: int, etag: str) -> None:
        """Add or replace the entry for ``part_number``."""
        self.completed_parts = [
            p for p in self.completed_parts if p.part_number != part_number
        ]
        self.completed_parts.append(CompletedPart(part_number=part_number, etag=etag))
        self.updated_at = utcnow()

    def sorted_parts(self) -> List[CompletedPart]:
        return sorted(self.completed_parts, key=lambda p: p.part_number)


@dataclass
class UploadSession:
    """Identity of one logical upload attempt."""

    source_path: str
    object_key: str
    file_size: int
    chunk_size: int
    content_type: str = "application/octet-stream"
    content_fingerprint: Optional[str] = None


IDENTITY_FIELDS = ("object_key", "content_fingerprint", "file_size", "chunk_size")


def identity_matches(candidate: Any, expected: Any) -> bool:
    """Return True if two checkpoint-shaped records describe the same upload.

    Works on anything exposing ``object_key``, ``content_fingerprint``,
    ``file_size`` and ``chunk_size``, e.g. a :class:`Checkpoint` and an
    :class:`UploadSession`.
    """
    if candidate is None or expected is None:
        return False
    return all(
        getattr(candidate, name, None) == getattr(expected, name, None)
        for name in IDENTITY_FIELDS
    )


# Response Models
class UploadResult(BaseModel):
    """Outcome of a successful upload."""

    url: str = Field(..., description="URL of the uploaded object")
    origin_file_path: str = Field(..., description="Local file that was uploaded")
    object_key: str = Field(..., description="Destination object key")
    size: int = Field(..., description="Uploaded size in bytes")
    content_type: str = Field(..., description="MIME content type")
    timestamp: datetime = Field(default_factory=utcnow, description="Completion time")
    progress: int = Field(100, ge=0, le=100, description="Final progress percent")
    multipart: bool = Field(False, description="Whether multipart upload was used")
    resumed: Optional[bool] = Field(
        None, description="Whether a checkpoint was resumed (resumable mode only)"
    )
    existing_parts: Optional[int] = Field(
        None, description="Parts already uploaded when the upload resumed"
    )
    total_parts: Optional[int] = Field(None, description="Number of parts in the plan")
    attempts: int = Field(1, description="Whole-operation attempts used")


class CheckpointInfo(BaseModel):
    """Summary of a pending checkpoint."""

    checkpoint_id: str = Field(..., description="Checkpoint file stem")
    object_key: str
    source_path: Optional[str] = None
    bucket: Optional[str] = None
    session_id: str
    file_size: int
    chunk_size: int
    completed_parts: int
    total_parts: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class ListCheckpointsResponse(BaseModel):
    """Response for listing checkpoints."""

    checkpoints: List[CheckpointInfo]
    total_count: int


class RegionInfo(BaseModel):
    """OSS region information."""

    id: str = Field(..., description="Region identifier", examples=["oss-cn-hangzhou"])
    endpoint: str = Field(..., description="Endpoint URL")


class DeleteResponse(BaseModel):
    """Response for delete operations."""

    success: bool
    message: str


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type", examples=["ValidationError"])
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status", examples=["healthy"])
    version: str = Field(..., description="API version", examples=["1.0.0"])
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")


# Request Models
class UploadRequest(BaseModel):
    """Request model for uploading a file that lives on the server host."""

    local_path: str = Field(
        ..., min_length=1, description="Path of the file to upload, inside the server upload root"
    )
    bucket: Optional[str] = Field(None, description="Bucket (defaults to OSS_BUCKET)")
    region: Optional[str] = Field(None, description="Region (defaults to OSS_REGION)")
    access_key_id: Optional[str] = Field(None, description="Access key ID")
    access_key_secret: Optional[str] = Field(None, description="Access key secret")
    endpoint_url: Optional[str] = Field(None, description="Explicit endpoint URL")
    options: UploadOptions = Field(default_factory=UploadOptions)
