"""
API routes for the OSS Uploader server.

Every route requires the server API key. Uploads run synchronously in
FastAPI's threadpool and are limited to files under the configured upload
root; checkpoints live in the server's own checkpoint directory.
"""

import secrets
from pathlib import Path
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.api import OssUploader
from ..core.exceptions import (
    ConfigurationError,
    FileAccessError,
    InsufficientStorageError,
    SourceFileNotFoundError,
    TransportError,
    UploadFailedError,
    UploaderError,
    ValidationError,
)
from ..core.models import (
    DeleteResponse,
    ListCheckpointsResponse,
    OssRegion,
    RegionInfo,
    ServerSettings,
    StorageConfig,
    UploadRequest,
    UploadResult,
)
from ..core.s3_client import S3ObjectStore
from ..core.store import ObjectStore

# Security
security = HTTPBearer(auto_error=False)

router = APIRouter(
    prefix="",
    tags=["Uploads"],
    responses={
        400: {"description": "Invalid request"},
        401: {"description": "Authentication failed"},
        403: {"description": "Path outside the upload root"},
        500: {"description": "Internal server error"},
    },
)


StoreFactory = Callable[[StorageConfig], ObjectStore]


def get_settings() -> ServerSettings:
    """Return the server settings."""
    return ServerSettings.from_env()


def get_store_factory() -> StoreFactory:
    """Return the factory that builds the object store for a request."""
    return S3ObjectStore


async def get_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    api_key_header: Optional[str] = Header(None, alias="X-API-Key"),
    settings: ServerSettings = Depends(get_settings),
) -> str:
    """Check the API key sent as Bearer token or X-API-Key header."""
    if not settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server API key not configured. Set OSS_UPLOADER_API_KEY.",
        )

    supplied = None
    if credentials and credentials.credentials:
        supplied = credentials.credentials
    elif api_key_header:
        supplied = api_key_header

    if not supplied:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Use Authorization header or X-API-Key header.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(supplied.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return supplied


def resolve_upload_path(local_path: str, upload_root: Optional[Path]) -> Path:
    """Resolve ``local_path`` against the upload root, refusing anything outside it.

    Relative paths are taken relative to the root. Symlinks are resolved
    before the check.
    """
    if upload_root is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Server uploads are disabled. Set OSS_UPLOADER_UPLOAD_ROOT.",
        )
    root = Path(upload_root).resolve()
    candidate = (root / local_path).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Path is outside the upload root: {local_path}",
        )
    return candidate


def error_status(exc: Exception) -> int:
    """Map an uploader error (or the cause of a failed upload) to an HTTP status."""
    if isinstance(exc, UploadFailedError) and exc.root_cause is not None:
        exc = exc.root_cause
    if isinstance(exc, SourceFileNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, ConfigurationError, FileAccessError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, InsufficientStorageError):
        return status.HTTP_507_INSUFFICIENT_STORAGE
    if isinstance(exc, TransportError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "/uploads",
    response_model=UploadResult,
    status_code=status.HTTP_201_CREATED,
    summary="Upload file",
    description="Upload a file from the server's upload root. Large files use resumable multipart upload.",
)
def create_upload(
    request: UploadRequest,
    api_key: str = Depends(get_api_key),
    settings: ServerSettings = Depends(get_settings),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> UploadResult:
    """Upload a file under the server's upload root."""
    local_path = resolve_upload_path(request.local_path, settings.upload_root)
    options = request.options.model_copy(update={"checkpoint_dir": settings.checkpoint_dir})
    try:
        config = StorageConfig.from_env(
            bucket=request.bucket,
            region=request.region,
            access_key_id=request.access_key_id,
            access_key_secret=request.access_key_secret,
            endpoint_url=request.endpoint_url,
        )
        api = OssUploader(config, store=store_factory(config))
        return api.upload_file(local_path, options)
    except UploaderError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))


@router.get(
    "/checkpoints",
    response_model=ListCheckpointsResponse,
    summary="List pending uploads",
    description="List checkpoints of uploads that can be resumed.",
)
def list_checkpoints(
    api_key: str = Depends(get_api_key),
    settings: ServerSettings = Depends(get_settings),
) -> ListCheckpointsResponse:
    """List pending checkpoints."""
    infos = OssUploader.list_checkpoints(settings.checkpoint_dir)
    return ListCheckpointsResponse(checkpoints=infos, total_count=len(infos))


@router.delete(
    "/checkpoints/{checkpoint_id}",
    response_model=DeleteResponse,
    summary="Discard pending upload",
    description="Remove a checkpoint. The remote multipart session is aborted unless abort_remote is false.",
)
def delete_checkpoint(
    checkpoint_id: str,
    abort_remote: bool = True,
    api_key: str = Depends(get_api_key),
    settings: ServerSettings = Depends(get_settings),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> DeleteResponse:
    """Discard a checkpoint."""
    if not all(c in "0123456789abcdef" for c in checkpoint_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Checkpoint {checkpoint_id} not found",
        )
    try:
        if abort_remote:
            config = StorageConfig.from_env()
            api = OssUploader(config, store=store_factory(config))
        else:
            api = OssUploader()
        found = api.discard_checkpoint(
            settings.checkpoint_dir, checkpoint_id, abort_remote=abort_remote
        )
    except UploaderError as e:
        raise HTTPException(status_code=error_status(e), detail=str(e))

    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Checkpoint {checkpoint_id} not found",
        )
    return DeleteResponse(success=True, message=f"Discarded checkpoint {checkpoint_id}")


@router.get(
    "/regions",
    response_model=List[RegionInfo],
    summary="List regions",
    description="Get the known OSS regions and their endpoints.",
)
async def list_regions(api_key: str = Depends(get_api_key)) -> List[RegionInfo]:
    """List OSS regions."""
    return [RegionInfo(id=region.value, endpoint=region.endpoint) for region in OssRegion]
