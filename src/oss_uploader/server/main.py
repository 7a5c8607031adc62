"""
FastAPI server for OSS Uploader.

Exposes resumable uploads and checkpoint housekeeping over REST with
OpenAPI documentation.
"""


import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core.models import HealthCheckResponse
from .routes import router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="OSS Uploader API",
        description="""
        REST API for resumable uploads to Alibaba OSS and other S3-compatible stores.

        - Upload files from the server's upload root (multipart with checkpoint-based resume for large files)
        - List and discard pending checkpoints
        - List known OSS regions

        ## Authentication

        All `/api/v1` routes require the key configured in `OSS_UPLOADER_API_KEY`,
        sent as `Authorization: Bearer <key>` or `X-API-Key: <key>`. Only files under
        `OSS_UPLOADER_UPLOAD_ROOT` can be uploaded; checkpoints are kept in
        `OSS_UPLOAD_CHECKPOINT_DIR`.

        ## Credentials

        Credentials come from the request body or from the server's
        `OSS_ACCESS_KEY_ID` / `OSS_ACCESS_KEY_SECRET` / `OSS_BUCKET` / `OSS_REGION`
        environment variables.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        license_info={
            "name": "MIT",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", response_model=HealthCheckResponse, tags=["Health"])
    async def health_check() -> HealthCheckResponse:
        """Health check endpoint."""
        return HealthCheckResponse(status="healthy", version=__version__)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "OSS Uploader API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "openapi": "/openapi.json",
        }

    return app


def main() -> None:
    """Main entry point for the server."""
    import argparse

    parser = argparse.ArgumentParser(description="OSS Uploader API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--workers", type=int, default=1, help="Number of workers")

    args = parser.parse_args()

    if args.workers > 1:
        uvicorn.run(
            "oss_uploader.server.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            workers=args.workers,
        )
    else:
        uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
