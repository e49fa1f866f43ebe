"""FastAPI application for Image Resizer.

Exposes the resize pipeline over HTTP, serves processed artifacts for
download, and runs the retention sweeper for the application's lifetime.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from . import __version__
from .config import load_server_config
from .errors import DecodeFailure, InvalidInput, NotFound, ProcessingFailure
from .models import ArtifactKind, OutputFormat, ServerConfig, UploadRequest
from .parser import parse_transform_spec
from .process import process_upload
from .storage import ArtifactStore
from .sweeper import RetentionSweeper


logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ServerConfig] = None,
    store: Optional[ArtifactStore] = None,
    run_sweeper: bool = True,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Service configuration (loaded from config.json/env if None)
        store: Artifact store (built from config.data_dir if None)
        run_sweeper: Start the retention sweeper in the lifespan

    Returns:
        Configured FastAPI app
    """
    if config is None:
        config = load_server_config()
    if store is None:
        store = ArtifactStore(config.data_dir)

    sweeper = RetentionSweeper(
        store,
        retention_seconds=config.retention_seconds,
        interval_seconds=config.sweep_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store.ensure_directories()
        if run_sweeper:
            sweeper.start()
        yield
        if run_sweeper:
            await sweeper.stop()

    app = FastAPI(
        title="Image Resizer",
        description="Resize, convert and strip backgrounds from images",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    register_routes(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Map pipeline and store errors to JSON error responses."""

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [error.get("msg", "Invalid value") for error in exc.errors()]
        return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "File not found"})

    @app.exception_handler(DecodeFailure)
    @app.exception_handler(ProcessingFailure)
    async def processing_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Error processing image: %s", exc, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Error processing image"})


def register_routes(app: FastAPI) -> None:
    """Attach the HTTP endpoints."""

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.post("/resize")
    async def resize(
        request: Request,
        image: Optional[UploadFile] = File(None),
        width: Optional[str] = Form(None),
        height: Optional[str] = Form(None),
        quality: Optional[str] = Form(None),
        format: Optional[str] = Form(None),
        maintainAspectRatio: Optional[str] = Form(None),
        transparentBackground: Optional[str] = Form(None),
    ) -> dict:
        """Resize an uploaded image and return its download locator."""
        config: ServerConfig = request.app.state.config
        store: ArtifactStore = request.app.state.store

        if image is None or not image.filename:
            raise InvalidInput("No image file provided")

        spec = parse_transform_spec({
            "width": width,
            "height": height,
            "quality": quality,
            "format": format,
            "maintainAspectRatio": maintainAspectRatio,
            "transparentBackground": transparentBackground,
        })

        try:
            # One byte past the limit is enough to reject oversized uploads
            data = await image.read(config.max_upload_bytes + 1)
        finally:
            await image.close()

        upload = UploadRequest.from_bytes(data, image.content_type or "", image.filename)
        result = await run_in_threadpool(
            process_upload,
            upload,
            spec,
            store,
            max_bytes=config.max_upload_bytes,
            max_pixels=config.max_image_pixels,
        )
        return result.to_response()

    @app.get("/download/{filename}")
    async def download(request: Request, filename: str) -> Response:
        """Send a processed artifact as an attachment."""
        store: ArtifactStore = request.app.state.store
        data = await run_in_threadpool(store.retrieve, filename, ArtifactKind.PROCESSED)
        return Response(
            content=data,
            media_type=media_type_for(filename),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.delete("/files/{filename}")
    async def remove_file(request: Request, filename: str) -> dict:
        """Remove a processed artifact before its retention expires."""
        store: ArtifactStore = request.app.state.store
        await run_in_threadpool(store.delete, filename, ArtifactKind.PROCESSED)
        logger.info("Removed processed artifact %s", filename)
        return {"success": True}


def media_type_for(filename: str) -> str:
    """Guess the media type of an artifact from its extension."""
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if extension == 'jpg':
        extension = 'jpeg'
    try:
        return OutputFormat(extension).media_type
    except ValueError:
        return "application/octet-stream"
