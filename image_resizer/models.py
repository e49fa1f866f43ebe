"""Data models for Image Resizer.

Contains data classes for uploads, transform settings, stored artifacts,
transform results and server configuration.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal, Optional


# Fit policies understood by the resize step
FitPolicy = Literal["inside", "fill"]


class OutputFormat(str, Enum):
    """Encodings the pipeline can produce."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def pillow_format(self) -> str:
        return self.value.upper()

    @property
    def media_type(self) -> str:
        return f"image/{self.value}"

    @property
    def supports_alpha(self) -> bool:
        return self in (OutputFormat.PNG, OutputFormat.WEBP)


class ArtifactKind(str, Enum):
    """Namespaces managed by the artifact store."""
    UPLOADED = "uploaded"
    PROCESSED = "processed"


@dataclass
class UploadRequest:
    """An image received from a client.

    Attributes:
        data: Raw file content
        content_type: MIME type declared by the client
        filename: Original filename as sent by the client
        size: Payload size in bytes
    """
    data: bytes
    content_type: str
    filename: str
    size: int

    @classmethod
    def from_bytes(cls, data: bytes, content_type: str, filename: str) -> "UploadRequest":
        return cls(data=data, content_type=content_type, filename=filename, size=len(data))


@dataclass
class TransformSpec:
    """Requested output settings.

    Attributes:
        width: Target width in pixels (None keeps it unconstrained)
        height: Target height in pixels (None keeps it unconstrained)
        quality: Encoder quality 0-100 (default: 80)
        output_format: Requested output encoding
        maintain_aspect_ratio: Fit inside the box instead of stretching
        transparent_background: Strip near-white background to alpha
    """
    width: Optional[int] = None
    height: Optional[int] = None
    quality: int = 80
    output_format: OutputFormat = OutputFormat.JPEG
    maintain_aspect_ratio: bool = True
    transparent_background: bool = False

    @property
    def effective_format(self) -> OutputFormat:
        """Format actually written, coerced to PNG when alpha is needed."""
        if self.transparent_background and not self.output_format.supports_alpha:
            return OutputFormat.PNG
        return self.output_format


@dataclass(frozen=True)
class OriginalDimensions:
    """Pixel size of a decoded upload."""
    width: int
    height: int

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)


@dataclass(frozen=True)
class ResizePlan:
    """Resolved output geometry.

    Attributes:
        width: Output width in pixels
        height: Output height in pixels
        fit: Fit policy used to reach the output size
        needs_resize: False when the output equals the original size
    """
    width: int
    height: int
    fit: FitPolicy
    needs_resize: bool

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)


@dataclass
class ArtifactRef:
    """A file held by the artifact store.

    Attributes:
        name: Generated unique filename
        kind: Namespace the file lives in
        size: File size in bytes
        created_at: Creation time as epoch seconds
        path: Absolute location on disk
    """
    name: str
    kind: ArtifactKind
    size: int
    created_at: float
    path: Path

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass
class TransformResult:
    """Result of a successful transform.

    Attributes:
        artifact: The processed artifact
        original_filename: Name of the uploaded file
        output_format: Format actually written
        dimensions: Output (width, height)
        size_kb: Output size in kilobytes, rounded
        download_url: Locator for fetching the artifact
    """
    artifact: ArtifactRef
    original_filename: str
    output_format: OutputFormat
    dimensions: tuple[int, int]
    size_kb: int
    download_url: str

    def to_response(self) -> dict:
        return {
            "success": True,
            "originalFile": self.original_filename,
            "resizedFile": self.artifact.name,
            "fileSize": self.size_kb,
            "downloadUrl": self.download_url,
        }


@dataclass
class SweepReport:
    """Outcome of one retention sweep."""
    scanned: int = 0
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)


@dataclass
class ServerConfig:
    """Service configuration.

    Attributes:
        host: Interface to bind
        port: Port to listen on
        data_dir: Root directory holding the artifact namespaces
        max_upload_bytes: Largest accepted upload (default: 10 MiB)
        max_image_pixels: Decode limit guarding against decompression bombs
        retention_seconds: Age after which artifacts are swept
        sweep_interval_seconds: Period between sweeps
        log_level: Root log level name
        cors_origins: Origins allowed by the CORS middleware
    """
    host: str = "127.0.0.1"
    port: int = 3000
    data_dir: Path = Path("./data")
    max_upload_bytes: int = 10 * 1024 * 1024
    max_image_pixels: int = 50_000_000
    retention_seconds: float = 3600.0
    sweep_interval_seconds: float = 3600.0
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
