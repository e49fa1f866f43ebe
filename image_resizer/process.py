"""Image processing for Image Resizer.

Runs an upload through validation, decoding, resizing, optional
background removal, encoding and persistence.
"""

import io
import logging
import warnings
from enum import Enum
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeFailure, ImageResizerError, InvalidInput, ProcessingFailure
from .geometry import resolve_geometry, round_half_up
from .mask import remove_light_background
from .models import (
    ArtifactKind,
    OriginalDimensions,
    OutputFormat,
    TransformResult,
    TransformSpec,
    UploadRequest,
)
from .storage import ArtifactStore


logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_IMAGE_PIXELS = 50_000_000

ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/jpg', 'image/png', 'image/gif', 'image/webp'}

DOWNLOAD_PREFIX = "/download/"


class PipelineState(str, Enum):
    """Stages a transform passes through."""
    RECEIVED = "received"
    VALIDATED = "validated"
    DECODED = "decoded"
    RESIZED = "resized"
    MASK_APPLIED = "mask_applied"
    ENCODED = "encoded"
    PERSISTED = "persisted"
    COMPLETED = "completed"
    FAILED = "failed"


def validate_upload(upload: UploadRequest, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """Check an upload's type and size.

    Both the declared MIME type and the filename extension must name an
    accepted image type.

    Args:
        upload: Upload to check
        max_bytes: Largest accepted size

    Raises:
        InvalidInput: If the upload is empty, too large or not an image
    """
    if upload.size <= 0 or not upload.data:
        raise InvalidInput("No image file provided")

    if upload.size > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise InvalidInput(f"File too large (maximum {limit_mb:g} MB)")

    extension = Path(upload.filename or "").suffix.lower()
    content_type = (upload.content_type or "").split(';')[0].strip().lower()

    if extension not in ALLOWED_EXTENSIONS or content_type not in ALLOWED_MIME_TYPES:
        raise InvalidInput("Only image files are allowed!")


def decode_image(data: bytes, max_pixels: int = MAX_IMAGE_PIXELS) -> Image.Image:
    """Decode image bytes into a loaded PIL Image.

    EXIF orientation is applied and animated images yield their first frame.

    Args:
        data: Encoded image
        max_pixels: Largest accepted width x height

    Returns:
        Decoded PIL Image

    Raises:
        DecodeFailure: If the data is corrupt, unsupported or too large
    """
    try:
        with warnings.catch_warnings():
            warnings.simplefilter('error', Image.DecompressionBombWarning)
            image = Image.open(io.BytesIO(data))
            width, height = image.size
            if width * height > max_pixels:
                raise DecodeFailure(
                    f"Image too large to process ({width}x{height} exceeds {max_pixels} pixels)"
                )
            image.seek(0)
            image.load()
    except DecodeFailure:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
        raise DecodeFailure(f"Unable to decode image: {e}") from e
    except (OSError, ValueError, SyntaxError) as e:
        raise DecodeFailure(f"Unable to decode image: {e}") from e

    return ImageOps.exif_transpose(image)


def resize_image(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Resize to an exact size with Lanczos resampling."""
    if image.size == size:
        return image
    if image.mode not in ('RGB', 'RGBA', 'L', 'LA'):
        image = image.convert('RGBA' if _has_alpha(image) else 'RGB')
    return image.resize(size, Image.Resampling.LANCZOS)


def encode_image(image: Image.Image, output_format: OutputFormat, quality: int = 80) -> bytes:
    """Encode an image in the requested format.

    Quality applies to JPEG and WebP directly. For PNG (always lossless) it
    selects the zlib effort: lower quality compresses harder. GIF has no
    quality setting and ignores it.

    Args:
        image: PIL Image
        output_format: Target encoding
        quality: Quality 0-100

    Returns:
        Encoded bytes
    """
    output_buffer = io.BytesIO()

    if output_format == OutputFormat.JPEG:
        image = _flatten(image)
        image.save(output_buffer, format=output_format.pillow_format, quality=quality)
    elif output_format == OutputFormat.WEBP:
        if image.mode not in ('RGB', 'RGBA'):
            image = image.convert('RGBA' if _has_alpha(image) else 'RGB')
        image.save(output_buffer, format=output_format.pillow_format, quality=quality)
    elif output_format == OutputFormat.PNG:
        if image.mode not in ('1', 'L', 'LA', 'P', 'RGB', 'RGBA'):
            image = image.convert('RGBA' if _has_alpha(image) else 'RGB')
        compress_level = round_half_up(9 * (100 - quality) / 100)
        image.save(output_buffer, format=output_format.pillow_format, compress_level=compress_level)
    else:
        if image.mode not in ('P', 'L', 'RGB', 'RGBA'):
            image = image.convert('RGBA' if _has_alpha(image) else 'RGB')
        image.save(output_buffer, format=output_format.pillow_format)

    return output_buffer.getvalue()


def transform(
    upload: UploadRequest,
    spec: TransformSpec,
    store: ArtifactStore,
    max_bytes: int = MAX_UPLOAD_BYTES,
    max_pixels: int = MAX_IMAGE_PIXELS,
) -> TransformResult:
    """Transform an upload and store the result as a processed artifact.

    Args:
        upload: The uploaded image
        spec: Requested output settings
        store: Artifact store receiving the output
        max_bytes: Largest accepted upload size
        max_pixels: Largest accepted decoded image

    Returns:
        TransformResult describing the stored artifact

    Raises:
        InvalidInput: If the upload or requested output is unacceptable
        DecodeFailure: If the upload cannot be decoded
        ProcessingFailure: If resizing, masking, encoding or storing fails
    """
    state = PipelineState.RECEIVED
    _log_state(upload, state)

    try:
        validate_upload(upload, max_bytes)
        _validate_spec(spec)
        state = _advance(upload, PipelineState.VALIDATED)

        image = decode_image(upload.data, max_pixels)
        original = OriginalDimensions(*image.size)
        state = _advance(upload, PipelineState.DECODED)

        plan = resolve_geometry(original, spec.width, spec.height, spec.maintain_aspect_ratio)
        if plan.width * plan.height > max_pixels:
            raise InvalidInput(
                f"Requested size too large ({plan.width}x{plan.height} exceeds {max_pixels} pixels)"
            )
        if plan.needs_resize:
            try:
                image = resize_image(image, plan.size)
            except (MemoryError, OSError, ValueError) as e:
                raise ProcessingFailure(f"Failed to resize to {plan.width}x{plan.height}: {e}") from e
        state = _advance(upload, PipelineState.RESIZED)

        output_format = spec.effective_format
        if spec.transparent_background:
            try:
                image = remove_light_background(image)
            except (MemoryError, OSError, ValueError) as e:
                raise ProcessingFailure(f"Failed to remove background: {e}") from e
            state = _advance(upload, PipelineState.MASK_APPLIED)

        try:
            data = encode_image(image, output_format, spec.quality)
        except (MemoryError, OSError, ValueError, KeyError) as e:
            raise ProcessingFailure(f"Failed to encode {output_format.value}: {e}") from e
        state = _advance(upload, PipelineState.ENCODED)

        artifact = store.store(
            data,
            ArtifactKind.PROCESSED,
            extension=output_format.extension,
            prefix="resized-",
        )
        state = _advance(upload, PipelineState.PERSISTED)
    except ImageResizerError as e:
        logger.debug("Transform of %s failed in state %s: %s", upload.filename, state.value, e)
        _log_state(upload, PipelineState.FAILED)
        raise

    result = TransformResult(
        artifact=artifact,
        original_filename=upload.filename,
        output_format=output_format,
        dimensions=plan.size,
        size_kb=round_half_up(artifact.size / 1024),
        download_url=f"{DOWNLOAD_PREFIX}{artifact.name}",
    )
    _advance(upload, PipelineState.COMPLETED)
    logger.info(
        "Resized %s %dx%d -> %dx%d (%s) %s (%d KB) as %s",
        upload.filename, original.width, original.height,
        plan.width, plan.height, plan.fit, output_format.value, result.size_kb, artifact.name,
    )
    return result


def process_upload(
    upload: UploadRequest,
    spec: TransformSpec,
    store: ArtifactStore,
    max_bytes: int = MAX_UPLOAD_BYTES,
    max_pixels: int = MAX_IMAGE_PIXELS,
) -> TransformResult:
    """Keep the validated original as an uploaded artifact, then transform it.

    Nothing is stored when validation fails.
    """
    validate_upload(upload, max_bytes)
    store.store(
        upload.data,
        ArtifactKind.UPLOADED,
        extension=Path(upload.filename).suffix,
    )
    return transform(upload, spec, store, max_bytes=max_bytes, max_pixels=max_pixels)


def _validate_spec(spec: TransformSpec) -> None:
    if not 0 <= spec.quality <= 100:
        raise InvalidInput("quality must be between 0 and 100")
    if not isinstance(spec.output_format, OutputFormat):
        raise InvalidInput(f"Unsupported output format: {spec.output_format}")


def _flatten(image: Image.Image) -> Image.Image:
    """Composite transparent images onto white and return an RGB image."""
    if image.mode == 'RGB':
        return image
    if _has_alpha(image):
        rgba = image.convert('RGBA')
        background = Image.new('RGB', rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        return background
    return image.convert('RGB')


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ('RGBA', 'LA', 'PA') or (
        image.mode == 'P' and 'transparency' in image.info
    )


def _advance(upload: UploadRequest, state: PipelineState) -> PipelineState:
    _log_state(upload, state)
    return state


def _log_state(upload: UploadRequest, state: PipelineState) -> None:
    logger.debug("%s: %s", upload.filename, state.value)
