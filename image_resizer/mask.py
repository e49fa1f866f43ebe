"""Transparent background support for Image Resizer.

Builds a luminance threshold mask that marks near-white pixels as
background, and composites it onto an image as its alpha channel.

The threshold is hard: light foreground pixels (and anti-aliased edges
against a white background) are stripped along with the background. It
suits logos and product shots on plain white, not photographs.
"""

import io

import numpy as np
from PIL import Image

from .errors import ProcessingFailure


# Luminance at or above this value counts as background (0-255 scale)
BACKGROUND_THRESHOLD = 240


def build_mask(image: Image.Image, threshold: int = BACKGROUND_THRESHOLD) -> Image.Image:
    """Build an inverted luminance threshold mask.

    Grayscale, threshold (>= threshold -> 255), then negate, so background
    pixels end up 0 (transparent) and foreground pixels 255 (opaque).

    Args:
        image: PIL Image in any mode
        threshold: Luminance cutoff (0-255)

    Returns:
        Single-channel ('L') mask the same size as image
    """
    if image.mode in ('RGBA', 'LA', 'PA'):
        gray = np.array(image.convert('RGB').convert('L'))
    else:
        gray = np.array(image.convert('L'))

    thresholded = np.where(gray >= threshold, 255, 0).astype(np.uint8)
    inverted = 255 - thresholded
    return Image.fromarray(inverted)


def encode_mask(mask: Image.Image) -> bytes:
    """Encode a mask as a single-channel PNG buffer."""
    if mask.mode != 'L':
        mask = mask.convert('L')
    buffer = io.BytesIO()
    mask.save(buffer, format='PNG')
    return buffer.getvalue()


def apply_mask(image: Image.Image, mask: Image.Image) -> Image.Image:
    """Composite a mask onto an image with a destination-in blend.

    The image gains an alpha channel (fully opaque if it had none) and the
    result's alpha is the existing alpha scaled by the mask.

    Args:
        image: PIL Image to make partly transparent
        mask: 'L' mask of the same size

    Returns:
        RGBA image

    Raises:
        ProcessingFailure: If the mask and image sizes differ
    """
    if mask.size != image.size:
        raise ProcessingFailure(
            f"Mask size {mask.size} does not match image size {image.size}"
        )

    rgba = image.convert('RGBA')
    pixels = np.array(rgba)
    mask_values = np.array(mask.convert('L'), dtype=np.uint16)

    alpha = pixels[:, :, 3].astype(np.uint16)
    pixels[:, :, 3] = (alpha * mask_values // 255).astype(np.uint8)

    return Image.fromarray(pixels)


def remove_light_background(
    image: Image.Image,
    threshold: int = BACKGROUND_THRESHOLD,
) -> Image.Image:
    """Make near-white pixels of image transparent.

    The mask is built from image itself, so it always matches the
    resolution of the composite.
    """
    return apply_mask(image, build_mask(image, threshold))
