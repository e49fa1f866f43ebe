"""Resize geometry for Image Resizer.

Turns the requested width/height and aspect-ratio setting into the final
output size and fit policy.
"""

import math

from .errors import InvalidInput
from .models import OriginalDimensions, ResizePlan


def round_half_up(value: float) -> int:
    """Round half away from zero (Python's round() rounds half to even)."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def resolve_geometry(
    original: OriginalDimensions,
    width: int | None = None,
    height: int | None = None,
    maintain_aspect_ratio: bool = True,
) -> ResizePlan:
    """Compute output dimensions for a resize request.

    With maintain_aspect_ratio the "inside" policy applies: a single
    dimension scales the other by the original ratio, two dimensions form a
    bounding box, and the image is never enlarged past its original size.
    Without it the "fill" policy applies: a missing dimension keeps the
    original value and the image is stretched to exactly match.

    Args:
        original: Dimensions of the decoded upload
        width: Requested width, or None
        height: Requested height, or None
        maintain_aspect_ratio: Use "inside" instead of "fill"

    Returns:
        ResizePlan with the output size and fit policy

    Raises:
        InvalidInput: If any dimension is not a positive integer
    """
    if original.width < 1 or original.height < 1:
        raise InvalidInput(f"Invalid image dimensions: {original.width}x{original.height}")
    for name, value in (("width", width), ("height", height)):
        if value is not None and value < 1:
            raise InvalidInput(f"{name} must be a positive integer")

    fit = "inside" if maintain_aspect_ratio else "fill"

    if width is None and height is None:
        return ResizePlan(original.width, original.height, fit, needs_resize=False)

    if maintain_aspect_ratio:
        new_width, new_height = _fit_inside(original, width, height)
    else:
        new_width = width if width is not None else original.width
        new_height = height if height is not None else original.height

    needs_resize = (new_width, new_height) != original.size
    return ResizePlan(new_width, new_height, fit, needs_resize=needs_resize)


def _fit_inside(
    original: OriginalDimensions,
    width: int | None,
    height: int | None,
) -> tuple[int, int]:
    ow, oh = original.size

    if width is not None and height is not None:
        scale = min(width / ow, height / oh)
    elif width is not None:
        scale = width / ow
    else:
        scale = height / oh

    # No enlargement
    if scale >= 1:
        return (ow, oh)

    if width is not None and height is None:
        return (width, max(1, round_half_up(width * oh / ow)))
    if height is not None and width is None:
        return (max(1, round_half_up(height * ow / oh)), height)

    new_width = max(1, min(width, round_half_up(ow * scale)))
    new_height = max(1, min(height, round_half_up(oh * scale)))
    return (new_width, new_height)
