"""Form field parsing for Image Resizer.

Converts the string fields of a resize request into a TransformSpec,
rejecting malformed values instead of silently defaulting them.
"""

import re
from typing import Mapping, Optional

from .errors import InvalidInput
from .models import OutputFormat, TransformSpec


INTEGER_PATTERN = re.compile(r'^\s*\+?\d+\s*$')

FORMAT_ALIASES = {
    'jpg': OutputFormat.JPEG,
    'jpeg': OutputFormat.JPEG,
    'png': OutputFormat.PNG,
    'webp': OutputFormat.WEBP,
    'gif': OutputFormat.GIF,
}

TRUE_VALUES = {'true', '1', 'on', 'yes'}
FALSE_VALUES = {'false', '0', 'off', 'no'}


def parse_dimension(value: Optional[str], name: str) -> Optional[int]:
    """Parse an optional positive pixel dimension.

    Args:
        value: Raw field value (None or empty string means absent)
        name: Field name for error messages

    Returns:
        Positive integer, or None when absent

    Raises:
        InvalidInput: If the value is not a positive integer
    """
    if value is None or not value.strip():
        return None
    if not INTEGER_PATTERN.match(value):
        raise InvalidInput(f"{name} must be a positive integer")
    number = int(value)
    if number < 1:
        raise InvalidInput(f"{name} must be a positive integer")
    return number


def parse_quality(value: Optional[str], default: int = 80) -> int:
    """Parse quality 0-100; absent or empty means the default."""
    if value is None or not value.strip():
        return default
    if not INTEGER_PATTERN.match(value):
        raise InvalidInput("quality must be an integer between 0 and 100")
    number = int(value)
    if number > 100:
        raise InvalidInput("quality must be an integer between 0 and 100")
    return number


def parse_format(value: Optional[str]) -> OutputFormat:
    """Parse an output format name; absent or empty means JPEG."""
    if value is None or not value.strip():
        return OutputFormat.JPEG
    output_format = FORMAT_ALIASES.get(value.strip().lower())
    if output_format is None:
        raise InvalidInput(f"Unsupported output format: {value}")
    return output_format


def parse_bool(value: Optional[str], name: str, default: bool = False) -> bool:
    """Parse a boolean sent as a string ("true"/"false").

    Raises:
        InvalidInput: If the value is not a recognizable boolean
    """
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise InvalidInput(f"{name} must be 'true' or 'false'")


def parse_transform_spec(fields: Mapping[str, Optional[str]]) -> TransformSpec:
    """Build a TransformSpec from resize form fields.

    Recognized fields: width, height, quality, format, maintainAspectRatio,
    transparentBackground.

    Args:
        fields: Mapping of field name to raw string value

    Returns:
        Parsed TransformSpec

    Raises:
        InvalidInput: If any field is malformed
    """
    return TransformSpec(
        width=parse_dimension(fields.get('width'), 'width'),
        height=parse_dimension(fields.get('height'), 'height'),
        quality=parse_quality(fields.get('quality')),
        output_format=parse_format(fields.get('format')),
        maintain_aspect_ratio=parse_bool(
            fields.get('maintainAspectRatio'), 'maintainAspectRatio', default=True
        ),
        transparent_background=parse_bool(
            fields.get('transparentBackground'), 'transparentBackground', default=False
        ),
    )
