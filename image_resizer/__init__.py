"""Image Resizer - Resize, convert and strip light backgrounds from images.

A small web service and CLI that transforms uploaded images to a target
size, format and quality, keeps the results for download for a limited
time, and cleans up after itself.
"""

__version__ = "0.1.0"
__author__ = "Image Resizer"

from .models import TransformSpec, TransformResult, UploadRequest, OutputFormat

__all__ = [
    "__version__",
    "TransformSpec",
    "TransformResult",
    "UploadRequest",
    "OutputFormat",
]
