"""Error taxonomy for the transform pipeline and artifact store."""


class ImageResizerError(Exception):
    """Base class for errors raised while handling an image request."""
    pass


class InvalidInput(ImageResizerError):
    """Raised when an upload or its settings are unacceptable."""
    pass


class DecodeFailure(ImageResizerError):
    """Raised when the uploaded bytes cannot be decoded as an image."""
    pass


class ProcessingFailure(ImageResizerError):
    """Raised when resizing, encoding or persisting fails."""
    pass


class NotFound(ImageResizerError):
    """Raised when an artifact does not exist or the name is not allowed."""
    pass
