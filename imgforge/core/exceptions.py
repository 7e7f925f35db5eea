"""
Custom exceptions for the imgforge core system.

Validation and filter level errors are recoverable and absorbed close to where
they occur. Source load and backend initialisation errors surface to callers as
TransformError.
"""


class ImgForgeError(Exception):
    """Base class for all imgforge custom exceptions."""
    pass


class ValidationError(ImgForgeError, ValueError):
    """Raised when a parameter or filter argument fails validation."""
    pass


class UnknownParameterError(ValidationError, KeyError):
    """Raised when a request names a parameter that is not in the registry."""
    pass


class FilterSkipped(ImgForgeError):
    """Raised by a filter that cannot run; the image passes through unchanged."""
    pass


class BackendCapabilityError(FilterSkipped, NotImplementedError):
    """Raised when the active raster backend does not support an operation."""
    pass


class CanvasTooLargeError(FilterSkipped):
    """Raised when an operation would produce an image beyond the configured size limit."""
    pass


class TransformError(ImgForgeError, RuntimeError):
    """Raised when a transform request cannot produce an image."""
    pass


class SourceLoadError(TransformError):
    """Raised when the source image cannot be fetched or decoded."""
    pass


class BackendInitError(TransformError):
    """Raised when a raster or storage backend cannot be initialised."""
    pass


class StoreIOError(ImgForgeError, OSError):
    """Raised when the cache store cannot be read or written."""
    pass


class ConnectionNotFoundError(ImgForgeError, KeyError):
    """Raised when a requested named connection is not configured."""
    pass
