"""
Raster backend package for imgforge.

Filters only ever talk to `RasterBackend`; `get_raster_backend` resolves the
configured kind to the process-wide backend instance.
"""

import logging
from typing import Dict, Tuple, Union

from imgforge.constants.constants import DEFAULT_MAX_CANVAS_DIMENSION, RasterBackendKind
from imgforge.core.exceptions import BackendInitError
from imgforge.raster.base import RasterBackend, RasterImage, luma, sniff_format, to_rgba
from imgforge.raster.colors import parse_color, to_hex

logger = logging.getLogger(__name__)

_raster_registry: Dict[Tuple[RasterBackendKind, int], RasterBackend] = {}


def _create_raster_backend(kind: RasterBackendKind, max_dimension: int) -> RasterBackend:
    """Import and construct the backend for ``kind``."""
    # Import here so that a missing optional library only affects its own backend
    if kind is RasterBackendKind.SKIMAGE:
        from imgforge.raster.skimage_backend import SkimageRasterBackend
        return SkimageRasterBackend(max_dimension)
    if kind is RasterBackendKind.OPENCV:
        from imgforge.raster.opencv_backend import OpenCVRasterBackend
        return OpenCVRasterBackend(max_dimension)
    raise BackendInitError(f"Unknown raster backend: {kind}")


def get_raster_backend(kind: Union[RasterBackendKind, str] = RasterBackendKind.SKIMAGE,
                       max_dimension: int = DEFAULT_MAX_CANVAS_DIMENSION) -> RasterBackend:
    """
    Return the shared backend instance for ``kind`` and size limit.

    Raises:
        BackendInitError: If the backend library cannot be imported
    """
    try:
        kind = RasterBackendKind(kind)
    except ValueError as e:
        raise BackendInitError(f"Unknown raster backend: {kind}") from e

    slot = (kind, int(max_dimension))
    if slot not in _raster_registry:
        try:
            _raster_registry[slot] = _create_raster_backend(kind, slot[1])
        except ImportError as e:
            raise BackendInitError(f"Raster backend '{kind.value}' is unavailable: {e}") from e
        logger.debug(f"Initialised raster backend: {kind.value}")
    return _raster_registry[slot]


__all__ = [
    "RasterBackend",
    "RasterImage",
    "get_raster_backend",
    "luma",
    "parse_color",
    "sniff_format",
    "to_hex",
    "to_rgba",
]
