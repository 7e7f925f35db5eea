"""
Consolidated constants for imgforge.

This module defines the enums and default values shared by the parameter
model, the raster backends, the filter library and the cache layer.
"""

from enum import Enum
from typing import Dict, Set, Tuple


class ParameterKind(Enum):
    """Three-way classification of request parameters."""
    CONTROL = "control"                  # caching/output routing only
    DIMENSIONAL = "dimensional"          # output size
    TRANSFORMATIONAL = "transformational"  # pixel content


class RasterBackendKind(Enum):
    SKIMAGE = "skimage"
    OPENCV = "opencv"


class ConnectionKind(Enum):
    LOCAL = "local"
    MEMORY = "memory"
    ZARR = "zarr"
    S3 = "s3"
    R2 = "r2"
    DOSPACES = "dospaces"

    @property
    def is_object_store(self) -> bool:
        return self in (ConnectionKind.S3, ConnectionKind.R2, ConnectionKind.DOSPACES)


class UnknownParameterPolicy(Enum):
    IGNORE = "ignore"
    ERROR = "error"


class OrphanPolicy(Enum):
    """What an audit does with stored files that have no index record."""
    INDEX = "index"
    REMOVE = "remove"


class ResizeMode(Enum):
    AVERAGE = "average"
    SMOOTH = "smooth"
    NEAREST = "nearest"


class DirectiveStatus(Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    ERROR = "error"


class OutputFormat(Enum):
    JPG = "jpg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"
    BMP = "bmp"

    @property
    def supports_alpha(self) -> bool:
        return self in (OutputFormat.PNG, OutputFormat.WEBP, OutputFormat.GIF)

    @property
    def extension(self) -> str:
        return f".{self.value}"


# Output format aliases accepted from request parameters
OUTPUT_FORMAT_ALIASES: Dict[str, OutputFormat] = {
    "jpeg": OutputFormat.JPG,
    "jpg": OutputFormat.JPG,
    "png": OutputFormat.PNG,
    "gif": OutputFormat.GIF,
    "webp": OutputFormat.WEBP,
    "bmp": OutputFormat.BMP,
}

# Cache duration defaults (seconds)
DEFAULT_CACHE_DURATION = 604800
PERPETUAL_CACHE = -1
NO_CACHE = 0

# Cache key construction
DEFAULT_KEY_SEPARATOR = "_-_"
DEFAULT_MAX_FILENAME_LENGTH = 150
PERPETUAL_TTL_MARKER = "abcdef"
FILENAME_SPECIAL_CHARACTERS: Set[str] = set("<>&/\\?%*:|\"!@#$^()[]{};,.`~+=-'")

# Output defaults
DEFAULT_QUALITY = 90
DEFAULT_PNG_QUALITY = 6
DEFAULT_BG_COLOR = "#ffffff"
DEFAULT_OUTPUT_FORMAT = OutputFormat.JPG

# Size limits
DEFAULT_MAX_CANVAS_DIMENSION = 10000
DEFAULT_MAX_SOURCE_DIMENSION = 2500
DEFAULT_MAX_SOURCE_SIZE_MB = 4.0

# Colours (RGBA)
TRANSPARENT: Tuple[int, int, int, int] = (0, 0, 0, 0)
WHITE: Tuple[int, int, int, int] = (255, 255, 255, 255)
BLACK: Tuple[int, int, int, int] = (0, 0, 0, 255)

# Luma weights used by grayscale, halftone and edge detection
LUMA_WEIGHTS: Tuple[float, float, float] = (0.299, 0.587, 0.114)

# Cache index
CACHE_INDEX_FILENAME = "cache_index.json"
