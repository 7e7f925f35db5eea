"""
Abstract raster backend interface.

Every filter is written against `RasterBackend`; concrete implementations wrap
a bitmap library (scikit-image/scipy or OpenCV). Images are held as
`RasterImage` objects whose buffer is a contiguous ``(height, width, 4)``
``uint8`` RGBA array, so operations that are plain array arithmetic live here
once and library specific operations are abstract.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import numpy as np

from imgforge.constants.constants import (
    DEFAULT_MAX_CANVAS_DIMENSION,
    LUMA_WEIGHTS,
    OutputFormat,
    RasterBackendKind,
    ResizeMode,
    TRANSPARENT,
)
from imgforge.core.exceptions import CanvasTooLargeError
from imgforge.raster import detect, text as glyphs

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int, int]
Point = Tuple[float, float]

_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", OutputFormat.PNG),
    (b"\xff\xd8\xff", OutputFormat.JPG),
    (b"GIF87a", OutputFormat.GIF),
    (b"GIF89a", OutputFormat.GIF),
    (b"BM", OutputFormat.BMP),
)


class RasterImage:
    """
    Mutable RGBA image buffer.

    The buffer is exclusively owned by whichever pipeline step currently holds
    the image; steps either mutate ``pixels`` in place or return a new image.
    """

    def __init__(self, pixels: np.ndarray, source_format: Optional[OutputFormat] = None):
        self.pixels = pixels
        self.source_format = source_format

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    @pixels.setter
    def pixels(self, value: np.ndarray) -> None:
        if value.ndim != 3 or value.shape[2] != 4:
            raise ValueError(f"RasterImage requires an (H, W, 4) array, got shape {value.shape}")
        self._pixels = np.ascontiguousarray(value, dtype=np.uint8)

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def copy(self) -> "RasterImage":
        return RasterImage(self._pixels.copy(), self.source_format)

    def __repr__(self) -> str:
        return f"RasterImage({self.width}x{self.height}, source_format={self.source_format})"


def to_rgba(array: np.ndarray) -> np.ndarray:
    """Convert a decoded gray/RGB/RGBA array of any integer or float dtype to RGBA uint8."""
    array = np.asarray(array)
    if array.dtype != np.uint8:
        if np.issubdtype(array.dtype, np.floating):
            array = np.clip(array * 255.0 if array.max() <= 1.0 else array, 0, 255)
        elif array.dtype == np.uint16:
            array = array // 257
        array = array.astype(np.uint8)

    if array.ndim == 2:
        array = np.stack([array, array, array], axis=-1)
    if array.shape[2] == 2:
        gray, alpha = array[..., 0], array[..., 1]
        return np.dstack([gray, gray, gray, alpha])
    if array.shape[2] == 3:
        alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
        return np.concatenate([array, alpha], axis=-1)
    return array[..., :4]


def sniff_format(data: bytes) -> Optional[OutputFormat]:
    """Identify an encoded image format from its magic bytes."""
    for signature, fmt in _SIGNATURES:
        if data.startswith(signature):
            return fmt
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return OutputFormat.WEBP
    return None


def rotated_size(width: int, height: int, degrees: float) -> Tuple[int, int]:
    """Bounding box of a ``width`` x ``height`` image rotated by ``degrees``."""
    radians = math.radians(degrees)
    cos, sin = abs(math.cos(radians)), abs(math.sin(radians))
    return (int(math.ceil(round(width * cos + height * sin, 6))),
            int(math.ceil(round(width * sin + height * cos, 6))))


def luma(pixels: np.ndarray) -> np.ndarray:
    """Integer luma (0.299r + 0.587g + 0.114b, truncated) of an RGBA array."""
    rgb = pixels[..., :3].astype(np.float64)
    weights = np.asarray(LUMA_WEIGHTS, dtype=np.float64)
    return np.floor(rgb @ weights).astype(np.int32)


class RasterBackend(ABC):
    """
    Capability interface over a concrete raster library.

    Drawing primitives write colours without blending, clip to the canvas and
    use pixel coordinates with x to the right and y downwards. Rotation angles
    are in degrees, positive clockwise.
    """

    kind: RasterBackendKind

    def __init__(self, max_dimension: int = DEFAULT_MAX_CANVAS_DIMENSION):
        self.max_dimension = max_dimension

    def check_canvas(self, width: int, height: int) -> None:
        """
        Refuse image sizes beyond the backend limit.

        Raises:
            CanvasTooLargeError: If either side exceeds ``max_dimension``
        """
        if self.max_dimension > 0 and max(width, height) > self.max_dimension:
            raise CanvasTooLargeError(
                f"Image of {int(width)}x{int(height)} exceeds the {self.max_dimension}px size limit")

    # ------------------------------------------------------------------ codec

    @abstractmethod
    def decode(self, data: bytes) -> RasterImage:
        """
        Decode encoded image bytes.

        Raises:
            ValueError: If the bytes are not a decodable image
        """
        pass

    @abstractmethod
    def encode(self, image: RasterImage, fmt: OutputFormat, quality: int = 90,
               png_compression: int = 6, interlace: bool = False) -> bytes:
        """
        Encode an image. Formats without alpha receive an already flattened image.

        Raises:
            BackendCapabilityError: If the format cannot be written by this backend
        """
        pass

    # --------------------------------------------------------------- geometry

    @abstractmethod
    def resize(self, image: RasterImage, width: int, height: int,
               mode: ResizeMode = ResizeMode.SMOOTH) -> RasterImage:
        """Return a resampled copy; AVERAGE is box/area averaging."""
        pass

    @abstractmethod
    def rotate(self, image: RasterImage, degrees: float,
               background: Color = TRANSPARENT) -> RasterImage:
        """Rotate clockwise, expanding the canvas to hold the whole result."""
        pass

    # ---------------------------------------------------------------- filters

    @abstractmethod
    def convolve(self, image: RasterImage, kernel: Sequence[Sequence[float]],
                 divisor: float = 1.0, offset: float = 0.0) -> RasterImage:
        """3x3 correlation on the RGB channels with edge replication; alpha untouched."""
        pass

    @abstractmethod
    def gaussian_blur(self, image: RasterImage, sigma: float) -> RasterImage:
        pass

    # ---------------------------------------------------------------- drawing

    @abstractmethod
    def draw_line(self, image: RasterImage, x1: float, y1: float, x2: float, y2: float,
                  color: Color) -> RasterImage:
        pass

    @abstractmethod
    def draw_circle(self, image: RasterImage, cx: float, cy: float, radius: float,
                    color: Color) -> RasterImage:
        """Filled circle."""
        pass

    @abstractmethod
    def draw_ellipse(self, image: RasterImage, cx: float, cy: float, rx: float, ry: float,
                     color: Color) -> RasterImage:
        """Filled axis-aligned ellipse."""
        pass

    @abstractmethod
    def draw_polygon(self, image: RasterImage, points: Sequence[Point],
                     color: Color) -> RasterImage:
        """Filled polygon through ``points`` given as (x, y)."""
        pass

    @abstractmethod
    def draw_rectangle(self, image: RasterImage, x1: int, y1: int, x2: int, y2: int,
                       color: Color) -> RasterImage:
        """Filled rectangle, both corners inclusive."""
        pass

    # ------------------------------------------------------ array operations

    def create(self, width: int, height: int, color: Color = TRANSPARENT) -> RasterImage:
        """Create a canvas filled with ``color``."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas dimensions must be positive, got {width}x{height}")
        self.check_canvas(width, height)
        pixels = np.empty((int(height), int(width), 4), dtype=np.uint8)
        pixels[...] = np.asarray(color, dtype=np.uint8)
        return RasterImage(pixels)

    def pixels(self, image: RasterImage) -> np.ndarray:
        """Bulk pixel access: the live ``(H, W, 4)`` buffer."""
        return image.pixels

    def get_pixel(self, image: RasterImage, x: int, y: int) -> Color:
        return tuple(int(c) for c in image.pixels[y, x])

    def set_pixel(self, image: RasterImage, x: int, y: int, color: Color) -> None:
        if 0 <= x < image.width and 0 <= y < image.height:
            image.pixels[y, x] = color

    def crop(self, image: RasterImage, x: int, y: int, width: int, height: int) -> RasterImage:
        """Return the region clipped to the image; raises ValueError when empty."""
        x0, y0 = max(0, int(x)), max(0, int(y))
        x1, y1 = min(image.width, int(x) + int(width)), min(image.height, int(y) + int(height))
        if x1 <= x0 or y1 <= y0:
            raise ValueError(f"Crop region {width}x{height}+{x}+{y} lies outside {image}")
        return RasterImage(image.pixels[y0:y1, x0:x1].copy(), image.source_format)

    def paste(self, dst: RasterImage, src: RasterImage, x: int, y: int,
              opacity: float = 100.0) -> RasterImage:
        """Alpha-composite ``src`` over ``dst`` at (x, y), in place."""
        x, y = int(x), int(y)
        dx0, dy0 = max(0, x), max(0, y)
        dx1, dy1 = min(dst.width, x + src.width), min(dst.height, y + src.height)
        if dx1 <= dx0 or dy1 <= dy0:
            return dst

        src_region = src.pixels[dy0 - y:dy1 - y, dx0 - x:dx1 - x].astype(np.float64)
        dst_region = dst.pixels[dy0:dy1, dx0:dx1].astype(np.float64)

        src_alpha = src_region[..., 3:4] / 255.0 * (max(0.0, min(100.0, opacity)) / 100.0)
        dst_alpha = dst_region[..., 3:4] / 255.0
        out_alpha = src_alpha + dst_alpha * (1.0 - src_alpha)

        with np.errstate(invalid="ignore", divide="ignore"):
            out_rgb = (src_region[..., :3] * src_alpha
                       + dst_region[..., :3] * dst_alpha * (1.0 - src_alpha)) / out_alpha
        out_rgb = np.where(out_alpha > 0, out_rgb, 0.0)

        composite = np.concatenate([out_rgb, out_alpha * 255.0], axis=-1)
        dst.pixels[dy0:dy1, dx0:dx1] = np.clip(np.rint(composite), 0, 255).astype(np.uint8)
        return dst

    def flip(self, image: RasterImage, horizontal: bool = False,
             vertical: bool = False) -> RasterImage:
        pixels = image.pixels
        if horizontal:
            pixels = pixels[:, ::-1]
        if vertical:
            pixels = pixels[::-1]
        return RasterImage(pixels.copy(), image.source_format)

    def grayscale(self, image: RasterImage) -> RasterImage:
        gray = np.clip(luma(image.pixels), 0, 255).astype(np.uint8)
        pixels = image.pixels.copy()
        pixels[..., 0] = pixels[..., 1] = pixels[..., 2] = gray
        return RasterImage(pixels, image.source_format)

    def flatten(self, image: RasterImage, background: Color) -> RasterImage:
        """Composite onto an opaque background canvas."""
        canvas = self.create(image.width, image.height, tuple(background[:3]) + (255,))
        canvas.source_format = image.source_format
        return self.paste(canvas, image, 0, 0)

    def has_transparency(self, image: RasterImage) -> bool:
        return bool((image.pixels[..., 3] < 255).any())

    # ------------------------------------------------------------------- text

    def measure_text(self, text: str, font_size: int) -> Tuple[int, int]:
        """(width, height) of one line of text."""
        return glyphs.measure(text, font_size)

    def wrap_text(self, content: str, box_width: int, font_size: int) -> List[str]:
        return glyphs.wrap(content, box_width, font_size)

    def text_coverage(self, lines: Sequence[str], width: int, height: int, font_size: int,
                      line_height: float, align: str = "center",
                      offset: Tuple[int, int] = (0, 0)) -> np.ndarray:
        """Anti-aliased coverage map of ``lines`` set in a ``width`` x ``height`` box."""
        self.check_canvas(width, height)
        return glyphs.coverage(lines, width, height, font_size, line_height, align, offset)

    # -------------------------------------------------------------- detection

    def detect_faces(self, image: RasterImage, sensitivity: int = 3) -> List[Tuple[int, int, int, int]]:
        """
        Bounding boxes (x, y, width, height) of frontal faces.

        Raises:
            BackendCapabilityError: If the face cascade is unavailable
        """
        gray = np.clip(luma(image.pixels), 0, 255).astype(np.uint8)
        return detect.detect_faces(gray, sensitivity)
