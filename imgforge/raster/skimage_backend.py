"""
scikit-image raster backend.

Reference implementation of `RasterBackend` built on scikit-image, scipy and
imageio. It runs on CPU and is the default backend.
"""

import logging
from typing import Sequence

import imageio.v3 as iio
import numpy as np
from scipy import ndimage
from skimage import draw, filters
from skimage import transform as trans

from imgforge.constants.constants import OutputFormat, RasterBackendKind, ResizeMode, TRANSPARENT
from imgforge.raster.base import (
    Color,
    Point,
    RasterBackend,
    RasterImage,
    rotated_size,
    sniff_format,
    to_rgba,
)

logger = logging.getLogger(__name__)


def _to_uint8(array: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(array), 0, 255).astype(np.uint8)


class SkimageRasterBackend(RasterBackend):
    kind = RasterBackendKind.SKIMAGE

    def decode(self, data: bytes) -> RasterImage:
        try:
            array = iio.imread(data, index=0)
        except Exception as e:
            raise ValueError(f"Unable to decode image data: {e}") from e
        return RasterImage(to_rgba(array), sniff_format(data))

    def encode(self, image: RasterImage, fmt: OutputFormat, quality: int = 90,
               png_compression: int = 6, interlace: bool = False) -> bytes:
        pixels = image.pixels
        kwargs = {}
        if fmt in (OutputFormat.JPG, OutputFormat.BMP):
            pixels = pixels[..., :3]
        if fmt is OutputFormat.JPG:
            kwargs = {"quality": int(quality), "progressive": bool(interlace)}
        elif fmt is OutputFormat.WEBP:
            kwargs = {"quality": int(quality)}
        elif fmt is OutputFormat.PNG:
            kwargs = {"compress_level": int(png_compression)}
        return iio.imwrite("<bytes>", pixels, extension=fmt.extension, **kwargs)

    def resize(self, image: RasterImage, width: int, height: int,
               mode: ResizeMode = ResizeMode.SMOOTH) -> RasterImage:
        shape = (max(1, int(height)), max(1, int(width)))
        self.check_canvas(shape[1], shape[0])
        source = image.pixels.astype(np.float64)
        if mode is ResizeMode.AVERAGE:
            out = trans.resize_local_mean(source, shape, channel_axis=-1, preserve_range=True)
        elif mode is ResizeMode.NEAREST:
            out = trans.resize(source, shape + (4,), order=0, anti_aliasing=False,
                               preserve_range=True)
        else:
            out = trans.resize(source, shape + (4,), order=1, anti_aliasing=True,
                               preserve_range=True)
        return RasterImage(_to_uint8(out), image.source_format)

    def rotate(self, image: RasterImage, degrees: float,
               background: Color = TRANSPARENT) -> RasterImage:
        self.check_canvas(*rotated_size(image.width, image.height, degrees))
        out = trans.rotate(image.pixels.astype(np.float64), -float(degrees), resize=True,
                           order=1, mode="constant", cval=0.0, preserve_range=True)
        rotated = RasterImage(_to_uint8(out), image.source_format)
        if background[3] > 0:
            canvas = self.create(rotated.width, rotated.height, background)
            canvas.source_format = image.source_format
            return self.paste(canvas, rotated, 0, 0)
        return rotated

    def convolve(self, image: RasterImage, kernel: Sequence[Sequence[float]],
                 divisor: float = 1.0, offset: float = 0.0) -> RasterImage:
        weights = np.asarray(kernel, dtype=np.float64)
        pixels = image.pixels.copy()
        for channel in range(3):
            response = ndimage.correlate(image.pixels[..., channel].astype(np.float64),
                                         weights, mode="nearest")
            pixels[..., channel] = _to_uint8(response / (divisor or 1.0) + offset)
        return RasterImage(pixels, image.source_format)

    def gaussian_blur(self, image: RasterImage, sigma: float) -> RasterImage:
        out = filters.gaussian(image.pixels.astype(np.float64), sigma=sigma,
                               channel_axis=-1, preserve_range=True)
        return RasterImage(_to_uint8(out), image.source_format)

    def draw_line(self, image: RasterImage, x1: float, y1: float, x2: float, y2: float,
                  color: Color) -> RasterImage:
        rr, cc = draw.line(int(round(y1)), int(round(x1)), int(round(y2)), int(round(x2)))
        inside = (rr >= 0) & (rr < image.height) & (cc >= 0) & (cc < image.width)
        image.pixels[rr[inside], cc[inside]] = color
        return image

    def draw_circle(self, image: RasterImage, cx: float, cy: float, radius: float,
                    color: Color) -> RasterImage:
        if radius <= 0:
            return image
        rr, cc = draw.disk((cy, cx), radius, shape=image.pixels.shape[:2])
        image.pixels[rr, cc] = color
        return image

    def draw_ellipse(self, image: RasterImage, cx: float, cy: float, rx: float, ry: float,
                     color: Color) -> RasterImage:
        if rx <= 0 or ry <= 0:
            return image
        rr, cc = draw.ellipse(cy, cx, ry, rx, shape=image.pixels.shape[:2])
        image.pixels[rr, cc] = color
        return image

    def draw_polygon(self, image: RasterImage, points: Sequence[Point],
                     color: Color) -> RasterImage:
        if len(points) < 3:
            return image
        xs = np.asarray([p[0] for p in points], dtype=np.float64)
        ys = np.asarray([p[1] for p in points], dtype=np.float64)
        shape = image.pixels.shape[:2]
        rr, cc = draw.polygon(ys, xs, shape=shape)
        image.pixels[rr, cc] = color
        rr, cc = draw.polygon_perimeter(np.rint(ys).astype(int), np.rint(xs).astype(int),
                                        shape=shape, clip=False)
        image.pixels[rr, cc] = color
        return image

    def draw_rectangle(self, image: RasterImage, x1: int, y1: int, x2: int, y2: int,
                       color: Color) -> RasterImage:
        left, right = sorted((int(x1), int(x2)))
        top, bottom = sorted((int(y1), int(y2)))
        left, top = max(0, left), max(0, top)
        right, bottom = min(image.width - 1, right), min(image.height - 1, bottom)
        if right < left or bottom < top:
            return image
        rr, cc = draw.rectangle((top, left), end=(bottom, right), shape=image.pixels.shape[:2])
        image.pixels[rr, cc] = color
        return image
