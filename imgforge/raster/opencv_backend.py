"""
OpenCV raster backend.

Implements `RasterBackend` on cv2. OpenCV works in BGR(A) channel order, so
conversions happen only at the codec boundary; in memory the buffer stays RGBA
like every other backend.
"""

import logging
import math
from typing import Sequence

import cv2
import numpy as np

from imgforge.constants.constants import OutputFormat, RasterBackendKind, ResizeMode, TRANSPARENT
from imgforge.core.exceptions import BackendCapabilityError
from imgforge.raster.base import Color, Point, RasterBackend, RasterImage, sniff_format, to_rgba

logger = logging.getLogger(__name__)

_INTERPOLATION = {
    ResizeMode.AVERAGE: cv2.INTER_AREA,
    ResizeMode.SMOOTH: cv2.INTER_LINEAR,
    ResizeMode.NEAREST: cv2.INTER_NEAREST,
}


def _color(color: Color) -> tuple:
    return tuple(int(c) for c in color)


class OpenCVRasterBackend(RasterBackend):
    kind = RasterBackendKind.OPENCV

    def decode(self, data: bytes) -> RasterImage:
        buffer = np.frombuffer(data, dtype=np.uint8)
        array = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
        if array is None:
            raise ValueError("Unable to decode image data with OpenCV")
        if array.ndim == 3 and array.shape[2] == 3:
            array = cv2.cvtColor(array, cv2.COLOR_BGR2RGB)
        elif array.ndim == 3 and array.shape[2] == 4:
            array = cv2.cvtColor(array, cv2.COLOR_BGRA2RGBA)
        return RasterImage(to_rgba(array), sniff_format(data))

    def encode(self, image: RasterImage, fmt: OutputFormat, quality: int = 90,
               png_compression: int = 6, interlace: bool = False) -> bytes:
        if fmt is OutputFormat.GIF:
            raise BackendCapabilityError("OpenCV cannot write GIF images")

        if fmt in (OutputFormat.JPG, OutputFormat.BMP):
            array = cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2BGR)
        else:
            array = cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2BGRA)

        params = []
        if fmt is OutputFormat.JPG:
            params = [cv2.IMWRITE_JPEG_QUALITY, int(quality),
                      cv2.IMWRITE_JPEG_PROGRESSIVE, int(bool(interlace))]
        elif fmt is OutputFormat.WEBP:
            params = [cv2.IMWRITE_WEBP_QUALITY, int(quality)]
        elif fmt is OutputFormat.PNG:
            params = [cv2.IMWRITE_PNG_COMPRESSION, int(png_compression)]

        ok, encoded = cv2.imencode(fmt.extension, array, params)
        if not ok:
            raise ValueError(f"OpenCV failed to encode image as {fmt.value}")
        return encoded.tobytes()

    def resize(self, image: RasterImage, width: int, height: int,
               mode: ResizeMode = ResizeMode.SMOOTH) -> RasterImage:
        size = (max(1, int(width)), max(1, int(height)))
        self.check_canvas(*size)
        out = cv2.resize(image.pixels, size, interpolation=_INTERPOLATION[mode])
        return RasterImage(out, image.source_format)

    def rotate(self, image: RasterImage, degrees: float,
               background: Color = TRANSPARENT) -> RasterImage:
        h, w = image.height, image.width
        matrix = cv2.getRotationMatrix2D((w / 2.0, h / 2.0), -float(degrees), 1.0)
        cos, sin = abs(matrix[0, 0]), abs(matrix[0, 1])
        new_w = int(math.ceil(h * sin + w * cos))
        new_h = int(math.ceil(h * cos + w * sin))
        self.check_canvas(new_w, new_h)
        matrix[0, 2] += new_w / 2.0 - w / 2.0
        matrix[1, 2] += new_h / 2.0 - h / 2.0
        out = cv2.warpAffine(image.pixels, matrix, (new_w, new_h), flags=cv2.INTER_LINEAR,
                             borderMode=cv2.BORDER_CONSTANT, borderValue=_color(TRANSPARENT))
        rotated = RasterImage(out, image.source_format)
        if background[3] > 0:
            canvas = self.create(rotated.width, rotated.height, background)
            canvas.source_format = image.source_format
            return self.paste(canvas, rotated, 0, 0)
        return rotated

    def convolve(self, image: RasterImage, kernel: Sequence[Sequence[float]],
                 divisor: float = 1.0, offset: float = 0.0) -> RasterImage:
        weights = np.asarray(kernel, dtype=np.float32)
        rgb = image.pixels[..., :3].astype(np.float32)
        response = cv2.filter2D(rgb, -1, weights, borderType=cv2.BORDER_REPLICATE)
        pixels = image.pixels.copy()
        pixels[..., :3] = np.clip(np.rint(response / (divisor or 1.0) + offset), 0, 255)
        return RasterImage(pixels, image.source_format)

    def gaussian_blur(self, image: RasterImage, sigma: float) -> RasterImage:
        out = cv2.GaussianBlur(image.pixels, (0, 0), sigmaX=float(sigma))
        return RasterImage(out, image.source_format)

    def grayscale(self, image: RasterImage) -> RasterImage:
        gray = cv2.cvtColor(image.pixels[..., :3], cv2.COLOR_RGB2GRAY)
        pixels = image.pixels.copy()
        pixels[..., 0] = pixels[..., 1] = pixels[..., 2] = gray
        return RasterImage(pixels, image.source_format)

    def draw_line(self, image: RasterImage, x1: float, y1: float, x2: float, y2: float,
                  color: Color) -> RasterImage:
        cv2.line(image.pixels, (int(round(x1)), int(round(y1))),
                 (int(round(x2)), int(round(y2))), _color(color), 1)
        return image

    def draw_circle(self, image: RasterImage, cx: float, cy: float, radius: float,
                    color: Color) -> RasterImage:
        if radius <= 0:
            return image
        cv2.circle(image.pixels, (int(round(cx)), int(round(cy))), int(round(radius)),
                   _color(color), thickness=-1)
        return image

    def draw_ellipse(self, image: RasterImage, cx: float, cy: float, rx: float, ry: float,
                     color: Color) -> RasterImage:
        if rx <= 0 or ry <= 0:
            return image
        cv2.ellipse(image.pixels, (int(round(cx)), int(round(cy))),
                    (int(round(rx)), int(round(ry))), 0, 0, 360, _color(color), thickness=-1)
        return image

    def draw_polygon(self, image: RasterImage, points: Sequence[Point],
                     color: Color) -> RasterImage:
        if len(points) < 3:
            return image
        pts = np.rint(np.asarray(points, dtype=np.float64)).astype(np.int32)
        cv2.fillPoly(image.pixels, [pts], _color(color))
        return image

    def draw_rectangle(self, image: RasterImage, x1: int, y1: int, x2: int, y2: int,
                       color: Color) -> RasterImage:
        cv2.rectangle(image.pixels, (int(x1), int(y1)), (int(x2), int(y2)),
                      _color(color), thickness=-1)
        return image
