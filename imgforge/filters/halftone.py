"""Halftone (dot screen) filter."""

import logging

from imgforge.constants.constants import ResizeMode, WHITE
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition
from imgforge.raster.base import RasterBackend, RasterImage, luma

logger = logging.getLogger(__name__)

INTENSITY_GAIN = 1.2
CIRCLE_GAIN = 1.2


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def halftone(backend: RasterBackend, image: RasterImage, block: int = 6, color=None,
             shape: str = "circle", multiplier: float = 1.0) -> RasterImage:
    """
    Render the image as a grid of dots on a white canvas.

    The image is first reduced by averaging so that every ``block`` x ``block``
    cell becomes one sample; each sample is drawn as a circle or square whose
    size follows the darkness of the sample.

    Args:
        backend: Raster backend
        image: Source image
        block: Cell size in pixels
        color: Fixed dot colour, or None to use each sample's own colour
        shape: ``circle`` or ``square``
        multiplier: Dot size multiplier

    Returns:
        New image of the same size as ``image``
    """
    width, height = image.size
    block = max(1, int(block))
    small_w = max(1, int(round(width / block)))
    small_h = max(1, int(round(height / block)))
    reduced = backend.pixels(backend.resize(image, small_w, small_h, ResizeMode.AVERAGE))
    gray = luma(reduced)

    canvas = backend.create(width, height, WHITE)
    canvas.source_format = image.source_format
    nudge = int(round(block / 2))

    for y in range(small_h):
        for x in range(small_w):
            intensity = (255 - int(gray[y, x])) / 255.0 * multiplier * INTENSITY_GAIN
            dot_color = color if color is not None else tuple(int(c) for c in reduced[y, x, :3]) + (255,)
            nx, ny = x * block, y * block
            if shape == "square":
                radius = int(round(nudge * intensity))
                if radius <= 0:
                    continue
                x1 = _clamp(nx + radius + nudge, 0, width - 1)
                y1 = _clamp(ny + radius + nudge, 0, height - 1)
                x2 = _clamp(nx + 2 * radius + nudge, 0, width - 1)
                y2 = _clamp(ny + 2 * radius + nudge, 0, height - 1)
                backend.draw_rectangle(canvas, x1, y1, x2, y2, dot_color)
            else:
                radius = int(round(block / 2.0 * intensity * CIRCLE_GAIN))
                if radius <= 0:
                    continue
                cx = _clamp(nx + radius + nudge, radius, width - radius - 1)
                cy = _clamp(ny + radius + nudge, radius, height - radius - 1)
                backend.draw_circle(canvas, cx, cy, radius, dot_color)
    return canvas


@filter_definition("dot", "halftone", defaults=(6, "", "circle", 1))
def dot(backend: RasterBackend, image: RasterImage, args: FilterArgs,
        context: FilterContext) -> RasterImage:
    block = args.integer(0, 1, max(1, min(image.size)))
    color = args.color(1)
    shape = args.choice(2, ("circle", "square"))
    multiplier = args.number(3, 0.0, 10.0)
    return halftone(backend, image, block, color, shape, multiplier)
