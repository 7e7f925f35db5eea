"""Mirror reflection below the image."""

import logging
from typing import Optional

import numpy as np

from imgforge.constants.constants import TRANSPARENT
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition
from imgforge.raster.base import Color, RasterBackend, RasterImage

logger = logging.getLogger(__name__)


def reflect(backend: RasterBackend, image: RasterImage, gap: int = 0, start_opacity: int = 80,
            end_opacity: int = 0, height: Optional[int] = None,
            background: Color = TRANSPARENT) -> RasterImage:
    """
    Append a fading mirror image below ``image``.

    Args:
        backend: Raster backend
        image: Source image
        gap: Rows between the image and its reflection
        start_opacity: Reflection opacity (percent) next to the image
        end_opacity: Reflection opacity (percent) at the far edge
        height: Reflection height in pixels; defaults to half the image height
        background: Canvas fill behind the reflection

    Returns:
        New image of height ``H + gap + height``
    """
    width, image_height = image.size
    height = image_height // 2 if height is None else max(0, min(int(height), image_height))
    gap = max(0, int(gap))
    if height == 0:
        return image

    canvas = backend.create(width, image_height + gap + height, background)
    canvas.source_format = image.source_format
    backend.paste(canvas, image, 0, 0)

    flipped = backend.flip(image, vertical=True)
    strip = backend.pixels(flipped)[:height].copy()
    rows = np.arange(height, dtype=np.float64)
    span = max(1, height - 1)
    opacity = (start_opacity + (end_opacity - start_opacity) * rows / span) / 100.0
    strip[..., 3] = np.clip(np.rint(strip[..., 3] * opacity[:, None]), 0, 255).astype(np.uint8)

    return backend.paste(canvas, RasterImage(strip), 0, image_height + gap)


def parse_reflection_args(args: FilterArgs, image_height: int):
    """Reflection arguments with out-of-range opacities replaced by their defaults."""
    gap = args.dimension(0, image_height, default=0)
    start = args.integer(1)
    start = start if start is not None and 0 < start <= 100 else 80
    end = args.integer(2)
    end = end if end is not None and 0 <= end <= 100 else 0
    height = args.dimension(3, image_height, default=image_height // 2)
    return gap, start, end, height


@filter_definition("reflection", defaults=(0, 80, 0, "50%"))
def reflection(backend: RasterBackend, image: RasterImage, args: FilterArgs,
               context: FilterContext) -> RasterImage:
    gap, start, end, height = parse_reflection_args(args, image.height)
    background = TRANSPARENT if context.supports_alpha else context.background
    return reflect(backend, image, gap, start, end, height, background)
