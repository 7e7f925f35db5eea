"""
Watermark overlay.

Specification: ``src|min_dims|opacity|position|offset|rotation``

- ``min_dims``: ``w,h``; images smaller than this are left alone
- ``opacity``: 0..100 (default 100)
- ``position``: ``left|center|right,top|center|bottom`` for a single
  placement, or ``repeat,gap_x,gap_y`` for diagonal tiling
- ``offset``: ``x,y`` shift applied to every placement
- ``rotation``: degrees, applied to the watermark before placement

Placement coordinates live on a canvas one watermark larger than the image
on every side. Marks are pasted onto an image-sized transparent overlay at
those coordinates less the margin, so clipping matches a crop of the larger
canvas. The overlay is then pasted onto the image with the requested opacity.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from imgforge.constants.constants import TRANSPARENT
from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import FilterContext, parse_dimension
from imgforge.raster.base import RasterBackend, RasterImage

logger = logging.getLogger(__name__)

HORIZONTAL_POSITIONS = ("left", "center", "right")
VERTICAL_POSITIONS = ("top", "center", "bottom")


@dataclass(frozen=True)
class WatermarkSpec:
    """Parsed watermark specification."""
    src: str
    min_width: int = 0
    min_height: int = 0
    opacity: int = 100
    position: Tuple[str, ...] = ("center", "center")
    offset_x: int = 0
    offset_y: int = 0
    rotation: float = 0.0

    @property
    def repeat(self) -> bool:
        return self.position[0] == "repeat"


def _field(fields: List[str], index: int) -> str:
    return fields[index].strip() if index < len(fields) else ""


def parse_watermark_spec(spec: str, width: int, height: int) -> WatermarkSpec:
    """
    Parse a watermark specification for an image of ``width`` x ``height``.

    Invalid positions fall back to ``center,center``.

    Raises:
        FilterSkipped: If no source is given
    """
    fields = str(spec or "").split("|")
    src = _field(fields, 0)
    if not src:
        raise FilterSkipped("Watermark requires a source image")

    min_dims = [part.strip() for part in _field(fields, 1).split(",")]
    min_width = parse_dimension(min_dims[0], width) if min_dims[0] else 0
    min_height = parse_dimension(min_dims[1], height) if len(min_dims) > 1 and min_dims[1] else 0

    opacity_text = _field(fields, 2)
    try:
        opacity = max(0, min(100, abs(int(float(opacity_text))))) if opacity_text else 100
    except ValueError:
        opacity = 100

    position = tuple(part.strip().lower() for part in _field(fields, 3).split(",") if part.strip())
    if not position:
        position = ("center", "center")
    if position[0] != "repeat" and (
            len(position) < 2
            or position[0] not in HORIZONTAL_POSITIONS
            or position[1] not in VERTICAL_POSITIONS):
        logger.info(f"Invalid watermark position {position}; using center,center")
        position = ("center", "center")

    offsets = [part.strip() for part in _field(fields, 4).split(",")]
    offset_x = parse_dimension(offsets[0], width) if offsets[0] else 0
    offset_y = parse_dimension(offsets[1], width) if len(offsets) > 1 and offsets[1] else 0

    rotation_text = _field(fields, 5)
    try:
        rotation = float(rotation_text) if rotation_text else 0.0
    except ValueError:
        rotation = 0.0

    return WatermarkSpec(src, min_width, min_height, opacity, position, offset_x, offset_y, rotation)


def repeat_gaps(position: Tuple[str, ...], mark_width: int, mark_height: int) -> Tuple[int, int]:
    """
    Horizontal and vertical gaps between tiles.

    A unitless horizontal gap given without a vertical gap is a percentage of
    the watermark width; the horizontal gap defaults to 50%. Both are clamped
    to the watermark size.
    """
    gap_x = position[1] if len(position) > 1 else "50%"
    if len(position) == 2 and not gap_x.endswith(("%", "px")):
        gap_x = f"{gap_x}%"
    gap_y = position[2] if len(position) > 2 else "0"
    gap_x = max(0, min(parse_dimension(gap_x, mark_width), mark_width))
    gap_y = max(0, min(parse_dimension(gap_y, mark_height), mark_height))
    return gap_x, gap_y


def watermark_repeats(image_width: int, image_height: int, mark_width: int, mark_height: int,
                      gap_x: int, gap_y: int) -> Tuple[int, int]:
    """Number of tile columns and rows needed to cover the padded canvas."""
    repeats_x = math.ceil((image_width + 2 * mark_width) / (mark_width + gap_x)) + 2
    repeats_y = math.ceil((image_height + 2 * mark_height) / (mark_height + gap_y))
    return repeats_x, repeats_y


def tile_positions(image_width: int, image_height: int, mark_width: int, mark_height: int,
                   gap_x: int, gap_y: int, offset_x: int = 0, offset_y: int = 0) -> List[Tuple[int, int]]:
    """
    Canvas positions of every tile that overlaps the image.

    Each row is shifted left by one tile plus gap relative to the row above,
    which produces diagonal tiling.
    """
    w, h = mark_width, mark_height
    repeats_x, repeats_y = watermark_repeats(image_width, image_height, w, h, gap_x, gap_y)
    positions = []
    for row in range(repeats_y):
        for col in range(repeats_x):
            x = w + col * (w + offset_x) - row * (w + gap_x + offset_x) + offset_x
            y = h + row * (h + gap_y + offset_y) + offset_y + gap_y
            if 0 < x <= image_width + w and 0 < y <= image_height + h:
                positions.append((x, y))
    return positions


def single_position(spec: WatermarkSpec, image_width: int, image_height: int, mark_width: int,
                    mark_height: int) -> Optional[Tuple[int, int]]:
    horizontal, vertical = spec.position[:2]
    x = {"left": 0,
         "center": int(round((image_width - mark_width) / 2)),
         "right": image_width - mark_width}[horizontal]
    y = {"top": 0,
         "center": int(round((image_height - mark_height) / 2)),
         "bottom": image_height - mark_height}[vertical]
    x += mark_width + spec.offset_x
    y += mark_height + spec.offset_y
    if -mark_width < x <= mark_width + image_width and -mark_height < y <= mark_height + image_height:
        return x, y
    return None


def apply_watermark(backend: RasterBackend, image: RasterImage, spec: str,
                    context: FilterContext) -> RasterImage:
    """
    Composite a watermark onto ``image``.

    Raises:
        FilterSkipped: If the image is below the minimum size or the watermark
            cannot be loaded
    """
    width, height = image.size
    parsed = parse_watermark_spec(spec, width, height)
    if parsed.min_width > width or parsed.min_height > height:
        raise FilterSkipped(f"Image {width}x{height} is smaller than watermark minimum "
                            f"{parsed.min_width}x{parsed.min_height}")

    mark = context.load_image(backend, parsed.src)
    if parsed.rotation:
        mark = backend.rotate(mark, parsed.rotation, TRANSPARENT)
    mark_w, mark_h = mark.size

    overlay = backend.create(width, height, TRANSPARENT)
    if parsed.repeat:
        gap_x, gap_y = repeat_gaps(parsed.position, mark_w, mark_h)
        positions = tile_positions(width, height, mark_w, mark_h, gap_x, gap_y,
                                   parsed.offset_x, parsed.offset_y)
        logger.debug(f"Tiling watermark {len(positions)} times (gap {gap_x}x{gap_y})")
    else:
        position = single_position(parsed, width, height, mark_w, mark_h)
        positions = [position] if position else []

    # positions are on a canvas with a one-mark margin; paste clips to the image
    for x, y in positions:
        backend.paste(overlay, mark, x - mark_w, y - mark_h)

    result = image.copy()
    return backend.paste(result, overlay, 0, 0, parsed.opacity)
