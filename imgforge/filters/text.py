"""
Text overlay.

Specification, ``|`` separated:
``text|min_dims|font_size|line_height|color|font_src|align|width|position|offset|opacity|shadow_color|shadow_offset|shadow_opacity|box_color|text_bg_color|rotation``

- ``text``: may carry ``\\n``, ``<br>`` and ``</p>`` line breaks; other
  markup is stripped and entities are decoded
- ``min_dims``: ``w,h``; images smaller than this are left alone
- ``line_height``: pixels or a percentage of the font size (default 125%)
- ``width``: text box width; a negative value is subtracted from the image
  width (default: the image width)
- ``position``: ``left|center|right,top|center|bottom`` of the text box
- ``rotation``: degrees counter-clockwise

Glyphs come from the built-in vector font; ``font_src`` is accepted but only
logged.
"""

import html
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from imgforge.constants.constants import BLACK, TRANSPARENT
from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import clamp_channels, parse_dimension
from imgforge.filters.watermark import HORIZONTAL_POSITIONS, VERTICAL_POSITIONS
from imgforge.raster.base import Color, RasterBackend, RasterImage
from imgforge.raster.colors import parse_color

logger = logging.getLogger(__name__)

DEFAULT_FONT_SIZE = 12
DEFAULT_LINE_HEIGHT = 1.25
ALIGNMENTS = ("left", "center", "right")

_BREAKS = re.compile(r"<br\s*/?>|</p>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class TextSpec:
    """Parsed text overlay specification."""
    content: str
    min_width: int = 0
    min_height: int = 0
    font_size: int = DEFAULT_FONT_SIZE
    line_height: float = DEFAULT_LINE_HEIGHT
    """Line pitch as a multiple of the font size."""

    color: Color = BLACK
    font_src: str = ""
    align: str = "center"
    box_width: int = 0
    position: Tuple[str, str] = ("center", "center")
    offset_x: int = 0
    offset_y: int = 0
    opacity: int = 100
    shadow_color: Optional[Color] = None
    shadow_offset: Tuple[int, int] = (1, 1)
    shadow_opacity: int = 100
    box_color: Color = TRANSPARENT
    text_background: Optional[Color] = None
    rotation: float = 0.0


def clean_text(raw: str) -> str:
    """Plain text with one entry per line and surrounding blanks trimmed."""
    text = _BREAKS.sub("\n", str(raw or "").replace("\\n", "\n"))
    text = html.unescape(_TAGS.sub("", text).replace("&nbsp;", " "))
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def _field(fields: List[str], index: int) -> str:
    return fields[index].strip() if index < len(fields) else ""


def _pair(text: str) -> List[str]:
    parts = [part.strip() for part in text.split(",")]
    return parts + [""] * (2 - len(parts))


def _percent(text: str, default: int) -> int:
    if not text:
        return default
    try:
        return max(0, min(100, abs(int(float(text)))))
    except ValueError:
        return default


def parse_text_spec(spec: str, width: int, height: int) -> TextSpec:
    """
    Parse a text overlay specification for an image of ``width`` x ``height``.

    An unparseable text or box colour falls back to its default; an invalid
    position falls back to ``center,center``.

    Raises:
        ValidationError: If a size, an offset or a shadow or background colour
            cannot be parsed
    """
    fields = str(spec or "").split("|")

    min_w, min_h = _pair(_field(fields, 1))
    size_text = _field(fields, 2)
    font_size = max(1, parse_dimension(size_text, height)) if size_text else DEFAULT_FONT_SIZE

    pitch_text = _field(fields, 3)
    line_height = DEFAULT_LINE_HEIGHT
    if pitch_text:
        line_height = max(0.1, round(parse_dimension(pitch_text, font_size) / font_size, 2))

    align = _field(fields, 6).lower() or "center"
    if align not in ALIGNMENTS:
        logger.info(f"Invalid text alignment {align!r}; using center")
        align = "center"

    box_width = width
    width_text = _field(fields, 7)
    if width_text:
        adjustment = parse_dimension(width_text, width)
        box_width = min(adjustment, width) if adjustment > 0 else max(0, width + adjustment)

    position = tuple(part.lower() for part in _pair(_field(fields, 8))[:2])
    if position == ("", ""):
        position = ("center", "center")
    if position[0] not in HORIZONTAL_POSITIONS or position[1] not in VERTICAL_POSITIONS:
        logger.info(f"Invalid text position {position}; using center,center")
        position = ("center", "center")

    off_x, off_y = _pair(_field(fields, 9))
    shadow_x, shadow_y = _pair(_field(fields, 12))
    rotation_text = _field(fields, 16)
    try:
        rotation = float(rotation_text) if rotation_text else 0.0
    except ValueError:
        rotation = 0.0

    return TextSpec(
        content=clean_text(_field(fields, 0)),
        min_width=parse_dimension(min_w, width) if min_w else 0,
        min_height=parse_dimension(min_h, height) if min_h else 0,
        font_size=font_size,
        line_height=line_height,
        color=parse_color(_field(fields, 4), BLACK),
        font_src=_field(fields, 5),
        align=align,
        box_width=box_width,
        position=position,
        offset_x=parse_dimension(off_x, width) if off_x else 0,
        offset_y=parse_dimension(off_y, height) if off_y else 0,
        opacity=_percent(_field(fields, 10), 100),
        shadow_color=parse_color(_field(fields, 11), None) if _field(fields, 11) else None,
        shadow_offset=(int(parse_dimension(shadow_x, font_size)) if shadow_x else 1,
                       int(parse_dimension(shadow_y, font_size)) if shadow_y else 1),
        shadow_opacity=_percent(_field(fields, 13), 100),
        box_color=parse_color(_field(fields, 14), TRANSPARENT),
        text_background=parse_color(_field(fields, 15), None) if _field(fields, 15) else None,
        rotation=rotation,
    )


def text_layer(coverage: np.ndarray, color: Color, opacity: int = 100) -> RasterImage:
    """A layer of ``color`` whose alpha follows the glyph coverage."""
    pixels = np.zeros(coverage.shape + (4,), dtype=np.uint8)
    pixels[..., :3] = color[:3]
    pixels[..., 3] = clamp_channels(coverage * color[3] * (opacity / 100.0))
    return RasterImage(pixels)


def line_offsets(widths: List[int], box_width: int, align: str) -> List[int]:
    return [{"left": 0, "right": box_width - w}.get(align, (box_width - w) // 2) for w in widths]


def render_text_box(backend: RasterBackend, parsed: TextSpec) -> RasterImage:
    """The text box before rotation: background, line backgrounds, shadow, text."""
    lines = backend.wrap_text(parsed.content, parsed.box_width, parsed.font_size)
    band = parsed.line_height * parsed.font_size
    box_height = max(1, int(math.ceil(len(lines) * band)))
    box = backend.create(parsed.box_width, box_height, parsed.box_color)

    if parsed.text_background is not None:
        widths = [min(backend.measure_text(line, parsed.font_size)[0], parsed.box_width) for line in lines]
        for row, (line, x, w) in enumerate(zip(lines, line_offsets(widths, parsed.box_width, parsed.align), widths)):
            if line and w > 0:
                strip = backend.create(w, max(1, int(round(band))), parsed.text_background)
                backend.paste(box, strip, x, int(round(row * band)))

    def coverage(offset: Tuple[int, int]) -> np.ndarray:
        return backend.text_coverage(lines, parsed.box_width, box_height, parsed.font_size,
                                     parsed.line_height, parsed.align, offset)

    if parsed.shadow_color is not None:
        backend.paste(box, text_layer(coverage(parsed.shadow_offset), parsed.shadow_color,
                                      parsed.shadow_opacity), 0, 0)
    backend.paste(box, text_layer(coverage((0, 0)), parsed.color, parsed.opacity), 0, 0)
    return box


def apply_text(backend: RasterBackend, image: RasterImage, spec: str) -> RasterImage:
    """
    Write a block of text onto ``image``.

    Raises:
        FilterSkipped: If there is no text, the image is below the minimum
            size or the text box has no width
    """
    width, height = image.size
    parsed = parse_text_spec(spec, width, height)
    if not parsed.content:
        raise FilterSkipped("No text to add")
    if parsed.min_width > width or parsed.min_height > height:
        raise FilterSkipped(f"Image {width}x{height} is smaller than text minimum "
                            f"{parsed.min_width}x{parsed.min_height}")
    if parsed.box_width <= 0:
        raise FilterSkipped("Text box has no width")
    if parsed.font_src:
        logger.info(f"Font {parsed.font_src} is not loaded; using the built-in font")

    box = render_text_box(backend, parsed)
    if parsed.rotation:
        box = backend.rotate(box, -parsed.rotation, TRANSPARENT)

    horizontal, vertical = parsed.position
    x = {"left": 0, "center": int(round((width - box.width) / 2)), "right": width - box.width}[horizontal]
    y = {"top": 0, "center": int(round((height - box.height) / 2)), "bottom": height - box.height}[vertical]
    logger.debug(f"Placing {box.width}x{box.height} text box at {x + parsed.offset_x},{y + parsed.offset_y}")

    result = image.copy()
    return backend.paste(result, box, x + parsed.offset_x, y + parsed.offset_y)
