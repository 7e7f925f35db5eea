"""
Geometry: target size calculation, crop, resize, flip and rotate.

Dimension handling works on resolved pixel values:

1. ``width``/``height`` give the requested box; a missing side follows the
   source aspect ratio.
2. ``max*``/``min*`` clamp the box (``max_width`` overrides ``max`` and so on).
3. Without ``allow_scale_larger`` a box larger than the source falls back to
   the source size.
4. Resizes honour ``fit`` (``contain`` by default, ``cover``, or ``fill`` which
   stretches); crops cut the box out of the source, optionally after scaling
   the source to cover the box ("smart scale").
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from imgforge.constants.constants import ResizeMode, TRANSPARENT
from imgforge.core.exceptions import FilterSkipped, ValidationError
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition, parse_dimension
from imgforge.raster.base import RasterBackend, RasterImage
from imgforge.raster.colors import parse_color

logger = logging.getLogger(__name__)

CROP_HORIZONTAL = ("left", "center", "right")
CROP_VERTICAL = ("top", "center", "bottom")


@dataclass(frozen=True)
class CropSpec:
    """Parsed ``crop`` parameter: ``yes|position|offset|smart_scale``."""
    horizontal: str = "center"
    vertical: str = "center"
    offset_x: int = 0
    offset_y: int = 0
    smart_scale: bool = True


def _first_letter(text: str) -> str:
    return text.strip().lower()[:1]


def parse_crop_spec(spec: Optional[str], width: int, height: int) -> Optional[CropSpec]:
    """
    Parse a crop specification for a ``width`` x ``height`` source.

    Returns None when cropping is not requested (``n...`` or empty). Invalid
    positions and offsets fall back to their defaults.
    """
    if not spec:
        return None
    fields = str(spec).split("|")
    if _first_letter(fields[0]) != "y":
        return None

    position = [p.strip().lower() for p in fields[1].split(",")] if len(fields) > 1 and fields[1] else []
    horizontal = position[0] if position and position[0] in CROP_HORIZONTAL else "center"
    vertical = position[1] if len(position) > 1 and position[1] in CROP_VERTICAL else "center"

    offset_x = offset_y = 0
    offsets = fields[2].split(",") if len(fields) > 2 and fields[2] else []
    if len(offsets) == 2:
        try:
            offset_x = parse_dimension(offsets[0], width)
            offset_y = parse_dimension(offsets[1], height)
        except ValidationError:
            logger.info(f"Ignoring invalid crop offset {fields[2]!r}")

    smart_scale = _first_letter(fields[3]) != "n" if len(fields) > 3 and fields[3].strip() else True
    return CropSpec(horizontal, vertical, offset_x, offset_y, smart_scale)


def target_size(params: Mapping[str, object], source_width: int, source_height: int) -> Tuple[int, int]:
    """
    Output box for resolved dimensional parameters.

    Args:
        params: Parameter mapping with resolved integer dimensions
        source_width: Source width
        source_height: Source height

    Returns:
        (width, height), each at least 1
    """
    aspect = source_height / source_width
    width = params.get("width") or None
    height = params.get("height") or None

    max_w = params.get("max_width") or params.get("max")
    max_h = params.get("max_height") or params.get("max")
    min_w = params.get("min_width") or params.get("min")
    min_h = params.get("min_height") or params.get("min")

    if max_w:
        width = min(width, max_w) if width else min(source_width, max_w)
    if min_w:
        width = max(width, min_w) if width else max(source_width, min_w)
    if max_h:
        height = min(height, max_h) if height else min(source_height, max_h)
    if min_h:
        height = max(height, min_h) if height else max(source_height, min_h)

    if not params.get("allow_scale_larger") and (
            (width and width > source_width) or (height and height > source_height)):
        logger.debug(f"Requested {width}x{height} exceeds source; using source size")
        width, height = source_width, source_height

    if width and not height:
        height = round(width * aspect)
    elif height and not width:
        width = round(height / aspect)
    elif not width and not height:
        width, height = source_width, source_height
    return max(1, int(width)), max(1, int(height))


def fit_size(width: int, height: int, source_width: int, source_height: int,
             fit: Optional[str] = "contain") -> Tuple[int, int]:
    """Adjust a box so that the source aspect ratio is preserved."""
    if fit == "fill":
        return width, height
    aspect = source_height / source_width
    if abs(aspect - height / width) < 1e-9:
        return width, height
    y_bound = width * aspect > height
    if fit == "cover":
        return (width, max(1, round(width * aspect))) if y_bound else (max(1, round(height / aspect)), height)
    return (max(1, round(height / aspect)), height) if y_bound else (width, max(1, round(width * aspect)))


def crop_image(backend: RasterBackend, image: RasterImage, width: int, height: int,
               spec: CropSpec) -> RasterImage:
    """
    Cut a ``width`` x ``height`` region out of ``image``.

    Raises:
        FilterSkipped: If the region is larger than the (scaled) source
    """
    if spec.smart_scale:
        scaled_w, scaled_h = fit_size(width, height, image.width, image.height, "cover")
        if (scaled_w, scaled_h) != image.size:
            image = backend.resize(image, scaled_w, scaled_h, ResizeMode.SMOOTH)

    if width > image.width or height > image.height:
        raise FilterSkipped(f"Crop {width}x{height} exceeds source {image.width}x{image.height}")

    x = {"left": 0, "center": round((image.width - width) / 2), "right": image.width - width}[spec.horizontal]
    y = {"top": 0, "center": round((image.height - height) / 2), "bottom": image.height - height}[spec.vertical]
    x = max(0, min(x + spec.offset_x, image.width - width))
    y = max(0, min(y + spec.offset_y, image.height - height))
    return backend.crop(image, x, y, width, height)


def resize_image(backend: RasterBackend, image: RasterImage, width: int, height: int,
                 fit: Optional[str] = None) -> RasterImage:
    width, height = fit_size(width, height, image.width, image.height, fit or "contain")
    if (width, height) == image.size:
        return image
    mode = ResizeMode.AVERAGE if width < image.width and height < image.height else ResizeMode.SMOOTH
    return backend.resize(image, width, height, mode)


def apply_geometry(backend: RasterBackend, image: RasterImage,
                   params: Mapping[str, object]) -> RasterImage:
    """Crop or resize according to resolved dimensional and crop parameters."""
    width, height = target_size(params, image.width, image.height)
    crop = parse_crop_spec(params.get("crop"), image.width, image.height)
    if crop is not None:
        try:
            return crop_image(backend, image, width, height, crop)
        except FilterSkipped as e:
            logger.info(f"Crop skipped: {e}")
            return image
    return resize_image(backend, image, width, height, params.get("fit"))


FLIP_AXES = {"h": (True, False), "v": (False, True), "both": (True, True)}


@filter_definition("flip", defaults=("h",))
def flip(backend: RasterBackend, image: RasterImage, args: FilterArgs,
         context: FilterContext) -> RasterImage:
    axis = args.choice(0, tuple(FLIP_AXES))
    horizontal, vertical = FLIP_AXES[axis]
    return backend.flip(image, horizontal, vertical)


@filter_definition("rotate", defaults=(0,))
def rotate(backend: RasterBackend, image: RasterImage, args: FilterArgs,
           context: FilterContext) -> RasterImage:
    """Rotate clockwise; the exposed corners take the background colour."""
    degrees = args.number(0) % 360
    if degrees == 0:
        return image
    background = TRANSPARENT if context.supports_alpha else context.background
    if args.has(1):
        background = parse_color(args.text(1))
    return backend.rotate(image, degrees, background)
