"""
Shape masks and rounded corners.

Masks are drawn in white on a transparent canvas at twice the image size
(image size when twice would exceed the backend size limit) and reduced
with area averaging, which yields an anti-aliased coverage map in
0..1. Applying a mask multiplies the image alpha by the coverage, so anything
outside the keep region becomes transparent.
"""

import logging
import math
from typing import Dict, List, Optional

import numpy as np

from imgforge.constants.constants import ResizeMode, TRANSPARENT, WHITE
from imgforge.core.exceptions import FilterSkipped, ValidationError
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition, parse_dimension
from imgforge.raster.base import Point, RasterBackend, RasterImage, luma

logger = logging.getLogger(__name__)

SUPERSAMPLE = 2
CORNERS = ("tl", "tr", "bl", "br")
SHAPES = ("circle", "ellipse", "rectangle", "square", "polygon", "star", "image")


def polygon_points(cx: float, cy: float, radius: float, vertices: int,
                   rotation: float = 0.0) -> List[Point]:
    """
    Vertices of a regular polygon.

    Vertex ``i`` sits at angle ``270 - 360/N * i + rotation`` degrees, so with
    no rotation the first vertex points straight up.
    """
    if vertices < 3:
        raise ValidationError(f"A polygon needs at least 3 vertices, got {vertices}")
    step = 360.0 / vertices
    return [
        (cx + radius * math.cos(math.radians(270 - step * i + rotation)),
         cy + radius * math.sin(math.radians(270 - step * i + rotation)))
        for i in range(vertices)
    ]


def star_points(cx: float, cy: float, radius: float, spikes: int, split: float = 0.5,
                rotation: float = 0.0) -> List[Point]:
    """Star outline alternating outer radius and inner radius ``split * radius``."""
    if spikes < 3:
        raise ValidationError(f"A star needs at least 3 spikes, got {spikes}")
    step = 360.0 / spikes
    points = []
    for i in range(spikes):
        outer = math.radians(270 - step * i + rotation)
        inner = math.radians(270 - step * i - step / 2 + rotation)
        points.append((cx + radius * math.cos(outer), cy + radius * math.sin(outer)))
        points.append((cx + split * radius * math.cos(inner), cy + split * radius * math.sin(inner)))
    return points


def _shape_with_count(shape: str):
    for prefix in ("polygon-", "star-"):
        if shape.startswith(prefix):
            try:
                count = int(shape[len(prefix):])
            except ValueError as e:
                raise FilterSkipped(f"Invalid mask shape '{shape}'") from e
            if count < 3:
                raise FilterSkipped(f"Mask shape '{shape}' needs at least 3 points")
            return prefix[:-1], count
    return shape, 0


def supersample_factor(backend: RasterBackend, width: int, height: int) -> int:
    if backend.max_dimension > 0 and max(width, height) * SUPERSAMPLE > backend.max_dimension:
        return 1
    return SUPERSAMPLE


def coverage_from_canvas(backend: RasterBackend, canvas: RasterImage, width: int,
                         height: int) -> np.ndarray:
    reduced = backend.resize(canvas, width, height, ResizeMode.AVERAGE)
    return backend.pixels(reduced)[..., 3].astype(np.float64) / 255.0


def render_shape_mask(backend: RasterBackend, width: int, height: int, args: FilterArgs,
                      context: Optional[FilterContext] = None) -> np.ndarray:
    """
    Render the keep region described by ``args`` as a coverage map.

    Args:
        backend: Raster backend
        width: Image width
        height: Image height
        args: ``shape, x, y, size, extra...``; positions default to the centre
            and size to the shorter image side
        context: Needed for ``image`` masks, which load a monochrome mask image

    Returns:
        (height, width) float array in 0..1

    Raises:
        FilterSkipped: For unknown shapes or unusable arguments
    """
    shape, count = _shape_with_count((args.text(0) or "").strip().lower())
    if shape not in SHAPES:
        raise FilterSkipped(f"Unknown mask shape '{shape}'")

    if shape == "image":
        return _image_mask(backend, width, height, args.text(1), context or FilterContext())

    scale = supersample_factor(backend, width, height)
    base = min(width, height)
    cx = args.dimension(1, width, default=width // 2) * scale
    cy = args.dimension(2, height, default=height // 2) * scale
    size = args.dimension(3, base, default=base) * scale
    half = int(round(size / 2))

    canvas = backend.create(width * scale, height * scale, TRANSPARENT)
    if shape == "circle":
        backend.draw_circle(canvas, cx, cy, half, WHITE)
    elif shape == "ellipse":
        shape_height = args.dimension(4, base, default=size // scale) * scale
        backend.draw_ellipse(canvas, cx, cy, size / 2.0, shape_height / 2.0, WHITE)
    elif shape == "rectangle":
        shape_height = args.dimension(4, base, default=size // scale) * scale
        half_h = int(round(shape_height / 2))
        backend.draw_rectangle(canvas, cx - half, cy - half_h, cx + half, cy + half_h, WHITE)
    elif shape == "square":
        backend.draw_rectangle(canvas, cx - half, cy - half, cx + half, cy + half, WHITE)
    elif shape == "polygon":
        rotation = args.number(4, default=0.0)
        backend.draw_polygon(canvas, polygon_points(cx, cy, half, count, rotation), WHITE)
    else:
        rotation = args.number(4, default=0.0)
        split = args.number(5, 0.0, 1.0, default=0.5)
        backend.draw_polygon(canvas, star_points(cx, cy, half, count, split, rotation), WHITE)
    return coverage_from_canvas(backend, canvas, width, height)


def _image_mask(backend: RasterBackend, width: int, height: int, reference: Optional[str],
                context: FilterContext) -> np.ndarray:
    """Dark pixels of a monochrome mask image mark the keep region."""
    if not reference:
        raise FilterSkipped("Image mask requires a mask image reference")
    mask_image = context.load_image(backend, reference)
    s = supersample_factor(backend, width, height)
    mask_image = backend.resize(mask_image, width * s, height * s, ResizeMode.SMOOTH)
    pixels = backend.pixels(mask_image)
    keep = (luma(pixels) < 128) & (pixels[..., 3] >= 128)
    canvas = backend.create(width * s, height * s, TRANSPARENT)
    backend.pixels(canvas)[keep] = np.asarray(WHITE, dtype=np.uint8)
    return coverage_from_canvas(backend, canvas, width, height)


def apply_coverage(image: RasterImage, coverage: np.ndarray) -> RasterImage:
    """Multiply image alpha by a coverage map."""
    pixels = image.pixels.copy()
    pixels[..., 3] = np.clip(np.rint(pixels[..., 3] * coverage), 0, 255).astype(np.uint8)
    return RasterImage(pixels, image.source_format)


@filter_definition("mask", defaults=("circle",))
def mask(backend: RasterBackend, image: RasterImage, args: FilterArgs,
         context: FilterContext) -> RasterImage:
    coverage = render_shape_mask(backend, image.width, image.height, args, context)
    return apply_coverage(image, coverage)


def parse_corner_spec(spec: str, width: int) -> Dict[str, int]:
    """
    Parse a rounded corner specification.

    ``all,R`` applies one radius to every corner; ``tl,R|tr,R|bl,R|br,R``
    sets corners individually. ``R`` is pixels or a percentage of the image
    width. Radii are clamped to half the image width.

    Raises:
        ValidationError: If the specification cannot be parsed
    """
    radii = {corner: 0 for corner in CORNERS}
    for part in str(spec).split("|"):
        part = part.strip()
        if not part:
            continue
        corner, _, value = part.partition(",")
        corner = corner.strip().lower()
        if corner not in CORNERS + ("all",):
            raise ValidationError(f"Unknown corner '{corner}' in rounded corner spec")
        radius = max(0, min(width // 2, parse_dimension(value or "0", width)))
        for name in (CORNERS if corner == "all" else (corner,)):
            radii[name] = radius
    return radii


def corner_infill_rects(width: int, height: int, radii: Dict[str, int]) -> Dict[str, tuple]:
    """
    Rectangles (x, y, w, h) that, together with the corner circles, form the keep region.

    Each rectangle is shortened by the radii of the corners it approaches so
    that neighbouring corners do not overlap.
    """
    tl, tr, bl, br = (radii[c] for c in CORNERS)
    return {
        "top": (tl, 0, width - tl - tr, height - max(bl, br)),
        "bottom": (bl, max(tl, tr), width - br - bl, height - max(tl, tr)),
        "left": (0, tl, width - max(tr, br), height - tl - bl),
        "right": (max(tl, bl), tr, width - max(tl, bl), height - tr - br),
    }


def rounded_corners_coverage(backend: RasterBackend, width: int, height: int,
                             radii: Dict[str, int]) -> np.ndarray:
    s = supersample_factor(backend, width, height)
    canvas = backend.create(width * s, height * s, TRANSPARENT)
    centres = {
        "tl": (radii["tl"], radii["tl"]),
        "tr": (width - 1 - radii["tr"], radii["tr"]),
        "bl": (radii["bl"], height - 1 - radii["bl"]),
        "br": (width - 1 - radii["br"], height - 1 - radii["br"]),
    }
    for corner, (cx, cy) in centres.items():
        if radii[corner] > 0:
            backend.draw_circle(canvas, cx * s + s / 2.0, cy * s + s / 2.0, radii[corner] * s, WHITE)
    for x, y, w, h in corner_infill_rects(width, height, radii).values():
        if w > 0 and h > 0:
            backend.draw_rectangle(canvas, x * s, y * s, (x + w) * s - 1, (y + h) * s - 1, WHITE)
    return coverage_from_canvas(backend, canvas, width, height)


def rounded_corners(backend: RasterBackend, image: RasterImage, spec: str) -> RasterImage:
    radii = parse_corner_spec(spec, image.width)
    if not any(radii.values()):
        return image
    logger.debug(f"Rounding corners {radii}")
    return apply_coverage(image, rounded_corners_coverage(backend, image.width, image.height, radii))
