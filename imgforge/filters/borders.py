"""
Borders.

A box border surrounds the image rectangle. A drawn border follows the
outline of an image that has transparent regions (for example after a mask)
by stamping circles along every opaque/transparent transition.
"""

import logging
from typing import Tuple

import numpy as np

from imgforge.constants.constants import TRANSPARENT
from imgforge.core.exceptions import FilterSkipped, ValidationError
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition, parse_dimension
from imgforge.raster.base import Color, RasterBackend, RasterImage
from imgforge.raster.colors import parse_color

logger = logging.getLogger(__name__)

DEFAULT_BORDER_WIDTH = 10
DEFAULT_BORDER_COLOR = "#FFFFFF"


def parse_border_spec(spec: str, reference: int) -> Tuple[int, Color]:
    """
    Parse ``width|color``.

    Width is pixels or a percentage of ``reference``; both parts are optional.

    Raises:
        ValidationError: If either part cannot be parsed
    """
    width_text, _, color_text = str(spec or "").partition("|")
    width = parse_dimension(width_text.strip(), reference) if width_text.strip() else DEFAULT_BORDER_WIDTH
    color = parse_color(color_text.strip() or DEFAULT_BORDER_COLOR)
    if width < 0:
        raise ValidationError(f"Border width must not be negative, got {width}")
    return width, color


def box_border(backend: RasterBackend, image: RasterImage, width: int, color: Color) -> RasterImage:
    if width <= 0:
        raise FilterSkipped("Border width is zero")
    canvas = backend.create(image.width + 2 * width, image.height + 2 * width, color)
    canvas.source_format = image.source_format
    return backend.paste(canvas, image, width, width)


def transition_points(opaque: np.ndarray) -> np.ndarray:
    """
    Points along opaque/transparent boundaries, as an (N, 2) array of (x, y).

    Rows are scanned top to bottom except the last. A pixel is a horizontal
    transition when its opacity differs from its left neighbour and a vertical
    transition when it differs from the pixel above. The stamp point is the
    pixel itself when it is the opaque side of the transition, otherwise the
    neighbour before it.
    """
    rows = opaque[:-1]
    previous = np.zeros_like(rows)
    previous[:, 1:] = rows[:, :-1]
    above = np.zeros_like(rows)
    above[1:] = rows[:-1]

    x_transition = rows != previous
    y_transition = rows != above
    found = x_transition | y_transition

    ys, xs = np.nonzero(found)
    stamp_x = np.where(x_transition[ys, xs] & rows[ys, xs], xs, xs - 1)
    stamp_y = np.where(y_transition[ys, xs] & rows[ys, xs], ys, ys - 1)
    points = np.stack([stamp_x, stamp_y], axis=1)
    return np.unique(points, axis=0) if len(points) else points


def drawn_border(backend: RasterBackend, image: RasterImage, width: int, color: Color) -> RasterImage:
    """
    Border that follows the visible outline of a transparent image.

    The image is placed on a transparent canvas enlarged by ``width`` on every
    side; a filled circle of radius ``width`` is stamped at every transition
    point and the image is pasted on top.
    """
    if width <= 0:
        raise FilterSkipped("Border width is zero")
    new_w, new_h = image.width + 2 * width, image.height + 2 * width

    source = backend.create(new_w, new_h, TRANSPARENT)
    backend.paste(source, image, width, width)
    opaque = backend.pixels(source)[..., 3] == 255

    border = backend.create(new_w, new_h, TRANSPARENT)
    points = transition_points(opaque)
    logger.debug(f"Stamping {len(points)} border points of radius {width}")
    for x, y in points:
        backend.draw_circle(border, int(x), int(y), width, color)

    backend.paste(border, source, 0, 0)
    border.source_format = image.source_format
    return border


def add_border(backend: RasterBackend, image: RasterImage, spec: str,
               follow_outline: bool = False) -> RasterImage:
    """Apply a ``width|color`` border; ``follow_outline`` selects the drawn variant."""
    width, color = parse_border_spec(spec, min(image.size))
    if follow_outline:
        return drawn_border(backend, image, width, color)
    return box_border(backend, image, width, color)


@filter_definition("border", "box_border", defaults=(DEFAULT_BORDER_WIDTH, DEFAULT_BORDER_COLOR))
def border(backend: RasterBackend, image: RasterImage, args: FilterArgs,
           context: FilterContext) -> RasterImage:
    width = max(0, args.dimension(0, min(image.size)))
    color = args.color(1)
    if context.supports_alpha and backend.has_transparency(image):
        return drawn_border(backend, image, width, color)
    return box_border(backend, image, width, color)
