"""
Rectangle outlines and face markers.
"""

import logging

from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition
from imgforge.raster.base import Color, RasterBackend, RasterImage
from imgforge.raster.colors import parse_color

logger = logging.getLogger(__name__)

DEFAULT_RECTANGLE_COLOR = "#01bf42"
FACE_GROUP_COLOR = "#01bf42"
FACE_COLOR = "#eded03"
FACE_THICKNESS = 2
MIN_FACE_BOX = 20


def outline_rectangle(backend: RasterBackend, image: RasterImage, x: int, y: int,
                      width: int, height: int, color: Color, thickness: int = 1) -> RasterImage:
    """
    Draw the outline from (x, y) to (x + width, y + height) in place.

    A thickness that reaches the middle of the box fills it.
    """
    x2, y2 = x + width, y + height
    if thickness <= 0 or 2 * thickness > min(width, height):
        return backend.draw_rectangle(image, x, y, x2, y2, color)
    inner = thickness - 1
    backend.draw_rectangle(image, x, y, x2, y + inner, color)
    backend.draw_rectangle(image, x, y2 - inner, x2, y2, color)
    backend.draw_rectangle(image, x, y + thickness, x + inner, y2 - thickness, color)
    backend.draw_rectangle(image, x2 - inner, y + thickness, x2, y2 - thickness, color)
    return image


@filter_definition("draw_rectangle", "rectangle", defaults=(0, 0, "100%", "100%", DEFAULT_RECTANGLE_COLOR, 1))
def draw_rectangle(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                   context: FilterContext) -> RasterImage:
    """``x,y,width,height,color,thickness``; positions and sizes accept percentages."""
    x = args.dimension(0, image.width)
    y = args.dimension(1, image.height)
    width = args.dimension(2, image.width)
    height = args.dimension(3, image.height)
    if width <= 0 or height <= 0:
        raise FilterSkipped(f"Rectangle {width}x{height} is empty")
    out = image.copy()
    return outline_rectangle(backend, out, x, y, width - 1, height - 1, args.color(4), args.integer(5, 0))


@filter_definition("face_detect", "faces", defaults=("y", 3))
def face_detect(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                context: FilterContext) -> RasterImage:
    """
    Mark detected faces.

    The first argument switches the markers on (anything starting with ``y``);
    the second is the sensitivity, 1 to 9. The box around all faces is drawn
    first, then one box per face.
    """
    sensitivity = args.integer(1, 1, 9)
    faces = backend.detect_faces(image, sensitivity)
    if not faces:
        raise FilterSkipped("No faces detected")
    logger.info(f"Detected {len(faces)} face(s) at sensitivity {sensitivity}")
    if not args.text(0).lower().startswith("y"):
        return image

    out = image.copy()
    left = min(x for x, _, _, _ in faces)
    top = min(y for _, y, _, _ in faces)
    right = max(x + w for x, _, w, _ in faces)
    bottom = max(y + h for _, y, _, h in faces)
    boxes = [(left, top, right - left, bottom - top, FACE_GROUP_COLOR)]
    boxes += [(x, y, w, h, FACE_COLOR) for x, y, w, h in faces]
    for x, y, w, h, color in boxes:
        outline_rectangle(backend, out, x, y, max(w, MIN_FACE_BOX), max(h, MIN_FACE_BOX),
                          parse_color(color), FACE_THICKNESS)
    return out
