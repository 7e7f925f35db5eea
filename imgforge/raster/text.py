"""
Text rasterization.

Glyphs come from OpenCV's built-in Hershey vector font, drawn anti-aliased
into a single-channel coverage buffer. Sizes are pixel heights of a capital
letter; the stroke thickness grows with the size.
"""

import logging
from typing import List, Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

FONT_FACE = cv2.FONT_HERSHEY_SIMPLEX
PIXELS_PER_STROKE = 12


def font_metrics(font_size: int) -> Tuple[float, int]:
    """(font scale, stroke thickness) for a cap height of ``font_size`` pixels."""
    thickness = max(1, int(round(font_size / PIXELS_PER_STROKE)))
    scale = cv2.getFontScaleFromHeight(FONT_FACE, max(1, int(font_size)), thickness)
    return scale, thickness


def measure(text: str, font_size: int) -> Tuple[int, int]:
    """(width, height above the baseline) of one line."""
    scale, thickness = font_metrics(font_size)
    (width, height), _ = cv2.getTextSize(text, FONT_FACE, scale, thickness)
    return width, height


def wrap(content: str, box_width: int, font_size: int) -> List[str]:
    """
    Break ``content`` into lines no wider than ``box_width``.

    Explicit newlines are kept; a single word wider than the box gets a line
    of its own.
    """
    lines: List[str] = []
    for paragraph in content.split("\n"):
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if current and measure(candidate, font_size)[0] > box_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


def coverage(lines: Sequence[str], width: int, height: int, font_size: int,
             line_height: float, align: str = "center", offset: Tuple[int, int] = (0, 0)) -> np.ndarray:
    """
    Coverage in [0, 1] of ``lines`` set in a ``width`` x ``height`` box.

    Each line occupies ``line_height * font_size`` pixels with its glyphs
    centred vertically in that band; ``align`` is left, center or right.
    """
    scale, thickness = font_metrics(font_size)
    band = line_height * font_size
    buffer = np.zeros((height, width), dtype=np.uint8)
    for row, line in enumerate(lines):
        if not line:
            continue
        (text_w, text_h), _ = cv2.getTextSize(line, FONT_FACE, scale, thickness)
        x = {"left": 0, "right": width - text_w}.get(align, (width - text_w) // 2)
        baseline = int(round(row * band + (band + text_h) / 2))
        cv2.putText(buffer, line, (x + offset[0], baseline + offset[1]), FONT_FACE, scale,
                    255, thickness, cv2.LINE_AA)
    return buffer.astype(np.float64) / 255.0
