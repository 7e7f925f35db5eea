"""
Face detection with OpenCV's bundled frontal-face Haar cascade.
"""

import functools
import logging
from typing import List, Tuple

import cv2
import numpy as np

from imgforge.core.exceptions import BackendCapabilityError

logger = logging.getLogger(__name__)

CASCADE_FILE = "haarcascade_frontalface_default.xml"
MIN_FACE_SIZE = 20
SCALE_STEP = 1.1

Box = Tuple[int, int, int, int]


@functools.lru_cache(maxsize=1)
def _cascade() -> "cv2.CascadeClassifier":
    path = cv2.data.haarcascades + CASCADE_FILE
    cascade = cv2.CascadeClassifier(path)
    if cascade.empty():
        raise BackendCapabilityError(f"Face cascade {path} could not be loaded")
    logger.debug(f"Loaded face cascade {path}")
    return cascade


def min_neighbours(sensitivity: int) -> int:
    """Sensitivity 1..9 (3 is the default) mapped to the detector's neighbour count."""
    sensitivity = min(max(1, int(sensitivity)), 9)
    return max(1, 6 - sensitivity)


def detect_faces(gray: np.ndarray, sensitivity: int = 3) -> List[Box]:
    """(x, y, width, height) of each face found in a uint8 grayscale array."""
    found = _cascade().detectMultiScale(gray, scaleFactor=SCALE_STEP,
                                        minNeighbors=min_neighbours(sensitivity),
                                        minSize=(MIN_FACE_SIZE, MIN_FACE_SIZE))
    return sorted(tuple(int(v) for v in face) for face in found)
