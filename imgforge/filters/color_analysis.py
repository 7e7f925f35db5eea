"""
Colour analysis filters: dominant colour and colour replacement.

Dominant colour uses scikit-learn's KMeans on a subsample of opaque pixels;
the centre of the most populous cluster is the dominant colour.
"""

import logging
import math
from typing import Tuple

import numpy as np
from sklearn.cluster import KMeans

from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import FilterArgs, FilterContext, filter_definition
from imgforge.raster.base import Color, RasterBackend, RasterImage

logger = logging.getLogger(__name__)

DOMINANT_CLUSTERS = 5
MAX_DISTANCE = math.sqrt(3) * 255.0


def dominant_color(pixels: np.ndarray, quality: int = 10, clusters: int = DOMINANT_CLUSTERS,
                   seed: int = 0) -> Tuple[int, int, int]:
    """
    Most representative colour of an RGBA buffer.

    Args:
        pixels: (H, W, 4) uint8 array
        quality: Sampling step; 1 uses every pixel, larger values are faster
        clusters: Number of k-means clusters
        seed: Random state for reproducible clustering

    Returns:
        (r, g, b)

    Raises:
        FilterSkipped: If the image has no opaque pixels
    """
    step = max(1, int(quality))
    flat = pixels.reshape(-1, 4)[::step]
    samples = flat[flat[:, 3] >= 125][:, :3].astype(np.float64)
    if len(samples) == 0:
        raise FilterSkipped("No opaque pixels to analyse")

    unique = np.unique(samples, axis=0)
    n_clusters = max(1, min(clusters, len(unique)))
    model = KMeans(n_clusters=n_clusters, n_init=4, random_state=seed)
    labels = model.fit_predict(samples)
    counts = np.bincount(labels, minlength=n_clusters)
    centre = model.cluster_centers_[int(np.argmax(counts))]
    return tuple(int(c) for c in np.clip(np.rint(centre), 0, 255))


@filter_definition("dominant_color", "dominant_colour", defaults=(10,))
def dominant_color_filter(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                          context: FilterContext) -> RasterImage:
    """Replace the image with a flat canvas of its dominant colour."""
    quality = args.integer(0, 1, 100)
    r, g, b = dominant_color(backend.pixels(image), quality)
    logger.debug(f"Dominant colour #{r:02x}{g:02x}{b:02x}")
    canvas = backend.create(image.width, image.height, (r, g, b, 255))
    canvas.source_format = image.source_format
    return canvas


def replace_color(pixels: np.ndarray, source: Color, target: Color, tolerance: float = 0) -> np.ndarray:
    """
    Replace colours within ``tolerance`` percent of ``source`` with ``target``.

    Distance is Euclidean in RGB; 100% tolerance spans the whole RGB cube.
    Alpha is preserved.
    """
    tolerance = max(0.0, min(100.0, float(tolerance)))
    rgb = pixels[..., :3].astype(np.float64)
    distance = np.sqrt(((rgb - np.asarray(source[:3], dtype=np.float64)) ** 2).sum(axis=-1))
    selected = distance <= tolerance / 100.0 * MAX_DISTANCE
    out = pixels.copy()
    out[..., :3][selected] = np.asarray(target[:3], dtype=np.uint8)
    return out


@filter_definition("replace_colors", "replace_colours", "replace_color")
def replace_colors(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                   context: FilterContext) -> RasterImage:
    source = args.color(0)
    target = args.color(1)
    if source is None or target is None:
        raise FilterSkipped("replace_colors requires a from and a to colour")
    tolerance = args.number(2, 0.0, 100.0, default=0.0)
    return RasterImage(replace_color(backend.pixels(image), source, target, tolerance), image.source_format)
