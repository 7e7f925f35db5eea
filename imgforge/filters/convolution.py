"""
Neighbourhood filters: blurs, sharpening, embossing and edge detection.

Convolution goes through `RasterBackend.convolve` (3x3 correlation with edge
replication on RGB); the remaining filters are numpy array arithmetic over the
backend's pixel buffer.
"""

import logging

import numpy as np

from imgforge.constants.constants import BLACK, WHITE
from imgforge.filters.adjust import pixelate_blocks
from imgforge.filters.base import FilterArgs, FilterContext, clamp_channels, filter_definition
from imgforge.raster.base import RasterBackend, RasterImage, luma

logger = logging.getLogger(__name__)

GAUSSIAN_KERNEL = ((1.0, 2.0, 1.0), (2.0, 4.0, 2.0), (1.0, 2.0, 1.0))
GAUSSIAN_DIVISOR = 16.0
EDGE_DETECT_KERNEL = ((-1.0, 0.0, -1.0), (0.0, 4.0, 0.0), (-1.0, 0.0, -1.0))
EMBOSS_KERNEL = ((1.5, 0.0, 0.0), (0.0, 0.0, 0.0), (0.0, 0.0, -1.5))
MEAN_REMOVAL_KERNEL = ((-1.0, -1.0, -1.0), (-1.0, 9.0, -1.0), (-1.0, -1.0, -1.0))
SHARPEN_KERNEL = ((0.0, -1.0, 0.0), (-1.0, 5.0, -1.0), (0.0, -1.0, 0.0))
GRAY_OFFSET = 127.0

SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
SOBEL_Y = SOBEL_X.T
EDGE_DARKEN_FACTOR = 1.5

# Low quality image placeholder
LQIP_BLOCK = 6
LQIP_BLUR_PASSES = 12


def gaussian_passes(backend: RasterBackend, image: RasterImage, passes: int) -> RasterImage:
    for _ in range(passes):
        image = backend.convolve(image, GAUSSIAN_KERNEL, GAUSSIAN_DIVISOR)
    return image


@filter_definition("blur", "gaussian_blur", defaults=(1,))
def blur(backend: RasterBackend, image: RasterImage, args: FilterArgs,
         context: FilterContext) -> RasterImage:
    return gaussian_passes(backend, image, args.integer(0, 1, 10))


@filter_definition("lqip")
def lqip(backend: RasterBackend, image: RasterImage, args: FilterArgs,
         context: FilterContext) -> RasterImage:
    """Heavily pixelated and blurred placeholder of the same size."""
    return gaussian_passes(backend, pixelate_blocks(backend, image, LQIP_BLOCK), LQIP_BLUR_PASSES)


@filter_definition("selective_blur", defaults=(1,))
def selective_blur(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                   context: FilterContext) -> RasterImage:
    """
    Edge-preserving blur.

    Each neighbour in the 3x3 window contributes with its Gaussian weight
    scaled by how close its value is to the centre pixel, per channel, so
    strong edges are left mostly intact.
    """
    passes = args.integer(0, 1, 10)
    pixels = backend.pixels(image).copy()
    weights = np.asarray(GAUSSIAN_KERNEL)
    for _ in range(passes):
        rgb = pixels[..., :3].astype(np.float64)
        padded = np.pad(rgb, ((1, 1), (1, 1), (0, 0)), mode="edge")
        total = np.zeros_like(rgb)
        weight_sum = np.zeros_like(rgb)
        height, width = rgb.shape[:2]
        for dy in range(3):
            for dx in range(3):
                neighbour = padded[dy:dy + height, dx:dx + width]
                weight = weights[dy, dx] * (1.0 - np.abs(neighbour - rgb) / 255.0)
                total += neighbour * weight
                weight_sum += weight
        pixels[..., :3] = clamp_channels(np.where(weight_sum > 0, total / np.maximum(weight_sum, 1e-12), rgb))
    return RasterImage(pixels, image.source_format)


@filter_definition("smooth", defaults=(1,))
def smooth(backend: RasterBackend, image: RasterImage, args: FilterArgs,
           context: FilterContext) -> RasterImage:
    weight = args.number(0, -7.0, 2048.0)
    kernel = ((1.0, 1.0, 1.0), (1.0, weight, 1.0), (1.0, 1.0, 1.0))
    return backend.convolve(image, kernel, weight + 8.0)


@filter_definition("edgedetect", "edge_detect")
def edgedetect(backend: RasterBackend, image: RasterImage, args: FilterArgs,
               context: FilterContext) -> RasterImage:
    return backend.convolve(image, EDGE_DETECT_KERNEL, 1.0, GRAY_OFFSET)


@filter_definition("emboss")
def emboss(backend: RasterBackend, image: RasterImage, args: FilterArgs,
           context: FilterContext) -> RasterImage:
    return backend.convolve(image, EMBOSS_KERNEL, 1.0, GRAY_OFFSET)


@filter_definition("mean_removal", "sketch")
def mean_removal(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                 context: FilterContext) -> RasterImage:
    return backend.convolve(image, MEAN_REMOVAL_KERNEL)


@filter_definition("auto_sharpen", defaults=(1.0,))
def auto_sharpen(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                 context: FilterContext) -> RasterImage:
    """Cross-shaped sharpening kernel scaled by ``strength``; the kernel sums to 1."""
    strength = args.number(0, 0.0, 10.0)
    if strength == 0:
        return image
    kernel = tuple(
        tuple(1.0 + 4.0 * strength if (i, j) == (1, 1) else value * strength
              for j, value in enumerate(row))
        for i, row in enumerate(SHARPEN_KERNEL)
    )
    return backend.convolve(image, kernel)


def unsharp_mask(backend: RasterBackend, image: RasterImage, amount: float = 80,
                 radius: float = 0.5, threshold: int = 3) -> RasterImage:
    """
    Unsharp mask.

    Args:
        backend: Raster backend
        image: Source image
        amount: Strength, capped at 500
        radius: Blur radius; ``abs(round(min(50, radius) * 2))`` Gaussian passes
        threshold: Minimum per-channel difference (capped at 255) for a pixel to be adjusted

    Returns:
        The sharpened image; alpha is preserved
    """
    amount = min(float(amount), 500.0) * 0.016
    passes = abs(int(round(min(50.0, float(radius)) * 2)))
    threshold = min(255, int(threshold))
    if passes == 0:
        return image

    blurred = gaussian_passes(backend, image, passes)
    original = backend.pixels(image)[..., :3].astype(np.float64)
    difference = original - backend.pixels(blurred)[..., :3].astype(np.float64)
    sharpened = np.rint(amount * difference) + original
    selected = np.abs(difference) >= threshold

    pixels = backend.pixels(image).copy()
    pixels[..., :3] = clamp_channels(np.where(selected, sharpened, original))
    return RasterImage(pixels, image.source_format)


@filter_definition("sharpen", "unsharp", "unsharp_mask", defaults=(80, 0.5, 3))
def sharpen(backend: RasterBackend, image: RasterImage, args: FilterArgs,
            context: FilterContext) -> RasterImage:
    return unsharp_mask(backend, image, args.number(0, 0.0), args.number(1), args.integer(2, 0))


@filter_definition("sobel_edgify", "sobel", defaults=(50, "edges"))
def sobel_edgify(backend: RasterBackend, image: RasterImage, args: FilterArgs,
                 context: FilterContext) -> RasterImage:
    """
    Sobel edge detection.

    Args:
        args: threshold (0..100, percent of full intensity) and mode, one of
            ``edges`` (black edges on white), ``enhance`` (edges darkened) or
            ``combine`` (edges painted black over the original)
    """
    threshold = args.number(0, 0.0, 100.0) * 255.0 / 100.0
    mode = args.choice(1, ("edges", "enhance", "combine"))

    pixels = backend.pixels(image)
    gray = luma(pixels).astype(np.float64)
    height, width = gray.shape

    edges = np.zeros((height, width), dtype=bool)
    if height >= 3 and width >= 3:
        gx = np.zeros((height - 2, width - 2))
        gy = np.zeros((height - 2, width - 2))
        for dy in range(3):
            for dx in range(3):
                window = gray[dy:dy + height - 2, dx:dx + width - 2]
                gx += SOBEL_X[dy, dx] * window
                gy += SOBEL_Y[dy, dx] * window
        edges[1:-1, 1:-1] = np.hypot(gx, gy) >= threshold

    if mode == "edges":
        out = np.empty_like(pixels)
        out[...] = np.asarray(WHITE, dtype=np.uint8)
        out[edges] = np.asarray(BLACK, dtype=np.uint8)
        out[..., 3] = pixels[..., 3]
        return RasterImage(out, image.source_format)

    out = pixels.copy()
    if mode == "enhance":
        out[..., :3][edges] = clamp_channels(pixels[..., :3][edges] / EDGE_DARKEN_FACTOR)
    else:
        out[..., :3][edges] = 0
    return RasterImage(out, image.source_format)
