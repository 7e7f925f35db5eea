"""
Per-pixel colour adjustment filters.

These filters operate on the RGBA buffer obtained from the raster backend.
Alpha is left untouched unless the filter is explicitly about alpha (opacity,
noise).
"""

import logging

import numpy as np

from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import FilterArgs, FilterContext, clamp_channels, filter_definition
from imgforge.raster.base import RasterBackend, RasterImage

logger = logging.getLogger(__name__)

SEPIA_RED = (0.393, 0.769, 0.189)
SEPIA_GREEN = (0.349, 0.686, 0.168)
# Applied to the blue channel only: b' = 0.272b + 0.534b + 0.131b
SEPIA_BLUE = (0.272, 0.534, 0.131)
SEPIA_FAST_TINT = (40, 20, -15)


def _with_rgb(image: RasterImage, rgb: np.ndarray) -> RasterImage:
    pixels = image.pixels.copy()
    pixels[..., :3] = clamp_channels(rgb)
    return RasterImage(pixels, image.source_format)


@filter_definition("grayscale", "greyscale")
def grayscale(backend: RasterBackend, image: RasterImage, args: FilterArgs,
              context: FilterContext) -> RasterImage:
    return backend.grayscale(image)


@filter_definition("negate", "invert")
def negate(backend: RasterBackend, image: RasterImage, args: FilterArgs,
           context: FilterContext) -> RasterImage:
    pixels = backend.pixels(image)
    return _with_rgb(image, 255.0 - pixels[..., :3])


@filter_definition("brightness", defaults=(0,))
def brightness(backend: RasterBackend, image: RasterImage, args: FilterArgs,
               context: FilterContext) -> RasterImage:
    level = args.integer(0, -255, 255)
    if level == 0:
        return image
    return _with_rgb(image, backend.pixels(image)[..., :3].astype(np.float64) + level)


@filter_definition("contrast", defaults=(0,))
def contrast(backend: RasterBackend, image: RasterImage, args: FilterArgs,
             context: FilterContext) -> RasterImage:
    """
    Adjust contrast.

    Args:
        args: level in -100..100; positive values increase contrast
    """
    level = args.integer(0, -100, 100)
    if level == 0:
        return image
    factor = ((100.0 + level) / 100.0) ** 2
    rgb = backend.pixels(image)[..., :3].astype(np.float64) / 255.0
    return _with_rgb(image, ((rgb - 0.5) * factor + 0.5) * 255.0)


def colorize_pixels(backend: RasterBackend, image: RasterImage, red: int, green: int,
                    blue: int) -> RasterImage:
    offsets = np.asarray([red, green, blue], dtype=np.float64)
    return _with_rgb(image, backend.pixels(image)[..., :3].astype(np.float64) + offsets)


@filter_definition("colorize", "colourise", "colorise", defaults=(0, 0, 0))
def colorize(backend: RasterBackend, image: RasterImage, args: FilterArgs,
             context: FilterContext) -> RasterImage:
    red, green, blue = (args.integer(i, -255, 255) for i in range(3))
    return colorize_pixels(backend, image, red, green, blue)


@filter_definition("opacity", defaults=(100,))
def opacity(backend: RasterBackend, image: RasterImage, args: FilterArgs,
            context: FilterContext) -> RasterImage:
    level = args.integer(0, 0, 100)
    if level >= 100:
        return image
    pixels = image.pixels.copy()
    pixels[..., 3] = clamp_channels(pixels[..., 3].astype(np.float64) * level / 100.0)
    return RasterImage(pixels, image.source_format)


def sepia_pixels(pixels: np.ndarray) -> np.ndarray:
    """
    Pixel-accurate sepia tone.

    Red and green mix all three channels; blue is derived from the blue
    channel alone. Results are rounded and clamped; alpha is preserved.

    Args:
        pixels: (H, W, 4) uint8 RGBA array

    Returns:
        New (H, W, 4) uint8 array
    """
    rgb = pixels[..., :3].astype(np.float64)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    out = pixels.copy()
    out[..., 0] = clamp_channels(SEPIA_RED[0] * r + SEPIA_RED[1] * g + SEPIA_RED[2] * b)
    out[..., 1] = clamp_channels(SEPIA_GREEN[0] * r + SEPIA_GREEN[1] * g + SEPIA_GREEN[2] * b)
    out[..., 2] = clamp_channels(SEPIA_BLUE[0] * b + SEPIA_BLUE[1] * b + SEPIA_BLUE[2] * b)
    return out


@filter_definition("sepia", defaults=("slow",))
def sepia(backend: RasterBackend, image: RasterImage, args: FilterArgs,
          context: FilterContext) -> RasterImage:
    mode = args.choice(0, ("fast", "slow"))
    if mode == "fast":
        return colorize_pixels(backend, backend.grayscale(image), *SEPIA_FAST_TINT)
    return RasterImage(sepia_pixels(backend.pixels(image)), image.source_format)


def pixelate_blocks(backend: RasterBackend, image: RasterImage, block: int) -> RasterImage:
    """Replace each ``block`` x ``block`` square with its top-left pixel."""
    if block <= 1:
        return image
    pixels = backend.pixels(image)
    sampled = pixels[::block, ::block]
    expanded = np.repeat(np.repeat(sampled, block, axis=0), block, axis=1)
    return RasterImage(expanded[:image.height, :image.width].copy(), image.source_format)


@filter_definition("pixelate", defaults=(0,))
def pixelate(backend: RasterBackend, image: RasterImage, args: FilterArgs,
             context: FilterContext) -> RasterImage:
    return pixelate_blocks(backend, image, args.integer(0, 0))


@filter_definition("noise", defaults=(30,))
def noise(backend: RasterBackend, image: RasterImage, args: FilterArgs,
          context: FilterContext) -> RasterImage:
    """
    Add random noise.

    Roughly half of the pixels (coin flip per pixel) receive an independent
    signed delta in [-level, level] on each of R, G, B and alpha, each channel
    clamped separately.
    """
    level = args.integer(0, 0, 255)
    if level == 0:
        return image
    pixels = backend.pixels(image)
    chosen = context.rng.random(pixels.shape[:2]) < 0.5
    deltas = context.rng.integers(-level, level + 1, size=pixels.shape, endpoint=False)
    adjusted = pixels.astype(np.int32) + deltas * chosen[..., None]
    return RasterImage(np.clip(adjusted, 0, 255).astype(np.uint8), image.source_format)


@filter_definition("scatter", defaults=(3, 5))
def scatter(backend: RasterBackend, image: RasterImage, args: FilterArgs,
            context: FilterContext) -> RasterImage:
    """Displace each pixel by a random offset in [-subtract, add - subtract)."""
    subtract = args.integer(0, 0)
    add = args.integer(1, 0)
    if add <= subtract:
        raise FilterSkipped(f"scatter requires add > subtract, got {subtract},{add}")
    pixels = backend.pixels(image)
    height, width = pixels.shape[:2]
    ys, xs = np.mgrid[0:height, 0:width]
    dy = context.rng.integers(0, add - subtract, size=(height, width)) - subtract
    dx = context.rng.integers(0, add - subtract, size=(height, width)) - subtract
    src_y = np.clip(ys + dy, 0, height - 1)
    src_x = np.clip(xs + dx, 0, width - 1)
    return RasterImage(pixels[src_y, src_x].copy(), image.source_format)
