"""Global pytest configuration for imgforge tests."""
import io
import os

import imageio.v3 as iio
import numpy as np
import pytest

from imgforge.constants.constants import ConnectionKind, RasterBackendKind
from imgforge.core.exceptions import SourceLoadError
from imgforge.raster import get_raster_backend
from imgforge.raster.base import RasterImage


def pytest_addoption(parser):
    """Add command-line options for backend selection."""

    def env_default(env_var, default_value):
        return os.getenv(env_var, default_value)

    parser.addoption(
        "--cache-backends",
        action="store",
        default=env_default("IMGFORGE_CACHE_BACKENDS", "memory,local,zarr"),
        help="Comma-separated list of cache backends to test (default: memory,local,zarr). Use 'all' for full coverage."
    )

    parser.addoption(
        "--raster-backends",
        action="store",
        default=env_default("IMGFORGE_RASTER_BACKENDS", "skimage"),
        help="Comma-separated list of raster backends to test (default: skimage). Options: skimage,opencv. Use 'all' for full coverage."
    )


def pytest_configure(config):
    """Validate configuration options."""
    valid_choices = {
        "--cache-backends": ["memory", "local", "zarr"],
        "--raster-backends": ["skimage", "opencv"],
    }

    for option_name, valid_values in valid_choices.items():
        option_value = config.getoption(option_name)
        if option_value == "all":
            continue

        for value in (v.strip() for v in option_value.split(",")):
            if value not in valid_values:
                raise pytest.UsageError(
                    f"Invalid value '{value}' for {option_name}. "
                    f"Valid choices: {', '.join(valid_values)} or 'all'"
                )


BACKEND_TEST_CONFIG = {
    'cache_backend_kind': {
        'option': '--cache-backends',
        'choices': ['memory', 'local', 'zarr'],
        'value_mapper': ConnectionKind,
    },
    'raster_backend_kind': {
        'option': '--raster-backends',
        'choices': ['skimage', 'opencv'],
        'value_mapper': RasterBackendKind,
    },
}


def _get_config_option(config, option_name, all_choices):
    """Get filtered parameter list based on pytest configuration option."""
    option_value = config.getoption(option_name)

    if option_value == "all":
        return all_choices

    selected = [v.strip() for v in option_value.split(",")]
    return [choice for choice in all_choices if choice in selected]


def pytest_generate_tests(metafunc):
    """Generate backend parameters based on configuration options."""
    for fixture_name, config in BACKEND_TEST_CONFIG.items():
        if fixture_name in metafunc.fixturenames:
            selected_choices = _get_config_option(metafunc.config, config['option'], config['choices'])
            values = [config['value_mapper'](choice) for choice in selected_choices]
            metafunc.parametrize(fixture_name, values, ids=selected_choices)


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start=1_700_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def solid_pixels(width, height, color=(128, 128, 128, 255)):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[...] = np.asarray(color, dtype=np.uint8)
    return pixels


def encode_png(pixels):
    """PNG bytes for an RGBA (or RGB) array."""
    buffer = io.BytesIO()
    iio.imwrite(buffer, pixels, extension=".png")
    return buffer.getvalue()


@pytest.fixture
def raster():
    return get_raster_backend(RasterBackendKind.SKIMAGE)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def solid_image():
    def make(width=40, height=30, color=(128, 128, 128, 255)):
        return RasterImage(solid_pixels(width, height, color))
    return make


@pytest.fixture
def gradient_image():
    def make(width=40, height=30):
        pixels = np.zeros((height, width, 4), dtype=np.uint8)
        pixels[..., 0] = np.linspace(0, 255, width, dtype=np.uint8)[None, :]
        pixels[..., 1] = np.linspace(0, 255, height, dtype=np.uint8)[:, None]
        pixels[..., 2] = 64
        pixels[..., 3] = 255
        return RasterImage(pixels)
    return make


@pytest.fixture
def png_source():
    """Map of source reference to PNG bytes plus a loader over it."""
    sources = {
        "photos/beach.png": encode_png(solid_pixels(80, 60, (200, 120, 40, 255))),
        "photos/tall.png": encode_png(solid_pixels(30, 90, (10, 20, 30, 255))),
        "marks/logo.png": encode_png(solid_pixels(10, 10, (0, 0, 0, 255))),
    }
    calls = []

    def loader(reference):
        calls.append(reference)
        if reference not in sources:
            raise SourceLoadError(f"No such test source: {reference}")
        return sources[reference]

    loader.sources = sources
    loader.calls = calls
    return loader


@pytest.fixture
def png_bytes():
    def make(width=20, height=20, color=(128, 128, 128, 255)):
        return encode_png(solid_pixels(width, height, color))
    return make
