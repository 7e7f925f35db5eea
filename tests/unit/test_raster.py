"""Tests for the raster backends' canvas size limit."""
import numpy as np
import pytest

from imgforge.core.exceptions import CanvasTooLargeError, FilterSkipped
from imgforge.filters.base import FilterArgs, FilterContext
from imgforge.filters.chain import FilterChainExecutor
from imgforge.filters.masks import SUPERSAMPLE, mask, rounded_corners, supersample_factor
from imgforge.raster import get_raster_backend
from imgforge.raster.base import RasterImage, rotated_size


def solid(width, height):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[...] = (90, 90, 90, 255)
    return RasterImage(pixels)


class TestCanvasLimit:

    def test_rotated_size(self):
        assert rotated_size(40, 30, 90) == (30, 40)
        assert rotated_size(40, 30, 180) == (40, 30)
        assert rotated_size(10, 10, 45) == (15, 15)

    def test_check_canvas(self, raster_backend_kind):
        backend = get_raster_backend(raster_backend_kind, 100)
        backend.check_canvas(100, 100)
        with pytest.raises(CanvasTooLargeError):
            backend.check_canvas(101, 5)

    def test_limit_is_a_skip(self):
        assert issubclass(CanvasTooLargeError, FilterSkipped)

    def test_zero_disables_limit(self, raster_backend_kind):
        get_raster_backend(raster_backend_kind, 0).check_canvas(10 ** 6, 10 ** 6)

    def test_backends_shared_per_limit(self, raster_backend_kind):
        assert get_raster_backend(raster_backend_kind, 100) is get_raster_backend(raster_backend_kind, 100)
        assert get_raster_backend(raster_backend_kind, 100) is not get_raster_backend(raster_backend_kind, 200)

    def test_create_over_limit(self, raster_backend_kind):
        backend = get_raster_backend(raster_backend_kind, 100)
        assert backend.create(100, 50).size == (100, 50)
        with pytest.raises(CanvasTooLargeError):
            backend.create(300000, 10)

    def test_resize_over_limit(self, raster_backend_kind):
        backend = get_raster_backend(raster_backend_kind, 100)
        with pytest.raises(CanvasTooLargeError):
            backend.resize(solid(40, 30), 400, 300)

    def test_rotate_over_limit(self, raster_backend_kind):
        backend = get_raster_backend(raster_backend_kind, 100)
        assert backend.rotate(solid(90, 10), 90).size == (10, 90)
        with pytest.raises(CanvasTooLargeError):
            backend.rotate(solid(90, 90), 45)

    def test_chain_skips_oversized_step(self, raster_backend_kind):
        backend = get_raster_backend(raster_backend_kind, 100)
        result = FilterChainExecutor(backend).run(solid(40, 30), "border,80|negate")
        assert [r.name for r in result.skipped] == ["border"]
        assert result.image.size == (40, 30)
        assert tuple(result.image.pixels[0, 0]) == (165, 165, 165, 255)


class TestMasksNearLimit:

    def test_supersample_factor(self):
        backend = get_raster_backend(max_dimension=100)
        assert supersample_factor(backend, 100 // SUPERSAMPLE, 10) == SUPERSAMPLE
        assert supersample_factor(backend, 60, 10) == 1
        assert supersample_factor(get_raster_backend(max_dimension=0), 10 ** 5, 10) == SUPERSAMPLE

    def test_mask_on_image_at_limit(self):
        backend = get_raster_backend(max_dimension=100)
        out = mask(backend, solid(100, 100), FilterArgs(["circle"], ("circle",)), FilterContext())
        assert out.size == (100, 100)
        assert out.pixels[50, 50, 3] == 255
        assert out.pixels[0, 0, 3] == 0

    def test_rounded_corners_on_image_at_limit(self):
        backend = get_raster_backend(max_dimension=100)
        out = rounded_corners(backend, solid(100, 60), "all,20")
        assert out.pixels[0, 0, 3] == 0
        assert out.pixels[30, 50, 3] == 255
