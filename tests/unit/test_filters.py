"""Tests for the per-pixel, convolution and analysis filters."""
import numpy as np
import pytest

from imgforge.core.exceptions import FilterSkipped, ValidationError
from imgforge.filters.adjust import colorize_pixels, pixelate_blocks, sepia_pixels
from imgforge.filters.base import FilterArgs, FilterContext, parse_dimension
from imgforge.filters.color_analysis import dominant_color, replace_color
from imgforge.filters.convolution import gaussian_passes, unsharp_mask
from imgforge.filters.halftone import halftone
from imgforge.filters.registry import FILTER_REGISTRY
from imgforge.raster.base import RasterImage


def run(name, backend, image, *tokens, context=None):
    func = FILTER_REGISTRY.get(name)
    args = FilterArgs(tokens, func.filter_meta.defaults)
    return func(backend, image, args, context or FilterContext(rng=np.random.default_rng(7)))


class TestFilterArgs:

    def test_defaults_fill_missing_tokens(self):
        args = FilterArgs(["", "3"], defaults=(80, 0.5, 3))
        assert args.number(0) == 80
        assert args.number(1) == 3
        assert args.number(2) == 3

    def test_clamping(self):
        args = FilterArgs(["500", "-20"])
        assert args.integer(0, 0, 255) == 255
        assert args.integer(1, 0, 255) == 0

    def test_non_numeric_raises(self):
        with pytest.raises(ValidationError):
            FilterArgs(["abc"]).number(0)

    def test_choice(self):
        assert FilterArgs(["Square"]).choice(0, ("circle", "square")) == "square"
        with pytest.raises(ValidationError):
            FilterArgs(["hexagon"]).choice(0, ("circle", "square"))

    def test_dimension(self):
        assert parse_dimension("50%", 200) == 100
        assert parse_dimension("12px", 200) == 12
        assert FilterArgs(["25%"]).dimension(0, 40) == 10


class TestRegistry:

    def test_library_filters_registered(self):
        for name in ("grayscale", "sepia", "dot", "sharpen", "mask", "border", "reflection",
                     "rotate", "flip", "replace_colors", "dominant_color", "scatter", "noise", "lqip",
                     "draw_rectangle", "face_detect"):
            assert name in FILTER_REGISTRY

    def test_aliases_resolve_to_same_function(self):
        assert FILTER_REGISTRY.get("halftone") is FILTER_REGISTRY.get("dot")
        assert FILTER_REGISTRY.get("greyscale") is FILTER_REGISTRY.get("grayscale")

    def test_unknown_filter(self):
        assert FILTER_REGISTRY.get("sparkle") is None


class TestAdjustFilters:

    def test_sepia_pixel_values(self):
        pixels = np.full((1, 1, 4), 128, dtype=np.uint8)
        pixels[..., 3] = 200
        out = sepia_pixels(pixels)
        assert tuple(out[0, 0]) == (173, 154, 120, 200)

    def test_sepia_clamps(self):
        pixels = np.full((1, 1, 4), 255, dtype=np.uint8)
        assert tuple(sepia_pixels(pixels)[0, 0, :3]) == (255, 255, 239)

    def test_sepia_filter_default_is_pixel_accurate(self, raster, solid_image):
        out = run("sepia", raster, solid_image(4, 4))
        assert tuple(out.pixels[0, 0, :3]) == (173, 154, 120)

    def test_grayscale_equal_channels(self, raster, gradient_image):
        out = run("grayscale", raster, gradient_image())
        assert np.array_equal(out.pixels[..., 0], out.pixels[..., 1])
        assert np.array_equal(out.pixels[..., 1], out.pixels[..., 2])

    def test_negate(self, raster, solid_image):
        out = run("negate", raster, solid_image(2, 2, (10, 20, 30, 255)))
        assert tuple(out.pixels[0, 0]) == (245, 235, 225, 255)

    def test_brightness_clamped(self, raster, solid_image):
        out = run("brightness", raster, solid_image(2, 2, (250, 10, 100, 255)), "20")
        assert tuple(out.pixels[0, 0, :3]) == (255, 30, 120)

    def test_colorize_offsets(self, raster, solid_image):
        out = colorize_pixels(raster, solid_image(2, 2, (100, 100, 100, 255)), 10, -10, 0)
        assert tuple(out.pixels[0, 0, :3]) == (110, 90, 100)

    def test_opacity_scales_alpha(self, raster, solid_image):
        out = run("opacity", raster, solid_image(2, 2), "50")
        assert out.pixels[0, 0, 3] == 128

    def test_pixelate_blocks(self, raster, gradient_image):
        image = gradient_image(8, 8)
        out = run("pixelate", raster, image, "4")
        assert out.size == image.size
        assert np.array_equal(out.pixels[0:4, 0:4], np.broadcast_to(image.pixels[0, 0], (4, 4, 4)))

    def test_noise_is_reproducible_with_seed(self, raster, solid_image):
        image = solid_image(16, 16)
        first = run("noise", raster, image, "40", context=FilterContext(rng=np.random.default_rng(3)))
        second = run("noise", raster, image, "40", context=FilterContext(rng=np.random.default_rng(3)))
        assert np.array_equal(first.pixels, second.pixels)
        assert not np.array_equal(first.pixels, image.pixels)

    def test_noise_deltas_within_level(self, raster, solid_image):
        image = solid_image(32, 32, (128, 128, 128, 200))
        out = run("noise", raster, image, "20", context=FilterContext(rng=np.random.default_rng(11)))
        deltas = out.pixels.astype(int) - image.pixels.astype(int)
        assert np.abs(deltas).max() <= 20
        assert np.any(deltas[..., 3] != 0)

        changed = np.any(deltas != 0, axis=-1).mean()
        assert 0.35 < changed < 0.65

    def test_noise_zero_level_is_identity(self, raster, solid_image):
        image = solid_image()
        assert run("noise", raster, image, "0") is image

    def test_scatter_requires_add_above_subtract(self, raster, solid_image):
        with pytest.raises(FilterSkipped):
            run("scatter", raster, solid_image(), "5", "3")


class TestConvolutionFilters:

    def test_blur_keeps_flat_image(self, raster, solid_image):
        image = solid_image(10, 10, (90, 90, 90, 255))
        out = run("blur", raster, image, "2")
        assert np.abs(out.pixels[2:-2, 2:-2].astype(int) - image.pixels[2:-2, 2:-2]).max() <= 1

    def test_sharpen_preserves_size(self, raster, gradient_image):
        image = gradient_image()
        out = run("sharpen", raster, image, "80", "0.5", "3")
        assert out.size == image.size

    def test_edgedetect_flat_is_uniform(self, raster, solid_image):
        out = run("edgedetect", raster, solid_image(10, 10))
        interior = out.pixels[2:-2, 2:-2, :3]
        assert interior.min() == interior.max()

    def test_sobel_edgify_preserves_size(self, raster, gradient_image):
        image = gradient_image()
        assert run("sobel_edgify", raster, image).size == image.size

    def test_lqip_pixelates_then_blurs(self, raster, gradient_image):
        image = gradient_image(36, 24)
        out = run("lqip", raster, image)
        expected = gaussian_passes(raster, pixelate_blocks(raster, image, 6), 12)
        assert out.size == image.size
        np.testing.assert_array_equal(out.pixels, expected.pixels)

    def test_lqip_removes_detail(self, raster, gradient_image):
        image = gradient_image(36, 24)
        out = run("lqip", raster, image)
        detail = np.abs(np.diff(out.pixels[..., 0].astype(int), axis=1)).max()
        assert detail < np.abs(np.diff(pixelate_blocks(raster, image, 6).pixels[..., 0].astype(int), axis=1)).max()


def bump_image(value=100, bump=2):
    pixels = np.zeros((12, 12, 4), dtype=np.uint8)
    pixels[...] = (value, value, value, 255)
    pixels[6, 6, :3] = value + bump
    return RasterImage(pixels)


def step_image(left=50, right=200, alpha=255):
    pixels = np.zeros((10, 10, 4), dtype=np.uint8)
    pixels[:, :5, :3] = left
    pixels[:, 5:, :3] = right
    pixels[..., 3] = alpha
    return RasterImage(pixels)


class TestUnsharpMask:

    def test_differences_under_threshold_unchanged(self, raster):
        image = bump_image()
        out = unsharp_mask(raster, image, 80, 0.5, 3)
        assert np.array_equal(out.pixels, image.pixels)

    def test_threshold_zero_adjusts_small_differences(self, raster):
        image = bump_image()
        out = unsharp_mask(raster, image, 80, 0.5, 0)
        assert out.pixels[6, 6, 0] > image.pixels[6, 6, 0]
        assert np.array_equal(out.pixels[0, 0], image.pixels[0, 0])

    def test_differences_over_threshold_move_by_amount(self, raster):
        image = step_image()
        out = unsharp_mask(raster, image, 100, 0.5, 3)

        original = image.pixels[..., :3].astype(np.float64)
        difference = original - gaussian_passes(raster, image, 1).pixels[..., :3].astype(np.float64)
        moved = np.clip(np.rint(100 * 0.016 * difference) + original, 0, 255)
        expected = np.where(np.abs(difference) >= 3, moved, original)
        assert np.array_equal(out.pixels[..., :3], expected.astype(np.uint8))

        assert out.pixels[5, 4, 0] < 50
        assert out.pixels[5, 5, 0] > 200
        assert out.pixels[5, 0, 0] == 50
        assert out.pixels[5, 9, 0] == 200

    def test_radius_sets_blur_passes(self, raster):
        image = step_image()
        out = unsharp_mask(raster, image, 100, 1.0, 0)
        difference = (image.pixels[..., :3].astype(np.float64)
                      - gaussian_passes(raster, image, 2).pixels[..., :3].astype(np.float64))
        expected = np.clip(np.rint(100 * 0.016 * difference) + image.pixels[..., :3], 0, 255)
        assert np.array_equal(out.pixels[..., :3], expected.astype(np.uint8))

    def test_zero_radius_is_identity(self, raster):
        image = step_image()
        assert unsharp_mask(raster, image, 80, 0.0, 3) is image

    def test_alpha_preserved(self, raster):
        image = step_image(alpha=120)
        out = run("sharpen", raster, image, "200", "0.5", "0")
        assert (out.pixels[..., 3] == 120).all()


class TestSobelEdgify:

    def edge_image(self, alpha=255):
        return step_image(left=0, right=255, alpha=alpha)

    def test_edges_are_dark_on_light(self, raster):
        out = run("sobel_edgify", raster, self.edge_image(alpha=200), "50", "edges")
        assert tuple(out.pixels[5, 4]) == (0, 0, 0, 200)
        assert tuple(out.pixels[5, 5]) == (0, 0, 0, 200)
        assert tuple(out.pixels[5, 1]) == (255, 255, 255, 200)
        assert tuple(out.pixels[5, 8]) == (255, 255, 255, 200)
        assert tuple(out.pixels[0, 4]) == (255, 255, 255, 200)

    def test_flat_image_has_no_edges(self, raster, solid_image):
        out = run("sobel_edgify", raster, solid_image(10, 10), "10", "edges")
        assert (out.pixels[..., :3] == 255).all()

    def test_threshold_above_gradient_finds_nothing(self, raster):
        out = run("sobel_edgify", raster, step_image(100, 110), "50", "edges")
        assert (out.pixels[..., :3] == 255).all()

    def test_enhance_darkens_edges(self, raster):
        image = self.edge_image()
        out = run("sobel_edgify", raster, image, "50", "enhance")
        assert tuple(out.pixels[5, 5, :3]) == (170, 170, 170)
        assert tuple(out.pixels[5, 4, :3]) == (0, 0, 0)
        assert np.array_equal(out.pixels[:, 7:], image.pixels[:, 7:])
        assert np.array_equal(out.pixels[0], image.pixels[0])

    def test_combine_paints_edges_black(self, raster):
        image = self.edge_image(alpha=180)
        out = run("sobel_edgify", raster, image, "50", "combine")
        assert tuple(out.pixels[5, 5]) == (0, 0, 0, 180)
        assert np.array_equal(out.pixels[:, 7:], image.pixels[:, 7:])
        assert np.array_equal(out.pixels[:, :3], image.pixels[:, :3])


class TestHalftone:

    def test_output_same_size(self, raster, gradient_image):
        image = gradient_image(36, 24)
        out = halftone(raster, image, 6)
        assert out.size == image.size

    def test_white_image_has_no_dots(self, raster, solid_image):
        out = halftone(raster, solid_image(24, 24, (255, 255, 255, 255)), 6)
        assert (out.pixels == 255).all()

    def test_applied_twice(self, raster, gradient_image):
        image = gradient_image(36, 24)
        once = run("dot", raster, image, "6")
        twice = run("dot", raster, once, "6")
        assert twice.size == image.size
        assert twice.pixels.dtype == np.uint8

    def test_fixed_colour_square_dots(self, raster, solid_image):
        out = run("dot", raster, solid_image(24, 24, (0, 0, 0, 255)), "6", "red", "square")
        reds = (out.pixels[..., 0] == 255) & (out.pixels[..., 1] == 0) & (out.pixels[..., 2] == 0)
        assert reds.any()


class TestColorAnalysis:

    def test_dominant_colour_of_solid_image(self, solid_image):
        assert dominant_color(solid_image(10, 10, (12, 200, 99, 255)).pixels, quality=1) == (12, 200, 99)

    def test_dominant_colour_majority(self):
        pixels = np.zeros((10, 10, 4), dtype=np.uint8)
        pixels[..., 3] = 255
        pixels[:8, :, :3] = (250, 0, 0)
        pixels[8:, :, :3] = (0, 0, 250)
        assert dominant_color(pixels, quality=1) == (250, 0, 0)

    def test_dominant_colour_transparent_skips(self):
        with pytest.raises(FilterSkipped):
            dominant_color(np.zeros((4, 4, 4), dtype=np.uint8))

    def test_replace_exact_colour(self):
        pixels = np.zeros((2, 2, 4), dtype=np.uint8)
        pixels[0, 0] = (255, 0, 0, 120)
        out = replace_color(pixels, (255, 0, 0, 255), (0, 255, 0, 255))
        assert tuple(out[0, 0]) == (0, 255, 0, 120)
        assert tuple(out[1, 1]) == (0, 0, 0, 0)

    def test_replace_with_tolerance(self):
        pixels = np.zeros((1, 2, 4), dtype=np.uint8)
        pixels[0, 0, :3] = (250, 5, 5)
        pixels[0, 1, :3] = (0, 0, 255)
        out = replace_color(pixels, (255, 0, 0, 255), (1, 2, 3, 255), tolerance=5)
        assert tuple(out[0, 0, :3]) == (1, 2, 3)
        assert tuple(out[0, 1, :3]) == (0, 0, 255)

    def test_replace_filter_requires_colours(self, raster, solid_image):
        with pytest.raises(FilterSkipped):
            run("replace_colors", raster, solid_image(), "red")
