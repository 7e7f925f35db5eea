"""Tests for filter pipeline parsing and the chain executor."""
import numpy as np

from imgforge.constants.constants import DirectiveStatus
from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import filter_definition
from imgforge.filters.chain import FilterChainExecutor
from imgforge.filters.directive import FilterDirective, parse_directive, parse_pipeline
from imgforge.filters.registry import FilterRegistry


class TestParsePipeline:

    def test_order_preserved(self):
        directives = parse_pipeline("sepia|dot,6|grayscale|sepia")
        assert [d.name for d in directives] == ["sepia", "dot", "grayscale", "sepia"]

    def test_arguments(self):
        assert parse_directive("sharpen, 80 ,0.5,3") == FilterDirective("sharpen", ("80", "0.5", "3"))

    def test_colon_form(self):
        assert parse_directive("colorize:10,20,30") == FilterDirective("colorize", ("10", "20", "30"))

    def test_empty_segments_dropped(self):
        assert [d.name for d in parse_pipeline("|negate||")] == ["negate"]
        assert parse_pipeline("") == []

    def test_name_lowercased(self):
        assert parse_directive("GrayScale").name == "grayscale"

    def test_str_round_trip(self):
        assert str(FilterDirective("dot", ("6", "red"))) == "dot,6,red"


class TestFilterChainExecutor:

    def setup_method(self):
        self.calls = []

        @filter_definition("mark_red")
        def mark_red(backend, image, args, context):
            self.calls.append("mark_red")
            out = image.copy()
            out.pixels[..., 0] = 255
            return out

        @filter_definition("mark_blue", defaults=(255,))
        def mark_blue(backend, image, args, context):
            self.calls.append("mark_blue")
            out = image.copy()
            out.pixels[..., 2] = args.integer(0, 0, 255)
            return out

        @filter_definition("refuse")
        def refuse(backend, image, args, context):
            raise FilterSkipped("not today")

        @filter_definition("explode")
        def explode(backend, image, args, context):
            raise ValueError("bad pixels")

        self.registry = FilterRegistry([mark_red, mark_blue, refuse, explode])

    def test_unknown_filter_does_not_stop_chain(self, raster, solid_image):
        executor = FilterChainExecutor(raster, self.registry)
        result = executor.run(solid_image(4, 4, (0, 0, 0, 255)), "mark_red|sparkle|mark_blue")

        assert [r.status for r in result.results] == [
            DirectiveStatus.APPLIED, DirectiveStatus.SKIPPED, DirectiveStatus.APPLIED,
        ]
        assert tuple(result.image.pixels[0, 0]) == (255, 0, 255, 255)
        assert result.applied == ["mark_red", "mark_blue"]
        assert [r.name for r in result.skipped] == ["sparkle"]

    def test_directives_run_in_order(self, raster, solid_image):
        FilterChainExecutor(raster, self.registry).run(solid_image(), "mark_blue|mark_red|mark_blue")
        assert self.calls == ["mark_blue", "mark_red", "mark_blue"]

    def test_skip_and_error_pass_image_through(self, raster, solid_image):
        image = solid_image(4, 4, (1, 2, 3, 255))
        result = FilterChainExecutor(raster, self.registry).run(image, "refuse|explode")

        assert [r.status for r in result.results] == [DirectiveStatus.SKIPPED, DirectiveStatus.ERROR]
        assert result.results[0].message == "not today"
        assert np.array_equal(result.image.pixels, image.pixels)

    def test_argument_defaults(self, raster, solid_image):
        image = FilterChainExecutor(raster, self.registry).apply(solid_image(), "mark_blue,40|mark_blue,")
        assert image.pixels[0, 0, 2] == 255

    def test_invalid_argument_is_error(self, raster, solid_image):
        result = FilterChainExecutor(raster, self.registry).run(solid_image(), "mark_blue,lots")
        assert result.results[0].status is DirectiveStatus.ERROR

    def test_invoke_wraps_operations(self, raster, solid_image):
        executor = FilterChainExecutor(raster, self.registry)
        image = solid_image()

        def operation(img):
            raise FilterSkipped("too small")

        out, outcome = executor.invoke(image, "watermark", operation, ("logo.png",))
        assert out is image
        assert outcome.status is DirectiveStatus.SKIPPED
        assert outcome.args == ("logo.png",)

    def test_library_pipeline(self, raster, gradient_image):
        executor = FilterChainExecutor(raster, seed=1)
        result = executor.run(gradient_image(24, 24), "grayscale|dot,4|dot,4|unknown|sepia,fast")
        assert [r.status for r in result.results].count(DirectiveStatus.APPLIED) == 4
        assert result.image.size == (24, 24)
