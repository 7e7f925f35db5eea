"""
Filter chain executor.

Applies a pipeline of filter directives strictly in order. Every directive
produces a `DirectiveResult`; a directive that names an unknown filter, has
bad arguments, or cannot run on the current backend is recorded as skipped or
errored and the image passes through unchanged to the next directive.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from imgforge.constants.constants import DirectiveStatus
from imgforge.core.exceptions import FilterSkipped
from imgforge.filters.base import FilterArgs, FilterContext
from imgforge.filters.directive import FilterDirective, parse_pipeline
from imgforge.filters.registry import FILTER_REGISTRY, FilterRegistry
from imgforge.raster.base import RasterBackend, RasterImage

logger = logging.getLogger(__name__)

Pipeline = Union[str, Sequence[FilterDirective]]
Operation = Callable[[RasterImage], RasterImage]


@dataclass(frozen=True)
class DirectiveResult:
    """
    Outcome of one directive.

    Attributes:
        name: Directive name as written
        status: applied, skipped or error
        message: Reason for a skip or error
        args: Argument tokens the directive carried
    """
    name: str
    status: DirectiveStatus
    message: str = ""
    args: Tuple[str, ...] = ()

    @classmethod
    def create(cls, directive: FilterDirective, status: DirectiveStatus,
               message: Optional[str] = None) -> "DirectiveResult":
        return cls(name=directive.name, status=status, message=message or "", args=directive.args)

    @property
    def applied(self) -> bool:
        return self.status is DirectiveStatus.APPLIED


@dataclass
class ChainResult:
    """Final image plus one result per directive, in pipeline order."""
    image: RasterImage
    results: List[DirectiveResult] = field(default_factory=list)

    @property
    def applied(self) -> List[str]:
        return [r.name for r in self.results if r.applied]

    @property
    def skipped(self) -> List[DirectiveResult]:
        return [r for r in self.results if not r.applied]


class FilterChainExecutor:
    """
    Run filter pipelines against a raster backend.

    Args:
        backend: Raster backend every filter is written against
        registry: Filter lookup; defaults to the library registry
        context: Per-request collaborators (source loader, output format)
        seed: Seed for the random generator used by stochastic filters
    """

    def __init__(self, backend: RasterBackend, registry: Optional[FilterRegistry] = None,
                 context: Optional[FilterContext] = None, seed: Optional[int] = None):
        self.backend = backend
        self.registry = registry or FILTER_REGISTRY
        self.context = context or FilterContext()
        if seed is not None:
            self.context.rng = np.random.default_rng(seed)

    def apply(self, image: RasterImage, pipeline: Pipeline) -> RasterImage:
        return self.run(image, pipeline).image

    def run(self, image: RasterImage, pipeline: Pipeline) -> ChainResult:
        directives = parse_pipeline(pipeline) if isinstance(pipeline, str) else list(pipeline)
        result = ChainResult(image)
        for directive in directives:
            result.image, outcome = self._apply_directive(result.image, directive)
            result.results.append(outcome)
        return result

    def _apply_directive(self, image: RasterImage,
                         directive: FilterDirective) -> Tuple[RasterImage, DirectiveResult]:
        func = self.registry.get(directive.name)
        if func is None:
            logger.warning(f"Unknown filter '{directive.name}'; skipping")
            return image, DirectiveResult.create(directive, DirectiveStatus.SKIPPED, "unknown filter")

        args = FilterArgs(directive.args, func.filter_meta.defaults)
        return self._guarded(image, directive, lambda img: func(self.backend, img, args, self.context))

    def invoke(self, image: RasterImage, name: str, operation: Operation,
               args: Tuple[str, ...] = ()) -> Tuple[RasterImage, DirectiveResult]:
        """
        Run an operation that is not a registered filter with the same
        skip and error handling as a directive.
        """
        return self._guarded(image, FilterDirective(name, tuple(args)), operation)

    def _guarded(self, image: RasterImage, directive: FilterDirective,
                 operation: Operation) -> Tuple[RasterImage, DirectiveResult]:
        try:
            output = operation(image)
        except FilterSkipped as e:
            logger.info(f"Filter '{directive.name}' skipped: {e}")
            return image, DirectiveResult.create(directive, DirectiveStatus.SKIPPED, str(e))
        except ValueError as e:
            logger.warning(f"Filter '{directive.name}' failed with arguments {directive.args}: {e}")
            return image, DirectiveResult.create(directive, DirectiveStatus.ERROR, str(e))
        except MemoryError as e:
            logger.error(f"Filter '{directive.name}' ran out of memory with arguments {directive.args}: {e}")
            return image, DirectiveResult.create(directive, DirectiveStatus.ERROR, f"out of memory: {e}")

        logger.debug(f"Applied filter {directive}")
        return output, DirectiveResult.create(directive, DirectiveStatus.APPLIED)
