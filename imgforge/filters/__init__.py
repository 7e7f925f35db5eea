"""
Filter library and chain executor for imgforge.

Filters are plain functions tagged with `filter_definition`; `FILTER_REGISTRY`
maps their names and aliases, and `FilterChainExecutor` applies parsed
pipelines in order.
"""

from imgforge.filters.base import FilterArgs, FilterContext, filter_definition
from imgforge.filters.chain import ChainResult, DirectiveResult, FilterChainExecutor
from imgforge.filters.directive import FilterDirective, parse_directive, parse_pipeline
from imgforge.filters.registry import FILTER_REGISTRY, FilterRegistry, build_filter_registry

__all__ = [
    "ChainResult",
    "DirectiveResult",
    "FILTER_REGISTRY",
    "FilterArgs",
    "FilterChainExecutor",
    "FilterContext",
    "FilterDirective",
    "FilterRegistry",
    "build_filter_registry",
    "filter_definition",
    "parse_directive",
    "parse_pipeline",
]
