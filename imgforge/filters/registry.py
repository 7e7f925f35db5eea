"""
Filter registry.

Collects every function tagged with `filter_definition` from the filter
library modules into an immutable name → filter mapping. Aliases resolve to
the same function as the primary name.
"""

import importlib
import logging
from types import MappingProxyType, ModuleType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from imgforge.filters.base import FilterFunc, FilterMeta

logger = logging.getLogger(__name__)

LIBRARY_MODULES = (
    "imgforge.filters.adjust",
    "imgforge.filters.convolution",
    "imgforge.filters.halftone",
    "imgforge.filters.masks",
    "imgforge.filters.borders",
    "imgforge.filters.reflection",
    "imgforge.filters.color_analysis",
    "imgforge.filters.geometry",
    "imgforge.filters.drawing",
)


class FilterRegistry:
    """Immutable lookup of filters by name or alias."""

    def __init__(self, filters: Iterable[FilterFunc]):
        table: Dict[str, FilterFunc] = {}
        primary: List[str] = []
        for func in filters:
            meta: FilterMeta = func.filter_meta
            for name in (meta.name,) + meta.aliases:
                if name in table and table[name] is not func:
                    raise ValueError(f"Duplicate filter registration: {name}")
                table[name] = func
            primary.append(meta.name)
        self._filters = MappingProxyType(table)
        self._primary = tuple(sorted(primary))

    def __contains__(self, name: object) -> bool:
        return name in self._filters

    def __iter__(self) -> Iterator[str]:
        return iter(self._primary)

    def __len__(self) -> int:
        return len(self._primary)

    def get(self, name: str) -> Optional[FilterFunc]:
        return self._filters.get(name.strip().lower())

    def names(self) -> Tuple[str, ...]:
        """Primary filter names, aliases excluded."""
        return self._primary


def _tagged_functions(module: ModuleType) -> List[FilterFunc]:
    return [obj for obj in vars(module).values()
            if callable(obj) and isinstance(getattr(obj, "filter_meta", None), FilterMeta)
            and obj.__module__ == module.__name__]


def build_filter_registry(modules: Iterable[str] = LIBRARY_MODULES) -> FilterRegistry:
    """Import the library modules and register their tagged filters."""
    filters: List[FilterFunc] = []
    for module_name in modules:
        filters.extend(_tagged_functions(importlib.import_module(module_name)))
    registry = FilterRegistry(filters)
    logger.debug(f"Registered {len(registry)} filters")
    return registry


FILTER_REGISTRY = build_filter_registry()
