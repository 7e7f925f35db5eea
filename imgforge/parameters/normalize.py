"""
Request parameter normalization.

`normalize` turns a flat name → string map into a complete `ParameterSet`:
unknown names are ignored or rejected, missing names take registry defaults,
invalid values fall back to their default and are reported in
`ParameterSet.issues`.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from imgforge.constants.constants import ParameterKind, UnknownParameterPolicy
from imgforge.core.config import ParameterConfig
from imgforge.core.exceptions import UnknownParameterError, ValidationError
from imgforge.parameters.registry import ParameterRegistry, registry_for
from imgforge.parameters.validators import Percentage

logger = logging.getLogger(__name__)


class ParameterSet(Mapping):
    """
    Immutable, complete set of normalized request parameters.

    Every registry name is present. Percent dimensions stay as `Percentage`
    until `resolve_dimensions` is called with the source size.
    """

    def __init__(self, values: Mapping[str, Any], registry: ParameterRegistry,
                 issues: Tuple[str, ...] = ()):
        self._values = MappingProxyType(dict(values))
        self.registry = registry
        self.issues = tuple(issues)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        changed = {k: v for k, v in self._values.items() if not self.is_default(k)}
        return f"ParameterSet({changed})"

    def is_default(self, name: str) -> bool:
        return self._values[name] == self.registry[name].default

    def of_kind(self, kind: ParameterKind) -> Dict[str, Any]:
        return {name: self._values[name] for name in self.registry.names(kind)}

    def control(self) -> Dict[str, Any]:
        return self.of_kind(ParameterKind.CONTROL)

    def dimensional(self) -> Dict[str, Any]:
        return self.of_kind(ParameterKind.DIMENSIONAL)

    def transformational(self) -> Dict[str, Any]:
        return self.of_kind(ParameterKind.TRANSFORMATIONAL)

    def resolve_dimensions(self, width: int, height: int) -> "ParameterSet":
        """Return a copy with percentage dimensions resolved against the source size."""
        resolved = dict(self._values)
        for name, value in self._values.items():
            if isinstance(value, Percentage):
                resolved[name] = value.resolve(_reference(self.registry[name].axis, width, height))
        return ParameterSet(resolved, self.registry, self.issues)


def _reference(axis: Optional[str], width: int, height: int) -> int:
    if axis == "y":
        return height
    if axis == "long":
        return max(width, height)
    return width


def normalize(raw: Optional[Mapping[Any, Any]],
              registry: Optional[ParameterRegistry] = None,
              config: Optional[ParameterConfig] = None,
              source_size: Optional[Tuple[int, int]] = None) -> ParameterSet:
    """
    Normalize a raw parameter map.

    Args:
        raw: Request parameters, normally name → string
        registry: Registry to validate against; derived from ``config`` when omitted
        config: Policies and defaults
        source_size: (width, height) of the source; resolves percentage dimensions

    Returns:
        A complete ParameterSet

    Raises:
        UnknownParameterError: Only when the unknown-parameter policy is ``error``
    """
    config = config or ParameterConfig()
    if registry is None:
        registry = registry_for(config)

    values = registry.defaults()
    issues = []

    for raw_name, raw_value in (raw or {}).items():
        name = str(raw_name).strip().lower()
        if name not in registry:
            if config.unknown_parameter_policy is UnknownParameterPolicy.ERROR:
                raise UnknownParameterError(f"Unknown parameter '{raw_name}'")
            logger.debug(f"Ignoring unknown parameter '{raw_name}'")
            continue

        entry = registry[name]
        try:
            value = entry.validator(raw_value)
        except (ValidationError, TypeError, ValueError, OverflowError) as e:
            message = f"Invalid value for '{name}': {raw_value!r} ({e}); using default {entry.default!r}"
            logger.warning(message)
            issues.append(message)
            continue

        values[name] = entry.default if value is None else value

    params = ParameterSet(values, registry, tuple(issues))
    if source_size is not None:
        params = params.resolve_dimensions(*source_size)
    return params
