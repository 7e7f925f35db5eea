from imgforge.parameters.normalize import ParameterSet, normalize
from imgforge.parameters.registry import (
    PARAMETER_REGISTRY,
    ParameterEntry,
    ParameterRegistry,
    build_registry,
    registry_for,
)
from imgforge.parameters.validators import Percentage

__all__ = [
    "PARAMETER_REGISTRY",
    "ParameterEntry",
    "ParameterRegistry",
    "ParameterSet",
    "Percentage",
    "build_registry",
    "normalize",
    "registry_for",
]
