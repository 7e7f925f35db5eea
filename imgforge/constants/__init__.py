from imgforge.constants.constants import (
    ConnectionKind,
    DirectiveStatus,
    OrphanPolicy,
    OutputFormat,
    ParameterKind,
    RasterBackendKind,
    ResizeMode,
    UnknownParameterPolicy,
)

__all__ = [
    "ConnectionKind",
    "DirectiveStatus",
    "OrphanPolicy",
    "OutputFormat",
    "ParameterKind",
    "RasterBackendKind",
    "ResizeMode",
    "UnknownParameterPolicy",
]
