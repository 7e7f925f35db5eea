"""
imgforge: on-demand image transformation with a persistent result cache.

This module provides the public API for imgforge. Heavy submodules (raster
backends, storage backends) are imported lazily by the objects that need them.
"""

import logging

__version__ = "0.1.0"


# Set up basic logging configuration if none exists
def _ensure_basic_logging():
    """Ensure basic logging is configured if no configuration exists."""
    root_logger = logging.getLogger()

    # Only configure if no handlers exist and level is too high
    if not root_logger.handlers and root_logger.level > logging.INFO:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )


_ensure_basic_logging()

from imgforge.core.config import TransformConfig, load_config  # noqa: E402
from imgforge.core.exceptions import (  # noqa: E402
    ImgForgeError,
    SourceLoadError,
    TransformError,
)
from imgforge.core.transformer import Transformer, TransformResult  # noqa: E402

__all__ = [
    # Core entry points
    "Transformer",
    "TransformResult",
    "TransformConfig",
    "load_config",

    # Errors surfaced to callers
    "ImgForgeError",
    "TransformError",
    "SourceLoadError",
]
