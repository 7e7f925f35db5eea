"""
XDG Base Directory utilities for imgforge.

Provides the standard locations used when no explicit cache directory is
configured:
- Data: ~/.local/share/imgforge/
- Cache: ~/.local/share/imgforge/cache/
- Config: ~/.local/share/imgforge/config/

XDG_DATA_HOME is honoured when set.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def get_imgforge_data_dir() -> Path:
    """
    Get the imgforge data directory following the XDG Base Directory layout.

    Returns:
        Path to $XDG_DATA_HOME/imgforge/ (default ~/.local/share/imgforge/)
    """
    base = os.environ.get("XDG_DATA_HOME")
    data_dir = Path(base) / "imgforge" if base else Path.home() / ".local" / "share" / "imgforge"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_imgforge_cache_dir() -> Path:
    """Get the default directory for the local cache connection."""
    cache_dir = get_imgforge_data_dir() / "cache"
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_imgforge_config_dir() -> Path:
    """Get the directory searched for imgforge.yaml."""
    config_dir = get_imgforge_data_dir() / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir
