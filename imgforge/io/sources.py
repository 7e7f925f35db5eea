"""
Default source loader.

Reads local paths (absolute, ``file://`` or relative to the configured base
path) and fetches ``http(s)`` URLs with requests. Every failure, including
timeouts, surfaces as SourceLoadError.
"""

import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from imgforge.core.config import SourceConfig
from imgforge.core.exceptions import SourceLoadError

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = ("http", "https")


def is_remote(source_ref: str) -> bool:
    return urlparse(source_ref).scheme.lower() in REMOTE_SCHEMES


class SourceLoader:
    """Callable ``(source_ref) -> bytes`` used by the transformer and by mask/watermark filters."""

    def __init__(self, config: SourceConfig = SourceConfig()):
        self.config = config
        self._session = requests.Session()
        self._session.headers["User-Agent"] = config.user_agent

    def __call__(self, source_ref: str) -> bytes:
        source_ref = str(source_ref).strip()
        if not source_ref:
            raise SourceLoadError("Empty source reference")
        if is_remote(source_ref):
            return self.fetch(source_ref)
        return self.read_local(source_ref)

    def fetch(self, url: str) -> bytes:
        try:
            response = self._session.get(url, timeout=self.config.fetch_timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            raise SourceLoadError(f"Timed out after {self.config.fetch_timeout}s fetching {url}") from e
        except requests.RequestException as e:
            raise SourceLoadError(f"Failed to fetch {url}: {e}") from e
        logger.debug(f"Fetched {len(response.content)} bytes from {url}")
        return response.content

    def resolve_path(self, source_ref: str) -> Path:
        parsed = urlparse(source_ref)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(source_ref).expanduser()
        if not path.is_absolute() and self.config.base_path is not None:
            path = self.config.base_path / path
        return path

    def read_local(self, source_ref: str) -> bytes:
        path = self.resolve_path(source_ref)
        try:
            return path.read_bytes()
        except OSError as e:
            raise SourceLoadError(f"Cannot read source {path}: {e}") from e

    def close(self) -> None:
        self._session.close()
