"""
Transform service.

`Transformer` is the entry point a host application calls. A request is a
source reference plus a flat parameter map; the result is the encoded derived
image. Results are cached under a key derived from the source and the
normalized pixel-affecting parameters, so identical requests are served from
storage.

Processing order on a cache miss:

1. load and decode the source (``fallback_src`` is tried if it fails)
2. crop or resize, then flip
3. parameter shortcuts (sharpen, contrast, ..., replace_colors)
4. the explicit ``filter=`` pipeline
5. text overlay
6. watermark, mask, rounded corners, border, reflection, rotate
7. flatten for formats without alpha and encode
"""

import logging
import math
import re
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Callable, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from imgforge.cache.connections import ConnectionManager, NamedConnection
from imgforge.cache.keys import clean_filename, derive_key, encode_ttl_marker, source_prefix
from imgforge.cache.store import AuditReport, CacheStore
from imgforge.constants.constants import NO_CACHE, OUTPUT_FORMAT_ALIASES, OutputFormat, ResizeMode
from imgforge.core.config import TransformConfig
from imgforge.core.exceptions import (
    BackendCapabilityError,
    BackendInitError,
    ConnectionNotFoundError,
    SourceLoadError,
    StoreIOError,
    TransformError,
    UnknownParameterError,
)
from imgforge.filters.base import FilterContext
from imgforge.filters.borders import add_border
from imgforge.filters.chain import DirectiveResult, FilterChainExecutor
from imgforge.filters.directive import FilterDirective, parse_pipeline
from imgforge.filters.geometry import apply_geometry
from imgforge.filters.masks import rounded_corners
from imgforge.filters.text import apply_text
from imgforge.filters.watermark import apply_watermark
from imgforge.io.sources import SourceLoader
from imgforge.parameters.normalize import ParameterSet, normalize
from imgforge.parameters.registry import registry_for
from imgforge.raster import get_raster_backend
from imgforge.raster.base import RasterImage
from imgforge.raster.colors import parse_color

logger = logging.getLogger(__name__)

_TRUE_SPEC = {"y", "yes", "true", "on", "1"}

# control parameters that only shape how the host presents the result
HOST_OPTIONS = ("output", "url_only", "lazy", "default_img_width", "default_img_height")


@dataclass(frozen=True)
class TransformResult:
    """
    Outcome of one transform request.

    Attributes:
        data: Encoded image bytes
        key: Storage key, or None when caching is disabled
        filename: Name to deliver the file under
        output_format: Encoding of ``data``
        cache_hit: True when ``data`` came from the cache
        connection: Storage connection the key lives on
        directives: Per-step results (empty on a cache hit)
        issues: Parameter validation messages
        host_options: Presentation parameters passed through untouched
            (`HOST_OPTIONS`); the engine never reads them
    """
    data: bytes
    key: Optional[str]
    filename: str
    output_format: OutputFormat
    cache_hit: bool = False
    connection: Optional[str] = None
    directives: Tuple[DirectiveResult, ...] = ()
    issues: Tuple[str, ...] = ()
    host_options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> List[DirectiveResult]:
        return [d for d in self.directives if not d.applied]


def resolve_output_format(save_type: Optional[str], source_ref: str, default: OutputFormat) -> OutputFormat:
    """Requested format, else the source's extension, else ``default``."""
    if save_type:
        return OutputFormat(save_type)
    suffix = PurePosixPath(urlparse(source_ref).path).suffix.lower().lstrip(".")
    return OUTPUT_FORMAT_ALIASES.get(suffix, default)


def _split(spec: str, pattern: str = r"[,|]") -> Tuple[str, ...]:
    return tuple(token.strip() for token in re.split(pattern, spec))


def shortcut_directives(params: Mapping[str, Any]) -> List[FilterDirective]:
    """Directives for the single-filter parameters, in application order."""
    directives: List[FilterDirective] = []
    if params.get("auto_sharpen"):
        directives.append(FilterDirective("auto_sharpen"))
    sharpen = params.get("sharpen")
    if sharpen and sharpen.strip().lower() not in ("n", "no", "false", "off", "0"):
        args = () if sharpen.strip().lower() in _TRUE_SPEC else _split(sharpen, ",")
        directives.append(FilterDirective("sharpen", args))
    for name in ("contrast", "brightness", "blur"):
        if params.get(name) is not None:
            directives.append(FilterDirective(name, (str(params[name]),)))
    if params.get("pixelate"):
        directives.append(FilterDirective("pixelate", (str(params["pixelate"]),)))
    if params.get("grayscale"):
        directives.append(FilterDirective("grayscale"))
    if params.get("sepia"):
        directives.append(FilterDirective("sepia", (params["sepia"],)))
    if params.get("negate"):
        directives.append(FilterDirective("negate"))
    if params.get("colorize"):
        directives.append(FilterDirective("colorize", _split(params["colorize"], ",")))
    if params.get("opacity") is not None:
        directives.append(FilterDirective("opacity", (str(params["opacity"]),)))
    if params.get("dominant_color"):
        directives.append(FilterDirective("dominant_color"))
    if params.get("replace_colors"):
        directives.append(FilterDirective("replace_colors", _split(params["replace_colors"], ",")))
    return directives


class Transformer:
    """
    On-demand image transformer with a persistent result cache.

    Args:
        config: Engine configuration; defaults throughout when omitted
        source_loader: Callable returning the bytes of a source reference;
            defaults to local files and http(s) fetches
        time_source: Clock used for cache expiry
        seed: Seed for stochastic filters (noise, scatter)

    Raises:
        BackendInitError: If the configured raster backend is unavailable
    """

    def __init__(self, config: Optional[TransformConfig] = None,
                 source_loader: Optional[Callable[[str], bytes]] = None,
                 time_source: Callable[[], float] = time.time,
                 seed: Optional[int] = None):
        self.config = config or TransformConfig()
        self.backend = get_raster_backend(self.config.raster.backend, self.config.raster.max_canvas_dimension)
        self.registry = registry_for(self.config.parameters)
        self.source_loader = source_loader or SourceLoader(self.config.source)
        self.connections = ConnectionManager.from_config(self.config)
        self.store = CacheStore(self.connections, self.config.cache, self.config.audit, time_source)
        self.seed = seed
        self.store.start_audit_schedule()
        logger.info(f"Transformer ready (raster backend {self.config.raster.backend.value}, "
                    f"default connection '{self.connections.default.name}')")

    def __enter__(self) -> "Transformer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.store.close()
        if isinstance(self.source_loader, SourceLoader):
            self.source_loader.close()

    # ------------------------------------------------------------ public API

    def transform(self, source_ref: Optional[str], raw_parameters: Optional[Mapping[str, Any]] = None) -> bytes:
        """
        Return the encoded derived image.

        Raises:
            TransformError: If the source cannot be loaded or encoded
        """
        return self.transform_result(source_ref, raw_parameters).data

    def transform_result(self, source_ref: Optional[str],
                         raw_parameters: Optional[Mapping[str, Any]] = None) -> TransformResult:
        """Like `transform`, with the cache key, hit flag and diagnostics."""
        try:
            params = normalize(raw_parameters, self.registry, self.config.parameters)
        except UnknownParameterError as e:
            raise TransformError(str(e)) from e

        source_ref = source_ref or params["src"]
        if not source_ref:
            raise TransformError("No source image given")

        try:
            connection = self.connections.get(params["connection"]).name
        except ConnectionNotFoundError as e:
            raise TransformError(str(e)) from e

        fmt = resolve_output_format(params["save_type"], source_ref,
                                    self.config.parameters.default_output_format)
        filename = self.delivered_filename(source_ref, params, fmt)
        options = {name: params[name] for name in HOST_OPTIONS}
        ttl = params["cache"]

        if ttl == NO_CACHE:
            data, directives = self._build(source_ref, params, fmt)
            return TransformResult(data, None, filename, fmt, False, connection, directives, params.issues, options)

        key = self.storage_key(source_ref, params, fmt)
        if not params["overwrite_cache"]:
            cached = self._cached(key, connection)
            if cached is not None:
                return TransformResult(cached, key, filename, fmt, True, connection, (), params.issues, options)

        with self._build_lock(key, connection):
            if not params["overwrite_cache"]:
                cached = self._cached(key, connection)
                if cached is not None:
                    return TransformResult(cached, key, filename, fmt, True, connection, (), params.issues, options)

            data, directives = self._build(source_ref, params, fmt)
            try:
                self.store.put(key, data, ttl, source_ref, connection)
            except (StoreIOError, BackendInitError) as e:
                logger.warning(f"Serving {key} uncached: {e}")

        return TransformResult(data, key, filename, fmt, False, connection, directives, params.issues, options)

    def invalidate(self, source_ref: str, connection: Optional[str] = None) -> int:
        """Remove every cached entry derived from ``source_ref``; returns the count removed."""
        prefix = source_prefix(source_ref, self.config.keys)
        return self.store.invalidate_prefix(prefix, source_ref, connection)

    def list_connections(self) -> List[NamedConnection]:
        return self.connections.list_connections()

    def set_default_connection(self, name: str) -> None:
        self.connections.set_default_connection(name)

    def audit(self, connection: Optional[str] = None) -> AuditReport:
        return self.store.audit(connection)

    # ---------------------------------------------------------------- naming

    def storage_key(self, source_ref: str, params: ParameterSet, fmt: OutputFormat) -> str:
        """Cache key plus format extension, under ``cache_dir`` when one is set."""
        key = derive_key(source_ref, params.dimensional(), params.transformational(),
                         encode_ttl_marker(params["cache"]), self.config.keys)
        key = f"{key}{fmt.extension}"
        cache_dir = params["cache_dir"]
        if cache_dir:
            parts = [p for p in cache_dir.replace("\\", "/").split("/") if p not in ("", ".")]
            if ".." in parts:
                logger.warning(f"Ignoring cache_dir {cache_dir!r}: parent references are not allowed")
            elif parts:
                key = "/".join(parts + [key])
        return key

    def delivered_filename(self, source_ref: str, params: ParameterSet, fmt: OutputFormat) -> str:
        stem = params["filename"] or clean_filename(source_ref, self.config.keys)
        return f"{params['filename_prefix'] or ''}{stem}{params['filename_suffix'] or ''}{fmt.extension}"

    # ----------------------------------------------------------------- cache

    def _cached(self, key: str, connection: str) -> Optional[bytes]:
        try:
            return self.store.get(key, connection)
        except (StoreIOError, BackendInitError) as e:
            logger.warning(f"Cache unavailable for {key}: {e}")
            return None

    @contextmanager
    def _build_lock(self, key: str, connection: str) -> Iterator[bool]:
        with ExitStack() as stack:
            try:
                acquired = stack.enter_context(self.store.lock(key, connection))
            except BackendInitError as e:
                logger.warning(f"Building {key} without a lock: {e}")
                acquired = False
            yield acquired

    # ---------------------------------------------------------------- build

    def _load(self, source_ref: str, params: ParameterSet) -> RasterImage:
        candidates = [source_ref] + ([params["fallback_src"]] if params["fallback_src"] else [])
        error: Optional[Exception] = None
        for candidate in candidates:
            try:
                data = self.source_loader(candidate)
                return self._limit_source(candidate, data, self.backend.decode(data))
            except SourceLoadError as e:
                error = e
            except (OSError, ValueError, MemoryError) as e:
                error = SourceLoadError(f"Cannot decode source {candidate}: {e}")
            logger.warning(f"Source {candidate} unavailable: {error}")
        raise error

    def _limit_source(self, candidate: str, data: bytes, image: RasterImage) -> RasterImage:
        """
        Enforce the source dimension and byte-size limits.

        Oversized sources are rejected unless ``auto_adjust`` is set, in which
        case they are downscaled until both limits hold.

        Raises:
            SourceLoadError: If the source is over a limit and auto adjust is off
        """
        limits = self.config.source
        longest = max(image.width, image.height)
        ratio = 1.0
        if 0 < limits.max_source_dimension < longest:
            ratio = limits.max_source_dimension / longest
        max_bytes = limits.max_source_size * 1_000_000
        if 0 < max_bytes < len(data):
            ratio = min(ratio, math.sqrt(max_bytes / len(data)))
        if ratio >= 1.0:
            return image

        if not limits.auto_adjust:
            raise SourceLoadError(
                f"Source {candidate} is too large ({image.width}x{image.height}, {len(data)} bytes); "
                f"limits are {limits.max_source_dimension}px and {limits.max_source_size}MB")
        width = max(1, int(image.width * ratio))
        height = max(1, int(image.height * ratio))
        logger.info(f"Downscaling source {candidate} from {image.width}x{image.height} to {width}x{height}")
        return self.backend.resize(image, width, height, ResizeMode.SMOOTH)

    def _build(self, source_ref: str, params: ParameterSet,
               fmt: OutputFormat) -> Tuple[bytes, Tuple[DirectiveResult, ...]]:
        image = self._load(source_ref, params)
        params = params.resolve_dimensions(image.width, image.height)
        backend = self.backend
        background = parse_color(params["bg_color"], (255, 255, 255, 255))
        context = FilterContext(source_loader=self.source_loader, output_format=fmt, background=background)
        executor = FilterChainExecutor(backend, context=context, seed=self.seed)
        results: List[DirectiveResult] = []

        def step(operation_name: str, operation, args=()) -> None:
            nonlocal image
            image, outcome = executor.invoke(image, operation_name, operation, args)
            results.append(outcome)

        def run(directives: List[FilterDirective]) -> None:
            nonlocal image
            chain = executor.run(image, directives)
            image = chain.image
            results.extend(chain.results)

        image, outcome = executor.invoke(image, "geometry", lambda img: apply_geometry(backend, img, params))
        if not outcome.applied:
            results.append(outcome)
        if params["flip"]:
            run([FilterDirective("flip", (params["flip"],))])
        run(shortcut_directives(params))
        run(parse_pipeline(params["filter"] or ""))

        if params["text"]:
            step("text", lambda img: apply_text(backend, img, params["text"]), _split(params["text"], r"\|"))
        if params["watermark"]:
            step("watermark", lambda img: apply_watermark(backend, img, params["watermark"], context),
                 _split(params["watermark"], r"\|"))
        if params["mask"]:
            run([FilterDirective("mask", _split(params["mask"], ","))])
        if params["rounded_corners"]:
            step("rounded_corners", lambda img: rounded_corners(backend, img, params["rounded_corners"]),
                 (params["rounded_corners"],))
        if params["border"]:
            step("border", lambda img: add_border(
                backend, img, params["border"],
                follow_outline=context.supports_alpha and backend.has_transparency(img)),
                _split(params["border"], r"\|"))
        if params["reflection"]:
            run([FilterDirective("reflection", _split(params["reflection"]))])
        if params["rotate"]:
            run([FilterDirective("rotate", (str(params["rotate"]),))])

        if params["debug"]:
            logger.info(f"Transform of {source_ref}: " + ", ".join(f"{r.name}={r.status.value}" for r in results))

        if not fmt.supports_alpha:
            image = backend.flatten(image, background)
        try:
            data = backend.encode(image, fmt, quality=params["quality"],
                                  png_compression=params["png_quality"], interlace=params["interlace"])
        except (BackendCapabilityError, ValueError, OSError) as e:
            raise TransformError(f"Cannot encode {source_ref} as {fmt.value}: {e}") from e
        return data, tuple(results)

