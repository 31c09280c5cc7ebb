"""
Configuration for the offline sync layer.

Values can be given directly, read from ``SOLIVRAH_*`` environment
variables, or loaded from the ``offline`` section of a YAML settings file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .queue.types import OperationType
from .sync.retry import RetryPolicy

DEFAULT_HOME = Path.home() / ".solivrah"

DEFAULT_CRITICAL_ASSETS: tuple[str, ...] = (
    "/",
    "/index.html",
    "/favicon.ico",
    "/placeholder.svg",
    "/assets/index.css",
    "/assets/index.js",
)

DEFAULT_ENDPOINTS: dict[str, str] = {
    OperationType.QUEST_COMPLETION.value: "/api/quests/complete",
    OperationType.MOOD_UPDATE.value: "/api/mood",
    OperationType.PROFILE_UPDATE.value: "/api/profile",
}


@dataclass
class OfflineConfig:
    """Configuration for one execution context of the offline layer.

    Environment Variables:
        SOLIVRAH_BASE_URL: Origin the app is served from
        SOLIVRAH_CACHE_VERSION: Version tag of the cache namespace
        SOLIVRAH_CACHE_DIR: Directory holding cache namespaces
        SOLIVRAH_QUEUE_PATH: SQLite file holding pending operations
        SOLIVRAH_SUBMIT_TIMEOUT: Seconds before a submission is abandoned (0 = none)
        SOLIVRAH_MAX_ATTEMPTS: Failures before an operation is dead-lettered (0 = never)
        SOLIVRAH_LOG_LEVEL: Logging level name

    Attributes:
        base_url: Same-origin prefix for cacheable requests
        cache_prefix: Cache namespace name without the version tag
        cache_version: Version tag; bumping it invalidates all cached assets
        cache_dir: Directory holding one subdirectory per cache namespace
        queue_path: SQLite database shared by every context
        excluded_prefixes: URL path prefixes never intercepted by the cache
        cross_origin_allowlist: Substrings that make a cross-origin URL cacheable
        critical_assets: App shell seeded on install
        placeholder_path: Image returned when an image cannot be loaded
        root_document: Fallback document for offline navigation
        sync_tag: Background-wake tag for queued work
        endpoints: operationType -> submit path
        submit_timeout: Per-submission timeout in seconds (None = unbounded)
        connectivity_url: URL probed by the network observer (defaults to base_url)
        connectivity_timeout: Probe timeout in seconds
        poll_interval: Seconds between connectivity probes
        retry: Backoff and dead-letter policy
        log_level: Logging level name
    """

    base_url: str = "http://localhost:5173"
    cache_prefix: str = "solivrah-cache"
    cache_version: str = "1"
    cache_dir: Path = field(default_factory=lambda: DEFAULT_HOME / "cache")
    queue_path: Path = field(default_factory=lambda: DEFAULT_HOME / "offline_operations.db")

    excluded_prefixes: tuple[str, ...] = ("/api/", "/auth/", "/rest/")
    cross_origin_allowlist: tuple[str, ...] = ("lovable-uploads", "supabase.co")
    critical_assets: tuple[str, ...] = DEFAULT_CRITICAL_ASSETS
    placeholder_path: str = "/placeholder.svg"
    root_document: str = "/"

    sync_tag: str = "offline-quest-completion"
    endpoints: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ENDPOINTS))
    submit_timeout: float | None = 30.0

    connectivity_url: str | None = None
    connectivity_timeout: float = 5.0
    poll_interval: float = 15.0

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.cache_version = str(self.cache_version)
        self.cache_dir = Path(self.cache_dir).expanduser()
        self.queue_path = Path(self.queue_path).expanduser()
        self.excluded_prefixes = tuple(self.excluded_prefixes)
        self.cross_origin_allowlist = tuple(self.cross_origin_allowlist)
        self.critical_assets = tuple(self.critical_assets)
        if isinstance(self.retry, dict):
            self.retry = RetryPolicy(**self.retry)
        self.validate()

    @property
    def cache_name(self) -> str:
        """Versioned cache namespace, e.g. ``solivrah-cache-v1``."""
        return f"{self.cache_prefix}-v{self.cache_version}"

    def validate(self) -> None:
        """Check values that would otherwise fail much later."""
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError("base_url", "must be an http(s) URL", self.base_url)
        if not self.cache_version:
            raise ConfigurationError("cache_version", "must not be empty")
        for operation_type in OperationType:
            if operation_type.value not in self.endpoints:
                raise ConfigurationError(
                    "endpoints", f"missing endpoint for {operation_type.value}"
                )
        if self.submit_timeout is not None and self.submit_timeout <= 0:
            raise ConfigurationError(
                "submit_timeout", "must be positive or None", str(self.submit_timeout)
            )
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval", "must be positive", str(self.poll_interval))

    def endpoint_url(self, operation_type: OperationType | str) -> str:
        """Absolute submit URL for an operation type."""
        key = operation_type.value if isinstance(operation_type, OperationType) else operation_type
        try:
            path = self.endpoints[key]
        except KeyError:
            raise ConfigurationError("endpoints", f"no endpoint for {key}") from None
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    @classmethod
    def from_env(cls) -> OfflineConfig:
        """Create config from environment variables."""
        kwargs: dict[str, Any] = {}

        if base_url := os.environ.get("SOLIVRAH_BASE_URL"):
            kwargs["base_url"] = base_url
        if cache_version := os.environ.get("SOLIVRAH_CACHE_VERSION"):
            kwargs["cache_version"] = cache_version
        if cache_dir := os.environ.get("SOLIVRAH_CACHE_DIR"):
            kwargs["cache_dir"] = Path(cache_dir)
        if queue_path := os.environ.get("SOLIVRAH_QUEUE_PATH"):
            kwargs["queue_path"] = Path(queue_path)
        if log_level := os.environ.get("SOLIVRAH_LOG_LEVEL"):
            kwargs["log_level"] = log_level

        timeout_str = os.environ.get("SOLIVRAH_SUBMIT_TIMEOUT")
        if timeout_str is not None:
            timeout = _parse_float("SOLIVRAH_SUBMIT_TIMEOUT", timeout_str)
            kwargs["submit_timeout"] = timeout if timeout > 0 else None

        attempts_str = os.environ.get("SOLIVRAH_MAX_ATTEMPTS")
        if attempts_str is not None:
            attempts = int(_parse_float("SOLIVRAH_MAX_ATTEMPTS", attempts_str))
            kwargs["retry"] = RetryPolicy(max_attempts=attempts if attempts > 0 else None)

        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: Path) -> OfflineConfig:
        """Load config from the ``offline`` section of a YAML file.

        ```yaml
        offline:
          base_url: "https://app.solivrah.com"
          cache_version: "3"
          retry:
            max_attempts: 8
            backoff_base: 5
        ```

        A missing file or section yields the defaults.
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError("file", f"invalid YAML: {e}", str(path)) from e

        section = document.get("offline", {}) if isinstance(document, dict) else {}
        if not isinstance(section, dict):
            raise ConfigurationError("offline", "section must be a mapping", str(path))

        known = {f.name for f in fields(cls)}
        unknown = set(section) - known
        if unknown:
            raise ConfigurationError("offline", f"unknown keys: {', '.join(sorted(unknown))}")

        kwargs = dict(section)
        if "submit_timeout" in kwargs and not kwargs["submit_timeout"]:
            kwargs["submit_timeout"] = None
        return cls(**kwargs)


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(name, "must be a number", value) from None
