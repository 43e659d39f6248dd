"""Site configuration for Kiln.

Configuration is read once per build from ``_config.yml`` at the source root,
merged over DEFAULT_CONFIG and frozen into a SiteConfig value. Stages receive
the SiteConfig explicitly; nothing looks configuration up globally. When the
watcher sees the configuration file change, a new SiteConfig is loaded and
swapped in with the rest of the graph.

Key functions:
- load_config: Load and freeze ``_config.yml``.
- load_data: Load ``_data/*.yml`` files for the ``data`` template variable.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "_config.yml"
DATA_DIRNAME = "_data"

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "",
    "url": "",
    "description": "",
    "destination": "_site",
    "permalink": "/:year/:month/:day/:title.html",
    "default_layout": "default",
    "post_layout": "post",
    "feed": False,
    "sitemap": False,
    "exclude": [],
    "workers": 1,
    "related_posts": 3,
}

DEFAULT_FEED = {"path": "feed.xml", "limit": 10, "format": "atom"}


def freeze(value: Any) -> Any:
    """Return a read-only copy of a YAML value (mappings and lists frozen recursively)."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def _as_int(value: Any, key: str, config_path: Path | None) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(config_path, f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            config_path, f"'{key}' must be an integer, got {value!r}", exc
        ) from exc


@dataclass(frozen=True)
class FeedSettings:
    """Resolved feed configuration."""

    path: str = "feed.xml"
    limit: int = 10
    format: str = "atom"


@dataclass(frozen=True)
class SiteConfig:
    """Immutable site configuration for one build generation.

    Attributes:
        source: Source root directory.
        settings: Read-only mapping of all configuration keys.
        config_path: Path of the configuration file (may not exist).
    """

    source: Path
    settings: Mapping[str, Any] = field(default_factory=lambda: freeze(DEFAULT_CONFIG))
    config_path: Path | None = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.settings[key]

    def get_int(self, key: str, default: int = 0) -> int:
        """Return an integer setting, rejecting values that are not numbers."""
        return _as_int(self.settings.get(key) or default, key, self.config_path)

    @property
    def title(self) -> str:
        return str(self.settings.get("title") or "")

    @property
    def url(self) -> str:
        return str(self.settings.get("url") or "").rstrip("/")

    @property
    def destination(self) -> Path:
        dest = Path(str(self.settings.get("destination") or "_site"))
        return dest if dest.is_absolute() else self.source / dest

    @property
    def exclude(self) -> tuple[str, ...]:
        return tuple(str(item) for item in self.settings.get("exclude") or ())

    @property
    def workers(self) -> int:
        return max(1, self.get_int("workers", 1))

    @property
    def feed(self) -> FeedSettings | None:
        """Return feed settings, or None when feed generation is disabled."""
        raw = self.settings.get("feed")
        if not raw:
            return None
        if raw is True:
            return FeedSettings()
        if not isinstance(raw, Mapping):
            raise ConfigurationError(
                self.config_path, "'feed' must be a boolean or a mapping"
            )
        if raw.get("enabled") is False:
            return None
        merged = {**DEFAULT_FEED, **{k: raw[k] for k in DEFAULT_FEED if k in raw}}
        if merged["format"] not in ("atom", "rss"):
            raise ConfigurationError(
                self.config_path, f"Unknown feed format '{merged['format']}'"
            )
        return FeedSettings(
            path=str(merged["path"]).lstrip("/"),
            limit=_as_int(merged["limit"], "feed.limit", self.config_path),
            format=str(merged["format"]),
        )


@dataclass(frozen=True)
class BuildOptions:
    """Per-invocation switches that are not part of the site configuration.

    Attributes:
        drafts: Include _drafts/ and ``published: false`` documents.
        future: Include documents dated after ``now``.
        now: Reference time for future filtering; defaults to build start.
        destination: Optional override of the configured destination.
    """

    drafts: bool = False
    future: bool = False
    now: datetime | None = None
    destination: Path | None = None

    def reference_time(self) -> datetime:
        return self.now or datetime.now()


def load_config(
    source: Path, overrides: Mapping[str, Any] | None = None
) -> SiteConfig:
    """Load site configuration from _config.yml.

    Args:
        source: Source root of the site.
        overrides: Optional values that win over the file (e.g. CLI flags).

    Returns:
        Frozen SiteConfig with defaults applied.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    config_path = source / CONFIG_FILENAME
    config = dict(DEFAULT_CONFIG)
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(config_path, f"Invalid YAML: {exc}", exc) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(config_path, str(exc), exc) from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(config_path, "Configuration must be a mapping")
        config.update(loaded)
    if overrides:
        config.update(overrides)
    logger.debug("Loaded configuration from %s", config_path)
    return SiteConfig(source=source, settings=freeze(config), config_path=config_path)


def load_data(source: Path) -> Mapping[str, Any]:
    """Load data files from the _data directory.

    Each ``NAME.yml`` / ``NAME.yaml`` file becomes ``data.NAME``.

    Args:
        source: Source root of the site.

    Returns:
        Read-only mapping of data file stems to their contents.
    """
    data_dir = source / DATA_DIRNAME
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return freeze(data)
    for path in sorted(data_dir.iterdir()):
        if path.suffix.lower() not in (".yml", ".yaml"):
            continue
        try:
            with open(path, encoding="utf-8") as f:
                data[path.stem] = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(path, f"Invalid YAML: {exc}", exc) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(path, str(exc), exc) from exc
    return freeze(data)
