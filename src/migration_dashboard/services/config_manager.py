"""JSON-based configuration persistence via platformdirs."""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

APP_NAME = "migration-dashboard"
CONFIG_FILENAME = "config.json"

_DEFAULTS: dict[str, Any] = {
    "api_url": "",              # endpoint or local JSON file with raw asset data
    "department": "",           # inserted into api_url as a path segment
    "request_timeout": 30,      # seconds, applied by the HTTP source
    "default_environment": "all",
    "default_view": "overview",
    "cache_ttl_seconds": 0,     # 0 = every refresh fetches
    "burndown_target": "",      # ISO date, e.g. "2026-12-31"
    "burndown_targets": {},     # per environment, e.g. {"dev": "2026-06-30"}
    "history_path": "",         # JSON file of earlier aggregate snapshots
    "dark_mode": False,
}


class ConfigManager:
    """Read/write JSON configuration stored in the platform config directory."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME
        self._dir = self._path.parent
        self._data: dict[str, Any] = copy.deepcopy(_DEFAULTS)
        self._load()
        logger.debug("Config loaded from %s", self._path)

    # -- public API -----------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return a config value, falling back to *default*."""
        return self._data.get(key, default)

    def update(self, values: dict[str, Any]) -> None:
        """Bulk-update config values and persist."""
        self._data.update(values)
        self._save()

    def reset(self) -> None:
        """Reset all values to defaults and persist."""
        logger.info("Resetting config to defaults")
        self._data = copy.deepcopy(_DEFAULTS)
        self._save()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def data(self) -> dict[str, Any]:
        """Return a shallow copy of all configuration."""
        return dict(self._data)

    # -- internals ------------------------------------------------------------

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, encoding="utf-8") as fh:
                stored = json.load(fh)
            if isinstance(stored, dict):
                self._data.update(stored)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load config from %s: %s", self._path, exc)

    def _save(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, default=str)
        except OSError as exc:
            logger.warning("Failed to save config to %s: %s", self._path, exc)
