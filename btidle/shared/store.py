from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from btidle.core.errors import ConfigError
from btidle.shared.config import AppConfig
from btidle.shared.paths import config_path, ensure_app_dirs

log = logging.getLogger(__name__)


class ConfigStore:
    """JSON-backed config file with fallback to the last good config."""

    def __init__(self, path: Optional[Path] = None) -> None:
        if path is None:
            ensure_app_dirs()
            path = config_path()
        self._path = Path(path)
        self._current: Optional[AppConfig] = None
        # Set when the most recent load() fell back instead of reading the file
        self.last_error: Optional[ConfigError] = None

    def load(self) -> AppConfig:
        self.last_error = None
        if not self._path.exists():
            cfg = AppConfig()
            try:
                self.save(cfg)
                log.info(f"Wrote default configuration to {self._path}")
            except OSError:
                log.exception("Failed to write default configuration")
            self._current = cfg
            return cfg

        try:
            cfg = self._read()
        except ConfigError as e:
            fallback = self._current or AppConfig()
            which = "previous" if self._current is not None else "default"
            log.error(f"{e}; keeping {which} configuration")
            self.last_error = e
            self._current = fallback
            return fallback

        self._current = cfg
        return cfg

    def _read(self) -> AppConfig:
        try:
            raw = self._path.read_text(encoding="utf-8")
            data: Any = json.loads(raw)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read config {self._path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {self._path} must contain a JSON object")

        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {self._path}: {e.error_count()} error(s): {e}") from e

    def has_changed(self, since: float) -> bool:
        """True if the file's modification time is later than `since` (epoch seconds)."""
        try:
            return self._path.stat().st_mtime > since
        except FileNotFoundError:
            return False
        except OSError as e:
            log.warning(f"Could not stat config {self._path}: {e}")
            return False

    def save(self, cfg: AppConfig) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(cfg.model_dump_json(indent=2), encoding="utf-8")

    def path(self) -> str:
        return str(self._path)
