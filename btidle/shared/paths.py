from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "BtIdleManager"

def app_data_dir() -> Path:
    # %APPDATA%\BtIdleManager on Windows, $XDG_CONFIG_HOME/btidle elsewhere
    if os.name == "nt":
        return Path(os.environ.get("APPDATA") or Path.home()) / APP_NAME
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / "btidle"

def config_path() -> Path:
    return app_data_dir() / "config.json"

def logs_dir() -> Path:
    return app_data_dir() / "logs"

def log_path() -> Path:
    return logs_dir() / "activity.log"

def ensure_app_dirs() -> None:
    logs_dir().mkdir(parents=True, exist_ok=True)
