from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "live-transcription"
SETTINGS_FILENAME = "settings.json"
SETTINGS_PATH_ENV = "LIVE_TRANSCRIPTION_SETTINGS"


def user_config_dir() -> Path:
    home = Path.home()
    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        root = Path(base) if base else home / "AppData" / "Local"
    elif sys.platform == "darwin":
        root = home / "Library" / "Application Support"
    else:
        base = os.getenv("XDG_CONFIG_HOME")
        root = Path(base) if base else home / ".config"
    return root / APP_DIR_NAME


def default_settings_path() -> Path:
    """Settings file location; `LIVE_TRANSCRIPTION_SETTINGS` overrides the per-user default."""
    override = os.getenv(SETTINGS_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return user_config_dir() / SETTINGS_FILENAME
