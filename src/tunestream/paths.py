"""Per-user directories for settings and logs, resolved with platformdirs."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from platformdirs import AppDirs

APP_NAME = "tunestream"
SETTINGS_FILE_NAME = "settings.json"


@lru_cache(maxsize=None)
def get_app_dirs(app_name: str = APP_NAME) -> AppDirs:
    return AppDirs(app_name, appauthor=False)


def _created(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def data_dir(app_name: str = APP_NAME) -> Path:
    return _created(Path(get_app_dirs(app_name).user_data_dir))


def config_dir(app_name: str = APP_NAME) -> Path:
    return _created(Path(get_app_dirs(app_name).user_config_dir))


def log_dir(app_name: str = APP_NAME) -> Path:
    """Rotating log files live under the data directory."""
    return _created(data_dir(app_name) / "logs")


def settings_path(app_name: str = APP_NAME) -> Path:
    """Playback settings JSON; the file itself may not exist yet."""
    return config_dir(app_name) / SETTINGS_FILE_NAME
