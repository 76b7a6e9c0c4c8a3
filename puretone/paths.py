import os
import platform

APP_NAME = "PureTone"
SETTINGS_FILE = "settings.json"
LOG_FILE = "puretone.log"


def _base_dir(system: str) -> str:
    if system.startswith("win"):
        return os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA") or os.path.expanduser("~")
    if system == "darwin":
        return os.path.expanduser("~/Library/Application Support")
    return os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")


def get_app_data_dir(create=True):
    """Per-user folder holding the settings file and the session log."""
    path = os.path.join(_base_dir(platform.system().lower()), APP_NAME)
    if create:
        os.makedirs(path, exist_ok=True)
    return path


def path_settings():
    return os.path.join(get_app_data_dir(), SETTINGS_FILE)


def get_log_file_path() -> str:
    return os.path.join(get_app_data_dir(), LOG_FILE)
