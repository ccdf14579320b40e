"""Internal settings."""

import os
from typing import Dict, List

from saveknight import __version__
from saveknight.util.paths import user_cache_dir, user_config_dir
from saveknight.util.settings import SettingsIO

PROJECT = "SaveKnight"
VERSION = __version__

# Paths
CONFIG_DIR = os.path.join(user_config_dir(), "saveknight")
CONFIG_FILE = os.path.join(CONFIG_DIR, "saveknight.conf")
sio = SettingsIO(CONFIG_FILE)

CACHE_DIR = sio.read_setting("cache_dir") or os.path.join(user_cache_dir(), "saveknight")
MANIFEST_CACHE_PATH = os.path.join(CACHE_DIR, "manifest.yaml")

MANIFEST_URL = (
    sio.read_setting("manifest_url")
    or "https://raw.githubusercontent.com/mtkennerly/ludusavi-manifest/master/data/manifest.yaml"
)
MANIFEST_MAX_AGE_DAYS = sio.read_int_setting("manifest_max_age_days", 7)

API_URL = sio.read_setting("api_url") or "https://saveknight.com"
HTTP_TIMEOUT = sio.read_int_setting("http_timeout", 30)

SCAN_WORKERS = sio.read_int_setting("scan_workers", 8)
SCAN_PATH_TIMEOUT = sio.read_int_setting("scan_path_timeout", 60)

# Seconds before expiry at which the device token gets refreshed
REFRESH_THRESHOLD = sio.read_int_setting("refresh_threshold", 300)

KEYRING_SERVICE = "saveknight-desktop"
KEYRING_USER = "device-token"

CUSTOM_PATHS_SECTION = "custom_paths"

write_setting = sio.write_setting


def get_enabled_games() -> List[str]:
    """Games the user restricted scanning to; empty means every game of the manifest"""
    return sio.read_list_setting("enabled_games")


def get_custom_paths() -> Dict[str, List[str]]:
    """Extra save locations configured by the user, keyed by game name.

    Each value of the custom_paths section holds one pattern per line.
    """
    custom_paths = {}
    for game_name, value in sio.read_section(CUSTOM_PATHS_SECTION).items():
        patterns = [line.strip() for line in value.splitlines() if line.strip()]
        if patterns:
            custom_paths[game_name] = patterns
    return custom_paths


def add_custom_path(game_name: str, pattern: str) -> None:
    patterns = get_custom_paths().get(game_name, [])
    if pattern in patterns:
        return
    patterns.append(pattern)
    write_setting(game_name, "\n".join(patterns), section=CUSTOM_PATHS_SECTION)
