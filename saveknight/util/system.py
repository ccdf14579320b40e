"""System utilities"""
import getpass
import os
import platform
import subprocess
import sys
import uuid
from typing import Optional

from saveknight.util.log import logger


def get_os_name() -> str:
    """Name of the current OS, using the same values as the manifest's 'when' clauses"""
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "mac"
    return "linux"


def get_username() -> Optional[str]:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USERNAME") or os.environ.get("USER")


def get_machine_id() -> str:
    """Return a stable identifier for this machine, or a random one if none can be read"""
    if sys.platform == "win32":
        try:
            output = subprocess.check_output(["wmic", "csproduct", "get", "uuid"], timeout=10)
            lines = output.decode("utf-8", errors="ignore").splitlines()
            values = [line.strip() for line in lines[1:] if line.strip()]
            if values:
                return values[0]
        except (OSError, subprocess.SubprocessError) as ex:
            logger.warning("Unable to read the machine UUID: %s", ex)
    else:
        for machine_id_path in ("/etc/machine-id", "/var/lib/dbus/machine-id"):
            try:
                with open(machine_id_path, encoding="utf-8") as machine_id_file:
                    machine_id = machine_id_file.read().strip()
            except OSError:
                continue
            if machine_id:
                return machine_id
    return uuid.uuid4().hex


def get_device_name() -> str:
    """Default human readable label for this device"""
    return platform.node() or "SaveKnight device"


def path_exists(path: str, check_symlinks: bool = False, exclude_empty: bool = False) -> bool:
    """Wrapper around os.path.exists that doesn't crash with empty values

    Params:
        path (str): File to the file to check
        check_symlinks (bool): If the path is a broken symlink, return False
        exclude_empty (bool): If true, consider 0 bytes files as non existing
    """
    if not path:
        return False
    if path.startswith("~"):
        path = os.path.expanduser(path)
    if os.path.exists(path):
        if exclude_empty:
            return os.stat(path).st_size > 0
        return True
    if os.path.islink(path):
        logger.warning("%s is a broken link", path)
        return not check_symlinks
    return False


def fix_path_case(path):
    """Do a case-insensitive check, return the real path with correct case. If the path is
    not for a real file, this corrects as many components as do exist."""
    if not path or os.path.exists(path) or not path.startswith("/"):
        # If a path isn't provided, or it exists as is, or is a relative path, just return it.
        return path
    parts = path.strip("/").split("/")
    current_path = "/"
    for part in parts:
        parent_path = current_path
        current_path = os.path.join(current_path, part)
        if not os.path.exists(current_path) and os.path.isdir(parent_path):
            try:
                path_contents = os.listdir(parent_path)
            except OSError:
                logger.error("Can't read contents of %s", parent_path)
                path_contents = []
            for filename in path_contents:
                if filename.lower() == part.lower():
                    current_path = os.path.join(parent_path, filename)
                    break

    # Only return the path if we got the same number of elements
    if len(parts) == len(current_path.strip("/").split("/")):
        return current_path
    # otherwise return original path
    return path


def is_within(path: str, root: str) -> bool:
    """True if path is root or lies below it; both are expected to be real paths"""
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives on Windows
        return False
