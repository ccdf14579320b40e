"""Utility module for creating an application wide logger."""
import logging
import logging.handlers
import os
import sys

from saveknight.util.paths import user_cache_dir

CACHE_DIR = os.path.realpath(os.path.join(user_cache_dir(), "saveknight"))
if not os.path.isdir(CACHE_DIR):
    os.makedirs(CACHE_DIR, exist_ok=True)

# Formatters
FILE_FORMATTER = logging.Formatter("[%(levelname)s:%(asctime)s:%(module)s]: %(message)s")

SIMPLE_FORMATTER = logging.Formatter("%(asctime)s: %(message)s")

DEBUG_FORMATTER = logging.Formatter("%(levelname)-8s %(asctime)s [%(module)s.%(funcName)s:%(lineno)s]:%(message)s")

# Log file setup
LOG_FILENAME = os.path.join(CACHE_DIR, "saveknight.log")
loghandler = logging.handlers.RotatingFileHandler(LOG_FILENAME, maxBytes=20971520, backupCount=5, encoding="utf-8")
loghandler.setFormatter(FILE_FORMATTER)

logger = logging.getLogger("saveknight")
logger.addHandler(loghandler)

# Set the logging level to show debug messages.
console_handler = logging.StreamHandler(stream=sys.stdout)
console_handler.setFormatter(SIMPLE_FORMATTER)
logger.addHandler(console_handler)
logger.setLevel(logging.INFO)


def enable_debug_logging() -> None:
    """Switch the application logger and its console output to debug level"""
    logger.setLevel(logging.DEBUG)
    console_handler.setFormatter(DEBUG_FORMATTER)
