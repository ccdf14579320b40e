"""Utility functions for YAML handling"""

import yaml
from yaml.parser import ParserError
from yaml.scanner import ScannerError

from saveknight.util.log import logger
from saveknight.util.system import path_exists

# The manifest is a large document, the libyaml loader is much faster when PyYAML ships it
YAML_LOADER = getattr(yaml, "CSafeLoader", yaml.SafeLoader)


def parse_yaml(content: str) -> dict:
    """Parse a YAML document, returning an empty dict when it can't be read"""
    try:
        yaml_content = yaml.load(content, Loader=YAML_LOADER) or {}
    except (ScannerError, ParserError) as ex:
        logger.error("error parsing YAML content: %s", ex)
        return {}
    if not isinstance(yaml_content, dict):
        logger.error("YAML content is a %s, not a mapping", type(yaml_content).__name__)
        return {}
    return yaml_content


def read_yaml_from_file(filename: str) -> dict:
    """Read filename and return parsed yaml"""
    if not path_exists(filename):
        return {}
    with open(filename, "r", encoding="utf-8") as yaml_file:
        return parse_yaml(yaml_file.read())
