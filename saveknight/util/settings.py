import configparser
import os
from typing import Dict, List

from saveknight.util.log import logger
from saveknight.util.signals import NotificationSource


class SettingsIO:
    """ConfigParser abstraction."""

    def __init__(self, config_file):
        self.config_file = config_file
        self.config = configparser.ConfigParser(interpolation=None)
        # Keys are game names in some sections, keep their case
        self.config.optionxform = str

        # A notification that fires on each settings change
        self.SETTINGS_CHANGED = NotificationSource()  # called with (setting-key, new-value, section)

        if os.path.exists(self.config_file):
            try:
                self.config.read([self.config_file], encoding="utf-8")
            except configparser.ParsingError as ex:
                logger.error("Failed to read config file %s: %s", self.config_file, ex)
            except UnicodeDecodeError as ex:
                logger.error("Some invalid characters are preventing the setting file from loading properly: %s", ex)

    def read_setting(self, key, default="", section="saveknight"):
        """Read a setting from the config file

        Params:
            key (str): Setting key
            section (str): Optional section, default to 'saveknight'
            default (str): Default value to return if setting not present
        """
        try:
            return self.config.get(section, key)
        except (configparser.NoOptionError, configparser.NoSectionError):
            return default

    def read_int_setting(self, key: str, default: int = 0, section="saveknight") -> int:
        text = self.read_setting(key, "", section=section).strip()
        if not text:
            return default
        try:
            return int(text)
        except ValueError:
            logger.warning("Setting %s should be a number, not '%s'", key, text)
            return default

    def read_list_setting(self, key: str, section="saveknight") -> List[str]:
        """Read a comma separated setting as a list of stripped, non empty values"""
        text = self.read_setting(key, "", section=section)
        return [value.strip() for value in text.split(",") if value.strip()]

    def read_section(self, section: str) -> Dict[str, str]:
        """Return every key of a section, or an empty dict if the section is missing"""
        if not self.config.has_section(section):
            return {}
        return dict(self.config.items(section))

    def write_setting(self, key, value, section="saveknight"):
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, key, str(value))

        config_dir = os.path.dirname(self.config_file)
        if config_dir and not os.path.isdir(config_dir):
            os.makedirs(config_dir)
        with open(self.config_file, "w", encoding="utf-8") as config_file:
            self.config.write(config_file)

        self.SETTINGS_CHANGED.fire(key, value, section)
