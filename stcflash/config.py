"""
Project Name: stcflash
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Configuration Management Module
"""

import os
import json
import logging
from typing import Optional

CONFIG_FILE_DEFAULT = "config.json"
HOME_ENV = "STCFLASH_HOME"

logger = logging.getLogger("Config")


def get_home_path():
    """
    Returns the directory holding the stcflash configuration.
    STCFLASH_HOME overrides the default ~/.stcflash location.
    """
    return os.environ.get(HOME_ENV) or os.path.join(
        os.path.expanduser("~"), ".stcflash"
    )


class ConfigManager:
    """
    Manages persistent stcflash settings such as the default baud rate,
    the reset settle delay and tool path overrides.
    Values are stored as JSON in the home directory.
    It's a singleton per configuration file path.
    """

    _instances = {}  # keyed by config file path
    _initialized_configs = {}

    def __new__(cls, config_filename: Optional[str] = None, *args, **kwargs):
        instance_key = os.path.join(
            get_home_path(), config_filename or CONFIG_FILE_DEFAULT
        )

        if instance_key not in cls._instances:
            cls._instances[instance_key] = super(ConfigManager, cls).__new__(cls)
        return cls._instances[instance_key]

    def __init__(self, config_filename: Optional[str] = None):
        self.home_path = get_home_path()
        self.config_file_path = os.path.join(
            self.home_path, config_filename or CONFIG_FILE_DEFAULT
        )

        if self.config_file_path in ConfigManager._initialized_configs:
            return

        self._config = {}
        self._load_config()
        ConfigManager._initialized_configs[self.config_file_path] = True
        logger.debug(f"ConfigManager initialized for {self.config_file_path}.")

    @classmethod
    def reset_instances(cls):
        """Forgets every cached instance, the next construction reloads from disk."""
        cls._instances.clear()
        cls._initialized_configs.clear()

    def _load_config(self):
        """
        Loads the configuration from the configuration file.
        If the file doesn't exist, an empty configuration is used.
        """
        if os.path.exists(self.config_file_path):
            try:
                with open(self.config_file_path, "r") as file:
                    self._config = json.load(file)
            except json.JSONDecodeError:
                logger.error(
                    f"Error: Configuration file {self.config_file_path} "
                    "is not a valid JSON. Resetting configuration."
                )
                self._config = {}
        else:
            self._config = {}

    def _save_config(self):
        """
        Saves the current configuration to the configuration file.
        Ensures the configuration directory exists.
        """
        try:
            os.makedirs(self.home_path, exist_ok=True)
        except OSError as e:
            logger.error(
                f"Error: Unable to create configuration directory {self.home_path}: {e}"
            )
            return
        try:
            with open(self.config_file_path, "w") as f:
                json.dump(self._config, f, indent=4)
        except IOError as e:
            logger.error(
                f"Error: Unable to save configuration to {self.config_file_path}: {e}"
            )

    def get_value(self, key, default=None):
        """
        Retrieves a value from the configuration.
        Args:
            key (str): The configuration key to retrieve.
            default: The default value to return if the key is not found.
        Returns:
            The value associated with the key or the default value.
        """
        return self._config.get(key, default)

    def get_float(self, key, default: float) -> float:
        """Like get_value, but falls back to default when the stored value is not a number."""
        value = self._config.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid value for '{key}': {value!r}")
            return default

    def set_value(self, key, value):
        """
        Sets a value in the configuration and saves the configuration file.
        Setting None removes the key.
        """
        if value is None:
            self.remove_key(key)
            return
        self._config[key] = value
        self._save_config()

    def remove_key(self, key):
        if key in self._config:
            del self._config[key]
            self._save_config()

    def list_all(self):
        """
        Returns all configuration keys and values as a dictionary.
        """
        return self._config.copy()
