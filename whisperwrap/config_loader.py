"""Handles loading configuration from YAML files."""

import yaml
import os
import logging
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "whisperwrap.yaml"

# Keys understood by the CLI and WhisperTranscriber.from_config
DEFAULT_CONFIG = {
    'output_mode': 'stdout',
    'binary_path': None,
    'model': None,
    'language': None,
    'threads': None,
    'translate': False,
    'temp_dir': None,
    'output_format': 'txt',
    'log_dir': None,
    'log_file': 'whisperwrap.log',
}

class ConfigLoader:
    """Loads configuration settings from a YAML file."""

    def load_config(self, config_path: str) -> dict:
        """
        Loads configuration from the specified YAML file path.

        Values from the file are layered over DEFAULT_CONFIG. An empty file
        yields the defaults.

        Args:
            config_path: The path to the YAML configuration file.

        Returns:
            A dictionary containing the loaded configuration settings.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML or
                              if there are other reading errors.
        """
        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
            logger.error(f"Configuration path is not a file: {config_path}")
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}") from e
        except OSError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            # Handle cases where YAML loads something other than a dictionary (e.g., just a string)
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).")

        unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys in {config_path}: {', '.join(unknown)}")

        config = dict(DEFAULT_CONFIG)
        config.update({key: value for key, value in loaded.items() if key in DEFAULT_CONFIG})
        logger.info(f"Configuration loaded successfully from {config_path}")
        return config

    def load_or_default(self, config_path: str) -> dict:
        """
        Like load_config, but returns the defaults when the default config
        path does not exist. A missing explicitly chosen path is still an error.
        """
        if config_path == DEFAULT_CONFIG_PATH and not os.path.exists(config_path):
            logger.debug(f"No {DEFAULT_CONFIG_PATH} found, using built-in defaults.")
            return dict(DEFAULT_CONFIG)
        return self.load_config(config_path)
