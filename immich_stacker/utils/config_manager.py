"""
Configuration File Loading
==========================

Reads optional settings from a JSON file. Keys use the same names as the
`StackerConfig` fields, e.g.:

    {
      "endpoint": "https://photos.example.com",
      "match": "_\\d+$",
      "parent": "^[^_]+$",
      "compare_created": true
    }

Values from the file are overridden by environment variables and by
command-line flags.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict

from immich_stacker.utils.logger import log_config

logger = logging.getLogger(__name__)


class ConfigFileError(Exception):
    """Raised when a configuration file exists but cannot be used."""
    pass


def load_config(path: Path, required: bool = False) -> Dict[str, Any]:
    """
    Load settings from a JSON file.

    Args:
        path: Location of the configuration file.
        required: Raise when the file does not exist (an explicit --config)
            instead of returning an empty dict (the default location).

    Returns:
        The parsed settings, or an empty dict when an optional file is absent.

    Raises:
        ConfigFileError: The file is missing but required, unreadable,
            corrupted, or not a JSON object.
    """
    path = Path(path).expanduser()

    if not path.exists():
        if required:
            raise ConfigFileError(f"Configuration file not found: {path}")
        logger.debug(f"No configuration file found at {path}")
        return {}

    logger.info(f"Loading configuration from {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigFileError(f"Configuration file is corrupted: {path}: {e}") from e
    except OSError as e:
        raise ConfigFileError(f"Cannot read configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigFileError(f"Configuration file must contain a JSON object: {path}")

    log_config("Configuration file", data, logger)
    return data