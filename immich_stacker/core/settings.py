"""
Run Settings
============

Defines `StackerConfig`, the single configuration object passed explicitly to
the API client, the asset source and the stack assembler.

Settings are layered, lowest precedence first:

1. dataclass defaults
2. optional JSON configuration file
3. IMMICH_* environment variables
4. command-line flags

`validate()` must succeed before a run starts; it compiles the match and
parent patterns and rejects anything that would make the run meaningless.
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from immich_stacker.core import config
from immich_stacker.utils.config_manager import ConfigFileError, load_config

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Raised for missing, malformed, or inconsistent settings."""
    pass


@dataclass
class StackerConfig:
    """
    Configuration for one stacking run.

    Attributes:
        api_key: Immich API key (required)
        endpoint: Base URL of the Immich server (required)
        match: Regex selecting assets eligible for stacking; the matched text
               is removed from the file name to form the grouping key (required)
        parent: Regex selecting the primary asset within a group (required)
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Optional file to log to in addition to stderr
        debug_http: Log every request and response at DEBUG
        compare_created: Add the file creation timestamp to the grouping key
        insecure_tls: Skip TLS certificate verification
        read_only: Classify and count candidates without changing anything
        source: 'search' or 'timebucket' asset listing
        mode: 'create', 'update' or 'auto' stacking call
        page_size: Assets per search page
        workers: Number of concurrent stacking calls
        strict_parents: Refuse to stack groups where several assets matched
                        the parent pattern
        timeout: Per-request timeout in seconds
    """
    api_key: str = ""
    endpoint: str = ""
    match: str = ""
    parent: str = ""
    log_level: str = config.DEFAULT_LOG_LEVEL
    log_file: str = ""
    debug_http: bool = False
    compare_created: bool = False
    insecure_tls: bool = False
    read_only: bool = False
    source: str = config.SOURCE_SEARCH
    mode: str = config.MODE_CREATE
    page_size: int = config.DEFAULT_PAGE_SIZE
    workers: int = config.DEFAULT_WORKERS
    strict_parents: bool = False
    timeout: float = config.NETWORK_TIMEOUT_SECONDS

    # Filled in by validate()
    match_pattern: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)
    parent_pattern: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)

    REQUIRED = ("api_key", "endpoint", "match", "parent")

    @classmethod
    def setting_names(cls):
        return [f.name for f in fields(cls) if f.init]

    def update(self, values: Mapping[str, Any], origin: str = "settings") -> "StackerConfig":
        """
        Apply a mapping of setting name -> value, coercing each to the field's type.

        Unknown keys are ignored with a warning; None values are skipped so
        unset command-line flags do not clobber lower layers.
        """
        types = {f.name: f.type for f in fields(self) if f.init}
        for name, value in values.items():
            if name not in types:
                logger.warning(f"Ignoring unknown setting '{name}' from {origin}")
                continue
            if value is None:
                continue
            setattr(self, name, _coerce(name, types[name], value, origin))
        return self

    def update_from_env(self, environ: Optional[Mapping[str, str]] = None) -> "StackerConfig":
        """Apply every IMMICH_<SETTING> variable present in the environment."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in self.setting_names():
            key = config.ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        return self.update(values, origin="environment")

    def validate(self) -> "StackerConfig":
        """
        Check the settings and compile both patterns.

        Raises:
            ConfigError: On the first problem found
        """
        missing = [config.ENV_PREFIX + name.upper() for name in self.REQUIRED if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        if not self.endpoint.startswith(("http://", "https://")):
            raise ConfigError(f"Endpoint must be an http(s) URL: {self.endpoint}")

        self.match_pattern = _compile("match", self.match)
        self.parent_pattern = _compile("parent", self.parent)

        if self.log_level.upper() not in config.LOG_LEVELS:
            raise ConfigError(f"Invalid log level '{self.log_level}'; choose from {', '.join(config.LOG_LEVELS)}")
        self.log_level = self.log_level.upper()

        if self.source not in config.SUPPORTED_SOURCES:
            raise ConfigError(f"Invalid source '{self.source}'; choose from {', '.join(config.SUPPORTED_SOURCES)}")
        if self.mode not in config.SUPPORTED_MODES:
            raise ConfigError(f"Invalid mode '{self.mode}'; choose from {', '.join(config.SUPPORTED_MODES)}")

        for name in ("page_size", "workers", "timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"'{name}' must be positive, got {getattr(self, name)}")

        return self

    def describe(self) -> Dict[str, Any]:
        """Settings as a plain dict, for log_config (which masks the API key)."""
        return {name: getattr(self, name) for name in self.setting_names()}


def _compile(name: str, expression: str) -> re.Pattern:
    try:
        return re.compile(expression)
    except re.error as e:
        raise ConfigError(f"Invalid {name} pattern {expression!r}: {e}") from e


def _coerce(name: str, target: Any, value: Any, origin: str) -> Any:
    if target is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigError(f"Setting '{name}' from {origin} must be a boolean, got {value!r}")

    if target in (int, float):
        if isinstance(value, bool):
            raise ConfigError(f"Setting '{name}' from {origin} must be a number, got {value!r}")
        try:
            return target(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Setting '{name}' from {origin} must be a number, got {value!r}") from e

    return str(value)


def load_settings(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None
) -> StackerConfig:
    """
    Build and validate the run configuration from all layers.

    Args:
        config_file: Explicit JSON file; when None the default location is
            read if it exists.
        environ: Environment mapping (defaults to os.environ)
        overrides: Values from command-line flags

    Raises:
        ConfigError: Any layer is invalid or the result fails validation
    """
    settings = StackerConfig()

    try:
        if config_file is not None:
            file_data = load_config(config_file, required=True)
        else:
            file_data = load_config(config.DEFAULT_CONFIG_PATH)
    except ConfigFileError as e:
        raise ConfigError(str(e)) from e

    settings.update(file_data, origin="configuration file")
    settings.update_from_env(environ)
    if overrides:
        settings.update(overrides, origin="command line")

    return settings.validate()
