"""Configuration provider backed by a dotenv-style settings file."""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import dotenv_values

from processor.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'ticketsync.env'

OUTPUT_FORMATS = ('json', 'xml')


class ConfigProvider:
    """Key/value settings with file, override and environment sources."""

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        use_environment: bool = True
    ):
        """
        Load settings.

        Explicit overrides win over values from the settings file, which win
        over the process environment.

        Args:
            config_path: Path to a ``KEY=VALUE`` settings file
            overrides: Values that take precedence over every other source
            use_environment: Fall back to ``os.environ`` for missing keys
        """
        self.config_path = Path(config_path) if config_path else None
        self.use_environment = use_environment
        self._values: Dict[str, Any] = {}

        if self.config_path is not None:
            if self.config_path.is_file():
                self._values.update(
                    {k: v for k, v in dotenv_values(self.config_path).items() if v is not None}
                )
                logger.info(f"Configuration loaded from {self.config_path}")
            else:
                logger.warning(f"Configuration file not found: {self.config_path}")

        if overrides:
            self._values.update(overrides)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return a setting, or ``default`` when it is missing or empty.

        Args:
            key: Setting name
            default: Value returned for missing or empty settings
        """
        value = self._values.get(key)
        if (value is None or value == '') and self.use_environment:
            value = os.environ.get(key)
        if value is None or value == '':
            return default
        return value

    def get_int(self, key: str, default: int) -> int:
        """Return a setting as an int; raises ConfigError if it is not numeric."""
        return int(self._get_number(key, default, int))

    def get_float(self, key: str, default: float) -> float:
        """Return a setting as a float; raises ConfigError if it is not numeric."""
        return float(self._get_number(key, default, float))

    def require(self, key: str) -> Any:
        """
        Return a setting that must be present.

        Raises:
            ConfigError: If the setting is missing or empty
        """
        value = self.get(key)
        if value is None:
            raise ConfigError(f"Missing required configuration value: {key}")
        return value

    @property
    def output_format(self) -> str:
        """
        Lower-cased OUTPUT_FORMAT setting, ``json`` by default.

        Raises:
            ConfigError: If the value is not one of OUTPUT_FORMATS
        """
        output_format = str(self.get('OUTPUT_FORMAT', 'json')).lower()
        if output_format not in OUTPUT_FORMATS:
            raise ConfigError(
                f"OUTPUT_FORMAT must be one of {', '.join(OUTPUT_FORMATS)}, "
                f"got {output_format!r}"
            )
        return output_format

    def _get_number(self, key: str, default, cast):
        """Cast the setting with ``cast``; the default is cast too."""
        value = self.get(key, default)
        try:
            return cast(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Configuration value {key} is not a number: {value!r}") from e
