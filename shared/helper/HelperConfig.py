"""Environment backed settings shared by the API server and the knowledge sync."""

import logging
import os

_MISSING = object()


class HelperConfig:
    """Typed access to environment variables.

    Keys are upper-cased before lookup and empty values count as unset. A
    default of None marks a setting as required: reading it while unset
    raises ValueError.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _raw(self, key: str, default):
        key = key.upper()
        raw = (os.getenv(key) or "").strip()
        if raw:
            return key, raw
        if default is None:
            raise ValueError(f"Environment variable '{key}' is not set.")
        return key, _MISSING

    def get_string_val(self, key: str, default: str | None = None) -> str:
        _, raw = self._raw(key, default)
        return default if raw is _MISSING else raw

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Integer unless the value contains a dot."""
        key, raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        _, raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        return raw.lower() in ("true", "1", "yes", "on")

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a separated list; surrounding brackets like "[a,b]" are accepted.

        Raises:
            ValueError: If unset without default or an element cannot be cast.
        """
        key, raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        if raw.startswith("[") and raw.endswith("]"):
            raw = raw[1:-1]
        try:
            return [element_type(item.strip()) for item in raw.split(separator) if item.strip()]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key}' contains an invalid {element_type.__name__}: {e}")

    def get_environment(self) -> str:
        """Deployment environment (APP_ENV), lowercased."""
        return self.get_string_val("APP_ENV", default="development").lower()

    def is_production(self) -> bool:
        """Production hides error details from API clients."""
        return self.get_environment() == "production"

    def get_logger(self) -> logging.Logger:
        return self._logger
