"""JSON configuration for the Smart Bin API server and scan client.

Configuration is read from ``config/smartbin.json`` (see
``config/smartbin.example.json``). Secrets never live in the file: the
weather API key is read from the environment variable named by
``weather.api_key_env``, and ``SMARTBIN_CLASSIFIER_URL`` overrides the
classifier endpoint.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CLASSIFIER_URL_ENV = "SMARTBIN_CLASSIFIER_URL"


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class StorageSettings:
    database_path: str = "data/waste.db"
    upload_dir: str = "data/uploads"


@dataclass
class ClassifierSettings:
    """Remote classifier endpoint; an empty ``base_url`` means mock only."""

    base_url: str = ""
    timeout: float = 10.0
    fallback_delay_seconds: float = 1.5


@dataclass
class WeatherSettings:
    api_key_env: str = "OPENWEATHER_API_KEY"
    base_url: str = "https://api.openweathermap.org/data/2.5/weather"
    default_city: str = "Bangkok"
    timeout: float = 10.0

    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


@dataclass
class AppConfig:
    server: ServerSettings = field(default_factory=ServerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    weather: WeatherSettings = field(default_factory=WeatherSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        server = _section(data, "server")
        storage = _section(data, "storage")
        classifier = _section(data, "classifier")
        weather = _section(data, "weather")
        defaults = cls()
        return cls(
            server=ServerSettings(
                host=_string(server, "host", defaults.server.host),
                port=int(_number(server, "port", defaults.server.port)),
            ),
            storage=StorageSettings(
                database_path=_string(storage, "database_path", defaults.storage.database_path),
                upload_dir=_string(storage, "upload_dir", defaults.storage.upload_dir),
            ),
            classifier=ClassifierSettings(
                base_url=_string(classifier, "base_url", defaults.classifier.base_url, allow_empty=True),
                timeout=_number(classifier, "timeout", defaults.classifier.timeout),
                fallback_delay_seconds=_number(
                    classifier,
                    "fallback_delay_seconds",
                    defaults.classifier.fallback_delay_seconds,
                ),
            ),
            weather=WeatherSettings(
                api_key_env=_string(weather, "api_key_env", defaults.weather.api_key_env),
                base_url=_string(weather, "base_url", defaults.weather.base_url),
                default_city=_string(weather, "default_city", defaults.weather.default_city),
                timeout=_number(weather, "timeout", defaults.weather.timeout),
            ),
        )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        logger.warning("Ignoring config section %r: expected an object", name)
        return {}
    return value


def _string(section: dict[str, Any], key: str, default: str, allow_empty: bool = False) -> str:
    value = section.get(key)
    if value is None:
        return default
    if not isinstance(value, str) or (not value.strip() and not allow_empty):
        logger.warning("Invalid value for %s=%r; using default %r", key, value, default)
        return default
    return value.strip()


def _number(section: dict[str, Any], key: str, default: float) -> float:
    value = section.get(key)
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s=%r; using default %r", key, value, default)
        return default
    if number < 0:
        logger.warning("Negative value for %s=%r; using default %r", key, value, default)
        return default
    return number


def load_config(path: str | Path | None) -> AppConfig:
    """Load configuration from ``path``, or return defaults when ``path`` is None.

    Raises:
        FileNotFoundError: if ``path`` is given but does not exist.
        ValueError: if the file is not a JSON object.
    """
    if path is None:
        config = AppConfig()
    else:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Configuration file {config_path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {config_path} must contain a JSON object")
        config = AppConfig.from_dict(data)
        logger.info("Loaded configuration from %s", config_path)

    override = os.environ.get(CLASSIFIER_URL_ENV)
    if override:
        config.classifier.base_url = override.strip()
    return config


__all__ = [
    "AppConfig",
    "ServerSettings",
    "StorageSettings",
    "ClassifierSettings",
    "WeatherSettings",
    "load_config",
    "CLASSIFIER_URL_ENV",
]
