from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests


logger = logging.getLogger(__name__)

DEFAULT_CITY = "Bangkok"


@dataclass(frozen=True)
class WeatherReport:
    temperature: int
    description: str
    humidity: int
    icon: str
    city: str
    source: str = "remote"


def fallback_weather(city: str) -> WeatherReport:
    return WeatherReport(
        temperature=32,
        description="Partly cloudy",
        humidity=65,
        icon="02d",
        city=city,
        source="fallback",
    )


@dataclass
class WeatherClient:
    """Current conditions from an OpenWeatherMap-compatible endpoint."""

    api_key: str | None = None
    base_url: str = "https://api.openweathermap.org/data/2.5/weather"
    timeout: float = 10.0
    units: str = "metric"

    def get_forecast(self, city: str = DEFAULT_CITY) -> WeatherReport:
        city = city.strip() or DEFAULT_CITY
        if not self.api_key:
            logger.debug("No weather API key configured; using fallback city=%s", city)
            return fallback_weather(city)
        try:
            data = self._send_request(city)
            return self._parse_payload(data, city)
        except Exception as exc:
            logger.warning("Weather lookup failed city=%s error=%s; using fallback", city, exc)
            return fallback_weather(city)

    def _send_request(self, city: str) -> Any:
        response = requests.get(
            self.base_url,
            params={"q": city, "appid": self.api_key, "units": self.units},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def _parse_payload(self, data: Any, city: str) -> WeatherReport:
        try:
            main = data["main"]
            condition = data["weather"][0]
            return WeatherReport(
                temperature=int(round(float(main["temp"]))),
                description=str(condition["description"]),
                humidity=int(main["humidity"]),
                icon=str(condition.get("icon", "")),
                city=str(data.get("name") or city),
            )
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise RuntimeError("Unexpected response format from weather API") from exc


__all__ = ["WeatherClient", "WeatherReport", "fallback_weather", "DEFAULT_CITY"]
