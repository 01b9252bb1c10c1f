"""Weather provider — current conditions from OpenWeatherMap, reduced to simple states."""

import logging

import httpx

from contexttunes.services.signals.base import (
    BaseProvider,
    Failure,
    ProviderResult,
    Source,
    Success,
    WeatherReading,
)
from contexttunes.services.signals.location_provider import LocationSource

logger = logging.getLogger(__name__)

# OpenWeatherMap "main" group -> condition
CONDITION_MAP = {
    "clear": "SUNNY",
    "clouds": "CLOUDY",
    "snow": "CLOUDY",
    "rain": "RAINY",
    "drizzle": "RAINY",
    "thunderstorm": "RAINY",
}


def classify_condition(main: str, description: str = "") -> str:
    """Map an OpenWeatherMap condition to SUNNY / CLOUDY / RAINY / UNKNOWN."""
    condition = CONDITION_MAP.get(main.lower())
    if condition:
        return condition

    description = description.lower()
    if "rain" in description or "storm" in description:
        return "RAINY"
    if "cloud" in description:
        return "CLOUDY"
    if "clear" in description or "sun" in description:
        return "SUNNY"
    return "UNKNOWN"


class WeatherProvider(BaseProvider[WeatherReading]):
    source = Source.WEATHER

    def __init__(
        self,
        client: httpx.AsyncClient,
        location_source: LocationSource,
        api_key: str,
        base_url: str,
    ):
        self._client = client
        self._location_source = location_source
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def _fetch(self) -> ProviderResult[WeatherReading]:
        if not self._api_key:
            return Failure("missing api key")

        fix = await self._location_source.current_fix()
        if fix is None:
            return Failure("location unavailable")

        resp = await self._client.get(
            f"{self._base_url}/weather",
            params={
                "lat": fix.lat,
                "lon": fix.lon,
                "appid": self._api_key,
                "units": "metric",
            },
        )
        resp.raise_for_status()
        data = resp.json()

        weather = data.get("weather") or []
        if not weather:
            return Failure("no weather in response")

        temp = (data.get("main") or {}).get("temp")
        return Success(WeatherReading(
            condition=classify_condition(weather[0].get("main", ""), weather[0].get("description", "")),
            temperature_c=float(temp) if temp is not None else None,
        ))
