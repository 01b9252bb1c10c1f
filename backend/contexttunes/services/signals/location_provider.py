"""Location provider — current device fix, with an IP-geolocation source as fallback."""

import asyncio
import logging
import math
from typing import Protocol

import httpx

from contexttunes.services.signals.base import (
    BaseProvider,
    Failure,
    LocationFix,
    ProviderResult,
    Source,
    Success,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


class LocationSource(Protocol):
    async def current_fix(self) -> LocationFix | None:
        ...


class StaticLocationSource:
    """A fix already obtained by the device layer and handed to the pipeline."""

    def __init__(self, fix: LocationFix | None):
        self._fix = fix

    async def current_fix(self) -> LocationFix | None:
        return self._fix


class IPGeolocationSource:
    """Coarse fix from an IP-geolocation endpoint (ip-api.com response shape)."""

    # ip-api resolves to city level; report that as the accuracy radius
    CITY_ACCURACY_M = 5000.0

    def __init__(self, client: httpx.AsyncClient, url: str):
        self._client = client
        self._url = url

    async def current_fix(self) -> LocationFix | None:
        resp = await self._client.get(self._url)
        resp.raise_for_status()
        data = resp.json()
        if data.get("status") not in (None, "success"):
            logger.warning(f"IP geolocation refused: {data.get('message')}")
            return None
        return LocationFix(
            lat=float(data["lat"]),
            lon=float(data["lon"]),
            accuracy=self.CITY_ACCURACY_M,
        )


class SharedLocationSource:
    """Resolves the wrapped source once; every caller awaits the same lookup.

    Callers are shielded from each other, so a provider cut off by its timeout
    does not cancel the lookup the others are still waiting on. ``close()``
    cancels a lookup nobody needs anymore.
    """

    def __init__(self, source: LocationSource):
        self._source = source
        self._task: asyncio.Task | None = None

    async def current_fix(self) -> LocationFix | None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._source.current_fix())
            self._task.add_done_callback(_retrieve_exception)
        return await asyncio.shield(self._task)

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()


def _retrieve_exception(task: asyncio.Task) -> None:
    # Awaiters re-raise it; mark it retrieved when every awaiter has gone
    if not task.cancelled():
        task.exception()


class LocationProvider(BaseProvider[LocationFix]):
    source = Source.LOCATION

    def __init__(self, location_source: LocationSource):
        self._location_source = location_source

    async def _fetch(self) -> ProviderResult[LocationFix]:
        fix = await self._location_source.current_fix()
        if fix is None:
            return Failure("location unavailable")
        if not (-90.0 <= fix.lat <= 90.0 and -180.0 <= fix.lon <= 180.0):
            return Failure("invalid coordinates")
        return Success(fix)
