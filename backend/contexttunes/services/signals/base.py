"""Signal provider contract — typed results shared by all context sources."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Protocol, TypeVar, Union

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Source(str, Enum):
    IMAGE = "image"
    LOCATION = "location"
    PLACES = "places"
    WEATHER = "weather"


# ---------- Signal values ----------

@dataclass(frozen=True)
class LocationFix:
    lat: float
    lon: float
    accuracy: float | None = None  # metres


@dataclass(frozen=True)
class Place:
    """Nearby venue, normalised from the places source."""
    name: str
    category: str
    distance_meters: float


@dataclass(frozen=True)
class WeatherReading:
    condition: str  # "SUNNY" | "CLOUDY" | "RAINY" | "UNKNOWN"
    temperature_c: float | None


# ---------- ProviderResult ----------

@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    reason: str


@dataclass(frozen=True)
class TimedOut:
    pass


ProviderResult = Union[Success[T], Failure, TimedOut]


def describe(result: ProviderResult) -> str:
    """Short outcome label used in logs and API responses."""
    if isinstance(result, Success):
        return "success"
    if isinstance(result, TimedOut):
        return "timed_out"
    return f"failure: {result.reason}"


class SignalProvider(Protocol[T]):
    """Common interface for every context source."""
    source: Source

    async def fetch(self) -> ProviderResult[T]:
        """Return Success, Failure or TimedOut. Never raises."""
        ...


class BaseProvider(Generic[T]):
    """Turns every failure mode of ``_fetch`` into a ``Failure`` result.

    Subclasses implement ``_fetch`` and may raise freely; ``fetch`` only lets
    cancellation through.
    """

    source: Source

    async def fetch(self) -> ProviderResult[T]:
        try:
            return await self._fetch()
        except httpx.TimeoutException:
            logger.warning(f"{self.source.value} provider timed out on I/O")
            return Failure("network timeout")
        except httpx.HTTPStatusError as e:
            logger.warning(f"{self.source.value} provider HTTP {e.response.status_code}")
            return Failure(f"http {e.response.status_code}")
        except httpx.RequestError as e:
            logger.warning(f"{self.source.value} provider network error: {e}")
            return Failure(f"network error: {e.__class__.__name__}")
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"{self.source.value} provider got malformed payload: {e}")
            return Failure("malformed payload")
        except Exception as e:
            logger.error(f"{self.source.value} provider failed unexpectedly: {e}")
            return Failure(str(e) or e.__class__.__name__)

    async def _fetch(self) -> ProviderResult[T]:
        raise NotImplementedError
