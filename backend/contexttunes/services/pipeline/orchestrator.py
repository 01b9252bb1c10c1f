"""Pipeline orchestrator — single entry point from the UI layer to a recommendation."""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

import httpx

from contexttunes.config import settings
from contexttunes.services.pipeline.config import PipelineConfig, pipeline_config
from contexttunes.services.pipeline.context_aggregator import (
    ContextAggregator,
    ContextSnapshot,
    context_aggregator,
)
from contexttunes.services.pipeline.errors import Cancelled, PipelineError, RequestInProgress
from contexttunes.services.pipeline.recommendation_client import Recommendation, RecommendationClient
from contexttunes.services.signals.base import LocationFix, SignalProvider, Source
from contexttunes.services.signals.image_provider import ImageProvider
from contexttunes.services.signals.location_provider import (
    IPGeolocationSource,
    LocationProvider,
    LocationSource,
    SharedLocationSource,
    StaticLocationSource,
)
from contexttunes.services.signals.places_provider import PlacesProvider
from contexttunes.services.signals.weather_provider import WeatherProvider

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "IDLE"
    AGGREGATING = "AGGREGATING"
    REQUESTING = "REQUESTING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


IN_FLIGHT = (PipelineState.AGGREGATING, PipelineState.REQUESTING)


@dataclass(frozen=True)
class PipelineEvent:
    """Pushed to listeners on every state change."""
    state: PipelineState
    snapshot: ContextSnapshot | None = None
    recommendations: list[Recommendation] | None = None
    error: PipelineError | None = None


@dataclass(frozen=True)
class ApiKeys:
    recommendation: str = ""
    places: str = ""
    weather: str = ""

    @classmethod
    def from_settings(cls) -> "ApiKeys":
        return cls(
            recommendation=settings.recommendation_api_key,
            places=settings.places_api_key,
            weather=settings.weather_api_key,
        )


Listener = Callable[[PipelineEvent], Any]
ProviderFactory = Callable[[bytes | None, ApiKeys, LocationSource], Sequence[SignalProvider]]


class PipelineOrchestrator:
    """Aggregator → RecommendationClient, one request at a time.

    IDLE → AGGREGATING → REQUESTING → DELIVERED | FAILED. A second
    ``run_request`` while one is aggregating or requesting is rejected with
    RequestInProgress instead of being queued.
    """

    def __init__(
        self,
        aggregator: ContextAggregator | None = None,
        client: RecommendationClient | None = None,
        http_client: httpx.AsyncClient | None = None,
        provider_factory: ProviderFactory | None = None,
        config: PipelineConfig | None = None,
    ):
        self._config = config or pipeline_config
        self._aggregator = aggregator or context_aggregator
        self._http: httpx.AsyncClient | None = http_client
        self._owns_http = http_client is None
        self._client = client
        self._provider_factory = provider_factory or self._default_providers
        self._state = PipelineState.IDLE
        self._listeners: list[Listener] = []

    @property
    def state(self) -> PipelineState:
        return self._state

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._config.timeouts.http)
        return self._http

    async def _get_client(self) -> RecommendationClient:
        if self._client is None:
            self._client = RecommendationClient(
                client=await self._get_http(),
                retry=self._config.retry,
            )
        return self._client

    async def run_request(
        self,
        image: bytes | None = None,
        api_keys: ApiKeys | None = None,
        location: LocationFix | None = None,
    ) -> list[Recommendation]:
        """Run one full cycle and return the delivered recommendations.

        Raises the typed PipelineError after the FAILED event has been pushed.
        Cancellation pushes FAILED with ``Cancelled`` and re-raises.
        """
        if self._state in IN_FLIGHT:
            raise RequestInProgress(f"Request already {self._state.value.lower()}")

        # No await before this point: the guard and the transition are atomic
        self._state = PipelineState.AGGREGATING
        keys = api_keys or ApiKeys.from_settings()

        try:
            await self._emit(PipelineEvent(PipelineState.AGGREGATING))

            http = await self._get_http()
            # Location, places and weather all read the same single lookup
            source = SharedLocationSource(
                StaticLocationSource(location) if location
                else IPGeolocationSource(http, settings.geolocation_url)
            )
            providers = self._provider_factory(image, keys, source)
            try:
                snapshot = await self._aggregator.aggregate(
                    providers,
                    self._config.timeouts.per_provider,
                    timeouts={Source.IMAGE: None},
                )
            finally:
                source.close()

            self._state = PipelineState.REQUESTING
            await self._emit(PipelineEvent(PipelineState.REQUESTING, snapshot=snapshot))

            client = await self._get_client()
            recommendations = await client.recommend(snapshot, keys.recommendation)
        except asyncio.CancelledError:
            logger.info("Recommendation request cancelled by caller")
            await self._fail(Cancelled("Request cancelled"))
            raise
        except PipelineError as e:
            await self._fail(e)
            raise
        except Exception as e:
            logger.error(f"Unexpected pipeline failure: {e}")
            await self._fail(PipelineError(str(e) or e.__class__.__name__))
            raise

        self._state = PipelineState.DELIVERED
        await self._emit(PipelineEvent(
            PipelineState.DELIVERED,
            snapshot=snapshot,
            recommendations=recommendations,
        ))
        return recommendations

    async def _fail(self, error: PipelineError) -> None:
        logger.warning(f"Recommendation request failed: {error.__class__.__name__}: {error}")
        self._state = PipelineState.FAILED
        await self._emit(PipelineEvent(PipelineState.FAILED, error=error))

    async def _emit(self, event: PipelineEvent) -> None:
        logger.debug(f"Pipeline state -> {event.state.value}")
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Pipeline listener failed on {event.state.value}: {e}")

    def _default_providers(
        self, image: bytes | None, keys: ApiKeys, source: LocationSource
    ) -> list[SignalProvider]:
        # Only called from run_request after _get_http()
        http = self._http
        return [
            ImageProvider(image),
            LocationProvider(source),
            PlacesProvider(
                http,
                source,
                api_key=keys.places,
                base_url=settings.places_base_url,
                radius_m=settings.places_search_radius_m,
                max_results=settings.places_max_results,
                tagged_places=settings.tagged_places,
                tagged_radius_m=settings.tagged_place_radius_m,
            ),
            WeatherProvider(http, source, api_key=keys.weather, base_url=settings.weather_base_url),
        ]

    async def aclose(self) -> None:
        """Release pooled HTTP connections."""
        if self._client:
            await self._client.aclose()
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None
        self._client = None

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


pipeline_orchestrator = PipelineOrchestrator()
