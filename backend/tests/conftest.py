"""
Shared fixtures: scripted signal providers, snapshots and mocked HTTP clients.
"""

import asyncio

import httpx
import pytest

from contexttunes.services.pipeline.config import RetryPolicy
from contexttunes.services.pipeline.context_aggregator import ContextSnapshot
from contexttunes.services.pipeline.recommendation_client import RecommendationClient
from contexttunes.services.signals.base import (
    Failure,
    LocationFix,
    Place,
    Source,
    Success,
    WeatherReading,
)

REC_URL = "https://rec.test/v1/recommendations"

SAMPLE_VALUES = {
    Source.IMAGE: b"\x89PNG frame",
    Source.LOCATION: LocationFix(lat=-37.7963, lon=144.9614, accuracy=12.0),
    Source.PLACES: [
        Place(name="Baillieu Library", category="library", distance_meters=42.0),
        Place(name="Seven Seeds", category="cafe", distance_meters=180.5),
    ],
    Source.WEATHER: WeatherReading(condition="RAINY", temperature_c=14.5),
}


class ScriptedProvider:
    """Returns a fixed result, optionally after a delay or once a gate opens."""

    def __init__(self, source, result, delay: float = 0.0, gate: asyncio.Event | None = None):
        self.source = source
        self.result = result
        self.delay = delay
        self.gate = gate
        self.calls = 0
        self.cancelled = False

    async def fetch(self):
        self.calls += 1
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self.result


class HangingProvider(ScriptedProvider):
    def __init__(self, source):
        super().__init__(source, None, gate=asyncio.Event())


@pytest.fixture
def providers_for():
    """Build one scripted provider per source from a set of succeeding sources."""

    def _build(succeeding: set[Source]) -> list[ScriptedProvider]:
        return [
            ScriptedProvider(
                source,
                Success(SAMPLE_VALUES[source]) if source in succeeding else Failure("unavailable"),
            )
            for source in Source
        ]

    return _build


@pytest.fixture
def make_snapshot():
    """ContextSnapshot with only the given sources present."""

    def _make(**present) -> ContextSnapshot:
        return ContextSnapshot(
            image=present.get("image"),
            location=present.get("location"),
            nearby_places=tuple(present.get("places") or ()),
            weather=present.get("weather"),
            places_present="places" in present,
            outcomes={s.value: "failure: unavailable" for s in Source},
        )

    return _make


@pytest.fixture
def rec_client_factory():
    """RecommendationClient over httpx.MockTransport with zero backoff."""

    def _make(handler, retry: RetryPolicy | None = None) -> RecommendationClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RecommendationClient(
            client=http,
            url=REC_URL,
            retry=retry or RetryPolicy(base_delay=0.0),
        )

    return _make
