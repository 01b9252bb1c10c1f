"""Context aggregator — runs all signal providers concurrently and merges the results."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Sequence

from contexttunes.services.pipeline.errors import InsufficientContext
from contexttunes.services.signals.base import (
    Failure,
    LocationFix,
    Place,
    ProviderResult,
    SignalProvider,
    Source,
    Success,
    TimedOut,
    WeatherReading,
    describe,
)

logger = logging.getLogger(__name__)


class Completeness(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    MINIMAL = "MINIMAL"


def classify_completeness(succeeded: set[Source]) -> Completeness:
    """FULL when all four sources succeeded, MINIMAL when exactly one did, else PARTIAL.

    Raises InsufficientContext when none did.
    """
    if not succeeded:
        raise InsufficientContext()
    if len(succeeded) == len(Source):
        return Completeness.FULL
    if len(succeeded) == 1:
        return Completeness.MINIMAL
    return Completeness.PARTIAL


# ---------- Data structures ----------

@dataclass(frozen=True)
class ContextSnapshot:
    """Merged context for one recommendation request.

    A source is present when its own field is set. ``places_present`` tells an
    empty nearby search apart from a failed one. Construction raises
    InsufficientContext when no source is present, and ``completeness`` is
    derived from the present sources (a mismatching value is rejected).
    """
    image: bytes | None = None
    location: LocationFix | None = None
    nearby_places: tuple[Place, ...] = ()
    weather: WeatherReading | None = None
    places_present: bool = False
    completeness: Completeness | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # (source, "success" | "timed_out" | "failure: <reason>" | "absent") pairs; a mapping is accepted
    outcomes: tuple[tuple[str, str], ...] | Mapping[str, str] = ()

    def __post_init__(self):
        object.__setattr__(self, "nearby_places", tuple(self.nearby_places))
        if self.nearby_places:
            object.__setattr__(self, "places_present", True)

        outcomes = dict(self.outcomes)
        for source in Source:
            if self.has(source):
                outcomes[source.value] = "success"
            elif outcomes.get(source.value, "success") == "success":
                outcomes[source.value] = "absent"
        object.__setattr__(self, "outcomes", tuple(sorted(outcomes.items())))

        succeeded = self.succeeded
        if not succeeded:
            raise InsufficientContext(outcomes)
        derived = classify_completeness(succeeded)
        if self.completeness is None:
            object.__setattr__(self, "completeness", derived)
        elif Completeness(self.completeness) != derived:
            raise ValueError(
                f"completeness {Completeness(self.completeness).value} does not match "
                f"the present sources ({derived.value})"
            )

    def has(self, source: Source) -> bool:
        if source is Source.IMAGE:
            return self.image is not None
        if source is Source.LOCATION:
            return self.location is not None
        if source is Source.PLACES:
            return self.places_present
        return self.weather is not None

    @property
    def succeeded(self) -> set[Source]:
        return {s for s in Source if self.has(s)}

    @property
    def outcome_map(self) -> dict[str, str]:
        return dict(self.outcomes)


# ---------- Aggregator ----------


class ContextAggregator:
    """Fan-out/fan-in over signal providers with a per-provider timeout.

    Every provider starts at once; a provider that has not answered within its
    timeout is recorded as TimedOut and cancelled, so the whole aggregation is
    bounded by the largest timeout rather than the sum of latencies.
    """

    async def aggregate(
        self,
        providers: Sequence[SignalProvider],
        per_provider_timeout: float,
        timeouts: dict[Source, float | None] | None = None,
    ) -> ContextSnapshot:
        """Collect every provider's result into a ContextSnapshot.

        ``timeouts`` overrides the per-provider timeout for individual sources;
        ``None`` means unbounded (image capture, which the caller already holds).
        """
        overrides = timeouts or {}
        start = time.monotonic()

        results = await asyncio.gather(*(
            self._run_one(p, overrides.get(p.source, per_provider_timeout))
            for p in providers
        ))
        by_source: dict[Source, ProviderResult] = {
            p.source: r for p, r in zip(providers, results)
        }
        outcomes = {s.value: describe(r) for s, r in by_source.items()}

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Aggregated context in {elapsed_ms}ms: {outcomes}")

        succeeded = {s for s, r in by_source.items() if isinstance(r, Success)}
        if not succeeded:
            raise InsufficientContext(outcomes)

        return ContextSnapshot(
            image=self._value(by_source, Source.IMAGE),
            location=self._value(by_source, Source.LOCATION),
            nearby_places=tuple(self._value(by_source, Source.PLACES) or ()),
            weather=self._value(by_source, Source.WEATHER),
            places_present=Source.PLACES in succeeded,
            timestamp=datetime.now(timezone.utc),
            outcomes=outcomes,
        )

    @staticmethod
    async def _run_one(provider: SignalProvider, timeout: float | None) -> ProviderResult:
        try:
            return await asyncio.wait_for(provider.fetch(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{provider.source.value} provider timed out after {timeout}s")
            return TimedOut()
        except Exception as e:
            # Providers should never raise; keep the fan-out intact if one does
            logger.error(f"{provider.source.value} provider raised: {e}")
            return Failure(str(e) or e.__class__.__name__)

    @staticmethod
    def _value(by_source: dict[Source, ProviderResult], source: Source) -> Any:
        result = by_source.get(source)
        return result.value if isinstance(result, Success) else None


context_aggregator = ContextAggregator()
