"""
Unit tests for ContextAggregator.

Tests verify:
- Completeness classification over every success/failure combination
- Zero successful sources raises InsufficientContext
- A hanging provider is cut off at the per-provider timeout
- Places keep the order the source returned
"""

import asyncio
import itertools
import time

import pytest

from conftest import SAMPLE_VALUES, HangingProvider, ScriptedProvider
from contexttunes.services.pipeline.context_aggregator import (
    Completeness,
    ContextAggregator,
    ContextSnapshot,
    classify_completeness,
)
from contexttunes.services.pipeline.errors import InsufficientContext
from contexttunes.services.signals.base import Failure, Place, Source, Success

COMBINATIONS = [
    {source for source, ok in zip(Source, flags) if ok}
    for flags in itertools.product([True, False], repeat=len(Source))
]


def expected_completeness(succeeded: set[Source]) -> Completeness:
    if len(succeeded) == 4:
        return Completeness.FULL
    if len(succeeded) == 1:
        return Completeness.MINIMAL
    return Completeness.PARTIAL


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "succeeding",
    [c for c in COMBINATIONS if c],
    ids=lambda c: "+".join(sorted(s.value for s in c)),
)
async def test_completeness_table(succeeding, providers_for):
    snapshot = await ContextAggregator().aggregate(providers_for(succeeding), 1.0)

    assert snapshot.completeness == expected_completeness(succeeding)
    assert snapshot.succeeded == succeeding
    for source in Source:
        expected = "success" if source in succeeding else "failure: unavailable"
        assert snapshot.outcome_map[source.value] == expected


@pytest.mark.asyncio
async def test_all_sources_failing_raises(providers_for):
    with pytest.raises(InsufficientContext) as exc_info:
        await ContextAggregator().aggregate(providers_for(set()), 1.0)

    assert set(exc_info.value.outcomes) == {s.value for s in Source}


def test_explicit_completeness_rules():
    assert classify_completeness({Source.IMAGE, Source.WEATHER}) == Completeness.PARTIAL
    assert classify_completeness({Source.IMAGE}) == Completeness.MINIMAL
    assert classify_completeness({Source.PLACES}) == Completeness.MINIMAL
    assert classify_completeness(set(Source)) == Completeness.FULL
    with pytest.raises(InsufficientContext):
        classify_completeness(set())


@pytest.mark.asyncio
async def test_hanging_provider_is_bounded_by_timeout():
    hanging = HangingProvider(Source.LOCATION)
    providers = [
        ScriptedProvider(Source.IMAGE, Success(SAMPLE_VALUES[Source.IMAGE])),
        hanging,
        ScriptedProvider(Source.PLACES, Success(SAMPLE_VALUES[Source.PLACES]), delay=0.05),
        ScriptedProvider(Source.WEATHER, Success(SAMPLE_VALUES[Source.WEATHER])),
    ]

    start = time.monotonic()
    snapshot = await ContextAggregator().aggregate(providers, 0.2)
    elapsed = time.monotonic() - start

    assert elapsed < 0.2 + 0.3
    assert snapshot.outcome_map["location"] == "timed_out"
    assert snapshot.location is None
    assert snapshot.completeness == Completeness.PARTIAL
    assert hanging.cancelled


@pytest.mark.asyncio
async def test_slow_providers_run_concurrently():
    providers = [
        ScriptedProvider(source, Success(SAMPLE_VALUES[source]), delay=0.1)
        for source in Source
    ]

    start = time.monotonic()
    snapshot = await ContextAggregator().aggregate(providers, 1.0)
    elapsed = time.monotonic() - start

    assert snapshot.completeness == Completeness.FULL
    # Sequential execution would take ~0.4s
    assert elapsed < 0.3


@pytest.mark.asyncio
async def test_unbounded_override_waits_for_image():
    providers = [
        ScriptedProvider(Source.IMAGE, Success(b"frame"), delay=0.15),
        ScriptedProvider(Source.LOCATION, Failure("permission denied")),
        ScriptedProvider(Source.PLACES, Failure("permission denied")),
        ScriptedProvider(Source.WEATHER, Failure("permission denied")),
    ]

    snapshot = await ContextAggregator().aggregate(providers, 0.05, timeouts={Source.IMAGE: None})

    assert snapshot.image == b"frame"
    assert snapshot.completeness == Completeness.MINIMAL


@pytest.mark.asyncio
async def test_places_order_is_not_resorted():
    places = [
        Place(name="Far", category="park", distance_meters=250.0),
        Place(name="Near", category="cafe", distance_meters=10.0),
    ]
    providers = [
        ScriptedProvider(Source.IMAGE, Failure("no frame captured")),
        ScriptedProvider(Source.LOCATION, Failure("location unavailable")),
        ScriptedProvider(Source.PLACES, Success(places)),
        ScriptedProvider(Source.WEATHER, Failure("missing api key")),
    ]

    snapshot = await ContextAggregator().aggregate(providers, 1.0)

    assert [p.name for p in snapshot.nearby_places] == ["Far", "Near"]


@pytest.mark.asyncio
async def test_raising_provider_becomes_failure():
    class Exploding:
        source = Source.WEATHER

        async def fetch(self):
            raise RuntimeError("sensor exploded")

    providers = [
        ScriptedProvider(Source.IMAGE, Success(b"frame")),
        Exploding(),
    ]

    snapshot = await ContextAggregator().aggregate(providers, 1.0)

    assert snapshot.outcome_map["weather"] == "failure: sensor exploded"
    assert snapshot.completeness == Completeness.MINIMAL


@pytest.mark.asyncio
async def test_empty_places_result_still_counts_as_success():
    providers = [
        ScriptedProvider(Source.PLACES, Success([])),
        ScriptedProvider(Source.WEATHER, Success(SAMPLE_VALUES[Source.WEATHER])),
    ]

    snapshot = await ContextAggregator().aggregate(providers, 1.0)

    assert snapshot.has(Source.PLACES)
    assert snapshot.nearby_places == ()
    assert snapshot.completeness == Completeness.PARTIAL


@pytest.mark.asyncio
async def test_outer_cancellation_cancels_providers():
    hanging = HangingProvider(Source.LOCATION)
    task = asyncio.create_task(ContextAggregator().aggregate([hanging], 10.0))
    await asyncio.sleep(0.05)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert hanging.cancelled


# ---------- snapshot invariants ----------


def test_snapshot_presence_comes_from_fields():
    snapshot = ContextSnapshot(
        location=SAMPLE_VALUES[Source.LOCATION],
        weather=SAMPLE_VALUES[Source.WEATHER],
    )

    assert snapshot.succeeded == {Source.LOCATION, Source.WEATHER}
    assert snapshot.completeness == Completeness.PARTIAL
    assert snapshot.outcome_map == {
        "image": "absent",
        "location": "success",
        "places": "absent",
        "weather": "success",
    }


def test_snapshot_keeps_recorded_failure_reasons():
    snapshot = ContextSnapshot(
        image=b"frame",
        outcomes={"weather": "timed_out", "places": "failure: http 403"},
    )

    assert snapshot.completeness == Completeness.MINIMAL
    assert snapshot.outcome_map["weather"] == "timed_out"
    assert snapshot.outcome_map["places"] == "failure: http 403"
    assert snapshot.outcome_map["location"] == "absent"


def test_snapshot_with_no_source_raises():
    with pytest.raises(InsufficientContext) as exc_info:
        ContextSnapshot(outcomes={"image": "failure: no frame captured"})

    assert exc_info.value.outcomes["image"] == "failure: no frame captured"
    assert exc_info.value.outcomes["weather"] == "absent"


def test_snapshot_rejects_mismatched_completeness():
    with pytest.raises(ValueError):
        ContextSnapshot(image=b"frame", completeness=Completeness.FULL)

    snapshot = ContextSnapshot(image=b"frame", completeness=Completeness.MINIMAL)
    assert snapshot.completeness == Completeness.MINIMAL


def test_snapshot_empty_places_need_explicit_presence():
    with pytest.raises(InsufficientContext):
        ContextSnapshot(nearby_places=())

    snapshot = ContextSnapshot(nearby_places=(), places_present=True)
    assert snapshot.has(Source.PLACES)
    assert snapshot.completeness == Completeness.MINIMAL


def test_snapshot_is_hashable():
    snapshot = ContextSnapshot(
        image=b"frame",
        nearby_places=SAMPLE_VALUES[Source.PLACES],
        outcomes={"location": "timed_out"},
    )

    assert isinstance(snapshot.nearby_places, tuple)
    assert snapshot in {snapshot}
    assert hash(snapshot) == hash(snapshot)
