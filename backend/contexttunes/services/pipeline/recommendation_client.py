"""Recommendation client — sends a context snapshot to the remote service and parses tracks."""

import asyncio
import base64
import logging
from dataclasses import dataclass

import httpx

from contexttunes.config import settings
from contexttunes.services.pipeline.config import RetryPolicy, pipeline_config
from contexttunes.services.pipeline.context_aggregator import ContextSnapshot
from contexttunes.services.pipeline.errors import MalformedResponse, RecommendationServiceError
from contexttunes.services.signals.base import Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recommendation:
    track_title: str
    artist: str
    confidence: float  # 0.0 - 1.0
    rationale: str


def build_payload(snapshot: ContextSnapshot) -> dict:
    """Request body holding only the sources present in the snapshot.

    Absent sources are omitted entirely, never sent as null or empty values.
    """
    payload: dict = {}
    if snapshot.has(Source.IMAGE):
        payload["image"] = base64.b64encode(snapshot.image).decode("ascii")
    if snapshot.has(Source.LOCATION):
        payload["location"] = {"lat": snapshot.location.lat, "lon": snapshot.location.lon}
    if snapshot.has(Source.PLACES):
        payload["places"] = [
            {"name": p.name, "category": p.category, "distanceMeters": p.distance_meters}
            for p in snapshot.nearby_places
        ]
    if snapshot.has(Source.WEATHER):
        weather: dict = {"condition": snapshot.weather.condition}
        if snapshot.weather.temperature_c is not None:
            weather["temperatureC"] = snapshot.weather.temperature_c
        payload["weather"] = weather
    return payload


def _require_str(item: dict, key: str, index: int) -> str:
    value = item.get(key)
    if not isinstance(value, str):
        raise MalformedResponse(f"recommendations[{index}].{key} must be a string")
    return value


def parse_recommendations(data: object) -> list[Recommendation]:
    """Validate the response body and keep the service's ranking order."""
    if not isinstance(data, dict) or not isinstance(data.get("recommendations"), list):
        raise MalformedResponse("Response is missing the 'recommendations' array")

    recommendations = []
    for i, item in enumerate(data["recommendations"]):
        if not isinstance(item, dict):
            raise MalformedResponse(f"recommendations[{i}] is not an object")

        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise MalformedResponse(f"recommendations[{i}].confidence must be a number")
        if not 0.0 <= confidence <= 1.0:
            raise MalformedResponse(f"recommendations[{i}].confidence {confidence} outside [0, 1]")

        rationale = item.get("rationale", "")
        recommendations.append(Recommendation(
            track_title=_require_str(item, "title", i),
            artist=_require_str(item, "artist", i),
            confidence=float(confidence),
            rationale=rationale if isinstance(rationale, str) else str(rationale),
        ))
    return recommendations


class RecommendationClient:
    """Adapter for the remote recommendation API.

    Transient failures (429, 5xx, connection errors) are retried with
    exponential backoff; other 4xx and malformed bodies propagate at once.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        url: str | None = None,
        retry: RetryPolicy | None = None,
        timeout: float | None = None,
    ):
        self._client = client
        self._owns_client = client is None
        self._url = url or settings.recommendation_api_url
        self._retry = retry or pipeline_config.retry
        self._timeout = timeout or pipeline_config.timeouts.http

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def recommend(self, snapshot: ContextSnapshot, api_key: str) -> list[Recommendation]:
        """POST the snapshot and return recommendations in the service's order."""
        payload = build_payload(snapshot)
        client = await self._get_client()

        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await client.post(
                    self._url,
                    json=payload,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
            except httpx.TransportError as e:
                error = RecommendationServiceError(None, f"{e.__class__.__name__}: {e}")
                if not await self._backoff(attempt, error):
                    raise error from e
                continue

            if resp.is_success:
                break

            error = RecommendationServiceError(resp.status_code, resp.text)
            if not self._retry.is_retryable_status(resp.status_code):
                logger.warning(f"Recommendation service rejected request: {resp.status_code}")
                raise error
            if not await self._backoff(attempt, error):
                raise error

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse("Response body is not valid JSON") from e

        recommendations = parse_recommendations(data)
        logger.info(
            f"Received {len(recommendations)} recommendations "
            f"({snapshot.completeness.value} context, attempt {attempt})"
        )
        return recommendations

    async def _backoff(self, attempt: int, error: RecommendationServiceError) -> bool:
        """Sleep before the next attempt; False once retries are exhausted."""
        if attempt > self._retry.max_retries:
            logger.error(f"Recommendation request failed after {attempt} attempts: {error}")
            return False
        delay = self._retry.delay(attempt)
        logger.warning(f"Transient recommendation failure ({error.status_code}), retrying in {delay:.2f}s")
        await asyncio.sleep(delay)
        return True

    async def aclose(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
