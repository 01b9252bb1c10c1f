"""Recommendations router — runs the context pipeline for the calling device."""

import base64
import binascii
import logging

from fastapi import APIRouter, HTTPException

from contexttunes.schemas.recommendation import (
    PipelineStateResponse,
    RecommendationItem,
    RecommendationRequest,
    RecommendationResponse,
)
from contexttunes.services.pipeline.errors import (
    InsufficientContext,
    MalformedResponse,
    RecommendationServiceError,
    RequestInProgress,
)
from contexttunes.services.pipeline.orchestrator import PipelineEvent, pipeline_orchestrator
from contexttunes.services.signals.base import LocationFix

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=RecommendationResponse)
async def create_recommendation(body: RecommendationRequest):
    """Aggregate context and fetch track recommendations."""
    image = None
    if body.image_base64:
        try:
            image = base64.b64decode(body.image_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="image_base64 is not valid base64")

    location = None
    if body.latitude is not None and body.longitude is not None:
        location = LocationFix(lat=body.latitude, lon=body.longitude, accuracy=body.accuracy)

    events: list[PipelineEvent] = []
    pipeline_orchestrator.add_listener(events.append)
    try:
        recommendations = await pipeline_orchestrator.run_request(image=image, location=location)
    except RequestInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InsufficientContext as e:
        raise HTTPException(
            status_code=422,
            detail={"message": "No context could be gathered", "provider_outcomes": e.outcomes},
        )
    except RecommendationServiceError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": "Recommendation service error", "status_code": e.status_code, "body": e.body},
        )
    except MalformedResponse as e:
        raise HTTPException(status_code=502, detail=f"Malformed recommendation response: {e}")
    finally:
        pipeline_orchestrator.remove_listener(events.append)

    snapshot = events[-1].snapshot
    return RecommendationResponse(
        state=pipeline_orchestrator.state.value,
        completeness=snapshot.completeness.value if snapshot else None,
        provider_outcomes=snapshot.outcome_map if snapshot else {},
        recommendations=[
            RecommendationItem(
                title=r.track_title,
                artist=r.artist,
                confidence=r.confidence,
                rationale=r.rationale,
            )
            for r in recommendations
        ],
        events=[e.state.value for e in events],
    )


@router.get("/state", response_model=PipelineStateResponse)
async def get_state():
    return PipelineStateResponse(state=pipeline_orchestrator.state.value)
