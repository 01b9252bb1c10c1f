from pydantic import BaseModel, Field


class RecommendationRequest(BaseModel):
    image_base64: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)


class RecommendationItem(BaseModel):
    title: str
    artist: str
    confidence: float
    rationale: str


class RecommendationResponse(BaseModel):
    state: str
    completeness: str | None = None
    provider_outcomes: dict[str, str] = {}
    recommendations: list[RecommendationItem] = []
    events: list[str] = []


class PipelineStateResponse(BaseModel):
    state: str
