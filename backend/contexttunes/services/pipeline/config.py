"""Pipeline configuration — timeouts and retry policy."""

import random
from dataclasses import dataclass, field

from contexttunes.config import settings


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient recommendation-service failures."""
    max_retries: int = 2
    base_delay: float = 0.5    # seconds
    factor: float = 2.0
    jitter: float = 0.2        # ±20%
    retry_statuses: frozenset[int] = frozenset({429})  # plus every 5xx

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retry_statuses or 500 <= status_code < 600

    def delay(self, retry_number: int, rng: random.Random | None = None) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        base = self.base_delay * self.factor ** (retry_number - 1)
        spread = (rng or random).uniform(-self.jitter, self.jitter)
        return max(0.0, base * (1 + spread))


@dataclass(frozen=True)
class ProviderTimeouts:
    per_provider: float = 5.0   # seconds, location/places/weather
    http: float = 10.0          # seconds, per HTTP request


@dataclass(frozen=True)
class PipelineConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeouts: ProviderTimeouts = field(default_factory=ProviderTimeouts)


def config_from_settings() -> PipelineConfig:
    return PipelineConfig(
        timeouts=ProviderTimeouts(
            per_provider=settings.provider_timeout_seconds,
            http=settings.request_timeout_seconds,
        ),
    )


pipeline_config = config_from_settings()
