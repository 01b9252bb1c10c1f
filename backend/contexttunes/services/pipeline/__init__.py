"""Context-to-recommendation pipeline.

Modules:
    config              Timeouts and retry policy
    errors              Typed pipeline failures
    context_aggregator  Concurrent fan-out over signal providers
    recommendation_client  Remote recommendation API with retry/backoff
    orchestrator        Single entry point and request state machine

Pipeline:
    signal providers → ContextAggregator → RecommendationClient
    → PipelineOrchestrator events (DELIVERED | FAILED)
"""
