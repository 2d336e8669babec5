"""Application settings using Pydantic BaseSettings for environment variable management."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from veda_orchestration.config.routing import DEFAULT_AGENT_WEIGHTS


class Settings(BaseSettings):
    """
    Global orchestration settings loaded from environment variables.

    Every field can be overridden with a ``VEDA_`` prefixed variable, e.g.
    ``VEDA_MAX_RETRIES=2``. Mapping fields accept JSON.

    Attributes:
        default_timeout_ms: Base per-attempt agent timeout before priority scaling
        max_retries: Retries per agent after the first attempt
        backoff_base_ms: First backoff delay between failed attempts
        backoff_max_ms: Ceiling for the exponential backoff delay
        consensus_threshold: Minimum |best score| / total weight for a consensus verdict
        confidence_high: Upper confidence bucket boundary
        confidence_medium: Middle confidence bucket boundary
        confidence_low: Lower confidence bucket boundary
        agent_weights: Configured importance per agent id
        health_check_interval: Seconds between availability polls
        response_time_threshold_ms: Latency above which an agent is degraded
        error_rate_threshold: Error rate above which an alert is raised
        availability_threshold: Success rate below which an agent is unhealthy
        alert_cooldown: Seconds during which a repeated alert is suppressed
        max_history_size: Metrics retained per agent
        enable_alerts: Toggle alert evaluation
        cache_enabled: Toggle the orchestrator result cache
        cache_ttl: Seconds a cached result stays valid
        default_language: Language that does not need the multilingual agent
        log_level: Logging level
        log_format: Log output format (json for production, console for dev)
        agent_endpoints: HTTP endpoint per agent id for the HTTP adapter
        agent_api_keys: Bearer token per agent id for the HTTP adapter
        http_timeout: Seconds for HTTP availability checks
    """

    default_timeout_ms: int = Field(default=30_000, description="Base agent timeout in ms")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    backoff_base_ms: int = Field(default=1_000, description="First retry delay in ms")
    backoff_max_ms: int = Field(default=10_000, description="Maximum retry delay in ms")

    consensus_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    confidence_high: float = Field(default=0.8)
    confidence_medium: float = Field(default=0.6)
    confidence_low: float = Field(default=0.4)
    agent_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_AGENT_WEIGHTS),
        description="Configured aggregation weight per agent id",
    )

    health_check_interval: float = Field(default=60.0, description="Seconds between polls")
    response_time_threshold_ms: float = Field(default=10_000.0)
    error_rate_threshold: float = Field(default=0.2)
    availability_threshold: float = Field(default=0.95)
    alert_cooldown: float = Field(default=300.0, description="Alert cooldown in seconds")
    max_history_size: int = Field(default=1000, ge=1)
    enable_alerts: bool = Field(default=True)

    cache_enabled: bool = Field(default=True)
    cache_ttl: float = Field(default=3600.0, description="Result cache TTL in seconds")

    default_language: str = Field(default="en")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log output format: json or console")

    agent_endpoints: dict[str, str] = Field(
        default_factory=dict,
        description="HTTP endpoint per agent id, e.g. {\"content-analysis\": \"http://...\"}",
    )
    agent_api_keys: dict[str, str] = Field(default_factory=dict)
    http_timeout: float = Field(default=5.0, description="Availability check timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="VEDA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Singleton instance - import this throughout the application
settings = Settings()
