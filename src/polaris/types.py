"""Data models: cache entries and metrics, blueprint cache rows, generation I/O, rate limits."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class CacheTier(str, Enum):
    """Specificity tier of a blueprint cache key, most specific first."""

    EXACT = "exact"
    COMBINED = "combined"
    DOMAIN = "domain"
    COMPLEXITY = "complexity"


class DisplayType(str, Enum):
    """Visualization kind attached to each blueprint section."""

    INFOGRAPHIC = "infographic"
    TIMELINE = "timeline"
    CHART = "chart"
    TABLE = "table"
    MARKDOWN = "markdown"


class FallbackTrigger(str, Enum):
    """Why a failed backend attempt was escalated to the next backend."""

    BACKEND_UNAVAILABLE = "backend_unavailable"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    INVALID_API_KEY = "invalid_api_key"
    API_ERROR_4XX = "api_error_4xx"
    API_ERROR_5XX = "api_error_5xx"
    NETWORK_ERROR = "network_error"
    JSON_PARSE_ERROR = "json_parse_error"
    MISSING_SECTIONS = "missing_sections"
    TOKEN_LIMIT = "token_limit"


# --- Tiered cache ---


class CacheEntry(BaseModel):
    """An in-process cache row. Valid while ``now - timestamp < ttl``."""

    value: Any
    timestamp: int = Field(description="Epoch milliseconds at write time")
    ttl: int = Field(gt=0, description="Time-to-live in milliseconds")
    hits: int = Field(default=0, ge=0)

    def is_valid(self, now_ms: int) -> bool:
        return now_ms - self.timestamp < self.ttl


class CacheMetrics(BaseModel):
    """Monotonic counters for a tiered cache. Reset only explicitly."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    remote_hits: int = 0
    remote_misses: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class HealthStatus(BaseModel):
    """Result of a remote store health check."""

    connected: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class CacheStats(BaseModel):
    """Snapshot of a tiered cache: metrics, occupancy, remote status."""

    metrics: CacheMetrics
    memory_size: int = 0
    max_size: int = 0
    remote_enabled: bool = False
    remote: Optional[HealthStatus] = None


# --- Blueprint cache ---


class CacheKeyComponents(BaseModel):
    """Fingerprints derived from a questionnaire answer map."""

    model_config = ConfigDict(frozen=True)

    exact_fingerprint: str
    domain_fingerprint: str
    complexity_fingerprint: str
    combined_fingerprint: str
    schema_version: str


class BlueprintCacheEntry(BaseModel):
    """A stored blueprint together with the answers that produced it."""

    blueprint: Dict[str, Any]
    questionnaire_fingerprint: Dict[str, Any] = Field(
        description="The original answer map, used for similarity scoring"
    )
    generated_at: int = Field(description="Epoch milliseconds")
    similarity_score_at_store: float = Field(default=1.0, ge=0.0, le=1.0)
    use_count: int = Field(default=1, ge=0)
    schema_version: str = "v1"


class SimilarMatch(BaseModel):
    """A blueprint served from a similar (not necessarily identical) questionnaire."""

    model_config = ConfigDict(frozen=True)

    blueprint: Dict[str, Any]
    similarity: float = Field(ge=0.0, le=1.0)
    tier: CacheTier
    cache_age_ms: int = 0
    use_count: int = 0


class BlueprintCacheStats(BaseModel):
    exact_hits: int = 0
    similar_hits: int = 0
    misses: int = 0
    stores: int = 0
    invalid_rows: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hit_rate(self) -> float:
        total = self.exact_hits + self.similar_hits + self.misses
        return (self.exact_hits + self.similar_hits) / total if total > 0 else 0.0


# --- Generation ---


class GenerationContext(BaseModel):
    """Caller-supplied input for one blueprint generation."""

    model_config = ConfigDict(frozen=True)

    blueprint_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    organization: str = ""
    role: str = ""
    industry: str = ""
    static_answers: Dict[str, Any]
    dynamic_answers: Dict[str, Any] = Field(default_factory=dict)
    learning_objectives: List[str] = Field(default_factory=list)
    additional_instructions: Optional[str] = None

    @field_validator("static_answers")
    @classmethod
    def answers_not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("static_answers must contain at least one answer")
        return v


class TokenUsage(BaseModel):
    input_units: int = Field(default=0, ge=0)
    output_units: int = Field(default=0, ge=0)


class BackendRequest(BaseModel):
    """What every backend receives; only model and budget vary per attempt."""

    model_config = ConfigDict(frozen=True)

    model: str
    system_prompt: str
    user_prompt: str
    max_output_tokens: int = Field(ge=1)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)


class BackendResponse(BaseModel):
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: Optional[str] = None
    stop_reason: Optional[str] = None


class GenerationMetadata(BaseModel):
    backend_used: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    fallback_used: bool = False
    attempt_count: int = Field(default=0, ge=0)
    cache_hit: bool = False
    cache_tier: Optional[CacheTier] = None
    similarity: Optional[float] = None


class GenerationResult(BaseModel):
    """Outcome of one ``generate()`` call. Failures are values, not exceptions."""

    success: bool
    artifact: Optional[Dict[str, Any]] = None
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)
    usage: Optional[TokenUsage] = None
    error: Optional[str] = None


class FallbackDecision(BaseModel):
    """Whether a failed attempt should escalate to the next backend."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    should_fallback: bool
    trigger: Optional[FallbackTrigger] = None
    reason: str = ""
    original_error: Optional[BaseException] = Field(default=None, exclude=True)


# --- Rate limiting ---


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    window_ms: int = Field(gt=0)
    max_requests: int = Field(ge=1)
    key_prefix: str = Field(default="rate_limit", min_length=1)


class RateLimitResult(BaseModel):
    allowed: bool
    limit: int
    remaining: int = Field(ge=0)
    reset_at: int = Field(description="Epoch milliseconds when the window frees up")
    retry_after_ms: Optional[int] = None
