"""Pydantic-based configuration with environment variable support (POLARIS_ prefix)."""

from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DAY_MS = 24 * 60 * 60 * 1000


class Settings(BaseSettings):
    """Central configuration for a Polaris runtime."""

    model_config = SettingsConfigDict(
        env_prefix="POLARIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Remote store ---
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "POLARIS_REDIS_URL",
            "REDIS_URL",
            "UPSTASH_REDIS_REST_URL",
            "KV_REST_API_URL",
            "REDIS_ENDPOINT_URL",
        ),
        description="Remote store URL. None disables the remote tier",
    )
    redis_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "POLARIS_REDIS_TOKEN",
            "REDIS_TOKEN",
            "UPSTASH_REDIS_REST_TOKEN",
            "KV_REST_API_TOKEN",
            "REDIS_PASSWORD",
        ),
        description="Optional auth token/password for the remote store",
    )
    redis_connect_timeout: float = Field(default=10.0, gt=0.0, description="Connect timeout (seconds)")
    redis_command_timeout: float = Field(default=5.0, gt=0.0, description="Per-command timeout (seconds)")
    redis_reconnect_cooldown: float = Field(
        default=30.0,
        ge=0.0,
        description="Seconds to wait after a failed connection before trying again",
    )

    # --- Tiered cache ---
    cache_max_size: int = Field(default=1000, ge=0, description="Max in-process entries (0=disabled)")
    cache_default_ttl_ms: int = Field(default=5 * 60 * 1000, gt=0)
    cache_key_prefix: str = Field(default="polaris_cache:")

    # --- Blueprint cache ---
    blueprint_cache_max_size: int = Field(default=100, ge=0)
    blueprint_cache_ttl_ms: int = Field(
        default=30 * 60 * 1000,
        gt=0,
        description="TTL applied when a remote hit is promoted into process memory",
    )
    blueprint_cache_prefix: str = Field(default="blueprint_cache:")
    blueprint_key_namespace: str = Field(default="blueprint")
    blueprint_schema_version: str = Field(default="v1")

    similarity_threshold: float = Field(default=0.85, gt=0.0, le=1.0)
    partial_match_floor: float = Field(
        default=0.7,
        ge=0.0,
        lt=1.0,
        description="Jaccard score a non-identical string field must exceed to earn partial credit",
    )
    similarity_fields: List[str] = Field(
        default_factory=lambda: [
            "domain",
            "subject_area",
            "complexity_level",
            "experience_level",
            "goal_type",
            "timeline",
            "audience_type",
            "skill_level",
        ]
    )
    domain_fields: List[str] = Field(default_factory=lambda: ["domain", "subject_area"])
    complexity_fields: List[str] = Field(
        default_factory=lambda: ["complexity_level", "experience_level"]
    )

    exact_ttl_ms: int = Field(default=7 * _DAY_MS, gt=0)
    combined_ttl_ms: int = Field(default=3 * _DAY_MS, gt=0)
    domain_ttl_ms: int = Field(default=_DAY_MS, gt=0)
    complexity_ttl_ms: int = Field(default=_DAY_MS, gt=0)

    # --- Generation backends ---
    anthropic_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("POLARIS_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    anthropic_base_url: str = Field(default="https://api.anthropic.com")
    anthropic_version: str = Field(default="2023-06-01")
    primary_model: str = Field(default="claude-sonnet-4-20250514")
    fallback_model: str = Field(default="claude-opus-4-20250514")
    primary_max_tokens: int = Field(default=12000, ge=1)
    fallback_max_tokens: int = Field(default=16000, ge=1)
    max_allowed_tokens: int = Field(
        default=20000,
        ge=1,
        description="Ceiling for the truncation retry that raises max_tokens",
    )
    temperature: float = Field(default=0.2, ge=0.0, le=1.0)

    ollama_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("POLARIS_OLLAMA_BASE_URL", "OLLAMA_BASE_URL"),
        description="Enables the local emergency backend when set",
    )
    ollama_model: str = Field(default="qwen2.5:14b")
    ollama_max_tokens: int = Field(default=16000, ge=1)

    # --- Retry (inside one backend) vs. escalation (across backends) ---
    backend_timeout: float = Field(default=120.0, gt=0.0, description="Seconds per backend attempt")
    backend_max_retries: int = Field(default=2, ge=0, le=10)
    backend_retry_base_delay: float = Field(default=1.0, ge=0.0)
    enable_fallback: bool = Field(default=True, description="Escalate to lower-ranked backends")
    single_flight: bool = Field(
        default=True,
        description="Share one in-flight generation between concurrent identical requests",
    )

    # --- Rate limiting ---
    rate_limit_local_fallback: bool = Field(
        default=True,
        description="Use an in-process limiter when the remote store is unreachable",
    )

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Level of the polaris logger hierarchy")
    log_file: Optional[str] = Field(default=None, description="Optional path for a UTF-8 log file")
    log_console_level: Optional[str] = Field(default=None, description="stderr level. Defaults to log_level")
    log_quiet_transports: bool = Field(
        default=True,
        description="Hold httpx, redis and openai client loggers at WARNING",
    )

    # --- Validators ---
    @field_validator("partial_match_floor")
    @classmethod
    def floor_below_threshold(cls, v: float, info) -> float:  # type: ignore[type-arg]
        threshold = info.data.get("similarity_threshold", 0.85)
        if v >= threshold:
            raise ValueError("Partial match floor must be lower than the similarity threshold")
        return v

    @field_validator("domain_fields", "complexity_fields", "similarity_fields")
    @classmethod
    def fields_not_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("Field lists must contain at least one answer key")
        return v

    @model_validator(mode="after")
    def check_budgets_and_ttls(self) -> "Settings":
        if max(self.primary_max_tokens, self.fallback_max_tokens) > self.max_allowed_tokens:
            raise ValueError("Backend token budgets must not exceed max_allowed_tokens")
        if not (
            self.exact_ttl_ms
            >= self.combined_ttl_ms
            >= max(self.domain_ttl_ms, self.complexity_ttl_ms)
        ):
            raise ValueError(
                "TTLs must decay with specificity: exact >= combined >= domain/complexity"
            )
        return self

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)

    def tier_ttls_ms(self) -> dict:
        """Return the per-tier TTL policy keyed by tier name."""
        return {
            "exact": self.exact_ttl_ms,
            "combined": self.combined_ttl_ms,
            "domain": self.domain_ttl_ms,
            "complexity": self.complexity_ttl_ms,
        }
