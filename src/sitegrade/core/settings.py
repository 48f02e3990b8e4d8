"""
Orchestrator settings.

Every tunable of the job engine lives on :class:`OrchestratorSettings`:
concurrency cap, per-target timeout, retry and circuit-breaker policy,
alert threshold, job retention and the partial-credit table used when a
target degrades.

Values come from ``SITEGRADE_*`` environment variables or a ``.env``
file; two legacy names are also honoured (``MAX_CONCURRENT_ANALYSES``,
``ANALYSIS_TIMEOUT_MS``).  Components take the settings object (or plain
arguments) explicitly, so tests never depend on the environment.

Examples:
    >>> settings = OrchestratorSettings(max_concurrent_jobs=2, retry_base_delay_ms=10)
    >>> settings.retry_base_delay_seconds
    0.01

Tags:
    configuration, settings, pydantic, environment
"""

from __future__ import annotations

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Validated configuration for the scheduler and its guards."""

    model_config = SettingsConfigDict(
        env_prefix="SITEGRADE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Scheduling ───────────────────────────────────────────────
    max_concurrent_jobs: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices(
            "max_concurrent_jobs",
            "SITEGRADE_MAX_CONCURRENT_JOBS",
            "MAX_CONCURRENT_ANALYSES",
        ),
    )
    per_target_timeout_ms: int = Field(
        default=30_000,
        ge=1,
        validation_alias=AliasChoices(
            "per_target_timeout_ms",
            "SITEGRADE_PER_TARGET_TIMEOUT_MS",
            "ANALYSIS_TIMEOUT_MS",
        ),
    )

    # ── Retry ────────────────────────────────────────────────────
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=1_000, ge=0)
    retry_jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)

    # ── Circuit breaker ──────────────────────────────────────────
    circuit_breaker_threshold: int = Field(default=3, ge=1)
    circuit_breaker_window_ms: int = Field(default=300_000, ge=1)

    # ── Error metrics ────────────────────────────────────────────
    alert_error_rate_threshold: float = Field(default=5.0, gt=0)
    error_rate_window_ms: int = Field(default=3_600_000, ge=1)

    # ── Retention ────────────────────────────────────────────────
    job_max_age_ms: int = Field(default=86_400_000, ge=1)

    # ── Partial credit (degraded targets) ────────────────────────
    partial_credit_network: int = Field(default=0, ge=0, le=100)
    partial_credit_parsing: int = Field(default=25, ge=0, le=100)
    partial_credit_service: int = Field(default=60, ge=0, le=100)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_json: bool | None = Field(default=None)

    @model_validator(mode="after")
    def _validate_partial_credit(self) -> OrchestratorSettings:
        """Less available work must never score higher."""
        if not (
            self.partial_credit_network
            <= self.partial_credit_parsing
            <= self.partial_credit_service
        ):
            raise ValueError(
                "partial credit must be ordered network <= parsing <= service, got "
                f"{self.partial_credit_network}/{self.partial_credit_parsing}/"
                f"{self.partial_credit_service}"
            )
        return self

    # ── Derived properties ───────────────────────────────────────

    @property
    def per_target_timeout_seconds(self) -> float:
        return self.per_target_timeout_ms / 1000

    @property
    def retry_base_delay_seconds(self) -> float:
        return self.retry_base_delay_ms / 1000

    @property
    def circuit_breaker_window_seconds(self) -> float:
        return self.circuit_breaker_window_ms / 1000

    @property
    def error_rate_window_seconds(self) -> float:
        return self.error_rate_window_ms / 1000

    @property
    def job_max_age_seconds(self) -> float:
        return self.job_max_age_ms / 1000


_settings_cache: OrchestratorSettings | None = None


def get_settings(*, _force_reload: bool = False) -> OrchestratorSettings:
    """Load, validate and cache the process-wide settings.

    ``_force_reload`` bypasses the cache and re-reads the environment.
    """
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = OrchestratorSettings()
    return _settings_cache


__all__ = ["OrchestratorSettings", "get_settings"]
