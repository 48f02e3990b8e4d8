"""
Shared pytest fixtures for sitegrade tests.

This module provides:
- Fast settings (millisecond backoff, short timeouts)
- Fake analysis functions with controllable failures
- An event recorder for asserting on job lifecycle events

Usage:
    Fixtures are auto-discovered by pytest; request them as test arguments.

    async def test_something(scripted, fast_settings, recorder):
        scheduler = JobScheduler(scripted(), fast_settings)
        scheduler.on("*", recorder)
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from sitegrade.core.events import JobEvent, JobEventType
from sitegrade.core.settings import OrchestratorSettings


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def fast_settings() -> OrchestratorSettings:
    """Settings with tiny delays so retry paths run in milliseconds."""
    return OrchestratorSettings(
        max_concurrent_jobs=5,
        per_target_timeout_ms=2_000,
        retry_attempts=3,
        retry_base_delay_ms=1,
        retry_jitter_ratio=0.0,
        circuit_breaker_threshold=50,
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of settings-driven tests."""
    for key in (
        "MAX_CONCURRENT_ANALYSES",
        "ANALYSIS_TIMEOUT_MS",
        "SITEGRADE_MAX_CONCURRENT_JOBS",
        "SITEGRADE_PER_TARGET_TIMEOUT_MS",
        "SITEGRADE_RETRY_ATTEMPTS",
        "SITEGRADE_RETRY_BASE_DELAY_MS",
        "SITEGRADE_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)


# =============================================================================
# Fake analysis functions
# =============================================================================


class ScriptedAnalysis:
    """Async analysis function whose behaviour is scripted per target.

    ``failures`` maps a target to the exception raised for it (every call),
    ``delay`` is awaited before each call returns.
    """

    def __init__(
        self,
        failures: dict[str, BaseException] | None = None,
        delay: float = 0.0,
    ):
        self.failures = failures or {}
        self.delay = delay
        self.calls: list[str] = []
        self.started = asyncio.Event()

    async def __call__(self, target: str, config: Any) -> dict[str, Any]:
        self.calls.append(target)
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.failures.get(target)
        if error is not None:
            raise error
        return {"url": target, "overall_score": 90}


class Gate:
    """Analysis function that blocks until released."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls: list[str] = []

    async def __call__(self, target: str, config: Any) -> dict[str, Any]:
        self.calls.append(target)
        self.entered.set()
        await self.release.wait()
        return {"url": target, "overall_score": 80}


@pytest.fixture
def scripted() -> type[ScriptedAnalysis]:
    return ScriptedAnalysis


@pytest.fixture
def gate() -> Gate:
    return Gate()


# =============================================================================
# Events
# =============================================================================


class EventRecorder:
    """Event handler that stores every event it receives."""

    def __init__(self) -> None:
        self.events: list[JobEvent] = []

    def __call__(self, event: JobEvent) -> None:
        self.events.append(event)

    def of(self, event_type: JobEventType, job_id: str | None = None) -> list[JobEvent]:
        return [
            e
            for e in self.events
            if e.event_type is event_type and (job_id is None or e.job_id == job_id)
        ]

    def kinds(self, job_id: str | None = None) -> list[str]:
        return [
            e.event_type.value for e in self.events if job_id is None or e.job_id == job_id
        ]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()
