"""Job runner: one job, its targets in order, every failure contained.

WHY
───
A batch of URLs must always finish.  A dead host, a malformed page or a
rate-limited API may spoil one target's slot, but never the job.  The
runner is the boundary where target-level errors are caught, classified,
counted and (when possible) degraded into a partial result.

ARCHITECTURE
────────────
::

    for target in job.targets:              (strictly sequential)
        CircuitBreakerRegistry.guard(key)   ─ fail fast when open
          └─ RetryContext.run_async         ─ backoff between attempts
               └─ run_with_timeout_async    ─ per-attempt deadline
                    └─ analysis_fn(target, config)
        ├─ success   → job.add_result
        ├─ degraded  → job.add_degraded (partial result + ErrorRecord)
        └─ failed    → job.add_failure  (ErrorRecord only)
        emit progress

    all targets done → COMPLETED (even when every target failed)
    bug in the loop  → FAILED

Cancellation is cooperative: the scheduler flips the job to FAILED and the
runner drops whatever the in-flight call returns.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sitegrade.core.classifier import ErrorClassifier
from sitegrade.core.errors import AnalysisError, ErrorRecord, ServiceError, error_code
from sitegrade.core.events import EventBus, JobEvent, JobEventType
from sitegrade.core.logging import LogContext, get_logger
from sitegrade.core.troubleshooting import get_guide, user_friendly_message
from sitegrade.execution.circuit_breaker import CircuitBreakerRegistry
from sitegrade.execution.degradation import DegradationPolicy
from sitegrade.execution.retry import RetryExecutor
from sitegrade.execution.timeout import run_with_timeout_async
from sitegrade.jobs.models import Job, JobStatus
from sitegrade.observability.error_metrics import ErrorMetrics
from sitegrade.observability.metrics import JobMetrics

logger = get_logger(__name__)

AnalysisFunction = Callable[[str, Any], Awaitable[Any] | Any]


@dataclass(frozen=True)
class RunPolicy:
    """Per-target execution limits shared by all runners of a scheduler."""

    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    circuit_key: str = "analysis"
    circuit_threshold: int | None = None
    service: str | None = None


@dataclass
class TargetOutcome:
    """What happened to one target, applied to the job only if still running."""

    target: str
    result: Any = None
    record: ErrorRecord | None = None
    degraded: bool = False
    service: str | None = None
    duration: float = 0.0

    @property
    def label(self) -> str:
        if self.record is None:
            return "success"
        return "degraded" if self.degraded else "failed"


def build_error_record(
    error: BaseException,
    target: str | None,
    attempts: int,
    classified: AnalysisError | None = None,
) -> ErrorRecord:
    """ErrorRecord with user-facing text from the troubleshooting table."""
    source = classified or error
    code = error_code(source)
    guide = get_guide(code)
    return ErrorRecord(
        kind=classified.kind if classified else None,
        code=code,
        message=str(source),
        target=target,
        attempts=attempts,
        user_message=user_friendly_message(source),
        suggested_actions=guide.suggested_actions if guide else (),
    )


class JobRunner:
    """Executes one :class:`Job` to a terminal state."""

    def __init__(
        self,
        job: Job,
        analysis_fn: AnalysisFunction,
        *,
        policy: RunPolicy,
        bus: EventBus,
        breakers: CircuitBreakerRegistry,
        retry: RetryExecutor,
        classifier: ErrorClassifier,
        degradation: DegradationPolicy,
        error_metrics: ErrorMetrics,
        job_metrics: JobMetrics,
    ):
        self.job = job
        self.analysis_fn = analysis_fn
        self.policy = policy
        self.bus = bus
        self.breakers = breakers
        self.retry = retry
        self.classifier = classifier
        self.degradation = degradation
        self.error_metrics = error_metrics
        self.job_metrics = job_metrics

    def _emit(self, event_type: JobEventType, **payload: Any) -> None:
        self.bus.publish(JobEvent(event_type=event_type, job_id=self.job.id, payload=payload))

    async def run(self) -> None:
        """Process every target, then mark the job completed.

        Never raises for target-level failures.  Returns early (without
        touching the job) once the job has been cancelled.
        """
        job = self.job
        started = time.perf_counter()

        async with LogContext(job_id=job.id):
            logger.info("job.run_started", targets=job.total_count)
            try:
                for target in job.targets:
                    if job.is_terminal:
                        logger.info("job.run_abandoned", completed=job.completed_count)
                        return

                    outcome = await self._process_target(target)

                    if job.is_terminal:
                        logger.info(
                            "job.result_discarded",
                            target=target,
                            outcome=outcome.label,
                        )
                        return

                    self._apply(outcome)
                    self._emit(
                        JobEventType.PROGRESS,
                        progress=job.progress,
                        completed_count=job.completed_count,
                        total_count=job.total_count,
                        current_target=target,
                    )

                if job.is_terminal:
                    return

                job.transition(JobStatus.COMPLETED)
                duration = time.perf_counter() - started
                self.job_metrics.job_finished(JobStatus.COMPLETED.value, was_running=True)
                if job.errors:
                    self.error_metrics.log_error_summary(job.errors, job_id=job.id)
                logger.info(
                    "job.completed",
                    results=len(job.results),
                    errors=len(job.errors),
                    duration_seconds=round(duration, 3),
                )
                self._emit(
                    JobEventType.COMPLETED,
                    total_count=job.total_count,
                    result_count=len(job.results),
                    error_count=len(job.errors),
                    duration_seconds=duration,
                )
            except Exception as e:
                if job.is_terminal:
                    logger.warning("job.error_after_terminal", error=str(e))
                    return
                record = build_error_record(e, target=None, attempts=0)
                job.fail(record)
                self.job_metrics.job_finished(JobStatus.FAILED.value, was_running=True)
                logger.error("job.failed", error=str(e), error_type=type(e).__name__, exc_info=True)
                self._emit(JobEventType.FAILED, error=record.to_dict())

    # ── Per-target work ──────────────────────────────────────────

    async def _invoke(self, target: str) -> Any:
        fn = self.analysis_fn
        if inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
            getattr(fn, "__call__", None)
        ):
            return await fn(target, self.job.config)
        return await asyncio.to_thread(fn, target, self.job.config)

    async def _process_target(self, target: str) -> TargetOutcome:
        policy = self.policy
        started = time.perf_counter()

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.info(
                "target.retry",
                target=target,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error=str(error),
            )

        ctx = self.retry.context(policy.retry_attempts, policy.retry_base_delay, on_retry=on_retry)

        async def attempt() -> Any:
            return await run_with_timeout_async(
                self._invoke(target),
                policy.timeout_seconds,
                operation=target,
            )

        try:
            result = await self.breakers.guard(
                policy.circuit_key,
                lambda: ctx.run_async(attempt),
                threshold=policy.circuit_threshold,
            )
        except Exception as e:
            outcome = self._failure_outcome(target, e, ctx.attempts)
        else:
            outcome = TargetOutcome(target=target, result=result)

        outcome.duration = time.perf_counter() - started
        return outcome

    def _failure_outcome(self, target: str, error: Exception, attempts: int) -> TargetOutcome:
        classified = self.classifier.classify(error, target, service=self.policy.service)
        record = build_error_record(error, target, attempts, classified)

        if classified is None:
            return TargetOutcome(target=target, record=record)

        partial = self.degradation.degrade(classified)
        return TargetOutcome(
            target=target,
            result=self.degradation.to_result(partial, target),
            record=record,
            degraded=True,
            service=classified.service if isinstance(classified, ServiceError) else None,
        )

    def _apply(self, outcome: TargetOutcome) -> None:
        job = self.job
        self.job_metrics.target_finished(outcome.duration, outcome.label)

        if outcome.record is None:
            job.add_result(outcome.result)
            logger.debug("target.succeeded", target=outcome.target)
            return

        self.error_metrics.record(outcome.record, service=outcome.service)
        self.error_metrics.log_error(
            outcome.record,
            target=outcome.target,
            attempts=outcome.record.attempts,
        )
        if outcome.degraded:
            job.add_degraded(outcome.result, outcome.record)
        else:
            job.add_failure(outcome.target, outcome.record)


__all__ = [
    "AnalysisFunction",
    "RunPolicy",
    "TargetOutcome",
    "JobRunner",
    "build_error_record",
]
