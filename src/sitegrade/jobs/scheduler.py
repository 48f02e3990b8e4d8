"""Job scheduler: bounded admission of batch jobs.

WHY
───
Any number of batches may be submitted, but only ``max_concurrent_jobs``
may analyse at once.  Excess jobs wait in FIFO order and are admitted
automatically whenever a running job reaches a terminal state.

ARCHITECTURE
────────────
::

    submit(targets, config) ──► Job(pending) ──► pending deque
                                                     │
                      _admit()  (after every submit and every terminal state)
                                                     │
                          running < max_concurrent_jobs?
                                                     ▼
                            Job(running) + asyncio task: JobRunner.run()
                                                     │
                                   completed / failed / cancelled
                                                     │
                                                _admit() again

Owned state (one instance per scheduler, shared by its runners):
    CircuitBreakerRegistry, ErrorMetrics, MetricsRegistry, InMemoryEventBus

Example::

    scheduler = JobScheduler(analyze_url, settings)
    job_id = scheduler.submit(["https://example.com/", "https://example.com/about"])
    view = await scheduler.wait(job_id)
    results = scheduler.results(job_id)
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections import deque
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import Any

from sitegrade.core.classifier import ErrorClassifier
from sitegrade.core.errors import (
    JobCancelledError,
    JobNotCompletedError,
    JobNotFoundError,
    utcnow,
)
from sitegrade.core.events import EventBus, EventHandler, JobEvent, JobEventType
from sitegrade.core.events.memory import InMemoryEventBus
from sitegrade.core.logging import get_logger
from sitegrade.core.settings import OrchestratorSettings
from sitegrade.core.troubleshooting import TroubleshootingGuide, get_guide
from sitegrade.core.troubleshooting import user_friendly_message as _user_friendly_message
from sitegrade.execution.circuit_breaker import CircuitBreakerRegistry
from sitegrade.execution.degradation import DegradationPolicy, PartialCreditTable
from sitegrade.execution.retry import RetryExecutor
from sitegrade.execution.timeout import run_with_timeout_async
from sitegrade.jobs.models import Job, JobStatus, JobStatusView
from sitegrade.jobs.runner import AnalysisFunction, JobRunner, RunPolicy, build_error_record
from sitegrade.observability.error_metrics import ErrorMetrics
from sitegrade.observability.metrics import JobMetrics, MetricsRegistry

logger = get_logger(__name__)


def _operation_name(fn: Callable[..., Any]) -> str:
    """Stable circuit key for an analysis function."""
    name = getattr(fn, "__qualname__", None)
    if name is None:
        name = getattr(getattr(fn, "func", None), "__qualname__", None)
    return name or type(fn).__name__


class JobScheduler:
    """Accepts batches, admits up to N at a time, and reports on them.

    ``submit`` and ``cancel`` are synchronous but must be called while an
    event loop is running; runners are launched as tasks on that loop.
    """

    def __init__(
        self,
        analysis_fn: AnalysisFunction,
        settings: OrchestratorSettings | None = None,
        *,
        bus: EventBus | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        metrics_registry: MetricsRegistry | None = None,
        error_metrics: ErrorMetrics | None = None,
        classifier: ErrorClassifier | None = None,
        degradation: DegradationPolicy | None = None,
        circuit_key: str | None = None,
        service: str | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.settings = settings or OrchestratorSettings()
        s = self.settings

        self.analysis_fn = analysis_fn
        self.max_concurrent_jobs = s.max_concurrent_jobs
        self.bus: EventBus = bus or InMemoryEventBus()
        self.breakers = breakers or CircuitBreakerRegistry(
            threshold=s.circuit_breaker_threshold,
            window_seconds=s.circuit_breaker_window_seconds,
        )
        self.metrics_registry = metrics_registry or MetricsRegistry()
        self.error_metrics = error_metrics or ErrorMetrics(
            self.metrics_registry,
            alert_rate_threshold=s.alert_error_rate_threshold,
            window_seconds=s.error_rate_window_seconds,
        )
        self.job_metrics = JobMetrics(self.metrics_registry)
        self.classifier = classifier or ErrorClassifier()
        self.degradation = degradation or DegradationPolicy(
            PartialCreditTable(
                network=s.partial_credit_network,
                parsing=s.partial_credit_parsing,
                service=s.partial_credit_service,
            )
        )
        self.retry = RetryExecutor(jitter_ratio=s.retry_jitter_ratio)
        self.policy = RunPolicy(
            timeout_seconds=s.per_target_timeout_seconds,
            retry_attempts=s.retry_attempts,
            retry_base_delay=s.retry_base_delay_seconds,
            circuit_key=circuit_key or _operation_name(analysis_fn),
            circuit_threshold=s.circuit_breaker_threshold,
            service=service,
        )
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

        self._jobs: dict[str, Job] = {}
        self._pending: deque[str] = deque()
        self._done: dict[str, asyncio.Event] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = threading.RLock()

    # ── Public API ───────────────────────────────────────────────

    def submit(self, targets: Sequence[str], config: Any = None) -> str:
        """Create a pending job and return its id without waiting on it.

        Raises:
            ValueError: If ``targets`` is empty or holds a non-string
            RuntimeError: If no event loop is running
        """
        if isinstance(targets, str):
            raise ValueError("targets must be a sequence of strings, not a single string")
        targets = tuple(targets)
        if not targets:
            raise ValueError("targets must not be empty")
        for target in targets:
            if not isinstance(target, str) or not target:
                raise ValueError(f"invalid target: {target!r}")

        asyncio.get_running_loop()

        with self._lock:
            job_id = self._id_factory()
            while job_id in self._jobs:
                job_id = self._id_factory()
            job = Job(id=job_id, targets=targets, config=config)
            self._jobs[job_id] = job
            self._pending.append(job_id)
            self._done[job_id] = asyncio.Event()

        logger.info("job.submitted", job_id=job_id, targets=len(targets))
        self._admit()
        return job_id

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def status(self, job_id: str) -> JobStatusView:
        """Snapshot of a job's state.

        Raises:
            JobNotFoundError: Unknown id
        """
        return self.get_job(job_id).view()

    def results(self, job_id: str) -> list[Any]:
        """Ordered results of a completed job.

        Raises:
            JobNotFoundError: Unknown id
            JobNotCompletedError: The job is not ``completed``
        """
        job = self.get_job(job_id)
        if job.status is not JobStatus.COMPLETED:
            raise JobNotCompletedError(job_id, job.status.value)
        return list(job.results)

    def cancel(self, job_id: str) -> bool:
        """Cancel a pending or running job.

        The job moves to ``failed`` with a "cancelled" error and the next
        pending job is admitted.  An in-flight analysis call is not
        interrupted; its outcome is discarded.  Returns True for every
        known job, including ones that were already terminal (no-op).

        Raises:
            JobNotFoundError: Unknown id
        """
        job = self.get_job(job_id)

        with self._lock:
            if job.is_terminal:
                logger.debug("job.cancel_noop", job_id=job_id, status=job.status.value)
                return True

            was_running = job.status is JobStatus.RUNNING
            error = JobCancelledError(job_id)
            record = build_error_record(error, target=None, attempts=0)
            job.fail(record)
            try:
                self._pending.remove(job_id)
            except ValueError:
                pass

        self.job_metrics.job_finished(JobStatus.FAILED.value, was_running=was_running)
        logger.info("job.cancelled", job_id=job_id, was_running=was_running)
        self.bus.publish(
            JobEvent(
                event_type=JobEventType.CANCELLED,
                job_id=job_id,
                payload={"error": record.to_dict(), "was_running": was_running},
            )
        )
        self._mark_done(job_id)
        self._admit()
        return True

    def on(self, event: JobEventType | str, handler: EventHandler) -> str:
        """Subscribe to job events; ``"*"`` receives all of them."""
        return self.bus.on(event, handler)

    def off(self, subscription_id: str) -> None:
        self.bus.off(subscription_id)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            jobs = list(self._jobs.values())
        counts = {status: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status] += 1
        return {
            "total_jobs": len(jobs),
            "running_jobs": counts[JobStatus.RUNNING],
            "pending_jobs": counts[JobStatus.PENDING],
            "completed_jobs": counts[JobStatus.COMPLETED],
            "failed_jobs": counts[JobStatus.FAILED],
            "error_metrics": self.error_metrics.snapshot(),
            "circuit_breakers": self.breakers.snapshot(),
        }

    async def wait(self, job_id: str, timeout: float | None = None) -> JobStatusView:
        """Wait for a job to reach a terminal state.

        Raises:
            JobNotFoundError: Unknown id
            TimeoutExpired: ``timeout`` elapsed first
        """
        self.get_job(job_id)
        event = self._done.get(job_id)
        if event is not None:
            if timeout is None:
                await event.wait()
            else:
                await run_with_timeout_async(event.wait(), timeout, operation=f"wait:{job_id}")
        return self.status(job_id)

    async def join(self) -> None:
        """Wait until every launched runner has returned."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cleanup_old_jobs(self, max_age_seconds: float | None = None) -> int:
        """Remove terminal jobs older than ``max_age_seconds``.

        Age is measured from the job's finish time (submission time when it
        never finished).  Defaults to the configured retention.
        """
        if max_age_seconds is None:
            max_age_seconds = self.settings.job_max_age_seconds
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)

        removed = 0
        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if not job.is_terminal:
                    continue
                if (job.finished_at or job.submitted_at) < cutoff:
                    del self._jobs[job_id]
                    self._done.pop(job_id, None)
                    removed += 1

        if removed:
            logger.info("jobs.cleaned_up", removed=removed, max_age_seconds=max_age_seconds)
        return removed

    def troubleshooting(self, code: str) -> TroubleshootingGuide | None:
        return get_guide(code)

    def user_friendly_message(self, error: BaseException) -> str:
        return _user_friendly_message(error)

    # ── Admission ────────────────────────────────────────────────

    def _running_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status is JobStatus.RUNNING)

    def _admit(self) -> None:
        """Promote the oldest pending jobs while capacity is free."""
        while True:
            with self._lock:
                if not self._pending or self._running_count() >= self.max_concurrent_jobs:
                    return
                job = self._jobs[self._pending.popleft()]
                job.transition(JobStatus.RUNNING)

            self.job_metrics.job_started()
            logger.info("job.started", job_id=job.id, targets=job.total_count)
            self.bus.publish(
                JobEvent(
                    event_type=JobEventType.STARTED,
                    job_id=job.id,
                    payload={"total_count": job.total_count},
                )
            )

            runner = JobRunner(
                job,
                self.analysis_fn,
                policy=self.policy,
                bus=self.bus,
                breakers=self.breakers,
                retry=self.retry,
                classifier=self.classifier,
                degradation=self.degradation,
                error_metrics=self.error_metrics,
                job_metrics=self.job_metrics,
            )
            task = asyncio.get_running_loop().create_task(
                self._run(runner), name=f"sitegrade-job-{job.id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, runner: JobRunner) -> None:
        try:
            await runner.run()
        finally:
            job = runner.job
            if job.is_terminal:
                self._mark_done(job.id)
            self._admit()

    def _mark_done(self, job_id: str) -> None:
        event = self._done.get(job_id)
        if event is not None:
            event.set()


__all__ = ["JobScheduler"]
