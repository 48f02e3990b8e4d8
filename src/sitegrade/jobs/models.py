"""Job state model.

A :class:`Job` is one batch submission: an ordered tuple of targets, an
opaque config passed through to the analysis function, and the results and
errors accumulated while its runner works through the targets.

Valid transition graph::

    PENDING   → RUNNING | FAILED (cancelled before it ran)
    RUNNING   → COMPLETED | FAILED
    COMPLETED → (terminal)
    FAILED    → (terminal)

The first terminal transition wins; a terminal job is never mutated again
(only removed by retention cleanup).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from sitegrade.core.errors import ErrorRecord, InvalidTransitionError, utcnow


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),  # terminal
    JobStatus.FAILED: frozenset(),  # terminal
}


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)


def compute_progress(completed: int, total: int) -> int:
    """``round(completed / total * 100)`` with halves rounded up."""
    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)


@dataclass
class Job:
    """One batch of targets and everything learned while processing it."""

    id: str
    targets: tuple[str, ...]
    config: Any = None
    status: JobStatus = JobStatus.PENDING
    submitted_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    completed_count: int = 0
    results: list[Any] = field(default_factory=list)
    errors: list[ErrorRecord] = field(default_factory=list)
    failed_targets: list[str] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.targets)

    @property
    def progress(self) -> int:
        return compute_progress(self.completed_count, self.total_count)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def last_error(self) -> ErrorRecord | None:
        return self.errors[-1] if self.errors else None

    def transition(self, target: JobStatus) -> None:
        """Move to ``target``, stamping start/finish times."""
        validate_job_transition(self.status, target)
        self.status = target
        if target is JobStatus.RUNNING:
            self.started_at = utcnow()
        elif target.is_terminal:
            self.finished_at = utcnow()

    # ── Per-target outcomes (written only by the job's runner) ───

    def add_result(self, result: Any) -> None:
        self.results.append(result)
        self.completed_count += 1

    def add_degraded(self, result: dict[str, Any], record: ErrorRecord) -> None:
        self.results.append(result)
        self.errors.append(record)
        self.completed_count += 1

    def add_failure(self, target: str, record: ErrorRecord) -> None:
        self.errors.append(record)
        if target not in self.failed_targets:
            self.failed_targets.append(target)
        self.completed_count += 1

    def fail(self, record: ErrorRecord) -> None:
        """Record a job-level error and move to FAILED."""
        self.errors.append(record)
        self.transition(JobStatus.FAILED)

    def view(self) -> JobStatusView:
        return JobStatusView(
            job_id=self.id,
            status=self.status,
            progress=self.progress,
            completed_count=self.completed_count,
            total_count=self.total_count,
            last_error=self.last_error,
            submitted_at=self.submitted_at,
            finished_at=self.finished_at,
        )


@dataclass(frozen=True)
class JobStatusView:
    """Read-only snapshot returned by ``JobScheduler.status``."""

    job_id: str
    status: JobStatus
    progress: int
    completed_count: int
    total_count: int
    last_error: ErrorRecord | None = None
    submitted_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "completed_count": self.completed_count,
            "total_count": self.total_count,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


__all__ = [
    "JobStatus",
    "JOB_VALID_TRANSITIONS",
    "validate_job_transition",
    "compute_progress",
    "Job",
    "JobStatusView",
]
