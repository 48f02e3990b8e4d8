"""Tests for JobRunner: per-target execution of a single job."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest

from sitegrade.core.classifier import ErrorClassifier
from sitegrade.core.errors import ErrorKind, JobCancelledError, ParsingError
from sitegrade.core.events import JobEventType
from sitegrade.core.events.memory import InMemoryEventBus
from sitegrade.execution.circuit_breaker import CircuitBreakerRegistry
from sitegrade.execution.degradation import DegradationPolicy
from sitegrade.execution.retry import RetryExecutor
from sitegrade.jobs.models import Job, JobStatus
from sitegrade.jobs.runner import JobRunner, RunPolicy, build_error_record
from sitegrade.observability.error_metrics import ErrorMetrics, ErrorSeverity
from sitegrade.observability.metrics import JobMetrics, MetricsRegistry

TARGETS = ("https://a.test", "https://b.test", "https://c.test")


def make_runner(
    analysis_fn: Any,
    *,
    targets: tuple[str, ...] = TARGETS,
    policy: RunPolicy | None = None,
    bus: InMemoryEventBus | None = None,
    breakers: CircuitBreakerRegistry | None = None,
    classifier: ErrorClassifier | None = None,
) -> JobRunner:
    job = Job(id="job-1", targets=targets, config={"depth": 1})
    job.transition(JobStatus.RUNNING)
    registry = MetricsRegistry()
    return JobRunner(
        job,
        analysis_fn,
        policy=policy or RunPolicy(timeout_seconds=2.0, retry_attempts=3, retry_base_delay=0.001),
        bus=bus or InMemoryEventBus(),
        breakers=breakers or CircuitBreakerRegistry(threshold=50),
        retry=RetryExecutor(jitter_ratio=0.0),
        classifier=classifier or ErrorClassifier(),
        degradation=DegradationPolicy(),
        error_metrics=ErrorMetrics(registry),
        job_metrics=JobMetrics(registry),
    )


class TestBuildErrorRecord:
    def test_classified(self):
        error = ParsingError("bad", code="INVALID_HTML")
        record = build_error_record(ValueError("bad"), "https://a.test", 2, error)
        assert record.kind is ErrorKind.PARSING
        assert record.code == "INVALID_HTML"
        assert record.attempts == 2
        assert record.suggested_actions
        assert "Suggested actions" in record.user_message

    def test_unclassified(self):
        record = build_error_record(JobCancelledError("j"), None, 0)
        assert record.kind is None
        assert record.code == "JOB_CANCELLED"
        assert record.message == "Job cancelled by user"


class TestRun:
    """Tests for JobRunner.run."""

    @pytest.mark.asyncio
    async def test_all_succeed(self, scripted, recorder):
        """Test results are stored in target order and progress reaches 100."""
        bus = InMemoryEventBus()
        bus.on("*", recorder)
        analysis = scripted()
        runner = make_runner(analysis, bus=bus)

        await runner.run()

        job = runner.job
        assert job.status is JobStatus.COMPLETED
        assert [r["url"] for r in job.results] == list(TARGETS)
        assert analysis.calls == list(TARGETS)
        progress = recorder.of(JobEventType.PROGRESS)
        assert [e.payload["progress"] for e in progress] == [33, 67, 100]
        assert [e.payload["current_target"] for e in progress] == list(TARGETS)
        assert recorder.kinds() == ["progress", "progress", "progress", "completed"]

    @pytest.mark.asyncio
    async def test_config_passed_through(self):
        seen: list[Any] = []

        async def analysis(target: str, config: Any) -> dict:
            seen.append(config)
            return {"url": target}

        runner = make_runner(analysis, targets=("https://a.test",))
        await runner.run()
        assert seen == [{"depth": 1}]

    @pytest.mark.asyncio
    async def test_sync_analysis_function(self):
        """Test a plain function runs in a worker thread."""

        def analysis(target: str, config: Any) -> dict:
            time.sleep(0.001)
            return {"url": target, "overall_score": 70}

        runner = make_runner(analysis)
        await runner.run()
        assert runner.job.status is JobStatus.COMPLETED
        assert len(runner.job.results) == 3

    @pytest.mark.asyncio
    async def test_dns_failure_degrades_one_target(self, scripted):
        """Test an ENOTFOUND on one target leaves the job completed with a partial slot."""
        analysis = scripted({"https://b.test": Exception("getaddrinfo ENOTFOUND b.test")})
        runner = make_runner(analysis)

        await runner.run()

        job = runner.job
        assert job.status is JobStatus.COMPLETED
        assert job.completed_count == 3
        assert len([r for r in job.results if not r.get("degraded")]) == 2
        degraded = [r for r in job.results if r.get("degraded")]
        assert degraded[0]["url"] == "https://b.test"
        assert degraded[0]["overall_score"] == 0
        assert len(job.errors) == 1
        assert job.errors[0].code == "DNS_FAILURE"
        assert job.errors[0].kind is ErrorKind.NETWORK
        assert job.errors[0].attempts == 3
        assert analysis.calls.count("https://b.test") == 3

    @pytest.mark.asyncio
    async def test_not_found_attempted_once(self, scripted):
        """Test a 404 is recorded after exactly one attempt."""
        analysis = scripted({"https://a.test": Exception("HTTP 404 Not Found")})
        runner = make_runner(analysis, targets=("https://a.test",))

        await runner.run()

        record = runner.job.errors[0]
        assert record.code == "HTTP_404"
        assert record.attempts == 1
        assert analysis.calls == ["https://a.test"]

    @pytest.mark.asyncio
    async def test_unclassified_failure(self, scripted):
        """Test an unknown failure is recorded without a result slot."""
        analysis = scripted({"https://a.test": RuntimeError("weird")})
        runner = make_runner(analysis, targets=("https://a.test", "https://b.test"))

        await runner.run()

        job = runner.job
        assert job.status is JobStatus.COMPLETED
        assert [r["url"] for r in job.results] == ["https://b.test"]
        assert job.failed_targets == ["https://a.test"]
        assert job.errors[0].kind is None
        assert job.errors[0].code == "UNKNOWN_ERROR"

    @pytest.mark.asyncio
    async def test_timeout_per_attempt(self):
        """Test a slow target is cut off and degraded as a TIMEOUT."""

        async def slow(target: str, config: Any) -> dict:
            await asyncio.sleep(5)
            return {"url": target}

        policy = RunPolicy(timeout_seconds=0.05, retry_attempts=2, retry_base_delay=0.001)
        runner = make_runner(slow, targets=("https://slow.test",), policy=policy)

        await runner.run()

        job = runner.job
        record = job.errors[0]
        assert record.code == "TIMEOUT"
        assert record.attempts == 2
        assert job.results[0]["technical_details"]["status_code"] == 408

    @pytest.mark.asyncio
    async def test_timeout_retried_whatever_the_url(self):
        """Test words in the target URL do not stop timeouts being retried."""
        calls: list[str] = []

        async def slow(target: str, config: Any) -> dict:
            calls.append(target)
            await asyncio.sleep(5)
            return {"url": target}

        targets = (
            "https://a.test/plain",
            "https://a.test/404-guide",
            "https://a.test/form-validation",
            "https://a.test/authentication-help",
        )
        policy = RunPolicy(timeout_seconds=0.02, retry_attempts=3, retry_base_delay=0.001)
        runner = make_runner(slow, targets=targets, policy=policy)

        await runner.run()

        job = runner.job
        assert job.status is JobStatus.COMPLETED
        assert [e.code for e in job.errors] == ["TIMEOUT"] * 4
        assert [e.attempts for e in job.errors] == [3] * 4
        for target in targets:
            assert calls.count(target) == 3
        for record in job.errors:
            assert runner.error_metrics.severity(record) is not ErrorSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_circuit_opens_across_targets(self, scripted):
        """Test later targets fail fast once the circuit opens."""
        targets = tuple(f"https://{c}.test" for c in "abcd")
        analysis = scripted({t: ConnectionError("reset") for t in targets})
        policy = RunPolicy(
            timeout_seconds=1.0,
            retry_attempts=1,
            retry_base_delay=0.001,
            circuit_key="probe",
            circuit_threshold=2,
        )
        breakers = CircuitBreakerRegistry(threshold=2)
        runner = make_runner(analysis, targets=targets, policy=policy, breakers=breakers)

        await runner.run()

        job = runner.job
        assert analysis.calls == list(targets[:2])
        assert [e.code for e in job.errors] == [
            "NETWORK_ERROR",
            "NETWORK_ERROR",
            "CIRCUIT_OPEN",
            "CIRCUIT_OPEN",
        ]
        assert job.errors[2].attempts == 0
        assert job.failed_targets == list(targets[2:])
        assert job.status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_all_targets_failing_still_completes(self, scripted):
        analysis = scripted({t: Exception("could not parse page") for t in TARGETS})
        runner = make_runner(analysis)
        await runner.run()
        assert runner.job.status is JobStatus.COMPLETED
        assert all(r["overall_score"] == 25 for r in runner.job.results)

    @pytest.mark.asyncio
    async def test_error_outside_target_handling_fails_job(self, scripted, recorder):
        """Test an exception escaping the target loop fails the job."""

        class BrokenClassifier(ErrorClassifier):
            def classify(self, error, target=None, service=None):
                raise RuntimeError("classifier broke")

        bus = InMemoryEventBus()
        bus.on("*", recorder)
        analysis = scripted({"https://b.test": Exception("could not parse page")})
        runner = make_runner(analysis, bus=bus, classifier=BrokenClassifier())

        await runner.run()

        job = runner.job
        assert job.status is JobStatus.FAILED
        assert job.finished_at is not None
        assert job.completed_count == 1
        assert "https://c.test" not in analysis.calls
        assert job.last_error.message == "classifier broke"
        assert job.last_error.kind is None
        assert recorder.kinds() == ["progress", "failed"]
        failed = recorder.of(JobEventType.FAILED)
        assert failed[0].payload["error"]["message"] == "classifier broke"
        assert recorder.of(JobEventType.COMPLETED) == []

    @pytest.mark.asyncio
    async def test_discards_result_after_cancel(self, gate, recorder):
        """Test a job made terminal mid-call keeps no further results."""
        bus = InMemoryEventBus()
        bus.on("*", recorder)
        runner = make_runner(gate, bus=bus)

        task = asyncio.create_task(runner.run())
        await gate.entered.wait()
        runner.job.fail(build_error_record(JobCancelledError(runner.job.id), None, 0))
        gate.release.set()
        await task

        assert runner.job.status is JobStatus.FAILED
        assert runner.job.results == []
        assert runner.job.completed_count == 0
        assert gate.calls == ["https://a.test"]
        assert recorder.events == []
