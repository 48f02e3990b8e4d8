"""Tests for JobScheduler: admission, cancellation and queries."""

from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta

import pytest

from sitegrade.core.errors import JobNotCompletedError, JobNotFoundError
from sitegrade.core.events import JobEventType
from sitegrade.execution.timeout import TimeoutExpired
from sitegrade.jobs.models import JobStatus
from sitegrade.jobs.scheduler import JobScheduler

URLS = ["https://a.test", "https://b.test", "https://c.test"]


def sequential_ids():
    counter = itertools.count(1)
    return lambda: f"job-{next(counter)}"


class TestSubmit:
    """Tests for JobScheduler.submit validation."""

    @pytest.mark.asyncio
    async def test_returns_id_immediately(self, scripted, fast_settings):
        scheduler = JobScheduler(scripted(), fast_settings, id_factory=sequential_ids())
        job_id = scheduler.submit(URLS)
        assert job_id == "job-1"
        assert scheduler.status(job_id).total_count == 3
        await scheduler.join()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("targets", [[], "https://a.test", ["https://a.test", ""], [None]])
    async def test_rejects_invalid_targets(self, scripted, fast_settings, targets):
        scheduler = JobScheduler(scripted(), fast_settings)
        with pytest.raises(ValueError):
            scheduler.submit(targets)
        assert scheduler.stats()["total_jobs"] == 0

    def test_requires_running_loop(self, scripted, fast_settings):
        scheduler = JobScheduler(scripted(), fast_settings)
        with pytest.raises(RuntimeError):
            scheduler.submit(URLS)

    @pytest.mark.asyncio
    async def test_unique_ids(self, scripted, fast_settings):
        ids = iter(["dup", "dup", "other"])
        scheduler = JobScheduler(scripted(), fast_settings, id_factory=lambda: next(ids))
        assert scheduler.submit(URLS) == "dup"
        assert scheduler.submit(URLS) == "other"
        await scheduler.join()


class TestLifecycle:
    """Tests for end-to-end job processing."""

    @pytest.mark.asyncio
    async def test_completes_with_results(self, scripted, fast_settings, recorder):
        """Test a job runs to completion and reports progress 100."""
        scheduler = JobScheduler(scripted(), fast_settings)
        scheduler.on("*", recorder)

        job_id = scheduler.submit(URLS)
        view = await scheduler.wait(job_id)

        assert view.status is JobStatus.COMPLETED
        assert view.progress == 100
        assert [r["url"] for r in scheduler.results(job_id)] == URLS
        assert recorder.kinds(job_id) == ["started", "progress", "progress", "progress", "completed"]
        assert recorder.of(JobEventType.STARTED, job_id)[0].payload == {"total_count": 3}

    @pytest.mark.asyncio
    async def test_dns_failure_scenario(self, scripted, fast_settings):
        """Test ENOTFOUND on the second target still completes the job."""
        analysis = scripted({"https://b.test": Exception("getaddrinfo ENOTFOUND b.test")})
        scheduler = JobScheduler(analysis, fast_settings)

        job_id = scheduler.submit(URLS)
        view = await scheduler.wait(job_id)

        results = scheduler.results(job_id)
        assert view.status is JobStatus.COMPLETED
        assert view.progress == 100
        assert len([r for r in results if not r.get("degraded")]) == 2
        assert len(results) == 3
        assert view.last_error.code == "DNS_FAILURE"
        assert len(scheduler.get_job(job_id).errors) == 1

    @pytest.mark.asyncio
    async def test_results_require_completion(self, gate, fast_settings):
        scheduler = JobScheduler(gate, fast_settings)
        job_id = scheduler.submit(URLS)
        await gate.entered.wait()
        with pytest.raises(JobNotCompletedError):
            scheduler.results(job_id)
        gate.release.set()
        await scheduler.wait(job_id)
        assert len(scheduler.results(job_id)) == 3

    @pytest.mark.asyncio
    async def test_unknown_job(self, scripted, fast_settings):
        scheduler = JobScheduler(scripted(), fast_settings)
        with pytest.raises(JobNotFoundError):
            scheduler.status("nope")
        with pytest.raises(JobNotFoundError):
            scheduler.results("nope")
        with pytest.raises(JobNotFoundError):
            scheduler.cancel("nope")
        with pytest.raises(JobNotFoundError):
            await scheduler.wait("nope")

    @pytest.mark.asyncio
    async def test_wait_timeout(self, gate, fast_settings):
        scheduler = JobScheduler(gate, fast_settings)
        job_id = scheduler.submit(URLS)
        with pytest.raises(TimeoutExpired):
            await scheduler.wait(job_id, timeout=0.05)
        gate.release.set()
        await scheduler.join()


class TestAdmission:
    """Tests for the concurrency cap and FIFO admission."""

    @pytest.mark.asyncio
    async def test_excess_job_stays_pending(self, gate, fast_settings):
        """Test job B waits for job A when only one job may run."""
        settings = fast_settings.model_copy(update={"max_concurrent_jobs": 1})
        scheduler = JobScheduler(gate, settings)

        job_a = scheduler.submit(["https://a.test"])
        job_b = scheduler.submit(["https://b.test"])
        await gate.entered.wait()

        assert scheduler.status(job_a).status is JobStatus.RUNNING
        assert scheduler.status(job_b).status is JobStatus.PENDING
        assert scheduler.stats()["pending_jobs"] == 1

        gate.release.set()
        assert (await scheduler.wait(job_b)).status is JobStatus.COMPLETED
        assert gate.calls == ["https://a.test", "https://b.test"]

    @pytest.mark.asyncio
    async def test_fifo_order(self, scripted, fast_settings, recorder):
        settings = fast_settings.model_copy(update={"max_concurrent_jobs": 1})
        scheduler = JobScheduler(scripted(delay=0.001), settings)
        scheduler.on(JobEventType.STARTED, recorder)

        ids = [scheduler.submit([f"https://{n}.test"]) for n in range(4)]
        await scheduler.join()

        assert [e.job_id for e in recorder.events] == ids
        assert all(scheduler.status(i).status is JobStatus.COMPLETED for i in ids)

    @pytest.mark.asyncio
    async def test_running_never_exceeds_cap(self, scripted, fast_settings):
        settings = fast_settings.model_copy(update={"max_concurrent_jobs": 2})
        scheduler = JobScheduler(scripted(delay=0.005), settings)
        peak = 0

        def track(event):
            nonlocal peak
            peak = max(peak, scheduler.stats()["running_jobs"])

        scheduler.on("*", track)
        for n in range(5):
            scheduler.submit([f"https://{n}.test", f"https://{n}.test/about"])
        await scheduler.join()

        assert peak == 2
        assert scheduler.stats()["completed_jobs"] == 5


class TestCancel:
    """Tests for JobScheduler.cancel."""

    @pytest.mark.asyncio
    async def test_cancel_running(self, gate, fast_settings, recorder):
        """Test a cancelled running job fails and emits no further progress."""
        scheduler = JobScheduler(gate, fast_settings)
        scheduler.on("*", recorder)
        job_id = scheduler.submit(URLS)
        await gate.entered.wait()

        assert scheduler.cancel(job_id) is True

        view = scheduler.status(job_id)
        assert view.status is JobStatus.FAILED
        assert view.last_error.message == "Job cancelled by user"
        assert view.last_error.code == "JOB_CANCELLED"
        assert (await scheduler.wait(job_id)).status is JobStatus.FAILED

        gate.release.set()
        await scheduler.join()

        assert recorder.of(JobEventType.PROGRESS, job_id) == []
        assert recorder.kinds(job_id) == ["started", "cancelled"]
        assert recorder.of(JobEventType.CANCELLED, job_id)[0].payload["was_running"] is True
        assert scheduler.get_job(job_id).results == []

    @pytest.mark.asyncio
    async def test_cancel_pending(self, gate, fast_settings, recorder):
        settings = fast_settings.model_copy(update={"max_concurrent_jobs": 1})
        scheduler = JobScheduler(gate, settings)
        scheduler.on(JobEventType.CANCELLED, recorder)
        job_a = scheduler.submit(["https://a.test"])
        job_b = scheduler.submit(["https://b.test"])

        assert scheduler.cancel(job_b) is True
        assert scheduler.status(job_b).status is JobStatus.FAILED
        assert recorder.events[0].payload["was_running"] is False

        gate.release.set()
        await scheduler.wait(job_a)
        await scheduler.join()
        assert gate.calls == ["https://a.test"]

    @pytest.mark.asyncio
    async def test_cancel_admits_next(self, gate, fast_settings):
        """Test cancelling the running job frees its slot immediately."""
        settings = fast_settings.model_copy(update={"max_concurrent_jobs": 1})
        scheduler = JobScheduler(gate, settings)
        job_a = scheduler.submit(["https://a.test"])
        job_b = scheduler.submit(["https://b.test"])
        await gate.entered.wait()

        scheduler.cancel(job_a)
        assert scheduler.status(job_b).status is JobStatus.RUNNING

        gate.release.set()
        assert (await scheduler.wait(job_b)).status is JobStatus.COMPLETED
        await scheduler.join()

    @pytest.mark.asyncio
    async def test_cancel_terminal_is_noop(self, scripted, fast_settings, recorder):
        scheduler = JobScheduler(scripted(), fast_settings)
        scheduler.on(JobEventType.CANCELLED, recorder)
        job_id = scheduler.submit(URLS)
        await scheduler.wait(job_id)

        assert scheduler.cancel(job_id) is True
        assert scheduler.status(job_id).status is JobStatus.COMPLETED
        assert recorder.events == []


class TestCircuitBreaking:
    @pytest.mark.asyncio
    async def test_circuit_shared_across_jobs(self, scripted, fast_settings):
        """Test failures in one job open the circuit for the next."""
        settings = fast_settings.model_copy(
            update={"circuit_breaker_threshold": 2, "retry_attempts": 1}
        )
        analysis = scripted({u: ConnectionError("reset") for u in URLS})
        scheduler = JobScheduler(analysis, settings, circuit_key="probe")

        first = scheduler.submit(URLS[:2])
        await scheduler.wait(first)
        second = scheduler.submit(URLS[2:])
        await scheduler.wait(second)

        assert scheduler.get_job(second).errors[0].code == "CIRCUIT_OPEN"
        assert analysis.calls == URLS[:2]
        assert scheduler.stats()["circuit_breakers"]["probe"]["open"] is True


class TestStatsAndCleanup:
    @pytest.mark.asyncio
    async def test_stats(self, scripted, fast_settings):
        analysis = scripted({"https://b.test": Exception("could not parse page")})
        scheduler = JobScheduler(analysis, fast_settings)
        job_id = scheduler.submit(URLS)
        await scheduler.wait(job_id)

        stats = scheduler.stats()
        assert stats["total_jobs"] == 1
        assert stats["completed_jobs"] == 1
        assert stats["running_jobs"] == 0
        assert stats["error_metrics"]["errors_by_type"] == {"parsing": 1}

    @pytest.mark.asyncio
    async def test_cleanup_old_jobs(self, gate, fast_settings):
        """Test only terminal jobs past the retention age are removed."""
        scheduler = JobScheduler(gate, fast_settings)
        old = scheduler.submit(["https://a.test"])
        gate.release.set()
        await scheduler.wait(old)
        scheduler.get_job(old).finished_at -= timedelta(hours=2)

        gate.release.clear()
        active = scheduler.submit(["https://b.test"])
        await asyncio.sleep(0)

        assert scheduler.cleanup_old_jobs(max_age_seconds=3600) == 1
        with pytest.raises(JobNotFoundError):
            scheduler.status(old)
        assert scheduler.status(active).status is JobStatus.RUNNING

        gate.release.set()
        await scheduler.join()
        assert scheduler.cleanup_old_jobs() == 0


class TestHelpers:
    def test_troubleshooting(self, scripted, fast_settings):
        scheduler = JobScheduler(scripted(), fast_settings)
        assert scheduler.troubleshooting("DNS_FAILURE").error_type == "DNS_FAILURE"
        assert scheduler.troubleshooting("NOPE") is None

    def test_user_friendly_message(self, scripted, fast_settings):
        scheduler = JobScheduler(scripted(), fast_settings)
        assert "unexpected error" in scheduler.user_friendly_message(RuntimeError("x"))

    def test_default_circuit_key(self, fast_settings):
        async def analyze_url(target, config):
            return {}

        scheduler = JobScheduler(analyze_url, fast_settings)
        assert scheduler.policy.circuit_key.endswith("analyze_url")
