"""Tests for the error taxonomy and ErrorRecord."""

from __future__ import annotations

from sitegrade.core.errors import (
    CircuitOpenError,
    ErrorKind,
    ErrorRecord,
    InvalidTransitionError,
    JobCancelledError,
    JobNotCompletedError,
    JobNotFoundError,
    NetworkError,
    OrchestratorError,
    ParsingError,
    ServiceError,
    error_code,
)


class TestAnalysisErrors:
    """Tests for the three classified variants."""

    def test_default_codes(self):
        """Test each variant carries its default code and kind."""
        assert NetworkError("x").code == "NETWORK_ERROR"
        assert NetworkError("x").kind is ErrorKind.NETWORK
        assert ParsingError("x").code == "PARSING_ERROR"
        assert ParsingError("x").kind is ErrorKind.PARSING
        assert ServiceError("x", service="svc").code == "API_ERROR"
        assert ServiceError("x", service="svc").kind is ErrorKind.SERVICE

    def test_retryable_by_default(self):
        """Test errors are retryable unless flagged otherwise."""
        assert NetworkError("x").retryable is True
        assert NetworkError("x", retryable=False).retryable is False

    def test_cause_is_chained(self):
        """Test the original exception is kept as __cause__."""
        original = OSError("boom")
        error = NetworkError("wrapped", cause=original)
        assert error.__cause__ is original
        assert error.to_dict()["cause"] == "boom"

    def test_to_dict(self):
        """Test serialisation includes optional fields only when set."""
        d = NetworkError("timed out", code="TIMEOUT", target="https://a.test", status_code=408).to_dict()
        assert d["error_type"] == "NetworkError"
        assert d["kind"] == "network"
        assert d["code"] == "TIMEOUT"
        assert d["target"] == "https://a.test"
        assert d["status_code"] == 408
        assert "cause" not in d

    def test_parsing_element(self):
        """Test ParsingError reports the element that failed."""
        d = ParsingError("missing title", element="title").to_dict()
        assert d["element"] == "title"

    def test_service_fields(self):
        """Test ServiceError reports service and retry_after."""
        d = ServiceError("slow down", service="pagespeed-insights", retry_after=30).to_dict()
        assert d["service"] == "pagespeed-insights"
        assert d["retry_after"] == 30


class TestOrchestratorErrors:
    def test_circuit_open(self):
        error = CircuitOpenError("analyze_url", 3)
        assert error.code == "CIRCUIT_OPEN"
        assert "analyze_url" in str(error)
        assert "(3)" in str(error)

    def test_job_cancelled_message(self):
        assert str(JobCancelledError("abc")) == "Job cancelled by user"
        assert JobCancelledError("abc").code == "JOB_CANCELLED"

    def test_not_found_is_key_error(self):
        error = JobNotFoundError("missing")
        assert isinstance(error, KeyError)
        assert isinstance(error, OrchestratorError)
        assert str(error) == "Job not found: missing"

    def test_not_completed(self):
        error = JobNotCompletedError("j1", "running")
        assert error.status == "running"
        assert "running" in str(error)

    def test_invalid_transition_is_value_error(self):
        error = InvalidTransitionError("completed", "running")
        assert isinstance(error, ValueError)
        assert error.current == "completed"


class TestErrorRecord:
    def test_to_dict(self):
        record = ErrorRecord(
            kind=ErrorKind.NETWORK,
            code="DNS_FAILURE",
            message="getaddrinfo ENOTFOUND",
            target="https://b.test",
            attempts=3,
            suggested_actions=("Check the domain",),
        )
        d = record.to_dict()
        assert d["kind"] == "network"
        assert d["attempts"] == 3
        assert d["suggested_actions"] == ["Check the domain"]
        assert d["timestamp"].endswith("+00:00")

    def test_unclassified_kind(self):
        record = ErrorRecord(kind=None, code="CIRCUIT_OPEN", message="open")
        assert record.to_dict()["kind"] is None


class TestErrorCode:
    def test_uses_code_attribute(self):
        assert error_code(NetworkError("x", code="TIMEOUT")) == "TIMEOUT"
        assert error_code(CircuitOpenError("k", 1)) == "CIRCUIT_OPEN"

    def test_unknown(self):
        assert error_code(RuntimeError("x")) == "UNKNOWN_ERROR"
