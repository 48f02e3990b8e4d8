"""Error classifier: raw exceptions to the closed error taxonomy.

WHY
───
Analysis functions fail in many shapes: ``httpx`` exceptions, ``OSError``
from the resolver, parser ``ValueError``s, plain ``Exception("...")`` from
third-party clients.  Retry, degradation, metrics and troubleshooting all
need one answer to "what kind of failure was this?".  The classifier is the
only place that inspects exception types and message text; everything
downstream matches on :class:`~sitegrade.core.errors.ErrorKind`.

RULES (first match wins)
────────────────────────
::

    already AnalysisError            → unchanged (target filled in)
    OrchestratorError                → None (circuit open, cancellation)
    timeout                          → NetworkError  TIMEOUT (408)
    ENOTFOUND / getaddrinfo          → NetworkError  DNS_FAILURE
    ECONNREFUSED                     → NetworkError  CONNECTION_REFUSED
    attributed to external service   → ServiceError  RATE_LIMITED (429)
                                                     SERVICE_UNAVAILABLE (503)
                                                     AUTHENTICATION_ERROR (401/403)
                                                     API_ERROR
    "rate limit" / "service unavailable" → ServiceError (service "external")
    HTTP status >= 400               → NetworkError  HTTP_<code>
    "invalid html"                   → ParsingError  INVALID_HTML
    "missing"                        → ParsingError  MISSING_ELEMENT
    "parse" / "malformed"            → ParsingError  PARSING_ERROR
    other transport failure          → NetworkError  NETWORK_ERROR
    anything else                    → None (unclassified)
"""

from __future__ import annotations

import re
import socket

import httpx

from sitegrade.core.errors import (
    AnalysisError,
    NetworkError,
    OrchestratorError,
    ParsingError,
    ServiceError,
)

_STATUS_PATTERNS = (
    re.compile(r"\bHTTP[ _/]?(\d{3})\b", re.IGNORECASE),
    re.compile(r"\bstatus(?: code)?[ :=]+(\d{3})\b", re.IGNORECASE),
    re.compile(r"'(\d{3}) [A-Za-z]"),
)

_DNS_MARKERS = ("enotfound", "getaddrinfo", "name or service not known", "nodename nor servname")
_REFUSED_MARKERS = ("econnrefused", "connection refused")
_TIMEOUT_MARKERS = ("timeout", "timed out")
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests")
_UNAVAILABLE_MARKERS = ("service unavailable",)
_PARSE_MARKERS = ("parse", "parsing", "malformed")


def extract_status_code(error: BaseException) -> int | None:
    """Best-effort HTTP status code carried by an exception."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value

    message = str(error)
    for pattern in _STATUS_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1))
    return None


def _service_code(status: int | None) -> str:
    if status == 429:
        return "RATE_LIMITED"
    if status == 503:
        return "SERVICE_UNAVAILABLE"
    if status in (401, 403):
        return "AUTHENTICATION_ERROR"
    return "API_ERROR"


class ErrorClassifier:
    """Maps raw exceptions to Network/Parsing/Service errors.

    Stateless; a single instance is shared by every JobRunner.
    """

    def classify(
        self,
        error: BaseException,
        target: str | None = None,
        *,
        service: str | None = None,
    ) -> AnalysisError | None:
        """Classify ``error``.

        Args:
            error: The raw failure.
            target: Target the failure belongs to.
            service: External service the call was made against, if known.

        Returns:
            A classified error chained to ``error``, or ``None`` when the
            failure does not fit the taxonomy.
        """
        if isinstance(error, AnalysisError):
            if error.target is None:
                error.target = target
            return error

        if isinstance(error, OrchestratorError):
            return None

        message = str(error) or error.__class__.__name__
        lowered = message.lower()
        cause = error if isinstance(error, Exception) else None

        if isinstance(error, (TimeoutError, httpx.TimeoutException)) or any(
            marker in lowered for marker in _TIMEOUT_MARKERS
        ):
            return NetworkError(
                message, code="TIMEOUT", target=target, status_code=408, cause=cause
            )

        if isinstance(error, socket.gaierror) or any(m in lowered for m in _DNS_MARKERS):
            return NetworkError(message, code="DNS_FAILURE", target=target, cause=cause)

        if isinstance(error, ConnectionRefusedError) or any(
            m in lowered for m in _REFUSED_MARKERS
        ):
            return NetworkError(
                message, code="CONNECTION_REFUSED", target=target, cause=cause
            )

        status = extract_status_code(error)
        service = service or getattr(error, "service", None)

        if service:
            return ServiceError(
                message,
                service=service,
                code=_service_code(status),
                target=target,
                status_code=status,
                retry_after=getattr(error, "retry_after", None),
                cause=cause,
            )

        if any(m in lowered for m in _RATE_LIMIT_MARKERS):
            return ServiceError(
                message, service="external", code="RATE_LIMITED",
                target=target, status_code=status, cause=cause,
            )
        if any(m in lowered for m in _UNAVAILABLE_MARKERS):
            return ServiceError(
                message, service="external", code="SERVICE_UNAVAILABLE",
                target=target, status_code=status, cause=cause,
            )

        if status is not None and status >= 400:
            return NetworkError(
                message, code=f"HTTP_{status}", target=target,
                status_code=status, cause=cause,
            )

        element = getattr(error, "element", None)
        if "invalid html" in lowered:
            return ParsingError(
                message, code="INVALID_HTML", element=element, target=target, cause=cause
            )
        if "missing" in lowered:
            return ParsingError(
                message, code="MISSING_ELEMENT", element=element, target=target, cause=cause
            )
        if any(m in lowered for m in _PARSE_MARKERS):
            return ParsingError(
                message, code="PARSING_ERROR", element=element, target=target, cause=cause
            )

        if isinstance(error, (ConnectionError, httpx.TransportError, OSError)):
            return NetworkError(message, code="NETWORK_ERROR", target=target, cause=cause)

        return None


__all__ = ["ErrorClassifier", "extract_status_code"]
