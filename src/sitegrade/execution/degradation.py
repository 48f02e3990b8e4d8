"""Graceful degradation of failed targets into partial results.

When a target cannot be analysed, the runner still stores a result for it:
what could be checked is listed in ``completed_checks``, what could not in
``failed_checks``, and the score reflects how far the analysis got.

::

    NetworkError  → completed: []
                    failed:    [network-connectivity]                  score 0
    ParsingError  → completed: [basic-connectivity]
                    failed:    [html-parsing, content-analysis,
                                parsing-<element>?]                     score 25
    ServiceError  → completed: [basic-connectivity, html-parsing]
                    failed:    [api-<service>, <service checks>]        score 60

The scores come from a :class:`PartialCreditTable`; any table must keep
``network <= parsing <= service``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sitegrade.core.errors import (
    AnalysisError,
    ErrorKind,
    ParsingError,
    ServiceError,
    utcnow,
)

SERVICE_CHECKS: dict[str, tuple[str, ...]] = {
    "pagespeed-insights": ("core-web-vitals", "performance-metrics"),
    "schema-validator": ("structured-data-validation",),
}
DEFAULT_SERVICE_CHECKS: tuple[str, ...] = ("external-service",)


@dataclass(frozen=True)
class PartialCreditTable:
    """Scores given to a target that degraded at each stage."""

    network: int = 0
    parsing: int = 25
    service: int = 60

    def __post_init__(self) -> None:
        for name in ("network", "parsing", "service"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"partial credit '{name}' must be in 0..100, got {value}")
        if not self.network <= self.parsing <= self.service:
            raise ValueError(
                "partial credit must be ordered network <= parsing <= service, got "
                f"{self.network}/{self.parsing}/{self.service}"
            )

    def score_for(self, kind: ErrorKind) -> int:
        return {
            ErrorKind.NETWORK: self.network,
            ErrorKind.PARSING: self.parsing,
            ErrorKind.SERVICE: self.service,
        }[kind]


@dataclass(frozen=True)
class PartialResult:
    """Best-effort outcome for a target whose analysis could not finish.

    Built by :class:`DegradationPolicy` only.
    """

    completed_checks: tuple[str, ...]
    failed_checks: tuple[str, ...]
    score: int
    payload: dict[str, Any] = field(default_factory=dict)
    errors: tuple[AnalysisError, ...] = ()


class DegradationPolicy:
    """Turns classified errors into :class:`PartialResult` objects."""

    def __init__(self, credits: PartialCreditTable | None = None):
        self.credits = credits or PartialCreditTable()

    def degrade(self, error: AnalysisError) -> PartialResult:
        """Partial result for one classified error."""
        status_code = error.status_code or 0

        if error.kind is ErrorKind.NETWORK:
            completed: tuple[str, ...] = ()
            failed: tuple[str, ...] = ("network-connectivity",)
        elif error.kind is ErrorKind.PARSING:
            completed = ("basic-connectivity",)
            failed = ("html-parsing", "content-analysis")
            if isinstance(error, ParsingError) and error.element:
                failed += (f"parsing-{error.element}",)
            status_code = status_code or 200
        else:
            service = error.service if isinstance(error, ServiceError) else "external"
            completed = ("basic-connectivity", "html-parsing")
            failed = (f"api-{service}",) + SERVICE_CHECKS.get(service, DEFAULT_SERVICE_CHECKS)
            status_code = 200

        return PartialResult(
            completed_checks=completed,
            failed_checks=failed,
            score=self.credits.score_for(error.kind),
            payload={
                "technical_details": {
                    "load_time_ms": 0,
                    "page_size": 0,
                    "requests": 0,
                    "status_code": status_code,
                    "redirects": 0,
                },
            },
            errors=(error,),
        )

    def merge(self, partials: list[PartialResult]) -> PartialResult:
        """Combine partial results for the same target.

        Checks are de-duplicated in first-seen order; the score becomes the
        share of completed checks.

        Raises:
            ValueError: If ``partials`` is empty
        """
        if not partials:
            raise ValueError("Cannot merge an empty list of partial results")
        if len(partials) == 1:
            return partials[0]

        completed = tuple(dict.fromkeys(c for p in partials for c in p.completed_checks))
        failed = tuple(dict.fromkeys(c for p in partials for c in p.failed_checks))
        total = len(completed) + len(failed)
        score = round(len(completed) / total * 100) if total else 0

        return PartialResult(
            completed_checks=completed,
            failed_checks=failed,
            score=score,
            payload=dict(partials[0].payload),
            errors=tuple(e for p in partials for e in p.errors),
        )

    def to_result(self, partial: PartialResult, target: str) -> dict[str, Any]:
        """The result payload stored for a degraded target."""
        failed = partial.failed_checks
        recommendations = [
            {
                "id": "analysis-failed",
                "priority": "high",
                "title": "Analysis Failed - Retry Recommended",
                "description": (
                    f"Analysis failed for {target}. {len(failed)} checks failed: "
                    f"{', '.join(failed)}"
                ),
                "action_steps": [
                    "Check if the website is accessible",
                    "Verify the URL is correct",
                    "Try again in a few minutes",
                    "Contact support if the issue persists",
                ],
            }
        ]
        if "network-connectivity" in failed:
            recommendations.append(
                {
                    "id": "network-connectivity-failed",
                    "priority": "high",
                    "title": "Network Connectivity Issue",
                    "description": "Unable to connect to the website",
                    "action_steps": [
                        "Verify the website URL is correct",
                        "Check if the website is online",
                        "Ensure your internet connection is stable",
                        "Try accessing the website in a browser",
                    ],
                }
            )
        if "html-parsing" in failed:
            recommendations.append(
                {
                    "id": "html-parsing-failed",
                    "priority": "medium",
                    "title": "HTML Parsing Issue",
                    "description": "Unable to parse the website content",
                    "action_steps": [
                        "Check if the website loads properly in a browser",
                        "Validate HTML markup using W3C validator",
                        "Ensure the page is publicly accessible",
                        "Check for JavaScript-heavy content that may need rendering",
                    ],
                }
            )

        return {
            "url": target,
            "timestamp": utcnow().isoformat(),
            "overall_score": partial.score,
            "degraded": True,
            "completed_checks": list(partial.completed_checks),
            "failed_checks": list(failed),
            "errors": [
                {"kind": e.kind.value, "code": e.code, "message": e.message}
                for e in partial.errors
            ],
            "recommendations": recommendations,
            **partial.payload,
        }


__all__ = [
    "SERVICE_CHECKS",
    "PartialCreditTable",
    "PartialResult",
    "DegradationPolicy",
]
