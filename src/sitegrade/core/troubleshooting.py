"""Troubleshooting guides keyed by stable error code.

A pure lookup table: every code maps to a user-facing message, likely
causes and suggested actions. Used both when logging a failure and when
rendering it for an end user.

Example::

    guide = get_guide("DNS_FAILURE")
    print(guide.user_message)
    print(user_friendly_message(error))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sitegrade.core.errors import error_code


@dataclass(frozen=True)
class TroubleshootingGuide:
    """Static guidance for one error code."""

    error_type: str
    user_message: str
    technical_details: str
    possible_causes: tuple[str, ...]
    suggested_actions: tuple[str, ...]
    prevention_tips: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type,
            "user_message": self.user_message,
            "technical_details": self.technical_details,
            "possible_causes": list(self.possible_causes),
            "suggested_actions": list(self.suggested_actions),
            "prevention_tips": list(self.prevention_tips),
        }


_PARSING_ACTIONS = (
    "Check if the page loads correctly in a browser",
    "Verify the page is publicly accessible",
    "Try again later in case of temporary issues",
    "Contact the website owner about HTML validation",
)

GUIDES: dict[str, TroubleshootingGuide] = {
    "TIMEOUT": TroubleshootingGuide(
        error_type="TIMEOUT",
        user_message=(
            "The website took too long to respond. This might be due to slow "
            "server response or network issues."
        ),
        technical_details="Request timeout exceeded the configured limit",
        possible_causes=(
            "Server is overloaded or experiencing high traffic",
            "Network connectivity issues",
            "DNS resolution problems",
            "Firewall or security software blocking the request",
        ),
        suggested_actions=(
            "Try again in a few minutes",
            "Check if the website is accessible in your browser",
            "Verify your internet connection",
            "Contact the website administrator if the issue persists",
        ),
        prevention_tips=(
            "Use websites with good hosting infrastructure",
            "Consider analyzing during off-peak hours",
            "Ensure stable internet connection",
        ),
    ),
    "DNS_FAILURE": TroubleshootingGuide(
        error_type="DNS_FAILURE",
        user_message="Unable to find the website. The domain name could not be resolved.",
        technical_details="DNS lookup failed for the provided domain",
        possible_causes=(
            "Domain name is misspelled",
            "Domain has expired or been suspended",
            "DNS server issues",
            "Network configuration problems",
        ),
        suggested_actions=(
            "Double-check the URL spelling",
            "Try accessing the website directly in your browser",
            "Wait a few minutes and try again",
            "Contact your network administrator",
        ),
        prevention_tips=(
            "Verify domain names before analysis",
            "Use reliable DNS servers",
            "Keep domain registrations up to date",
        ),
    ),
    "CONNECTION_REFUSED": TroubleshootingGuide(
        error_type="CONNECTION_REFUSED",
        user_message="The website refused the connection. The server may be down or not accepting requests.",
        technical_details="TCP connection was actively refused by the remote host",
        possible_causes=(
            "Web server is not running",
            "Wrong port in the URL",
            "Firewall rejecting connections",
        ),
        suggested_actions=(
            "Check that the URL and port are correct",
            "Try again in a few minutes",
            "Contact the website administrator if the issue persists",
        ),
    ),
    "RATE_LIMITED": TroubleshootingGuide(
        error_type="RATE_LIMITED",
        user_message="Too many requests have been made. Please wait before trying again.",
        technical_details="API rate limit exceeded for external service",
        possible_causes=(
            "Exceeded API quota for external services",
            "Too many concurrent analyses running",
            "Shared rate limits with other users",
        ),
        suggested_actions=(
            "Wait for the specified retry period",
            "Reduce the number of URLs being analyzed",
            "Try analyzing fewer pages at once",
            "Contact support if you need higher limits",
        ),
        prevention_tips=(
            "Analyze URLs in smaller batches",
            "Space out analysis requests",
            "Consider upgrading to higher API limits",
        ),
    ),
    "PARSING_ERROR": TroubleshootingGuide(
        error_type="PARSING_ERROR",
        user_message=(
            "Unable to analyze the webpage content. The page structure may be "
            "invalid or incomplete."
        ),
        technical_details="HTML parsing failed due to malformed content",
        possible_causes=(
            "Invalid or malformed HTML",
            "JavaScript-heavy content that requires rendering",
            "Protected or restricted content",
            "Incomplete page loading",
        ),
        suggested_actions=_PARSING_ACTIONS,
        prevention_tips=(
            "Ensure pages have valid HTML",
            "Test pages in multiple browsers",
            "Use HTML validators during development",
        ),
    ),
    "INVALID_HTML": TroubleshootingGuide(
        error_type="INVALID_HTML",
        user_message="The webpage contains invalid HTML that could not be analyzed.",
        technical_details="Markup failed validation during parsing",
        possible_causes=(
            "Unclosed or mis-nested tags",
            "Invalid character encoding",
        ),
        suggested_actions=_PARSING_ACTIONS,
    ),
    "MISSING_ELEMENT": TroubleshootingGuide(
        error_type="MISSING_ELEMENT",
        user_message="A required part of the webpage was missing, so some checks could not run.",
        technical_details="An element expected by the analyzers was not present in the document",
        possible_causes=(
            "Content is rendered client-side by JavaScript",
            "Page template omits the element",
        ),
        suggested_actions=_PARSING_ACTIONS,
    ),
    "SERVICE_UNAVAILABLE": TroubleshootingGuide(
        error_type="SERVICE_UNAVAILABLE",
        user_message=(
            "External analysis service is temporarily unavailable. Some "
            "features may be limited."
        ),
        technical_details="Third-party service returned 503 Service Unavailable",
        possible_causes=(
            "External service maintenance",
            "Service overload or outage",
            "Network connectivity issues",
            "Service configuration problems",
        ),
        suggested_actions=(
            "Try again in a few minutes",
            "Check service status pages",
            "Use alternative analysis methods if available",
            "Contact support if the issue persists",
        ),
        prevention_tips=(
            "Monitor service status pages",
            "Have backup analysis methods",
            "Schedule analyses during stable periods",
        ),
    ),
    "AUTHENTICATION_ERROR": TroubleshootingGuide(
        error_type="AUTHENTICATION_ERROR",
        user_message="An external analysis service rejected our credentials.",
        technical_details="Third-party service returned 401 Unauthorized or 403 Forbidden",
        possible_causes=(
            "API key missing, expired or revoked",
            "API key lacks permission for the endpoint",
        ),
        suggested_actions=(
            "Check the configured API keys",
            "Contact support if the issue persists",
        ),
    ),
    "CIRCUIT_OPEN": TroubleshootingGuide(
        error_type="CIRCUIT_OPEN",
        user_message=(
            "Analysis was skipped because the same operation failed repeatedly "
            "in the last few minutes."
        ),
        technical_details="Circuit breaker rejected the call without invoking it",
        possible_causes=(
            "The target site or an upstream service is down",
            "Persistent network problems",
        ),
        suggested_actions=(
            "Wait a few minutes before retrying",
            "Check whether other URLs from the same site respond",
        ),
    ),
    "JOB_CANCELLED": TroubleshootingGuide(
        error_type="JOB_CANCELLED",
        user_message="The analysis was cancelled before it finished.",
        technical_details="Job was cancelled by a caller",
        possible_causes=("Cancellation requested by the user",),
        suggested_actions=("Submit the URLs again to restart the analysis",),
    ),
}


def get_guide(code: str) -> TroubleshootingGuide | None:
    """Guide for ``code``, or ``None`` when the code has no entry."""
    return GUIDES.get(code)


def user_friendly_message(error: BaseException) -> str:
    """Human-readable message plus suggested actions for an error."""
    guide = GUIDES.get(error_code(error))
    if guide:
        actions = "\n".join(f"• {action}" for action in guide.suggested_actions)
        return f"{guide.user_message}\n\nSuggested actions:\n{actions}"
    return (
        f"An unexpected error occurred: {error}. Please try again or contact "
        "support if the issue persists."
    )


__all__ = [
    "TroubleshootingGuide",
    "GUIDES",
    "get_guide",
    "user_friendly_message",
]
