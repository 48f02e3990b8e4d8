"""Core primitives: error taxonomy, classification, troubleshooting, logging, settings, events."""

from sitegrade.core.classifier import ErrorClassifier
from sitegrade.core.errors import (
    AnalysisError,
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
)
from sitegrade.core.logging import LogContext, configure_logging, get_logger
from sitegrade.core.settings import OrchestratorSettings, get_settings
from sitegrade.core.troubleshooting import TroubleshootingGuide, get_guide, user_friendly_message

__all__ = [
    "AnalysisError",
    "CircuitOpenError",
    "ErrorClassifier",
    "ErrorKind",
    "ErrorRecord",
    "InvalidTransitionError",
    "JobCancelledError",
    "JobNotCompletedError",
    "JobNotFoundError",
    "LogContext",
    "NetworkError",
    "OrchestratorError",
    "OrchestratorSettings",
    "ParsingError",
    "ServiceError",
    "TroubleshootingGuide",
    "configure_logging",
    "get_guide",
    "get_logger",
    "get_settings",
    "user_friendly_message",
]
