"""Core primitives shared by every gridrun subpackage: errors, logging, settings."""

from gridrun.core.errors import (
    BOOTSTRAP_EXIT_CODE,
    ArchiveError,
    BookkeepingViolation,
    BootstrapError,
    ConfigError,
    ErrorCategory,
    GridError,
    ParameterRepresentationError,
    RemoteJobFailure,
    StatusQueryError,
    SubmissionError,
)
from gridrun.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "BOOTSTRAP_EXIT_CODE",
    "ArchiveError",
    "BookkeepingViolation",
    "BootstrapError",
    "ConfigError",
    "ErrorCategory",
    "GridError",
    "LogContext",
    "ParameterRepresentationError",
    "RemoteJobFailure",
    "StatusQueryError",
    "SubmissionError",
    "configure_logging",
    "get_logger",
]
