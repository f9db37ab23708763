"""
Structured error types for gridrun.

Every failure the dispatch coordinator can raise is a ``GridError`` carrying a
category, a retry hint, free-form context and the chained cause. Callers route
on the type (or ``category``), never on message text.

Manifesto:
    - **Typed Error Hierarchy:** one subclass per failure domain
    - **Explicit Retry Semantics:** each error knows if it's retryable
    - **Rich Context:** errors carry job ids / invocation ids for logging
    - **Error Chaining:** the provider exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                          GridError                            │
        │          (category, retryable, context, cause)                │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConfigError           BootstrapError     SubmissionError     │
        │  (CONFIG, fail fast)   (BOOTSTRAP, fatal) (SUBMISSION)        │
        │       │                                                       │
        │  ParameterRepresentationError                                 │
        │                                                               │
        │  StatusQueryError      ArchiveError       BookkeepingViolation│
        │  (STATUS_QUERY, retry) (STORAGE)          (BOOKKEEPING)       │
        │                                                               │
        │  RemoteJobFailure (REMOTE_JOB, a normal failed outcome that   │
        │                    carries the remote logs)                   │
        └──────────────────────────────────────────────────────────────┘

Taxonomy:
    ============================  ===========================================
    Error                         Handling
    ============================  ===========================================
    ConfigError                   reported immediately, never retried
    BootstrapError                fatal for the coordinator and the process
    SubmissionError               fails one caller's future only
    StatusQueryError              logged by the poller, batch retried
    RemoteJobFailure              reported like a locally failed test
    BookkeepingViolation          defect, reported loudly, never corrected
    ============================  ===========================================

Tags:
    error-handling, exception-hierarchy, retry-logic, gridrun

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gridrun.runtimes._types import JobOutcome


#: Exit status used when environment bootstrap fails irrecoverably.
#: pytest reserves 0-5, so this stays distinct inside a test session too.
BOOTSTRAP_EXIT_CODE = 6


class ErrorCategory(str, Enum):
    """Standard error categories for classification and alerting."""

    CONFIG = "CONFIG"                 # Missing/invalid settings, credentials
    BOOTSTRAP = "BOOTSTRAP"           # Archive/upload/provisioning failure
    SUBMISSION = "SUBMISSION"         # Provider rejected a job request
    STATUS_QUERY = "STATUS_QUERY"     # One poll batch failed
    REMOTE_JOB = "REMOTE_JOB"         # Job ran but did not succeed
    BOOKKEEPING = "BOOKKEEPING"       # Admission token accounting corrupted
    STORAGE = "STORAGE"               # Object storage / archive errors
    INTERNAL = "INTERNAL"             # Bugs, unexpected state


class GridError(Exception):
    """Base exception for all gridrun errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> GridError:
        """Add context to this error (fluent API).

        Usage:
            raise SubmissionError("rejected").with_context(job_id=job_id)
        """
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (never retryable)
# =============================================================================


class ConfigError(GridError):
    """Missing or invalid configuration: bad concurrency limit, missing
    bucket/role/log group, missing credentials."""

    default_category = ErrorCategory.CONFIG


class ParameterRepresentationError(ConfigError):
    """A test parameter has no stable textual representation.

    Sibling parameterizations are told apart by the text of their parameter
    values, so a value rendered as ``<Foo object at 0x7f...>`` cannot be
    dispatched. Define ``__repr__`` (or ``__str__``) on the parameter type.
    """


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================


class BootstrapError(GridError):
    """Remote environment could not be initialized.

    Fatal for the coordinator: every waiting and every later dispatch request
    fails with this same error and the process should exit with
    ``BOOTSTRAP_EXIT_CODE``.
    """

    default_category = ErrorCategory.BOOTSTRAP


class SubmissionError(GridError):
    """The provider rejected (or could not be asked to run) one job."""

    default_category = ErrorCategory.SUBMISSION


class StatusQueryError(GridError):
    """A batch status query failed; the batch is retried next cycle."""

    default_category = ErrorCategory.STATUS_QUERY
    default_retryable = True


class ArchiveError(GridError):
    """Building or uploading the workspace archive failed."""

    default_category = ErrorCategory.STORAGE


class BookkeepingViolation(GridError):
    """Admission token accounting is corrupt.

    Raised for a release without a matching acquire, or an acquire observed
    with negative available capacity. Indicates a defect.
    """

    default_category = ErrorCategory.BOOKKEEPING


# =============================================================================
# REMOTE OUTCOMES
# =============================================================================


class RemoteJobFailure(GridError):
    """A dispatched unit of work ran remotely and did not succeed.

    Not an internal error: it is how a remote test failure is reported to the
    local test run, with the remote logs standing in for a traceback.
    """

    default_category = ErrorCategory.REMOTE_JOB

    def __init__(
        self,
        message: str,
        *,
        outcome: JobOutcome | None = None,
        logs: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.outcome = outcome
        self.logs = logs

    def __str__(self) -> str:
        if not self.logs:
            return self.message
        return f"{self.message}\n\n--- remote log ---\n{self.logs}"


__all__ = [
    "BOOTSTRAP_EXIT_CODE",
    "ArchiveError",
    "BootstrapError",
    "BookkeepingViolation",
    "ConfigError",
    "ErrorCategory",
    "GridError",
    "ParameterRepresentationError",
    "RemoteJobFailure",
    "StatusQueryError",
    "SubmissionError",
]
