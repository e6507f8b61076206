"""
Custom exceptions for the ETL engine with structured error context.

Every ETL error carries an ``ErrorKind`` tag. Retry decisions are taken by
inspecting that tag with ``is_retryable`` instead of walking the class
hierarchy, so a collaborator can raise any ``ETLException`` subclass and still
choose whether the failure is transient or permanent.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   └── APIExtractionError
    ├── TransformationError
    │   └── DataFormatError
    ├── LoadError
    │   └── RecordRejectedError
    ├── RetryExhaustedError
    ├── BatchSchedulerError
    ├── RunCancelledError
    ├── HistoryPersistenceError
    ├── ExecutionNotFoundError
    └── InvalidStatusTransitionError

Error kinds:
    TRANSIENT  network timeouts, remote 5xx, lock contention; retried
    PERMANENT  validation errors, 4xx, malformed records; never retried
    FATAL      run-level failures that abort the whole execution
"""

import asyncio
import enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone

import httpx


class ErrorKind(str, enum.Enum):
    """Failure classification shared by every collaborator"""
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    FATAL = "fatal"


class ETLException(Exception):
    """
    Base exception for all ETL-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, batch, item, etc.)
        original_exception: The original exception that was caught (if any)
        kind: Failure classification used by the retry executor
    """

    default_kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
        kind: Optional[ErrorKind] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.kind = kind or self.default_kind
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Extraction could not produce the input set; aborts the run."""
    default_kind = ErrorKind.FATAL


class APIExtractionError(ExtractionError):
    """
    Raised by the remote API collaborator.

    The extractor sets ``kind`` from the HTTP outcome: TRANSIENT for
    timeouts, network errors, 429 and 5xx; PERMANENT for other 4xx and
    unparseable bodies.

    Context should include:
        - api_url: The API endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated if large)
    """
    default_kind = ErrorKind.TRANSIENT


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ETLException):
    """Data-shape errors raised by the transform step; never retried."""
    default_kind = ErrorKind.PERMANENT


class DataFormatError(TransformationError):
    """
    A raw record could not be normalized.

    Context should include:
        - field_name: Name of the field that failed validation
        - external_id: Identifier of the record, when known
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Load sink failure; transient unless the sink says otherwise."""
    default_kind = ErrorKind.TRANSIENT


class RecordRejectedError(LoadError):
    """The sink permanently rejected a record (constraint or data error)."""
    default_kind = ErrorKind.PERMANENT


# ============================================================================
# Engine Errors
# ============================================================================

class RetryExhaustedError(ETLException):
    """
    Raised by the retry executor once every attempt has failed.

    Attributes:
        attempts: Total number of attempts made
        elapsed_seconds: Wall time spent across attempts and backoff
        last_error: Error raised by the final attempt
    """
    default_kind = ErrorKind.PERMANENT

    def __init__(
        self,
        attempts: int,
        elapsed_seconds: float,
        last_error: BaseException
    ):
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        self.last_error = last_error
        super().__init__(
            f"Operation failed after {attempts} attempt(s): {_describe(last_error)}",
            context={
                "attempts": attempts,
                "elapsed_seconds": round(elapsed_seconds, 3)
            },
            original_exception=last_error
        )


def _describe(error: BaseException) -> str:
    if isinstance(error, ETLException):
        return error.message
    return f"{type(error).__name__}: {error}"


class BatchSchedulerError(ETLException):
    """
    A batch worker crashed; all in-flight and pending batches are aborted.

    ``result`` holds the aggregate of the batches that completed before the abort.
    """
    default_kind = ErrorKind.FATAL

    def __init__(self, message: str, result: Optional[Any] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.result = result


class RunCancelledError(ETLException):
    """The run was cancelled through its cancellation signal."""
    default_kind = ErrorKind.FATAL


class HistoryPersistenceError(ETLException):
    """The execution history store could not be reached."""
    default_kind = ErrorKind.FATAL


class ExecutionNotFoundError(ETLException):
    """No execution history record exists for the given id."""
    default_kind = ErrorKind.PERMANENT


class InvalidStatusTransitionError(ETLException):
    """A history record was asked to move along a path the state machine forbids."""
    default_kind = ErrorKind.FATAL


# ============================================================================
# Classification
# ============================================================================

_TRANSIENT_BUILTINS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)


def error_kind(error: BaseException) -> ErrorKind:
    """Return the failure classification of any exception."""
    if isinstance(error, ETLException):
        return error.kind
    if isinstance(error, _TRANSIENT_BUILTINS):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def is_retryable(error: BaseException) -> bool:
    """Pure predicate used by the retry executor."""
    return error_kind(error) is ErrorKind.TRANSIENT
