"""
Unified exception hierarchy for the stream ingestor.

Provides typed exceptions with retry classification so that per-item,
per-stream and per-batch failures can be told apart without string matching.
"""


# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all ingestor errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    @property
    def error_kind(self) -> str:
        """Short name used in logs, metrics and per-item failure reasons."""
        return type(self).__name__

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Category Bases
# =============================================================================


class AuthError(PipelineError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Record Errors (per item)
# =============================================================================


class EncodeError(PermanentError):
    """Event does not fit the table schema (type mismatch or size violation)."""

    def __init__(
        self,
        message: str,
        item_id: str | None = None,
        field: str | None = None,
        cause: Exception | None = None,
    ):
        context = {}
        if item_id is not None:
            context["item_id"] = item_id
        if field is not None:
            context["field"] = field
        super().__init__(message, cause, context)
        self.item_id = item_id
        self.field = field


class DescriptorError(PermanentError):
    """Schema descriptor could not be loaded or does not describe the record."""

    pass


class RecordRejected(PermanentError):
    """The remote service answered a record with a rejection."""

    def __init__(self, sequence: int, reason: str):
        super().__init__(
            f"Record {sequence} rejected: {reason}",
            context={"sequence": sequence},
        )
        self.sequence = sequence
        self.reason = reason


class AckTimeout(TransientError):
    """No acknowledgment arrived for a record within ack_timeout_ms."""

    def __init__(self, sequence: int, waited_ms: float):
        super().__init__(
            f"No acknowledgment for record {sequence} after {waited_ms:.0f}ms",
            context={"sequence": sequence, "waited_ms": waited_ms},
        )
        self.sequence = sequence


# =============================================================================
# Stream Errors
# =============================================================================


class ConnectError(PermanentError):
    """Stream handshake failed at open time. No records were sent."""

    pass


class AuthenticationError(ConnectError):
    """Remote service refused the credentials during the handshake."""

    pass


class SchemaMismatchError(ConnectError):
    """Descriptor does not match the schema the remote table expects."""

    pass


class AdmissionError(TransientError):
    """Session is not accepting submissions (not active, or deadline reached)."""

    pass


class TransportFault(TransientError):
    """The physical stream broke. Triggers recovery in the session."""

    pass


class RecoveryExhausted(TransientError):
    """Stream recovery ran out of attempts or time."""

    def __init__(
        self,
        message: str,
        attempts: int,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"attempts": attempts})
        self.attempts = attempts


class FlushTimeout(TransientError):
    """Flush deadline passed with records still outstanding."""

    pass


class IngestError(PipelineError):
    """Raised by single-event entry points so the host retries the invocation."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================

TRANSIENT_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "broken pipe",
    "reset by peer",
    "unavailable",
    "stream closed",
    "goaway",
    "503",
    "502",
    "504",
    "429",
    "throttl",
)

AUTH_ERROR_MARKERS = (
    "401",
    "unauthorized",
    "unauthenticated",
    "authentication",
    "invalid_client",
    "token expired",
    "invalid token",
)

PERMANENT_ERROR_MARKERS = (
    "403",
    "forbidden",
    "permission denied",
    "not found",
    "404",
    "invalid argument",
    "schema",
)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    if any(m in exc_str for m in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    if any(m in exc_type or m in exc_str for m in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    if any(m in exc_str for m in PERMANENT_ERROR_MARKERS):
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_transport_error(exc: Exception, connect: bool = False) -> PipelineError:
    """
    Map a raw transport exception onto the stream error taxonomy.

    During the handshake (connect=True) permanent and auth failures become
    ConnectError subclasses and are never retried by the session. Everything
    else is a TransportFault, which the session answers with recovery.
    """
    if isinstance(exc, PipelineError):
        return exc

    category = classify_exception(exc)
    context = {"error_type": type(exc).__name__}

    if connect and category == ErrorCategory.AUTH:
        return AuthenticationError(str(exc), cause=exc, context=context)
    if connect and category == ErrorCategory.PERMANENT:
        return ConnectError(str(exc), cause=exc, context=context)

    return TransportFault(str(exc), cause=exc, context=context)
