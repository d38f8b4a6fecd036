"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AckTimeout,
    AdmissionError,
    AuthenticationError,
    AuthError,
    ConnectError,
    DescriptorError,
    EncodeError,
    # Enums
    ErrorCategory,
    FlushTimeout,
    IngestError,
    PermanentError,
    # Base classes
    PipelineError,
    RecordRejected,
    RecoveryExhausted,
    SchemaMismatchError,
    TransientError,
    TransportFault,
    # Classification utilities
    classify_exception,
    wrap_transport_error,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Record errors
    "EncodeError",
    "DescriptorError",
    "RecordRejected",
    "AckTimeout",
    # Stream errors
    "ConnectError",
    "AuthenticationError",
    "SchemaMismatchError",
    "AdmissionError",
    "TransportFault",
    "RecoveryExhausted",
    "FlushTimeout",
    "IngestError",
    # Classification utilities
    "classify_exception",
    "wrap_transport_error",
]
