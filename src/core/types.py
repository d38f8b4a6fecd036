"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the core library to ensure consistency and type safety.
"""

from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from core.auth.credentials import ClientCredentials


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    This enum is used throughout the ingestor to classify errors and determine
    whether an item, a stream, or the whole batch should be retried.

    Categories:
        TRANSIENT: Temporary failures that may succeed later
                   (e.g., broken stream, ack timeout, session not active)
        AUTH: Authentication failures from the remote service
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., schema mismatch, oversized record, rejected record)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class CredentialProvider(Protocol):
    """
    Protocol for credential providers.

    The ingestor treats credentials as opaque: it asks the provider for the
    current client credentials each time it opens a stream and hands them to
    the transport unchanged. Refresh is the provider's business.
    """

    def get_credentials(self) -> "ClientCredentials":
        """
        Return the credentials to use for the next stream handshake.

        Raises:
            AuthError: If credentials cannot be produced
        """
        ...


__all__ = [
    "ErrorCategory",
    "CredentialProvider",
]
