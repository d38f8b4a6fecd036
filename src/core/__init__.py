"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    auth        - Client credential providers for the stream handshake
    resilience  - Retry/backoff configuration
    logging     - Structured JSON logging with context variables
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization helpers

Design Principles:
    - No dependencies on the remote table service or its transport
    - All modules are independently testable
"""

from .types import CredentialProvider, ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "CredentialProvider",
]
