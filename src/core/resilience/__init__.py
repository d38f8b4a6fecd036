"""
Resilience patterns module.

Components:
    - RetryConfig: Backoff configuration (exponential or fixed)
    - RetryStats: Outcome of a retry loop
"""

from .retry import (
    RetryConfig,
    RetryStats,
)

__all__ = [
    "RetryConfig",
    "RetryStats",
]
