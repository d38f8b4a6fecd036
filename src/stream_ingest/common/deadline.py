"""Monotonic deadlines for every suspend point."""

import time
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Deadline:
    """Absolute point on the monotonic clock."""

    expires_at: float

    @classmethod
    def from_timeout(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + max(seconds, 0.0))

    @classmethod
    def from_remaining_ms(cls, remaining_ms: float) -> "Deadline":
        return cls.from_timeout(remaining_ms / 1000)

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(self.expires_at - time.monotonic(), 0.0)

    def remaining_ms(self) -> float:
        return self.remaining() * 1000

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def with_margin(self, margin_ms: float) -> "Deadline":
        """Earlier deadline that keeps ``margin_ms`` in reserve."""
        return Deadline(self.expires_at - margin_ms / 1000)

    def bound(self, seconds: Optional[float]) -> float:
        """The smaller of ``seconds`` and the time left."""
        if seconds is None:
            return self.remaining()
        return min(max(seconds, 0.0), self.remaining())


__all__ = ["Deadline"]
