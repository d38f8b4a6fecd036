"""
Wire-side record types.

EncodedRecord is what the encoder produces and the session transmits.
PendingSubmission tracks one transmitted record until its terminal outcome.
Completion is the terminal outcome delivered through poll_completions().
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from core.errors.exceptions import PipelineError


@dataclass(eq=False)
class EncodedRecord:
    """
    Binary record conforming to the table schema.

    Identity-hashed: two records with equal payloads are still two records.
    The session stamps ``sequence`` at submission; ``slot`` is the record's
    position in its batch.
    """

    item_id: str
    payload: bytes = field(repr=False)
    sequence: Optional[int] = None
    slot: int = -1

    @property
    def size(self) -> int:
        return len(self.payload)


class SubmissionState(str, Enum):
    PENDING = "pending"
    ACKED = "acked"
    FAILED = "failed"


@dataclass(eq=False)
class PendingSubmission:
    """A transmitted record awaiting acknowledgment or rejection."""

    sequence: int
    item_id: str
    record: EncodedRecord = field(repr=False)
    submitted_at: float
    generation: int = 1
    attempts: int = 1
    state: SubmissionState = SubmissionState.PENDING


@dataclass(frozen=True)
class Completion:
    """Terminal outcome of one record, delivered exactly once."""

    sequence: int
    item_id: str
    record: EncodedRecord = field(repr=False, compare=False)
    error: Optional[PipelineError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class FlushResult:
    """Result of waiting for the outstanding set to drain."""

    completed: bool
    outstanding: List[PendingSubmission] = field(default_factory=list)

    @property
    def outstanding_item_ids(self) -> List[str]:
        return [s.item_id for s in self.outstanding]


__all__ = [
    "EncodedRecord",
    "SubmissionState",
    "PendingSubmission",
    "Completion",
    "FlushResult",
]
