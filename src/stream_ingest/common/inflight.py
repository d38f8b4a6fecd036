"""
Inflight Tracker.

Bounded set of outstanding submissions. A record may only be transmitted
while holding a permit, and at most ``max_inflight`` permits exist at once.

Lifecycle of one record:

    admit()                 permit taken (suspends while the ceiling is hit)
    register(permit, sub)   record is outstanding under its sequence
    complete(seq, state)    terminal state; leaves the outstanding set
    release(seq)            permit returned once the outcome is drained

All mutators are synchronous. On a single event loop they cannot interleave
with each other, which makes the tracker safe for the submission path and
the completion path without a lock. Waiters are woken through an Event that
is replaced on every change.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from core.errors.exceptions import AdmissionError
from stream_ingest.schemas.records import PendingSubmission, SubmissionState

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Permit:
    """Right to transmit one record."""

    permit_id: int
    sequence: Optional[int] = None
    released: bool = False


class InflightTracker:
    def __init__(self, max_inflight: int):
        if max_inflight < 1:
            raise ValueError(f"max_inflight must be >= 1, got {max_inflight}")
        self.max_inflight = max_inflight
        self.high_watermark = 0
        self._held = 0
        self._pending: Dict[int, PendingSubmission] = {}
        self._permits: Dict[int, Permit] = {}
        self._ids = itertools.count(1)
        self._changed = asyncio.Event()

    @property
    def held(self) -> int:
        """Permits taken and not yet released."""
        return self._held

    @property
    def outstanding_count(self) -> int:
        return len(self._pending)

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def _wait_until(self, predicate, timeout: Optional[float]) -> bool:
        loop = asyncio.get_running_loop()
        end = None if timeout is None else loop.time() + timeout
        while not predicate():
            remaining = None if end is None else end - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            try:
                await asyncio.wait_for(self._changed.wait(), remaining)
            except asyncio.TimeoutError:
                return predicate()
        return True

    async def admit(self, timeout: Optional[float] = None) -> Permit:
        """
        Take a permit, suspending while ``max_inflight`` are held.

        Raises:
            AdmissionError: No permit became free within ``timeout`` seconds
        """
        admitted = await self._wait_until(lambda: self._held < self.max_inflight, timeout)
        if not admitted:
            raise AdmissionError(
                f"No in-flight slot within {timeout:.3f}s "
                f"({self._held}/{self.max_inflight} held)",
                context={"outstanding": self._held, "max_inflight": self.max_inflight},
            )
        self._held += 1
        self.high_watermark = max(self.high_watermark, self._held)
        return Permit(permit_id=next(self._ids))

    def register(self, permit: Permit, submission: PendingSubmission) -> None:
        if permit.released:
            raise ValueError(f"Permit {permit.permit_id} was already released")
        if submission.sequence in self._pending or submission.sequence in self._permits:
            raise ValueError(f"Sequence {submission.sequence} is already tracked")
        permit.sequence = submission.sequence
        self._pending[submission.sequence] = submission
        self._permits[submission.sequence] = permit

    def get(self, sequence: int) -> Optional[PendingSubmission]:
        return self._pending.get(sequence)

    def complete(
        self, sequence: int, state: SubmissionState
    ) -> Optional[PendingSubmission]:
        """
        Move an outstanding submission to a terminal state.

        Returns the submission, or None if it already reached one. A second
        completion for the same sequence is therefore a no-op.
        """
        submission = self._pending.pop(sequence, None)
        if submission is None:
            return None
        submission.state = state
        self._notify()
        return submission

    def release(self, sequence: int) -> bool:
        """Return the permit bound to ``sequence``. Idempotent."""
        permit = self._permits.pop(sequence, None)
        if permit is None:
            return False
        permit.released = True
        self._held -= 1
        self._notify()
        return True

    def release_permit(self, permit: Permit) -> bool:
        """Return a permit, bound or not."""
        if permit.released:
            return False
        if permit.sequence is not None:
            return self.release(permit.sequence)
        permit.released = True
        self._held -= 1
        self._notify()
        return True

    async def wait_empty(self, timeout: Optional[float] = None) -> bool:
        """Wait for the outstanding set to drain. False on timeout."""
        return await self._wait_until(lambda: not self._pending, timeout)

    def outstanding(self) -> List[PendingSubmission]:
        """Outstanding submissions in sequence order."""
        return [self._pending[seq] for seq in sorted(self._pending)]


__all__ = ["Permit", "InflightTracker"]
