"""
Batch Orchestrator.

Drives one invocation's events through encoder and stream session and
collects one result per event:

    encode all ──> acquire session ──> submit in order ─┐
                                   drain completions ───┴─> flush ──> release

Encode failures fail their item without touching the session; a batch with
nothing encodable opens no session. Submission and completion draining run
concurrently so permits are returned while later records wait for admission.
Whatever is still without a result when the deadline (minus the safety
margin) arrives is failed. Transmitted records are abandoned through the
session, which fails them with FlushTimeout; records never transmitted fail
with AdmissionError. Releasing the session does not wait past that margin.
"""

import asyncio
import logging
import time
from collections import Counter
from typing import Dict, List, Optional, Protocol, Sequence

from core.errors.exceptions import (
    AdmissionError,
    ConnectError,
    FlushTimeout,
    PipelineError,
)
from core.logging.context_managers import LogContext, log_phase
from core.logging.utilities import format_batch_summary, log_exception, log_with_context
from stream_ingest import metrics
from stream_ingest.common.deadline import Deadline
from stream_ingest.common.session import StreamSession
from stream_ingest.encoding.encoder import RecordEncoder
from stream_ingest.schemas.events import Event
from stream_ingest.schemas.outcomes import BatchOutcome, ItemResult
from stream_ingest.schemas.records import Completion, EncodedRecord

logger = logging.getLogger(__name__)


class SessionSource(Protocol):
    """Hands out a session per batch and takes it back afterwards."""

    async def acquire(self, deadline: Deadline) -> StreamSession:
        ...

    async def release(self, session: StreamSession, deadline: Deadline) -> None:
        ...


class _BatchState:
    """Per-batch bookkeeping: one result slot per input event."""

    def __init__(self, events: Sequence[Event]):
        self.events = events
        self.results: List[Optional[ItemResult]] = [None] * len(events)
        self.records: Dict[int, EncodedRecord] = {}
        self.admission_error: Optional[AdmissionError] = None

    def owns(self, record: EncodedRecord) -> bool:
        return self.records.get(id(record)) is record

    def settle(self, slot: int, result: ItemResult) -> bool:
        if self.results[slot] is not None:
            return False
        self.results[slot] = result
        return True

    def unsettled(self) -> List[EncodedRecord]:
        return [r for r in self.records.values() if self.results[r.slot] is None]


class BatchOrchestrator:
    """
    Processes one batch of events against a session source.

    Args:
        encoder: Record encoder for the target table
        sessions: Session source (stream factory)
        safety_margin_ms: Time kept in reserve before the deadline for
            reporting and releasing the session
        table_name: Table label for logs and metrics
    """

    def __init__(
        self,
        encoder: RecordEncoder,
        sessions: SessionSource,
        safety_margin_ms: int = 500,
        table_name: str = "",
    ):
        self.encoder = encoder
        self.sessions = sessions
        self.safety_margin_ms = safety_margin_ms
        self.table_name = table_name

    async def process(self, events: Sequence[Event], deadline: Deadline) -> BatchOutcome:
        """Ingest ``events`` and return one result per event."""
        if not events:
            log_with_context(logger, logging.DEBUG, "Empty batch, nothing to ingest")
            return BatchOutcome.empty()

        start = time.perf_counter()
        batch = _BatchState(events)
        duplicate_ids = self._find_duplicates(events)

        with log_phase(logger, "encode", batch_size=len(events)):
            self._encode_all(batch)

        resubmitted = 0
        if batch.records:
            resubmitted = await self._ingest(batch, deadline)

        outcome = BatchOutcome(
            results=[r for r in batch.results if r is not None],
            duplicate_ids=duplicate_ids,
        )
        self._report(outcome, time.perf_counter() - start, resubmitted)
        return outcome

    # =========================================================================
    # Encoding
    # =========================================================================

    def _find_duplicates(self, events: Sequence[Event]) -> List[str]:
        counts = Counter(e.item_id for e in events if e.item_id)
        duplicates = [item_id for item_id, n in counts.items() if n > 1]
        if duplicates:
            log_with_context(
                logger,
                logging.WARNING,
                "Batch contains duplicate item ids; each occurrence is ingested separately",
                duplicate_ids=duplicates[:20],
                batch_size=len(events),
            )
        return duplicates

    def _encode_all(self, batch: _BatchState) -> None:
        for slot, event in enumerate(batch.events):
            try:
                record = self.encoder.encode(event)
            except PipelineError as e:
                self._fail_item(batch, slot, event.item_id, e, attempt=1)
                continue
            record.slot = slot
            batch.records[id(record)] = record

    # =========================================================================
    # Submission and completion
    # =========================================================================

    async def _ingest(self, batch: _BatchState, deadline: Deadline) -> int:
        """Submit the encoded records. Returns how many were resubmitted."""
        try:
            session = await self.sessions.acquire(deadline)
        except ConnectError as e:
            log_exception(
                logger,
                e,
                "Cannot open stream; failing batch",
                include_traceback=False,
                records_failed=len(batch.records),
            )
            for record in batch.records.values():
                self._fail_item(batch, record.slot, record.item_id, e, attempt=0)
            return 0

        resubmitted_before = session.stats.resubmitted
        working = deadline.with_margin(self.safety_margin_ms)
        with LogContext(session_id=session.session_id):
            try:
                await self._submit_and_drain(session, batch, working)
            finally:
                self._settle_ready(session, batch)
                if any(r.sequence is not None for r in batch.unsettled()):
                    # The session fails what is still outstanding and counts it.
                    await session.close(Deadline.from_timeout(0))
                    self._settle_ready(session, batch)
                self._fail_unsettled(batch)
                await self.sessions.release(session, working)
        return session.stats.resubmitted - resubmitted_before

    def _settle_ready(self, session: StreamSession, batch: _BatchState) -> None:
        for completion in session.ready_completions():
            self._on_completion(batch, completion)

    async def _submit_and_drain(
        self, session: StreamSession, batch: _BatchState, working: Deadline
    ) -> None:
        loop = asyncio.get_running_loop()
        drain_task = loop.create_task(self._drain(session, batch))
        try:
            await self._submit_all(session, batch, working)
            await session.flush(working)
        finally:
            drain_task.cancel()
            await asyncio.gather(drain_task, return_exceptions=True)

    async def _submit_all(
        self, session: StreamSession, batch: _BatchState, working: Deadline
    ) -> None:
        records = sorted(batch.records.values(), key=lambda r: r.slot)
        for index, record in enumerate(records):
            try:
                if working.expired():
                    raise AdmissionError("Deadline reached before submission")
                await session.submit(record, working)
            except AdmissionError as e:
                batch.admission_error = e
                log_exception(
                    logger,
                    e,
                    "Stopped submitting",
                    level=logging.WARNING,
                    include_traceback=False,
                    records_submitted=index,
                    records_outstanding=session.outstanding_count,
                    state=session.state.value,
                )
                return

    async def _drain(self, session: StreamSession, batch: _BatchState) -> None:
        async for completion in session.poll_completions():
            self._on_completion(batch, completion)

    def _on_completion(self, batch: _BatchState, completion: Completion) -> None:
        record = completion.record
        if not batch.owns(record):
            log_with_context(
                logger,
                logging.DEBUG,
                "Ignoring completion from an earlier batch",
                sequence=completion.sequence,
                item_id=completion.item_id,
            )
            return
        if completion.succeeded:
            result = ItemResult.ok(completion.item_id)
        else:
            result = ItemResult.failed(completion.item_id, completion.error)
        if not batch.settle(record.slot, result):
            log_with_context(
                logger,
                logging.ERROR,
                "Second terminal outcome for one record ignored",
                sequence=completion.sequence,
                item_id=completion.item_id,
            )

    def _fail_unsettled(self, batch: _BatchState) -> None:
        for record in batch.unsettled():
            if record.sequence is None:
                error = batch.admission_error or AdmissionError(
                    "Record was not submitted before the deadline"
                )
            else:
                error = FlushTimeout(
                    f"Record {record.sequence} unacknowledged at the flush deadline",
                    context={"sequence": record.sequence},
                )
            self._fail_item(batch, record.slot, record.item_id, error, attempt=1)

    def _fail_item(
        self,
        batch: _BatchState,
        slot: int,
        item_id: str,
        error: PipelineError,
        attempt: int,
    ) -> None:
        """Failures decided here; the session counts and logs its own."""
        batch.settle(slot, ItemResult.failed(item_id, error))
        metrics.record_failed(self.table_name, error.error_kind)
        log_with_context(
            logger,
            logging.WARNING,
            "Item failed",
            item_id=item_id,
            error_kind=error.error_kind,
            error_message=str(error)[:500],
            attempt=attempt,
        )

    # =========================================================================
    # Reporting
    # =========================================================================

    def _report(self, outcome: BatchOutcome, duration_s: float, resubmitted: int) -> None:
        failed = sum(1 for r in outcome.results if not r.success)
        succeeded = len(outcome.results) - failed
        metrics.record_batch(self.table_name, duration_s, succeeded, failed)
        log_with_context(
            logger,
            logging.INFO if failed == 0 else logging.WARNING,
            format_batch_summary(
                len(outcome.results),
                succeeded,
                failed,
                duration_ms=duration_s * 1000,
                resubmitted=resubmitted,
            ),
            batch_size=len(outcome.results),
            records_succeeded=succeeded,
            records_failed=failed,
            records_resubmitted=resubmitted,
            duration_ms=round(duration_s * 1000, 2),
        )


__all__ = ["BatchOrchestrator", "SessionSource"]
