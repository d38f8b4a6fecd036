"""
Stream Session.

Owns one logical stream to the table service: the physical stream of the
current generation, the outstanding submissions, and the recovery of the
stream when it breaks.

State machine:

    uninitialized --open ok-------------> active
    uninitialized --open error----------> failed
    active --------transport fault------> recovering
    recovering ----reconnect, resend----> active
    recovering ----exhausted------------> failed    (outstanding marked failed)
    active --------fault, no recovery---> failed
    active --------close, flushed-------> closed
    active --------close, not flushed---> failed    (outstanding marked failed)

``closed`` and ``failed`` accept nothing. Every submitted record gets
exactly one Completion through poll_completions(); the record's in-flight
permit is returned when that Completion is drained.

Background tasks per session: one ack reader per stream generation, an ack
timeout watchdog, and a recovery task while recovering. Everything that
changes state is synchronous, so these tasks and the submitting coroutine
never observe a half-applied change.
"""

import asyncio
import itertools
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Coroutine, List, Optional

from config.config import StreamOptions
from core.errors.exceptions import (
    AckTimeout,
    AdmissionError,
    AuthenticationError,
    ConnectError,
    FlushTimeout,
    PipelineError,
    RecordRejected,
    TransportFault,
    wrap_transport_error,
)
from core.logging.context_managers import LogContext, StreamOperation
from core.logging.utilities import log_exception, log_with_context
from core.types import CredentialProvider, ErrorCategory
from stream_ingest import metrics
from stream_ingest.common.deadline import Deadline
from stream_ingest.common.inflight import InflightTracker
from stream_ingest.common.recovery import RecoveryController
from stream_ingest.schemas.records import (
    Completion,
    EncodedRecord,
    FlushResult,
    PendingSubmission,
    SubmissionState,
)
from stream_ingest.transport.base import Ack, TableProperties, TableService, TableStream

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    RECOVERING = "recovering"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


ALLOWED_TRANSITIONS = {
    SessionState.UNINITIALIZED: {SessionState.ACTIVE, SessionState.FAILED, SessionState.CLOSED},
    SessionState.ACTIVE: {SessionState.RECOVERING, SessionState.CLOSED, SessionState.FAILED},
    SessionState.RECOVERING: {SessionState.ACTIVE, SessionState.FAILED, SessionState.CLOSED},
    SessionState.CLOSED: set(),
    SessionState.FAILED: set(),
}

# Posted once when the session ends so every poll_completions() call returns.
_END = object()


@dataclass
class SessionStats:
    submitted: int = 0
    acked: int = 0
    failed: int = 0
    resubmitted: int = 0
    recoveries: int = 0


def _as_connect_error(exc: Exception) -> ConnectError:
    if isinstance(exc, ConnectError):
        return exc
    if isinstance(exc, PipelineError) and exc.category == ErrorCategory.AUTH:
        return AuthenticationError(exc.message, cause=exc, context=exc.context)
    wrapped = wrap_transport_error(exc, connect=True)
    if isinstance(wrapped, ConnectError):
        return wrapped
    return ConnectError(
        f"Stream handshake failed: {exc}",
        cause=exc,
        context={"error_type": type(exc).__name__},
    )


class StreamSession:
    """
    One stream session for one table.

    Args:
        service: Remote table service
        table: Target table and schema for the handshake
        credentials: Provider called on every (re)connect
        options: Stream options
        session_id: Id used in logs (random if omitted)
    """

    def __init__(
        self,
        service: TableService,
        table: TableProperties,
        credentials: CredentialProvider,
        options: StreamOptions,
        session_id: Optional[str] = None,
    ):
        self.service = service
        self.table = table
        self.options = options
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.generation = 0
        self.stats = SessionStats()
        self.failure: Optional[PipelineError] = None

        self._credentials = credentials
        self._state = SessionState.UNINITIALIZED
        self._state_changed = asyncio.Event()
        self._tracker = InflightTracker(options.max_inflight_records)
        self._recovery = RecoveryController(options, table.table_name)
        self._sequences = itertools.count(1)
        self._send_lock = asyncio.Lock()
        self._completions: asyncio.Queue = asyncio.Queue(
            maxsize=options.max_inflight_records + 1
        )
        self._ended = False
        self._stream: Optional[TableStream] = None
        self._ack_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None
        self._abandoned: List[EncodedRecord] = []

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def table_name(self) -> str:
        return self.table.table_name

    @property
    def outstanding_count(self) -> int:
        return self._tracker.outstanding_count

    @property
    def high_watermark(self) -> int:
        return self._tracker.high_watermark

    @property
    def is_idle(self) -> bool:
        """Active with nothing outstanding and nothing left to drain."""
        return self._state is SessionState.ACTIVE and self._tracker.held == 0

    def _set_state(self, new_state: SessionState) -> None:
        previous = self._state
        if new_state not in ALLOWED_TRANSITIONS[previous]:
            raise RuntimeError(
                f"Invalid session transition {previous.value} -> {new_state.value}"
            )
        self._state = new_state
        changed, self._state_changed = self._state_changed, asyncio.Event()
        changed.set()
        metrics.update_session_state(self.table_name, new_state.value)
        log_with_context(
            logger,
            logging.DEBUG,
            "Session state changed",
            state=new_state.value,
            previous_state=previous.value,
            generation=self.generation,
        )

    # =========================================================================
    # Open
    # =========================================================================

    async def _connect(self) -> TableStream:
        credentials = self._credentials.get_credentials()
        return await self.service.connect(self.table, credentials)

    async def open(self, deadline: Optional[Deadline] = None) -> "StreamSession":
        """
        Perform the handshake and start the background tasks.

        Raises:
            ConnectError: Handshake failed (AuthenticationError and
                SchemaMismatchError for their specific causes). Not retried.
        """
        if self._state is not SessionState.UNINITIALIZED:
            raise ConnectError(f"Session {self.session_id} is already {self._state.value}")

        try:
            if deadline is None:
                stream = await self._connect()
            elif deadline.expired():
                raise TimeoutError("deadline expired before the stream handshake")
            else:
                stream = await asyncio.wait_for(self._connect(), deadline.remaining())
        except Exception as e:
            error = _as_connect_error(e)
            self.failure = error
            self._set_state(SessionState.FAILED)
            self._post_end()
            log_exception(
                logger,
                error,
                "Stream handshake failed",
                include_traceback=False,
                table_name=self.table_name,
                schema=self.table.schema.name,
            )
            if error is e:
                raise
            raise error from e

        self._stream = stream
        self.generation = 1
        self._set_state(SessionState.ACTIVE)
        self._ack_task = self._spawn(self._read_acks(stream, self.generation), "ack-reader")
        if self.options.ack_timeout_ms > 0:
            self._watchdog_task = self._spawn(self._watch_ack_timeouts(), "ack-watchdog")

        log_with_context(
            logger,
            logging.INFO,
            "Stream session opened",
            table_name=self.table_name,
            schema=self.table.schema.name,
            max_inflight=self.options.max_inflight_records,
        )
        return self

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        # Tasks copy the current context, so their logs carry the session id.
        with LogContext(session_id=self.session_id, table=self.table_name):
            return asyncio.get_running_loop().create_task(
                coro, name=f"{name}-{self.session_id}"
            )

    # =========================================================================
    # Submit
    # =========================================================================

    async def _await_active(self, deadline: Optional[Deadline]) -> None:
        while self._state is SessionState.RECOVERING:
            remaining = None if deadline is None else deadline.remaining()
            if remaining is not None and remaining <= 0:
                raise AdmissionError(
                    "Deadline reached while the stream was recovering",
                    context={"state": self._state.value},
                )
            try:
                await asyncio.wait_for(self._state_changed.wait(), remaining)
            except asyncio.TimeoutError:
                continue

        if self._state is not SessionState.ACTIVE:
            raise AdmissionError(
                f"Session is {self._state.value}",
                context={"state": self._state.value},
            )

    async def submit(
        self, record: EncodedRecord, deadline: Optional[Deadline] = None
    ) -> PendingSubmission:
        """
        Transmit one record under the next sequence number.

        Suspends while the in-flight ceiling is reached or the stream is
        recovering. A send that fails leaves the record outstanding and
        starts recovery, which resends it.

        Raises:
            AdmissionError: Session is not active, or the deadline passed
                before a slot became free
        """
        await self._await_active(deadline)
        permit = await self._tracker.admit(None if deadline is None else deadline.remaining())
        try:
            while True:
                async with self._send_lock:
                    if self._state is SessionState.ACTIVE:
                        return await self._send_new(permit, record)
                # State changed while waiting for the lock.
                await self._await_active(deadline)
        finally:
            if permit.sequence is None:
                self._tracker.release_permit(permit)

    async def _send_new(self, permit, record: EncodedRecord) -> PendingSubmission:
        sequence = next(self._sequences)
        record.sequence = sequence
        submission = PendingSubmission(
            sequence=sequence,
            item_id=record.item_id,
            record=record,
            submitted_at=time.monotonic(),
            generation=self.generation,
        )
        self._tracker.register(permit, submission)
        self.stats.submitted += 1
        metrics.update_inflight(self.table_name, self._tracker.held)

        try:
            await self._stream.send(sequence, record.payload)
        except Exception as e:
            self._on_fault(wrap_transport_error(e))
        else:
            metrics.record_submitted(self.table_name)
        return submission

    # =========================================================================
    # Acknowledgments and completions
    # =========================================================================

    async def _read_acks(self, stream: TableStream, generation: int) -> None:
        try:
            async for ack in stream.acks():
                self._on_ack(ack)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation == self.generation:
                self._on_fault(wrap_transport_error(e))
            return

        if generation == self.generation:
            self._on_fault(TransportFault("Acknowledgment stream ended unexpectedly"))

    def _on_ack(self, ack: Ack) -> None:
        if self._tracker.get(ack.sequence) is None:
            log_with_context(
                logger,
                logging.DEBUG,
                "Ignoring acknowledgment for completed record",
                sequence=ack.sequence,
            )
            return
        if ack.ok:
            self._complete(ack.sequence, None)
        else:
            self._complete(ack.sequence, RecordRejected(ack.sequence, ack.error))

    def _complete(self, sequence: int, error: Optional[PipelineError]) -> bool:
        state = SubmissionState.ACKED if error is None else SubmissionState.FAILED
        submission = self._tracker.complete(sequence, state)
        if submission is None:
            return False

        if error is None:
            self.stats.acked += 1
            metrics.record_acked(self.table_name)
        else:
            self.stats.failed += 1
            metrics.record_failed(self.table_name, error.error_kind)
            log_with_context(
                logger,
                logging.WARNING,
                "Record failed",
                item_id=submission.item_id,
                sequence=sequence,
                error_kind=error.error_kind,
                error_message=str(error)[:500],
                attempt=submission.attempts,
            )

        self._completions.put_nowait(
            Completion(sequence, submission.item_id, submission.record, error)
        )
        return True

    def _post_end(self) -> None:
        if not self._ended:
            self._ended = True
            self._completions.put_nowait(_END)

    def _take(self, item: Completion) -> Completion:
        self._tracker.release(item.sequence)
        metrics.update_inflight(self.table_name, self._tracker.held)
        return item

    async def poll_completions(self) -> AsyncIterator[Completion]:
        """
        Terminal outcomes as they arrive, each exactly once across all calls.

        Returns when the session has ended and every outcome was drained.
        """
        while True:
            item = await self._completions.get()
            if item is _END:
                self._completions.put_nowait(_END)
                return
            yield self._take(item)

    def ready_completions(self) -> List[Completion]:
        """Drain the outcomes that are already available, without waiting."""
        ready = []
        while True:
            try:
                item = self._completions.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _END:
                self._completions.put_nowait(_END)
                break
            ready.append(self._take(item))
        return ready

    async def _watch_ack_timeouts(self) -> None:
        timeout = self.options.ack_timeout_ms / 1000
        interval = min(max(timeout / 10, 0.005), 1.0)
        while True:
            await asyncio.sleep(interval)
            if self._state is not SessionState.ACTIVE:
                continue
            now = time.monotonic()
            for submission in self._tracker.outstanding():
                waited = now - submission.submitted_at
                if waited >= timeout:
                    self._complete(
                        submission.sequence, AckTimeout(submission.sequence, waited * 1000)
                    )

    # =========================================================================
    # Faults and recovery
    # =========================================================================

    def _on_fault(self, fault: PipelineError) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        log_exception(
            logger,
            fault,
            "Stream fault",
            level=logging.WARNING,
            include_traceback=False,
            generation=self.generation,
            outstanding=self._tracker.outstanding_count,
        )
        self._set_state(SessionState.RECOVERING)
        self._recovery_task = self._spawn(self._handle_fault(fault), "recovery")

    async def _handle_fault(self, fault: PipelineError) -> None:
        if not self.options.recovery_enabled:
            await self._fail(fault)
            return
        try:
            await self._recover()
        except PipelineError as e:
            await self._fail(e)

    async def _recover(self) -> None:
        self._cancel(self._ack_task)
        await self._close_stream_quietly(self._stream)

        stream, retry_stats = await self._recovery.run(self._connect)

        async with self._send_lock:
            if self._state is not SessionState.RECOVERING:
                await self._close_stream_quietly(stream)
                return

            self._stream = stream
            self.generation += 1
            self.stats.recoveries += 1
            self._ack_task = self._spawn(self._read_acks(stream, self.generation), "ack-reader")
            self._set_state(SessionState.ACTIVE)

            with StreamOperation(
                logger,
                "resubmit",
                generation=self.generation,
                attempt=retry_stats.attempts,
                records_resubmitted=0,
            ) as op:
                resent = 0
                for submission in self._tracker.outstanding():
                    if submission.state is not SubmissionState.PENDING:
                        continue
                    submission.attempts += 1
                    submission.generation = self.generation
                    submission.submitted_at = time.monotonic()
                    try:
                        await stream.send(submission.sequence, submission.record.payload)
                    except Exception as e:
                        self._on_fault(wrap_transport_error(e))
                        return
                    resent += 1
                    op.add_context(records_resubmitted=resent)
                    self.stats.resubmitted += 1
                    metrics.record_submitted(self.table_name, resubmission=True)

    async def _fail(self, error: PipelineError) -> None:
        """Enter ``failed``: every outstanding record fails with ``error``."""
        if self._state.is_terminal:
            return

        outstanding = self._tracker.outstanding()
        self._abandoned = [s.record for s in outstanding]
        self.failure = error
        self._set_state(SessionState.FAILED)
        for submission in outstanding:
            self._complete(submission.sequence, error)
        self._post_end()
        self._cancel_tasks()

        log_exception(
            logger,
            error,
            "Stream session failed",
            include_traceback=False,
            records_failed=len(outstanding),
            generation=self.generation,
        )
        await self._close_stream_quietly(self._stream)

    def _cancel(self, task: Optional[asyncio.Task]) -> None:
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _cancel_tasks(self) -> None:
        for task in (self._ack_task, self._watchdog_task, self._recovery_task):
            self._cancel(task)

    async def _close_stream_quietly(self, stream: Optional[TableStream]) -> None:
        if stream is None:
            return
        try:
            await stream.close()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error closing stream",
                level=logging.WARNING,
                include_traceback=False,
                generation=self.generation,
            )

    # =========================================================================
    # Flush and close
    # =========================================================================

    async def flush(self, deadline: Optional[Deadline] = None) -> FlushResult:
        """
        Wait for the outstanding set to drain.

        Waits at most ``flush_timeout_ms``, cut short by ``deadline``. On
        timeout the still-outstanding submissions are returned, not failed.
        """
        timeout = self.options.flush_timeout_ms / 1000
        if deadline is not None:
            timeout = deadline.bound(timeout)

        completed = await self._tracker.wait_empty(timeout)
        outstanding = self._tracker.outstanding()
        if not completed:
            log_with_context(
                logger,
                logging.WARNING,
                "Flush timed out",
                records_outstanding=len(outstanding),
                remaining_ms=round(timeout * 1000, 2),
                state=self._state.value,
            )
        return FlushResult(completed=completed, outstanding=outstanding)

    async def close(self, deadline: Optional[Deadline] = None) -> FlushResult:
        """
        Flush, then shut the stream down.

        If the flush does not complete the session fails and the remaining
        outstanding records are marked failed with FlushTimeout.
        """
        if self._state.is_terminal:
            return FlushResult(completed=True)
        if self._state is SessionState.UNINITIALIZED:
            self._set_state(SessionState.CLOSED)
            self._post_end()
            return FlushResult(completed=True)

        result = await self.flush(deadline)
        if self._state.is_terminal:
            return result

        if not result.completed:
            unacked = self.get_unacked_records()
            log_with_context(
                logger,
                logging.WARNING,
                "Closing stream with unacknowledged records",
                records_outstanding=len(unacked),
                item_ids=[r.item_id for r in unacked][:20],
            )
            await self._fail(
                FlushTimeout(
                    f"{len(unacked)} record(s) unacknowledged at close",
                    context={"outstanding": len(unacked)},
                )
            )
            return result

        with StreamOperation(
            logger,
            "close",
            records_submitted=self.stats.submitted,
            records_succeeded=self.stats.acked,
            records_failed=self.stats.failed,
            records_resubmitted=self.stats.resubmitted,
        ):
            self._set_state(SessionState.CLOSED)
            self._post_end()
            self._cancel_tasks()
            await self._close_stream_quietly(self._stream)
        return result

    def get_unacked_records(self) -> List[EncodedRecord]:
        """
        Records without an acknowledgment.

        While the session runs these are the outstanding records. After it
        failed they are the records it abandoned.
        """
        outstanding = self._tracker.outstanding()
        if outstanding:
            return [s.record for s in outstanding]
        return list(self._abandoned)


async def open_session(
    service: TableService,
    table: TableProperties,
    credentials: CredentialProvider,
    options: StreamOptions,
    deadline: Optional[Deadline] = None,
) -> StreamSession:
    """Create a session and perform its handshake."""
    session = StreamSession(service, table, credentials, options)
    return await session.open(deadline)


__all__ = [
    "SessionState",
    "SessionStats",
    "ALLOWED_TRANSITIONS",
    "StreamSession",
    "open_session",
]
