"""
In-memory table service.

Implements the TableService protocol inside the process for local runs and
tests. The handshake checks credentials and the descriptor against the
table's schema, records are acknowledged asynchronously, and every accepted
payload is stored, so duplicates caused by recovery resends are visible.

Fault injection (FaultPlan):

    break_after_sends   the Nth send (counted across the service) is stored,
                        then the stream breaks and undelivered acks are lost
    fail_reconnects     the next K connects after a successful one fail
    connect_error       every connect raises this exception
    withhold_acks       sequences that are stored but never acknowledged
    reject_sequences    sequence -> reason, answered with a rejection
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Set

from core.auth.credentials import ClientCredentials
from core.errors.exceptions import AuthenticationError, SchemaMismatchError
from stream_ingest.transport.base import Ack, TableProperties

logger = logging.getLogger(__name__)

_BROKEN = object()
_CLOSED = object()


@dataclass
class FaultPlan:
    break_after_sends: Optional[int] = None
    fail_reconnects: int = 0
    connect_error: Optional[Exception] = None
    withhold_acks: Set[int] = field(default_factory=set)
    reject_sequences: Dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredRow:
    """One payload as received by the service."""

    table: str
    sequence: int
    generation: int
    payload: bytes = field(repr=False)


class InMemoryStream:
    """One stream of the in-memory service."""

    def __init__(
        self,
        service: "InMemoryTableService",
        table: str,
        generation: int,
        ack_delay: float,
    ):
        self._service = service
        self.table = table
        self.generation = generation
        self._ack_delay = ack_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handles: List[asyncio.TimerHandle] = []
        self.broken = False
        self.closed = False

    async def send(self, sequence: int, payload: bytes) -> None:
        if self.broken:
            raise ConnectionError("stream closed: connection reset by peer")
        if self.closed:
            raise ConnectionError("stream closed")

        service = self._service
        service.send_count += 1
        service.rows.append(StoredRow(self.table, sequence, self.generation, payload))

        plan = service.faults
        if plan.break_after_sends is not None and service.send_count >= plan.break_after_sends:
            plan.break_after_sends = None
            self.break_stream()
            return

        if sequence in plan.withhold_acks:
            return
        ack = Ack(sequence, plan.reject_sequences.get(sequence))
        if self._ack_delay > 0:
            loop = asyncio.get_running_loop()
            self._handles.append(loop.call_later(self._ack_delay, self._deliver, ack))
        else:
            self._deliver(ack)

    def _deliver(self, ack: Ack) -> None:
        if not (self.broken or self.closed):
            self._queue.put_nowait(ack)

    def break_stream(self) -> None:
        """Fail the stream now. Acks not yet delivered are lost."""
        if self.broken or self.closed:
            return
        self.broken = True
        self._cancel_pending()
        logger.info(
            "In-memory stream broken",
            extra={"table_name": self.table, "generation": self.generation},
        )
        self._queue.put_nowait(_BROKEN)

    async def acks(self) -> AsyncIterator[Ack]:
        while True:
            item = await self._queue.get()
            if item is _BROKEN:
                raise ConnectionError("stream closed: connection reset by peer")
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if self.closed or self.broken:
            return
        self.closed = True
        self._cancel_pending()
        self._queue.put_nowait(_CLOSED)

    def _cancel_pending(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        while not self._queue.empty():
            self._queue.get_nowait()


class InMemoryTableService:
    """
    TableService double backed by process memory.

    Args:
        expected_credentials: Credentials the handshake accepts (any if None)
        ack_delay: Seconds between a send and its acknowledgment
        auto_create: Register unknown tables with the first schema seen
    """

    def __init__(
        self,
        expected_credentials: Optional[ClientCredentials] = None,
        ack_delay: float = 0.0,
        auto_create: bool = True,
        faults: Optional[FaultPlan] = None,
    ):
        self.expected_credentials = expected_credentials
        self.ack_delay = ack_delay
        self.auto_create = auto_create
        self.faults = faults or FaultPlan()
        self.tables: Dict[str, str] = {}
        self.rows: List[StoredRow] = []
        self.streams: List[InMemoryStream] = []
        self.connect_count = 0
        self.send_count = 0
        self._successful_connects = 0

    def register_table(self, table_name: str, fingerprint: str) -> None:
        self.tables[table_name] = fingerprint

    async def connect(
        self, table: TableProperties, credentials: ClientCredentials
    ) -> InMemoryStream:
        self.connect_count += 1
        plan = self.faults

        if plan.connect_error is not None:
            raise plan.connect_error
        if self._successful_connects and plan.fail_reconnects > 0:
            plan.fail_reconnects -= 1
            raise ConnectionError("service unavailable")

        if self.expected_credentials is not None and (
            credentials.client_id != self.expected_credentials.client_id
            or credentials.client_secret != self.expected_credentials.client_secret
        ):
            raise AuthenticationError(
                f"Credentials for client {credentials.masked()} were rejected",
                context={"client_id": credentials.masked()},
            )

        expected = self.tables.get(table.table_name)
        if expected is None:
            if not self.auto_create:
                raise SchemaMismatchError(f"Table {table.table_name} does not exist")
            self.tables[table.table_name] = table.schema.fingerprint
        elif expected != table.schema.fingerprint:
            raise SchemaMismatchError(
                f"Descriptor {table.schema.name} does not match the schema of {table.table_name}",
                context={"table_name": table.table_name, "schema": table.schema.name},
            )

        self._successful_connects += 1
        stream = InMemoryStream(self, table.table_name, len(self.streams) + 1, self.ack_delay)
        self.streams.append(stream)
        return stream

    def rows_for(self, table_name: str) -> List[StoredRow]:
        return [row for row in self.rows if row.table == table_name]

    def sends_by_sequence(self, table_name: str) -> Dict[int, int]:
        """How many times each sequence reached the service."""
        counts: Dict[int, int] = {}
        for row in self.rows_for(table_name):
            counts[row.sequence] = counts.get(row.sequence, 0) + 1
        return counts

    def break_streams(self) -> None:
        for stream in self.streams:
            stream.break_stream()


__all__ = ["FaultPlan", "StoredRow", "InMemoryStream", "InMemoryTableService"]
