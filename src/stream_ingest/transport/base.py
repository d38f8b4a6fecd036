"""
Remote table service interface.

A TableService performs the stream handshake for one table and returns a
TableStream. A stream carries encoded records out and acknowledgments back:

    stream.send(sequence, payload)     # fire and forget
    async for ack in stream.acks():    # one Ack per sequence, any order
        ...

An Ack with ``error`` set is a rejection of that record. Transport failures
surface as exceptions from ``send`` or from the ``acks()`` iterator; the
session treats either as a stream fault.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from core.auth.credentials import ClientCredentials
from stream_ingest.schemas.descriptors import TableSchema


@dataclass(frozen=True)
class TableProperties:
    """Handshake payload: target table plus the descriptor records conform to."""

    table_name: str
    schema: TableSchema


@dataclass(frozen=True)
class Ack:
    sequence: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class TableStream(Protocol):
    """One physical stream to the table service."""

    async def send(self, sequence: int, payload: bytes) -> None:
        ...

    def acks(self) -> AsyncIterator[Ack]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class TableService(Protocol):
    """Opens streams to the remote table service."""

    async def connect(
        self, table: TableProperties, credentials: ClientCredentials
    ) -> TableStream:
        ...


__all__ = ["TableProperties", "Ack", "TableStream", "TableService"]
