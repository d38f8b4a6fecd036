"""Remote table service interface, the Zerobus service and the in-memory one."""

from stream_ingest.transport.base import Ack, TableProperties, TableService, TableStream
from stream_ingest.transport.inmemory import (
    FaultPlan,
    InMemoryStream,
    InMemoryTableService,
    StoredRow,
)
from stream_ingest.transport.zerobus import (
    ZerobusStream,
    ZerobusTableService,
    build_zerobus_service,
)

__all__ = [
    "Ack",
    "TableProperties",
    "TableService",
    "TableStream",
    "FaultPlan",
    "StoredRow",
    "InMemoryStream",
    "InMemoryTableService",
    "ZerobusStream",
    "ZerobusTableService",
    "build_zerobus_service",
]
