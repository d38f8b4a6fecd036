"""
Zerobus table service.

Adapts the Databricks Zerobus ingest SDK (databricks-zerobus-ingest-sdk) to
the TableService protocol. One SDK client is built per container from the
Zerobus endpoint and the workspace host. Each connect opens one SDK stream
for the session's table and descriptor.

The SDK's own stream recovery is switched off: the session owns recovery
and resends its outstanding records with their original sequence, so a
second, hidden resend loop underneath would break the one-outcome-per-record
accounting.

Every send decodes the wire record into a message of the table schema and
hands it to ``ingest_record``. The returned acknowledgment future is awaited
in the background. A resolved future becomes an Ack for the record's
sequence; a failed future breaks the stream, because the service reports
errors per stream, not per record.
"""

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Callable, Dict, Set

from config.config import IngestConfig, StreamOptions
from core.auth.credentials import ClientCredentials
from stream_ingest.schemas.descriptors import TableSchema
from stream_ingest.transport.base import Ack, TableProperties

logger = logging.getLogger(__name__)

_CLOSED = object()


class _StreamFault:
    def __init__(self, error: BaseException):
        self.error = error


class ZerobusStream:
    """One SDK stream."""

    def __init__(self, stream: Any, schema: TableSchema, table_name: str = ""):
        self._stream = stream
        self._schema = schema
        self.table = table_name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._waiters: Set[asyncio.Task] = set()
        self.broken = False
        self.closed = False

    async def send(self, sequence: int, payload: bytes) -> None:
        if self.broken or self.closed:
            raise ConnectionError("stream closed")

        ack = await self._stream.ingest_record(self._schema.decode(payload))
        if not inspect.isawaitable(ack):
            self._queue.put_nowait(Ack(sequence))
            return

        waiter = asyncio.ensure_future(self._await_ack(sequence, ack))
        self._waiters.add(waiter)
        waiter.add_done_callback(self._waiters.discard)

    async def _await_ack(self, sequence: int, ack: Any) -> None:
        try:
            await ack
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._break(e)
            return
        if not (self.broken or self.closed):
            self._queue.put_nowait(Ack(sequence))

    def _break(self, error: BaseException) -> None:
        if self.broken or self.closed:
            return
        self.broken = True
        logger.warning(
            "Zerobus stream failed",
            extra={
                "table_name": self.table,
                "error_type": type(error).__name__,
                "error_message": str(error)[:500],
            },
        )
        self._queue.put_nowait(_StreamFault(error))

    async def acks(self) -> AsyncIterator[Ack]:
        while True:
            item = await self._queue.get()
            if isinstance(item, _StreamFault):
                raise item.error
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for waiter in list(self._waiters):
            waiter.cancel()
        try:
            await self._stream.close()
        finally:
            self._queue.put_nowait(_CLOSED)


class ZerobusTableService:
    """
    TableService over the Zerobus SDK.

    Args:
        sdk: SDK client (``ZerobusSdk``)
        stream_options: SDK ``StreamConfigurationOptions`` for every stream
        table_properties: SDK ``TableProperties`` constructor, called with
            the table name and the message descriptor
        endpoint: Zerobus endpoint, for logs
    """

    def __init__(
        self,
        sdk: Any,
        stream_options: Any,
        table_properties: Callable[[str, Any], Any],
        endpoint: str = "",
    ):
        self.sdk = sdk
        self.stream_options = stream_options
        self.table_properties = table_properties
        self.endpoint = endpoint

    async def connect(
        self, table: TableProperties, credentials: ClientCredentials
    ) -> ZerobusStream:
        properties = self.table_properties(
            table.table_name, table.schema.message_class.DESCRIPTOR
        )
        stream = await self.sdk.create_stream(
            credentials.client_id,
            credentials.client_secret,
            properties,
            self.stream_options,
        )
        logger.debug(
            "Zerobus stream created",
            extra={
                "table_name": table.table_name,
                "schema": table.schema.name,
                "endpoint": self.endpoint,
                "client_id": credentials.masked(),
            },
        )
        return ZerobusStream(stream, table.schema, table.table_name)


def sdk_stream_options(options: StreamOptions) -> Dict[str, Any]:
    """Keyword arguments for the SDK's StreamConfigurationOptions."""
    kwargs: Dict[str, Any] = {
        "max_inflight_records": options.max_inflight_records,
        "recovery": False,
        "flush_timeout_ms": options.flush_timeout_ms,
    }
    if options.ack_timeout_ms > 0:
        kwargs["server_lack_of_ack_timeout_ms"] = options.ack_timeout_ms
    return kwargs


def _load_sdk():
    from zerobus.sdk.aio import ZerobusSdk
    from zerobus.sdk.shared import StreamConfigurationOptions
    from zerobus.sdk.shared import TableProperties as SdkTableProperties

    return ZerobusSdk, StreamConfigurationOptions, SdkTableProperties


def build_zerobus_service(config: IngestConfig) -> ZerobusTableService:
    """Build the SDK client from config. Called once per container."""
    sdk_class, options_class, properties_class = _load_sdk()
    return ZerobusTableService(
        sdk_class(config.endpoint, config.workspace_host),
        options_class(**sdk_stream_options(config.stream)),
        properties_class,
        endpoint=config.endpoint,
    )


__all__ = [
    "ZerobusStream",
    "ZerobusTableService",
    "sdk_stream_options",
    "build_zerobus_service",
]
