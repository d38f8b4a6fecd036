"""
Per-container runtime.

A serverless container runs many invocations one after another. The runtime
is built once per container and keeps what is worth keeping between them:

- the table schema and record encoder
- the stream factory, which can keep an idle session open (reuse_session)
- one event loop, so a cached session's background tasks survive between
  invocations

Sessions are never shared by two batches at once.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from config.config import (
    INMEMORY_TRANSPORT,
    ZEROBUS_TRANSPORT,
    IngestConfig,
    StreamOptions,
    get_config,
)
from core.auth.credentials import EnvCredentialProvider, StaticCredentialProvider
from core.logging.setup import setup_logging
from core.logging.utilities import log_with_context
from core.types import CredentialProvider
from stream_ingest.common.deadline import Deadline
from stream_ingest.common.session import StreamSession
from stream_ingest.encoding.encoder import RecordEncoder
from stream_ingest.orchestrator import BatchOrchestrator
from stream_ingest.schemas.descriptors import TableSchema, builtin_schema, load_schema_from_file
from stream_ingest.schemas.events import Event
from stream_ingest.schemas.outcomes import BatchOutcome
from stream_ingest.transport.base import TableProperties, TableService
from stream_ingest.transport.inmemory import InMemoryTableService
from stream_ingest.transport.zerobus import build_zerobus_service

logger = logging.getLogger(__name__)

# Budget used when the host context cannot report its remaining time.
DEFAULT_BUDGET_MS = 60000


def deadline_from_context(context: Any, default_ms: int = DEFAULT_BUDGET_MS) -> Deadline:
    """Invocation deadline from the host context's remaining time."""
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    remaining_ms = get_remaining() if get_remaining is not None else default_ms
    return Deadline.from_remaining_ms(remaining_ms)


# =============================================================================
# Stream factory
# =============================================================================


class StreamFactory:
    """
    Opens sessions and, with ``reuse_session``, keeps an idle one around.

    ``recreate`` replaces a failed or closed session with a brand-new one.
    It is a separate transition from in-session recovery: the new session
    starts at generation 1 with an empty outstanding set. Records the old
    session left unacknowledged were already reported failed and are not
    carried over.
    """

    def __init__(
        self,
        service: TableService,
        table: TableProperties,
        credentials: CredentialProvider,
        options: StreamOptions,
        reuse_session: bool = False,
    ):
        self.service = service
        self.table = table
        self.credentials = credentials
        self.options = options
        self.reuse_session = reuse_session
        self.sessions_opened = 0
        self.recreations = 0
        self._session: Optional[StreamSession] = None

    @property
    def current(self) -> Optional[StreamSession]:
        return self._session

    async def acquire(self, deadline: Deadline) -> StreamSession:
        session = self._session
        if session is None:
            return await self._open(deadline)

        if session.is_idle:
            log_with_context(
                logger,
                logging.DEBUG,
                "Reusing stream session",
                session_reused=True,
                generation=session.generation,
            )
            return session

        if not session.state.is_terminal:
            # Busy or recovering from an earlier invocation; give it up.
            await session.close(Deadline.from_timeout(0))
        return await self.recreate(session, deadline)

    async def recreate(self, session: StreamSession, deadline: Deadline) -> StreamSession:
        """Replace a finished session with a new one."""
        unacked = session.get_unacked_records()
        log_with_context(
            logger,
            logging.INFO,
            "Recreating stream session",
            state=session.state.value,
            records_outstanding=len(unacked),
            item_ids=[r.item_id for r in unacked][:20],
        )
        self.recreations += 1
        if self._session is session:
            self._session = None
        return await self._open(deadline)

    async def _open(self, deadline: Deadline) -> StreamSession:
        session = StreamSession(self.service, self.table, self.credentials, self.options)
        await session.open(deadline)
        self.sessions_opened += 1
        if self.reuse_session:
            self._session = session
        return session

    async def release(self, session: StreamSession, deadline: Deadline) -> None:
        """End of batch: keep an idle session if reuse is on, else close it."""
        if self.reuse_session and session.is_idle:
            self._session = session
            return
        await session.close(deadline)
        if self._session is session:
            self._session = None

    async def shutdown(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close(Deadline.from_timeout(self.options.flush_timeout_ms / 1000))


# =============================================================================
# Transports and credentials
# =============================================================================

TransportBuilder = Callable[[IngestConfig], TableService]

TRANSPORTS: Dict[str, TransportBuilder] = {}


def register_transport(name: str, builder: TransportBuilder) -> None:
    TRANSPORTS[name] = builder


def build_transport(config: IngestConfig) -> TableService:
    builder = TRANSPORTS.get(config.transport)
    if builder is None:
        raise ValueError(
            f"Unknown transport '{config.transport}'. Registered: {sorted(TRANSPORTS)}"
        )
    return builder(config)


register_transport(ZEROBUS_TRANSPORT, build_zerobus_service)
register_transport(INMEMORY_TRANSPORT, lambda config: InMemoryTableService())


def credentials_from_config(config: IngestConfig) -> CredentialProvider:
    if config.client_id and config.client_secret:
        return StaticCredentialProvider(config.client_id, config.client_secret)
    if config.transport == INMEMORY_TRANSPORT:
        return StaticCredentialProvider("local", "local")
    return EnvCredentialProvider()


def load_table_schema(config: IngestConfig) -> TableSchema:
    if config.descriptor_path:
        return load_schema_from_file(
            config.descriptor_path, config.descriptor_file_name, config.message_name
        )
    return builtin_schema(config.schema)


# =============================================================================
# Runtime
# =============================================================================


class IngestRuntime:
    """Everything one container needs to process invocations."""

    def __init__(
        self,
        config: IngestConfig,
        service: Optional[TableService] = None,
        credentials: Optional[CredentialProvider] = None,
    ):
        self.config = config
        self.schema = load_table_schema(config)
        self.service = service if service is not None else build_transport(config)
        self.encoder = RecordEncoder(self.schema, limits=config.encoding)
        self.factory = StreamFactory(
            self.service,
            TableProperties(config.table_name, self.schema),
            credentials or credentials_from_config(config),
            config.stream,
            reuse_session=config.reuse_session,
        )
        self.orchestrator = BatchOrchestrator(
            self.encoder,
            self.factory,
            safety_margin_ms=config.safety_margin_ms,
            table_name=config.table_name,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def run(self, coro):
        return self.loop.run_until_complete(coro)

    def process(self, events: Sequence[Event], deadline: Deadline) -> BatchOutcome:
        return self.run(self.orchestrator.process(events, deadline))

    def close(self) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        loop = self._loop
        try:
            loop.run_until_complete(self.factory.shutdown())
            pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.close()


_runtime: Optional[IngestRuntime] = None


def get_runtime() -> IngestRuntime:
    """Container-wide runtime, built from the loaded config on first use."""
    global _runtime
    if _runtime is None:
        config = get_config()
        setup_logging(
            level=config.log_level,
            json_format=config.log_json,
            table=config.table_name,
        )
        _runtime = IngestRuntime(config)
        logger.info(
            "Ingest runtime initialized",
            extra={
                "table_name": config.table_name,
                "schema": _runtime.schema.name,
                "max_inflight": config.stream.max_inflight_records,
            },
        )
    return _runtime


def set_runtime(runtime: IngestRuntime) -> None:
    global _runtime
    _runtime = runtime


def reset_runtime() -> None:
    global _runtime
    if _runtime is not None:
        _runtime.close()
    _runtime = None


__all__ = [
    "DEFAULT_BUDGET_MS",
    "deadline_from_context",
    "StreamFactory",
    "TRANSPORTS",
    "register_transport",
    "build_transport",
    "credentials_from_config",
    "load_table_schema",
    "IngestRuntime",
    "get_runtime",
    "set_runtime",
    "reset_runtime",
]
