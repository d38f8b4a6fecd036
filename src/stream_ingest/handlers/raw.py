"""Entry point for any other invocation: one event, one row."""

import logging
from typing import Any, Optional

from core.errors.exceptions import IngestError
from core.logging.context_managers import LogContext
from stream_ingest.runtime import IngestRuntime, deadline_from_context, get_runtime
from stream_ingest.schemas.events import event_from_invocation

logger = logging.getLogger(__name__)

SUCCESS = "Success"


def raw_event_handler(event: Any, context: Any, runtime: Optional[IngestRuntime] = None) -> str:
    """
    Ingest the invocation payload and its context as one raw event row.

    Raises:
        IngestError: The row was not acknowledged; the host retries the
            invocation
    """
    deadline = deadline_from_context(context)
    runtime = runtime or get_runtime()
    ingest_event = event_from_invocation(event, context)

    with LogContext(request_id=ingest_event.item_id or None, table=runtime.config.table_name):
        outcome = runtime.process([ingest_event], deadline)
        if outcome.all_succeeded:
            return SUCCESS

        result = outcome.results[0]
        raise IngestError(
            f"Failed to ingest event {result.item_id or '<no request id>'}: {result.reason}",
            context={"item_id": result.item_id, "error_kind": result.error_kind},
        )
