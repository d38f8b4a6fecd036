"""SQS batch entry point with partial batch failure reporting."""

import logging
from typing import Any, Dict, Optional

from core.logging.context_managers import LogContext
from stream_ingest.runtime import IngestRuntime, deadline_from_context, get_runtime
from stream_ingest.schemas.events import events_from_sqs

logger = logging.getLogger(__name__)


def sqs_handler(
    event: Dict[str, Any], context: Any, runtime: Optional[IngestRuntime] = None
) -> Dict[str, Any]:
    """
    Ingest an SQS batch.

    Returns the partial batch response: only the listed message ids are
    redelivered by the queue.
    """
    deadline = deadline_from_context(context)
    runtime = runtime or get_runtime()
    request_id = getattr(context, "aws_request_id", None)

    with LogContext(request_id=request_id, table=runtime.config.table_name):
        events = events_from_sqs(event or {})
        outcome = runtime.process(events, deadline)
        return outcome.to_batch_response()
