"""
Schemas for the stream ingestor.

- events: inbound Event model and host adapters
- records: encoded records, pending submissions, completions
- outcomes: per-item results and the partial batch response
- descriptors: protobuf table schemas
"""

from stream_ingest.schemas.descriptors import (
    AWS_RAW_EVENTS,
    SQS_MESSAGES,
    TableSchema,
    builtin_descriptor_set,
    builtin_schema,
    load_schema_from_descriptor_set,
    load_schema_from_file,
)
from stream_ingest.schemas.events import (
    Event,
    SqsMessageAttribute,
    SqsRecord,
    event_from_invocation,
    events_from_sqs,
)
from stream_ingest.schemas.outcomes import BatchOutcome, ItemResult
from stream_ingest.schemas.records import (
    Completion,
    EncodedRecord,
    FlushResult,
    PendingSubmission,
    SubmissionState,
)

__all__ = [
    # Events
    "Event",
    "SqsMessageAttribute",
    "SqsRecord",
    "events_from_sqs",
    "event_from_invocation",
    # Records
    "EncodedRecord",
    "PendingSubmission",
    "SubmissionState",
    "Completion",
    "FlushResult",
    # Outcomes
    "ItemResult",
    "BatchOutcome",
    # Descriptors
    "TableSchema",
    "SQS_MESSAGES",
    "AWS_RAW_EVENTS",
    "builtin_schema",
    "builtin_descriptor_set",
    "load_schema_from_descriptor_set",
    "load_schema_from_file",
]
