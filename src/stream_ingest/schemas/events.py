"""
Inbound event models and host event adapters.

An Event is the unit the orchestrator ingests: a stable item_id used for
partial-failure reporting, the raw payload, and optional attribute and
metadata mappings. Adapters turn the serverless host's invocation payloads
into Events:

- SQS batch: one Event per record, item_id = messageId
- Any other invocation: one Event, item_id = the invocation's request id

Adapters never drop a record. A record that cannot be parsed still becomes
an Event carrying a ``defect``, which the encoder reports as a per-item
failure under the record's id (or the empty id when it has none).
"""

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class Event(BaseModel):
    """Immutable input unit.

    Attributes:
        item_id: Identifier reported back to the host when the item fails
        payload: Raw payload (text, bytes, or structured fields)
        attributes: Optional key/value attribute mapping
        metadata: Optional metadata mapping (host-specific fields)
        defect: Why the host record could not be adapted, if it could not
    """

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(default="", description="Stable id for failure reporting")
    payload: Any = Field(default=None, description="Raw payload bytes, text or fields")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    defect: Optional[str] = Field(default=None)


# =============================================================================
# SQS
# =============================================================================


class SqsMessageAttribute(BaseModel):
    """User message attribute as delivered in an SQS batch (base64 binaries)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    string_value: Optional[str] = Field(default=None, alias="stringValue")
    binary_value: Optional[str] = Field(default=None, alias="binaryValue")
    string_list_values: List[str] = Field(default_factory=list, alias="stringListValues")
    binary_list_values: List[str] = Field(default_factory=list, alias="binaryListValues")
    data_type: Optional[str] = Field(default=None, alias="dataType")


class SqsRecord(BaseModel):
    """One record of an SQS batch invocation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_id: Optional[str] = Field(default=None, alias="messageId")
    receipt_handle: Optional[str] = Field(default=None, alias="receiptHandle")
    body: Optional[str] = Field(default=None)
    md5_of_body: Optional[str] = Field(default=None, alias="md5OfBody")
    md5_of_message_attributes: Optional[str] = Field(
        default=None, alias="md5OfMessageAttributes"
    )
    attributes: Dict[str, str] = Field(default_factory=dict)
    message_attributes: Dict[str, SqsMessageAttribute] = Field(
        default_factory=dict, alias="messageAttributes"
    )
    event_source_arn: Optional[str] = Field(default=None, alias="eventSourceARN")
    aws_region: Optional[str] = Field(default=None, alias="awsRegion")

    def to_event(self) -> Event:
        return Event(
            item_id=self.message_id or "",
            payload=self.body,
            attributes=dict(self.attributes),
            metadata={
                "receipt_handle": self.receipt_handle,
                "md5_of_body": self.md5_of_body,
                "md5_of_message_attributes": self.md5_of_message_attributes,
                "message_attributes": {
                    name: attr.model_dump() for name, attr in self.message_attributes.items()
                },
                "queue_arn": self.event_source_arn,
                "aws_region": self.aws_region,
            },
            defect=None if self.message_id else "record has no messageId",
        )


def events_from_sqs(invocation: Dict[str, Any]) -> List[Event]:
    """
    Convert an SQS batch invocation payload into Events, in record order.

    Queue ARN and region missing on a record are taken from the first record
    that has them, since a batch always comes from a single queue.
    """
    raw_records = invocation.get("Records") or []
    events: List[Event] = []
    queue_arn: Optional[str] = None
    aws_region: Optional[str] = None

    for index, raw in enumerate(raw_records):
        raw_id = raw.get("messageId") if isinstance(raw, dict) else None
        try:
            record = SqsRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "Malformed SQS record",
                extra={"item_id": raw_id or "", "error_message": str(e)[:200]},
            )
            events.append(
                Event(
                    item_id=str(raw_id) if raw_id else "",
                    defect=f"malformed SQS record at index {index}: {e.error_count()} errors",
                )
            )
            continue

        queue_arn = queue_arn or record.event_source_arn
        aws_region = aws_region or record.aws_region
        events.append(record.to_event())

    if queue_arn or aws_region:
        events = [_with_queue_defaults(e, queue_arn, aws_region) for e in events]
    return events


def _with_queue_defaults(
    event: Event, queue_arn: Optional[str], aws_region: Optional[str]
) -> Event:
    if event.defect:
        return event
    metadata = dict(event.metadata)
    metadata["queue_arn"] = metadata.get("queue_arn") or queue_arn
    metadata["aws_region"] = metadata.get("aws_region") or aws_region
    return event.model_copy(update={"metadata": metadata})


# =============================================================================
# Raw invocations
# =============================================================================

CONTEXT_ATTRIBUTES = (
    "aws_request_id",
    "function_name",
    "function_version",
    "invoked_function_arn",
    "memory_limit_in_mb",
    "log_group_name",
    "log_stream_name",
)


def describe_context(context: Any) -> Dict[str, Any]:
    """Serializable view of the host's invocation context object."""
    if context is None:
        return {}
    if isinstance(context, dict):
        return dict(context)

    described = {
        name: getattr(context, name)
        for name in CONTEXT_ATTRIBUTES
        if getattr(context, name, None) is not None
    }
    for name in ("identity", "client_context"):
        value = getattr(context, name, None)
        if value is not None:
            described[name] = _public_attrs(value)
    return described


def _public_attrs(obj: Any) -> Any:
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    return str(obj)


def deadline_epoch_ms(context: Any) -> int:
    """Invocation deadline as epoch milliseconds (0 when unknown)."""
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    if get_remaining is None:
        return 0
    return int(time.time() * 1000) + int(get_remaining())


def event_from_invocation(payload: Any, context: Any) -> Event:
    """Wrap an arbitrary invocation into a single Event keyed by request id."""
    described = describe_context(context)
    request_id = described.get("aws_request_id") or ""
    return Event(
        item_id=request_id,
        payload=payload,
        metadata={
            "context": described,
            "deadline_ms": deadline_epoch_ms(context),
        },
        defect=None if request_id else "invocation context has no request id",
    )


__all__ = [
    "Event",
    "SqsMessageAttribute",
    "SqsRecord",
    "events_from_sqs",
    "event_from_invocation",
    "describe_context",
    "deadline_epoch_ms",
]
