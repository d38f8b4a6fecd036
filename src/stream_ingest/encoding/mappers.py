"""
Table mappers: turn an Event into the field mapping of one table schema.

Each mapper knows the shape of one table. The encoder then writes the
mapping into a protobuf message and enforces type and size bounds, so
mappers only translate and never serialize.
"""

import base64
import binascii
import json
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Protocol

from core.errors.exceptions import EncodeError
from core.utils.json_serializers import json_serializer
from stream_ingest.schemas.descriptors import AWS_RAW_EVENTS, SQS_MESSAGES
from stream_ingest.schemas.events import Event

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def ingestion_times(now: datetime) -> tuple[int, int]:
    """Return (microseconds since epoch, days since epoch) for ``now``."""
    delta = now - EPOCH
    return delta // timedelta(microseconds=1), delta.days


class TableMapper(Protocol):
    """Maps an Event onto the fields of one table schema."""

    schema_name: str

    def to_fields(self, event: Event, now: datetime) -> Dict[str, Any]:
        ...


class SqsMessageMapper:
    """SQS batch records into table_sqs_messages rows."""

    schema_name = SQS_MESSAGES

    def to_fields(self, event: Event, now: datetime) -> Dict[str, Any]:
        metadata = event.metadata
        receipt_handle = metadata.get("receipt_handle")
        if not receipt_handle:
            raise EncodeError(
                "Receipt handle is required", item_id=event.item_id, field="receipt_handle"
            )

        ingested_at, ingested_date = ingestion_times(now)
        return {
            "message_id": event.item_id,
            "receipt_handle": receipt_handle,
            "body": _as_text(event.payload, event.item_id, "body"),
            "md5_of_body": metadata.get("md5_of_body") or "",
            "md5_of_message_attributes": metadata.get("md5_of_message_attributes") or "",
            "attributes": {str(k): str(v) for k, v in event.attributes.items()},
            "message_attributes": {
                name: _message_attribute(name, attr, event.item_id)
                for name, attr in (metadata.get("message_attributes") or {}).items()
            },
            "queue_arn": metadata.get("queue_arn") or "",
            "aws_region": metadata.get("aws_region") or "",
            "ingested_at": ingested_at,
            "ingested_date": ingested_date,
        }


class RawEventMapper:
    """Arbitrary invocations into table_aws_raw_events rows."""

    schema_name = AWS_RAW_EVENTS

    def to_fields(self, event: Event, now: datetime) -> Dict[str, Any]:
        ingested_at, ingested_date = ingestion_times(now)
        return {
            "request_id": event.item_id,
            "payload": _to_json(event.payload, event.item_id, "payload"),
            "context": _to_json(event.metadata.get("context") or {}, event.item_id, "context"),
            "deadline": int(event.metadata.get("deadline_ms") or 0),
            "ingested_at": ingested_at,
            "ingested_date": ingested_date,
        }


class PassthroughMapper:
    """
    For descriptor-file schemas: the event payload already is the field mapping.

    Nested messages are nested dicts, repeated fields are lists and map
    fields are dicts.
    """

    def __init__(self, schema_name: str):
        self.schema_name = schema_name

    def to_fields(self, event: Event, now: datetime) -> Dict[str, Any]:
        if not isinstance(event.payload, dict):
            raise EncodeError(
                f"Payload for {self.schema_name} must be a mapping of fields, "
                f"got {type(event.payload).__name__}",
                item_id=event.item_id,
            )
        return dict(event.payload)


MAPPERS = {
    SQS_MESSAGES: SqsMessageMapper,
    AWS_RAW_EVENTS: RawEventMapper,
}


def mapper_for_schema(schema_name: str) -> TableMapper:
    mapper_cls = MAPPERS.get(schema_name)
    if mapper_cls is None:
        return PassthroughMapper(schema_name)
    return mapper_cls()


def _as_text(value: Any, item_id: str, field: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodeError(
                f"Field '{field}' is not valid UTF-8", item_id=item_id, field=field, cause=e
            ) from e
    raise EncodeError(
        f"Field '{field}' must be text, got {type(value).__name__}",
        item_id=item_id,
        field=field,
    )


def _decode_base64(value: str, item_id: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise EncodeError(
            f"Field '{field}' is not valid base64", item_id=item_id, field=field, cause=e
        ) from e


def _message_attribute(name: str, attr: Dict[str, Any], item_id: str) -> Dict[str, Any]:
    prefix = f"message_attributes.{name}"
    fields: Dict[str, Any] = {
        "string_list_values": list(attr.get("string_list_values") or []),
        "binary_list_values": [
            _decode_base64(v, item_id, f"{prefix}.binary_list_values[{i}]")
            for i, v in enumerate(attr.get("binary_list_values") or [])
        ],
    }
    if attr.get("string_value") is not None:
        fields["string_value"] = attr["string_value"]
    if attr.get("binary_value") is not None:
        fields["binary_value"] = _decode_base64(
            attr["binary_value"], item_id, f"{prefix}.binary_value"
        )
    if attr.get("data_type") is not None:
        fields["data_type"] = attr["data_type"]
    return fields


def _to_json(value: Any, item_id: str, field: str) -> str:
    try:
        return json.dumps(value, default=json_serializer, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise EncodeError(
            f"Field '{field}' cannot be serialized as JSON: {e}",
            item_id=item_id,
            field=field,
            cause=e,
        ) from e


__all__ = [
    "TableMapper",
    "SqsMessageMapper",
    "RawEventMapper",
    "PassthroughMapper",
    "MAPPERS",
    "mapper_for_schema",
    "ingestion_times",
]
