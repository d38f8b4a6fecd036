"""
Record Encoder.

Maps one Event onto a schema-conformant binary record:

    Event --mapper--> field mapping --populate--> protobuf message --> bytes

Encoding is pure. The clock is injected so ``ingested_at`` can be pinned in
tests, and nothing is logged or counted here; the orchestrator reports
failures per item. Every failure is an EncodeError, which is permanent for
the item and never retried.
"""

from datetime import UTC, datetime
from typing import Any, Callable, Dict, Optional

from google.protobuf.descriptor import FieldDescriptor
from google.protobuf.message import EncodeError as ProtobufEncodeError
from google.protobuf.message import Message

from config.config import EncodingLimits
from core.errors.exceptions import EncodeError, PipelineError
from stream_ingest.encoding.mappers import TableMapper, mapper_for_schema
from stream_ingest.schemas.descriptors import TableSchema
from stream_ingest.schemas.events import Event
from stream_ingest.schemas.records import EncodedRecord

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _is_repeated(field: FieldDescriptor) -> bool:
    is_repeated = getattr(field, "is_repeated", None)
    if is_repeated is None:
        return field.label == FieldDescriptor.LABEL_REPEATED
    return bool(is_repeated)


def _is_map(field: FieldDescriptor) -> bool:
    return (
        field.message_type is not None
        and field.message_type.GetOptions().map_entry
    )


class RecordEncoder:
    """
    Encodes Events for one table schema.

    Args:
        schema: Target table schema
        mapper: Event-to-fields mapper (defaults to the schema's mapper)
        limits: Size bounds for strings, binaries and the whole record
        clock: Returns the ingestion timestamp (UTC)
    """

    def __init__(
        self,
        schema: TableSchema,
        mapper: Optional[TableMapper] = None,
        limits: Optional[EncodingLimits] = None,
        clock: Optional[Clock] = None,
    ):
        self.schema = schema
        self.mapper = mapper or mapper_for_schema(schema.name)
        self.limits = limits or EncodingLimits()
        self._clock = clock or _utcnow

    def encode(self, event: Event) -> EncodedRecord:
        """
        Encode one event.

        Raises:
            EncodeError: Defective event, field type mismatch, unknown field
                or size violation
        """
        item_id = event.item_id
        if event.defect:
            raise EncodeError(event.defect, item_id=item_id)
        if not item_id:
            raise EncodeError("Event has no item_id", item_id=item_id)

        try:
            fields = self.mapper.to_fields(event, self._clock())
        except PipelineError:
            raise
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise EncodeError(
                f"Cannot map event onto {self.schema.name}: {e}", item_id=item_id, cause=e
            ) from e

        message = self.schema.new_message()
        self._populate(message, fields, item_id, "")

        try:
            payload = message.SerializeToString()
        except ProtobufEncodeError as e:
            raise EncodeError(
                f"Record does not serialize: {e}", item_id=item_id, cause=e
            ) from e

        if len(payload) > self.limits.max_record_bytes:
            raise EncodeError(
                f"Record is {len(payload)} bytes, limit is {self.limits.max_record_bytes}",
                item_id=item_id,
            )
        return EncodedRecord(item_id=item_id, payload=payload)

    def decode(self, payload: bytes) -> Message:
        return self.schema.decode(payload)

    def _populate(
        self, message: Message, values: Dict[str, Any], item_id: str, path: str
    ) -> None:
        fields_by_name = message.DESCRIPTOR.fields_by_name
        for name, value in values.items():
            field_path = f"{path}.{name}" if path else name
            field = fields_by_name.get(name)
            if field is None:
                raise EncodeError(
                    f"Unknown field '{field_path}' for {message.DESCRIPTOR.name}",
                    item_id=item_id,
                    field=field_path,
                )
            if value is None:
                continue

            if _is_map(field):
                self._populate_map(message, field, value, item_id, field_path)
            elif _is_repeated(field):
                self._populate_repeated(message, field, value, item_id, field_path)
            elif field.type == FieldDescriptor.TYPE_MESSAGE:
                if not isinstance(value, dict):
                    raise self._type_error(field_path, "a mapping", value, item_id)
                child = getattr(message, name)
                child.SetInParent()
                self._populate(child, value, item_id, field_path)
            else:
                scalar = self._scalar(field, value, item_id, field_path)
                self._assign(lambda: setattr(message, name, scalar), item_id, field_path)

    def _populate_map(
        self,
        message: Message,
        field: FieldDescriptor,
        value: Any,
        item_id: str,
        path: str,
    ) -> None:
        if not isinstance(value, dict):
            raise self._type_error(path, "a mapping", value, item_id)
        container = getattr(message, field.name)
        key_field = field.message_type.fields_by_name["key"]
        value_field = field.message_type.fields_by_name["value"]
        for key, item in value.items():
            entry_path = f"{path}[{key}]"
            key = self._scalar(key_field, key, item_id, entry_path)
            if value_field.type == FieldDescriptor.TYPE_MESSAGE:
                if not isinstance(item, dict):
                    raise self._type_error(entry_path, "a mapping", item, item_id)
                self._populate(container[key], item, item_id, entry_path)
            else:
                scalar = self._scalar(value_field, item, item_id, entry_path)
                self._assign(
                    lambda: container.__setitem__(key, scalar), item_id, entry_path
                )

    def _populate_repeated(
        self,
        message: Message,
        field: FieldDescriptor,
        value: Any,
        item_id: str,
        path: str,
    ) -> None:
        if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
            raise self._type_error(path, "a list", value, item_id)
        container = getattr(message, field.name)
        for index, item in enumerate(value):
            item_path = f"{path}[{index}]"
            if field.type == FieldDescriptor.TYPE_MESSAGE:
                if not isinstance(item, dict):
                    raise self._type_error(item_path, "a mapping", item, item_id)
                self._populate(container.add(), item, item_id, item_path)
            else:
                scalar = self._scalar(field, item, item_id, item_path)
                self._assign(lambda: container.append(scalar), item_id, item_path)

    def _scalar(self, field: FieldDescriptor, value: Any, item_id: str, path: str) -> Any:
        """Normalize text and binary values and enforce their size bounds."""
        if field.type == FieldDescriptor.TYPE_STRING:
            if isinstance(value, (bytes, bytearray)):
                try:
                    value = bytes(value).decode("utf-8")
                except UnicodeDecodeError as e:
                    raise EncodeError(
                        f"Field '{path}' is not valid UTF-8",
                        item_id=item_id,
                        field=path,
                        cause=e,
                    ) from e
            if not isinstance(value, str):
                raise self._type_error(path, "text", value, item_id)
            size = len(value.encode("utf-8"))
            if size > self.limits.max_string_bytes:
                raise EncodeError(
                    f"Field '{path}' is {size} bytes, limit is {self.limits.max_string_bytes}",
                    item_id=item_id,
                    field=path,
                )
        elif field.type == FieldDescriptor.TYPE_BYTES:
            if isinstance(value, str):
                value = value.encode("utf-8")
            if not isinstance(value, (bytes, bytearray)):
                raise self._type_error(path, "bytes", value, item_id)
            value = bytes(value)
            if len(value) > self.limits.max_binary_bytes:
                raise EncodeError(
                    f"Field '{path}' is {len(value)} bytes, "
                    f"limit is {self.limits.max_binary_bytes}",
                    item_id=item_id,
                    field=path,
                )
        return value

    @staticmethod
    def _assign(setter: Callable[[], None], item_id: str, path: str) -> None:
        try:
            setter()
        except (TypeError, ValueError) as e:
            raise EncodeError(
                f"Field '{path}' rejected value: {e}", item_id=item_id, field=path, cause=e
            ) from e

    @staticmethod
    def _type_error(path: str, expected: str, value: Any, item_id: str) -> EncodeError:
        return EncodeError(
            f"Field '{path}' must be {expected}, got {type(value).__name__}",
            item_id=item_id,
            field=path,
        )


__all__ = ["RecordEncoder", "Clock"]
