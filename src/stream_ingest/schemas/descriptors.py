"""
Fixed table schemas as protobuf descriptors.

The remote table service checks the descriptor sent in the stream handshake
against the table's schema, and every record on the stream is a serialized
message of that descriptor. A TableSchema bundles the DescriptorProto with a
message class built from its own DescriptorPool, so two schemas that share a
file name never collide.

Two builtin schemas match the tables the ingestors were deployed against:

    table_sqs_messages    (file sqs_messages.proto)
    table_aws_raw_events  (file aws_raw_events.proto)

Other schemas are loaded from a serialized FileDescriptorSet
(``protoc --include_imports --descriptor_set_out``) by file name and
message name.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Callable, Dict

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, Message

from core.errors.exceptions import DescriptorError

logger = logging.getLogger(__name__)

SQS_MESSAGES = "table_sqs_messages"
AWS_RAW_EVENTS = "table_aws_raw_events"

_FDP = descriptor_pb2.FieldDescriptorProto


@dataclass(frozen=True, eq=False)
class TableSchema:
    """Descriptor plus generated message class for one table."""

    name: str
    file_name: str
    descriptor: descriptor_pb2.DescriptorProto = field(repr=False)
    message_class: type = field(repr=False)

    @cached_property
    def fingerprint(self) -> str:
        """Stable hash of the descriptor, compared during the handshake."""
        serialized = self.descriptor.SerializeToString(deterministic=True)
        return hashlib.sha256(serialized).hexdigest()

    def new_message(self) -> Message:
        return self.message_class()

    def decode(self, payload: bytes) -> Message:
        """Parse a wire record back into a message of this schema."""
        message = self.message_class()
        try:
            message.ParseFromString(payload)
        except DecodeError as e:
            raise DescriptorError(
                f"Payload is not a valid {self.name} record", cause=e
            ) from e
        return message


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    repeated: bool = False,
    type_name: str | None = None,
) -> None:
    proto_field = message.field.add(
        name=name,
        number=number,
        type=field_type,
        label=_FDP.LABEL_REPEATED if repeated else _FDP.LABEL_OPTIONAL,
    )
    if type_name:
        proto_field.type_name = type_name


def _add_map_entry(
    message: descriptor_pb2.DescriptorProto,
    entry_name: str,
    value_type: int,
    value_type_name: str | None = None,
) -> None:
    entry = message.nested_type.add(name=entry_name)
    entry.options.map_entry = True
    _add_field(entry, "key", 1, _FDP.TYPE_STRING)
    _add_field(entry, "value", 2, value_type, type_name=value_type_name)


def _sqs_messages_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="sqs_messages.proto", syntax="proto2"
    )
    message = file_proto.message_type.add(name=SQS_MESSAGES)
    prefix = f".{SQS_MESSAGES}"

    attrs = message.nested_type.add(name="MessageAttributes")
    _add_field(attrs, "string_value", 1, _FDP.TYPE_STRING)
    _add_field(attrs, "binary_value", 2, _FDP.TYPE_BYTES)
    _add_field(attrs, "string_list_values", 3, _FDP.TYPE_STRING, repeated=True)
    _add_field(attrs, "binary_list_values", 4, _FDP.TYPE_BYTES, repeated=True)
    _add_field(attrs, "data_type", 5, _FDP.TYPE_STRING)

    _add_map_entry(message, "AttributesEntry", _FDP.TYPE_STRING)
    _add_map_entry(
        message,
        "MessageAttributesEntry",
        _FDP.TYPE_MESSAGE,
        f"{prefix}.MessageAttributes",
    )

    _add_field(message, "message_id", 1, _FDP.TYPE_STRING)
    _add_field(message, "receipt_handle", 2, _FDP.TYPE_STRING)
    _add_field(message, "body", 3, _FDP.TYPE_STRING)
    _add_field(message, "md5_of_body", 4, _FDP.TYPE_STRING)
    _add_field(message, "md5_of_message_attributes", 5, _FDP.TYPE_STRING)
    _add_field(
        message, "attributes", 6, _FDP.TYPE_MESSAGE,
        repeated=True, type_name=f"{prefix}.AttributesEntry",
    )
    _add_field(
        message, "message_attributes", 7, _FDP.TYPE_MESSAGE,
        repeated=True, type_name=f"{prefix}.MessageAttributesEntry",
    )
    _add_field(message, "queue_arn", 8, _FDP.TYPE_STRING)
    _add_field(message, "aws_region", 9, _FDP.TYPE_STRING)
    _add_field(message, "ingested_at", 10, _FDP.TYPE_INT64)
    _add_field(message, "ingested_date", 11, _FDP.TYPE_INT32)
    return file_proto


def _aws_raw_events_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="aws_raw_events.proto", syntax="proto2"
    )
    message = file_proto.message_type.add(name=AWS_RAW_EVENTS)
    _add_field(message, "request_id", 1, _FDP.TYPE_STRING)
    _add_field(message, "payload", 2, _FDP.TYPE_STRING)
    _add_field(message, "context", 3, _FDP.TYPE_STRING)
    _add_field(message, "deadline", 4, _FDP.TYPE_INT64)
    _add_field(message, "ingested_at", 5, _FDP.TYPE_INT64)
    _add_field(message, "ingested_date", 6, _FDP.TYPE_INT32)
    return file_proto


BUILTIN_FILES: Dict[str, Callable[[], descriptor_pb2.FileDescriptorProto]] = {
    SQS_MESSAGES: _sqs_messages_file,
    AWS_RAW_EVENTS: _aws_raw_events_file,
}


def builtin_descriptor_set(name: str) -> bytes:
    """Serialized FileDescriptorSet for a builtin schema."""
    try:
        builder = BUILTIN_FILES[name]
    except KeyError:
        raise DescriptorError(
            f"Unknown builtin schema '{name}'. Available: {sorted(BUILTIN_FILES)}"
        ) from None
    descriptor_set = descriptor_pb2.FileDescriptorSet()
    descriptor_set.file.append(builder())
    return descriptor_set.SerializeToString()


def load_schema_from_descriptor_set(
    data: bytes, file_name: str, message_name: str
) -> TableSchema:
    """
    Load a top-level message from a serialized FileDescriptorSet.

    Every file in the set is added to a fresh pool in order, so imports must
    precede the files that use them (protoc --include_imports does this).

    Raises:
        DescriptorError: If the set cannot be parsed, or the file or message
            is not in it
    """
    descriptor_set = descriptor_pb2.FileDescriptorSet()
    try:
        descriptor_set.ParseFromString(data)
    except DecodeError as e:
        raise DescriptorError("Descriptor set is not a valid FileDescriptorSet", cause=e) from e

    file_proto = next((f for f in descriptor_set.file if f.name == file_name), None)
    if file_proto is None:
        raise DescriptorError(
            f"File descriptor '{file_name}' not found in descriptor set",
            context={"files": [f.name for f in descriptor_set.file]},
        )

    message_proto = next(
        (m for m in file_proto.message_type if m.name == message_name), None
    )
    if message_proto is None:
        raise DescriptorError(
            f"Message descriptor '{message_name}' not found in '{file_name}'",
            context={"messages": [m.name for m in file_proto.message_type]},
        )

    pool = descriptor_pool.DescriptorPool()
    try:
        for proto in descriptor_set.file:
            pool.AddSerializedFile(proto.SerializeToString())
        full_name = (
            f"{file_proto.package}.{message_name}" if file_proto.package else message_name
        )
        message_descriptor = pool.FindMessageTypeByName(full_name)
    except (TypeError, KeyError) as e:
        raise DescriptorError(
            f"Descriptor set for '{file_name}' does not build: {e}", cause=e
        ) from e

    logger.debug(
        "Loaded table schema",
        extra={"schema": message_name},
    )
    return TableSchema(
        name=message_name,
        file_name=file_name,
        descriptor=message_proto,
        message_class=message_factory.GetMessageClass(message_descriptor),
    )


def load_schema_from_file(path: Path | str, file_name: str, message_name: str) -> TableSchema:
    """Load a schema from a descriptor set file on disk."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DescriptorError(f"Cannot read descriptor set {path}: {e}", cause=e) from e
    return load_schema_from_descriptor_set(data, file_name, message_name)


_builtin_cache: Dict[str, TableSchema] = {}


def builtin_schema(name: str) -> TableSchema:
    """Builtin schema by message name, built once per process."""
    schema = _builtin_cache.get(name)
    if schema is None:
        data = builtin_descriptor_set(name)
        schema = load_schema_from_descriptor_set(data, BUILTIN_FILES[name]().name, name)
        _builtin_cache[name] = schema
    return schema


__all__ = [
    "SQS_MESSAGES",
    "AWS_RAW_EVENTS",
    "TableSchema",
    "BUILTIN_FILES",
    "builtin_descriptor_set",
    "builtin_schema",
    "load_schema_from_descriptor_set",
    "load_schema_from_file",
]
