"""Tests for the record encoder."""

import pytest
from google.protobuf import descriptor_pb2

from config.config import EncodingLimits
from core.errors.exceptions import EncodeError
from stream_ingest.encoding.encoder import RecordEncoder
from stream_ingest.schemas.descriptors import load_schema_from_descriptor_set
from stream_ingest.schemas.events import Event

_FDP = descriptor_pb2.FieldDescriptorProto


def _nested_schema():
    """Order { id; qty; Line line; repeated Line lines; map<string,int64> totals; bytes blob }"""
    file_proto = descriptor_pb2.FileDescriptorProto(name="nested.proto", syntax="proto2")
    line = file_proto.message_type.add(name="Line")
    line.field.add(name="sku", number=1, type=_FDP.TYPE_STRING, label=_FDP.LABEL_OPTIONAL)
    line.field.add(name="tags", number=2, type=_FDP.TYPE_STRING, label=_FDP.LABEL_REPEATED)

    order = file_proto.message_type.add(name="Order")
    entry = order.nested_type.add(name="TotalsEntry")
    entry.options.map_entry = True
    entry.field.add(name="key", number=1, type=_FDP.TYPE_STRING, label=_FDP.LABEL_OPTIONAL)
    entry.field.add(name="value", number=2, type=_FDP.TYPE_INT64, label=_FDP.LABEL_OPTIONAL)

    order.field.add(name="id", number=1, type=_FDP.TYPE_STRING, label=_FDP.LABEL_OPTIONAL)
    order.field.add(name="qty", number=2, type=_FDP.TYPE_INT32, label=_FDP.LABEL_OPTIONAL)
    order.field.add(
        name="line", number=3, type=_FDP.TYPE_MESSAGE, label=_FDP.LABEL_OPTIONAL, type_name=".Line"
    )
    order.field.add(
        name="lines", number=4, type=_FDP.TYPE_MESSAGE, label=_FDP.LABEL_REPEATED, type_name=".Line"
    )
    order.field.add(
        name="totals",
        number=5,
        type=_FDP.TYPE_MESSAGE,
        label=_FDP.LABEL_REPEATED,
        type_name=".Order.TotalsEntry",
    )
    order.field.add(name="blob", number=6, type=_FDP.TYPE_BYTES, label=_FDP.LABEL_OPTIONAL)

    descriptor_set = descriptor_pb2.FileDescriptorSet()
    descriptor_set.file.append(file_proto)
    return load_schema_from_descriptor_set(
        descriptor_set.SerializeToString(), "nested.proto", "Order"
    )


@pytest.fixture
def order_encoder(fixed_clock):
    return RecordEncoder(_nested_schema(), clock=fixed_clock)


def order(payload, item_id="o1"):
    return Event(item_id=item_id, payload=payload)


class TestSqsEncoding:
    def test_encodes_and_decodes(self, sqs_encoder, sqs_events):
        event = sqs_events(1)[0]
        record = sqs_encoder.encode(event)
        assert record.item_id == "m1"
        assert record.sequence is None
        assert record.size == len(record.payload)

        row = sqs_encoder.decode(record.payload)
        assert row.message_id == "m1"
        assert row.receipt_handle == "rh-1"
        assert row.body == '{"n": 1}'
        assert dict(row.attributes) == {"ApproximateReceiveCount": "1"}
        assert row.ingested_date == 19783

    def test_message_attributes(self, sqs_encoder):
        event = Event(
            item_id="m1",
            payload="x",
            metadata={
                "receipt_handle": "rh",
                "message_attributes": {
                    "kind": {"string_value": "order", "data_type": "String"},
                    "raw": {"binary_value": "AAE=", "data_type": "Binary"},
                },
            },
        )
        row = sqs_encoder.decode(sqs_encoder.encode(event).payload)
        assert row.message_attributes["kind"].string_value == "order"
        assert row.message_attributes["raw"].binary_value == b"\x00\x01"

    def test_deterministic_for_fixed_clock(self, sqs_encoder, sqs_events):
        event = sqs_events(1)[0]
        assert sqs_encoder.encode(event).payload == sqs_encoder.encode(event).payload

    def test_defect_fails(self, sqs_encoder):
        with pytest.raises(EncodeError, match="malformed"):
            sqs_encoder.encode(Event(item_id="m1", defect="malformed SQS record at index 0"))

    def test_missing_item_id_fails(self, sqs_encoder):
        with pytest.raises(EncodeError, match="no item_id"):
            sqs_encoder.encode(Event(item_id="", payload="x", metadata={"receipt_handle": "r"}))

    def test_string_limit(self, sqs_schema, fixed_clock, sqs_events):
        encoder = RecordEncoder(
            sqs_schema, limits=EncodingLimits(max_string_bytes=4), clock=fixed_clock
        )
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(sqs_events(1)[0])
        assert exc_info.value.field in ("receipt_handle", "body")

    def test_string_limit_counts_utf8_bytes(self, sqs_schema, fixed_clock):
        encoder = RecordEncoder(
            sqs_schema, limits=EncodingLimits(max_string_bytes=5), clock=fixed_clock
        )
        event = Event(item_id="m1", payload="ééé", metadata={"receipt_handle": "rh"})
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(event)
        assert exc_info.value.field == "body"

    def test_record_limit(self, sqs_schema, fixed_clock, sqs_events):
        encoder = RecordEncoder(
            sqs_schema, limits=EncodingLimits(max_record_bytes=20), clock=fixed_clock
        )
        with pytest.raises(EncodeError, match="limit is 20"):
            encoder.encode(sqs_events(1)[0])


class TestRawEncoding:
    def test_encodes(self, raw_schema, fixed_clock):
        encoder = RecordEncoder(raw_schema, clock=fixed_clock)
        event = Event(
            item_id="req-1",
            payload={"a": 1},
            metadata={"context": {"function_name": "fn"}, "deadline_ms": 1234},
        )
        row = encoder.decode(encoder.encode(event).payload)
        assert row.request_id == "req-1"
        assert row.payload == '{"a": 1}'
        assert row.deadline == 1234


class TestDescriptorEncoding:
    def test_nested_repeated_and_map(self, order_encoder):
        record = order_encoder.encode(
            order(
                {
                    "id": "o1",
                    "qty": 2,
                    "line": {"sku": "A", "tags": ["x", "y"]},
                    "lines": [{"sku": "B"}, {"sku": "C"}],
                    "totals": {"eur": 10, "usd": 11},
                    "blob": "text as bytes",
                }
            )
        )
        row = order_encoder.decode(record.payload)
        assert row.line.sku == "A"
        assert list(row.line.tags) == ["x", "y"]
        assert [line.sku for line in row.lines] == ["B", "C"]
        assert dict(row.totals) == {"eur": 10, "usd": 11}
        assert row.blob == b"text as bytes"

    def test_none_values_skipped(self, order_encoder):
        row = order_encoder.decode(order_encoder.encode(order({"id": "o1", "qty": None})).payload)
        assert not row.HasField("qty")

    def test_empty_nested_message_is_set(self, order_encoder):
        row = order_encoder.decode(order_encoder.encode(order({"line": {}})).payload)
        assert row.HasField("line")

    def test_unknown_field(self, order_encoder):
        with pytest.raises(EncodeError) as exc_info:
            order_encoder.encode(order({"line": {"colour": "red"}}))
        assert exc_info.value.field == "line.colour"

    def test_type_mismatch(self, order_encoder):
        with pytest.raises(EncodeError) as exc_info:
            order_encoder.encode(order({"qty": "two"}))
        assert exc_info.value.field == "qty"
        assert exc_info.value.item_id == "o1"

    def test_int_out_of_range(self, order_encoder):
        with pytest.raises(EncodeError) as exc_info:
            order_encoder.encode(order({"qty": 2**40}))
        assert exc_info.value.field == "qty"

    def test_repeated_requires_list(self, order_encoder):
        with pytest.raises(EncodeError, match="must be a list"):
            order_encoder.encode(order({"lines": "B"}))

    def test_repeated_item_path(self, order_encoder):
        with pytest.raises(EncodeError) as exc_info:
            order_encoder.encode(order({"line": {"tags": ["ok", 5]}}))
        assert exc_info.value.field == "line.tags[1]"

    def test_map_requires_mapping(self, order_encoder):
        with pytest.raises(EncodeError, match="must be a mapping"):
            order_encoder.encode(order({"totals": [1, 2]}))

    def test_map_value_path(self, order_encoder):
        with pytest.raises(EncodeError) as exc_info:
            order_encoder.encode(order({"totals": {"eur": "ten"}}))
        assert exc_info.value.field == "totals[eur]"

    def test_binary_limit(self, fixed_clock):
        encoder = RecordEncoder(
            _nested_schema(), limits=EncodingLimits(max_binary_bytes=3), clock=fixed_clock
        )
        with pytest.raises(EncodeError) as exc_info:
            encoder.encode(order({"blob": b"1234"}))
        assert exc_info.value.field == "blob"

    def test_mapper_errors_become_encode_errors(self, fixed_clock):
        class BrokenMapper:
            schema_name = "Order"

            def to_fields(self, event, now):
                raise KeyError("missing")

        encoder = RecordEncoder(_nested_schema(), mapper=BrokenMapper(), clock=fixed_clock)
        with pytest.raises(EncodeError, match="Cannot map event"):
            encoder.encode(order({}))
