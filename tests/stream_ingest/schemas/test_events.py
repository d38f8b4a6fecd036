"""Tests for inbound event models and host adapters."""

import time

import pytest
from pydantic import ValidationError

from stream_ingest.schemas.events import (
    Event,
    SqsRecord,
    deadline_epoch_ms,
    describe_context,
    event_from_invocation,
    events_from_sqs,
)


class TestEvent:
    def test_defaults(self):
        event = Event(item_id="a")
        assert event.payload is None
        assert event.attributes == {}
        assert event.metadata == {}
        assert event.defect is None

    def test_frozen(self):
        event = Event(item_id="a")
        with pytest.raises(ValidationError):
            event.item_id = "b"


class TestEventsFromSqs:
    def test_one_event_per_record_in_order(self, sqs_record):
        invocation = {"Records": [sqs_record("m1", "a"), sqs_record("m2", "b")]}
        events = events_from_sqs(invocation)
        assert [e.item_id for e in events] == ["m1", "m2"]
        assert [e.payload for e in events] == ["a", "b"]

    def test_metadata(self, sqs_record):
        record = sqs_record(
            "m1",
            messageAttributes={
                "kind": {"stringValue": "order", "dataType": "String"},
            },
        )
        event = events_from_sqs({"Records": [record]})[0]
        assert event.metadata["receipt_handle"] == "rh-m1"
        assert event.metadata["queue_arn"].endswith(":ingest-queue")
        assert event.metadata["aws_region"] == "us-east-1"
        assert event.metadata["message_attributes"]["kind"]["string_value"] == "order"
        assert event.metadata["message_attributes"]["kind"]["data_type"] == "String"
        assert event.attributes["ApproximateReceiveCount"] == "1"

    def test_empty_invocation(self):
        assert events_from_sqs({}) == []
        assert events_from_sqs({"Records": []}) == []

    def test_missing_message_id_becomes_defect(self, sqs_record):
        record = sqs_record("x")
        del record["messageId"]
        event = events_from_sqs({"Records": [record]})[0]
        assert event.item_id == ""
        assert event.defect == "record has no messageId"

    def test_malformed_record_kept_with_defect(self, sqs_record):
        bad = {"messageId": "m2", "attributes": "not-a-dict"}
        events = events_from_sqs({"Records": [sqs_record("m1"), bad, "garbage"]})
        assert len(events) == 3
        assert events[1].item_id == "m2"
        assert "index 1" in events[1].defect
        assert events[2].item_id == ""
        assert events[2].defect is not None

    def test_queue_defaults_filled_from_batch(self, sqs_record):
        second = sqs_record("m2")
        del second["eventSourceARN"]
        del second["awsRegion"]
        events = events_from_sqs({"Records": [sqs_record("m1"), second]})
        assert events[1].metadata["queue_arn"] == events[0].metadata["queue_arn"]
        assert events[1].metadata["aws_region"] == "us-east-1"

    def test_record_model_aliases(self, sqs_record):
        record = SqsRecord.model_validate(sqs_record("m1"))
        assert record.message_id == "m1"
        assert record.receipt_handle == "rh-m1"
        assert record.md5_of_body == "d41d8cd98f00b204e9800998ecf8427e"


class TestRawInvocation:
    def test_event_keyed_by_request_id(self, fake_context):
        event = event_from_invocation({"detail": 1}, fake_context("req-9", 5000))
        assert event.item_id == "req-9"
        assert event.payload == {"detail": 1}
        assert event.metadata["context"]["function_name"] == "ingest-fn"
        assert event.defect is None

    def test_deadline_is_epoch_ms(self, fake_context):
        before = int(time.time() * 1000)
        deadline = deadline_epoch_ms(fake_context(remaining_ms=5000))
        assert before + 5000 <= deadline <= int(time.time() * 1000) + 5000

    def test_no_context(self):
        event = event_from_invocation({"x": 1}, None)
        assert event.item_id == ""
        assert event.defect == "invocation context has no request id"
        assert event.metadata["deadline_ms"] == 0

    def test_describe_dict_context(self):
        assert describe_context({"aws_request_id": "r"}) == {"aws_request_id": "r"}

    def test_describe_nested_objects(self, fake_context):
        context = fake_context()
        context.identity = type("Identity", (), {})()
        context.identity.cognito_identity_id = "id-1"
        context.identity._private = "hidden"
        described = describe_context(context)
        assert described["identity"] == {"cognito_identity_id": "id-1"}
