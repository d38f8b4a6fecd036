"""
Shared fixtures for stream ingest tests.

Loop-bound objects (sessions, trackers, in-memory streams) are created
inside the test coroutines; the fixtures here only hand out factories and
plain values.
"""

from datetime import UTC, datetime
from typing import Any, Dict, List

import pytest

from config.config import INMEMORY_TRANSPORT, EncodingLimits, IngestConfig, StreamOptions
from core.auth.credentials import StaticCredentialProvider
from stream_ingest.encoding.encoder import RecordEncoder
from stream_ingest.schemas.descriptors import AWS_RAW_EVENTS, SQS_MESSAGES, builtin_schema
from stream_ingest.schemas.events import Event
from stream_ingest.transport.base import TableProperties

FIXED_NOW = datetime(2024, 3, 1, 12, 30, tzinfo=UTC)

QUEUE_ARN = "arn:aws:sqs:us-east-1:123456789012:ingest-queue"


def make_sqs_record(message_id: str, body: str = "{}", **overrides: Any) -> Dict[str, Any]:
    record = {
        "messageId": message_id,
        "receiptHandle": f"rh-{message_id}",
        "body": body,
        "attributes": {"ApproximateReceiveCount": "1", "SentTimestamp": "1709296200000"},
        "messageAttributes": {},
        "md5OfBody": "d41d8cd98f00b204e9800998ecf8427e",
        "eventSource": "aws:sqs",
        "eventSourceARN": QUEUE_ARN,
        "awsRegion": "us-east-1",
    }
    record.update(overrides)
    return record


class FakeContext:
    """Host invocation context with a fixed remaining time."""

    def __init__(self, request_id: str = "req-0001", remaining_ms: int = 30000):
        self.aws_request_id = request_id
        self.function_name = "ingest-fn"
        self.function_version = "$LATEST"
        self.memory_limit_in_mb = 256
        self._remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self) -> int:
        return self._remaining_ms


@pytest.fixture
def sqs_record():
    return make_sqs_record


@pytest.fixture
def sqs_events():
    """Factory: n SQS events with ids m1..mn."""

    def build(n: int, prefix: str = "m") -> List[Event]:
        return [
            Event(
                item_id=f"{prefix}{i}",
                payload=f'{{"n": {i}}}',
                attributes={"ApproximateReceiveCount": "1"},
                metadata={"receipt_handle": f"rh-{i}", "queue_arn": QUEUE_ARN},
            )
            for i in range(1, n + 1)
        ]

    return build


@pytest.fixture
def fake_context():
    return FakeContext


@pytest.fixture
def sqs_schema():
    return builtin_schema(SQS_MESSAGES)


@pytest.fixture
def raw_schema():
    return builtin_schema(AWS_RAW_EVENTS)


@pytest.fixture
def sqs_table(sqs_schema):
    return TableProperties("main.default.sqs_messages", sqs_schema)


@pytest.fixture
def credentials():
    return StaticCredentialProvider("client-1", "secret-1")


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def sqs_encoder(sqs_schema, fixed_clock):
    return RecordEncoder(sqs_schema, clock=fixed_clock)


@pytest.fixture
def options():
    """Factory for stream options with test-friendly timings."""

    def build(**overrides: Any) -> StreamOptions:
        values = dict(
            max_inflight_records=16,
            recovery_enabled=True,
            recovery_timeout_ms=2000,
            recovery_backoff_ms=10,
            recovery_retries=3,
            flush_timeout_ms=2000,
            ack_timeout_ms=0,
        )
        values.update(overrides)
        return StreamOptions(**values)

    return build


@pytest.fixture
def ingest_config(options):
    """Factory for an in-memory IngestConfig."""

    def build(schema: str = SQS_MESSAGES, **overrides: Any) -> IngestConfig:
        stream = overrides.pop("stream", None) or options()
        values = dict(
            table_name="main.default.sqs_messages",
            transport=INMEMORY_TRANSPORT,
            schema=schema,
            stream=stream,
            safety_margin_ms=50,
            encoding=EncodingLimits(),
            log_level="DEBUG",
        )
        values.update(overrides)
        config = IngestConfig(**values)
        config.validate()
        return config

    return build
