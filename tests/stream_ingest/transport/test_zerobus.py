"""Tests for the Zerobus table service, over a fake SDK client."""

import asyncio
from typing import Any, List

import pytest

from core.auth.credentials import ClientCredentials
from stream_ingest.common.deadline import Deadline
from stream_ingest.common.session import StreamSession
from stream_ingest.runtime import IngestRuntime
from stream_ingest.transport.base import Ack
from stream_ingest.transport.zerobus import (
    ZerobusStream,
    ZerobusTableService,
    sdk_stream_options,
)

CREDS = ClientCredentials("client-1", "secret-1")


class FakeSdkStream:
    """Returns one pending future per ingested record."""

    def __init__(self, auto_ack: bool):
        self.auto_ack = auto_ack
        self.records: List[Any] = []
        self.futures: List[asyncio.Future] = []
        self.closed = False

    async def ingest_record(self, record):
        self.records.append(record)
        future = asyncio.get_running_loop().create_future()
        if self.auto_ack:
            future.set_result(None)
        self.futures.append(future)
        return future

    async def close(self):
        self.closed = True


class FakeSdk:
    """
    Records create_stream calls. Streams numbered ``auto_ack_from`` and
    later resolve their futures at once; earlier ones wait for the test.
    """

    def __init__(self, auto_ack_from: int = 0, create_error: Exception = None):
        self.auto_ack_from = auto_ack_from
        self.create_error = create_error
        self.calls: List[tuple] = []
        self.streams: List[FakeSdkStream] = []

    async def create_stream(self, client_id, client_secret, properties, options):
        self.calls.append((client_id, client_secret, properties, options))
        if self.create_error is not None:
            raise self.create_error
        stream = FakeSdkStream(auto_ack=len(self.streams) >= self.auto_ack_from)
        self.streams.append(stream)
        return stream


def fake_properties(table_name, descriptor):
    return ("props", table_name, descriptor.full_name)


def make_service(sdk):
    return ZerobusTableService(sdk, "stream-options", fake_properties, endpoint="zb.example")


async def next_item(stream: ZerobusStream, timeout=1.0):
    iterator = stream.acks().__aiter__()
    return await asyncio.wait_for(iterator.__anext__(), timeout)


class TestConnect:
    @pytest.mark.asyncio
    async def test_opens_sdk_stream_for_table(self, sqs_table):
        sdk = FakeSdk()
        stream = await make_service(sdk).connect(sqs_table, CREDS)

        assert isinstance(stream, ZerobusStream)
        client_id, secret, properties, options = sdk.calls[0]
        assert (client_id, secret) == ("client-1", "secret-1")
        assert properties[1] == sqs_table.table_name
        assert properties[2] == sqs_table.schema.message_class.DESCRIPTOR.full_name
        assert options == "stream-options"

    @pytest.mark.asyncio
    async def test_create_failure_propagates(self, sqs_table):
        sdk = FakeSdk(create_error=OSError("refused"))
        with pytest.raises(OSError, match="refused"):
            await make_service(sdk).connect(sqs_table, CREDS)


class TestZerobusStream:
    @pytest.mark.asyncio
    async def test_send_decodes_into_table_message(self, sqs_table, sqs_events, sqs_encoder):
        sdk = FakeSdk()
        stream = await make_service(sdk).connect(sqs_table, CREDS)
        payload = sqs_encoder.encode(sqs_events(1)[0]).payload

        await stream.send(1, payload)

        assert sdk.streams[0].records[0].message_id == "m1"
        assert await next_item(stream) == Ack(1)

    @pytest.mark.asyncio
    async def test_acks_follow_future_resolution(self, sqs_table, sqs_events, sqs_encoder):
        sdk = FakeSdk(auto_ack_from=1)
        stream = await make_service(sdk).connect(sqs_table, CREDS)
        for seq, event in enumerate(sqs_events(2), start=1):
            await stream.send(seq, sqs_encoder.encode(event).payload)

        sdk.streams[0].futures[1].set_result(None)
        assert await next_item(stream) == Ack(2)
        sdk.streams[0].futures[0].set_result(None)
        assert await next_item(stream) == Ack(1)

    @pytest.mark.asyncio
    async def test_failed_future_breaks_stream(self, sqs_table, sqs_events, sqs_encoder):
        sdk = FakeSdk(auto_ack_from=1)
        stream = await make_service(sdk).connect(sqs_table, CREDS)
        event = sqs_events(1)[0]
        await stream.send(1, sqs_encoder.encode(event).payload)

        sdk.streams[0].futures[0].set_exception(RuntimeError("stream reset"))

        with pytest.raises(RuntimeError, match="stream reset"):
            await next_item(stream)
        assert stream.broken
        with pytest.raises(ConnectionError):
            await stream.send(2, sqs_encoder.encode(event).payload)

    @pytest.mark.asyncio
    async def test_non_awaitable_ack_is_immediate(self, sqs_schema, sqs_events, sqs_encoder):
        class SyncSdkStream:
            async def ingest_record(self, record):
                return None

            async def close(self):
                pass

        stream = ZerobusStream(SyncSdkStream(), sqs_schema)
        await stream.send(7, sqs_encoder.encode(sqs_events(1)[0]).payload)
        assert await next_item(stream) == Ack(7)

    @pytest.mark.asyncio
    async def test_close_ends_acks(self, sqs_table, sqs_events, sqs_encoder):
        sdk = FakeSdk(auto_ack_from=1)
        stream = await make_service(sdk).connect(sqs_table, CREDS)
        await stream.send(1, sqs_encoder.encode(sqs_events(1)[0]).payload)

        await stream.close()

        assert sdk.streams[0].closed
        received = [ack async for ack in stream.acks()]
        assert received == []
        with pytest.raises(ConnectionError):
            await stream.send(2, b"")


class TestSdkStreamOptions:
    def test_recovery_left_to_session(self, options):
        kwargs = sdk_stream_options(options(max_inflight_records=32, flush_timeout_ms=1500))
        assert kwargs == {
            "max_inflight_records": 32,
            "recovery": False,
            "flush_timeout_ms": 1500,
        }

    def test_ack_timeout_passed_when_set(self, options):
        kwargs = sdk_stream_options(options(ack_timeout_ms=800))
        assert kwargs["server_lack_of_ack_timeout_ms"] == 800


class TestSessionOverZerobus:
    @pytest.mark.asyncio
    async def test_recovery_opens_new_sdk_stream(
        self, sqs_table, credentials, options, sqs_events, sqs_encoder
    ):
        sdk = FakeSdk(auto_ack_from=1)
        session = StreamSession(make_service(sdk), sqs_table, credentials, options())
        await session.open(Deadline.from_timeout(2))
        for event in sqs_events(3):
            await session.submit(sqs_encoder.encode(event), Deadline.from_timeout(2))

        sdk.streams[0].futures[0].set_exception(RuntimeError("stream reset"))

        completions = []

        async def drain():
            async for completion in session.poll_completions():
                completions.append(completion)
                if len(completions) == 3:
                    return

        await asyncio.wait_for(drain(), 3.0)
        assert all(c.succeeded for c in completions)
        assert len(sdk.calls) == 2
        assert sdk.streams[0].closed
        assert [r.message_id for r in sdk.streams[1].records] == ["m1", "m2", "m3"]
        await session.close(Deadline.from_timeout(1))


class TestRuntimeOverZerobus:
    def test_batch_succeeds(self, ingest_config, sqs_events):
        sdk = FakeSdk()
        runtime = IngestRuntime(ingest_config(), service=make_service(sdk))
        try:
            outcome = runtime.process(sqs_events(4), Deadline.from_timeout(5))
        finally:
            runtime.close()
        assert outcome.all_succeeded
        assert len(sdk.streams[0].records) == 4

    def test_handshake_failure_fails_batch(self, ingest_config, options, sqs_events):
        sdk = FakeSdk(create_error=OSError("refused"))
        config = ingest_config(stream=options(recovery_retries=1))
        runtime = IngestRuntime(config, service=make_service(sdk))
        try:
            outcome = runtime.process(sqs_events(3), Deadline.from_timeout(5))
        finally:
            runtime.close()
        assert outcome.failed_item_ids == ["m1", "m2", "m3"]
