"""
Local smoke runs against the in-memory table service.

Usage:
    # Ingest an SQS invocation payload ({"Records": [...]}) or a list of records
    python -m stream_ingest records.json

    # Break the stream after the 4th send, then fail the first reconnect
    python -m stream_ingest records.json --break-after 4 --fail-reconnects 1

    # Never acknowledge sequences 3 and 7, reject sequence 5
    python -m stream_ingest records.json --withhold 3 --withhold 7 --reject 5=bad-row

    # Ingest the whole file as one raw invocation into table_aws_raw_events
    python -m stream_ingest event.json --raw

    # Show what the table received and the metrics afterwards
    python -m stream_ingest records.json --show-rows --print-metrics

Exit codes: 0 all items succeeded, 1 some items failed, 2 setup error.
"""

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from google.protobuf import json_format
from prometheus_client import generate_latest

from config.config import INMEMORY_TRANSPORT, load_config
from core.auth.credentials import StaticCredentialProvider
from core.errors.exceptions import IngestError
from core.logging.setup import setup_logging
from stream_ingest import metrics
from stream_ingest.handlers.raw import raw_event_handler
from stream_ingest.handlers.sqs import sqs_handler
from stream_ingest.runtime import IngestRuntime
from stream_ingest.schemas.descriptors import AWS_RAW_EVENTS
from stream_ingest.transport.inmemory import FaultPlan, InMemoryTableService

logger = logging.getLogger(__name__)

CLI_CLIENT_ID = "local-cli"


class LocalContext:
    """Stands in for the host's invocation context."""

    def __init__(self, deadline_ms: int):
        self.aws_request_id = str(uuid.uuid4())
        self.function_name = "stream-ingest-local"
        self.function_version = "$LATEST"
        self.memory_limit_in_mb = 0
        self._deadline_ms = deadline_ms

    def get_remaining_time_in_millis(self) -> int:
        return self._deadline_ms


def _parse_reject(value: str) -> tuple:
    sequence, _, reason = value.partition("=")
    try:
        return int(sequence), reason or "rejected"
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected SEQUENCE=REASON, got '{value}'") from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m stream_ingest",
        description="Ingest a JSON file into the in-memory table service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("records", type=Path, help="JSON file with the invocation payload")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: config/config.yaml)")
    parser.add_argument("--table", default=None, help="Override the table name")
    parser.add_argument("--raw", action="store_true", help="Treat the file as one raw invocation")
    parser.add_argument("--break-after", type=int, default=None, metavar="N",
                        help="Break the stream after the Nth send")
    parser.add_argument("--fail-reconnects", type=int, default=0, metavar="K",
                        help="Fail the next K reconnects")
    parser.add_argument("--withhold", type=int, action="append", default=[], metavar="SEQ",
                        help="Never acknowledge this sequence (repeatable)")
    parser.add_argument("--reject", type=_parse_reject, action="append", default=[],
                        metavar="SEQ=REASON", help="Reject this sequence (repeatable)")
    parser.add_argument("--ack-delay-ms", type=float, default=0.0, help="Acknowledgment latency")
    parser.add_argument("--max-inflight", type=int, default=None, help="Override max_inflight_records")
    parser.add_argument("--ack-timeout-ms", type=int, default=None, help="Override ack_timeout_ms")
    parser.add_argument("--flush-timeout-ms", type=int, default=None, help="Override flush_timeout_ms")
    parser.add_argument("--deadline-ms", type=int, default=60000, help="Invocation budget")
    parser.add_argument("--show-rows", action="store_true", help="Print the rows the table received")
    parser.add_argument("--print-metrics", action="store_true", help="Print metrics afterwards")
    parser.add_argument("--json-logs", action="store_true", help="JSON log lines instead of console")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    stream: Dict[str, Any] = {}
    if args.max_inflight is not None:
        stream["max_inflight_records"] = args.max_inflight
    if args.ack_timeout_ms is not None:
        stream["ack_timeout_ms"] = args.ack_timeout_ms
    if args.flush_timeout_ms is not None:
        stream["flush_timeout_ms"] = args.flush_timeout_ms

    table: Dict[str, Any] = {}
    if args.raw:
        table["schema"] = AWS_RAW_EVENTS
    if args.table:
        table["name"] = args.table

    return {
        "connection": {"transport": INMEMORY_TRANSPORT},
        "table": table,
        "stream": stream,
    }


def _load_payload(path: Path, raw: bool) -> Any:
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    if not raw and isinstance(payload, list):
        payload = {"Records": payload}
    return payload


def _print_rows(service: InMemoryTableService, runtime: IngestRuntime) -> None:
    rows: List[Dict[str, Any]] = []
    for row in service.rows_for(runtime.config.table_name):
        message = runtime.schema.decode(row.payload)
        rows.append(
            {
                "sequence": row.sequence,
                "generation": row.generation,
                "row": json_format.MessageToDict(message, preserving_proto_field_name=True),
            }
        )
    print(json.dumps({"rows": rows}, indent=2))


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(level=args.log_level, json_format=args.json_logs)

    try:
        config = load_config(args.config, overrides=_overrides(args))
        payload = _load_payload(args.records, args.raw)
    except (OSError, ValueError) as e:
        logger.error(f"Setup failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 2

    service = InMemoryTableService(
        ack_delay=args.ack_delay_ms / 1000,
        faults=FaultPlan(
            break_after_sends=args.break_after,
            fail_reconnects=args.fail_reconnects,
            withhold_acks=set(args.withhold),
            reject_sequences=dict(args.reject),
        ),
    )
    runtime = IngestRuntime(
        config,
        service=service,
        credentials=StaticCredentialProvider(CLI_CLIENT_ID, CLI_CLIENT_ID),
    )
    context = LocalContext(args.deadline_ms)

    exit_code = 0
    try:
        if args.raw:
            try:
                print(json.dumps({"result": raw_event_handler(payload, context, runtime=runtime)}))
            except IngestError as e:
                print(json.dumps({"error": str(e)}))
                exit_code = 1
        else:
            response = sqs_handler(payload, context, runtime=runtime)
            print(json.dumps(response, indent=2))
            exit_code = 1 if response["batchItemFailures"] else 0

        if args.show_rows:
            _print_rows(service, runtime)
        if args.print_metrics:
            print(generate_latest(metrics.REGISTRY).decode("utf-8"))
    finally:
        runtime.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
