"""Serverless entry points."""

from stream_ingest.handlers.raw import raw_event_handler
from stream_ingest.handlers.sqs import sqs_handler

__all__ = ["sqs_handler", "raw_event_handler"]
