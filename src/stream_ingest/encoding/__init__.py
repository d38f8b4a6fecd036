"""Record encoding: table mappers and the protobuf record encoder."""

from stream_ingest.encoding.encoder import RecordEncoder
from stream_ingest.encoding.mappers import (
    PassthroughMapper,
    RawEventMapper,
    SqsMessageMapper,
    TableMapper,
    ingestion_times,
    mapper_for_schema,
)

__all__ = [
    "RecordEncoder",
    "TableMapper",
    "SqsMessageMapper",
    "RawEventMapper",
    "PassthroughMapper",
    "mapper_for_schema",
    "ingestion_times",
]
