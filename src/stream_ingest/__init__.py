"""
Stream ingest: serverless batches into a remote streaming table.

Subpackages:
    schemas    - Events, wire records, outcomes, protobuf table descriptors
    encoding   - Table mappers and the record encoder
    transport  - Remote table service interface and in-memory service
    common     - Deadline, inflight tracker, recovery controller, stream session
    handlers   - Serverless entry points (SQS batch, raw invocation)

Flow:
    host batch → handler → BatchOrchestrator → RecordEncoder → StreamSession → table service
                                     ↑                                  │
                                     └──── completions (ack / reject) ──┘
                 handler ← failed item ids (partial batch response)

Dependencies:
    - core.*: Errors, logging, retry configuration, credentials
    - protobuf: Record encoding against table descriptors
    - pydantic: Host event models
    - prometheus_client: Metrics
"""

__version__ = "0.1.0"
