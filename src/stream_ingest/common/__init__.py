"""Stream session machinery: deadlines, in-flight tracking, recovery."""

from stream_ingest.common.deadline import Deadline
from stream_ingest.common.inflight import InflightTracker, Permit
from stream_ingest.common.recovery import RecoveryController
from stream_ingest.common.session import (
    ALLOWED_TRANSITIONS,
    SessionState,
    SessionStats,
    StreamSession,
    open_session,
)

__all__ = [
    "Deadline",
    "InflightTracker",
    "Permit",
    "RecoveryController",
    "SessionState",
    "SessionStats",
    "ALLOWED_TRANSITIONS",
    "StreamSession",
    "open_session",
]
