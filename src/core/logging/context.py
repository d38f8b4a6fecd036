"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_table: ContextVar[str] = ContextVar("table", default="")
_session_id: ContextVar[str] = ContextVar("session_id", default="")
_item_id: ContextVar[str] = ContextVar("item_id", default="")

CONTEXT_FIELDS = ("request_id", "table", "session_id", "item_id")


def set_log_context(
    request_id: Optional[str] = None,
    table: Optional[str] = None,
    session_id: Optional[str] = None,
    item_id: Optional[str] = None,
) -> None:
    if request_id is not None:
        _request_id.set(request_id)
    if table is not None:
        _table.set(table)
    if session_id is not None:
        _session_id.set(session_id)
    if item_id is not None:
        _item_id.set(item_id)


def get_log_context() -> Dict[str, str]:
    return {
        "request_id": _request_id.get(),
        "table": _table.get(),
        "session_id": _session_id.get(),
        "item_id": _item_id.get(),
    }


def clear_log_context() -> None:
    _request_id.set("")
    _table.set("")
    _session_id.set("")
    _item_id.set("")
