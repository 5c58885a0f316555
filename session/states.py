from datetime import datetime, timezone

from session.errors import InvalidStateError, NotFoundError

RECORDING = "recording"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({COMPLETED, FAILED, CANCELLED})

ALLOWED_TRANSITIONS = {
    RECORDING: frozenset({PROCESSING, FAILED, CANCELLED}),
    PROCESSING: frozenset({COMPLETED, FAILED, CANCELLED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
    CANCELLED: frozenset(),
}

CANCEL_REASON = "User cancelled."


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def transition(db, session_id: str, new_status: str, **fields) -> dict:
    """Move a session to ``new_status`` if the edge is legal, writing ``fields`` with it."""
    session = db.get_session(session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")

    current = session["status"]
    if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateError(
            f"Session {session_id} cannot move from '{current}' to '{new_status}'"
        )
    return db.update_session(session_id, status=new_status, **fields)
