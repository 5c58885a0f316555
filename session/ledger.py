"""Append-only log of lifecycle steps per session.

Events are written by a background thread draining a bounded queue, so a slow or
broken database can never stall or fail the recording and processing paths.
"""
import itertools
import logging
import queue
import threading
import time
import uuid

import config
from session.errors import LoggingError
from session.states import utc_now

logger = logging.getLogger(__name__)

_STOP = object()


def duration_seconds(duration_ms: int | None) -> float | None:
    if duration_ms is None:
        return None
    return round(duration_ms / 1000, 2)


class StatusLedger:
    def __init__(self, db, maxsize: int = config.LEDGER_QUEUE_SIZE,
                 retries: int = config.LEDGER_WRITE_RETRIES):
        self.db = db
        self.retries = retries
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._seq = itertools.count(1)
        self._seq_lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(target=self._drain, name="status-ledger", daemon=True)
        self._worker.start()

    def record(self, session_id: str, step: str, status: str,
               error_message: str | None = None, duration_ms: int | None = None) -> None:
        if self._closed:
            logger.warning("Ledger closed, dropping %s for %s", step, session_id)
            return

        with self._seq_lock:
            event = {
                "id": str(uuid.uuid4()),
                "session_id": session_id,
                "seq": next(self._seq),
                "step": step,
                "status": status,
                "error_message": error_message,
                "duration_ms": int(duration_ms) if duration_ms is not None else None,
                "timestamp": utc_now(),
            }
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                logger.warning("Ledger queue full, dropping %s for %s", step, session_id)

    def _write(self, event: dict):
        attempts = 1 + self.retries
        for attempt in range(1, attempts + 1):
            try:
                self.db.insert_status_event(event)
                return
            except Exception as e:
                if attempt == attempts:
                    raise LoggingError(
                        f"Could not write {event['step']} for {event['session_id']}: {e}"
                    ) from e
                logger.debug("Ledger write failed (attempt %d), retrying: %s", attempt, e)

    def _drain(self):
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._write(event)
            except LoggingError as e:
                logger.error("%s", e)
            finally:
                self._queue.task_done()

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event has been handled. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def history(self, session_id: str) -> list[dict]:
        self.flush()
        events = self.db.list_status_events(session_id)
        for event in events:
            event["durationSeconds"] = duration_seconds(event["duration_ms"])
        return events

    def close(self, timeout: float = 5.0):
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Ledger queue still full on close, pending events may be lost")
            return
        self._worker.join(timeout=timeout)
