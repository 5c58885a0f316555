import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable

import config

logger = logging.getLogger(__name__)

IDLE = "idle"


def format_elapsed(seconds: int) -> str:
    """Badge text for a running timer: ``m:ss``, or ``h:mm`` past the hour."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass
class ActiveSession:
    status: str = IDLE
    session_id: str | None = None
    name: str | None = None
    owner_id: str | None = None
    start_time: int | None = None  # epoch milliseconds

    def elapsed_secs(self, now_ms: int | None = None) -> int:
        if self.start_time is None:
            return 0
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        return max(0, (now_ms - self.start_time) // 1000)

    def to_dict(self) -> dict:
        elapsed = self.elapsed_secs() if self.status != IDLE else 0
        return {
            "status": self.status,
            "sessionId": self.session_id,
            "name": self.name,
            "ownerId": self.owner_id,
            "startTime": self.start_time,
            "elapsedSecs": elapsed,
            "badge": format_elapsed(elapsed) if self.status == "recording" else "",
        }


class SessionStateStore:
    """Persistent snapshot of the active session, broadcast to observers."""

    def __init__(self, state_path: Path, tick_interval: float = config.TICK_INTERVAL_SECS):
        self.state_path = Path(state_path)
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self.tick_interval = tick_interval
        self._lock = threading.Lock()
        self._observers: list[Callable[[dict], None]] = []
        self._ticker: threading.Thread | None = None
        self._tick_stop = threading.Event()
        self._state = self._load()

    def _load(self) -> ActiveSession:
        if not self.state_path.exists():
            return ActiveSession()
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
            return ActiveSession(**data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.state_path, e)
            return ActiveSession()

    def _save(self):
        tmp_path = self.state_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(asdict(self._state)), encoding="utf-8")
        tmp_path.replace(self.state_path)

    @property
    def current(self) -> ActiveSession:
        with self._lock:
            return ActiveSession(**asdict(self._state))

    def snapshot(self) -> dict:
        return self.current.to_dict()

    def set_recording(self, session_id: str, name: str, owner_id: str):
        self._set(ActiveSession(
            status="recording",
            session_id=session_id,
            name=name,
            owner_id=owner_id,
            start_time=int(time.time() * 1000),
        ))
        self.start_ticker()

    def set_processing(self, session_id: str):
        with self._lock:
            if self._state.session_id != session_id:
                return
            state = ActiveSession(**asdict(self._state))
        state.status = "processing"
        self.stop_ticker()
        self._set(state)

    def rename(self, session_id: str, name: str):
        with self._lock:
            if self._state.session_id != session_id:
                return
            state = ActiveSession(**asdict(self._state))
        state.name = name
        self._set(state)

    def clear(self, session_id: str | None = None):
        """Return to idle. With ``session_id``, only if that session is the active one."""
        with self._lock:
            if session_id is not None and self._state.session_id != session_id:
                return
        self.stop_ticker()
        self._set(ActiveSession())

    def _set(self, state: ActiveSession):
        with self._lock:
            self._state = state
            try:
                self._save()
            except OSError as e:
                logger.error("Could not persist recording state: %s", e)
        self._broadcast()

    # -- Observers --

    def subscribe(self, callback: Callable[[dict], None]) -> Callable[[], None]:
        with self._lock:
            self._observers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _broadcast(self):
        snapshot = self.snapshot()
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning("State observer %r failed: %s", callback, e)

    # -- Timer --

    def start_ticker(self):
        self.stop_ticker()
        self._tick_stop = threading.Event()
        self._ticker = threading.Thread(
            target=self._tick, args=(self._tick_stop,), name="recording-timer", daemon=True,
        )
        self._ticker.start()

    def stop_ticker(self):
        self._tick_stop.set()
        ticker = self._ticker
        self._ticker = None
        if ticker is not None and ticker is not threading.current_thread():
            ticker.join(timeout=self.tick_interval * 2)

    def _tick(self, stop: threading.Event):
        while not stop.wait(self.tick_interval):
            if self.current.status != "recording":
                continue
            self._broadcast()
