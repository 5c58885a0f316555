"""Lifecycle of a recording session: idle -> recording -> processing -> terminal.

The controller owns the capture adapter for the duration of one recording through
a ``CaptureLease``. Only the lease holder's session can be stopped; a second
``start`` while a lease is held is rejected.
"""
import logging
import threading
import uuid

from processing.pipeline import decode_audio_asset
from session import states
from session.errors import (
    CaptureError,
    ConflictError,
    InvalidStateError,
    NoDataError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class CaptureLease:
    """Exclusive use of the capture adapter by one session."""

    def __init__(self, session_id: str, adapter):
        self.session_id = session_id
        self._adapter = adapter
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def begin(self):
        self._adapter.start()

    def collect(self) -> str | None:
        """Halt capture and hand back the captured asset."""
        self._adapter.stop()
        asset = self._adapter.last_asset()
        self.release()
        return asset

    def release(self, discard: bool = True):
        if self._released:
            return
        if self._adapter.is_recording():
            self._adapter.stop()
        if discard:
            self._adapter.discard()
        self._released = True


class SessionController:
    def __init__(self, db, ledger, state_store, capture_adapter, pipeline):
        self.db = db
        self.ledger = ledger
        self.state_store = state_store
        self.capture_adapter = capture_adapter
        self.pipeline = pipeline
        self._lock = threading.Lock()
        self._lease: CaptureLease | None = None
        self._cancel_events: dict[str, threading.Event] = {}

    # -- Queries --

    def get_state(self) -> dict:
        return self.state_store.snapshot()

    def get_session(self, session_id: str) -> dict:
        session = self.db.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    # -- Commands --

    def start(self, name: str, owner_id: str) -> dict:
        if not name or not owner_id:
            raise ValidationError("Session name and owner id are required")

        with self._lock:
            if self._lease is not None:
                raise ConflictError(
                    f"Session {self._lease.session_id} is already recording"
                )
            session_id = str(uuid.uuid4())
            session = self.db.insert_session(session_id, owner_id, name, states.utc_now())
            lease = CaptureLease(session_id, self.capture_adapter)
            try:
                lease.begin()
            except Exception as e:
                lease.release()
                self._fail(session_id, f"Could not start capture: {e}")
                raise CaptureError(str(e)) from e
            self._lease = lease

        self.state_store.set_recording(session_id, name, owner_id)
        logger.info("Recording started: %s (%s)", session_id, name)
        return session

    def stop(self, session_id: str, raw_audio_asset: str | None = None) -> dict:
        with self._lock:
            lease = self._lease
            if lease is None:
                raise InvalidStateError("No active recording")
            if lease.session_id != session_id:
                raise InvalidStateError(
                    f"Session {session_id} is not the active recording"
                )
            self._lease = None
            try:
                asset = lease.collect()
            except Exception as e:
                lease.release()
                self._fail(session_id, f"Could not stop capture: {e}")
                self.state_store.clear(session_id)
                raise CaptureError(str(e)) from e
            cancel_event = threading.Event()
            self._cancel_events[session_id] = cancel_event

        if raw_audio_asset:
            asset = raw_audio_asset

        try:
            if not asset or not asset.split(",", 1)[-1].strip():
                self._fail(session_id, "No audio data captured")
                raise NoDataError("No audio data captured")

            self.state_store.set_processing(session_id)
            return self.pipeline.run(session_id, asset, cancel_event=cancel_event)
        finally:
            with self._lock:
                self._cancel_events.pop(session_id, None)
            self.state_store.clear(session_id)

    def complete(self, session_id: str, raw_audio_asset: str) -> dict:
        session = self.get_session(session_id)
        if session["status"] != states.RECORDING:
            raise InvalidStateError(
                f"Session {session_id} is '{session['status']}', not recording"
            )
        return self.stop(session_id, raw_audio_asset)

    def cancel(self, session_id: str) -> dict:
        with self._lock:
            session = self.get_session(session_id)
            status = session["status"]

            if states.is_terminal(status):
                logger.info("Cancel on %s ignored, already %s", session_id, status)
                return {"success": True, "sessionId": session_id, "status": status}

            # Stopped sessions are handed to the pipeline, which may not have
            # moved the row to processing yet
            cancel_event = self._cancel_events.get(session_id)
            if cancel_event is not None or status == states.PROCESSING:
                if cancel_event is not None:
                    cancel_event.set()
                    logger.info("Cancellation requested for %s", session_id)
                return {"success": True, "sessionId": session_id, "status": states.PROCESSING}

            if self._lease is not None and self._lease.session_id == session_id:
                self._lease.release(discard=True)
                self._lease = None

            states.transition(
                self.db, session_id, states.CANCELLED,
                processing_completed_at=states.utc_now(),
            )

        self.ledger.record(session_id, "recording_cancelled", "cancelled",
                           error_message=states.CANCEL_REASON)
        self.state_store.clear(session_id)
        logger.info("Recording cancelled: %s", session_id)
        return {"success": True, "sessionId": session_id, "status": states.CANCELLED}

    def accept_audio(self, session_id: str, raw_audio_asset: str):
        """Hand a remotely recorded asset to the capture adapter ahead of ``stop``."""
        if not raw_audio_asset:
            raise ValidationError("Audio asset is required")
        with self._lock:
            if self._lease is None or self._lease.session_id != session_id:
                self.get_session(session_id)
                raise InvalidStateError(f"Session {session_id} is not the active recording")
            accept = getattr(self.capture_adapter, "accept", None)
            if accept is None:
                raise InvalidStateError("The capture backend records locally and takes no uploads")
            accept(raw_audio_asset)

    def rename(self, session_id: str, name: str) -> dict:
        if not name:
            raise ValidationError("Session name is required")
        session = self.get_session(session_id)
        if session["status"] != states.RECORDING:
            raise InvalidStateError("Sessions can only be renamed while recording")
        self.state_store.rename(session_id, name)
        return self.db.update_session(session_id, name=name)

    def transcribe_chunk(self, session_id: str, raw_audio_asset: str) -> str:
        session = self.get_session(session_id)
        if session["status"] != states.RECORDING:
            raise InvalidStateError(f"Session {session_id} is not recording")
        return self.pipeline.transcriber.transcribe(decode_audio_asset(raw_audio_asset))

    def recover(self) -> list[str]:
        """Fail sessions a previous process left recording or processing."""
        recovered = []
        for session in self.db.list_sessions_by_status(states.RECORDING, states.PROCESSING):
            session_id = session["id"]
            if self._lease is not None and self._lease.session_id == session_id:
                continue
            reason = f"Interrupted by restart while {session['status']}"
            self._fail(session_id, reason)
            recovered.append(session_id)

        stale = self.state_store.current
        if stale.session_id and (self._lease is None or self._lease.session_id != stale.session_id):
            self.state_store.clear()
        if recovered:
            logger.warning("Marked %d interrupted session(s) as failed", len(recovered))
        return recovered

    def shutdown(self):
        lease = self._lease
        if lease is not None:
            self.cancel(lease.session_id)

    def _fail(self, session_id: str, reason: str):
        self.ledger.record(session_id, "error", "failed", error_message=reason)
        states.transition(
            self.db, session_id, states.FAILED,
            error_message=reason,
            processing_completed_at=states.utc_now(),
            processing_duration_ms=0,
        )
