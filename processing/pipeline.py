"""Transcribe, summarize and persist one finished recording.

``ProcessingPipeline.run`` always leaves the session terminal: it either returns a
completed result, or marks the session failed (or cancelled) before raising.
"""
import base64
import binascii
import json
import logging
import threading
import time

from session import states
from session.errors import InvalidStateError, NotFoundError, PipelineError, SessionCancelledError

logger = logging.getLogger(__name__)


def decode_audio_asset(asset: str) -> bytes:
    """Decode a ``<prefix>,<base64>`` data URL (or bare base64) into raw bytes."""
    if not isinstance(asset, str) or not asset.strip():
        raise PipelineError("Audio asset is empty")
    payload = asset.split(",", 1)[1] if "," in asset else asset
    try:
        return base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PipelineError(f"Audio asset is not valid base64: {e}") from e


def _ms_since(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def timing_breakdown(transcription_ms: int, summarization_ms: int, total_ms: int) -> dict:
    return {
        "transcriptionMs": transcription_ms,
        "summarizationMs": summarization_ms,
        "totalMs": total_ms,
        "transcriptionSeconds": round(transcription_ms / 1000, 2),
        "summarizationSeconds": round(summarization_ms / 1000, 2),
        "totalSeconds": round(total_ms / 1000, 2),
    }


class ProcessingPipeline:
    def __init__(self, db, ledger, transcriber, summarizer):
        self.db = db
        self.ledger = ledger
        self.transcriber = transcriber
        self.summarizer = summarizer

    def run(self, session_id: str, raw_audio_asset: str,
            cancel_event: threading.Event | None = None) -> dict:
        session = self.db.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        if session["status"] != states.RECORDING:
            raise InvalidStateError(
                f"Session {session_id} is '{session['status']}', cannot be processed"
            )

        def checkpoint():
            if cancel_event is not None and cancel_event.is_set():
                raise SessionCancelledError(states.CANCEL_REASON)

        started = time.monotonic()
        try:
            states.transition(
                self.db, session_id, states.PROCESSING,
                processing_started_at=states.utc_now(),
            )
            self.ledger.record(session_id, "processing_started", "processing")

            checkpoint()
            audio = decode_audio_asset(raw_audio_asset)

            step_started = time.monotonic()
            self.ledger.record(session_id, "transcription_started", "processing")
            transcript = self.transcriber.transcribe(audio)
            transcription_ms = _ms_since(step_started)
            self.ledger.record(
                session_id, "transcription_complete", "success", duration_ms=transcription_ms,
            )
            self.db.update_session(session_id, transcript=transcript)

            checkpoint()
            step_started = time.monotonic()
            self.ledger.record(session_id, "summarization_started", "processing")
            summary = self.summarizer.summarize(transcript)
            summarization_ms = _ms_since(step_started)
            self.ledger.record(
                session_id, "summarization_complete", "success", duration_ms=summarization_ms,
            )

            checkpoint()
            total_ms = _ms_since(started)
            states.transition(
                self.db, session_id, states.COMPLETED,
                summary_json=json.dumps({
                    "json": summary["summaryJSON"],
                    "markdown": summary["summaryMarkdown"],
                }),
                processing_completed_at=states.utc_now(),
                processing_duration_ms=total_ms,
            )
            self.ledger.record(session_id, "processing_complete", "success", duration_ms=total_ms)
        except SessionCancelledError:
            self._finish_cancelled(session_id, started)
            raise
        except Exception as e:
            self._finish_failed(session_id, started, e)
            raise PipelineError(str(e)) from e

        logger.info("Session %s processed in %.2fs", session_id, total_ms / 1000)
        return {
            "sessionId": session_id,
            "transcript": transcript,
            "summaryJSON": summary["summaryJSON"],
            "summaryMarkdown": summary["summaryMarkdown"],
            "timing": timing_breakdown(transcription_ms, summarization_ms, total_ms),
        }

    def _finish_failed(self, session_id: str, started: float, error: Exception):
        elapsed_ms = _ms_since(started)
        logger.error("Processing failed for %s: %s", session_id, error)
        self.ledger.record(session_id, "error", "failed", error_message=str(error),
                           duration_ms=elapsed_ms)
        try:
            states.transition(
                self.db, session_id, states.FAILED,
                error_message=str(error),
                processing_completed_at=states.utc_now(),
                processing_duration_ms=elapsed_ms,
            )
        except InvalidStateError:
            # Terminal write already landed before the fault
            logger.warning("Session %s already terminal, leaving status as is", session_id)

    def _finish_cancelled(self, session_id: str, started: float):
        elapsed_ms = _ms_since(started)
        logger.info("Processing cancelled for %s", session_id)
        states.transition(
            self.db, session_id, states.CANCELLED,
            processing_completed_at=states.utc_now(),
            processing_duration_ms=elapsed_ms,
        )
        self.ledger.record(session_id, "processing_cancelled", "cancelled",
                           error_message=states.CANCEL_REASON, duration_ms=elapsed_ms)
