import json
import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from processing.transcriber import Transcriber
from session.controller import SessionController
from session.errors import (
    CaptureError,
    ConflictError,
    InvalidStateError,
    NoDataError,
    NotFoundError,
    PipelineError,
    SessionCancelledError,
    ValidationError,
)
from session.ledger import StatusLedger, duration_seconds

logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    name: str | None = None
    ownerId: str | None = None


class AudioAssetRequest(BaseModel):
    rawAudioAsset: str | None = None


class UpdateSessionRequest(BaseModel):
    name: str | None = None


def _session_payload(session: dict) -> dict:
    summary = json.loads(session["summary_json"]) if session.get("summary_json") else None
    return {
        "id": session["id"],
        "ownerId": session["owner_id"],
        "name": session["name"],
        "status": session["status"],
        "transcript": session["transcript"],
        "summary": summary,
        "errorMessage": session["error_message"],
        "createdAt": session["created_at"],
        "processingStartedAt": session["processing_started_at"],
        "processingCompletedAt": session["processing_completed_at"],
        "processingDurationMs": session["processing_duration_ms"],
        "processingTimeSeconds": duration_seconds(session["processing_duration_ms"]),
    }


def _finish(run) -> dict:
    """Run a stop/complete call, mapping lifecycle errors to HTTP responses."""
    try:
        return {"success": True, **run()}
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except InvalidStateError as e:
        raise HTTPException(409, str(e))
    except NoDataError as e:
        raise HTTPException(422, str(e))
    except SessionCancelledError as e:
        raise HTTPException(409, str(e))
    except (CaptureError, PipelineError) as e:
        raise HTTPException(500, str(e))


def create_router(controller: SessionController, ledger: StatusLedger,
                  transcriber: Transcriber) -> APIRouter:
    router = APIRouter()

    # -- Status --

    @router.get("/status")
    def get_status():
        return {
            "state": controller.get_state(),
            "capture_backend": type(controller.capture_adapter).__name__,
            "whisper_model_loaded": transcriber.is_loaded,
        }

    @router.get("/state")
    def get_state():
        return controller.get_state()

    # -- Devices --

    @router.get("/devices")
    def list_devices():
        try:
            devices = controller.capture_adapter.list_devices()
        except (ImportError, OSError) as e:
            raise HTTPException(503, f"Audio devices unavailable: {e}")
        loopback = [d for d in devices if d.get("isLoopback")]
        inputs = [d for d in devices if d["maxInputChannels"] > 0 and not d.get("isLoopback")]
        return {"loopback": loopback, "input": inputs}

    # -- Session lifecycle --

    @router.post("/sessions")
    def start_session(body: CreateSessionRequest = CreateSessionRequest()):
        try:
            session = controller.start(body.name, body.ownerId)
        except ValidationError as e:
            raise HTTPException(400, str(e))
        except ConflictError as e:
            raise HTTPException(409, str(e))
        except CaptureError as e:
            raise HTTPException(500, str(e))
        return {"success": True, "sessionId": session["id"], "status": session["status"]}

    @router.post("/sessions/{session_id}/stop")
    def stop_session(session_id: str):
        return _finish(lambda: controller.stop(session_id))

    @router.post("/sessions/{session_id}/complete")
    def complete_session(session_id: str, body: AudioAssetRequest = AudioAssetRequest()):
        if not body.rawAudioAsset:
            raise HTTPException(400, "rawAudioAsset is required")
        return _finish(lambda: controller.complete(session_id, body.rawAudioAsset))

    @router.post("/sessions/{session_id}/audio")
    def upload_audio(session_id: str, body: AudioAssetRequest = AudioAssetRequest()):
        try:
            controller.accept_audio(session_id, body.rawAudioAsset)
        except ValidationError as e:
            raise HTTPException(400, str(e))
        except NotFoundError as e:
            raise HTTPException(404, str(e))
        except InvalidStateError as e:
            raise HTTPException(409, str(e))
        return {"success": True, "sessionId": session_id}

    @router.post("/sessions/{session_id}/chunks")
    def upload_chunk(session_id: str, body: AudioAssetRequest = AudioAssetRequest()):
        if not body.rawAudioAsset:
            raise HTTPException(400, "rawAudioAsset is required")
        try:
            transcription = controller.transcribe_chunk(session_id, body.rawAudioAsset)
        except NotFoundError as e:
            raise HTTPException(404, str(e))
        except InvalidStateError as e:
            raise HTTPException(409, str(e))
        except PipelineError as e:
            raise HTTPException(400, str(e))
        return {"success": True, "transcription": transcription}

    @router.post("/sessions/{session_id}/cancel")
    def cancel_session(session_id: str):
        try:
            return controller.cancel(session_id)
        except NotFoundError as e:
            raise HTTPException(404, str(e))

    @router.put("/sessions/{session_id}")
    def update_session(session_id: str, body: UpdateSessionRequest):
        try:
            session = controller.rename(session_id, body.name)
        except ValidationError as e:
            raise HTTPException(400, str(e))
        except NotFoundError as e:
            raise HTTPException(404, str(e))
        except InvalidStateError as e:
            raise HTTPException(409, str(e))
        return _session_payload(session)

    # -- History --

    @router.get("/sessions")
    def list_sessions(ownerId: str | None = None):
        if not ownerId:
            raise HTTPException(400, "ownerId is required")
        sessions = controller.db.list_sessions(ownerId)
        return {"success": True, "sessions": [_session_payload(s) for s in sessions]}

    @router.get("/sessions/{session_id}")
    def get_session(session_id: str):
        try:
            session = controller.get_session(session_id)
        except NotFoundError as e:
            raise HTTPException(404, str(e))
        return {
            "success": True,
            "session": _session_payload(session),
            "processingHistory": ledger.history(session_id),
        }

    return router
