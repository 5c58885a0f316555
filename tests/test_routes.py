import pytest
from fastapi.testclient import TestClient

from conftest import FakeTranscriber, silent_asset
from processing.pipeline import ProcessingPipeline
from recorder.upload_buffer import UploadedAudioBuffer
from server.app import create_app
from session.controller import SessionController


@pytest.fixture
def transcriber():
    return FakeTranscriber("hello team, let's ship on friday")


@pytest.fixture
def client(db, ledger, state_store, transcriber, summarizer):
    pipeline = ProcessingPipeline(db, ledger, transcriber, summarizer)
    controller = SessionController(db, ledger, state_store, UploadedAudioBuffer(), pipeline)
    return TestClient(create_app(controller, ledger, transcriber))


def start(client, name="Standup", owner="user1"):
    response = client.post("/api/sessions", json={"name": name, "ownerId": owner})
    assert response.status_code == 200, response.text
    return response.json()["sessionId"]


def test_create_session_requires_fields(client):
    assert client.post("/api/sessions", json={"name": "Standup"}).status_code == 400
    assert client.post("/api/sessions", json={"ownerId": "user1"}).status_code == 400
    assert client.post("/api/sessions").status_code == 400


def test_second_session_conflicts(client):
    start(client)
    response = client.post("/api/sessions", json={"name": "Retro", "ownerId": "user1"})
    assert response.status_code == 409


def test_full_session_flow(client):
    session_id = start(client)
    assert client.get("/api/state").json()["status"] == "recording"

    response = client.post(
        f"/api/sessions/{session_id}/complete", json={"rawAudioAsset": silent_asset()},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["transcript"] == "hello team, let's ship on friday"
    assert body["summaryJSON"]["title"] == "Standup"
    assert body["summaryMarkdown"].startswith("# Standup")
    assert isinstance(body["timing"]["totalSeconds"], float)

    detail = client.get(f"/api/sessions/{session_id}").json()
    assert detail["session"]["status"] == "completed"
    assert detail["session"]["summary"]["json"]["title"] == "Standup"
    history = detail["processingHistory"]
    assert [e["step"] for e in history] == [
        "processing_started",
        "transcription_started",
        "transcription_complete",
        "summarization_started",
        "summarization_complete",
        "processing_complete",
    ]
    assert "durationSeconds" in history[-1]

    listing = client.get("/api/sessions", params={"ownerId": "user1"}).json()["sessions"]
    assert [s["id"] for s in listing] == [session_id]
    assert listing[0]["processingTimeSeconds"] is not None
    assert client.get("/api/state").json()["status"] == "idle"


def test_complete_requires_asset(client):
    session_id = start(client)
    assert client.post(f"/api/sessions/{session_id}/complete", json={}).status_code == 400


def test_complete_unknown_session(client):
    response = client.post("/api/sessions/missing/complete", json={"rawAudioAsset": silent_asset()})
    assert response.status_code == 404


def test_complete_with_undecodable_asset_returns_500(client):
    session_id = start(client)

    response = client.post(
        f"/api/sessions/{session_id}/complete", json={"rawAudioAsset": "data:audio/webm;base64,%%%"},
    )

    assert response.status_code == 500
    assert "base64" in response.json()["detail"]
    assert client.get(f"/api/sessions/{session_id}").json()["session"]["status"] == "failed"


def test_stop_without_upload_is_no_data(client):
    session_id = start(client)

    response = client.post(f"/api/sessions/{session_id}/stop")

    assert response.status_code == 422
    assert client.get(f"/api/sessions/{session_id}").json()["session"]["status"] == "failed"


def test_uploaded_audio_then_stop_completes(client):
    session_id = start(client)

    assert client.post(f"/api/sessions/{session_id}/audio").status_code == 400
    assert client.post(
        "/api/sessions/missing/audio", json={"rawAudioAsset": silent_asset()},
    ).status_code == 404
    response = client.post(
        f"/api/sessions/{session_id}/audio", json={"rawAudioAsset": silent_asset()},
    )
    assert response.status_code == 200, response.text

    response = client.post(f"/api/sessions/{session_id}/stop")

    assert response.status_code == 200, response.text
    assert response.json()["transcript"] == "hello team, let's ship on friday"
    assert client.get(f"/api/sessions/{session_id}").json()["session"]["status"] == "completed"
    assert client.post(
        f"/api/sessions/{session_id}/audio", json={"rawAudioAsset": silent_asset()},
    ).status_code == 409


def test_cancel(client):
    session_id = start(client)

    response = client.post(f"/api/sessions/{session_id}/cancel")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert client.post(f"/api/sessions/{session_id}/cancel").json()["status"] == "cancelled"
    assert client.post(f"/api/sessions/{session_id}/stop").status_code == 409
    assert client.post("/api/sessions/missing/cancel").status_code == 404


def test_rename(client):
    session_id = start(client)

    response = client.put(f"/api/sessions/{session_id}", json={"name": "Daily"})

    assert response.status_code == 200
    assert response.json()["name"] == "Daily"
    assert client.put("/api/sessions/missing", json={"name": "x"}).status_code == 404


def test_chunk_transcription(client):
    session_id = start(client)

    response = client.post(f"/api/sessions/{session_id}/chunks", json={"rawAudioAsset": silent_asset(0.5)})

    assert response.status_code == 200
    assert response.json()["transcription"] == "hello team, let's ship on friday"
    assert client.get(f"/api/sessions/{session_id}").json()["session"]["status"] == "recording"


def test_list_requires_owner(client):
    assert client.get("/api/sessions").status_code == 400


def test_get_unknown_session(client):
    assert client.get("/api/sessions/missing").status_code == 404


def test_status_and_devices(client):
    status = client.get("/api/status").json()
    assert status["state"]["status"] == "idle"
    assert status["capture_backend"] == "UploadedAudioBuffer"
    assert client.get("/api/devices").json() == {"loopback": [], "input": []}
