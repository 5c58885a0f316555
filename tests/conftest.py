import base64
import io
import wave

import pytest

from db.database import Database
from processing.pipeline import ProcessingPipeline
from processing.transcriber import NO_SPEECH
from session.controller import SessionController
from session.ledger import StatusLedger
from session.state_store import SessionStateStore

SUMMARY_RESULT = {
    "summaryJSON": {
        "title": "Standup",
        "participants": ["Ana", "Luis"],
        "topics": [{"title": "Release", "summary": "Ship on Friday", "action_items": ["Tag build"]}],
        "key_decisions": ["Ship on Friday"],
        "next_steps": ["Tag build"],
        "tone": "professional",
        "overall_summary": "The team agreed to ship on Friday.",
    },
    "summaryMarkdown": "# Standup\n\n- Ship on Friday",
}


def wav_bytes(seconds: float = 2.0, rate: int = 16000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(b"\x00\x00" * int(seconds * rate))
    return buffer.getvalue()


def silent_asset(seconds: float = 2.0) -> str:
    return "data:audio/wav;base64," + base64.b64encode(wav_bytes(seconds)).decode("ascii")


class FakeCapture:
    def __init__(self):
        self.recording = False
        self.next_asset = silent_asset()
        self.asset = None
        self.fail_on_start = None
        self.starts = 0
        self.discards = 0

    def list_devices(self):
        return [
            {"index": 0, "name": "Speakers [Loopback]", "maxInputChannels": 2, "isLoopback": True},
            {"index": 1, "name": "Microphone", "maxInputChannels": 1, "isLoopback": False},
        ]

    def start(self):
        if self.fail_on_start:
            raise RuntimeError(self.fail_on_start)
        self.starts += 1
        self.recording = True
        self.asset = None

    def stop(self):
        if self.recording:
            self.asset = self.next_asset
        self.recording = False

    def last_asset(self):
        return self.asset

    def discard(self):
        self.discards += 1
        self.asset = None

    def is_recording(self):
        return self.recording


class FakeTranscriber:
    is_loaded = True

    def __init__(self, text: str = NO_SPEECH):
        self.text = text
        self.calls = []

    def transcribe(self, audio: bytes) -> str:
        self.calls.append(audio)
        return self.text


class FakeSummarizer:
    def __init__(self, result: dict = None, error: Exception = None, on_call=None):
        self.result = result or SUMMARY_RESULT
        self.error = error
        self.on_call = on_call
        self.calls = []

    def summarize(self, transcript: str) -> dict:
        self.calls.append(transcript)
        if self.on_call:
            self.on_call(transcript)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "meetmate.db")


@pytest.fixture
def ledger(db):
    ledger = StatusLedger(db)
    yield ledger
    ledger.close()


@pytest.fixture
def state_store(tmp_path):
    store = SessionStateStore(tmp_path / "state.json", tick_interval=0.05)
    yield store
    store.stop_ticker()


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def pipeline(db, ledger, transcriber, summarizer):
    return ProcessingPipeline(db, ledger, transcriber, summarizer)


@pytest.fixture
def controller(db, ledger, state_store, capture, pipeline):
    return SessionController(db, ledger, state_store, capture, pipeline)


def steps(ledger, session_id):
    return [event["step"] for event in ledger.history(session_id)]
