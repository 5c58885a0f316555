import logging
import socket
import sys
import threading
from datetime import datetime

import requests
import uvicorn

import config
from db.database import Database
from processing.pipeline import ProcessingPipeline
from processing.summarizer import Summarizer
from processing.transcriber import Transcriber
from recorder.upload_buffer import UploadedAudioBuffer
from server.app import create_app
from session.controller import SessionController
from session.ledger import StatusLedger
from session.state_store import SessionStateStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("meetmate")

LOCAL_OWNER_ID = "local"


def find_available_port(start: int, end: int) -> int:
    for port in range(start, end + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((config.HOST, port))
                return port
            except OSError:
                continue
    raise RuntimeError(f"No free port between {start} and {end}")


def build_capture_adapter():
    if config.CAPTURE_BACKEND == "device":
        from recorder.audio_capture import AudioRecorder

        return AudioRecorder(
            str(config.RECORDINGS_DIR),
            loopback_device_index=config.LOOPBACK_DEVICE_INDEX,
            mic_device_index=config.MIC_DEVICE_INDEX,
        )
    return UploadedAudioBuffer()


def main():
    config.RECORDINGS_DIR.mkdir(parents=True, exist_ok=True)

    try:
        port = find_available_port(config.PORT, 8800)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    if port != config.PORT:
        logger.info("Port %d in use, using %d", config.PORT, port)
    config.PORT = port

    # Initialize components
    db = Database(config.DB_PATH)
    ledger = StatusLedger(db)
    state_store = SessionStateStore(config.STATE_PATH)
    capture_adapter = build_capture_adapter()
    transcriber = Transcriber(
        model_size=config.WHISPER_MODEL,
        language=config.WHISPER_LANGUAGE,
    )
    summarizer = Summarizer(
        provider=config.LLM_PROVIDER,
        api_key=config.ANTHROPIC_API_KEY,
        model=config.ANTHROPIC_MODEL,
        ollama_url=config.OLLAMA_URL,
        ollama_model=config.OLLAMA_MODEL,
        timeout=config.LLM_TIMEOUT_SECS,
    )
    pipeline = ProcessingPipeline(db, ledger, transcriber, summarizer)
    controller = SessionController(db, ledger, state_store, capture_adapter, pipeline)
    controller.recover()

    # Load Whisper model in background
    def preload_whisper():
        try:
            logger.info("Preloading Whisper model in background...")
            transcriber._load_model()
        except Exception as e:
            logger.warning("Could not preload Whisper: %s", e)

    threading.Thread(target=preload_whisper, daemon=True).start()

    app = create_app(controller, ledger, transcriber)

    server_config = uvicorn.Config(
        app,
        host=config.HOST,
        port=config.PORT,
        log_level="warning",
    )
    server = uvicorn.Server(server_config)

    def shutdown():
        logger.info("Shutting down MeetMate...")
        try:
            controller.shutdown()
        except Exception as e:
            logger.error("Error cancelling active recording: %s", e)
        terminate = getattr(capture_adapter, "terminate", None)
        if terminate:
            terminate()
        ledger.close()
        server.should_exit = True

    logger.info("MeetMate running on http://%s:%d/api", config.HOST, config.PORT)

    if not config.ENABLE_TRAY:
        try:
            server.run()
        finally:
            shutdown()
        return

    from tray.tray_icon import TrayIcon

    # Toggle recording from the tray through the HTTP API
    def toggle_recording(state: dict):
        base = f"http://{config.HOST}:{config.PORT}/api"
        if state["status"] == "recording":
            requests.post(f"{base}/sessions/{state['sessionId']}/stop", timeout=config.LLM_TIMEOUT_SECS)
        else:
            name = f"Meeting {datetime.now().strftime('%Y-%m-%d %H:%M')}"
            requests.post(f"{base}/sessions", json={"name": name, "ownerId": LOCAL_OWNER_ID}, timeout=10)

    tray = TrayIcon(
        on_toggle_recording=lambda state: threading.Thread(
            target=toggle_recording, args=(state,), daemon=True,
        ).start(),
        on_quit=shutdown,
        # Uploaded recordings only arrive from remote clients
        can_toggle=config.CAPTURE_BACKEND == "device",
    )
    state_store.subscribe(tray.on_state_changed)

    server_thread = threading.Thread(target=server.run, daemon=True)
    server_thread.start()

    # Run tray icon on main thread (blocks until quit)
    try:
        tray.run()
    except KeyboardInterrupt:
        pass
    finally:
        shutdown()


if __name__ == "__main__":
    main()
