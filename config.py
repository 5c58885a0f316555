import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


# Paths
BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("MEETMATE_DATA_DIR", str(BASE_DIR / "data")))
RECORDINGS_DIR = DATA_DIR / "recordings"
DB_PATH = DATA_DIR / "meetmate.db"
STATE_PATH = DATA_DIR / "recording_state.json"

# Server
HOST = "127.0.0.1"
PORT = int(os.getenv("MEETMATE_PORT", "8787"))
ENABLE_TRAY = os.getenv("MEETMATE_ENABLE_TRAY", "1") == "1"

# Audio
SAMPLE_RATE = 16000
AUDIO_FORMAT = "mp3"
SOURCE_GAIN = 1.5
CAPTURE_BACKEND = os.getenv("MEETMATE_CAPTURE_BACKEND", "upload")  # "upload" or "device"

# Whisper
WHISPER_MODEL = os.getenv("MEETMATE_WHISPER_MODEL", "base")
WHISPER_LANGUAGE = os.getenv("MEETMATE_LANGUAGE") or None  # None = autodetect

# LLM
LLM_PROVIDER = os.getenv("MEETMATE_LLM_PROVIDER", "ollama")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("MEETMATE_ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
OLLAMA_MODEL = os.getenv("MEETMATE_OLLAMA_MODEL", "llama3.3")
OLLAMA_URL = os.getenv("MEETMATE_OLLAMA_URL", "http://localhost:11434")
LLM_TIMEOUT_SECS = float(os.getenv("MEETMATE_LLM_TIMEOUT_SECS", "300"))

# Status ledger
LEDGER_QUEUE_SIZE = int(os.getenv("MEETMATE_LEDGER_QUEUE_SIZE", "1000"))
LEDGER_WRITE_RETRIES = 1

# Recording timer
TICK_INTERVAL_SECS = 1.0

# Audio devices (None = autodetect)
LOOPBACK_DEVICE_INDEX = _optional_int("MEETMATE_LOOPBACK_DEVICE")
MIC_DEVICE_INDEX = _optional_int("MEETMATE_MIC_DEVICE")
