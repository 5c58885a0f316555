import logging
import threading

logger = logging.getLogger(__name__)


class UploadedAudioBuffer:
    """Capture adapter for remote clients (e.g. a browser extension) that record
    on their side and upload the finished asset as a data URL.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._recording = False
        self._asset: str | None = None

    def list_devices(self) -> list[dict]:
        return []

    def start(self):
        with self._lock:
            if self._recording:
                raise RuntimeError("A capture is already in progress")
            self._recording = True
            self._asset = None

    def accept(self, asset: str):
        with self._lock:
            self._asset = asset
        logger.info("Received audio asset (%d chars)", len(asset or ""))

    def stop(self):
        with self._lock:
            self._recording = False

    def last_asset(self) -> str | None:
        with self._lock:
            return self._asset

    def discard(self):
        with self._lock:
            self._asset = None

    def is_recording(self) -> bool:
        return self._recording

    def terminate(self):
        self.stop()
        self.discard()
