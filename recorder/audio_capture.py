import logging
import threading
import uuid
import wave
from pathlib import Path

import config
from recorder.mixer import encode_asset, mix_sources, resample, to_mono

logger = logging.getLogger(__name__)

CHUNK_DURATION_MS = 30


class AudioRecorder:
    """Local capture adapter: system loopback audio (what the meeting tab plays)
    plus the default microphone, mixed into a single compressed asset.
    """

    def __init__(self, output_dir: str, loopback_device_index: int | None = None,
                 mic_device_index: int | None = None, audio_format: str = config.AUDIO_FORMAT):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.loopback_device_index = loopback_device_index
        self.mic_device_index = mic_device_index
        self.audio_format = audio_format
        self._pyaudio = None
        self._pa = None
        self._recording = False
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._sources: list[Path] = []
        self._asset: str | None = None

    def _get_pa(self):
        if self._pa is None:
            import pyaudiowpatch as pyaudio

            self._pyaudio = pyaudio
            self._pa = pyaudio.PyAudio()
        return self._pa

    def list_devices(self) -> list[dict]:
        pa = self._get_pa()
        devices = []
        for i in range(pa.get_device_count()):
            info = pa.get_device_info_by_index(i)
            devices.append({
                "index": i,
                "name": info["name"],
                "maxInputChannels": info["maxInputChannels"],
                "maxOutputChannels": info["maxOutputChannels"],
                "defaultSampleRate": info["defaultSampleRate"],
                "isLoopback": info.get("isLoopbackDevice", False),
            })
        return devices

    def _find_loopback_device(self) -> dict | None:
        pa = self._get_pa()
        if self.loopback_device_index is not None:
            return pa.get_device_info_by_index(self.loopback_device_index)
        try:
            wasapi_info = pa.get_host_api_info_by_type(self._pyaudio.paWASAPI)
        except OSError:
            logger.warning("WASAPI not available, no loopback capture")
            return None

        default_output = pa.get_device_info_by_index(wasapi_info["defaultOutputDevice"])
        loopbacks = [
            info for info in (pa.get_device_info_by_index(i) for i in range(pa.get_device_count()))
            if info.get("isLoopbackDevice", False)
        ]
        prefix = default_output["name"].split(" (")[0]
        for info in loopbacks:
            if info["name"].startswith(prefix):
                return info
        return loopbacks[0] if loopbacks else None

    def _find_mic_device(self) -> dict | None:
        pa = self._get_pa()
        if self.mic_device_index is not None:
            return pa.get_device_info_by_index(self.mic_device_index)
        try:
            return pa.get_default_input_device_info()
        except OSError:
            logger.warning("No microphone available, capturing loopback only")
            return None

    def _record_stream(self, device_info: dict, wav_path: Path):
        pa = self._get_pa()
        sample_rate = int(device_info["defaultSampleRate"])
        channels = max(1, int(device_info.get("maxInputChannels") or 1))
        chunk_size = max(1, int(sample_rate * CHUNK_DURATION_MS / 1000))

        try:
            stream = pa.open(
                format=self._pyaudio.paInt16,
                channels=channels,
                rate=sample_rate,
                input=True,
                input_device_index=device_info["index"],
                frames_per_buffer=chunk_size,
            )
        except OSError as e:
            logger.error("Could not open stream for %s: %s", device_info["name"], e)
            return

        with wave.open(str(wav_path), "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(config.SAMPLE_RATE)
            try:
                while self._recording:
                    try:
                        data = stream.read(chunk_size, exception_on_overflow=False)
                    except OSError:
                        continue
                    data = resample(to_mono(data, channels), sample_rate, config.SAMPLE_RATE)
                    wf.writeframes(data)
            finally:
                stream.stop_stream()
                stream.close()

    def start(self):
        with self._lock:
            if self._recording:
                raise RuntimeError("A capture is already in progress")

            capture_id = uuid.uuid4().hex
            loopback_info = self._find_loopback_device()
            mic_info = self._find_mic_device()
            if not loopback_info and not mic_info:
                raise RuntimeError("No audio capture device found")

            self._asset = None
            self._recording = True
            self._threads = []
            self._sources = []
            for label, info in (("loopback", loopback_info), ("mic", mic_info)):
                if not info:
                    continue
                wav_path = self.output_dir / f"{capture_id}_{label}.wav"
                logger.info("Capturing %s: %s", label, info["name"])
                t = threading.Thread(target=self._record_stream, args=(info, wav_path), daemon=True)
                t.start()
                self._threads.append(t)
                self._sources.append(wav_path)

    def stop(self):
        with self._lock:
            if not self._recording:
                return
            self._recording = False

        for t in self._threads:
            t.join(timeout=5)
        self._threads = []

        mixed_wav = self.output_dir / f"{uuid.uuid4().hex}_mixed.wav"
        try:
            frames = mix_sources(self._sources, mixed_wav)
            logger.info("Captured %.1fs of audio", frames / config.SAMPLE_RATE)
            self._asset = encode_asset(mixed_wav, self.audio_format)
        except ValueError as e:
            logger.warning("Nothing captured: %s", e)
            self._asset = None
        finally:
            for tmp in [*self._sources, mixed_wav]:
                tmp.unlink(missing_ok=True)
            self._sources = []

    def last_asset(self) -> str | None:
        return self._asset

    def discard(self):
        self._asset = None

    def is_recording(self) -> bool:
        return self._recording

    def terminate(self):
        if self._recording:
            self._recording = False
            for t in self._threads:
                t.join(timeout=3)
        if self._pa:
            self._pa.terminate()
            self._pa = None
