import base64
import io
import struct
import wave
from pathlib import Path

from pydub import AudioSegment

import config

INT16_MIN = -32768
INT16_MAX = 32767

MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
}


def _unpack(data: bytes) -> tuple[int, ...]:
    return struct.unpack(f"<{len(data) // 2}h", data)


def _pack(samples) -> bytes:
    return struct.pack(f"<{len(samples)}h", *samples)


def to_mono(data: bytes, channels: int) -> bytes:
    """Average interleaved int16 frames down to a single channel."""
    if channels <= 1:
        return data
    samples = _unpack(data)
    mono = [
        int(sum(samples[i : i + channels]) / channels)
        for i in range(0, len(samples) - channels + 1, channels)
    ]
    return _pack(mono)


def resample(data: bytes, src_rate: int, dst_rate: int) -> bytes:
    """Nearest-sample resampling of mono int16 audio."""
    if src_rate == dst_rate or not data:
        return data
    samples = _unpack(data)
    ratio = dst_rate / src_rate
    new_len = int(len(samples) * ratio)
    if new_len <= 0:
        return b""
    return _pack([samples[min(int(i / ratio), len(samples) - 1)] for i in range(new_len)])


def read_wav_samples(wav_path: Path) -> tuple[list[int], int]:
    """Read a mono WAV and return (samples, framerate).
    Missing, truncated or empty files return an empty list.
    """
    wav_path = Path(wav_path)
    if not wav_path.exists() or wav_path.stat().st_size < 44:
        return [], config.SAMPLE_RATE

    try:
        with wave.open(str(wav_path), "rb") as wf:
            rate = wf.getframerate()
            n_frames = wf.getnframes()
            if n_frames == 0:
                return [], rate
            return list(_unpack(wf.readframes(n_frames))), rate
    except (wave.Error, EOFError, struct.error):
        return [], config.SAMPLE_RATE


def mix_sources(wav_paths: list[Path], output_wav: Path, gain: float = config.SOURCE_GAIN) -> int:
    """Sum mono sources into one mono WAV, applying ``gain`` to each and clipping to int16.
    Shorter sources are padded with silence. Returns the number of frames written.
    """
    sources = []
    rate = config.SAMPLE_RATE
    for path in wav_paths:
        samples, src_rate = read_wav_samples(path)
        if samples:
            if not sources:
                rate = src_rate
            sources.append(samples)

    if not sources:
        raise ValueError("All capture sources are empty")

    n_frames = max(len(s) for s in sources)
    mixed = []
    for i in range(n_frames):
        total = sum(s[i] for s in sources if i < len(s)) * gain
        mixed.append(max(INT16_MIN, min(INT16_MAX, int(total))))

    with wave.open(str(output_wav), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(_pack(mixed))
    return n_frames


def to_data_url(audio: bytes, fmt: str) -> str:
    mime = MIME_TYPES.get(fmt, f"audio/{fmt}")
    return f"data:{mime};base64,{base64.b64encode(audio).decode('ascii')}"


def encode_asset(wav_path: Path, fmt: str = config.AUDIO_FORMAT) -> str:
    """Compress a WAV with pydub/ffmpeg and wrap it as a data URL."""
    if fmt == "wav":
        return to_data_url(Path(wav_path).read_bytes(), fmt)
    buffer = io.BytesIO()
    AudioSegment.from_wav(str(wav_path)).export(buffer, format=fmt, bitrate="128k")
    return to_data_url(buffer.getvalue(), fmt)
