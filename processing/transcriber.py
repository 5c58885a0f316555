import io
import logging

logger = logging.getLogger(__name__)

NO_SPEECH = "No speech detected"

_model_cache = {}


class Transcriber:
    def __init__(self, model_size: str = "base", language: str | None = None):
        self.model_size = model_size
        self.language = language
        self._model = None

    def _load_model(self):
        if self.model_size in _model_cache:
            self._model = _model_cache[self.model_size]
            return

        from faster_whisper import WhisperModel

        # Detect best device
        device = "cpu"
        compute_type = "int8"
        try:
            import torch
            if torch.cuda.is_available():
                device = "cuda"
                compute_type = "float16"
        except ImportError:
            pass

        logger.info(
            "Loading Whisper model '%s' on %s (compute_type=%s)...",
            self.model_size, device, compute_type,
        )
        self._model = WhisperModel(
            self.model_size,
            device=device,
            compute_type=compute_type,
        )
        _model_cache[self.model_size] = self._model
        logger.info("Whisper model loaded")

    @property
    def is_loaded(self) -> bool:
        return self._model is not None or self.model_size in _model_cache

    def transcribe(self, audio: bytes) -> str:
        """Transcribe an encoded audio file held in memory.

        Never raises: empty input, silence and recognition failures all come back
        as the ``NO_SPEECH`` sentinel so the pipeline can carry on.
        """
        if not audio:
            return NO_SPEECH

        try:
            if self._model is None:
                self._load_model()

            segments, info = self._model.transcribe(
                io.BytesIO(audio),
                language=self.language,
                beam_size=5,
                vad_filter=True,
            )
            text = " ".join(segment.text.strip() for segment in segments).strip()
        except Exception as e:
            logger.error("Transcription failed (%d bytes): %s", len(audio), e)
            return NO_SPEECH

        logger.info(
            "Transcribed %.1fs of %s audio (%d chars)",
            info.duration, info.language, len(text),
        )
        return text or NO_SPEECH
