"""Speech-to-text transcription using faster-whisper."""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
from faster_whisper import WhisperModel

from ..config import ModelConfig
from . import SharedLanguage

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


class WhisperTranscriber:
    """Batch transcription of complete utterances with a local Whisper model."""

    def __init__(
        self,
        model_path: str | Path,
        config: ModelConfig,
        language: Optional[SharedLanguage] = None,
    ):
        self.model_path = str(model_path)
        self.device = config.whisper_device
        self.compute_type = config.whisper_compute_type
        self.beam_size = config.beam_size
        self.language = language or SharedLanguage(config.language)

        logger.info(f"Loading Whisper model: {self.model_path} on {self.device}")
        self._model = WhisperModel(
            self.model_path,
            device=self.device,
            compute_type=self.compute_type,
        )
        logger.info("Whisper model loaded")

    def transcribe(self, samples: np.ndarray, sample_rate: int) -> str:
        """Transcribe mono float32 samples; returns stripped text (may be empty)."""
        if sample_rate != WHISPER_SAMPLE_RATE:
            raise ValueError(
                f"Whisper expects {WHISPER_SAMPLE_RATE}Hz audio, got {sample_rate}Hz"
            )

        duration = len(samples) / sample_rate
        logger.debug(f"Transcribing {len(samples)} samples ({duration:.2f}s)")

        segments, _info = self._model.transcribe(
            np.asarray(samples, dtype=np.float32),
            beam_size=self.beam_size,
            language=self.language.code(),
            vad_filter=False,  # We already did VAD
        )

        texts = [seg.text.strip() for seg in segments]
        text = " ".join(t for t in texts if t)

        logger.debug(f"Transcription complete: {len(text)} chars")
        return text
