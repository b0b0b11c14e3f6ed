"""Speech-to-text backends.

A backend is anything with ``transcribe(samples, sample_rate) -> str``; the
variant is picked once, at construction, from ``ModelConfig.backend``.
"""

import threading
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from ..config import ModelConfig

AUTO_LANGUAGE = "auto"


class Transcriber(Protocol):
    def transcribe(self, samples: np.ndarray, sample_rate: int) -> str: ...


class SharedLanguage:
    """Active transcription language, readable from the transcription thread."""

    def __init__(self, language: str = AUTO_LANGUAGE):
        self._lock = threading.Lock()
        self._language = language

    def get(self) -> str:
        with self._lock:
            return self._language

    def set(self, language: str) -> None:
        with self._lock:
            self._language = language

    def code(self) -> Optional[str]:
        """Language code for the backend, or None to autodetect."""
        language = self.get()
        return None if language == AUTO_LANGUAGE else language


def create_transcriber(
    model_path: str | Path,
    config: ModelConfig,
    language: Optional[SharedLanguage] = None,
) -> Transcriber:
    """Construct the configured backend."""
    if config.backend == "whisper":
        from .whisper import WhisperTranscriber

        return WhisperTranscriber(model_path, config, language)
    raise ValueError(f"Unknown transcription backend: {config.backend}")


__all__ = ["AUTO_LANGUAGE", "SharedLanguage", "Transcriber", "create_transcriber"]
