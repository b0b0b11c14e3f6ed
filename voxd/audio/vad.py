"""Voice Activity Detection using Silero VAD."""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import torch

from ..config import AudioConfig

logger = logging.getLogger(__name__)

# Silero VAD operates on 512-sample frames at 16 kHz (32 ms)
VAD_SAMPLE_RATE = 16000
VAD_CHUNK_SIZE = 512

DEFAULT_THRESHOLD = 0.5
# Silero's own convention for the lower (end-of-speech) threshold
SILENCE_THRESHOLD_OFFSET = 0.15

Scorer = Callable[[np.ndarray], float]


class VadEvent(Enum):
    """Per-frame outcome of the detector."""
    NONE = "none"
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


class VadStateMachine:
    """Hysteresis state machine over per-frame speech probabilities."""

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        silence_threshold: Optional[float] = None,
        min_speech_chunks: int = 2,
        min_silence_chunks: int = 8,
    ):
        if silence_threshold is None:
            silence_threshold = max(0.0, threshold - SILENCE_THRESHOLD_OFFSET)
        if silence_threshold > threshold:
            raise ValueError(
                f"Silence threshold {silence_threshold} exceeds speech threshold {threshold}"
            )
        if min_speech_chunks < 1 or min_silence_chunks < 1:
            raise ValueError("Chunk counts must be at least 1")

        self.threshold = threshold
        self.silence_threshold = silence_threshold
        self.min_speech_chunks = min_speech_chunks
        self.min_silence_chunks = min_silence_chunks

        self._is_speaking = False
        self._speech_chunks = 0
        self._silence_chunks = 0

    def process(self, probability: float) -> VadEvent:
        """Feed one frame's speech probability and return the resulting event."""
        if probability >= self.threshold:
            self._speech_chunks += 1
            self._silence_chunks = 0
            if not self._is_speaking and self._speech_chunks >= self.min_speech_chunks:
                self._is_speaking = True
                logger.debug("Speech started")
                return VadEvent.SPEECH_START

        elif probability < self.silence_threshold:
            self._silence_chunks += 1
            self._speech_chunks = 0
            if self._is_speaking and self._silence_chunks >= self.min_silence_chunks:
                self._is_speaking = False
                logger.debug("Speech ended")
                return VadEvent.SPEECH_END

        else:
            # Between thresholds: breaks both runs, keeps the current state
            self._speech_chunks = 0
            self._silence_chunks = 0

        return VadEvent.NONE

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    def reset(self) -> None:
        """Reset to silence."""
        self._is_speaking = False
        self._speech_chunks = 0
        self._silence_chunks = 0


def ms_to_chunks(duration_ms: int, chunk_size: int = VAD_CHUNK_SIZE) -> int:
    """Convert a duration to a whole number of VAD frames (at least one)."""
    chunk_ms = chunk_size * 1000 / VAD_SAMPLE_RATE
    return max(1, round(duration_ms / chunk_ms))


class SileroScorer:
    """Frame scorer backed by the Silero VAD torch model."""

    def __init__(self, model, sample_rate: int = VAD_SAMPLE_RATE):
        self._model = model
        self.sample_rate = sample_rate

    @classmethod
    def load(cls, repo_dir: str | Path) -> "SileroScorer":
        """Load Silero VAD from a local torch hub checkout."""
        logger.info(f"Loading Silero VAD model from {repo_dir}")
        model, _utils = torch.hub.load(
            repo_or_dir=str(repo_dir),
            model="silero_vad",
            source="local",
            force_reload=False,
            onnx=False,
        )
        model.eval()
        logger.info("Silero VAD model loaded")
        return cls(model)

    def __call__(self, frame: np.ndarray) -> float:
        audio_tensor = torch.from_numpy(np.ascontiguousarray(frame, dtype=np.float32))
        with torch.no_grad():
            return float(self._model(audio_tensor, self.sample_rate).item())

    def reset(self) -> None:
        self._model.reset_states()


class VoiceActivityDetector:
    """Scores fixed-size frames and drives the speech/silence state machine."""

    def __init__(
        self,
        scorer: Scorer,
        state_machine: Optional[VadStateMachine] = None,
        chunk_size: int = VAD_CHUNK_SIZE,
    ):
        self._scorer = scorer
        self._state_machine = state_machine or VadStateMachine()
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, scorer: Scorer, config: AudioConfig) -> "VoiceActivityDetector":
        state_machine = VadStateMachine(
            threshold=config.vad_threshold,
            silence_threshold=config.vad_silence_threshold,
            min_speech_chunks=ms_to_chunks(config.vad_min_speech_ms),
            min_silence_chunks=ms_to_chunks(config.vad_min_silence_ms),
        )
        return cls(scorer, state_machine)

    def process(self, frame: np.ndarray) -> VadEvent:
        """Classify one frame. Scoring failures are logged and count as no event."""
        try:
            if len(frame) != self._chunk_size:
                raise ValueError(
                    f"Frame size {len(frame)} doesn't match expected {self._chunk_size}"
                )
            probability = self._scorer(frame)
        except Exception as e:
            logger.warning(f"VAD scoring failed: {e}")
            return VadEvent.NONE

        return self._state_machine.process(probability)

    @property
    def is_speaking(self) -> bool:
        return self._state_machine.is_speaking

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def reset(self) -> None:
        """Reset detector and scorer state."""
        self._state_machine.reset()
        reset_scorer = getattr(self._scorer, "reset", None)
        if reset_scorer is not None:
            reset_scorer()
