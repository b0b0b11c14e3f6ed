"""Pytest configuration and shared fixtures."""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from voxd.config import Config
from voxd.engine import Engine

FRAME_SIZE = 512


# ==================== Audio Helpers ====================

def frame(value: float) -> np.ndarray:
    """A VAD frame whose score (see ``score_frame``) is ``value``."""
    return np.full(FRAME_SIZE, value, dtype=np.float32)


def frames(*values: float) -> np.ndarray:
    """Concatenated frames, one per value."""
    return np.concatenate([frame(v) for v in values])


def score_frame(samples: np.ndarray) -> float:
    """Scorer that reads the speech probability off the first sample."""
    return float(samples[0])


# 5 silence, 3 speech, 2 silence frames: 5120 samples, five resampler chunks
SCENARIO_VALUES = (0.01, 0.02, 0.03, 0.04, 0.05, 0.91, 0.92, 0.93, 0.06, 0.07)


# ==================== Fakes ====================

class FakeCapture:
    """Capture source that replays prepared blocks."""

    def __init__(self, blocks=(), sample_rate=16000, start_error=None, recv_error=None, on_drained=None):
        self.blocks = list(blocks)
        self._sample_rate = sample_rate
        self.start_error = start_error
        self.recv_error = recv_error
        self.on_drained = on_drained
        self.start_calls = 0
        self.stop_calls = 0

    def start(self):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error

    @property
    def sample_rate(self):
        return self._sample_rate

    def try_recv(self):
        if self.blocks:
            return self.blocks.pop(0)
        if self.recv_error is not None:
            raise self.recv_error
        if self.on_drained is not None:
            callback, self.on_drained = self.on_drained, None
            callback()
        return None

    def stop(self):
        self.stop_calls += 1


class CaptureFactory:
    """Hands out prepared captures in order, then idle ones."""

    def __init__(self, *captures):
        self._pending = list(captures)
        self.created = []

    def __call__(self, audio_config):
        capture = self._pending.pop(0) if self._pending else FakeCapture()
        self.created.append(capture)
        return capture


class FakeTranscriber:
    """Records every call and returns a fixed text."""

    def __init__(self, text="hello world", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, samples, sample_rate):
        self.calls.append((np.array(samples), sample_rate))
        if self.error is not None:
            raise self.error
        return self.text


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_content = """
audio:
  device: "default"
  sample_rate: 48000
  vad_threshold: 0.6
  vad_min_speech_ms: 96

model:
  whisper_model: "tiny"
  whisper_device: "cpu"
  language: "en"
  languages: ["auto", "en", "de"]
  models_dir: "{models_dir}"
  allow_download: false

daemon:
  initial_state: "listening"
  port: 9000

logging:
  level: "DEBUG"
  file: null
""".format(models_dir=str(temp_dir / "models"))

    config_path.write_text(config_content)
    return config_path


# ==================== Engine Fixtures ====================

@pytest.fixture
def daemon_config(temp_dir):
    """Config with two-frame speech and silence runs."""
    config = Config()
    config.model.models_dir = str(temp_dir / "models")
    config.audio.vad_min_speech_ms = 64
    config.audio.vad_min_silence_ms = 64
    config.model.languages = ["auto", "en", "de"]
    return config


@pytest.fixture
def mock_model_manager(temp_dir):
    """Model manager that finds every model on disk."""
    manager = MagicMock()
    manager.ensure_model.side_effect = lambda model_id, on_progress=None: temp_dir / model_id.value
    return manager


@pytest.fixture
def make_engine(daemon_config, mock_model_manager):
    """Build an Engine over fake capture, scorer and transcriber."""

    def _make(capture_factory=None, transcriber=None, config=None):
        transcriber = transcriber or FakeTranscriber()
        return Engine(
            config or daemon_config,
            model_manager=mock_model_manager,
            capture_factory=capture_factory or CaptureFactory(),
            scorer_factory=lambda path: score_frame,
            transcriber_factory=lambda path, model_config, language: transcriber,
        )

    return _make


# ==================== Mock Fixtures ====================

@pytest.fixture
def mock_whisper_model():
    """Create a mock Whisper model."""
    mock_model = MagicMock()
    first = MagicMock()
    first.text = " Hello there. "
    second = MagicMock()
    second.text = "General Kenobi"
    mock_model.transcribe.return_value = ([first, second], MagicMock())
    return mock_model


@pytest.fixture
def mock_vad_model():
    """Create a mock Silero VAD model."""
    mock_model = MagicMock()
    mock_model.return_value = MagicMock(item=MagicMock(return_value=0.8))
    mock_model.reset_states = MagicMock()
    return mock_model
