"""Audio pipeline components: capture, resampling and voice activity detection."""

from .capture import AudioCapture
from .resample import TARGET_SAMPLE_RATE, AudioResampler
from .vad import SileroScorer, VadEvent, VadStateMachine, VoiceActivityDetector

__all__ = [
    "AudioCapture",
    "AudioResampler",
    "TARGET_SAMPLE_RATE",
    "SileroScorer",
    "VadEvent",
    "VadStateMachine",
    "VoiceActivityDetector",
]
