"""Microphone capture at the input device's native sample rate."""

import logging
import queue
from typing import Optional

import numpy as np
import sounddevice as sd

from ..config import AudioConfig
from ..errors import CaptureError

logger = logging.getLogger(__name__)


def to_mono(samples: np.ndarray) -> np.ndarray:
    """Average interleaved (frames, channels) samples down to one channel."""
    if samples.ndim == 1:
        return samples.astype(np.float32, copy=False)
    if samples.shape[1] == 1:
        return samples[:, 0].astype(np.float32, copy=False)
    return samples.mean(axis=1).astype(np.float32)


class AudioCapture:
    """Continuous audio capture from the microphone.

    The PortAudio callback thread only enqueues blocks; the consumer drains
    them with ``try_recv`` without blocking.
    """

    def __init__(self, config: AudioConfig):
        self.config = config
        self.channels = config.channels

        self._audio_queue: queue.Queue[np.ndarray] = queue.Queue()
        self._stream: Optional[sd.InputStream] = None
        self._running = False
        self._sample_rate: Optional[int] = None
        self._stream_error: Optional[str] = None

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        time_info: dict,
        status: sd.CallbackFlags,
    ) -> None:
        """Callback for sounddevice stream."""
        if status:
            logger.warning(f"Audio callback status: {status}")

        self._audio_queue.put(indata.copy())

    def _finished_callback(self) -> None:
        if self._running:
            self._stream_error = "Audio stream finished unexpectedly"

    def _resolve_device(self):
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def start(self) -> None:
        """Open the input stream.

        Raises:
            CaptureError: no usable input device, or access was denied.
        """
        if self._running:
            logger.warning("Audio capture already running")
            return

        device = self._resolve_device()

        try:
            if self.config.sample_rate:
                sample_rate = int(self.config.sample_rate)
            else:
                info = sd.query_devices(device, "input")
                sample_rate = int(info["default_samplerate"])

            logger.info(f"Starting audio capture: {sample_rate}Hz, {self.channels}ch")

            self._stream = sd.InputStream(
                device=device,
                samplerate=sample_rate,
                channels=self.channels,
                dtype=np.float32,
                callback=self._audio_callback,
                finished_callback=self._finished_callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise CaptureError(f"Failed to start audio capture: {e}") from e

        self._sample_rate = sample_rate
        self._stream_error = None
        self._running = True

        logger.info("Audio capture started")

    @property
    def sample_rate(self) -> int:
        """Native sample rate of the running stream."""
        if self._sample_rate is None:
            raise CaptureError("Audio capture not started")
        return self._sample_rate

    def try_recv(self) -> Optional[np.ndarray]:
        """Drain all queued blocks as one mono float32 array, or None if empty.

        Raises:
            CaptureError: the stream died underneath us.
        """
        if self._stream_error is not None:
            raise CaptureError(self._stream_error)

        blocks = []
        while True:
            try:
                blocks.append(self._audio_queue.get_nowait())
            except queue.Empty:
                break

        if not blocks:
            return None

        return to_mono(np.concatenate(blocks))

    def stop(self) -> None:
        """Stop audio capture."""
        if not self._running:
            return

        logger.info("Stopping audio capture")
        self._running = False

        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

        # Clear queue
        while not self._audio_queue.empty():
            try:
                self._audio_queue.get_nowait()
            except queue.Empty:
                break

        logger.info("Audio capture stopped")

    def is_running(self) -> bool:
        """Check if capture is running."""
        return self._running

    @staticmethod
    def list_devices() -> list[dict]:
        """List available audio input devices."""
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices
