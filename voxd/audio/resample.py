"""Streaming sample rate conversion to the speech models' 16 kHz."""

import logging
from math import gcd

import numpy as np
from scipy.signal import firwin, upfirdn

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
DEFAULT_CHUNK_SIZE = 1024


class AudioResampler:
    """Polyphase resampler working on whole input chunks.

    Uses the same anti-aliasing filter as ``scipy.signal.resample_poly``
    but applies it causally, carrying the filter history and the output
    phase from one call to the next. Feeding a stream in chunks gives the
    same samples as resampling it in one piece, delayed by ``delay``
    output samples, and after ``n`` input samples exactly
    ``ceil(n * output_rate / input_rate)`` samples have been produced.

    Input length must be a multiple of ``chunk_size``.
    """

    def __init__(
        self,
        input_rate: int,
        output_rate: int = TARGET_SAMPLE_RATE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if input_rate <= 0 or output_rate <= 0:
            raise ValueError(f"Invalid sample rates: {input_rate} -> {output_rate}")
        if chunk_size <= 0:
            raise ValueError(f"Invalid chunk size: {chunk_size}")

        self.input_rate = input_rate
        self.output_rate = output_rate
        self._chunk_size = chunk_size

        divisor = gcd(input_rate, output_rate)
        self._up = output_rate // divisor
        self._down = input_rate // divisor

        max_rate = max(self._up, self._down)
        self._half_len = 10 * max_rate
        self._filter = None
        self._history_len = 0
        if not self.is_passthrough:
            self._filter = firwin(2 * self._half_len + 1, 1.0 / max_rate, window=("kaiser", 5.0)) * self._up
            # Input samples the filter can reach back to from the next output
            self._history_len = len(self._filter) // self._up + 1
        self.reset()

        logger.debug(
            f"Resampler {input_rate}Hz -> {output_rate}Hz "
            f"(up={self._up}, down={self._down}, chunk={chunk_size})"
        )

    @property
    def chunk_size(self) -> int:
        """Required input chunk size."""
        return self._chunk_size

    @property
    def delay(self) -> float:
        """Filter group delay in output samples."""
        if self._filter is None:
            return 0.0
        return self._half_len / self._down

    @property
    def is_passthrough(self) -> bool:
        return self._up == self._down

    def reset(self) -> None:
        """Forget the stream so far."""
        self._history = np.zeros(self._history_len, dtype=np.float64)
        # Stream index of the first history sample; the zeros stand for silence before the stream
        self._history_start = -self._history_len
        self._emitted = 0

    def process(self, samples: np.ndarray) -> np.ndarray:
        """Resample ``samples``; its length must be a multiple of chunk_size."""
        if len(samples) == 0:
            return np.empty(0, dtype=np.float32)
        if len(samples) % self._chunk_size:
            raise ValueError(
                f"Input length {len(samples)} is not a multiple of chunk size {self._chunk_size}"
            )

        samples = np.asarray(samples, dtype=np.float32)
        if self.is_passthrough:
            return samples.copy()

        window = np.concatenate((self._history, samples))
        consumed = self._history_start + len(window)
        end = -(-consumed * self._up // self._down)

        # Align the window start to a multiple of the down factor so that
        # upfirdn's output grid lands on the stream's output grid
        pad = self._history_start % self._down
        start = self._history_start - pad
        filtered = upfirdn(self._filter, np.concatenate((np.zeros(pad), window)), self._up, self._down)
        base = start * self._up // self._down
        output = filtered[self._emitted - base:end - base].astype(np.float32)

        self._history = window[-self._history_len:]
        self._history_start = consumed - self._history_len
        self._emitted = end
        return output
