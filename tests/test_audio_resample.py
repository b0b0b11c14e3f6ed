"""Tests for the resampler."""

import numpy as np
import pytest
from scipy.signal import resample_poly

from voxd.audio.resample import AudioResampler


class TestAudioResampler:
    """Tests for AudioResampler."""

    def test_passthrough(self):
        """Test 16 kHz input is copied unchanged."""
        resampler = AudioResampler(16000)
        samples = np.arange(2048, dtype=np.float32)

        output = resampler.process(samples)

        assert resampler.is_passthrough
        np.testing.assert_array_equal(output, samples)
        assert output is not samples

    def test_downsample_48k(self):
        """Test 48 kHz chunks come out a third as long."""
        resampler = AudioResampler(48000, chunk_size=1024)
        samples = np.zeros(3 * 1024, dtype=np.float32)

        output = resampler.process(samples)

        assert len(output) == 1024
        assert output.dtype == np.float32

    @pytest.mark.parametrize("input_rate", [48000, 44100, 22050])
    def test_output_count_does_not_drift(self, input_rate):
        """Test chunked output stays within one sample of the exact rate."""
        resampler = AudioResampler(input_rate, chunk_size=1024)
        chunk = np.zeros(1024, dtype=np.float32)

        total = 0
        for n in range(1, 201):
            total += len(resampler.process(chunk))
            assert abs(total - n * 1024 * 16000 / input_rate) < 1

    @pytest.mark.parametrize("input_rate", [48000, 44100])
    def test_chunked_matches_continuous(self, input_rate):
        """Test chunked output equals resampling the whole stream at once."""
        resampler = AudioResampler(input_rate, chunk_size=1024)
        t = np.arange(1024 * 40) / input_rate
        tone = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)

        chunked = np.concatenate([
            resampler.process(tone[i:i + 1024]) for i in range(0, len(tone), 1024)
        ])
        continuous = resample_poly(tone, 16000 // 100, input_rate // 100)

        delay = int(resampler.delay)
        assert delay == resampler.delay
        assert len(chunked) == len(continuous)
        np.testing.assert_allclose(chunked[delay:], continuous[:-delay], atol=1e-4)

    def test_reset_forgets_history(self):
        """Test a reset stream resamples like a fresh one."""
        resampler = AudioResampler(48000, chunk_size=1024)
        first = np.random.default_rng(0).uniform(-1, 1, 1024).astype(np.float32)
        second = np.random.default_rng(1).uniform(-1, 1, 1024).astype(np.float32)

        resampler.process(first)
        resampler.reset()

        np.testing.assert_array_equal(
            resampler.process(second),
            AudioResampler(48000, chunk_size=1024).process(second),
        )

    def test_upsample_8k(self):
        resampler = AudioResampler(8000, chunk_size=1024)
        assert len(resampler.process(np.zeros(1024, dtype=np.float32))) == 2048

    def test_preserves_low_frequency_tone(self):
        """Test a 440 Hz tone keeps its amplitude through 44.1 kHz -> 16 kHz."""
        resampler = AudioResampler(44100, chunk_size=4410)
        t = np.arange(44100) / 44100
        tone = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)

        output = resampler.process(tone)

        assert len(output) == 16000
        # Skip the first and last chunk
        peak = np.max(np.abs(output[2000:14000]))
        assert 0.45 <= peak <= 0.6

    def test_empty_input(self):
        assert AudioResampler(48000).process(np.empty(0, dtype=np.float32)).size == 0

    def test_partial_chunk_rejected(self):
        with pytest.raises(ValueError):
            AudioResampler(48000, chunk_size=1024).process(np.zeros(1000, dtype=np.float32))

    @pytest.mark.parametrize("input_rate,chunk_size", [(0, 1024), (-1, 1024), (48000, 0)])
    def test_invalid_parameters(self, input_rate, chunk_size):
        with pytest.raises(ValueError):
            AudioResampler(input_rate, chunk_size=chunk_size)
