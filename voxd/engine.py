"""Transcription engine that coordinates the audio pipeline.

The engine owns the voice activity detector, the speech buffer and the
transcriber, and drives capture -> resample -> VAD -> transcribe. Loading
models happens once in ``initialize``; ``run_loop`` can then be started and
cancelled any number of times.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

import numpy as np

from .audio.capture import AudioCapture
from .audio.resample import TARGET_SAMPLE_RATE, AudioResampler
from .audio.vad import SileroScorer, VadEvent, VoiceActivityDetector, ms_to_chunks
from .config import Config
from .errors import CaptureError, ModelCorruptedError, ModelError, ModelMissingError, NotInitializedError
from .events import InitEvent, Loading, Ready
from .models import MODEL_INFO, ModelId, ModelManager
from .transcribe import SharedLanguage, Transcriber, create_transcriber

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[InitEvent], None]
TranscriptionCallback = Callable[[str], None]


class SpeechBuffer:
    """Target-rate samples of the utterance currently being spoken."""

    def __init__(self):
        self._chunks: list[np.ndarray] = []
        self._length = 0

    def extend(self, frame: np.ndarray) -> None:
        self._chunks.append(np.array(frame, dtype=np.float32))
        self._length += len(frame)

    def reseed(self, frames: Iterable[np.ndarray]) -> None:
        """Drop everything buffered and start over with ``frames``."""
        self.clear()
        for frame in frames:
            self.extend(frame)

    def clear(self) -> None:
        self._chunks = []
        self._length = 0

    def samples(self) -> np.ndarray:
        if not self._chunks:
            return np.empty(0, dtype=np.float32)
        return np.concatenate(self._chunks)

    def __len__(self) -> int:
        return self._length


@dataclass
class _Components:
    """Loaded model components ready for audio processing."""
    vad: VoiceActivityDetector
    transcriber: Transcriber


def speech_model_to_model_id(name: str) -> ModelId:
    """Map a configured whisper model name to its download id."""
    try:
        model_id = ModelId(name)
    except ValueError:
        model_id = None
    if model_id is None or not model_id.is_whisper:
        raise ModelMissingError(f"Unknown whisper model: {name}", model_name=name)
    return model_id


class Engine:
    """Transcription engine."""

    def __init__(
        self,
        config: Config,
        model_manager: Optional[ModelManager] = None,
        capture_factory: Callable = AudioCapture,
        scorer_factory: Callable = SileroScorer.load,
        transcriber_factory: Callable = create_transcriber,
    ):
        self.config = config
        self.model_manager = model_manager or ModelManager(
            config.models_dir, allow_download=config.model.allow_download
        )
        self.shared_language = SharedLanguage(config.model.language)

        self._capture_factory = capture_factory
        self._scorer_factory = scorer_factory
        self._transcriber_factory = transcriber_factory

        self._components: Optional[_Components] = None
        self._speech_buffer = SpeechBuffer()

    def is_initialized(self) -> bool:
        """Check if models are loaded."""
        return self._components is not None

    @property
    def speech_buffer(self) -> SpeechBuffer:
        return self._speech_buffer

    async def initialize(
        self,
        on_progress: Optional[ProgressCallback] = None,
        force: bool = False,
    ) -> None:
        """Resolve and load the VAD and transcription models.

        ``on_progress`` is always called on the event loop thread, in order.
        On failure the engine keeps whatever components it had before.

        Raises:
            ModelError: a model could not be resolved or loaded.
        """
        report = on_progress or (lambda event: None)

        if self._components is not None and not force:
            report(Ready())
            return

        logger.info("Initializing engine")
        loop = asyncio.get_running_loop()

        def report_threadsafe(event: InitEvent) -> None:
            loop.call_soon_threadsafe(report, event)

        vad_name = MODEL_INFO[ModelId.SILERO_VAD].name
        report(Loading(model=vad_name))
        vad_path = await asyncio.to_thread(
            self.model_manager.ensure_model, ModelId.SILERO_VAD, report_threadsafe
        )
        scorer = await self._load(self._scorer_factory, vad_name, vad_path)

        whisper_id = speech_model_to_model_id(self.config.model.whisper_model)
        whisper_name = MODEL_INFO[whisper_id].name
        report(Loading(model=whisper_name))
        whisper_path = await asyncio.to_thread(
            self.model_manager.ensure_model, whisper_id, report_threadsafe
        )
        transcriber = await self._load(
            lambda path: self._transcriber_factory(path, self.config.model, self.shared_language),
            whisper_name,
            whisper_path,
        )

        logger.info("Models ready, initializing components")
        self._components = _Components(
            vad=VoiceActivityDetector.from_config(scorer, self.config.audio),
            transcriber=transcriber,
        )

        report(Ready())
        logger.info("Engine initialized")

    @staticmethod
    async def _load(factory: Callable, model_name: str, path: Path):
        try:
            return await asyncio.to_thread(factory, path)
        except ModelError:
            raise
        except Exception as e:
            raise ModelCorruptedError(
                f"Failed to load {model_name} from {path}: {e}", model_name=model_name
            ) from e

    async def run_loop(
        self,
        cancel: asyncio.Event,
        on_transcription: TranscriptionCallback,
    ) -> None:
        """Capture and transcribe until ``cancel`` is set.

        The capture device is stopped before this returns, on every path
        after a successful start.

        Raises:
            NotInitializedError: ``initialize()`` has not succeeded yet.
            CaptureError: capture could not start or died while running.
        """
        components = self._components
        if components is None:
            raise NotInitializedError("Engine not initialized, call initialize() first")

        audio = self.config.audio
        poll_interval = audio.poll_interval_ms / 1000

        logger.info("Starting audio capture")
        capture = self._capture_factory(audio)
        try:
            capture.start()
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"Failed to start audio capture: {e}") from e

        try:
            sample_rate = capture.sample_rate
            try:
                resampler = AudioResampler(sample_rate, TARGET_SAMPLE_RATE, audio.resampler_chunk)
            except ValueError as e:
                raise CaptureError(f"Unusable capture sample rate {sample_rate}: {e}") from e
            logger.info(f"Audio capture started: {sample_rate}Hz -> {TARGET_SAMPLE_RATE}Hz")

            components.vad.reset()
            self._speech_buffer.clear()

            frame_size = components.vad.chunk_size
            pre_roll: Optional[deque] = None
            if audio.vad_pre_roll_ms > 0:
                pre_roll = deque(maxlen=ms_to_chunks(audio.vad_pre_roll_ms, frame_size))

            input_buffer = np.empty(0, dtype=np.float32)
            vad_buffer = np.empty(0, dtype=np.float32)

            logger.info("Listening for speech...")

            while True:
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
                else:
                    logger.info("Cancellation received, stopping audio capture")
                    break

                samples = capture.try_recv()
                if samples is None:
                    continue

                input_buffer = np.concatenate((input_buffer, samples))

                # Process complete resampler chunks
                usable = len(input_buffer) - len(input_buffer) % resampler.chunk_size
                if usable:
                    chunk, input_buffer = input_buffer[:usable], input_buffer[usable:]
                    try:
                        vad_buffer = np.concatenate((vad_buffer, resampler.process(chunk)))
                    except Exception as e:
                        logger.warning(f"Resampling failed, dropping {usable} samples: {e}")

                # Process complete VAD frames
                while len(vad_buffer) >= frame_size:
                    if cancel.is_set():
                        break
                    frame, vad_buffer = vad_buffer[:frame_size], vad_buffer[frame_size:]
                    await self._process_frame(frame, components, pre_roll, on_transcription)

                if cancel.is_set():
                    logger.info("Cancellation received, stopping audio capture")
                    break
        finally:
            capture.stop()
            logger.info("Audio capture stopped")

    async def _process_frame(
        self,
        frame: np.ndarray,
        components: _Components,
        pre_roll: Optional[deque],
        on_transcription: TranscriptionCallback,
    ) -> None:
        buffer = self._speech_buffer

        if components.vad.is_speaking:
            buffer.extend(frame)

        event = components.vad.process(frame)

        if event is VadEvent.SPEECH_START:
            seed = list(pre_roll) if pre_roll else []
            seed.append(frame)
            buffer.reseed(seed)
            if pre_roll is not None:
                pre_roll.clear()
        elif event is VadEvent.SPEECH_END:
            await self._transcribe_utterance(components.transcriber, on_transcription)
        elif pre_roll is not None and not components.vad.is_speaking:
            pre_roll.append(frame)

    async def _transcribe_utterance(
        self,
        transcriber: Transcriber,
        on_transcription: TranscriptionCallback,
    ) -> None:
        buffer = self._speech_buffer
        try:
            if not buffer:
                logger.debug("Speech ended with an empty buffer, nothing to transcribe")
                return

            samples = buffer.samples()
            logger.debug(
                f"Speech ended, transcribing {len(samples)} samples "
                f"({len(samples) / TARGET_SAMPLE_RATE:.2f}s)"
            )

            try:
                text = await asyncio.to_thread(
                    transcriber.transcribe, samples, TARGET_SAMPLE_RATE
                )
            except Exception as e:
                logger.error(f"Transcription failed: {e}")
                return

            if not text:
                return

            logger.info(f"Transcription complete: '{text}'")
            try:
                on_transcription(text)
            except Exception as e:
                logger.error(f"Transcription callback error: {e}")
        finally:
            buffer.clear()
