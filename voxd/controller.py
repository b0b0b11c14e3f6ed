"""Daemon lifecycle controller.

The controller owns the single Engine and the listening state machine
(Initializing -> Paused <-> Listening, anything -> Stopped).

While listening, the Engine is moved into a background task running
``Engine.run_loop``; stopping sets the task's cancel event, joins it and puts
the Engine back in the idle slot. Every state change and transcription is
published on the EventBus.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import Config
from .engine import Engine
from .errors import ErrorKind, ModelError, NotInitializedError, VoxdError, WrongStateError
from .events import DaemonError, EventBus, InitProgress, StateChange, Transcription

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    INITIALIZING = "initializing"
    STOPPED = "stopped"
    PAUSED = "paused"
    LISTENING = "listening"


@dataclass
class _RunTask:
    """A running engine loop and what is needed to stop and reclaim it."""
    cancel: asyncio.Event
    task: asyncio.Task
    engine: Engine


class Controller:
    """Owns the Engine and serializes lifecycle operations on it."""

    def __init__(
        self,
        engine: Engine,
        events: Optional[EventBus] = None,
        config: Optional[Config] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        text_sink: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or engine.config
        self._events = events or EventBus(self.config.daemon.event_capacity)
        self._language = engine.shared_language
        self._text_sink = text_sink
        self.shutdown_event = shutdown_event or asyncio.Event()

        # Guards _state, _engine and _run_task
        self._lock = asyncio.Lock()
        self._state = ControllerState.INITIALIZING
        self._engine: Optional[Engine] = engine
        self._run_task: Optional[_RunTask] = None
        self._reapers: set[asyncio.Task] = set()

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def events(self) -> EventBus:
        return self._events

    def _set_state(self, state: ControllerState) -> None:
        logger.info(f"State: {self._state.value} -> {state.value}")
        self._state = state
        self._events.publish(StateChange(state))

    async def mark_ready(self) -> None:
        """Leave Initializing once the engine is loaded. Repeat calls do nothing."""
        async with self._lock:
            if self._state is not ControllerState.INITIALIZING:
                return
            self._set_state(ControllerState.PAUSED)

        if self.config.daemon.initial_state == ControllerState.LISTENING.value:
            try:
                await self.start_listening()
            except VoxdError as e:
                logger.error(f"Failed to auto-start listening after initialization: {e}")

    async def start_listening(self) -> None:
        """Spawn the engine loop. A no-op when already listening.

        Raises:
            WrongStateError: not Paused, or the engine is busy initializing.
            NotInitializedError: the engine has no models loaded.
        """
        async with self._lock:
            if self._state is ControllerState.LISTENING:
                return
            if self._state is not ControllerState.PAUSED:
                raise WrongStateError(f"Cannot start listening while {self._state.value}")

            engine = self._engine
            if engine is None:
                raise WrongStateError("Engine is busy")
            if not engine.is_initialized():
                raise NotInitializedError()

            self._engine = None
            cancel = asyncio.Event()
            task = asyncio.create_task(
                self._run_engine_task(engine, cancel), name="voxd-engine"
            )
            self._run_task = _RunTask(cancel=cancel, task=task, engine=engine)
            task.add_done_callback(self._on_task_done)

            self._set_state(ControllerState.LISTENING)

    async def stop_listening(self) -> None:
        """Cancel the engine loop and wait for it. A no-op when Paused.

        Raises:
            WrongStateError: not Listening or Paused.
        """
        async with self._lock:
            if self._state is ControllerState.PAUSED:
                return
            if self._state is not ControllerState.LISTENING:
                raise WrongStateError(f"Cannot stop listening while {self._state.value}")

            await self._join_run_task()
            self._set_state(ControllerState.PAUSED)

    async def shutdown(self) -> None:
        """Stop listening if needed, enter Stopped and signal the daemon to exit."""
        async with self._lock:
            if self._state is not ControllerState.STOPPED:
                if self._state is ControllerState.LISTENING:
                    await self._join_run_task()
                    self._set_state(ControllerState.PAUSED)
                self._set_state(ControllerState.STOPPED)

        self.shutdown_event.set()

    async def initialize_engine(self, force: bool = False) -> bool:
        """Load models, publishing progress, then mark the controller ready.

        Returns False when a model could not be loaded; the error is broadcast
        and a later call may retry.

        Raises:
            WrongStateError: the engine is listening or already initializing.
        """
        async with self._lock:
            engine = self._engine
            if engine is None:
                raise WrongStateError("Engine is busy")
            self._engine = None

        try:
            await engine.initialize(
                on_progress=lambda event: self._events.publish(InitProgress(event)),
                force=force,
            )
        except ModelError as e:
            logger.error(f"Engine initialization failed: {e.message}")
            self._events.publish(DaemonError(e.kind, e.message, e.model_name))
            return False
        finally:
            self._engine = engine

        await self.mark_ready()
        return True

    async def set_language(self, language: str) -> None:
        """Switch the transcription language, persisting it first.

        Raises:
            ValueError: ``language`` is not one of the configured languages.
        """
        model_config = self.config.model
        if language not in model_config.languages:
            raise ValueError(
                f"Unsupported language: {language} (available: {', '.join(model_config.languages)})"
            )

        previous = model_config.language
        model_config.language = language
        try:
            self.config.save()
        except Exception:
            model_config.language = previous
            raise

        self._language.set(language)
        logger.info(f"Language set to {language}")

    def get_language_info(self) -> tuple[str, list[str]]:
        """Active language and the languages that can be selected."""
        return self._language.get(), list(self.config.model.languages)

    async def _run_engine_task(
        self,
        engine: Engine,
        cancel: asyncio.Event,
    ) -> tuple[Engine, Optional[VoxdError]]:
        try:
            await engine.run_loop(cancel, self._on_transcription)
        except VoxdError as e:
            return engine, e
        return engine, None

    def _on_transcription(self, text: str) -> None:
        if self._text_sink is not None:
            try:
                self._text_sink(text)
            except Exception as e:
                logger.error(f"Text sink error: {e}")
        self._events.publish(Transcription(text))

    async def _join_run_task(self) -> None:
        """Cancel and join the run task, then reclaim the engine. Caller holds the lock."""
        handle = self._run_task
        if handle is None:
            return
        self._run_task = None

        handle.cancel.set()
        try:
            await asyncio.wait({handle.task})
        except asyncio.CancelledError:
            self._run_task = handle
            raise

        self._reclaim(handle)

    def _reclaim(self, handle: _RunTask) -> None:
        """Put the engine back and broadcast how the finished task ended."""
        task = handle.task
        engine = handle.engine

        if task.cancelled():
            self._report_panic("Engine task was cancelled")
        elif task.exception() is not None:
            exc = task.exception()
            self._report_panic(f"Engine task panicked: {exc}", exc)
        else:
            engine, error = task.result()
            if error is not None:
                logger.error(f"Engine loop failed: {error.message}")
                self._events.publish(DaemonError(error.kind, error.message, error.model_name))

        self._engine = engine

    def _report_panic(self, message: str, exc: Optional[BaseException] = None) -> None:
        logger.error(message, exc_info=exc)
        self._events.publish(DaemonError(ErrorKind.ENGINE_TASK_PANICKED, message))

    def _on_task_done(self, task: asyncio.Task) -> None:
        handle = self._run_task
        if handle is None or handle.task is not task:
            return
        reaper = asyncio.ensure_future(self._reap(task))
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    async def _reap(self, task: asyncio.Task) -> None:
        """Handle a run task that ended without being asked to stop."""
        async with self._lock:
            handle = self._run_task
            if handle is None or handle.task is not task:
                return
            self._run_task = None
            logger.warning("Engine loop exited on its own")
            self._reclaim(handle)
            if self._state is ControllerState.LISTENING:
                self._set_state(ControllerState.PAUSED)
