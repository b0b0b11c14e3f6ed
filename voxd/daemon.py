"""Daemon runner: owns the event loop side of the process."""

import asyncio
import logging
import signal
from typing import Callable, Optional

import uvicorn

from .config import Config
from .controller import Controller
from .engine import Engine
from .errors import VoxdError
from .events import EventBus
from .web.api import create_app, set_controller_instance

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Daemon:
    """Wires the engine, controller and control API together."""

    def __init__(
        self,
        config: Config,
        engine: Optional[Engine] = None,
        text_sink: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.engine = engine or Engine(config)
        self.events = EventBus(config.daemon.event_capacity)
        self.controller = Controller(
            self.engine,
            events=self.events,
            config=config,
            text_sink=text_sink,
        )

        self._web_server: Optional[uvicorn.Server] = None
        self._pending: set[asyncio.Task] = set()

    async def run(
        self,
        enable_web: bool = True,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        """Run until the controller is shut down."""
        loop = asyncio.get_running_loop()
        self._install_signal_handlers(loop)

        server_task = None
        if enable_web:
            server_task = self._start_web_server(
                host or self.config.daemon.host,
                port or self.config.daemon.port,
            )

        init_task = asyncio.create_task(self._initialize(), name="voxd-init")

        try:
            await self.controller.shutdown_event.wait()
            logger.info("Shutdown requested")
        finally:
            if not init_task.done():
                logger.info("Cancelling engine initialization")
                init_task.cancel()
            try:
                await init_task
            except asyncio.CancelledError:
                pass

            if server_task is not None:
                await self._stop_web_server(server_task)

            self._remove_signal_handlers(loop)
            self.events.close()
            logger.info("Daemon stopped")

    async def _initialize(self) -> None:
        try:
            await self.controller.initialize_engine()
        except VoxdError as e:
            logger.error(f"Engine initialization could not run: {e.message}")

    def _request_shutdown(self, signum: int) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}")
        task = asyncio.ensure_future(self.controller.shutdown())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(signum, self._request_shutdown, signum)
            except NotImplementedError:
                logger.warning(f"Signal handling not supported for {signum}")

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in HANDLED_SIGNALS:
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                pass

    def _start_web_server(self, host: str, port: int) -> asyncio.Task:
        """Serve the control API on this event loop."""
        logger.info(f"Starting control API on {host}:{port}...")

        set_controller_instance(self.controller)
        app = create_app()

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._web_server = uvicorn.Server(config)

        return asyncio.create_task(self._web_server.serve(), name="voxd-web")

    async def _stop_web_server(self, server_task: asyncio.Task) -> None:
        logger.info("Stopping control API...")
        self._web_server.should_exit = True
        try:
            await server_task
        except Exception as e:
            logger.error(f"Control API exited with error: {e}")
        set_controller_instance(None)
