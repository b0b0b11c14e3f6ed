"""FastAPI control surface for the voxd daemon."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..errors import VoxdError

logger = logging.getLogger(__name__)

# Will be set by the daemon runner
_controller_instance = None

# Close code sent to event stream clients while no controller is registered
WS_TRY_AGAIN_LATER = 1013


class StatusResponse(BaseModel):
    """Response model for daemon status."""
    state: str
    language: str
    uptime_seconds: float
    subscribers: int


class ActionResponse(BaseModel):
    """Response model for lifecycle actions."""
    success: bool
    message: str
    state: Optional[str] = None


class LanguageRequest(BaseModel):
    language: str


class LanguageResponse(BaseModel):
    language: str
    available: list[str]


def set_controller_instance(instance) -> None:
    """Set the Controller instance for API access."""
    global _controller_instance
    _controller_instance = instance


def _require_controller():
    if _controller_instance is None:
        raise HTTPException(status_code=503, detail="Daemon not initialized")
    return _controller_instance


def _conflict(error: VoxdError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"kind": error.kind.value, "message": error.message},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="voxd API",
        description="Offline voice dictation daemon control API",
        version="0.1.0",
    )

    # Local clients only, but browser extensions may call from other origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store start time for uptime calculation
    app.state.start_time = datetime.now()

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status():
        """Get current daemon status."""
        controller = _require_controller()

        language, _available = controller.get_language_info()
        uptime = (datetime.now() - app.state.start_time).total_seconds()

        return StatusResponse(
            state=controller.state.value,
            language=language,
            uptime_seconds=uptime,
            subscribers=controller.events.subscriber_count,
        )

    @app.post("/api/listening/start", response_model=ActionResponse)
    async def start_listening():
        """Start capturing and transcribing."""
        controller = _require_controller()

        try:
            await controller.start_listening()
        except VoxdError as e:
            logger.warning(f"Failed to start listening: {e.message}")
            raise _conflict(e)

        return ActionResponse(
            success=True,
            message="Listening",
            state=controller.state.value,
        )

    @app.post("/api/listening/stop", response_model=ActionResponse)
    async def stop_listening():
        """Stop capturing; the current utterance is discarded."""
        controller = _require_controller()

        try:
            await controller.stop_listening()
        except VoxdError as e:
            logger.warning(f"Failed to stop listening: {e.message}")
            raise _conflict(e)

        return ActionResponse(
            success=True,
            message="Paused",
            state=controller.state.value,
        )

    @app.post("/api/shutdown", response_model=ActionResponse)
    async def shutdown():
        """Stop the daemon."""
        controller = _require_controller()

        await controller.shutdown()
        return ActionResponse(
            success=True,
            message="Shutting down",
            state=controller.state.value,
        )

    @app.post("/api/models/download", response_model=ActionResponse, status_code=202)
    async def download_models(background_tasks: BackgroundTasks):
        """Re-run model download and loading in the background."""
        controller = _require_controller()

        async def reinitialize():
            try:
                await controller.initialize_engine(force=True)
            except VoxdError as e:
                logger.error(f"Model download failed: {e.message}")

        background_tasks.add_task(reinitialize)
        return ActionResponse(
            success=True,
            message="Model download started",
            state=controller.state.value,
        )

    @app.get("/api/language", response_model=LanguageResponse)
    async def get_language():
        """Get the active transcription language."""
        controller = _require_controller()

        language, available = controller.get_language_info()
        return LanguageResponse(language=language, available=available)

    @app.put("/api/language", response_model=LanguageResponse)
    async def set_language(request: LanguageRequest):
        """Change the transcription language."""
        controller = _require_controller()

        try:
            await controller.set_language(request.language)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except OSError as e:
            logger.error(f"Failed to save language: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        language, available = controller.get_language_info()
        return LanguageResponse(language=language, available=available)

    @app.websocket("/api/events")
    async def stream_events(websocket: WebSocket):
        """Stream daemon events as JSON messages."""
        if _controller_instance is None:
            await websocket.close(code=WS_TRY_AGAIN_LATER)
            return

        await websocket.accept()
        subscription = _controller_instance.events.subscribe()
        try:
            async for event in subscription:
                await websocket.send_json(event.to_dict())
            # Bus closed, daemon is going away
            await websocket.close()
        except WebSocketDisconnect:
            logger.debug("Event stream client disconnected")
        finally:
            subscription.close()

    return app
