"""Error kinds and exception types surfaced by the daemon core."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_INITIALIZED = "not_initialized"
    WRONG_STATE = "wrong_state"
    ENGINE_TASK_PANICKED = "engine_task_panicked"
    ENGINE = "engine"
    MODEL_MISSING = "model_missing"
    MODEL_CORRUPTED = "model_corrupted"
    MIC_ACCESS_DENIED = "mic_access_denied"


ERROR_MESSAGES = {
    ErrorKind.NOT_INITIALIZED: "Engine is not initialized, models are not loaded yet.",
    ErrorKind.WRONG_STATE: "Operation not allowed in the current daemon state.",
    ErrorKind.ENGINE_TASK_PANICKED: "Engine task crashed, listening was paused.",
    ErrorKind.ENGINE: "Engine error.",
    ErrorKind.MODEL_MISSING: "Model is not available locally and could not be downloaded.",
    ErrorKind.MODEL_CORRUPTED: "Model files exist but could not be loaded.",
    ErrorKind.MIC_ACCESS_DENIED: "Microphone is unavailable or access was denied.",
}


class VoxdError(Exception):
    """Base class for errors that cross the core boundary."""

    kind = ErrorKind.ENGINE

    def __init__(self, message: Optional[str] = None, model_name: Optional[str] = None):
        self.message = message or ERROR_MESSAGES[self.kind]
        self.model_name = model_name
        super().__init__(self.message)


class NotInitializedError(VoxdError):
    kind = ErrorKind.NOT_INITIALIZED


class WrongStateError(VoxdError):
    kind = ErrorKind.WRONG_STATE


class CaptureError(VoxdError):
    """Audio capture could not be started or failed while running."""

    kind = ErrorKind.MIC_ACCESS_DENIED


class ModelError(VoxdError):
    kind = ErrorKind.MODEL_MISSING


class ModelMissingError(ModelError):
    kind = ErrorKind.MODEL_MISSING


class ModelDownloadError(ModelError):
    kind = ErrorKind.MODEL_MISSING


class ModelCorruptedError(ModelError):
    kind = ErrorKind.MODEL_CORRUPTED
