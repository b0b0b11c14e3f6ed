"""Model download and management.

Models are fetched on first use: Whisper checkpoints via faster-whisper into
the configured models directory, Silero VAD into the torch hub cache. With
downloads disabled the daemon only uses what is already on disk.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import torch
from faster_whisper import download_model

from .errors import ModelDownloadError, ModelMissingError
from .events import Downloading, InitEvent

logger = logging.getLogger(__name__)

SILERO_REPO = "snakers4/silero-vad"

ProgressCallback = Callable[[InitEvent], None]


class ModelId(str, Enum):
    """Identifier for downloadable models."""
    SILERO_VAD = "silero-vad"
    WHISPER_TINY = "tiny"
    WHISPER_TINY_EN = "tiny.en"
    WHISPER_BASE = "base"
    WHISPER_BASE_EN = "base.en"
    WHISPER_SMALL = "small"
    WHISPER_SMALL_EN = "small.en"
    WHISPER_MEDIUM = "medium"
    WHISPER_MEDIUM_EN = "medium.en"
    WHISPER_LARGE_V3 = "large-v3"
    WHISPER_LARGE_V3_TURBO = "large-v3-turbo"

    @property
    def is_whisper(self) -> bool:
        return self is not ModelId.SILERO_VAD


@dataclass(frozen=True)
class ModelInfo:
    """Metadata for a downloadable model."""
    name: str
    approx_size_bytes: int


MODEL_INFO = {
    ModelId.SILERO_VAD: ModelInfo("silero-vad", 2_300_000),
    ModelId.WHISPER_TINY: ModelInfo("whisper-tiny", 75_000_000),
    ModelId.WHISPER_TINY_EN: ModelInfo("whisper-tiny.en", 75_000_000),
    ModelId.WHISPER_BASE: ModelInfo("whisper-base", 145_000_000),
    ModelId.WHISPER_BASE_EN: ModelInfo("whisper-base.en", 145_000_000),
    ModelId.WHISPER_SMALL: ModelInfo("whisper-small", 484_000_000),
    ModelId.WHISPER_SMALL_EN: ModelInfo("whisper-small.en", 484_000_000),
    ModelId.WHISPER_MEDIUM: ModelInfo("whisper-medium", 1_530_000_000),
    ModelId.WHISPER_MEDIUM_EN: ModelInfo("whisper-medium.en", 1_530_000_000),
    ModelId.WHISPER_LARGE_V3: ModelInfo("whisper-large-v3", 3_090_000_000),
    ModelId.WHISPER_LARGE_V3_TURBO: ModelInfo("whisper-large-v3-turbo", 1_620_000_000),
}


def _dir_size(path: Path) -> int:
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


class ModelManager:
    """Manages model downloads and storage."""

    def __init__(self, models_dir: str | Path, allow_download: bool = True):
        self.models_dir = Path(models_dir).expanduser()
        self.allow_download = allow_download

    def model_path(self, model_id: ModelId) -> Path:
        """Where a model lives once available."""
        if model_id.is_whisper:
            return self.models_dir / model_id.value
        # torch.hub names its checkouts <owner>_<repo>_<branch>
        return Path(torch.hub.get_dir()) / "snakers4_silero-vad_master"

    def is_available(self, model_id: ModelId) -> bool:
        path = self.model_path(model_id)
        if model_id.is_whisper:
            return (path / "model.bin").exists()
        return (path / "hubconf.py").exists()

    def ensure_model(
        self,
        model_id: ModelId,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Return the local path of ``model_id``, downloading it if needed.

        Blocking; call from a worker thread inside the event loop.

        Raises:
            ModelMissingError: not on disk and downloads are disabled.
            ModelDownloadError: the download failed.
        """
        info = MODEL_INFO[model_id]
        path = self.model_path(model_id)

        if self.is_available(model_id):
            logger.debug(f"Model already exists: {path}")
            return path

        if not self.allow_download:
            raise ModelMissingError(
                f"Model {info.name} not found at {path} and downloads are disabled",
                model_name=info.name,
            )

        logger.info(f"Downloading model {info.name} to {path}")
        if on_progress is not None:
            on_progress(Downloading(model=info.name, bytes=0, total=info.approx_size_bytes))

        try:
            if model_id.is_whisper:
                path.mkdir(parents=True, exist_ok=True)
                path = Path(download_model(model_id.value, output_dir=str(path)))
            else:
                torch.hub.list(SILERO_REPO, trust_repo=True, verbose=False)
        except Exception as e:
            raise ModelDownloadError(
                f"Failed to download model {info.name}: {e}",
                model_name=info.name,
            ) from e

        if not self.is_available(model_id):
            raise ModelDownloadError(
                f"Downloaded model {info.name} is incomplete at {path}",
                model_name=info.name,
            )

        size = _dir_size(path)
        if on_progress is not None:
            on_progress(Downloading(model=info.name, bytes=size, total=size))

        logger.info(f"Model downloaded successfully: {path} ({size} bytes)")
        return path
