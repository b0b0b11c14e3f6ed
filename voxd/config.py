"""Configuration management for voxd."""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "voxd" / "settings.yaml"
DEFAULT_MODELS_DIR = Path.home() / ".local" / "share" / "voxd" / "models"

# Environment variable overriding the configured log level
LOG_ENV_VAR = "VOXD_LOG"


@dataclass
class AudioConfig:
    """Audio pipeline configuration."""
    device: str = "default"
    sample_rate: Optional[int] = None  # None = device native rate
    channels: int = 1
    resampler_chunk: int = 1024
    poll_interval_ms: int = 10
    vad_threshold: float = 0.5
    vad_silence_threshold: Optional[float] = None  # None = threshold - 0.15
    vad_min_speech_ms: int = 64
    vad_min_silence_ms: int = 256
    vad_pre_roll_ms: int = 0


@dataclass
class ModelConfig:
    """Speech model configuration."""
    backend: str = "whisper"
    whisper_model: str = "base"
    whisper_device: str = "auto"
    whisper_compute_type: str = "default"
    beam_size: int = 5
    language: str = "auto"
    languages: list[str] = field(default_factory=lambda: ["auto", "en"])
    models_dir: str = str(DEFAULT_MODELS_DIR)
    allow_download: bool = True


@dataclass
class DaemonConfig:
    """Daemon lifecycle and control surface configuration."""
    initial_state: str = "paused"  # "paused" or "listening"
    event_capacity: int = 256
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Config:
    """Main configuration container."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source_path: Optional[Path] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls(source_path=path)

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            audio=AudioConfig(**data.get("audio", {})),
            model=ModelConfig(**data.get("model", {})),
            daemon=DaemonConfig(**data.get("daemon", {})),
            logging=LoggingConfig(**data.get("logging", {})),
            source_path=path,
        )

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "audio": asdict(self.audio),
            "model": asdict(self.model),
            "daemon": asdict(self.daemon),
            "logging": asdict(self.logging),
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def save(self) -> bool:
        """Write back to the file this config was loaded from.

        Returns False when the config has no source file.
        """
        if self.source_path is None:
            return False
        self.to_yaml(self.source_path)
        return True

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level_name = os.environ.get(LOG_ENV_VAR) or self.logging.level
        log_level = getattr(logging, level_name.upper(), logging.INFO)

        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.logging.file:
            log_path = Path(self.logging.file).expanduser()
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))

        logging.basicConfig(
            level=log_level,
            format=self.logging.format,
            handlers=handlers,
        )

    @property
    def models_dir(self) -> Path:
        return Path(self.model.models_dir).expanduser()


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment."""
    if path is None:
        path = os.environ.get("VOXD_CONFIG", str(DEFAULT_CONFIG_PATH))
    return Config.from_yaml(path)
