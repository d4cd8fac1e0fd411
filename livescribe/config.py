"""Configuration management for LiveScribe."""

import logging
import math
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

SUPPORTED_MODELS = (
    "whisper-large-v3",
    "whisper-large-v3-turbo",
    "distil-whisper-large-v3-en",
)
DEFAULT_MODEL = "whisper-large-v3-turbo"
DEFAULT_SILENCE_THRESHOLD_DB = -7.5


@dataclass
class AudioConfig:
    """Audio pipeline configuration."""
    device: str = "default"
    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16
    chunk_bytes: int = 1024  # ~32ms at 16kHz/16-bit mono
    silence_threshold_db: float = DEFAULT_SILENCE_THRESHOLD_DB
    hangover_ms: int = 1500


@dataclass
class TranscriptionConfig:
    """Remote transcription service configuration."""
    api_url: str = "https://api.groq.com/openai/v1"
    api_key: Optional[str] = None  # falls back to $GROQ_API_KEY
    model: str = DEFAULT_MODEL
    timeout_s: float = 30.0
    max_concurrent: int = 0  # 0 = unbounded


@dataclass
class RecordingConfig:
    """Whole-session recording configuration."""
    output_dir: str = "./data/recordings"
    save_session: bool = True
    max_recordings: int = 100


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "./logs/livescribe.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Config:
    """Main configuration container."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            audio=AudioConfig(**data.get("audio", {})),
            transcription=TranscriptionConfig(**data.get("transcription", {})),
            recording=RecordingConfig(**data.get("recording", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "audio": asdict(self.audio),
            "transcription": asdict(self.transcription),
            "recording": asdict(self.recording),
            "logging": asdict(self.logging),
        }
        # Never persist a secret that came from the environment or CLI
        data["transcription"]["api_key"] = None

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)

        handlers = [logging.StreamHandler()]

        if self.logging.file:
            log_path = Path(self.logging.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))

        logging.basicConfig(
            level=log_level,
            format=self.logging.format,
            handlers=handlers,
        )

    def ensure_directories(self) -> None:
        """Create necessary directories."""
        Path(self.recording.output_dir).mkdir(parents=True, exist_ok=True)


class SessionSettings:
    """
    Runtime-tunable values shared by the detector and the dispatcher.

    One writer (CLI, control API) and many readers. Plain attribute reads and
    writes are atomic, so a new value is seen on the next classified chunk or
    the next dispatch without further locking.
    """

    def __init__(
        self,
        silence_threshold_db: float = DEFAULT_SILENCE_THRESHOLD_DB,
        model: str = DEFAULT_MODEL,
    ):
        self._silence_threshold_db = DEFAULT_SILENCE_THRESHOLD_DB
        self._model = DEFAULT_MODEL
        self.silence_threshold_db = silence_threshold_db
        self.model = model

    @classmethod
    def from_config(cls, config: Config) -> "SessionSettings":
        return cls(
            silence_threshold_db=config.audio.silence_threshold_db,
            model=config.transcription.model,
        )

    @property
    def silence_threshold_db(self) -> float:
        return self._silence_threshold_db

    @silence_threshold_db.setter
    def silence_threshold_db(self, value: float) -> None:
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"Silence threshold must be finite, got {value}")
        self._silence_threshold_db = value

    @property
    def model(self) -> str:
        return self._model

    @model.setter
    def model(self, value: str) -> None:
        if value not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported model '{value}', expected one of {', '.join(SUPPORTED_MODELS)}"
            )
        self._model = value

    def to_dict(self) -> dict:
        return {
            "silence_threshold_db": self._silence_threshold_db,
            "model": self._model,
        }


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment."""
    if path is None:
        path = os.environ.get("LIVESCRIBE_CONFIG", "config/settings.yaml")
    return Config.from_yaml(path)
