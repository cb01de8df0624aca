"""
Configuration management for LiveDetect using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with LIVEDETECT_ prefix)
"""

import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from livedetect.inference.detection import DEFAULT_ANIMAL_CLASSES

logger = logging.getLogger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
RUNTIME_DIR = PROJECT_ROOT / "runtime"

# Load .env file from project root (if exists)
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
    logger.debug(f"Loaded environment from {_env_file}")


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()

CAMERA_BACKENDS = ("opencv", "simulated")
INFERENCE_BACKENDS = ("yolo", "simulated")
FACING_MODES = ("environment", "user")


class CameraConfig(BaseSettings):
    """Camera acquisition configuration."""

    model_config = {"env_prefix": "LIVEDETECT_CAMERA_"}

    backend: str = Field(
        default=_json_config.get("camera", {}).get("backend", "opencv"),
        description="Media backend: 'opencv' (V4L2/webcam) or 'simulated'",
    )
    origin: str = Field(
        default=_json_config.get("camera", {}).get("origin", "http://localhost"),
        description="Origin the UI is served from; capture requires https or loopback",
    )
    facing_mode: str | None = Field(
        default=_json_config.get("camera", {}).get("facing_mode", "environment"),
        description="Preferred facing mode (environment = back camera)",
    )
    environment_device: int | None = Field(
        default=_json_config.get("camera", {}).get("environment_device", 0),
        description="Device index of the outward-facing camera",
    )
    user_device: int | None = Field(
        default=_json_config.get("camera", {}).get("user_device", None),
        description="Device index of the user-facing camera",
    )
    resolution: tuple[int, int] = Field(
        default=tuple(_json_config.get("camera", {}).get("resolution", [1280, 720])),
        description="Requested capture resolution (width, height)",
    )
    ready_timeout_seconds: float = Field(
        default=_json_config.get("camera", {}).get("ready_timeout_seconds", 5.0),
        description="Maximum wait for the first frame after the stream is granted",
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in CAMERA_BACKENDS:
            raise ValueError(f"camera backend must be one of {CAMERA_BACKENDS}, got {v}")
        return v

    @field_validator("facing_mode")
    @classmethod
    def validate_facing_mode(cls, v):
        if v is not None and v not in FACING_MODES:
            raise ValueError(f"facing_mode must be one of {FACING_MODES}, got {v}")
        return v

    @field_validator("resolution", mode="before")
    @classmethod
    def parse_resolution(cls, v):
        if isinstance(v, list):
            return tuple(v)
        return v

    @field_validator("ready_timeout_seconds")
    @classmethod
    def validate_ready_timeout(cls, v):
        if v <= 0 or v > 60:
            raise ValueError(f"ready_timeout_seconds must be 0-60, got {v}")
        return v


class InferenceConfig(BaseSettings):
    """Object detector configuration."""

    model_config = {"env_prefix": "LIVEDETECT_INFERENCE_"}

    backend: str = Field(
        default=_json_config.get("inference", {}).get("backend", "yolo"),
        description="Detector backend: 'yolo' (ultralytics) or 'simulated'",
    )
    model_path: str = Field(
        default=_json_config.get("inference", {}).get("model_path", "yolov8n.pt"),
        description="Path or name of the YOLO weights",
    )
    confidence_threshold: float = Field(
        default=_json_config.get("inference", {}).get("confidence_threshold", 0.5),
        description="Minimum confidence for reported detections",
    )
    animal_classes: list[str] = Field(
        default=_json_config.get("inference", {}).get(
            "animal_classes", sorted(DEFAULT_ANIMAL_CLASSES)
        ),
        description="Labels shown in 'animals' display mode",
    )
    load_attempts: int = Field(
        default=_json_config.get("inference", {}).get("load_attempts", 3),
        description="Attempts to load the model before giving up",
    )
    inference_timeout_seconds: float = Field(
        default=_json_config.get("inference", {}).get("inference_timeout_seconds", 5.0),
        description="Per-frame detection timeout",
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in INFERENCE_BACKENDS:
            raise ValueError(
                f"inference backend must be one of {INFERENCE_BACKENDS}, got {v}"
            )
        return v

    @field_validator("confidence_threshold")
    @classmethod
    def validate_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence_threshold must be 0.0-1.0, got {v}")
        return v

    @field_validator("animal_classes")
    @classmethod
    def normalize_animal_classes(cls, v):
        return [c.strip().lower() for c in v if c.strip()]

    @field_validator("load_attempts")
    @classmethod
    def validate_load_attempts(cls, v):
        if v < 1 or v > 10:
            raise ValueError(f"load_attempts must be 1-10, got {v}")
        return v


class LoopConfig(BaseSettings):
    """Detection loop pacing."""

    model_config = {"env_prefix": "LIVEDETECT_LOOP_"}

    interval_ms: int = Field(
        default=_json_config.get("loop", {}).get("interval_ms", 100),
        description="Minimum period of one detect+render cycle",
    )
    stop_timeout_seconds: float = Field(
        default=_json_config.get("loop", {}).get("stop_timeout_seconds", 5.0),
        description="How long stop() waits for an in-flight cycle before cancelling",
    )

    @field_validator("interval_ms")
    @classmethod
    def validate_interval(cls, v):
        if v < 10 or v > 10_000:
            raise ValueError(f"interval_ms must be 10-10000, got {v}")
        return v

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000


class SnapshotConfig(BaseSettings):
    """Snapshot export configuration."""

    model_config = {"env_prefix": "LIVEDETECT_SNAPSHOT_"}

    prefix: str = Field(
        default=_json_config.get("snapshot", {}).get("prefix", "snapshot"),
        description="Filename prefix: <prefix>-<timestamp>.png",
    )
    output_dir: str | None = Field(
        default=_json_config.get("snapshot", {}).get("output_dir", None),
        description="Directory to also write snapshots to (unset: return bytes only)",
    )


class APIConfig(BaseSettings):
    """FastAPI server configuration."""

    model_config = {"env_prefix": "LIVEDETECT_API_"}

    enabled: bool = Field(
        default=_json_config.get("api", {}).get("enabled", True),
        description="Enable REST API server",
    )
    host: str = Field(
        default=_json_config.get("api", {}).get("host", "127.0.0.1"),
        description="API server bind host",
    )
    port: int = Field(
        default=_json_config.get("api", {}).get("port", 8080),
        description="API server port",
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        if v < 1 or v > 65535:
            raise ValueError(f"port must be 1-65535, got {v}")
        return v


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "LIVEDETECT_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "livedetect.log")
        ),
        description="Log file path",
    )


# Global configuration instances
camera_config = CameraConfig()
inference_config = InferenceConfig()
loop_config = LoopConfig()
snapshot_config = SnapshotConfig()
api_config = APIConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # 10 MB max, keep 5 backups
    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )


def ensure_runtime_dirs() -> None:
    """Create runtime directories if they don't exist."""
    dirs = [Path(logging_config.file).parent]
    if snapshot_config.output_dir:
        dirs.append(Path(snapshot_config.output_dir))
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {d}")
