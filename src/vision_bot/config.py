"""
Configuration management using Pydantic for validation and type checking.
"""

import os
import yaml
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


DEFAULT_CONFIG_PATH = "/etc/vision-bot/config.yaml"

KNOWN_BACKENDS = ("hailo", "cpu")


class VideoConfig(BaseModel):
    """Camera capture configuration."""
    device: str = Field(default="/dev/video0", description="Video device path, index or URL")
    width: int = Field(default=640, ge=160, le=3840, description="Requested capture width")
    height: int = Field(default=480, ge=120, le=2160, description="Requested capture height")
    fps: int = Field(default=30, ge=1, le=60, description="Requested capture FPS")
    frame_timeout: float = Field(
        default=5.0, gt=0.0, le=60.0,
        description="Seconds to wait for the first frame after opening"
    )


class DetectionConfig(BaseModel):
    """Detector and detection loop configuration."""
    backends: List[str] = Field(
        default_factory=lambda: list(KNOWN_BACKENDS),
        description="Inference backends to try, preferred first"
    )
    interval_ms: int = Field(default=100, ge=10, le=10000, description="Tick interval")
    model_path: str = Field(
        default="/opt/vision-bot/models/yolov8n.hef",
        description="Path to HEF model file (hailo backend)"
    )
    cpu_model: str = Field(
        default="yolov8n.pt", description="Ultralytics weights (cpu backend)"
    )
    confidence_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Confidence threshold"
    )
    nms_threshold: float = Field(
        default=0.45, ge=0.0, le=1.0, description="NMS IOU threshold"
    )
    input_size: int = Field(
        default=640, ge=320, le=1280, description="Model input size"
    )

    @field_validator("backends")
    @classmethod
    def validate_backends(cls, v: List[str]) -> List[str]:
        """Validate backend names and keep their order."""
        if not v:
            raise ValueError("At least one backend must be configured")
        names = [name.lower() for name in v]
        unknown = [name for name in names if name not in KNOWN_BACKENDS]
        if unknown:
            raise ValueError(f"Unknown backends {unknown}. Must be among {list(KNOWN_BACKENDS)}")
        return names

    @property
    def interval(self) -> float:
        """Tick interval in seconds."""
        return self.interval_ms / 1000.0


class StreamConfig(BaseModel):
    """Web server configuration."""
    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, ge=1024, le=65535, description="Server port")
    jpeg_quality: int = Field(
        default=80, ge=1, le=100, description="JPEG compression quality"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Logging level")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid logging level. Must be one of {valid_levels}")
        return v


class Config(BaseModel):
    """Main configuration class."""
    video: VideoConfig = Field(default_factory=VideoConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from a YAML file, falling back to defaults.

    Args:
        config_path: Path to configuration file. If None, uses default location.

    Returns:
        Validated Config

    Raises:
        RuntimeError: If the file exists but cannot be parsed or validated
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        return Config()

    try:
        with open(config_path, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return Config()

        return Config(**config_dict)
    except Exception as e:
        raise RuntimeError(f"Failed to load configuration from {config_path}: {e}") from e


def save_example_config(output_path: str) -> None:
    """
    Save an example configuration file with comments.

    Args:
        output_path: Where to save the example config.
    """
    example_yaml = """# Camera settings
video:
  device: "/dev/video0"  # V4L2 device path, camera index or stream URL
  width: 640             # Requested capture width in pixels
  height: 480            # Requested capture height in pixels
  fps: 30                # Requested frames per second
  frame_timeout: 5.0     # Seconds to wait for the first frame

# Detection settings
detection:
  backends: ["hailo", "cpu"]  # Tried in order until one loads
  interval_ms: 100            # Detection tick interval
  model_path: "/opt/vision-bot/models/yolov8n.hef"  # HEF model (hailo)
  cpu_model: "yolov8n.pt"     # Ultralytics weights (cpu)
  confidence_threshold: 0.5   # Minimum confidence for detections (0.0-1.0)
  nms_threshold: 0.45         # Non-maximum suppression threshold (0.0-1.0)
  input_size: 640             # Model input size (usually 640 for YOLOv8)

# Web server settings
stream:
  host: "0.0.0.0"      # Bind to all interfaces
  port: 8080           # HTTP server port
  jpeg_quality: 80     # JPEG compression quality (1-100)

# Logging
logging:
  level: "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
"""

    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        f.write(example_yaml)
