"""Central configuration for the identity capture controller."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"

SUPPORTED_COUNTRIES: List[str] = [
    "Argentina", "Australia", "Austria", "Belgium", "Brazil", "Canada", "Chile", "China", "Colombia",
    "Denmark", "Finland", "France", "Germany", "Greece", "Hong Kong", "Hungary", "Iceland", "India",
    "Indonesia", "Ireland", "Israel", "Italy", "Japan", "Kenya", "Malaysia", "Mexico", "Netherlands",
    "New Zealand", "Nigeria", "Norway", "Philippines", "Poland", "Portugal", "Qatar", "Romania",
    "Russia", "Saudi Arabia", "Singapore", "South Africa", "South Korea", "Spain", "Sweden",
    "Switzerland", "Taiwan", "Thailand", "Turkey", "Ukraine", "United Arab Emirates",
    "United Kingdom", "United States", "Vietnam",
]


# ============================================================
# Nested Configuration Classes
# ============================================================

class CompressionSettings(BaseModel):
    """Adaptive JPEG compression applied to every captured photo."""
    max_bytes: int = Field(500 * 1024, description="Byte budget for an encoded photo")
    max_dimension: int = Field(1280, description="Longest edge allowed before scaling (pixels)")
    initial_quality: float = Field(0.82, description="First JPEG quality tried (0-1)")
    min_quality: float = Field(0.4, description="Quality floor (0-1)")
    quality_step: float = Field(0.08, description="Quality decrement per iteration")
    min_scale: float = Field(0.5, description="Scale floor relative to the decoded image")
    scale_factor: float = Field(0.85, description="Multiplier applied to scale once quality is floored")
    preview_dimension: int = Field(320, description="Longest edge of preview thumbnails (pixels)")


class LivenessSettings(BaseModel):
    """Face-presence hint shown during the selfie step."""
    enabled: bool = Field(True, description="Use face detection when the platform provides it")
    min_face_area_ratio: float = Field(0.08, description="Face box area below this fraction of the frame means 'move closer'")
    frame_interval_seconds: float = Field(1 / 30, description="Delay between sampled frames")
    detection_confidence: float = Field(0.5, description="MediaPipe face detection confidence threshold (0-1)")
    max_duration_seconds: Optional[float] = Field(None, description="Stop hinting after this long (None = until step exit)")


class CameraSettings(BaseModel):
    """Local camera configuration for server-side capture."""
    enabled: bool = Field(True, description="Capture from local cameras (False = clients upload photos)")
    document_camera_id: int = Field(0, description="OpenCV device index for the document camera")
    selfie_camera_id: int = Field(0, description="OpenCV device index for the selfie camera")
    resolution_width: int = Field(1280, description="Requested stream width (pixels)")
    resolution_height: int = Field(720, description="Requested stream height (pixels)")
    fps: int = Field(30, description="Requested frame rate")
    capture_jpeg_quality: int = Field(95, description="JPEG quality for the raw still before compression")


class ValidationSettings(BaseModel):
    """Local guards on the details step."""
    min_name_tokens: int = Field(2, description="Minimum whitespace-separated words in the legal name")
    legal_name_max_length: int = Field(50, description="Maximum legal name length (characters)")
    supported_countries: List[str] = Field(
        default_factory=lambda: list(SUPPORTED_COUNTRIES),
        description="Accepted countries (empty = any non-empty value)",
    )

    @field_validator("supported_countries", mode="before")
    @classmethod
    def _split_countries(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Backend & API
    backend_api_url: str = Field("http://localhost:54321", description="REST base URL for storage and RPC calls")
    backend_api_key: str = Field("", description="API key sent with every backend request")
    storage_bucket: str = Field("identity_verification", description="Bucket holding verification assets")
    finalize_rpc: str = Field("finalize_identity_submission", description="RPC that records a submission")
    resubmit_rpc: str = Field("request_identity_resubmission", description="RPC that clears a review comment")
    request_timeout_seconds: float = Field(15.0, description="Per-request timeout for backend calls")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")
    ui_event_queue_size: int = Field(8, description="Max buffered UI events per subscriber")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    compression: CompressionSettings = Field(default_factory=CompressionSettings, description="Photo compression")
    liveness: LivenessSettings = Field(default_factory=LivenessSettings, description="Selfie face hint")
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera hardware settings")
    validation: ValidationSettings = Field(default_factory=ValidationSettings, description="Details step guards")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
