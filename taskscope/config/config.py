from typing import Dict, Optional, Protocol
from pydantic import BaseModel, Field, field_validator
import logging

logger = logging.getLogger(__name__)

MONITOR_MODES = ("all", "default", "active", "specific")
ANALYSIS_MODES = ("realtime", "batch")
IMAGE_MODES = ("downscale", "active_window")
AI_PROVIDERS = ("claude", "gemini", "ollama")

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 100
DEFAULT_BATCH_SIZE = 10

SETTING_KEYS = (
    "capture_monitor_mode",
    "capture_monitor_id",
    "analysis_mode",
    "batch_size",
    "image_mode",
    "ai_provider",
    "ai_api_key",
    "ollama_model",
)


class SettingsSource(Protocol):
    def get_setting(self, key: str) -> Optional[str]: ...


def clamp_batch_size(value: int) -> int:
    """Clamp a batch size into the supported range"""
    return max(MIN_BATCH_SIZE, min(MAX_BATCH_SIZE, value))


class RuntimeConfig(BaseModel):
    """User-editable settings stored as string rows in the settings table.

    Values are re-read before every capture tick and analysis pass, so
    edits made while a session is running apply on the next tick.
    Unknown or unparsable values fall back to defaults instead of failing.
    """
    capture_monitor_mode: str = Field(
        default="default",
        description="Which monitors to capture (all|default|active|specific)"
    )
    capture_monitor_id: Optional[int] = Field(
        default=None,
        description="Monitor id used when capture_monitor_mode is 'specific'"
    )
    analysis_mode: str = Field(
        default="batch",
        description="When to trigger auto-analysis (realtime|batch)"
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        description="Saved screenshots between batch analysis passes"
    )
    image_mode: str = Field(
        default="downscale",
        description="Image preprocessing before analysis (downscale|active_window)"
    )
    ai_provider: str = Field(
        default="claude",
        description="Analysis backend (claude|gemini|ollama)"
    )
    ai_api_key: Optional[str] = None
    ollama_model: Optional[str] = None

    @field_validator("capture_monitor_mode", mode="before")
    @classmethod
    def _monitor_mode(cls, v):
        if v not in MONITOR_MODES:
            return "default"
        return v

    @field_validator("capture_monitor_id", mode="before")
    @classmethod
    def _monitor_id(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid capture_monitor_id: {v!r}")
            return None

    @field_validator("analysis_mode", mode="before")
    @classmethod
    def _analysis_mode(cls, v):
        if v not in ANALYSIS_MODES:
            return "batch"
        return v

    @field_validator("batch_size", mode="before")
    @classmethod
    def _batch_size(cls, v):
        try:
            return clamp_batch_size(int(v))
        except (TypeError, ValueError):
            return DEFAULT_BATCH_SIZE

    @field_validator("image_mode", mode="before")
    @classmethod
    def _image_mode(cls, v):
        if v not in IMAGE_MODES:
            return "downscale"
        return v

    @field_validator("ai_provider", mode="before")
    @classmethod
    def _ai_provider(cls, v):
        if v not in AI_PROVIDERS:
            return "claude"
        return v

    @field_validator("ai_api_key", "ollama_model", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @classmethod
    def from_mapping(cls, values: Dict[str, Optional[str]]) -> "RuntimeConfig":
        present = {k: v for k, v in values.items() if k in SETTING_KEYS and v is not None}
        return cls(**present)

    @classmethod
    def from_store(cls, store: SettingsSource) -> "RuntimeConfig":
        """Load the current runtime settings from the store"""
        return cls.from_mapping({key: store.get_setting(key) for key in SETTING_KEYS})
