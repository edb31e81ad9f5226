from dataclasses import dataclass, field
from typing import Any, Optional
from pydantic import BaseModel, Field
from PIL import Image

# Stored timestamps are naive local wall-clock time at second precision
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
# Filenames and capture-group keys cannot contain colons
FILE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"

class Screenshot(BaseModel):
    """One persisted screenshot reference"""
    id: int = Field(description="Row id assigned by the store")
    filepath: str = Field(description="Path relative to the data directory, e.g. screenshots/<file>")
    captured_at: str = Field(description="Naive local time, YYYY-MM-DDTHH:MM:SS")
    active_window_title: Optional[str] = None
    monitor_index: int = Field(default=0, description="Monitor id the image came from")
    session_id: Optional[int] = None
    capture_group: Optional[str] = Field(
        default=None,
        description="Key shared by all screenshots saved in the same tick"
    )

class MonitorInfo(BaseModel):
    """A monitor as reported by the capture provider"""
    id: int
    name: str
    x: int = 0
    y: int = 0
    width: int
    height: int
    is_primary: bool = False

    def contains(self, x: int, y: int) -> bool:
        return self.x <= x < self.x + self.width and self.y <= y < self.y + self.height

@dataclass
class CapturedMonitor:
    """Raw pixels for one monitor from a single capture call"""
    monitor_id: int
    monitor_name: str
    image: Image.Image
    width: int = 0
    height: int = 0
    is_primary: bool = False

@dataclass
class MonitorState:
    """Volatile per-monitor state kept for the lifetime of a session"""
    last_hash: Any
    name: str
    last_summary: str = ""

class CaptureStatus(BaseModel):
    active: bool
    interval_seconds: float
    count: int
    monitor_mode: str
    monitors_captured: int

@dataclass
class TickResult:
    """Outcome of one capture tick"""
    captured: int = 0
    saved: int = 0
    capture_group: Optional[str] = None
    screenshot_ids: list = field(default_factory=list)
