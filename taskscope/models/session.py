from typing import Optional
from pydantic import BaseModel, Field

class CaptureSession(BaseModel):
    """One continuous capture run"""
    id: int
    started_at: str
    ended_at: Optional[str] = None
    screenshot_count: int = Field(default=0, description="Derived from the screenshots table")
    description: Optional[str] = Field(
        default=None,
        description="What the user said they are working on; fed to prompts"
    )
    title: Optional[str] = None
    unanalyzed_count: int = Field(default=0, description="Screenshots with no task link")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None
