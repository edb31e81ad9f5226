from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator

TASK_CATEGORIES = ("coding", "browsing", "writing", "communication", "design", "other")

class Task(BaseModel):
    """An inferred unit of user activity"""
    id: int
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    started_at: str
    ended_at: Optional[str] = None
    ai_reasoning: Optional[str] = None
    user_verified: bool = False
    metadata: Optional[str] = None

    @property
    def context_line(self) -> str:
        return f"{self.title}: {self.description or ''}"

class TaskUpdate(BaseModel):
    """Partial update applied by the user"""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    ended_at: Optional[str] = None
    user_verified: Optional[bool] = None

class TaskAnalysis(BaseModel):
    """Structured result returned by an analysis provider.

    Provider output is untrusted, so only the shape is checked here;
    categories outside the known set are normalised to ``other``.
    """
    task_title: str = Field(description="Short title of the current task")
    task_description: str = Field(default="", description="One or two sentence description")
    category: str = Field(default="other")
    reasoning: str = Field(default="")
    is_new_task: bool = Field(description="True when the capture shows a different task than the last one")
    monitor_summaries: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-monitor summary keyed by display name"
    )

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v):
        if not isinstance(v, str) or v.lower() not in TASK_CATEGORIES:
            return "other"
        return v.lower()

    @field_validator("monitor_summaries", mode="before")
    @classmethod
    def _summaries(cls, v):
        if v is None:
            return {}
        return v

    @property
    def context_line(self) -> str:
        return f"{self.task_title}: {self.task_description}"

class AnalysisStatus(BaseModel):
    analyzing: bool
    session_id: Optional[int] = None
