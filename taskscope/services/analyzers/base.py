import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from taskscope.models import TaskAnalysis
from taskscope.services.errors import AnalyzerError
from taskscope.services.image import ImageManager

logger = logging.getLogger(__name__)


@dataclass
class ChangedMonitor:
    """A monitor whose new screenshot is sent as an image"""
    name: str
    filepath: str
    width: int = 0
    height: int = 0
    is_primary: bool = False
    screenshot_id: Optional[int] = None


@dataclass
class UnchangedMonitor:
    """A monitor described only by its summary from an earlier pass"""
    name: str
    summary: str


class AnalysisProvider(ABC):
    """Vision backend that turns a capture group into a task guess"""

    name = "base"

    def __init__(self, image_manager: Optional[ImageManager] = None):
        self.image_manager = image_manager or ImageManager()

    @abstractmethod
    async def analyze(
        self,
        changed: Sequence[ChangedMonitor],
        unchanged: Sequence[UnchangedMonitor],
        contexts: Sequence[str],
        session_description: Optional[str] = None,
        image_mode: str = "downscale",
    ) -> TaskAnalysis:
        """Analyze one capture group

        Raises:
            ProviderUnavailableError: Backend unreachable
            ProviderStatusError: Backend returned a non-success status
            EmptyResponseError: Backend returned no content
            ResponseParseError: Content did not match the result schema
        """
        ...

    async def encode_images(self, changed: Sequence[ChangedMonitor], image_mode: str) -> List[str]:
        """Preprocess every changed image off the event loop"""
        if not changed:
            raise AnalyzerError("No images to analyze")
        try:
            return await asyncio.gather(*[
                asyncio.to_thread(self.image_manager.preprocess_for_analysis, m.filepath, image_mode)
                for m in changed
            ])
        except OSError as e:
            raise AnalyzerError(f"Failed to read screenshot for analysis: {e}")

    async def close(self) -> None:
        """Release provider resources"""
        pass
