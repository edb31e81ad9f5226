import pytest
from pathlib import Path
import tempfile
import shutil
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw

from taskscope.models import CapturedMonitor, MonitorInfo, TaskAnalysis
from taskscope.services.analyzers.base import AnalysisProvider
from taskscope.services.capture import CaptureProvider
from taskscope.services.database import DatabaseManager
from taskscope.services.image import ImageManager


def half_image(side: str, size: Tuple[int, int] = (64, 64)) -> Image.Image:
    """Black frame with one half painted white"""
    width, height = size
    boxes = {
        "left": (0, 0, width // 2 - 1, height - 1),
        "right": (width // 2, 0, width - 1, height - 1),
        "top": (0, 0, width - 1, height // 2 - 1),
        "bottom": (0, height // 2, width - 1, height - 1),
    }
    img = Image.new("RGB", size, "black")
    ImageDraw.Draw(img).rectangle(boxes[side], fill="white")
    return img


class FakeCaptureProvider(CaptureProvider):
    """Serves scripted frames per monitor; the last frame repeats forever"""

    def __init__(self, monitors: List[MonitorInfo], frames: Dict[int, List[Image.Image]],
                 cursor: Optional[Tuple[int, int]] = None):
        self.monitors = monitors
        self.frames = frames
        self.cursor = cursor
        self.taken: Dict[int, int] = {}

    def list_monitors(self) -> List[MonitorInfo]:
        return list(self.monitors)

    def capture(self, monitors: List[MonitorInfo]) -> List[CapturedMonitor]:
        captured = []
        for monitor in monitors:
            sequence = self.frames[monitor.id]
            index = min(self.taken.get(monitor.id, 0), len(sequence) - 1)
            self.taken[monitor.id] = self.taken.get(monitor.id, 0) + 1
            captured.append(CapturedMonitor(
                monitor_id=monitor.id,
                monitor_name=monitor.name,
                image=sequence[index],
                width=monitor.width,
                height=monitor.height,
                is_primary=monitor.is_primary,
            ))
        return captured

    def cursor_position(self):
        return self.cursor


class ScriptedAnalyzer(AnalysisProvider):
    """Returns queued results (or raises queued exceptions) and records calls"""

    name = "scripted"

    def __init__(self, results, image_manager=None):
        super().__init__(image_manager)
        self.results = list(results)
        self.calls = []
        self.closed = False

    async def analyze(self, changed, unchanged, contexts, session_description=None,
                      image_mode="downscale"):
        self.calls.append({
            "changed": list(changed),
            "unchanged": list(unchanged),
            "contexts": list(contexts),
            "session_description": session_description,
            "image_mode": image_mode,
        })
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


def analysis(title: str, is_new: bool = True, description: str = "", summaries=None) -> TaskAnalysis:
    return TaskAnalysis(
        task_title=title,
        task_description=description or f"Working on {title}",
        category="coding",
        reasoning="test",
        is_new_task=is_new,
        monitor_summaries=summaries or {},
    )


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files"""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def db():
    """Provide a test database instance"""
    db = DatabaseManager(":memory:")  # Use in-memory database for testing
    yield db
    db.close()


@pytest.fixture
def image_manager(temp_dir):
    """Provide an image manager writing into a temp screenshots dir"""
    return ImageManager(screenshots_dir=temp_dir / "screenshots")


@pytest.fixture
def two_monitors():
    return [
        MonitorInfo(id=1, name="Display 1", x=0, y=0, width=1920, height=1080, is_primary=True),
        MonitorInfo(id=2, name="Display 2", x=1920, y=0, width=1280, height=1024),
    ]
