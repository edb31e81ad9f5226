import base64
import io
import logging
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Optional, Tuple

from PIL import Image

from taskscope.config.settings import settings
from taskscope.services.errors import SaveError

logger = logging.getLogger(__name__)

SCREENSHOTS_PREFIX = "screenshots/"


class ImageManager:
    """Writes, resolves and prepares screenshot files.

    Paths in the database are always relative (``screenshots/<file>``);
    this class is the only place they are mapped onto the filesystem.
    """

    def __init__(self, screenshots_dir: Optional[Path] = None, max_width: Optional[int] = None):
        """Initialize the image manager

        Args:
            screenshots_dir: Directory for screenshot files. Defaults to settings.SCREENSHOTS_DIR
            max_width: Width images are reduced to before analysis
        """
        self.screenshots_dir = Path(screenshots_dir or settings.SCREENSHOTS_DIR)
        self.max_width = max_width or settings.ANALYSIS_MAX_WIDTH

    def ensure_dir(self) -> None:
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def screenshot_filename(timestamp: str, monitor_id: int, multi_monitor: bool) -> str:
        if multi_monitor:
            return f"screenshot_{timestamp}_mon{monitor_id}.webp"
        return f"screenshot_{timestamp}.webp"

    def resolve(self, filepath: str) -> Path:
        """Map a stored relative path onto the screenshots directory"""
        name = filepath[len(SCREENSHOTS_PREFIX):] if filepath.startswith(SCREENSHOTS_PREFIX) else filepath
        return self.screenshots_dir / name

    def save_screenshot(self, image: Image.Image, filename: str) -> str:
        """Save an image as lossless WebP

        Returns:
            str: Path relative to the data directory

        Raises:
            SaveError: If the file cannot be written
        """
        path = self.screenshots_dir / filename
        try:
            self.ensure_dir()
            image.save(path, format="WEBP", lossless=True)
        except Exception as e:
            raise SaveError(f"Failed to save screenshot {path}: {e}")
        return f"{SCREENSHOTS_PREFIX}{filename}"

    def delete_files(self, filepaths: Iterable[str]) -> int:
        """Remove screenshot files, ignoring ones that are already gone"""
        removed = 0
        for filepath in filepaths:
            path = self.resolve(filepath)
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                logger.debug(f"Screenshot already removed: {path}")
            except OSError as e:
                logger.error(f"Failed to remove screenshot {path}: {e}")
        return removed

    def resize_for_analysis(self, image: Image.Image) -> Image.Image:
        """Downscale to max_width keeping the aspect ratio"""
        width, height = image.size
        if width <= self.max_width:
            return image
        ratio = self.max_width / width
        new_size = (self.max_width, max(1, round(height * ratio)))
        return image.resize(new_size, Image.Resampling.LANCZOS)

    def crop_active_window(self, image: Image.Image) -> Image.Image:
        """Crop to the focused window, or return the image unchanged"""
        geometry = active_window_geometry()
        if geometry is None:
            return image
        x, y, width, height = geometry
        left = max(0, x)
        top = max(0, y)
        right = min(image.width, x + width)
        bottom = min(image.height, y + height)
        if right <= left or bottom <= top:
            logger.debug(f"Active window {geometry} outside image bounds, using full frame")
            return image
        return image.crop((left, top, right, bottom))

    def preprocess_for_analysis(self, filepath: str, image_mode: str = "downscale") -> str:
        """Load a stored screenshot and return it base64-encoded for a provider"""
        with Image.open(self.resolve(filepath)) as img:
            img = img.convert("RGB")
            if image_mode == "active_window":
                img = self.crop_active_window(img)
            img = self.resize_for_analysis(img)
            return base64.b64encode(encode_webp(img)).decode("ascii")


def encode_webp(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="WEBP", lossless=True)
    return buffer.getvalue()


def active_window_geometry() -> Optional[Tuple[int, int, int, int]]:
    """(x, y, width, height) of the focused window via xdotool on Linux"""
    if not sys.platform.startswith("linux"):
        return None
    try:
        result = subprocess.run(
            ["xdotool", "getactivewindow", "getwindowgeometry", "--shell"],
            capture_output=True, text=True, timeout=2, check=True
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"xdotool unavailable: {e}")
        return None
    return parse_window_geometry(result.stdout)


def parse_window_geometry(output: str) -> Optional[Tuple[int, int, int, int]]:
    values = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    try:
        return int(values["X"]), int(values["Y"]), int(values["WIDTH"]), int(values["HEIGHT"])
    except (KeyError, ValueError):
        return None
