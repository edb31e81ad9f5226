import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import mss
from PIL import Image

from taskscope.models import MonitorInfo, CapturedMonitor
from taskscope.services.errors import CaptureError, NoMonitorsError, MonitorNotFoundError

logger = logging.getLogger(__name__)


class CaptureProvider(ABC):
    """OS screen access used by the capture loop"""

    @abstractmethod
    def list_monitors(self) -> List[MonitorInfo]:
        ...

    @abstractmethod
    def capture(self, monitors: List[MonitorInfo]) -> List[CapturedMonitor]:
        """Grab each monitor; monitors that fail are left out of the result"""
        ...

    def cursor_position(self) -> Optional[Tuple[int, int]]:
        return None


def default_monitor(monitors: List[MonitorInfo]) -> MonitorInfo:
    for monitor in monitors:
        if monitor.is_primary:
            return monitor
    return monitors[0]


def monitor_at(monitors: List[MonitorInfo], x: int, y: int) -> Optional[MonitorInfo]:
    for monitor in monitors:
        if monitor.contains(x, y):
            return monitor
    return None


def select_monitors(
    monitors: List[MonitorInfo],
    mode: str,
    specific_id: Optional[int] = None,
    cursor: Optional[Tuple[int, int]] = None,
) -> List[MonitorInfo]:
    """Pick the monitors to capture for one tick

    Args:
        monitors: Every monitor the provider reports
        mode: ``all``, ``default``, ``active`` or ``specific``
        specific_id: Monitor id for ``specific`` mode
        cursor: Pointer position for ``active`` mode

    Raises:
        NoMonitorsError: If no monitors are available
        MonitorNotFoundError: If ``specific`` mode has no usable id
    """
    if not monitors:
        raise NoMonitorsError("No monitors found")

    if mode == "all":
        return list(monitors)

    if mode == "specific":
        if specific_id is None:
            raise MonitorNotFoundError("No monitor selected for specific capture mode")
        for monitor in monitors:
            if monitor.id == specific_id:
                return [monitor]
        raise MonitorNotFoundError(f"Monitor {specific_id} not found")

    if mode == "active" and cursor is not None:
        monitor = monitor_at(monitors, *cursor)
        if monitor is not None:
            return [monitor]
        logger.debug(f"Pointer at {cursor} is outside all monitors, using default")

    return [default_monitor(monitors)]


def capture_selected(
    provider: CaptureProvider,
    mode: str,
    specific_id: Optional[int] = None,
) -> List[CapturedMonitor]:
    """Resolve the selection mode against the provider and capture"""
    monitors = provider.list_monitors()

    cursor = None
    if mode == "active":
        try:
            cursor = provider.cursor_position()
        except Exception as e:
            logger.warning(f"Could not read pointer position, using default monitor: {e}")

    selected = select_monitors(monitors, mode, specific_id, cursor)
    captured = provider.capture(selected)
    if not captured:
        raise CaptureError(f"Capture failed for all {len(selected)} selected monitors")
    return captured


class MssCaptureProvider(CaptureProvider):
    """Screen capture through mss, one grab per monitor"""

    def list_monitors(self) -> List[MonitorInfo]:
        try:
            with mss.mss() as sct:
                raw = sct.monitors[1:]  # Skip the "all monitors" entry
        except Exception as e:
            raise CaptureError(f"Failed to enumerate monitors: {e}")

        return [
            MonitorInfo(
                id=index,
                name=f"Display {index}",
                x=mon["left"],
                y=mon["top"],
                width=mon["width"],
                height=mon["height"],
                is_primary=(mon["left"] == 0 and mon["top"] == 0),
            )
            for index, mon in enumerate(raw, start=1)
        ]

    def capture(self, monitors: List[MonitorInfo]) -> List[CapturedMonitor]:
        captured = []
        try:
            sct = mss.mss()
        except Exception as e:
            raise CaptureError(f"Failed to initialize screen capture: {e}")

        with sct:
            for monitor in monitors:
                region = {
                    "left": monitor.x,
                    "top": monitor.y,
                    "width": monitor.width,
                    "height": monitor.height,
                }
                try:
                    shot = sct.grab(region)
                    img = Image.frombytes('RGB', shot.size, shot.bgra, 'raw', 'BGRX')
                except Exception as e:
                    logger.error(f"Failed to capture monitor {monitor.name}: {e}")
                    continue
                captured.append(CapturedMonitor(
                    monitor_id=monitor.id,
                    monitor_name=monitor.name,
                    image=img,
                    width=monitor.width,
                    height=monitor.height,
                    is_primary=monitor.is_primary,
                ))
        return captured

    def cursor_position(self) -> Optional[Tuple[int, int]]:
        # pynput needs a display connection, so import at call time
        from pynput import mouse
        x, y = mouse.Controller().position
        return int(x), int(y)
