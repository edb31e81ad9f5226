import asyncio
import enum
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from taskscope.config.config import RuntimeConfig
from taskscope.config.settings import settings
from taskscope.models import FILE_TIMESTAMP_FORMAT, TIMESTAMP_FORMAT, TickResult
from taskscope.services.batch import analysis_limit, should_analyze
from taskscope.services.capture import CaptureProvider, capture_selected
from taskscope.services.database import DatabaseManager
from taskscope.services.errors import CaptureError, DatabaseError, SaveError
from taskscope.services.hashing import is_changed, perceptual_hash
from taskscope.services.image import ImageManager
from taskscope.services.monitor_state import MonitorStateTable

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class CaptureState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class CaptureScheduler:
    """Periodic capture loop with per-monitor change detection.

    One tick grabs the selected monitors, keeps only the ones whose
    fingerprint moved at least ``change_threshold`` bits, stores them under
    a shared capture group and then asks the analysis policy whether a pass
    should start. The loop sleeps through an injectable sleeper that
    ``stop()`` interrupts.
    """

    def __init__(
        self,
        capture_provider: CaptureProvider,
        store: DatabaseManager,
        image_manager: ImageManager,
        monitors: MonitorStateTable,
        is_analyzing: Callable[[], bool],
        trigger_analysis: Callable[[int, int], None],
        change_threshold: int = settings.CHANGE_THRESHOLD,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.capture_provider = capture_provider
        self.store = store
        self.image_manager = image_manager
        self.monitors = monitors
        self.is_analyzing = is_analyzing
        self.trigger_analysis = trigger_analysis
        self.change_threshold = change_threshold
        self._sleep = sleep
        self._clock = clock

        self.state = CaptureState.IDLE
        self.session_id: Optional[int] = None
        self.interval = settings.DEFAULT_CAPTURE_INTERVAL_SECONDS
        # Running total for the process; not reset between sessions
        self.capture_count = 0
        self.last_monitors_captured = 0
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.state is CaptureState.RUNNING

    def start(self, session_id: Optional[int], interval: float) -> bool:
        """Start the loop; returns False if it was already running"""
        if self.running:
            return False
        self.state = CaptureState.RUNNING
        self.session_id = session_id
        self.interval = interval
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Capture started (session {session_id}, every {interval}s)")
        return True

    async def stop(self) -> None:
        """Flip to idle, wake the sleeper and wait for the loop to exit"""
        if self.state is CaptureState.IDLE and self._task is None:
            return
        self.state = CaptureState.IDLE
        self._wake.set()
        task, self._task = self._task, None
        if task is not None:
            await task
        logger.info(f"Capture stopped (session {self.session_id})")

    async def _run(self) -> None:
        while self.running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in capture loop: {e}", exc_info=True)
            if not self.running:
                break
            await self._wait(self.interval)

    async def _wait(self, seconds: float) -> None:
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waker = asyncio.ensure_future(self._wake.wait())
        done, pending = await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        for fut in pending:
            fut.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def tick(self) -> TickResult:
        """Run one capture tick"""
        config = RuntimeConfig.from_store(self.store)
        now = self._clock()
        captured_at = now.strftime(TIMESTAMP_FORMAT)
        group_key = now.strftime(FILE_TIMESTAMP_FORMAT)
        result = TickResult(capture_group=group_key)

        try:
            captured = capture_selected(
                self.capture_provider,
                config.capture_monitor_mode,
                config.capture_monitor_id,
            )
        except CaptureError as e:
            logger.error(f"Capture failed, skipping tick: {e}")
            return result

        result.captured = len(captured)
        self.last_monitors_captured = len(captured)
        multi_monitor = len(captured) > 1

        for monitor in captured:
            fingerprint = perceptual_hash(monitor.image)
            previous = self.monitors.last_hash(monitor.monitor_id)
            if not is_changed(previous, fingerprint, self.change_threshold):
                self.monitors.update_hash(monitor.monitor_id, fingerprint)
                continue

            filename = ImageManager.screenshot_filename(group_key, monitor.monitor_id, multi_monitor)
            try:
                filepath = self.image_manager.save_screenshot(monitor.image, filename)
            except SaveError as e:
                logger.error(f"Failed to save screenshot for {monitor.monitor_name}: {e}")
                continue

            try:
                screenshot_id = self.store.insert_screenshot(
                    filepath,
                    captured_at,
                    monitor_index=monitor.monitor_id,
                    session_id=self.session_id,
                    capture_group=group_key,
                )
            except DatabaseError as e:
                logger.error(f"Failed to record screenshot {filepath}: {e}")
                self.image_manager.delete_files([filepath])
                continue

            self.monitors.update_hash(monitor.monitor_id, fingerprint, monitor.monitor_name)
            result.saved += 1
            result.screenshot_ids.append(screenshot_id)

        if result.saved:
            logger.info(
                f"Saved {result.saved}/{result.captured} screenshots (group {group_key})"
            )
            self.capture_count += result.saved
            self._maybe_trigger_analysis(config)
        else:
            logger.debug(f"No monitor changed in tick {group_key}")
        return result

    def _maybe_trigger_analysis(self, config: RuntimeConfig) -> None:
        if self.session_id is None:
            return
        if should_analyze(config.analysis_mode, self.capture_count, config.batch_size, self.is_analyzing()):
            limit = analysis_limit(config.analysis_mode, config.batch_size)
            logger.info(f"Triggering {config.analysis_mode} analysis (limit {limit})")
            self.trigger_analysis(self.session_id, limit)
