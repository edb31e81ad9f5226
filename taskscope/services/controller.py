import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from taskscope.config.config import SETTING_KEYS, RuntimeConfig
from taskscope.config.settings import settings
from taskscope.models import (
    AnalysisStatus, CaptureSession, CaptureStatus, MonitorInfo, Screenshot, Task, TaskUpdate
)
from taskscope.services.analyzers import AnalysisProvider, create_analyzer
from taskscope.services.batch import UNBOUNDED
from taskscope.services.capture import CaptureProvider, MssCaptureProvider
from taskscope.services.database import DatabaseManager
from taskscope.services.errors import ConfigError, NotFoundError, SessionError
from taskscope.services.image import ImageManager
from taskscope.services.monitor_state import MonitorStateTable
from taskscope.services.orchestrator import AnalysisOrchestrator, AnalysisRunState
from taskscope.services.scheduler import CaptureScheduler, Sleeper
from taskscope.services.session import SessionLifecycle

logger = logging.getLogger(__name__)


class PipelineController:
    """Owns the pipeline state and exposes every user-facing command.

    The CLI and the HTTP API are thin wrappers around this class. All
    mutable state (current session, monitor table, analysis flags) lives
    here so nothing is shared through module globals.
    """

    def __init__(
        self,
        store: Optional[DatabaseManager] = None,
        capture_provider: Optional[CaptureProvider] = None,
        image_manager: Optional[ImageManager] = None,
        provider_factory: Optional[Callable[[RuntimeConfig], AnalysisProvider]] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store or DatabaseManager()
        self.capture_provider = capture_provider or MssCaptureProvider()
        self.image_manager = image_manager or ImageManager()
        self.monitors = MonitorStateTable()
        self.run_state = AnalysisRunState()

        self.orchestrator = AnalysisOrchestrator(
            self.store,
            self.monitors,
            self.run_state,
            provider_factory=provider_factory or self._default_provider,
            monitor_lookup=self.capture_provider.list_monitors,
        )
        self.sessions = SessionLifecycle(self.store, on_session_start=self.on_session_start)
        self.scheduler = CaptureScheduler(
            self.capture_provider,
            self.store,
            self.image_manager,
            self.monitors,
            is_analyzing=lambda: self.run_state.analyzing,
            trigger_analysis=self._spawn_analysis,
            sleep=sleep,
            clock=clock,
        )

        self.session_id: Optional[int] = None
        self._analysis_tasks: Set[asyncio.Task] = set()

    def _default_provider(self, config: RuntimeConfig) -> AnalysisProvider:
        return create_analyzer(config, self.image_manager)

    def on_session_start(self) -> None:
        """Forget fingerprints and summaries from the previous session"""
        self.monitors.clear()

    # -- capture -----------------------------------------------------------

    async def start_capture(
        self,
        interval: Optional[float] = None,
        description: Optional[str] = None,
        title: Optional[str] = None,
    ) -> int:
        """Open a session and start the capture loop.

        Calling this while capture is already running is a no-op that
        returns the current session id.
        """
        if self.scheduler.running and self.session_id is not None:
            logger.info(f"Capture already running (session {self.session_id})")
            return self.session_id

        interval = interval or settings.DEFAULT_CAPTURE_INTERVAL_SECONDS
        if interval <= 0:
            raise ConfigError(f"Capture interval must be positive, got {interval}")

        self.image_manager.ensure_dir()
        self.session_id = self.sessions.start(description, title)
        self.scheduler.start(self.session_id, interval)
        return self.session_id

    async def stop_capture(self) -> Optional[int]:
        """Stop capturing, close the session and sweep its remaining screenshots"""
        if not self.scheduler.running and self.session_id is None:
            return None

        await self.scheduler.stop()
        session_id, self.session_id = self.session_id, None
        if session_id is None:
            return None

        self.sessions.stop(session_id)
        self._spawn_analysis(session_id, UNBOUNDED)
        return session_id

    def capture_status(self) -> CaptureStatus:
        config = RuntimeConfig.from_store(self.store)
        return CaptureStatus(
            active=self.scheduler.running,
            interval_seconds=self.scheduler.interval,
            count=self.scheduler.capture_count,
            monitor_mode=config.capture_monitor_mode,
            monitors_captured=self.scheduler.last_monitors_captured,
        )

    def list_monitors(self) -> List[MonitorInfo]:
        return self.capture_provider.list_monitors()

    def current_session(self) -> Optional[CaptureSession]:
        if self.session_id is None:
            return None
        return self.sessions.current(self.session_id)

    # -- analysis ----------------------------------------------------------

    def _spawn_analysis(self, session_id: int, limit: int) -> asyncio.Task:
        task = asyncio.create_task(self.orchestrator.run_session(session_id, limit))
        self._analysis_tasks.add(task)
        task.add_done_callback(self._analysis_done)
        return task

    def _analysis_done(self, task: asyncio.Task) -> None:
        self._analysis_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background analysis failed: {error}")

    async def analyze_pending(self, limit: int = 0) -> int:
        return await self.orchestrator.run_pending(limit)

    async def analyze_session(self, session_id: int, limit: int = 0) -> int:
        self.get_session(session_id)
        return await self.orchestrator.run_session(session_id, limit)

    async def analyze_all_pending(self) -> int:
        return await self.orchestrator.run_all_pending()

    def analysis_status(self) -> AnalysisStatus:
        return AnalysisStatus(
            analyzing=self.run_state.analyzing,
            session_id=self.run_state.session_id,
        )

    def cancel_analysis(self) -> None:
        logger.info("Analysis cancellation requested")
        self.orchestrator.cancel()

    async def wait_for_analysis(self) -> None:
        """Wait for every background analysis pass spawned so far"""
        while self._analysis_tasks:
            await asyncio.gather(*list(self._analysis_tasks), return_exceptions=True)

    # -- screenshots and sessions -----------------------------------------

    def clear_pending(self) -> int:
        """Delete every unanalyzed screenshot row and its file"""
        paths = self.store.delete_unanalyzed_screenshots()
        self.image_manager.delete_files(paths)
        logger.info(f"Cleared {len(paths)} unanalyzed screenshots")
        return len(paths)

    def delete_session(self, session_id: int) -> int:
        if session_id == self.session_id:
            raise SessionError("Cannot delete the session that is currently capturing")
        self.get_session(session_id)
        paths = self.store.delete_session(session_id)
        self.image_manager.delete_files(paths)
        return len(paths)

    def get_sessions(self, status: str = "all", limit: int = 50, offset: int = 0) -> List[CaptureSession]:
        if status == "pending":
            return self.store.get_pending_sessions(limit, offset)
        if status == "completed":
            return self.store.get_completed_sessions(limit, offset)
        if status != "all":
            raise ConfigError(f"Unknown session filter: {status}")
        return self.store.get_sessions(limit, offset)

    def get_session(self, session_id: int) -> CaptureSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def get_session_screenshots(self, session_id: int) -> List[Screenshot]:
        self.get_session(session_id)
        return self.store.get_session_screenshots(session_id)

    def get_session_tasks(self, session_id: int) -> List[Task]:
        self.get_session(session_id)
        return self.store.get_session_tasks(session_id)

    # -- tasks -------------------------------------------------------------

    def get_tasks(self, limit: int = 50, offset: int = 0) -> List[Task]:
        return self.store.get_tasks(limit, offset)

    def get_task(self, task_id: int) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def update_task(self, task_id: int, update: TaskUpdate) -> Task:
        task = self.store.update_task(task_id, update)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def delete_task(self, task_id: int) -> None:
        if not self.store.delete_task(task_id):
            raise NotFoundError(f"Task {task_id} not found")

    def get_task_screenshots(self, task_id: int) -> List[Screenshot]:
        self.get_task(task_id)
        return self.store.get_task_screenshots(task_id)

    # -- settings ----------------------------------------------------------

    def get_settings(self) -> Dict[str, Optional[str]]:
        stored = self.store.get_all_settings()
        return {key: stored.get(key) for key in SETTING_KEYS}

    def get_setting(self, key: str) -> Optional[str]:
        if key not in SETTING_KEYS:
            raise ConfigError(f"Unknown setting: {key}")
        return self.store.get_setting(key)

    def set_setting(self, key: str, value: str) -> None:
        if key not in SETTING_KEYS:
            raise ConfigError(f"Unknown setting: {key}")
        if key == "batch_size":
            value = str(RuntimeConfig(batch_size=value).batch_size)
        self.store.set_setting(key, value)
        logger.info(f"Setting {key} updated")

    async def check_ollama(self, pull_missing: bool = False) -> List[str]:
        """Wait for a local Ollama server and list its models.

        With ``pull_missing`` the configured model is downloaded first when
        the server does not have it yet.
        """
        from taskscope.services.analyzers.ollama import OllamaAnalyzer
        config = RuntimeConfig.from_store(self.store)
        ollama = OllamaAnalyzer(model_name=config.ollama_model)
        models = await ollama.wait_for_ready()
        if pull_missing and not await ollama.has_model():
            await ollama.pull_model()
            models = await ollama.list_models()
        return models

    # -- lifecycle ---------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop capture, let analysis finish and close the store"""
        await self.stop_capture()
        await self.wait_for_analysis()
        self.store.close()
