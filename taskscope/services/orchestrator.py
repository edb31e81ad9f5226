import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from taskscope.config.config import RuntimeConfig
from taskscope.config.settings import settings
from taskscope.models import MonitorInfo, Screenshot
from taskscope.services.analyzers import (
    AnalysisProvider, ChangedMonitor, UnchangedMonitor, create_analyzer
)
from taskscope.services.database import DatabaseManager
from taskscope.services.grouping import group_by_capture_group
from taskscope.services.monitor_state import MonitorStateTable

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[RuntimeConfig], AnalysisProvider]


@dataclass
class AnalysisRunState:
    """Process-wide analysis flags.

    Each flag is read on its own at a decision point, so they are kept as
    independent attributes instead of behind one lock.
    """
    analyzing: bool = False
    session_id: Optional[int] = None
    cancel_requested: bool = False


class AnalysisOrchestrator:
    """Turns unanalyzed screenshots into tasks, one capture group at a time.

    A group is "analyzed" once any of its screenshots is linked to a task,
    so a group that fails is simply picked up again by a later pass.
    """

    def __init__(
        self,
        store: DatabaseManager,
        monitors: MonitorStateTable,
        run_state: Optional[AnalysisRunState] = None,
        provider_factory: ProviderFactory = create_analyzer,
        monitor_lookup: Optional[Callable[[], List[MonitorInfo]]] = None,
        context_size: int = settings.CONTEXT_WINDOW_SIZE,
    ):
        self.store = store
        self.monitors = monitors
        self.run_state = run_state or AnalysisRunState()
        self.provider_factory = provider_factory
        self.monitor_lookup = monitor_lookup
        self.context_size = context_size

    def cancel(self) -> None:
        self.run_state.cancel_requested = True

    async def run(
        self,
        screenshots: List[Screenshot],
        session_id: Optional[int] = None,
        session_description: Optional[str] = None,
    ) -> int:
        """Analyze screenshots grouped by capture group

        Returns:
            int: Number of groups analyzed; partial when cancelled
        """
        if not screenshots:
            return 0

        config = RuntimeConfig.from_store(self.store)
        provider = self.provider_factory(config)
        logger.info(
            f"Analyzing {len(screenshots)} screenshots with provider {provider.name}, "
            f"image_mode {config.image_mode}, session {session_id}"
        )

        self.run_state.analyzing = True
        self.run_state.session_id = session_id
        self.run_state.cancel_requested = False
        processed = 0
        try:
            contexts = self._seed_contexts(session_id)
            monitor_info = self._monitor_info()

            for group in group_by_capture_group(screenshots):
                if self.run_state.cancel_requested:
                    logger.info(f"Analysis cancelled after {processed} groups")
                    break
                try:
                    await self._analyze_group(
                        group, provider, contexts, session_description,
                        config.image_mode, monitor_info
                    )
                    processed += 1
                except Exception as e:
                    logger.error(f"AI analysis failed for capture group {group[0].capture_group}: {e}")
        finally:
            self.run_state.analyzing = False
            self.run_state.session_id = None
            await provider.close()

        logger.info(f"Analyzed {processed} capture groups")
        return processed

    def _seed_contexts(self, session_id: Optional[int]) -> Deque[str]:
        contexts: Deque[str] = deque(maxlen=self.context_size)
        if session_id is None:
            return contexts
        try:
            for task in self.store.get_recent_tasks_for_session(session_id, self.context_size):
                contexts.append(task.context_line)
        except Exception as e:
            logger.warning(f"Could not load recent tasks for session {session_id}: {e}")
        return contexts

    def _monitor_info(self) -> Dict[int, MonitorInfo]:
        if self.monitor_lookup is None:
            return {}
        try:
            return {m.id: m for m in self.monitor_lookup()}
        except Exception as e:
            logger.debug(f"Monitor details unavailable for prompts: {e}")
            return {}

    async def _analyze_group(
        self,
        group: List[Screenshot],
        provider: AnalysisProvider,
        contexts: Deque[str],
        session_description: Optional[str],
        image_mode: str,
        monitor_info: Dict[int, MonitorInfo],
    ) -> None:
        changed = []
        for shot in group:
            info = monitor_info.get(shot.monitor_index)
            changed.append(ChangedMonitor(
                name=self.monitors.display_name(shot.monitor_index),
                filepath=shot.filepath,
                width=info.width if info else 0,
                height=info.height if info else 0,
                is_primary=info.is_primary if info else False,
                screenshot_id=shot.id,
            ))
        unchanged = [
            UnchangedMonitor(name=name, summary=summary)
            for _, name, summary in self.monitors.unchanged_summaries(s.monitor_index for s in group)
        ]

        result = await provider.analyze(
            changed, unchanged, list(contexts), session_description, image_mode
        )

        if result.is_new_task:
            task_id = self.store.insert_full_task(
                result.task_title,
                result.task_description,
                result.category,
                min(s.captured_at for s in group),
                result.reasoning,
            )
        else:
            latest = self.store.get_latest_task()
            task_id = latest.id if latest else None
            if task_id is None:
                logger.warning("Continuation reported but no task exists yet; leaving group unlinked")

        if task_id is not None:
            for shot in group:
                self.store.link_screenshot_to_task(task_id, shot.id)

        for name, summary in result.monitor_summaries.items():
            self.monitors.update_summary_by_name(name, summary)

        contexts.appendleft(result.context_line)

    async def run_pending(self, limit: int = 0) -> int:
        """Analyze unanalyzed screenshots from any session"""
        screenshots = self.store.get_unanalyzed_screenshots(limit)
        session_id = screenshots[0].session_id if screenshots else None
        description = None
        if session_id is not None:
            session = self.store.get_session(session_id)
            description = session.description if session else None
        return await self.run(screenshots, session_id, description)

    async def run_session(self, session_id: int, limit: int = 0) -> int:
        """Analyze unanalyzed screenshots of one session; ``limit=0`` means all"""
        screenshots = self.store.get_unanalyzed_screenshots_for_session(session_id, limit)
        session = self.store.get_session(session_id)
        description = session.description if session else None
        return await self.run(screenshots, session_id, description)

    async def run_all_pending(self) -> int:
        """Catch up every ended session that still has unanalyzed screenshots"""
        total = 0
        for session in self.store.get_pending_sessions(100, 0):
            try:
                total += await self.run_session(session.id, 0)
            except Exception as e:
                logger.error(f"Analysis failed for session {session.id}: {e}")
                raise
        return total
