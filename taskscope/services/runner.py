import asyncio
import logging
import signal
from typing import Optional

from taskscope.config.settings import settings
from taskscope.services.controller import PipelineController
from taskscope.services.errors import RunnerError

logger = logging.getLogger(__name__)


class ServiceRunner:
    """Runs one capture session in the foreground until a signal arrives"""

    def __init__(self, controller: Optional[PipelineController] = None):
        self.controller = controller or PipelineController()
        self.running = False
        self.shutdown_event = asyncio.Event()

    def _setup_signal_handlers(self):
        """Set up handlers for system signals"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: self.request_shutdown(s))
            except NotImplementedError:
                # Not available on Windows event loops
                logger.debug(f"Signal handler for {sig.name} not supported")

    def request_shutdown(self, sig: Optional[signal.Signals] = None):
        if sig:
            logger.info(f"Received exit signal {sig.name}...")
        self.running = False
        self.shutdown_event.set()

    async def shutdown(self):
        """Gracefully shutdown the service"""
        logger.info("Initiating graceful shutdown...")
        try:
            await self.controller.shutdown()
            logger.info("Shutdown completed successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
            raise RunnerError(f"Shutdown failed: {e}")

    async def run(
        self,
        interval: Optional[float] = None,
        description: Optional[str] = None,
        title: Optional[str] = None,
    ) -> int:
        """Capture until shutdown is requested; returns the session id"""
        logger.info("Starting taskscope capture service...")
        self._setup_signal_handlers()
        self.running = True

        try:
            session_id = await self.controller.start_capture(
                interval or settings.DEFAULT_CAPTURE_INTERVAL_SECONDS, description, title
            )
        except Exception as e:
            logger.error(f"Failed to start capture: {e}")
            self.controller.store.close()
            raise RunnerError(f"Failed to start capture: {e}")

        try:
            await self.shutdown_event.wait()
        finally:
            await self.shutdown()
        return session_id


def run_service(interval: Optional[float] = None, description: Optional[str] = None,
                title: Optional[str] = None) -> int:
    """Entry point for running the service"""
    runner = ServiceRunner()
    return asyncio.run(runner.run(interval, description, title))
