import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import aiohttp

from taskscope.config.settings import settings
from taskscope.models import TaskAnalysis
from taskscope.services.analyzers.base import AnalysisProvider, ChangedMonitor, UnchangedMonitor
from taskscope.services.analyzers.prompts import (
    build_prompt, is_multi_monitor, parse_analysis, response_schema
)
from taskscope.services.errors import (
    EmptyResponseError, ProviderStatusError, ProviderUnavailableError, ResponseParseError
)
from taskscope.services.image import ImageManager

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class OllamaAnalyzer(AnalysisProvider):
    """Locally hosted vision model through the Ollama HTTP API.

    Under VRAM pressure Ollama can answer 200 with an empty message. That
    case is retried once after ``retry_delay`` seconds; any other failure
    is raised straight away.
    """

    name = "ollama"
    MAX_ATTEMPTS = 2

    def __init__(
        self,
        model_name: Optional[str] = None,
        host: str = settings.OLLAMA_HOST,
        retry_delay: float = settings.EMPTY_RESPONSE_RETRY_DELAY_SECONDS,
        timeout: float = settings.PROVIDER_TIMEOUT_SECONDS,
        sleep: Sleeper = asyncio.sleep,
        image_manager: Optional[ImageManager] = None,
    ):
        super().__init__(image_manager)
        self.model_name = model_name or settings.OLLAMA_MODEL_NAME
        self.host = host.rstrip("/")
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._sleep = sleep

    def build_payload(self, images: Sequence[str], prompt: str, multi_monitor: bool) -> dict:
        return {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt, "images": list(images)}],
            "stream": False,
            "format": response_schema(multi_monitor),
            "options": {"temperature": 0.3, "num_predict": 512, "num_ctx": 8192},
        }

    async def _request(self, method: str, path: str, payload: Optional[dict] = None,
                       timeout: Optional[float] = None) -> Tuple[int, str]:
        url = f"{self.host}{path}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=timeout or self.timeout)
                ) as response:
                    return response.status, await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailableError(f"Ollama unreachable at {url}: {e}")

    async def analyze(
        self,
        changed: Sequence[ChangedMonitor],
        unchanged: Sequence[UnchangedMonitor],
        contexts: Sequence[str],
        session_description: Optional[str] = None,
        image_mode: str = "downscale",
    ) -> TaskAnalysis:
        images = await self.encode_images(changed, image_mode)
        multi = is_multi_monitor(changed, unchanged)
        prompt = build_prompt(changed, unchanged, contexts, session_description, structured_output=True)
        payload = self.build_payload(images, prompt, multi)
        logger.info(
            f"Analyzing capture (Ollama {self.model_name}): "
            f"{len(changed)} changed, {len(unchanged)} unchanged monitors"
        )

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            status, body = await self._request("POST", "/api/chat", payload)
            if not 200 <= status < 300:
                logger.error(f"Ollama API error {status}: {body[:500]}")
                raise ProviderStatusError(status, body)

            content = self._message_content(body)
            if content.strip():
                return parse_analysis(content)

            if attempt < self.MAX_ATTEMPTS:
                logger.info(
                    f"Ollama returned empty response (attempt {attempt}/{self.MAX_ATTEMPTS}), "
                    f"retrying in {self.retry_delay}s"
                )
                await self._sleep(self.retry_delay)

        logger.error(f"Ollama returned empty response after {self.MAX_ATTEMPTS} attempts")
        raise EmptyResponseError("Ollama returned empty response (possible VRAM pressure)")

    @staticmethod
    def _message_content(body: str) -> str:
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Unreadable Ollama response: {e}")
        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, dict):
            raise ResponseParseError("Ollama response has no message")
        return message.get("content") or ""

    async def list_models(self) -> List[str]:
        """Names of locally available models; also serves as a connection check"""
        status, body = await self._request("GET", "/api/tags", timeout=10)
        if not 200 <= status < 300:
            raise ProviderUnavailableError(f"Ollama returned HTTP {status}")
        try:
            return [m["name"] for m in json.loads(body).get("models", [])]
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise ResponseParseError(f"Unreadable model list: {e}")

    async def has_model(self, model_name: Optional[str] = None) -> bool:
        wanted = model_name or self.model_name
        return any(name == wanted or name.split(":")[0] == wanted for name in await self.list_models())

    async def pull_model(self, model_name: Optional[str] = None) -> None:
        name = model_name or self.model_name
        logger.info(f"Pulling Ollama model {name}")
        status, body = await self._request(
            "POST", "/api/pull", {"model": name, "stream": False}, timeout=3600
        )
        if not 200 <= status < 300:
            raise ProviderStatusError(status, body)

    async def wait_for_ready(
        self,
        max_attempts: int = settings.OLLAMA_READY_ATTEMPTS,
        interval: float = settings.OLLAMA_READY_INTERVAL_SECONDS,
    ) -> List[str]:
        """Poll the server until it answers

        Raises:
            ProviderUnavailableError: If it is still unreachable after max_attempts
        """
        last_error = None
        for attempt in range(1, max_attempts + 1):
            try:
                models = await self.list_models()
                logger.info(f"Ollama ready after {attempt} attempt(s)")
                return models
            except ProviderUnavailableError as e:
                last_error = e
                if attempt < max_attempts:
                    await self._sleep(interval)
        raise ProviderUnavailableError(
            f"Ollama not ready after {max_attempts} attempts: {last_error}"
        )
