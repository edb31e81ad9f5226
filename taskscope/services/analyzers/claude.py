import asyncio
import json
import logging
from typing import Optional, Sequence, Tuple

import aiohttp

from taskscope.config.settings import settings
from taskscope.models import TaskAnalysis
from taskscope.services.analyzers.base import AnalysisProvider, ChangedMonitor, UnchangedMonitor
from taskscope.services.analyzers.prompts import build_prompt, parse_analysis
from taskscope.services.errors import (
    ConfigError, EmptyResponseError, ProviderStatusError, ProviderUnavailableError
)
from taskscope.services.image import ImageManager

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeAnalyzer(AnalysisProvider):
    """Anthropic Messages API over aiohttp.

    Non-2xx answers are surfaced immediately; the orchestrator leaves the
    group unanalyzed and a later pass picks it up.
    """

    name = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = settings.CLAUDE_MODEL_NAME,
        api_url: str = settings.CLAUDE_API_URL,
        max_tokens: int = 1024,
        timeout: float = settings.PROVIDER_TIMEOUT_SECONDS,
        image_manager: Optional[ImageManager] = None,
    ):
        super().__init__(image_manager)
        self.api_key = api_key or settings.ANTHROPIC_API_KEY
        if not self.api_key:
            raise ConfigError("Claude provider requires an API key (ai_api_key or ANTHROPIC_API_KEY)")
        self.model_name = model_name
        self.api_url = api_url
        self.max_tokens = max_tokens
        self.timeout = timeout

    def build_payload(self, images: Sequence[str], prompt: str) -> dict:
        # Images first, then the prompt text
        content = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": "image/webp", "data": data},
            }
            for data in images
        ]
        content.append({"type": "text", "text": prompt})
        return {
            "model": self.model_name,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": content}],
        }

    async def _post(self, payload: dict) -> Tuple[int, str]:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    return response.status, await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailableError(f"Claude API unreachable: {e}")

    async def analyze(
        self,
        changed: Sequence[ChangedMonitor],
        unchanged: Sequence[UnchangedMonitor],
        contexts: Sequence[str],
        session_description: Optional[str] = None,
        image_mode: str = "downscale",
    ) -> TaskAnalysis:
        images = await self.encode_images(changed, image_mode)
        prompt = build_prompt(changed, unchanged, contexts, session_description)
        logger.info(
            f"Analyzing capture (Claude): {len(changed)} changed, {len(unchanged)} unchanged monitors"
        )

        status, body = await self._post(self.build_payload(images, prompt))
        if not 200 <= status < 300:
            logger.error(f"Claude API error {status}: {body[:500]}")
            raise ProviderStatusError(status, body)

        try:
            blocks = json.loads(body).get("content") or []
        except (json.JSONDecodeError, AttributeError) as e:
            raise EmptyResponseError(f"Unreadable Claude response: {e}")
        text = next((b.get("text") for b in blocks if b.get("type") == "text"), None)
        logger.debug(f"Raw Claude response text: {text}")
        return parse_analysis(text)
