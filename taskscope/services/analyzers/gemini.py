import asyncio
import base64
import logging
from typing import Optional, Sequence

import google.generativeai as genai

from taskscope.config.settings import settings
from taskscope.models import TaskAnalysis
from taskscope.services.analyzers.base import AnalysisProvider, ChangedMonitor, UnchangedMonitor
from taskscope.services.analyzers.prompts import build_prompt, parse_analysis
from taskscope.services.errors import ConfigError, EmptyResponseError, ProviderUnavailableError
from taskscope.services.image import ImageManager

logger = logging.getLogger(__name__)


class GeminiAnalyzer(AnalysisProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = settings.GEMINI_MODEL_NAME,
        image_manager: Optional[ImageManager] = None,
    ):
        super().__init__(image_manager)
        api_key = api_key or settings.GEMINI_API_KEY
        if not api_key:
            raise ConfigError("Gemini provider requires an API key (ai_api_key or GEMINI_API_KEY)")
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            model_name=model_name,
            generation_config=genai.types.GenerationConfig(
                temperature=0.1,
                max_output_tokens=2048,
                candidate_count=1,
                response_mime_type="application/json"
            )
        )

    async def analyze(
        self,
        changed: Sequence[ChangedMonitor],
        unchanged: Sequence[UnchangedMonitor],
        contexts: Sequence[str],
        session_description: Optional[str] = None,
        image_mode: str = "downscale",
    ) -> TaskAnalysis:
        """Analyze a capture group using the Gemini Vision API"""
        images = await self.encode_images(changed, image_mode)
        image_parts = [
            {"mime_type": "image/webp", "data": base64.b64decode(data)}
            for data in images
        ]
        prompt = build_prompt(changed, unchanged, contexts, session_description)
        logger.info(
            f"Analyzing capture (Gemini): {len(changed)} changed, {len(unchanged)} unchanged monitors"
        )

        try:
            response = await asyncio.to_thread(
                self.model.generate_content,
                contents=[prompt] + image_parts,
                stream=False
            )
        except Exception as e:
            logger.error(f"Gemini request failed: {e}")
            raise ProviderUnavailableError(f"Gemini request failed: {e}")

        try:
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or has no parts
            raise EmptyResponseError(f"Empty response from Gemini: {e}")
        return parse_analysis(text)
