from typing import Optional

from taskscope.config.config import RuntimeConfig
from taskscope.services.analyzers.base import AnalysisProvider, ChangedMonitor, UnchangedMonitor
from taskscope.services.image import ImageManager


def create_analyzer(config: RuntimeConfig, image_manager: Optional[ImageManager] = None) -> AnalysisProvider:
    """Build the provider selected by the ``ai_provider`` setting"""
    if config.ai_provider == "ollama":
        from taskscope.services.analyzers.ollama import OllamaAnalyzer
        return OllamaAnalyzer(model_name=config.ollama_model, image_manager=image_manager)
    if config.ai_provider == "gemini":
        from taskscope.services.analyzers.gemini import GeminiAnalyzer
        return GeminiAnalyzer(api_key=config.ai_api_key, image_manager=image_manager)
    from taskscope.services.analyzers.claude import ClaudeAnalyzer
    return ClaudeAnalyzer(api_key=config.ai_api_key, image_manager=image_manager)


__all__ = [
    'AnalysisProvider',
    'ChangedMonitor',
    'UnchangedMonitor',
    'create_analyzer',
]
