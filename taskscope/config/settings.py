from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    """Application settings with validation"""

    # API Configuration
    ANTHROPIC_API_KEY: Optional[str] = None
    CLAUDE_MODEL_NAME: str = "claude-sonnet-4-5-20250929"
    CLAUDE_API_URL: str = "https://api.anthropic.com/v1/messages"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL_NAME: str = "gemini-1.5-flash"
    OLLAMA_HOST: str = "http://localhost:11434"
    OLLAMA_MODEL_NAME: str = "qwen3-vl:8b"

    # Capture Configuration
    DEFAULT_CAPTURE_INTERVAL_SECONDS: float = 30.0
    CHANGE_THRESHOLD: int = 10

    # Analysis Configuration
    ANALYSIS_MAX_WIDTH: int = 1280
    CONTEXT_WINDOW_SIZE: int = 2
    EMPTY_RESPONSE_RETRY_DELAY_SECONDS: float = 3.0
    PROVIDER_TIMEOUT_SECONDS: float = 120.0
    OLLAMA_READY_ATTEMPTS: int = 20
    OLLAMA_READY_INTERVAL_SECONDS: float = 0.5

    # Path Configuration
    BASE_DIR: Path = Path(__file__).parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    SCREENSHOTS_DIR: Path = DATA_DIR / "screenshots"
    LOG_DIR: Path = BASE_DIR / "logs"
    DEFAULT_DB_PATH: Path = DATA_DIR / "taskscope.db"

    # Web Configuration
    WEB_PORT: int = 8000
    WEB_HOST: str = "localhost"

    # Development Configuration
    DEBUG: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    def validate_paths(self) -> None:
        """Ensure all required paths exist"""
        for path in [self.DATA_DIR, self.SCREENSHOTS_DIR, self.LOG_DIR]:
            path.mkdir(parents=True, exist_ok=True)

settings = Settings()
