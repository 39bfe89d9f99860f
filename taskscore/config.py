from pydantic import BaseModel
import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    api_token: str | None = os.getenv("API_TOKEN") or None
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    sheet_id: str | None = os.getenv("SHEET_ID") or None
    google_api_key: str | None = os.getenv("GOOGLE_API_KEY") or None
    sheet_range: str = os.getenv("SHEET_RANGE", "Sheet1!A:J")
    sheets_base_url: str = os.getenv("SHEETS_BASE_URL", "https://sheets.googleapis.com")

    llm_provider: str = os.getenv("LLM_PROVIDER", "gemini")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://host.docker.internal:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "qwen3:14b")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", 120))

    pacing_seconds: float = float(os.getenv("PACING_SECONDS", 0.5))
    retry_max_attempts: int = int(os.getenv("RETRY_MAX_ATTEMPTS", 3))
    retry_base_delay: float = float(os.getenv("RETRY_BASE_DELAY", 1.0))
    auto_select_first_date: bool = _flag("AUTO_SELECT_FIRST_DATE")

    max_status_longpoll_seconds: int = int(os.getenv("MAX_STATUS_LONGPOLL_SECONDS", 120))

settings = Settings()
