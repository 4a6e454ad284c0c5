"""Service configuration — loads environment variables from ``.env`` and the process.

Credentials are optional at import time: a missing key is reported per
request as a ``missing_configuration`` error instead of stopping the server.

Usage:
    from tariffs.config import config
    api_key = config.require_valyu_key()
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from tariffs.errors import MissingConfiguration


def _find_env_file() -> Path | None:
    """Search for .env file starting from this file's directory, then up."""
    current = Path(__file__).resolve().parent.parent  # src/tariff-lens/
    candidates = [
        current / ".env",
        current.parent.parent / ".env",  # repo root
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    # Valyu search / answer / deep research API
    valyu_api_key: str
    valyu_base_url: str
    search_timeout_seconds: float

    # OpenAI chat completions (citation summaries)
    openai_api_key: str
    openai_model: str
    openai_timeout_seconds: float
    summary_max_completion_tokens: int

    # "self-hosted" or "valyu"
    app_mode: str = "self-hosted"

    # Optional JSON file backing the report history store
    report_history_path: str = ""

    port: int = 8000

    def require_valyu_key(self) -> str:
        if not self.valyu_api_key:
            raise MissingConfiguration("VALYU_API_KEY not configured")
        return self.valyu_api_key

    def require_openai_key(self) -> str:
        if not self.openai_api_key:
            raise MissingConfiguration("OPENAI_API_KEY not configured")
        return self.openai_api_key


def _load_config() -> Config:
    """Load configuration from environment."""
    env_file = _find_env_file()
    if env_file:
        load_dotenv(env_file, override=False)

    return Config(
        valyu_api_key=os.environ.get("VALYU_API_KEY", "").strip(),
        valyu_base_url=os.environ.get("VALYU_BASE_URL", "https://api.valyu.ai/v1").rstrip("/"),
        search_timeout_seconds=float(os.environ.get("SEARCH_TIMEOUT_SECONDS", "60")),
        openai_api_key=os.environ.get("OPENAI_API_KEY", "").strip(),
        openai_model=os.environ.get("OPENAI_MODEL", "gpt-4.1"),
        openai_timeout_seconds=float(os.environ.get("OPENAI_TIMEOUT_SECONDS", "120")),
        summary_max_completion_tokens=int(os.environ.get("SUMMARY_MAX_COMPLETION_TOKENS", "3000")),
        app_mode=os.environ.get("APP_MODE", "self-hosted"),
        report_history_path=os.environ.get("REPORT_HISTORY_PATH", ""),
        port=int(os.environ.get("PORT", "8000")),
    )


# Singleton, imported as `from tariffs.config import config`
config = _load_config()
