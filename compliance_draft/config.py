"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Compliance Form Builder"
    debug: bool = True
    mock_mode: bool = True  # When True, the in-memory backend replaces the REST API

    # ── Backend API ──────────────────────────────────────
    api_base_url: str = "http://localhost:3001/api/pld-builder"
    api_timeout_seconds: float = 30.0
    api_token: str = ""

    # ── Autosave ─────────────────────────────────────────
    autosave_debounce_ms: int = 350
    max_files_per_slot: int = 5

    # ── Draft limits ─────────────────────────────────────
    trial_mode: bool = False
    trial_max_sections: int = 3
    trial_max_questions: int = 3
    default_section_item: str = "Política (PI)"

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "BUILDER_",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
