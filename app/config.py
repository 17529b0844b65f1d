# app/config.py
"""
Application configuration using Pydantic-Settings.
All settings can be overridden via environment variables or .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Storage ───────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite:///./autotrack.db"
    STORAGE_BACKEND: str = "sql"        # sql | memory
    DATA_KEY: str = "autotrack_data"
    SESSION_KEY: str = "autotrack_user"

    # ── Network ───────────────────────────────────────────────────────────
    BACKEND_HOST: str = "127.0.0.1"
    BACKEND_PORT: int = 3000

    # ── Security ──────────────────────────────────────────────────────────
    ACCESS_MODE: str = "roles"          # roles | single_admin
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"
    VIEWER_USERNAME: Optional[str] = None
    VIEWER_PASSWORD: Optional[str] = None

    # ── Records ───────────────────────────────────────────────────────────
    MAX_IMAGE_CHARS: int = 2_000_000    # base64 characters

    # ── Live Assistant ────────────────────────────────────────────────────
    GEMINI_API_KEY: Optional[str] = None
    LIVE_MODEL: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    LIVE_VOICE: str = "Zephyr"
    INPUT_SAMPLE_RATE: int = 16000
    OUTPUT_SAMPLE_RATE: int = 24000
    FRAME_SAMPLES: int = 4096
    TRANSCRIPT_LINES: int = 5

    # ── Logging ───────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    @property
    def CREDENTIALS(self) -> dict:
        creds = {self.ADMIN_USERNAME: {"password": self.ADMIN_PASSWORD, "role": "admin"}}
        if self.VIEWER_USERNAME and self.VIEWER_PASSWORD:
            creds[self.VIEWER_USERNAME] = {"password": self.VIEWER_PASSWORD, "role": "viewer"}
        return creds

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
