"""
Configuration management for the Nobridge realtime service.

Handles environment-based configuration for development and production.
"""
import os
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase project (realtime change feed on the messages table)
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL", None)
    supabase_anon_key: Optional[str] = os.getenv("SUPABASE_ANON_KEY", None)

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Debug - handle non-boolean values gracefully
    debug: bool = False

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        """Parse debug from environment, handling non-boolean values."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes")
        debug_env = os.getenv("DEBUG", "false").lower()
        return debug_env in ("true", "1", "yes")

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # CORS
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

    # Realtime reconnection backoff (milliseconds)
    realtime_reconnect_base_ms: int = int(os.getenv("REALTIME_RECONNECT_BASE_MS", "1000"))
    realtime_reconnect_max_ms: int = int(os.getenv("REALTIME_RECONNECT_MAX_MS", "30000"))

    # Change feed source for conversation messages
    realtime_messages_schema: str = os.getenv("REALTIME_MESSAGES_SCHEMA", "public")
    realtime_messages_table: str = os.getenv("REALTIME_MESSAGES_TABLE", "messages")

    class Config:
        # Load .env from project root (nobridge/core/config.py -> parent.parent.parent)
        env_file = str(Path(__file__).resolve().parent.parent.parent / ".env")
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file


# Global settings instance
settings = Settings()


REQUIRED_SUPABASE_SETTINGS = {
    "supabase_url": "SUPABASE_URL (Supabase project URL)",
    "supabase_anon_key": "SUPABASE_ANON_KEY (Supabase anonymous key)",
}


def validate_supabase_settings(cfg: Optional[Settings] = None) -> List[str]:
    """Return the environment variables still missing for a Supabase connection."""
    cfg = cfg or settings
    missing = []
    for field, description in REQUIRED_SUPABASE_SETTINGS.items():
        value = getattr(cfg, field, None)
        if not value or not str(value).strip():
            missing.append(description)
    return missing
