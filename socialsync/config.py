"""Application configuration settings."""
import os
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings

# Find the .env file whether CWD is the repository root or the package dir
_here = os.path.dirname(os.path.abspath(__file__))           # .../socialsync
_pkg_env = os.path.join(_here, ".env")                        # .../socialsync/.env
_root_env = os.path.join(_here, "..", ".env")                 # .../.env
_env_file = _pkg_env if os.path.exists(_pkg_env) else (_root_env if os.path.exists(_root_env) else ".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote backend ("memory" keeps everything in-process, "rest" talks to the hosted API)
    backend_mode: str = "memory"
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = ""
    backend_access_token: str = ""
    request_timeout_seconds: float = 15.0

    # Realtime transport (REST mode polls for INSERTs)
    realtime_poll_interval_seconds: float = 2.0

    # Local device storage
    storage_database_url: str = "sqlite+aiosqlite:///./socialsync_state.db"

    # Badges / polling
    badge_refresh_interval_seconds: float = 30.0
    badge_cap: int = 99
    chat_badge_cap: int = 9

    # Messaging
    message_max_length: int = 1000
    temp_id_prefix: str = "temp_"
    reconcile_window_seconds: int = 120
    preview_length: int = 50

    # Notifications
    notifications_last_seen_key: str = "notifications_last_seen"
    notification_batched_queries: bool = True

    # Application
    log_level: str = "INFO"
    debug: bool = False
    project_name: str = "SocialSync"
    api_v1_prefix: str = "/api/v1"
    cors_origins: List[str] = ["http://localhost:8081", "http://localhost:19006"]

    @property
    def uses_rest_backend(self) -> bool:
        """Check if the hosted REST backend is selected."""
        return self.backend_mode.lower() == "rest"

    @property
    def has_backend_credentials(self) -> bool:
        """Check if the REST backend URL and anon key are configured."""
        return bool(self.backend_url and self.backend_anon_key)

    class Config:
        env_file = _env_file
        env_file_encoding = "utf-8"
        env_prefix = "SOCIALSYNC_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
