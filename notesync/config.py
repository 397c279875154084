"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "NoteSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Local storage ---
    database_path: str = "./data/notesync.db"

    # --- Remote store ---
    remote_base_url: str = "http://localhost:3000"
    remote_ingest_path: str = "/api/ingestion"
    remote_health_path: str = "/health"
    remote_api_token: str = ""  # optional bearer token
    remote_timeout_seconds: float = 10.0

    # --- Connectivity ---
    connectivity_initial_online: bool = True
    connectivity_probe_interval_seconds: float = 15.0  # 0 disables the probe
    sync_on_startup: bool = True

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
