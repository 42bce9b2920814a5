import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> str | None:
    """Find .env file, preferring .env.local for local development."""
    for env_file in [".env.local", ".env"]:
        for base in [".", os.environ.get("REPO_ROOT", "")]:
            if base:
                path = Path(base) / env_file
                if path.exists():
                    return str(path)
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./local.db"
    run_migrations: bool = True

    # OpenAI (RCA generation)
    openai_api_key: str = ""
    openai_model: str = "gpt-3.5-turbo"
    openai_base_url: str = ""
    openai_max_tokens: int = 1200
    openai_temperature: float = 0.3
    openai_timeout_s: float = 60.0
    openai_enabled: bool = True
    openai_mock_mode: bool = True
    openai_requests_per_minute: int = 20
    openai_tokens_per_minute: int = 40000
    openai_user_requests_per_minute: int = 5

    # Google Vision (image enrichment)
    vision_enabled: bool = True
    vision_mock_mode: bool = True
    vision_api_key: str = ""
    vision_endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    vision_timeout_s: float = 30.0

    # Blob storage
    blob_root: str = "./blobs"
    blob_public_base_url: str = "http://localhost:8000/blobs"
    blob_signing_secret: str = "local-dev-secret"
    blob_upload_expiry_s: int = 15 * 60
    blob_download_expiry_s: int = 60 * 60

    # Background workers
    worker_pool_size: int = 2
    worker_queue_capacity: int = 50

    # Rate limiting at the API edge
    rate_limiting_enabled: bool = True

    # CORS
    cors_origin: str = ""

    # Logging
    log_level: str = "INFO"


settings = Settings()
