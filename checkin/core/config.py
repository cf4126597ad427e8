"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Event Check-in Validator"
    debug: bool = False
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all

    # Database
    database_url: str = "sqlite:///./checkin.db"

    # AWS Rekognition
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    face_collection_id: str = "eventify-ai-faces"

    # Matching
    match_threshold: float = 85.0
    max_image_bytes: int = 5 * 1024 * 1024
    min_face_confidence: float = 80.0
    search_max_faces: int = 5
    name_fallback_enabled: bool = True  # Tolerate records enrolled before keys were linked

    # Provider call policy
    provider_timeout_seconds: float = 5.0
    provider_max_retries: int = 2
    provider_backoff_base_ms: int = 200

    # Audit trail
    audit_retention_days: int = 90
    audit_purge_interval_hours: int = 24


settings = Settings()
