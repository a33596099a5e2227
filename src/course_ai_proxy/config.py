"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class AdmissionMode(StrEnum):
    """What the local engine gate does with requests over the limit."""

    QUEUE = "queue"
    REJECT = "reject"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets (provider key, settings-store token) use SecretStr so they
    never show up in repr or logs. Both the proxy and the companion
    local-engine server read from this one class.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    # --- CORS ---
    cors_allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]
    cors_allow_credentials: bool = True
    cors_allowed_methods: list[str] = ["GET", "POST", "PUT"]
    cors_allowed_headers: list[str] = ["Content-Type", "Authorization"]

    # --- Credential sources (first hit wins) ---
    groq_api_key: SecretStr | None = None
    firebase_project_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "firebase_project_id",
            "FIREBASE_PROJECT_ID",
            "NEXT_PUBLIC_FIREBASE_PROJECT_ID",
        ),
    )
    firestore_base_url: str = "https://firestore.googleapis.com/v1"
    settings_collection: str = "ai_settings"
    settings_document: str = "default"
    settings_api_key_field: str = "groqApiKey"
    # Optional bearer token for service-authenticated document reads.
    settings_store_token: SecretStr | None = None
    settings_lookup_timeout: float = 5.0

    # --- Cloud provider (OpenAI-compatible chat completions) ---
    cloud_base_url: str = "https://api.groq.com/openai/v1"
    cloud_provider_label: str = "Groq"
    cloud_default_model: str = "llama3-8b-8192"
    default_temperature: float = 0.7
    default_max_tokens: int = Field(default=1024, gt=0)
    upstream_connect_timeout: float = 10.0

    # --- Local fallback provider (companion server) ---
    local_fallback_enabled: bool = False
    local_provider_url: str = "http://localhost:3001"
    local_provider_label: str = "Local AI"
    # Empty means "whatever model the companion currently has active".
    local_model: str | None = None

    # --- Companion local-engine server ---
    ai_host: str = "127.0.0.1"
    ai_port: int = 3001
    ollama_url: str = "http://localhost:11434"
    local_default_model: str = "llama3"
    local_max_concurrent: int = Field(default=2, ge=1)
    local_admission_mode: AdmissionMode = AdmissionMode.QUEUE
    # Seconds a queued request may wait before it is turned away as busy.
    local_queue_timeout: float | None = None
    warmup_timeout: float = 120.0

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from course_ai_proxy.config import get_settings
        settings = get_settings()
    """
    return Settings()


settings = get_settings()
