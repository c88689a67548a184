"""Application configuration using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Chat Relay"
    environment: str = "development"
    log_level: str = "debug"
    debug: bool = True

    # Upstream chat-completions backend (OpenAI-compatible).
    # The key never leaves the proxy.
    api_base_url: str = "http://localhost:8045/v1"
    api_key: str = ""
    upstream_timeout: float = 300.0

    # Models
    default_model: str = "claude-opus-4-5-thinking"
    fallback_model: str = "gemini-3-pro-high"
    fallback_model_label: str = "Gemini 3 Pro High"
    available_models: list[str] = [
        "gemini-2.5-flash",
        "gemini-3-pro-high",
        "gemini-3-flash",
        "claude-sonnet-4-5",
        "claude-sonnet-4-5-thinking",
        "claude-opus-4-5-thinking",
    ]

    # Where the completion client reaches the proxy route
    chat_proxy_url: str = "http://127.0.0.1:8000/api/chat"

    # Storage: "memory" or "mongodb"
    storage_backend: str = "memory"
    mongodb_uri: str = "mongodb://mongodb:27017"
    mongodb_database: str = "chat_relay"

    # CORS
    frontend_url: str = "http://localhost:3000"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def completions_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/chat/completions"


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency for injecting settings."""
    return settings
