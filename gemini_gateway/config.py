"""
Configuration Management Module

Configures application parameters via environment variables or .env file.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application Configuration Class

    All configuration items can be overridden by environment variables, with names matching fields (uppercase).
    """

    # Application Config
    APP_NAME: str = "Gemini Gateway"
    DEBUG: bool = False

    # Upstream Gemini API Config
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"
    GEMINI_API_VERSION: str = "v1beta"
    # Client identifier sent as x-goog-api-client
    GEMINI_API_CLIENT: str = "genai-js/0.21.0"

    # HTTP Client Config
    # Request timeout (seconds)
    HTTP_TIMEOUT: int = 600

    # Model Config
    # Used when the requested model is missing or not a known Gemini family
    DEFAULT_MODEL: str = "gemini-2.0-flash"
    # Used for embeddings unless a "models/" prefixed name is requested
    DEFAULT_EMBEDDINGS_MODEL: str = "text-embedding-004"

    # Streaming Config
    # finish_reason for a candidate whose last upstream frame carried none
    STREAM_DEFAULT_FINISH_REASON: str = "stop"

    # CORS Config
    # Comma-separated list of allowed origins, "*" allows any origin
    ALLOWED_ORIGINS: str = "*"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def gemini_api_root(self) -> str:
        """Base URL joined with the API version, without trailing slash"""
        return f"{self.GEMINI_BASE_URL.rstrip('/')}/{self.GEMINI_API_VERSION}"


@lru_cache()
def get_settings() -> Settings:
    """
    Get application configuration (Singleton)

    Uses lru_cache to ensure configuration is loaded only once.

    Returns:
        Settings: Application configuration instance
    """
    return Settings()
