"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Hosted data service (REST + auth endpoints of the same project)
    data_service_url: str = "http://localhost:54321"
    data_service_key: str = ""
    request_timeout: float = 10.0

    # API process
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def rest_url(self) -> str:
        """Base URL of the table endpoints."""
        return f"{self.data_service_url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        """Base URL of the auth endpoints."""
        return f"{self.data_service_url.rstrip('/')}/auth/v1"


settings = Settings()
