"""Application settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class Settings:
    """Container object for application configuration."""

    # Application
    APP_NAME: str = "Responsive Scaling Optimizer"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = field(default_factory=lambda: ["*"])

    # Database
    DATABASE_URL: str = "sqlite:///./optimizer.db"
    DB_ECHO: bool = False
    PERSIST_EXPERIMENTS: bool = False

    # Model
    MODEL_PATH: Optional[str] = None
    BATCH_TIMEOUT_SECONDS: float = 300.0

    # Monitoring
    ENABLE_PROMETHEUS_METRICS: bool = True
    LOG_LEVEL: str = "INFO"


# Global settings instance used throughout the backend
settings = Settings()


def get_settings() -> Settings:
    """Return the global settings instance."""

    return settings
