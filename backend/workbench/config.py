"""Runtime settings for the workbench backend."""

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    DATABASE_URL: str = "sqlite:///./workbench.db"

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_ISSUER: str = "postman-clone-api"
    JWT_AUDIENCE: str = "postman-clone-client"
    ACCESS_TOKEN_TTL_SECONDS: int = 7 * 24 * 3600

    # Outbound execution
    EXECUTION_TIMEOUT_MS: int = 30000
    FOLLOW_REDIRECTS: bool = True

    HISTORY_DEFAULT_LIMIT: int = 50
    HISTORY_MAX_LIMIT: int = 500

    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    global _settings_cache
    _settings_cache = None
