from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    # Remote backend (hosted Postgres behind a PostgREST API)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    REMOTE_TIMEOUT_SECONDS: float = 10.0
    REMOTE_MAX_ATTEMPTS: int = 3
    REMOTE_BACKOFF_SECONDS: float = 0.3
    ENFORCE_STOCK: bool = True

    # Local durable store
    LOCAL_DATABASE_URL: str = "sqlite:///./storefront.db"

    # Read cache
    CACHE_TTL_SECONDS: float = 300.0
    REDIS_URL: Optional[str] = None

    # Admin gate
    ADMIN_PASSWORD: str = "admin123"
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    ADMIN_TOKEN_MINUTES: int = 480

    UPLOAD_DIR: str = "./uploads"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

def is_remote_configured(settings: Settings) -> bool:
    """Both the service URL and the access key must be present and non-blank."""
    url = (settings.SUPABASE_URL or "").strip()
    key = (settings.SUPABASE_ANON_KEY or "").strip()
    return bool(url and key)

@lru_cache
def get_settings() -> Settings:
    return Settings()
