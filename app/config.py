from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Registry database (tenants table)
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # Tenant store routing
    TENANT_ISOLATION: str = "schema"  # "schema" (shared engine) or "database" (engine per tenant)
    TENANT_DATABASE_URL_TEMPLATE: Optional[str] = None  # e.g. "postgresql+psycopg://u:p@host/{selector}"
    TENANT_DB_PREFIX: str = "tenant"
    TENANT_CACHE_SIZE: int = 50
    TENANT_ALLOW_UNRESOLVED: bool = False  # Use raw identifier when registry lookup fails

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12

    # App Settings
    APP_NAME: str = "HRMS Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # HR defaults
    DEFAULT_TIMEZONE: str = "UTC"  # Used when a tenant has no attendance timezone
    DEFAULT_LEAVE_COLOR: str = "#3b82f6"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('TENANT_ISOLATION')
    @classmethod
    def validate_isolation(cls, v):
        if v not in ("schema", "database"):
            raise ValueError("TENANT_ISOLATION must be 'schema' or 'database'")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
