from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List, Optional

class Settings(BaseSettings):
    """Configuration settings for the application, loaded from .env file."""

    # Application Settings
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    CORS_ORIGINS: str = "*"

    # Database configuration
    DATABASE_URL: str

    # Rate limiting
    DEFAULT_RATELIMIT: str = "1000/minute"
    TRACK_RATE_LIMIT: int = 100
    LOGIN_RATE_LIMIT: int = 5
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_MAX_KEYS: int = 10000
    # Reverse proxies in front of the app whose X-Forwarded-For entries are trusted
    TRUSTED_PROXY_HOPS: int = 0

    # Redis Settings (shared rate-limit counters, optional)
    REDIS_URL: Optional[str] = None

    # Admin credentials and token signing
    ANALYTICS_JWT_SECRET: str
    ANALYTICS_ADMIN_EMAIL: str
    ANALYTICS_ADMIN_PASSWORD_HASH: str
    ADMIN_PASSWORD: Optional[str] = None
    TOKEN_TTL_HOURS: int = 24
    TOKEN_ALGORITHM: str = "HS256"

    # Privacy
    ANALYTICS_IP_SALT: str

    class Config:
        env_file = Path(__file__).resolve().parent.parent / ".env"
        env_file_encoding = 'utf-8'
        extra = "ignore" # Ignore extra fields from .env

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def rate_limit_storage_uri(self) -> str:
        return self.REDIS_URL or "memory://"

# Create a single, globally importable settings instance
settings = Settings()
