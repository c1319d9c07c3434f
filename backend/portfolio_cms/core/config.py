import os
from typing import Annotated, Optional, List, Literal
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import Field, field_validator, model_validator


class Settings(BaseSettings):
    """
    Portfolio CMS application configuration
    Manages all environment variables with validation and type safety
    """

    # Basic application settings
    APP_NAME: str = "Portfolio CMS"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment (development|production|test)"
    )
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # API settings
    API_PREFIX: str = "/api"
    ALLOWED_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=["*"],
        description="Allowed CORS origins, '*' reflects any origin"
    )

    # Persistence
    PERSISTENCE_BACKEND: Literal["sqlalchemy", "supabase"] = Field(
        default="sqlalchemy",
        description="Repository backend used by the route handlers"
    )
    DATABASE_URL: Optional[str] = Field(
        default=None,
        repr=False,
        description="SQLAlchemy database URL, overrides the DB_* parts"
    )
    DB_HOST: Optional[str] = None
    DB_PORT: int = 5432
    DB_NAME: str = "portfolio"
    DB_USER: str = "postgres"
    DB_PASSWORD: Optional[str] = Field(default=None, repr=False)
    DB_SSL: bool = False

    # Connection pool bounds
    DB_POOL_MIN: int = Field(default=5, ge=1, description="Minimum pool connections")
    DB_POOL_MAX: int = Field(default=10, ge=1, description="Initial maximum pool connections")
    DB_POOL_MAX_SCALABLE: int = Field(default=20, ge=1, description="Hard cap the scaler may grow to")
    DB_POOL_TIMEOUT: int = Field(default=20, description="Seconds to wait for a pooled connection")
    DB_POOL_RECYCLE: int = Field(default=1800, description="Seconds before a pooled connection is recycled")

    # Supabase hosted backend
    SUPABASE_URL: Optional[str] = Field(
        default=None,
        description="Supabase project URL (https://<ref>.supabase.co)"
    )
    SUPABASE_KEY: Optional[str] = Field(
        default=None,
        repr=False,
        description="Supabase service role or anon key"
    )
    SUPABASE_TIMEOUT: int = Field(default=10, description="Supabase REST request timeout in seconds")

    # Security
    JWT_SECRET: str = Field(
        ...,
        repr=False,
        min_length=32,
        description="Secret used to sign access tokens"
    )
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = Field(
        default=24 * 60,
        description="Access token lifetime in minutes"
    )

    # Default administrator created at startup when no admin exists
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_EMAIL: str = "admin@example.com"
    DEFAULT_ADMIN_PASSWORD: Optional[str] = Field(default=None, repr=False)

    # File uploads
    UPLOAD_PATH: str = Field(default="./uploads", description="Directory uploaded files are written to")
    PUBLIC_BASE_URL: str = Field(
        default="",
        description="Prefix for public file URLs, empty for host-relative URLs"
    )
    MAX_FILE_SIZE: int = Field(
        default=5 * 1024 * 1024,  # 5MB
        description="Maximum file upload size in bytes"
    )
    MAX_FILES_PER_REQUEST: int = Field(default=20, description="Maximum files in one request")
    MAX_CONCURRENT_UPLOADS: int = Field(default=5, ge=1, description="Concurrent upload ceiling")
    FILE_PROCESSING_TIMEOUT: float = Field(
        default=30.0,
        description="Wall-clock seconds allowed for one upload request"
    )

    # Pool monitor and scaler
    POOL_MONITOR_ENABLED: bool = True
    POOL_MONITOR_INTERVAL: float = Field(default=60.0, description="Seconds between pool samples")
    POOL_HIGH_USAGE_ALERT: int = Field(default=80, ge=0, le=100)
    POOL_SCALE_UP_THRESHOLD: int = Field(default=80, ge=0, le=100)
    POOL_SCALE_DOWN_THRESHOLD: int = Field(default=30, ge=0, le=100)
    POOL_SCALE_UP_STEP: int = Field(default=2, ge=1)
    POOL_SCALE_DOWN_STEP: int = Field(default=1, ge=1)
    POOL_SCALE_UP_COOLDOWN: float = Field(default=60.0, description="Seconds between scale-ups")
    POOL_SCALE_DOWN_COOLDOWN: float = Field(default=300.0, description="Seconds between scale-downs")
    POOL_HISTORY_SIZE: int = Field(default=100, ge=1)
    POOL_SCHEDULE_MODE: Literal["fixed", "random"] = Field(
        default="fixed",
        description="fixed runs actions every N ticks, random runs them with probability 1/N"
    )
    POOL_SCALE_EVERY_N_TICKS: int = Field(default=1, ge=0)
    POOL_CLEANUP_EVERY_N_TICKS: int = Field(default=2, ge=0)
    POOL_HEALTH_EVERY_N_TICKS: int = Field(default=10, ge=0)

    # Database health checker
    HEALTH_CHECK_INTERVAL: float = 30.0
    HEALTH_CHECK_TIMEOUT: float = 5.0
    HEALTH_FAILURE_THRESHOLD: int = Field(default=3, ge=1)

    # Process crash handling
    SHUTDOWN_ON_UNCAUGHT_EXCEPTION: bool = Field(
        default=True,
        description="Stop the server after an uncaught exception in a thread or the event loop",
    )

    # Service self-monitor
    SERVICE_MONITOR_ENABLED: bool = True
    SERVICE_BASE_URL: Optional[str] = Field(
        default=None,
        description="Base URL the service monitor polls, defaults to http://127.0.0.1:PORT"
    )
    SERVICE_CHECK_INTERVAL: float = 60.0
    SERVICE_TIMEOUT: float = 10.0
    SERVICE_ALERT_THRESHOLD: int = 3
    SERVICE_ALERT_COOLDOWN: float = 300.0

    # Memory monitor
    MEMORY_CHECK_INTERVAL: float = 3600.0
    MEMORY_WARNING_THRESHOLD_MB: int = 1024

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "./logs"

    # Static frontend
    FRONTEND_PATH: Optional[str] = Field(
        default=os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))), "frontend"),
        description="Directory served at / when it exists"
    )

    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True
    )

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v):
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters")
        return v

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("PUBLIC_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_pool_bounds(self):
        if not self.DB_POOL_MIN <= self.DB_POOL_MAX <= self.DB_POOL_MAX_SCALABLE:
            raise ValueError(
                "Pool bounds must satisfy DB_POOL_MIN <= DB_POOL_MAX <= DB_POOL_MAX_SCALABLE"
            )
        if self.PERSISTENCE_BACKEND == "supabase" and not (self.SUPABASE_URL and self.SUPABASE_KEY):
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        """Resolve the async SQLAlchemy URL from DATABASE_URL or the DB_* parts"""
        if self.DATABASE_URL:
            url = self.DATABASE_URL
        elif self.DB_HOST:
            password = f":{quote_plus(self.DB_PASSWORD)}" if self.DB_PASSWORD else ""
            url = f"postgresql://{self.DB_USER}{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        else:
            return "sqlite+aiosqlite:///./portfolio.db"

        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


# Global settings instance
settings = Settings()
