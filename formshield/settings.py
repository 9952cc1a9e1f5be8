from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Read from OS env and optional .env file in project root.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # CORS
    cors_allow_origins: str = Field(
        "http://localhost:8000,http://localhost:3000",
        alias="CORS_ALLOW_ORIGINS",
        description="Allowed CORS origins, comma separated",
    )
    cors_allow_credentials: bool = Field(
        True,
        alias="CORS_ALLOW_CREDENTIALS",
        description="Whether cross-origin requests may carry credentials",
    )

    # Environment / mode
    environment: str = Field(
        "development",
        alias="APP_ENV",
        description="Runtime environment, e.g. development / production",
    )
    api_docs_override: bool | None = Field(
        default=None,
        alias="ENABLE_API_DOCS",
        description=(
            "Force FastAPI docs routes (/docs, /redoc, /openapi.json) on or off; "
            "by default they are disabled when APP_ENV=production"
        ),
    )
    trust_proxy: bool = Field(
        False,
        alias="TRUST_PROXY",
        description="Take the client address from X-Forwarded-For / X-Real-IP",
    )

    # Redis connection string
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL, e.g. 'redis://redis:6379/0'",
    )
    redis_socket_timeout: float = Field(
        2.0,
        alias="REDIS_SOCKET_TIMEOUT",
        description="Socket read/write timeout for Redis commands (seconds)",
        gt=0,
    )
    redis_connect_timeout: float = Field(
        2.0,
        alias="REDIS_CONNECT_TIMEOUT",
        description="Connect timeout for Redis (seconds)",
        gt=0,
    )
    store_operation_timeout: float = Field(
        3.0,
        alias="STORE_OPERATION_TIMEOUT",
        description="Upper bound for a single session/rate-limit store operation (seconds)",
        gt=0,
    )
    database_url: str = Field(
        "sqlite:///./formshield.db",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL for accepted submissions",
    )

    # Sessions / honeypot
    session_ttl_seconds: int = Field(
        600,
        alias="SESSION_TTL",
        description="Lifetime of an unused form session (seconds)",
        gt=0,
    )
    session_used_ttl_seconds: int = Field(
        300,
        alias="SESSION_USED_TTL",
        description="How long a used session is kept for replay detection (seconds)",
        gt=0,
    )
    session_key_prefix: str = Field(
        "session:",
        alias="SESSION_PREFIX",
        description="Redis key prefix for session records",
    )
    session_max_attempts: int = Field(
        5,
        alias="SESSION_MAX_ATTEMPTS",
        description="Invalid submissions allowed per session before it is locked",
        ge=1,
    )
    honeypot_prefix: str = Field(
        "_hp_",
        alias="HONEYPOT_PREFIX",
        description="Prefix shared by every generated decoy field name",
    )
    honeypot_enabled: bool = Field(
        True,
        alias="HONEYPOT_ENABLED",
        description="Run the decoy-field spam check on submissions",
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(
        True,
        alias="RATE_LIMIT_ENABLED",
        description="Apply the per-client submission limit",
    )
    rate_limit_max_requests: int = Field(
        100,
        alias="RATE_LIMIT_MAX",
        description="Submissions allowed per client within one window",
        ge=1,
    )
    rate_limit_window_seconds: int = Field(
        3600,
        alias="RATE_LIMIT_WINDOW",
        description="Fixed rate-limit window length (seconds)",
        gt=0,
    )
    rate_limit_key_prefix: str = Field(
        "rate_limit:",
        alias="RATE_LIMIT_PREFIX",
        description="Redis key prefix for rate-limit counters",
    )

    # Submitted field map limits
    max_fields: int = Field(
        50,
        alias="SUBMISSION_MAX_FIELDS",
        description="Maximum number of fields accepted in one submission",
        ge=1,
    )
    max_field_name_length: int = Field(
        100,
        alias="SUBMISSION_MAX_FIELD_NAME_LENGTH",
        description="Maximum length of a submitted field name",
        ge=1,
    )
    max_field_value_length: int = Field(
        10000,
        alias="SUBMISSION_MAX_FIELD_VALUE_LENGTH",
        description="Maximum length of a submitted field value",
        ge=1,
    )

    # Application log level for our formshield logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: str | None = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Europe/Moscow'. Defaults to system local time.",
    )
    log_dir: str = Field(
        "logs",
        alias="LOG_DIR",
        description="Log directory (relative paths resolve against the project root)",
    )
    log_backup_count: int = Field(
        7,
        alias="LOG_BACKUP_COUNT",
        description="Keep the newest N daily log files; 0 disables cleanup",
        ge=0,
    )

    @property
    def enable_api_docs(self) -> bool:
        """
        Whether FastAPI docs routes are mounted.
        Defaults to on outside production; ENABLE_API_DOCS overrides.
        """
        if self.api_docs_override is not None:
            return self.api_docs_override
        return self.environment.lower() != "production"

    @property
    def cors_origins(self) -> list[str]:
        if not self.cors_allow_origins:
            return []
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


settings = Settings()  # Reads from environment if available
