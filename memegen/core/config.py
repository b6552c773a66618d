import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL (only used when cache_backend == "database")
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "memegen"
    postgres_password: str = "changeme"
    postgres_db: str = "memegen"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Cache / request log storage: "memory" | "database"
    cache_backend: str = "memory"

    # Provider credentials
    zhipu_api_key: str = ""
    kimi_api_key: str = ""

    @property
    def backend_api_keys(self) -> dict[str, str]:
        """Backend id → API key (Zhipu key serves both GLM models)."""
        return {
            "glm-4-air": self.zhipu_api_key,
            "kimi-k2": self.kimi_api_key,
            "glm-4.7": self.zhipu_api_key,
        }

    # Generation
    provider_timeout_seconds: float = 60.0
    admission_timeout_seconds: float = 30.0
    keyword_max_length: int = 100

    # Profanity lexicon (one entry per line); empty = no lexicon
    profanity_lexicon_path: str = ""

    # HTTP throttling per client (slowapi syntax)
    generate_rate_limit: str = "30/minute"

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.cache_backend not in ("memory", "database"):
        errors.append("CACHE_BACKEND must be 'memory' or 'database'")

    if settings.admission_timeout_seconds <= 0:
        errors.append("ADMISSION_TIMEOUT_SECONDS must be positive")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))

    if not any(settings.backend_api_keys.values()):
        logger.warning("No provider API key configured, only templates and cached results can be served")
