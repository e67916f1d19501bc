from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    # Database – SQLite for local development
    DATABASE_URL: str = "sqlite+aiosqlite:///./breaktracker.db"

    # Redis pub/sub carries statusUpdate / globalStatusUpdate to the socket gateway
    REDIS_URL: str = "redis://localhost:6379/0"
    USE_REDIS_EVENTS: bool = False
    EVENT_CHANNEL_PREFIX: str = "breaktracker"

    # Security – tokens are issued by the auth service, we only verify them
    SECRET_KEY: str = "dev_secret_key_change_in_production_min_32_chars!!"
    ALGORITHM: str = "HS256"

    # Office policy clock
    POLICY_TIMEZONE: str = "Asia/Kolkata"

    # Scheduler. Only one instance may run it; set false on extra replicas.
    SCHEDULER_ENABLED: bool = True
    JOB_TIMEOUT_SECONDS: float = 120.0
    JOB_MISFIRE_GRACE_SECONDS: int = 300

    # Upper bound for a single store unit of work
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Break rules
    CAPPED_BREAK_COHORT: str = "CALLER"
    MAX_CONCURRENT_COHORT_BREAKS: int = 2
    SOFT_LIMIT_COHORT: str = "DEVELOPMENT"
    DAILY_BREAK_LIMIT_MINUTES: int = 60

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
