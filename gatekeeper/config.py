import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    return int(raw_value)


@dataclass(frozen=True)
class OtpPolicy:
    expiry_minutes: int = _env_int("OTP_EXPIRY_MINUTES", 10)
    max_verify_attempts: int = _env_int("OTP_MAX_VERIFY_ATTEMPTS", 3)
    debug: bool = _env_bool("OTP_DEBUG", False)


@dataclass(frozen=True)
class BlacklistPolicy:
    # Abuse ceiling, independent of the sliding-window send limits.
    max_send_attempts: int = _env_int("BLACKLIST_MAX_SEND_ATTEMPTS", 5)
    attempt_window_hours: int = _env_int("BLACKLIST_ATTEMPT_WINDOW_HOURS", 1)
    duration_hours: int = _env_int("BLACKLIST_DURATION_HOURS", 24)


@dataclass(frozen=True)
class RateLimitPolicy:
    send_per_minute: int = _env_int("RATE_LIMIT_SEND_PER_MINUTE", 20)
    send_per_hour: int = _env_int("RATE_LIMIT_SEND_PER_HOUR", 50)
    send_per_day: int = _env_int("RATE_LIMIT_SEND_PER_DAY", 200)
    verify_per_minute: int = _env_int("RATE_LIMIT_VERIFY_PER_MINUTE", 5)
    verify_per_code: int = _env_int("RATE_LIMIT_VERIFY_PER_CODE", 3)
    resend_min_interval_seconds: int = _env_int("RESEND_MIN_INTERVAL_SECONDS", 60)
    resend_max_per_hour: int = _env_int("RESEND_MAX_PER_HOUR", 3)


@dataclass(frozen=True)
class SessionPolicy:
    secret: str = os.getenv("SESSION_SECRET", "")
    algorithm: str = os.getenv("SESSION_ALGORITHM", "HS256")
    session_ttl_seconds: int = _env_int("SESSION_TTL_SECONDS", 86400)
    refresh_token_expire_days: int = _env_int("REFRESH_TOKEN_EXPIRE_DAYS", 30)
    onboarding_path: str = os.getenv("ONBOARDING_PATH", "/onboarding")
    home_path: str = os.getenv("HOME_PATH", "/jobs")


@dataclass(frozen=True)
class CleanupConfig:
    otp_retention_days: int = _env_int("CLEANUP_OTP_RETENTION_DAYS", 7)
    blacklist_retention_days: int = _env_int("CLEANUP_BLACKLIST_RETENTION_DAYS", 30)
    refresh_token_grace_days: int = _env_int("CLEANUP_REFRESH_TOKEN_GRACE_DAYS", 1)
    user_retention_days: int = _env_int("CLEANUP_USER_RETENTION_DAYS", 30)
    cleanup_users: bool = _env_bool("CLEANUP_USERS", False)
    batch_size: int = _env_int("CLEANUP_BATCH_SIZE", 100)


@dataclass(frozen=True)
class Settings:
    environment: str = os.getenv("ENVIRONMENT", "development").strip().lower()
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./gatekeeper.db")
    db_connect_timeout_seconds: int = _env_int("DB_CONNECT_TIMEOUT_SECONDS", 5)
    db_pool_timeout_seconds: int = _env_int("DB_POOL_TIMEOUT_SECONDS", 10)
    db_statement_timeout_ms: int = _env_int("DB_STATEMENT_TIMEOUT_MS", 5000)
    fail_open_on_store_error: bool = _env_bool("FAIL_OPEN_ON_STORE_ERROR", True)
    admin_api_key: str = os.getenv("ADMIN_API_KEY", "")
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "+1")
    cors_origins: tuple[str, ...] = tuple(
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
        if origin.strip()
    )
    otp: OtpPolicy = field(default_factory=OtpPolicy)
    blacklist: BlacklistPolicy = field(default_factory=BlacklistPolicy)
    rate_limit: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    session: SessionPolicy = field(default_factory=SessionPolicy)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
