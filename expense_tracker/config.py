"""Runtime configuration for the app (replaceable during tests/runtime)."""
import os
from typing import NamedTuple, Optional

from dotenv import load_dotenv


class Settings(NamedTuple):
    database_url: str = "sqlite:///./expense_tracker.db"
    db_pool_size: int = 5
    db_pool_timeout: int = 30
    jwt_secret: str = "dev-secret"
    jwt_exp_seconds: int = 60 * 60 * 24  # 1 day
    reset_base_url: str = "http://localhost:8000"
    # 0 disables expiry; tokens then only die through the active flag
    reset_token_ttl_minutes: int = 60
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    premium_amount: int = 4500
    premium_currency: str = "inr"
    log_level: str = "INFO"


def _get_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {key} must be an integer") from exc


def load_settings() -> Settings:
    """Build settings from the environment, reading a local .env first."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        db_pool_size=_get_int("DB_POOL_SIZE", defaults.db_pool_size),
        db_pool_timeout=_get_int("DB_POOL_TIMEOUT", defaults.db_pool_timeout),
        jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
        jwt_exp_seconds=_get_int("JWT_EXP_SECONDS", defaults.jwt_exp_seconds),
        reset_base_url=os.getenv("RESET_BASE_URL", defaults.reset_base_url).rstrip("/"),
        reset_token_ttl_minutes=_get_int("RESET_TOKEN_TTL_MINUTES", defaults.reset_token_ttl_minutes),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=_get_int("SMTP_PORT", defaults.smtp_port),
        smtp_username=os.getenv("SMTP_USERNAME", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_from_email=os.getenv("SMTP_FROM_EMAIL", ""),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_publishable_key=os.getenv("STRIPE_PUBLISHABLE_KEY", ""),
        premium_amount=_get_int("PREMIUM_AMOUNT", defaults.premium_amount),
        premium_currency=os.getenv("PREMIUM_CURRENCY", defaults.premium_currency).lower(),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )


# Loaded lazily on first access
state: Optional[Settings] = None


def set_settings(value: Settings):
    global state
    state = value


def get_settings() -> Settings:
    global state
    if state is None:
        state = load_settings()
    return state
