import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        session_max_age_hours: int,
        cookie_secure: bool,
        default_currency: str,
        recurring_catch_up: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.session_max_age_hours = session_max_age_hours
        self.cookie_secure = cookie_secure
        self.default_currency = default_currency
        self.recurring_catch_up = recurring_catch_up


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "UTC")
    secret_key = os.getenv(
        "FINTRACK_SECRET_KEY",
        "3f0b6c1d8e2a4b7f9c5d1e0a6b8c2d4f7e9a1b3c5d7f0e2a4c6b8d0f1e3a5c7b",
    )
    session_max_age_hours = int(os.getenv("FINTRACK_SESSION_MAX_AGE_HOURS", "168"))
    cookie_secure = _env_flag("FINTRACK_COOKIE_SECURE", "0")
    default_currency = os.getenv("FINTRACK_DEFAULT_CURRENCY", "$")
    recurring_catch_up = _env_flag("FINTRACK_RECURRING_CATCH_UP", "1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        session_max_age_hours=session_max_age_hours,
        cookie_secure=cookie_secure,
        default_currency=default_currency,
        recurring_catch_up=recurring_catch_up,
    )
