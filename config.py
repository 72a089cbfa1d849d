import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_hours: int,
        cors_origins: list[str],
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.cors_origins = cors_origins
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FLOWFINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "flowfinance.db"
    database_url = os.getenv("FLOWFINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FLOWFINANCE_TIMEZONE", "Asia/Kolkata")
    token_secret = os.getenv(
        "FLOWFINANCE_TOKEN_SECRET",
        "6f1d0c9a57e2b4c8a3e9f0d21b7c64e58a9d3f12c0b4e6a7d8f9e0a1b2c3d4e5",
    )
    token_max_age_hours = int(os.getenv("FLOWFINANCE_TOKEN_MAX_AGE_HOURS", "24"))
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FLOWFINANCE_CORS_ORIGIN", "*").split(",")
        if origin.strip()
    ]
    scheduler_enabled = _env_flag("FLOWFINANCE_SCHEDULER_ENABLED", "true")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        cors_origins=cors_origins,
        scheduler_enabled=scheduler_enabled,
    )
