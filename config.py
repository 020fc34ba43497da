import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        cors_origins: list[str],
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.cors_origins = cors_origins
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "Europe/Bucharest")
    csrf_secret = os.getenv(
        "FINTRACK_CSRF_SECRET",
        "3f0c6d9a41be27c58e1f0a7d92b4c6e815d3a0f9c2e7b4a6d1f8e3c5b7a9d2e4",
    )
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FINTRACK_CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ]
    scheduler_enabled = _env_flag("FINTRACK_SCHEDULER_ENABLED", True)
    log_level = os.getenv("FINTRACK_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        cors_origins=cors_origins,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
