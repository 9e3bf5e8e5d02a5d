import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        reminder_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.reminder_days = reminder_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Santo_Domingo")
    reminder_days = int(os.getenv("FINANCE_REMINDER_DAYS", "3"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        reminder_days=reminder_days,
    )
