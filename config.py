import os
from functools import lru_cache
from pathlib import Path

MAX_SAFE_INTEGER = 2**53 - 1


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        max_minor_amount: int,
        log_level: str,
        currency: str = "EUR",
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.max_minor_amount = max_minor_amount
        self.log_level = log_level
        self.currency = currency


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BUDGETS_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'budgets.db'}"
    timezone = os.getenv("BUDGETS_TIMEZONE", "UTC")
    max_minor_amount = int(
        os.getenv("BUDGETS_MAX_MINOR_AMOUNT", str(MAX_SAFE_INTEGER))
    )
    log_level = os.getenv("BUDGETS_LOG_LEVEL", "INFO").upper()
    currency = os.getenv("BUDGETS_CURRENCY", "EUR").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        max_minor_amount=max_minor_amount,
        log_level=log_level,
        currency=currency,
    )
