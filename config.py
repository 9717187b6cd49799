import os
from functools import lru_cache
from pathlib import Path

from values import CurrencyCode

DEFAULT_GOAL_KEYWORDS = "poupança,poupanca,meta,reserva,savings,goal"
DEFAULT_GOAL_CATEGORIES = "INVESTIMENTOS"


class Settings:
    def __init__(
        self,
        database_url: str,
        currency: CurrencyCode = CurrencyCode.brl,
        duplicate_threshold: float = 0.8,
        duplicate_window_days: int = 3,
        goal_keywords: tuple[str, ...] = tuple(DEFAULT_GOAL_KEYWORDS.split(",")),
        goal_categories: tuple[str, ...] = tuple(DEFAULT_GOAL_CATEGORIES.split(",")),
        max_upload_bytes: int = 10 * 1024 * 1024,
        recent_limit: int = 10,
    ) -> None:
        if not 0 < duplicate_threshold <= 1:
            raise ValueError("Duplicate threshold must be in (0, 1]")
        self.database_url = database_url
        self.currency = currency
        self.duplicate_threshold = duplicate_threshold
        self.duplicate_window_days = duplicate_window_days
        self.goal_keywords = goal_keywords
        self.goal_categories = goal_categories
        self.max_upload_bytes = max_upload_bytes
        self.recent_limit = recent_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("HOUSEHOLD_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _csv_env(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("HOUSEHOLD_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'household.db'}"
    return Settings(
        database_url=database_url,
        currency=CurrencyCode(os.getenv("HOUSEHOLD_CURRENCY", "BRL").upper()),
        duplicate_threshold=float(os.getenv("HOUSEHOLD_DUPLICATE_THRESHOLD", "0.8")),
        duplicate_window_days=int(os.getenv("HOUSEHOLD_DUPLICATE_WINDOW_DAYS", "3")),
        goal_keywords=_csv_env("HOUSEHOLD_GOAL_KEYWORDS", DEFAULT_GOAL_KEYWORDS),
        goal_categories=_csv_env("HOUSEHOLD_GOAL_CATEGORIES", DEFAULT_GOAL_CATEGORIES),
        max_upload_bytes=int(os.getenv("HOUSEHOLD_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
        recent_limit=int(os.getenv("HOUSEHOLD_RECENT_LIMIT", "10")),
    )
