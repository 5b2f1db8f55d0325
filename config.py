import os
from datetime import date
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        horizon_months: int,
        holidays: frozenset[date],
        actual_date_tolerance_days: int,
        title_similarity: float,
        interval_match_ratio: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.horizon_months = horizon_months
        self.holidays = holidays
        self.actual_date_tolerance_days = actual_date_tolerance_days
        self.title_similarity = title_similarity
        self.interval_match_ratio = interval_match_ratio


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("OBLIGATIONS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_holidays(raw: str) -> frozenset[date]:
    values = [part.strip() for part in raw.split(",")]
    return frozenset(date.fromisoformat(value) for value in values if value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "obligations.db"
    database_url = os.getenv("OBLIGATIONS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("OBLIGATIONS_TIMEZONE", "Europe/Berlin")
    horizon_months = int(os.getenv("OBLIGATIONS_HORIZON_MONTHS", "36"))
    holidays = _parse_holidays(os.getenv("OBLIGATIONS_HOLIDAYS", ""))
    actual_date_tolerance_days = int(
        os.getenv("OBLIGATIONS_ACTUAL_DATE_TOLERANCE_DAYS", "90")
    )
    title_similarity = float(os.getenv("OBLIGATIONS_TITLE_SIMILARITY", "0.80"))
    interval_match_ratio = float(os.getenv("OBLIGATIONS_INTERVAL_MATCH_RATIO", "0.70"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        horizon_months=horizon_months,
        holidays=holidays,
        actual_date_tolerance_days=actual_date_tolerance_days,
        title_similarity=title_similarity,
        interval_match_ratio=interval_match_ratio,
    )
