# config.py
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from domain import ScheduleConfig

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _pick_data_dir() -> Path:
    """First writable candidate among $DATA_DIR, /data and ./data."""
    candidates = []
    env = os.getenv("DATA_DIR")
    if env:
        candidates.append(Path(env))
    candidates += [Path("/data"), Path.cwd() / "data"]

    for p in candidates:
        try:
            p.mkdir(parents=True, exist_ok=True)
            probe = p / ".rwtest"
            probe.write_text("ok")
            probe.unlink(missing_ok=True)
            return p
        except OSError:
            continue
    return Path.cwd()


@dataclass
class Settings:
    data_dir: Path
    database_url: str
    log_level: str = "INFO"
    weekly_target_hours: float = 35.0
    work_days_per_week: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = _pick_data_dir()
        default_db = f"sqlite:///{(data_dir / 'timetracker.db').as_posix()}"
        return cls(
            data_dir=data_dir,
            database_url=os.getenv("DATABASE_URL", default_db),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            weekly_target_hours=float(os.getenv("WEEKLY_TARGET_HOURS", "35")),
            work_days_per_week=int(os.getenv("WORK_DAYS_PER_WEEK", "5")),
        )

    def default_schedule(self) -> ScheduleConfig:
        return ScheduleConfig(
            weekly_target_hours=self.weekly_target_hours,
            work_days_per_week=self.work_days_per_week,
        )


_settings: Settings | None = None


def load_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(getattr(h, "_timetracker", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._timetracker = True
        root.addHandler(handler)
