from __future__ import annotations

import os
from pathlib import Path


def _project_root() -> Path:
    # core/config.py -> finplan/core -> finplan -> project root
    return Path(__file__).resolve().parents[2]


def _flag(name: str, default: str) -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


PROJECT_ROOT: Path = _project_root()

# Data directory (SQLite DB)
DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Override with FINPLAN_DB_PATH to run against a throwaway copy
DB_PATH: Path = Path(os.getenv("FINPLAN_DB_PATH", str(DATA_DIR / "finplan.db")))

LOG_DIR: Path = Path(os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs")))

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION: bool = ENVIRONMENT == "production"

FORCE_DB_RESET: bool = os.getenv("FORCE_DB_RESET", "").strip() == "1"

# Daily materialization of the current month (UTC)
CRON_ENABLED: bool = _flag("CRON_ENABLED", "1")
CRON_HOUR: int = int(os.getenv("CRON_HOUR", "3"))
CRON_MINUTE: int = int(os.getenv("CRON_MINUTE", "15"))

# Wiping the collection requires ?confirm=<token>
CLEAN_CONFIRM_TOKEN: str = os.getenv("CLEAN_CONFIRM_TOKEN", "I_AM_SURE")

# Due-date scan of upcoming expenses (UTC), with its look-ahead in days
DUE_SOON_DAYS: int = int(os.getenv("DUE_SOON_DAYS", "2"))
DUE_SCAN_HOUR: int = int(os.getenv("DUE_SCAN_HOUR", "11"))
DUE_SCAN_MINUTE: int = int(os.getenv("DUE_SCAN_MINUTE", "30"))

# Bind address for `python -m finplan`
HOST: str = os.getenv("HOST", "127.0.0.1")
PORT: int = int(os.getenv("PORT", "8000"))
