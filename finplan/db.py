"""
Database connection and initialization helpers.
This file is the single source of truth for opening the SQLite connection.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from .core import config

logger = logging.getLogger(__name__)


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(
        str(db_path or config.DB_PATH),
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def get_db_path() -> str:
    """Get the database file path."""
    return str(config.DB_PATH)


def _reset_database_if_requested(db_path: Path) -> None:
    """
    With FORCE_DB_RESET=1 the database file is removed. If the file cannot
    be removed (mounted volume), the table is dropped instead.
    """
    if not config.FORCE_DB_RESET:
        return

    try:
        if db_path.exists():
            db_path.unlink()
            logger.warning("FORCE_DB_RESET: removed %s", db_path)
            return
    except OSError:
        logger.warning("FORCE_DB_RESET: could not remove %s, dropping table", db_path)

    conn = get_connection(db_path)
    try:
        conn.execute("DROP TABLE IF EXISTS transactions")
        conn.commit()
    finally:
        conn.close()


def initialise_database(db_path: Optional[Path] = None) -> None:
    """Create the transactions table and its indexes if they don't exist."""
    db_path = Path(db_path or config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    _reset_database_if_requested(db_path)

    conn = get_connection(db_path)
    cur = conn.cursor()

    # Dates are UTC text in the form YYYY-MM-DDTHH:MM:SS so that text
    # comparison orders them chronologically.
    cur.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            description TEXT NOT NULL,
            value REAL NOT NULL,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            date TEXT NOT NULL,
            is_recurrent INTEGER NOT NULL DEFAULT 0,
            replicated_from_id TEXT,
            is_superseded INTEGER
        )
    """)

    cur.execute("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions (date)")
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_transactions_chain "
        "ON transactions (replicated_from_id, date)"
    )

    conn.commit()
    conn.close()
