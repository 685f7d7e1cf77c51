"""Run one materialization pass from the command line.

    python -m finplan.scripts.materialize --year 2025 --month 2
"""

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .. import db
from ..collection import TransactionCollection
from ..core import config
from ..errors import ValidationError
from ..recurrence import RecurrenceEngine


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    now = datetime.now(timezone.utc)
    parser = argparse.ArgumentParser(description="Materialize recurring transactions for a month.")
    parser.add_argument("--year", type=int, default=now.year)
    parser.add_argument("--month", type=int, default=now.month, help="1-12")
    parser.add_argument("--db", type=Path, default=config.DB_PATH, help="SQLite database file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    db.initialise_database(args.db)
    engine = RecurrenceEngine(TransactionCollection(args.db))
    try:
        inserted = asyncio.run(engine.materialize(args.year, args.month))
    except ValidationError as exc:
        print(f"error: {exc.detail}")
        return 2
    print(f"{inserted} recurring transactions inserted for {args.month:02d}/{args.year}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
