import asyncio
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure project root is on sys.path for imports like 'finplan.recurrence'
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep config side effects (data and log dirs) out of the working tree
_SCRATCH = Path(tempfile.mkdtemp(prefix="finplan-tests-"))
os.environ.setdefault("DATA_DIR", str(_SCRATCH / "data"))
os.environ.setdefault("LOG_DIR", str(_SCRATCH / "logs"))
os.environ["CRON_ENABLED"] = "0"


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def run():
    return asyncio.run


@pytest.fixture()
def db_path(tmp_path) -> Path:
    from finplan import db

    path = tmp_path / "finplan_test.sqlite3"
    db.initialise_database(path)
    return path


@pytest.fixture()
def collection(db_path):
    from finplan.collection import TransactionCollection

    return TransactionCollection(db_path)


@pytest.fixture()
def engine(collection):
    from finplan.recurrence import RecurrenceEngine, SingleFlight

    return RecurrenceEngine(collection, flight=SingleFlight())


@pytest.fixture()
def add_transaction(collection, run):
    """Insert a transaction document directly and return its id."""

    def _add(when: datetime, recurrent: bool = True, **extra) -> str:
        doc = {
            "description": "Rent",
            "value": 100.0,
            "type": "EXPENSE",
            "category": "Housing",
            "date": when,
            "is_recurrent": recurrent,
        }
        doc.update(extra)
        return run(collection.insert_one(doc))

    return _add


@pytest.fixture()
def get_doc(collection, run):
    def _get(tx_id: str):
        return run(collection.find_one({"id": tx_id}))

    return _get


@pytest.fixture()
def instances_of(collection, run):
    """Instances of a root, oldest first."""

    def _instances(root_id: str):
        return run(collection.find({"replicated_from_id": root_id}, sort=[("date", 1)]))

    return _instances


@pytest.fixture()
def app_client(db_path):
    from fastapi.testclient import TestClient
    from finplan.main import create_app

    with TestClient(create_app(db_path=db_path, cron_enabled=False)) as client:
        yield client
