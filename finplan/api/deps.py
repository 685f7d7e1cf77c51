from fastapi import Request

from ..collection import TransactionCollection
from ..recurrence import RecurrenceEngine


def get_collection(request: Request) -> TransactionCollection:
    """Dependency for FastAPI to get the transactions collection."""
    return request.app.state.collection


def get_engine(request: Request) -> RecurrenceEngine:
    """Dependency for FastAPI to get the shared recurrence engine."""
    return request.app.state.engine
