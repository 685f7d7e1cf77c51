from typing import List

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..collection import TransactionCollection
from ..recurrence import MAX_YEAR, RecurrenceEngine, month_bounds
from ..services import report_service
from .deps import get_collection, get_engine

router = APIRouter(prefix="/api", tags=["reports"])


@router.get("/summary", response_model=schemas.MonthlySummary)
async def api_summary(
    year: int = Query(..., ge=1, le=MAX_YEAR),
    month: int = Query(..., ge=1, le=12),
    collection: TransactionCollection = Depends(get_collection),
    engine: RecurrenceEngine = Depends(get_engine),
) -> schemas.MonthlySummary:
    """Income and expense totals for the month, with the balance."""
    await engine.materialize(year, month)
    start, end = month_bounds(year, month)
    docs = await collection.find({"date": {"$gte": start, "$lt": end}})
    return schemas.MonthlySummary(year=year, month=month, **report_service.summarize(docs))


@router.get("/breakdown", response_model=List[schemas.CategoryTotal])
async def api_breakdown(
    year: int = Query(..., ge=1, le=MAX_YEAR),
    month: int = Query(..., ge=1, le=12),
    collection: TransactionCollection = Depends(get_collection),
    engine: RecurrenceEngine = Depends(get_engine),
) -> List[schemas.CategoryTotal]:
    """Expenses of the month per category, largest first."""
    await engine.materialize(year, month)
    start, end = month_bounds(year, month)
    docs = await collection.find({"date": {"$gte": start, "$lt": end}, "type": "EXPENSE"})
    return [schemas.CategoryTotal(**row) for row in report_service.expense_breakdown(docs)]
