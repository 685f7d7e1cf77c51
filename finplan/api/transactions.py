import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from .. import schemas
from ..collection import TransactionCollection
from ..core import config
from ..models import Transaction, new_id
from ..recurrence import MAX_YEAR, RecurrenceEngine, month_bounds, prepare_fields
from ..services import due_service
from .deps import get_collection, get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.post("", status_code=201)
async def api_create_transaction(
    tr: schemas.TransactionCreate,
    collection: TransactionCollection = Depends(get_collection),
) -> JSONResponse:
    """Create a transaction; recurring ones become the root of a new chain."""
    fields = prepare_fields(tr.model_dump())
    transaction = Transaction(id=new_id(), **fields)
    new_tx_id = await collection.insert_one(transaction.to_document())
    logger.info("Created transaction %s (recurrent=%s)", new_tx_id, transaction.is_recurrent)
    return JSONResponse(
        status_code=201,
        content={"message": "Transaction created", "id": new_tx_id},
    )


@router.get("/monthly-list", response_model=schemas.MonthlyList)
async def api_monthly_list(
    year: int = Query(..., ge=1, le=MAX_YEAR),
    month: int = Query(..., ge=1, le=12),
    collection: TransactionCollection = Depends(get_collection),
    engine: RecurrenceEngine = Depends(get_engine),
) -> schemas.MonthlyList:
    """All transactions of the month, oldest first, after materializing recurring ones."""
    await engine.materialize(year, month)
    start, end = month_bounds(year, month)
    docs = await collection.find({"date": {"$gte": start, "$lt": end}}, sort=[("date", 1)])
    return schemas.MonthlyList(
        year=year,
        month=month,
        transactions=[schemas.Transaction(**doc) for doc in docs],
    )


@router.get("/due-soon", response_model=List[schemas.DueAlert])
async def api_due_soon(
    days: int = Query(config.DUE_SOON_DAYS, ge=0, le=31),
    collection: TransactionCollection = Depends(get_collection),
    engine: RecurrenceEngine = Depends(get_engine),
) -> List[schemas.DueAlert]:
    """Expenses due today or within the next ``days`` days, soonest first."""
    alerts = await due_service.scan_due_soon(collection, engine, days=days)
    return [schemas.DueAlert(**alert) for alert in alerts]


@router.put("/{tx_id}")
async def api_update_transaction(
    tx_id: str,
    update: schemas.TransactionUpdate,
    engine: RecurrenceEngine = Depends(get_engine),
) -> JSONResponse:
    """Update a transaction and adjust its recurrence chain from the new date on."""
    result = await engine.reparent_on_edit(tx_id, update.model_dump())
    return JSONResponse(content={
        "message": "Transaction updated; the recurrence chain was adjusted from this date on.",
        "modifiedCount": result["modifiedCount"],
    })


@router.delete("/{tx_id}")
async def api_delete_transaction(
    tx_id: str,
    engine: RecurrenceEngine = Depends(get_engine),
) -> JSONResponse:
    """Delete a transaction and the future tail of its recurrence chain."""
    result = await engine.unlink_on_delete(tx_id)
    return JSONResponse(content={"message": "Transaction deleted", **result})
