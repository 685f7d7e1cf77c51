import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..collection import TransactionCollection
from ..core import config
from ..errors import ValidationError
from ..recurrence import MAX_YEAR, RecurrenceEngine
from .deps import get_collection, get_engine

logger = logging.getLogger(__name__)

system_router = APIRouter(prefix="/api/system", tags=["system"])
data_router = APIRouter(prefix="/api/data", tags=["system"])


@system_router.post("/materialize")
async def api_materialize(
    year: int = Query(..., ge=1, le=MAX_YEAR),
    month: int = Query(..., ge=1, le=12),
    engine: RecurrenceEngine = Depends(get_engine),
) -> JSONResponse:
    """Run recurrence materialization for one month, on demand."""
    inserted = await engine.materialize(year, month)
    return JSONResponse(content={"inserted": inserted})


@data_router.delete("/clean")
async def api_clean(
    confirm: Optional[str] = None,
    collection: TransactionCollection = Depends(get_collection),
) -> JSONResponse:
    """Remove every transaction. Requires ?confirm=<CLEAN_CONFIRM_TOKEN>."""
    if confirm != config.CLEAN_CONFIRM_TOKEN:
        raise ValidationError(
            f"Confirmation required: pass ?confirm={config.CLEAN_CONFIRM_TOKEN} to wipe the database"
        )
    deleted = await collection.delete_many({})
    logger.warning("Database cleaned: %d transactions removed", deleted)
    return JSONResponse(content={"message": "Database cleaned", "deletedCount": deleted})
