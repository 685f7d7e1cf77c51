from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import __version__, db
from .collection import TransactionCollection
from .core import config
from .errors import FinplanError, NotFoundError, StoreError, ValidationError
from .recurrence import RecurrenceEngine
from .services.cron_service import CronService
from .services.logging_service import configure_logging, setup_production_logging

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    StoreError: 500,
}


def _error_response(status_code: int, code: str, detail) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "detail": detail})


def create_app(db_path: Optional[Path] = None, cron_enabled: Optional[bool] = None) -> FastAPI:
    app = FastAPI(title="Finplan", version=__version__)

    db_path = Path(db_path or config.DB_PATH)
    if cron_enabled is None:
        cron_enabled = config.CRON_ENABLED

    collection = TransactionCollection(db_path)
    app.state.collection = collection
    app.state.engine = RecurrenceEngine(collection)
    app.state.cron = None

    # --- routers ---
    from .api.reports import router as reports_api
    from .api.system import data_router as data_api, system_router as system_api
    from .api.transactions import router as transactions_api

    app.include_router(transactions_api)
    app.include_router(reports_api)
    app.include_router(system_api)
    app.include_router(data_api)

    # --- errors ---
    @app.exception_handler(FinplanError)
    async def _domain_error(request: Request, exc: FinplanError) -> JSONResponse:
        status_code = _STATUS_BY_ERROR.get(type(exc), 500)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return _error_response(status_code, exc.code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(400, ValidationError.code, errors)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # --- lifecycle: init DB and start/stop cron ---
    @app.on_event("startup")
    async def _on_startup() -> None:
        try:
            db.initialise_database(db_path)
        except Exception:
            logger.exception("Database initialization failed")
        if cron_enabled:
            try:
                cron = CronService(app.state.engine)
                cron.start()
                app.state.cron = cron
            except Exception:
                logger.exception("CronService failed to start")

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        cron = app.state.cron
        if cron is not None:
            try:
                cron.stop()
            except Exception:
                logger.exception("CronService shutdown error")

    return app


def setup_logging() -> None:
    if config.IS_PRODUCTION:
        setup_production_logging(config.LOG_DIR)
    else:
        configure_logging(config.LOG_DIR)


setup_logging()
app = create_app()
