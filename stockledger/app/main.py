import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from stockledger.app.api.v1.router import router as v1_router
from stockledger.app.settings import settings
from stockledger.services.errors import (
    IdempotencyConflictError,
    InvalidTransitionError,
    InventoryEngineError,
    PositionOccupiedError,
    RecordNotFoundError,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.APP_TITLE, version="0.1.0")
app.include_router(v1_router, prefix="/v1")


def status_for(exc: InventoryEngineError) -> int:
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, (InvalidTransitionError, IdempotencyConflictError, PositionOccupiedError)):
        return 409
    return 400


@app.exception_handler(InventoryEngineError)
async def inventory_error_handler(request: Request, exc: InventoryEngineError):
    body = {**exc.details(), "error": exc.code, "detail": str(exc)}
    return JSONResponse(status_code=status_for(exc), content=jsonable_encoder(body))
