"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from . import __version__, schemas
from .auth import Actor, get_current_actor
from .config import Settings, get_settings
from .database import Database
from .dependencies import get_mutation_service, get_query_service
from .exceptions import (
    ConcurrencyConflictError,
    ImmutableTransactionError,
    InvalidQuantityError,
    InvalidTransactionTypeError,
    InventoryError,
    NotFoundError,
    StoreUnavailableError,
)
from .ledger import LedgerStore
from .queries import InventoryQueryService
from .services import StockMutationService

_ERROR_STATUS: tuple[tuple[type[InventoryError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidQuantityError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTransactionTypeError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
    (ImmutableTransactionError, status.HTTP_409_CONFLICT),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _status_for(exc: InventoryError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    A *database* passed in stays owned by the caller; otherwise one is opened
    from *settings* and disposed when the application shuts down.
    """

    settings = settings or get_settings()
    owns_database = database is None
    if database is None:
        database = Database.from_settings(settings)
    database.create_all()

    store = LedgerStore(database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_database:
            database.dispose()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.store = store
    app.state.mutation_service = StockMutationService(store, settings)
    app.state.query_service = InventoryQueryService(store, settings)

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc), "code": exc.code})

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/inventory/statistics", response_model=schemas.StatisticsRead, tags=["inventory"])
    def inventory_statistics(
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.compute_statistics()

    @app.post("/inventory/filter", response_model=list[schemas.InventoryRead], tags=["inventory"])
    def filter_inventory(
        payload: schemas.InventoryFilterRequest,
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.filter_inventory(payload.to_filter())

    @app.get("/inventory/{inventory_id}", response_model=schemas.InventoryRead, tags=["inventory"])
    def get_inventory(
        inventory_id: str,
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.get_record(inventory_id)

    @app.put("/inventory/{inventory_id}", response_model=schemas.InventoryRead, tags=["inventory"])
    def adjust_inventory(
        inventory_id: str,
        payload: schemas.StockAdjustment,
        actor: Actor = Depends(get_current_actor),
        mutations: StockMutationService = Depends(get_mutation_service),
    ):
        return mutations.adjust_stock(
            inventory_id,
            payload.quantity,
            payload.reason,
            payload.transaction_type,
            actor.id,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
        )

    @app.post("/inventory/{inventory_id}/delta", response_model=schemas.InventoryRead, tags=["inventory"])
    def change_inventory(
        inventory_id: str,
        payload: schemas.StockDelta,
        actor: Actor = Depends(get_current_actor),
        mutations: StockMutationService = Depends(get_mutation_service),
    ):
        return mutations.apply_delta(
            inventory_id,
            payload.delta,
            payload.reason,
            payload.transaction_type,
            actor.id,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
        )

    @app.post("/inventory/{inventory_id}/reserve", response_model=schemas.InventoryRead, tags=["inventory"])
    def reserve_inventory(
        inventory_id: str,
        payload: schemas.ReservationChange,
        actor: Actor = Depends(get_current_actor),
        mutations: StockMutationService = Depends(get_mutation_service),
    ):
        return mutations.reserve(
            inventory_id,
            payload.quantity,
            payload.reason,
            actor.id,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
        )

    @app.post("/inventory/{inventory_id}/release", response_model=schemas.InventoryRead, tags=["inventory"])
    def release_inventory(
        inventory_id: str,
        payload: schemas.ReservationChange,
        actor: Actor = Depends(get_current_actor),
        mutations: StockMutationService = Depends(get_mutation_service),
    ):
        return mutations.release(
            inventory_id,
            payload.quantity,
            payload.reason,
            actor.id,
            reference_type=payload.reference_type,
            reference_id=payload.reference_id,
        )

    @app.get(
        "/inventory/{inventory_id}/transactions",
        response_model=list[schemas.TransactionRead],
        tags=["inventory"],
    )
    def inventory_transactions(
        inventory_id: str,
        limit: Optional[int] = None,
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.get_transaction_history(inventory_id, limit)

    @app.get("/reports/low-stock", response_model=list[schemas.LowStockRead], tags=["reports"])
    def low_stock_report(
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.low_stock_report()

    @app.get("/reports/out-of-stock", response_model=list[schemas.OutOfStockRead], tags=["reports"])
    def out_of_stock_report(
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.out_of_stock_report()

    @app.get("/reports/movements", response_model=list[schemas.MovementRead], tags=["reports"])
    def movements_report(
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        actor: Actor = Depends(get_current_actor),
        queries: InventoryQueryService = Depends(get_query_service),
    ):
        return queries.recent_movements(start, end, limit)

    return app
