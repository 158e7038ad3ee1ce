"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from .config import Settings
from .queries import InventoryQueryService
from .services import StockMutationService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_mutation_service(request: Request) -> StockMutationService:
    """Provide the stock mutation service bound to the running application."""

    return request.app.state.mutation_service


def get_query_service(request: Request) -> InventoryQueryService:
    return request.app.state.query_service
