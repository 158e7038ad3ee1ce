"""Pydantic schemas for API payloads."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .ledger import InventoryFilter
from .models import ReferenceType, StockState, TransactionType


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class BrandRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ProductSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sku: str
    cost_price: Optional[Decimal] = None
    low_stock_threshold: int
    is_active: bool
    category: Optional[CategoryRead] = None
    brand: Optional[BrandRead] = None


class VariantSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sku: str


class InventoryRead(BaseModel):
    """An inventory record with its joined display data."""

    model_config = ConfigDict(from_attributes=True)

    inventory_id: str
    product_id: int
    variant_id: Optional[int] = None
    quantity_on_hand: int
    quantity_reserved: int
    quantity_available: int
    low_stock_alert: bool
    stock_state: StockState
    updated_at: datetime
    product: ProductSummary
    variant: Optional[VariantSummary] = None


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: int
    inventory_id: str
    actor_id: Optional[str] = None
    transaction_type: TransactionType
    previous_quantity: int
    new_quantity: int
    quantity_delta: int
    previous_reserved: int
    new_reserved: int
    reason: Optional[str] = None
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = None
    created_at: datetime


class _ChangeBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = Field(None, max_length=500, validation_alias=AliasChoices("reason", "razon"))
    reference_type: Optional[ReferenceType] = Field(
        None, validation_alias=AliasChoices("reference_type", "referenceType")
    )
    reference_id: Optional[str] = Field(
        None, max_length=64, validation_alias=AliasChoices("reference_id", "referenceId")
    )


class StockAdjustment(_ChangeBase):
    """Absolute stock update: ``quantity`` is the new on-hand total."""

    quantity: int = Field(..., ge=0, validation_alias=AliasChoices("quantity", "cantidad"))
    transaction_type: TransactionType = Field(
        TransactionType.ADJUSTMENT,
        validation_alias=AliasChoices("transaction_type", "transactionType", "tipoTransaccion"),
    )


class StockDelta(_ChangeBase):
    delta: int
    transaction_type: TransactionType = Field(
        TransactionType.ADJUSTMENT,
        validation_alias=AliasChoices("transaction_type", "transactionType"),
    )


class ReservationChange(_ChangeBase):
    quantity: int = Field(..., gt=0)
    reference_type: Optional[ReferenceType] = Field(
        ReferenceType.ORDER, validation_alias=AliasChoices("reference_type", "referenceType")
    )


class InventoryFilterRequest(BaseModel):
    """Listing criteria; accepts the admin UI's legacy field names as aliases."""

    model_config = ConfigDict(populate_by_name=True)

    search: Optional[str] = Field(None, max_length=255)
    category_id: Optional[int] = Field(
        None, validation_alias=AliasChoices("category_id", "categoryId", "categoria")
    )
    brand_id: Optional[int] = Field(None, validation_alias=AliasChoices("brand_id", "brandId", "marca"))
    low_stock_only: bool = Field(
        False, validation_alias=AliasChoices("low_stock_only", "lowStockOnly", "stockBajo")
    )
    out_of_stock_only: bool = Field(
        False, validation_alias=AliasChoices("out_of_stock_only", "outOfStockOnly", "sinStock")
    )

    def to_filter(self) -> InventoryFilter:
        return InventoryFilter(
            text_search=self.search,
            category_id=self.category_id,
            brand_id=self.brand_id,
            low_stock_only=self.low_stock_only,
            out_of_stock_only=self.out_of_stock_only,
        )


class StatisticsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_active_products: int
    total_out_of_stock: int
    total_low_stock: int
    total_inventory_value: Decimal


class LowStockRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    inventory_id: str
    name: str
    sku: str
    quantity_available: int
    low_stock_threshold: int
    cost_price: Optional[Decimal] = None
    needs_restock: bool


class OutOfStockRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    inventory_id: str
    name: str
    sku: str
    quantity_available: int
    cost_price: Optional[Decimal] = None
    last_movement_at: datetime
    last_movement_type: Optional[TransactionType] = None


class MovementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: int
    inventory_id: str
    name: str
    sku: str
    transaction_type: TransactionType
    quantity_delta: int
    previous_quantity: int
    new_quantity: int
    created_at: datetime
    actor: str
    reason: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
