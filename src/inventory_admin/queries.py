"""Read-side projections over the ledger store: listings, statistics, reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select

from .config import Settings
from .ledger import InventoryFilter, LedgerStore
from .models import InventoryRecord, Product, StockTransaction, TransactionType, utcnow

_CENTS = Decimal("0.01")


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True, slots=True)
class InventoryStatistics:
    total_active_products: int
    total_out_of_stock: int
    total_low_stock: int
    total_inventory_value: Decimal


@dataclass(frozen=True, slots=True)
class LowStockItem:
    inventory_id: str
    name: str
    sku: str
    quantity_available: int
    low_stock_threshold: int
    cost_price: Optional[Decimal]
    needs_restock: bool


@dataclass(frozen=True, slots=True)
class OutOfStockItem:
    inventory_id: str
    name: str
    sku: str
    quantity_available: int
    cost_price: Optional[Decimal]
    last_movement_at: datetime
    last_movement_type: Optional[TransactionType]


@dataclass(frozen=True, slots=True)
class MovementEntry:
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
    reason: Optional[str]
    reference_type: Optional[str]
    reference_id: Optional[str]


class InventoryQueryService:
    """Read-only access for listing and reporting. Never writes."""

    def __init__(self, store: LedgerStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def filter_inventory(self, criteria: InventoryFilter | None = None) -> list[InventoryRecord]:
        return self._store.list_records(criteria)

    def get_record(self, inventory_id: str) -> InventoryRecord:
        return self._store.get_record(inventory_id)

    def get_transaction_history(
        self, inventory_id: str, limit: Optional[int] = None
    ) -> list[StockTransaction]:
        return self._store.list_transactions(
            inventory_id, self._settings.clamp_history_limit(limit)
        )

    def compute_statistics(self) -> InventoryStatistics:
        active = Product.is_active.is_(True)
        with self._store.reading() as session:
            total_products = session.scalar(select(func.count(Product.id)).where(active)) or 0
            out_of_stock = session.scalar(
                select(func.count(InventoryRecord.inventory_id))
                .join(InventoryRecord.product)
                .where(active, InventoryRecord.quantity_available <= 0)
            ) or 0
            low_stock = session.scalar(
                select(func.count(InventoryRecord.inventory_id))
                .join(InventoryRecord.product)
                .where(
                    active,
                    InventoryRecord.quantity_available > 0,
                    InventoryRecord.low_stock_alert.is_(True),
                )
            ) or 0
            rows = session.execute(
                select(InventoryRecord.quantity_available, Product.cost_price)
                .join(InventoryRecord.product)
                .where(active)
            ).all()

        value = sum(
            (Decimal(available) * (cost or Decimal(0)) for available, cost in rows),
            Decimal(0),
        )
        return InventoryStatistics(
            total_active_products=total_products,
            total_out_of_stock=out_of_stock,
            total_low_stock=low_stock,
            total_inventory_value=value.quantize(_CENTS, rounding=ROUND_HALF_UP),
        )

    def low_stock_report(self) -> list[LowStockItem]:
        """Tracked, active items at or below their threshold, emptiest first."""

        records = [
            record
            for record in self._tracked_records()
            if record.quantity_available <= record.product.low_stock_threshold
        ]
        records.sort(key=lambda record: (record.quantity_available, record.display_name))
        return [
            LowStockItem(
                inventory_id=record.inventory_id,
                name=record.display_name,
                sku=record.display_sku,
                quantity_available=record.quantity_available,
                low_stock_threshold=record.product.low_stock_threshold,
                cost_price=record.product.cost_price,
                needs_restock=record.quantity_available <= record.product.low_stock_threshold,
            )
            for record in records
        ]

    def out_of_stock_report(self) -> list[OutOfStockItem]:
        """Tracked, active items with nothing available, most recently touched first."""

        items = []
        for record in self._tracked_records(InventoryFilter(out_of_stock_only=True)):
            last = self._store.last_transaction(record.inventory_id)
            items.append(
                OutOfStockItem(
                    inventory_id=record.inventory_id,
                    name=record.display_name,
                    sku=record.display_sku,
                    quantity_available=record.quantity_available,
                    cost_price=record.product.cost_price,
                    last_movement_at=last.created_at if last else record.updated_at,
                    last_movement_type=last.transaction_type if last else None,
                )
            )
        return items

    def recent_movements(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[MovementEntry]:
        end = _naive_utc(end) or utcnow()
        start = _naive_utc(start) or end - timedelta(days=self._settings.movements_window_days)
        limit = max(1, min(limit or self._settings.movements_limit, self._settings.max_history_limit))

        entries = self._store.list_transactions_between(start, end, limit)
        return [
            MovementEntry(
                transaction_id=entry.transaction_id,
                inventory_id=entry.inventory_id,
                name=entry.record.display_name,
                sku=entry.record.display_sku,
                transaction_type=entry.transaction_type,
                quantity_delta=entry.quantity_delta,
                previous_quantity=entry.previous_quantity,
                new_quantity=entry.new_quantity,
                created_at=entry.created_at,
                actor=entry.actor_id or "system",
                reason=entry.reason,
                reference_type=entry.reference_type.value if entry.reference_type else None,
                reference_id=entry.reference_id,
            )
            for entry in entries
        ]

    def _tracked_records(self, criteria: InventoryFilter | None = None) -> list[InventoryRecord]:
        return [
            record
            for record in self._store.list_records(criteria)
            if record.product.is_active and record.product.track_inventory
        ]
