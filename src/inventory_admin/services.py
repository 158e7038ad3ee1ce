"""Stock mutation service: the write path administrative callers use."""

from __future__ import annotations

import logging
from typing import Optional

from .config import Settings
from .exceptions import InvalidQuantityError, InventoryError
from .ledger import (
    LedgerStore,
    coerce_reference_type,
    coerce_transaction_type,
    require_integer,
    require_quantity,
)
from .models import InventoryRecord, ReferenceType, StockTransaction, TransactionType

logger = logging.getLogger(__name__)


class StockMutationService:
    """Validates stock change requests and hands them to the ledger store.

    Store errors are logged and re-raised unchanged. Nothing is retried here:
    a human entered the request, and replaying it silently could apply the
    same intent twice.
    """

    def __init__(self, store: LedgerStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def _reason(self, reason: Optional[str]) -> str:
        if reason is None or not reason.strip():
            return self._settings.default_reason
        return reason.strip()

    def adjust_stock(
        self,
        inventory_id: str,
        requested_quantity: int,
        reason: Optional[str] = None,
        transaction_type: TransactionType | str = TransactionType.ADJUSTMENT,
        actor_id: Optional[str] = None,
        *,
        reference_type: ReferenceType | str | None = None,
        reference_id: Optional[str] = None,
    ) -> InventoryRecord:
        """Set the on-hand quantity of a record to *requested_quantity*.

        The quantity is the new absolute total, not a change: a caller that
        received ten more units passes ``current + 10``.
        """

        requested_quantity = require_quantity(requested_quantity, "Requested quantity")
        kind = coerce_transaction_type(transaction_type)
        record, entry = self._run(
            "adjust",
            inventory_id,
            actor_id,
            lambda: self._store.apply_mutation(
                inventory_id,
                requested_quantity,
                kind,
                self._reason(reason),
                actor_id,
                reference_type=coerce_reference_type(reference_type),
                reference_id=reference_id,
            ),
        )
        return record

    def apply_delta(
        self,
        inventory_id: str,
        delta: int,
        reason: Optional[str] = None,
        transaction_type: TransactionType | str = TransactionType.ADJUSTMENT,
        actor_id: Optional[str] = None,
        *,
        reference_type: ReferenceType | str | None = None,
        reference_id: Optional[str] = None,
    ) -> InventoryRecord:
        """Change the on-hand quantity by *delta* against the current stored value."""

        delta = require_integer(delta, "Quantity delta")
        kind = coerce_transaction_type(transaction_type)
        record, entry = self._run(
            "delta",
            inventory_id,
            actor_id,
            lambda: self._store.apply_delta(
                inventory_id,
                delta,
                kind,
                self._reason(reason),
                actor_id,
                reference_type=coerce_reference_type(reference_type),
                reference_id=reference_id,
            ),
        )
        return record

    def reserve(
        self,
        inventory_id: str,
        quantity: int,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        *,
        reference_type: ReferenceType | str | None = ReferenceType.ORDER,
        reference_id: Optional[str] = None,
    ) -> InventoryRecord:
        """Commit *quantity* available units to an order."""

        quantity = self._positive(quantity, "Reserved quantity")
        record, entry = self._run(
            "reserve",
            inventory_id,
            actor_id,
            lambda: self._store.apply_reservation(
                inventory_id,
                quantity,
                TransactionType.RESERVED,
                self._reason(reason),
                actor_id,
                reference_type=coerce_reference_type(reference_type),
                reference_id=reference_id,
            ),
        )
        return record

    def release(
        self,
        inventory_id: str,
        quantity: int,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        *,
        reference_type: ReferenceType | str | None = ReferenceType.ORDER,
        reference_id: Optional[str] = None,
    ) -> InventoryRecord:
        """Return *quantity* previously reserved units to the available pool."""

        quantity = self._positive(quantity, "Released quantity")
        record, entry = self._run(
            "release",
            inventory_id,
            actor_id,
            lambda: self._store.apply_reservation(
                inventory_id,
                -quantity,
                TransactionType.RELEASED,
                self._reason(reason),
                actor_id,
                reference_type=coerce_reference_type(reference_type),
                reference_id=reference_id,
            ),
        )
        return record

    @staticmethod
    def _positive(value: object, label: str) -> int:
        value = require_quantity(value, label)
        if value == 0:
            raise InvalidQuantityError(f"{label} must be greater than zero")
        return value

    def _run(self, operation, inventory_id, actor_id, call) -> tuple[InventoryRecord, StockTransaction]:
        try:
            record, entry = call()
        except InventoryError as exc:
            logger.warning(
                "Stock %s rejected: %s",
                operation,
                exc,
                extra={"inventory_id": inventory_id, "actor_id": actor_id, "error_code": exc.code},
            )
            raise
        logger.info(
            "Stock %s applied",
            operation,
            extra={
                "inventory_id": inventory_id,
                "actor_id": actor_id,
                "transaction_id": entry.transaction_id,
                "transaction_type": entry.transaction_type.value,
                "quantity_delta": entry.quantity_delta,
                "quantity_available": record.quantity_available,
            },
        )
        return record, entry
