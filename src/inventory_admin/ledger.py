"""Stock ledger store.

The store is the only component that writes inventory records and stock
transactions. Every write goes through :meth:`LedgerStore._mutate`, which
loads the record under a lock, computes the new quantities, recomputes the
derived columns and appends the ledger entry in a single database
transaction. A failure anywhere leaves both tables untouched.

Same-record writers are serialised by a process-local lock, by
``SELECT ... FOR UPDATE`` where the backend supports row locks, and finally
by the record's ``version`` column: a stale write is retried once and then
reported as :class:`~inventory_admin.exceptions.ConcurrencyConflictError`.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from .database import Database
from .exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransactionTypeError,
    NotFoundError,
    StoreUnavailableError,
)
from .models import (
    InventoryRecord,
    Product,
    ProductVariant,
    ReferenceType,
    StockTransaction,
    TransactionType,
    is_low_stock,
    utcnow,
)

logger = logging.getLogger(__name__)

# (new on hand, new reserved) computed from the locked record.
QuantityPlan = Callable[[InventoryRecord], tuple[int, int]]


@dataclass(frozen=True, slots=True)
class InventoryFilter:
    """Listing criteria; every field is optional and they combine with AND."""

    text_search: Optional[str] = None
    category_id: Optional[int] = None
    brand_id: Optional[int] = None
    low_stock_only: bool = False
    out_of_stock_only: bool = False


def require_quantity(value: object, label: str = "Quantity") -> int:
    """Return *value* when it is a non-negative ``int``."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(f"{label} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidQuantityError(f"{label} cannot be negative (got {value})")
    return value


def require_integer(value: object, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(f"{label} must be an integer, got {value!r}")
    return value


def coerce_transaction_type(value: TransactionType | str) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in TransactionType)
        raise InvalidTransactionTypeError(
            f"Unknown transaction type {value!r}; expected one of: {allowed}"
        ) from exc


def coerce_reference_type(value: ReferenceType | str | None) -> ReferenceType | None:
    if value is None:
        return None
    try:
        return ReferenceType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in ReferenceType)
        raise InvalidTransactionTypeError(
            f"Unknown reference type {value!r}; expected one of: {allowed}"
        ) from exc


def _require_covers_reserved(record: InventoryRecord, new_on_hand: int) -> None:
    if new_on_hand < record.quantity_reserved:
        raise InsufficientStockError(
            f"Cannot set inventory {record.inventory_id} to {new_on_hand} on hand; "
            f"{record.quantity_reserved} units are reserved"
        )


class _RecordLocks:
    """Hands out one lock per key for the lifetime of the process."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_key(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Report connectivity failures as :class:`StoreUnavailableError`."""

    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailableError(f"Inventory store unavailable: {exc.orig or exc}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise StoreUnavailableError(f"Inventory store connection lost: {exc.orig or exc}") from exc
        raise


def _record_query() -> Select[tuple[InventoryRecord]]:
    return select(InventoryRecord).options(
        selectinload(InventoryRecord.product).options(
            selectinload(Product.category),
            selectinload(Product.brand),
        ),
        selectinload(InventoryRecord.variant),
    )


class LedgerStore:
    """Durable inventory records plus their append-only transaction ledger."""

    def __init__(self, database: Database, *, conflict_retries: int = 1) -> None:
        self._database = database
        self._locks = _RecordLocks()
        self._conflict_retries = conflict_retries

    @property
    def database(self) -> Database:
        return self._database

    @contextmanager
    def reading(self) -> Iterator[Session]:
        """Yield a session for read-only queries."""

        with translate_store_errors(), self._database.read_scope() as session:
            yield session

    # -- reads ---------------------------------------------------------------

    def get_record(self, inventory_id: str) -> InventoryRecord:
        with self.reading() as session:
            record = session.scalars(
                _record_query().where(InventoryRecord.inventory_id == inventory_id)
            ).first()
        if record is None:
            raise NotFoundError("Inventory record", inventory_id)
        return record

    def get_record_by_product_variant(
        self, product_id: int, variant_id: Optional[int] = None
    ) -> InventoryRecord:
        with self.reading() as session:
            record = session.scalars(
                _record_query().where(*self._identity_clauses(product_id, variant_id))
            ).first()
        if record is None:
            raise NotFoundError("Inventory record", (product_id, variant_id))
        return record

    def list_records(self, criteria: InventoryFilter | None = None) -> list[InventoryRecord]:
        criteria = criteria or InventoryFilter()
        statement = _record_query().join(InventoryRecord.product).outerjoin(InventoryRecord.variant)

        term = (criteria.text_search or "").strip()
        if term:
            statement = statement.where(
                Product.name.icontains(term, autoescape=True)
                | Product.sku.icontains(term, autoescape=True)
                | ProductVariant.name.icontains(term, autoescape=True)
                | ProductVariant.sku.icontains(term, autoescape=True)
            )
        if criteria.category_id is not None:
            statement = statement.where(Product.category_id == criteria.category_id)
        if criteria.brand_id is not None:
            statement = statement.where(Product.brand_id == criteria.brand_id)
        if criteria.low_stock_only:
            statement = statement.where(
                InventoryRecord.low_stock_alert.is_(True), InventoryRecord.quantity_available > 0
            )
        if criteria.out_of_stock_only:
            statement = statement.where(InventoryRecord.quantity_available <= 0)

        statement = statement.order_by(
            InventoryRecord.updated_at.desc(), InventoryRecord.inventory_id
        )
        with self.reading() as session:
            return list(session.scalars(statement))

    def list_transactions(self, inventory_id: str, limit: int) -> list[StockTransaction]:
        """Return the newest *limit* ledger entries of one record, newest first."""

        with self.reading() as session:
            if session.get(InventoryRecord, inventory_id) is None:
                raise NotFoundError("Inventory record", inventory_id)
            statement = (
                select(StockTransaction)
                .where(StockTransaction.inventory_id == inventory_id)
                .order_by(StockTransaction.transaction_id.desc())
                .limit(limit)
            )
            return list(session.scalars(statement))

    def list_transactions_between(
        self, start: datetime, end: datetime, limit: int
    ) -> list[StockTransaction]:
        statement = (
            select(StockTransaction)
            .options(
                selectinload(StockTransaction.record).options(
                    selectinload(InventoryRecord.product),
                    selectinload(InventoryRecord.variant),
                )
            )
            .where(StockTransaction.created_at >= start, StockTransaction.created_at <= end)
            .order_by(StockTransaction.transaction_id.desc())
            .limit(limit)
        )
        with self.reading() as session:
            return list(session.scalars(statement))

    def last_transaction(self, inventory_id: str) -> StockTransaction | None:
        statement = (
            select(StockTransaction)
            .where(StockTransaction.inventory_id == inventory_id)
            .order_by(StockTransaction.transaction_id.desc())
            .limit(1)
        )
        with self.reading() as session:
            return session.scalars(statement).first()

    # -- record lifecycle ----------------------------------------------------

    def open_record(self, product_id: int, variant_id: Optional[int] = None) -> InventoryRecord:
        """Create the zero-quantity record for a product or variant.

        Returns the existing record when one is already open for the pair.
        No ledger entry is written.
        """

        with self._locks.for_key(f"open:{product_id}:{variant_id}"):
            inventory_id = self._open_record(product_id, variant_id)
        return self.get_record(inventory_id)

    def _open_record(self, product_id: int, variant_id: Optional[int]) -> str:
        try:
            with translate_store_errors(), self._database.session_scope() as session:
                product = session.get(Product, product_id)
                if product is None:
                    raise NotFoundError("Product", product_id)
                if variant_id is not None:
                    variant = session.get(ProductVariant, variant_id)
                    if variant is None or variant.product_id != product_id:
                        raise NotFoundError("Product variant", variant_id)

                existing = session.scalars(
                    select(InventoryRecord).where(*self._identity_clauses(product_id, variant_id))
                ).first()
                if existing is not None:
                    return existing.inventory_id

                now = utcnow()
                record = InventoryRecord(
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity_on_hand=0,
                    quantity_reserved=0,
                    quantity_available=0,
                    low_stock_alert=is_low_stock(0, product.low_stock_threshold),
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
                logger.info(
                    "Opened inventory record",
                    extra={"inventory_id": record.inventory_id, "product_id": product_id, "variant_id": variant_id},
                )
                return record.inventory_id
        except IntegrityError:
            # Another process opened the same pair first.
            return self.get_record_by_product_variant(product_id, variant_id).inventory_id

    @staticmethod
    def _identity_clauses(product_id: int, variant_id: Optional[int]) -> tuple:
        if variant_id is None:
            return (InventoryRecord.product_id == product_id, InventoryRecord.variant_id.is_(None))
        return (InventoryRecord.product_id == product_id, InventoryRecord.variant_id == variant_id)

    # -- writes --------------------------------------------------------------

    def apply_mutation(
        self,
        inventory_id: str,
        new_quantity_on_hand: int,
        transaction_type: TransactionType | str,
        reason: Optional[str],
        actor_id: Optional[str],
        *,
        reference_type: ReferenceType | str | None = None,
        reference_id: Optional[str] = None,
    ) -> tuple[InventoryRecord, StockTransaction]:
        """Set the absolute on-hand quantity and append the matching ledger entry."""

        new_quantity_on_hand = require_quantity(new_quantity_on_hand, "New on-hand quantity")

        def plan(record: InventoryRecord) -> tuple[int, int]:
            _require_covers_reserved(record, new_quantity_on_hand)
            return new_quantity_on_hand, record.quantity_reserved

        return self._mutate(
            inventory_id,
            plan,
            coerce_transaction_type(transaction_type),
            reason,
            actor_id,
            coerce_reference_type(reference_type),
            reference_id,
        )

    def apply_delta(
        self,
        inventory_id: str,
        delta: int,
        transaction_type: TransactionType | str,
        reason: Optional[str],
        actor_id: Optional[str],
        *,
        reference_type: ReferenceType | str | None = None,
        reference_id: Optional[str] = None,
    ) -> tuple[InventoryRecord, StockTransaction]:
        """Move the on-hand quantity by *delta*, computed against the locked row."""

        delta = require_integer(delta, "Quantity delta")

        def plan(record: InventoryRecord) -> tuple[int, int]:
            target = record.quantity_on_hand + delta
            if target < 0:
                raise InvalidQuantityError(
                    f"Change of {delta} would leave inventory {record.inventory_id} "
                    f"with negative stock ({record.quantity_on_hand} on hand)"
                )
            _require_covers_reserved(record, target)
            return target, record.quantity_reserved

        return self._mutate(
            inventory_id,
            plan,
            coerce_transaction_type(transaction_type),
            reason,
            actor_id,
            coerce_reference_type(reference_type),
            reference_id,
        )

    def apply_reservation(
        self,
        inventory_id: str,
        reserved_delta: int,
        transaction_type: TransactionType | str,
        reason: Optional[str],
        actor_id: Optional[str],
        *,
        reference_type: ReferenceType | str | None = None,
        reference_id: Optional[str] = None,
    ) -> tuple[InventoryRecord, StockTransaction]:
        """Move the reserved quantity by *reserved_delta*; on hand is unchanged."""

        reserved_delta = require_integer(reserved_delta, "Reserved quantity change")

        def plan(record: InventoryRecord) -> tuple[int, int]:
            target = record.quantity_reserved + reserved_delta
            if target < 0:
                raise InvalidQuantityError(
                    f"Cannot release {-reserved_delta} units from inventory {record.inventory_id}; "
                    f"only {record.quantity_reserved} reserved"
                )
            if target > record.quantity_on_hand:
                raise InsufficientStockError(
                    f"Cannot reserve {reserved_delta} units from inventory {record.inventory_id}; "
                    f"only {record.quantity_available} available"
                )
            return record.quantity_on_hand, target

        return self._mutate(
            inventory_id,
            plan,
            coerce_transaction_type(transaction_type),
            reason,
            actor_id,
            coerce_reference_type(reference_type),
            reference_id,
        )

    def _mutate(
        self,
        inventory_id: str,
        plan: QuantityPlan,
        transaction_type: TransactionType,
        reason: Optional[str],
        actor_id: Optional[str],
        reference_type: ReferenceType | None,
        reference_id: Optional[str],
    ) -> tuple[InventoryRecord, StockTransaction]:
        attempts = 0
        with self._locks.for_key(inventory_id):
            while True:
                try:
                    return self._mutate_once(
                        inventory_id, plan, transaction_type, reason, actor_id, reference_type, reference_id
                    )
                except StaleDataError as exc:
                    attempts += 1
                    if attempts > self._conflict_retries:
                        raise ConcurrencyConflictError(
                            f"Inventory {inventory_id} was modified concurrently; mutation not applied"
                        ) from exc
                    logger.warning(
                        "Concurrent write detected, retrying",
                        extra={"inventory_id": inventory_id, "attempt": attempts},
                    )

    def _mutate_once(
        self,
        inventory_id: str,
        plan: QuantityPlan,
        transaction_type: TransactionType,
        reason: Optional[str],
        actor_id: Optional[str],
        reference_type: ReferenceType | None,
        reference_id: Optional[str],
    ) -> tuple[InventoryRecord, StockTransaction]:
        with translate_store_errors(), self._database.session_scope() as session:
            record = session.scalars(
                select(InventoryRecord)
                .where(InventoryRecord.inventory_id == inventory_id)
                .with_for_update(of=InventoryRecord)
            ).first()
            if record is None:
                raise NotFoundError("Inventory record", inventory_id)

            new_on_hand, new_reserved = plan(record)
            require_quantity(new_on_hand, "New on-hand quantity")
            require_quantity(new_reserved, "Reserved quantity")

            previous_on_hand = record.quantity_on_hand
            previous_reserved = record.quantity_reserved
            now = utcnow()

            record.quantity_on_hand = new_on_hand
            record.quantity_reserved = new_reserved
            record.quantity_available = new_on_hand - new_reserved
            record.low_stock_alert = is_low_stock(
                record.quantity_available, record.product.low_stock_threshold
            )
            record.updated_at = now

            entry = StockTransaction(
                inventory_id=inventory_id,
                actor_id=actor_id,
                transaction_type=transaction_type,
                previous_quantity=previous_on_hand,
                new_quantity=new_on_hand,
                quantity_delta=new_on_hand - previous_on_hand,
                previous_reserved=previous_reserved,
                new_reserved=new_reserved,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                created_at=now,
            )
            session.add(entry)
            session.flush()

            # Load what callers render before the session closes.
            product = record.product
            _ = (product.category, product.brand, record.variant)

        logger.debug(
            "Stock mutation committed",
            extra={"inventory_id": inventory_id, "transaction_id": entry.transaction_id},
        )
        return record, entry
