"""ORM and database guards for the stock ledger.

Ledger entries are append-only: once flushed, a :class:`StockTransaction`
may not be updated or deleted through the ORM. Inventory records may be
updated, but never into a state where the stored ``quantity_available``
disagrees with on-hand minus reserved or a quantity goes negative. The
database CHECK constraints enforce the same rules for raw SQL.

The ORM listeners do not see Core ``update()``/``delete()`` statements or raw
SQL, so :func:`install_immutability_triggers` adds the ledger rules as
database triggers on SQLite and PostgreSQL. A ledger row may still go when
its inventory record is deleted, which is how a product removal cascades.
"""

from __future__ import annotations

from sqlalchemy import Connection, event, inspect, text

from .exceptions import ImmutableTransactionError, InvalidQuantityError
from .models import InventoryRecord, StockTransaction


def _check_transaction_update(mapper, connection, target: StockTransaction) -> None:
    state = inspect(target)
    changed = [attr.key for attr in state.attrs if attr.history.has_changes()]
    if changed:
        raise ImmutableTransactionError(
            f"Stock transaction {target.transaction_id} is immutable (attempted change: {', '.join(changed)})"
        )


def _check_transaction_delete(mapper, connection, target: StockTransaction) -> None:
    raise ImmutableTransactionError(f"Stock transaction {target.transaction_id} cannot be deleted")


def _check_record_quantities(mapper, connection, target: InventoryRecord) -> None:
    if target.quantity_on_hand < 0 or target.quantity_reserved < 0:
        raise InvalidQuantityError(
            f"Inventory {target.inventory_id} would hold negative stock "
            f"(on hand {target.quantity_on_hand}, reserved {target.quantity_reserved})"
        )
    if target.quantity_reserved > target.quantity_on_hand:
        raise InvalidQuantityError(
            f"Inventory {target.inventory_id} cannot reserve {target.quantity_reserved} "
            f"of {target.quantity_on_hand} on hand"
        )
    expected = target.quantity_on_hand - target.quantity_reserved
    if target.quantity_available != expected:
        raise InvalidQuantityError(
            f"Inventory {target.inventory_id} available quantity {target.quantity_available} "
            f"does not match on hand minus reserved ({expected})"
        )


_LISTENERS = (
    (StockTransaction, "before_update", _check_transaction_update),
    (StockTransaction, "before_delete", _check_transaction_delete),
    (InventoryRecord, "before_insert", _check_record_quantities),
    (InventoryRecord, "before_update", _check_record_quantities),
)


def register_immutability_listeners() -> None:
    """Install the ledger guards. Safe to call more than once."""

    for target, identifier, fn in _LISTENERS:
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)


def unregister_immutability_listeners() -> None:
    for target, identifier, fn in _LISTENERS:
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)


_SQLITE_TRIGGERS = (
    """
    CREATE TRIGGER IF NOT EXISTS trg_stock_transactions_no_update
    BEFORE UPDATE ON stock_transactions
    BEGIN
        SELECT RAISE(ABORT, 'stock transactions are immutable');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_stock_transactions_no_delete
    BEFORE DELETE ON stock_transactions
    WHEN EXISTS (SELECT 1 FROM inventory_records WHERE inventory_id = OLD.inventory_id)
    BEGIN
        SELECT RAISE(ABORT, 'stock transactions cannot be deleted');
    END
    """,
)

_POSTGRESQL_TRIGGERS = (
    """
    CREATE OR REPLACE FUNCTION stock_transactions_immutable() RETURNS trigger AS $$
    BEGIN
        IF TG_OP = 'DELETE' AND NOT EXISTS (
            SELECT 1 FROM inventory_records WHERE inventory_id = OLD.inventory_id
        ) THEN
            RETURN OLD;
        END IF;
        RAISE EXCEPTION 'stock transactions are immutable'
            USING ERRCODE = 'integrity_constraint_violation';
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_stock_transactions_immutable ON stock_transactions",
    """
    CREATE TRIGGER trg_stock_transactions_immutable
    BEFORE UPDATE OR DELETE ON stock_transactions
    FOR EACH ROW EXECUTE FUNCTION stock_transactions_immutable()
    """,
)


def install_immutability_triggers(connection: Connection) -> None:
    """Install the database-level ledger guards for the connection's dialect.

    Other backends rely on the ORM listeners alone.
    """

    statements = {
        "sqlite": _SQLITE_TRIGGERS,
        "postgresql": _POSTGRESQL_TRIGGERS,
    }.get(connection.dialect.name, ())
    for statement in statements:
        connection.execute(text(statement))
