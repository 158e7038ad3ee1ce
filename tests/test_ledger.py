from datetime import datetime, timedelta

import pytest
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from inventory_admin.database import Database
from inventory_admin.exceptions import (
    ConcurrencyConflictError,
    ImmutableTransactionError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransactionTypeError,
    NotFoundError,
    StoreUnavailableError,
)
from inventory_admin.ledger import LedgerStore
from inventory_admin.models import InventoryRecord, Product, StockState, StockTransaction, TransactionType


def _transaction_count(database: Database) -> int:
    with database.read_scope() as session:
        return session.scalar(select(func.count(StockTransaction.transaction_id)))


def test_open_record_seeds_zero_quantities(catalog, store) -> None:
    product_id = catalog.product("Desk Lamp")

    record = store.open_record(product_id)

    assert record.product_id == product_id
    assert record.variant_id is None
    assert (record.quantity_on_hand, record.quantity_reserved, record.quantity_available) == (0, 0, 0)
    assert record.stock_state is StockState.OUT_OF_STOCK
    assert store.list_transactions(record.inventory_id, 10) == []


def test_open_record_is_idempotent_per_product_variant(catalog, store) -> None:
    product_id = catalog.product("T-Shirt")
    variant_id = catalog.variant(product_id, "Large")

    base = store.open_record(product_id)
    large = store.open_record(product_id, variant_id)

    assert store.open_record(product_id).inventory_id == base.inventory_id
    assert store.open_record(product_id, variant_id).inventory_id == large.inventory_id
    assert base.inventory_id != large.inventory_id
    assert store.get_record_by_product_variant(product_id, variant_id).inventory_id == large.inventory_id


def test_open_record_rejects_unknown_product_and_foreign_variant(catalog, store) -> None:
    owner = catalog.product("Owner")
    other = catalog.product("Other")
    variant_id = catalog.variant(owner, "Blue")

    with pytest.raises(NotFoundError):
        store.open_record(9999)
    with pytest.raises(NotFoundError):
        store.open_record(other, variant_id)


def test_apply_mutation_records_before_and_after(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Notebook", on_hand=20, reserved=3)

    record, entry = store.apply_mutation(
        inventory_id, 15, TransactionType.DAMAGED, "damaged goods", "admin-7"
    )

    assert (record.quantity_on_hand, record.quantity_reserved, record.quantity_available) == (15, 3, 12)
    assert entry.previous_quantity == 20
    assert entry.new_quantity == 15
    assert entry.quantity_delta == -5
    assert entry.transaction_type is TransactionType.DAMAGED
    assert entry.reason == "damaged goods"
    assert entry.actor_id == "admin-7"
    assert (entry.previous_reserved, entry.new_reserved) == (3, 3)
    assert record.updated_at == entry.created_at


def test_apply_mutation_accepts_string_transaction_type(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Pen")

    _, entry = store.apply_mutation(inventory_id, 4, "purchase", None, None)

    assert entry.transaction_type is TransactionType.PURCHASE
    assert entry.actor_id is None


def test_negative_quantity_is_rejected_without_side_effects(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Stapler", on_hand=8)
    before = store.get_record(inventory_id)
    count = _transaction_count(database)

    with pytest.raises(InvalidQuantityError):
        store.apply_mutation(inventory_id, -1, TransactionType.ADJUSTMENT, None, None)
    with pytest.raises(InvalidQuantityError):
        store.apply_mutation(inventory_id, 2.5, TransactionType.ADJUSTMENT, None, None)

    after = store.get_record(inventory_id)
    assert after.quantity_on_hand == before.quantity_on_hand == 8
    assert after.updated_at == before.updated_at
    assert _transaction_count(database) == count


def test_unknown_transaction_type_is_rejected(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Tape")

    with pytest.raises(InvalidTransactionTypeError):
        store.apply_mutation(inventory_id, 3, "stolen", None, None)


def test_unknown_record_raises_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.apply_mutation("nonexistent-id", 5, TransactionType.ADJUSTMENT, None, None)
    with pytest.raises(NotFoundError):
        store.get_record("nonexistent-id")
    with pytest.raises(NotFoundError):
        store.list_transactions("nonexistent-id", 10)


@pytest.mark.parametrize(
    ("on_hand", "alert", "state"),
    [
        (5, True, StockState.LOW_STOCK),
        (6, False, StockState.IN_STOCK),
        (0, True, StockState.OUT_OF_STOCK),
    ],
)
def test_low_stock_alert_is_recomputed(catalog, store, on_hand, alert, state) -> None:
    inventory_id = catalog.stocked_product("Mug", on_hand=12, threshold=5)

    record, _ = store.apply_mutation(inventory_id, on_hand, TransactionType.ADJUSTMENT, None, None)

    assert record.low_stock_alert is alert
    assert record.quantity_available == on_hand
    assert record.stock_state is state


def test_low_stock_alert_uses_available_quantity(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Chair", on_hand=10, reserved=6, threshold=5)

    record = store.get_record(inventory_id)

    assert record.quantity_available == 4
    assert record.low_stock_alert is True


def test_apply_delta_moves_from_current_value(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Cable", on_hand=7)

    record, entry = store.apply_delta(inventory_id, 10, TransactionType.RECEIVED, "restock", None)
    assert record.quantity_on_hand == 17
    assert (entry.previous_quantity, entry.new_quantity, entry.quantity_delta) == (7, 17, 10)

    record, _ = store.apply_delta(inventory_id, -17, TransactionType.DAMAGED, None, None)
    assert record.quantity_on_hand == 0

    with pytest.raises(InvalidQuantityError):
        store.apply_delta(inventory_id, -1, TransactionType.ADJUSTMENT, None, None)


def test_reservation_changes_reserved_only(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Monitor", on_hand=10, threshold=2)

    record, entry = store.apply_reservation(inventory_id, 4, TransactionType.RESERVED, None, None)
    assert (record.quantity_on_hand, record.quantity_reserved, record.quantity_available) == (10, 4, 6)
    assert entry.quantity_delta == 0
    assert (entry.previous_reserved, entry.new_reserved) == (0, 4)

    record, entry = store.apply_reservation(inventory_id, -3, TransactionType.RELEASED, None, None)
    assert (record.quantity_reserved, record.quantity_available) == (1, 9)
    assert entry.transaction_type is TransactionType.RELEASED


def test_reservation_bounds(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Keyboard", on_hand=3, reserved=1)

    with pytest.raises(InsufficientStockError):
        store.apply_reservation(inventory_id, 3, TransactionType.RESERVED, None, None)
    with pytest.raises(InvalidQuantityError):
        store.apply_reservation(inventory_id, -2, TransactionType.RELEASED, None, None)

    record = store.get_record(inventory_id)
    assert (record.quantity_reserved, record.quantity_available) == (1, 2)


def test_available_invariant_holds_after_every_write(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Router", on_hand=30, reserved=5)
    store.apply_mutation(inventory_id, 25, TransactionType.ADJUSTMENT, None, None)
    store.apply_delta(inventory_id, 4, TransactionType.RETURN, None, None)
    store.apply_reservation(inventory_id, 2, TransactionType.RESERVED, None, None)

    with database.read_scope() as session:
        for record in session.scalars(select(InventoryRecord)):
            assert record.quantity_available == record.quantity_on_hand - record.quantity_reserved
            assert record.quantity_on_hand >= 0
            assert record.quantity_reserved >= 0
        for entry in session.scalars(select(StockTransaction)):
            assert entry.quantity_delta == entry.new_quantity - entry.previous_quantity


def test_list_transactions_is_newest_first_and_repeatable(catalog, store) -> None:
    inventory_id = catalog.stocked_product("Speaker")
    for quantity in (3, 9, 4, 11):
        store.apply_mutation(inventory_id, quantity, TransactionType.ADJUSTMENT, None, None)

    first = store.list_transactions(inventory_id, 10)
    second = store.list_transactions(inventory_id, 10)

    assert [entry.new_quantity for entry in first] == [11, 4, 9, 3]
    assert [
        (entry.transaction_id, entry.previous_quantity, entry.new_quantity, entry.created_at)
        for entry in first
    ] == [
        (entry.transaction_id, entry.previous_quantity, entry.new_quantity, entry.created_at)
        for entry in second
    ]
    assert len(store.list_transactions(inventory_id, 2)) == 2


def test_ledger_entries_cannot_be_updated(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Webcam", on_hand=2)

    with pytest.raises(ImmutableTransactionError):
        with database.session_scope() as session:
            entry = session.scalars(
                select(StockTransaction).where(StockTransaction.inventory_id == inventory_id)
            ).first()
            entry.reason = "rewritten"

    assert store.list_transactions(inventory_id, 1)[0].reason == "initial stock"


def test_ledger_entries_cannot_be_deleted(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Headset", on_hand=2)

    with pytest.raises(ImmutableTransactionError):
        with database.session_scope() as session:
            entry = session.scalars(
                select(StockTransaction).where(StockTransaction.inventory_id == inventory_id)
            ).first()
            session.delete(entry)

    assert len(store.list_transactions(inventory_id, 10)) == 1


def test_derived_columns_cannot_be_set_out_of_sync(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Tablet", on_hand=6)

    with pytest.raises(InvalidQuantityError):
        with database.session_scope() as session:
            record = session.get(InventoryRecord, inventory_id)
            record.quantity_available = 100

    with pytest.raises(IntegrityError):
        with database.session_scope() as session:
            session.execute(
                text("UPDATE inventory_records SET quantity_available = 100 WHERE inventory_id = :id"),
                {"id": inventory_id},
            )

    assert store.get_record(inventory_id).quantity_available == 6


def test_deleting_product_cascades_to_stock_and_ledger(catalog, store, database) -> None:
    product_id = catalog.product("Discontinued")
    inventory_id = catalog.stock(product_id, on_hand=4)

    with database.session_scope() as session:
        session.delete(session.get(Product, product_id))

    with pytest.raises(NotFoundError):
        store.get_record(inventory_id)
    assert _transaction_count(database) == 0


def test_stale_write_is_retried_once(catalog, store, monkeypatch) -> None:
    inventory_id = catalog.stocked_product("Drill", on_hand=1)
    original = store._mutate_once
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("version mismatch")
        return original(*args, **kwargs)

    monkeypatch.setattr(store, "_mutate_once", flaky)

    record, _ = store.apply_mutation(inventory_id, 9, TransactionType.ADJUSTMENT, None, None)

    assert record.quantity_on_hand == 9
    assert len(calls) == 2


def test_persistent_conflict_surfaces(catalog, store, database, monkeypatch) -> None:
    inventory_id = catalog.stocked_product("Saw", on_hand=1)
    count = _transaction_count(database)

    def always_stale(*args, **kwargs):
        raise StaleDataError("version mismatch")

    monkeypatch.setattr(store, "_mutate_once", always_stale)

    with pytest.raises(ConcurrencyConflictError):
        store.apply_mutation(inventory_id, 9, TransactionType.ADJUSTMENT, None, None)
    assert _transaction_count(database) == count


def test_unreachable_database_reports_store_unavailable() -> None:
    database = Database("sqlite:////nonexistent-directory/inventory.sqlite3")
    store = LedgerStore(database)
    try:
        with pytest.raises(StoreUnavailableError):
            store.get_record("any")
        with pytest.raises(StoreUnavailableError):
            store.apply_mutation("any", 1, TransactionType.ADJUSTMENT, None, None)
    finally:
        database.dispose()


def test_returned_objects_stay_readable(catalog, store) -> None:
    product_id = catalog.product("Desk Fan", sku="FAN-01")
    opened = store.open_record(product_id)
    store.apply_mutation(opened.inventory_id, 7, TransactionType.RECEIVED, "delivery", "admin-2")

    record = store.get_record(opened.inventory_id)
    (listed,) = store.list_records()
    (entry,) = store.list_transactions(opened.inventory_id, 50)

    assert opened.quantity_on_hand == 0
    assert record.quantity_available == 7
    assert record.display_sku == "FAN-01"
    assert listed.product.name == "Desk Fan"
    assert entry.new_quantity == 7
    assert store.last_transaction(opened.inventory_id).reason == "delivery"
    assert store.get_record_by_product_variant(product_id).version == record.version


def test_on_hand_cannot_drop_below_reserved(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Printer", on_hand=5, reserved=3)
    count = _transaction_count(database)

    with pytest.raises(InsufficientStockError):
        store.apply_mutation(inventory_id, 2, TransactionType.DAMAGED, None, None)
    with pytest.raises(InsufficientStockError):
        store.apply_delta(inventory_id, -3, TransactionType.DAMAGED, None, None)

    record, _ = store.apply_mutation(inventory_id, 3, TransactionType.DAMAGED, None, None)
    assert (record.quantity_on_hand, record.quantity_reserved, record.quantity_available) == (3, 3, 0)
    assert _transaction_count(database) == count + 1

    with pytest.raises(IntegrityError):
        with database.session_scope() as session:
            session.execute(
                text(
                    "UPDATE inventory_records SET quantity_on_hand = 1, quantity_available = -2 "
                    "WHERE inventory_id = :id"
                ),
                {"id": inventory_id},
            )


def test_second_base_record_is_rejected_by_database(catalog, store, database) -> None:
    product_id = catalog.product("Scanner")
    variant_id = catalog.variant(product_id, "Duplex")
    store.open_record(product_id)
    store.open_record(product_id, variant_id)

    with pytest.raises(IntegrityError):
        with database.session_scope() as session:
            session.add(
                InventoryRecord(
                    product_id=product_id,
                    variant_id=None,
                    quantity_on_hand=0,
                    quantity_reserved=0,
                    quantity_available=0,
                    low_stock_alert=True,
                )
            )

    with database.read_scope() as session:
        count = session.scalar(
            select(func.count(InventoryRecord.inventory_id)).where(InventoryRecord.product_id == product_id)
        )
    assert count == 2


def test_history_follows_commit_order_not_clock(catalog, store, monkeypatch) -> None:
    inventory_id = catalog.stocked_product("Projector")
    start = datetime(2026, 3, 1, 12, 0, 0)
    clock = iter(start - timedelta(minutes=minutes) for minutes in range(10))
    monkeypatch.setattr("inventory_admin.ledger.utcnow", lambda: next(clock))

    for quantity in (1, 2, 3):
        store.apply_mutation(inventory_id, quantity, TransactionType.ADJUSTMENT, None, None)

    assert [entry.new_quantity for entry in store.list_transactions(inventory_id, 10)] == [3, 2, 1]
    assert store.last_transaction(inventory_id).new_quantity == 3


def test_ledger_rejects_bulk_update_and_delete(catalog, store, database) -> None:
    inventory_id = catalog.stocked_product("Router Table", on_hand=2)

    with pytest.raises(IntegrityError):
        with database.session_scope() as session:
            session.execute(
                update(StockTransaction)
                .where(StockTransaction.inventory_id == inventory_id)
                .values(reason="rewritten")
            )
    with pytest.raises(IntegrityError):
        with database.session_scope() as session:
            session.execute(delete(StockTransaction).where(StockTransaction.inventory_id == inventory_id))

    (entry,) = store.list_transactions(inventory_id, 10)
    assert entry.reason == "initial stock"
