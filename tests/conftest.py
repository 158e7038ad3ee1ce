from collections.abc import Generator
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from inventory_admin.app import create_app
from inventory_admin.config import Settings
from inventory_admin.database import Database
from inventory_admin.ledger import LedgerStore
from inventory_admin.logging_config import reset_logging
from inventory_admin.models import Brand, Category, Product, ProductVariant, TransactionType
from inventory_admin.queries import InventoryQueryService
from inventory_admin.security import sign_session
from inventory_admin.services import StockMutationService

TEST_SECRET = "test-secret"
TEST_ACTOR = "admin-1"


class CatalogSeeder:
    """Writes catalog rows the way the catalog service would, then opens stock."""

    def __init__(self, database: Database, store: LedgerStore) -> None:
        self.database = database
        self.store = store
        self._counter = 0

    def _next_sku(self) -> str:
        self._counter += 1
        return f"SKU-{self._counter:04d}"

    def category(self, name: str) -> int:
        with self.database.session_scope() as session:
            category = Category(name=name)
            session.add(category)
            session.flush()
            return category.id

    def brand(self, name: str) -> int:
        with self.database.session_scope() as session:
            brand = Brand(name=name)
            session.add(brand)
            session.flush()
            return brand.id

    def product(
        self,
        name: str,
        *,
        sku: Optional[str] = None,
        cost_price: Optional[str] = None,
        threshold: int = 5,
        category_id: Optional[int] = None,
        brand_id: Optional[int] = None,
        is_active: bool = True,
        track_inventory: bool = True,
    ) -> int:
        with self.database.session_scope() as session:
            product = Product(
                name=name,
                sku=sku or self._next_sku(),
                cost_price=Decimal(cost_price) if cost_price is not None else None,
                low_stock_threshold=threshold,
                category_id=category_id,
                brand_id=brand_id,
                is_active=is_active,
                track_inventory=track_inventory,
            )
            session.add(product)
            session.flush()
            return product.id

    def variant(self, product_id: int, name: str, sku: Optional[str] = None) -> int:
        with self.database.session_scope() as session:
            variant = ProductVariant(product_id=product_id, name=name, sku=sku or self._next_sku())
            session.add(variant)
            session.flush()
            return variant.id

    def stock(self, product_id: int, on_hand: int = 0, reserved: int = 0, variant_id: Optional[int] = None) -> str:
        """Open the record for a product and bring it to the given quantities."""

        record = self.store.open_record(product_id, variant_id)
        if on_hand:
            self.store.apply_mutation(record.inventory_id, on_hand, TransactionType.RECEIVED, "initial stock", None)
        if reserved:
            self.store.apply_reservation(record.inventory_id, reserved, TransactionType.RESERVED, "seed", None)
        return record.inventory_id

    def stocked_product(self, name: str, on_hand: int = 0, reserved: int = 0, **product_kwargs) -> str:
        return self.stock(self.product(name, **product_kwargs), on_hand=on_hand, reserved=reserved)


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    yield
    reset_logging()


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'inventory.sqlite3'}",
        secret_key=TEST_SECRET,
    )


@pytest.fixture(name="database")
def database_fixture(settings: Settings) -> Generator[Database, None, None]:
    database = Database.from_settings(settings)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture(name="store")
def store_fixture(database: Database) -> LedgerStore:
    return LedgerStore(database)


@pytest.fixture(name="mutations")
def mutations_fixture(store: LedgerStore, settings: Settings) -> StockMutationService:
    return StockMutationService(store, settings)


@pytest.fixture(name="queries")
def queries_fixture(store: LedgerStore, settings: Settings) -> InventoryQueryService:
    return InventoryQueryService(store, settings)


@pytest.fixture(name="catalog")
def catalog_fixture(database: Database, store: LedgerStore) -> CatalogSeeder:
    return CatalogSeeder(database, store)


@pytest.fixture(name="actor_id")
def actor_id_fixture() -> str:
    return TEST_ACTOR


@pytest.fixture(name="auth_headers")
def auth_headers_fixture() -> dict[str, str]:
    return {"Authorization": f"Bearer {sign_session(TEST_ACTOR, TEST_SECRET)}"}


@pytest.fixture(name="client")
def client_fixture(settings: Settings, database: Database) -> Generator[TestClient, None, None]:
    app = create_app(settings=settings, database=database)
    with TestClient(app) as client:
        yield client
