"""Database models."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every ``DateTime`` column stores."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_inventory_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TransactionType(str, enum.Enum):
    """Reason category of a stock transaction."""

    PURCHASE = "purchase"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    DAMAGED = "damaged"
    RECEIVED = "received"
    RESERVED = "reserved"
    RELEASED = "released"


class ReferenceType(str, enum.Enum):
    """Kind of event that caused a stock transaction."""

    ORDER = "order"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    TRANSFER = "transfer"


class StockState(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"

    @classmethod
    def classify(cls, quantity_available: int, low_stock_alert: bool) -> "StockState":
        # Out of stock wins over the low-stock alert.
        if quantity_available <= 0:
            return cls.OUT_OF_STOCK
        if low_stock_alert:
            return cls.LOW_STOCK
        return cls.IN_STOCK


def is_low_stock(quantity_available: int, threshold: int) -> bool:
    return quantity_available <= threshold


class Category(Base):
    """Product category, owned by the catalog."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Brand(Base):
    """Product brand, owned by the catalog."""

    __tablename__ = "brands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Product(Base):
    """Catalog product. Only the fields the inventory core reads are mapped."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    brand_id: Mapped[int | None] = mapped_column(
        ForeignKey("brands.id", ondelete="SET NULL"), nullable=True, index=True
    )
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    track_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    category: Mapped[Category | None] = relationship()
    brand: Mapped[Brand | None] = relationship()
    variants: Mapped[list["ProductVariant"]] = relationship(
        back_populates="product", cascade="all, delete-orphan", passive_deletes=True
    )
    inventory_records: Mapped[list["InventoryRecord"]] = relationship(
        back_populates="product", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Product sku={self.sku!r} active={self.is_active}>"


class ProductVariant(Base):
    """A sellable variant of a product (size, colour...)."""

    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    product: Mapped[Product] = relationship(back_populates="variants")


class InventoryRecord(Base):
    """Current stock snapshot for one product or product variant.

    ``quantity_available`` and ``low_stock_alert`` are stored for querying but
    are only ever written by the ledger store's mutation unit of work.
    """

    __tablename__ = "inventory_records"
    __table_args__ = (
        UniqueConstraint("product_id", "variant_id", name="uq_inventory_product_variant"),
        # NULL variant ids never collide in the constraint above.
        Index(
            "uq_inventory_product_base",
            "product_id",
            unique=True,
            sqlite_where=text("variant_id IS NULL"),
            postgresql_where=text("variant_id IS NULL"),
        ),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint(
            "quantity_available = quantity_on_hand - quantity_reserved",
            name="ck_inventory_available_derived",
        ),
        CheckConstraint("quantity_available >= 0", name="ck_inventory_available_non_negative"),
    )

    inventory_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_inventory_id)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    variant_id: Mapped[int | None] = mapped_column(
        ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True, index=True
    )
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    low_stock_alert: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    __mapper_args__ = {"version_id_col": version}

    product: Mapped[Product] = relationship(back_populates="inventory_records")
    variant: Mapped[ProductVariant | None] = relationship()

    @property
    def stock_state(self) -> StockState:
        return StockState.classify(self.quantity_available, self.low_stock_alert)

    @property
    def display_name(self) -> str:
        if self.variant is not None:
            return f"{self.product.name} - {self.variant.name}"
        return self.product.name

    @property
    def display_sku(self) -> str:
        if self.variant is not None:
            return self.variant.sku
        return self.product.sku

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return (
            f"<InventoryRecord id={self.inventory_id!r} on_hand={self.quantity_on_hand}"
            f" reserved={self.quantity_reserved} available={self.quantity_available}>"
        )


class StockTransaction(Base):
    """Immutable ledger entry describing one stock change."""

    __tablename__ = "stock_transactions"
    __table_args__ = (
        CheckConstraint(
            "quantity_delta = new_quantity - previous_quantity",
            name="ck_transaction_delta_consistent",
        ),
    )

    transaction_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inventory_id: Mapped[str] = mapped_column(
        ForeignKey("inventory_records.inventory_id", ondelete="CASCADE"), nullable=False, index=True
    )
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            name="stock_transaction_type",
            native_enum=False,
            values_callable=_enum_values,
            validate_strings=True,
            length=16,
        ),
        nullable=False,
        index=True,
    )
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_type: Mapped[ReferenceType | None] = mapped_column(
        Enum(
            ReferenceType,
            name="stock_reference_type",
            native_enum=False,
            values_callable=_enum_values,
            validate_strings=True,
            length=16,
        ),
        nullable=True,
    )
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    # Ledger rows are removed only by the database cascade when a product goes.
    record: Mapped[InventoryRecord] = relationship()

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return (
            f"<StockTransaction id={self.transaction_id} type={self.transaction_type.value}"
            f" {self.previous_quantity}->{self.new_quantity}>"
        )
