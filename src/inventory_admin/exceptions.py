"""Typed errors raised by the ledger store and the inventory services.

Every error carries a machine-readable ``code`` that the HTTP layer returns
next to the message, so callers can branch on type or code instead of text.
"""

from __future__ import annotations


class InventoryError(RuntimeError):
    """Base class for all inventory errors."""

    code = "inventory_error"


class NotFoundError(InventoryError):
    """Raised when a referenced inventory record (or product) does not exist."""

    code = "not_found"

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier!r} not found")


class InvalidQuantityError(InventoryError):
    """Raised when a requested quantity is negative or not an integer."""

    code = "invalid_quantity"


class InsufficientStockError(InvalidQuantityError):
    """Raised when a reservation asks for more units than are available."""

    code = "insufficient_stock"


class InvalidTransactionTypeError(InventoryError):
    """Raised for a transaction type outside the supported set."""

    code = "invalid_transaction_type"


class ConcurrencyConflictError(InventoryError):
    """Raised when a concurrent write on the same record could not be serialised."""

    code = "concurrency_conflict"


class StoreUnavailableError(InventoryError):
    """Raised when the underlying database cannot be reached.

    The mutation in flight must be treated as not applied.
    """

    code = "store_unavailable"


class ImmutableTransactionError(InventoryError):
    """Raised when code tries to update or delete a ledger entry."""

    code = "immutable_transaction"
