"""Command line interface for the inventory admin service."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import typer
import uvicorn

from .config import Settings, get_settings
from .database import Database
from .exceptions import InventoryError
from .ledger import LedgerStore
from .logging_config import configure_logging
from .models import InventoryRecord, TransactionType
from .queries import InventoryQueryService
from .services import StockMutationService

app = typer.Typer(help="Manage and run the inventory admin backend service.")


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _resolve_settings() -> Settings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    return settings


@contextmanager
def _services() -> Iterator[tuple[StockMutationService, InventoryQueryService, LedgerStore]]:
    settings = _resolve_settings()
    database = Database.from_settings(settings)
    try:
        database.create_all()
        store = LedgerStore(database)
        yield StockMutationService(store, settings), InventoryQueryService(store, settings), store
    except InventoryError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    finally:
        database.dispose()


def _echo_record(record: InventoryRecord) -> None:
    typer.echo(
        f"{record.inventory_id} | {record.display_name} ({record.display_sku}) | "
        f"on hand={record.quantity_on_hand} reserved={record.quantity_reserved} "
        f"available={record.quantity_available} | {record.stock_state.value}"
    )


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Hostname to bind"),
    port: Optional[int] = typer.Option(None, help="Port to expose"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
    log_level: Optional[str] = typer.Option(None, help="Uvicorn log level"),
) -> None:
    """Start the FastAPI service using Uvicorn."""

    settings = _resolve_settings()

    uvicorn.run(
        "inventory_admin.app:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.reload if reload is None else reload,
        log_level=log_level or settings.log_level,
        factory=True,
    )


@app.command()
def init_db() -> None:
    """Create the database tables."""

    settings = _resolve_settings()
    database = Database.from_settings(settings)
    try:
        database.create_all()
    finally:
        database.dispose()
    typer.echo(f"Database initialised at {settings.database_url}")


@app.command()
def show_config() -> None:
    """Print out the effective configuration (secrets omitted)."""

    settings = _resolve_settings()
    typer.echo(f"Database: {settings.database_url}")
    typer.echo(f"Listen: {settings.host}:{settings.port}")
    typer.echo(f"Default reason: {settings.default_reason}")
    typer.echo(f"History limit: {settings.history_limit} (max {settings.max_history_limit})")


@app.command("open-record")
def open_record(
    product_id: int = typer.Argument(..., help="Catalog product id"),
    variant_id: Optional[int] = typer.Option(None, "--variant", help="Variant id, if the unit is a variant"),
) -> None:
    """Open the zero-quantity inventory record for a product or variant."""

    with _services() as (_, _, store):
        record = store.open_record(product_id, variant_id)
        _echo_record(record)


@app.command()
def adjust(
    inventory_id: str = typer.Argument(..., help="Inventory record id"),
    quantity: int = typer.Argument(..., help="New on-hand total"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Why the stock changed"),
    transaction_type: TransactionType = typer.Option(
        TransactionType.ADJUSTMENT, "--type", "-t", help="Transaction type to record"
    ),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id recorded on the ledger entry"),
) -> None:
    """Set the on-hand quantity of a record to an absolute total."""

    with _services() as (mutations, _, _):
        record = mutations.adjust_stock(inventory_id, quantity, reason, transaction_type, actor)
        typer.secho("Stock updated", fg=typer.colors.GREEN)
        _echo_record(record)


@app.command()
def delta(
    inventory_id: str = typer.Argument(..., help="Inventory record id"),
    change: int = typer.Argument(..., help="Units to add (negative to remove)"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Why the stock changed"),
    transaction_type: TransactionType = typer.Option(
        TransactionType.ADJUSTMENT, "--type", "-t", help="Transaction type to record"
    ),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id recorded on the ledger entry"),
) -> None:
    """Add or remove units relative to the current on-hand quantity."""

    with _services() as (mutations, _, _):
        record = mutations.apply_delta(inventory_id, change, reason, transaction_type, actor)
        typer.secho("Stock updated", fg=typer.colors.GREEN)
        _echo_record(record)


@app.command()
def history(
    inventory_id: str = typer.Argument(..., help="Inventory record id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of entries to show"),
) -> None:
    """Display the most recent ledger entries of a record."""

    with _services() as (_, queries, _):
        entries = queries.get_transaction_history(inventory_id, limit)
        if not entries:
            typer.echo("No transactions recorded.")
            return
        _print_header(f"Transactions for {inventory_id}")
        for entry in entries:
            typer.echo(
                f"- #{entry.transaction_id} {entry.created_at:%Y-%m-%d %H:%M:%S} "
                f"{entry.transaction_type.value} {entry.previous_quantity} -> {entry.new_quantity} "
                f"({entry.quantity_delta:+d}) by {entry.actor_id or 'system'}"
                + (f" | {entry.reason}" if entry.reason else "")
            )


@app.command()
def stats() -> None:
    """Print inventory statistics."""

    with _services() as (_, queries, _):
        statistics = queries.compute_statistics()
        _print_header("Inventory statistics")
        typer.echo(f"Active products: {statistics.total_active_products}")
        typer.echo(f"Out of stock: {statistics.total_out_of_stock}")
        typer.echo(f"Low stock: {statistics.total_low_stock}")
        typer.echo(f"Inventory value: {statistics.total_inventory_value}")


@app.command("low-stock")
def low_stock() -> None:
    """List tracked items at or below their low-stock threshold."""

    with _services() as (_, queries, _):
        items = queries.low_stock_report()
        if not items:
            typer.echo("No items below their threshold.")
            return
        _print_header("Low stock")
        for item in items:
            typer.echo(
                f"- {item.name} ({item.sku}) available={item.quantity_available} "
                f"threshold={item.low_stock_threshold}"
            )


@app.command("out-of-stock")
def out_of_stock() -> None:
    """List tracked items with nothing available."""

    with _services() as (_, queries, _):
        items = queries.out_of_stock_report()
        if not items:
            typer.echo("Nothing is out of stock.")
            return
        _print_header("Out of stock")
        for item in items:
            kind = item.last_movement_type.value if item.last_movement_type else "none"
            typer.echo(f"- {item.name} ({item.sku}) last movement {item.last_movement_at:%Y-%m-%d} ({kind})")


def main() -> None:
    """Entry-point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
