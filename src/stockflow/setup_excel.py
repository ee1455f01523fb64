"""Seed dataset and state workbook initialisation for StockFlow.

The module doubles as a script (``python -m stockflow.setup_excel``) and as a
library used by the store, the CLI ``init`` command, and tests. The seed
dataset is what a first session sees when nothing has been stored yet.
"""

from __future__ import annotations

import argparse
import sys
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional, Sequence

from . import data_manager
from .constants import ContactRole, TransactionDirection
from .data_manager import AppData, Contact, Product, Transaction, TransactionLine


SEED_PRODUCTS = (
    Product("p1", "Wireless Mouse", "TECH-001", "Electronics", "Ergonomic wireless mouse", Decimal("15"), Decimal("35"), 120),
    Product("p2", "Mechanical Keyboard", "TECH-002", "Electronics", "RGB Mechanical Keyboard", Decimal("45"), Decimal("120"), 45),
    Product("p3", "Office Chair", "FUR-001", "Furniture", "Mesh back office chair", Decimal("80"), Decimal("199"), 12),
    Product("p4", "USB-C Cable", "ACC-001", "Accessories", "2m Braided Cable", Decimal("2"), Decimal("10"), 500),
)

SEED_CONTACTS = (
    Contact("c1", "TechSuppliers Inc.", ContactRole.SELLER, email="sales@techsuppliers.com"),
    Contact("c2", "Global Importers Ltd.", ContactRole.SELLER, email="orders@global.com"),
    Contact("c3", "Alice Smith", ContactRole.BUYER, email="alice@example.com"),
    Contact("c4", "Bob Jones", ContactRole.BUYER, email="bob@example.com"),
)


def build_seed_data(now: Optional[datetime] = None) -> AppData:
    """Return the fixed fallback dataset used when no state has been stored.

    The two seed sales are dated relative to ``now`` (5 and 10 days earlier)
    so the history and chart views have something to show on first launch.
    Their stock effect is already reflected in the seed stock levels.
    """

    now = now or datetime.now(UTC)
    transactions = (
        Transaction(
            transaction_id="t1",
            timestamp=now - timedelta(days=5),
            direction=TransactionDirection.OUTWARD,
            contact_id="c3",
            contact_name="Alice Smith",
            lines=(
                TransactionLine("p1", "Wireless Mouse", 1, Decimal("35")),
                TransactionLine("p2", "Mechanical Keyboard", 1, Decimal("120")),
            ),
            total_amount=Decimal("155"),
        ),
        Transaction(
            transaction_id="t2",
            timestamp=now - timedelta(days=10),
            direction=TransactionDirection.OUTWARD,
            contact_id="c4",
            contact_name="Bob Jones",
            lines=(TransactionLine("p1", "Wireless Mouse", 2, Decimal("35")),),
            total_amount=Decimal("70"),
        ),
    )
    return AppData(products=SEED_PRODUCTS, contacts=SEED_CONTACTS, transactions=transactions)


def create_state_workbook(destination: Path, *, overwrite: bool = False, now: Optional[datetime] = None) -> Path:
    """Write the seed dataset to ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing state workbook: {destination}"
        )

    data_manager.save_app_data(build_seed_data(now), destination)
    return destination


def run_from_config(config_path: Optional[Path], *, overwrite: bool = False) -> Path:
    """Resolve the configured storage location and seed it."""

    located = data_manager.find_config_file(config_path)
    parser = data_manager.read_config(located)
    base_path = Path(located).expanduser().resolve().parent if located else None
    settings = data_manager.parse_settings(parser, base_path=base_path)
    return create_state_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the StockFlow data file with seed data")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: search for config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)

    print("--- StockFlow Setup Script ---")

    try:
        output_path = run_from_config(args.config, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created state workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
