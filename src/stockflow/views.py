"""Read-only projections over :class:`~stockflow.data_manager.AppData`.

Every function here is pure: it takes a snapshot and returns derived values
for display without touching the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from . import log
from .constants import (
    COUNTERPARTY_ROLE,
    LOW_STOCK_THRESHOLD,
    RECENT_HISTORY_DAYS,
    TOP_SELLER_LIMIT,
    TransactionDirection,
)
from .data_manager import AppData, Contact, Product, Transaction


@dataclass(frozen=True)
class DashboardSummary:
    """Figures shown on the overview cards."""

    total_inventory_value: Decimal
    low_stock_count: int
    product_count: int
    recent_order_count: int


def low_stock_products(data: AppData, threshold: int = LOW_STOCK_THRESHOLD) -> List[Product]:
    """Return products whose stock is below ``threshold``, in catalogue order."""

    return [product for product in data.products if product.current_stock < threshold]


def total_inventory_value(data: AppData) -> Decimal:
    """Value all stock on hand at each product's default buy price."""

    return sum(
        (product.default_buy_price * product.current_stock for product in data.products),
        Decimal("0"),
    )


def recent_transactions(
    data: AppData,
    now: Optional[datetime] = None,
    days: int = RECENT_HISTORY_DAYS,
) -> List[Transaction]:
    """Return transactions from the last ``days`` days, newest first.

    Sorting happens here by timestamp rather than relying on log order, since
    the log is ordered by insertion.
    """

    cutoff = (now or datetime.now(UTC)) - timedelta(days=days)
    recent = [transaction for transaction in data.transactions if transaction.timestamp >= cutoff]
    return sorted(recent, key=lambda transaction: transaction.timestamp, reverse=True)


def top_sellers(data: AppData, limit: int = TOP_SELLER_LIMIT) -> List[Tuple[str, int]]:
    """Rank products by total quantity sold across outward transactions.

    Quantities are grouped by the product name recorded on each line, so the
    ranking reflects names as they were at the time of sale.

    Returns:
        list[tuple[str, int]]: ``(product_name, quantity)`` pairs, highest
            quantity first, at most ``limit`` entries.
    """

    sold: Dict[str, int] = {}
    for transaction in data.transactions:
        if transaction.direction is not TransactionDirection.OUTWARD:
            continue
        for line in transaction.lines:
            sold[line.product_name] = sold.get(line.product_name, 0) + line.quantity

    ranking = sorted(sold.items(), key=lambda item: item[1], reverse=True)[:limit]
    log.debug("Computed top sellers over %d products", len(sold))
    return ranking


def dashboard_summary(data: AppData, now: Optional[datetime] = None) -> DashboardSummary:
    return DashboardSummary(
        total_inventory_value=total_inventory_value(data),
        low_stock_count=len(low_stock_products(data)),
        product_count=len(data.products),
        recent_order_count=len(recent_transactions(data, now)),
    )


def contacts_for_direction(data: AppData, direction: Union[TransactionDirection, str]) -> List[Contact]:
    """Contacts selectable on an entry form: sellers for inward, buyers for outward."""

    role = COUNTERPARTY_ROLE[TransactionDirection(direction)]
    return [contact for contact in data.contacts if contact.role is role]
