"""Enumerations and fixed values shared across StockFlow modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), read views, and the CLI rely on a single source of truth
for directions, roles, sheet names, and dashboard thresholds.
"""

from __future__ import annotations

from enum import Enum


# Fixed storage location used when no configuration overrides it.
DEFAULT_DATA_FILE = "stockflow_data_v1.xlsx"

LOW_STOCK_THRESHOLD = 10
RECENT_HISTORY_DAYS = 90
TOP_SELLER_LIMIT = 5
ANALYSIS_RECENT_SALES_LIMIT = 50

UNKNOWN_CONTACT_NAME = "Unknown"


class TransactionDirection(str, Enum):
    """Enumerate the two ways a transaction can move stock."""

    INWARD = "INWARD"
    OUTWARD = "OUTWARD"


class ContactRole(str, Enum):
    """Enumerate the counterparty roles a contact may hold."""

    BUYER = "BUYER"
    SELLER = "SELLER"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CONTACTS = "Contacts"
    TRANSACTIONS = "Transactions"
    TRANSACTION_LINES = "TransactionLines"


# Counterparty role that may take part in each direction.
COUNTERPARTY_ROLE = {
    TransactionDirection.INWARD: ContactRole.SELLER,
    TransactionDirection.OUTWARD: ContactRole.BUYER,
}


__all__ = [
    "DEFAULT_DATA_FILE",
    "LOW_STOCK_THRESHOLD",
    "RECENT_HISTORY_DAYS",
    "TOP_SELLER_LIMIT",
    "ANALYSIS_RECENT_SALES_LIMIT",
    "UNKNOWN_CONTACT_NAME",
    "TransactionDirection",
    "ContactRole",
    "SheetName",
    "COUNTERPARTY_ROLE",
]
