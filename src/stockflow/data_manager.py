"""Data access layer for StockFlow.

This module provides the low-level helpers that read and write the single
workbook holding the whole application state. Business logic belongs
elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record types: the immutable dataclasses that make up :class:`AppData`.
3. Whole-state persistence: loading every sheet into an :class:`AppData`
   aggregate and writing the complete aggregate back in one save.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import DEFAULT_DATA_FILE, ContactRole, SheetName, TransactionDirection


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CONTACTS_SHEET = SheetName.CONTACTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
TRANSACTION_LINES_SHEET = SheetName.TRANSACTION_LINES.value

# Column layout of every sheet in the state workbook.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "SKU",
        "Category",
        "Description",
        "DefaultBuyPrice",
        "DefaultSellPrice",
        "CurrentStock",
    ],
    CONTACTS_SHEET: [
        "ContactID",
        "Name",
        "Role",
        "Email",
        "Phone",
    ],
    TRANSACTIONS_SHEET: [
        "TransactionID",
        "Timestamp",
        "Direction",
        "ContactID",
        "ContactName",
        "TotalAmount",
        "Notes",
    ],
    TRANSACTION_LINES_SHEET: [
        "TransactionID",
        "LineNumber",
        "ProductID",
        "ProductName",
        "Quantity",
        "PriceAtTransaction",
    ],
}

DEFAULT_CONFIG: Mapping[str, Mapping[str, str]] = {
    "System": {
        "DataFile": DEFAULT_DATA_FILE,
        "StoreName": "StockFlow",
    },
    "Analysis": {
        "ApiKeyEnv": "ANTHROPIC_API_KEY",
        "Model": "claude-sonnet-4-5",
        "Temperature": "0.2",
        "MaxTokens": "1024",
    },
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    api_key_env: str
    analysis_model: str
    analysis_temperature: float
    analysis_max_tokens: int


@dataclass(frozen=True)
class Product:
    """A catalogue entry and its current stock level."""

    product_id: str
    name: str
    sku: str
    category: str
    description: str
    default_buy_price: Decimal
    default_sell_price: Decimal
    current_stock: int


@dataclass(frozen=True)
class Contact:
    """A buyer or seller the store trades with."""

    contact_id: str
    name: str
    role: ContactRole
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class TransactionLine:
    """One product/quantity/price tuple within a cart or committed transaction."""

    product_id: str
    product_name: str
    quantity: int
    price_at_transaction: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price_at_transaction * self.quantity


@dataclass(frozen=True)
class Transaction:
    """A committed stock movement against a single counterparty."""

    transaction_id: str
    timestamp: datetime
    direction: TransactionDirection
    contact_id: str
    contact_name: str
    lines: Tuple[TransactionLine, ...]
    total_amount: Decimal
    notes: Optional[str] = None


@dataclass(frozen=True)
class AppData:
    """Aggregate root holding every product, contact, and transaction."""

    products: Tuple[Product, ...] = ()
    contacts: Tuple[Contact, ...] = ()
    transactions: Tuple[Transaction, ...] = ()


def find_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. When no explicit path is given the function
    walks up from the current working directory toward the filesystem root
    looking for a file named ``CONFIG_FILE_NAME``. The first match that exists
    on disk is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path | None: The path provided by the caller, the discovered
            configuration file, or ``None`` when the search finds nothing and
            built-in defaults should apply.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    log.debug("No %s found above '%s'; using built-in defaults", CONFIG_FILE_NAME, current)
    return None


def read_config(config_path: Optional[Path]) -> configparser.ConfigParser:
    """Build a ``ConfigParser`` seeded with defaults and overlaid with a file.

    The parser always starts from :data:`DEFAULT_CONFIG`. When ``config_path``
    is supplied, user home references (``~``) are expanded, the path is
    resolved, and the file is read on top of the defaults.

    Args:
        config_path (Path | None): Path to the configuration file, relative or
            absolute, or ``None`` to use defaults only.

    Returns:
        configparser.ConfigParser: Initialized parser containing the merged
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` is given but does not exist after
            expansion and resolution.
    """

    parser = configparser.ConfigParser()
    parser.read_dict(DEFAULT_CONFIG)
    if config_path is None:
        return parser

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` paths are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If a numeric analysis option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        api_key_env = parser.get("Analysis", "ApiKeyEnv")
        model = parser.get("Analysis", "Model")
        temperature = parser.getfloat("Analysis", "Temperature")
        max_tokens = parser.getint("Analysis", "MaxTokens")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        api_key_env=api_key_env,
        analysis_model=model,
        analysis_temperature=temperature,
        analysis_max_tokens=max_tokens,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the state workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the state workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def new_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Create an empty workbook with one bold header row per sheet."""

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def load_app_data(data_file: Path) -> Optional[AppData]:
    """Load the complete application state from ``data_file``.

    Args:
        data_file (Path): Location of the state workbook.

    Returns:
        AppData | None: The stored aggregate, or ``None`` when nothing has been
            persisted yet so the caller can fall back to the seed dataset.
    """

    path = Path(data_file).expanduser().resolve()
    if not path.exists():
        log.info("No stored state at '%s'", path)
        return None

    workbook = open_workbook(path)
    data = workbook_to_app_data(workbook)
    log.info(
        "Loaded state from '%s' (%d products, %d contacts, %d transactions)",
        path,
        len(data.products),
        len(data.contacts),
        len(data.transactions),
    )
    return data


def save_app_data(data: AppData, destination: Path) -> None:
    """Write the complete application state to ``destination``.

    A brand-new workbook is built from ``data`` and saved over any previous
    file, so the stored blob always mirrors exactly one in-memory state.
    Money columns are written as text so ``Decimal`` values reload digit for
    digit.

    Args:
        data (AppData): Aggregate to persist.
        destination (Path): Target workbook path.
    """

    save_workbook(app_data_to_workbook(data), destination)
    log.debug("Saved state to '%s'", destination)


def app_data_to_workbook(data: AppData) -> Workbook:
    """Render an :class:`AppData` aggregate into a fresh workbook."""

    workbook = new_workbook()
    products = workbook[PRODUCTS_SHEET]
    for product in data.products:
        products.append(serialize_product(product))

    contacts = workbook[CONTACTS_SHEET]
    for contact in data.contacts:
        contacts.append(serialize_contact(contact))

    transactions = workbook[TRANSACTIONS_SHEET]
    lines = workbook[TRANSACTION_LINES_SHEET]
    for transaction in data.transactions:
        transactions.append(serialize_transaction(transaction))
        for line_number, line in enumerate(transaction.lines, start=1):
            lines.append(serialize_line(transaction.transaction_id, line_number, line))
    return workbook


def workbook_to_app_data(workbook: Workbook) -> AppData:
    """Rebuild an :class:`AppData` aggregate from every sheet of ``workbook``."""

    lines_by_transaction: Dict[str, List[Tuple[int, TransactionLine]]] = {}
    for transaction_id, line_number, line in iter_transaction_lines(workbook):
        lines_by_transaction.setdefault(transaction_id, []).append((line_number, line))

    transactions = []
    for raw in _iter_sheet(workbook, TRANSACTIONS_SHEET):
        numbered = sorted(lines_by_transaction.get(str(raw[0]), []), key=lambda item: item[0])
        transactions.append(deserialize_transaction(raw, tuple(line for _, line in numbered)))

    return AppData(
        products=tuple(iter_products(workbook)),
        contacts=tuple(iter_contacts(workbook)),
        transactions=tuple(transactions),
    )


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        Product: One structured record for each meaningful row in the sheet.
    """

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_contacts(workbook: Workbook) -> Iterable[Contact]:
    """Iterate over the ``Contacts`` worksheet and yield typed records."""

    for raw in _iter_sheet(workbook, CONTACTS_SHEET):
        yield deserialize_contact(raw)


def iter_transaction_lines(workbook: Workbook) -> Iterable[Tuple[str, int, TransactionLine]]:
    """Stream line items together with their owning transaction id and position."""

    for raw in _iter_sheet(workbook, TRANSACTION_LINES_SHEET):
        transaction_id, line_number, product_id, product_name, quantity, price = raw
        line = TransactionLine(
            product_id=str(product_id),
            product_name=_text(product_name),
            quantity=int(quantity or 0),
            price_at_transaction=_decimal(price),
        )
        yield str(transaction_id), int(line_number or 0), line


def serialize_product(record: Product) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.sku,
        record.category,
        record.description,
        _money(record.default_buy_price),
        _money(record.default_sell_price),
        record.current_stock,
    ]


def serialize_contact(record: Contact) -> list[object]:
    """Convert a contact dataclass into the worksheet column ordering."""

    return [record.contact_id, record.name, record.role.value, record.email, record.phone]


def serialize_transaction(record: Transaction) -> list[object]:
    """Convert a transaction header into the ``Transactions`` column order.

    Line items are written separately through :func:`serialize_line`.
    """

    return [
        record.transaction_id,
        record.timestamp.isoformat(),
        record.direction.value,
        record.contact_id,
        record.contact_name,
        _money(record.total_amount),
        record.notes,
    ]


def serialize_line(transaction_id: str, line_number: int, line: TransactionLine) -> list[object]:
    """Convert a line item into the ``TransactionLines`` column order."""

    return [
        transaction_id,
        line_number,
        line.product_id,
        line.product_name,
        line.quantity,
        _money(line.price_at_transaction),
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric prices become :class:`~decimal.Decimal` instances and text columns
    are coerced to ``str`` so values Excel interpreted as numbers (SKUs, for
    example) round-trip unchanged.
    """

    product_id, name, sku, category, description, buy_raw, sell_raw, stock_raw = raw_row
    return Product(
        product_id=str(product_id),
        name=_text(name),
        sku=_text(sku),
        category=_text(category),
        description=_text(description),
        default_buy_price=_decimal(buy_raw),
        default_sell_price=_decimal(sell_raw),
        current_stock=int(stock_raw or 0),
    )


def deserialize_contact(raw_row: Sequence[object]) -> Contact:
    """Convert a raw worksheet row into a strongly typed contact record."""

    contact_id, name, role, email, phone = raw_row
    return Contact(
        contact_id=str(contact_id),
        name=_text(name),
        role=ContactRole(str(role)),
        email=(str(email) if email is not None else None),
        phone=(str(phone) if phone is not None else None),
    )


def deserialize_transaction(raw_row: Sequence[object], lines: Tuple[TransactionLine, ...]) -> Transaction:
    """Convert a raw ``Transactions`` row plus its lines into a record.

    Timestamps are stored as ISO-8601 text; naive values are treated as UTC.
    """

    transaction_id, timestamp_raw, direction, contact_id, contact_name, total_raw, notes = raw_row
    timestamp = (
        timestamp_raw
        if isinstance(timestamp_raw, datetime)
        else datetime.fromisoformat(str(timestamp_raw))
    )
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)

    return Transaction(
        transaction_id=str(transaction_id),
        timestamp=timestamp,
        direction=TransactionDirection(str(direction)),
        contact_id=_text(contact_id),
        contact_name=_text(contact_name),
        lines=lines,
        total_amount=_decimal(total_raw),
        notes=(str(notes) if notes is not None else None),
    )


def _text(value: object) -> str:
    return str(value) if value is not None else ""


def _money(amount: Decimal) -> str:
    # text cells keep every digit; numeric cells would go through float
    return str(amount)


def _decimal(value: object) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")
