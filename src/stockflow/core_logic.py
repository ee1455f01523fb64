"""Business logic layer for StockFlow.

This module contains the ledger engine that applies committed transactions
to the product catalogue, the :class:`LedgerStore` that owns the single
in-memory state and persists it after every mutation, and the cart builder
shared by the inward and outward entry flows. All I/O goes through
:mod:`stockflow.data_manager`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from . import data_manager, log
from .constants import COUNTERPARTY_ROLE, UNKNOWN_CONTACT_NAME, ContactRole, TransactionDirection
from .data_manager import AppData, Contact, Product, Transaction, TransactionLine
from .setup_excel import build_seed_data


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or contact is unknown."""


class InvalidQuantityError(BusinessRuleViolation):
    """Raised when a line quantity is not a positive whole number."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when an outward cart would take more than is on hand."""

    def __init__(self, product: Product, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for '{product.name}': requested {requested}, "
            f"only {product.current_stock} available"
        )
        self.product = product
        self.requested = requested


class EmptyCartError(BusinessRuleViolation):
    """Raised when checking out a cart without any lines."""


MoneyInput = Union[Decimal, int, float, str]


# ---------------------------------------------------------------------------
# Ledger engine
# ---------------------------------------------------------------------------


def apply_transaction(transaction: Transaction, state: AppData) -> AppData:
    """Apply a committed transaction to ``state`` and return the next state.

    The transaction is prepended to the log and every line adjusts the stock of
    the product it references: ``INWARD`` adds the line quantity and
    ``OUTWARD`` subtracts it. Stock is never clamped, so an outward
    transaction that was not checked upstream can drive it negative.

    ``state`` is left untouched and the returned aggregate is built in full
    before it is handed back, so callers either see the whole effect or none
    of it. Applying the same transaction twice double-counts it; there is no
    de-duplication by identifier.

    Lines whose product id no longer resolves are skipped for stock purposes
    while the transaction itself is still logged with its original total.

    Args:
        transaction (Transaction): Fully priced and totaled transaction.
        state (AppData): Current application state.

    Returns:
        AppData: New aggregate reflecting the transaction.
    """

    sign = 1 if transaction.direction is TransactionDirection.INWARD else -1
    deltas: Dict[str, int] = {}
    known_ids = {product.product_id for product in state.products}
    for line in transaction.lines:
        if line.product_id not in known_ids:
            log.warning(
                "Transaction '%s' references unknown product '%s'; stock left unchanged",
                transaction.transaction_id,
                line.product_id,
            )
            continue
        deltas[line.product_id] = deltas.get(line.product_id, 0) + sign * line.quantity

    products = tuple(
        replace(product, current_stock=product.current_stock + deltas[product.product_id])
        if product.product_id in deltas
        else product
        for product in state.products
    )
    return replace(
        state,
        products=products,
        transactions=(transaction, *state.transactions),
    )


def find_product(state: AppData, product_id: str) -> Optional[Product]:
    """Return the product with ``product_id`` or ``None``."""

    return next((product for product in state.products if product.product_id == product_id), None)


def find_contact(state: AppData, contact_id: str) -> Optional[Contact]:
    """Return the contact with ``contact_id`` or ``None``."""

    return next((contact for contact in state.contacts if contact.contact_id == contact_id), None)


def get_product(state: AppData, product_id: str) -> Product:
    """Resolve a product by id, raising :class:`MissingReferenceError` if absent."""

    product = find_product(state, product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def generate_id() -> str:
    """Return a fresh random identifier for a product, contact, or transaction."""

    return str(uuid.uuid4())


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


# ---------------------------------------------------------------------------
# Store and runtime context
# ---------------------------------------------------------------------------


class LedgerStore:
    """Single owner of the in-memory application state.

    Views read immutable :class:`AppData` snapshots through :meth:`snapshot`.
    The only ways to change state are :meth:`apply_transaction`,
    :meth:`add_product`, and :meth:`add_contact`; each replaces the aggregate
    wholesale and immediately saves the complete state to ``destination``.
    Save failures propagate to the caller and leave the held state unchanged.
    """

    def __init__(self, data: AppData, destination: Path) -> None:
        self._data = data
        self.destination = Path(destination)

    def snapshot(self) -> AppData:
        return self._data

    def _commit(self, data: AppData) -> AppData:
        data_manager.save_app_data(data, self.destination)
        self._data = data
        return data

    def apply_transaction(self, transaction: Transaction) -> AppData:
        """Run the ledger engine against the current state and persist it."""

        updated = self._commit(apply_transaction(transaction, self._data))
        log.info(
            "Applied %s transaction '%s' with %s (%d lines, total=%s)",
            transaction.direction.value,
            transaction.transaction_id,
            transaction.contact_name,
            len(transaction.lines),
            transaction.total_amount,
        )
        return updated

    def add_product(
        self,
        *,
        name: str,
        sku: str,
        category: str,
        default_buy_price: MoneyInput,
        default_sell_price: MoneyInput,
        description: str = "",
    ) -> Product:
        """Create a product with zero stock and append it to the catalogue.

        Raises:
            BusinessRuleViolation: If the name is blank, a text field holds
                control characters, or a price is not a nonnegative number.
        """

        product = Product(
            product_id=generate_id(),
            name=require_text(name, "Product name"),
            sku=storable_text(sku, "SKU"),
            category=storable_text(category, "Category"),
            description=storable_text(description, "Description"),
            default_buy_price=require_price(default_buy_price, "Default buy price"),
            default_sell_price=require_price(default_sell_price, "Default sell price"),
            current_stock=0,
        )
        self._commit(replace(self._data, products=(*self._data.products, product)))
        log.info("Added product '%s' (%s)", product.name, product.product_id)
        return product

    def add_contact(
        self,
        *,
        name: str,
        role: Union[ContactRole, str],
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Contact:
        """Create a buyer or seller and append it to the contact list.

        Raises:
            BusinessRuleViolation: If the name is blank, the role is unknown, or
                a text field holds control characters.
        """

        try:
            resolved_role = ContactRole(role)
        except ValueError as exc:
            log.warning("Rejected contact with unknown role '%s'", role)
            raise BusinessRuleViolation(f"Unknown contact role: {role}") from exc

        contact = Contact(
            contact_id=generate_id(),
            name=require_text(name, "Contact name"),
            role=resolved_role,
            email=_optional_text(email, "Email"),
            phone=_optional_text(phone, "Phone"),
        )
        self._commit(replace(self._data, contacts=(*self._data.contacts, contact)))
        log.info("Added %s contact '%s' (%s)", contact.role.value, contact.name, contact.contact_id)
        return contact


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the BLL."""

    settings: data_manager.ConfigSettings
    store: LedgerStore


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    now: Optional[datetime] = None,
    load_state: bool = True,
) -> RuntimeContext:
    """Load configuration settings and the application state.

    The state is read from the configured data file; when nothing has been
    stored yet the seed dataset is used instead. The seed is not written to
    disk until the first mutation.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory and falls back to defaults.
        now (datetime | None): Reference time for dating the seed transactions.
        load_state (bool): When ``False`` the data file is not read and the
            store starts from the seed dataset. Used by commands that replace
            the stored state, so an unreadable file does not block them.

    Returns:
        RuntimeContext: Settings plus a store holding the loaded state.

    Raises:
        FileNotFoundError: If an explicit configuration path does not exist.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    base_path = None
    if located_config is not None:
        located_config = Path(located_config).expanduser().resolve()
        base_path = located_config.parent
    parser = data_manager.read_config(located_config)
    settings = data_manager.parse_settings(parser, base_path=base_path)

    data = data_manager.load_app_data(settings.data_file) if load_state else None
    if data is None:
        log.info("Starting from seed dataset")
        data = build_seed_data(now)
    return RuntimeContext(settings=settings, store=LedgerStore(data, settings.data_file))


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def storable_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, rejecting characters a worksheet cannot hold."""

    text = (value or "").strip()
    if ILLEGAL_CHARACTERS_RE.search(text):
        log.warning("%s validation failed: control characters in %r", label, text)
        raise BusinessRuleViolation(f"{label} contains control characters")
    return text


def require_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, rejecting blank or unstorable input."""

    text = storable_text(value, label)
    if not text:
        log.warning("%s validation failed: blank value", label)
        raise BusinessRuleViolation(f"{label} is required")
    return text


def _optional_text(value: Optional[str], label: str) -> Optional[str]:
    return storable_text(value, label) or None


def parse_price(value: Optional[MoneyInput]) -> Optional[Decimal]:
    """Parse a user-entered price into a finite :class:`Decimal`.

    Returns ``None`` for empty input or anything that is not a finite number.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        price = Decimal(text)
    except InvalidOperation:
        return None
    return price if price.is_finite() else None


def require_price(value: MoneyInput, label: str) -> Decimal:
    """Parse ``value`` as a nonnegative price or raise."""

    price = parse_price(value)
    if price is None or price < Decimal("0"):
        log.warning("%s validation failed: %r", label, value)
        raise BusinessRuleViolation(f"{label} must be a number zero or greater")
    return price


def parse_quantity(value: Union[int, str]) -> int:
    """Parse a line quantity, accepting only positive whole numbers.

    Text must be plain ASCII digits; signs, underscores, and other numeral
    scripts are rejected.

    Raises:
        InvalidQuantityError: For zero, negative, fractional, or unparsable
            input.
    """

    if isinstance(value, bool):
        raise InvalidQuantityError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        quantity = value
    else:
        text = str(value).strip()
        if not (text.isascii() and text.isdigit()):
            log.warning("Quantity parse failed: %r", value)
            raise InvalidQuantityError(f"Invalid quantity: {value!r}")
        quantity = int(text)
    if quantity <= 0:
        log.warning("Quantity validation failed: %s", quantity)
        raise InvalidQuantityError("Quantity must be greater than zero")
    return quantity


# ---------------------------------------------------------------------------
# Cart builder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Cart:
    """An uncommitted, ordered list of line items for one direction."""

    direction: TransactionDirection
    lines: Tuple[TransactionLine, ...] = ()

    def __len__(self) -> int:
        return len(self.lines)


def new_cart(direction: Union[TransactionDirection, str]) -> Cart:
    return Cart(direction=TransactionDirection(direction))


def resolve_price(product: Product, direction: TransactionDirection, price_override: Optional[MoneyInput] = None) -> Decimal:
    """Pick the unit price for a line.

    A parseable override wins; otherwise the product's default buy price is
    used for inward carts and its default sell price for outward carts.
    """

    override = parse_price(price_override)
    if override is not None:
        return override
    if direction is TransactionDirection.INWARD:
        return product.default_buy_price
    return product.default_sell_price


def add_line(
    cart: Cart,
    state: AppData,
    product_id: str,
    quantity: Union[int, str],
    price_override: Optional[MoneyInput] = None,
) -> Cart:
    """Add ``quantity`` of a product to ``cart`` and return the new cart.

    An existing line for the same product is merged: its quantity grows by
    ``quantity`` and its price is replaced by the newly resolved price. For
    outward carts the cumulative quantity may not exceed the product's
    current stock.

    Args:
        cart (Cart): Cart to extend; never modified.
        state (AppData): Snapshot used to resolve the product.
        product_id (str): Product to add.
        quantity (int | str): Positive whole number, possibly as entered text.
        price_override (Decimal | str | None): Optional unit price.

    Returns:
        Cart: New cart containing the added or merged line.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        InvalidQuantityError: If ``quantity`` is not a positive integer.
        InsufficientStockError: If an outward cart would exceed stock.
    """

    product = get_product(state, product_id)
    amount = parse_quantity(quantity)
    price = resolve_price(product, cart.direction, price_override)

    index = next((i for i, line in enumerate(cart.lines) if line.product_id == product_id), None)
    cumulative = amount + (cart.lines[index].quantity if index is not None else 0)
    if cart.direction is TransactionDirection.OUTWARD and cumulative > product.current_stock:
        log.warning(
            "Rejected outward line for '%s': %d requested, %d in stock",
            product.product_id,
            cumulative,
            product.current_stock,
        )
        raise InsufficientStockError(product, cumulative)

    if index is None:
        line = TransactionLine(product.product_id, product.name, amount, price)
        return replace(cart, lines=(*cart.lines, line))

    merged = replace(cart.lines[index], quantity=cumulative, price_at_transaction=price)
    lines = list(cart.lines)
    lines[index] = merged
    return replace(cart, lines=tuple(lines))


def remove_line(cart: Cart, index: int) -> Cart:
    """Return ``cart`` without the line at ``index``.

    Raises:
        IndexError: If ``index`` does not address a line.
    """

    if not 0 <= index < len(cart.lines):
        raise IndexError(f"Cart has no line at position {index}")
    return replace(cart, lines=cart.lines[:index] + cart.lines[index + 1:])


def cart_total(cart: Cart) -> Decimal:
    return sum((line.subtotal for line in cart.lines), Decimal("0"))


def commit(
    cart: Cart,
    state: AppData,
    contact_id: str,
    *,
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Transaction:
    """Turn a cart into a priced, totaled :class:`Transaction`.

    The total is the exact sum of ``quantity * price_at_transaction`` over all
    lines. The counterparty name is snapshotted from ``state``; an id that
    does not resolve is recorded as ``"Unknown"``. Role matching is left to
    the views that offer the selectable contacts. The ledger is not touched;
    pass the result to :meth:`LedgerStore.apply_transaction`.

    Raises:
        EmptyCartError: If the cart has no lines.
        BusinessRuleViolation: If no counterparty was chosen.
    """

    if not cart.lines:
        log.warning("Checkout attempted with an empty %s cart", cart.direction.value)
        raise EmptyCartError("Cart is empty")
    if not contact_id:
        raise BusinessRuleViolation("A counterparty must be selected")

    contact = find_contact(state, contact_id)
    transaction = Transaction(
        transaction_id=generate_id(),
        timestamp=_resolve_timestamp(timestamp),
        direction=cart.direction,
        contact_id=contact_id,
        contact_name=contact.name if contact is not None else UNKNOWN_CONTACT_NAME,
        lines=cart.lines,
        total_amount=cart_total(cart),
        notes=_optional_text(notes, "Notes"),
    )
    log.debug("Committed %s cart into transaction '%s'", cart.direction.value, transaction.transaction_id)
    return transaction


def build_transaction(
    state: AppData,
    direction: Union[TransactionDirection, str],
    contact_id: str,
    items: Sequence[Tuple[str, Union[int, str], Optional[MoneyInput]]],
    *,
    notes: Optional[str] = None,
) -> Transaction:
    """Run a sequence of ``(product_id, quantity, price)`` adds and commit.

    Used by entry forms that collect every line up front. Each item goes
    through :func:`add_line` in order, so merge and stock rules apply exactly
    as they do for interactive carts.
    """

    cart = new_cart(direction)
    for product_id, quantity, price_override in items:
        cart = add_line(cart, state, product_id, quantity, price_override)
    return commit(cart, state, contact_id, notes=notes)


def expected_role(direction: Union[TransactionDirection, str]) -> ContactRole:
    """Return the contact role that may take part in ``direction``."""

    return COUNTERPARTY_ROLE[TransactionDirection(direction)]
