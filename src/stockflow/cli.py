"""Command-line views for StockFlow.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and rendering the
read views as text. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import analysis, core_logic, log, setup_excel, views
from .constants import LOW_STOCK_THRESHOLD, RECENT_HISTORY_DAYS, ContactRole, TransactionDirection


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


ItemSpec = Tuple[str, str, Optional[str]]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockflow",
        description="Command-line views for the StockFlow inventory ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as stock entries."""
    specs = {
        "init": register_init_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-contact": register_add_contact_command(subparsers),
        "inward": register_entry_command(subparsers, TransactionDirection.INWARD),
        "outward": register_entry_command(subparsers, TransactionDirection.OUTWARD),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as the dashboard tabs."""
    specs = {
        "overview": _simple_command("overview", "Show dashboard figures, top sellers, and low-stock alerts.", run_overview),
        "products": _simple_command("products", "List the product catalogue with stock levels.", run_products),
        "contacts": _simple_command("contacts", "List buyers and sellers.", run_contacts),
        "history": register_history_command(subparsers),
        "analyze": _simple_command("analyze", "Request an AI-generated business summary.", run_analyze),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_init_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init``."""
    name = "init"
    help_text = "Write the seed dataset to the configured data file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing data file.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Create a new product with zero stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--sku", default="")
        parser.add_argument("--category", default="")
        parser.add_argument("--description", default="")
        parser.add_argument("--buy-price", required=True)
        parser.add_argument("--sell-price", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_contact_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-contact``."""
    name = "add-contact"
    help_text = "Create a new buyer or seller."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--role", choices=[member.value for member in ContactRole], required=True)
        parser.add_argument("--email", default=None)
        parser.add_argument("--phone", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_contact)


def register_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    direction: TransactionDirection,
) -> CommandSpec:
    """Register ``inward`` or ``outward`` stock entry."""
    name = direction.value.lower()
    if direction is TransactionDirection.INWARD:
        counterparty, help_text = "seller", "Record a purchase from a seller."
    else:
        counterparty, help_text = "buyer", "Record a sale to a buyer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contact-id", required=True, help=f"Identifier of the {counterparty}.")
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            metavar="PRODUCT_ID:QTY[:PRICE]",
            help="Line item; repeat for several. PRICE overrides the default unit price.",
        )
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        return run_entry(context, args, direction)

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "Show transactions from the recent history window, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--days", type=int, default=RECENT_HISTORY_DAYS)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_history)


def load_runtime_context(config_path: Optional[Path] = None, *, load_state: bool = True) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path, load_state=load_state)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_item(raw: str) -> ItemSpec:
    """Split ``PRODUCT_ID:QTY[:PRICE]`` into its parts."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise core_logic.BusinessRuleViolation(f"Malformed item '{raw}', expected PRODUCT_ID:QTY[:PRICE]")
    price = parts[2] if len(parts) == 3 and parts[2] else None
    return parts[0], parts[1], price


def translate_entry(args: argparse.Namespace) -> List[ItemSpec]:
    """Translate repeated ``--item`` values into cart inputs."""
    return [parse_item(raw) for raw in args.items]


def format_money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def run_init(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Seed the configured data file."""
    path = setup_excel.create_state_workbook(context.settings.data_file, overwrite=args.force)
    print(f"Seed data written to {path}")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = context.store.add_product(
        name=args.name,
        sku=args.sku,
        category=args.category,
        description=args.description,
        default_buy_price=args.buy_price,
        default_sell_price=args.sell_price,
    )
    print(f"Product created: {product.name} ({product.product_id})")
    return 0


def run_add_contact(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-contact workflow in the BLL."""
    contact = context.store.add_contact(name=args.name, role=args.role, email=args.email, phone=args.phone)
    print(f"Contact created: {contact.name} [{contact.role.value}] ({contact.contact_id})")
    return 0


def run_entry(context: core_logic.RuntimeContext, args: argparse.Namespace, direction: TransactionDirection) -> int:
    """Build a cart from the items, check out, and apply it to the ledger.

    Only contacts whose role matches ``direction`` are selectable, mirroring
    the entry forms.
    """
    snapshot = context.store.snapshot()
    selectable = {contact.contact_id for contact in views.contacts_for_direction(snapshot, direction)}
    if args.contact_id not in selectable:
        role = core_logic.expected_role(direction).value.lower()
        raise core_logic.BusinessRuleViolation(f"Contact '{args.contact_id}' is not a known {role}")

    transaction = core_logic.build_transaction(
        snapshot,
        direction,
        args.contact_id,
        translate_entry(args),
        notes=args.notes,
    )
    context.store.apply_transaction(transaction)
    print(f"Transaction successful! {transaction.transaction_id}")
    for line in transaction.lines:
        print(f"  {line.product_name}: {line.quantity} x {format_money(line.price_at_transaction)} = {format_money(line.subtotal)}")
    print(f"  Total: {format_money(transaction.total_amount)}")
    return 0


def run_overview(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render the overview tab."""
    data = context.store.snapshot()
    summary = views.dashboard_summary(data)
    print(f"{context.settings.store_name} - Business Overview")
    print(f"  Total inventory value: {format_money(summary.total_inventory_value)}")
    print(f"  Low stock alerts:      {summary.low_stock_count} items")
    print(f"  Total products:        {summary.product_count}")
    print(f"  90-day orders:         {summary.recent_order_count}")

    print("\nTop selling products")
    ranking = views.top_sellers(data)
    if not ranking:
        print("  No sales recorded yet")
    for name, quantity in ranking:
        print(f"  {name:<30} {quantity:>6}")

    low_stock = views.low_stock_products(data)
    if low_stock:
        print("\nLow stock")
        for product in low_stock:
            print(f"  {product.name:<30} {product.current_stock:>6}")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render the products tab."""
    for product in context.store.snapshot().products:
        flag = " LOW" if product.current_stock < LOW_STOCK_THRESHOLD else ""
        print(
            f"{product.product_id}  {product.name} [{product.sku}] {product.category}  "
            f"buy {format_money(product.default_buy_price)} sell {format_money(product.default_sell_price)}  "
            f"stock {product.current_stock}{flag}"
        )
    return 0


def run_contacts(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render the buyers and sellers tab."""
    for contact in context.store.snapshot().contacts:
        details = ", ".join(value for value in (contact.email, contact.phone) if value)
        print(f"{contact.contact_id}  {contact.name} [{contact.role.value}]  {details}".rstrip())
    return 0


def run_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render the history tab."""
    recent = views.recent_transactions(context.store.snapshot(), days=args.days)
    if not recent:
        print("No transactions in this period")
    for transaction in recent:
        print(
            f"{transaction.timestamp:%Y-%m-%d %H:%M}  {transaction.direction.value:<7}  "
            f"{transaction.contact_name:<25} {len(transaction.lines)} items  {format_money(transaction.total_amount)}"
        )
        for line in transaction.lines:
            print(f"    - {line.product_name} (x{line.quantity})")
    return 0


def run_analyze(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Request and print the AI business summary."""
    print(analysis.run_analysis(context.store.snapshot(), context.settings))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        # init replaces the data file, so skip reading it
        context = load_runtime_context(getattr(args, "config", None), load_state=args.command != "init")
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
