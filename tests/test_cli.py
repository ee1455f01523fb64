"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal

import pytest

from stockflow import analysis, cli, core_logic, data_manager, setup_excel
from stockflow.constants import TransactionDirection


WRITE_COMMANDS = {"init", "add-product", "add-contact", "inward", "outward"}

READ_COMMANDS = {"overview", "products", "contacts", "history", "analyze"}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "stockflow"
    assert "StockFlow" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
        assert spec.name in subparsers_action.choices


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    for name in READ_COMMANDS:
        assert name in subparsers_action.choices


def test_entry_command_collects_repeated_items():
    """--item may be repeated; values keep their order."""

    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(
        ["outward", "--contact-id", "c3", "--item", "p1:2", "--item", "p2:1:99.50", "--notes", "walk-in"]
    )

    assert args.command == "outward"
    assert args.contact_id == "c3"
    assert args.items == ["p1:2", "p2:1:99.50"]
    assert args.notes == "walk-in"


def test_add_contact_command_restricts_roles():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(["add-contact", "--name", "Eve", "--role", "BROKER"])


def test_history_command_defaults_to_ninety_days():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    assert parser.parse_args(["history"]).days == 90


# ---------------------------------------------------------------------------
# Command table and dispatch
# ---------------------------------------------------------------------------


def test_build_command_table_detects_duplicate_commands():
    spec = cli.CommandSpec("overview", "help", lambda _: None, lambda *_: 0)
    with pytest.raises(ValueError, match="Duplicate"):
        cli.build_command_table([spec, spec])


def test_dispatch_command_invokes_executor(runtime_context):
    called = {}

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = context
        return 7

    table = {"overview": cli.CommandSpec("overview", "help", lambda _: None, execute)}
    exit_code = cli.dispatch_command(runtime_context, argparse.Namespace(command="overview"), table)

    assert exit_code == 7
    assert called["context"] is runtime_context


def test_dispatch_command_handles_unknown_commands(runtime_context):
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="nope"), {})


# ---------------------------------------------------------------------------
# Argument translation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("p1:5", ("p1", "5", None)),
        ("p1:5:12.50", ("p1", "5", "12.50")),
        ("p1:5:", ("p1", "5", None)),
    ],
)
def test_parse_item_splits_fields(raw, expected):
    assert cli.parse_item(raw) == expected


@pytest.mark.parametrize("raw", ["p1", ":3", "p1:2:3:4"])
def test_parse_item_rejects_malformed_values(raw):
    with pytest.raises(core_logic.BusinessRuleViolation):
        cli.parse_item(raw)


def test_format_money():
    assert cli.format_money(Decimal("5785")) == "$5,785.00"
    assert cli.format_money(Decimal("0.1")) == "$0.10"


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (core_logic.EmptyCartError("empty"), 2),
        (FileNotFoundError("missing"), 3),
        (FileExistsError("exists"), 1),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_main_routes_errors_through_handler(monkeypatch, runtime_context):
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None, **_: runtime_context)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)

    assert cli.main(["overview"]) == 99
    assert isinstance(handled["error"], core_logic.BusinessRuleViolation)


# ---------------------------------------------------------------------------
# End-to-end commands against a temporary config
# ---------------------------------------------------------------------------


def _run(bundle, *argv: str) -> int:
    return cli.main(["--config", str(bundle.config_path), *argv])


def _stored(bundle) -> data_manager.AppData:
    data = data_manager.load_app_data(bundle.data_file)
    assert data is not None
    return data


def test_outward_sale_updates_and_persists_stock(config_bundle, capsys):
    exit_code = _run(config_bundle, "outward", "--contact-id", "c3", "--item", "p1:5")

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Transaction successful!" in out
    assert "Wireless Mouse: 5 x $35.00 = $175.00" in out
    assert "Total: $175.00" in out

    stored = _stored(config_bundle)
    assert core_logic.get_product(stored, "p1").current_stock == 115
    latest = stored.transactions[0]
    assert latest.direction is TransactionDirection.OUTWARD
    assert latest.total_amount == Decimal("175")
    assert latest.contact_name == "Alice Smith"
    assert len(stored.transactions) == 3


def test_inward_purchase_with_price_override(config_bundle):
    exit_code = _run(config_bundle, "inward", "--contact-id", "c2", "--item", "p3:10:75", "--notes", "restock")

    assert exit_code == 0
    stored = _stored(config_bundle)
    assert core_logic.get_product(stored, "p3").current_stock == 22
    assert stored.transactions[0].total_amount == Decimal("750")
    assert stored.transactions[0].notes == "restock"


def test_outward_beyond_stock_fails_without_writing(config_bundle, caplog):
    caplog.set_level("ERROR")

    exit_code = _run(config_bundle, "outward", "--contact-id", "c3", "--item", "p3:130")

    assert exit_code == 2
    assert not config_bundle.data_file.exists()
    assert any("Insufficient stock for 'Office Chair'" in record.getMessage() for record in caplog.records)


def test_entry_rejects_contact_with_wrong_role(config_bundle):
    """A seller cannot be the counterparty of a sale."""

    assert _run(config_bundle, "outward", "--contact-id", "c1", "--item", "p1:1") == 2
    assert not config_bundle.data_file.exists()


def test_entry_rejects_bad_quantity(config_bundle):
    assert _run(config_bundle, "inward", "--contact-id", "c1", "--item", "p1:2.5") == 2


def test_add_product_then_list(config_bundle, capsys):
    exit_code = _run(
        config_bundle,
        "add-product",
        "--name",
        "Desk Lamp",
        "--sku",
        "LIT-001",
        "--category",
        "Lighting",
        "--buy-price",
        "12",
        "--sell-price",
        "30",
    )
    assert exit_code == 0
    assert "Product created: Desk Lamp" in capsys.readouterr().out

    assert _run(config_bundle, "products") == 0
    out = capsys.readouterr().out
    assert "Desk Lamp [LIT-001] Lighting" in out
    assert "stock 0 LOW" in out


def test_add_contact_then_list(config_bundle, capsys):
    assert _run(config_bundle, "add-contact", "--name", "Carol White", "--role", "BUYER", "--phone", "555-0101") == 0
    capsys.readouterr()

    assert _run(config_bundle, "contacts") == 0
    out = capsys.readouterr().out
    assert "Carol White [BUYER]  555-0101" in out
    assert "TechSuppliers Inc. [SELLER]  sales@techsuppliers.com" in out


def test_add_product_rejects_control_characters_without_writing(config_bundle):
    assert _run(config_bundle, "add-product", "--name", "Bad\x01Name", "--buy-price", "1", "--sell-price", "2") == 2
    assert not config_bundle.data_file.exists()


def test_overview_renders_seed_dashboard(config_bundle, capsys):
    assert _run(config_bundle, "overview") == 0
    out = capsys.readouterr().out

    assert "Test Store - Business Overview" in out
    assert "Total inventory value: $5,785.00" in out
    assert "Low stock alerts:      0 items" in out
    assert "Wireless Mouse" in out
    assert "Low stock\n" not in out


def test_history_lists_recent_transactions(config_bundle, capsys):
    assert _run(config_bundle, "history") == 0
    lines = capsys.readouterr().out.strip().splitlines()

    assert len(lines) == 5
    assert "Alice Smith" in lines[0]
    assert "2 items  $155.00" in lines[0]
    assert lines[1:3] == ["    - Wireless Mouse (x1)", "    - Mechanical Keyboard (x1)"]
    assert "Bob Jones" in lines[3]
    assert lines[4] == "    - Wireless Mouse (x2)"


def test_history_with_empty_window(config_bundle, capsys):
    assert _run(config_bundle, "history", "--days", "1") == 0
    assert "No transactions in this period" in capsys.readouterr().out


def test_analyze_without_credential_prints_fallback(config_bundle, monkeypatch, capsys):
    monkeypatch.delenv(config_bundle.api_key_env, raising=False)

    assert _run(config_bundle, "analyze") == 0
    assert analysis.ANALYSIS_ERROR_MESSAGE in capsys.readouterr().out


def test_init_refuses_to_overwrite_without_force(config_bundle):
    assert _run(config_bundle, "init") == 0
    assert config_bundle.data_file.exists()

    assert _run(config_bundle, "init") == 1
    assert _run(config_bundle, "init", "--force") == 0


def test_init_force_replaces_unreadable_data_file(config_bundle, capsys):
    config_bundle.data_file.write_bytes(b"not a workbook")
    assert _run(config_bundle, "overview") == 1

    assert _run(config_bundle, "init", "--force") == 0
    assert "Seed data written to" in capsys.readouterr().out
    assert _stored(config_bundle).products == setup_excel.SEED_PRODUCTS


def test_missing_explicit_config_exits_with_code_three(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "overview"]) == 3


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
