"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

import pytest

from tea_coop import cli, constants, core_logic


WRITE_COMMANDS = {
    "add-farmer",
    "edit-farmer",
    "delete-farmer",
    "record-delivery",
    "edit-delivery",
    "delete-delivery",
    "process",
    "edit-lot",
    "delete-lot",
    "add-buyer",
    "edit-buyer",
    "delete-buyer",
    "sell",
    "edit-sale",
    "delete-sale",
}

READ_COMMANDS = {
    "dashboard",
    "farmers",
    "deliveries",
    "lots",
    "buyers",
    "sales",
    "report",
}


def _run(context: core_logic.RuntimeContext, argv: list[str]) -> int:
    """Parse ``argv`` with the real parser and dispatch it against ``context``."""

    parser = cli.build_parser()
    table = cli.configure_subcommands(parser)
    return cli.dispatch_command(context, parser.parse_args(argv), table)


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "coop-cli"
    assert "tea cooperative" in (parser.description or "")


def test_build_parser_accepts_config_path():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(["--config", "custom.ini", "dashboard"])
    assert args.config == Path("custom.ini")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire both mutating and reporting commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert set(_registered_choices(cli_parser)) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    """register_write_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for name, spec in specs.items():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.name == name
        assert spec.help_text
        assert name in subparsers_action.choices


def test_register_read_commands_returns_command_specs(subparsers_action):
    """register_read_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for name, spec in specs.items():
        assert isinstance(spec, cli.CommandSpec)
        assert name in subparsers_action.choices


# ---------------------------------------------------------------------------
# Command registrations
# ---------------------------------------------------------------------------


def _parse_single(register, argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = register(subparsers)
    spec.register(subparsers)
    return parser.parse_args(argv)


def test_register_add_farmer_command_configures_arguments():
    """register_add_farmer_command should define the farmer form fields."""

    namespace = _parse_single(
        cli.register_add_farmer_command,
        [
            "add-farmer",
            "--name",
            "Jane Doe",
            "--phone",
            "+254 700 000 000",
            "--location",
            "Kericho",
            "--output-preference",
            "self-collect",
        ],
    )
    assert namespace.command == "add-farmer"
    assert namespace.name == "Jane Doe"
    assert namespace.location == "Kericho"
    assert namespace.output_preference == "self-collect"
    assert namespace.status is None


def test_register_add_farmer_command_requires_name():
    with pytest.raises(SystemExit):
        _parse_single(cli.register_add_farmer_command, ["add-farmer"])


def test_register_edit_farmer_command_makes_fields_optional():
    """Edit commands only require the record id."""

    namespace = _parse_single(cli.register_edit_farmer_command, ["edit-farmer", "--farmer-id", "F001"])
    assert namespace.farmer_id == "F001"
    assert namespace.name is None


def test_register_record_delivery_command_configures_arguments():
    namespace = _parse_single(
        cli.register_record_delivery_command,
        [
            "record-delivery",
            "--farmer-id",
            "F001",
            "--raw-weight",
            "100",
            "--grade",
            "B",
            "--moisture",
            "65",
            "--notes",
            "wet leaves",
        ],
    )
    assert namespace.farmer_id == "F001"
    assert namespace.raw_weight == "100"
    assert namespace.grade == "B"
    assert namespace.moisture_content == "65"
    assert namespace.notes == "wet leaves"
    assert namespace.price_per_kg is None


def test_register_record_delivery_command_rejects_unknown_grade():
    with pytest.raises(SystemExit):
        _parse_single(
            cli.register_record_delivery_command,
            ["record-delivery", "--farmer-id", "F001", "--raw-weight", "1", "--grade", "D"],
        )


def test_register_process_command_configures_arguments():
    namespace = _parse_single(
        cli.register_process_command,
        ["process", "--delivery-id", "IB003", "--output-weight", "80", "--quality-score", "88"],
    )
    assert namespace.delivery_id == "IB003"
    assert namespace.output_weight == "80"
    assert namespace.quality_score == "88"


def test_register_sell_command_configures_arguments():
    namespace = _parse_single(
        cli.register_sell_command,
        ["sell", "--buyer-id", "B001", "--lot-id", "PB001", "--quantity", "10", "--payment-status", "paid"],
    )
    assert namespace.buyer_id == "B001"
    assert namespace.lot_id == "PB001"
    assert namespace.quantity == "10"
    assert namespace.payment_status == "paid"


def test_register_delete_command_configures_arguments():
    """Delete commands take an id and an optional confirmation bypass."""

    spec = cli.register_delete_command("delete-farmer", "farmer", cli.run_delete_farmer)
    namespace = _parse_single(lambda _: spec, ["delete-farmer", "--id", "F005", "--yes"])
    assert spec.execute is cli.run_delete_farmer
    assert namespace.record_id == "F005"
    assert namespace.yes is True


def test_register_report_command_collects_sections():
    namespace = _parse_single(
        cli.register_report_command, ["report", "--section", "financial", "--section", "grades"]
    )
    assert namespace.section == ["financial", "grades"]
    with pytest.raises(SystemExit):
        _parse_single(cli.register_report_command, ["report", "--section", "weather"])


def test_register_deliveries_command_flags():
    namespace = _parse_single(cli.register_deliveries_command, ["deliveries", "--ready", "--status", "pending"])
    assert namespace.ready is True
    assert namespace.status == "pending"


# ---------------------------------------------------------------------------
# Runtime context and dispatch helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


def test_dispatch_command_invokes_executor(context):
    """dispatch_command should call the executor associated with the command."""

    called = {}

    def execute(ctx: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = ctx
        return 0

    command_table = {"alpha": cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), execute)}
    result = cli.dispatch_command(context, argparse.Namespace(command="alpha"), command_table)
    assert result == 0
    assert called["context"] is context


def test_dispatch_command_handles_unknown_commands(context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    """build_command_table should index specs by their command names."""

    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_parse_decimal_rejects_garbage():
    assert cli.parse_decimal(" 12.5 ", "weight") == Decimal("12.5")
    with pytest.raises(core_logic.ValidationError, match="weight must be a number"):
        cli.parse_decimal("heavy", "weight")


def test_translate_farmer_applies_form_defaults():
    """Omitted options fall back to the defaults of a new farmer."""

    args = argparse.Namespace(name="Jane Doe", phone=None, location="Kericho", status=None, output_preference=None)
    command = cli.translate_farmer(args)
    assert command == core_logic.FarmerCommand(
        name="Jane Doe",
        phone="",
        location="Kericho",
        status=constants.FarmerStatus.ACTIVE,
        output_preference=constants.OutputPreference.COOP_SELL,
    )


def test_translate_farmer_keeps_current_values(seeded):
    """Only the supplied options change when editing."""

    current = seeded.farmers[1]
    args = argparse.Namespace(name=None, phone="+254 799", location=None, status="inactive", output_preference=None)
    command = cli.translate_farmer(args, current)
    assert command.name == current.name
    assert command.phone == "+254 799"
    assert command.location == current.location
    assert command.status is constants.FarmerStatus.INACTIVE
    assert command.output_preference is constants.OutputPreference.SELF_COLLECT


def test_translate_delivery_returns_delivery_command():
    args = argparse.Namespace(
        farmer_id="F001",
        raw_weight="120.5",
        grade="B",
        moisture_content=None,
        price_per_kg="80",
        status=None,
        notes=None,
    )
    command = cli.translate_delivery(args)
    assert command.farmer_id == "F001"
    assert command.raw_weight == Decimal("120.5")
    assert command.grade is constants.TeaGrade.B
    assert command.moisture_content == Decimal("70")
    assert command.price_per_kg == Decimal("80")
    assert command.status is constants.DeliveryStatus.PENDING


def test_translate_delivery_rejects_bad_weight():
    args = argparse.Namespace(
        farmer_id="F001", raw_weight="lots", grade=None, moisture_content=None, price_per_kg=None, status=None, notes=None
    )
    with pytest.raises(core_logic.ValidationError):
        cli.translate_delivery(args)


def test_translate_process_returns_process_command():
    args = argparse.Namespace(
        delivery_id="IB003", output_weight="80", grade=None, quality_score="88", packaging_type=None, status=None
    )
    command = cli.translate_process(args)
    assert command.delivery_id == "IB003"
    assert command.output_weight == Decimal("80")
    assert command.quality_score == "88"
    assert command.packaging_type == "25kg bags"
    assert command.status is constants.LotStatus.AVAILABLE


def test_translate_lot_update_keeps_current_values(seeded):
    current = seeded.lots[0]
    args = argparse.Namespace(output_weight="60", grade=None, quality_score=None, packaging_type=None, status=None)
    command = cli.translate_lot_update(args, current)
    assert command.output_weight == Decimal("60")
    assert command.quality_score == current.quality_score
    assert command.status is constants.LotStatus.AVAILABLE


def test_translate_buyer_returns_buyer_command():
    args = argparse.Namespace(
        company_name="Acme Teas", contact_person="Ann", email=None, phone=None, address=None, status="inactive"
    )
    command = cli.translate_buyer(args)
    assert command.company_name == "Acme Teas"
    assert command.contact_person == "Ann"
    assert command.email == ""
    assert command.status is constants.BuyerStatus.INACTIVE


def test_translate_sale_returns_sale_command():
    args = argparse.Namespace(buyer_id="B001", lot_id="PB001", quantity="10", price_per_kg=None, payment_status=None)
    command = cli.translate_sale(args)
    assert command == core_logic.SaleCommand(
        buyer_id="B001",
        lot_id="PB001",
        quantity=Decimal("10"),
        price_per_kg=Decimal("450"),
        payment_status=constants.PaymentStatus.PENDING,
    )


def test_translate_sale_update_keeps_current_values(seeded):
    current = seeded.sales[1]
    args = argparse.Namespace(buyer_id=None, quantity=None, price_per_kg=None, payment_status="paid")
    command = cli.translate_sale_update(args, current)
    assert command.buyer_id == "B002"
    assert command.quantity == Decimal("30")
    assert command.price_per_kg == Decimal("440")
    assert command.payment_status is constants.PaymentStatus.PAID


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_record_delivery_invokes_bll(context, monkeypatch, capsys):
    """run_record_delivery should delegate to the business logic layer."""

    command = core_logic.DeliveryCommand(farmer_id="F001", raw_weight=Decimal("100"))
    monkeypatch.setattr(cli, "translate_delivery", lambda value: command)
    called = {}

    def fake_record(ctx: core_logic.RuntimeContext, cmd: core_logic.DeliveryCommand):
        called["context"] = ctx
        called["cmd"] = cmd
        return core_logic.create_delivery(core_logic.load_collections(ctx), cmd, delivery_id="IB100").record

    monkeypatch.setattr(cli.core_logic, "record_delivery", fake_record)
    result = cli.run_record_delivery(context, argparse.Namespace())
    assert result == 0
    assert called["context"] is context
    assert called["cmd"] is command
    assert "Recorded delivery IB100: 100 kg, total KES 8,500.00" in capsys.readouterr().out


def test_run_add_farmer_persists_farmer(context, capsys):
    assert _run(context, ["add-farmer", "--name", "Jane Doe", "--location", "Kericho"]) == 0

    farmers = core_logic.load_collections(context).farmers
    assert farmers[-1].name == "Jane Doe"
    assert farmers[-1].farmer_id.startswith("F")
    assert f"Added farmer {farmers[-1].farmer_id} (Jane Doe)" in capsys.readouterr().out


def test_run_edit_farmer_merges_with_current_row(context):
    assert _run(context, ["edit-farmer", "--farmer-id", "F002", "--status", "inactive"]) == 0

    farmer = core_logic.get_farmer(context, "F002")
    assert farmer.status == "inactive"
    assert farmer.name == "Sarah Wanjiku"
    assert farmer.output_preference == "self-collect"


def test_run_edit_farmer_unknown_id_raises(context):
    with pytest.raises(core_logic.MissingReferenceError, match="farmer not found: F404"):
        _run(context, ["edit-farmer", "--farmer-id", "F404", "--name", "Ghost"])


def test_run_process_creates_lot(context, capsys):
    assert _run(context, ["process", "--delivery-id", "IB003", "--output-weight", "80"]) == 0

    collections = core_logic.load_collections(context)
    lot = collections.lots[0]
    assert lot.delivery_id == "IB003"
    assert lot.processing_loss == 75
    assert core_logic.find_delivery(collections, "IB003").status == "processed"
    assert "loss 75%" in capsys.readouterr().out


def test_run_edit_lot_recomputes_loss(context):
    assert _run(context, ["edit-lot", "--lot-id", "PB001", "--output-weight", "50"]) == 0
    assert core_logic.get_lot(context, "PB001").processing_loss == 80


def test_run_sell_and_edit_sale(context, capsys):
    assert _run(context, ["sell", "--buyer-id", "B003", "--lot-id", "PB001", "--quantity", "10"]) == 0
    sale = core_logic.load_collections(context).sales[0]
    assert sale.total_amount == Decimal("4500")
    assert core_logic.get_lot(context, "PB001").status == "sold"
    assert "total KES 4,500.00" in capsys.readouterr().out

    assert _run(context, ["edit-sale", "--sale-id", sale.sale_id, "--price-per-kg", "500"]) == 0
    edited = core_logic.get_sale(context, sale.sale_id)
    assert edited.quantity == Decimal("10")
    assert edited.total_amount == Decimal("5000")


def test_run_add_and_edit_buyer(context):
    assert _run(context, ["add-buyer", "--company-name", "Acme Teas", "--email", "ops@acme.test"]) == 0
    buyer = core_logic.load_collections(context).buyers[-1]
    assert buyer.total_purchases == Decimal("0")

    assert _run(context, ["edit-buyer", "--buyer-id", buyer.buyer_id, "--status", "inactive"]) == 0
    assert core_logic.get_buyer(context, buyer.buyer_id).status == "inactive"
    assert core_logic.get_buyer(context, buyer.buyer_id).email == "ops@acme.test"


# ---------------------------------------------------------------------------
# Delete confirmation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("answer, expected", [("y", True), ("YES", True), ("n", False), ("", False)])
def test_confirm_accepts_only_yes(monkeypatch, answer: str, expected: bool):
    monkeypatch.setattr("builtins.input", lambda prompt: answer)
    assert cli.confirm("Delete?") is expected


def test_confirm_declines_on_eof(monkeypatch):
    def raise_eof(prompt: str) -> str:
        raise EOFError

    monkeypatch.setattr("builtins.input", raise_eof)
    assert cli.confirm("Delete?") is False


def test_delete_with_yes_skips_prompt(context, monkeypatch, capsys):
    """--yes deletes without asking."""

    monkeypatch.setattr(cli, "confirm", lambda prompt: pytest.fail("should not prompt"))
    assert _run(context, ["delete-buyer", "--id", "B003", "--yes"]) == 0
    assert [buyer.buyer_id for buyer in core_logic.load_collections(context).buyers] == ["B001", "B002"]
    assert "Deleted buyer B003" in capsys.readouterr().out


def test_delete_declined_keeps_record(context, monkeypatch, capsys):
    prompts = []
    monkeypatch.setattr(cli, "confirm", lambda prompt: prompts.append(prompt) or False)

    assert _run(context, ["delete-sale", "--id", "S001"]) == 0
    assert prompts == ["Delete sale S001?"]
    assert len(core_logic.load_collections(context).sales) == 2
    assert "Cancelled." in capsys.readouterr().out


def test_delete_unknown_id_reports_nothing_deleted(context, monkeypatch, capsys):
    monkeypatch.setattr(cli, "confirm", lambda prompt: True)

    assert _run(context, ["delete-lot", "--id", "PB999"]) == 0
    assert "No lot with id PB999; nothing deleted." in capsys.readouterr().out


def test_delete_farmer_leaves_deliveries(context):
    assert _run(context, ["delete-farmer", "--id", "F001", "--yes"]) == 0

    collections = core_logic.load_collections(context)
    assert all(farmer.farmer_id != "F001" for farmer in collections.farmers)
    assert [d.delivery_id for d in collections.deliveries if d.farmer_id == "F001"] == ["IB001", "IB005"]


# ---------------------------------------------------------------------------
# Read commands
# ---------------------------------------------------------------------------


def test_format_money_uses_configured_currency(context):
    assert cli.format_money(context, Decimal("1234")) == "KES 1,234.00"
    assert cli.format_money(context, Decimal("-51350")) == "KES -51,350.00"


def test_format_table_aligns_columns():
    table = cli.format_table(("ID", "Name"), [("F1", "Jane"), ("F10", None)])
    assert table.splitlines() == ["ID   Name", "F1   Jane", "F10"]


def test_run_dashboard_prints_cards(context, capsys):
    assert _run(context, ["dashboard"]) == 0

    output = capsys.readouterr().out
    assert output.startswith("Test Cooperative")
    assert "Inventory value" in output
    assert "KES 25,000.00" in output
    assert "KES 13,200.00" in output
    assert "IB001" in output and "IB005" in output


def test_run_list_farmers_filters_by_search(context, capsys):
    assert _run(context, ["farmers", "--search", "nandi"]) == 0

    output = capsys.readouterr().out
    assert "Sarah Wanjiku" in output
    assert "Peter Omondi" not in output
    assert "5 farmers, 4 active, 3 coop-sell, 2 self-collect" in output


def test_run_list_deliveries_ready_only(context, capsys):
    assert _run(context, ["deliveries", "--ready"]) == 0

    output = capsys.readouterr().out
    assert "IB002" in output and "IB003" in output and "IB004" in output
    assert "IB001" not in output
    assert "650 kg" in output


def test_run_list_deliveries_shows_current_farmer_name(context, capsys):
    _run(context, ["edit-farmer", "--farmer-id", "F004", "--name", "Grace W. Njeri"])
    capsys.readouterr()

    assert _run(context, ["deliveries", "--search", "IB004"]) == 0
    assert "Grace W. Njeri" in capsys.readouterr().out


def test_run_list_lots_shows_remaining_weight(context, capsys):
    assert _run(context, ["lots", "--available"]) == 0

    output = capsys.readouterr().out
    assert "PB001" in output
    assert "32.5" in output
    assert "PB002" not in output
    assert "average quality 93" in output


def test_run_list_buyers_and_sales(context, capsys):
    assert _run(context, ["buyers", "--active"]) == 0
    assert "3 buyers, 3 active, purchases KES 5,250,000.00" in capsys.readouterr().out

    assert _run(context, ["sales", "--search", "highland"]) == 0
    output = capsys.readouterr().out
    assert "S002" in output
    assert "S001" not in output
    assert "Revenue KES 36,600.00, outstanding KES 13,200.00" in output


def test_run_report_financial_section(context, capsys):
    assert _run(context, ["report", "--section", "financial"]) == 0

    output = capsys.readouterr().out
    assert "Financial summary" in output
    assert "KES -51,350.00" in output
    assert "-140%" in output
    assert "Grade distribution" not in output


def test_run_report_prints_every_section_by_default(context, capsys):
    assert _run(context, ["report"]) == 0

    output = capsys.readouterr().out
    for heading in (
        "Financial summary",
        "Grade distribution",
        "Output preference",
        "Top farmers",
        "Processing efficiency",
        "Buyer activity",
    ):
        assert heading in output
    assert "70.0%" in output


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (core_logic.ValidationError("raw weight must be greater than zero"), 2),
        (core_logic.MissingReferenceError("farmer not found: F9"), 2),
        (FileNotFoundError("missing"), 3),
        (core_logic.PersistenceError("disk full"), 4),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert caplog.records


def test_handle_cli_error_logs_human_readable_message(caplog: pytest.LogCaptureFixture):
    """handle_cli_error should emit a user-friendly log message."""

    caplog.set_level("ERROR")
    cli.handle_cli_error(core_logic.BusinessRuleViolation("invalid"))
    assert any("invalid" in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_executes_specified_command(monkeypatch, context):
    """main should execute the command parsed from argv."""

    parser = _stub_parser(command="dashboard")
    command_table = {"dashboard": cli.CommandSpec("dashboard", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    called = {}

    def fake_dispatch(ctx: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]) -> int:
        called["context"] = ctx
        called["args"] = args
        called["table"] = table
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    exit_code = cli.main(["dashboard"])
    assert exit_code == 0
    assert called["context"] is context
    assert called["args"].command == "dashboard"
    assert called["table"] is command_table


def test_main_handles_bll_errors(monkeypatch, context):
    """main should surface business rule violations as non-zero exits."""

    parser = _stub_parser(command="sell")
    command_table = {"sell": cli.CommandSpec("sell", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)
    assert cli.main(["sell"]) == 99
    assert isinstance(handled["error"], core_logic.BusinessRuleViolation)


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "dashboard"]) == 3


def test_main_reports_unknown_reference(config_file):
    exit_code = cli.main(["--config", str(config_file), "edit-farmer", "--farmer-id", "F404", "--name", "Ghost"])
    assert exit_code == 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _registered_choices(parser: argparse.ArgumentParser) -> Iterable[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices.keys()
    return []


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command, config=None)

    return _Stub(prog="test")
