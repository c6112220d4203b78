"""Command-line entry points for the tea cooperative records.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the figures computed by :mod:`tea_coop.reports`. Keeping
the CLI thin lets tests and scripts reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports
from .constants import (
    BuyerStatus,
    DeliveryStatus,
    FarmerStatus,
    LotStatus,
    OutputPreference,
    PaymentStatus,
    TeaGrade,
)

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="coop-cli",
        description="Command-line tools for the tea cooperative records.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
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


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands for every record type."""
    specs = {
        "add-farmer": register_add_farmer_command(subparsers),
        "edit-farmer": register_edit_farmer_command(subparsers),
        "delete-farmer": register_delete_command("delete-farmer", "farmer", run_delete_farmer),
        "record-delivery": register_record_delivery_command(subparsers),
        "edit-delivery": register_edit_delivery_command(subparsers),
        "delete-delivery": register_delete_command("delete-delivery", "delivery", run_delete_delivery),
        "process": register_process_command(subparsers),
        "edit-lot": register_edit_lot_command(subparsers),
        "delete-lot": register_delete_command("delete-lot", "lot", run_delete_lot),
        "add-buyer": register_add_buyer_command(subparsers),
        "edit-buyer": register_edit_buyer_command(subparsers),
        "delete-buyer": register_delete_command("delete-buyer", "buyer", run_delete_buyer),
        "sell": register_sell_command(subparsers),
        "edit-sale": register_edit_sale_command(subparsers),
        "delete-sale": register_delete_command("delete-sale", "sale", run_delete_sale),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "dashboard": register_dashboard_command(subparsers),
        "farmers": register_farmers_command(subparsers),
        "deliveries": register_deliveries_command(subparsers),
        "lots": register_lots_command(subparsers),
        "buyers": register_buyers_command(subparsers),
        "sales": register_sales_command(subparsers),
        "report": register_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _values(enum_cls: Any) -> List[str]:
    return [member.value for member in enum_cls]


# ---------------------------------------------------------------------------
# Write command registration
# ---------------------------------------------------------------------------


def _add_farmer_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--location", default=None)
    parser.add_argument("--status", choices=_values(FarmerStatus), default=None)
    parser.add_argument("--output-preference", choices=_values(OutputPreference), default=None)


def register_add_farmer_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-farmer``."""
    name = "add-farmer"
    help_text = "Register a new farmer."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_farmer_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_farmer)


def register_edit_farmer_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``edit-farmer``."""
    name = "edit-farmer"
    help_text = "Edit a farmer; omitted options keep their current value."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--farmer-id", required=True)
        _add_farmer_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_farmer)


def _add_delivery_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--farmer-id", required=required)
    parser.add_argument("--raw-weight", required=required)
    parser.add_argument("--grade", choices=_values(TeaGrade), default=None)
    parser.add_argument("--moisture", dest="moisture_content", default=None)
    parser.add_argument("--price-per-kg", default=None)
    parser.add_argument("--status", choices=_values(DeliveryStatus), default=None)
    parser.add_argument("--notes", dest="notes", default=None)


def register_record_delivery_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``record-delivery``."""
    name = "record-delivery"
    help_text = "Record an incoming raw-tea delivery."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_delivery_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_record_delivery)


def register_edit_delivery_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``edit-delivery``."""
    name = "edit-delivery"
    help_text = "Edit a delivery; omitted options keep their current value."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--delivery-id", required=True)
        _add_delivery_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_delivery)


def _add_lot_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--output-weight", required=required)
    parser.add_argument("--grade", choices=_values(TeaGrade), default=None)
    parser.add_argument("--quality-score", default=None)
    parser.add_argument("--packaging-type", default=None)
    parser.add_argument("--status", choices=_values(LotStatus), default=None)


def register_process_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``process``."""
    name = "process"
    help_text = "Process a pending delivery into a new lot."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--delivery-id", required=True)
        _add_lot_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_process)


def register_edit_lot_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``edit-lot``."""
    name = "edit-lot"
    help_text = "Edit a processed lot and recompute its loss."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--lot-id", required=True)
        _add_lot_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_lot)


def _add_buyer_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--company-name", required=required)
    parser.add_argument("--contact-person", default=None)
    parser.add_argument("--email", default=None)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--address", default=None)
    parser.add_argument("--status", choices=_values(BuyerStatus), default=None)


def register_add_buyer_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``add-buyer``."""
    name = "add-buyer"
    help_text = "Register a new buyer."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_buyer_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_buyer)


def register_edit_buyer_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``edit-buyer``."""
    name = "edit-buyer"
    help_text = "Edit a buyer; omitted options keep their current value."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--buyer-id", required=True)
        _add_buyer_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_buyer)


def register_sell_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Record a sale from a processed lot."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--buyer-id", required=True)
        parser.add_argument("--lot-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--price-per-kg", default=None)
        parser.add_argument("--payment-status", choices=_values(PaymentStatus), default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell)


def register_edit_sale_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``edit-sale``."""
    name = "edit-sale"
    help_text = "Edit a sale; the lot it was drawn from cannot change."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--buyer-id", default=None)
        parser.add_argument("--quantity", default=None)
        parser.add_argument("--price-per-kg", default=None)
        parser.add_argument("--payment-status", choices=_values(PaymentStatus), default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_sale)


def register_delete_command(
    name: str,
    label: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a ``delete-*`` command taking ``--id`` and ``--yes``."""
    help_text = f"Delete a {label} after confirmation."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="record_id", required=True)
        parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


# ---------------------------------------------------------------------------
# Read command registration
# ---------------------------------------------------------------------------


def register_dashboard_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display the dashboard summary and recent deliveries."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_farmers_command(subparsers: SubParsers) -> CommandSpec:
    name = "farmers"
    help_text = "List farmers."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--status", choices=_values(FarmerStatus), default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_farmers)


def register_deliveries_command(subparsers: SubParsers) -> CommandSpec:
    name = "deliveries"
    help_text = "List incoming deliveries."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--status", choices=_values(DeliveryStatus), default=None)
        parser.add_argument("--grade", choices=_values(TeaGrade), default=None)
        parser.add_argument("--ready", action="store_true", help="Only deliveries that can still be processed.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_deliveries)


def register_lots_command(subparsers: SubParsers) -> CommandSpec:
    name = "lots"
    help_text = "List processed lots."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--available", action="store_true", help="Only lots available for sale.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_lots)


def register_buyers_command(subparsers: SubParsers) -> CommandSpec:
    name = "buyers"
    help_text = "List buyers."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--active", action="store_true", help="Only active buyers.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_buyers)


def register_sales_command(subparsers: SubParsers) -> CommandSpec:
    name = "sales"
    help_text = "List sales."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_sales)


REPORT_SECTIONS = ("financial", "grades", "preferences", "contribution", "efficiency", "buyers")


def register_report_command(subparsers: SubParsers) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display the analytics report."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--section",
            choices=REPORT_SECTIONS,
            action="append",
            default=None,
            help="Report section to display; repeat to combine. All sections by default.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


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


# ---------------------------------------------------------------------------
# Argument translation
# ---------------------------------------------------------------------------


def parse_decimal(raw: Any, field_name: str) -> Decimal:
    """Convert a CLI string into a :class:`Decimal` or raise ``ValidationError``."""
    try:
        return Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise core_logic.ValidationError(f"{field_name} must be a number, got '{raw}'") from exc


def _pick(raw: Any, current: Any) -> Any:
    return current if raw is None else raw


def _pick_decimal(raw: Any, current: Decimal, field_name: str) -> Decimal:
    return current if raw is None else parse_decimal(raw, field_name)


def translate_farmer(args: argparse.Namespace, current: Optional[Any] = None) -> core_logic.FarmerCommand:
    """Translate CLI args into a farmer command, keeping ``current`` values for omitted options."""
    base = current or core_logic.FarmerCommand(name="")
    return core_logic.FarmerCommand(
        name=_pick(args.name, base.name),
        phone=_pick(args.phone, base.phone),
        location=_pick(args.location, base.location),
        status=FarmerStatus(_pick(args.status, base.status)),
        output_preference=OutputPreference(_pick(args.output_preference, base.output_preference)),
    )


def translate_delivery(args: argparse.Namespace, current: Optional[Any] = None) -> core_logic.DeliveryCommand:
    """Translate CLI args into a delivery command object."""
    base = current or core_logic.DeliveryCommand(farmer_id="", raw_weight=Decimal("0"))
    return core_logic.DeliveryCommand(
        farmer_id=_pick(args.farmer_id, base.farmer_id),
        raw_weight=_pick_decimal(args.raw_weight, base.raw_weight, "raw weight"),
        grade=TeaGrade(_pick(args.grade, base.grade)),
        moisture_content=_pick_decimal(args.moisture_content, base.moisture_content, "moisture content"),
        price_per_kg=_pick_decimal(args.price_per_kg, base.price_per_kg, "price per kg"),
        status=DeliveryStatus(_pick(args.status, base.status)),
        notes=_pick(args.notes, base.notes),
    )


def translate_process(args: argparse.Namespace) -> core_logic.ProcessCommand:
    """Translate CLI args into a process command object."""
    defaults = core_logic.ProcessCommand(delivery_id=args.delivery_id, output_weight=Decimal("0"))
    return core_logic.ProcessCommand(
        delivery_id=args.delivery_id,
        output_weight=parse_decimal(args.output_weight, "output weight"),
        grade=TeaGrade(_pick(args.grade, defaults.grade)),
        quality_score=_pick(args.quality_score, defaults.quality_score),
        packaging_type=_pick(args.packaging_type, defaults.packaging_type),
        status=LotStatus(_pick(args.status, defaults.status)),
    )


def translate_lot_update(args: argparse.Namespace, current: Any) -> core_logic.LotUpdateCommand:
    """Translate CLI args into a lot update, keeping ``current`` values for omitted options."""
    return core_logic.LotUpdateCommand(
        output_weight=_pick_decimal(args.output_weight, current.output_weight, "output weight"),
        grade=TeaGrade(_pick(args.grade, current.grade)),
        quality_score=_pick(args.quality_score, current.quality_score),
        packaging_type=_pick(args.packaging_type, current.packaging_type),
        status=LotStatus(_pick(args.status, current.status)),
    )


def translate_buyer(args: argparse.Namespace, current: Optional[Any] = None) -> core_logic.BuyerCommand:
    """Translate CLI args into a buyer command object."""
    base = current or core_logic.BuyerCommand(company_name="")
    return core_logic.BuyerCommand(
        company_name=_pick(args.company_name, base.company_name),
        contact_person=_pick(args.contact_person, base.contact_person),
        email=_pick(args.email, base.email),
        phone=_pick(args.phone, base.phone),
        address=_pick(args.address, base.address),
        status=BuyerStatus(_pick(args.status, base.status)),
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    defaults = core_logic.SaleCommand(buyer_id=args.buyer_id, lot_id=args.lot_id, quantity=Decimal("0"))
    return core_logic.SaleCommand(
        buyer_id=args.buyer_id,
        lot_id=args.lot_id,
        quantity=parse_decimal(args.quantity, "quantity"),
        price_per_kg=_pick_decimal(args.price_per_kg, defaults.price_per_kg, "price per kg"),
        payment_status=PaymentStatus(_pick(args.payment_status, defaults.payment_status)),
    )


def translate_sale_update(args: argparse.Namespace, current: Any) -> core_logic.SaleUpdateCommand:
    """Translate CLI args into a sale update, keeping ``current`` values for omitted options."""
    return core_logic.SaleUpdateCommand(
        buyer_id=_pick(args.buyer_id, current.buyer_id),
        quantity=_pick_decimal(args.quantity, current.quantity, "quantity"),
        price_per_kg=_pick_decimal(args.price_per_kg, current.price_per_kg, "price per kg"),
        payment_status=PaymentStatus(_pick(args.payment_status, current.payment_status)),
    )


# ---------------------------------------------------------------------------
# Write executors
# ---------------------------------------------------------------------------


def run_add_farmer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-farmer workflow in the BLL."""
    farmer = core_logic.add_farmer(context, translate_farmer(args))
    print(f"Added farmer {farmer.farmer_id} ({farmer.name})")
    return 0


def run_edit_farmer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-farmer workflow in the BLL."""
    current = core_logic.get_farmer(context, args.farmer_id)
    farmer = core_logic.edit_farmer(context, args.farmer_id, translate_farmer(args, current))
    print(f"Updated farmer {farmer.farmer_id}")
    return 0


def run_record_delivery(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the record-delivery workflow in the BLL."""
    delivery = core_logic.record_delivery(context, translate_delivery(args))
    print(f"Recorded delivery {delivery.delivery_id}: {delivery.raw_weight} kg, total {format_money(context, delivery.total_amount)}")
    return 0


def run_edit_delivery(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-delivery workflow in the BLL."""
    current = core_logic.get_delivery(context, args.delivery_id)
    delivery = core_logic.edit_delivery(context, args.delivery_id, translate_delivery(args, current))
    print(f"Updated delivery {delivery.delivery_id}: total {format_money(context, delivery.total_amount)}")
    return 0


def run_process(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the processing workflow in the BLL."""
    lot = core_logic.record_processing(context, translate_process(args))
    print(f"Created lot {lot.lot_id} from {lot.delivery_id}: {lot.output_weight} kg, loss {lot.processing_loss}%")
    return 0


def run_edit_lot(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-lot workflow in the BLL."""
    current = core_logic.get_lot(context, args.lot_id)
    lot = core_logic.edit_lot(context, args.lot_id, translate_lot_update(args, current))
    print(f"Updated lot {lot.lot_id}: loss {lot.processing_loss}%")
    return 0


def run_add_buyer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-buyer workflow in the BLL."""
    buyer = core_logic.add_buyer(context, translate_buyer(args))
    print(f"Added buyer {buyer.buyer_id} ({buyer.company_name})")
    return 0


def run_edit_buyer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-buyer workflow in the BLL."""
    current = core_logic.get_buyer(context, args.buyer_id)
    buyer = core_logic.edit_buyer(context, args.buyer_id, translate_buyer(args, current))
    print(f"Updated buyer {buyer.buyer_id}")
    return 0


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    sale = core_logic.record_sale(context, translate_sale(args))
    print(f"Recorded sale {sale.sale_id}: {sale.quantity} kg of {sale.lot_id}, total {format_money(context, sale.total_amount)}")
    return 0


def run_edit_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-sale workflow via the BLL."""
    current = core_logic.get_sale(context, args.sale_id)
    sale = core_logic.edit_sale(context, args.sale_id, translate_sale_update(args, current))
    print(f"Updated sale {sale.sale_id}: total {format_money(context, sale.total_amount)}")
    return 0


def confirm(prompt: str) -> bool:
    """Ask a yes/no question on stdin; anything but ``y``/``yes`` declines."""
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _run_delete(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    label: str,
    remove: Callable[[core_logic.RuntimeContext, str], Optional[Any]],
) -> int:
    if not args.yes and not confirm(f"Delete {label} {args.record_id}?"):
        print("Cancelled.")
        return 0
    removed = remove(context, args.record_id)
    if removed is None:
        print(f"No {label} with id {args.record_id}; nothing deleted.")
    else:
        print(f"Deleted {label} {args.record_id}")
    return 0


def run_delete_farmer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(context, args, "farmer", core_logic.remove_farmer)


def run_delete_delivery(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(context, args, "delivery", core_logic.remove_delivery)


def run_delete_lot(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(context, args, "lot", core_logic.remove_lot)


def run_delete_buyer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(context, args, "buyer", core_logic.remove_buyer)


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(context, args, "sale", core_logic.remove_sale)


# ---------------------------------------------------------------------------
# Read executors
# ---------------------------------------------------------------------------


def format_money(context: core_logic.RuntimeContext, amount: Decimal) -> str:
    return f"{context.settings.currency} {amount:,.2f}"


def format_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as left-aligned columns separated by two spaces."""
    cells = [[str(header) for header in headers]]
    cells.extend([["" if value is None else str(value) for value in row] for row in rows])
    widths = [max(len(line[index]) for line in cells) for index in range(len(headers))]
    return "\n".join("  ".join(value.ljust(width) for value, width in zip(line, widths)).rstrip() for line in cells)


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard cards and the most recent deliveries."""
    collections = core_logic.load_collections(context)
    summary = reports.dashboard_summary(collections, unit_price=context.settings.inventory_unit_price)
    print(context.settings.cooperative_name)
    print(
        format_table(
            ("Figure", "Value"),
            [
                ("Total farmers", summary.total_farmers),
                ("Active farmers", summary.active_farmers),
                ("Active buyers", f"{summary.active_buyers} of {summary.total_buyers}"),
                ("Pending deliveries", summary.pending_deliveries),
                ("Lots processed this month", summary.processed_this_month),
                ("Total sales", format_money(context, summary.total_sales_value)),
                ("Sales this month", format_money(context, summary.sales_this_month)),
                ("Inventory value", format_money(context, summary.inventory_value)),
                ("Outstanding payments", format_money(context, summary.outstanding_payments)),
            ],
        )
    )
    print("\nRecent deliveries")
    print(
        format_table(
            ("ID", "Farmer", "Date", "Weight", "Grade", "Status"),
            [
                (delivery.delivery_id, delivery.farmer_name, delivery.date, delivery.raw_weight, delivery.grade, delivery.status)
                for delivery in reports.recent_deliveries(collections.deliveries)
            ],
        )
    )
    return 0


def run_list_farmers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    collections = core_logic.load_collections(context)
    farmers = reports.filter_farmers(collections.farmers, args.search, args.status)
    summary = reports.farmer_summary(collections.farmers)
    print(
        format_table(
            ("ID", "Name", "Location", "Phone", "Status", "Preference", "Delivered (kg)", "Balance"),
            [
                (farmer.farmer_id, farmer.name, farmer.location, farmer.phone, farmer.status, farmer.output_preference, farmer.total_delivered, farmer.balance)
                for farmer in farmers
            ],
        )
    )
    print(f"\n{summary.total} farmers, {summary.active} active, {summary.coop_sell} coop-sell, {summary.self_collect} self-collect")
    return 0


def run_list_deliveries(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    collections = core_logic.load_collections(context)
    deliveries = reports.filter_deliveries(collections.deliveries, args.search, args.status, args.grade)
    if args.ready:
        deliveries = reports.deliveries_ready_for_processing(deliveries)
    totals = reports.delivery_totals(deliveries)
    print(
        format_table(
            ("ID", "Farmer", "Date", "Weight", "Grade", "Moisture", "Price/kg", "Total", "Status"),
            [
                (
                    delivery.delivery_id,
                    reports.resolve_farmer_name(collections.farmers, delivery.farmer_id, delivery.farmer_name),
                    delivery.date,
                    delivery.raw_weight,
                    delivery.grade,
                    delivery.moisture_content,
                    delivery.price_per_kg,
                    delivery.total_amount,
                    delivery.status,
                )
                for delivery in deliveries
            ],
        )
    )
    print(f"\n{totals.total_weight} kg, value {format_money(context, totals.total_value)}, {totals.pending_count} pending")
    return 0


def run_list_lots(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    collections = core_logic.load_collections(context)
    lots = reports.filter_lots(collections.lots, args.search)
    if args.available:
        lots = reports.available_lots(lots)
    summary = reports.processing_summary(collections.lots)
    print(
        format_table(
            ("ID", "Delivery", "Farmer", "Date", "Input", "Output", "Remaining", "Loss %", "Quality", "Status"),
            [
                (
                    lot.lot_id,
                    lot.delivery_id,
                    lot.farmer_name,
                    lot.processed_date,
                    lot.input_weight,
                    lot.output_weight,
                    reports.lot_remaining_weight(lot, collections.sales),
                    lot.processing_loss,
                    lot.quality_score,
                    lot.status,
                )
                for lot in lots
            ],
        )
    )
    print(
        f"\nTotal output {summary.total_output:.1f} kg, available {summary.available_stock:.1f} kg, "
        f"average quality {summary.average_quality:.0f}"
    )
    return 0


def run_list_buyers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    collections = core_logic.load_collections(context)
    buyers = reports.filter_buyers(collections.buyers, args.search)
    if args.active:
        buyers = reports.active_buyers(buyers)
    summary = reports.buyer_summary(collections.buyers)
    print(
        format_table(
            ("ID", "Company", "Contact", "Email", "Phone", "Purchases", "Status"),
            [
                (buyer.buyer_id, buyer.company_name, buyer.contact_person, buyer.email, buyer.phone, buyer.total_purchases, buyer.status)
                for buyer in buyers
            ],
        )
    )
    print(f"\n{summary.total} buyers, {summary.active} active, purchases {format_money(context, summary.total_purchases)}")
    return 0


def run_list_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    collections = core_logic.load_collections(context)
    sales = reports.filter_sales(collections.sales, args.search)
    summary = reports.sales_summary(collections.sales, collections.lots)
    print(
        format_table(
            ("ID", "Buyer", "Lot", "Farmer", "Date", "Quantity", "Price/kg", "Total", "Payment"),
            [
                (
                    sale.sale_id,
                    reports.resolve_buyer_name(collections.buyers, sale.buyer_id, sale.buyer_name),
                    sale.lot_id,
                    sale.farmer_name,
                    sale.date,
                    sale.quantity,
                    sale.price_per_kg,
                    sale.total_amount,
                    sale.payment_status,
                )
                for sale in sales
            ],
        )
    )
    print(
        f"\nRevenue {format_money(context, summary.revenue)}, outstanding {format_money(context, summary.outstanding)}, "
        f"available stock {summary.available_stock:.1f} kg"
    )
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the selected analytics sections."""
    collections = core_logic.load_collections(context)
    sections = args.section or list(REPORT_SECTIONS)

    if "financial" in sections:
        financial = reports.financial_summary(collections.deliveries, collections.sales)
        print("Financial summary")
        print(
            format_table(
                ("Figure", "Value"),
                [
                    ("Revenue", format_money(context, financial.revenue)),
                    ("Cost", format_money(context, financial.cost)),
                    ("Gross margin", format_money(context, financial.gross_margin)),
                    ("Margin %", f"{financial.margin_percentage}%"),
                ],
            )
        )
        print()
    if "grades" in sections:
        print("Grade distribution")
        print(
            format_table(
                ("Grade", "Weight (kg)", "Share"),
                [(share.grade, share.weight, f"{share.percentage:.1f}%") for share in reports.grade_distribution(collections.deliveries)],
            )
        )
        print()
    if "preferences" in sections:
        print("Output preference")
        print(format_table(("Preference", "Farmers"), reports.preference_distribution(collections.farmers).items()))
        print()
    if "contribution" in sections:
        print("Top farmers")
        print(
            format_table(
                ("Farmer", "Delivered (kg)", "Balance"),
                [(entry.name, entry.delivered, entry.balance) for entry in reports.farmer_contribution(collections.farmers)],
            )
        )
        print()
    if "efficiency" in sections:
        print("Processing efficiency")
        print(
            format_table(
                ("Lot", "Efficiency %", "Quality"),
                [(entry.label, entry.efficiency, entry.quality) for entry in reports.processing_efficiency(collections.lots)],
            )
        )
        print()
    if "buyers" in sections:
        print("Buyer activity (thousands)")
        print(
            format_table(
                ("Buyer", "Purchases"),
                [(entry.name, entry.purchases_thousands) for entry in reports.buyer_activity(collections.buyers)],
            )
        )
        print()
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.PersistenceError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
