"""Business logic layer for the cooperative records.

This module contains the rule engine that turns a raw delivery into a
processed lot and a processed lot into a sale. Every operation is a pure
function over a :class:`Collections` snapshot that returns a
:class:`Mutation` describing the new snapshot; nothing touches storage until
the context layer commits the mutation through the entity stores.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, date, datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Optional, Sequence, Tuple, Type, TypeVar, Union

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    MONEY_PLACES,
    PERCENT_PLACES,
    PROCESSABLE_DELIVERY_STATUSES,
    WEIGHT_PLACES,
    BuyerStatus,
    CollectionKey,
    DeliveryStatus,
    FarmerStatus,
    IdPrefix,
    LotStatus,
    OutputPreference,
    PaymentStatus,
    TeaGrade,
)
from .data_manager import BuyerRow, DeliveryRow, FarmerRow, LotRow, PersistenceError, SaleRow
from .entity_store import EntityStore, build_stores


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation):
    """Raised when a payload is out of range or a reference does not resolve."""


class MissingReferenceError(ValidationError):
    """Raised when a referenced farmer, delivery, lot, buyer or sale is unknown."""


EnumT = TypeVar("EnumT", bound=Enum)
Number = Union[Decimal, int, str]


@dataclass(frozen=True)
class Collections:
    """Immutable snapshot of the five record collections."""

    farmers: Tuple[FarmerRow, ...] = ()
    deliveries: Tuple[DeliveryRow, ...] = ()
    lots: Tuple[LotRow, ...] = ()
    buyers: Tuple[BuyerRow, ...] = ()
    sales: Tuple[SaleRow, ...] = ()

    def get(self, key: CollectionKey) -> Tuple[Any, ...]:
        return getattr(self, _ATTRIBUTE_BY_KEY[key])

    def with_collection(self, key: CollectionKey, rows: Sequence[Any]) -> "Collections":
        return replace(self, **{_ATTRIBUTE_BY_KEY[key]: tuple(rows)})


_ATTRIBUTE_BY_KEY: Dict[CollectionKey, str] = {
    CollectionKey.FARMERS: "farmers",
    CollectionKey.DELIVERIES: "deliveries",
    CollectionKey.LOTS: "lots",
    CollectionKey.BUYERS: "buyers",
    CollectionKey.SALES: "sales",
}


@dataclass(frozen=True)
class Mutation:
    """Outcome of a rule engine operation.

    ``record`` is the created, updated or removed row (``None`` when a delete
    found nothing). ``collections`` is the complete new snapshot and
    ``changed`` names the collections that differ from the input snapshot.
    """

    record: Optional[Any]
    collections: Collections
    changed: FrozenSet[CollectionKey] = frozenset()


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, storage and entity stores used by the BLL."""

    settings: data_manager.ConfigSettings
    storage: Any
    stores: Dict[CollectionKey, EntityStore]
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class FarmerCommand:
    """Form payload for creating or editing a farmer."""

    name: str
    phone: str = ""
    location: str = ""
    status: FarmerStatus = FarmerStatus.ACTIVE
    output_preference: OutputPreference = OutputPreference.COOP_SELL


@dataclass(frozen=True)
class DeliveryCommand:
    """Form payload for recording or editing an incoming delivery."""

    farmer_id: str
    raw_weight: Decimal
    grade: TeaGrade = TeaGrade.A
    moisture_content: Decimal = Decimal("70")
    price_per_kg: Decimal = Decimal("85")
    status: DeliveryStatus = DeliveryStatus.PENDING
    notes: Optional[str] = None


@dataclass(frozen=True)
class ProcessCommand:
    """Form payload for processing a delivery into a new lot."""

    delivery_id: str
    output_weight: Decimal
    grade: TeaGrade = TeaGrade.A
    quality_score: int = 90
    packaging_type: str = "25kg bags"
    status: LotStatus = LotStatus.AVAILABLE


@dataclass(frozen=True)
class LotUpdateCommand:
    """Form payload for editing a processed lot; the source delivery is fixed."""

    output_weight: Decimal
    grade: TeaGrade = TeaGrade.A
    quality_score: int = 90
    packaging_type: str = "25kg bags"
    status: LotStatus = LotStatus.AVAILABLE


@dataclass(frozen=True)
class BuyerCommand:
    """Form payload for creating or editing a buyer."""

    company_name: str
    contact_person: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    status: BuyerStatus = BuyerStatus.ACTIVE


@dataclass(frozen=True)
class SaleCommand:
    """Form payload for recording a sale from a processed lot."""

    buyer_id: str
    lot_id: str
    quantity: Decimal
    price_per_kg: Decimal = Decimal("450")
    payment_status: PaymentStatus = PaymentStatus.PENDING


@dataclass(frozen=True)
class SaleUpdateCommand:
    """Form payload for editing a sale; the lot it was drawn from is fixed."""

    buyer_id: str
    quantity: Decimal
    price_per_kg: Decimal = Decimal("450")
    payment_status: PaymentStatus = PaymentStatus.PENDING


# ---------------------------------------------------------------------------
# Identifier generation and clock helpers
# ---------------------------------------------------------------------------


_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
RANDOM_SUFFIX_LENGTH = 5


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def current_date() -> date:
    """Return today's date on the UTC clock used to stamp records."""

    return _resolve_timestamp(None).date()


def _resolve_date(candidate: Optional[date]) -> str:
    """Return ``candidate`` (or today's UTC date) as an ISO ``YYYY-MM-DD`` string."""

    if candidate is None:
        candidate = current_date()
    return candidate.isoformat()


def to_base36(number: int) -> str:
    """Render a non-negative integer in lowercase base 36."""

    if number < 0:
        raise ValueError("Base 36 encoding requires a non-negative integer")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_id(prefix: Union[IdPrefix, str], *, now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """Generate a human-legible record identifier.

    Args:
        prefix (IdPrefix | str): Entity designator such as ``F`` or ``IB``.
        now (datetime | None): Moment encoded into the identifier. Defaults to
            the current UTC time.
        rng (random.Random | None): Source of the random suffix, injectable
            for deterministic tests.

    Returns:
        str: ``{PREFIX}{base36 epoch milliseconds}{5 base36 chars}`` in upper
            case.

    Uniqueness rests on the millisecond timestamp plus the random suffix;
    nothing checks the identifier against existing records.
    """

    prefix_value = prefix.value if isinstance(prefix, IdPrefix) else str(prefix)
    moment = _resolve_timestamp(now)
    millis = int(moment.timestamp() * 1000)
    source = rng if rng is not None else random
    suffix = "".join(source.choice(_BASE36_DIGITS) for _ in range(RANDOM_SUFFIX_LENGTH))
    return f"{prefix_value}{to_base36(millis)}{suffix}".upper()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _as_decimal(value: Number, field_name: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        log.error("%s is not a number: %r", field_name, value)
        raise ValidationError(f"{field_name} must be a number") from exc
    if not result.is_finite():
        log.error("%s is not finite: %r", field_name, value)
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def limit_places(amount: Decimal, places: Optional[int]) -> Decimal:
    """Round ``amount`` half up to at most ``places`` decimal places.

    Values that already fit, and every value when ``places`` is ``None``, are
    returned unchanged so ``100`` stays ``100`` rather than ``100.000``.
    """

    if places is None or amount.as_tuple().exponent >= -places:
        return amount
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def require_positive(value: Number, field_name: str, places: Optional[int] = None) -> Decimal:
    """Validate that ``value`` is strictly greater than zero.

    Raises:
        ValidationError: If ``value`` is zero, negative, or not a number.
    """

    amount = limit_places(_as_decimal(value, field_name), places)
    if amount <= Decimal("0"):
        log.error("%s validation failed: %s", field_name, amount)
        raise ValidationError(f"{field_name} must be greater than zero")
    return amount


def require_nonnegative(value: Number, field_name: str, places: Optional[int] = None) -> Decimal:
    """Validate that ``value`` is zero or positive.

    Raises:
        ValidationError: If ``value`` is negative or not a number.
    """

    amount = limit_places(_as_decimal(value, field_name), places)
    if amount < Decimal("0"):
        log.error("%s validation failed: %s", field_name, amount)
        raise ValidationError(f"{field_name} must be zero or positive")
    return amount


def require_percentage(value: Number, field_name: str, places: Optional[int] = None) -> Decimal:
    """Validate that ``value`` lies within ``[0, 100]``."""

    amount = limit_places(_as_decimal(value, field_name), places)
    if amount < Decimal("0") or amount > Decimal("100"):
        log.error("%s validation failed: %s", field_name, amount)
        raise ValidationError(f"{field_name} must be between 0 and 100")
    return amount


def require_score(value: Any, field_name: str) -> int:
    """Validate an integral score within ``[0, 100]``."""

    amount = require_percentage(value, field_name)
    if amount != amount.to_integral_value():
        log.error("%s must be a whole number: %s", field_name, amount)
        raise ValidationError(f"{field_name} must be a whole number")
    return int(amount)


def require_text(value: Optional[str], field_name: str) -> str:
    """Validate that a required text field is not blank."""

    if value is None or not str(value).strip():
        log.error("%s is required", field_name)
        raise ValidationError(f"{field_name} is required")
    return str(value)


def require_choice(enum_cls: Type[EnumT], value: Any, field_name: str) -> EnumT:
    """Coerce ``value`` into ``enum_cls`` or raise :class:`ValidationError`."""

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        log.error("Unsupported %s: %r", field_name, value)
        raise ValidationError(f"{field_name} must be one of: {allowed}") from exc


def compute_total_amount(weight: Decimal, price_per_kg: Decimal) -> Decimal:
    """Return ``weight * price_per_kg`` without rounding."""

    return weight * price_per_kg


def compute_processing_loss(input_weight: Decimal, output_weight: Decimal) -> int:
    """Return the processing loss as a whole percentage of ``input_weight``.

    The ratio ``(input - output) / input * 100`` is rounded to the nearest
    integer with halves rounded up (``-2.5`` becomes ``-2``). Output heavier
    than input yields a negative loss.

    Raises:
        ValidationError: If ``input_weight`` is zero or negative.
    """

    if input_weight <= Decimal("0"):
        log.error("Cannot compute processing loss for input weight %s", input_weight)
        raise ValidationError("input weight must be greater than zero to compute processing loss")
    ratio = (input_weight - output_weight) / input_weight * Decimal("100")
    return int((ratio + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


# ---------------------------------------------------------------------------
# Collection helpers
# ---------------------------------------------------------------------------


def _id_of(row: Any) -> str:
    # The first dataclass field of every row is its identifier.
    return getattr(row, fields(row)[0].name)


def _find(rows: Sequence[Any], record_id: str) -> Optional[Any]:
    for row in rows:
        if _id_of(row) == record_id:
            return row
    return None


def _replace_row(rows: Sequence[Any], updated: Any) -> Tuple[Any, ...]:
    target = _id_of(updated)
    return tuple(updated if _id_of(row) == target else row for row in rows)


def _remove_row(rows: Sequence[Any], record_id: str) -> Tuple[Any, ...]:
    return tuple(row for row in rows if _id_of(row) != record_id)


def _require(rows: Sequence[Any], record_id: str, label: str) -> Any:
    row = _find(rows, record_id)
    if row is None:
        log.warning("%s lookup failed for id '%s'", label.capitalize(), record_id)
        raise MissingReferenceError(f"{label} not found: {record_id}")
    return row


def find_farmer(collections: Collections, farmer_id: str) -> FarmerRow:
    """Resolve a farmer or raise :class:`MissingReferenceError`."""

    return _require(collections.farmers, farmer_id, "farmer")


def find_delivery(collections: Collections, delivery_id: str) -> DeliveryRow:
    """Resolve a delivery or raise :class:`MissingReferenceError`."""

    return _require(collections.deliveries, delivery_id, "batch")


def find_lot(collections: Collections, lot_id: str) -> LotRow:
    """Resolve a processed lot or raise :class:`MissingReferenceError`."""

    return _require(collections.lots, lot_id, "lot")


def find_buyer(collections: Collections, buyer_id: str) -> BuyerRow:
    """Resolve a buyer or raise :class:`MissingReferenceError`."""

    return _require(collections.buyers, buyer_id, "buyer")


def find_sale(collections: Collections, sale_id: str) -> SaleRow:
    """Resolve a sale or raise :class:`MissingReferenceError`."""

    return _require(collections.sales, sale_id, "sale")


def _delete(collections: Collections, key: CollectionKey, record_id: str) -> Mutation:
    rows = collections.get(key)
    removed = _find(rows, record_id)
    if removed is None:
        log.info("Delete of unknown id '%s' in '%s' ignored", record_id, key.value)
        return Mutation(record=None, collections=collections)
    return Mutation(
        record=removed,
        collections=collections.with_collection(key, _remove_row(rows, record_id)),
        changed=frozenset({key}),
    )


# ---------------------------------------------------------------------------
# Farmers
# ---------------------------------------------------------------------------


def _validated_farmer_fields(command: FarmerCommand) -> Dict[str, Any]:
    return {
        "name": require_text(command.name, "name"),
        "phone": command.phone or "",
        "location": command.location or "",
        "status": require_choice(FarmerStatus, command.status, "status").value,
        "output_preference": require_choice(OutputPreference, command.output_preference, "output preference").value,
    }


def create_farmer(collections: Collections, command: FarmerCommand, *, farmer_id: Optional[str] = None, today: Optional[date] = None) -> Mutation:
    """Register a new farmer.

    Delivery totals and balance start at zero; they are not editable through
    the farmer form. The new farmer is appended to the collection.
    """

    values = _validated_farmer_fields(command)
    farmer = FarmerRow(
        farmer_id=farmer_id or generate_id(IdPrefix.FARMER),
        registration_date=_resolve_date(today),
        total_delivered=Decimal("0"),
        balance=Decimal("0"),
        **values,
    )
    return Mutation(
        record=farmer,
        collections=collections.with_collection(CollectionKey.FARMERS, (*collections.farmers, farmer)),
        changed=frozenset({CollectionKey.FARMERS}),
    )


def update_farmer(collections: Collections, farmer_id: str, command: FarmerCommand) -> Mutation:
    """Replace a farmer's editable fields, keeping id, dates and totals.

    Raises:
        MissingReferenceError: If ``farmer_id`` is unknown.
    """

    existing = find_farmer(collections, farmer_id)
    farmer = replace(existing, **_validated_farmer_fields(command))
    return Mutation(
        record=farmer,
        collections=collections.with_collection(CollectionKey.FARMERS, _replace_row(collections.farmers, farmer)),
        changed=frozenset({CollectionKey.FARMERS}),
    )


def delete_farmer(collections: Collections, farmer_id: str) -> Mutation:
    """Remove a farmer. Deliveries referencing the farmer are left in place."""

    return _delete(collections, CollectionKey.FARMERS, farmer_id)


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------


def _validated_delivery_fields(collections: Collections, command: DeliveryCommand) -> Dict[str, Any]:
    farmer = find_farmer(collections, command.farmer_id)
    raw_weight = require_positive(command.raw_weight, "raw weight", WEIGHT_PLACES)
    moisture = require_percentage(command.moisture_content, "moisture content", PERCENT_PLACES)
    price = require_nonnegative(command.price_per_kg, "price per kg", MONEY_PLACES)
    return {
        "farmer_id": farmer.farmer_id,
        "farmer_name": farmer.name,
        "raw_weight": raw_weight,
        "grade": require_choice(TeaGrade, command.grade, "grade").value,
        "moisture_content": moisture,
        "price_per_kg": price,
        "total_amount": compute_total_amount(raw_weight, price),
        "status": require_choice(DeliveryStatus, command.status, "status").value,
        "notes": command.notes or None,
    }


def create_delivery(collections: Collections, command: DeliveryCommand, *, delivery_id: Optional[str] = None, today: Optional[date] = None) -> Mutation:
    """Record an incoming raw-tea delivery.

    The farmer must exist; whether it is active is left to the caller. The
    farmer's name is copied onto the delivery and ``total_amount`` is
    ``raw_weight * price_per_kg``. The farmer's stored totals are not touched.
    The delivery is prepended to the collection.

    Args:
        collections (Collections): Current snapshot.
        command (DeliveryCommand): Validated form payload.
        delivery_id (str | None): Identifier override, generated when omitted.
        today (date | None): Delivery date override, today (UTC) when omitted.

    Returns:
        Mutation: New snapshot with the delivery added.

    Raises:
        MissingReferenceError: If the farmer is unknown.
        ValidationError: If raw weight is not positive, moisture is outside
            ``[0, 100]``, the price is negative, or a choice is unsupported.
    """

    delivery = DeliveryRow(
        delivery_id=delivery_id or generate_id(IdPrefix.DELIVERY),
        date=_resolve_date(today),
        **_validated_delivery_fields(collections, command),
    )
    return Mutation(
        record=delivery,
        collections=collections.with_collection(CollectionKey.DELIVERIES, (delivery, *collections.deliveries)),
        changed=frozenset({CollectionKey.DELIVERIES}),
    )


def update_delivery(collections: Collections, delivery_id: str, command: DeliveryCommand) -> Mutation:
    """Edit a delivery, recomputing its total and farmer name snapshot.

    Raises:
        MissingReferenceError: If the delivery or the farmer is unknown.
        ValidationError: Under the same conditions as :func:`create_delivery`.
    """

    existing = find_delivery(collections, delivery_id)
    delivery = replace(existing, **_validated_delivery_fields(collections, command))
    return Mutation(
        record=delivery,
        collections=collections.with_collection(CollectionKey.DELIVERIES, _replace_row(collections.deliveries, delivery)),
        changed=frozenset({CollectionKey.DELIVERIES}),
    )


def delete_delivery(collections: Collections, delivery_id: str) -> Mutation:
    """Remove a delivery. Lots processed from it are left in place."""

    return _delete(collections, CollectionKey.DELIVERIES, delivery_id)


# ---------------------------------------------------------------------------
# Processed lots
# ---------------------------------------------------------------------------


def _validated_lot_fields(command: Union[ProcessCommand, LotUpdateCommand]) -> Dict[str, Any]:
    return {
        "output_weight": require_nonnegative(command.output_weight, "output weight", WEIGHT_PLACES),
        "grade": require_choice(TeaGrade, command.grade, "grade").value,
        "quality_score": require_score(command.quality_score, "quality score"),
        "packaging_type": command.packaging_type or "",
        "status": require_choice(LotStatus, command.status, "status").value,
    }


def process_delivery(collections: Collections, command: ProcessCommand, *, lot_id: Optional[str] = None, today: Optional[date] = None) -> Mutation:
    """Turn a pending or in-progress delivery into a processed lot.

    The lot's input weight is captured once from the delivery's raw weight
    and the processing loss is derived from it. The source delivery is
    forced to ``processed`` whatever lot status was chosen. The lot is
    prepended to its collection and inherits the delivery's farmer.

    Args:
        collections (Collections): Current snapshot.
        command (ProcessCommand): Validated form payload.
        lot_id (str | None): Identifier override, generated when omitted.
        today (date | None): Processing date override.

    Returns:
        Mutation: New snapshot with the lot added and the delivery updated.

    Raises:
        MissingReferenceError: If the delivery is unknown.
        ValidationError: If the delivery was already processed or sold, its
            raw weight is zero, or the lot fields are out of range.
    """

    delivery = find_delivery(collections, command.delivery_id)
    if delivery.status not in PROCESSABLE_DELIVERY_STATUSES:
        log.error("Delivery '%s' cannot be processed from status '%s'", delivery.delivery_id, delivery.status)
        raise ValidationError(f"batch {delivery.delivery_id} is already {delivery.status}")
    values = _validated_lot_fields(command)
    lot = LotRow(
        lot_id=lot_id or generate_id(IdPrefix.LOT),
        delivery_id=delivery.delivery_id,
        farmer_id=delivery.farmer_id,
        farmer_name=delivery.farmer_name,
        processed_date=_resolve_date(today),
        input_weight=delivery.raw_weight,
        processing_loss=compute_processing_loss(delivery.raw_weight, values["output_weight"]),
        **values,
    )
    processed = replace(delivery, status=DeliveryStatus.PROCESSED.value)
    updated = collections.with_collection(CollectionKey.LOTS, (lot, *collections.lots))
    updated = updated.with_collection(CollectionKey.DELIVERIES, _replace_row(collections.deliveries, processed))
    return Mutation(
        record=lot,
        collections=updated,
        changed=frozenset({CollectionKey.LOTS, CollectionKey.DELIVERIES}),
    )


def update_lot(collections: Collections, lot_id: str, command: LotUpdateCommand) -> Mutation:
    """Edit a processed lot and recompute its processing loss.

    The source delivery is re-resolved by id only for its current raw weight;
    its status is left alone and the lot's captured input weight does not
    change.

    Raises:
        MissingReferenceError: If the lot or its source delivery is unknown.
        ValidationError: If the lot fields are out of range.
    """

    existing = find_lot(collections, lot_id)
    source = _require(collections.deliveries, existing.delivery_id, "source batch")
    values = _validated_lot_fields(command)
    lot = replace(
        existing,
        processing_loss=compute_processing_loss(source.raw_weight, values["output_weight"]),
        **values,
    )
    return Mutation(
        record=lot,
        collections=collections.with_collection(CollectionKey.LOTS, _replace_row(collections.lots, lot)),
        changed=frozenset({CollectionKey.LOTS}),
    )


def delete_lot(collections: Collections, lot_id: str) -> Mutation:
    """Remove a processed lot. Its source delivery and sales are left in place."""

    return _delete(collections, CollectionKey.LOTS, lot_id)


# ---------------------------------------------------------------------------
# Buyers
# ---------------------------------------------------------------------------


def _validated_buyer_fields(command: BuyerCommand) -> Dict[str, Any]:
    return {
        "company_name": require_text(command.company_name, "company name"),
        "contact_person": command.contact_person or "",
        "email": command.email or "",
        "phone": command.phone or "",
        "address": command.address or "",
        "status": require_choice(BuyerStatus, command.status, "status").value,
    }


def create_buyer(collections: Collections, command: BuyerCommand, *, buyer_id: Optional[str] = None, today: Optional[date] = None) -> Mutation:
    """Register a new buyer with zero purchases, appended to the collection."""

    buyer = BuyerRow(
        buyer_id=buyer_id or generate_id(IdPrefix.BUYER),
        registration_date=_resolve_date(today),
        total_purchases=Decimal("0"),
        **_validated_buyer_fields(command),
    )
    return Mutation(
        record=buyer,
        collections=collections.with_collection(CollectionKey.BUYERS, (*collections.buyers, buyer)),
        changed=frozenset({CollectionKey.BUYERS}),
    )


def update_buyer(collections: Collections, buyer_id: str, command: BuyerCommand) -> Mutation:
    """Replace a buyer's editable fields; ``total_purchases`` is kept."""

    existing = find_buyer(collections, buyer_id)
    buyer = replace(existing, **_validated_buyer_fields(command))
    return Mutation(
        record=buyer,
        collections=collections.with_collection(CollectionKey.BUYERS, _replace_row(collections.buyers, buyer)),
        changed=frozenset({CollectionKey.BUYERS}),
    )


def delete_buyer(collections: Collections, buyer_id: str) -> Mutation:
    return _delete(collections, CollectionKey.BUYERS, buyer_id)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def create_sale(collections: Collections, command: SaleCommand, *, sale_id: Optional[str] = None, today: Optional[date] = None) -> Mutation:
    """Record a sale drawn from a processed lot.

    Grade and farmer are copied from the lot, the buyer's company name from
    the buyer. The lot is marked ``sold`` even when ``quantity`` covers only
    part of its output weight; quantities above the output weight are logged
    but accepted. The sale is prepended to the collection.

    Args:
        collections (Collections): Current snapshot.
        command (SaleCommand): Validated form payload.
        sale_id (str | None): Identifier override, generated when omitted.
        today (date | None): Sale date override.

    Returns:
        Mutation: New snapshot with the sale added and the lot updated.

    Raises:
        MissingReferenceError: If the buyer or the lot is unknown.
        ValidationError: If quantity or price is negative, or the payment
            status is unsupported.
    """

    buyer = find_buyer(collections, command.buyer_id)
    lot = find_lot(collections, command.lot_id)
    quantity = require_nonnegative(command.quantity, "quantity", WEIGHT_PLACES)
    price = require_nonnegative(command.price_per_kg, "price per kg", MONEY_PLACES)
    payment = require_choice(PaymentStatus, command.payment_status, "payment status")
    if quantity > lot.output_weight:
        log.warning(
            "Sale quantity %s exceeds output weight %s of lot '%s'",
            quantity,
            lot.output_weight,
            lot.lot_id,
        )

    sale = SaleRow(
        sale_id=sale_id or generate_id(IdPrefix.SALE),
        buyer_id=buyer.buyer_id,
        buyer_name=buyer.company_name,
        lot_id=lot.lot_id,
        date=_resolve_date(today),
        quantity=quantity,
        grade=lot.grade,
        price_per_kg=price,
        total_amount=compute_total_amount(quantity, price),
        payment_status=payment.value,
        farmer_id=lot.farmer_id,
        farmer_name=lot.farmer_name,
    )
    sold_lot = replace(lot, status=LotStatus.SOLD.value)
    updated = collections.with_collection(CollectionKey.SALES, (sale, *collections.sales))
    updated = updated.with_collection(CollectionKey.LOTS, _replace_row(collections.lots, sold_lot))
    return Mutation(
        record=sale,
        collections=updated,
        changed=frozenset({CollectionKey.SALES, CollectionKey.LOTS}),
    )


def update_sale(collections: Collections, sale_id: str, command: SaleUpdateCommand) -> Mutation:
    """Edit a sale's buyer, quantity, price and payment status.

    The lot the sale was drawn from must still exist but is not modified;
    grade and farmer snapshots stay as recorded.

    Raises:
        MissingReferenceError: If the sale, the buyer or the source lot is
            unknown.
        ValidationError: If quantity or price is negative.
    """

    existing = find_sale(collections, sale_id)
    buyer = find_buyer(collections, command.buyer_id)
    _require(collections.lots, existing.lot_id, "source lot")
    quantity = require_nonnegative(command.quantity, "quantity", WEIGHT_PLACES)
    price = require_nonnegative(command.price_per_kg, "price per kg", MONEY_PLACES)
    sale = replace(
        existing,
        buyer_id=buyer.buyer_id,
        buyer_name=buyer.company_name,
        quantity=quantity,
        price_per_kg=price,
        total_amount=compute_total_amount(quantity, price),
        payment_status=require_choice(PaymentStatus, command.payment_status, "payment status").value,
    )
    return Mutation(
        record=sale,
        collections=collections.with_collection(CollectionKey.SALES, _replace_row(collections.sales, sale)),
        changed=frozenset({CollectionKey.SALES}),
    )


def delete_sale(collections: Collections, sale_id: str) -> Mutation:
    """Remove a sale. The lot keeps its ``sold`` status."""

    return _delete(collections, CollectionKey.SALES, sale_id)


# ---------------------------------------------------------------------------
# Runtime context and commit layer
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the storage backend.

    The helper resolves ``config.ini``, parses settings, opens the configured
    backend and builds one entity store per collection. The resulting
    :class:`RuntimeContext` starts with an empty snapshot cache.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    storage = data_manager.open_storage(settings)
    stores = build_stores(storage, seed_defaults=settings.seed_defaults)
    log.info(
        "Loaded runtime context for '%s' (%s backend)",
        settings.data_file,
        settings.storage_backend.value,
    )
    return RuntimeContext(settings=settings, storage=storage, stores=stores)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate storage compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Storage schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Storage schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def load_collections(context: RuntimeContext) -> Collections:
    """Return the current snapshot, loading every collection on first use.

    The snapshot is cached on the context and replaced only after a
    successful commit, so a failed mutation leaves it untouched.
    """
    cached = context._cache.get("collections")
    if cached is not None:
        return cached

    snapshot = Collections()
    for key, store in context.stores.items():
        snapshot = snapshot.with_collection(key, store.load())
    context._cache["collections"] = snapshot
    log.debug(
        "Loaded snapshot: %d farmers, %d deliveries, %d lots, %d buyers, %d sales",
        len(snapshot.farmers),
        len(snapshot.deliveries),
        len(snapshot.lots),
        len(snapshot.buyers),
        len(snapshot.sales),
    )
    return snapshot


def commit(context: RuntimeContext, mutation: Mutation) -> None:
    """Persist the collections changed by ``mutation`` and adopt its snapshot.

    All changed collections are serialized before the backend is written,
    then staged and flushed together. When staging or flushing fails the backend is
    re-staged with the previous snapshot and flushed again, so collections
    already written by the failed flush are put back. The original error
    propagates even when that restoring flush fails too.

    Raises:
        PersistenceError: If serialization or the backend write fails.
    """
    if not mutation.changed:
        return

    previous = load_collections(context)
    ordered = [key for key in context.stores if key in mutation.changed]
    staged = [(key, context.stores[key].serialize(mutation.collections.get(key))) for key in ordered]
    try:
        for key, records in staged:
            context.stores[key].stage(records)
        context.storage.flush()
    except PersistenceError:
        log.error("Commit failed; restoring staged collections: %s", ", ".join(key.value for key in ordered))
        for key in ordered:
            context.stores[key].stage(context.stores[key].serialize(previous.get(key)))
        try:
            context.storage.flush()
        except PersistenceError as restore_exc:
            log.error("Restoring the previous collections also failed: %s", restore_exc)
        raise

    context._cache["collections"] = mutation.collections
    log.debug("Committed collections: %s", ", ".join(key.value for key in ordered))


def execute(context: RuntimeContext, operation: Callable[..., Mutation], *args: Any, **kwargs: Any) -> Mutation:
    """Run a pure engine operation against the context and commit the result.

    Raises:
        RuntimeError: If the configured schema version is not supported.
    """
    ensure_schema_version(context)
    snapshot = load_collections(context)
    mutation = operation(snapshot, *args, **kwargs)
    commit(context, mutation)
    return mutation


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reopen storage to discard unsaved state and cached snapshots.

    Returns:
        RuntimeContext: Fresh context over a newly opened backend.
    """
    storage = data_manager.open_storage(context.settings)
    stores = build_stores(storage, seed_defaults=context.settings.seed_defaults)
    log.info("Reloaded storage '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, storage=storage, stores=stores)


def get_farmer(context: RuntimeContext, farmer_id: str) -> FarmerRow:
    return find_farmer(load_collections(context), farmer_id)


def get_delivery(context: RuntimeContext, delivery_id: str) -> DeliveryRow:
    return find_delivery(load_collections(context), delivery_id)


def get_lot(context: RuntimeContext, lot_id: str) -> LotRow:
    return find_lot(load_collections(context), lot_id)


def get_buyer(context: RuntimeContext, buyer_id: str) -> BuyerRow:
    return find_buyer(load_collections(context), buyer_id)


def get_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    return find_sale(load_collections(context), sale_id)


def add_farmer(context: RuntimeContext, command: FarmerCommand) -> FarmerRow:
    """Create a farmer and persist the farmer collection."""
    farmer = execute(context, create_farmer, command).record
    log.info("Added farmer '%s' (%s)", farmer.farmer_id, farmer.name)
    return farmer


def edit_farmer(context: RuntimeContext, farmer_id: str, command: FarmerCommand) -> FarmerRow:
    farmer = execute(context, update_farmer, farmer_id, command).record
    log.info("Updated farmer '%s'", farmer_id)
    return farmer


def remove_farmer(context: RuntimeContext, farmer_id: str) -> Optional[FarmerRow]:
    removed = execute(context, delete_farmer, farmer_id).record
    if removed is not None:
        log.info("Removed farmer '%s'", farmer_id)
    return removed


def record_delivery(context: RuntimeContext, command: DeliveryCommand) -> DeliveryRow:
    """Record a delivery and persist the delivery collection.

    Raises:
        MissingReferenceError: If the farmer is unknown.
        ValidationError: If the payload fails validation.
        PersistenceError: If storage cannot be written.
    """
    delivery = execute(context, create_delivery, command).record
    log.info(
        "Recorded delivery '%s' from farmer '%s' (weight=%s, amount=%s)",
        delivery.delivery_id,
        delivery.farmer_id,
        delivery.raw_weight,
        delivery.total_amount,
    )
    return delivery


def edit_delivery(context: RuntimeContext, delivery_id: str, command: DeliveryCommand) -> DeliveryRow:
    delivery = execute(context, update_delivery, delivery_id, command).record
    log.info("Updated delivery '%s' (amount=%s)", delivery_id, delivery.total_amount)
    return delivery


def remove_delivery(context: RuntimeContext, delivery_id: str) -> Optional[DeliveryRow]:
    removed = execute(context, delete_delivery, delivery_id).record
    if removed is not None:
        log.info("Removed delivery '%s'", delivery_id)
    return removed


def record_processing(context: RuntimeContext, command: ProcessCommand) -> LotRow:
    """Process a delivery into a lot and persist both affected collections.

    Raises:
        MissingReferenceError: If the delivery is unknown.
        ValidationError: If the delivery cannot be processed or the payload
            fails validation.
        PersistenceError: If storage cannot be written.
    """
    lot = execute(context, process_delivery, command).record
    log.info(
        "Processed delivery '%s' into lot '%s' (output=%s, loss=%s%%)",
        lot.delivery_id,
        lot.lot_id,
        lot.output_weight,
        lot.processing_loss,
    )
    return lot


def edit_lot(context: RuntimeContext, lot_id: str, command: LotUpdateCommand) -> LotRow:
    lot = execute(context, update_lot, lot_id, command).record
    log.info("Updated lot '%s' (loss=%s%%)", lot_id, lot.processing_loss)
    return lot


def remove_lot(context: RuntimeContext, lot_id: str) -> Optional[LotRow]:
    removed = execute(context, delete_lot, lot_id).record
    if removed is not None:
        log.info("Removed lot '%s'", lot_id)
    return removed


def add_buyer(context: RuntimeContext, command: BuyerCommand) -> BuyerRow:
    buyer = execute(context, create_buyer, command).record
    log.info("Added buyer '%s' (%s)", buyer.buyer_id, buyer.company_name)
    return buyer


def edit_buyer(context: RuntimeContext, buyer_id: str, command: BuyerCommand) -> BuyerRow:
    buyer = execute(context, update_buyer, buyer_id, command).record
    log.info("Updated buyer '%s'", buyer_id)
    return buyer


def remove_buyer(context: RuntimeContext, buyer_id: str) -> Optional[BuyerRow]:
    removed = execute(context, delete_buyer, buyer_id).record
    if removed is not None:
        log.info("Removed buyer '%s'", buyer_id)
    return removed


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRow:
    """Record a sale and persist the sale and lot collections.

    Raises:
        MissingReferenceError: If the buyer or the lot is unknown.
        ValidationError: If the payload fails validation.
        PersistenceError: If storage cannot be written.
    """
    sale = execute(context, create_sale, command).record
    log.info(
        "Recorded sale '%s' of lot '%s' to buyer '%s' (quantity=%s, amount=%s)",
        sale.sale_id,
        sale.lot_id,
        sale.buyer_id,
        sale.quantity,
        sale.total_amount,
    )
    return sale


def edit_sale(context: RuntimeContext, sale_id: str, command: SaleUpdateCommand) -> SaleRow:
    sale = execute(context, update_sale, sale_id, command).record
    log.info("Updated sale '%s' (amount=%s)", sale_id, sale.total_amount)
    return sale


def remove_sale(context: RuntimeContext, sale_id: str) -> Optional[SaleRow]:
    removed = execute(context, delete_sale, sale_id).record
    if removed is not None:
        log.info("Removed sale '%s'", sale_id)
    return removed


__all__ = [
    "BusinessRuleViolation",
    "ValidationError",
    "MissingReferenceError",
    "PersistenceError",
    "Collections",
    "Mutation",
    "RuntimeContext",
]
