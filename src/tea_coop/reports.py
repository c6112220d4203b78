"""Aggregation layer: derived figures over the record collections.

Every function here is a pure reduction over rows; nothing is cached and
nothing is written back. The CLI recomputes the figures on each call.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .constants import (
    DEFAULT_INVENTORY_UNIT_PRICE,
    PROCESSABLE_DELIVERY_STATUSES,
    BuyerStatus,
    DeliveryStatus,
    FarmerStatus,
    LotStatus,
    OutputPreference,
    PaymentStatus,
    TeaGrade,
)
from .core_logic import Collections, current_date
from .data_manager import BuyerRow, DeliveryRow, FarmerRow, LotRow, SaleRow


ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class FarmerSummary:
    total: int
    active: int
    self_collect: int
    coop_sell: int


@dataclass(frozen=True)
class BuyerSummary:
    total: int
    active: int
    inactive: int
    total_purchases: Decimal


@dataclass(frozen=True)
class DeliveryTotals:
    total_weight: Decimal
    total_value: Decimal
    pending_count: int


@dataclass(frozen=True)
class ProcessingSummary:
    total_output: Decimal
    available_stock: Decimal
    average_quality: Decimal


@dataclass(frozen=True)
class SalesSummary:
    revenue: Decimal
    outstanding: Decimal
    available_stock: Decimal


@dataclass(frozen=True)
class GradeShare:
    grade: str
    weight: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class FinancialSummary:
    revenue: Decimal
    cost: Decimal
    gross_margin: Decimal
    margin_percentage: int


@dataclass(frozen=True)
class FarmerContribution:
    name: str
    delivered: Decimal
    balance: Decimal


@dataclass(frozen=True)
class LotEfficiency:
    label: str
    efficiency: int
    quality: int


@dataclass(frozen=True)
class BuyerActivity:
    name: str
    purchases_thousands: Decimal


@dataclass(frozen=True)
class FarmerTotals:
    """Delivery totals derived from the recorded deliveries of one farmer."""

    farmer_id: str
    delivery_count: int
    total_weight: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class DashboardSummary:
    """Figures shown on the dashboard cards."""

    total_farmers: int
    active_farmers: int
    total_buyers: int
    active_buyers: int
    pending_deliveries: int
    processed_this_month: int
    total_sales_value: Decimal
    sales_this_month: Decimal
    inventory_value: Decimal
    outstanding_payments: Decimal


def _round_half_up(value: Decimal) -> int:
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def _first_word(text: str) -> str:
    parts = text.split()
    return parts[0] if parts else ""


def _same_month(iso_date: str, as_of: date) -> bool:
    return iso_date[:7] == as_of.strftime("%Y-%m")


# ---------------------------------------------------------------------------
# Counts and sums
# ---------------------------------------------------------------------------


def count_by(rows: Iterable[object], attribute: str) -> Dict[str, int]:
    """Count ``rows`` by the value of ``attribute``, in first-seen order."""

    return dict(Counter(getattr(row, attribute) for row in rows))


def farmer_summary(farmers: Sequence[FarmerRow]) -> FarmerSummary:
    preferences = count_by(farmers, "output_preference")
    return FarmerSummary(
        total=len(farmers),
        active=sum(1 for farmer in farmers if farmer.status == FarmerStatus.ACTIVE.value),
        self_collect=preferences.get(OutputPreference.SELF_COLLECT.value, 0),
        coop_sell=preferences.get(OutputPreference.COOP_SELL.value, 0),
    )


def buyer_summary(buyers: Sequence[BuyerRow]) -> BuyerSummary:
    active = sum(1 for buyer in buyers if buyer.status == BuyerStatus.ACTIVE.value)
    return BuyerSummary(
        total=len(buyers),
        active=active,
        inactive=len(buyers) - active,
        total_purchases=sum((buyer.total_purchases for buyer in buyers), ZERO),
    )


def delivery_totals(deliveries: Sequence[DeliveryRow]) -> DeliveryTotals:
    return DeliveryTotals(
        total_weight=sum((delivery.raw_weight for delivery in deliveries), ZERO),
        total_value=sum((delivery.total_amount for delivery in deliveries), ZERO),
        pending_count=sum(1 for delivery in deliveries if delivery.status == DeliveryStatus.PENDING.value),
    )


def available_stock_weight(lots: Sequence[LotRow]) -> Decimal:
    """Sum the output weight of lots still available for sale."""

    return sum((lot.output_weight for lot in lots if lot.status == LotStatus.AVAILABLE.value), ZERO)


def average_quality_score(lots: Sequence[LotRow]) -> Decimal:
    """Return the mean quality score, or ``0`` when there are no lots."""

    if not lots:
        return ZERO
    return Decimal(sum(lot.quality_score for lot in lots)) / Decimal(len(lots))


def processing_summary(lots: Sequence[LotRow]) -> ProcessingSummary:
    return ProcessingSummary(
        total_output=sum((lot.output_weight for lot in lots), ZERO),
        available_stock=available_stock_weight(lots),
        average_quality=average_quality_score(lots),
    )


def outstanding_payments(sales: Sequence[SaleRow]) -> Decimal:
    """Sum the amounts of sales whose payment status is not ``paid``."""

    return sum((sale.total_amount for sale in sales if sale.payment_status != PaymentStatus.PAID.value), ZERO)


def sales_summary(sales: Sequence[SaleRow], lots: Sequence[LotRow]) -> SalesSummary:
    return SalesSummary(
        revenue=sum((sale.total_amount for sale in sales), ZERO),
        outstanding=outstanding_payments(sales),
        available_stock=available_stock_weight(lots),
    )


def inventory_value(lots: Sequence[LotRow], unit_price: Decimal = DEFAULT_INVENTORY_UNIT_PRICE) -> Decimal:
    """Value available lots at a flat ``unit_price`` per kg of output."""

    return available_stock_weight(lots) * unit_price


# ---------------------------------------------------------------------------
# Distributions and charts
# ---------------------------------------------------------------------------


def grade_distribution(deliveries: Sequence[DeliveryRow]) -> List[GradeShare]:
    """Return raw weight per grade and its share of the total weight.

    Every grade is listed, in ``A``, ``B``, ``C`` order, even when it has no
    deliveries. Percentages are ``0`` when the total weight is zero.
    """

    weights = {grade.value: ZERO for grade in TeaGrade}
    for delivery in deliveries:
        weights[delivery.grade] = weights.get(delivery.grade, ZERO) + delivery.raw_weight
    total = sum(weights.values(), ZERO)
    return [
        GradeShare(
            grade=grade,
            weight=weight,
            percentage=(weight / total * HUNDRED) if total else ZERO,
        )
        for grade, weight in weights.items()
    ]


def preference_distribution(farmers: Sequence[FarmerRow]) -> Dict[str, int]:
    """Count farmers per output preference, listing both preferences."""

    counts = count_by(farmers, "output_preference")
    return {preference.value: counts.get(preference.value, 0) for preference in OutputPreference}


def farmer_contribution(farmers: Sequence[FarmerRow], limit: int = 5) -> List[FarmerContribution]:
    """Top contributors by stored delivered weight, labelled by first name."""

    contributors = [farmer for farmer in farmers if farmer.total_delivered > ZERO]
    contributors.sort(key=lambda farmer: farmer.total_delivered, reverse=True)
    return [
        FarmerContribution(name=_first_word(farmer.name), delivered=farmer.total_delivered, balance=farmer.balance)
        for farmer in contributors[:limit]
    ]


def processing_efficiency(lots: Sequence[LotRow]) -> List[LotEfficiency]:
    """Yield ``100 - processing_loss`` per lot alongside its quality score."""

    return [
        LotEfficiency(label=lot.lot_id[-4:], efficiency=100 - lot.processing_loss, quality=lot.quality_score)
        for lot in lots
    ]


def buyer_activity(buyers: Sequence[BuyerRow]) -> List[BuyerActivity]:
    return [
        BuyerActivity(name=_first_word(buyer.company_name), purchases_thousands=buyer.total_purchases / Decimal("1000"))
        for buyer in buyers
    ]


def recent_deliveries(deliveries: Sequence[DeliveryRow], limit: int = 5) -> List[DeliveryRow]:
    """Return the first ``limit`` deliveries; new deliveries are stored first."""

    return list(deliveries[:limit])


def financial_summary(deliveries: Sequence[DeliveryRow], sales: Sequence[SaleRow]) -> FinancialSummary:
    """Compare sales revenue with the amounts owed for raw deliveries.

    The margin percentage is rounded half up and is ``0`` without revenue.
    """

    revenue = sum((sale.total_amount for sale in sales), ZERO)
    cost = sum((delivery.total_amount for delivery in deliveries), ZERO)
    margin = revenue - cost
    percentage = _round_half_up(margin / revenue * HUNDRED) if revenue > ZERO else 0
    return FinancialSummary(revenue=revenue, cost=cost, gross_margin=margin, margin_percentage=percentage)


def dashboard_summary(
    collections: Collections,
    *,
    unit_price: Decimal = DEFAULT_INVENTORY_UNIT_PRICE,
    as_of: Optional[date] = None,
) -> DashboardSummary:
    """Compute the dashboard cards from a snapshot.

    Args:
        collections (Collections): Snapshot to summarise.
        unit_price (Decimal): Flat price per kg used for the inventory value.
        as_of (date | None): Reference day for the "this month" figures,
            today when omitted.

    Returns:
        DashboardSummary: The card values.
    """

    as_of = as_of or current_date()
    farmers = farmer_summary(collections.farmers)
    buyers = buyer_summary(collections.buyers)
    return DashboardSummary(
        total_farmers=farmers.total,
        active_farmers=farmers.active,
        total_buyers=buyers.total,
        active_buyers=buyers.active,
        pending_deliveries=delivery_totals(collections.deliveries).pending_count,
        processed_this_month=sum(1 for lot in collections.lots if _same_month(lot.processed_date, as_of)),
        total_sales_value=sum((sale.total_amount for sale in collections.sales), ZERO),
        sales_this_month=sum((sale.total_amount for sale in collections.sales if _same_month(sale.date, as_of)), ZERO),
        inventory_value=inventory_value(collections.lots, unit_price),
        outstanding_payments=outstanding_payments(collections.sales),
    )


# ---------------------------------------------------------------------------
# Derived views over denormalized fields
# ---------------------------------------------------------------------------


def derive_farmer_totals(farmer_id: str, deliveries: Sequence[DeliveryRow]) -> FarmerTotals:
    """Sum weight and amount over the deliveries recorded for ``farmer_id``.

    Unlike the stored ``total_delivered`` and ``balance`` fields these figures
    always reflect the current delivery collection.
    """

    own = [delivery for delivery in deliveries if delivery.farmer_id == farmer_id]
    return FarmerTotals(
        farmer_id=farmer_id,
        delivery_count=len(own),
        total_weight=sum((delivery.raw_weight for delivery in own), ZERO),
        total_amount=sum((delivery.total_amount for delivery in own), ZERO),
    )


def lot_sold_quantity(lot_id: str, sales: Sequence[SaleRow]) -> Decimal:
    return sum((sale.quantity for sale in sales if sale.lot_id == lot_id), ZERO)


def lot_remaining_weight(lot: LotRow, sales: Sequence[SaleRow]) -> Decimal:
    """Output weight not yet covered by sales; negative when oversold."""

    return lot.output_weight - lot_sold_quantity(lot.lot_id, sales)


def resolve_farmer_name(farmers: Sequence[FarmerRow], farmer_id: str, fallback: str) -> str:
    """Return the farmer's current name, or ``fallback`` if it no longer exists."""

    for farmer in farmers:
        if farmer.farmer_id == farmer_id:
            return farmer.name
    return fallback


def resolve_buyer_name(buyers: Sequence[BuyerRow], buyer_id: str, fallback: str) -> str:
    """Return the buyer's current company name, or ``fallback``."""

    for buyer in buyers:
        if buyer.buyer_id == buyer_id:
            return buyer.company_name
    return fallback


# ---------------------------------------------------------------------------
# Search and choice helpers
# ---------------------------------------------------------------------------


def _matches(query: Optional[str], *values: str) -> bool:
    if not query:
        return True
    needle = query.lower()
    return any(needle in (value or "").lower() for value in values)


def filter_farmers(farmers: Sequence[FarmerRow], query: Optional[str] = None, status: Optional[str] = None) -> List[FarmerRow]:
    """Match name, location or id case-insensitively, optionally by status."""

    return [
        farmer
        for farmer in farmers
        if _matches(query, farmer.name, farmer.location, farmer.farmer_id)
        and (status is None or farmer.status == status)
    ]


def filter_deliveries(
    deliveries: Sequence[DeliveryRow],
    query: Optional[str] = None,
    status: Optional[str] = None,
    grade: Optional[str] = None,
) -> List[DeliveryRow]:
    return [
        delivery
        for delivery in deliveries
        if _matches(query, delivery.delivery_id, delivery.farmer_name)
        and (status is None or delivery.status == status)
        and (grade is None or delivery.grade == grade)
    ]


def filter_lots(lots: Sequence[LotRow], query: Optional[str] = None) -> List[LotRow]:
    return [lot for lot in lots if _matches(query, lot.lot_id, lot.farmer_name)]


def filter_buyers(buyers: Sequence[BuyerRow], query: Optional[str] = None) -> List[BuyerRow]:
    return [buyer for buyer in buyers if _matches(query, buyer.company_name, buyer.contact_person, buyer.buyer_id)]


def filter_sales(sales: Sequence[SaleRow], query: Optional[str] = None) -> List[SaleRow]:
    return [sale for sale in sales if _matches(query, sale.sale_id, sale.buyer_name, sale.farmer_name)]


def active_farmers(farmers: Sequence[FarmerRow]) -> List[FarmerRow]:
    """Farmers offered when recording a delivery."""

    return [farmer for farmer in farmers if farmer.status == FarmerStatus.ACTIVE.value]


def active_buyers(buyers: Sequence[BuyerRow]) -> List[BuyerRow]:
    return [buyer for buyer in buyers if buyer.status == BuyerStatus.ACTIVE.value]


def deliveries_ready_for_processing(deliveries: Sequence[DeliveryRow]) -> List[DeliveryRow]:
    return [delivery for delivery in deliveries if delivery.status in PROCESSABLE_DELIVERY_STATUSES]


def available_lots(lots: Sequence[LotRow]) -> List[LotRow]:
    """Lots offered when recording a sale."""

    return [lot for lot in lots if lot.status == LotStatus.AVAILABLE.value]
