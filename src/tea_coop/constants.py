"""Enumerations shared across the cooperative record modules.

Centralises domain constants so that the data access layer, the rule engine,
the reports and the CLI rely on a single source of truth for status values,
collection keys and identifier prefixes.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating storage.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Price per kg used to value available processed stock on the dashboard.
DEFAULT_INVENTORY_UNIT_PRICE = Decimal("400")
DEFAULT_CURRENCY = "KES"

# Decimal places kept for validated weights, prices and percentages.
WEIGHT_PLACES = 3
MONEY_PLACES = 2
PERCENT_PLACES = 2


class TeaGrade(str, Enum):
    """Quality grades assigned to raw and processed tea."""

    A = "A"
    B = "B"
    C = "C"


class FarmerStatus(str, Enum):
    """Membership state of a farmer."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class BuyerStatus(str, Enum):
    """Trading state of a buyer."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class OutputPreference(str, Enum):
    """How a farmer wants processed output handled."""

    SELF_COLLECT = "self-collect"
    COOP_SELL = "coop-sell"


class DeliveryStatus(str, Enum):
    """Lifecycle of an incoming raw-tea delivery."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    SOLD = "sold"


class LotStatus(str, Enum):
    """Lifecycle of a processed lot."""

    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class PaymentStatus(str, Enum):
    """Settlement state of a sale."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class CollectionKey(str, Enum):
    """Storage keys of the five independently persisted collections."""

    FARMERS = "farmers"
    DELIVERIES = "incomingBatches"
    LOTS = "processedBatches"
    BUYERS = "buyers"
    SALES = "sales"


class IdPrefix(str, Enum):
    """Identifier prefixes per entity type."""

    FARMER = "F"
    DELIVERY = "IB"
    LOT = "PB"
    BUYER = "B"
    SALE = "S"


class StorageBackend(str, Enum):
    """Persistence backends selectable from ``config.ini``."""

    WORKBOOK = "workbook"
    JSON = "json"


# Deliveries that may still be turned into a processed lot.
PROCESSABLE_DELIVERY_STATUSES = frozenset({DeliveryStatus.PENDING.value, DeliveryStatus.PROCESSING.value})


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_INVENTORY_UNIT_PRICE",
    "DEFAULT_CURRENCY",
    "WEIGHT_PLACES",
    "MONEY_PLACES",
    "PERCENT_PLACES",
    "TeaGrade",
    "FarmerStatus",
    "BuyerStatus",
    "OutputPreference",
    "DeliveryStatus",
    "LotStatus",
    "PaymentStatus",
    "CollectionKey",
    "IdPrefix",
    "StorageBackend",
    "PROCESSABLE_DELIVERY_STATUSES",
]
