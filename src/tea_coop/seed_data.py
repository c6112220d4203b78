"""Default dataset written to storage the first time a collection is read."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Sequence

from .constants import CollectionKey
from .data_manager import BuyerRow, DeliveryRow, FarmerRow, LotRow, SaleRow


DEFAULT_FARMERS: Sequence[FarmerRow] = (
    FarmerRow("F001", "James Mwangi", "+254 712 345 678", "Kericho Valley", "2023-01-15", "active", "coop-sell", Decimal("2450"), Decimal("125000")),
    FarmerRow("F002", "Sarah Wanjiku", "+254 723 456 789", "Nandi Hills", "2023-02-20", "active", "self-collect", Decimal("1820"), Decimal("45000")),
    FarmerRow("F003", "Peter Omondi", "+254 734 567 890", "Kisii Highlands", "2023-03-10", "active", "coop-sell", Decimal("3100"), Decimal("189000")),
    FarmerRow("F004", "Grace Njeri", "+254 745 678 901", "Limuru", "2023-04-05", "active", "coop-sell", Decimal("980"), Decimal("67000")),
    FarmerRow("F005", "David Kiprop", "+254 756 789 012", "Bomet", "2023-05-12", "inactive", "self-collect", Decimal("560"), Decimal("0")),
)

DEFAULT_DELIVERIES: Sequence[DeliveryRow] = (
    DeliveryRow("IB001", "F001", "James Mwangi", "2024-01-15", Decimal("250"), "A", Decimal("72"), Decimal("85"), Decimal("21250"), "processed"),
    DeliveryRow("IB002", "F002", "Sarah Wanjiku", "2024-01-16", Decimal("180"), "B", Decimal("68"), Decimal("75"), Decimal("13500"), "processing"),
    DeliveryRow("IB003", "F003", "Peter Omondi", "2024-01-17", Decimal("320"), "A", Decimal("70"), Decimal("85"), Decimal("27200"), "pending"),
    DeliveryRow("IB004", "F004", "Grace Njeri", "2024-01-18", Decimal("150"), "C", Decimal("75"), Decimal("60"), Decimal("9000"), "pending"),
    DeliveryRow("IB005", "F001", "James Mwangi", "2024-01-19", Decimal("200"), "A", Decimal("71"), Decimal("85"), Decimal("17000"), "processed"),
)

DEFAULT_LOTS: Sequence[LotRow] = (
    LotRow("PB001", "IB001", "F001", "James Mwangi", "2024-01-17", Decimal("250"), Decimal("62.5"), "A", 75, 92, "25kg bags", "available"),
    LotRow("PB002", "IB005", "F001", "James Mwangi", "2024-01-21", Decimal("200"), Decimal("52"), "A", 74, 94, "25kg bags", "sold"),
)

DEFAULT_BUYERS: Sequence[BuyerRow] = (
    BuyerRow("B001", "Kenya Tea Exporters Ltd", "John Kamau", "john@ktexporters.co.ke", "+254 720 111 222", "Mombasa Road, Nairobi", "2023-01-01", Decimal("2500000"), "active"),
    BuyerRow("B002", "Highland Blends Co.", "Mary Wangari", "mary@highlandblends.com", "+254 721 222 333", "Industrial Area, Nakuru", "2023-03-15", Decimal("1800000"), "active"),
    BuyerRow("B003", "African Tea Trading", "Ahmed Hassan", "ahmed@africanteatrading.com", "+254 722 333 444", "Kenyatta Avenue, Eldoret", "2023-06-20", Decimal("950000"), "active"),
)

DEFAULT_SALES: Sequence[SaleRow] = (
    SaleRow("S001", "B001", "Kenya Tea Exporters Ltd", "PB002", "2024-01-22", Decimal("52"), "A", Decimal("450"), Decimal("23400"), "paid", "F001", "James Mwangi"),
    SaleRow("S002", "B002", "Highland Blends Co.", "PB001", "2024-01-23", Decimal("30"), "A", Decimal("440"), Decimal("13200"), "pending", "F001", "James Mwangi"),
)

DEFAULT_COLLECTIONS: Dict[str, Sequence[object]] = {
    CollectionKey.FARMERS.value: DEFAULT_FARMERS,
    CollectionKey.DELIVERIES.value: DEFAULT_DELIVERIES,
    CollectionKey.LOTS.value: DEFAULT_LOTS,
    CollectionKey.BUYERS.value: DEFAULT_BUYERS,
    CollectionKey.SALES.value: DEFAULT_SALES,
}
