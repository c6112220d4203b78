"""Data access layer for the cooperative records.

This module provides the low-level helpers that read and write the five
record collections. Business rules belong in :mod:`tea_coop.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record shapes: the frozen row dataclasses and their conversion to and from
   the persisted camelCase records.
3. Storage backends: a key-value store holding one ordered collection per
   key, backed by an Excel workbook, a directory of JSON files, or memory.
"""


from __future__ import annotations

import configparser
import json
import zipfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_INVENTORY_UNIT_PRICE,
    CollectionKey,
    StorageBackend,
)


CONFIG_FILE_NAME = "config.ini"

Record = Dict[str, Any]


class PersistenceError(Exception):
    """Raised when a collection cannot be read from or written to storage."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    cooperative_name: str
    schema_version: str
    storage_backend: StorageBackend = StorageBackend.WORKBOOK
    seed_defaults: bool = True
    inventory_unit_price: Decimal = DEFAULT_INVENTORY_UNIT_PRICE
    currency: str = DEFAULT_CURRENCY


@dataclass(frozen=True)
class FarmerRow:
    """In-memory view of a record from the ``farmers`` collection."""

    farmer_id: str
    name: str
    phone: str
    location: str
    registration_date: str
    status: str
    output_preference: str
    total_delivered: Decimal
    balance: Decimal


@dataclass(frozen=True)
class DeliveryRow:
    """In-memory view of a record from the ``incomingBatches`` collection."""

    delivery_id: str
    farmer_id: str
    farmer_name: str
    date: str
    raw_weight: Decimal
    grade: str
    moisture_content: Decimal
    price_per_kg: Decimal
    total_amount: Decimal
    status: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class LotRow:
    """In-memory view of a record from the ``processedBatches`` collection."""

    lot_id: str
    delivery_id: str
    farmer_id: str
    farmer_name: str
    processed_date: str
    input_weight: Decimal
    output_weight: Decimal
    grade: str
    processing_loss: int
    quality_score: int
    packaging_type: str
    status: str


@dataclass(frozen=True)
class BuyerRow:
    """In-memory view of a record from the ``buyers`` collection."""

    buyer_id: str
    company_name: str
    contact_person: str
    email: str
    phone: str
    address: str
    registration_date: str
    total_purchases: Decimal
    status: str


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a record from the ``sales`` collection."""

    sale_id: str
    buyer_id: str
    buyer_name: str
    lot_id: str
    date: str
    quantity: Decimal
    grade: str
    price_per_kg: Decimal
    total_amount: Decimal
    payment_status: str
    farmer_id: str
    farmer_name: str


# Persisted field order per collection. Workbook headers follow this order.
COLLECTION_FIELDS: Mapping[str, Sequence[str]] = {
    CollectionKey.FARMERS.value: (
        "id",
        "name",
        "phone",
        "location",
        "registrationDate",
        "status",
        "outputPreference",
        "totalDelivered",
        "balance",
    ),
    CollectionKey.DELIVERIES.value: (
        "id",
        "farmerId",
        "farmerName",
        "date",
        "rawWeight",
        "grade",
        "moistureContent",
        "pricePerKg",
        "totalAmount",
        "status",
        "notes",
    ),
    CollectionKey.LOTS.value: (
        "id",
        "incomingBatchId",
        "farmerId",
        "farmerName",
        "processedDate",
        "inputWeight",
        "outputWeight",
        "grade",
        "processingLoss",
        "qualityScore",
        "packagingType",
        "status",
    ),
    CollectionKey.BUYERS.value: (
        "id",
        "companyName",
        "contactPerson",
        "email",
        "phone",
        "address",
        "registrationDate",
        "totalPurchases",
        "status",
    ),
    CollectionKey.SALES.value: (
        "id",
        "buyerId",
        "buyerName",
        "processedBatchId",
        "date",
        "quantity",
        "grade",
        "pricePerKg",
        "totalAmount",
        "paymentStatus",
        "farmerId",
        "farmerName",
    ),
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration
            data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Defaults]`` and ``[Reports]``
    are optional and fall back to the package defaults. Relative ``DataFile``
    entries are expanded against ``base_path`` (or the current working
    directory) and resolved to an absolute path.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required ``[System]`` options is missing.
        ValueError: If the storage backend is unknown, ``SeedDefaults`` is not
            a boolean, or ``InventoryUnitPrice`` is not a number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        cooperative_name = parser.get("System", "CooperativeName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    backend_raw = parser.get("System", "StorageBackend", fallback=StorageBackend.WORKBOOK.value)
    try:
        backend = StorageBackend(backend_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported storage backend: {backend_raw}") from exc

    seed_defaults = parser.getboolean("Defaults", "SeedDefaults", fallback=True)

    price_raw = parser.get("Reports", "InventoryUnitPrice", fallback=str(DEFAULT_INVENTORY_UNIT_PRICE))
    try:
        unit_price = Decimal(price_raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"InventoryUnitPrice must be numeric, got '{price_raw}'") from exc
    currency = parser.get("Reports", "Currency", fallback=DEFAULT_CURRENCY)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        cooperative_name=cooperative_name,
        schema_version=schema_version,
        storage_backend=backend,
        seed_defaults=seed_defaults,
        inventory_unit_price=unit_price,
        currency=currency,
    )


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------


def _to_decimal(raw: Any) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    return Decimal(str(raw))


def _to_int(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def _text(raw: Any) -> str:
    return str(raw) if raw is not None else ""


def _optional_text(raw: Any) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return str(raw)


def serialize_farmer(record: FarmerRow) -> Record:
    """Convert a farmer row into its persisted record."""

    return {
        "id": record.farmer_id,
        "name": record.name,
        "phone": record.phone,
        "location": record.location,
        "registrationDate": record.registration_date,
        "status": record.status,
        "outputPreference": record.output_preference,
        "totalDelivered": record.total_delivered,
        "balance": record.balance,
    }


def serialize_delivery(record: DeliveryRow) -> Record:
    """Convert a delivery row into its persisted record."""

    return {
        "id": record.delivery_id,
        "farmerId": record.farmer_id,
        "farmerName": record.farmer_name,
        "date": record.date,
        "rawWeight": record.raw_weight,
        "grade": record.grade,
        "moistureContent": record.moisture_content,
        "pricePerKg": record.price_per_kg,
        "totalAmount": record.total_amount,
        "status": record.status,
        "notes": record.notes,
    }


def serialize_lot(record: LotRow) -> Record:
    """Convert a processed lot row into its persisted record."""

    return {
        "id": record.lot_id,
        "incomingBatchId": record.delivery_id,
        "farmerId": record.farmer_id,
        "farmerName": record.farmer_name,
        "processedDate": record.processed_date,
        "inputWeight": record.input_weight,
        "outputWeight": record.output_weight,
        "grade": record.grade,
        "processingLoss": record.processing_loss,
        "qualityScore": record.quality_score,
        "packagingType": record.packaging_type,
        "status": record.status,
    }


def serialize_buyer(record: BuyerRow) -> Record:
    """Convert a buyer row into its persisted record."""

    return {
        "id": record.buyer_id,
        "companyName": record.company_name,
        "contactPerson": record.contact_person,
        "email": record.email,
        "phone": record.phone,
        "address": record.address,
        "registrationDate": record.registration_date,
        "totalPurchases": record.total_purchases,
        "status": record.status,
    }


def serialize_sale(record: SaleRow) -> Record:
    """Convert a sale row into its persisted record."""

    return {
        "id": record.sale_id,
        "buyerId": record.buyer_id,
        "buyerName": record.buyer_name,
        "processedBatchId": record.lot_id,
        "date": record.date,
        "quantity": record.quantity,
        "grade": record.grade,
        "pricePerKg": record.price_per_kg,
        "totalAmount": record.total_amount,
        "paymentStatus": record.payment_status,
        "farmerId": record.farmer_id,
        "farmerName": record.farmer_name,
    }


def deserialize_farmer(raw: Mapping[str, Any]) -> FarmerRow:
    """Convert a persisted record into a strongly typed farmer row.

    Identifier and text fields are coerced to ``str`` so that values a
    spreadsheet interpreted as numbers (phone numbers, numeric ids) do not
    leak through as ``int``.

    Raises:
        KeyError: If the record lacks the ``id`` field.
    """

    return FarmerRow(
        farmer_id=str(raw["id"]),
        name=_text(raw.get("name")),
        phone=_text(raw.get("phone")),
        location=_text(raw.get("location")),
        registration_date=_text(raw.get("registrationDate")),
        status=_text(raw.get("status")),
        output_preference=_text(raw.get("outputPreference")),
        total_delivered=_to_decimal(raw.get("totalDelivered")),
        balance=_to_decimal(raw.get("balance")),
    )


def deserialize_delivery(raw: Mapping[str, Any]) -> DeliveryRow:
    """Convert a persisted record into a strongly typed delivery row.

    Blank notes become ``None`` so that workbook and JSON storage agree on
    the absence of a value.
    """

    return DeliveryRow(
        delivery_id=str(raw["id"]),
        farmer_id=_text(raw.get("farmerId")),
        farmer_name=_text(raw.get("farmerName")),
        date=_text(raw.get("date")),
        raw_weight=_to_decimal(raw.get("rawWeight")),
        grade=_text(raw.get("grade")),
        moisture_content=_to_decimal(raw.get("moistureContent")),
        price_per_kg=_to_decimal(raw.get("pricePerKg")),
        total_amount=_to_decimal(raw.get("totalAmount")),
        status=_text(raw.get("status")),
        notes=_optional_text(raw.get("notes")),
    )


def deserialize_lot(raw: Mapping[str, Any]) -> LotRow:
    """Convert a persisted record into a strongly typed processed lot row."""

    return LotRow(
        lot_id=str(raw["id"]),
        delivery_id=_text(raw.get("incomingBatchId")),
        farmer_id=_text(raw.get("farmerId")),
        farmer_name=_text(raw.get("farmerName")),
        processed_date=_text(raw.get("processedDate")),
        input_weight=_to_decimal(raw.get("inputWeight")),
        output_weight=_to_decimal(raw.get("outputWeight")),
        grade=_text(raw.get("grade")),
        processing_loss=_to_int(raw.get("processingLoss")),
        quality_score=_to_int(raw.get("qualityScore")),
        packaging_type=_text(raw.get("packagingType")),
        status=_text(raw.get("status")),
    )


def deserialize_buyer(raw: Mapping[str, Any]) -> BuyerRow:
    """Convert a persisted record into a strongly typed buyer row."""

    return BuyerRow(
        buyer_id=str(raw["id"]),
        company_name=_text(raw.get("companyName")),
        contact_person=_text(raw.get("contactPerson")),
        email=_text(raw.get("email")),
        phone=_text(raw.get("phone")),
        address=_text(raw.get("address")),
        registration_date=_text(raw.get("registrationDate")),
        total_purchases=_to_decimal(raw.get("totalPurchases")),
        status=_text(raw.get("status")),
    )


def deserialize_sale(raw: Mapping[str, Any]) -> SaleRow:
    """Convert a persisted record into a strongly typed sale row."""

    return SaleRow(
        sale_id=str(raw["id"]),
        buyer_id=_text(raw.get("buyerId")),
        buyer_name=_text(raw.get("buyerName")),
        lot_id=_text(raw.get("processedBatchId")),
        date=_text(raw.get("date")),
        quantity=_to_decimal(raw.get("quantity")),
        grade=_text(raw.get("grade")),
        price_per_kg=_to_decimal(raw.get("pricePerKg")),
        total_amount=_to_decimal(raw.get("totalAmount")),
        payment_status=_text(raw.get("paymentStatus")),
        farmer_id=_text(raw.get("farmerId")),
        farmer_name=_text(raw.get("farmerName")),
    )


# ---------------------------------------------------------------------------
# JSON encoding shared by the JSON and memory backends
# ---------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_records(records: Sequence[Record]) -> str:
    """Serialize a collection into JSON text.

    Decimal values are written as JSON numbers. Anything else that ``json``
    cannot represent surfaces as :class:`PersistenceError`.
    """

    try:
        return json.dumps(list(records), default=_json_default, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(f"Unable to serialize collection: {exc}") from exc


def decode_records(text: str) -> List[Record]:
    """Parse JSON text produced by :func:`encode_records`.

    Fractional numbers are loaded as :class:`~decimal.Decimal` so values read
    back compare equal to the values written.
    """

    try:
        payload = json.loads(text, parse_float=Decimal)
    except ValueError as exc:
        raise PersistenceError(f"Stored collection is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise PersistenceError("Stored collection must be a JSON array")
    return payload


# ---------------------------------------------------------------------------
# Workbook helpers
# ---------------------------------------------------------------------------


def new_workbook() -> Workbook:
    """Return an empty workbook without openpyxl's default sheet."""

    workbook = openpyxl.Workbook()
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the records workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        PersistenceError: If the file exists but is not a readable workbook.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    try:
        return openpyxl.load_workbook(data_file)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise PersistenceError(f"Unable to read workbook '{data_file}': {exc}") from exc


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Raises:
        PersistenceError: If the file cannot be written.
    """

    dest = Path(destination).expanduser().resolve()
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(dest)
    except OSError as exc:
        raise PersistenceError(f"Unable to save workbook '{dest}': {exc}") from exc


def iter_sheet_records(workbook: Workbook, sheet_name: str) -> Iterable[Record]:
    """Yield the rows of ``sheet_name`` as records keyed by the header row.

    The header row supplies the field names; fully empty rows are skipped.
    """

    sheet = workbook[sheet_name]
    header = [cell.value for cell in sheet[1]]
    if not any(name is not None for name in header):
        return
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield {name: value for name, value in zip(header, raw) if name is not None}


def write_sheet_records(workbook: Workbook, sheet_name: str, records: Sequence[Record]) -> None:
    """Replace the contents of ``sheet_name`` with ``records``.

    The sheet is created when missing. The header row uses the field order
    from :data:`COLLECTION_FIELDS` for known collections, falling back to the
    key order of the records themselves.
    """

    fields = list(COLLECTION_FIELDS.get(sheet_name, ()))
    for record in records:
        for name in record:
            if name not in fields:
                fields.append(name)

    index = None
    if sheet_name in workbook.sheetnames:
        # delete_rows keeps the append cursor, so the sheet is replaced instead
        index = workbook.sheetnames.index(sheet_name)
        workbook.remove(workbook[sheet_name])
    sheet = workbook.create_sheet(title=sheet_name, index=index)

    bold_font = Font(bold=True)
    for column_index, name in enumerate(fields, start=1):
        cell = sheet.cell(row=1, column=column_index, value=name)
        cell.font = bold_font
    for record in records:
        sheet.append([record.get(name) for name in fields])


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class WorkbookStorage:
    """Key-value storage keeping each collection on its own worksheet.

    Writes touch the in-memory workbook only; :meth:`flush` saves it to
    ``data_file``. A missing file is treated as an empty store and created on
    the first flush.
    """

    def __init__(self, data_file: Path, workbook: Optional[Workbook] = None) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self._workbook = workbook

    @property
    def workbook(self) -> Workbook:
        if self._workbook is None:
            if self.data_file.exists():
                self._workbook = open_workbook(self.data_file)
            else:
                log.info("Workbook '%s' does not exist yet; starting empty", self.data_file)
                self._workbook = new_workbook()
        return self._workbook

    def read(self, key: str) -> Optional[List[Record]]:
        if key not in self.workbook.sheetnames:
            return None
        return list(iter_sheet_records(self.workbook, key))

    def write(self, key: str, records: Sequence[Record]) -> None:
        write_sheet_records(self.workbook, key, records)

    def flush(self) -> None:
        save_workbook(self.workbook, self.data_file)
        log.debug("Flushed workbook '%s'", self.data_file)


class JsonStorage:
    """Key-value storage keeping each collection in ``<directory>/<key>.json``.

    Each file holds one JSON array of records. Writes are staged in memory
    and written on :meth:`flush`, each file replaced in a single rename.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).expanduser().resolve()
        self._pending: Dict[str, str] = {}

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[List[Record]]:
        if key in self._pending:
            return decode_records(self._pending[key])
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Unable to read '{path}': {exc}") from exc
        return decode_records(text)

    def write(self, key: str, records: Sequence[Record]) -> None:
        self._pending[key] = encode_records(records)

    def flush(self) -> None:
        """Write every pending collection, then swap the files into place.

        All staging files are written before any target is replaced, and
        leftover staging files are removed when a write fails. Pending
        collections are kept until the whole flush succeeds.
        """

        staged: List[Tuple[Path, Path]] = []
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for key, text in self._pending.items():
                path = self._path_for(key)
                staging = path.with_suffix(".json.tmp")
                staged.append((staging, path))
                staging.write_text(text, encoding="utf-8")
            for staging, path in staged:
                staging.replace(path)
        except OSError as exc:
            for staging, _ in staged:
                staging.unlink(missing_ok=True)
            raise PersistenceError(f"Unable to write to '{self.directory}': {exc}") from exc
        self._pending.clear()


class MemoryStorage:
    """Key-value storage holding JSON text per key in a plain dictionary."""

    def __init__(self, items: Optional[Dict[str, str]] = None) -> None:
        self.items: Dict[str, str] = items if items is not None else {}

    def read(self, key: str) -> Optional[List[Record]]:
        text = self.items.get(key)
        if text is None:
            return None
        return decode_records(text)

    def write(self, key: str, records: Sequence[Record]) -> None:
        self.items[key] = encode_records(records)

    def flush(self) -> None:
        return None


def open_storage(settings: ConfigSettings):
    """Instantiate the storage backend selected in ``settings``.

    Args:
        settings (ConfigSettings): Parsed configuration. ``data_file`` is the
            workbook path for the workbook backend and the directory for the
            JSON backend.

    Returns:
        WorkbookStorage | JsonStorage: Backend ready for use by entity stores.
    """

    if settings.storage_backend is StorageBackend.JSON:
        return JsonStorage(settings.data_file)
    return WorkbookStorage(settings.data_file)
