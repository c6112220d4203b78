"""Entity store: the single owner of each persisted collection.

Every collection is read in full, transformed by the rule engine and written
back in full. An :class:`EntityStore` wraps one storage key and handles the
conversion between row dataclasses and persisted records, including the
first-use seeding of missing collections.
"""

from __future__ import annotations

from decimal import InvalidOperation
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Sequence, TypeVar

from . import data_manager, log
from .constants import CollectionKey
from .seed_data import DEFAULT_COLLECTIONS


RowT = TypeVar("RowT")


class EntityStore(Generic[RowT]):
    """Load and save one named collection through a storage backend."""

    def __init__(
        self,
        storage: Any,
        key: str,
        *,
        deserialize: Callable[[Mapping[str, Any]], RowT],
        serialize: Callable[[RowT], data_manager.Record],
        seed: Iterable[RowT] = (),
    ) -> None:
        self.storage = storage
        self.key = key
        self._deserialize = deserialize
        self._serialize = serialize
        self._seed = tuple(seed)

    def load(self) -> List[RowT]:
        """Return the stored collection, seeding it on first use.

        When the backend has no entry for :attr:`key`, the seed rows are
        written back and returned so the next read finds them in storage.

        Raises:
            PersistenceError: If the stored records cannot be read or decoded.
        """

        raw_records = self.storage.read(self.key)
        if raw_records is None:
            log.info("Seeding collection '%s' with %d default records", self.key, len(self._seed))
            self.save(self._seed)
            return list(self._seed)

        try:
            rows = [self._deserialize(record) for record in raw_records]
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            log.error("Collection '%s' holds an unreadable record: %s", self.key, exc)
            raise data_manager.PersistenceError(f"Corrupt record in '{self.key}': {exc}") from exc
        log.debug("Loaded %d records from '%s'", len(rows), self.key)
        return rows

    def save(self, rows: Sequence[RowT]) -> None:
        """Write the full collection and flush the backend.

        Every row is serialized before the backend is touched, so a row that
        cannot be converted leaves storage unchanged.
        """

        records = [self._serialize(row) for row in rows]
        self.stage(records)
        self.storage.flush()

    def stage(self, records: Sequence[data_manager.Record]) -> None:
        """Hand already serialized records to the backend without flushing."""

        self.storage.write(self.key, records)
        log.debug("Staged %d records for '%s'", len(records), self.key)

    def serialize(self, rows: Sequence[RowT]) -> List[data_manager.Record]:
        return [self._serialize(row) for row in rows]


_CODECS: Dict[CollectionKey, tuple] = {
    CollectionKey.FARMERS: (data_manager.deserialize_farmer, data_manager.serialize_farmer),
    CollectionKey.DELIVERIES: (data_manager.deserialize_delivery, data_manager.serialize_delivery),
    CollectionKey.LOTS: (data_manager.deserialize_lot, data_manager.serialize_lot),
    CollectionKey.BUYERS: (data_manager.deserialize_buyer, data_manager.serialize_buyer),
    CollectionKey.SALES: (data_manager.deserialize_sale, data_manager.serialize_sale),
}


def build_stores(storage: Any, *, seed_defaults: bool = True) -> Dict[CollectionKey, EntityStore]:
    """Create one :class:`EntityStore` per collection over ``storage``.

    Args:
        storage: Backend exposing ``read``, ``write`` and ``flush``.
        seed_defaults (bool): When ``False`` missing collections start empty
            instead of receiving the default dataset.

    Returns:
        dict[CollectionKey, EntityStore]: Stores keyed by collection.
    """

    stores: Dict[CollectionKey, EntityStore] = {}
    for key, (deserialize, serialize) in _CODECS.items():
        seed = DEFAULT_COLLECTIONS[key.value] if seed_defaults else ()
        stores[key] = EntityStore(
            storage,
            key.value,
            deserialize=deserialize,
            serialize=serialize,
            seed=seed,
        )
    return stores
