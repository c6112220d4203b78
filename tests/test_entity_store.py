"""Tests for the per-collection entity stores."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import Mock

import pytest

from tea_coop import core_logic, data_manager
from tea_coop.constants import CollectionKey
from tea_coop.entity_store import EntityStore, build_stores
from tea_coop.seed_data import DEFAULT_BUYERS, DEFAULT_COLLECTIONS, DEFAULT_FARMERS


def _farmer_store(storage, seed=DEFAULT_FARMERS) -> EntityStore:
    return EntityStore(
        storage,
        CollectionKey.FARMERS.value,
        deserialize=data_manager.deserialize_farmer,
        serialize=data_manager.serialize_farmer,
        seed=seed,
    )


def test_load_seeds_missing_collection_and_writes_it_back():
    """First access to an absent key should persist the seed dataset."""

    storage = data_manager.MemoryStorage()
    rows = _farmer_store(storage).load()

    assert rows == list(DEFAULT_FARMERS)
    assert CollectionKey.FARMERS.value in storage.items
    assert _farmer_store(storage, seed=()).load() == list(DEFAULT_FARMERS)


def test_load_does_not_reseed_an_emptied_collection():
    """An empty stored collection is kept empty."""

    storage = data_manager.MemoryStorage()
    store = _farmer_store(storage)
    store.save([])

    assert store.load() == []


def test_save_then_load_round_trips_rows():
    """Rows saved through the store should load back unchanged."""

    storage = data_manager.MemoryStorage()
    store = _farmer_store(storage)
    store.save(DEFAULT_FARMERS[2:])

    assert store.load() == list(DEFAULT_FARMERS[2:])


def test_save_flushes_backend():
    """save should stage the records and flush once."""

    storage = Mock(spec=data_manager.MemoryStorage)
    store = _farmer_store(storage)
    store.save(DEFAULT_FARMERS[:1])

    storage.write.assert_called_once_with(
        CollectionKey.FARMERS.value, [data_manager.serialize_farmer(DEFAULT_FARMERS[0])]
    )
    storage.flush.assert_called_once_with()


def test_stage_does_not_flush():
    """stage hands records to the backend without flushing."""

    storage = Mock(spec=data_manager.MemoryStorage)
    _farmer_store(storage).stage([])

    storage.write.assert_called_once_with(CollectionKey.FARMERS.value, [])
    storage.flush.assert_not_called()


def test_load_wraps_corrupt_records_in_persistence_error():
    """A record missing its id or holding a bad number is reported as corrupt."""

    storage = data_manager.MemoryStorage({CollectionKey.FARMERS.value: '[{"name": "No Id"}]'})
    with pytest.raises(data_manager.PersistenceError):
        _farmer_store(storage).load()

    storage = data_manager.MemoryStorage({CollectionKey.FARMERS.value: '[{"id": "F1", "balance": "lots"}]'})
    with pytest.raises(data_manager.PersistenceError):
        _farmer_store(storage).load()


def test_load_propagates_invalid_json():
    """Undecodable storage should surface as PersistenceError."""

    storage = data_manager.MemoryStorage({CollectionKey.FARMERS.value: "not json"})
    with pytest.raises(data_manager.PersistenceError):
        _farmer_store(storage).load()


def test_build_stores_covers_every_collection():
    """One store per collection key, each seeded with its defaults."""

    storage = data_manager.MemoryStorage()
    stores = build_stores(storage)

    assert set(stores) == set(CollectionKey)
    for key, store in stores.items():
        assert store.key == key.value
        assert store.load() == list(DEFAULT_COLLECTIONS[key.value])


def test_build_stores_without_seed_starts_empty():
    """Disabling seed defaults should create empty collections."""

    storage = data_manager.MemoryStorage()
    stores = build_stores(storage, seed_defaults=False)

    assert stores[CollectionKey.BUYERS].load() == []
    assert storage.items[CollectionKey.BUYERS.value] == "[]"


def test_stores_share_one_workbook(tmp_path):
    """Stores over a workbook backend write separate sheets of one file."""

    path = tmp_path / "coop.xlsx"
    storage = data_manager.WorkbookStorage(path)
    stores = build_stores(storage)
    stores[CollectionKey.BUYERS].load()
    stores[CollectionKey.FARMERS].load()

    reopened = build_stores(data_manager.WorkbookStorage(path), seed_defaults=False)
    assert reopened[CollectionKey.BUYERS].load() == list(DEFAULT_BUYERS)
    assert reopened[CollectionKey.FARMERS].load() == list(DEFAULT_FARMERS)


@pytest.mark.parametrize("backend", ["memory", "workbook"])
def test_validated_delivery_survives_save_and_reload(backend, seeded, tmp_path):
    """Weights and amounts kept by validation reload exactly on every backend."""

    mutation = core_logic.create_delivery(
        seeded,
        core_logic.DeliveryCommand(
            farmer_id="F001",
            raw_weight=Decimal("100.123456789012345678"),
            price_per_kg=Decimal("80"),
        ),
        delivery_id="IB900",
    )
    delivery = mutation.record
    assert delivery.raw_weight == Decimal("100.123")
    assert delivery.total_amount == delivery.raw_weight * delivery.price_per_kg

    path = tmp_path / "coop.xlsx"
    storage = data_manager.MemoryStorage() if backend == "memory" else data_manager.WorkbookStorage(path)
    build_stores(storage, seed_defaults=False)[CollectionKey.DELIVERIES].save([delivery])

    if backend == "workbook":
        storage = data_manager.WorkbookStorage(path)
    reloaded = build_stores(storage, seed_defaults=False)[CollectionKey.DELIVERIES].load()
    assert reloaded == [delivery]
    assert reloaded[0].total_amount == reloaded[0].raw_weight * reloaded[0].price_per_kg
