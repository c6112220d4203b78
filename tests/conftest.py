"""Shared pytest fixtures and utilities for the tea cooperative tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from tea_coop import cli, constants, core_logic, data_manager  # noqa: E402
from tea_coop.constants import CollectionKey, StorageBackend  # noqa: E402
from tea_coop.entity_store import build_stores  # noqa: E402
from tea_coop.seed_data import DEFAULT_COLLECTIONS  # noqa: E402
from tea_coop.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CooperativeName = {cooperative_name}\n"
    "SchemaVersion = {schema_version}\n"
    "StorageBackend = {backend}\n\n"
    "[Defaults]\n"
    "SeedDefaults = {seed}\n\n"
    "[Reports]\n"
    "InventoryUnitPrice = 400\n"
    "Currency = KES\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_path: Path
    schema_version: str
    cooperative_name: str
    backend: StorageBackend


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized records workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        seed: bool = True,
        filename: str = "coop_data.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed=seed, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/store bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        cooperative_name: str = "Test Cooperative",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        backend: StorageBackend = StorageBackend.WORKBOOK,
        seed: bool = True,
        create_store: bool = True,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        if backend is StorageBackend.JSON:
            data_path = bundle_dir / "records"
        elif create_store:
            data_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed=seed)
        else:
            data_path = bundle_dir / "coop_data.xlsx"
        data_file_entry = data_path.name if make_relative else str(data_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                cooperative_name=cooperative_name,
                schema_version=schema_version,
                backend=backend.value,
                seed="yes" if seed else "no",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_path=data_path,
            schema_version=schema_version,
            cooperative_name=cooperative_name,
            backend=backend,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="coop-cli", description="Coop CLI")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "coop_data.xlsx",
        cooperative_name="Test Cooperative",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def memory_storage() -> data_manager.MemoryStorage:
    """Return an empty in-memory backend."""

    return data_manager.MemoryStorage()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, memory_storage: data_manager.MemoryStorage) -> core_logic.RuntimeContext:
    """Assemble a runtime context over a seeded in-memory backend."""

    return core_logic.RuntimeContext(
        settings=settings,
        storage=memory_storage,
        stores=build_stores(memory_storage, seed_defaults=True),
    )


@pytest.fixture
def empty_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Runtime context over an in-memory backend that starts without records."""

    storage = data_manager.MemoryStorage()
    return core_logic.RuntimeContext(
        settings=settings,
        storage=storage,
        stores=build_stores(storage, seed_defaults=False),
    )


@pytest.fixture
def seeded() -> core_logic.Collections:
    """Snapshot holding the default dataset."""

    snapshot = core_logic.Collections()
    for key in CollectionKey:
        snapshot = snapshot.with_collection(key, DEFAULT_COLLECTIONS[key.value])
    return snapshot


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
