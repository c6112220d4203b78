"""Utility for initializing the cooperative records store.

The module doubles as a script (``python -m tea_coop.setup_workbook``) and as
a library used by tests. Sheets and JSON files are written through the same
entity stores the CLI uses, so a freshly created store matches what first-use
seeding would produce.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Sequence

from . import data_manager
from .constants import CollectionKey, StorageBackend
from .data_manager import ConfigSettings, JsonStorage, WorkbookStorage
from .entity_store import build_stores

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


def load_settings(config_path: Path) -> ConfigSettings:
    """Read ``config.ini`` and produce :class:`ConfigSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def _populate(storage: Any, *, seed: bool) -> None:
    # Loading a missing collection writes the seed (or an empty collection).
    for store in build_stores(storage, seed_defaults=seed).values():
        store.load()


def create_master_workbook(destination: Path, *, seed: bool = True, overwrite: bool = False) -> Path:
    """Create the records workbook at ``destination``.

    One sheet per collection is written with a bold header row. When ``seed``
    is ``True`` the sheets hold the default dataset, otherwise only headers.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is
            ``False``.
        PersistenceError: If the workbook cannot be saved.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    storage = WorkbookStorage(destination, workbook=data_manager.new_workbook())
    _populate(storage, seed=seed)
    storage.flush()
    return destination


def create_json_store(directory: Path, *, seed: bool = True, overwrite: bool = False) -> Path:
    """Create ``<key>.json`` files for every collection under ``directory``.

    Raises:
        FileExistsError: If any collection file already exists and
            ``overwrite`` is ``False``.
    """

    directory = Path(directory).expanduser().resolve()
    existing = [directory / f"{key.value}.json" for key in CollectionKey if (directory / f"{key.value}.json").exists()]
    if existing and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing collection files in: {directory}")
    for path in existing:
        path.unlink()

    _populate(JsonStorage(directory), seed=seed)
    return directory


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the store configured in ``config_path``."""

    settings = load_settings(config_path)
    if settings.storage_backend is StorageBackend.JSON:
        return create_json_store(settings.data_file, seed=settings.seed_defaults, overwrite=overwrite)
    return create_master_workbook(settings.data_file, seed=settings.seed_defaults, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the tea cooperative data store")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target store if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Tea Cooperative Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing store if appropriate.")
        return 1
    except (data_manager.PersistenceError, OSError) as exc:
        print(f"\n[ERROR] Unable to write store: {exc}")
        return 1

    print(f"\n[SUCCESS] Created data store at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
