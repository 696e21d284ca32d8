"""Shared pytest fixtures and utilities for MedCure POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from medcure_pos import cli, constants, core_logic, data_manager, identifiers, inventory  # noqa: E402
from medcure_pos.setup_excel import create_master_workbook  # noqa: E402
from medcure_pos.stores import InMemoryStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_MOMENT = datetime(2025, 3, 14, 9, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "PharmacyName = {pharmacy_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Backend = {backend}\n\n"
    "[Receipt]\n"
    "Address = 123 Medical Street\n"
    "Phone = 123-456-7890\n\n"
    "[Checkout]\n"
    "TransactionPrefix = TST\n"
    "MaxNumberAttempts = 3\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    pharmacy_name: str


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
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "medcure_data.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        pharmacy_name: str = "Test Pharmacy",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        backend: str = constants.Backend.WORKBOOK.value,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                pharmacy_name=pharmacy_name,
                schema_version=schema_version,
                backend=backend,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            pharmacy_name=pharmacy_name,
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
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def product_factory() -> Callable[..., data_manager.ProductRow]:
    """Build product rows with pharmacy-flavoured defaults."""

    def _make(
        product_id: str = "P-PARA",
        *,
        name: str = "Paracetamol 500mg",
        pieces_per_sheet: int = 10,
        sheets_per_box: int = 10,
        total_stock: int = 50,
        cost_price: str = "3.00",
        selling_price: str = "5.25",
        critical_level: int = 10,
        is_active: bool = True,
        category: str = "Analgesic",
        expiry_date: Optional[date] = None,
    ) -> data_manager.ProductRow:
        return data_manager.ProductRow(
            product_id=product_id,
            name=name,
            pieces_per_sheet=pieces_per_sheet,
            sheets_per_box=sheets_per_box,
            total_stock=total_stock,
            cost_price=Decimal(cost_price),
            selling_price=Decimal(selling_price),
            critical_level=critical_level,
            is_active=is_active,
            category=category,
            expiry_date=expiry_date,
        )

    return _make


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def stocked_store(memory_store: InMemoryStore, product_factory) -> InMemoryStore:
    """In-memory store with two products registered through the inventory module."""

    inventory.register_product(memory_store, product_factory())
    inventory.register_product(
        memory_store,
        product_factory(
            "P-AMOX",
            name="Amoxicillin 250mg",
            pieces_per_sheet=8,
            sheets_per_box=2,
            total_stock=30,
            cost_price="8.00",
            selling_price="12.00",
            critical_level=5,
            category="Antibiotic",
        ),
    )
    return memory_store


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "medcure_data.xlsx",
        pharmacy_name="Test Pharmacy",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        backend=constants.Backend.MEMORY,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings, stocked_store: InMemoryStore) -> core_logic.RuntimeContext:
    """Assemble a runtime context around the stocked in-memory store."""

    return core_logic.RuntimeContext(settings=settings, store=stocked_store)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``identifiers.datetime`` so generated timestamps are predictable."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(identifiers, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="medcure-pos", description="MedCure CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
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
