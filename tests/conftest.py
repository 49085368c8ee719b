"""Shared pytest fixtures and utilities for terminal tracker tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from terminal_tracker import cli, constants, core_logic, data_manager  # noqa: E402
from terminal_tracker.constants import Branch, TerminalType  # noqa: E402
from terminal_tracker.exceptions import GatewayError, NotFoundError  # noqa: E402
from terminal_tracker.filters import TerminalFilter, filter_terminals  # noqa: E402
from terminal_tracker.model import DispatchCommand, Terminal, TerminalDraft, ValidationRules  # noqa: E402
from terminal_tracker.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Rules]\n"
    "TerminalIdPrefix = {prefix}\n"
    "EnforceReturnReason = {enforce_reason}\n"
    "EnforceUniqueTerminalId = yes\n\n"
    "[Import]\n"
    "BatchSize = {batch_size}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


class InMemoryGateway:
    """Dictionary-backed stand-in for the workbook gateway.

    ``fail_insert_many_on_call`` makes the n-th ``insert_many`` call raise, and
    ``delete_where_limit`` makes ``delete_where`` remove that many records
    before raising, so tests can exercise partial bulk failures.
    """

    def __init__(self, records: Sequence[Terminal] = ()) -> None:
        self.records: Dict[str, Terminal] = {record.id: record for record in records}
        self._next_id = len(self.records) + 1
        self.insert_many_calls = 0
        self.fail_insert_many_on_call: Optional[int] = None
        self.delete_where_limit: Optional[int] = None

    def _new_id(self) -> str:
        record_id = f"rec-{self._next_id}"
        self._next_id += 1
        return record_id

    def list(self, criteria: Optional[TerminalFilter] = None) -> List[Terminal]:
        return filter_terminals(self.records.values(), criteria)

    def get(self, record_id: str) -> Terminal:
        try:
            return self.records[record_id]
        except KeyError as exc:
            raise NotFoundError(f"Unknown terminal id: {record_id}") from exc

    def insert(self, draft: TerminalDraft) -> Terminal:
        record = Terminal.from_draft(self._new_id(), draft)
        self.records[record.id] = record
        return record

    def insert_many(self, drafts: Sequence[TerminalDraft]) -> List[Terminal]:
        self.insert_many_calls += 1
        if self.insert_many_calls == self.fail_insert_many_on_call:
            raise GatewayError("connection reset")
        return [self.insert(draft) for draft in drafts]

    def update(self, record_id: str, fields: Mapping[str, Any]) -> None:
        self.records[record_id] = self.get(record_id).with_fields(**fields)

    def delete(self, record_id: str) -> None:
        self.get(record_id)
        del self.records[record_id]

    def delete_where(self, predicate: Callable[[Terminal], bool]) -> int:
        doomed = [record_id for record_id, record in self.records.items() if predicate(record)]
        if self.delete_where_limit is not None:
            for record_id in doomed[: self.delete_where_limit]:
                del self.records[record_id]
            raise GatewayError("timeout while deleting")
        for record_id in doomed:
            del self.records[record_id]
        return len(doomed)

    def count(self, criteria: Optional[TerminalFilter] = None) -> int:
        return len(self.list(criteria))


def make_terminal(index: int, **overrides: Any) -> Terminal:
    """Build a stored terminal with predictable, valid field values."""

    values: Dict[str, Any] = {
        "id": f"seed-{index}",
        "name": f"Merchant {index}",
        "terminal_id": f"NBS{index:05d}",
        "serial_number": f"SN{index:06d}",
        "line_serial_number": f"{index:016d}",
        "type": TerminalType.PAX_S20,
        "branch": Branch.GWERU,
        "dispatch_date": datetime(2025, 1, index, 9, 0, tzinfo=UTC),
    }
    values.update(overrides)
    return Terminal(**values)


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
    """Factory that creates an initialized terminal workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "terminals.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh terminal workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        prefix: str = "",
        enforce_reason: str = "yes",
        batch_size: int = 50,
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        workbook_path = workbook_factory(subdir=bundle_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                schema_version=schema_version,
                prefix=prefix,
                enforce_reason=enforce_reason,
                batch_size=batch_size,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "terminals.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        rules=ValidationRules(),
        import_batch_size=2,
    )


@pytest.fixture
def memory_gateway() -> InMemoryGateway:
    """Return an empty in-memory gateway."""

    return InMemoryGateway()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, memory_gateway: InMemoryGateway) -> core_logic.RuntimeContext:
    """Assemble a runtime context around the in-memory gateway."""

    return core_logic.RuntimeContext(settings=settings, gateway=memory_gateway)


@pytest.fixture
def command_factory() -> Callable[..., DispatchCommand]:
    """Build valid dispatch commands; keyword overrides replace single fields."""

    def _make(**overrides: Any) -> DispatchCommand:
        values: Dict[str, Any] = {
            "name": "Acme Stores",
            "terminal_id": "NBS00123",
            "serial_number": "SN12345",
            "line_serial_number": "1234567890123456",
            "type": TerminalType.PAX_S20.value,
            "branch": Branch.GWERU.value,
            "dispatch_date": FIXED_NOW - timedelta(days=1),
            "fedex_tracking_number": None,
        }
        values.update(overrides)
        return DispatchCommand(**values)

    return _make


@pytest.fixture
def terminal_factory() -> Callable[..., Terminal]:
    """Expose :func:`make_terminal` to tests."""

    return make_terminal


@pytest.fixture
def gateway_factory() -> Callable[..., InMemoryGateway]:
    """Build in-memory gateways pre-loaded with records."""

    return InMemoryGateway


@pytest.fixture
def sample_terminals() -> List[Terminal]:
    """Ten terminals across three branches; records 2, 4, 6, and 8 are returned."""

    branches = [Branch.GWERU, Branch.MUTARE, Branch.CIB]
    terminals = []
    for index in range(1, 11):
        returned = index in (2, 4, 6, 8)
        terminals.append(
            make_terminal(
                index,
                branch=branches[index % 3],
                is_returned=returned,
                return_date=datetime(2025, 2, index, tzinfo=UTC) if returned else None,
                return_reason="Faulty screen" if returned else None,
            )
        )
    return terminals


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="terminal-cli", description="Terminal CLI")


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
