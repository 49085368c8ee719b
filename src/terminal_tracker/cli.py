"""Command-line entry points for the terminal tracker.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the objects consumed by the business layer, and
printing results. Keeping the CLI thin means any other front-end can reuse
the same business calls.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import Branch, ReportType, TerminalType
from .exceptions import (
    BusinessRuleViolation,
    GatewayError,
    PartialBatchFailure,
    ValidationError,
)
from .filters import STATUS_KEYWORDS, TerminalFilter
from .model import DispatchCommand, Terminal, resolve_timestamp


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="terminal-cli",
        description="Track POS terminals dispatched to and returned from branches.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as dispatch and return."""
    specs = {
        "dispatch": register_dispatch_command(subparsers),
        "return": register_return_command(subparsers),
        "reactivate": register_reactivate_command(subparsers),
        "delete": register_delete_command(subparsers),
        "delete-all": register_delete_all_command(subparsers),
        "import": register_import_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "list": register_list_command(subparsers),
        "stats": register_stats_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_record_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--id", dest="record_id", required=True, help="Record id shown by 'list'.")


def register_dispatch_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dispatch``."""
    name = "dispatch"
    help_text = "Dispatch a terminal to a branch."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True, help="Merchant name (max 25 characters).")
        parser.add_argument("--terminal-id", required=True)
        parser.add_argument("--serial-number", required=True)
        parser.add_argument("--line-serial-number", required=True)
        parser.add_argument(
            "--type",
            dest="terminal_type",
            required=True,
            help="Device model: %s." % ", ".join(member.value for member in TerminalType),
        )
        parser.add_argument("--branch", choices=[member.value for member in Branch], required=True)
        parser.add_argument("--dispatch-date", default=None, help="Defaults to now.")
        parser.add_argument("--fedex-tracking-number", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dispatch)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""
    name = "return"
    help_text = "Mark an active terminal as returned."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_record_id_argument(parser)
        parser.add_argument("--reason", default=None, help="Why the terminal came back (3-255 characters).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return)


def register_reactivate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reactivate``."""
    name = "reactivate"
    help_text = "Put a returned terminal back into active status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_record_id_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reactivate)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Permanently delete one terminal record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_record_id_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete)


def register_delete_all_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-all``."""
    name = "delete-all"
    help_text = "Permanently delete every terminal record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", help="Confirm the deletion.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_all)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Dispatch every terminal listed in an .xlsx file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_list_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "List terminals, optionally filtered."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--branch", choices=[member.value for member in Branch], default=None)
        parser.add_argument("--start-date", default=None, help="Earliest dispatch date (inclusive).")
        parser.add_argument("--end-date", default=None, help="Latest dispatch date (inclusive).")
        parser.add_argument("--status", choices=sorted(STATUS_KEYWORDS), default=None)
        parser.add_argument("--search", default=None, help="Match name, terminal id, or serial number.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list)


def register_stats_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stats``."""
    name = "stats"
    help_text = "Display total, active, and returned counts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stats)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export a terminals report to an .xlsx file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--report",
            choices=[member.value for member in ReportType],
            default=ReportType.TOTAL.value,
        )
        parser.add_argument("--output-dir", type=Path, default=Path.cwd())
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Route the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_dispatch(args: argparse.Namespace) -> DispatchCommand:
    """Translate CLI args into a dispatch command; a missing date means now."""
    return DispatchCommand(
        name=args.name,
        terminal_id=args.terminal_id,
        serial_number=args.serial_number,
        line_serial_number=args.line_serial_number,
        type=args.terminal_type,
        branch=args.branch,
        dispatch_date=args.dispatch_date if args.dispatch_date else resolve_timestamp(None),
        fedex_tracking_number=args.fedex_tracking_number,
    )


def translate_filters(args: argparse.Namespace) -> TerminalFilter:
    """Translate CLI args into a filter, rejecting malformed dates."""
    return TerminalFilter.from_options(
        branch=args.branch,
        start_date=args.start_date,
        end_date=args.end_date,
        status=args.status,
        search_term=args.search,
    )


def format_terminal(terminal: Terminal) -> str:
    """Render one record as a single tab-separated line."""
    dispatched = terminal.dispatch_date.date().isoformat()
    returned = terminal.return_date.date().isoformat() if terminal.return_date else "-"
    return "\t".join(
        [
            terminal.id,
            terminal.terminal_id,
            terminal.name,
            terminal.serial_number,
            terminal.type.value,
            terminal.branch.value,
            dispatched,
            terminal.state.value,
            returned,
        ]
    )


def run_dispatch(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dispatch workflow in the BLL."""
    terminal = core_logic.dispatch_terminal(context, translate_dispatch(args))
    print(f"Dispatched {terminal.terminal_id} to {terminal.branch.value} (id {terminal.id})")
    return 0


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return workflow in the BLL."""
    terminal = core_logic.return_terminal(context, args.record_id, args.reason)
    print(f"Returned {terminal.terminal_id} from {terminal.branch.value}")
    return 0


def run_reactivate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reactivate workflow in the BLL."""
    terminal = core_logic.reactivate_terminal(context, args.record_id)
    print(f"Reactivated {terminal.terminal_id} at {terminal.branch.value}")
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the single-record delete in the BLL."""
    core_logic.delete_terminal(context, args.record_id)
    print(f"Deleted record {args.record_id}")
    return 0


def run_delete_all(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-all workflow once the user confirmed it."""
    if not args.yes:
        log.error("Refusing to delete every terminal without --yes")
        return 1
    removed = core_logic.delete_all_terminals(context)
    print(f"Deleted {removed} terminal records")
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the spreadsheet import workflow."""
    created = core_logic.import_terminals(context, args.file)
    print(f"Imported {len(created)} terminals from {args.file}")
    return 0


def run_list(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the filtered listing."""
    terminals = core_logic.list_terminals(context, translate_filters(args))
    for terminal in terminals:
        print(format_terminal(terminal))
    print(f"{len(terminals)} terminal(s)")
    return 0


def run_stats(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the statistics summary."""
    stats = core_logic.terminal_stats(context)
    print(f"Total: {stats.total}")
    print(f"Active: {stats.active}")
    print(f"Returned: {stats.returned}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the report export."""
    path = core_logic.export_report(context, ReportType(args.report), args.output_dir)
    print(f"Report written to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, ValidationError):
        for violation in error.violations:
            log.error("%s", violation)
        return 2
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, PartialBatchFailure):
        log.error("%s (%d succeeded, %d failed)", error, len(error.succeeded), len(error.failed))
        return 4
    if isinstance(error, (GatewayError, FileNotFoundError)):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
