"""Bootstrap an empty terminal workbook (``terminal-setup``).

Reads the same ``config.ini`` as ``terminal-cli`` and writes a workbook whose
single ``Terminals`` sheet carries the bold column header and nothing else.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import TERMINAL_COLUMNS, SheetName
from .data_manager import CONFIG_FILE_NAME, parse_settings, read_config


def create_master_workbook(destination: Path, *, overwrite: bool = False) -> Path:
    """Create an empty terminal workbook at ``destination``.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is not set.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = SheetName.TERMINALS.value
    sheet.append(list(TERMINAL_COLUMNS))
    bold = Font(bold=True)
    for cell in sheet[1]:
        cell.font = bold

    workbook.save(destination)
    log.info("Created terminal workbook at '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by the ``DataFile`` entry of ``config_path``."""

    settings = parse_settings(read_config(config_path), base_path=config_path.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the terminal tracker workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to replace it.")
        return 1
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        log.error("Unable to write workbook: %s", exc)
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
