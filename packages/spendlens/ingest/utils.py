"""CSV decoding helpers shared by the CLI and the import workflow.

The core never opens files itself; these helpers turn text or a path into
already-decoded rows (lists of cell strings) that the detector and parser
consume. Physical record order is preserved, including blank and preamble
records, so reported row numbers match what a spreadsheet would show.
"""

from __future__ import annotations

import csv
import io
from os import PathLike
from pathlib import Path


def read_csv_rows(text: str) -> list[list[str]]:
    """Decode CSV ``text`` into a list of records (quoted newlines respected).

    A leading byte-order mark is dropped. ``csv.Error`` propagates for input
    the ``csv`` module cannot tokenize.
    """

    if text.startswith("\ufeff"):
        text = text[1:]
    reader = csv.reader(io.StringIO(text, newline=""))
    return [list(record) for record in reader]


def read_csv_file(path: str | PathLike[str]) -> list[list[str]]:
    """Read a CSV file (UTF-8, BOM tolerated) and return its records."""

    p = Path(path)
    with p.open(encoding="utf-8-sig", newline="") as f:
        return read_csv_rows(f.read())


def is_blank_row(row: list[str] | tuple[str, ...]) -> bool:
    return not any(cell.strip() for cell in row)


__all__ = ["read_csv_rows", "read_csv_file", "is_blank_row"]
