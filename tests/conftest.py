from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from openpyxl import Workbook as OpenpyxlWorkbook

from cascade_import.config import Settings
from cascade_import.workbook import (
    Cell,
    FormulaCell,
    Sheet,
    Workbook,
    cell_from_scalar,
)

KEY_HEADERS = ["main_value", "sub_value", "major_value", "minor_value"]

SheetRows = Sequence[Sequence[Any]]


def grid_cell(value: Any) -> Cell:
    """Build a cell the way the loader would; ``=...`` text is a formula."""
    if isinstance(value, FormulaCell):
        return value
    if isinstance(value, str) and value.startswith("="):
        return FormulaCell(raw_expression=value)
    return cell_from_scalar(value)


def grid_sheet(name: str, rows: SheetRows, index: int = 0) -> Sheet:
    return Sheet(
        name=name,
        index=index,
        rows=tuple(tuple(grid_cell(v) for v in row) for row in rows),
    )


def grid_workbook(sheets: dict[str, SheetRows]) -> Workbook:
    """Build an in-memory workbook from ``{sheet name: rows}``."""
    return Workbook(
        path="memory.xlsx",
        sheets=tuple(
            grid_sheet(name, rows, index)
            for index, (name, rows) in enumerate(sheets.items())
        ),
    )


@pytest.fixture
def settings() -> Settings:
    """Default settings, isolated from the environment and any .env file."""
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        with patch.dict(os.environ, {}, clear=True):
            return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def write_workbook(tmp_path: Path) -> Callable[..., Path]:
    """Write ``{sheet name: rows}`` to an .xlsx file with openpyxl."""

    def _write(sheets: dict[str, SheetRows], filename: str = "book.xlsx") -> Path:
        wb = OpenpyxlWorkbook()
        wb.remove(wb.active)
        for name, rows in sheets.items():
            ws = wb.create_sheet(name)
            for row in rows:
                ws.append(list(row))
        path = tmp_path / filename
        wb.save(path)
        return path

    return _write


@pytest.fixture
def cascade_workbook(write_workbook: Callable[..., Path]) -> Path:
    """A cascade sheet whose labels come from a lookup sheet."""
    return write_workbook(
        {
            "Cascade Fields": [
                [*KEY_HEADERS, "label"],
                ["CAT1", "SUB1", "MAJ1", "MIN1", "=VLOOKUP(A2,Lookups!$A$2:$B$4,2,FALSE)"],
                ["CAT2", "SUB1", "MAJ1", "MIN1", "=VLOOKUP(A3,Lookups!$A$2:$B$4,2,FALSE)"],
                ["CAT1", "SUB1", "MAJ1", "MIN1", "=VLOOKUP(A4,Lookups!$A$2:$B$4,2,FALSE)"],
                [None, None, None, None, None],
                ["CAT3", None, "MAJ2", "MIN2", "=VLOOKUP(A6,Lookups!$A$2:$B$4,2,FALSE)"],
                ["CAT9", "SUB9", "MAJ9", "MIN9", "=VLOOKUP(A7,Lookups!$A$2:$B$4,2,FALSE)"],
            ],
            "Lookups": [
                ["code", "label"],
                ["CAT1", "Category One"],
                ["CAT2", "Category Two"],
                ["CAT3", "Category Three"],
            ],
        },
        filename="cascade.xlsx",
    )


@pytest.fixture
def make_sheet() -> Callable[..., Sheet]:
    return grid_sheet


@pytest.fixture
def make_workbook() -> Callable[[dict[str, SheetRows]], Workbook]:
    return grid_workbook
