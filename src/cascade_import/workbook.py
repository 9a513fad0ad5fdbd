"""Dataclasses representing a parsed workbook as an in-memory cell grid."""

from __future__ import annotations

import re
from collections.abc import Hashable, Iterator
from dataclasses import dataclass, field, replace
from typing import Any

from openpyxl.utils import get_column_letter

from cascade_import.utils.exceptions import SheetNotFoundError

Scalar = str | int | float | bool | None


class _Unresolved:
    """Marker stored in a formula cell whose value could not be resolved."""

    _instance: _Unresolved | None = None

    def __new__(cls) -> _Unresolved:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED = _Unresolved()


@dataclass(frozen=True)
class EmptyCell:
    """A cell with no value."""


@dataclass(frozen=True)
class TextCell:
    value: str


@dataclass(frozen=True)
class NumberCell:
    value: int | float


@dataclass(frozen=True)
class BooleanCell:
    value: bool


@dataclass(frozen=True)
class FormulaCell:
    """A cell holding a formula expression.

    ``stored_value`` is whatever the spreadsheet application last cached in
    the file. ``cached_display_value`` is filled in by the lookup resolver;
    once ``resolved`` is set it holds a scalar or ``UNRESOLVED``.
    """

    raw_expression: str
    stored_value: Scalar = None
    cached_display_value: Any = None
    resolved: bool = False

    def with_display_value(self, value: Any) -> FormulaCell:
        """Return a resolved copy carrying ``value``."""
        return replace(self, cached_display_value=value, resolved=True)


Cell = EmptyCell | TextCell | NumberCell | BooleanCell | FormulaCell

EMPTY = EmptyCell()


def display_value(cell: Cell) -> Scalar:
    """Return the display value of a cell.

    Raises:
        ValueError: If the cell is a formula that has not been resolved.
    """
    if isinstance(cell, EmptyCell):
        return None
    if isinstance(cell, (TextCell, NumberCell, BooleanCell)):
        return cell.value
    if isinstance(cell, FormulaCell):
        if not cell.resolved:
            raise ValueError(f"Formula has not been resolved: {cell.raw_expression}")
        if cell.cached_display_value is UNRESOLVED:
            return None
        value: Scalar = cell.cached_display_value
        return value
    raise TypeError(f"Unknown cell type: {type(cell).__name__}")


def cell_from_scalar(value: Scalar) -> Cell:
    """Wrap an already-converted scalar in the matching cell variant."""
    if value is None:
        return EMPTY
    if isinstance(value, bool):
        return BooleanCell(value)
    if isinstance(value, (int, float)):
        return NumberCell(value)
    return TextCell(str(value))


def lookup_key(value: Scalar) -> Hashable | None:
    """Normalize a display value for exact, type-aware comparison.

    Numbers compare numerically (``1 == 1.0``), text compares as
    case-sensitive text and booleans only match booleans. Empty values have
    no key.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (int, float)):
        return ("number", float(value))
    return ("text", str(value))


_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def cell_reference(sheet_name: str, row_idx: int, col_idx: int) -> str:
    """Format a zero-based cell position as a spreadsheet reference.

    >>> cell_reference("Sheet1", 0, 2)
    'Sheet1!C1'
    >>> cell_reference("Cascade Fields", 4, 0)
    "'Cascade Fields'!A5"
    """
    coordinate = f"{get_column_letter(col_idx + 1)}{row_idx + 1}"
    if _PLAIN_SHEET_NAME.match(sheet_name):
        return f"{sheet_name}!{coordinate}"
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{coordinate}"


@dataclass(frozen=True)
class Sheet:
    """A read-only grid of cells for one worksheet.

    Rows are stored as parsed; they may be ragged. Reads outside the stored
    grid return an empty cell.
    """

    name: str
    index: int
    rows: tuple[tuple[Cell, ...], ...]
    load_warnings: tuple[str, ...] = field(default=())

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)

    def cell(self, row_idx: int, col_idx: int) -> Cell:
        """Return the cell at a zero-based position, or an empty cell."""
        if row_idx < 0 or col_idx < 0 or row_idx >= len(self.rows):
            return EMPTY
        row = self.rows[row_idx]
        if col_idx >= len(row):
            return EMPTY
        return row[col_idx]

    def formula_cells(self) -> Iterator[tuple[int, int, FormulaCell]]:
        """Yield ``(row_idx, col_idx, cell)`` for every formula, row-major."""
        for row_idx, row in enumerate(self.rows):
            for col_idx, cell in enumerate(row):
                if isinstance(cell, FormulaCell):
                    yield row_idx, col_idx, cell

    @property
    def has_formulas(self) -> bool:
        return any(True for _ in self.formula_cells())

    @property
    def is_resolved(self) -> bool:
        """True when no formula cell is waiting for resolution."""
        return all(cell.resolved for _, _, cell in self.formula_cells())

    def with_rows(self, rows: tuple[tuple[Cell, ...], ...]) -> Sheet:
        """Return a copy of this sheet with a replacement grid."""
        return replace(self, rows=rows)


@dataclass(frozen=True)
class Workbook:
    """A parsed workbook: sheets in file order, keyed by unique name."""

    path: str
    sheets: tuple[Sheet, ...]

    def sheet_names(self) -> list[str]:
        """List sheet names in file order."""
        return [sheet.name for sheet in self.sheets]

    def sheet(self, name_or_index: str | int) -> Sheet:
        """Return a sheet by exact name or zero-based ordinal.

        Raises:
            SheetNotFoundError: If no such sheet exists.
        """
        if isinstance(name_or_index, int) and not isinstance(name_or_index, bool):
            if 0 <= name_or_index < len(self.sheets):
                return self.sheets[name_or_index]
        else:
            for sheet in self.sheets:
                if sheet.name == name_or_index:
                    return sheet
        raise SheetNotFoundError(
            requested=name_or_index,
            available=self.sheet_names(),
            file_path=self.path,
        )

    def find_sheet(self, name: str) -> Sheet | None:
        """Look up a sheet the way formula references do (case-insensitive)."""
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        folded = name.casefold()
        for sheet in self.sheets:
            if sheet.name.casefold() == folded:
                return sheet
        return None
