"""Parser for cross-sheet table lookup formulas.

Only exact-match ``VLOOKUP`` shapes are understood::

    =VLOOKUP(A2, Lookups!$A$2:$C$100, 3, FALSE)
    =VLOOKUP("CAT1", 'Field Values'!A:C, 2, 0)
    =VLOOKUP(B7, A:B, 2, FALSE)          (same-sheet table)

Everything else raises :class:`FormulaSyntaxError`; the resolver turns that
into a per-cell resolution warning.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from openpyxl.utils import column_index_from_string, get_column_letter

from cascade_import.workbook import Scalar


class FormulaSyntaxError(ValueError):
    """Raised when a formula is not a supported lookup shape."""


class MatchMode(str, Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"


@dataclass(frozen=True)
class CellRef:
    """A zero-based cell position, optionally qualified by sheet name."""

    sheet: str | None
    row_idx: int
    col_idx: int


@dataclass(frozen=True)
class RangeRef:
    """A rectangular range in zero-based coordinates.

    ``max_row`` is None for whole-column ranges such as ``A:C``.
    """

    min_row: int
    min_col: int
    max_row: int | None
    max_col: int

    @property
    def width(self) -> int:
        return self.max_col - self.min_col + 1

    def __str__(self) -> str:
        start = get_column_letter(self.min_col + 1)
        end = get_column_letter(self.max_col + 1)
        if self.max_row is None:
            return f"{start}:{end}"
        return f"{start}{self.min_row + 1}:{end}{self.max_row + 1}"


@dataclass(frozen=True)
class LookupFormula:
    """A parsed lookup: where the key comes from and which table answers it."""

    lookup_value: CellRef | Scalar
    reference_sheet: str | None
    reference_range: RangeRef
    result_column_offset: int
    match_mode: MatchMode


_LOOKUP_CALL = re.compile(
    r"^\s*=?\s*(?:_xlfn\.)?VLOOKUP\s*\((?P<args>.*)\)\s*$",
    re.IGNORECASE | re.DOTALL,
)
_CELL = re.compile(r"^\$?(?P<col>[A-Za-z]{1,3})\$?(?P<row>\d+)$")
_COLUMN = re.compile(r"^\$?(?P<col>[A-Za-z]{1,3})$")
_INTEGER = re.compile(r"^[+-]?\d+$")
_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def is_lookup_formula(expression: str) -> bool:
    """Cheap check for whether an expression is a lookup call."""
    return _LOOKUP_CALL.match(expression) is not None


def parse_lookup_formula(expression: str) -> LookupFormula:
    """Parse a lookup formula expression.

    Args:
        expression: Raw formula text, with or without the leading ``=``.

    Returns:
        The parsed lookup.

    Raises:
        FormulaSyntaxError: If the expression is not a supported lookup.
    """
    match = _LOOKUP_CALL.match(expression)
    if match is None:
        raise FormulaSyntaxError(f"unsupported formula {expression!r}")

    args = split_arguments(match.group("args"))
    if len(args) not in (3, 4):
        raise FormulaSyntaxError(
            f"VLOOKUP expects 3 or 4 arguments, got {len(args)}"
        )
    if any(not arg for arg in args):
        raise FormulaSyntaxError("VLOOKUP argument is empty")

    lookup_value = _parse_lookup_value(args[0])
    sheet, range_ref = _parse_table(args[1])
    offset = _parse_column_offset(args[2])
    if offset > range_ref.width:
        raise FormulaSyntaxError(
            f"column index {offset} exceeds table width {range_ref.width}"
        )
    mode = _parse_match_mode(args[3]) if len(args) == 4 else MatchMode.APPROXIMATE

    return LookupFormula(
        lookup_value=lookup_value,
        reference_sheet=sheet,
        reference_range=range_ref,
        result_column_offset=offset,
        match_mode=mode,
    )


def split_arguments(text: str) -> list[str]:
    """Split a function argument list on top-level commas.

    Commas inside double-quoted strings or single-quoted sheet names are
    kept. Nested calls are rejected since only plain lookups are supported.
    """
    args: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            current.append(ch)
            if ch == quote:
                # doubled quote is an escaped quote character
                if i + 1 < len(text) and text[i + 1] == quote:
                    current.append(text[i + 1])
                    i += 1
                else:
                    quote = None
        elif ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch in "()":
            raise FormulaSyntaxError("nested function calls are not supported")
        elif ch == ",":
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    if quote:
        raise FormulaSyntaxError("unterminated quoted text")
    args.append("".join(current).strip())
    return args


def _split_sheet(text: str) -> tuple[str | None, str]:
    """Split ``Sheet!A1`` / ``'My Sheet'!A1`` into sheet name and address."""
    if text.startswith("'"):
        end = text.find("'!")
        if end < 1:
            raise FormulaSyntaxError(f"malformed sheet reference {text!r}")
        return text[1:end].replace("''", "'"), text[end + 2 :]
    if "!" in text:
        sheet, _, address = text.rpartition("!")
        if not sheet:
            raise FormulaSyntaxError(f"malformed sheet reference {text!r}")
        return sheet, address
    return None, text


def _parse_cell(address: str) -> tuple[int, int]:
    match = _CELL.match(address.strip())
    if match is None:
        raise FormulaSyntaxError(f"invalid cell address {address!r}")
    row = int(match.group("row"))
    if row < 1:
        raise FormulaSyntaxError(f"invalid cell address {address!r}")
    return row - 1, column_index_from_string(match.group("col").upper()) - 1


def _parse_lookup_value(arg: str) -> CellRef | Scalar:
    if arg.startswith('"'):
        if len(arg) < 2 or not arg.endswith('"'):
            raise FormulaSyntaxError(f"malformed text literal {arg}")
        return arg[1:-1].replace('""', '"')
    upper = arg.upper()
    if upper in ("TRUE", "FALSE"):
        return upper == "TRUE"
    if _INTEGER.match(arg):
        return int(arg)
    if _NUMBER.match(arg):
        return float(arg)
    sheet, address = _split_sheet(arg)
    row_idx, col_idx = _parse_cell(address)
    return CellRef(sheet=sheet, row_idx=row_idx, col_idx=col_idx)


def _parse_table(arg: str) -> tuple[str | None, RangeRef]:
    sheet, address = _split_sheet(arg)
    start, sep, end = address.partition(":")
    if not sep:
        raise FormulaSyntaxError(f"table must be a range, got {arg!r}")

    start_col = _COLUMN.match(start.strip())
    end_col = _COLUMN.match(end.strip())
    if start_col and end_col:
        min_col = column_index_from_string(start_col.group("col").upper()) - 1
        max_col = column_index_from_string(end_col.group("col").upper()) - 1
        min_row, max_row = 0, None
    else:
        min_row, min_col = _parse_cell(start)
        row_end, max_col = _parse_cell(end)
        min_row, max_row = min(min_row, row_end), max(min_row, row_end)
    if max_col < min_col:
        min_col, max_col = max_col, min_col
    return sheet, RangeRef(
        min_row=min_row, min_col=min_col, max_row=max_row, max_col=max_col
    )


def _parse_column_offset(arg: str) -> int:
    try:
        value = float(arg)
    except ValueError as exc:
        raise FormulaSyntaxError(
            f"column index must be a number, got {arg!r}"
        ) from exc
    if not value.is_integer() or value < 1:
        raise FormulaSyntaxError(f"column index must be a positive integer, got {arg!r}")
    return int(value)


def _parse_match_mode(arg: str) -> MatchMode:
    upper = arg.strip().upper()
    if upper in ("FALSE", "0"):
        return MatchMode.EXACT
    if upper in ("TRUE", "1"):
        return MatchMode.APPROXIMATE
    raise FormulaSyntaxError(f"invalid match mode {arg!r}")
