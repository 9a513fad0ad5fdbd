"""Workbook loading and sheet selection.

Opens a workbook once with openpyxl, converts every worksheet into the
immutable cell grid from :mod:`cascade_import.workbook`, and applies the
sheet selection policy. The whole file is read up front because lookup
resolution needs random access across sheets.
"""

from __future__ import annotations

import os
import zipfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any

from openpyxl import load_workbook
from openpyxl.cell import Cell as OpenpyxlCell
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from cascade_import.config import Settings
from cascade_import.config import settings as app_settings
from cascade_import.models import SheetSelection
from cascade_import.utils.exceptions import (
    FileAccessDeniedError,
    FileCorruptedError,
    FileTooLargeError,
    InvalidFileFormatError,
    NoSheetsFoundError,
    SheetNotFoundError,
    TypeConversionError,
    WorkbookFileNotFoundError,
)
from cascade_import.utils.logging import get_logger
from cascade_import.workbook import (
    EMPTY,
    BooleanCell,
    Cell,
    FormulaCell,
    NumberCell,
    Scalar,
    Sheet,
    TextCell,
    Workbook,
    cell_reference,
)

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm", ".xltx", ".xltm")

SPREADSHEET_ERRORS = frozenset(
    {"#NULL!", "#DIV/0!", "#VALUE!", "#REF!", "#NAME?", "#NUM!", "#N/A", "#GETTING_DATA"}
)


@dataclass
class _ConvertedCell:
    cell: Cell
    warning: str | None = None


def _convert_scalar(value: Any) -> Scalar:
    """Convert an openpyxl value to a supported scalar.

    Raises:
        ValueError: If the value has no scalar representation.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    raise ValueError(f"unsupported value type {type(value).__name__}")


class WorkbookLoader:
    """Open workbooks into in-memory cell grids using openpyxl."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or app_settings

    def open(self, file_path: str | Path) -> Workbook:
        """Read the entire workbook into memory.

        Args:
            file_path: Path to an ``.xlsx``/``.xlsm`` workbook.

        Returns:
            The parsed, immutable workbook.

        Raises:
            WorkbookFileNotFoundError: If the path does not exist.
            FileAccessDeniedError: If the file cannot be read.
            FileTooLargeError: If the file exceeds the configured size.
            InvalidFileFormatError: If the path is not a supported workbook.
            FileCorruptedError: If the workbook cannot be parsed.
        """
        path = Path(file_path)
        path_str = str(path)
        self._check_path(path)

        try:
            formula_wb = load_workbook(filename=path, data_only=False, read_only=False)
            computed_wb = load_workbook(filename=path, data_only=True, read_only=False)
        except PermissionError as exc:
            raise FileAccessDeniedError(path_str) from exc
        except (zipfile.BadZipFile, InvalidFileException) as exc:
            raise FileCorruptedError(
                f"Workbook is not a valid spreadsheet archive: {path_str}",
                file_path=path_str,
                cause=str(exc),
            ) from exc
        except (KeyError, ValueError, TypeError, OSError) as exc:
            raise FileCorruptedError(
                f"Failed to parse workbook: {path_str}",
                file_path=path_str,
                cause=f"{type(exc).__name__}: {exc}",
            ) from exc

        try:
            sheets = tuple(
                self._convert_sheet(index, worksheet, computed_wb[worksheet.title])
                for index, worksheet in enumerate(formula_wb.worksheets)
            )
        finally:
            formula_wb.close()
            computed_wb.close()

        logger.info(
            "Opened workbook",
            file=path_str,
            sheets=len(sheets),
            formulas=sum(1 for s in sheets for _ in s.formula_cells()),
        )
        return Workbook(path=path_str, sheets=sheets)

    def get_sheet_names(self, file_path: str | Path) -> list[str]:
        """List worksheet names in file order without building cell grids."""
        path = Path(file_path)
        self._check_path(path)
        try:
            wb = load_workbook(filename=path, read_only=True)
        except PermissionError as exc:
            raise FileAccessDeniedError(str(path)) from exc
        except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError) as exc:
            raise FileCorruptedError(
                f"Failed to parse workbook: {path}",
                file_path=str(path),
                cause=str(exc),
            ) from exc
        try:
            return [ws.title for ws in wb.worksheets]
        finally:
            wb.close()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _check_path(self, path: Path) -> None:
        path_str = str(path)
        if not path.exists():
            raise WorkbookFileNotFoundError(path_str)
        if not path.is_file():
            raise InvalidFileFormatError(
                f"Not a regular file: {path_str}", file_path=path_str
            )
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise InvalidFileFormatError(
                f"Unsupported workbook format '{suffix or '(none)'}'. "
                f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}",
                extension=suffix,
                file_path=path_str,
            )
        if not os.access(path, os.R_OK):
            raise FileAccessDeniedError(path_str)
        size = path.stat().st_size
        if size > self._settings.max_file_size_bytes:
            raise FileTooLargeError(
                file_size=size,
                max_size=self._settings.max_file_size_bytes,
                file_path=path_str,
            )

    def _convert_sheet(
        self, index: int, worksheet: Worksheet, computed_sheet: Worksheet
    ) -> Sheet:
        rows: list[tuple[Cell, ...]] = []
        warnings: list[str] = []
        computed_iter = computed_sheet.iter_rows(values_only=True)

        for row_idx, (row_cells, computed_values) in enumerate(
            zip(worksheet.iter_rows(), computed_iter, strict=True)
        ):
            converted_row: list[Cell] = []
            for col_idx, (cell, computed) in enumerate(
                zip(row_cells, computed_values, strict=True)
            ):
                converted = self._convert_cell(
                    cell, computed, worksheet.title, row_idx, col_idx
                )
                if converted.warning:
                    warnings.append(converted.warning)
                converted_row.append(converted.cell)
            rows.append(tuple(_trim_trailing_empty(converted_row)))

        while rows and not rows[-1]:
            rows.pop()

        return Sheet(
            name=worksheet.title,
            index=index,
            rows=tuple(rows),
            load_warnings=tuple(warnings),
        )

    @staticmethod
    def _convert_cell(
        cell: OpenpyxlCell,
        computed_value: Any,
        sheet_name: str,
        row_idx: int,
        col_idx: int,
    ) -> _ConvertedCell:
        """Map an openpyxl cell onto the closed cell variant."""
        ref = cell_reference(sheet_name, row_idx, col_idx)
        value = cell.value

        if cell.data_type == "f":
            expression = getattr(value, "text", value)
            stored: Scalar
            if isinstance(computed_value, str) and computed_value in SPREADSHEET_ERRORS:
                stored = None
            else:
                try:
                    stored = _convert_scalar(computed_value)
                except ValueError:
                    stored = None
            return _ConvertedCell(FormulaCell(raw_expression=str(expression), stored_value=stored))

        if cell.data_type == "e" or (
            isinstance(value, str) and value in SPREADSHEET_ERRORS
        ):
            return _ConvertedCell(EMPTY, TypeConversionError(ref, value).message)

        try:
            scalar = _convert_scalar(value)
        except ValueError:
            return _ConvertedCell(EMPTY, TypeConversionError(ref, value).message)

        if scalar is None:
            return _ConvertedCell(EMPTY)
        if isinstance(scalar, bool):
            return _ConvertedCell(BooleanCell(scalar))
        if isinstance(scalar, (int, float)):
            return _ConvertedCell(NumberCell(scalar))
        return _ConvertedCell(TextCell(scalar))


def _trim_trailing_empty(cells: list[Cell]) -> list[Cell]:
    end = len(cells)
    while end > 0 and cells[end - 1] is EMPTY:
        end -= 1
    return cells[:end]


def select_sheets(
    workbook: Workbook,
    selection: SheetSelection = SheetSelection.DEFAULT_FIRST,
    sheet_names: Sequence[str | int] | None = None,
) -> list[Sheet]:
    """Apply the sheet selection policy.

    ``DEFAULT_FIRST`` picks the first sheet in file order, ``ALL`` returns
    every sheet in file order and ``NAMED`` returns the requested sheets in
    the order requested.

    Raises:
        NoSheetsFoundError: If the workbook has no worksheets.
        SheetNotFoundError: If a requested sheet does not exist.
    """
    if not workbook.sheets:
        raise NoSheetsFoundError(workbook.path)

    if selection is SheetSelection.ALL:
        return list(workbook.sheets)

    if selection is SheetSelection.NAMED:
        if not sheet_names:
            raise SheetNotFoundError(
                requested="",
                available=workbook.sheet_names(),
                file_path=workbook.path,
            )
        return [workbook.sheet(name) for name in _unique(sheet_names)]

    return [workbook.sheets[0]]


def _unique(names: Iterable[str | int]) -> list[str | int]:
    seen: set[str | int] = set()
    ordered: list[str | int] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered
