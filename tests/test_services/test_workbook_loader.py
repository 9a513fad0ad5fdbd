"""Tests for workbook loading and sheet selection."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest

from cascade_import.config import Settings
from cascade_import.models import SheetSelection
from cascade_import.services.workbook_loader import WorkbookLoader, select_sheets
from cascade_import.utils.exceptions import (
    ErrorCode,
    FileCorruptedError,
    FileTooLargeError,
    InvalidFileFormatError,
    NoSheetsFoundError,
    SheetNotFoundError,
    WorkbookFileNotFoundError,
)
from cascade_import.workbook import (
    EMPTY,
    BooleanCell,
    FormulaCell,
    NumberCell,
    TextCell,
    Workbook,
)


@pytest.fixture
def two_sheet_path(write_workbook: Callable[..., Path]) -> Path:
    return write_workbook(
        {
            "Sheet1": [
                ["Name", "Amount", "Active", "Since", "Label", "Broken"],
                ["Alice", 123.45, True, datetime(2024, 1, 15), "=VLOOKUP(A2,Sheet2!A:B,2,FALSE)", "#N/A"],
                ["Bob", 10],
            ],
            "Sheet2": [["Alice", "Admin"]],
        }
    )


class TestWorkbookLoader:
    """Tests for WorkbookLoader.open."""

    def test_open_converts_cells(self, two_sheet_path: Path, settings: Settings) -> None:
        workbook = WorkbookLoader(settings).open(two_sheet_path)

        assert workbook.sheet_names() == ["Sheet1", "Sheet2"]
        sheet = workbook.sheet("Sheet1")
        assert sheet.cell(0, 0) == TextCell("Name")
        assert sheet.cell(1, 1) == NumberCell(123.45)
        assert sheet.cell(1, 2) == BooleanCell(True)
        assert sheet.cell(1, 3) == TextCell("2024-01-15T00:00:00")

        formula = sheet.cell(1, 4)
        assert isinstance(formula, FormulaCell)
        assert formula.raw_expression == "=VLOOKUP(A2,Sheet2!A:B,2,FALSE)"
        assert formula.resolved is False

    def test_error_cells_become_empty_with_warning(
        self, two_sheet_path: Path, settings: Settings
    ) -> None:
        sheet = WorkbookLoader(settings).open(two_sheet_path).sheet("Sheet1")

        assert sheet.cell(1, 5) is EMPTY
        assert sheet.load_warnings == (
            "Sheet1!F2: unsupported cell value '#N/A' converted to empty",
        )

    def test_trailing_empty_cells_are_trimmed(
        self, two_sheet_path: Path, settings: Settings
    ) -> None:
        sheet = WorkbookLoader(settings).open(two_sheet_path).sheet("Sheet1")

        assert len(sheet.rows[2]) == 2
        assert sheet.cell(2, 4) is EMPTY

    def test_sheet_order_and_formulas(self, two_sheet_path: Path, settings: Settings) -> None:
        workbook = WorkbookLoader(settings).open(two_sheet_path)

        assert workbook.path == str(two_sheet_path)
        assert workbook.sheet_names() == ["Sheet1", "Sheet2"]
        assert any(sheet.has_formulas for sheet in workbook.sheets)

    def test_get_sheet_names(self, two_sheet_path: Path, settings: Settings) -> None:
        assert WorkbookLoader(settings).get_sheet_names(two_sheet_path) == [
            "Sheet1",
            "Sheet2",
        ]

    def test_missing_file(self, tmp_path: Path, settings: Settings) -> None:
        with pytest.raises(WorkbookFileNotFoundError) as exc_info:
            WorkbookLoader(settings).open(tmp_path / "nope.xlsx")

        assert exc_info.value.error_code is ErrorCode.FILE_NOT_FOUND
        assert exc_info.value.fatal is True

    def test_unsupported_extension(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "data.csv"
        path.write_text("a,b\n1,2\n")

        with pytest.raises(InvalidFileFormatError):
            WorkbookLoader(settings).open(path)

    def test_directory_is_rejected(self, tmp_path: Path, settings: Settings) -> None:
        folder = tmp_path / "folder.xlsx"
        folder.mkdir()

        with pytest.raises(InvalidFileFormatError):
            WorkbookLoader(settings).open(folder)

    def test_corrupted_file(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"this is not a zip archive")

        with pytest.raises(FileCorruptedError) as exc_info:
            WorkbookLoader(settings).open(path)

        assert exc_info.value.error_code is ErrorCode.FILE_CORRUPTED

    def test_file_too_large(
        self, tmp_path: Path, make_settings: Callable[..., Settings]
    ) -> None:
        path = tmp_path / "big.xlsx"
        path.write_bytes(b"\0" * (1024 * 1024 + 1))

        with pytest.raises(FileTooLargeError):
            WorkbookLoader(make_settings(max_file_size_mb=1)).open(path)


class TestSelectSheets:
    """Tests for the sheet selection policy."""

    @pytest.fixture
    def workbook(self, make_workbook: Callable[..., Workbook]) -> Workbook:
        return make_workbook({"Sheet1": [["a"]], "Sheet2": [["b"]], "Sheet3": [["c"]]})

    def test_default_is_first_sheet(self, workbook: Workbook) -> None:
        assert [s.name for s in select_sheets(workbook)] == ["Sheet1"]

    def test_all_sheets_in_file_order(self, workbook: Workbook) -> None:
        sheets = select_sheets(workbook, SheetSelection.ALL)

        assert [s.name for s in sheets] == ["Sheet1", "Sheet2", "Sheet3"]

    def test_named_sheets_in_requested_order(self, workbook: Workbook) -> None:
        sheets = select_sheets(
            workbook, SheetSelection.NAMED, ["Sheet3", "Sheet1", "Sheet3"]
        )

        assert [s.name for s in sheets] == ["Sheet3", "Sheet1"]

    def test_named_sheet_by_index(self, workbook: Workbook) -> None:
        sheets = select_sheets(workbook, SheetSelection.NAMED, [1])

        assert [s.name for s in sheets] == ["Sheet2"]

    def test_unknown_sheet(self, make_workbook: Callable[..., Workbook]) -> None:
        workbook = make_workbook({"Sheet1": [["a"]], "Sheet2": [["b"]]})

        with pytest.raises(SheetNotFoundError) as exc_info:
            select_sheets(workbook, SheetSelection.NAMED, ["Ghost"])

        error = exc_info.value
        assert error.requested == "Ghost"
        assert error.available == ["Sheet1", "Sheet2"]
        assert error.error_code is ErrorCode.SHEET_NOT_FOUND

    def test_named_without_names(self, workbook: Workbook) -> None:
        with pytest.raises(SheetNotFoundError):
            select_sheets(workbook, SheetSelection.NAMED, [])

    def test_workbook_without_sheets(self) -> None:
        with pytest.raises(NoSheetsFoundError):
            select_sheets(Workbook(path="empty.xlsx", sheets=()))
