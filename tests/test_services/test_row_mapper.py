"""Tests for mapping resolved rows to records."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from cascade_import.config import Settings
from cascade_import.services.row_mapper import RowMapper
from cascade_import.workbook import UNRESOLVED, FormulaCell, Sheet


def test_maps_rows_in_header_order(
    make_sheet: Callable[..., Sheet], settings: Settings
) -> None:
    sheet = make_sheet(
        "Data",
        [
            ["main_value", "sub_value", "amount", "active"],
            ["CAT1", "SUB1", 12.5, True],
            ["CAT2", "SUB2", 3, False],
        ],
    )

    mapped = RowMapper(settings).map_sheet(sheet)

    assert mapped.headers == ["main_value", "sub_value", "amount", "active"]
    assert [r.row_number for r in mapped.records] == [2, 3]
    first = mapped.records[0]
    assert first.sheet == "Data"
    assert first.columns == mapped.headers
    assert first.values == {
        "main_value": "CAT1",
        "sub_value": "SUB1",
        "amount": 12.5,
        "active": True,
    }
    assert first.is_valid is True
    assert first.warning is None


def test_short_rows_pad_and_long_rows_truncate(
    make_sheet: Callable[..., Sheet], settings: Settings
) -> None:
    sheet = make_sheet(
        "Data",
        [["a", "b", "c"], ["x"], ["1", "2", "3", "4", "5"]],
    )

    records = RowMapper(settings).map_sheet(sheet).records

    assert records[0].values == {"a": "x", "b": None, "c": None}
    assert records[1].values == {"a": "1", "b": "2", "c": "3"}


def test_text_is_trimmed_and_blank_text_is_empty(
    make_sheet: Callable[..., Sheet], settings: Settings
) -> None:
    sheet = make_sheet("Data", [["a", "b"], ["  CAT1 ", "   "]])

    record = RowMapper(settings).map_sheet(sheet).records[0]

    assert record.values == {"a": "CAT1", "b": None}


def test_text_kept_verbatim_when_stripping_disabled(
    make_sheet: Callable[..., Sheet], make_settings: Callable[..., Settings]
) -> None:
    sheet = make_sheet("Data", [["a"], ["  CAT1 "]])

    record = RowMapper(make_settings(strip_text=False)).map_sheet(sheet).records[0]

    assert record.values == {"a": "  CAT1 "}


def test_empty_as_empty_string(
    make_sheet: Callable[..., Sheet], make_settings: Callable[..., Settings]
) -> None:
    sheet = make_sheet("Data", [["a", "b", "c"], ["x", None]])

    record = (
        RowMapper(make_settings(empty_as_empty_string=True)).map_sheet(sheet).records[0]
    )

    assert record.values == {"a": "x", "b": "", "c": ""}


class TestBlankRows:
    """Tests for the blank row policy."""

    def test_blank_rows_are_skipped(
        self, make_sheet: Callable[..., Sheet], settings: Settings
    ) -> None:
        sheet = make_sheet("Data", [["a", "b"], ["x", 1], [None, "  "], ["y", 2]])

        mapped = RowMapper(settings).map_sheet(sheet)

        assert [r.row_number for r in mapped.records] == [2, 4]
        assert mapped.skipped_rows == 1

    def test_blank_rows_emitted_as_invalid(
        self, make_sheet: Callable[..., Sheet], make_settings: Callable[..., Settings]
    ) -> None:
        sheet = make_sheet("Data", [["a", "b"], ["x", 1], []])

        mapped = RowMapper(make_settings(count_blank_rows_as_invalid=True)).map_sheet(
            sheet
        )

        assert mapped.skipped_rows == 0
        assert len(mapped.records) == 2
        blank = mapped.records[1]
        assert blank.is_valid is False
        assert blank.warning == "Row 3: blank row"


class TestHeaders:
    """Tests for header extraction."""

    def test_blank_and_duplicate_headers(
        self, make_sheet: Callable[..., Sheet], settings: Settings
    ) -> None:
        sheet = make_sheet("Data", [["name", None, "name", 2024.0, "name_2"]])

        assert RowMapper(settings).headers(sheet) == [
            "name",
            "column_2",
            "name_2",
            "2024",
            "name_2_2",
        ]

    def test_header_row_override(
        self, make_sheet: Callable[..., Sheet], settings: Settings
    ) -> None:
        sheet = make_sheet("Data", [["Report title"], ["code", "label"], ["C1", "One"]])

        mapped = RowMapper(settings, header_row=1).map_sheet(sheet)

        assert mapped.headers == ["code", "label"]
        assert len(mapped.records) == 1
        assert mapped.records[0].row_number == 3

    def test_header_row_past_end(
        self, make_sheet: Callable[..., Sheet], settings: Settings
    ) -> None:
        sheet = make_sheet("Data", [["a"]])

        mapped = RowMapper(settings, header_row=5).map_sheet(sheet)

        assert mapped.headers == []
        assert mapped.records == []


class TestFormulaCells:
    """Tests for formula cells reaching the mapper."""

    def test_resolved_values_are_used(
        self, make_sheet: Callable[..., Sheet], settings: Settings
    ) -> None:
        sheet = make_sheet(
            "Data",
            [
                ["label", "missing"],
                [
                    FormulaCell("=VLOOKUP(1,A:B,2,FALSE)").with_display_value("One"),
                    FormulaCell("=VLOOKUP(2,A:B,2,FALSE)").with_display_value(UNRESOLVED),
                ],
            ],
        )

        record = RowMapper(settings).map_sheet(sheet).records[0]

        assert record.values == {"label": "One", "missing": None}

    def test_unresolved_formula_is_rejected(
        self, make_sheet: Callable[..., Sheet], settings: Settings
    ) -> None:
        sheet = make_sheet("Data", [["label"], ["=VLOOKUP(1,A:B,2,FALSE)"]])

        with pytest.raises(ValueError, match="not been resolved"):
            RowMapper(settings).map_sheet(sheet)
