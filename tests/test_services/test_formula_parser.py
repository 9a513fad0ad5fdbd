"""Tests for the lookup formula parser."""

import pytest

from cascade_import.services.formula_parser import (
    CellRef,
    FormulaSyntaxError,
    MatchMode,
    RangeRef,
    is_lookup_formula,
    parse_lookup_formula,
    split_arguments,
)


class TestParseLookupFormula:
    """Tests for parse_lookup_formula."""

    def test_absolute_range_on_other_sheet(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP(A2, Lookups!$A$2:$C$100, 3, FALSE)")

        assert formula.lookup_value == CellRef(sheet=None, row_idx=1, col_idx=0)
        assert formula.reference_sheet == "Lookups"
        assert formula.reference_range == RangeRef(
            min_row=1, min_col=0, max_row=99, max_col=2
        )
        assert formula.result_column_offset == 3
        assert formula.match_mode is MatchMode.EXACT

    def test_quoted_sheet_and_whole_columns(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP(B7,'Field Values'!A:C,2,0)")

        assert formula.reference_sheet == "Field Values"
        assert formula.reference_range.max_row is None
        assert str(formula.reference_range) == "A:C"
        assert formula.match_mode is MatchMode.EXACT

    def test_escaped_quote_in_sheet_name(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP(A1,'O''Brien'!A:B,2,FALSE)")

        assert formula.reference_sheet == "O'Brien"

    def test_qualified_lookup_value(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP('Cascade Fields'!C3,Lookups!A:B,2,FALSE)")

        assert formula.lookup_value == CellRef(sheet="Cascade Fields", row_idx=2, col_idx=2)

    def test_same_sheet_table(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP(A2,D1:E10,2,FALSE)")

        assert formula.reference_sheet is None
        assert str(formula.reference_range) == "D1:E10"

    def test_reversed_range_is_normalized(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP(A2,Lookups!C10:A1,2,FALSE)")

        assert formula.reference_range == RangeRef(
            min_row=0, min_col=0, max_row=9, max_col=2
        )

    @pytest.mark.parametrize(
        ("argument", "expected"),
        [
            ('"CAT1"', "CAT1"),
            ('"a,b"', "a,b"),
            ('"say ""hi"""', 'say "hi"'),
            ("42", 42),
            ("-1.5", -1.5),
            ("TRUE", True),
        ],
    )
    def test_literal_lookup_values(self, argument: str, expected: object) -> None:
        formula = parse_lookup_formula(f"=VLOOKUP({argument},Lookups!A:B,2,FALSE)")

        assert formula.lookup_value == expected
        assert type(formula.lookup_value) is type(expected)

    def test_prefix_case_and_missing_equals(self) -> None:
        formula = parse_lookup_formula("_xlfn.vlookup(a2,lookups!a:b,2,false)")

        assert formula.reference_sheet == "lookups"
        assert formula.lookup_value == CellRef(sheet=None, row_idx=1, col_idx=0)

    def test_omitted_match_mode_is_approximate(self) -> None:
        formula = parse_lookup_formula("=VLOOKUP(A2,Lookups!A:B,2)")

        assert formula.match_mode is MatchMode.APPROXIMATE

    @pytest.mark.parametrize(
        "expression",
        [
            "=SUM(A1:A3)",
            "=VLOOKUP(A2,Lookups!A:B)",
            "=VLOOKUP(A2,Lookups!A:B,2,FALSE,1)",
            "=VLOOKUP(TRIM(A2),Lookups!A:B,2,FALSE)",
            "=VLOOKUP(A2,Lookups!A:B,0,FALSE)",
            "=VLOOKUP(A2,Lookups!A:B,1.5,FALSE)",
            "=VLOOKUP(A2,Lookups!A:B,3,FALSE)",
            "=VLOOKUP(A2,Lookups!A:B,2,MAYBE)",
            "=VLOOKUP(A2,Lookups!A1,2,FALSE)",
            "=VLOOKUP(A2,,2,FALSE)",
            '=VLOOKUP("open,Lookups!A:B,2,FALSE)',
            "=VLOOKUP(A0,Lookups!A:B,2,FALSE)",
        ],
    )
    def test_unsupported_shapes_raise(self, expression: str) -> None:
        with pytest.raises(FormulaSyntaxError):
            parse_lookup_formula(expression)


class TestHelpers:
    """Tests for argument splitting and detection."""

    def test_split_arguments_respects_quotes(self) -> None:
        assert split_arguments("\"a,b\", 'My, Sheet'!A:B, 2") == [
            '"a,b"',
            "'My, Sheet'!A:B",
            "2",
        ]

    def test_split_arguments_rejects_nested_calls(self) -> None:
        with pytest.raises(FormulaSyntaxError, match="nested"):
            split_arguments("TRIM(A1), B:C")

    def test_is_lookup_formula(self) -> None:
        assert is_lookup_formula("=VLOOKUP(A1,B:C,2,FALSE)")
        assert is_lookup_formula("=_xlfn.VLOOKUP(A1,B:C,2,FALSE)")
        assert not is_lookup_formula("=HLOOKUP(A1,B:C,2,FALSE)")
        assert not is_lookup_formula("=SUM(A1:A3)")

    def test_range_width(self) -> None:
        assert RangeRef(min_row=0, min_col=1, max_row=None, max_col=3).width == 3
