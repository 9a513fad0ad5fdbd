"""Map resolved sheet rows onto header-keyed records."""

from __future__ import annotations

from dataclasses import dataclass, field

from cascade_import.config import Settings
from cascade_import.config import settings as app_settings
from cascade_import.models import Record
from cascade_import.utils.logging import get_logger
from cascade_import.workbook import Cell, Scalar, Sheet, display_value

logger = get_logger(__name__)

BLANK_ROW_WARNING = "blank row"


@dataclass
class MappedRows:
    """Records produced from one sheet, plus rows that were skipped."""

    headers: list[str]
    records: list[Record] = field(default_factory=list)
    skipped_rows: int = 0


class RowMapper:
    """Pair each header with the resolved value of every data row."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        header_row: int | None = None,
    ) -> None:
        self._settings = settings or app_settings
        self._header_row = (
            header_row if header_row is not None else self._settings.header_row
        )

    def map_sheet(self, sheet: Sheet) -> MappedRows:
        """Map every row after the header row into a record.

        Args:
            sheet: A fully resolved sheet.

        Returns:
            The mapped records in source order.

        Raises:
            ValueError: If the sheet still holds unresolved formulas.
        """
        headers = self.headers(sheet)
        mapped = MappedRows(headers=headers)
        width = len(headers)

        for row_idx in range(self._header_row + 1, sheet.row_count):
            row = sheet.rows[row_idx]
            values = [self._clean(cell) for cell in row[:width]]
            values.extend([self._empty()] * (width - len(values)))

            row_number = row_idx + 1
            record = Record(
                sheet=sheet.name,
                row_number=row_number,
                values=dict(zip(headers, values, strict=True)),
            )
            if all(self._is_blank(value) for value in values):
                if not self._settings.count_blank_rows_as_invalid:
                    mapped.skipped_rows += 1
                    continue
                record.mark_invalid(f"Row {row_number}: {BLANK_ROW_WARNING}")
            mapped.records.append(record)

        logger.debug(
            "Mapped rows",
            sheet=sheet.name,
            records=len(mapped.records),
            skipped=mapped.skipped_rows,
        )
        return mapped

    def headers(self, sheet: Sheet) -> list[str]:
        """Return the header names of a sheet.

        Blank headers become ``column_<n>`` (1-based) and repeated headers get
        a numeric suffix so every record key is unique.
        """
        if self._header_row >= sheet.row_count:
            return []
        row = sheet.rows[self._header_row]
        headers: list[str] = []
        for col_idx, cell in enumerate(row):
            base = _header_text(display_value(cell)) or f"column_{col_idx + 1}"
            name, suffix = base, 1
            while name in headers:
                suffix += 1
                name = f"{base}_{suffix}"
            headers.append(name)
        return headers

    def _clean(self, cell: Cell) -> Scalar:
        value = display_value(cell)
        if isinstance(value, str) and self._settings.strip_text:
            value = value.strip()
        if value is None or value == "":
            return self._empty()
        return value

    def _empty(self) -> Scalar:
        return "" if self._settings.empty_as_empty_string else None

    @staticmethod
    def _is_blank(value: Scalar) -> bool:
        return value is None or value == ""


def _header_text(value: Scalar) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
