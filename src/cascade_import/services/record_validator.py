"""Composite-key validation and duplicate detection for mapped records."""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from cascade_import.config import Settings
from cascade_import.config import settings as app_settings
from cascade_import.models import Record
from cascade_import.utils.exceptions import (
    DuplicateKeyError,
    MissingKeyFieldError,
    RowError,
)
from cascade_import.utils.logging import get_logger
from cascade_import.workbook import lookup_key

logger = get_logger(__name__)

CompositeKey = tuple[Hashable, ...]


@dataclass
class ValidationOutcome:
    """Counts and warnings from one validation pass, in record order."""

    valid: int = 0
    invalid: int = 0
    warnings: list[str] = field(default_factory=list)


class RecordValidator:
    """Flag records with incomplete or repeated composite keys.

    Invalid records stay in the sequence with ``is_valid=False`` and their
    warning attached. Keys are tracked across every call to :meth:`validate`
    on the same instance, so one validator spans one extraction run.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        key_columns: Sequence[str] | None = None,
    ) -> None:
        self._settings = settings or app_settings
        self.key_columns = list(
            key_columns if key_columns is not None else self._settings.key_columns_list
        )
        self._seen: set[CompositeKey] = set()

    def composite_key(self, record: Record) -> CompositeKey | None:
        """Return the normalized key tuple, or None if any part is empty."""
        parts: list[Hashable] = []
        for column in self.key_columns:
            value = record.get(column)
            if _is_empty(value):
                return None
            parts.append(lookup_key(value.strip() if isinstance(value, str) else value))
        return tuple(parts)

    def validate(self, records: Iterable[Record]) -> ValidationOutcome:
        """Validate records in order, mutating only validity and warning.

        Args:
            records: Records from the row mapper, in source order.

        Returns:
            Valid/invalid counts and the warnings raised, in order.
        """
        outcome = ValidationOutcome()
        checked_columns = False

        for record in records:
            if not checked_columns:
                missing = [c for c in self.key_columns if c not in record.values]
                if missing:
                    warning = (
                        f"Sheet '{record.sheet}': key columns not found in headers: "
                        + ", ".join(missing)
                    )
                    outcome.warnings.append(warning)
                    logger.warning("Key columns missing", sheet=record.sheet, missing=missing)
                checked_columns = True

            if not record.is_valid:
                outcome.invalid += 1
                if record.warning:
                    outcome.warnings.append(record.warning)
                continue

            key = self.composite_key(record)
            if key is None:
                error: RowError = MissingKeyFieldError(
                    record.row_number, self._missing_fields(record)
                )
            elif key in self._seen:
                error = DuplicateKeyError(
                    record.row_number, tuple(record.get(c) for c in self.key_columns)
                )
            else:
                self._seen.add(key)
                outcome.valid += 1
                continue

            message = error.message
            record.mark_invalid(message)
            outcome.invalid += 1
            outcome.warnings.append(message)

        return outcome

    def _missing_fields(self, record: Record) -> list[str]:
        missing = []
        for column in self.key_columns:
            value = record.get(column)
            if _is_empty(value):
                missing.append(column)
        return missing


def filter_complete_records(
    records: Iterable[Record], key_columns: Sequence[str] | None = None
) -> list[Record]:
    """Return records whose key columns are all non-empty."""
    columns = list(key_columns or app_settings.key_columns_list)
    complete = []
    for record in records:
        values = [record.get(c) for c in columns]
        if not any(_is_empty(v) for v in values):
            complete.append(record)
    return complete


def group_by_column(
    records: Iterable[Record], column: str = "main_value"
) -> dict[Any, list[Record]]:
    """Group records by the value of one column, in first-seen order."""
    groups: dict[Any, list[Record]] = {}
    for record in records:
        groups.setdefault(record.get(column), []).append(record)
    return groups


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
