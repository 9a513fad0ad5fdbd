"""Pydantic models for extraction results handed to output collaborators."""

from enum import Enum
from typing import Any

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from cascade_import.utils.exceptions import CascadeImportError

SUMMARY_WARNING_LIMIT = 5


class SheetSelection(str, Enum):
    """Which sheets of a workbook to process."""

    DEFAULT_FIRST = "default_first"
    NAMED = "named"
    ALL = "all"


class Record(BaseModel):
    """One data row mapped to its headers.

    ``values`` keeps header order. Only ``is_valid`` and ``warning`` change
    after the row mapper creates the record.
    """

    sheet: str = Field(..., description="Sheet the row was read from")
    row_number: int = Field(..., description="1-based spreadsheet row number")
    values: dict[str, Any] = Field(
        default_factory=dict, description="Header -> resolved scalar value"
    )
    is_valid: bool = Field(default=True, description="Whether validation passed")
    warning: str | None = Field(
        default=None, description="Validation warning attached to the record"
    )

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)

    def mark_invalid(self, warning: str) -> None:
        """Flag the record invalid, keeping the first warning attached."""
        self.is_valid = False
        if self.warning is None:
            self.warning = warning

    @property
    def columns(self) -> list[str]:
        return list(self.values)


class ProcessingMetadata(BaseModel):
    """Summary statistics for one extraction run. Read-only once emitted."""

    model_config = ConfigDict(frozen=True)

    total_rows_processed: int = Field(
        default=0, description="Records produced, excluding skipped blank rows"
    )
    valid_records: int = Field(default=0, description="Records that passed validation")
    invalid_records: int = Field(default=0, description="Records flagged invalid")
    processing_time_ms: int = Field(
        default=0, description="Milliseconds from workbook open to end of validation"
    )
    warnings: tuple[str, ...] = Field(
        default=(), description="Warnings in emission order"
    )
    skipped_rows: int = Field(default=0, description="Fully blank rows skipped")
    sheets_processed: tuple[str, ...] = Field(
        default=(), description="Sheets processed, in output order"
    )
    formulas_resolved: int = Field(default=0, description="Formula cells resolved")
    formulas_unresolved: int = Field(
        default=0, description="Formula cells degraded to empty"
    )
    lookup_indices_built: int = Field(
        default=0, description="Distinct lookup ranges indexed"
    )

    @property
    def success_rate(self) -> float:
        """Share of processed rows that are valid, as a percentage."""
        if self.total_rows_processed == 0:
            return 0.0
        return self.valid_records / self.total_rows_processed * 100


class ErrorDetails(BaseModel):
    """Context for a fatal error, enough to self-diagnose without re-running."""

    file: str = Field(..., description="Workbook path that was attempted")
    error_code: str = Field(..., description="Machine-readable error code")
    kind: str = Field(..., description="Error kind, e.g. 'SheetNotFound'")
    requested_sheet: str | int | None = Field(
        default=None, description="Sheet that was requested, if relevant"
    )
    available_sheets: list[str] | None = Field(
        default=None, description="Sheets present in the workbook, in file order"
    )
    context: dict[str, Any] = Field(
        default_factory=dict, description="Additional structured details"
    )

    @classmethod
    def from_exception(cls, exc: CascadeImportError, file: str) -> "ErrorDetails":
        """Build details from a fatal pipeline error.

        Args:
            exc: The raised error.
            file: Workbook path that was attempted.

        Returns:
            ErrorDetails instance.
        """
        context = {
            k: v
            for k, v in exc.details.items()
            if k not in ("requested", "available", "file_path")
        }
        return cls(
            file=file,
            error_code=exc.error_code.value,
            kind=exc.kind,
            requested_sheet=exc.details.get("requested"),
            available_sheets=exc.details.get("available"),
            context=context,
        )


class ProcessingResult(BaseModel):
    """Either ``records`` + ``metadata`` or ``error`` + ``details``."""

    success: bool
    records: list[Record] | None = None
    error: str | None = None
    details: ErrorDetails | None = None
    metadata: ProcessingMetadata = Field(default_factory=ProcessingMetadata)

    @classmethod
    def ok(
        cls, records: list[Record], metadata: ProcessingMetadata
    ) -> "ProcessingResult":
        return cls(success=True, records=records, metadata=metadata)

    @classmethod
    def failed(
        cls,
        exc: CascadeImportError,
        file: str,
        metadata: ProcessingMetadata | None = None,
    ) -> "ProcessingResult":
        return cls(
            success=False,
            error=exc.message,
            details=ErrorDetails.from_exception(exc, file),
            metadata=metadata or ProcessingMetadata(),
        )

    def valid_records_only(self) -> list[Record]:
        """Records that passed validation, in source order."""
        return [r for r in self.records or [] if r.is_valid]

    def to_dataframe(self, include_invalid: bool = True) -> pd.DataFrame:
        """Return the records as a DataFrame, one column per header.

        Args:
            include_invalid: Keep records flagged invalid.

        Returns:
            DataFrame with ``sheet``, ``row_number`` and ``is_valid`` leading
            the header columns.
        """
        records = self.records or []
        if not include_invalid:
            records = [r for r in records if r.is_valid]
        rows = [
            {
                "sheet": r.sheet,
                "row_number": r.row_number,
                "is_valid": r.is_valid,
                **r.values,
            }
            for r in records
        ]
        return pd.DataFrame(rows)

    def summary(self) -> str:
        """Short human-readable summary of the run."""
        lines: list[str] = []
        meta = self.metadata
        if self.success:
            lines.append(f"Successfully processed {meta.valid_records} records")
            if meta.invalid_records:
                lines.append(f"{meta.invalid_records} invalid records were flagged")
            if meta.skipped_rows:
                lines.append(f"{meta.skipped_rows} blank rows were skipped")
            lines.append(f"Processing time: {meta.processing_time_ms}ms")
            if meta.warnings:
                lines.append("")
                lines.append("Warnings:")
                for warning in meta.warnings[:SUMMARY_WARNING_LIMIT]:
                    lines.append(f"  - {warning}")
                remaining = len(meta.warnings) - SUMMARY_WARNING_LIMIT
                if remaining > 0:
                    lines.append(f"  ... and {remaining} more warnings")
        else:
            lines.append(f"Processing failed: {self.error or 'Unknown error'}")
            if self.details is not None:
                lines.append(f"  File: {self.details.file}")
                if self.details.available_sheets is not None:
                    lines.append(
                        "  Available sheets: "
                        + ", ".join(self.details.available_sheets)
                    )
        return "\n".join(lines)
