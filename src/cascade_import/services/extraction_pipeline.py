"""Extraction pipeline orchestration.

Runs the stages for every selected sheet:

1. Open the workbook and apply the sheet selection policy
2. Resolve lookup formulas sheet-wide
3. Map rows to header-keyed records
4. Validate composite keys and flag duplicates
5. Collect processing metadata

Sheets are processed concurrently, one task per sheet, and merged back in
selection order. Fatal errors propagate from :meth:`ExtractionPipeline.run`;
:func:`extract_workbook` turns them into a failed :class:`ProcessingResult`.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from cascade_import.config import Settings
from cascade_import.config import settings as app_settings
from cascade_import.models import (
    ProcessingMetadata,
    ProcessingResult,
    Record,
    SheetSelection,
)
from cascade_import.services.lookup_resolver import LookupResolver
from cascade_import.services.metadata_collector import MetadataCollector
from cascade_import.services.record_validator import RecordValidator
from cascade_import.services.row_mapper import RowMapper
from cascade_import.services.workbook_loader import WorkbookLoader, select_sheets
from cascade_import.utils.exceptions import CascadeImportError, ConfigurationError
from cascade_import.utils.logging import LogContext, get_logger, timed_operation
from cascade_import.workbook import Sheet, Workbook

logger = get_logger(__name__)


@dataclass
class ExtractionOptions:
    """Per-run overrides of the configured settings.

    Passing ``sheet_names`` without a selection implies ``NAMED``.
    ``parallel=None`` leaves the row-count threshold in charge.
    """

    selection: SheetSelection = SheetSelection.DEFAULT_FIRST
    sheet_names: Sequence[str | int] | None = None
    header_row: int | None = None
    key_columns: Sequence[str] | None = None
    parallel: bool | None = None
    max_workers: int | None = None

    def __post_init__(self) -> None:
        if self.sheet_names and self.selection is SheetSelection.DEFAULT_FIRST:
            self.selection = SheetSelection.NAMED
        if self.header_row is not None and self.header_row < 0:
            raise ConfigurationError(
                f"header_row must be >= 0, got {self.header_row}", setting="header_row"
            )
        if self.key_columns is not None and not [c for c in self.key_columns if c]:
            raise ConfigurationError(
                "key_columns must name at least one column", setting="key_columns"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError(
                f"max_workers must be >= 1, got {self.max_workers}",
                setting="max_workers",
            )


@dataclass
class _SheetOutcome:
    sheet: str
    records: list[Record]
    warnings: list[str] = field(default_factory=list)
    valid: int = 0
    invalid: int = 0
    skipped: int = 0
    formulas_resolved: int = 0
    formulas_unresolved: int = 0
    lookup_indices_built: int = 0


class ExtractionPipeline:
    """Turn a workbook into validated records and processing metadata."""

    def __init__(
        self,
        settings: Settings | None = None,
        loader: WorkbookLoader | None = None,
    ) -> None:
        self._settings = settings or app_settings
        self._loader = loader or WorkbookLoader(self._settings)

    def run(
        self,
        file_path: str | Path,
        options: ExtractionOptions | None = None,
    ) -> tuple[list[Record], ProcessingMetadata]:
        """Extract records from a workbook.

        Args:
            file_path: Path to the workbook.
            options: Per-run overrides.

        Returns:
            Records in selection order then source row order, and the frozen
            metadata for the run.

        Raises:
            CascadeImportError: For fatal file and sheet selection errors.
        """
        options = options or ExtractionOptions()
        collector = MetadataCollector()

        with LogContext(run_id=uuid.uuid4().hex[:12], file=Path(file_path).name):
            logger.info("Starting extraction", selection=options.selection.value)

            workbook = self._loader.open(file_path)
            sheets = select_sheets(workbook, options.selection, options.sheet_names)

            if len(sheets) == 1:
                outcomes = [self._process_sheet(workbook, sheets[0], options)]
            else:
                workers = min(len(sheets), options.max_workers or self._settings.max_workers)
                # worker threads do not inherit the caller's log context
                contexts = [contextvars.copy_context() for _ in sheets]
                with ThreadPoolExecutor(max_workers=workers) as executor:
                    outcomes = list(
                        executor.map(
                            lambda ctx, sheet: ctx.run(
                                self._process_sheet, workbook, sheet, options
                            ),
                            contexts,
                            sheets,
                        )
                    )

            records: list[Record] = []
            qualify_rows = len(outcomes) > 1
            for outcome in outcomes:
                records.extend(outcome.records)
                if qualify_rows:
                    # row warnings carry no sheet name of their own
                    collector.add_warnings(
                        f"{outcome.sheet}: {w}" if w.startswith("Row ") else w
                        for w in outcome.warnings
                    )
                else:
                    collector.add_warnings(outcome.warnings)
                collector.record_sheet(
                    outcome.sheet,
                    valid=outcome.valid,
                    invalid=outcome.invalid,
                    skipped=outcome.skipped,
                    formulas_resolved=outcome.formulas_resolved,
                    formulas_unresolved=outcome.formulas_unresolved,
                    lookup_indices_built=outcome.lookup_indices_built,
                )

            metadata = collector.finalize()
            logger.info(
                "Extraction complete",
                records=metadata.total_rows_processed,
                valid=metadata.valid_records,
                invalid=metadata.invalid_records,
                warnings=len(metadata.warnings),
                processing_time_ms=metadata.processing_time_ms,
            )
            return records, metadata

    def _process_sheet(
        self, workbook: Workbook, sheet: Sheet, options: ExtractionOptions
    ) -> _SheetOutcome:
        with LogContext(sheet=sheet.name), timed_operation(
            logger, "sheet_extraction"
        ) as metrics:
            resolution = LookupResolver(workbook, self._settings).resolve_sheet(
                sheet,
                parallel=options.parallel,
                max_workers=options.max_workers,
            )
            metrics.formulas_resolved = resolution.formulas_resolved
            metrics.lookup_indices_built = resolution.lookup_indices_built

            mapped = RowMapper(self._settings, header_row=options.header_row).map_sheet(
                resolution.sheet
            )
            validation = RecordValidator(
                self._settings, key_columns=options.key_columns
            ).validate(mapped.records)
            metrics.rows_processed = len(mapped.records)

            warnings = [*sheet.load_warnings, *resolution.warnings, *validation.warnings]
            logger.log_sheet_result(
                sheet.name,
                total_rows=len(mapped.records),
                valid=validation.valid,
                invalid=validation.invalid,
                skipped=mapped.skipped_rows,
                warnings=len(warnings),
            )
            return _SheetOutcome(
                sheet=sheet.name,
                records=mapped.records,
                warnings=warnings,
                valid=validation.valid,
                invalid=validation.invalid,
                skipped=mapped.skipped_rows,
                formulas_resolved=resolution.formulas_resolved,
                formulas_unresolved=resolution.formulas_unresolved,
                lookup_indices_built=resolution.lookup_indices_built,
            )


def extract_workbook(
    file_path: str | Path,
    options: ExtractionOptions | None = None,
    settings: Settings | None = None,
) -> ProcessingResult:
    """Extract a workbook into a success or error result.

    Fatal errors (missing file, unreadable workbook, unknown sheet) are
    reported in the result instead of raised.

    Args:
        file_path: Path to the workbook.
        options: Per-run overrides.
        settings: Settings to use instead of the environment-loaded ones.

    Returns:
        ProcessingResult with records and metadata, or error details.
    """
    settings = settings or app_settings
    try:
        records, metadata = ExtractionPipeline(settings).run(file_path, options)
    except CascadeImportError as exc:
        if not exc.fatal:
            raise
        logger.error(
            "Extraction failed",
            exc_info=settings.debug,
            error_code=exc.error_code.value,
            error=exc.message,
        )
        return ProcessingResult.failed(exc, str(file_path))
    return ProcessingResult.ok(records, metadata)
