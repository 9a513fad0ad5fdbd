"""Accumulates processing statistics during one extraction run."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable

from cascade_import.models import ProcessingMetadata


class MetadataCollector:
    """Thread-safe accumulator frozen into :class:`ProcessingMetadata`.

    The clock starts when the collector is created, which the pipeline does
    right before opening the workbook.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started = time.perf_counter()
        self._finalized: ProcessingMetadata | None = None
        self.total_rows_processed = 0
        self.valid_records = 0
        self.invalid_records = 0
        self.skipped_rows = 0
        self.formulas_resolved = 0
        self.formulas_unresolved = 0
        self.lookup_indices_built = 0
        self.warnings: list[str] = []
        self.sheets_processed: list[str] = []

    def add_warning(self, warning: str) -> None:
        with self._lock:
            self._check_open()
            self.warnings.append(warning)

    def add_warnings(self, warnings: Iterable[str]) -> None:
        with self._lock:
            self._check_open()
            self.warnings.extend(warnings)

    def record_sheet(
        self,
        sheet: str,
        *,
        valid: int,
        invalid: int,
        skipped: int = 0,
        formulas_resolved: int = 0,
        formulas_unresolved: int = 0,
        lookup_indices_built: int = 0,
    ) -> None:
        """Add the counts for one processed sheet."""
        with self._lock:
            self._check_open()
            self.sheets_processed.append(sheet)
            self.valid_records += valid
            self.invalid_records += invalid
            self.total_rows_processed += valid + invalid
            self.skipped_rows += skipped
            self.formulas_resolved += formulas_resolved
            self.formulas_unresolved += formulas_unresolved
            self.lookup_indices_built += lookup_indices_built

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)

    def finalize(self) -> ProcessingMetadata:
        """Freeze the collected statistics. Later calls return the same object."""
        with self._lock:
            if self._finalized is None:
                self._finalized = ProcessingMetadata(
                    total_rows_processed=self.total_rows_processed,
                    valid_records=self.valid_records,
                    invalid_records=self.invalid_records,
                    processing_time_ms=self.elapsed_ms,
                    warnings=tuple(self.warnings),
                    skipped_rows=self.skipped_rows,
                    sheets_processed=tuple(self.sheets_processed),
                    formulas_resolved=self.formulas_resolved,
                    formulas_unresolved=self.formulas_unresolved,
                    lookup_indices_built=self.lookup_indices_built,
                )
            return self._finalized

    def _check_open(self) -> None:
        if self._finalized is not None:
            raise RuntimeError("Metadata has already been finalized")
