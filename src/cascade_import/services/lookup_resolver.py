"""Resolution of lookup formulas into display values.

Resolution of one sheet runs in two phases:

1. A sequential barrier that parses every formula, builds one
   :class:`LookupIndex` per distinct ``(sheet, range)`` pair and resolves
   every formula cell a lookup reads: its key cell and the result cell of
   the row it matches. All shared state (indices and the dependency memo)
   is written only here.
2. Row resolution, optionally split into chunks on a thread pool. Chunks
   only read the indices and the memo, return their starting row index,
   and are re-joined in source order, so parallel and sequential runs
   produce identical grids and warnings.

An index only reads its key column. Other cells of the referenced range
are resolved when a lookup selects them, so formulas in columns nobody
reads are never evaluated.

Every failure is per-cell: the cell degrades to ``UNRESOLVED`` and exactly
one warning is recorded for it. When the failure comes from a cell on
another sheet, that cell's own message is appended in parentheses. The pass
always completes.

Nesting is measured per cell as the length of its own formula chain, so a
result never depends on which formula happened to be scanned first. Deep
chains are resolved from the far end first, which keeps the interpreter's
recursion bounded.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial
from types import MappingProxyType
from typing import Any

from cascade_import.config import Settings
from cascade_import.config import settings as app_settings
from cascade_import.services.formula_parser import (
    CellRef,
    FormulaSyntaxError,
    LookupFormula,
    MatchMode,
    RangeRef,
    parse_lookup_formula,
)
from cascade_import.utils.exceptions import FormulaResolutionError
from cascade_import.utils.logging import ProgressTracker, get_logger
from cascade_import.workbook import (
    UNRESOLVED,
    Cell,
    FormulaCell,
    Scalar,
    Sheet,
    Workbook,
    cell_reference,
    display_value,
    lookup_key,
)

logger = get_logger(__name__)

CellKey = tuple[str, int, int]
IndexKey = tuple[str, str]


@dataclass(frozen=True)
class LookupIndex:
    """Key -> source row for one referenced range.

    Keys are the type-aware normalized display values of the range's first
    column. When a key repeats, the first row in range order is kept.
    """

    sheet: str
    range_ref: RangeRef
    entries: Mapping[Hashable, int]
    nesting: int = 0
    """Longest formula chain among the key cells."""

    def lookup(self, value: Scalar) -> int | None:
        """Return the zero-based sheet row holding ``value``, if any."""
        key = lookup_key(value)
        if key is None:
            return None
        return self.entries.get(key)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class _Outcome:
    value: Any
    warning: str | None = None
    cause: str | None = None
    nesting: int = 0


def _failed(ref: str, reason: str, nesting: int = 0) -> _Outcome:
    message = f"{ref}: {reason}"
    return _Outcome(UNRESOLVED, message, cause=message, nesting=nesting)


def _propagated(ref: str, reason: str, dependency: _Outcome, sheet: str) -> _Outcome:
    message = f"{ref}: {reason}"
    cause = dependency.cause or message
    # causes on the resolved sheet are reported by their own cells
    if dependency.cause and not dependency.cause.startswith(_sheet_prefix(sheet)):
        message = f"{message} ({dependency.cause})"
    return _Outcome(UNRESOLVED, message, cause=cause, nesting=dependency.nesting + 1)


def _sheet_prefix(sheet: str) -> str:
    return cell_reference(sheet, 0, 0)[: -len("A1")]


class _DeferredCell(Exception):
    """Raised when recursion reaches the depth guard.

    The cell is then resolved on its own before the interrupted resolution
    is retried.
    """

    def __init__(self, sheet: Sheet, row_idx: int, col_idx: int) -> None:
        super().__init__(cell_reference(sheet.name, row_idx, col_idx))
        self.sheet = sheet
        self.row_idx = row_idx
        self.col_idx = col_idx
        self.key: CellKey = (sheet.name, row_idx, col_idx)


@dataclass
class _ChunkResult:
    start: int
    rows: list[tuple[Cell, ...]]
    warnings: list[str]
    resolved: int = 0
    unresolved: int = 0


@dataclass
class SheetResolution:
    """A resolved copy of a sheet plus what happened while resolving it."""

    sheet: Sheet
    warnings: list[str] = field(default_factory=list)
    formulas_resolved: int = 0
    formulas_unresolved: int = 0
    lookup_indices_built: int = 0


class LookupResolver:
    """Resolve lookup formulas for one target sheet of a workbook.

    A resolver owns the lookup indices and dependency memo for one run over
    one sheet. It is not meant to be shared between threads during the
    barrier phase; create one per sheet.
    """

    def __init__(
        self,
        workbook: Workbook,
        settings: Settings | None = None,
        *,
        max_depth: int | None = None,
        use_cached_values: bool | None = None,
    ) -> None:
        self._workbook = workbook
        self._settings = settings or app_settings
        self._max_depth = (
            max_depth if max_depth is not None else self._settings.max_resolution_depth
        )
        self._use_cached_values = (
            use_cached_values
            if use_cached_values is not None
            else self._settings.use_cached_formula_values
        )
        self._indices: dict[IndexKey, LookupIndex] = {}
        self._building: set[IndexKey] = set()
        self._memo: dict[CellKey, _Outcome] = {}
        self._visiting: set[CellKey] = set()
        self._target: Sheet | None = None

    @property
    def indices(self) -> Mapping[IndexKey, LookupIndex]:
        """Lookup indices built so far, keyed by ``(sheet, range)``."""
        return MappingProxyType(self._indices)

    def resolve_sheet(
        self,
        sheet: Sheet,
        *,
        parallel: bool | None = None,
        max_workers: int | None = None,
        chunk_size: int | None = None,
    ) -> SheetResolution:
        """Resolve every formula cell of ``sheet``.

        Args:
            sheet: Sheet to resolve. It is not modified.
            parallel: Force parallel or sequential row resolution. Defaults
                to the configured threshold policy.
            max_workers: Thread pool size override.
            chunk_size: Rows per chunk override.

        Returns:
            A SheetResolution whose sheet holds no unresolved formulas.
        """
        if sheet.is_resolved:
            logger.debug("Sheet already resolved", sheet=sheet.name)
            return SheetResolution(sheet=sheet)

        self._target = sheet
        workers = max_workers or self._settings.max_workers
        size = chunk_size or self._settings.chunk_size
        if parallel is None:
            parallel = (
                self._settings.enable_parallel
                and workers > 1
                and sheet.row_count >= self._settings.parallel_row_threshold
            )

        self._prepare(sheet)

        bounds = [
            (start, min(start + size, sheet.row_count))
            for start in range(0, sheet.row_count, size)
        ]
        if parallel and len(bounds) > 1:
            chunks = self._resolve_parallel(bounds, workers)
        else:
            chunks = [self._resolve_rows(start, end) for start, end in bounds]

        chunks.sort(key=lambda chunk: chunk.start)
        rows: list[tuple[Cell, ...]] = []
        warnings: list[str] = []
        resolved = unresolved = 0
        for chunk in chunks:
            rows.extend(chunk.rows)
            warnings.extend(chunk.warnings)
            resolved += chunk.resolved
            unresolved += chunk.unresolved

        logger.info(
            "Resolved sheet formulas",
            sheet=sheet.name,
            resolved=resolved,
            unresolved=unresolved,
            indices=len(self._indices),
            parallel=parallel,
        )
        return SheetResolution(
            sheet=sheet.with_rows(tuple(rows)),
            warnings=warnings,
            formulas_resolved=resolved,
            formulas_unresolved=unresolved,
            lookup_indices_built=len(self._indices),
        )

    # ------------------------------------------------------------------ #
    # Phase 1: barrier
    # ------------------------------------------------------------------ #

    def _prepare(self, sheet: Sheet) -> None:
        """Build indices and resolve everything lookups read, sequentially."""
        for row_idx, col_idx, cell in sheet.formula_cells():
            if cell.resolved or (sheet.name, row_idx, col_idx) in self._memo:
                continue
            try:
                formula = parse_lookup_formula(cell.raw_expression)
            except FormulaSyntaxError:
                continue
            if formula.match_mode is not MatchMode.EXACT:
                continue
            ref = cell_reference(sheet.name, row_idx, col_idx)
            self._settle(partial(self._prepare_lookup, sheet, formula, ref))

    def _prepare_lookup(self, sheet: Sheet, formula: LookupFormula, ref: str) -> None:
        try:
            index = self._index_for(formula, sheet, ref, depth=0, frozen=False)
            key = self._lookup_value(formula, sheet, ref, depth=0, frozen=False)
            if key.value is UNRESOLVED:
                return
            source_row = index.lookup(key.value)
            if source_row is not None:
                self._result_cell(index, formula, source_row, ref, depth=0, frozen=False)
        except FormulaResolutionError:
            # reported when the cell itself is evaluated
            return

    def _settle(self, resolve: Callable[[], None]) -> None:
        """Run ``resolve``, first resolving any cell deferred at the depth guard."""
        pending: list[_DeferredCell] = []
        while True:
            try:
                if not pending:
                    resolve()
                    return
                top = pending[-1]
                self._resolve_cell(top.sheet, top.row_idx, top.col_idx, 0, frozen=False)
                pending.pop()
            except _DeferredCell as deferred:
                if any(p.key == deferred.key for p in pending):
                    self._memo[deferred.key] = _failed(
                        str(deferred), "circular reference detected"
                    )
                else:
                    pending.append(deferred)

    def _index_for(
        self,
        formula: LookupFormula,
        current: Sheet,
        ref: str,
        depth: int,
        frozen: bool,
    ) -> LookupIndex:
        sheet = self._sheet_for(formula.reference_sheet or current.name, ref)
        key: IndexKey = (sheet.name, str(formula.reference_range))
        index = self._indices.get(key)
        if index is not None:
            return index
        if frozen:
            raise RuntimeError(f"Lookup index {key} was not built before row resolution")
        if key in self._building:
            raise FormulaResolutionError(
                ref, "circular reference detected in lookup table"
            )

        self._building.add(key)
        try:
            index = self._build_index(sheet, formula.reference_range, depth)
        finally:
            self._building.discard(key)
        self._indices[key] = index
        logger.debug(
            "Built lookup index",
            sheet=sheet.name,
            range=str(formula.reference_range),
            keys=len(index),
        )
        return index

    def _build_index(self, sheet: Sheet, range_ref: RangeRef, depth: int) -> LookupIndex:
        last_row = (
            range_ref.max_row if range_ref.max_row is not None else sheet.row_count - 1
        )
        entries: dict[Hashable, int] = {}
        nesting = 0
        for row_idx in range(range_ref.min_row, last_row + 1):
            outcome = self._safe_outcome(sheet, row_idx, range_ref.min_col, depth + 1)
            key = lookup_key(None if outcome.value is UNRESOLVED else outcome.value)
            if key is None or key in entries:
                continue
            entries[key] = row_idx
            nesting = max(nesting, outcome.nesting)
        return LookupIndex(
            sheet=sheet.name,
            range_ref=range_ref,
            entries=MappingProxyType(entries),
            nesting=nesting,
        )

    def _safe_outcome(self, sheet: Sheet, row_idx: int, col_idx: int, depth: int) -> _Outcome:
        try:
            return self._resolve_cell(sheet, row_idx, col_idx, depth, frozen=False)
        except FormulaResolutionError as exc:
            return _failed(exc.cell_ref, exc.reason)

    # ------------------------------------------------------------------ #
    # Cell evaluation
    # ------------------------------------------------------------------ #

    def _sheet_for(self, name: str, ref: str) -> Sheet:
        found = self._workbook.find_sheet(name)
        if found is None:
            if self._target is not None and self._target.name.casefold() == name.casefold():
                return self._target
            raise FormulaResolutionError(ref, f"reference sheet '{name}' not found")
        if self._target is not None and found.name == self._target.name:
            return self._target
        return found

    def _resolve_cell(
        self, sheet: Sheet, row_idx: int, col_idx: int, depth: int, frozen: bool
    ) -> _Outcome:
        """Resolve any cell to an outcome, memoizing formula results.

        Raises:
            FormulaResolutionError: If the cell is already being resolved
                further up the chain.
            _DeferredCell: If the recursion guard is reached; nothing on the
                interrupted chain is memoized.
        """
        cell = sheet.cell(row_idx, col_idx)
        if not isinstance(cell, FormulaCell):
            return _Outcome(display_value(cell))
        if cell.resolved:
            return _Outcome(cell.cached_display_value)

        key: CellKey = (sheet.name, row_idx, col_idx)
        memoized = self._memo.get(key)
        if memoized is not None:
            return memoized

        ref = cell_reference(sheet.name, row_idx, col_idx)
        if frozen:
            raise RuntimeError(f"Dependency {ref} was not resolved before row resolution")
        if key in self._visiting:
            raise FormulaResolutionError(ref, "circular reference detected")
        if depth > self._max_depth:
            raise _DeferredCell(sheet, row_idx, col_idx)

        self._visiting.add(key)
        try:
            outcome = self._evaluate(sheet, row_idx, col_idx, cell, depth, frozen)
        finally:
            self._visiting.discard(key)

        self._memo[key] = outcome
        return outcome

    def _evaluate(
        self,
        sheet: Sheet,
        row_idx: int,
        col_idx: int,
        cell: FormulaCell,
        depth: int,
        frozen: bool,
    ) -> _Outcome:
        ref = cell_reference(sheet.name, row_idx, col_idx)
        try:
            formula = parse_lookup_formula(cell.raw_expression)
        except FormulaSyntaxError as exc:
            if self._use_cached_values and cell.stored_value is not None:
                return _Outcome(cell.stored_value)
            error = FormulaResolutionError(ref, str(exc), formula=cell.raw_expression)
            return _failed(ref, error.reason)

        if formula.match_mode is not MatchMode.EXACT:
            return _failed(ref, "approximate match lookups are not supported")

        target = self._target.name if self._target is not None else sheet.name
        try:
            index = self._index_for(formula, sheet, ref, depth, frozen)
            key = self._lookup_value(formula, sheet, ref, depth, frozen)
            if key.value is UNRESOLVED:
                return _propagated(ref, "lookup value could not be resolved", key, target)

            source_row = index.lookup(key.value)
            if source_row is None:
                return _failed(ref, "lookup value not found")

            result = self._result_cell(index, formula, source_row, ref, depth, frozen)
        except FormulaResolutionError as exc:
            return _failed(ref, exc.reason)

        if result.value is UNRESOLVED:
            return _propagated(ref, "lookup result could not be resolved", result, target)

        nesting = 1 + max(key.nesting, result.nesting, index.nesting)
        if nesting > self._max_depth:
            return _failed(
                ref,
                f"formula nesting exceeds maximum depth of {self._max_depth}",
                nesting,
            )
        return _Outcome(result.value, nesting=nesting)

    def _lookup_value(
        self,
        formula: LookupFormula,
        sheet: Sheet,
        ref: str,
        depth: int,
        frozen: bool,
    ) -> _Outcome:
        value = formula.lookup_value
        if not isinstance(value, CellRef):
            return _Outcome(value)
        source = self._sheet_for(value.sheet or sheet.name, ref)
        return self._resolve_cell(source, value.row_idx, value.col_idx, depth + 1, frozen)

    def _result_cell(
        self,
        index: LookupIndex,
        formula: LookupFormula,
        source_row: int,
        ref: str,
        depth: int,
        frozen: bool,
    ) -> _Outcome:
        source = self._sheet_for(index.sheet, ref)
        col_idx = index.range_ref.min_col + formula.result_column_offset - 1
        return self._resolve_cell(source, source_row, col_idx, depth + 1, frozen)

    # ------------------------------------------------------------------ #
    # Phase 2: rows
    # ------------------------------------------------------------------ #

    def _resolve_parallel(
        self, bounds: list[tuple[int, int]], workers: int
    ) -> list[_ChunkResult]:
        tracker = ProgressTracker(
            logger,
            "Resolving row chunks",
            total=len(bounds),
            log_interval=max(1, len(bounds) // 10),
        )
        chunks: list[_ChunkResult] = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._resolve_rows, start, end) for start, end in bounds
            ]
            for future in as_completed(futures):
                chunks.append(future.result())
                tracker.update()
        tracker.complete()
        return chunks

    def _resolve_rows(self, start: int, end: int) -> _ChunkResult:
        """Resolve rows ``[start, end)`` of the target sheet (read-only)."""
        sheet = self._target
        assert sheet is not None
        chunk = _ChunkResult(start=start, rows=[], warnings=[])
        for row_idx in range(start, end):
            row = sheet.rows[row_idx]
            if not any(isinstance(cell, FormulaCell) for cell in row):
                chunk.rows.append(row)
                continue
            cells: list[Cell] = []
            for col_idx, cell in enumerate(row):
                if not isinstance(cell, FormulaCell) or cell.resolved:
                    cells.append(cell)
                    continue
                outcome = self._memo.get((sheet.name, row_idx, col_idx))
                if outcome is None:
                    outcome = self._evaluate(sheet, row_idx, col_idx, cell, 0, frozen=True)
                if outcome.warning:
                    chunk.warnings.append(outcome.warning)
                    chunk.unresolved += 1
                else:
                    chunk.resolved += 1
                cells.append(cell.with_display_value(outcome.value))
            chunk.rows.append(tuple(cells))
        return chunk
