"""Structured logging utilities for cascade import.

This module provides:
- Run ID tracking using contextvars for correlation across the pipeline
- Structured logging with consistent format and metadata
- Performance metrics logging helpers
- Progress tracking for chunked row resolution

Usage:
    from cascade_import.utils.logging import (
        get_logger,
        set_run_id,
        LogContext,
    )

    logger = get_logger(__name__)

    set_run_id("run-123")

    with LogContext(sheet="Cascade Fields"):
        logger.info("Resolving formulas")

    with timed_operation(logger, "lookup_resolution") as metrics:
        metrics.formulas_resolved = 42
"""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
_extra_context_var: ContextVar[dict[str, Any] | None] = ContextVar(
    "extra_context", default=None
)


def get_run_id() -> str | None:
    """Get the current run ID from context.

    Returns:
        The current run ID or None if not set.
    """
    return _run_id_var.get()


def set_run_id(run_id: str | None) -> None:
    """Set the run ID in context.

    Args:
        run_id: The run ID to set, or None to clear.
    """
    _run_id_var.set(run_id)


def get_extra_context() -> dict[str, Any]:
    """Get additional context from context vars."""
    ctx = _extra_context_var.get()
    return ctx if ctx is not None else {}


def set_extra_context(context: dict[str, Any]) -> None:
    """Set additional context in context vars."""
    _extra_context_var.set(context)


@dataclass
class PerformanceMetrics:
    """Container for performance metrics of one pipeline stage.

    Attributes:
        operation: Name of the operation being measured.
        start_time: When the operation started.
        end_time: When the operation ended.
        duration_seconds: Duration in seconds.
        rows_processed: Number of rows handled (if applicable).
        formulas_resolved: Number of formula cells resolved (if applicable).
        lookup_indices_built: Number of lookup indices built (if applicable).
    """

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    duration_seconds: float = 0.0
    rows_processed: int = 0
    formulas_resolved: int = 0
    lookup_indices_built: int = 0

    def finish(self) -> None:
        """Mark the operation as complete and calculate duration."""
        self.end_time = datetime.now(UTC)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_seconds": self.duration_seconds,
        }
        if self.rows_processed > 0:
            result["rows_processed"] = self.rows_processed
        if self.formulas_resolved > 0:
            result["formulas_resolved"] = self.formulas_resolved
        if self.lookup_indices_built > 0:
            result["lookup_indices_built"] = self.lookup_indices_built
        return result


class StructuredLogFormatter(logging.Formatter):
    """Log formatter that prefixes messages with context variables.

    Adds run_id and any LogContext values to each record, e.g.
    ``[run_id=abc sheet=Data] Resolving formulas``.
    """

    def format(self, record: logging.LogRecord) -> str:
        prefix_parts = []
        run_id = get_run_id()
        if run_id:
            prefix_parts.append(f"run_id={run_id}")

        for key, value in get_extra_context().items():
            prefix_parts.append(f"{key}={value}")

        prefix = f"[{' '.join(prefix_parts)}] " if prefix_parts else ""

        original_msg = record.msg
        record.msg = f"{prefix}{original_msg}"
        result = super().format(record)
        record.msg = original_msg

        return result


class StructuredLogger:
    """Enhanced logger with structured logging capabilities.

    Wraps a standard Python logger with additional methods for:
    - Logging with key-value pairs appended to the message
    - Performance metrics logging
    - Progress tracking
    """

    def __init__(self, name: str) -> None:
        """Initialize the structured logger.

        Args:
            name: Logger name (typically __name__ of the module).
        """
        self._logger = logging.getLogger(name)
        self._name = name

    def _build_message(
        self,
        message: str,
        **kwargs: Any,
    ) -> str:
        if not kwargs:
            return message

        parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {', '.join(parts)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a debug message."""
        self._logger.debug(self._build_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an info message."""
        self._logger.info(self._build_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message."""
        self._logger.warning(self._build_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log an error message.

        Args:
            message: Log message.
            exc_info: Whether to include exception info.
            **kwargs: Additional structured data.
        """
        self._logger.error(self._build_message(message, **kwargs), exc_info=exc_info)

    def log_performance(self, metrics: PerformanceMetrics) -> None:
        """Log performance metrics.

        Args:
            metrics: Performance metrics to log.
        """
        self.info(
            f"Performance: {metrics.operation}",
            **metrics.to_dict(),
        )

    def log_progress(
        self,
        stage: str,
        current: int,
        total: int,
        details: str | None = None,
    ) -> None:
        """Log progress for long-running operations.

        Args:
            stage: Current processing stage.
            current: Current progress count.
            total: Total items to process.
            details: Optional additional details.
        """
        percentage = (current / total * 100) if total > 0 else 0
        kwargs: dict[str, Any] = {
            "current": current,
            "total": total,
            "percentage": f"{percentage:.1f}%",
        }
        if details:
            kwargs["details"] = details
        self.info(f"Progress: {stage}", **kwargs)

    def log_sheet_result(
        self,
        sheet: str,
        total_rows: int,
        valid: int,
        invalid: int,
        skipped: int,
        warnings: int,
    ) -> None:
        """Log the outcome of processing one sheet.

        Args:
            sheet: Sheet name.
            total_rows: Records produced by the row mapper.
            valid: Records that passed validation.
            invalid: Records flagged invalid.
            skipped: Fully blank rows skipped.
            warnings: Number of warnings emitted for the sheet.
        """
        kwargs: dict[str, Any] = {
            "sheet": sheet,
            "total_rows": total_rows,
            "valid": valid,
            "invalid": invalid,
            "skipped": skipped,
            "warnings": warnings,
        }
        level = logging.WARNING if invalid else logging.INFO
        self._logger.log(level, self._build_message("Sheet processed", **kwargs))


class LogContext:
    """Context manager for adding temporary context to logs.

    Usage:
        with LogContext(run_id="123", sheet="Data"):
            logger.info("Processing...")  # Will include run_id and sheet
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize with context values.

        Args:
            **kwargs: Key-value pairs to add to log context.
        """
        self._new_context = kwargs
        self._old_context: dict[str, Any] = {}
        self._old_run_id: str | None = None

    def __enter__(self) -> "LogContext":
        self._old_context = get_extra_context().copy()
        self._old_run_id = get_run_id()

        run_id = self._new_context.pop("run_id", None)
        if run_id is not None:
            set_run_id(run_id)

        merged = self._old_context.copy()
        merged.update(self._new_context)
        set_extra_context(merged)

        return self

    def __exit__(self, *args: Any) -> None:
        set_extra_context(self._old_context)
        set_run_id(self._old_run_id)


@contextmanager
def timed_operation(
    logger: StructuredLogger,
    operation: str,
) -> Generator[PerformanceMetrics, None, None]:
    """Context manager for timing operations.

    Usage:
        with timed_operation(logger, "lookup_resolution") as metrics:
            metrics.formulas_resolved = 10

        # Automatically logs: "Performance: lookup_resolution | duration_seconds=..."

    Args:
        logger: Logger to use for output.
        operation: Name of the operation.

    Yields:
        PerformanceMetrics instance for tracking.
    """
    metrics = PerformanceMetrics(operation=operation)
    try:
        yield metrics
    finally:
        metrics.finish()
        logger.log_performance(metrics)


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    use_structured_formatter: bool = True,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (int or string like "INFO").
        format_string: Custom format string (uses default if None).
        use_structured_formatter: Whether to use the structured formatter.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stderr keeps stdout clean for the output collaborator
    handler = logging.StreamHandler()
    handler.setLevel(level)

    formatter: logging.Formatter
    if use_structured_formatter:
        formatter = StructuredLogFormatter(format_string)
    else:
        formatter = logging.Formatter(format_string)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    Args:
        name: Logger name (typically __name__).

    Returns:
        StructuredLogger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("Opened workbook", sheets=3)
    """
    return StructuredLogger(name)


class ProgressTracker:
    """Helper for tracking and logging progress of multi-step operations.

    Usage:
        tracker = ProgressTracker(logger, "Resolving row chunks", total=10)
        for chunk in chunks:
            resolve(chunk)
            tracker.update()
        tracker.complete()
    """

    def __init__(
        self,
        logger: StructuredLogger,
        stage: str,
        total: int,
        log_interval: int = 1,
    ) -> None:
        """Initialize the progress tracker.

        Args:
            logger: Logger to use.
            stage: Description of the stage being tracked.
            total: Total number of items.
            log_interval: Log every N updates (1 = every update).
        """
        self._logger = logger
        self._stage = stage
        self._total = total
        self._current = 0
        self._log_interval = log_interval
        self._start_time = time.time()

    def update(
        self,
        increment: int = 1,
        details: str | None = None,
    ) -> None:
        """Update progress.

        Args:
            increment: Number of items completed.
            details: Optional details about current item.
        """
        self._current += increment
        if self._current % self._log_interval == 0 or self._current == self._total:
            self._logger.log_progress(
                self._stage,
                self._current,
                self._total,
                details,
            )

    def complete(self) -> float:
        """Mark progress as complete.

        Returns:
            Total duration in seconds.
        """
        duration = time.time() - self._start_time
        self._logger.info(
            f"Completed: {self._stage}",
            total_items=self._total,
            duration_seconds=f"{duration:.2f}",
        )
        return duration
