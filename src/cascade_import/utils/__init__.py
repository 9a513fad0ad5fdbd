"""Utilities package for cascade import.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
"""

from cascade_import.utils.exceptions import (
    CascadeImportError,
    CellError,
    ConfigurationError,
    ErrorCode,
    FileError,
    FormulaResolutionError,
    RowError,
    SheetError,
    SheetNotFoundError,
    TypeConversionError,
)
from cascade_import.utils.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    get_run_id,
    set_run_id,
)

__all__ = [
    # Exceptions
    "CascadeImportError",
    "CellError",
    "ConfigurationError",
    "ErrorCode",
    "FileError",
    "FormulaResolutionError",
    "RowError",
    "SheetError",
    "SheetNotFoundError",
    "TypeConversionError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "get_run_id",
    "set_run_id",
]
