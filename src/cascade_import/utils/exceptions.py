"""Centralized exception classes for cascade import.

This module provides a hierarchy of custom exceptions with error codes,
a fatal/recoverable classification, and structured error details for
consistent error handling throughout the extraction pipeline.

Exception Hierarchy:
    CascadeImportError (base)
    ├── FileError                      (fatal)
    │   ├── WorkbookFileNotFoundError
    │   ├── FileAccessDeniedError
    │   ├── FileTooLargeError
    │   ├── InvalidFileFormatError
    │   └── FileCorruptedError
    ├── SheetError                     (fatal)
    │   ├── SheetNotFoundError
    │   └── NoSheetsFoundError
    ├── CellError                      (recoverable)
    │   ├── FormulaResolutionError
    │   └── TypeConversionError
    ├── RowError                       (recoverable)
    │   ├── DuplicateKeyError
    │   └── MissingKeyFieldError
    └── ConfigurationError

Fatal errors abort the run and are surfaced as the error result. Recoverable
errors are caught at the cell or row boundary and turned into warnings.

Error Codes:
    All errors have a unique error code (e.g., "E1001") that callers can map
    to exit codes or messages.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used in the application.

    Error codes are grouped by category:
    - E1xxx: File errors
    - E2xxx: Sheet selection errors
    - E3xxx: Cell-level errors
    - E4xxx: Row-level errors
    - E9xxx: Internal/configuration errors
    """

    # File errors (E1xxx)
    FILE_NOT_FOUND = "E1001"
    FILE_ACCESS_DENIED = "E1002"
    INVALID_FILE_FORMAT = "E1003"
    FILE_CORRUPTED = "E1004"
    FILE_TOO_LARGE = "E1005"

    # Sheet errors (E2xxx)
    SHEET_NOT_FOUND = "E2001"
    NO_SHEETS_FOUND = "E2002"

    # Cell errors (E3xxx)
    FORMULA_RESOLUTION_FAILED = "E3001"
    TYPE_CONVERSION_FAILED = "E3002"

    # Row errors (E4xxx)
    DUPLICATE_KEY = "E4001"
    MISSING_KEY_FIELD = "E4002"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    CONFIGURATION_ERROR = "E9002"


class CascadeImportError(Exception):
    """Base exception for all cascade import errors.

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        fatal: Whether the error aborts the whole run.
    """

    fatal: bool = True

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Error code from ErrorCode enum.
            details: Optional additional details about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    @property
    def kind(self) -> str:
        """Short error kind name (the class name without the Error suffix)."""
        name = type(self).__name__
        return name[:-5] if name.endswith("Error") else name

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for the output collaborator.

        Returns:
            Dictionary with error information.
        """
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "kind": self.kind,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# File Errors (E1xxx)
# =============================================================================


class FileError(CascadeImportError):
    """Base class for file-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_FILE_FORMAT,
        file_path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with file path information.

        Args:
            message: Error message.
            error_code: Error code.
            file_path: Path to the problematic file.
            details: Additional details.
        """
        details = details or {}
        if file_path:
            details["file_path"] = file_path
        super().__init__(message, error_code, details)
        self.file_path = file_path


class WorkbookFileNotFoundError(FileError):
    """Raised when the source workbook does not exist.

    Note: Named WorkbookFileNotFoundError to avoid shadowing built-in
    FileNotFoundError.
    """

    def __init__(
        self,
        file_path: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = message or f"File not found: {file_path}"
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_NOT_FOUND,
            file_path=file_path,
            details=details,
        )


class FileAccessDeniedError(FileError):
    """Raised when the workbook exists but cannot be read."""

    def __init__(
        self,
        file_path: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = message or f"Permission denied reading file: {file_path}"
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_ACCESS_DENIED,
            file_path=file_path,
            details=details,
        )


class FileTooLargeError(FileError):
    """Raised when a workbook exceeds the configured size limit."""

    def __init__(
        self,
        file_size: int,
        max_size: int,
        file_path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with size information.

        Args:
            file_size: Actual file size in bytes.
            max_size: Maximum allowed size in bytes.
            file_path: Optional file path.
            details: Additional details.
        """
        details = details or {}
        details["file_size_bytes"] = file_size
        details["max_size_bytes"] = max_size
        message = (
            f"File size ({file_size} bytes) exceeds maximum "
            f"allowed size ({max_size} bytes)"
        )
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_TOO_LARGE,
            file_path=file_path,
            details=details,
        )
        self.file_size = file_size
        self.max_size = max_size


class InvalidFileFormatError(FileError):
    """Raised when the file is not a workbook format we can open."""

    def __init__(
        self,
        message: str,
        extension: str | None = None,
        file_path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with format information.

        Args:
            message: Error message.
            extension: File extension that was rejected.
            file_path: Optional file path.
            details: Additional details.
        """
        details = details or {}
        if extension is not None:
            details["extension"] = extension
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_FILE_FORMAT,
            file_path=file_path,
            details=details,
        )
        self.extension = extension


class FileCorruptedError(FileError):
    """Raised when a workbook has the right format but cannot be parsed."""

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        cause: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if cause:
            details["cause"] = cause
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_CORRUPTED,
            file_path=file_path,
            details=details,
        )


# =============================================================================
# Sheet Errors (E2xxx)
# =============================================================================


class SheetError(CascadeImportError):
    """Base class for sheet selection errors."""


class SheetNotFoundError(SheetError):
    """Raised when a requested sheet does not exist in the workbook.

    Carries the full list of available sheet names, in file order, so the
    caller can self-diagnose.
    """

    def __init__(
        self,
        requested: str | int,
        available: list[str],
        file_path: str | None = None,
    ) -> None:
        """Initialize with the requested and available sheets.

        Args:
            requested: Sheet name or index that was requested.
            available: Sheet names present in the workbook, in file order.
            file_path: Optional workbook path.
        """
        details: dict[str, Any] = {
            "requested": requested,
            "available": list(available),
        }
        if file_path:
            details["file_path"] = file_path
        super().__init__(
            f"Sheet '{requested}' not found. Available sheets: {list(available)}",
            ErrorCode.SHEET_NOT_FOUND,
            details,
        )
        self.requested = requested
        self.available = list(available)


class NoSheetsFoundError(SheetError):
    """Raised when a workbook contains no worksheets."""

    def __init__(self, file_path: str | None = None) -> None:
        details: dict[str, Any] = {"file_path": file_path} if file_path else {}
        super().__init__(
            "Workbook contains no worksheets",
            ErrorCode.NO_SHEETS_FOUND,
            details,
        )


# =============================================================================
# Cell Errors (E3xxx) - recoverable
# =============================================================================


class CellError(CascadeImportError):
    """Base class for per-cell errors.

    The message is prefixed with the cell reference so it can be used
    directly as a processing warning.
    """

    fatal = False

    def __init__(
        self,
        cell_ref: str,
        reason: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["cell"] = cell_ref
        super().__init__(f"{cell_ref}: {reason}", error_code, details)
        self.cell_ref = cell_ref
        self.reason = reason


class FormulaResolutionError(CellError):
    """Raised when a formula cell cannot be resolved to a display value."""

    def __init__(
        self,
        cell_ref: str,
        reason: str,
        formula: str | None = None,
    ) -> None:
        details = {"formula": formula} if formula else None
        super().__init__(
            cell_ref, reason, ErrorCode.FORMULA_RESOLUTION_FAILED, details
        )
        self.formula = formula


class TypeConversionError(CellError):
    """Raised when a cell value cannot be converted to a supported scalar."""

    def __init__(self, cell_ref: str, value: Any) -> None:
        super().__init__(
            cell_ref,
            f"unsupported cell value {value!r} converted to empty",
            ErrorCode.TYPE_CONVERSION_FAILED,
            {"value": repr(value)},
        )
        self.value = value


# =============================================================================
# Row Errors (E4xxx) - recoverable
# =============================================================================


class RowError(CascadeImportError):
    """Base class for per-row validation errors."""

    fatal = False

    def __init__(
        self,
        row_number: int,
        reason: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["row_number"] = row_number
        super().__init__(f"Row {row_number}: {reason}", error_code, details)
        self.row_number = row_number
        self.reason = reason


class DuplicateKeyError(RowError):
    """Raised when a record repeats a composite key already seen."""

    def __init__(self, row_number: int, key: tuple[Any, ...]) -> None:
        super().__init__(
            row_number,
            "duplicate composite key found",
            ErrorCode.DUPLICATE_KEY,
            {"key": list(key)},
        )
        self.key = key


class MissingKeyFieldError(RowError):
    """Raised when a record has an empty composite key field."""

    def __init__(self, row_number: int, missing_fields: list[str]) -> None:
        super().__init__(
            row_number,
            "missing required key field",
            ErrorCode.MISSING_KEY_FIELD,
            {"missing_fields": missing_fields},
        )
        self.missing_fields = missing_fields


# =============================================================================
# Internal Errors (E9xxx)
# =============================================================================


class ConfigurationError(CascadeImportError):
    """Raised when extraction options are inconsistent."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if setting:
            details["setting"] = setting
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)
        self.setting = setting
