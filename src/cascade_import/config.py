"""Configuration management for cascade import.

This module provides centralized configuration using pydantic-settings.
All configuration options can be set via environment variables with the
CASCADE_ prefix, or via a .env file in the project root.

Environment Variables:
    CASCADE_HEADER_ROW: Zero-based index of the header row (default: 0)
    CASCADE_KEY_COLUMNS: Comma-separated composite key columns
        (default: main_value,sub_value,major_value,minor_value)
    CASCADE_EMPTY_AS_EMPTY_STRING: Map empty cells to "" instead of null (default: false)
    CASCADE_STRIP_TEXT: Trim text values, treating blank text as empty (default: true)
    CASCADE_COUNT_BLANK_ROWS_AS_INVALID: Emit blank rows as invalid records (default: false)
    CASCADE_MAX_RESOLUTION_DEPTH: Max nesting depth for formula resolution (default: 32)
    CASCADE_ENABLE_PARALLEL: Allow parallel row resolution (default: true)
    CASCADE_PARALLEL_ROW_THRESHOLD: Min rows before resolving in parallel (default: 2000)
    CASCADE_MAX_WORKERS: Worker threads for sheets and row chunks (default: 4)
    CASCADE_CHUNK_SIZE: Rows per parallel resolution chunk (default: 500)
    CASCADE_USE_CACHED_FORMULA_VALUES: Fall back to the value stored in the
        file for formulas that are not lookups (default: false)
    CASCADE_MAX_FILE_SIZE_MB: Maximum workbook size in MB (default: 100)
    CASCADE_LOG_LEVEL: Logging level (default: INFO)
    CASCADE_DEBUG: Log at DEBUG with tracebacks for failed runs (default: false)
"""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KEY_COLUMNS = "main_value,sub_value,major_value,minor_value"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Example .env file:
        CASCADE_HEADER_ROW=1
        CASCADE_KEY_COLUMNS=code,region
        CASCADE_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="CASCADE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Row Mapping Settings
    # =========================================================================

    header_row: int = 0
    """Zero-based index of the row holding column headers."""

    empty_as_empty_string: bool = False
    """Represent empty cells as "" rather than None in records."""

    strip_text: bool = True
    """Trim surrounding whitespace from text cells; blank text becomes empty."""

    count_blank_rows_as_invalid: bool = False
    """Emit fully blank rows as invalid records instead of skipping them."""

    # =========================================================================
    # Validation Settings
    # =========================================================================

    key_columns: str = DEFAULT_KEY_COLUMNS
    """Comma-separated header names forming the composite key."""

    # =========================================================================
    # Formula Resolution Settings
    # =========================================================================

    max_resolution_depth: int = 32
    """Maximum nesting depth when a lookup depends on other formulas."""

    use_cached_formula_values: bool = False
    """Use the workbook's stored value for formulas that are not lookups."""

    # =========================================================================
    # Concurrency Settings
    # =========================================================================

    enable_parallel: bool = True
    """Allow row chunks and sheets to be processed on worker threads."""

    parallel_row_threshold: int = 2000
    """Minimum sheet row count before row resolution runs in parallel."""

    max_workers: int = 4
    """Thread pool size for parallel work."""

    chunk_size: int = 500
    """Number of rows per parallel resolution chunk."""

    # =========================================================================
    # File Settings
    # =========================================================================

    max_file_size_mb: int = 100
    """Maximum workbook size in megabytes."""

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Log at DEBUG and include tracebacks for failed runs."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator("header_row")
    @classmethod
    def validate_header_row(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"header_row must be at least 0, got {v}")
        return v

    @field_validator("key_columns")
    @classmethod
    def validate_key_columns(cls, v: str) -> str:
        """Validate at least one key column is named."""
        if not [c for c in v.split(",") if c.strip()]:
            raise ValueError("key_columns must name at least one column")
        return v

    @field_validator("max_resolution_depth")
    @classmethod
    def validate_resolution_depth(cls, v: int) -> int:
        """Keep nested resolution well inside the interpreter recursion limit."""
        if not 1 <= v <= 128:
            raise ValueError(
                f"max_resolution_depth must be between 1 and 128, got {v}"
            )
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if not 1 <= v <= 64:
            raise ValueError(f"max_workers must be between 1 and 64, got {v}")
        return v

    @field_validator("chunk_size", "parallel_row_threshold")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be at least 1, got {v}")
        return v

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        """Validate file size is positive and reasonable."""
        if not 1 <= v <= 2048:
            raise ValueError(f"max_file_size_mb must be between 1 and 2048, got {v}")
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def key_columns_list(self) -> list[str]:
        """Get composite key columns as a list, in configured order."""
        return [c.strip() for c in self.key_columns.split(",") if c.strip()]

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module.

        Debug mode always logs at DEBUG.
        """
        if self.debug:
            return logging.DEBUG
        level: int = getattr(logging, self.log_level)
        return level


def validate_settings_on_startup(s: Settings) -> None:
    """Log warnings for settings combinations that are legal but suspicious.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    if s.enable_parallel and s.max_workers == 1:
        logger.warning(
            "Parallel resolution is enabled with a single worker; "
            "set CASCADE_MAX_WORKERS above 1 or disable CASCADE_ENABLE_PARALLEL."
        )

    if s.chunk_size > s.parallel_row_threshold:
        logger.warning(
            "CASCADE_CHUNK_SIZE exceeds CASCADE_PARALLEL_ROW_THRESHOLD; "
            "parallel sheets near the threshold will run as a single chunk."
        )

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"header_row={s.header_row}, key_columns={s.key_columns_list}, "
        f"max_workers={s.max_workers}"
    )


settings = Settings()
