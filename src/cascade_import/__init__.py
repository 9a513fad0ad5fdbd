"""Cascade Import - workbook extraction with cross-sheet lookup resolution."""

import sys

from cascade_import.models import (
    ProcessingMetadata,
    ProcessingResult,
    Record,
    SheetSelection,
)
from cascade_import.services.extraction_pipeline import (
    ExtractionOptions,
    ExtractionPipeline,
    extract_workbook,
)

__all__ = [
    "ExtractionOptions",
    "ExtractionPipeline",
    "ProcessingMetadata",
    "ProcessingResult",
    "Record",
    "SheetSelection",
    "extract_workbook",
]
__version__ = "0.1.0"


def main(argv: list[str] | None = None) -> int:
    """Extract a workbook and print a summary of the run."""
    from cascade_import.config import settings, validate_settings_on_startup
    from cascade_import.utils.logging import configure_logging

    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Usage: cascade-import <path/to/workbook.xlsx> [sheet ...]", file=sys.stderr)
        return 2

    configure_logging(settings.log_level_int)
    validate_settings_on_startup(settings)
    options = ExtractionOptions(sheet_names=args[1:] or None)
    result = extract_workbook(args[0], options)
    print(result.summary())
    return 0 if result.success else 1
