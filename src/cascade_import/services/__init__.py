"""Services for cascade workbook extraction."""

from cascade_import.services.extraction_pipeline import (
    ExtractionOptions,
    ExtractionPipeline,
    extract_workbook,
)
from cascade_import.services.lookup_resolver import LookupIndex, LookupResolver
from cascade_import.services.workbook_loader import WorkbookLoader, select_sheets

__all__ = [
    "ExtractionOptions",
    "ExtractionPipeline",
    "LookupIndex",
    "LookupResolver",
    "WorkbookLoader",
    "extract_workbook",
    "select_sheets",
]
