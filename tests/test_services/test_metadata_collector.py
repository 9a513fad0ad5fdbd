"""Tests for processing metadata accumulation."""

import threading

import pytest
from pydantic import ValidationError

from cascade_import.services.metadata_collector import MetadataCollector


def test_sheet_counts_accumulate() -> None:
    collector = MetadataCollector()
    collector.record_sheet("A", valid=3, invalid=1, skipped=2, formulas_resolved=4)
    collector.record_sheet(
        "B", valid=2, invalid=0, formulas_unresolved=1, lookup_indices_built=1
    )

    metadata = collector.finalize()

    assert metadata.total_rows_processed == 6
    assert metadata.valid_records == 5
    assert metadata.invalid_records == 1
    assert metadata.skipped_rows == 2
    assert metadata.sheets_processed == ("A", "B")
    assert metadata.formulas_resolved == 4
    assert metadata.formulas_unresolved == 1
    assert metadata.lookup_indices_built == 1
    assert metadata.processing_time_ms >= 0


def test_warnings_keep_emission_order() -> None:
    collector = MetadataCollector()
    collector.add_warning("first")
    collector.add_warnings(["second", "third"])

    assert collector.finalize().warnings == ("first", "second", "third")


def test_finalized_metadata_is_frozen() -> None:
    collector = MetadataCollector()
    metadata = collector.finalize()

    with pytest.raises(ValidationError):
        metadata.valid_records = 10  # type: ignore[misc]
    with pytest.raises(RuntimeError, match="finalized"):
        collector.add_warning("late")
    assert collector.finalize() is metadata


def test_concurrent_updates_are_not_lost() -> None:
    collector = MetadataCollector()

    def work() -> None:
        for _ in range(200):
            collector.record_sheet("S", valid=1, invalid=1)
            collector.add_warning("w")

    threads = [threading.Thread(target=work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    metadata = collector.finalize()
    assert metadata.total_rows_processed == 1600
    assert metadata.valid_records + metadata.invalid_records == 1600
    assert len(metadata.warnings) == 800
