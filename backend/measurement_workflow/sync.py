"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PAIRED-WRITE SYNCHRONIZER - Fan-out of measurement writes to one or two unit records
════════════════════════════════════════════════════════════════════════════════════════════════════

One upsert per target record, keyed on (record_id, field_id), run in parallel
and joined before returning. The write succeeds only if every target succeeds;
otherwise WriteError names the failing records. Not transactional: a partial
failure may leave one side written, which is harmless because a retry upserts
the same rows again.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .domain import Measurement
from .errors import WriteError
from .stores import MeasurementStore, UnitRecordStore

logger = logging.getLogger(__name__)


@dataclass
class FieldWrite:
    field_id: str
    value: Optional[str]
    skipped: bool = False


class PairedWriteSynchronizer:

    def __init__(
        self,
        measurements: MeasurementStore,
        records: UnitRecordStore,
        max_workers: int = 4,
    ):
        self.measurements = measurements
        self.records = records
        self.max_workers = max(1, max_workers)

    def write(
        self,
        field_id: str,
        value: Optional[str],
        skipped: bool,
        record_ids: Sequence[str],
    ) -> List[Measurement]:
        """Upsert one field on every target record."""
        return self.write_many([FieldWrite(field_id, value, skipped)], record_ids)

    def write_many(self, writes: Sequence[FieldWrite], record_ids: Sequence[str]) -> List[Measurement]:
        """Upsert several fields on every target record, all in one parallel batch."""
        tasks = [
            (record_id, w)
            for w in writes
            for record_id in record_ids
        ]
        if not tasks:
            return []

        def _upsert(task):
            record_id, w = task
            value = None if w.skipped else w.value
            return self.measurements.upsert(record_id, w.field_id, value, w.skipped)

        results = self._run_all(_upsert, tasks, [record_id for record_id, _ in tasks])
        return results

    def update_records(self, record_ids: Sequence[str], changes: Dict[str, Any]) -> None:
        """Apply the same column changes (status, grade, comment) to every record."""
        self.records.update(list(record_ids), changes)

    def _run_all(self, fn: Callable[[Any], Any], tasks: List[Any], record_ids: List[str]) -> List[Any]:
        workers = min(self.max_workers, len(tasks))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(fn, task) for task in tasks]

            results = []
            failed: List[str] = []
            errors: List[str] = []
            for future, record_id in zip(futures, record_ids):
                try:
                    results.append(future.result())
                except Exception as e:
                    failed.append(record_id)
                    errors.append(str(e))

        if failed:
            failed_ids = sorted(set(failed))
            logger.error(f"Paired write failed on {failed_ids}: {errors[0]}")
            raise WriteError(f"Write failed on record(s) {', '.join(failed_ids)}: {errors[0]}", failed_ids)

        return results
