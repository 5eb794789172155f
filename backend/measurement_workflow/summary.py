"""
════════════════════════════════════════════════════════════════════════════════════════════════════
SUMMARY RECONCILER - Review, inline correction and final commit of a session
════════════════════════════════════════════════════════════════════════════════════════════════════

The summary lists every catalog field of the operation (visited or not) with
its recorded value. Corrections stay in memory until commit and can be
cancelled back to the recorded measurement.

Commit:
1. Persist corrections on all session records
2. Flatten the session into one record keyed "<field>_<operation>"
3. Deliver it to the pair-class or single-side-class sink
4. Mark the record(s) completed (plus terminal grade on the fail path)

A failed delivery is logged and, unless configured strict, does not block
local completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .catalog import FieldType, MeasurementField
from .config import DEFAULT_TERMINAL_GRADE
from .domain import RecordStatus
from .errors import DeliveryError, InvalidTransitionError, WorkflowValidationError
from .gateways import DeliveryResult, DeliverySink
from .navigator import Summary, WorkflowNavigator, check_value_shape, normalize_value
from .sync import FieldWrite, PairedWriteSynchronizer

logger = logging.getLogger(__name__)

SKIPPED = "SKIPPED"


def display_value(field: MeasurementField, value: Optional[str], skipped: bool) -> str:
    """Operator-facing rendering of a recorded value."""
    if skipped or value is None:
        return SKIPPED
    if field.field_type == FieldType.NUMERIC:
        return f"{value} {field.unit or ''}".strip()
    return value.upper()


@dataclass
class FieldCorrection:
    field_id: str
    value: Optional[str]
    skipped: bool = False


@dataclass
class SummaryRow:
    field: MeasurementField
    value: Optional[str]
    skipped: bool
    visible: bool
    corrected: bool = False

    @property
    def display(self) -> str:
        return display_value(self.field, self.value, self.skipped)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_id": self.field.id,
            "name": self.field.name,
            "display_name": self.field.display_name,
            "field_type": self.field.field_type.value,
            "unit": self.field.unit,
            "value": self.value,
            "skipped": self.skipped,
            "display": self.display,
            "visible": self.visible,
            "corrected": self.corrected,
        }


@dataclass
class CommitResult:
    record: Dict[str, Any]
    delivery: DeliveryResult
    completed: bool
    record_ids: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record,
            "delivery": self.delivery.to_dict(),
            "completed": self.completed,
            "record_ids": self.record_ids,
        }


class SummaryReconciler:

    def __init__(
        self,
        synchronizer: PairedWriteSynchronizer,
        sink: Optional[DeliverySink],
        complete_on_delivery_failure: bool = True,
        terminal_grade: str = DEFAULT_TERMINAL_GRADE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.synchronizer = synchronizer
        self.sink = sink
        self.complete_on_delivery_failure = complete_on_delivery_failure
        self.terminal_grade = terminal_grade
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ─────────────────────────────────────────────────────────────────────────
    # Review
    # ─────────────────────────────────────────────────────────────────────────

    def _effective(self, nav: WorkflowNavigator, field: MeasurementField) -> FieldCorrection:
        correction = nav.corrections.get(field.id)
        if correction is not None:
            return correction
        m = nav.measurements.get(field.id)
        if m is None:
            return FieldCorrection(field.id, None, skipped=False)
        return FieldCorrection(field.id, m.value, m.skipped)

    def rows(self, nav: WorkflowNavigator) -> List[SummaryRow]:
        visible_ids = {f.id for f in nav.visible_fields}
        rows = []
        for field in nav.operation.fields:
            effective = self._effective(nav, field)
            rows.append(SummaryRow(
                field=field,
                value=effective.value,
                skipped=effective.skipped,
                visible=field.id in visible_ids,
                corrected=field.id in nav.corrections,
            ))
        return rows

    def _summary_field(self, nav: WorkflowNavigator, field_id: str) -> MeasurementField:
        if not isinstance(nav.state, Summary):
            raise InvalidTransitionError("Corrections are only possible from the summary")
        field = nav.operation.field_by_id(field_id)
        if field is None:
            raise WorkflowValidationError(f"Unknown field {field_id} for {nav.operation.name}")
        return field

    def correct(
        self,
        nav: WorkflowNavigator,
        field_id: str,
        value: Any = None,
        skipped: bool = False,
    ) -> SummaryRow:
        """Stage an inline correction; nothing is written until commit."""
        field = self._summary_field(nav, field_id)
        if skipped:
            correction = FieldCorrection(field.id, None, skipped=True)
        else:
            text = normalize_value(value)
            if field.required and not text:
                raise WorkflowValidationError(f"{field.display_name} is required", field.name)
            if text:
                check_value_shape(field, text)
            correction = FieldCorrection(field.id, text, skipped=False)

        nav.corrections[field.id] = correction
        return self._row(nav, field)

    def cancel_correction(self, nav: WorkflowNavigator, field_id: str) -> SummaryRow:
        """Revert a field to its recorded measurement."""
        field = self._summary_field(nav, field_id)
        nav.corrections.pop(field.id, None)
        return self._row(nav, field)

    def _row(self, nav: WorkflowNavigator, field: MeasurementField) -> SummaryRow:
        effective = self._effective(nav, field)
        return SummaryRow(
            field=field,
            value=effective.value,
            skipped=effective.skipped,
            visible=any(f.id == field.id for f in nav.visible_fields),
            corrected=field.id in nav.corrections,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Flatten & commit
    # ─────────────────────────────────────────────────────────────────────────

    def flatten(self, nav: WorkflowNavigator, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Single flat record for downstream systems."""
        now = now or self._clock()
        op = nav.operation.name
        primary = nav.units.primary

        record: Dict[str, Any] = {
            "ski_record_id": primary.id,
            "serial_number": primary.serial_number,
            "sku": primary.sku or None,
        }
        if not nav.units.is_pair:
            record["side"] = primary.side.value
        record.update({
            "operation_id": primary.operation_id,
            f"operator_{op}": primary.operator_initials,
            f"timestamp_{op}": now.isoformat(),
            f"date_{op}": now.strftime("%d/%m/%Y"),
            f"time_{op}": now.strftime("%H:%M:%S"),
            "comment": nav.comment or None,
            "created_at": primary.created_at.isoformat() if primary.created_at else None,
        })
        if nav.is_fail:
            record["ski_fail"] = True
            record["qc_grade_final_qc"] = self.terminal_grade

        for field in nav.operation.fields:
            effective = self._effective(nav, field)
            record[f"{field.name}_{op}"] = SKIPPED if effective.skipped else effective.value

        return record

    def commit(self, nav: WorkflowNavigator) -> CommitResult:
        record_ids = nav.record_ids

        if nav.corrections:
            writes = [
                FieldWrite(c.field_id, c.value, c.skipped)
                for c in nav.corrections.values()
            ]
            written = self.synchronizer.write_many(writes, record_ids)
            for m in written:
                if m.record_id == nav.units.primary.id:
                    nav.measurements[m.field_id] = m
            logger.info(f"Session {nav.session_id}: persisted {len(writes)} correction(s)")
            nav.corrections.clear()

        record = self.flatten(nav)

        if self.sink is None:
            delivery = DeliveryResult(ok=False, error="No delivery sink configured")
        else:
            delivery = self.sink.deliver(record, nav.units.is_pair)

        if not delivery.ok:
            logger.warning(
                f"Summary delivery failed for {nav.units.primary.serial_number} "
                f"({nav.operation.name}): {delivery.error}"
            )
            if not self.complete_on_delivery_failure:
                raise DeliveryError(
                    f"Summary delivery failed: {delivery.error}", status_code=delivery.status_code
                )

        changes: Dict[str, Any] = {"status": RecordStatus.COMPLETED}
        if nav.is_fail:
            changes["grade"] = self.terminal_grade
        self.synchronizer.update_records(record_ids, changes)

        logger.info(
            f"Completed {nav.operation.name} for {nav.units.primary.serial_number} "
            f"({'fail' if nav.is_fail else 'ok'}, delivered={delivery.ok})"
        )
        return CommitResult(record=record, delivery=delivery, completed=True, record_ids=list(record_ids))
