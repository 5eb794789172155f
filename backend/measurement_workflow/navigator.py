"""
════════════════════════════════════════════════════════════════════════════════════════════════════
WORKFLOW NAVIGATOR - Guided field-by-field session over one operation
════════════════════════════════════════════════════════════════════════════════════════════════════

One navigator drives one session: the operator answers the visible fields one
at a time, and every accepted answer is written to the unit record(s) before
the cursor moves.

States (explicit tagged variants):
- Answering(cursor)           → operator is on visible field `cursor`
- WaxOilPrompt(pending_cursor) → reminder after the wax/oil trigger field
- FailConfirm(cursor)         → operator asked to declare the unit failed
- Summary(is_fail, last_cursor) → review before the final commit

Rules:
- The visible list is recomputed after each write; the next cursor is the
  position of the just-answered field in the refreshed list, plus one.
- A failed write leaves the state untouched; retrying rewrites the same rows.
- One transition at a time per session (duplicate submissions are rejected).
"""

from __future__ import annotations

import functools
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Union

from .catalog import FieldType, MeasurementField, Operation
from .comments import CommentDebouncer
from .config import DEFAULT_TERMINAL_GRADE, DEFAULT_WAX_OIL_TRIGGER_FIELD
from .domain import Measurement
from .errors import InvalidTransitionError, SessionBusyError, WorkflowValidationError
from .pairing import OpenedUnits
from .stores import MeasurementStore
from .sync import FieldWrite, PairedWriteSynchronizer
from .visibility import index_of, measurements_by_field, resolve_visible_fields

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# STATES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Answering:
    name: ClassVar[str] = "answering"
    cursor: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.name, "cursor": self.cursor}


@dataclass(frozen=True)
class WaxOilPrompt:
    name: ClassVar[str] = "wax_oil_prompt"
    pending_cursor: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.name, "pending_cursor": self.pending_cursor}


@dataclass(frozen=True)
class FailConfirm:
    name: ClassVar[str] = "fail_confirm"
    cursor: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.name, "cursor": self.cursor}


@dataclass(frozen=True)
class Summary:
    name: ClassVar[str] = "summary"
    is_fail: bool = False
    last_cursor: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.name, "is_fail": self.is_fail, "last_cursor": self.last_cursor}


SessionState = Union[Answering, WaxOilPrompt, FailConfirm, Summary]


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE CHECKS
# ═══════════════════════════════════════════════════════════════════════════════

def check_value_shape(field: MeasurementField, text: str) -> None:
    """Reject a non-empty value that does not fit the field type."""
    if field.field_type == FieldType.NUMERIC:
        try:
            number = float(text)
        except ValueError:
            raise WorkflowValidationError(f"{field.display_name} must be a number", field.name)
        if not math.isfinite(number):
            raise WorkflowValidationError(f"{field.display_name} must be a finite number", field.name)
        return

    choices = field.choices()
    if choices and text not in choices:
        raise WorkflowValidationError(
            f"{field.display_name} must be one of {', '.join(choices)}", field.name
        )


def normalize_value(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _exclusive(method):
    """Run a transition under the session's busy guard."""
    @functools.wraps(method)
    def wrapper(self: "WorkflowNavigator", *args, **kwargs):
        if not self._busy.acquire(blocking=False):
            raise SessionBusyError(f"Session {self.session_id} is busy, try again")
        try:
            if self.closed:
                raise InvalidTransitionError(f"Session {self.session_id} is closed")
            self.last_activity = datetime.now(timezone.utc)
            return method(self, *args, **kwargs)
        finally:
            self._busy.release()
    return wrapper


# ═══════════════════════════════════════════════════════════════════════════════
# NAVIGATOR
# ═══════════════════════════════════════════════════════════════════════════════

class WorkflowNavigator:
    """
    State machine for one measurement session.

    Usage:
        nav = WorkflowNavigator(session_id, operation, units, synchronizer, store)
        nav.validate("12.5")   # Answering(0) → Answering(1)
        nav.skip()
        nav.request_fail(); nav.confirm_fail()   # → Summary(is_fail=True)
        nav.complete()          # delegates to the summary reconciler
    """

    def __init__(
        self,
        session_id: str,
        operation: Operation,
        units: OpenedUnits,
        synchronizer: PairedWriteSynchronizer,
        measurement_store: MeasurementStore,
        reconciler: Any = None,
        comment_debouncer: Optional[CommentDebouncer] = None,
        initial_comment: str = "",
        wax_oil_trigger_field: str = DEFAULT_WAX_OIL_TRIGGER_FIELD,
        terminal_grade: str = DEFAULT_TERMINAL_GRADE,
        transitive_visibility: bool = False,
    ):
        self.session_id = session_id
        self.operation = operation
        self.units = units
        self.synchronizer = synchronizer
        self.reconciler = reconciler
        self.comment_debouncer = comment_debouncer
        self.comment = initial_comment
        self.wax_oil_trigger_field = wax_oil_trigger_field
        self.terminal_grade = terminal_grade
        self.transitive_visibility = transitive_visibility

        self.created_at = datetime.now(timezone.utc)
        self.last_activity = self.created_at
        self.closed = False
        self.corrections: Dict[str, Any] = {}
        self.last_commit: Any = None
        self._busy = threading.Lock()

        self.measurements: Dict[str, Measurement] = measurements_by_field(
            measurement_store.query(units.primary.id)
        )
        self.visible_fields = self._resolve(self.measurements)
        self.state: SessionState = Answering(0) if self.visible_fields else Summary(False, 0)
        self.input_value = self._recorded_text(self.current_field)

    # ─────────────────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def record_ids(self) -> List[str]:
        return self.units.record_ids

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    @property
    def current_field(self) -> Optional[MeasurementField]:
        if isinstance(self.state, Answering) and self.state.cursor < len(self.visible_fields):
            return self.visible_fields[self.state.cursor]
        return None

    @property
    def is_fail(self) -> bool:
        return isinstance(self.state, Summary) and self.state.is_fail

    def _resolve(self, measurements: Dict[str, Measurement]) -> List[MeasurementField]:
        return resolve_visible_fields(self.operation.fields, measurements, self.transitive_visibility)

    def _recorded_text(self, field: Optional[MeasurementField]) -> str:
        if field is None:
            return ""
        m = self.measurements.get(field.id)
        if m is None or m.skipped or m.value is None:
            return ""
        return m.value

    def _require(self, *state_types) -> Any:
        if not isinstance(self.state, state_types):
            allowed = ", ".join(t.name for t in state_types)
            raise InvalidTransitionError(
                f"Action not allowed in state '{self.state.name}' (expected {allowed})"
            )
        return self.state

    # ─────────────────────────────────────────────────────────────────────────
    # Answering
    # ─────────────────────────────────────────────────────────────────────────

    @_exclusive
    def validate(self, value: Any) -> SessionState:
        state = self._require(Answering)
        field = self.visible_fields[state.cursor]
        text = normalize_value(value)

        if field.required and not text:
            raise WorkflowValidationError(f"{field.display_name} is required", field.name)
        if text:
            check_value_shape(field, text)

        return self._record_and_advance(field, text, skipped=False)

    @_exclusive
    def skip(self) -> SessionState:
        state = self._require(Answering)
        field = self.visible_fields[state.cursor]
        return self._record_and_advance(field, None, skipped=True)

    @_exclusive
    def previous(self) -> SessionState:
        state = self._require(Answering)
        if state.cursor > 0:
            self.state = Answering(state.cursor - 1)
            self.input_value = self._recorded_text(self.current_field)
        return self.state

    def _record_and_advance(self, field: MeasurementField, value: Optional[str], skipped: bool) -> SessionState:
        written = self.synchronizer.write(field.id, value, skipped, self.record_ids)

        measurements = dict(self.measurements)
        for m in written:
            if m.record_id == self.units.primary.id:
                measurements[field.id] = m
        visible = self._resolve(measurements)

        answered_at = index_of(visible, field.id)
        next_cursor = answered_at + 1 if answered_at >= 0 else len(visible)

        if next_cursor < len(visible):
            if field.name == self.wax_oil_trigger_field:
                new_state: SessionState = WaxOilPrompt(next_cursor)
            else:
                new_state = Answering(next_cursor)
        else:
            self._flush_comment()
            new_state = Summary(False, answered_at if answered_at >= 0 else max(len(visible) - 1, 0))

        self.measurements = measurements
        self.visible_fields = visible
        self.state = new_state
        self.input_value = self._recorded_text(self.current_field)

        logger.debug(f"Session {self.session_id}: {field.name} {'skipped' if skipped else 'recorded'} → {new_state}")
        return self.state

    # ─────────────────────────────────────────────────────────────────────────
    # Wax/oil reminder
    # ─────────────────────────────────────────────────────────────────────────

    @_exclusive
    def confirm_wax_oil(self) -> SessionState:
        state = self._require(WaxOilPrompt)
        self.state = Answering(state.pending_cursor)
        self.input_value = self._recorded_text(self.current_field)
        return self.state

    # ─────────────────────────────────────────────────────────────────────────
    # Fail path
    # ─────────────────────────────────────────────────────────────────────────

    @_exclusive
    def request_fail(self) -> SessionState:
        state = self._require(Answering)
        self.state = FailConfirm(state.cursor)
        return self.state

    @_exclusive
    def cancel_fail(self) -> SessionState:
        state = self._require(FailConfirm)
        self.state = Answering(state.cursor)
        return self.state

    @_exclusive
    def confirm_fail(self) -> SessionState:
        """
        Declare the unit failed.

        Every visible field without a measurement is written as skipped on all
        records and the terminal grade is set before the summary is shown.
        """
        state = self._require(FailConfirm)
        self._flush_comment()

        pending = [
            FieldWrite(f.id, None, skipped=True)
            for f in self.visible_fields
            if f.id not in self.measurements
        ]
        written = self.synchronizer.write_many(pending, self.record_ids)
        self.synchronizer.update_records(self.record_ids, {"grade": self.terminal_grade})

        for m in written:
            if m.record_id == self.units.primary.id:
                self.measurements[m.field_id] = m

        self.state = Summary(True, state.cursor)
        logger.info(
            f"Session {self.session_id}: {self.units.primary.serial_number} declared failed, "
            f"{len(pending)} field(s) skipped"
        )
        return self.state

    # ─────────────────────────────────────────────────────────────────────────
    # Summary
    # ─────────────────────────────────────────────────────────────────────────

    @_exclusive
    def back_from_summary(self) -> SessionState:
        state = self._require(Summary)
        if not self.visible_fields:
            raise InvalidTransitionError("No fields to return to")
        cursor = min(state.last_cursor, len(self.visible_fields) - 1)
        self.corrections.clear()
        self.state = Answering(cursor)
        self.input_value = self._recorded_text(self.current_field)
        return self.state

    @_exclusive
    def complete(self) -> Any:
        """Final commit through the summary reconciler; closes the session."""
        self._require(Summary)
        if self.reconciler is None:
            raise InvalidTransitionError("No summary reconciler attached to this session")
        self._flush_comment()
        result = self.reconciler.commit(self)
        self.last_commit = result
        self.closed = True
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Comment & lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def set_comment(self, text: str) -> None:
        self.last_activity = datetime.now(timezone.utc)
        self.comment = text or ""
        if self.comment_debouncer is not None:
            self.comment_debouncer.update(self.comment)

    def _flush_comment(self) -> None:
        if self.comment_debouncer is not None:
            self.comment_debouncer.flush()

    def abandon(self) -> None:
        """Drop the session; unsaved comment edits are discarded, measurements stay."""
        if self.comment_debouncer is not None:
            self.comment_debouncer.cancel()
        self.closed = True
        logger.info(f"Session {self.session_id} abandoned in state '{self.state.name}'")

    def to_dict(self) -> Dict[str, Any]:
        current = self.current_field
        return {
            "session_id": self.session_id,
            "operation": self.operation.name,
            "operation_id": self.operation.id,
            "serial_number": self.units.primary.serial_number,
            "side": None if self.units.is_pair else self.units.primary.side.value,
            "is_pair": self.units.is_pair,
            "record_ids": self.record_ids,
            "state": self.state.to_dict(),
            "current_field": current.to_dict() if current else None,
            "visible_fields": [f.id for f in self.visible_fields],
            "progress": {
                "position": self.state.cursor + 1 if isinstance(self.state, Answering) else None,
                "total": len(self.visible_fields),
            },
            "input_value": self.input_value,
            "comment": self.comment,
            "measurements": {fid: m.to_dict() for fid, m in self.measurements.items()},
            "closed": self.closed,
            "busy": self.is_busy,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }
