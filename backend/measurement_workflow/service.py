"""
════════════════════════════════════════════════════════════════════════════════════════════════════
MEASUREMENT WORKFLOW SERVICE - Wiring of catalog, stores, gate and sessions
════════════════════════════════════════════════════════════════════════════════════════════════════

High-level facade used by the HTTP router:
- operation catalog registration / lookup
- prerequisite checks and historical snapshot reads
- session start (gate → optional override audit → record creation)
- per-session transitions, summary corrections and completion
- pruning of sessions left idle past the configured TTL

Sessions live in memory; everything the operator entered is already persisted
on the unit records, so losing a session only loses the cursor.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from .catalog import Operation, OperationCatalog, load_catalog
from .comments import CommentDebouncer, CommentWriter, load_initial_comment
from .config import WorkflowConfig, WorkflowSettings
from .errors import (
    PrerequisiteBlockedError,
    SessionNotFoundError,
    SnapshotLookupError,
    UnknownOperationError,
    WriteError,
)
from .gateways import DeliverySink, HttpDeliverySink, HttpSnapshotReader, SnapshotReader
from .models import build_engine, build_session_factory, init_db
from .navigator import WorkflowNavigator
from .pairing import UnitPairingResolver
from .prerequisites import GateResult, GateStatus, PrerequisiteGate
from .stores import SqlCommentStore, SqlMeasurementStore, SqlOverrideLog, SqlUnitRecordStore
from .summary import CommitResult, SummaryReconciler, SummaryRow
from .sync import PairedWriteSynchronizer

logger = logging.getLogger(__name__)


class MeasurementWorkflowService:
    """
    Service layer for guided measurement sessions.

    Usage:
        service = MeasurementWorkflowService(config, session_factory=factory, catalog=catalog)
        nav = service.start_session("sanding", "SN100", side="left", operator_initials="JD")
        nav.validate("pass")
        service.complete_session(nav.session_id)
    """

    def __init__(
        self,
        config: Optional[WorkflowConfig] = None,
        session_factory: Optional[sessionmaker] = None,
        catalog: Optional[OperationCatalog] = None,
        reader: Optional[SnapshotReader] = None,
        sink: Optional[DeliverySink] = None,
    ):
        self.config = config or WorkflowSettings.get_config()

        if session_factory is None:
            engine = build_engine(self.config.database_url)
            init_db(engine)
            session_factory = build_session_factory(engine)

        if catalog is None:
            catalog = load_catalog(self.config.catalog_path) if self.config.catalog_path else OperationCatalog()

        if reader is None and self.config.snapshot_url:
            reader = HttpSnapshotReader(self.config.snapshot_url, timeout=self.config.request_timeout_seconds)

        if sink is None and (self.config.pair_summary_url or self.config.single_summary_url):
            sink = HttpDeliverySink(
                self.config.pair_summary_url,
                self.config.single_summary_url,
                timeout=self.config.request_timeout_seconds,
            )

        self.catalog = catalog
        self.reader = reader
        self.sink = sink

        self.measurements = SqlMeasurementStore(session_factory)
        self.records = SqlUnitRecordStore(session_factory)
        self.comments = SqlCommentStore(session_factory)
        self.overrides = SqlOverrideLog(session_factory)

        self.synchronizer = PairedWriteSynchronizer(
            self.measurements, self.records, max_workers=self.config.write_workers
        )
        self.pairing = UnitPairingResolver(self.records, self.config.pair_operations)
        self.gate = PrerequisiteGate(
            reader,
            pair_operations=self.config.pair_operations,
            terminal_grade=self.config.terminal_grade,
            fail_open=self.config.prerequisite_fail_open,
        )
        self.reconciler = SummaryReconciler(
            self.synchronizer,
            sink,
            complete_on_delivery_failure=self.config.complete_on_delivery_failure,
            terminal_grade=self.config.terminal_grade,
        )

        self._sessions: Dict[str, WorkflowNavigator] = {}
        self._lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Catalog
    # ─────────────────────────────────────────────────────────────────────────

    def register_operation(self, data: Dict[str, Any]) -> Operation:
        operation = Operation.from_dict(data)
        self.catalog.register(operation)
        return operation

    def get_operation(self, name_or_id: str) -> Operation:
        operation = self.catalog.get_by_name(name_or_id) or self.catalog.get(name_or_id)
        if operation is None:
            raise UnknownOperationError(f"Operation {name_or_id} not found")
        return operation

    def list_operations(self) -> List[Operation]:
        return self.catalog.operations()

    # ─────────────────────────────────────────────────────────────────────────
    # Upstream
    # ─────────────────────────────────────────────────────────────────────────

    def check_prerequisites(self, operation_name: str, serial_number: str, side: Optional[str]) -> GateResult:
        return self.gate.check(operation_name, serial_number, side)

    def read_snapshot(self, serial_number: str, side: str) -> Dict[str, Any]:
        """Last known data for a unit (raises SnapshotLookupError)."""
        if self.reader is None:
            raise SnapshotLookupError("No snapshot endpoint configured")
        return self.reader.read(serial_number, side)

    # ─────────────────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────────────────

    def start_session(
        self,
        operation_name: str,
        serial_number: str,
        side: Optional[str] = None,
        operator_initials: Optional[str] = None,
        override_terminal_grade: bool = False,
        override_reason: Optional[str] = None,
    ) -> WorkflowNavigator:
        """
        Open a session after the prerequisite gate.

        Raises PrerequisiteBlockedError when an upstream step is missing, or when
        the upstream grade is terminal and no override was requested (or
        overrides are disabled).
        """
        self.prune_stale_sessions()
        operation = self.get_operation(operation_name)
        serial = (serial_number or "").strip()

        gate = self.gate.check(operation.name, serial, side)
        if gate.status == GateStatus.BLOCKED:
            raise PrerequisiteBlockedError(f"{gate.missing_label} must be completed first", gate)

        if gate.status == GateStatus.TERMINAL_BLOCK:
            if self.config.hard_stop_on_terminal_grade or not override_terminal_grade:
                raise PrerequisiteBlockedError(
                    f"Unit {serial} is graded {gate.upstream_grade} upstream", gate
                )
            self._audit_override(operation.name, serial, side, gate, operator_initials, override_reason)

        units = self.pairing.open_units(
            operation.id, operation.name, serial, side, operator_initials, sku=gate.sku
        )

        initial_comment = load_initial_comment(serial, units.primary.side.value, self.reader, self.comments)
        writer = CommentWriter(serial, units.record_ids, self.records, self.comments)
        debouncer = CommentDebouncer(writer.save, delay=self.config.comment_debounce_seconds)

        session_id = f"WS-{uuid.uuid4().hex[:8]}"
        nav = WorkflowNavigator(
            session_id,
            operation,
            units,
            self.synchronizer,
            self.measurements,
            reconciler=self.reconciler,
            comment_debouncer=debouncer,
            initial_comment=initial_comment,
            wax_oil_trigger_field=self.config.wax_oil_trigger_field,
            terminal_grade=self.config.terminal_grade,
        )

        with self._lock:
            self._sessions[session_id] = nav

        logger.info(
            f"Started session {session_id}: {operation.name} on {serial}"
            f"{' (pair)' if units.is_pair else '/' + units.primary.side.value}"
            f", {len(nav.visible_fields)} visible field(s)"
        )
        return nav

    def _audit_override(
        self,
        operation_name: str,
        serial_number: str,
        side: Optional[str],
        gate: GateResult,
        operator_initials: Optional[str],
        reason: Optional[str],
    ) -> None:
        logger.warning(
            f"Terminal grade {gate.upstream_grade} overridden for {serial_number} "
            f"at {operation_name} by {operator_initials or 'unknown operator'}"
        )
        if not self.config.audit_gate_overrides:
            return
        try:
            self.overrides.record(operation_name, serial_number, side, gate.upstream_grade, operator_initials, reason)
        except WriteError as e:
            logger.error(f"Override for {serial_number} could not be audited: {e}")
            raise

    def get_session(self, session_id: str) -> WorkflowNavigator:
        with self._lock:
            nav = self._sessions.get(session_id)
        if nav is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return nav

    def list_sessions(self) -> List[WorkflowNavigator]:
        self.prune_stale_sessions()
        with self._lock:
            return list(self._sessions.values())

    def abandon_session(self, session_id: str) -> None:
        nav = self.get_session(session_id)
        nav.abandon()
        with self._lock:
            self._sessions.pop(session_id, None)

    def prune_stale_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Drop sessions idle for longer than the configured TTL.

        Busy sessions are kept. Returns the number of sessions dropped.
        """
        ttl = self.config.session_ttl_seconds
        if not ttl or ttl <= 0:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=ttl)

        with self._lock:
            stale = [
                nav for nav in self._sessions.values()
                if nav.last_activity < cutoff and not nav.is_busy
            ]
            for nav in stale:
                self._sessions.pop(nav.session_id, None)

        for nav in stale:
            nav.abandon()
            logger.info(f"Dropped idle session {nav.session_id} ({nav.units.primary.serial_number})")
        return len(stale)

    def set_comment(self, session_id: str, text: str) -> WorkflowNavigator:
        nav = self.get_session(session_id)
        nav.set_comment(text)
        return nav

    # ─────────────────────────────────────────────────────────────────────────
    # Summary
    # ─────────────────────────────────────────────────────────────────────────

    def summary(self, session_id: str) -> List[SummaryRow]:
        return self.reconciler.rows(self.get_session(session_id))

    def correct_field(self, session_id: str, field_id: str, value: Any = None, skipped: bool = False) -> SummaryRow:
        return self.reconciler.correct(self.get_session(session_id), field_id, value, skipped)

    def cancel_correction(self, session_id: str, field_id: str) -> SummaryRow:
        return self.reconciler.cancel_correction(self.get_session(session_id), field_id)

    def complete_session(self, session_id: str) -> CommitResult:
        nav = self.get_session(session_id)
        result = nav.complete()
        with self._lock:
            self._sessions.pop(session_id, None)
        return result

    def get_status(self) -> Dict[str, Any]:
        return {
            "operations": len(self.catalog),
            "active_sessions": len(self.list_sessions()),
            "snapshot_reader": self.reader is not None,
            "delivery_sink": self.sink is not None,
            "config": self.config.to_dict(),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_service_instance: Optional[MeasurementWorkflowService] = None


def get_workflow_service() -> MeasurementWorkflowService:
    """Get singleton service instance."""
    global _service_instance
    if _service_instance is None:
        _service_instance = MeasurementWorkflowService()
    return _service_instance


def reset_workflow_service() -> None:
    """Reset singleton (for testing)."""
    global _service_instance
    _service_instance = None
