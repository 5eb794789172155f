"""
Shared fixtures for the measurement workflow tests.
"""
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from api import app
from measurement_workflow.catalog import Operation, OperationCatalog
from measurement_workflow.config import WorkflowConfig, WorkflowSettings
from measurement_workflow.errors import SnapshotLookupError
from measurement_workflow.gateways import DeliveryResult, DeliverySink, SnapshotReader
from measurement_workflow.models import build_engine, build_session_factory, init_db
from measurement_workflow.service import (
    MeasurementWorkflowService,
    get_workflow_service,
    reset_workflow_service,
)
from measurement_workflow.stores import (
    SqlCommentStore,
    SqlMeasurementStore,
    SqlOverrideLog,
    SqlUnitRecordStore,
)
from measurement_workflow.sync import PairedWriteSynchronizer


# ═══════════════════════════════════════════════════════════════════════════════
# TEST DOUBLES
# ═══════════════════════════════════════════════════════════════════════════════

class ScriptedSnapshotReader(SnapshotReader):
    """Snapshot reader answering from a dict keyed by (serial, side)."""

    def __init__(self, snapshots: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None):
        self.snapshots = snapshots or {}
        self.calls: List[Tuple[str, str]] = []
        self.fail = False

    def read(self, serial_number: str, side: str) -> Dict[str, Any]:
        self.calls.append((serial_number, side))
        if self.fail:
            raise SnapshotLookupError("Timed out reading snapshot")
        return dict(self.snapshots.get((serial_number, side), {}))


class RecordingDeliverySink(DeliverySink):
    """Keeps every delivered record; `ok` controls the outcome."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.deliveries: List[Tuple[Dict[str, Any], bool]] = []

    def deliver(self, record: Dict[str, Any], pair_operation: bool) -> DeliveryResult:
        self.deliveries.append((record, pair_operation))
        if self.ok:
            return DeliveryResult(ok=True, status_code=200)
        return DeliveryResult(ok=False, status_code=500, error="Webhook unavailable")


# ═══════════════════════════════════════════════════════════════════════════════
# CATALOG
# ═══════════════════════════════════════════════════════════════════════════════

SKI_OPERATIONS = [
    {
        "id": "op-scenario",
        "name": "core_check",
        "display_name": "Core Check",
        "order": 1,
        "fields": [
            {"id": "F1", "name": "core_ok", "field_type": "select", "options": ["yes", "no"], "required": True},
            {"id": "F2", "name": "core_depth", "field_type": "numeric", "unit": "mm",
             "depends_on": "F1", "depends_on_value": "yes"},
        ],
    },
    {
        "id": "op-press-in",
        "name": "press_in",
        "display_name": "Press In",
        "order": 2,
        "fields": [
            {"id": "P1", "name": "mold_temp", "field_type": "numeric", "unit": "°C", "required": True},
            {"id": "P2", "name": "press_time", "field_type": "numeric", "unit": "s"},
        ],
    },
    {
        "id": "op-sanding",
        "name": "sanding",
        "display_name": "Sanding",
        "order": 5,
        "fields": [
            {"id": "S1", "name": "base_flat", "field_type": "pass_repair", "required": True},
            {"id": "S2", "name": "base_gap", "field_type": "numeric", "unit": "mm",
             "depends_on": "S1", "depends_on_value": "repair"},
            {"id": "S3", "name": "edge_check", "field_type": "pass_fail"},
            {"id": "S4", "name": "remarks", "field_type": "text"},
        ],
    },
    {
        "id": "op-flattening",
        "name": "flattening",
        "display_name": "Flattening",
        "order": 8,
        "fields": [
            {"id": "W1", "name": "base_gap_finition", "field_type": "pass_fail", "required": True},
            {"id": "W2", "name": "wax_or_oil", "field_type": "select", "options": ["wax", "oil"]},
            {"id": "W3", "name": "final_look", "field_type": "pass_fail"},
        ],
    },
]


@pytest.fixture
def ski_catalog() -> OperationCatalog:
    """Sample ski operation catalog."""
    return OperationCatalog([Operation.from_dict(op) for op in SKI_OPERATIONS])


# ═══════════════════════════════════════════════════════════════════════════════
# PERSISTENCE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def session_factory(tmp_path):
    """Temporary SQLite database per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'skiqc.db'}")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def measurement_store(session_factory):
    return SqlMeasurementStore(session_factory)


@pytest.fixture
def record_store(session_factory):
    return SqlUnitRecordStore(session_factory)


@pytest.fixture
def comment_store(session_factory):
    return SqlCommentStore(session_factory)


@pytest.fixture
def override_log(session_factory):
    return SqlOverrideLog(session_factory)


@pytest.fixture
def synchronizer(measurement_store, record_store):
    return PairedWriteSynchronizer(measurement_store, record_store, max_workers=2)


# ═══════════════════════════════════════════════════════════════════════════════
# SERVICE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def reset_singletons():
    WorkflowSettings.reset()
    reset_workflow_service()
    yield
    WorkflowSettings.reset()
    reset_workflow_service()


@pytest.fixture
def snapshot_reader() -> ScriptedSnapshotReader:
    return ScriptedSnapshotReader()


@pytest.fixture
def delivery_sink() -> RecordingDeliverySink:
    return RecordingDeliverySink()


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(comment_debounce_seconds=0.05, write_workers=2)


@pytest.fixture
def service(workflow_config, session_factory, ski_catalog, snapshot_reader, delivery_sink):
    return MeasurementWorkflowService(
        workflow_config,
        session_factory=session_factory,
        catalog=ski_catalog,
        reader=snapshot_reader,
        sink=delivery_sink,
    )


@pytest.fixture(scope="function")
def test_client(service):
    """FastAPI test client bound to the test service."""
    app.dependency_overrides[get_workflow_service] = lambda: service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
