"""
Measurement Workflow Module - Guided QC data entry for skis
===========================================================

Components:
- Catalog: operations and their ordered measurement fields
- Visibility: conditional fields driven by a parent answer
- Navigator: field-by-field session state machine
- Prerequisite Gate: upstream completion check before a session starts
- Pairing & Sync: bonded left/right records written together
- Summary: review, correction, flattening and delivery
"""

from .catalog import (
    FieldType,
    MeasurementField,
    Operation,
    OperationCatalog,
    load_catalog,
)
from .config import WorkflowConfig, WorkflowSettings
from .domain import Measurement, RecordStatus, Side, UnitRecord
from .errors import (
    DeliveryError,
    InvalidTransitionError,
    PrerequisiteBlockedError,
    SessionBusyError,
    SessionNotFoundError,
    SnapshotLookupError,
    UnknownOperationError,
    WorkflowError,
    WorkflowValidationError,
    WriteError,
)
from .navigator import (
    Answering,
    FailConfirm,
    Summary,
    WaxOilPrompt,
    WorkflowNavigator,
)
from .prerequisites import GateResult, GateStatus, PrerequisiteGate
from .pairing import OpenedUnits, UnitPairingResolver
from .service import (
    MeasurementWorkflowService,
    get_workflow_service,
    reset_workflow_service,
)
from .summary import CommitResult, SummaryReconciler, SummaryRow
from .sync import FieldWrite, PairedWriteSynchronizer
from .visibility import resolve_visible_fields

from .api_workflow import router as measurement_workflow_router

__all__ = [
    "FieldType",
    "MeasurementField",
    "Operation",
    "OperationCatalog",
    "load_catalog",
    "WorkflowConfig",
    "WorkflowSettings",
    "Measurement",
    "RecordStatus",
    "Side",
    "UnitRecord",
    "DeliveryError",
    "InvalidTransitionError",
    "PrerequisiteBlockedError",
    "SessionBusyError",
    "SessionNotFoundError",
    "SnapshotLookupError",
    "UnknownOperationError",
    "WorkflowError",
    "WorkflowValidationError",
    "WriteError",
    "Answering",
    "FailConfirm",
    "Summary",
    "WaxOilPrompt",
    "WorkflowNavigator",
    "GateResult",
    "GateStatus",
    "PrerequisiteGate",
    "OpenedUnits",
    "UnitPairingResolver",
    "MeasurementWorkflowService",
    "get_workflow_service",
    "reset_workflow_service",
    "CommitResult",
    "SummaryReconciler",
    "SummaryRow",
    "FieldWrite",
    "PairedWriteSynchronizer",
    "resolve_visible_fields",
    "measurement_workflow_router",
]
