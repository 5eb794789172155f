"""
════════════════════════════════════════════════════════════════════════════════════════════════════
API MEASUREMENT WORKFLOW - Endpoints for guided measurement sessions
════════════════════════════════════════════════════════════════════════════════════════════════════

Tablet front-ends drive a session through these endpoints: start (after the
prerequisite gate), answer/skip/back field by field, fail path, comment,
summary corrections and completion.

Error mapping:
- 422 validation
- 404 unknown session / operation
- 409 invalid transition, busy session, blocked start
- 502 upstream snapshot or (strict) delivery failure
- 503 store write failure (retry is safe)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

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
from .navigator import Summary, WorkflowNavigator
from .service import MeasurementWorkflowService, get_workflow_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/measurement-workflow", tags=["Measurement Workflow"])


# ═══════════════════════════════════════════════════════════════════════════════
# PYDANTIC MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class OperationInput(BaseModel):
    """Operation definition with its measurement fields."""
    id: Optional[str] = None
    name: str = Field(..., description="Operation key, e.g. press_in")
    display_name: Optional[str] = None
    module_id: Optional[str] = None
    order: int = 0
    fields: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "sanding",
                "display_name": "Sanding",
                "fields": [
                    {"id": "f1", "name": "base_flat", "field_type": "pass_repair", "required": True},
                    {"id": "f2", "name": "base_gap", "field_type": "numeric", "unit": "mm",
                     "depends_on": "f1", "depends_on_value": "repair"},
                ],
            }
        }


class PrerequisiteCheckInput(BaseModel):
    operation_name: str
    serial_number: str
    side: Optional[str] = None


class StartSessionInput(BaseModel):
    """Start a measurement session for a serial number."""
    operation: str = Field(..., description="Operation name or id")
    serial_number: str
    side: Optional[str] = Field(None, description="left/right, ignored for pair operations")
    operator_initials: Optional[str] = None
    override_terminal_grade: bool = Field(False, description="Proceed despite a terminal upstream grade")
    override_reason: Optional[str] = None


class ValueInput(BaseModel):
    value: Union[str, int, float, None] = None


class CommentInput(BaseModel):
    comment: str = ""


class CorrectionInput(BaseModel):
    value: Union[str, int, float, None] = None
    skipped: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _http_error(exc: WorkflowError) -> HTTPException:
    if isinstance(exc, WorkflowValidationError):
        return HTTPException(status_code=422, detail={"message": str(exc), "field": exc.field_name})
    if isinstance(exc, (SessionNotFoundError, UnknownOperationError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PrerequisiteBlockedError):
        return HTTPException(status_code=409, detail={"message": str(exc), "gate": exc.gate_result.to_dict()})
    if isinstance(exc, (InvalidTransitionError, SessionBusyError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, WriteError):
        return HTTPException(status_code=503, detail={"message": str(exc), "record_ids": exc.record_ids})
    if isinstance(exc, (DeliveryError, SnapshotLookupError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _session_payload(nav: WorkflowNavigator, service: MeasurementWorkflowService) -> Dict[str, Any]:
    payload = nav.to_dict()
    if isinstance(nav.state, Summary):
        payload["summary"] = [row.to_dict() for row in service.reconciler.rows(nav)]
    return payload


def _transition(service: MeasurementWorkflowService, session_id: str, action: str) -> Dict[str, Any]:
    try:
        nav = service.get_session(session_id)
        getattr(nav, action)()
    except WorkflowError as e:
        raise _http_error(e)
    return _session_payload(nav, service)


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS & CATALOG
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/status", summary="Workflow engine status")
def get_status(service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return service.get_status()


@router.post("/operations", summary="Register an operation catalog entry")
def register_operation(
    body: OperationInput,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        operation = service.register_operation(body.model_dump(exclude_none=True))
    except (ValueError, KeyError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid operation definition: {e}")
    return operation.to_dict()


@router.get("/operations", summary="List operations")
def list_operations(service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    operations = service.list_operations()
    return {"operations": [op.to_dict() for op in operations], "total": len(operations)}


@router.get("/operations/{name}", summary="Get an operation by name or id")
def get_operation(name: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    try:
        return service.get_operation(name).to_dict()
    except WorkflowError as e:
        raise _http_error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# UPSTREAM
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/prerequisites/check", summary="Check upstream prerequisites")
def check_prerequisites(
    body: PrerequisiteCheckInput,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    return service.check_prerequisites(body.operation_name, body.serial_number, body.side).to_dict()


@router.get("/units/{serial_number}/{side}/snapshot", summary="Last known data for a unit")
def read_snapshot(
    serial_number: str,
    side: str,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        return {"serial_number": serial_number, "side": side, "data": service.read_snapshot(serial_number, side)}
    except WorkflowError as e:
        raise _http_error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# SESSIONS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/sessions", summary="Start a measurement session")
def start_session(
    body: StartSessionInput,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        nav = service.start_session(
            body.operation,
            body.serial_number,
            side=body.side,
            operator_initials=body.operator_initials,
            override_terminal_grade=body.override_terminal_grade,
            override_reason=body.override_reason,
        )
    except WorkflowError as e:
        raise _http_error(e)
    return _session_payload(nav, service)


@router.get("/sessions/{session_id}", summary="Get session state")
def get_session(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    try:
        nav = service.get_session(session_id)
    except WorkflowError as e:
        raise _http_error(e)
    return _session_payload(nav, service)


@router.delete("/sessions/{session_id}", summary="Abandon a session")
def abandon_session(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    try:
        service.abandon_session(session_id)
    except WorkflowError as e:
        raise _http_error(e)
    return {"status": "abandoned", "session_id": session_id}


@router.post("/sessions/{session_id}/validate", summary="Record the current field")
def validate_field(
    session_id: str,
    body: ValueInput,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        nav = service.get_session(session_id)
        nav.validate(body.value)
    except WorkflowError as e:
        raise _http_error(e)
    return _session_payload(nav, service)


@router.post("/sessions/{session_id}/skip", summary="Skip the current field")
def skip_field(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "skip")


@router.post("/sessions/{session_id}/previous", summary="Go back one field")
def previous_field(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "previous")


@router.post("/sessions/{session_id}/wax-oil/confirm", summary="Acknowledge the wax/oil reminder")
def confirm_wax_oil(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "confirm_wax_oil")


@router.post("/sessions/{session_id}/fail", summary="Request fail declaration")
def request_fail(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "request_fail")


@router.post("/sessions/{session_id}/fail/cancel", summary="Cancel fail declaration")
def cancel_fail(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "cancel_fail")


@router.post("/sessions/{session_id}/fail/confirm", summary="Confirm fail declaration")
def confirm_fail(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "confirm_fail")


@router.put("/sessions/{session_id}/comment", summary="Update the session comment")
def update_comment(
    session_id: str,
    body: CommentInput,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        nav = service.set_comment(session_id, body.comment)
    except WorkflowError as e:
        raise _http_error(e)
    return {"session_id": session_id, "comment": nav.comment}


# ═══════════════════════════════════════════════════════════════════════════════
# SUMMARY
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/sessions/{session_id}/summary", summary="Summary rows for review")
def get_summary(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    try:
        nav = service.get_session(session_id)
        rows = service.summary(session_id)
    except WorkflowError as e:
        raise _http_error(e)
    return {"session_id": session_id, "is_fail": nav.is_fail, "fields": [r.to_dict() for r in rows]}


@router.patch("/sessions/{session_id}/summary/fields/{field_id}", summary="Correct a field before commit")
def correct_field(
    session_id: str,
    field_id: str,
    body: CorrectionInput,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        row = service.correct_field(session_id, field_id, body.value, body.skipped)
    except WorkflowError as e:
        raise _http_error(e)
    return row.to_dict()


@router.delete("/sessions/{session_id}/summary/fields/{field_id}", summary="Cancel a pending correction")
def cancel_correction(
    session_id: str,
    field_id: str,
    service: MeasurementWorkflowService = Depends(get_workflow_service),
) -> Dict[str, Any]:
    try:
        row = service.cancel_correction(session_id, field_id)
    except WorkflowError as e:
        raise _http_error(e)
    return row.to_dict()


@router.post("/sessions/{session_id}/summary/back", summary="Return from summary to answering")
def back_from_summary(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    return _transition(service, session_id, "back_from_summary")


@router.post("/sessions/{session_id}/complete", summary="Commit and deliver the session")
def complete_session(session_id: str, service: MeasurementWorkflowService = Depends(get_workflow_service)) -> Dict[str, Any]:
    try:
        result = service.complete_session(session_id)
    except WorkflowError as e:
        raise _http_error(e)
    return {"session_id": session_id, **result.to_dict()}
