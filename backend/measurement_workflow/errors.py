"""
Measurement Workflow - Error taxonomy.

Every error is scoped to the transition that raised it. None of them is fatal
to the process; the session state stays where it was and the operator may retry.
"""

from __future__ import annotations

from typing import Any, List, Optional


class WorkflowError(Exception):
    """Base class for all measurement workflow errors."""


class WorkflowValidationError(WorkflowError):
    """Input rejected locally (required value missing, bad value shape). No write was made."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class WriteError(WorkflowError):
    """A store upsert/update failed. State did not advance; retrying is safe."""

    def __init__(self, message: str, record_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.record_ids = record_ids or []


class SnapshotLookupError(WorkflowError, LookupError):
    """Historical snapshot could not be fetched (network, timeout, bad status)."""


class DeliveryError(WorkflowError):
    """Summary delivery to the downstream sink failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTransitionError(WorkflowError):
    """Action is not allowed from the current navigator state."""


class SessionBusyError(WorkflowError):
    """Another transition is still running on the same session."""


class SessionNotFoundError(WorkflowError):
    """No active session with that id."""


class UnknownOperationError(WorkflowError):
    """Operation is not present in the catalog."""


class PrerequisiteBlockedError(WorkflowError):
    """Session start refused by the prerequisite gate."""

    def __init__(self, message: str, gate_result: Any):
        super().__init__(message)
        self.gate_result = gate_result
