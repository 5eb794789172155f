"""
Measurement Workflow - Unit records and measurements as seen by the engine.

These are plain value objects; the store adapters convert ORM rows into them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Side(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class RecordStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class Measurement:
    """Recorded value of one field for one unit record. Unique on (record_id, field_id)."""
    record_id: str
    field_id: str
    value: Optional[str] = None
    skipped: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_answered(self) -> bool:
        return not self.skipped and self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "field_id": self.field_id,
            "value": self.value,
            "skipped": self.skipped,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class UnitRecord:
    """One side of one serial number passing through one operation."""
    id: str
    serial_number: str
    side: Side
    operation_id: str
    status: RecordStatus = RecordStatus.IN_PROGRESS
    sku: Optional[str] = None
    comment: Optional[str] = None
    grade: Optional[str] = None
    operator_initials: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "side": self.side.value,
            "operation_id": self.operation_id,
            "status": self.status.value,
            "sku": self.sku,
            "comment": self.comment,
            "grade": self.grade,
            "operator_initials": self.operator_initials,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
