"""
════════════════════════════════════════════════════════════════════════════════════════════════════
FIELD CATALOG - Operations and their measurement field definitions
════════════════════════════════════════════════════════════════════════════════════════════════════

The catalog is supplied from outside the engine (JSON file or API registration).
It is read-only to the workflow: one ordered list of MeasurementField per operation.

Field types:
- numeric      → number typed on the keypad, optional unit
- pass_fail    → "pass" / "fail"
- pass_repair  → "pass" / "repair"
- text         → free text
- select       → one of a fixed option list

A field may depend on a single parent field: it is shown only when the parent
holds one of the allowed values.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class FieldType(str, Enum):
    """Input type of a measurement field."""
    NUMERIC = "numeric"
    PASS_FAIL = "pass_fail"
    PASS_REPAIR = "pass_repair"
    TEXT = "text"
    SELECT = "select"


FIXED_CHOICES: Dict[FieldType, List[str]] = {
    FieldType.PASS_FAIL: ["pass", "fail"],
    FieldType.PASS_REPAIR: ["pass", "repair"],
}


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

def _parse_allowed_values(raw: Union[str, List[str], None]) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(v).strip() for v in raw if str(v).strip()]


@dataclass
class MeasurementField:
    """One question of an operation."""
    id: str
    operation_id: str
    name: str
    display_name: str
    field_type: FieldType
    order: int = 0
    unit: Optional[str] = None
    required: bool = False
    options: List[str] = field(default_factory=list)

    # Visibility dependency: shown only if `depends_on` holds one of `depends_on_values`
    depends_on: Optional[str] = None
    depends_on_values: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.field_type == FieldType.SELECT and not self.options:
            raise ValueError(f"Select field '{self.name}' requires an option list")

    @property
    def has_dependency(self) -> bool:
        return bool(self.depends_on) and bool(self.depends_on_values)

    def choices(self) -> List[str]:
        """Accepted values for constrained field types (empty for numeric/text)."""
        if self.field_type == FieldType.SELECT:
            return list(self.options)
        return list(FIXED_CHOICES.get(self.field_type, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "name": self.name,
            "display_name": self.display_name,
            "field_type": self.field_type.value,
            "order": self.order,
            "unit": self.unit,
            "required": self.required,
            "options": self.options,
            "depends_on": self.depends_on,
            "depends_on_values": self.depends_on_values,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any], operation_id: str = "") -> "MeasurementField":
        allowed = data.get("depends_on_values")
        if allowed is None:
            allowed = data.get("depends_on_value")
        return MeasurementField(
            id=str(data.get("id") or uuid.uuid4()),
            operation_id=str(data.get("operation_id") or operation_id),
            name=data["name"],
            display_name=data.get("display_name") or data["name"],
            field_type=FieldType(data.get("field_type", "text")),
            order=int(data.get("order", 0)),
            unit=data.get("unit"),
            required=bool(data.get("required", False)),
            options=list(data.get("options") or []),
            depends_on=data.get("depends_on") or None,
            depends_on_values=_parse_allowed_values(allowed),
        )


@dataclass
class Operation:
    """A manufacturing/QC step with its ordered field catalog."""
    id: str
    name: str
    display_name: str
    module_id: Optional[str] = None
    order: int = 0
    fields: List[MeasurementField] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.fields = sorted(self.fields, key=lambda f: f.order)

    def field_by_id(self, field_id: str) -> Optional[MeasurementField]:
        return next((f for f in self.fields if f.id == field_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "module_id": self.module_id,
            "order": self.order,
            "fields": [f.to_dict() for f in self.fields],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Operation":
        operation_id = str(data.get("id") or uuid.uuid4())
        fields = []
        for i, raw in enumerate(data.get("fields", [])):
            raw = dict(raw)
            raw.setdefault("order", i + 1)
            fields.append(MeasurementField.from_dict(raw, operation_id=operation_id))
        return Operation(
            id=operation_id,
            name=data["name"],
            display_name=data.get("display_name") or data["name"],
            module_id=data.get("module_id"),
            order=int(data.get("order", 0)),
            fields=fields,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# CATALOG REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class OperationCatalog:
    """In-memory registry of operations, looked up by id or name."""

    def __init__(self, operations: Optional[List[Operation]] = None):
        self._operations: Dict[str, Operation] = {}
        for op in operations or []:
            self.register(op)

    def register(self, operation: Operation) -> None:
        replaced = self._operations.get(operation.id)
        self._operations[operation.id] = operation
        if replaced:
            logger.info(f"Replaced operation {operation.name} ({operation.id})")
        else:
            logger.info(f"Registered operation {operation.name} with {len(operation.fields)} fields")

    def get(self, operation_id: str) -> Optional[Operation]:
        return self._operations.get(operation_id)

    def get_by_name(self, name: str) -> Optional[Operation]:
        return next((op for op in self._operations.values() if op.name == name), None)

    def operations(self) -> List[Operation]:
        return sorted(self._operations.values(), key=lambda op: (op.order, op.name))

    def __len__(self) -> int:
        return len(self._operations)


def load_catalog(path: Union[str, Path]) -> OperationCatalog:
    """
    Load a catalog from a JSON file.

    Accepts either a list of operations or {"operations": [...]}.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("operations", [])
    catalog = OperationCatalog([Operation.from_dict(op) for op in raw])
    logger.info(f"Loaded {len(catalog)} operations from {path}")
    return catalog
