"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PREREQUISITE GATE - Upstream completion check before an operation may start
════════════════════════════════════════════════════════════════════════════════════════════════════

Each operation names the upstream timestamp keys that must already be filled
in the unit's historical snapshot. The gate only classifies:

- PASS            → start allowed
- BLOCKED         → an upstream marker is missing (missing_label tells which)
- TERMINAL_BLOCK  → upstream QC grade is terminal; consumers may still let the
                    operator override

Lookup failures fail open by default: availability at the edge beats strict
ordering. Pair operations record once per pair, so they always check the left side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .config import DEFAULT_PAIR_OPERATIONS, DEFAULT_TERMINAL_GRADE
from .domain import Side
from .errors import SnapshotLookupError
from .gateways import SnapshotReader

logger = logging.getLogger(__name__)


GRADE_KEY = "QC grade"
SKU_KEY = "SKU"


class GateStatus(str, Enum):
    PASS = "pass"
    BLOCKED = "blocked"
    TERMINAL_BLOCK = "terminal_block"


@dataclass(frozen=True)
class OperationPrerequisite:
    """Upstream keys that must be non-empty before the operation starts."""
    required: List[str] = field(default_factory=list)
    conditional_key: Optional[str] = None  # checked only when present in the snapshot
    conditional_label: Optional[str] = None


PREREQUISITES: Dict[str, OperationPrerequisite] = {
    "press_in": OperationPrerequisite(required=["core area time"]),
    "press_out": OperationPrerequisite(required=["press in time"]),
    "surface_check": OperationPrerequisite(required=["press out time"]),
    "cut_out": OperationPrerequisite(required=["un-molding time"]),
    "sanding": OperationPrerequisite(required=["cut out time"]),
    "sidewall_milling": OperationPrerequisite(required=["sanding time"]),
    "soft_touch": OperationPrerequisite(required=["sidewall time"]),
    "flattening": OperationPrerequisite(
        required=["soft touch time"],
        conditional_key="base gap repair time",
        conditional_label="Base Gap Repair",
    ),
    "nose_tail_structure": OperationPrerequisite(required=["flattening time"]),
    "service_machine": OperationPrerequisite(required=["nose & tail time"]),
    "final_qc": OperationPrerequisite(required=["machine time"]),
}

TIMESTAMP_LABELS: Dict[str, str] = {
    "core area time": "Core Thickness",
    "press in time": "Press In",
    "press out time": "Press Out",
    "un-molding time": "Un-Molding",
    "cut out time": "Cut Out",
    "sanding time": "Sanding",
    "sidewall time": "Sidewall Milling",
    "soft touch time": "Soft Touch",
    "base gap repair time": "Base Gap Repair",
    "flattening time": "Flattening",
    "nose & tail time": "Nose & Tail Structure",
    "machine time": "Service Machine",
    "final QC time": "Final QC",
}


@dataclass
class GateResult:
    status: GateStatus
    missing_label: Optional[str] = None
    sku: Optional[str] = None
    upstream_grade: Optional[str] = None
    lookup_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.status == GateStatus.PASS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "status": self.status.value,
            "missing_label": self.missing_label,
            "sku": self.sku,
            "upstream_grade": self.upstream_grade,
            "lookup_failed": self.lookup_failed,
        }


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class PrerequisiteGate:
    """
    Classifies whether an operation may start for a serial number / side.

    Usage:
        gate = PrerequisiteGate(reader)
        result = gate.check("sanding", "SN100", "left")
        if result.status == GateStatus.BLOCKED:
            show(result.missing_label)
    """

    def __init__(
        self,
        reader: Optional[SnapshotReader],
        prerequisites: Optional[Mapping[str, OperationPrerequisite]] = None,
        pair_operations: FrozenSet[str] = DEFAULT_PAIR_OPERATIONS,
        terminal_grade: str = DEFAULT_TERMINAL_GRADE,
        fail_open: bool = True,
    ):
        self.reader = reader
        self.prerequisites = dict(PREREQUISITES if prerequisites is None else prerequisites)
        self.pair_operations = pair_operations
        self.terminal_grade = terminal_grade
        self.fail_open = fail_open

    def check(self, operation_name: str, serial_number: str, side: Optional[str]) -> GateResult:
        prereq = self.prerequisites.get(operation_name)
        if prereq is None:
            return GateResult(status=GateStatus.PASS)

        check_side = Side.LEFT.value if operation_name in self.pair_operations else (side or Side.LEFT.value)

        try:
            if self.reader is None:
                raise SnapshotLookupError("No snapshot reader configured")
            data = self.reader.read(serial_number, check_side)
        except SnapshotLookupError as e:
            if self.fail_open:
                logger.warning(f"Prerequisite lookup failed for {operation_name} {serial_number}/{check_side}, failing open: {e}")
                return GateResult(status=GateStatus.PASS, lookup_failed=True)
            logger.warning(f"Prerequisite lookup failed for {operation_name} {serial_number}/{check_side}: {e}")
            return GateResult(status=GateStatus.BLOCKED, missing_label="Upstream data unavailable", lookup_failed=True)

        return self.classify(prereq, data)

    def classify(self, prereq: OperationPrerequisite, data: Mapping[str, Any]) -> GateResult:
        """Classify a snapshot against one operation's prerequisites."""
        sku = data.get(SKU_KEY) if isinstance(data.get(SKU_KEY), str) else None
        grade = data.get(GRADE_KEY)

        if grade == self.terminal_grade:
            return GateResult(status=GateStatus.TERMINAL_BLOCK, sku=sku, upstream_grade=grade)

        for key in prereq.required:
            if _is_empty(data.get(key)):
                return GateResult(
                    status=GateStatus.BLOCKED,
                    missing_label=TIMESTAMP_LABELS.get(key, key),
                    sku=sku,
                )

        if prereq.conditional_key and prereq.conditional_key in data:
            if _is_empty(data[prereq.conditional_key]):
                return GateResult(
                    status=GateStatus.BLOCKED,
                    missing_label=prereq.conditional_label or prereq.conditional_key,
                    sku=sku,
                )

        return GateResult(status=GateStatus.PASS, sku=sku)
