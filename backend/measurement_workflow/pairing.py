"""
Unit Pairing Resolver.

Press-type operations act on the bonded pair: one session creates a left and a
right record sharing the serial number, and every write goes to both. All other
operations act on the single side the operator picked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Union

from .config import DEFAULT_PAIR_OPERATIONS
from .domain import RecordStatus, Side, UnitRecord
from .errors import WorkflowValidationError
from .stores import UnitRecordStore

logger = logging.getLogger(__name__)


@dataclass
class OpenedUnits:
    primary: UnitRecord
    paired: Optional[UnitRecord] = None

    @property
    def is_pair(self) -> bool:
        return self.paired is not None

    @property
    def record_ids(self) -> List[str]:
        ids = [self.primary.id]
        if self.paired is not None:
            ids.append(self.paired.id)
        return ids


class UnitPairingResolver:

    def __init__(self, records: UnitRecordStore, pair_operations: FrozenSet[str] = DEFAULT_PAIR_OPERATIONS):
        self.records = records
        self.pair_operations = pair_operations

    def is_pair_operation(self, operation_name: str) -> bool:
        return operation_name in self.pair_operations

    def open_units(
        self,
        operation_id: str,
        operation_name: str,
        serial_number: str,
        side: Union[Side, str, None],
        operator_initials: Optional[str],
        sku: Optional[str] = None,
    ) -> OpenedUnits:
        """
        Create the in-progress record(s) for a new session.

        Pair operations ignore `side` and return left as primary, right as paired.
        Raises WorkflowValidationError for an empty serial or a missing/unknown side.
        """
        serial = (serial_number or "").strip()
        if not serial:
            raise WorkflowValidationError("Serial number is required")

        base = {
            "serial_number": serial,
            "sku": sku,
            "operation_id": operation_id,
            "operator_initials": operator_initials,
            "status": RecordStatus.IN_PROGRESS,
        }

        if self.is_pair_operation(operation_name):
            left, right = self.records.insert_many([
                {**base, "side": Side.LEFT},
                {**base, "side": Side.RIGHT},
            ])
            logger.info(f"Opened pair {serial} for {operation_name}: {left.id} / {right.id}")
            return OpenedUnits(primary=left, paired=right)

        if not side:
            raise WorkflowValidationError(f"Side is required for {operation_name}")
        try:
            side = Side(side)
        except ValueError:
            raise WorkflowValidationError(f"Unknown side: {side}")

        record = self.records.insert_many([{**base, "side": side}])[0]
        logger.info(f"Opened {serial}/{side.value} for {operation_name}: {record.id}")
        return OpenedUnits(primary=record)
