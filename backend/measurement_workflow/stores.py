"""
════════════════════════════════════════════════════════════════════════════════════════════════════
STORES - Persistence contracts consumed by the engine, with SQLAlchemy adapters
════════════════════════════════════════════════════════════════════════════════════════════════════

Contracts:
- MeasurementStore: upsert keyed on (record_id, field_id), query by record
- UnitRecordStore: insert, bulk update by ids, get
- CommentStore: global comment per serial number
- OverrideLog: audit rows for terminal-grade overrides

Any database failure surfaces as WriteError so callers can keep state and retry.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .domain import Measurement, RecordStatus, Side, UnitRecord
from .errors import WriteError
from .models import (
    GateOverrideModel,
    GlobalCommentModel,
    MeasurementModel,
    SkiRecordModel,
    utcnow,
)

logger = logging.getLogger(__name__)

UPDATABLE_RECORD_FIELDS = {"status", "grade", "comment", "sku", "operator_initials"}


# ═══════════════════════════════════════════════════════════════════════════════
# CONTRACTS
# ═══════════════════════════════════════════════════════════════════════════════

class MeasurementStore(ABC):

    @abstractmethod
    def upsert(self, record_id: str, field_id: str, value: Optional[str], skipped: bool) -> Measurement:
        ...

    @abstractmethod
    def query(self, record_id: str) -> List[Measurement]:
        ...


class UnitRecordStore(ABC):

    @abstractmethod
    def insert(
        self,
        serial_number: str,
        sku: Optional[str],
        side: Side,
        operation_id: str,
        operator_initials: Optional[str],
        status: RecordStatus = RecordStatus.IN_PROGRESS,
    ) -> UnitRecord:
        ...

    @abstractmethod
    def insert_many(self, rows: List[Dict[str, Any]]) -> List[UnitRecord]:
        """Insert several records in a single transaction."""

    @abstractmethod
    def update(self, record_ids: List[str], changes: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get(self, record_id: str) -> Optional[UnitRecord]:
        ...


class CommentStore(ABC):

    @abstractmethod
    def get_global(self, serial_number: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_global(self, serial_number: str, comment: str) -> None:
        ...


class OverrideLog(ABC):

    @abstractmethod
    def record(
        self,
        operation_name: str,
        serial_number: str,
        side: Optional[str],
        upstream_grade: Optional[str],
        operator_initials: Optional[str],
        reason: Optional[str],
    ) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# ROW CONVERSION
# ═══════════════════════════════════════════════════════════════════════════════

def _to_measurement(row: MeasurementModel) -> Measurement:
    return Measurement(
        record_id=row.ski_record_id,
        field_id=row.field_id,
        value=row.value,
        skipped=bool(row.skipped),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_unit_record(row: SkiRecordModel) -> UnitRecord:
    return UnitRecord(
        id=row.id,
        serial_number=row.serial_number,
        side=Side(row.side),
        operation_id=row.operation_id,
        status=RecordStatus(row.status),
        sku=row.sku,
        comment=row.comment,
        grade=row.grade,
        operator_initials=row.operator_initials,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SQLALCHEMY ADAPTERS
# ═══════════════════════════════════════════════════════════════════════════════

class SqlMeasurementStore(MeasurementStore):

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def upsert(self, record_id: str, field_id: str, value: Optional[str], skipped: bool) -> Measurement:
        try:
            return self._upsert_once(record_id, field_id, value, skipped)
        except IntegrityError:
            # Lost an insert race on the unique key; the row exists now
            try:
                return self._upsert_once(record_id, field_id, value, skipped)
            except SQLAlchemyError as e:
                raise WriteError(f"Measurement upsert failed for record {record_id}: {e}", [record_id]) from e
        except SQLAlchemyError as e:
            logger.error(f"Measurement upsert failed for record {record_id}, field {field_id}: {e}")
            raise WriteError(f"Measurement upsert failed for record {record_id}: {e}", [record_id]) from e

    def _upsert_once(self, record_id: str, field_id: str, value: Optional[str], skipped: bool) -> Measurement:
        with self._session_factory() as db:
            row = (
                db.query(MeasurementModel)
                .filter_by(ski_record_id=record_id, field_id=field_id)
                .one_or_none()
            )
            now = utcnow()
            if row is None:
                row = MeasurementModel(ski_record_id=record_id, field_id=field_id, created_at=now)
                db.add(row)
            row.value = None if skipped else value
            row.skipped = skipped
            row.updated_at = now
            db.commit()
            return _to_measurement(row)

    def query(self, record_id: str) -> List[Measurement]:
        try:
            with self._session_factory() as db:
                rows = (
                    db.query(MeasurementModel)
                    .filter_by(ski_record_id=record_id)
                    .order_by(MeasurementModel.id)
                    .all()
                )
                return [_to_measurement(r) for r in rows]
        except SQLAlchemyError as e:
            logger.error(f"Measurement query failed for record {record_id}: {e}")
            raise WriteError(f"Could not load measurements for record {record_id}: {e}", [record_id]) from e


class SqlUnitRecordStore(UnitRecordStore):

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def insert(
        self,
        serial_number: str,
        sku: Optional[str],
        side: Side,
        operation_id: str,
        operator_initials: Optional[str],
        status: RecordStatus = RecordStatus.IN_PROGRESS,
    ) -> UnitRecord:
        return self.insert_many([{
            "serial_number": serial_number,
            "sku": sku,
            "side": side,
            "operation_id": operation_id,
            "operator_initials": operator_initials,
            "status": status,
        }])[0]

    def insert_many(self, rows: List[Dict[str, Any]]) -> List[UnitRecord]:
        try:
            with self._session_factory() as db:
                models = [
                    SkiRecordModel(
                        serial_number=r["serial_number"],
                        sku=r.get("sku"),
                        side=Side(r["side"]).value,
                        operation_id=r["operation_id"],
                        operator_initials=r.get("operator_initials"),
                        status=RecordStatus(r.get("status", RecordStatus.IN_PROGRESS)).value,
                    )
                    for r in rows
                ]
                db.add_all(models)
                db.commit()
                return [_to_unit_record(m) for m in models]
        except SQLAlchemyError as e:
            logger.error(f"Unit record insert failed: {e}")
            raise WriteError(f"Could not create unit records: {e}") from e

    def update(self, record_ids: List[str], changes: Dict[str, Any]) -> None:
        unknown = set(changes) - UPDATABLE_RECORD_FIELDS
        if unknown:
            raise ValueError(f"Cannot update record fields: {sorted(unknown)}")

        values = {k: (v.value if isinstance(v, RecordStatus) else v) for k, v in changes.items()}
        values["updated_at"] = utcnow()
        try:
            with self._session_factory() as db:
                (
                    db.query(SkiRecordModel)
                    .filter(SkiRecordModel.id.in_(record_ids))
                    .update(values, synchronize_session=False)
                )
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Unit record update failed for {record_ids}: {e}")
            raise WriteError(f"Could not update unit records: {e}", list(record_ids)) from e

    def get(self, record_id: str) -> Optional[UnitRecord]:
        try:
            with self._session_factory() as db:
                row = db.get(SkiRecordModel, record_id)
                return _to_unit_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Record lookup failed for {record_id}: {e}")
            raise WriteError(f"Could not load record {record_id}: {e}", [record_id]) from e


class SqlCommentStore(CommentStore):

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_global(self, serial_number: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                row = db.get(GlobalCommentModel, serial_number)
                return row.comment if row else None
        except SQLAlchemyError as e:
            logger.error(f"Global comment lookup failed for {serial_number}: {e}")
            raise WriteError(f"Could not load comment for {serial_number}: {e}") from e

    def set_global(self, serial_number: str, comment: str) -> None:
        try:
            with self._session_factory() as db:
                row = db.get(GlobalCommentModel, serial_number)
                if row is None:
                    row = GlobalCommentModel(serial_number=serial_number)
                    db.add(row)
                row.comment = comment or ""
                row.updated_at = utcnow()
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Global comment save failed for {serial_number}: {e}")
            raise WriteError(f"Could not save comment for {serial_number}: {e}") from e


class SqlOverrideLog(OverrideLog):

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(
        self,
        operation_name: str,
        serial_number: str,
        side: Optional[str],
        upstream_grade: Optional[str],
        operator_initials: Optional[str],
        reason: Optional[str],
    ) -> None:
        try:
            with self._session_factory() as db:
                db.add(GateOverrideModel(
                    operation_name=operation_name,
                    serial_number=serial_number,
                    side=side,
                    upstream_grade=upstream_grade,
                    operator_initials=operator_initials,
                    reason=reason,
                ))
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Override audit write failed for {serial_number}: {e}")
            raise WriteError(f"Could not record gate override: {e}") from e

    def list_for_serial(self, serial_number: str) -> List[Dict[str, Any]]:
        with self._session_factory() as db:
            rows = (
                db.query(GateOverrideModel)
                .filter_by(serial_number=serial_number)
                .order_by(GateOverrideModel.id)
                .all()
            )
            return [
                {
                    "operation_name": r.operation_name,
                    "serial_number": r.serial_number,
                    "side": r.side,
                    "upstream_grade": r.upstream_grade,
                    "operator_initials": r.operator_initials,
                    "reason": r.reason,
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in rows
            ]
