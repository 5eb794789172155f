"""SQLAlchemy models for the measurement workflow store."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_engine(database_url: str) -> Engine:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


class SkiRecordModel(Base):
    __tablename__ = "ski_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    serial_number = Column(String(100), nullable=False, index=True)
    sku = Column(String(100), nullable=True)
    side = Column(String(8), nullable=False)
    operation_id = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="in_progress", index=True)
    comment = Column(Text, nullable=True)
    grade = Column(String(4), nullable=True)
    operator_initials = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class MeasurementModel(Base):
    __tablename__ = "measurements"

    id = Column(Integer, primary_key=True, index=True)
    ski_record_id = Column(String(36), ForeignKey("ski_records.id"), nullable=False, index=True)
    field_id = Column(String(100), nullable=False)
    value = Column(Text, nullable=True)
    skipped = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("ski_record_id", "field_id", name="uq_measurement_record_field"),
    )


class GlobalCommentModel(Base):
    """Comment shared by every side and operation of a serial number."""
    __tablename__ = "ski_global_comments"

    serial_number = Column(String(100), primary_key=True)
    comment = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GateOverrideModel(Base):
    """Audit trail of operators proceeding past a terminal-grade block."""
    __tablename__ = "gate_overrides"

    id = Column(Integer, primary_key=True, index=True)
    operation_name = Column(String(100), nullable=False, index=True)
    serial_number = Column(String(100), nullable=False, index=True)
    side = Column(String(8), nullable=True)
    upstream_grade = Column(String(4), nullable=True)
    operator_initials = Column(String(20), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
