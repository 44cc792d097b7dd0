"""
SQLAlchemy ORM Models for the Compliance Screening Core

Tables:
1. screening_records - One row per screening; the full record is kept as
   a JSON payload, with the columns officers filter on promoted next to it.
   ``version`` is the optimistic-concurrency counter.
2. screening_list_results - One row per list per watchlist run, in list order
3. audit_logs - Every transition and officer action (immutable)

JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in
tests).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Index, Enum, JSON, Uuid, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================
# ENUMS
# ============================================

class RecordStatus(str, PyEnum):
    """Workflow state as stored"""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    DENIED = "denied"
    REQUIRES_ENHANCED_DD = "requires_enhanced_dd"


class AuditAction(str, PyEnum):
    """Type of audit action"""
    CREATE = "CREATE"
    SCREEN = "SCREEN"
    TRANSITION = "TRANSITION"
    UPDATE_RISK = "UPDATE_RISK"
    ASSIGN_OFFICER = "ASSIGN_OFFICER"
    COMPLETE_ENHANCED_DD = "COMPLETE_ENHANCED_DD"
    UPLOAD_DOCUMENT = "UPLOAD_DOCUMENT"
    UPDATE_DETAILS = "UPDATE_DETAILS"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================
# SCREENING MODELS
# ============================================

class ScreeningRecordRow(Base, TimestampMixin):
    """
    Persisted screening record.

    ``payload`` is the authoritative copy (ScreeningRecord.to_dict());
    status, officer and risk columns are denormalised for querying.
    """
    __tablename__ = "screening_records"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    shipment_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    status: Mapped[RecordStatus] = mapped_column(
        Enum(RecordStatus, name='screening_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RecordStatus.PENDING,
        index=True
    )
    company_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    assigned_officer: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)

    overall_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    risk_tier: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    enhanced_dd_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enhanced_dd_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    watchlist_run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    list_results: Mapped[List["ScreeningListResult"]] = relationship(
        "ScreeningListResult",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by=lambda: [ScreeningListResult.run_number, ScreeningListResult.position]
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    __table_args__ = (
        Index('ix_screening_status_tier', 'status', 'risk_tier'),
    )

    def __repr__(self) -> str:
        return f"<ScreeningRecordRow(id='{self.id}', status={self.status}, version={self.version})>"


class ScreeningListResult(Base):
    """
    One list verdict of one watchlist run.

    Rows are only ever appended; a new run gets a new run_number.
    """
    __tablename__ = "screening_list_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("screening_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    list_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    match_found: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    matched_entity_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    match_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    match_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lookup_failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processing_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    screened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    record: Mapped["ScreeningRecordRow"] = relationship(
        "ScreeningRecordRow",
        back_populates="list_results"
    )

    __table_args__ = (
        UniqueConstraint('record_id', 'run_number', 'position', name='uq_list_result_position'),
    )

    def __repr__(self) -> str:
        return f"<ScreeningListResult(list='{self.list_name}', match={self.match_found})>"


class AuditLog(Base):
    """
    Compliance audit trail.

    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction, name='audit_action'), nullable=False, index=True)

    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, default="screening_record")
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)

    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    old_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index('ix_audit_timestamp_action', 'timestamp', 'action'),
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, resource='{self.resource_id}')>"
