"""
Repository Pattern for Compliance Screening Records

Provides the data access layer for screening records, their watchlist
results and the audit trail. Record writes are version-checked: a save
based on an outdated version raises StaleWriteError instead of
overwriting a concurrent officer's change.
"""

import logging
from typing import List, Optional, Dict, Any, Sequence, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError

from compliance_errors import RecordNotFoundError, StaleWriteError, ValidationError
from compliance_models import ScreeningRecord, WatchlistResult
from database.models import (
    ScreeningRecordRow,
    ScreeningListResult,
    AuditLog,
    AuditAction,
    RecordStatus,
)

logger = logging.getLogger(__name__)


def _apply_columns(row: ScreeningRecordRow, record: ScreeningRecord) -> None:
    row.shipment_id = record.shipment_id
    row.status = RecordStatus(record.status.value)
    row.company_name = record.end_user.company_name or None
    row.country = record.end_user.country or None
    row.assigned_officer = record.assigned_officer or None
    row.overall_risk = record.overall_risk
    row.risk_tier = record.risk_tier
    row.enhanced_dd_required = record.enhanced_dd_required
    row.enhanced_dd_completed = record.enhanced_dd_completed
    row.watchlist_run_count = record.watchlist_run_count
    row.payload = record.to_dict()


# ============================================
# SCREENING RECORD REPOSITORY
# ============================================

class ScreeningRecordRepository:
    """Repository for screening record operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, record: ScreeningRecord) -> ScreeningRecordRow:
        """
        Persist a new screening record.

        Raises:
            ValidationError: If a record with the same id exists
        """
        duplicate = ValidationError(
            f"Screening '{record.screening_id}' already exists",
            field="screening_id",
            code="DUPLICATE_SCREENING"
        )
        if self.exists(record.screening_id):
            raise duplicate

        row = ScreeningRecordRow(id=record.screening_id, version=record.version)
        _apply_columns(row, record)
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            raise duplicate
        logger.info("Created screening record %s", record.screening_id)
        return row

    def _get_row(self, screening_id: str) -> ScreeningRecordRow:
        row = self.session.get(ScreeningRecordRow, screening_id)
        if row is None:
            raise RecordNotFoundError(screening_id)
        return row

    def get(self, screening_id: str) -> ScreeningRecord:
        """
        Load a screening record.

        Raises:
            RecordNotFoundError: If no record has this id
        """
        row = self._get_row(screening_id)
        record = ScreeningRecord.from_dict(row.payload)
        record.version = row.version
        return record

    def exists(self, screening_id: str) -> bool:
        return self.session.get(ScreeningRecordRow, screening_id) is not None

    def save(self, record: ScreeningRecord, expected_version: int) -> ScreeningRecord:
        """
        Write an updated record over the stored one.

        Args:
            record: The new state; its version must be expected_version + 1
            expected_version: The version the change was based on

        Raises:
            RecordNotFoundError: If the record does not exist
            StaleWriteError: If the stored version is not expected_version,
                or a concurrent writer commits first
        """
        row = self._get_row(record.screening_id)
        if row.version != expected_version:
            raise StaleWriteError(record.screening_id, expected_version, row.version)
        if record.version != expected_version + 1:
            raise ValidationError(
                f"New version must be {expected_version + 1}, got {record.version}",
                field="version",
                code="INVALID_VERSION"
            )

        _apply_columns(row, record)
        row.version = record.version
        try:
            self.session.flush()
        except StaleDataError:
            self.session.rollback()
            actual = self.session.execute(
                select(ScreeningRecordRow.version).where(ScreeningRecordRow.id == record.screening_id)
            ).scalar_one_or_none()
            raise StaleWriteError(record.screening_id, expected_version,
                                  actual if actual is not None else expected_version)
        return record

    def list_records(
        self,
        status: Optional[str] = None,
        assigned_officer: Optional[str] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[ScreeningRecord], int]:
        """
        List records with optional filters.

        Returns:
            Tuple of (records, total count)
        """
        conditions = []
        if status:
            try:
                conditions.append(ScreeningRecordRow.status == RecordStatus(status))
            except ValueError:
                raise ValidationError(f"Unknown screening status '{status}'", field="status",
                                      code="INVALID_STATUS")
        if assigned_officer:
            conditions.append(ScreeningRecordRow.assigned_officer == assigned_officer)

        count_query = select(func.count()).select_from(ScreeningRecordRow)
        query = select(ScreeningRecordRow)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        query = query.order_by(ScreeningRecordRow.created_at.desc(), ScreeningRecordRow.id)
        rows = self.session.execute(query.offset(offset).limit(limit)).scalars().all()

        records = []
        for row in rows:
            record = ScreeningRecord.from_dict(row.payload)
            record.version = row.version
            records.append(record)
        return records, total

    # ----------------------------------------
    # Watchlist results
    # ----------------------------------------

    def add_list_results(
        self,
        screening_id: str,
        run_number: int,
        results: Sequence[WatchlistResult]
    ) -> List[ScreeningListResult]:
        """Store one watchlist run, one row per list in output order."""
        rows = [
            ScreeningListResult(
                record_id=screening_id,
                run_number=run_number,
                position=position,
                list_name=result.list_name,
                match_found=result.match_found,
                matched_entity_name=result.matched_entity_name,
                match_confidence=result.match_confidence,
                match_reason=result.match_reason,
                lookup_failed=result.lookup_failed,
                processing_time_ms=result.processing_time_ms
            )
            for position, result in enumerate(results)
        ]
        self.session.add_all(rows)
        self.session.flush()
        return rows

    def get_list_results(self, screening_id: str, run_number: Optional[int] = None) -> List[WatchlistResult]:
        """Results of one run (the latest when run_number is None), in list order."""
        if run_number is None:
            run_number = self.session.execute(
                select(func.max(ScreeningListResult.run_number))
                .where(ScreeningListResult.record_id == screening_id)
            ).scalar_one_or_none()
            if run_number is None:
                return []

        rows = self.session.execute(
            select(ScreeningListResult)
            .where(and_(
                ScreeningListResult.record_id == screening_id,
                ScreeningListResult.run_number == run_number
            ))
            .order_by(ScreeningListResult.position)
        ).scalars().all()

        return [
            WatchlistResult(
                list_name=row.list_name,
                match_found=row.match_found,
                matched_entity_name=row.matched_entity_name,
                match_confidence=row.match_confidence,
                match_reason=row.match_reason,
                lookup_failed=row.lookup_failed,
                processing_time_ms=row.processing_time_ms or 0.0
            )
            for row in rows
        ]


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        resource_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        resource_type: str = "screening_record"
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: Type of action
            resource_id: Screening id
            actor_name: Officer performing the action
            details: Additional details
            old_value: Value before change
            new_value: Value after change
            success: Whether action succeeded
            error_message: Error if failed

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_name=actor_name,
            details=details,
            old_value=old_value,
            new_value=new_value,
            success=success,
            error_message=error_message
        )
        self.session.add(log)
        self.session.flush()
        return log

    def for_resource(self, resource_id: str, limit: int = 100) -> List[AuditLog]:
        """Audit entries of one record, oldest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.resource_id == resource_id)
            .order_by(AuditLog.timestamp, AuditLog.id)
            .limit(limit)
        )
        return list(self.session.execute(query).scalars().all())
