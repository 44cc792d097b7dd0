"""
Database-backed Compliance Screening Service

Runs the pure compliance components (workflow, watchlist screener, risk
aggregator) against persisted screening records. Each operation loads the
record, applies one workflow step, writes it back with a version check and
adds an audit_logs row, all inside the caller's session.

Usage:
    # With FastAPI
    configure_screening_service(db_provider, workflow, screener, risk)

    with screening_service_scope() as service:
        record = service.transition("SCR-1", "approved", actor="officer.lee")

    # Standalone
    with db_provider.session_scope() as session:
        service = ComplianceScreeningService(session, workflow, screener)
        record = service.run_screening("SCR-1", actor="officer.lee")
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional

from sqlalchemy.orm import Session

from audit_logger import ComplianceAuditLogger
from compliance_errors import ConfigurationError
from compliance_models import (
    EndUser,
    InitialRiskSuggestion,
    RiskScores,
    ScreeningRecord,
    TransactionContext,
    WatchlistResult,
)
from compliance_workflow import ComplianceWorkflow
from risk_aggregator import RiskAggregator
from text_utils import sanitize_for_logging
from watchlist_screener import WatchlistScreener
from database.models import AuditAction
from database.repositories import ScreeningRecordRepository, AuditRepository

logger = logging.getLogger(__name__)


class ComplianceScreeningService:
    """
    Persistence-backed screening operations.

    The session is owned by the caller; nothing here commits. A failed
    operation leaves the session for the caller to roll back.
    """

    def __init__(
        self,
        session: Session,
        workflow: Optional[ComplianceWorkflow] = None,
        screener: Optional[WatchlistScreener] = None,
        risk_aggregator: Optional[RiskAggregator] = None,
        audit_logger: Optional[ComplianceAuditLogger] = None
    ):
        """
        Args:
            session: SQLAlchemy database session
            workflow: State machine and officer actions
            screener: Watchlist screener (required for run_screening)
            risk_aggregator: Defaults to the workflow's aggregator
            audit_logger: JSON audit channel, passed on to a default workflow
        """
        self.session = session
        self.risk = risk_aggregator or (workflow.risk if workflow else RiskAggregator())
        self.workflow = workflow or ComplianceWorkflow(risk_aggregator=self.risk, audit_logger=audit_logger)
        self.screener = screener
        self.records = ScreeningRecordRepository(session)
        self.audit = AuditRepository(session)

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    def get(self, screening_id: str) -> ScreeningRecord:
        return self.records.get(screening_id)

    def list_records(self, status: Optional[str] = None, assigned_officer: Optional[str] = None,
                     offset: int = 0, limit: int = 100):
        return self.records.list_records(status, assigned_officer, offset, limit)

    def checklist(self, screening_id: str) -> Dict[str, Any]:
        """Checklist items, missing approval items and the workflow recommendation"""
        record = self.records.get(screening_id)
        recommended = self.workflow.recommended_status(record)
        return {
            'screening_id': record.screening_id,
            'status': record.status.value,
            'version': record.version,
            'items': [item.to_dict() for item in self.workflow.checklist(record)],
            'missing_for_approval': [issue.to_dict() for issue in self.workflow.missing_for_approval(record)],
            'recommended_status': recommended.value if recommended else None,
            'available_transitions': [s.value for s in self.workflow.available_transitions(record)]
        }

    def watchlist_history(self, screening_id: str, run_number: Optional[int] = None) -> List[WatchlistResult]:
        self.records.get(screening_id)
        return self.records.get_list_results(screening_id, run_number)

    def audit_trail(self, screening_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        return [
            {
                'timestamp': entry.timestamp.isoformat() if entry.timestamp else None,
                'action': entry.action.value,
                'actor': entry.actor_name,
                'details': entry.details,
                'old_value': entry.old_value,
                'new_value': entry.new_value,
                'success': entry.success
            }
            for entry in self.audit.for_resource(screening_id, limit)
        ]

    # ----------------------------------------
    # Record creation
    # ----------------------------------------

    def suggest_initial_scores(self, end_user: EndUser, transaction: TransactionContext) -> InitialRiskSuggestion:
        return self.risk.suggest_initial_scores(
            end_user.country, transaction.product_categories, transaction.value
        )

    def open_screening(
        self,
        screening_id: str,
        shipment_id: str,
        actor: str,
        end_user: Optional[EndUser] = None,
        transaction: Optional[TransactionContext] = None,
        risk_scores: Optional[RiskScores] = None
    ) -> ScreeningRecord:
        """
        Create and persist a pending screening record.

        Without explicit risk scores the suggested initial scores are used.

        Raises:
            ValidationError: Bad input, or the screening id is taken
        """
        actor = self.workflow.require_actor(actor)
        end_user = end_user or EndUser()
        transaction = transaction or TransactionContext()

        suggestion = None
        if risk_scores is None:
            suggestion = self.suggest_initial_scores(end_user, transaction)
            risk_scores = suggestion.scores

        record = self.workflow.create_record(screening_id, shipment_id, end_user, transaction, risk_scores)
        self.records.add(record)

        details = {'shipment_id': record.shipment_id, 'risk_tier': record.risk_tier}
        if suggestion is not None:
            details['manual_review_required'] = suggestion.manual_review_required
            details['manual_review_reasons'] = suggestion.reasons
        self.audit.log(
            AuditAction.CREATE,
            resource_id=record.screening_id,
            actor_name=actor,
            details=details,
            new_value={'status': record.status.value, 'version': record.version}
        )
        logger.info("Opened screening %s for shipment %s",
                    sanitize_for_logging(record.screening_id), sanitize_for_logging(record.shipment_id))
        return record

    # ----------------------------------------
    # Mutations
    # ----------------------------------------

    def _apply(
        self,
        screening_id: str,
        action: AuditAction,
        actor: str,
        change: Callable[[ScreeningRecord], ScreeningRecord],
        details: Optional[Dict[str, Any]] = None
    ) -> ScreeningRecord:
        record = self.records.get(screening_id)
        updated = change(record)
        self.records.save(updated, record.version)
        self.audit.log(
            action,
            resource_id=screening_id,
            actor_name=actor,
            details=dict(details or {}, version=updated.version),
            old_value={'status': record.status.value, 'version': record.version},
            new_value={'status': updated.status.value, 'version': updated.version}
        )
        return updated

    def run_screening(
        self,
        screening_id: str,
        actor: str,
        expected_version: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> ScreeningRecord:
        """
        Screen the record's end user against every watchlist and store the run.

        Raises:
            ConfigurationError: No screener configured
            ValidationError: End-user name or country unusable for screening
            StaleWriteError: Record changed since expected_version
        """
        if self.screener is None:
            raise ConfigurationError("Watchlist screener not configured")

        actor = self.workflow.require_actor(actor)
        record = self.records.get(screening_id)
        self.workflow.check_version(record, expected_version, actor)
        self.workflow.require_open(record)
        results = self.screener.screen(record.end_user.company_name, record.end_user.country or None, timeout)

        updated = self.workflow.record_watchlist_run(record, results, actor, expected_version)
        self.records.save(updated, record.version)
        self.records.add_list_results(screening_id, updated.watchlist_run_count, results)
        self.audit.log(
            AuditAction.SCREEN,
            resource_id=screening_id,
            actor_name=actor,
            details={
                'run': updated.watchlist_run_count,
                'match_found': self.screener.has_any_match(results),
                'matched_lists': [r.list_name for r in results if r.match_found],
                'failed_lists': [r.list_name for r in results if r.lookup_failed],
                'version': updated.version
            },
            old_value={'enhanced_dd_required': record.enhanced_dd_required},
            new_value={'enhanced_dd_required': updated.enhanced_dd_required}
        )
        return updated

    def transition(
        self,
        screening_id: str,
        target_status: Any,
        actor: str,
        reason: str = "",
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        return self._apply(
            screening_id, AuditAction.TRANSITION, actor,
            lambda record: self.workflow.transition(record, target_status, actor, reason, expected_version),
            {'reason': reason or ""}
        )

    def update_risk_scores(
        self,
        screening_id: str,
        scores: Mapping[str, Any],
        actor: str,
        notes: Optional[Mapping[str, str]] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        return self._apply(
            screening_id, AuditAction.UPDATE_RISK, actor,
            lambda record: self.workflow.update_risk_scores(record, scores, actor, notes, expected_version),
            {'scores': dict(scores)}
        )

    def assign_officer(
        self,
        screening_id: str,
        officer: str,
        actor: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        return self._apply(
            screening_id, AuditAction.ASSIGN_OFFICER, actor,
            lambda record: self.workflow.assign_officer(record, officer, actor, notes, expected_version),
            {'officer': officer}
        )

    def complete_enhanced_dd(
        self,
        screening_id: str,
        actor: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        return self._apply(
            screening_id, AuditAction.COMPLETE_ENHANCED_DD, actor,
            lambda record: self.workflow.complete_enhanced_dd(record, actor, notes, expected_version)
        )

    def mark_document_uploaded(
        self,
        screening_id: str,
        document_type: str,
        actor: str,
        file_reference: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        return self._apply(
            screening_id, AuditAction.UPLOAD_DOCUMENT, actor,
            lambda record: self.workflow.mark_document_uploaded(
                record, document_type, actor, file_reference, expected_version
            ),
            {'document_type': document_type}
        )

    def update_details(
        self,
        screening_id: str,
        actor: str,
        end_user: Optional[Mapping[str, Any]] = None,
        transaction: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        return self._apply(
            screening_id, AuditAction.UPDATE_DETAILS, actor,
            lambda record: self.workflow.update_details(record, actor, end_user, transaction, expected_version),
            {'end_user_fields': sorted(end_user or {}), 'transaction_fields': sorted(transaction or {})}
        )


# FastAPI Dependency Injection Support
_screening_service_factory = None


def configure_screening_service(
    db_provider,
    workflow: Optional[ComplianceWorkflow] = None,
    screener: Optional[WatchlistScreener] = None,
    risk_aggregator: Optional[RiskAggregator] = None,
    audit_logger: Optional[ComplianceAuditLogger] = None
) -> None:
    """
    Configure the screening service factory.

    Call this during application startup.

    Args:
        db_provider: DatabaseSessionProvider instance
    """
    global _screening_service_factory
    _screening_service_factory = (db_provider, workflow, screener, risk_aggregator, audit_logger)


def reset_screening_service() -> None:
    global _screening_service_factory
    _screening_service_factory = None


def is_screening_service_configured() -> bool:
    return _screening_service_factory is not None


@contextmanager
def screening_service_scope() -> Generator[ComplianceScreeningService, None, None]:
    """
    A service bound to a fresh session; commits on success, rolls back on error.

    Raises:
        ConfigurationError: If the service has not been configured
    """
    if _screening_service_factory is None:
        raise ConfigurationError(
            "Screening service not configured. Call configure_screening_service() first."
        )

    db_provider, workflow, screener, risk_aggregator, audit_logger = _screening_service_factory
    with db_provider.session_scope() as session:
        yield ComplianceScreeningService(session, workflow, screener, risk_aggregator, audit_logger)
