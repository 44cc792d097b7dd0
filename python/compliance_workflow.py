"""
Compliance workflow state machine

Every change to a ScreeningRecord goes through this module: explicit
status transitions gated by the approval checklist, and the officer
actions that feed the checklist (watchlist runs, risk-score edits,
officer assignment, enhanced due diligence, document uploads).

Operations never mutate their input. They return a copy with
``version + 1``; a caller passing a stale ``expected_version`` gets a
StaleWriteError. Risk and watchlist signals only *recommend* enhanced
due diligence; moving into the hold state is always an officer action.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from audit_logger import ComplianceAuditLogger
from compliance_errors import (
    ChecklistIssue,
    IncompleteChecklistError,
    InvalidTransitionError,
    StaleWriteError,
    ValidationError,
)
from compliance_models import (
    ApprovalDetails,
    DocumentSlot,
    EndUser,
    RiskScores,
    ScreeningRecord,
    ScreeningStatus,
    TransactionContext,
    WatchlistResult,
    utc_now_iso,
)
from config_manager import WorkflowConfig
from risk_aggregator import RiskAggregator
from text_utils import parse_number, sanitize_for_logging
from watchlist_screener import has_any_match

logger = logging.getLogger(__name__)

S = ScreeningStatus

TRANSITIONS: Dict[ScreeningStatus, frozenset] = {
    S.PENDING: frozenset({S.IN_REVIEW, S.APPROVED, S.DENIED, S.REQUIRES_ENHANCED_DD}),
    S.IN_REVIEW: frozenset({S.PENDING, S.APPROVED, S.DENIED, S.REQUIRES_ENHANCED_DD}),
    S.REQUIRES_ENHANCED_DD: frozenset({S.PENDING, S.IN_REVIEW, S.APPROVED, S.DENIED}),
    S.APPROVED: frozenset(),
    S.DENIED: frozenset(),
}

# Exits from the enhanced-DD hold that stay legal before DD is completed
HOLD_EXITS = frozenset({S.IN_REVIEW, S.APPROVED, S.DENIED})


@dataclass
class ChecklistItem:
    code: str
    label: str
    passed: bool
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'label': self.label, 'passed': self.passed, 'required': self.required}


def parse_status(value: Any) -> ScreeningStatus:
    """Read a status name

    Raises:
        ValidationError: If value is not a workflow state
    """
    if isinstance(value, ScreeningStatus):
        return value
    try:
        return ScreeningStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown screening status '{sanitize_for_logging(value)}'",
            field="target_status",
            code="INVALID_STATUS",
            suggestion=f"Use one of: {', '.join(s.value for s in ScreeningStatus)}"
        )


class ComplianceWorkflow:
    """Status transitions and officer actions over screening records

    Args:
        config: Checklist gates and document types
        risk_aggregator: Recomputes overall risk after score edits
        audit_logger: Receives transition and officer-action events
    """

    def __init__(
        self,
        config: Optional[WorkflowConfig] = None,
        risk_aggregator: Optional[RiskAggregator] = None,
        audit_logger: Optional[ComplianceAuditLogger] = None
    ):
        self.config = config or WorkflowConfig()
        self.risk = risk_aggregator or RiskAggregator()
        self.audit_logger = audit_logger

    # ------------------------------------------------------------------
    # Record creation
    # ------------------------------------------------------------------

    def create_record(
        self,
        screening_id: str,
        shipment_id: str,
        end_user: Optional[EndUser] = None,
        transaction: Optional[TransactionContext] = None,
        risk_scores: Optional[RiskScores] = None
    ) -> ScreeningRecord:
        """A new pending record with one slot per screening document type"""
        if not screening_id or not str(screening_id).strip():
            raise ValidationError("screening_id is required", field="screening_id", code="MISSING_FIELD")
        if not shipment_id or not str(shipment_id).strip():
            raise ValidationError("shipment_id is required", field="shipment_id", code="MISSING_FIELD")

        end_user = copy.deepcopy(end_user) if end_user else EndUser()
        self._validate_end_user(end_user)
        transaction = copy.deepcopy(transaction) if transaction else TransactionContext()
        self._validate_transaction(transaction)

        record = ScreeningRecord(
            screening_id=str(screening_id).strip(),
            shipment_id=str(shipment_id).strip(),
            end_user=end_user,
            transaction=transaction,
            risk_scores=risk_scores or RiskScores(),
            documents=[
                DocumentSlot(document_type=doc_type,
                             mandatory=doc_type in self.config.mandatory_document_types)
                for doc_type in self.config.screening_document_types
            ]
        )
        self._refresh_risk(record)
        return record

    # ------------------------------------------------------------------
    # Checklist
    # ------------------------------------------------------------------

    def checklist(self, record: ScreeningRecord) -> List[ChecklistItem]:
        """Every approval gate with its current pass/fail state"""
        min_length = self.config.min_end_use_declaration_length
        declaration = (record.transaction.end_use_declaration or "").strip()
        items = [
            ChecklistItem('end_user_registration', 'End-user registration number provided',
                          bool((record.end_user.registration_number or "").strip())),
            ChecklistItem('company_name', 'End-user company name provided',
                          bool((record.end_user.company_name or "").strip())),
            ChecklistItem('end_use_declaration', f'End-use declaration provided ({min_length}+ chars)',
                          len(declaration) >= min_length),
            ChecklistItem('watchlist_screening', 'Watchlist screening completed',
                          record.watchlist_run_count >= 1),
            ChecklistItem('assigned_officer', 'Compliance officer assigned',
                          bool((record.assigned_officer or "").strip())),
        ]

        mandatory_missing = [d.document_type for d in record.documents if d.mandatory and not d.uploaded]
        items.append(ChecklistItem('required_documents', 'Mandatory documents uploaded',
                                   not mandatory_missing, required=self.config.require_mandatory_documents))

        dd_open = record.enhanced_dd_required and not record.enhanced_dd_completed
        items.append(ChecklistItem('enhanced_due_diligence', 'Enhanced due diligence completed',
                                   not dd_open, required=self.config.require_enhanced_dd_completion))
        return items

    def missing_for_approval(self, record: ScreeningRecord) -> List[ChecklistIssue]:
        return [
            ChecklistIssue(item.code, f"Missing: {item.label}")
            for item in self.checklist(record)
            if item.required and not item.passed
        ]

    def recommended_status(self, record: ScreeningRecord) -> Optional[ScreeningStatus]:
        """The hold state when enhanced DD is required but not yet entered or done"""
        if record.status.is_terminal or record.status == S.REQUIRES_ENHANCED_DD:
            return None
        if record.enhanced_dd_required and not record.enhanced_dd_completed:
            return S.REQUIRES_ENHANCED_DD
        return None

    def available_transitions(self, record: ScreeningRecord) -> List[ScreeningStatus]:
        """Targets the state graph allows now, before checklist gates"""
        targets = TRANSITIONS[record.status]
        if record.status == S.REQUIRES_ENHANCED_DD and not record.enhanced_dd_completed:
            targets = targets & HOLD_EXITS
        if not record.enhanced_dd_required:
            targets = targets - {S.REQUIRES_ENHANCED_DD}
        return [s for s in ScreeningStatus if s in targets]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        record: ScreeningRecord,
        target_status: Any,
        actor: str,
        reason: str = "",
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        """Move a record to a new status

        Raises:
            ValidationError: Missing actor or unknown status
            StaleWriteError: expected_version differs from record.version
            InvalidTransitionError: The state graph forbids the move
            IncompleteChecklistError: Approval gates unmet, or a denial
                without a reason; every missing item is listed
        """
        actor = self.require_actor(actor)
        target = parse_status(target_status)
        self.check_version(record, expected_version, actor)

        current = record.status
        try:
            self._check_graph(record, target)
            self._check_gates(record, target, reason)
        except (InvalidTransitionError, IncompleteChecklistError) as e:
            if self.audit_logger:
                missing = e.missing_codes if isinstance(e, IncompleteChecklistError) else []
                self.audit_logger.log_transition_rejected(
                    record.screening_id, actor, current.value, target.value, e.code, missing
                )
            logger.info("Rejected %s -> %s for %s: %s", current.value, target.value,
                        sanitize_for_logging(record.screening_id), e.code)
            raise

        updated = self._advance(record)
        details = ApprovalDetails(
            actor=actor,
            timestamp=updated.updated_at,
            reason=(reason or "").strip(),
            from_status=current.value,
            to_status=target.value
        )
        updated.status = target
        updated.approval_details = details
        updated.history.append(details)

        if self.audit_logger:
            self.audit_logger.log_transition(
                record.screening_id, actor, current.value, target.value, details.reason, updated.version
            )
        logger.info("Screening %s moved %s -> %s by %s", sanitize_for_logging(record.screening_id),
                    current.value, target.value, sanitize_for_logging(actor))
        return updated

    def _check_graph(self, record: ScreeningRecord, target: ScreeningStatus) -> None:
        current = record.status
        if current.is_terminal:
            raise InvalidTransitionError(current.value, target.value, f"'{current.value}' is final")
        if target == current:
            raise InvalidTransitionError(current.value, target.value, "record is already in this state")
        if current == S.REQUIRES_ENHANCED_DD and not record.enhanced_dd_completed and target not in HOLD_EXITS:
            raise InvalidTransitionError(
                current.value, target.value,
                "only in_review, approved or denied are allowed until enhanced DD is completed"
            )
        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        if target == S.REQUIRES_ENHANCED_DD and not record.enhanced_dd_required:
            raise InvalidTransitionError(current.value, target.value, "enhanced DD is not required")

    def _check_gates(self, record: ScreeningRecord, target: ScreeningStatus, reason: str) -> None:
        if target == S.APPROVED:
            missing = self.missing_for_approval(record)
            if missing:
                raise IncompleteChecklistError(missing, target.value)
        elif target == S.DENIED and not (reason or "").strip():
            raise IncompleteChecklistError(
                [ChecklistIssue('denial_reason', 'A denial requires a reason')], target.value
            )

    # ------------------------------------------------------------------
    # Officer actions
    # ------------------------------------------------------------------

    def record_watchlist_run(
        self,
        record: ScreeningRecord,
        results: Sequence[WatchlistResult],
        actor: str,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        """Replace the watchlist results with a new run

        A match makes enhanced DD required; it never clears it.
        """
        actor = self.require_actor(actor)
        self.check_version(record, expected_version, actor)
        self.require_open(record)

        results = list(results)
        if not results or not all(isinstance(r, WatchlistResult) for r in results):
            raise ValidationError("A watchlist run needs a result per list", field="watchlist_results",
                                  code="INVALID_WATCHLIST_RESULTS")

        updated = self._advance(record)
        updated.watchlist_results = results
        updated.watchlist_run_count = record.watchlist_run_count + 1
        updated.last_screened_at = updated.updated_at
        self._refresh_risk(updated)

        self._audit(updated, actor, "watchlist_run", {
            'match_found': has_any_match(results),
            'matched_lists': [r.list_name for r in results if r.match_found],
            'failed_lists': [r.list_name for r in results if r.lookup_failed],
            'run': updated.watchlist_run_count
        })
        return updated

    def update_risk_scores(
        self,
        record: ScreeningRecord,
        scores: Mapping[str, Any],
        actor: str,
        notes: Optional[Mapping[str, str]] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        """Edit category scores; overall risk and tier are recomputed"""
        actor = self.require_actor(actor)
        self.check_version(record, expected_version, actor)
        self.require_open(record)

        merged = record.risk_scores.as_mapping()
        for name, value in scores.items():
            if name not in RiskScores.CATEGORIES:
                raise ValidationError(f"Unknown risk category '{sanitize_for_logging(name)}'",
                                      field=str(name), code="UNKNOWN_RISK_CATEGORY")
            self.risk.validate_score(name, value)
            merged[name] = value

        updated = self._advance(record)
        updated.risk_scores = RiskScores(notes={**record.risk_scores.notes, **dict(notes or {})}, **merged)
        self._refresh_risk(updated)

        self._audit(updated, actor, "update_risk_scores", {
            'scores': dict(merged),
            'overall_risk': updated.overall_risk,
            'risk_tier': updated.risk_tier
        })
        return updated

    def assign_officer(
        self,
        record: ScreeningRecord,
        officer: str,
        actor: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        actor = self.require_actor(actor)
        self.check_version(record, expected_version, actor)
        self.require_open(record)
        if not officer or not str(officer).strip():
            raise ValidationError("Officer name is required", field="assigned_officer", code="MISSING_FIELD")

        updated = self._advance(record)
        updated.assigned_officer = str(officer).strip()
        if notes is not None:
            updated.officer_notes = notes
        self._audit(updated, actor, "assign_officer", {'officer': updated.assigned_officer})
        return updated

    def complete_enhanced_dd(
        self,
        record: ScreeningRecord,
        actor: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        """Officer sign-off on enhanced due diligence"""
        actor = self.require_actor(actor)
        self.check_version(record, expected_version, actor)
        self.require_open(record)
        if not record.enhanced_dd_required:
            raise ValidationError("Enhanced due diligence is not required for this screening",
                                  field="enhanced_dd_completed", code="ENHANCED_DD_NOT_REQUIRED")

        updated = self._advance(record)
        updated.enhanced_dd_completed = True
        if notes:
            updated.officer_notes = f"{updated.officer_notes}\n{notes}".strip()
        self._audit(updated, actor, "complete_enhanced_dd", {'notes': notes or ""})
        return updated

    def mark_document_uploaded(
        self,
        record: ScreeningRecord,
        document_type: str,
        actor: str,
        file_reference: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        actor = self.require_actor(actor)
        self.check_version(record, expected_version, actor)
        self.require_open(record)

        updated = self._advance(record)
        slot = updated.document(document_type)
        if slot is None:
            if document_type not in self.config.screening_document_types:
                raise ValidationError(
                    f"Unknown document type '{sanitize_for_logging(document_type)}'",
                    field="document_type",
                    code="UNKNOWN_DOCUMENT_TYPE",
                    suggestion=f"Use one of: {', '.join(self.config.screening_document_types)}"
                )
            slot = DocumentSlot(document_type=document_type,
                                mandatory=document_type in self.config.mandatory_document_types)
            updated.documents.append(slot)

        slot.uploaded = True
        slot.file_reference = file_reference
        slot.uploaded_at = updated.updated_at
        self._audit(updated, actor, "mark_document_uploaded",
                    {'document_type': document_type, 'file_reference': file_reference})
        return updated

    def update_details(
        self,
        record: ScreeningRecord,
        actor: str,
        end_user: Optional[Mapping[str, Any]] = None,
        transaction: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None
    ) -> ScreeningRecord:
        """Patch end-user and transaction details"""
        actor = self.require_actor(actor)
        self.check_version(record, expected_version, actor)
        self.require_open(record)

        updated = self._advance(record)
        try:
            if end_user:
                updated.end_user = EndUser(**{**updated.end_user.to_dict(), **dict(end_user)})
            if transaction:
                updated.transaction = TransactionContext(**{**updated.transaction.to_dict(), **dict(transaction)})
        except TypeError as e:
            raise ValidationError(f"Unknown detail field: {e}", field="details", code="UNKNOWN_FIELD")
        self._validate_end_user(updated.end_user)
        self._validate_transaction(updated.transaction)

        self._audit(updated, actor, "update_details", {
            'end_user_fields': sorted(end_user or {}),
            'transaction_fields': sorted(transaction or {})
        })
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refresh_risk(self, record: ScreeningRecord) -> None:
        assessment = self.risk.aggregate(record.risk_scores)
        record.overall_risk = assessment.overall
        record.risk_tier = assessment.tier.value
        record.enhanced_dd_required = self.risk.enhanced_dd_required(
            assessment, has_any_match(record.watchlist_results), record.enhanced_dd_required
        )

    def _validate_end_user(self, end_user: EndUser) -> None:
        for name, value in end_user.to_dict().items():
            if not isinstance(value, str):
                raise ValidationError(f"End-user field '{name}' must be text",
                                      field=f"end_user.{name}", code="INVALID_FIELD_TYPE")

    def _validate_transaction(self, transaction: TransactionContext) -> None:
        for name in ('end_use_declaration', 'frequency'):
            if not isinstance(getattr(transaction, name), str):
                raise ValidationError(f"Transaction field '{name}' must be text",
                                      field=f"transaction.{name}", code="INVALID_FIELD_TYPE")
        categories = transaction.product_categories
        if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
            raise ValidationError("Product categories must be a list of names",
                                  field="transaction.product_categories", code="INVALID_FIELD_TYPE")
        value = parse_number(transaction.value)
        if value is None or value < 0:
            raise ValidationError("Transaction value must be a non-negative number",
                                  field="transaction.value", code="INVALID_AMOUNT")
        transaction.value = value
        currency = transaction.currency
        if not (isinstance(currency, str) and len(currency) == 3 and currency.isalpha()):
            raise ValidationError("Currency must be a 3-letter code", field="transaction.currency",
                                  code="INVALID_CURRENCY", suggestion="For example USD, EUR, MYR")
        transaction.currency = currency.upper()

    def _advance(self, record: ScreeningRecord) -> ScreeningRecord:
        updated = copy.deepcopy(record)
        updated.version = record.version + 1
        updated.updated_at = utc_now_iso()
        return updated

    def require_actor(self, actor: Any) -> str:
        if not isinstance(actor, str) or not actor.strip():
            raise ValidationError("Actor identity is required", field="actor", code="MISSING_ACTOR")
        return actor.strip()

    def require_open(self, record: ScreeningRecord) -> None:
        if record.status.is_terminal:
            raise ValidationError(
                f"Screening {record.screening_id} is {record.status.value} and can no longer change",
                field="status",
                code="RECORD_CLOSED"
            )

    def check_version(self, record: ScreeningRecord, expected_version: Optional[int], actor: str) -> None:
        if expected_version is None or expected_version == record.version:
            return
        if self.audit_logger:
            self.audit_logger.log_stale_write(record.screening_id, actor, expected_version, record.version)
        raise StaleWriteError(record.screening_id, expected_version, record.version)

    def _audit(self, record: ScreeningRecord, actor: str, action: str, details: Dict[str, Any]) -> None:
        details = dict(details, version=record.version)
        if self.audit_logger:
            self.audit_logger.log_officer_action(record.screening_id, actor, action, details)
        logger.debug("Officer action %s on %s", action, sanitize_for_logging(record.screening_id))
