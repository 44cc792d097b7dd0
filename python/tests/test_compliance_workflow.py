"""
Unit tests for the compliance workflow state machine and officer actions
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from compliance_errors import (
    IncompleteChecklistError,
    InvalidTransitionError,
    StaleWriteError,
    ValidationError,
)
from compliance_models import RiskScores, ScreeningStatus, WatchlistResult
from compliance_workflow import ComplianceWorkflow, parse_status
from config_manager import WorkflowConfig
from conftest import clean_results, match_on


def with_match(list_name='sdn_list'):
    return [match_on(r.list_name) if r.list_name == list_name else r for r in clean_results()]


class TestCreateRecord:

    def test_new_record_is_pending(self, new_record):
        assert new_record.status == ScreeningStatus.PENDING
        assert new_record.version == 1
        assert new_record.watchlist_run_count == 0
        assert new_record.approval_details is None

    def test_neutral_scores_give_medium_risk(self, new_record):
        assert new_record.overall_risk == 5.0
        assert new_record.risk_tier == "Medium"
        assert new_record.enhanced_dd_required is False

    def test_document_slots(self, new_record):
        slots = {d.document_type: d.mandatory for d in new_record.documents}
        assert slots['end_user_certificate'] is True
        assert slots['bank_reference'] is False
        assert len(slots) == 6

    def test_high_initial_scores_require_enhanced_dd(self, workflow, end_user, transaction):
        record = workflow.create_record("SCR-9", "SHP-9", end_user, transaction,
                                        RiskScores(geographic=9, product=8, end_user=5, transaction=8))
        assert record.risk_tier == "High"
        assert record.enhanced_dd_required is True

    def test_missing_ids(self, workflow):
        with pytest.raises(ValidationError):
            workflow.create_record("", "SHP-1")
        with pytest.raises(ValidationError):
            workflow.create_record("SCR-1", "  ")

    def test_negative_transaction_value(self, workflow, transaction):
        transaction.value = -5
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_record("SCR-1", "SHP-1", transaction=transaction)
        assert exc_info.value.code == "INVALID_AMOUNT"

    def test_numeric_string_value_coerced(self, workflow, transaction):
        transaction.value = "25,000"
        record = workflow.create_record("SCR-1", "SHP-1", transaction=transaction)
        assert record.transaction.value == 25000.0

    def test_bad_currency(self, workflow, transaction):
        transaction.currency = "US"
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_record("SCR-1", "SHP-1", transaction=transaction)
        assert exc_info.value.code == "INVALID_CURRENCY"


class TestApprovalChecklist:
    """Entering approved requires every checklist item"""

    def test_all_missing_items_reported_at_once(self, workflow, new_record):
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(new_record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['watchlist_screening', 'assigned_officer']
        assert exc_info.value.code == "INCOMPLETE_CHECKLIST"
        assert new_record.status == ScreeningStatus.PENDING
        assert new_record.version == 1

    def test_missing_end_user_details(self, workflow, ready_record):
        record = workflow.update_details(ready_record, "analyst.tan",
                                         end_user={'company_name': '', 'registration_number': ' '})
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['end_user_registration', 'company_name']

    def test_declaration_of_19_chars_rejected(self, workflow, ready_record):
        record = workflow.update_details(ready_record, "analyst.tan",
                                         transaction={'end_use_declaration': "Router assembly use"})
        assert len(record.transaction.end_use_declaration) == 19
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['end_use_declaration']

    def test_declaration_of_20_chars_accepted(self, workflow, ready_record):
        record = workflow.update_details(ready_record, "analyst.tan",
                                         transaction={'end_use_declaration': "Router assembly uses"})
        approved = workflow.transition(record, "approved", "officer.lee", reason="All checks passed")
        assert approved.status == ScreeningStatus.APPROVED

    def test_declaration_length_ignores_padding(self, workflow, ready_record):
        record = workflow.update_details(ready_record, "analyst.tan",
                                         transaction={'end_use_declaration': "  Router assembly use   "})
        assert len(record.transaction.end_use_declaration) == 24
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['end_use_declaration']

    def test_padded_declaration_of_20_chars_accepted(self, workflow, ready_record):
        record = workflow.update_details(ready_record, "analyst.tan",
                                         transaction={'end_use_declaration': "\n Router assembly uses \t"})
        approved = workflow.transition(record, "approved", "officer.lee", reason="All checks passed")
        assert approved.status == ScreeningStatus.APPROVED

    def test_approval_records_actor_and_time(self, workflow, ready_record):
        approved = workflow.transition(ready_record, "approved", " officer.lee ", reason="Clean screening")
        details = approved.approval_details
        assert details.actor == "officer.lee"
        assert details.reason == "Clean screening"
        assert details.from_status == "pending"
        assert details.to_status == "approved"
        assert details.timestamp == approved.updated_at
        assert approved.history == [details]
        assert approved.version == ready_record.version + 1

    def test_mandatory_documents_when_configured(self, risk, ready_record):
        workflow = ComplianceWorkflow(WorkflowConfig(require_mandatory_documents=True), risk)
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(ready_record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['required_documents']

        record = workflow.mark_document_uploaded(ready_record, "end_user_certificate", "analyst.tan", "s3://euc.pdf")
        assert workflow.transition(record, "approved", "officer.lee").status == ScreeningStatus.APPROVED

    def test_enhanced_dd_completion_when_configured(self, risk, ready_record):
        workflow = ComplianceWorkflow(WorkflowConfig(require_enhanced_dd_completion=True), risk)
        record = workflow.record_watchlist_run(ready_record, with_match(), "analyst.tan")
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['enhanced_due_diligence']

    def test_checklist_report(self, workflow, new_record):
        items = {item.code: item for item in workflow.checklist(new_record)}
        assert list(items) == ['end_user_registration', 'company_name', 'end_use_declaration',
                               'watchlist_screening', 'assigned_officer', 'required_documents',
                               'enhanced_due_diligence']
        assert items['company_name'].passed is True
        assert items['watchlist_screening'].passed is False
        assert items['required_documents'].required is False


class TestDenial:

    def test_denial_needs_reason(self, workflow, new_record):
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(new_record, "denied", "officer.lee", reason="   ")
        assert exc_info.value.missing_codes == ['denial_reason']

    def test_denial_with_reason(self, workflow, new_record):
        denied = workflow.transition(new_record, "denied", "officer.lee", reason="End user on SDN list")
        assert denied.status == ScreeningStatus.DENIED
        assert denied.approval_details.reason == "End user on SDN list"


class TestStateGraph:

    def test_terminal_states_are_final(self, workflow, new_record):
        denied = workflow.transition(new_record, "denied", "officer.lee", reason="Refused")
        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow.transition(denied, "in_review", "officer.lee")
        assert exc_info.value.from_status == "denied"
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_no_actions_on_closed_record(self, workflow, new_record):
        denied = workflow.transition(new_record, "denied", "officer.lee", reason="Refused")
        with pytest.raises(ValidationError) as exc_info:
            workflow.assign_officer(denied, "officer.wong", "officer.lee")
        assert exc_info.value.code == "RECORD_CLOSED"

    def test_same_state_rejected(self, workflow, new_record):
        with pytest.raises(InvalidTransitionError):
            workflow.transition(new_record, "pending", "officer.lee")

    def test_review_and_back(self, workflow, new_record):
        in_review = workflow.transition(new_record, "in_review", "officer.lee")
        back = workflow.transition(in_review, ScreeningStatus.PENDING, "officer.lee")
        assert back.status == ScreeningStatus.PENDING
        assert [h.to_status for h in back.history] == ['in_review', 'pending']
        assert back.version == 3

    def test_hold_needs_enhanced_dd_requirement(self, workflow, new_record):
        with pytest.raises(InvalidTransitionError):
            workflow.transition(new_record, "requires_enhanced_dd", "officer.lee")

    def test_unknown_state(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.transition(new_record, "escalated", "officer.lee")
        assert exc_info.value.code == "INVALID_STATUS"

    def test_parse_status(self):
        assert parse_status(" In_Review ") == ScreeningStatus.IN_REVIEW
        assert parse_status(ScreeningStatus.DENIED) == ScreeningStatus.DENIED

    def test_actor_required(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.transition(new_record, "in_review", "  ")
        assert exc_info.value.code == "MISSING_ACTOR"

    def test_available_transitions(self, workflow, new_record):
        assert workflow.available_transitions(new_record) == [
            ScreeningStatus.IN_REVIEW, ScreeningStatus.APPROVED, ScreeningStatus.DENIED
        ]


class TestEnhancedDueDiligenceHold:
    """Watchlist or risk signals recommend the hold; officers enter it"""

    def test_match_requires_dd_without_moving_status(self, workflow, new_record):
        record = workflow.record_watchlist_run(new_record, with_match(), "analyst.tan")
        assert record.enhanced_dd_required is True
        assert record.status == ScreeningStatus.PENDING
        assert workflow.recommended_status(record) == ScreeningStatus.REQUIRES_ENHANCED_DD

    def test_hold_allows_only_review_or_decision(self, workflow, new_record):
        record = workflow.record_watchlist_run(new_record, with_match(), "analyst.tan")
        held = workflow.transition(record, "requires_enhanced_dd", "officer.lee")
        assert workflow.recommended_status(held) is None
        assert workflow.available_transitions(held) == [
            ScreeningStatus.IN_REVIEW, ScreeningStatus.APPROVED, ScreeningStatus.DENIED
        ]
        with pytest.raises(InvalidTransitionError):
            workflow.transition(held, "pending", "officer.lee")
        assert workflow.transition(held, "in_review", "officer.lee").status == ScreeningStatus.IN_REVIEW

    def test_completed_dd_releases_hold(self, workflow, new_record):
        record = workflow.record_watchlist_run(new_record, with_match(), "analyst.tan")
        held = workflow.transition(record, "requires_enhanced_dd", "officer.lee")
        done = workflow.complete_enhanced_dd(held, "officer.lee", notes="Site visit completed")
        assert done.enhanced_dd_completed is True
        assert "Site visit completed" in done.officer_notes
        assert workflow.transition(done, "pending", "officer.lee").status == ScreeningStatus.PENDING

    def test_requirement_is_sticky(self, workflow, new_record):
        record = workflow.record_watchlist_run(new_record, with_match(), "analyst.tan")
        record = workflow.update_risk_scores(record, {'geographic': 1, 'product': 1, 'end_user': 1,
                                                      'transaction': 1}, "analyst.tan")
        record = workflow.record_watchlist_run(record, clean_results(), "analyst.tan")
        assert record.risk_tier == "Low"
        assert record.enhanced_dd_required is True

    def test_high_scores_require_dd(self, workflow, new_record):
        record = workflow.update_risk_scores(new_record, {'geographic': 9, 'product': 8, 'transaction': 8},
                                             "analyst.tan", notes={'geographic': 'Sanctioned region'})
        assert record.overall_risk == pytest.approx(7.5)
        assert record.risk_tier == "High"
        assert record.enhanced_dd_required is True
        assert record.risk_scores.notes == {'geographic': 'Sanctioned region'}

    def test_dd_completion_needs_requirement(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.complete_enhanced_dd(new_record, "officer.lee")
        assert exc_info.value.code == "ENHANCED_DD_NOT_REQUIRED"


class TestOptimisticConcurrency:

    def test_stale_version_rejected(self, workflow, audit_logger, new_record):
        updated = workflow.assign_officer(new_record, "officer.lee", "supervisor.ng", expected_version=1)
        assert updated.version == 2
        with pytest.raises(StaleWriteError) as exc_info:
            workflow.transition(updated, "in_review", "officer.wong", expected_version=1)
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert audit_logger.recent_events[-1].event_type == "STALE_WRITE"

    def test_matching_version_accepted(self, workflow, new_record):
        assert workflow.transition(new_record, "in_review", "officer.lee", expected_version=1).version == 2

    def test_operations_never_mutate_input(self, workflow, new_record):
        workflow.update_risk_scores(new_record, {'product': 9}, "analyst.tan")
        workflow.assign_officer(new_record, "officer.lee", "supervisor.ng")
        assert new_record.version == 1
        assert new_record.risk_scores.product is None
        assert new_record.assigned_officer == ""


class TestOfficerActions:

    def test_watchlist_run_counts(self, workflow, new_record):
        record = workflow.record_watchlist_run(new_record, clean_results(), "analyst.tan")
        record = workflow.record_watchlist_run(record, clean_results(), "analyst.tan")
        assert record.watchlist_run_count == 2
        assert record.last_screened_at == record.updated_at
        assert len(record.watchlist_results) == 7

    def test_empty_watchlist_run_rejected(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.record_watchlist_run(new_record, [], "analyst.tan")
        assert exc_info.value.code == "INVALID_WATCHLIST_RESULTS"

    def test_failed_lookups_still_count_as_a_run(self, workflow, new_record):
        results = [WatchlistResult(r.list_name, False, lookup_failed=True) for r in clean_results()]
        record = workflow.record_watchlist_run(new_record, results, "analyst.tan")
        assert record.watchlist_run_count == 1
        assert record.enhanced_dd_required is False

    def test_unknown_risk_category(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.update_risk_scores(new_record, {'reputation': 4}, "analyst.tan")
        assert exc_info.value.code == "UNKNOWN_RISK_CATEGORY"

    def test_out_of_range_score(self, workflow, new_record):
        with pytest.raises(ValidationError):
            workflow.update_risk_scores(new_record, {'product': 12}, "analyst.tan")

    def test_officer_required(self, workflow, new_record):
        with pytest.raises(ValidationError):
            workflow.assign_officer(new_record, " ", "supervisor.ng")

    def test_assign_officer_with_notes(self, workflow, new_record):
        record = workflow.assign_officer(new_record, "officer.lee", "supervisor.ng", notes="Priority client")
        assert record.assigned_officer == "officer.lee"
        assert record.officer_notes == "Priority client"

    def test_document_upload(self, workflow, new_record):
        record = workflow.mark_document_uploaded(new_record, "bank_reference", "analyst.tan", "s3://bank.pdf")
        slot = record.document("bank_reference")
        assert slot.uploaded is True
        assert slot.file_reference == "s3://bank.pdf"
        assert slot.uploaded_at == record.updated_at

    def test_unknown_document_type(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.mark_document_uploaded(new_record, "passport", "analyst.tan")
        assert exc_info.value.code == "UNKNOWN_DOCUMENT_TYPE"

    def test_update_details(self, workflow, new_record):
        record = workflow.update_details(new_record, "analyst.tan",
                                         end_user={'contact_email': 'ops@ppd.example'},
                                         transaction={'currency': 'myr'})
        assert record.end_user.contact_email == 'ops@ppd.example'
        assert record.end_user.company_name == new_record.end_user.company_name
        assert record.transaction.currency == 'MYR'

    def test_update_details_unknown_field(self, workflow, new_record):
        with pytest.raises(ValidationError) as exc_info:
            workflow.update_details(new_record, "analyst.tan", end_user={'shoe_size': 44})
        assert exc_info.value.code == "UNKNOWN_FIELD"

    @pytest.mark.parametrize("end_user_update,transaction_update,field", [
        ({'registration_number': 12345}, None, "end_user.registration_number"),
        ({'company_name': None}, None, "end_user.company_name"),
        (None, {'end_use_declaration': 42}, "transaction.end_use_declaration"),
        (None, {'product_categories': "electronics"}, "transaction.product_categories"),
    ])
    def test_update_details_wrong_type(self, workflow, new_record, end_user_update, transaction_update, field):
        with pytest.raises(ValidationError) as exc_info:
            workflow.update_details(new_record, "analyst.tan", end_user=end_user_update, transaction=transaction_update)
        assert exc_info.value.code == "INVALID_FIELD_TYPE"
        assert exc_info.value.field == field
        assert new_record.version == 1

    def test_audit_events(self, workflow, audit_logger, ready_record):
        with pytest.raises(IncompleteChecklistError):
            workflow.transition(ready_record, "denied", "officer.lee")
        workflow.transition(ready_record, "approved", "officer.lee")
        types = [e.event_type for e in audit_logger.recent_events]
        assert types[-2:] == ["TRANSITION_REJECTED", "STATUS_TRANSITION"]
        rejected = audit_logger.recent_events[-2]
        assert rejected.additional_context['missing_items'] == ['denial_reason']
