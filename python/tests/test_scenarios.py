"""
End-to-end scenarios across classification, shipment aggregation,
watchlist screening, risk and the approval workflow
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from compliance_errors import IncompleteChecklistError
from compliance_models import ProductLine, RiskTier, ScreeningStatus
from shipment_aggregator import ShipmentAggregator
from conftest import match_on


class TestHighValueAcceleratorShipment:
    """Three lines worth 105000 USD, one of them an AI accelerator"""

    @pytest.fixture
    def lines(self):
        return [
            ProductLine(id="l1", description="Power module", commercial_value=40000, quantity=100),
            ProductLine(id="l2", description="Compute card", category="ai_accelerator_gpu_tpu_npu",
                        commercial_value="35,000", quantity=5),
            ProductLine(id="l3", description="Connector kit", commercial_value=30000, quantity=2000),
        ]

    def test_aggregate(self, config, classifier, lines):
        aggregate = ShipmentAggregator(config.shipment, classifier).recompute(lines, currency="USD")
        assert aggregate.total_value == 105000
        assert aggregate.ai_count == 1
        assert aggregate.strategic_count == 1
        assert aggregate.priority == "Urgent"
        assert aggregate.insurance_required is True
        assert {d.id for d in aggregate.required_documents} == {'technical_docs', 'import_permit', 'insurance_cert'}

    def test_accelerator_flag_comes_from_category(self, classifier, lines):
        classification = classifier.classify(lines[1])
        assert classification.is_ai_related is True
        assert classification.reasons == ("category:ai_accelerator_gpu_tpu_npu",
                                          "ai_category:ai_accelerator_gpu_tpu_npu")


class TestSdnMatchOnLowRiskEndUser:
    """A single sdn_list match forces enhanced DD despite a Low tier"""

    def test_match_to_decision(self, workflow, screener, fake_lookup, new_record):
        fake_lookup.answers['sdn_list'] = match_on('sdn_list')
        results = screener.screen(new_record.end_user.company_name, new_record.end_user.country)
        assert screener.has_any_match(results) is True
        assert sum(r.match_found for r in results) == 1

        record = workflow.update_risk_scores(new_record, {'geographic': 2, 'product': 2, 'end_user': 2,
                                                          'transaction': 2}, "analyst.tan")
        record = workflow.record_watchlist_run(record, results, "analyst.tan")
        assert record.risk_tier == RiskTier.LOW.value
        assert record.enhanced_dd_required is True
        assert workflow.recommended_status(record) == ScreeningStatus.REQUIRES_ENHANCED_DD

        record = workflow.assign_officer(record, "officer.lee", "supervisor.ng")
        record = workflow.transition(record, "requires_enhanced_dd", "officer.lee", reason="SDN match")
        record = workflow.complete_enhanced_dd(record, "officer.lee", notes="Name collision, different entity")
        record = workflow.transition(record, "in_review", "officer.lee")
        record = workflow.transition(record, "approved", "officer.lee", reason="False positive cleared")

        assert record.status == ScreeningStatus.APPROVED
        assert [h.to_status for h in record.history] == ['requires_enhanced_dd', 'in_review', 'approved']
        assert record.version == 8

    def test_declaration_too_short_blocks_approval(self, workflow, ready_record):
        record = workflow.update_details(ready_record, "analyst.tan",
                                         transaction={'end_use_declaration': "Resale in Penang"})
        with pytest.raises(IncompleteChecklistError) as exc_info:
            workflow.transition(record, "approved", "officer.lee")
        assert exc_info.value.missing_codes == ['end_use_declaration']
