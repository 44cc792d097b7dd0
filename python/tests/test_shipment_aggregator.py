"""
Unit tests for shipment totals and high-value escalation
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from compliance_errors import ValidationError
from compliance_models import ProductLine, ShipmentPriority
from config_manager import ShipmentConfig
from shipment_aggregator import ShipmentAggregator, coerce_number, parse_priority


@pytest.fixture
def aggregator(classifier):
    return ShipmentAggregator(ShipmentConfig(), classifier)


def line(line_id, value, quantity=1, **kwargs):
    return ProductLine(id=line_id, description="Power supply", commercial_value=value, quantity=quantity, **kwargs)


class TestTotals:

    def test_totals(self, aggregator):
        result = aggregator.recompute([line("l1", 1200, 10), line("l2", "800.50", "5")])
        assert result.total_value == pytest.approx(2000.50)
        assert result.total_quantity == 15
        assert result.line_count == 2
        assert result.currency == "USD"

    def test_unreadable_numbers_count_as_zero(self, aggregator):
        result = aggregator.recompute([line("l1", "n/a", ""), line("l2", None, "lots"), line("l3", 300, 2)])
        assert result.total_value == 300
        assert result.total_quantity == 2

    def test_negative_value_rejected(self, aggregator):
        with pytest.raises(ValidationError) as exc_info:
            aggregator.recompute([line("l1", 100), line("l2", -50)])
        assert exc_info.value.code == "NEGATIVE_AMOUNT"
        assert exc_info.value.field == "lines[1].commercial_value"

    def test_no_lines(self, aggregator):
        result = aggregator.recompute([])
        assert result.total_value == 0
        assert result.priority == "Standard"
        assert result.insurance_required is False
        assert result.required_documents == []

    def test_dict_lines_accepted(self, aggregator):
        result = aggregator.recompute([{'id': 'l1', 'commercial_value': '2,500', 'quantity': 4}])
        assert result.total_value == 2500

    def test_line_without_id_rejected(self, aggregator):
        with pytest.raises(ValidationError) as exc_info:
            aggregator.recompute([{'commercial_value': 5}])
        assert exc_info.value.code == "INVALID_PRODUCT_LINE"

    def test_currency(self, aggregator):
        assert aggregator.recompute([], currency="myr").currency == "MYR"
        with pytest.raises(ValidationError) as exc_info:
            aggregator.recompute([], currency="RM")
        assert exc_info.value.code == "INVALID_CURRENCY"


class TestClassificationCounts:

    def test_counts(self, aggregator):
        lines = [
            line("l1", 10, category="military_grade"),
            line("l2", 10, category="neural_processing"),
            line("l3", 10, category="ai_accelerator_gpu_tpu_npu"),
            line("l4", 10),
        ]
        result = aggregator.recompute(lines)
        assert result.strategic_count == 2
        assert result.ai_count == 2

    def test_strategic_documents(self, aggregator):
        result = aggregator.recompute([line("l1", 10, hs_code="8542.31")])
        assert [d.id for d in result.required_documents] == ['technical_docs', 'import_permit']
        assert result.required_documents[0].mandatory is True


class TestEscalation:
    """Above the threshold a Standard shipment becomes Urgent and insured"""

    def test_three_lines_cross_threshold(self, aggregator):
        result = aggregator.recompute([line("l1", 40000), line("l2", 35000), line("l3", 30000)])
        assert result.total_value == 105000
        assert result.priority == "Urgent"
        assert result.insurance_required is True
        assert result.escalated is True
        assert [d.id for d in result.required_documents] == ['insurance_cert']

    def test_just_above_threshold(self, aggregator):
        result = aggregator.recompute([line("l1", 100001)])
        assert result.priority == "Urgent"

    def test_exactly_at_threshold_not_escalated(self, aggregator):
        result = aggregator.recompute([line("l1", 100000)])
        assert result.priority == "Standard"
        assert result.insurance_required is False
        assert result.escalated is False

    def test_express_kept(self, aggregator):
        result = aggregator.recompute([line("l1", 250000)], prior_priority="Express")
        assert result.priority == "Express"
        assert result.insurance_required is True

    def test_prior_values_kept_below_threshold(self, aggregator):
        result = aggregator.recompute([line("l1", 500)], prior_priority=ShipmentPriority.URGENT,
                                      prior_insurance=True)
        assert result.priority == "Urgent"
        assert result.insurance_required is True

    def test_no_downgrade_after_line_removed(self, aggregator):
        lines = [line("l1", 60000), line("l2", 60000)]
        escalated = aggregator.recompute(lines)
        after_removal = aggregator.recompute(lines[:1], prior_priority=escalated.priority,
                                             prior_insurance=escalated.insurance_required)
        assert after_removal.priority == "Urgent"
        assert after_removal.insurance_required is True

    def test_insurance_reasserted_each_recompute(self, aggregator):
        result = aggregator.recompute([line("l1", 150000)], prior_priority="Urgent", prior_insurance=False)
        assert result.insurance_required is True

    def test_custom_threshold(self, classifier):
        aggregator = ShipmentAggregator(ShipmentConfig(escalation_value_threshold=5000), classifier)
        assert aggregator.recompute([line("l1", 5001)]).priority == "Urgent"

    def test_to_dict(self, aggregator):
        data = aggregator.recompute([line("l1", 200000)]).to_dict()
        assert data['priority'] == "Urgent"
        assert data['required_documents'][0]['type'] == "Insurance Certificate"


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [(5, 5.0), ("1,234.50", 1234.5), ("abc", 0.0), (None, 0.0)])
    def test_coerce_number(self, value, expected):
        assert coerce_number(value) == expected

    def test_parse_priority(self):
        assert parse_priority(" urgent ") == ShipmentPriority.URGENT
        with pytest.raises(ValidationError) as exc_info:
            parse_priority("Overnight")
        assert exc_info.value.code == "INVALID_PRIORITY"
