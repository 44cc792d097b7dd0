"""
Unit tests for risk aggregation, tiering and initial score suggestions
"""

import itertools

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from compliance_errors import ValidationError
from compliance_models import RiskAssessment, RiskScores, RiskTier
from config_manager import RiskConfig
from risk_aggregator import RiskAggregator


class TestAggregate:
    """Mean of the four category scores and its tier"""

    def test_mean_over_all_quadruples(self, risk):
        for scores in itertools.product([1, 4, 7, 10], repeat=4):
            mapping = dict(zip(RiskScores.CATEGORIES, scores))
            assert risk.aggregate(mapping).overall == pytest.approx(sum(scores) / 4)

    @pytest.mark.parametrize("overall,tier", [
        (4.999, RiskTier.LOW),
        (5.0, RiskTier.MEDIUM),
        (6.999, RiskTier.MEDIUM),
        (7.0, RiskTier.HIGH),
        (10.0, RiskTier.HIGH),
        (1.0, RiskTier.LOW),
    ])
    def test_tier_boundaries(self, risk, overall, tier):
        assert risk.tier_for(overall) == tier

    def test_exact_boundaries_through_aggregate(self, risk):
        assert risk.aggregate({'geographic': 5, 'product': 5, 'end_user': 5, 'transaction': 5}).tier == RiskTier.MEDIUM
        assert risk.aggregate({'geographic': 7, 'product': 7, 'end_user': 7, 'transaction': 7}).tier == RiskTier.HIGH
        assert risk.aggregate({'geographic': 4, 'product': 5, 'end_user': 5, 'transaction': 5}).tier == RiskTier.LOW

    def test_missing_score_is_neutral(self, risk):
        assessment = risk.aggregate({'geographic': 9})
        assert assessment.overall == pytest.approx((9 + 5 + 5 + 5) / 4)

    def test_empty_scores_are_medium(self, risk):
        assert risk.aggregate(RiskScores()) == RiskAssessment(overall=5.0, tier=RiskTier.MEDIUM)

    def test_accepts_dataclass(self, risk):
        assert risk.aggregate(RiskScores(geographic=10, product=10, end_user=10, transaction=10)).overall == 10.0

    @pytest.mark.parametrize("value", [0, 11, -1, 10.5])
    def test_out_of_range(self, risk, value):
        with pytest.raises(ValidationError) as exc_info:
            risk.aggregate({'product': value})
        assert exc_info.value.code == "RISK_SCORE_OUT_OF_RANGE"
        assert exc_info.value.field == "product"

    @pytest.mark.parametrize("value", ["7", True, float("nan")])
    def test_not_a_number(self, risk, value):
        with pytest.raises(ValidationError) as exc_info:
            risk.aggregate({'transaction': value})
        assert exc_info.value.code == "INVALID_RISK_SCORE"

    def test_unknown_category(self, risk):
        with pytest.raises(ValidationError) as exc_info:
            risk.aggregate({'reputation': 3})
        assert exc_info.value.code == "UNKNOWN_RISK_CATEGORY"

    def test_not_a_mapping(self, risk):
        with pytest.raises(ValidationError):
            risk.aggregate([1, 2, 3, 4])

    def test_custom_thresholds(self):
        risk = RiskAggregator(RiskConfig(high_threshold=6.0, medium_threshold=3.0))
        assert risk.aggregate({'geographic': 6, 'product': 6, 'end_user': 6, 'transaction': 6}).tier == RiskTier.HIGH


class TestEnhancedDueDiligence:
    """High tier or any watchlist match requires enhanced DD"""

    def test_high_tier(self, risk):
        assessment = risk.aggregate({'geographic': 9, 'product': 8, 'end_user': 7, 'transaction': 6})
        assert risk.enhanced_dd_required(assessment, watchlist_hit=False) is True

    def test_watchlist_hit_with_low_tier(self, risk):
        assessment = risk.aggregate({'geographic': 1, 'product': 1, 'end_user': 1, 'transaction': 1})
        assert assessment.tier == RiskTier.LOW
        assert risk.enhanced_dd_required(assessment, watchlist_hit=True) is True

    def test_neither_trigger(self, risk):
        assessment = risk.aggregate({'geographic': 3})
        assert risk.enhanced_dd_required(assessment, watchlist_hit=False) is False

    def test_never_cleared(self, risk):
        assessment = risk.aggregate({'geographic': 1, 'product': 1, 'end_user': 1, 'transaction': 1})
        assert risk.enhanced_dd_required(assessment, watchlist_hit=False, currently_required=True) is True


class TestInitialSuggestions:
    """Starting scores from country, product categories and value"""

    @pytest.mark.parametrize("country,score", [
        ("Iran", 9), ("north korea", 9), ("China", 6), ("Malaysia", 3), (None, 3), ("", 3),
    ])
    def test_geographic(self, risk, country, score):
        assert risk.geographic_score(country) == score

    @pytest.mark.parametrize("categories,score", [
        (["semiconductors"], 8),
        (["Electronics", "dual_use items"], 8),
        (["software"], 5),
        (["furniture"], 2),
        ([], 2),
    ])
    def test_product(self, risk, categories, score):
        assert risk.product_score(categories) == score

    @pytest.mark.parametrize("value,score", [
        (2000000, 8), (1000000, 6), ("150,000", 6), (100000, 4), (10001, 4), (10000, 2), ("n/a", 2), (None, 2),
    ])
    def test_transaction(self, risk, value, score):
        assert risk.transaction_score(value) == score

    def test_suggestion_for_low_risk_shipment(self, risk):
        suggestion = risk.suggest_initial_scores("Malaysia", ["electronics"], 25000)
        assert suggestion.scores.as_mapping() == {'geographic': 3, 'product': 5, 'end_user': 5, 'transaction': 4}
        assert suggestion.assessment.overall == pytest.approx(4.25)
        assert suggestion.assessment.tier == RiskTier.LOW
        assert suggestion.manual_review_required is False
        assert suggestion.reasons == []

    def test_manual_review_reasons(self, risk):
        suggestion = risk.suggest_initial_scores("Iran", ["semiconductors"], 2500000)
        assert suggestion.manual_review_required is True
        assert len(suggestion.reasons) == 2
        assert suggestion.assessment.overall == pytest.approx((9 + 8 + 5 + 8) / 4)

    def test_review_country_alone(self, risk):
        suggestion = risk.suggest_initial_scores("China", [], 0)
        assert suggestion.manual_review_required is True
        assert suggestion.reasons == ["high-risk country China"]

    def test_to_dict(self, risk):
        data = risk.suggest_initial_scores("Malaysia", [], 0).to_dict()
        assert data['assessment'] == {'overall': pytest.approx(3.0), 'tier': 'Low'}
        assert data['scores']['end_user'] == 5
