"""
Risk aggregation

Folds the four category scores (geographic, product, end-user,
transaction) into one overall score and tier, evaluates the enhanced
due-diligence trigger, and suggests starting scores for a new screening.
"""

import logging
import math
from typing import Any, Iterable, Mapping, Optional, Union

from compliance_errors import ValidationError
from compliance_models import InitialRiskSuggestion, RiskAssessment, RiskScores, RiskTier
from config_manager import RiskConfig
from text_utils import normalize_text, parse_number

logger = logging.getLogger(__name__)


class RiskAggregator:
    """Equal-weighted risk aggregation with configurable thresholds

    Args:
        config: Score range, tier thresholds and scoring tables
    """

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig()

    def validate_score(self, category: str, value: Any) -> float:
        """Return the usable score for a category

        A missing score is the neutral midpoint.

        Raises:
            ValidationError: If the score is not a number within range
        """
        cfg = self.config
        if value is None:
            return float(cfg.neutral_score)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            raise ValidationError(
                f"Risk score for '{category}' must be a number, got {value!r}",
                field=category,
                code="INVALID_RISK_SCORE",
                suggestion=f"Use a score between {cfg.min_score} and {cfg.max_score}"
            )
        if not cfg.min_score <= value <= cfg.max_score:
            raise ValidationError(
                f"Risk score for '{category}' is {value}, outside {cfg.min_score}-{cfg.max_score}",
                field=category,
                code="RISK_SCORE_OUT_OF_RANGE",
                suggestion=f"Use a score between {cfg.min_score} and {cfg.max_score}"
            )
        return float(value)

    def tier_for(self, overall: float) -> RiskTier:
        if overall >= self.config.high_threshold:
            return RiskTier.HIGH
        if overall >= self.config.medium_threshold:
            return RiskTier.MEDIUM
        return RiskTier.LOW

    def aggregate(self, scores: Union[RiskScores, Mapping[str, Any]]) -> RiskAssessment:
        """Arithmetic mean of the four category scores and its tier

        Raises:
            ValidationError: If any score is out of range, or an unknown
                category is supplied
        """
        if isinstance(scores, RiskScores):
            values = scores.as_mapping()
        elif isinstance(scores, Mapping):
            unknown = [k for k in scores if k not in RiskScores.CATEGORIES]
            if unknown:
                raise ValidationError(
                    f"Unknown risk categories: {', '.join(sorted(unknown))}",
                    field=unknown[0],
                    code="UNKNOWN_RISK_CATEGORY",
                    suggestion=f"Use {', '.join(RiskScores.CATEGORIES)}"
                )
            values = {name: scores.get(name) for name in RiskScores.CATEGORIES}
        else:
            raise ValidationError(
                "Risk scores must be a mapping of category to score",
                field="scores",
                code="INVALID_RISK_SCORES"
            )

        usable = [self.validate_score(name, values[name]) for name in RiskScores.CATEGORIES]
        overall = sum(usable) / len(usable)
        return RiskAssessment(overall=overall, tier=self.tier_for(overall))

    def enhanced_dd_required(self, assessment: RiskAssessment, watchlist_hit: bool,
                             currently_required: bool = False) -> bool:
        """Whether enhanced due diligence is (still) required

        Never clears a requirement that is already set.
        """
        return bool(currently_required or assessment.tier == RiskTier.HIGH or watchlist_hit)

    # ------------------------------------------------------------------
    # Initial score suggestions
    # ------------------------------------------------------------------

    def geographic_score(self, country: Optional[str]) -> int:
        key = normalize_text(country)
        scores = self.config.geographic_scores
        if key and key in {normalize_text(c) for c in self.config.high_risk_countries}:
            return scores['high']
        if key and key in {normalize_text(c) for c in self.config.medium_risk_countries}:
            return scores['medium']
        return scores['low']

    def product_score(self, product_categories: Iterable[str]) -> int:
        """Highest score any category reaches (substring keyword match)"""
        scores = self.config.product_scores
        best = scores['low']
        for category in product_categories or []:
            text = normalize_text(category)
            if any(k.lower() in text for k in self.config.strategic_product_keywords):
                best = max(best, scores['strategic'])
            elif any(k.lower() in text for k in self.config.controlled_product_keywords):
                best = max(best, scores['controlled'])
        return best

    def transaction_score(self, transaction_value: Any) -> int:
        value = parse_number(transaction_value) or 0.0
        for lower_bound, score in self.config.transaction_value_bands:
            if value > lower_bound:
                return int(score)
        return self.config.transaction_base_score

    def suggest_initial_scores(self, country: Optional[str], product_categories: Iterable[str],
                               transaction_value: Any) -> InitialRiskSuggestion:
        """Starting scores for a new screening, with an advisory review flag"""
        categories = list(product_categories or [])
        scores = RiskScores(
            geographic=self.geographic_score(country),
            product=self.product_score(categories),
            end_user=self.config.neutral_score,
            transaction=self.transaction_score(transaction_value)
        )
        assessment = self.aggregate(scores)

        value = parse_number(transaction_value) or 0.0
        review_countries = {normalize_text(c) for c in self.config.manual_review_countries}
        reasons = []
        if assessment.overall >= self.config.manual_review_threshold:
            reasons.append(f"overall risk {assessment.overall:.2f} >= {self.config.manual_review_threshold:g}")
        if value > self.config.manual_review_value:
            reasons.append(f"transaction value {value:,.2f} > {self.config.manual_review_value:,.0f}")
        if normalize_text(country) in review_countries:
            reasons.append(f"high-risk country {country}")

        return InitialRiskSuggestion(
            scores=scores,
            assessment=assessment,
            manual_review_required=bool(reasons),
            reasons=reasons
        )

