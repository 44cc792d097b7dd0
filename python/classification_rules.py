"""
Strategic / AI classification of product lines

Pure rules: the same ProductLine always yields the same Classification,
and nothing is cached, so callers re-run ``classify`` after every edit.
"""

import logging
import re
from typing import List, Optional

from compliance_errors import ValidationError
from compliance_models import Classification, ProductLine
from config_manager import ClassificationConfig

logger = logging.getLogger(__name__)


def _digits(value: str) -> str:
    return re.sub(r'\D', '', value or '')


class ClassificationRules:
    """Tags product lines as strategic and/or AI-related

    Args:
        config: Rule tables (categories, HS prefixes, keyword sets)
    """

    def __init__(self, config: Optional[ClassificationConfig] = None):
        self.config = config or ClassificationConfig()
        self._hs_prefixes = [(p, _digits(p)) for p in self.config.strategic_hs_prefixes]
        self._end_use_keywords = [k.lower() for k in self.config.strategic_end_use_keywords]
        self._ai_keywords = [k.lower() for k in self.config.ai_keywords]

    def is_known_category(self, category: str) -> bool:
        return category in self.config.known_categories

    def _category_in(self, category: str, exact: List[str], prefixes: List[str]) -> bool:
        return category in exact or any(category.startswith(p) for p in prefixes)

    def strategic_reasons(self, line: ProductLine) -> List[str]:
        """Every strategic rule the line hits, in rule order"""
        reasons = []
        category = line.category or ""
        cfg = self.config

        if category and self._category_in(category, cfg.strategic_categories,
                                          cfg.strategic_category_prefixes):
            reasons.append(f"category:{category}")

        # '8542.31.00', '8542 31' and '85423100' all carry prefix 8542.31
        hs_code = str(line.hs_code or "")
        hs_digits = _digits(hs_code)
        for prefix, prefix_digits in self._hs_prefixes:
            if hs_code.startswith(prefix) or (prefix_digits and hs_digits.startswith(prefix_digits)):
                reasons.append(f"hs_prefix:{prefix}")
                break

        end_use = (line.end_use_purpose or "").lower()
        for keyword in self._end_use_keywords:
            if keyword in end_use:
                reasons.append(f"end_use:{keyword}")

        return reasons

    def ai_reasons(self, line: ProductLine) -> List[str]:
        """Every AI rule the line hits, in rule order"""
        reasons = []
        category = line.category or ""
        cfg = self.config

        if category and self._category_in(category, cfg.ai_categories, cfg.ai_category_prefixes):
            reasons.append(f"ai_category:{category}")

        description = (line.description or "").lower()
        end_use = (line.end_use_purpose or "").lower()
        for keyword in self._ai_keywords:
            if keyword in description or keyword in end_use:
                reasons.append(f"ai_keyword:{keyword}")

        return reasons

    def classify(self, line: ProductLine) -> Classification:
        """Derive the strategic and AI flags of a product line

        Raises:
            ValidationError: If line is not a ProductLine
        """
        if not isinstance(line, ProductLine):
            raise ValidationError(
                f"Expected a ProductLine, got {type(line).__name__}",
                field="line",
                code="INVALID_PRODUCT_LINE"
            )

        strategic = self.strategic_reasons(line)
        ai_related = self.ai_reasons(line)
        return Classification(
            is_strategic=bool(strategic),
            is_ai_related=bool(ai_related),
            reasons=tuple(strategic + ai_related)
        )

    def classify_all(self, lines: List[ProductLine]) -> List[Classification]:
        return [self.classify(line) for line in lines]


def classify(line: ProductLine, config: Optional[ClassificationConfig] = None) -> Classification:
    """Convenience wrapper around ClassificationRules(config).classify(line)"""
    return ClassificationRules(config).classify(line)
