"""
Shipment aggregation and escalation

Derives shipment totals from the ordered product lines and applies the
high-value escalation rule. Call ``recompute`` after every line change;
nothing here runs implicitly.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from classification_rules import ClassificationRules
from compliance_errors import ValidationError
from compliance_models import ProductLine, RequiredDocument, ShipmentAggregate, ShipmentPriority
from config_manager import ShipmentConfig
from text_utils import parse_number

logger = logging.getLogger(__name__)


def coerce_number(value: Any, field_name: str = "value") -> float:
    """Read a UI-entered amount; unreadable input counts as 0

    Raises:
        ValidationError: If the amount is negative
    """
    number = parse_number(value)
    if number is None:
        return 0.0
    if number < 0:
        raise ValidationError(
            f"{field_name} must not be negative (got {number:g})",
            field=field_name,
            code="NEGATIVE_AMOUNT",
            suggestion="Monetary values and quantities are non-negative"
        )
    return number


def parse_priority(value: Any) -> ShipmentPriority:
    if isinstance(value, ShipmentPriority):
        return value
    for priority in ShipmentPriority:
        if isinstance(value, str) and value.strip().lower() == priority.value.lower():
            return priority
    raise ValidationError(
        f"Unknown shipment priority {value!r}",
        field="prior_priority",
        code="INVALID_PRIORITY",
        suggestion=f"Use one of: {', '.join(p.value for p in ShipmentPriority)}"
    )


class ShipmentAggregator:
    """Totals, classification counts and escalation for one shipment

    Args:
        config: Escalation threshold, currency and document slots
        classifier: Rules used to count strategic / AI lines
    """

    def __init__(self, config: Optional[ShipmentConfig] = None,
                 classifier: Optional[ClassificationRules] = None):
        self.config = config or ShipmentConfig()
        self.classifier = classifier or ClassificationRules()

    def _coerce_line(self, index: int, line: Union[ProductLine, Dict[str, Any]]) -> ProductLine:
        if isinstance(line, ProductLine):
            return line
        if isinstance(line, dict) and line.get('id'):
            return ProductLine.from_dict(line)
        raise ValidationError(
            f"Product line {index + 1} must be a ProductLine with an id",
            field=f"lines[{index}]",
            code="INVALID_PRODUCT_LINE"
        )

    def required_documents(self, has_strategic: bool, total_value: float) -> List[RequiredDocument]:
        documents = []
        if has_strategic:
            documents.extend(RequiredDocument(**doc) for doc in self.config.strategic_documents)
        if total_value > self.config.escalation_value_threshold:
            documents.append(RequiredDocument(**self.config.high_value_document))
        return documents

    def recompute(
        self,
        lines: Sequence[Union[ProductLine, Dict[str, Any]]],
        prior_priority: Any = ShipmentPriority.STANDARD,
        prior_insurance: bool = False,
        currency: Optional[str] = None
    ) -> ShipmentAggregate:
        """Derive the aggregate from the current lines

        Above the threshold, a Standard priority becomes the escalated
        priority and insurance is required; any other operator-chosen
        priority is kept. At or below it, the prior values are returned
        unchanged.

        Raises:
            ValidationError: Negative amounts, bad currency or priority
        """
        currency = (currency or self.config.default_currency)
        if not (isinstance(currency, str) and len(currency) == 3 and currency.isalpha()):
            raise ValidationError(
                f"Currency must be a 3-letter code, got {currency!r}",
                field="currency",
                code="INVALID_CURRENCY",
                suggestion="For example USD, EUR, MYR"
            )
        prior = parse_priority(prior_priority)

        product_lines = [self._coerce_line(i, line) for i, line in enumerate(lines)]
        total_value = 0.0
        total_quantity = 0.0
        strategic_count = 0
        ai_count = 0
        classifications = self.classifier.classify_all(product_lines)
        for index, (line, classification) in enumerate(zip(product_lines, classifications)):
            total_value += coerce_number(line.commercial_value, f"lines[{index}].commercial_value")
            total_quantity += coerce_number(line.quantity, f"lines[{index}].quantity")
            if classification.is_strategic:
                strategic_count += 1
            if classification.is_ai_related:
                ai_count += 1

        priority = prior
        insurance = bool(prior_insurance)
        escalated = total_value > self.config.escalation_value_threshold
        if escalated:
            if prior == ShipmentPriority.STANDARD:
                priority = parse_priority(self.config.escalated_priority)
            insurance = True
            logger.info("High-value shipment %.2f %s: priority %s, insurance required",
                        total_value, currency.upper(), priority.value)

        return ShipmentAggregate(
            total_value=total_value,
            total_quantity=total_quantity,
            currency=currency.upper(),
            strategic_count=strategic_count,
            ai_count=ai_count,
            priority=priority.value,
            insurance_required=insurance,
            line_count=len(product_lines),
            escalated=escalated,
            required_documents=self.required_documents(strategic_count > 0, total_value)
        )
