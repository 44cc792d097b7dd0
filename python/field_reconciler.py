"""
Multi-document field reconciliation ("auto-fill")

Merges the field values extracted from several source documents into one
canonical FieldSuggestion per field, flags fields the sources disagree
on, and expands table-shaped extraction into product lines. Applying a
suggestion to a shipment draft is a separate, explicit and idempotent
step.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from compliance_errors import LookupFailure, NoSuggestionError, ValidationError
from compliance_models import (
    ExtractedField,
    FieldSuggestion,
    ProductLine,
    ReconciliationReport,
    ShipmentDraft,
    SourceDocument,
)
from config_manager import ReconciliationConfig
from text_utils import normalize_value, sanitize_for_logging

logger = logging.getLogger(__name__)

PRIMARY_LINE_ID = "line-1"


@dataclass
class _Candidate:
    value: Any
    confidence: float
    priority: int
    order: int
    document: SourceDocument


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return isinstance(value, (list, dict)) and not value


class FieldReconciler:
    """Reconciles extracted fields across source documents

    Args:
        config: Document priorities, product field map and confidence range
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        self.config = config or ReconciliationConfig()

    # ------------------------------------------------------------------
    # Input coercion
    # ------------------------------------------------------------------

    def _coerce_field(self, document_id: str, name: str, raw: Any) -> ExtractedField:
        if isinstance(raw, ExtractedField):
            extracted = raw
        elif isinstance(raw, dict) and 'value' in raw:
            extracted = ExtractedField(value=raw.get('value'), confidence=raw.get('confidence', 0.0))
        else:
            extracted = ExtractedField(value=raw)

        confidence = extracted.confidence
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ValidationError(
                f"Confidence for '{name}' in document '{document_id}' must be a number",
                field=name,
                code="INVALID_CONFIDENCE"
            )
        if not self.config.min_confidence <= confidence <= self.config.max_confidence:
            raise ValidationError(
                f"Confidence {confidence} for '{name}' in document '{document_id}' is outside "
                f"[{self.config.min_confidence}, {self.config.max_confidence}]",
                field=name,
                code="CONFIDENCE_OUT_OF_RANGE",
                suggestion="Report extraction confidence as a fraction between 0 and 1"
            )
        return ExtractedField(value=extracted.value, confidence=float(confidence))

    def coerce_document(self, document: Union[SourceDocument, Dict[str, Any]]) -> SourceDocument:
        """Accept a SourceDocument or its plain-dict form

        Raises:
            ValidationError: On a missing id or an out-of-range confidence
        """
        if isinstance(document, SourceDocument):
            data = {
                'document_id': document.document_id,
                'document_type': document.document_type,
                'fields': document.fields,
                'rows': document.rows,
                'extraction_error': document.extraction_error,
            }
        elif isinstance(document, dict):
            data = document
        else:
            raise ValidationError(
                f"Source document must be a mapping, got {type(document).__name__}",
                field="documents",
                code="INVALID_DOCUMENT"
            )

        document_id = str(data.get('document_id') or '').strip()
        if not document_id:
            raise ValidationError(
                "Every source document needs a document_id",
                field="document_id",
                code="MISSING_DOCUMENT_ID"
            )

        fields = data.get('fields') or {}
        if not isinstance(fields, dict):
            raise ValidationError(
                f"Fields of document '{document_id}' must be a mapping",
                field="fields",
                code="INVALID_FIELDS"
            )

        return SourceDocument(
            document_id=document_id,
            document_type=data.get('document_type') or '',
            fields={name: self._coerce_field(document_id, name, raw) for name, raw in fields.items()},
            rows=list(data.get('rows') or []),
            extraction_error=data.get('extraction_error')
        )

    def _priority(self, document: SourceDocument) -> int:
        return self.config.document_priority.get(document.document_type, self.config.default_priority)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, documents: Iterable[Union[SourceDocument, Dict[str, Any]]]) -> Dict[str, FieldSuggestion]:
        """One canonical suggestion per field seen in at least one document"""
        return self.reconcile_report(documents).suggestions

    def reconcile_report(self, documents: Iterable[Union[SourceDocument, Dict[str, Any]]]) -> ReconciliationReport:
        """Reconcile fields, expand table rows and collect failed sources

        Canonical value: highest confidence, then document-type priority,
        then input order.
        """
        usable: List[SourceDocument] = []
        failures: List[Dict[str, str]] = []

        for document in (self.coerce_document(d) for d in documents):
            if document.extraction_error:
                failure = LookupFailure(document.document_id, str(document.extraction_error))
                logger.warning("Skipping source document %s: %s",
                               sanitize_for_logging(document.document_id),
                               sanitize_for_logging(document.extraction_error))
                failures.append({
                    'source': document.document_id,
                    'document_type': document.document_type,
                    'code': failure.code,
                    'reason': failure.reason,
                })
                continue
            usable.append(document)

        candidates: Dict[str, List[_Candidate]] = {}
        for order, document in enumerate(usable):
            priority = self._priority(document)
            for name, extracted in document.fields.items():
                if name.startswith('_') or _is_empty(extracted.value):
                    continue
                candidates.setdefault(name, []).append(
                    _Candidate(extracted.value, extracted.confidence, priority, order, document)
                )

        suggestions = {
            name: self._suggest(name, sources) for name, sources in candidates.items()
        }

        report = ReconciliationReport(
            suggestions=suggestions,
            product_lines=self.expand_rows(usable),
            failures=failures
        )
        if report.conflicts:
            logger.info("Reconciled %d fields, %d with conflicting sources: %s",
                        len(suggestions), len(report.conflicts), ", ".join(report.conflicts))
        return report

    def _suggest(self, name: str, sources: List[_Candidate]) -> FieldSuggestion:
        ranked = sorted(sources, key=lambda c: (-c.confidence, c.priority, c.order))
        best = ranked[0]

        seen = {normalize_value(best.value)}
        alternatives = []
        for candidate in ranked[1:]:
            key = normalize_value(candidate.value)
            if key not in seen:
                seen.add(key)
                alternatives.append(candidate.value)

        return FieldSuggestion(
            field_name=name,
            value=best.value,
            source_document_id=best.document.document_id,
            confidence=best.confidence,
            consistent_across_sources=not alternatives,
            alternatives=alternatives,
            source_count=len(sources),
            document_type=best.document.document_type
        )

    # ------------------------------------------------------------------
    # Table expansion
    # ------------------------------------------------------------------

    def _line_attribute(self, name: str) -> Optional[str]:
        if name in self.config.product_field_map:
            return self.config.product_field_map[name]
        if name in ProductLine.__dataclass_fields__ and name not in ('id', 'source_row_ref'):
            return name
        return None

    def expand_rows(self, documents: List[SourceDocument]) -> List[ProductLine]:
        """One ProductLine per row of the highest-priority table document"""
        tabled = [(self._priority(d), order, d) for order, d in enumerate(documents) if d.rows]
        if not tabled:
            return []
        _, _, document = min(tabled, key=lambda t: (t[0], t[1]))

        lines = []
        for number, row in enumerate(document.rows, start=1):
            if not isinstance(row, dict):
                logger.warning("Ignoring malformed row %d of %s", number,
                               sanitize_for_logging(document.document_id))
                continue
            values = {}
            for name, raw in row.items():
                attribute = self._line_attribute(name)
                value = raw.get('value') if isinstance(raw, dict) else raw
                if attribute and not _is_empty(value):
                    values[attribute] = value
            if not values:
                continue
            lines.append(ProductLine(
                id=f"{document.document_id}-row-{number}",
                source_row_ref=f"{document.document_id}#{number}",
                **values
            ))
        return lines

    # ------------------------------------------------------------------
    # Applying suggestions
    # ------------------------------------------------------------------

    def apply(self, draft: ShipmentDraft, suggestions: Dict[str, FieldSuggestion], field_name: str) -> ShipmentDraft:
        """Apply one suggestion to a copy of the draft

        Product fields update only the primary line, and only while the
        draft has no table-expanded lines. Applying twice is a no-op the
        second time.

        Raises:
            NoSuggestionError: If no suggestion exists for field_name
        """
        suggestion = suggestions.get(field_name)
        if suggestion is None:
            raise NoSuggestionError(field_name)

        updated = copy.deepcopy(draft)
        attribute = self.config.product_field_map.get(field_name)

        if attribute is None:
            updated.fields[field_name] = suggestion.value
            return updated

        if any(line.source_row_ref for line in updated.lines):
            logger.debug("Draft has table rows; leaving product lines unchanged for %s", field_name)
            return updated

        if not updated.lines:
            updated.lines.append(ProductLine(id=PRIMARY_LINE_ID))
        setattr(updated.lines[0], attribute, suggestion.value)
        return updated

    def apply_suggestions(
        self,
        draft: ShipmentDraft,
        suggestions: Dict[str, FieldSuggestion],
        field_names: Optional[Iterable[str]] = None
    ) -> ShipmentDraft:
        """Apply several suggestions; fields without one are left unchanged"""
        names = list(field_names) if field_names is not None else list(suggestions)
        for name in names:
            try:
                draft = self.apply(draft, suggestions, name)
            except NoSuggestionError:
                logger.debug("No suggestion for %s, field left unchanged", sanitize_for_logging(name))
        return draft

    def apply_rows(self, draft: ShipmentDraft, lines: List[ProductLine]) -> ShipmentDraft:
        """Replace the draft's product lines with table-expanded lines"""
        updated = copy.deepcopy(draft)
        if lines:
            updated.lines = copy.deepcopy(lines)
        return updated
