"""
Data model of the compliance screening core

Plain dataclasses shared by the rule components, the persistence layer
and the API. Derived values (classification flags, shipment totals,
overall risk) are never stored on the inputs they derive from; the
components recompute them on demand.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()


class ScreeningStatus(str, Enum):
    """Workflow states of a screening record"""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    DENIED = "denied"
    REQUIRES_ENHANCED_DD = "requires_enhanced_dd"

    @property
    def is_terminal(self) -> bool:
        return self in (ScreeningStatus.APPROVED, ScreeningStatus.DENIED)


class RiskTier(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ShipmentPriority(str, Enum):
    STANDARD = "Standard"
    URGENT = "Urgent"
    EXPRESS = "Express"


# =============================================================================
# Products and shipments
# =============================================================================

@dataclass
class ProductLine:
    """One product line of a shipment

    Numeric fields accept whatever the form posted (numbers or numeric
    strings); the shipment aggregator coerces them.
    """
    id: str
    description: str = ""
    category: str = "standard_ic_asics"
    technology_origin: str = ""
    hs_code: str = ""
    quantity: Any = 0
    unit: str = "PCS"
    unit_price: Any = 0
    commercial_value: Any = 0
    end_use_purpose: str = ""
    source_row_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProductLine':
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class Classification:
    """Derived strategic / AI flags of a product line"""
    is_strategic: bool
    is_ai_related: bool
    reasons: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_strategic': self.is_strategic,
            'is_ai_related': self.is_ai_related,
            'reasons': list(self.reasons)
        }


@dataclass
class RequiredDocument:
    """A document slot a shipment needs because of its contents"""
    id: str
    type: str
    description: str
    mandatory: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShipmentAggregate:
    """Shipment-level totals derived from the ordered product lines"""
    total_value: float
    total_quantity: float
    currency: str
    strategic_count: int
    ai_count: int
    priority: str
    insurance_required: bool
    line_count: int = 0
    escalated: bool = False
    required_documents: List[RequiredDocument] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_value': self.total_value,
            'total_quantity': self.total_quantity,
            'currency': self.currency,
            'strategic_count': self.strategic_count,
            'ai_count': self.ai_count,
            'priority': self.priority,
            'insurance_required': self.insurance_required,
            'line_count': self.line_count,
            'escalated': self.escalated,
            'required_documents': [d.to_dict() for d in self.required_documents]
        }


# =============================================================================
# Document reconciliation
# =============================================================================

@dataclass
class ExtractedField:
    """A field value produced by the (external) extraction step"""
    value: Any
    confidence: float = 0.0


@dataclass
class SourceDocument:
    """Extraction output of one source document

    ``rows`` holds table-shaped extraction (one mapping per product row).
    ``extraction_error`` marks a document the extractor could not read.
    """
    document_id: str
    fields: Dict[str, ExtractedField] = field(default_factory=dict)
    document_type: str = ""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    extraction_error: Optional[str] = None


@dataclass
class FieldSuggestion:
    """Canonical value for one field, reconciled across source documents"""
    field_name: str
    value: Any
    source_document_id: str
    confidence: float
    consistent_across_sources: bool
    alternatives: List[Any] = field(default_factory=list)
    source_count: int = 1
    document_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationReport:
    """Everything one reconciliation run produced"""
    suggestions: Dict[str, FieldSuggestion]
    product_lines: List[ProductLine] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def conflicts(self) -> List[str]:
        return [name for name, s in self.suggestions.items() if not s.consistent_across_sources]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'suggestions': {name: s.to_dict() for name, s in self.suggestions.items()},
            'product_lines': [line.to_dict() for line in self.product_lines],
            'failures': list(self.failures),
            'conflicts': self.conflicts
        }


@dataclass
class ShipmentDraft:
    """The shipment form suggestions are applied to

    ``fields`` holds shipment-level values (invoice number, consignee...),
    ``lines`` the ordered product lines.
    """
    fields: Dict[str, Any] = field(default_factory=dict)
    lines: List[ProductLine] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fields': dict(self.fields),
            'lines': [line.to_dict() for line in self.lines]
        }


# =============================================================================
# Screening
# =============================================================================

@dataclass(frozen=True)
class WatchlistResult:
    """Verdict of one watchlist for one screening run"""
    list_name: str
    match_found: bool
    matched_entity_name: Optional[str] = None
    match_confidence: Optional[float] = None
    match_reason: Optional[str] = None
    lookup_failed: bool = False
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WatchlistResult':
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class RiskScores:
    """The four category scores; None means 'not yet scored'"""
    geographic: Optional[int] = None
    product: Optional[int] = None
    end_user: Optional[int] = None
    transaction: Optional[int] = None
    notes: Dict[str, str] = field(default_factory=dict)

    CATEGORIES = ('geographic', 'product', 'end_user', 'transaction')

    def as_mapping(self) -> Dict[str, Optional[int]]:
        return {name: getattr(self, name) for name in self.CATEGORIES}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = self.as_mapping()
        data['notes'] = dict(self.notes)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RiskScores':
        data = data or {}
        return cls(
            geographic=data.get('geographic'),
            product=data.get('product'),
            end_user=data.get('end_user'),
            transaction=data.get('transaction'),
            notes=dict(data.get('notes') or {})
        )


@dataclass(frozen=True)
class RiskAssessment:
    overall: float
    tier: RiskTier

    def to_dict(self) -> Dict[str, Any]:
        return {'overall': self.overall, 'tier': self.tier.value}


@dataclass
class InitialRiskSuggestion:
    """Suggested starting scores for a new screening"""
    scores: RiskScores
    assessment: RiskAssessment
    manual_review_required: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scores': self.scores.to_dict(),
            'assessment': self.assessment.to_dict(),
            'manual_review_required': self.manual_review_required,
            'reasons': list(self.reasons)
        }


@dataclass
class EndUser:
    company_name: str = ""
    registration_number: str = ""
    country: str = ""
    address: str = ""
    business_type: str = ""
    contact_person: str = ""
    contact_email: str = ""
    contact_phone: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TransactionContext:
    value: float = 0.0
    currency: str = "USD"
    product_categories: List[str] = field(default_factory=list)
    end_use_declaration: str = ""
    frequency: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentSlot:
    """A screening document the record expects, and its upload state"""
    document_type: str
    mandatory: bool = False
    uploaded: bool = False
    file_reference: Optional[str] = None
    uploaded_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApprovalDetails:
    """Who moved the record, when, why, and between which states"""
    actor: str
    timestamp: str
    reason: str = ""
    from_status: str = ""
    to_status: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScreeningRecord:
    """End-user screening of one shipment

    ``version`` is the optimistic-concurrency token; every accepted
    mutation returns a copy with ``version + 1``.
    """
    screening_id: str
    shipment_id: str
    end_user: EndUser = field(default_factory=EndUser)
    transaction: TransactionContext = field(default_factory=TransactionContext)
    risk_scores: RiskScores = field(default_factory=RiskScores)
    overall_risk: Optional[float] = None
    risk_tier: Optional[str] = None
    watchlist_results: List[WatchlistResult] = field(default_factory=list)
    watchlist_run_count: int = 0
    last_screened_at: Optional[str] = None
    documents: List[DocumentSlot] = field(default_factory=list)
    status: ScreeningStatus = ScreeningStatus.PENDING
    assigned_officer: str = ""
    officer_notes: str = ""
    enhanced_dd_required: bool = False
    enhanced_dd_completed: bool = False
    approval_details: Optional[ApprovalDetails] = None
    history: List[ApprovalDetails] = field(default_factory=list)
    version: int = 1
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def document(self, document_type: str) -> Optional[DocumentSlot]:
        for slot in self.documents:
            if slot.document_type == document_type:
                return slot
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'screening_id': self.screening_id,
            'shipment_id': self.shipment_id,
            'end_user': self.end_user.to_dict(),
            'transaction': self.transaction.to_dict(),
            'risk_scores': self.risk_scores.to_dict(),
            'overall_risk': self.overall_risk,
            'risk_tier': self.risk_tier,
            'watchlist_results': [r.to_dict() for r in self.watchlist_results],
            'watchlist_run_count': self.watchlist_run_count,
            'last_screened_at': self.last_screened_at,
            'documents': [d.to_dict() for d in self.documents],
            'status': self.status.value,
            'assigned_officer': self.assigned_officer,
            'officer_notes': self.officer_notes,
            'enhanced_dd_required': self.enhanced_dd_required,
            'enhanced_dd_completed': self.enhanced_dd_completed,
            'approval_details': self.approval_details.to_dict() if self.approval_details else None,
            'history': [h.to_dict() for h in self.history],
            'version': self.version,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScreeningRecord':
        approval = data.get('approval_details')
        return cls(
            screening_id=data['screening_id'],
            shipment_id=data['shipment_id'],
            end_user=EndUser(**(data.get('end_user') or {})),
            transaction=TransactionContext(**(data.get('transaction') or {})),
            risk_scores=RiskScores.from_dict(data.get('risk_scores')),
            overall_risk=data.get('overall_risk'),
            risk_tier=data.get('risk_tier'),
            watchlist_results=[WatchlistResult.from_dict(r) for r in data.get('watchlist_results') or []],
            watchlist_run_count=data.get('watchlist_run_count', 0),
            last_screened_at=data.get('last_screened_at'),
            documents=[DocumentSlot(**d) for d in data.get('documents') or []],
            status=ScreeningStatus(data.get('status', ScreeningStatus.PENDING.value)),
            assigned_officer=data.get('assigned_officer') or "",
            officer_notes=data.get('officer_notes') or "",
            enhanced_dd_required=bool(data.get('enhanced_dd_required', False)),
            enhanced_dd_completed=bool(data.get('enhanced_dd_completed', False)),
            approval_details=ApprovalDetails(**approval) if approval else None,
            history=[ApprovalDetails(**h) for h in data.get('history') or []],
            version=data.get('version', 1),
            created_at=data.get('created_at') or utc_now_iso(),
            updated_at=data.get('updated_at') or utc_now_iso()
        )
