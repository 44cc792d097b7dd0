"""
Pydantic request/response schemas for the Compliance Screening API

Wire names are camelCase (``commercialValue``, ``isAIRelated``); snake_case
names are accepted on input too. Numeric product fields stay loosely typed
because the forms post numeric strings, which the core coerces itself.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Amount = Union[int, float, str, None]


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, snake_case accepted on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================
# Products, classification, shipments
# ============================================

class ProductLineModel(CamelModel):
    """One product line as posted by the shipment form."""
    id: str = Field(default="line-1", min_length=1, max_length=100, description="Line identifier")
    description: str = Field(default="", max_length=2000)
    category: str = Field(default="standard_ic_asics", description="Semiconductor/product class")
    technology_origin: str = Field(default="")
    hs_code: str = Field(default="", max_length=20, description="Harmonized System code")
    quantity: Amount = Field(default=0)
    unit: str = Field(default="PCS")
    unit_price: Amount = Field(default=0)
    commercial_value: Amount = Field(default=0)
    end_use_purpose: str = Field(default="", max_length=2000)
    source_row_ref: Optional[str] = Field(default=None, description="Originating document row")


class ClassificationResponse(CamelModel):
    """Derived flags of a product line."""
    is_strategic: bool = Field(..., description="Export-control sensitive item")
    is_ai_related: bool = Field(..., alias="isAIRelated", description="AI-related item")
    reasons: List[str] = Field(default_factory=list, description="Rule hits in evaluation order")
    known_category: bool = Field(default=True, description="Category is one of the configured product classes")


class RequiredDocumentModel(CamelModel):
    id: str
    type: str
    description: str
    mandatory: bool
    reason: str


class ShipmentRecomputeRequest(CamelModel):
    """Lines plus the priority/insurance the operator had set."""
    lines: List[ProductLineModel] = Field(default_factory=list)
    prior_priority: str = Field(default="Standard", description="Standard, Urgent or Express")
    prior_insurance: bool = Field(default=False)
    currency: Optional[str] = Field(default=None, description="3-letter code (config default if omitted)")


class ShipmentAggregateResponse(CamelModel):
    total_value: float
    total_quantity: float
    currency: str
    strategic_count: int
    ai_count: int
    priority: str
    insurance_required: bool
    line_count: int = 0
    escalated: bool = False
    required_documents: List[RequiredDocumentModel] = Field(default_factory=list)


# ============================================
# Field reconciliation
# ============================================

class ExtractedFieldModel(CamelModel):
    value: Any = None
    confidence: float = Field(default=0.0, description="Extraction confidence (0-1)")


class SourceDocumentModel(CamelModel):
    """Structured extraction result of one uploaded document."""
    document_id: str = Field(..., min_length=1, max_length=200)
    document_type: str = Field(default="", description="e.g. Commercial Invoice, Packing List")
    fields: Dict[str, ExtractedFieldModel] = Field(default_factory=dict)
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Product table rows")
    extraction_error: Optional[str] = Field(default=None, description="Set when extraction failed")


class FieldSuggestionModel(CamelModel):
    field_name: str
    value: Any = None
    source_document_id: str
    confidence: float
    consistent_across_sources: bool
    alternatives: List[Any] = Field(default_factory=list)
    source_count: int = 1
    document_type: str = ""


class ReconciliationFailureModel(CamelModel):
    source: str
    document_type: str = ""
    code: str
    reason: str


class ReconciliationReportResponse(CamelModel):
    suggestions: Dict[str, FieldSuggestionModel] = Field(default_factory=dict)
    product_lines: List[ProductLineModel] = Field(default_factory=list)
    failures: List[ReconciliationFailureModel] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)


class ShipmentDraftModel(CamelModel):
    fields: Dict[str, Any] = Field(default_factory=dict, description="Shipment-level form values")
    lines: List[ProductLineModel] = Field(default_factory=list)


class ApplySuggestionsRequest(CamelModel):
    """Reconcile the documents, then apply the chosen fields to the draft."""
    draft: ShipmentDraftModel = Field(default_factory=ShipmentDraftModel)
    documents: List[SourceDocumentModel] = Field(default_factory=list)
    field_names: Optional[List[str]] = Field(default=None, description="Fields to apply (all when omitted)")
    apply_rows: bool = Field(default=True, description="Replace lines with table rows when present")


class ApplySuggestionsResponse(CamelModel):
    draft: ShipmentDraftModel
    applied_fields: List[str] = Field(default_factory=list)
    unchanged_fields: List[str] = Field(default_factory=list, description="Requested fields with no suggestion")


# ============================================
# Watchlist screening
# ============================================

class ScreenRequest(CamelModel):
    entity_name: str = Field(..., min_length=2, max_length=200, description="Entity to screen")
    country: Optional[str] = Field(default=None, max_length=100)
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Budget for the whole batch")


class WatchlistResultModel(CamelModel):
    list_name: str
    match_found: bool
    matched_entity_name: Optional[str] = None
    match_confidence: Optional[float] = Field(default=None, description="0-1")
    match_reason: Optional[str] = None
    lookup_failed: bool = False
    processing_time_ms: float = 0.0


# ============================================
# Risk
# ============================================

class RiskAggregateRequest(CamelModel):
    """Category scores 1-10; a missing score counts as the neutral midpoint."""
    geographic: Optional[float] = None
    product: Optional[float] = None
    end_user: Optional[float] = None
    transaction: Optional[float] = None
    watchlist_hit: bool = Field(default=False, description="Any watchlist match on the end user")


class RiskAggregateResponse(CamelModel):
    overall: float
    tier: str
    enhanced_dd_required: bool = False


class RiskSuggestRequest(CamelModel):
    country: Optional[str] = Field(default=None, max_length=100)
    product_categories: List[str] = Field(default_factory=list)
    transaction_value: Amount = Field(default=0)


class RiskScoresModel(CamelModel):
    geographic: Optional[float] = None
    product: Optional[float] = None
    end_user: Optional[float] = None
    transaction: Optional[float] = None
    notes: Dict[str, str] = Field(default_factory=dict)


class RiskSuggestResponse(CamelModel):
    scores: RiskScoresModel
    assessment: RiskAggregateResponse
    manual_review_required: bool
    reasons: List[str] = Field(default_factory=list)


# ============================================
# Screening records
# ============================================

class EndUserModel(CamelModel):
    company_name: str = Field(default="", max_length=500)
    registration_number: str = Field(default="", max_length=100)
    country: str = Field(default="", max_length=100)
    address: str = Field(default="", max_length=1000)
    business_type: str = Field(default="")
    contact_person: str = Field(default="")
    contact_email: str = Field(default="")
    contact_phone: str = Field(default="")


class TransactionModel(CamelModel):
    value: Amount = Field(default=0)
    currency: str = Field(default="USD")
    product_categories: List[str] = Field(default_factory=list)
    end_use_declaration: str = Field(default="", max_length=5000)
    frequency: str = Field(default="")


class DocumentSlotModel(CamelModel):
    document_type: str
    mandatory: bool = False
    uploaded: bool = False
    file_reference: Optional[str] = None
    uploaded_at: Optional[str] = None


class ApprovalDetailsModel(CamelModel):
    actor: str
    timestamp: str
    reason: str = ""
    from_status: str = ""
    to_status: str = ""


class ScreeningRecordResponse(CamelModel):
    """Full state of one screening record; ``version`` is the write token."""
    screening_id: str
    shipment_id: str
    end_user: EndUserModel
    transaction: TransactionModel
    risk_scores: RiskScoresModel
    overall_risk: Optional[float] = None
    risk_tier: Optional[str] = None
    watchlist_results: List[WatchlistResultModel] = Field(default_factory=list)
    watchlist_run_count: int = 0
    last_screened_at: Optional[str] = None
    documents: List[DocumentSlotModel] = Field(default_factory=list)
    status: str
    assigned_officer: str = ""
    officer_notes: str = ""
    enhanced_dd_required: bool = False
    enhanced_dd_completed: bool = False
    approval_details: Optional[ApprovalDetailsModel] = None
    history: List[ApprovalDetailsModel] = Field(default_factory=list)
    version: int
    created_at: str
    updated_at: str


class CreateScreeningRequest(CamelModel):
    screening_id: str = Field(..., min_length=1, max_length=100)
    shipment_id: str = Field(..., min_length=1, max_length=100)
    actor: str = Field(..., description="Officer creating the record")
    end_user: EndUserModel = Field(default_factory=EndUserModel)
    transaction: TransactionModel = Field(default_factory=TransactionModel)
    risk_scores: Optional[RiskScoresModel] = Field(
        default=None,
        description="Initial scores; suggested from country/categories/value when omitted"
    )


class OfficerAction(CamelModel):
    """Common fields of every record mutation."""
    actor: str = Field(..., description="Officer performing the action")
    expected_version: Optional[int] = Field(default=None, ge=1, description="Version the change is based on")


class TransitionRequest(OfficerAction):
    screening_id: str = Field(..., min_length=1, max_length=100)
    target_state: str = Field(..., description="pending, in_review, approved, denied, requires_enhanced_dd")
    reason: Optional[str] = Field(default=None, max_length=2000)


class RunScreeningRequest(OfficerAction):
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class RiskUpdateRequest(OfficerAction):
    scores: Dict[str, Optional[float]] = Field(..., description="Category name -> score 1-10")
    notes: Dict[str, str] = Field(default_factory=dict)


class AssignOfficerRequest(OfficerAction):
    officer: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = None


class EnhancedDDRequest(OfficerAction):
    notes: Optional[str] = None


class DocumentUploadRequest(OfficerAction):
    document_type: str = Field(..., min_length=1)
    file_reference: Optional[str] = Field(default=None, description="Storage key of the uploaded file")


class EndUserPatch(CamelModel):
    """Partial end-user update; only the fields sent are changed."""
    company_name: Optional[str] = Field(default=None, max_length=500)
    registration_number: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=1000)
    business_type: Optional[str] = None
    contact_person: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


class TransactionPatch(CamelModel):
    value: Amount = None
    currency: Optional[str] = None
    product_categories: Optional[List[str]] = None
    end_use_declaration: Optional[str] = Field(default=None, max_length=5000)
    frequency: Optional[str] = None


class DetailsUpdateRequest(OfficerAction):
    end_user: Optional[EndUserPatch] = None
    transaction: Optional[TransactionPatch] = None


class ChecklistItemModel(CamelModel):
    code: str
    label: str
    passed: bool
    required: bool = True


class ChecklistIssueModel(CamelModel):
    code: str
    message: str


class ChecklistResponse(CamelModel):
    screening_id: str
    status: str
    version: int
    items: List[ChecklistItemModel] = Field(default_factory=list)
    missing_for_approval: List[ChecklistIssueModel] = Field(default_factory=list)
    recommended_status: Optional[str] = None
    available_transitions: List[str] = Field(default_factory=list)


# ============================================
# Health and errors
# ============================================

class HealthResponse(CamelModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    algorithm_version: str = Field(..., description="Rule-set version")
    watchlists: List[str] = Field(default_factory=list, description="Screened lists, in output order")
    database: str = Field(default="not_configured", description="connected, unavailable or not_configured")
    memory_usage_mb: Optional[float] = Field(default=None, description="Current memory usage in MB")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Missing items, versions...")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
