"""
FastAPI Compliance Screening API Server

REST surface of the compliance core: product classification, field
reconciliation, watchlist screening, risk aggregation, shipment
recompute and the screening-record workflow.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Security, Query
from fastapi.security import APIKeyHeader
import psutil

from api.models import (
    ApplySuggestionsRequest,
    ApplySuggestionsResponse,
    AssignOfficerRequest,
    ChecklistResponse,
    ClassificationResponse,
    CreateScreeningRequest,
    DetailsUpdateRequest,
    DocumentUploadRequest,
    EnhancedDDRequest,
    ErrorResponse,
    FieldSuggestionModel,
    HealthResponse,
    ProductLineModel,
    ReconciliationReportResponse,
    RiskAggregateRequest,
    RiskAggregateResponse,
    RiskSuggestRequest,
    RiskSuggestResponse,
    RiskUpdateRequest,
    RunScreeningRequest,
    ScreenRequest,
    ScreeningRecordResponse,
    ShipmentAggregateResponse,
    ShipmentRecomputeRequest,
    SourceDocumentModel,
    TransitionRequest,
    WatchlistResultModel,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from audit_logger import ComplianceAuditLogger, get_audit_logger
from classification_rules import ClassificationRules
from compliance_errors import ConfigurationError
from compliance_models import (
    EndUser,
    ProductLine,
    RiskScores,
    ScreeningRecord,
    ShipmentDraft,
    TransactionContext,
)
from compliance_workflow import ComplianceWorkflow
from config_manager import get_config, ConfigManager
from field_reconciler import FieldReconciler
from risk_aggregator import RiskAggregator
from shipment_aggregator import ShipmentAggregator
from watchlist_screener import WatchlistScreener, build_lookup
from database.connection import DatabaseSessionProvider, DatabaseSettings, init_db, close_db
from database.screening_service import (
    configure_screening_service,
    is_screening_service_configured,
    reset_screening_service,
    screening_service_scope,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH") or None
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints
DB_CREATE_TABLES = os.getenv("DB_CREATE_TABLES", "false").lower() == "true"

BASE_DIR = Path(__file__).resolve().parent.parent

# Global state
_config: Optional[ConfigManager] = None
_audit_logger: Optional[ComplianceAuditLogger] = None
_classifier: Optional[ClassificationRules] = None
_reconciler: Optional[FieldReconciler] = None
_screener: Optional[WatchlistScreener] = None
_risk: Optional[RiskAggregator] = None
_workflow: Optional[ComplianceWorkflow] = None
_shipment: Optional[ShipmentAggregator] = None
_db_provider: Optional[DatabaseSessionProvider] = None
_startup_time: Optional[datetime] = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Invalid API key"},
    422: {"model": ErrorResponse, "description": "Validation error or incomplete checklist"},
    503: {"model": ErrorResponse, "description": "Service not initialized"},
}

RECORD_RESPONSES = {
    **ERROR_RESPONSES,
    404: {"model": ErrorResponse, "description": "Screening record not found"},
    409: {"model": ErrorResponse, "description": "Invalid transition or stale version"},
}


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def _require(component: Any, name: str) -> Any:
    if component is None:
        raise ConfigurationError(f"{name} not initialized. Service is starting up.")
    return component


def get_classifier() -> ClassificationRules:
    return _require(_classifier, "Classification rules")


def get_reconciler() -> FieldReconciler:
    return _require(_reconciler, "Field reconciler")


def get_screener() -> WatchlistScreener:
    return _require(_screener, "Watchlist screener")


def get_risk_aggregator() -> RiskAggregator:
    return _require(_risk, "Risk aggregator")


def get_shipment_aggregator() -> ShipmentAggregator:
    return _require(_shipment, "Shipment aggregator")


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def build_components(config: ConfigManager, audit_logger: Optional[ComplianceAuditLogger] = None) -> Dict[str, Any]:
    """Construct every core component from one configuration"""
    classifier = ClassificationRules(config.classification)
    risk = RiskAggregator(config.risk)
    return {
        'classifier': classifier,
        'reconciler': FieldReconciler(config.reconciliation),
        'screener': WatchlistScreener(
            build_lookup(config.watchlist, base_dir=BASE_DIR), config.watchlist, audit_logger
        ),
        'risk': risk,
        'workflow': ComplianceWorkflow(config.workflow, risk, audit_logger),
        'shipment': ShipmentAggregator(config.shipment, classifier),
    }


# Create FastAPI application
app = FastAPI(
    title="Compliance Screening API",
    description="Export-compliance screening: classification, reconciliation, "
                "watchlist screening, risk scoring and the approval workflow",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, build the core components and connect the database."""
    global _config, _audit_logger, _classifier, _reconciler, _screener
    global _risk, _workflow, _shipment, _db_provider, _startup_time

    logger.info("Starting Compliance Screening API...")
    start_time = time.time()

    try:
        _config = get_config(CONFIG_PATH)
        logger.info("Configuration loaded from %s", _config.config_path)
        logging.getLogger().setLevel(_config.logging.level.upper())

        _audit_logger = get_audit_logger(
            log_dir=_config.logging.audit_directory,
            enable_console=False,
            enable_file=True
        )

        components = build_components(_config, _audit_logger)
        _classifier = components['classifier']
        _reconciler = components['reconciler']
        _screener = components['screener']
        _risk = components['risk']
        _workflow = components['workflow']
        _shipment = components['shipment']
        logger.info("Screening against %d watchlists: %s",
                    len(_screener.list_names), ", ".join(_screener.list_names))

        db_settings = DatabaseSettings.from_env(_config.database)
        if db_settings.enabled:
            _db_provider = init_db(db_settings)
            if DB_CREATE_TABLES:
                _db_provider.create_tables()
            configure_screening_service(_db_provider, _workflow, _screener, _risk, _audit_logger)
            logger.info("Screening records persisted to the database")
        else:
            logger.warning("No database URL (DATABASE_URL or database.url); screening record endpoints are disabled")

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready in %.2f seconds", time.time() - start_time)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Compliance Screening API...")
    if _db_provider is not None:
        reset_screening_service()
        close_db()


# ============================================
# CORE OPERATIONS
# ============================================

@app.post(
    "/compliance/classify-line",
    response_model=ClassificationResponse,
    responses=ERROR_RESPONSES,
    summary="Classify a product line",
    description="Derive the strategic and AI-related flags of one product line",
)
async def classify_line(
    line: ProductLineModel,
    classifier: ClassificationRules = Depends(get_classifier),
    api_key: str = Depends(verify_api_key),
):
    classification = classifier.classify(ProductLine(**line.model_dump()))
    return ClassificationResponse(
        is_strategic=classification.is_strategic,
        is_ai_related=classification.is_ai_related,
        reasons=list(classification.reasons),
        known_category=classifier.is_known_category(line.category),
    )


def _documents(documents: List[SourceDocumentModel]) -> List[Dict[str, Any]]:
    return [document.model_dump() for document in documents]


@app.post(
    "/compliance/reconcile-fields",
    response_model=Dict[str, FieldSuggestionModel],
    responses=ERROR_RESPONSES,
    summary="Reconcile extracted fields",
    description="One canonical suggestion per field across the ordered source documents",
)
async def reconcile_fields(
    documents: List[SourceDocumentModel],
    reconciler: FieldReconciler = Depends(get_reconciler),
    api_key: str = Depends(verify_api_key),
):
    suggestions = reconciler.reconcile(_documents(documents))
    return {name: FieldSuggestionModel(**s.to_dict()) for name, s in suggestions.items()}


@app.post(
    "/compliance/reconcile-fields/report",
    response_model=ReconciliationReportResponse,
    responses=ERROR_RESPONSES,
    summary="Reconcile with full report",
    description="Suggestions plus conflicts, failed sources and table-expanded product lines",
)
async def reconcile_fields_report(
    documents: List[SourceDocumentModel],
    reconciler: FieldReconciler = Depends(get_reconciler),
    api_key: str = Depends(verify_api_key),
):
    report = reconciler.reconcile_report(_documents(documents))
    return ReconciliationReportResponse.model_validate(report.to_dict())


@app.post(
    "/compliance/reconcile-fields/apply",
    response_model=ApplySuggestionsResponse,
    responses=ERROR_RESPONSES,
    summary="Apply reconciled fields to a shipment draft",
)
async def apply_reconciled_fields(
    request: ApplySuggestionsRequest,
    reconciler: FieldReconciler = Depends(get_reconciler),
    api_key: str = Depends(verify_api_key),
):
    report = reconciler.reconcile_report(_documents(request.documents))
    draft = ShipmentDraft(
        fields=dict(request.draft.fields),
        lines=[ProductLine(**line.model_dump()) for line in request.draft.lines],
    )
    if request.apply_rows:
        draft = reconciler.apply_rows(draft, report.product_lines)

    requested = request.field_names if request.field_names is not None else list(report.suggestions)
    draft = reconciler.apply_suggestions(draft, report.suggestions, requested)
    return ApplySuggestionsResponse(
        draft=draft.to_dict(),
        applied_fields=[name for name in requested if name in report.suggestions],
        unchanged_fields=[name for name in requested if name not in report.suggestions],
    )


@app.post(
    "/compliance/screen",
    response_model=List[WatchlistResultModel],
    responses=ERROR_RESPONSES,
    summary="Screen an entity",
    description="Screen a name/country against every configured watchlist; one result per list, in order",
)
def screen_entity(
    request: ScreenRequest,
    screener: WatchlistScreener = Depends(get_screener),
    api_key: str = Depends(verify_api_key),
):
    results = screener.screen(request.entity_name, request.country, request.timeout_seconds)
    return [WatchlistResultModel(**r.to_dict()) for r in results]


@app.post(
    "/compliance/risk/aggregate",
    response_model=RiskAggregateResponse,
    responses=ERROR_RESPONSES,
    summary="Aggregate risk scores",
)
async def aggregate_risk(
    request: RiskAggregateRequest,
    risk: RiskAggregator = Depends(get_risk_aggregator),
    api_key: str = Depends(verify_api_key),
):
    scores = request.model_dump(exclude={'watchlist_hit'})
    assessment = risk.aggregate(scores)
    return RiskAggregateResponse(
        overall=assessment.overall,
        tier=assessment.tier.value,
        enhanced_dd_required=risk.enhanced_dd_required(assessment, request.watchlist_hit),
    )


@app.post(
    "/compliance/risk/suggest",
    response_model=RiskSuggestResponse,
    responses=ERROR_RESPONSES,
    summary="Suggest initial risk scores",
)
async def suggest_risk(
    request: RiskSuggestRequest,
    risk: RiskAggregator = Depends(get_risk_aggregator),
    api_key: str = Depends(verify_api_key),
):
    suggestion = risk.suggest_initial_scores(
        request.country, request.product_categories, request.transaction_value
    )
    return RiskSuggestResponse.model_validate(suggestion.to_dict())


@app.post(
    "/compliance/shipment/recompute",
    response_model=ShipmentAggregateResponse,
    responses=ERROR_RESPONSES,
    summary="Recompute shipment totals",
    description="Totals, classification counts and high-value escalation for the current lines",
)
async def recompute_shipment(
    request: ShipmentRecomputeRequest,
    aggregator: ShipmentAggregator = Depends(get_shipment_aggregator),
    api_key: str = Depends(verify_api_key),
):
    aggregate = aggregator.recompute(
        [ProductLine(**line.model_dump()) for line in request.lines],
        prior_priority=request.prior_priority,
        prior_insurance=request.prior_insurance,
        currency=request.currency,
    )
    return ShipmentAggregateResponse.model_validate(aggregate.to_dict())


# ============================================
# SCREENING RECORDS
# ============================================

def require_records() -> None:
    if not is_screening_service_configured():
        raise ConfigurationError("Screening records are not available: database not initialized")


def _record_response(record: ScreeningRecord) -> ScreeningRecordResponse:
    return ScreeningRecordResponse.model_validate(record.to_dict())


@app.post(
    "/compliance/workflow/transition",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Change a screening's status",
    description="Officer-driven status change, gated by the approval checklist",
)
def transition_screening(
    request: TransitionRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.transition(
            request.screening_id, request.target_state, request.actor,
            request.reason or "", request.expected_version
        )
    return _record_response(record)


@app.post(
    "/compliance/screenings",
    response_model=ScreeningRecordResponse,
    status_code=201,
    responses=RECORD_RESPONSES,
    summary="Open a screening",
)
def create_screening(
    request: CreateScreeningRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    risk_scores = RiskScores(**request.risk_scores.model_dump()) if request.risk_scores else None
    with screening_service_scope() as service:
        record = service.open_screening(
            request.screening_id,
            request.shipment_id,
            request.actor,
            end_user=EndUser(**request.end_user.model_dump()),
            transaction=TransactionContext(**request.transaction.model_dump()),
            risk_scores=risk_scores,
        )
    return _record_response(record)


@app.get(
    "/compliance/screenings",
    response_model=List[ScreeningRecordResponse],
    responses=RECORD_RESPONSES,
    summary="List screenings",
)
def list_screenings(
    status: Optional[str] = Query(default=None),
    assigned_officer: Optional[str] = Query(default=None, alias="assignedOfficer"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        records, _total = service.list_records(status, assigned_officer, offset, limit)
    return [_record_response(record) for record in records]


@app.get(
    "/compliance/screenings/{screening_id}",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Get a screening",
)
def get_screening(
    screening_id: str,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.get(screening_id)
    return _record_response(record)


@app.get(
    "/compliance/screenings/{screening_id}/checklist",
    response_model=ChecklistResponse,
    responses=RECORD_RESPONSES,
    summary="Approval checklist of a screening",
)
def get_checklist(
    screening_id: str,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        checklist = service.checklist(screening_id)
    return ChecklistResponse.model_validate(checklist)


@app.get(
    "/compliance/screenings/{screening_id}/audit",
    responses=RECORD_RESPONSES,
    summary="Audit trail of a screening",
)
def get_audit_trail(
    screening_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        service.get(screening_id)
        return service.audit_trail(screening_id, limit)


@app.get(
    "/compliance/screenings/{screening_id}/watchlist-results",
    response_model=List[WatchlistResultModel],
    responses=RECORD_RESPONSES,
    summary="Stored watchlist results of one screening run",
    description="Results of the given run number, or of the latest run when omitted",
)
def get_watchlist_history(
    screening_id: str,
    run: Optional[int] = Query(default=None, ge=1, description="Run number (latest when omitted)"),
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        results = service.watchlist_history(screening_id, run)
    return [WatchlistResultModel(**result.to_dict()) for result in results]


@app.post(
    "/compliance/screenings/{screening_id}/screen",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Run watchlist screening for a record",
)
def run_record_screening(
    screening_id: str,
    request: RunScreeningRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.run_screening(
            screening_id, request.actor, request.expected_version, request.timeout_seconds
        )
    return _record_response(record)


@app.post(
    "/compliance/screenings/{screening_id}/risk",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Edit risk scores",
)
def update_record_risk(
    screening_id: str,
    request: RiskUpdateRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.update_risk_scores(
            screening_id, request.scores, request.actor, request.notes, request.expected_version
        )
    return _record_response(record)


@app.post(
    "/compliance/screenings/{screening_id}/officer",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Assign the compliance officer",
)
def assign_record_officer(
    screening_id: str,
    request: AssignOfficerRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.assign_officer(
            screening_id, request.officer, request.actor, request.notes, request.expected_version
        )
    return _record_response(record)


@app.post(
    "/compliance/screenings/{screening_id}/enhanced-dd",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Complete enhanced due diligence",
)
def complete_record_enhanced_dd(
    screening_id: str,
    request: EnhancedDDRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.complete_enhanced_dd(
            screening_id, request.actor, request.notes, request.expected_version
        )
    return _record_response(record)


@app.post(
    "/compliance/screenings/{screening_id}/documents",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Mark a screening document uploaded",
)
def upload_record_document(
    screening_id: str,
    request: DocumentUploadRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    with screening_service_scope() as service:
        record = service.mark_document_uploaded(
            screening_id, request.document_type, request.actor,
            request.file_reference, request.expected_version
        )
    return _record_response(record)


@app.post(
    "/compliance/screenings/{screening_id}/details",
    response_model=ScreeningRecordResponse,
    responses=RECORD_RESPONSES,
    summary="Update end-user and transaction details",
)
def update_record_details(
    screening_id: str,
    request: DetailsUpdateRequest,
    _: None = Depends(require_records),
    api_key: str = Depends(verify_api_key),
):
    end_user = request.end_user.model_dump(exclude_unset=True) if request.end_user else None
    transaction = request.transaction.model_dump(exclude_unset=True) if request.transaction else None
    with screening_service_scope() as service:
        record = service.update_details(
            screening_id, request.actor, end_user, transaction, request.expected_version
        )
    return _record_response(record)


# ============================================
# HEALTH
# ============================================

@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service health, rule-set version and database status",
)
async def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Return health status. Always returns HTTP 200."""
    try:
        database = "not_configured"
        if _db_provider is not None:
            database = "connected" if _db_provider.health_check() else "unavailable"

        memory_usage_mb = None
        try:
            process = psutil.Process()
            memory_usage_mb = round(process.memory_info().rss / (1024 * 1024), 2)
        except psutil.Error as e:
            logger.debug("Memory usage unavailable: %s", e)

        uptime_seconds = None
        if _startup_time:
            uptime = datetime.now(timezone.utc) - _startup_time
            uptime_seconds = int(uptime.total_seconds())

        return HealthResponse(
            status="healthy" if _screener is not None else "starting",
            algorithm_version=config.algorithm.version,
            watchlists=_screener.list_names if _screener is not None else [],
            database=database,
            memory_usage_mb=memory_usage_mb,
            uptime_seconds=uptime_seconds,
        )
    except Exception as e:
        # Always return HTTP 200, but report error in JSON
        logger.error("Health check failed: %s", e)
        return HealthResponse(
            status="error",
            algorithm_version="unknown",
            error_message=str(e),
        )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
