import sys
import os
import logging
from typing import List, Dict, Any, Optional, Union

from fastapi import FastAPI, Depends, Header, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, StrictBool, StrictFloat, StrictInt

# Set up root logger for startup diagnostics
root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)
if not root_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    root_logger.addHandler(handler)

root_logger.info("App starting up - Python version: %s", sys.version)
root_logger.info("Working directory: %s", os.getcwd())

from draw_reconciliation import __version__
from draw_reconciliation.config import ConfigManager, get_config_manager
from draw_reconciliation.exceptions import (
    AuthorizationError, BatchNotFoundError, DrawEngineError, PreconditionError, ValidationError
)
from draw_reconciliation.service import DrawEngineService

logger = logging.getLogger('draw_reconciliation.api')

# Check if we're running on AWS Lambda
IS_LAMBDA = os.environ.get('AWS_EXECUTION_ENV') is not None
STAGE_PREFIX = os.environ.get('STAGE_PREFIX', '')  # e.g., '/dev' or '/prod' for API Gateway stages

# Header sent by the scheduler; x-webhook-secret is also accepted
WEBHOOK_SECRET_HEADER = 'x-td3-webhook-secret'

# Create the FastAPI app
app = FastAPI(
    title="Draw Reconciliation API",
    description="Reconciliation and wire funding for construction-loan draw requests",
    version=__version__,
    root_path=STAGE_PREFIX if IS_LAMBDA else "",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Set this to specific origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service: Optional[DrawEngineService] = None


def get_service() -> DrawEngineService:
    """Build the engine service from settings on first use."""
    global _service
    if _service is None:
        settings = get_config_manager().load_settings()
        _service = DrawEngineService.from_settings(settings)
        logger.info(f"Draw engine service ready with {settings.store_backend} store")
    return _service


def get_config() -> ConfigManager:
    return get_config_manager()


def status_code_for(error: DrawEngineError) -> int:
    """HTTP status for an engine error."""
    if isinstance(error, AuthorizationError):
        return 401
    if isinstance(error, BatchNotFoundError):
        return 404
    if isinstance(error, (ValidationError, PreconditionError)):
        return 400
    return 500


@app.exception_handler(DrawEngineError)
async def draw_engine_error_handler(request: Request, exc: DrawEngineError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.reason}): {exc}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Pydantic Models
class ReconcileProcessingRequest(BaseModel):
    drawRequestId: Optional[str] = None
    olderThanMinutes: Optional[Union[StrictInt, StrictFloat]] = None
    autoRetryOnce: Optional[StrictBool] = None

class CreateWireBatchRequest(BaseModel):
    action: Optional[str] = None
    builder_id: Optional[str] = None
    draw_ids: Optional[List[str]] = None
    funded_at: Optional[str] = None
    wire_reference: Optional[str] = None
    notes: Optional[str] = None
    funded_by: Optional[str] = None
    submitted_by: Optional[str] = None

class UpdateWireBatchRequest(BaseModel):
    action: Optional[str] = None
    funded_at: Optional[str] = None
    wire_reference: Optional[str] = None
    notes: Optional[str] = None
    funded_by: Optional[str] = None

class BudgetCandidate(BaseModel):
    id: str
    category: str
    builder_category_raw: Optional[str] = None
    project_id: Optional[str] = None
    current_amount: Optional[float] = None
    spent_amount: Optional[float] = None

class BudgetMatchRequest(BaseModel):
    category: str
    project_id: Optional[str] = None
    candidates: Optional[List[BudgetCandidate]] = None
    threshold: Optional[float] = None

class BudgetImportPreviewRequest(BaseModel):
    project_id: str
    categories: List[str]
    threshold: Optional[float] = None


def _payload(model: BaseModel, fields: List[str]) -> Dict[str, Any]:
    return {name: getattr(model, name) for name in fields if getattr(model, name) is not None}


# API Routes
@app.get("/", tags=["Info"])
def root():
    """Get basic info about the API"""
    return {
        "message": "Draw Reconciliation API is running",
        "documentation": "/docs"
    }

@app.get("/health", tags=["Health"])
def health_check(service: DrawEngineService = Depends(get_service),
                 config: ConfigManager = Depends(get_config)):
    """Health check for the store and settings"""
    data = service.health()
    data["config"] = config.get_config_info()
    return data

@app.post("/api/invoices/reconcile-processing", tags=["Invoices"])
def reconcile_processing(request: Optional[ReconcileProcessingRequest] = None,
                         x_td3_webhook_secret: Optional[str] = Header(None, alias=WEBHOOK_SECRET_HEADER),
                         x_webhook_secret: Optional[str] = Header(None),
                         service: DrawEngineService = Depends(get_service)):
    """Mark invoices stuck in processing as errored"""
    body = _payload(request, ['drawRequestId', 'olderThanMinutes', 'autoRetryOnce']) if request else {}
    return service.reconcile_stuck_invoices(body, x_td3_webhook_secret or x_webhook_secret)

@app.get("/api/invoices/retry-candidates", tags=["Invoices"])
def retry_candidates(drawRequestId: Optional[str] = None,
                     service: DrawEngineService = Depends(get_service)):
    """Invoices flagged for a single automatic retry"""
    return {"invoices": service.retry_candidates(drawRequestId)}

@app.post("/api/wire-batches", tags=["Wire Batches"])
def create_wire_batch(request: CreateWireBatchRequest,
                      service: DrawEngineService = Depends(get_service)):
    """Fund staged draws directly or submit them for wire"""
    body = _payload(request, ['action', 'builder_id', 'draw_ids', 'funded_at',
                              'wire_reference', 'notes', 'funded_by', 'submitted_by'])
    result = service.fund_wire_batch(body)
    if result['failed_draw_ids']:
        logger.error(f"Wire batch {result['batch_id']} created with failed draws: {result['failed_draw_ids']}")
    return result

@app.get("/api/wire-batches/{batch_id}", tags=["Wire Batches"])
def get_wire_batch(batch_id: str, service: DrawEngineService = Depends(get_service)):
    """Get a wire batch with its draws"""
    return service.get_wire_batch(batch_id)

@app.patch("/api/wire-batches/{batch_id}", tags=["Wire Batches"])
def update_wire_batch(batch_id: str, request: UpdateWireBatchRequest,
                      service: DrawEngineService = Depends(get_service)):
    """Confirm funding of, or cancel, a pending wire batch"""
    body = _payload(request, ['action', 'funded_at', 'wire_reference', 'notes', 'funded_by'])
    return service.update_wire_batch(batch_id, body)

@app.post("/api/budgets/match", tags=["Budgets"])
def match_budget(request: BudgetMatchRequest, service: DrawEngineService = Depends(get_service)):
    """Find the best budget line for a category label"""
    if request.candidates is not None:
        candidates = [_payload(candidate, ['id', 'category', 'builder_category_raw', 'project_id',
                                           'current_amount', 'spent_amount'])
                      for candidate in request.candidates]
        match = service.find_best_budget_match(request.category, candidates, request.threshold)
    elif request.project_id:
        match = service.match_project_budget(request.category, request.project_id, request.threshold)
    else:
        raise ValidationError("project_id or candidates is required")
    return {"category": request.category, "match": match}

@app.post("/api/budgets/match-preview", tags=["Budgets"])
def preview_budget_import(request: BudgetImportPreviewRequest,
                          service: DrawEngineService = Depends(get_service)):
    """Match a list of imported category labels to a project's budget lines"""
    return service.preview_budget_import(request.categories, request.project_id, request.threshold)

@app.post("/api/draws/{draw_request_id}/reconcile-flags", tags=["Draws"])
def reconcile_draw_flags(draw_request_id: str, service: DrawEngineService = Depends(get_service)):
    """Recompute NO_INVOICE flags on a draw's lines"""
    return service.reconcile_invoice_flags(draw_request_id)

@app.get("/api/audit/recent", tags=["Audit"])
def recent_audit_events(limit: int = 50, service: DrawEngineService = Depends(get_service)):
    """Most recent audit events"""
    return {"events": service.recent_audit_events(limit)}

@app.get("/api/audit/{entity_type}/{entity_id}", tags=["Audit"])
def audit_history(entity_type: str, entity_id: str, service: DrawEngineService = Depends(get_service)):
    """Audit history for one entity"""
    return {"events": service.audit_history(entity_type, entity_id)}

# Main entry point for uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
