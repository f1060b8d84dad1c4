"""
FastAPI application for the bank-statement reconciliation back office.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from .config import Settings, get_settings
from .errors import ReconciliationError, StoreError
from .integrations import RestClient, RestEntityStore, RestSuggestionService
from .logging_setup import setup_logging
from .models import PeriodFilter
from .reconciliation import ReconciliationEngine
from .store import InMemoryEntityStore, InMemorySuggestionService

logger = structlog.get_logger()
settings = get_settings()

setup_logging()

STATUS_BY_CODE = {
    "empty_selection": 422,
    "unsupported_match_shape": 422,
    "imbalanced_selection": 422,
    "concurrent_modification": 409,
    "invalid_suggestion_state": 409,
    "suggestion_in_flight": 409,
    "suggestion_not_found": 404,
    "store_error": 502,
}


def build_engine(settings: Settings) -> ReconciliationEngine:
    """Wire the engine to the in-memory store or to the persistence API."""
    if settings.use_memory_store:
        store = InMemoryEntityStore(tenant_id=settings.tenant_id)
        service = InMemorySuggestionService(store)
    else:
        client = RestClient(
            base_url=settings.store_api_url,
            api_key=settings.store_api_key,
            tenant_id=settings.tenant_id,
        )
        store = RestEntityStore(client)
        service = RestSuggestionService(client)
    return ReconciliationEngine(store, service, settings=settings)


@lru_cache
def get_engine() -> ReconciliationEngine:
    return build_engine(get_settings())


async def close_engine(engine: ReconciliationEngine) -> Optional[Path]:
    """Flush the audit trail to reports_dir and release the store connection."""
    path = engine.audit.export_to_file()
    client = getattr(engine.store, "client", None)
    if client is not None:
        await client.close()
    return path


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting reconciliation API",
        tenant_id=settings.tenant_id,
        memory_store=settings.use_memory_store,
    )
    settings.reports_dir.mkdir(parents=True, exist_ok=True)
    yield
    if get_engine.cache_info().currsize:
        await close_engine(get_engine())
    logger.info("Shutting down reconciliation API")


app = FastAPI(
    title="Conciliacao Bancaria",
    description="Conciliacao de extratos bancarios com lancamentos da tesouraria",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_for(error: ReconciliationError) -> int:
    if isinstance(error, StoreError) and error.status_code == 404:
        return 404
    return STATUS_BY_CODE.get(error.code, 500)


def error_response(error: ReconciliationError) -> JSONResponse:
    return JSONResponse(status_code=status_for(error), content=error.to_dict())


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    logger.warning(
        "Request failed",
        path=request.url.path,
        code=exc.code,
        error=exc.message,
    )
    return error_response(exc)


def period_filter(
    account_id: Optional[str] = None,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
) -> PeriodFilter:
    """Account/period query parameters; missing bounds fall back to the default window."""
    end = period_end or date.today()
    start = period_start or end - timedelta(days=get_settings().default_period_days)
    try:
        return PeriodFilter(period_start=start, period_end=end, account_id=account_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# Request models
class LinkRequest(BaseModel):
    statement_ids: List[str] = Field(default_factory=list)
    transaction_ids: List[str] = Field(default_factory=list)


class RegenerateRequest(BaseModel):
    account_id: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# API Endpoints
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@app.get("/api/statement-items")
async def list_statement_items(
    search: Optional[str] = None,
    period: PeriodFilter = Depends(period_filter),
    engine: ReconciliationEngine = Depends(get_engine),
):
    items = await engine.list_statement_items(period, search)
    return [item.to_dict() for item in items]


@app.get("/api/transactions")
async def list_transactions(
    search: Optional[str] = None,
    statement_id: Optional[List[str]] = Query(default=None),
    period: PeriodFilter = Depends(period_filter),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Eligible transactions; ranked when statement items are selected."""
    if statement_id:
        ranked = await engine.ranked_transactions(period, statement_id, search)
        return [candidate.to_dict() for candidate in ranked]
    txns = await engine.list_transactions(period, search)
    return [txn.to_dict() for txn in txns]


@app.post("/api/links")
async def create_link(
    request: LinkRequest,
    x_user_id: Optional[str] = Header(default=None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    result = await engine.apply_link(
        request.statement_ids,
        request.transaction_ids,
        user_id=x_user_id,
    )
    if result.error:
        return error_response(result.error)
    return result.to_dict()


@app.post("/api/statement-items/{statement_item_id}/ignore")
async def ignore_statement_item(
    statement_item_id: str,
    x_user_id: Optional[str] = Header(default=None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    result = await engine.ignore_statement_item(statement_item_id, user_id=x_user_id)
    if result.error:
        return error_response(result.error)
    return result.to_dict()


@app.get("/api/coverage")
async def get_coverage(
    period: PeriodFilter = Depends(period_filter),
    engine: ReconciliationEngine = Depends(get_engine),
):
    summary = await engine.coverage(period)
    return summary.to_dict()


@app.get("/api/suggestions")
async def list_suggestions(
    period: PeriodFilter = Depends(period_filter),
    engine: ReconciliationEngine = Depends(get_engine),
):
    suggestions = await engine.list_pending_suggestions(period)
    return [s.to_dict() for s in suggestions]


@app.post("/api/suggestions/bulk-accept")
async def bulk_accept_suggestions(
    period: PeriodFilter = Depends(period_filter),
    x_user_id: Optional[str] = Header(default=None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Accept every pending suggestion at or above the high-confidence score."""
    report = await engine.bulk_accept_high_confidence(period, user_id=x_user_id)
    return report.to_dict()


@app.post("/api/suggestions/regenerate")
async def regenerate_suggestions(
    request: RegenerateRequest,
    x_user_id: Optional[str] = Header(default=None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    period = period_filter(request.account_id, request.period_start, request.period_end)
    created = await engine.regenerate_suggestions(
        period,
        min_score=request.min_score,
        user_id=x_user_id,
    )
    return {"created": created}


@app.post("/api/suggestions/{suggestion_id}/accept")
async def accept_suggestion(
    suggestion_id: str,
    x_user_id: Optional[str] = Header(default=None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    result = await engine.accept_suggestion(suggestion_id, user_id=x_user_id)
    if result.error:
        return error_response(result.error)
    return result.to_dict()


@app.post("/api/suggestions/{suggestion_id}/reject")
async def reject_suggestion(
    suggestion_id: str,
    x_user_id: Optional[str] = Header(default=None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    result = await engine.reject_suggestion(suggestion_id, user_id=x_user_id)
    if result.error:
        return error_response(result.error)
    return result.to_dict()


@app.get("/api/audit/summary")
async def audit_summary(engine: ReconciliationEngine = Depends(get_engine)):
    return engine.audit.summary()


@app.post("/api/audit/export")
async def export_audit(engine: ReconciliationEngine = Depends(get_engine)):
    """Write the entries logged since the last export to a JSON report."""
    entries = len(engine.audit.unexported)
    path = engine.audit.export_to_file()
    return {"path": str(path) if path else None, "entries": entries}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
