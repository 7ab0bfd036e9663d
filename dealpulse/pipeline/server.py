"""
DealPulse Server

FastAPI server for call webhooks, confirmations, audit, stall analysis
and alerts.

Endpoints:
- GET  /health, /stats
- POST /webhooks/call: Call recorder webhook (X-Call-Signature)
- GET  /confirmations, POST /confirmations/{id}/confirm|reject
- GET  /audit/call/{call_id}, /audit/record/{record_id}, /audit/stats
- POST /audit/{entry_id}/rollback
- POST /stalls/detect, /stalls/analyze/transcript, /stalls/analyze/email
- GET  /stalls/deals, /stalls/deals/{deal_id}
- POST /stalls/deals/{deal_id}/calculate
- GET  /stalls/dashboard/manager/{manager_id}
- GET  /alerts, /alerts/{alert_id}, /alerts/deal/{deal_id}
- POST /alerts/{alert_id}/acknowledge
- POST /maintenance/cleanup

Validation failures return 400, unknown ids 404 and uninitialized
services 503. Every JSON body carries ``success``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException, Header, Body
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..alerts import AlertGenerator, build_channels
from ..audit import AuditLog
from ..common.config import load_config, DealPulseConfig, ensure_directories
from ..common.errors import NotFoundError, ValidationError, parse_document
from ..common.repository import (
    InMemoryAlertStore,
    InMemoryAuditStore,
    InMemorySignalRepository,
    InMemoryStatusRepository,
)
from ..common.schemas import AlertPriority, StalledDealFilters, utcnow
from ..detector import RegexMatcher, StallDetector, load_stall_patterns
from ..engine import ConfidenceScorer, StageEngine, StallTracker
from .call_pipeline import CallPipeline
from .confirmations import ConfirmationQueue
from .crm import CrmAdapter, build_crm_adapter
from .handlers import CallWebhookHandler
from .stall_pipeline import StallPipeline

logger = logging.getLogger("dealpulse.pipeline.server")


# Global state
config: Optional[DealPulseConfig] = None
call_handler: Optional[CallWebhookHandler] = None
call_pipeline: Optional[CallPipeline] = None
stall_pipeline: Optional[StallPipeline] = None
audit_log: Optional[AuditLog] = None
alert_generator: Optional[AlertGenerator] = None
confirmation_queue: Optional[ConfirmationQueue] = None
stall_tracker: Optional[StallTracker] = None


def init_services(
    cfg: DealPulseConfig,
    crm: Optional[CrmAdapter] = None,
    confirmations_path: Optional[Path] = None,
) -> None:
    """Wire every component from configuration into the module globals"""
    global config, call_handler, call_pipeline, stall_pipeline
    global audit_log, alert_generator, confirmation_queue, stall_tracker

    config = cfg
    crm = crm or build_crm_adapter(cfg.crm)

    audit_log = AuditLog(cfg.audit, InMemoryAuditStore())
    confirmation_queue = ConfirmationQueue(confirmations_path)
    engine = StageEngine(cfg.engine)

    call_handler = CallWebhookHandler(signing_secret=cfg.server.webhook_secret)
    call_pipeline = CallPipeline(engine, audit_log, crm, confirmation_queue)

    scorer = ConfidenceScorer(cfg.scoring)
    matcher = RegexMatcher(load_stall_patterns(cfg.scoring.patterns_path), cfg.scoring.context_radius)
    detector = StallDetector(InMemorySignalRepository(), scorer, matcher)
    stall_tracker = StallTracker(detector.signal_repository, InMemoryStatusRepository(), scorer)
    alert_generator = AlertGenerator(cfg.alerts, InMemoryAlertStore(), build_channels(cfg.alerts, crm))
    stall_pipeline = StallPipeline(detector, stall_tracker, alert_generator)

    logger.info(
        "Services ready (%d stall patterns, %d stage rules, channels: %s)",
        len(matcher.patterns), len(engine.rules), ", ".join(cfg.alerts.enabled_channels),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    logger.info("Starting up...")
    ensure_directories()
    init_services(load_config())
    logger.info("Ready to receive events")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="DealPulse",
    description="Confidence-routed call classification and deal stall alerts",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"success": False, "error": str(exc)}, status_code=400)


def _require(component, name: str):
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return component


def _dump(model) -> Any:
    return model.model_dump(mode="json")


# =============================================================================
# Request Models
# =============================================================================

class ConfirmRequest(BaseModel):
    confirmed_by: Optional[str] = None
    modified_stage: Optional[str] = None


class RejectRequest(BaseModel):
    rejected_by: Optional[str] = None
    reason: Optional[str] = None


class RollbackRequest(BaseModel):
    confirmed_by: Optional[str] = None


class DetectRequest(BaseModel):
    text: str


class AcknowledgeRequest(BaseModel):
    acknowledged_by: Optional[str] = None
    notes: Optional[str] = None


# =============================================================================
# Health
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "success": True,
        "status": "healthy",
        "service": "dealpulse",
        "initialized": call_pipeline is not None and stall_pipeline is not None,
        "pending_confirmations": confirmation_queue.get_stats()["pending"] if confirmation_queue else 0,
    }


@app.get("/stats")
async def get_stats():
    stats: Dict[str, Any] = {
        "success": True,
        "service": "dealpulse",
        "timestamp": utcnow().isoformat(),
    }
    if audit_log:
        stats["audit"] = _dump(audit_log.get_stats())
    if confirmation_queue:
        stats["confirmations"] = confirmation_queue.get_stats()
    if stall_pipeline:
        stats["signals"] = stall_pipeline.detector.signal_repository.count()
    if alert_generator:
        stats["alerts"] = {
            "total": len(alert_generator.store.all()),
            "pending": len(alert_generator.get_pending_alerts()),
        }
    return stats


# =============================================================================
# Call webhooks and confirmations
# =============================================================================

@app.post("/webhooks/call")
async def call_webhook(request: Request, x_call_signature: Optional[str] = Header(None)):
    """Receive a call recorder webhook and run stage mapping"""
    handler = _require(call_handler, "Call handler")
    pipeline = _require(call_pipeline, "Call pipeline")

    body = await request.body()
    if not handler.verify_signature(body, x_call_signature):
        logger.warning("Invalid call webhook signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        data = json.loads(body)
        payload = handler.parse_event(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid payload: {e}")

    result = await run_in_threadpool(pipeline.process_call, payload)
    return _dump(result)


@app.get("/confirmations")
async def get_confirmations():
    queue = _require(confirmation_queue, "Confirmation queue")
    pending = queue.get_pending()
    return {
        "success": True,
        "count": len(pending),
        "confirmations": [item.to_dict() for item in pending],
    }


@app.post("/confirmations/{confirmation_id}/confirm")
async def confirm_stage_change(confirmation_id: str, request: ConfirmRequest):
    pipeline = _require(call_pipeline, "Call pipeline")
    if not request.confirmed_by:
        raise HTTPException(status_code=400, detail="confirmed_by is required")

    result = await run_in_threadpool(
        pipeline.confirm, confirmation_id, request.confirmed_by, request.modified_stage,
    )
    return _tagged(result)


@app.post("/confirmations/{confirmation_id}/reject")
async def reject_stage_change(confirmation_id: str, request: RejectRequest):
    pipeline = _require(call_pipeline, "Call pipeline")
    if not request.rejected_by:
        raise HTTPException(status_code=400, detail="rejected_by is required")

    return _tagged(pipeline.reject(confirmation_id, request.rejected_by, request.reason))


def _tagged(result):
    if result.error_code == "not_found":
        raise HTTPException(status_code=404, detail=result.error)
    if result.error_code in ("validation", "not_rollbackable"):
        raise HTTPException(status_code=400, detail=result.error)
    return _dump(result)


# =============================================================================
# Audit
# =============================================================================

@app.get("/audit/call/{call_id}")
async def audit_for_call(call_id: str):
    log = _require(audit_log, "Audit log")
    return {"success": True, "call_id": call_id, "entries": [_dump(e) for e in log.get_entries_for_call(call_id)]}


@app.get("/audit/record/{record_id}")
async def audit_for_record(record_id: str):
    log = _require(audit_log, "Audit log")
    return {
        "success": True,
        "record_id": record_id,
        "entries": [_dump(e) for e in log.get_entries_for_record(record_id)],
    }


@app.get("/audit/stats")
async def audit_stats():
    log = _require(audit_log, "Audit log")
    return {"success": True, "stats": _dump(log.get_stats())}


@app.post("/audit/{entry_id}/rollback")
async def rollback_entry(entry_id: str, request: RollbackRequest):
    pipeline = _require(call_pipeline, "Call pipeline")
    if not request.confirmed_by:
        raise HTTPException(status_code=400, detail="confirmed_by is required")

    result = await run_in_threadpool(pipeline.rollback, entry_id, request.confirmed_by)
    return _tagged(result)


# =============================================================================
# Stall analysis
# =============================================================================

@app.post("/stalls/detect")
async def detect_phrases(request: DetectRequest):
    pipeline = _require(stall_pipeline, "Stall pipeline")
    matches = pipeline.detect(request.text)
    return {"success": True, "count": len(matches), "matches": [_dump(m) for m in matches]}


@app.post("/stalls/analyze/transcript")
async def analyze_transcript(body: Dict[str, Any] = Body(...)):
    """Body: {"transcript": {...}, "deal": {...}?, "last_positive_engagement": {...}?}"""
    pipeline = _require(stall_pipeline, "Stall pipeline")
    if "transcript" not in body:
        raise HTTPException(status_code=400, detail="transcript is required")

    result = await run_in_threadpool(
        pipeline.analyze_transcript,
        body["transcript"], body.get("deal"), body.get("last_positive_engagement"),
    )
    return _tagged(result)


@app.post("/stalls/analyze/email")
async def analyze_email(body: Dict[str, Any] = Body(...)):
    """Body: {"email": {...}, "deal": {...}?, "last_positive_engagement": {...}?}"""
    pipeline = _require(stall_pipeline, "Stall pipeline")
    if "email" not in body:
        raise HTTPException(status_code=400, detail="email is required")

    result = await run_in_threadpool(
        pipeline.analyze_email,
        body["email"], body.get("deal"), body.get("last_positive_engagement"),
    )
    return _tagged(result)


@app.get("/stalls/deals")
async def stalled_deals(
    rep_id: Optional[str] = None,
    manager_id: Optional[str] = None,
    stage: Optional[str] = None,
    min_severity: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
):
    tracker = _require(stall_tracker, "Stall tracker")
    try:
        filters = parse_document(StalledDealFilters, {
            "rep_id": rep_id,
            "manager_id": manager_id,
            "stage": stage,
            "min_severity": min_severity,
        })
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    deals, total = tracker.get_stalled_deals(filters, limit=limit, offset=offset)
    return {
        "success": True,
        "total": total,
        "limit": limit,
        "offset": offset,
        "deals": [_dump(d) for d in deals],
    }


@app.get("/stalls/deals/{deal_id}")
async def deal_status(deal_id: str):
    tracker = _require(stall_tracker, "Stall tracker")
    status = tracker.get_deal_status(deal_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Deal not tracked: {deal_id}")
    return {"success": True, "status": _dump(status)}


@app.post("/stalls/deals/{deal_id}/calculate")
async def calculate_deal(deal_id: str, body: Optional[Dict[str, Any]] = Body(None)):
    """Recompute a deal; the body may carry a fresh deal context"""
    pipeline = _require(stall_pipeline, "Stall pipeline")
    body = body or {}

    if body.get("deal") is not None:
        deal = dict(body["deal"], deal_id=deal_id)
        result = await run_in_threadpool(
            pipeline.recalculate, deal, body.get("last_positive_engagement"),
        )
    else:
        result = await run_in_threadpool(pipeline.recalculate_existing, deal_id)
    return _tagged(result)


@app.get("/stalls/dashboard/manager/{manager_id}")
async def manager_dashboard(manager_id: str, rep_ids: str = "", manager_name: str = ""):
    """``rep_ids`` is a comma-separated list of the manager's reps"""
    tracker = _require(stall_tracker, "Stall tracker")
    reps = [r.strip() for r in rep_ids.split(",") if r.strip()]
    if not reps:
        raise HTTPException(status_code=400, detail="rep_ids is required")

    dashboard = tracker.get_manager_dashboard(manager_id, manager_name, reps)
    return {"success": True, "dashboard": _dump(dashboard)}


# =============================================================================
# Alerts
# =============================================================================

@app.get("/alerts")
async def pending_alerts(
    deal_id: Optional[str] = None,
    rep_id: Optional[str] = None,
    priority: Optional[str] = None,
):
    generator = _require(alert_generator, "Alert generator")
    try:
        level = AlertPriority(priority.upper()) if priority else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown priority: {priority}")

    alerts = generator.get_pending_alerts(deal_id=deal_id, rep_id=rep_id, priority=level)
    return {"success": True, "count": len(alerts), "alerts": [_dump(a) for a in alerts]}


@app.get("/alerts/deal/{deal_id}")
async def alerts_for_deal(deal_id: str):
    generator = _require(alert_generator, "Alert generator")
    alerts = generator.get_alerts_for_deal(deal_id)
    return {"success": True, "deal_id": deal_id, "alerts": [_dump(a) for a in alerts]}


@app.get("/alerts/{alert_id}")
async def get_alert(alert_id: str):
    generator = _require(alert_generator, "Alert generator")
    alert = generator.get_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail=f"Alert not found: {alert_id}")
    return {"success": True, "alert": _dump(alert)}


@app.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(alert_id: str, request: AcknowledgeRequest):
    generator = _require(alert_generator, "Alert generator")
    if not request.acknowledged_by:
        raise HTTPException(status_code=400, detail="acknowledged_by is required")

    try:
        alert = generator.acknowledge_alert(alert_id, request.acknowledged_by, request.notes)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "alert": _dump(alert)}


# =============================================================================
# Maintenance
# =============================================================================

@app.post("/maintenance/cleanup")
async def cleanup():
    """Prune audit entries past retention, expired alerts and resolved confirmations"""
    log = _require(audit_log, "Audit log")
    generator = _require(alert_generator, "Alert generator")
    queue = _require(confirmation_queue, "Confirmation queue")

    return {
        "success": True,
        "audit_entries_removed": log.cleanup(),
        "alerts_removed": generator.cleanup_expired_alerts(),
        "confirmations_removed": queue.clear_resolved(),
    }


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the DealPulse server"""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    port = config.server.port

    logger.info("Starting server on port %d", port)
    uvicorn.run(
        "dealpulse.pipeline.server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
