"""Proptor Risk Detection — REST API for contact risk scoring, alerts and recovery actions."""
from __future__ import annotations

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from engagement import engagement_frame, engagement_records, summarize_engagement
from models import (
    ActionResponse,
    BulkRunRequest,
    BulkRunResponse,
    ContactSummary,
    EngagementResponse,
    EngagementRow,
    FunnelResponse,
    FunnelStage,
    RecoveryActionRequest,
    RiskAlertView,
    RiskMetricView,
    RiskResult,
    UserSession,
)
from notifications import NotificationChannel
from pacing import RequestPacer
from platform_client import PlatformClient, PlatformError
from risk_policy import QUICK_ACTIONS, RiskThresholds, load_thresholds
from risk_service import RiskDetectionService
from sales_stages import funnel_breakdown

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("proptor-risk-api")

PLATFORM_URL = os.getenv("PLATFORM_URL", "")
PLATFORM_ANON_KEY = os.getenv("PLATFORM_ANON_KEY", "")
PLATFORM_TIMEOUT_SECONDS = float(os.getenv("PLATFORM_TIMEOUT_SECONDS", "10"))
RISK_PACING_SECONDS = float(os.getenv("RISK_PACING_SECONDS", "0.1"))
MAX_BATCH_SIZE = int(os.getenv("MAX_BATCH_SIZE", "1000"))
RISK_CONFIG_PATH = os.getenv(
    "RISK_CONFIG_PATH",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "risk_config.yaml"),
)

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS",
        "http://risk-dashboard-service:8501,http://localhost:8501",
    ).split(",")
]

REQUEST_COUNT = Counter(
    "proptor_risk_api_requests_total", "Total API requests", ["endpoint", "status"]
)
REQUEST_LATENCY = Histogram(
    "proptor_risk_api_request_duration_seconds",
    "Request latency",
    ["endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 30.0, 120.0),
)
BULK_RUNS = Counter(
    "proptor_risk_bulk_runs_total", "Bulk risk passes", ["status"]
)
CONTACTS_ANALYZED = Counter(
    "proptor_risk_contacts_analyzed_total", "Contacts whose risk metrics were stored"
)
ALERTS_CREATED = Counter(
    "proptor_risk_alerts_created_total", "Risk alerts inserted by bulk passes"
)
RECOVERY_ACTIONS = Counter(
    "proptor_risk_recovery_actions_total", "Recovery actions logged", ["action_type", "status"]
)
ACTIVE_RUNS = Gauge(
    "proptor_risk_active_bulk_runs", "Bulk risk passes currently running"
)


platform_state: Dict[str, Optional[PlatformClient]] = {"client": None}
active_runs: Dict[str, int] = {}
thresholds_state: Dict[str, RiskThresholds] = {"thresholds": RiskThresholds()}


def load_risk_config():
    """Load alert thresholds from YAML, keeping defaults when the file is missing."""
    path = os.path.abspath(RISK_CONFIG_PATH)
    if not os.path.exists(path):
        logger.warning(f"Risk config not found: {path}, using default thresholds")
        return
    try:
        thresholds_state["thresholds"] = load_thresholds(path)
        logger.info(f"Loaded risk thresholds from {path}: {thresholds_state['thresholds']}")
    except Exception as e:
        logger.error(f"Failed to load risk config {path}: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_risk_config()
    if PLATFORM_URL and PLATFORM_ANON_KEY:
        platform_state["client"] = PlatformClient.create(
            PLATFORM_URL, PLATFORM_ANON_KEY, timeout=PLATFORM_TIMEOUT_SECONDS
        )
        logger.info(f"Platform client ready: {PLATFORM_URL}")
    else:
        logger.warning("PLATFORM_URL / PLATFORM_ANON_KEY not set, data endpoints disabled")
    yield
    client = platform_state["client"]
    if client is not None:
        await client.aclose()
        platform_state["client"] = None
        logger.info("Platform client closed")


app = FastAPI(
    title="Proptor Risk Detection API",
    description="Contact risk scoring, risk alerts and recovery actions for real-estate agents",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "GET"],
    allow_headers=["Content-Type", "Accept", "Authorization"],
)


def get_platform():
    client = platform_state["client"]
    if client is None:
        raise HTTPException(status_code=503, detail="Data platform not configured")
    return client


async def get_session(
    authorization: Optional[str] = Header(None),
    platform=Depends(get_platform),
) -> UserSession:
    """Resolve the caller from the bearer token via the platform's auth service."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization[7:].strip()
    try:
        user = await platform.with_token(token).get_user()
    except PlatformError as e:
        if e.status_code in (401, 403):
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        logger.error(f"auth_lookup_failed error={e}")
        raise HTTPException(status_code=502, detail="Auth service unavailable")
    return UserSession(user_id=user["id"], access_token=token)


def get_service(
    session: UserSession = Depends(get_session),
    platform=Depends(get_platform),
) -> RiskDetectionService:
    return RiskDetectionService(
        platform.with_token(session.access_token),
        session,
        notifier=NotificationChannel(),
        pacer=RequestPacer(RISK_PACING_SECONDS),
        thresholds=thresholds_state["thresholds"],
    )


@app.post("/risk/contacts/{contact_id}/score", response_model=RiskResult)
async def score_contact(contact_id: str, service: RiskDetectionService = Depends(get_service)):
    """Run the scoring procedure for one contact without storing anything."""
    result = await service.calculate_risk_score(contact_id)
    if result is None:
        REQUEST_COUNT.labels(endpoint="/risk/contacts/score", status="not_found").inc()
        raise HTTPException(status_code=404, detail="No risk result for contact")
    REQUEST_COUNT.labels(endpoint="/risk/contacts/score", status="success").inc()
    return result


@app.post("/risk/calculate", response_model=BulkRunResponse)
async def calculate_all(batch: BulkRunRequest, service: RiskDetectionService = Depends(get_service)):
    """Score, store and alert on every listed contact, one at a time."""
    if len(batch.contact_ids) > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400, detail=f"At most {MAX_BATCH_SIZE} contacts per pass"
        )

    request_id = str(uuid.uuid4())
    start = time.time()
    user_id = service.user_id
    active_runs[user_id] = active_runs.get(user_id, 0) + 1
    ACTIVE_RUNS.inc()
    try:
        summary = await service.calculate_risk_for_all_contacts(
            batch.contact_ids, batch.contact_names
        )
    finally:
        active_runs[user_id] -= 1
        if active_runs[user_id] <= 0:
            del active_runs[user_id]
        ACTIVE_RUNS.dec()
        REQUEST_LATENCY.labels(endpoint="/risk/calculate").observe(time.time() - start)

    status = "success" if summary.completed else "error"
    BULK_RUNS.labels(status=status).inc()
    CONTACTS_ANALYZED.inc(summary.analyzed)
    ALERTS_CREATED.inc(summary.alerts_created)
    REQUEST_COUNT.labels(endpoint="/risk/calculate", status=status).inc()
    logger.info(
        f"bulk_run request_id={request_id} user_id={user_id} "
        f"contacts={len(batch.contact_ids)} analyzed={summary.analyzed} "
        f"alerts={summary.alerts_created} completed={summary.completed} "
        f"duration_ms={int((time.time() - start) * 1000)}"
    )
    return BulkRunResponse(summary=summary, notifications=service.notifier.messages)


@app.get("/risk/status")
async def risk_status(session: UserSession = Depends(get_session)):
    """Whether a bulk pass is currently running for the caller."""
    return {"calculating": active_runs.get(session.user_id, 0) > 0}


@app.get("/contacts", response_model=List[ContactSummary])
async def contacts(service: RiskDetectionService = Depends(get_service)):
    """The caller's contacts, as input for a bulk risk pass."""
    return await service.get_contacts()


@app.get("/risk/metrics", response_model=List[RiskMetricView])
async def risk_metrics(service: RiskDetectionService = Depends(get_service)):
    return await service.get_risk_metrics()


@app.get("/risk/alerts", response_model=List[RiskAlertView])
async def risk_alerts(
    include_resolved: bool = False,
    service: RiskDetectionService = Depends(get_service),
):
    return await service.get_risk_alerts(include_resolved=include_resolved)


@app.post("/risk/alerts/{alert_id}/read", response_model=ActionResponse)
async def mark_alert_read(alert_id: str, service: RiskDetectionService = Depends(get_service)):
    ok = await service.mark_alert_read(alert_id)
    return ActionResponse(ok=ok, notifications=service.notifier.messages)


@app.post("/risk/alerts/{alert_id}/resolve", response_model=ActionResponse)
async def resolve_alert(alert_id: str, service: RiskDetectionService = Depends(get_service)):
    ok = await service.resolve_alert(alert_id)
    return ActionResponse(ok=ok, notifications=service.notifier.messages)


@app.post("/recovery-actions", response_model=ActionResponse)
async def apply_recovery_action(
    action: RecoveryActionRequest,
    service: RiskDetectionService = Depends(get_service),
):
    ok = await service.apply_recovery_action(action)
    RECOVERY_ACTIONS.labels(
        action_type=action.action_type, status="success" if ok else "error"
    ).inc()
    return ActionResponse(ok=ok, notifications=service.notifier.messages)


@app.get("/recovery-actions/catalogue")
async def recovery_action_catalogue():
    """Quick actions the alert panel offers next to a risky contact."""
    return {"actions": QUICK_ACTIONS}


@app.get("/engagement", response_model=EngagementResponse)
async def engagement(service: RiskDetectionService = Depends(get_service)):
    """Engagement summary and per-contact rows derived from stored risk metrics."""
    metrics = await service.get_risk_metrics()
    try:
        df = engagement_frame(m.model_dump() for m in metrics)
        summary = summarize_engagement(df)
        rows = [EngagementRow(**record) for record in engagement_records(df)]
    except Exception as e:
        logger.error(f"engagement_failed user_id={service.user_id} error={e}")
        REQUEST_COUNT.labels(endpoint="/engagement", status="error").inc()
        raise HTTPException(status_code=500, detail="Engagement summary failed")
    REQUEST_COUNT.labels(endpoint="/engagement", status="success").inc()
    return EngagementResponse(**summary, contacts=rows)


@app.get("/funnel", response_model=FunnelResponse)
async def funnel(service: RiskDetectionService = Depends(get_service)):
    stages = funnel_breakdown(await service.get_stage_counts())
    return FunnelResponse(
        total=sum(s["count"] for s in stages),
        stages=[FunnelStage(**s) for s in stages],
    )


@app.get("/health")
async def health():
    """Liveness probe — always returns OK if the process is running."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe — returns OK only once the platform client exists."""
    if platform_state["client"] is None:
        raise HTTPException(status_code=503, detail="Data platform not configured")
    return {
        "status": "ready",
        "thresholds": vars(thresholds_state["thresholds"]),
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
