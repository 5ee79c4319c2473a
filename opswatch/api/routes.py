"""API routes for customers, detector passes, alerts, cron and debug toggles."""
import logging
import secrets
from datetime import timezone

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from opswatch.api.auth import get_customer_by_key, require_cron
from opswatch.config import Settings, settings
from opswatch.database import get_db, utcnow
from opswatch.debug.toggles import ToggleService
from opswatch.detection.engine import DetectionEngine
from opswatch.detection.scoring import overdue_days_for, score, to_severity
from opswatch.detection.store import AlertStore
from opswatch.detection.suppression import INTEGRATION_ERROR
from opswatch.models import Alert, Customer
from opswatch.models.alert import STATUS_CLOSED, STATUS_OPEN, TERMINAL_STATUSES
from opswatch.pipeline.daily import run_daily
from opswatch.pipeline.expectations import ensure_customer_defaults
from opswatch.schemas import (
    AlertOut,
    ConnectQBOBody,
    CustomerCreate,
    CustomerCreateResponse,
    CustomerOut,
    CustomerSettingsOut,
    CustomerSettingsUpdate,
    CustomerStateOut,
    CustomerStateUpdate,
    DebugToggleBody,
    IgnoreBody,
    IgnoreResult,
    PassResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)

CustomerIdPath = Path(..., gt=0, description="Customer ID (positive integer)")
AlertIdPath = Path(..., gt=0, description="Alert ID (positive integer)")


def get_settings() -> Settings:
    return settings


def get_engine(db: Session = Depends(get_db), config: Settings = Depends(get_settings)) -> DetectionEngine:
    return DetectionEngine(db, config)


def _check_owner(customer: Customer, customer_id: int) -> None:
    if customer.id != customer_id:
        raise HTTPException(403, "Forbidden")


def _scored(alerts: list[Alert], engine: DetectionEngine) -> list[AlertOut]:
    """Attach score/severity, highest score first (newest first on ties)."""
    now = utcnow()
    out = []
    for alert in alerts:
        item = AlertOut.model_validate(alert)
        item.score = score(alert, overdue_days_for(alert, now), None, engine.category_for(alert.type), now)
        item.severity = to_severity(item.score)
        out.append(item)
    out.sort(key=lambda a: (a.score, a.created_at), reverse=True)
    return out


@router.post("/customers", response_model=CustomerCreateResponse)
def create_customer(data: CustomerCreate, db: Session = Depends(get_db)):
    """Create a customer and generate an API key. The key is returned only in this response."""
    api_key = secrets.token_hex(32)
    c = Customer(
        name=data.name,
        api_key=api_key,
        stripe_customer_id=data.stripe_customer_id,
        jira_project_key=data.jira_project_key,
        notion_database_id=data.notion_database_id,
    )
    db.add(c)
    db.flush()
    ensure_customer_defaults(c, db)
    db.commit()
    db.refresh(c)
    logger.info("Customer created: id=%s name=%s", c.id, c.name)
    out = CustomerOut.model_validate(c)
    return CustomerCreateResponse(**out.model_dump(), api_key=api_key)


@router.get("/customers/{customer_id}", response_model=CustomerOut)
def get_customer(
    customer_id: int = CustomerIdPath,
    customer: Customer = Depends(get_customer_by_key),
):
    """Return customer without api_key."""
    _check_owner(customer, customer_id)
    return customer


@router.patch("/customers/{customer_id}/state", response_model=CustomerStateOut)
def update_state(
    body: CustomerStateUpdate,
    customer_id: int = CustomerIdPath,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
):
    _check_owner(customer, customer_id)
    _, state = ensure_customer_defaults(customer, db)
    state.status = body.status
    state.reason = body.reason
    db.commit()
    logger.info("Customer %s status set to %s", customer_id, body.status)
    return state


@router.get("/customers/{customer_id}/settings", response_model=CustomerSettingsOut)
def get_settings_for_customer(
    customer_id: int = CustomerIdPath,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
):
    _check_owner(customer, customer_id)
    cust_settings, _ = ensure_customer_defaults(customer, db)
    db.commit()
    return cust_settings


@router.patch("/customers/{customer_id}/settings", response_model=CustomerSettingsOut)
def update_settings(
    body: CustomerSettingsUpdate,
    customer_id: int = CustomerIdPath,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
):
    """Update only the tunables present in the body."""
    _check_owner(customer, customer_id)
    cust_settings, _ = ensure_customer_defaults(customer, db)
    for field, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(cust_settings, field, value)
    db.commit()
    db.refresh(cust_settings)
    return cust_settings


@router.post("/customers/{customer_id}/connect-qbo")
def connect_qbo(
    body: ConnectQBOBody,
    customer_id: int = CustomerIdPath,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
):
    """Store QBO OAuth tokens in the request body (not query params)."""
    _check_owner(customer, customer_id)
    customer.qbo_realm_id = body.realm_id
    customer.access_token = body.access_token
    customer.refresh_token = body.refresh_token
    customer.qbo_environment = body.environment
    if body.expires_at is not None:
        expires = body.expires_at
        if expires.tzinfo is not None:
            expires = expires.astimezone(timezone.utc).replace(tzinfo=None)
        customer.token_expires_at = expires
    db.commit()
    return {"status": "connected"}


@router.post("/customers/{customer_id}/detect/{alert_type}", response_model=PassResult)
def detect(
    alert_type: str = Path(..., min_length=1, max_length=50),
    customer_id: int = CustomerIdPath,
    customer: Customer = Depends(get_customer_by_key),
    engine: DetectionEngine = Depends(get_engine),
):
    """Run one detector pass for this customer."""
    _check_owner(customer, customer_id)
    if alert_type not in engine.detectors:
        raise HTTPException(404, f"Unknown detector type: {alert_type}")
    report = engine.run_detector_pass(customer_id, alert_type)
    return PassResult(**report.as_dict())


@router.get("/customers/{customer_id}/alerts", response_model=list[AlertOut])
def list_alerts(
    customer_id: int = CustomerIdPath,
    status: str = Query(
        default="open",
        min_length=1,
        max_length=32,
        description="Filter: open, closed, resolved, all",
    ),
    limit: int = Query(default=100, ge=1, le=500),
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
    engine: DetectionEngine = Depends(get_engine),
):
    """Alerts with urgency score and severity, most urgent first."""
    _check_owner(customer, customer_id)
    if status not in (STATUS_OPEN, *TERMINAL_STATUSES, "all"):
        raise HTTPException(400, "status must be one of: open, closed, resolved, all")
    q = db.query(Alert).filter(Alert.customer_id == customer_id)
    if status != "all":
        q = q.filter(Alert.status == status)
    # Rank every match before truncating so an older, more urgent alert is kept
    return _scored(q.all(), engine)[:limit]


@router.post("/customers/{customer_id}/alerts/{alert_id}/close", response_model=AlertOut)
def close_alert(
    customer_id: int = CustomerIdPath,
    alert_id: int = AlertIdPath,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
):
    """Manually dismiss an open alert."""
    _check_owner(customer, customer_id)
    alert = db.query(Alert).filter(Alert.id == alert_id, Alert.customer_id == customer_id).first()
    if not alert:
        raise HTTPException(404, "Alert not found")
    if alert.is_open:
        alert.status = STATUS_CLOSED
        alert.closed_at = utcnow()
        db.commit()
        db.refresh(alert)
        logger.info("Alert %s closed by customer %s", alert_id, customer_id)
    return AlertOut.model_validate(alert)


@router.post("/customers/{customer_id}/alerts/{alert_id}/ignore", response_model=IgnoreResult)
def ignore_alert(
    body: IgnoreBody,
    customer_id: int = CustomerIdPath,
    alert_id: int = AlertIdPath,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
):
    """
    Stop alerting on this alert's entity (e.g. one QuickBooks invoice), or resume.
    Ignoring also dismisses the alert; after unignore the next pass may reopen it.
    """
    _check_owner(customer, customer_id)
    alert = db.query(Alert).filter(Alert.id == alert_id, Alert.customer_id == customer_id).first()
    if not alert:
        raise HTTPException(404, "Alert not found")
    if alert.primary_entity_id is None:
        raise HTTPException(400, "Only per-entity alerts can be ignored")
    store = AlertStore(db)
    if body.mode == "ignore":
        store.ignore(alert)
    else:
        store.unignore(customer_id, alert.type, alert.primary_entity_id)
    db.commit()
    return IgnoreResult(
        alert_id=alert.id,
        type=alert.type,
        entity_id=alert.primary_entity_id,
        mode=body.mode,
        ignored_entity_ids=sorted(store.ignored_ids(customer_id, alert.type)),
    )


@router.get("/integration-alerts", response_model=list[AlertOut], dependencies=[Depends(require_cron)])
def list_integration_alerts(
    db: Session = Depends(get_db),
    engine: DetectionEngine = Depends(get_engine),
):
    """Open provider-level alerts (not tied to any customer)."""
    rows = (
        db.query(Alert)
        .filter(Alert.customer_id.is_(None), Alert.type == INTEGRATION_ERROR, Alert.status == STATUS_OPEN)
        .order_by(Alert.created_at.desc())
        .all()
    )
    return _scored(rows, engine)


@router.post("/cron/daily", dependencies=[Depends(require_cron)])
def cron_daily(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    engine: DetectionEngine = Depends(get_engine),
):
    """Sync, refresh expectations, run every detector for every customer. 207 on partial failure."""
    summary = run_daily(db, config, engine=engine)
    return JSONResponse(status_code=200 if summary["ok"] else 207, content=summary)


@router.post("/debug/toggles")
def debug_toggle(
    body: DebugToggleBody,
    customer: Customer = Depends(get_customer_by_key),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    engine: DetectionEngine = Depends(get_engine),
):
    """Force (or restore) a detector's upstream state and rerun it."""
    if not config.debug_toggles_enabled:
        raise HTTPException(403, "Debug toggles are disabled")
    if body.customer_id is not None and body.customer_id != customer.id:
        raise HTTPException(403, "Forbidden")
    if body.alert_id is not None:
        alert = db.get(Alert, body.alert_id)
        if alert is None or alert.customer_id != customer.id:
            raise HTTPException(404, "Alert not found")
    service = ToggleService(db, config, engine=engine)
    customer_id = None if body.alert_id is not None else customer.id
    return service.set(body.key, body.enabled, customer_id=customer_id, alert_id=body.alert_id)
