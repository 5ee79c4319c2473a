"""
Detectors: one class per alert type. Each knows how to fetch its current
signal for a customer; the engine does everything else (suppression,
reconciliation, storage).
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from statistics import median
from typing import Optional

from sqlalchemy.orm import Session

from opswatch.config import Settings
from opswatch.connectors.jira import JiraClient
from opswatch.connectors.notion import NotionClient
from opswatch.connectors.quickbooks import QuickBooksClient, parse_qbo_date
from opswatch.detection.signals import ABSENT, CLEAR, NO_HISTORY, AlertPayload, Finding, Signal
from opswatch.models import Customer, CustomerSettings, ExpectedRevenue, Invoice, Payment

logger = logging.getLogger(__name__)

MISSED_EXPECTED_PAYMENT = "missed_expected_payment"
QBO_OVERDUE_INVOICE = "qbo_overdue_invoice"
PAYMENT_AMOUNT_DRIFT = "payment_amount_drift"
NO_RECENT_CLIENT_ACTIVITY = "no_recent_client_activity"
NOTION_STALE_ACTIVITY = "notion_stale_activity"

# Drift needs this many paid payments (latest + baseline pool)
DRIFT_MIN_HISTORY = 4
DRIFT_BASELINE_SAMPLE_SIZE = 6
DRIFT_THRESHOLD_MIN = 0.05
DRIFT_THRESHOLD_MAX = 1.0


@dataclass
class DetectionContext:
    """Explicit per-pass inputs: who, with which tunables, as of when."""

    customer: Customer
    settings: CustomerSettings
    db: Session
    now: datetime
    ignored: frozenset = frozenset()  # entity ids the customer chose to ignore


def confidence_label(value: Optional[float]) -> str:
    if value is None:
        return "low"
    if value >= 0.8:
        return "high"
    if value >= 0.5:
        return "medium"
    return "low"


def fmt_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"


class Detector:
    """Base detector. Subclasses set the class attributes and implement fetch_signal."""

    type: str = ""
    category: str = "medium"  # critical | high | medium, feeds the urgency score
    source_system: str = ""
    provider: str = ""  # name used for integration_error alerts
    remote: bool = False  # calls the provider, so its health drives integration_error alerts
    per_entity: bool = False
    primary_entity_type: Optional[str] = None

    def fetch_signal(self, ctx: DetectionContext) -> Signal:
        """Current view of reality. Raises ProviderError when the provider fails."""
        raise NotImplementedError

    def entity_key(self, item) -> Optional[str]:
        """Dedup entity id for one upstream item; None for aggregate detectors."""
        return None

    def payload(self, message: str, **fields) -> AlertPayload:
        return AlertPayload(
            message=message,
            source_system=self.source_system,
            primary_entity_type=self.primary_entity_type,
            **fields,
        )


class MissedPaymentDetector(Detector):
    """Expected recurring payment is past due beyond the grace period."""

    type = MISSED_EXPECTED_PAYMENT
    category = "critical"
    source_system = "stripe"
    provider = "stripe"
    primary_entity_type = "customer"

    def fetch_signal(self, ctx: DetectionContext) -> Signal:
        expectation = ctx.db.get(ExpectedRevenue, ctx.customer.id)
        if expectation is None or not expectation.cadence_days:
            return ABSENT
        last_paid_at = expectation.last_paid_at or self._latest_payment_at(ctx)
        if last_paid_at is None:
            return ABSENT

        expected_at = last_paid_at + timedelta(days=expectation.cadence_days)
        overdue_days = math.floor((ctx.now - expected_at).total_seconds() / 86400)
        if overdue_days <= 0 or overdue_days < ctx.settings.missed_payment_grace_days:
            return CLEAR

        latest_invoice = (
            ctx.db.query(Invoice)
            .filter(Invoice.customer_id == ctx.customer.id)
            .order_by(Invoice.invoice_date.desc())
            .first()
        )
        amount = expectation.expected_amount_cents
        if amount is None and latest_invoice is not None:
            amount = latest_invoice.amount_due_cents
        amount = amount or 0

        conf = expectation.confidence
        if (
            conf is not None
            and conf < ctx.settings.missed_payment_low_conf_cutoff
            and amount < ctx.settings.missed_payment_low_conf_min_risk_cents
        ):
            logger.info(
                "Customer %s: missed payment below confidence cutoff (%.2f, %s at risk), skipping",
                ctx.customer.id, conf, fmt_cents(amount),
            )
            return CLEAR

        label = confidence_label(conf)
        parts = [f"Expected payment missed ({overdue_days}d overdue)"]
        if amount:
            parts.append(f"{fmt_cents(amount)} at risk")
        if latest_invoice is not None and latest_invoice.status:
            paid = "paid" if latest_invoice.paid_at else "unpaid"
            parts.append(f"Invoice {latest_invoice.status} ({paid})")
        parts.append(f"({label} confidence)")

        return Signal.of(Finding(self.payload(
            " · ".join(parts),
            amount_at_risk_cents=amount or None,
            expected_amount_cents=expectation.expected_amount_cents,
            expected_at=expected_at,
            observed_at=last_paid_at,
            confidence=label,
            confidence_reason=f"Expectation confidence {conf:.2f}" if conf is not None else "Expectation confidence unknown",
            context={
                "cadence_days": expectation.cadence_days,
                "grace_days": ctx.settings.missed_payment_grace_days,
                "overdue_days": overdue_days,
                "expectation_confidence": conf,
                "last_paid_at": last_paid_at.isoformat(),
                "last_paid_source": "expectation" if expectation.last_paid_at else "payment",
            },
        )))

    def _latest_payment_at(self, ctx: DetectionContext) -> Optional[datetime]:
        latest = (
            ctx.db.query(Payment)
            .filter(Payment.customer_id == ctx.customer.id, Payment.paid_at.isnot(None))
            .order_by(Payment.paid_at.desc())
            .first()
        )
        return latest.paid_at if latest is not None else None


class QuickBooksOverdueInvoiceDetector(Detector):
    """One alert per QuickBooks invoice overdue past the configured days."""

    type = QBO_OVERDUE_INVOICE
    category = "high"
    source_system = "quickbooks"
    provider = "quickbooks"
    remote = True
    per_entity = True
    primary_entity_type = "invoice"

    def __init__(self, client: QuickBooksClient):
        self.client = client

    def entity_key(self, item) -> Optional[str]:
        return str(item["Id"]) if item.get("Id") is not None else None

    def _refresh_if_expired(self, ctx: DetectionContext) -> None:
        customer = ctx.customer
        if customer.token_expires_at is None or customer.token_expires_at > ctx.now:
            return
        logger.info("Refreshing expired QuickBooks token for customer %s", customer.id)
        token = self.client.refresh_tokens(customer.refresh_token)
        customer.access_token = token["access_token"]
        customer.refresh_token = token.get("refresh_token", customer.refresh_token)
        if token.get("expires_at"):
            customer.token_expires_at = datetime.fromtimestamp(token["expires_at"], timezone.utc).replace(tzinfo=None)
        # Rotated refresh tokens must survive a failed pass
        ctx.db.commit()

    def fetch_signal(self, ctx: DetectionContext) -> Signal:
        customer = ctx.customer
        if not customer.qbo_realm_id or not customer.access_token:
            return ABSENT
        self._refresh_if_expired(ctx)

        rows = self.client.fetch_overdue_invoices(
            customer.access_token, customer.qbo_realm_id, customer.qbo_environment
        )
        min_days = ctx.settings.invoice_overdue_days
        findings = []
        for row in rows:
            invoice_id = self.entity_key(row)
            balance_cents = round(float(row.get("Balance") or 0) * 100)
            due = parse_qbo_date(row.get("DueDate"))
            if invoice_id is None or balance_cents <= 0 or due is None:
                continue
            if invoice_id in ctx.ignored:
                continue
            days_overdue = (ctx.now - due).days
            if days_overdue < min_days:
                continue
            doc = row.get("DocNumber")
            customer_ref = row.get("CustomerRef") or {}
            label = f"Invoice {doc}" if doc else f"Invoice {invoice_id}"
            findings.append(Finding(
                self.payload(
                    f"{label} is {days_overdue}d overdue in QuickBooks ({fmt_cents(balance_cents)} open).",
                    amount_at_risk_cents=balance_cents,
                    expected_amount_cents=round(float(row.get("TotalAmt") or 0) * 100),
                    expected_at=due,
                    confidence="high",
                    confidence_reason="Open balance reported by QuickBooks",
                    context={
                        "doc_number": doc,
                        "customer_ref": customer_ref.get("name") or customer_ref.get("value"),
                        "due_date": row.get("DueDate"),
                        "txn_date": row.get("TxnDate"),
                        "days_overdue": days_overdue,
                        "balance_cents": balance_cents,
                        "url": self.client.invoice_url(invoice_id, customer.qbo_realm_id, customer.qbo_environment),
                    },
                ),
                entity_id=invoice_id,
            ))
        return Signal.of(*findings)


class PaymentAmountDriftDetector(Detector):
    """Latest payment differs from the median of recent payments."""

    type = PAYMENT_AMOUNT_DRIFT
    category = "high"
    source_system = "stripe"
    provider = "stripe"
    primary_entity_type = "payment"

    def fetch_signal(self, ctx: DetectionContext) -> Signal:
        paid = (
            ctx.db.query(Payment)
            .filter(Payment.customer_id == ctx.customer.id, Payment.paid_at.isnot(None))
            .order_by(Payment.paid_at.desc())
            .limit(1 + DRIFT_BASELINE_SAMPLE_SIZE)
            .all()
        )
        if not paid:
            return NO_HISTORY
        if len(paid) < DRIFT_MIN_HISTORY:
            return ABSENT

        observed = paid[0]
        pool = [p.amount_cents for p in paid[1:] if p.amount_cents is not None and p.amount_cents > 0]
        if not pool or observed.amount_cents is None:
            return ABSENT
        baseline = round(median(pool))

        threshold = min(DRIFT_THRESHOLD_MAX, max(DRIFT_THRESHOLD_MIN, ctx.settings.amount_drift_threshold_pct))
        diff = observed.amount_cents - baseline
        pct = abs(diff) / baseline
        if pct < threshold:
            return CLEAR

        return Signal.of(Finding(self.payload(
            "Payment amount deviates from historical norm.",
            amount_at_risk_cents=abs(diff),
            expected_amount_cents=baseline,
            observed_amount_cents=observed.amount_cents,
            observed_at=observed.paid_at,
            confidence="medium",
            confidence_reason=(
                f"Observed differs from baseline by {round(pct * 100)}% "
                f"(threshold {round(threshold * 100)}%)."
            ),
            context={
                "payment_id": observed.external_id,
                "baseline_cents": baseline,
                "baseline_sample_size": len(pool),
                "drift_pct": round(pct, 4),
                "threshold_pct": threshold,
            },
        )))


class JiraActivityDetector(Detector):
    """No Jira issue in the customer's project was updated within the lookback."""

    type = NO_RECENT_CLIENT_ACTIVITY
    category = "medium"
    source_system = "jira"
    provider = "jira"
    remote = True
    primary_entity_type = "project"

    def __init__(self, client: JiraClient):
        self.client = client

    def fetch_signal(self, ctx: DetectionContext) -> Signal:
        project = ctx.customer.jira_project_key
        if not project:
            return ABSENT
        lookback = ctx.settings.jira_activity_lookback
        if self.client.recent_issues(project, lookback):
            return CLEAR
        if not self.client.recent_issues(project, None):
            return NO_HISTORY
        return Signal.of(Finding(self.payload(
            f"No visible client activity in the last {lookback}.",
            confidence="medium",
            confidence_reason=f"No issue in {project} updated within {lookback}",
            context={"project_key": project, "lookback": lookback},
        )))


class NotionStaleDetector(Detector):
    """Customer's Notion database has not been edited for too long."""

    type = NOTION_STALE_ACTIVITY
    category = "medium"
    source_system = "notion"
    provider = "notion"
    remote = True
    primary_entity_type = "database"

    def __init__(self, client: NotionClient):
        self.client = client

    def fetch_signal(self, ctx: DetectionContext) -> Signal:
        database_id = ctx.customer.notion_database_id
        if not database_id:
            return ABSENT
        last_edit = self.client.last_edited_at(database_id)
        if last_edit is None:
            return NO_HISTORY
        stale_days = ctx.settings.notion_stale_days
        idle_days = (ctx.now - last_edit).days
        if idle_days < stale_days:
            return CLEAR
        return Signal.of(Finding(self.payload(
            f"Notion workspace has not been edited in {idle_days} days.",
            observed_at=last_edit,
            expected_at=last_edit + timedelta(days=stale_days),
            confidence="high",
            confidence_reason=f"Last edit {last_edit:%Y-%m-%d}, threshold {stale_days} days",
            context={"database_id": database_id, "stale_days": stale_days, "last_edited_at": last_edit.isoformat()},
        )))


def default_detectors(config: Settings) -> dict[str, Detector]:
    """Registry of every detector, with provider clients built from config."""
    detectors = [
        MissedPaymentDetector(),
        QuickBooksOverdueInvoiceDetector(QuickBooksClient(config)),
        PaymentAmountDriftDetector(),
        JiraActivityDetector(JiraClient(config)),
        NotionStaleDetector(NotionClient(config)),
    ]
    return {d.type: d for d in detectors}
