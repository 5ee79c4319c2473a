"""Named debug toggles that force a detector's upstream state, then rerun its pass."""
import logging
from datetime import datetime, timedelta
from statistics import median
from typing import Any, Optional

from sqlalchemy.orm import Session

from opswatch.config import Settings
from opswatch.database import utcnow
from opswatch.debug.overrides import DebugOverrideStore
from opswatch.detection.detectors import (
    DRIFT_BASELINE_SAMPLE_SIZE,
    MISSED_EXPECTED_PAYMENT,
    NO_RECENT_CLIENT_ACTIVITY,
    PAYMENT_AMOUNT_DRIFT,
)
from opswatch.detection.engine import DetectionEngine
from opswatch.errors import ConfigurationError
from opswatch.models import Alert, Customer, CustomerSettings, ExpectedRevenue, Payment
from opswatch.pipeline.expectations import ensure_customer_defaults

logger = logging.getLogger(__name__)


class DebugToggle:
    """
    One toggle: which row it targets, how to read and write the value, the
    forced value and the fallback used when disabling without a snapshot.
    Values are JSON-safe (datetimes as ISO strings).
    """

    key: str = ""
    alert_type: str = ""
    table_name: str = ""
    model = None

    def target(self, db: Session, customer: Customer):
        raise NotImplementedError

    def load(self, db: Session, row_id: str):
        """Row a snapshot was taken from."""
        return db.get(self.model, int(row_id))

    def row_id(self, row) -> str:
        return str(row.customer_id)

    def read(self, row) -> Any:
        raise NotImplementedError

    def write(self, row, value: Any) -> None:
        raise NotImplementedError

    def forced(self, db: Session, row, now: datetime) -> Any:
        raise NotImplementedError

    def fallback(self, db: Session, row, now: datetime) -> Any:
        raise NotImplementedError


class MissedPaymentToggle(DebugToggle):
    key = "stripe.missed_expected_payment"
    alert_type = MISSED_EXPECTED_PAYMENT
    table_name = "expected_revenue"
    model = ExpectedRevenue

    def __init__(self, default_cadence_days: int = 30):
        self.default_cadence_days = default_cadence_days

    def target(self, db: Session, customer: Customer):
        row = db.get(ExpectedRevenue, customer.id)
        if row is None:
            raise ConfigurationError(f"Customer {customer.id} has no expected revenue; run the daily sync first")
        return row

    def _cadence(self, row) -> int:
        return row.cadence_days or self.default_cadence_days

    def read(self, row) -> Optional[str]:
        return row.last_paid_at.isoformat() if row.last_paid_at else None

    def write(self, row, value: Optional[str]) -> None:
        row.last_paid_at = datetime.fromisoformat(value) if value else None

    def forced(self, db: Session, row, now: datetime) -> str:
        return (now - timedelta(days=self._cadence(row) + 15)).isoformat()

    def fallback(self, db: Session, row, now: datetime) -> str:
        return (now - timedelta(days=max(1, self._cadence(row) - 2))).isoformat()


class PaymentDriftToggle(DebugToggle):
    key = "stripe.payment_amount_drift"
    alert_type = PAYMENT_AMOUNT_DRIFT
    table_name = "payments"
    model = Payment

    def target(self, db: Session, customer: Customer):
        row = (
            db.query(Payment)
            .filter(Payment.customer_id == customer.id, Payment.paid_at.isnot(None))
            .order_by(Payment.paid_at.desc())
            .first()
        )
        if row is None:
            raise ConfigurationError(f"Customer {customer.id} has no payments to mutate")
        return row

    def row_id(self, row) -> str:
        return str(row.id)

    def read(self, row) -> Optional[int]:
        return row.amount_cents

    def write(self, row, value: Optional[int]) -> None:
        row.amount_cents = value

    def _baseline(self, db: Session, row) -> int:
        pool = [
            amount for (amount,) in (
                db.query(Payment.amount_cents)
                .filter(
                    Payment.customer_id == row.customer_id,
                    Payment.id != row.id,
                    Payment.paid_at.isnot(None),
                    Payment.paid_at <= row.paid_at,
                )
                .order_by(Payment.paid_at.desc())
                .limit(DRIFT_BASELINE_SAMPLE_SIZE)
                .all()
            )
            if amount
        ]
        if not pool:
            return row.amount_cents or 0
        return round(median(pool))

    def forced(self, db: Session, row, now: datetime) -> int:
        return max(100, round(self._baseline(db, row) * 0.55))

    def fallback(self, db: Session, row, now: datetime) -> int:
        return self._baseline(db, row)


class JiraLookbackToggle(DebugToggle):
    key = "jira.no_recent_client_activity"
    alert_type = NO_RECENT_CLIENT_ACTIVITY
    table_name = "customer_settings"
    model = CustomerSettings

    def target(self, db: Session, customer: Customer):
        return db.get(CustomerSettings, customer.id)

    def read(self, row) -> str:
        return row.jira_activity_lookback

    def write(self, row, value: str) -> None:
        row.jira_activity_lookback = value

    def forced(self, db: Session, row, now: datetime) -> str:
        return "1m"

    def fallback(self, db: Session, row, now: datetime) -> str:
        return "7d"


class ToggleService:
    """Flip a toggle for a customer (or for the customer behind an alert), then rerun that detector."""

    def __init__(self, db: Session, config: Settings, engine: Optional[DetectionEngine] = None):
        self.db = db
        self.config = config
        self.engine = engine or DetectionEngine(db, config)
        self.store = DebugOverrideStore(db)
        toggles = [MissedPaymentToggle(config.default_cadence_days), PaymentDriftToggle(), JiraLookbackToggle()]
        self.toggles = {t.key: t for t in toggles}

    def _resolve_customer(self, toggle: DebugToggle, customer_id: Optional[int], alert_id: Optional[int]) -> Customer:
        if alert_id is not None:
            alert = self.db.get(Alert, alert_id)
            if alert is None:
                raise ConfigurationError(f"Alert {alert_id} not found")
            if alert.type != toggle.alert_type:
                raise ConfigurationError(f"Alert {alert_id} is {alert.type}, toggle {toggle.key} drives {toggle.alert_type}")
            if customer_id is not None and customer_id != alert.customer_id:
                raise ConfigurationError(f"Alert {alert_id} does not belong to customer {customer_id}")
            customer_id = alert.customer_id
        if customer_id is None:
            raise ConfigurationError("customer_id or alert_id is required")
        customer = self.db.get(Customer, customer_id)
        if customer is None:
            raise ConfigurationError(f"Customer {customer_id} not found")
        return customer

    def set(self, key: str, enabled: bool, customer_id: Optional[int] = None, alert_id: Optional[int] = None) -> dict:
        if not self.config.debug_toggles_enabled:
            raise ConfigurationError("Debug toggles are disabled in this environment")
        toggle = self.toggles.get(key)
        if toggle is None:
            raise ConfigurationError(f"Unknown debug toggle: {key}")

        customer = self._resolve_customer(toggle, customer_id, alert_id)
        ensure_customer_defaults(customer, self.db)
        snapshot = self.store.get(toggle.key, customer.id)
        if snapshot is not None:
            # Always the row the snapshot came from
            row = toggle.load(self.db, snapshot.row_id)
        else:
            row = toggle.target(self.db, customer)
        if row is None:
            raise ConfigurationError(f"{toggle.table_name} row for customer {customer.id} not found")
        now = utcnow()

        def apply(value):
            toggle.write(row, value)

        if enabled:
            snapshot = self.store.enable(
                toggle.key,
                customer.id,
                toggle.table_name,
                toggle.row_id(row),
                toggle.read(row),
                lambda: toggle.forced(self.db, row, now),
                apply,
            )
            value = snapshot.mutated["value"]
        else:
            value = self.store.disable(
                toggle.key,
                customer.id,
                lambda: toggle.fallback(self.db, row, now),
                apply,
            )

        report = self.engine.run_detector_pass(customer.id, toggle.alert_type)
        logger.info("Debug toggle %s set to %s for customer %s", key, enabled, customer.id)
        return {
            "key": key,
            "customer_id": customer.id,
            "enabled": enabled,
            "value": value,
            "pass": report.as_dict(),
        }
