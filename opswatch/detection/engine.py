"""
Detector passes: suppression, signal fetch, reconciliation and storage for
one (customer, type), plus the provider-level integration_error alert.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opswatch.config import Settings, settings as default_settings
from opswatch.database import utcnow
from opswatch.detection.detectors import DetectionContext, Detector, default_detectors
from opswatch.detection.reconcile import reconcile
from opswatch.detection.signals import (
    ABSENT,
    CLEAR,
    NOT_SUPPRESSED,
    AlertPayload,
    DetectorHealth,
    Finding,
    Signal,
)
from opswatch.detection.store import AlertStore
from opswatch.detection.suppression import INTEGRATION_ERROR, evaluate
from opswatch.errors import ConfigurationError, PassInProgressError, ProviderError, StorageError
from opswatch.models import Customer
from opswatch.pipeline.expectations import ensure_customer_defaults

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
# Entries drop out once no pass holds a reference to the lock
_pass_locks: "weakref.WeakValueDictionary[tuple[int, str], threading.Lock]" = weakref.WeakValueDictionary()


@contextmanager
def pass_lock(customer_id: int, alert_type: str):
    """Non-blocking per-(customer, type) lock. A second concurrent pass fails fast."""
    with _locks_guard:
        lock = _pass_locks.setdefault((customer_id, alert_type), threading.Lock())
    if not lock.acquire(blocking=False):
        raise PassInProgressError(f"{alert_type} pass already running for customer {customer_id}")
    try:
        yield
    finally:
        lock.release()


@dataclass
class PassReport:
    customer_id: int
    type: str
    created: int = 0
    updated: int = 0
    resolved: int = 0
    suppressed: Optional[str] = None
    ok: bool = True
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


class DetectionEngine:
    """Runs detector passes against one session. Detectors default to the full registry."""

    def __init__(
        self,
        db: Session,
        config: Optional[Settings] = None,
        detectors: Optional[dict[str, Detector]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.config = config or default_settings
        self.detectors = detectors if detectors is not None else default_detectors(self.config)
        self.clock = clock
        self.store = AlertStore(db)

    def detector(self, alert_type: str) -> Detector:
        try:
            return self.detectors[alert_type]
        except KeyError:
            raise ConfigurationError(f"Unknown detector type: {alert_type}") from None

    def category_for(self, alert_type: str) -> str:
        if alert_type == INTEGRATION_ERROR:
            return "high"
        detector = self.detectors.get(alert_type)
        return detector.category if detector is not None else "medium"

    def run_detector_pass(
        self, customer_id: int, alert_type: str, provider_health: Optional[DetectorHealth] = None
    ) -> PassReport:
        """
        One full pass for (customer, type). Returns created/updated/resolved
        counts. Raises ConfigurationError, PassInProgressError or StorageError;
        provider failures are absorbed into suppression.

        provider_health reports a failure seen earlier in the same run (e.g.
        the Stripe sync). When it is for this detector's provider and
        unreachable, the signal is not fetched and the rows are frozen.
        """
        detector = self.detector(alert_type)
        with pass_lock(customer_id, alert_type):
            customer = self.db.get(Customer, customer_id)
            if customer is None:
                raise ConfigurationError(f"Customer {customer_id} not found")
            cust_settings, state = ensure_customer_defaults(customer, self.db)
            now = self.clock()

            health = None
            signal = ABSENT
            verdict = evaluate(state)
            if not verdict.active:
                if (
                    provider_health is not None
                    and not provider_health.reachable
                    and provider_health.provider == detector.provider
                ):
                    logger.warning(
                        "Customer %s %s: %s already failed this run: %s",
                        customer_id, alert_type, provider_health.provider, provider_health.error,
                    )
                    health = provider_health
                else:
                    ctx = DetectionContext(
                        customer=customer,
                        settings=cust_settings,
                        db=self.db,
                        now=now,
                        ignored=self.store.ignored_ids(customer_id, alert_type),
                    )
                    try:
                        signal = detector.fetch_signal(ctx)
                        health = DetectorHealth(detector.provider, has_history=signal.has_history)
                    except ProviderError as exc:
                        logger.warning("Customer %s %s: provider error: %s", customer_id, alert_type, exc)
                        health = DetectorHealth(detector.provider, reachable=False, error=str(exc))
                verdict = evaluate(state, health)

            try:
                open_rows = self.store.open_alerts(customer_id, alert_type)
                plan = reconcile(customer_id, alert_type, signal, open_rows, verdict, detector.per_entity)
                self.store.apply(plan)
                if health is not None and detector.remote:
                    self._reconcile_integration_alert(health, customer_id)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Customer %s %s: storage failure, pass rolled back: %s", customer_id, alert_type, exc)
                raise StorageError(f"{alert_type} pass for customer {customer_id} failed: {exc}") from exc

        counts = plan.counts()
        report = PassReport(customer_id=customer_id, type=alert_type, suppressed=verdict.reason, **counts)
        logger.info(
            "Customer %s %s: %d created, %d updated, %d resolved%s",
            customer_id, alert_type, report.created, report.updated, report.resolved,
            f" (suppressed: {verdict.reason})" if verdict.active else "",
        )
        return report

    def _integration_signal(self, health: DetectorHealth, customer_id: Optional[int]) -> Signal:
        if health.reachable:
            return CLEAR
        payload = AlertPayload(
            message=f"{health.provider} is unreachable; its alerts are frozen until it responds.",
            source_system=health.provider,
            primary_entity_type="provider",
            confidence="high",
            confidence_reason=health.error,
            context={"provider": health.provider, "error": health.error, "last_customer_id": customer_id},
        )
        return Signal.of(Finding(payload, entity_id=health.provider))

    def _reconcile_integration_alert(self, health: DetectorHealth, customer_id: Optional[int] = None) -> None:
        """Open/keep/resolve the customer-less integration_error alert keyed by provider name."""
        open_rows = self.store.open_alerts(None, INTEGRATION_ERROR, health.provider)
        plan = reconcile(
            None, INTEGRATION_ERROR, self._integration_signal(health, customer_id),
            open_rows, NOT_SUPPRESSED, per_entity=True,
        )
        self.store.apply(plan)
        if not plan.is_empty:
            logger.warning(
                "Integration alert for %s: %d created, %d updated, %d resolved",
                health.provider, len(plan.to_insert), len(plan.to_update), len(plan.to_close),
            )

    def record_provider_health(self, provider: str, error: Optional[str] = None, customer_id: Optional[int] = None) -> None:
        """For provider calls made outside a detector pass (e.g. sync)."""
        health = DetectorHealth(provider, reachable=error is None, error=error)
        try:
            self._reconcile_integration_alert(health, customer_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"integration alert for {provider} failed: {exc}") from exc

    def run_customer(
        self,
        customer_id: int,
        types: Optional[Iterable[str]] = None,
        provider_health: Optional[DetectorHealth] = None,
    ) -> list[PassReport]:
        """Every detector for one customer. A failed pass is reported, not raised."""
        reports = []
        for alert_type in types or self.detectors:
            try:
                reports.append(self.run_detector_pass(customer_id, alert_type, provider_health))
            except Exception as exc:
                self.db.rollback()
                logger.exception("Customer %s %s: pass failed", customer_id, alert_type)
                reports.append(PassReport(customer_id=customer_id, type=alert_type, ok=False, error=str(exc)))
        return reports

    def run_all(
        self,
        customer_ids: Optional[Iterable[int]] = None,
        types: Optional[Iterable[str]] = None,
        provider_health: Optional[dict[int, DetectorHealth]] = None,
    ) -> dict:
        """
        All detectors for all (or the given) customers, sequentially. Returns a summary.
        provider_health maps customer id to a provider failure already seen this run.
        """
        if customer_ids is None:
            customer_ids = [c.id for c in self.db.query(Customer.id).order_by(Customer.id).all()]
        types = list(types) if types is not None else list(self.detectors)
        provider_health = provider_health or {}

        summary = {
            "started_at": self.clock().isoformat(),
            "customers_processed": 0,
            "created": 0,
            "updated": 0,
            "resolved": 0,
            "reports": [],
            "errors": [],
        }
        for customer_id in customer_ids:
            for report in self.run_customer(customer_id, types, provider_health.get(customer_id)):
                summary["reports"].append(report.as_dict())
                summary["created"] += report.created
                summary["updated"] += report.updated
                summary["resolved"] += report.resolved
                if not report.ok:
                    summary["errors"].append({"customer_id": customer_id, "type": report.type, "error": report.error})
            summary["customers_processed"] += 1

        logger.info(
            "Detection run complete: %d customers, %d created, %d updated, %d resolved, %d errors",
            summary["customers_processed"], summary["created"], summary["updated"],
            summary["resolved"], len(summary["errors"]),
        )
        return summary
