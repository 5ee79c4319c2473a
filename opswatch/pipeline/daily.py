"""Daily job: Stripe sync, expectations and defaults, then every detector pass."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from opswatch.config import Settings
from opswatch.connectors.stripe import PROVIDER as STRIPE, StripeClient
from opswatch.detection.engine import DetectionEngine
from opswatch.detection.signals import DetectorHealth
from opswatch.errors import ConfigurationError, ProviderError
from opswatch.models import Customer
from opswatch.pipeline.expectations import ensure_customer_defaults, refresh_expected_revenue
from opswatch.pipeline.sync import sync_customer

logger = logging.getLogger(__name__)


def run_daily(db: Session, config: Settings, engine: Optional[DetectionEngine] = None,
              stripe_client: Optional[StripeClient] = None) -> dict:
    """
    Returns the detection summary plus sync results; "ok" is False if anything failed.
    A customer whose Stripe sync failed has its Stripe-backed alerts frozen for this run.
    """
    engine = engine or DetectionEngine(db, config)
    stripe_client = stripe_client or StripeClient(config)
    sync_results = []
    sync_errors = []
    outages: dict[int, DetectorHealth] = {}

    customers = db.query(Customer).order_by(Customer.id).all()
    stripe_error = None
    stripe_attempted = False
    for customer in customers:
        ensure_customer_defaults(customer, db)
        if customer.stripe_customer_id and config.stripe_secret_key:
            stripe_attempted = True
            try:
                counts = sync_customer(customer, db, stripe_client)
                sync_results.append({"customer_id": customer.id, **counts})
            except (ProviderError, ConfigurationError) as exc:
                db.rollback()
                logger.warning("Stripe sync failed for customer %s: %s", customer.id, exc)
                sync_errors.append({"customer_id": customer.id, "stage": "stripe_sync", "error": str(exc)})
                if isinstance(exc, ProviderError):
                    stripe_error = str(exc)
                    outages[customer.id] = DetectorHealth(STRIPE, reachable=False, error=stripe_error)
        refresh_expected_revenue(customer, db, config)
        db.commit()

    if stripe_attempted:
        engine.record_provider_health(STRIPE, stripe_error)

    summary = engine.run_all([c.id for c in customers], provider_health=outages)
    summary["sync"] = sync_results
    summary["errors"] = sync_errors + summary["errors"]
    summary["ok"] = not summary["errors"]
    return summary
