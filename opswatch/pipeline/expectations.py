"""Per-customer defaults and the expected-revenue record derived from paid invoices."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from opswatch.config import Settings
from opswatch.models import Customer, CustomerSettings, CustomerState, ExpectedRevenue, Invoice

logger = logging.getLogger(__name__)


def ensure_customer_defaults(customer: Customer, db: Session) -> tuple[CustomerSettings, CustomerState]:
    """Create settings/state rows with defaults if missing. Never overwrites existing rows."""
    cust_settings = db.get(CustomerSettings, customer.id)
    if cust_settings is None:
        cust_settings = CustomerSettings(customer_id=customer.id)
        db.add(cust_settings)
        logger.info("Created default settings for customer %s", customer.id)
    state = db.get(CustomerState, customer.id)
    if state is None:
        state = CustomerState(customer_id=customer.id, status="active")
        db.add(state)
    db.flush()
    return cust_settings, state


def refresh_expected_revenue(customer: Customer, db: Session, config: Settings) -> Optional[ExpectedRevenue]:
    """
    Point the customer's expectation at their latest paid invoice.

    Cadence and confidence start at the configured defaults; a cadence set
    on an existing row is kept. Returns None when nothing has been paid yet.
    """
    latest = (
        db.query(Invoice)
        .filter(Invoice.customer_id == customer.id, Invoice.paid_at.isnot(None))
        .order_by(Invoice.paid_at.desc())
        .first()
    )
    expectation = db.get(ExpectedRevenue, customer.id)
    if latest is None:
        return expectation

    if expectation is None:
        expectation = ExpectedRevenue(
            customer_id=customer.id,
            cadence_days=config.default_cadence_days,
            confidence=config.default_expectation_confidence,
        )
        db.add(expectation)
        logger.info("Created expected revenue for customer %s", customer.id)
    expectation.cadence_days = expectation.cadence_days or config.default_cadence_days
    if expectation.confidence is None:
        expectation.confidence = config.default_expectation_confidence
    expectation.expected_amount_cents = latest.amount_due_cents
    expectation.last_paid_at = latest.paid_at
    db.flush()
    return expectation
