"""Sync Stripe invoices and payments into the local mirror tables."""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from opswatch.connectors.stripe import StripeClient
from opswatch.database import utcnow
from opswatch.errors import ConfigurationError
from opswatch.models import Customer, Invoice, Payment

logger = logging.getLogger(__name__)


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, timezone.utc).replace(tzinfo=None)


def _paid_at(invoice: dict[str, Any]) -> Optional[datetime]:
    transitions = invoice.get("status_transitions") or {}
    return _from_epoch(transitions.get("paid_at"))


def sync_customer(customer: Customer, db: Session, client: StripeClient) -> dict[str, int]:
    """Upsert the customer's Stripe invoices; paid invoices also land in payments."""
    if not customer.stripe_customer_id:
        raise ConfigurationError(f"Customer {customer.id} has no stripe_customer_id")

    counts = {"invoices": 0, "payments": 0}
    logger.info("Starting Stripe sync for customer %s", customer.id)

    for inv in client.list_invoices(customer.stripe_customer_id):
        ext_id = str(inv["id"])
        paid_at = _paid_at(inv)
        existing = db.query(Invoice).filter(Invoice.stripe_invoice_id == ext_id).first()
        if existing:
            existing.amount_due_cents = inv.get("amount_due")
            existing.status = inv.get("status")
            existing.paid_at = paid_at
            existing.sync_at = utcnow()
        else:
            db.add(Invoice(
                customer_id=customer.id,
                stripe_invoice_id=ext_id,
                amount_due_cents=inv.get("amount_due"),
                status=inv.get("status"),
                invoice_date=_from_epoch(inv.get("created")),
                paid_at=paid_at,
            ))
            counts["invoices"] += 1

        if paid_at is None:
            continue
        pay_id = str(inv.get("charge") or inv.get("payment_intent") or f"in-{ext_id}")
        payment = db.query(Payment).filter(Payment.external_id == pay_id).first()
        if payment is None:
            db.add(Payment(
                customer_id=customer.id,
                external_id=pay_id,
                amount_cents=inv.get("amount_paid"),
                paid_at=paid_at,
            ))
            counts["payments"] += 1
    db.commit()

    logger.info(
        "Stripe sync complete for customer %s: %d invoices, %d payments",
        customer.id, counts["invoices"], counts["payments"],
    )
    return counts
