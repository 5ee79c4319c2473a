#!/usr/bin/env python3
"""Seed a demo customer with invoices and payments for testing without Stripe."""
import secrets
import sys
from pathlib import Path
from datetime import timedelta

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from opswatch.config import settings
from opswatch.database import SessionLocal, init_db, utcnow
from opswatch.models import Customer, Invoice, Payment
from opswatch.pipeline.expectations import ensure_customer_defaults, refresh_expected_revenue


def seed():
    init_db()
    db = SessionLocal()
    c = db.query(Customer).filter(Customer.name == "Demo Company").first()
    if not c:
        c = Customer(
            name="Demo Company",
            api_key=secrets.token_hex(32),
            stripe_customer_id="cus_demo",
        )
        db.add(c)
        db.commit()
        db.refresh(c)
        print(f"Created customer: {c.id}")
        # API key printed only for local/demo; never log or expose in production
        print(f"API Key: {c.api_key}")
    else:
        if not c.api_key:
            c.api_key = secrets.token_hex(32)
            db.commit()
        print(f"Using customer: {c.id}")
        print(f"API Key: {c.api_key}")

    ensure_customer_defaults(c, db)

    # Monthly $2,500 invoices; the last one was paid 40 days ago so the
    # missed-payment detector fires, and it was short-paid so drift fires too
    now = utcnow()
    amounts = [250000, 250000, 250000, 250000, 250000, 120000]
    for i, amount in enumerate(amounts):
        paid_at = now - timedelta(days=40 + 30 * (len(amounts) - 1 - i))
        ext_id = f"in_demo_{i + 1}"
        if db.query(Invoice).filter(Invoice.stripe_invoice_id == ext_id).first():
            continue
        db.add(Invoice(
            customer_id=c.id,
            stripe_invoice_id=ext_id,
            amount_due_cents=250000,
            status="paid",
            invoice_date=paid_at - timedelta(days=3),
            paid_at=paid_at,
        ))
        db.add(Payment(
            customer_id=c.id,
            external_id=f"ch_demo_{i + 1}",
            amount_cents=amount,
            paid_at=paid_at,
        ))
    db.commit()
    refresh_expected_revenue(c, db, settings)
    db.commit()
    print("Seeded demo data. Run scripts/run_daily.py or POST /api/customers/{id}/detect/{type}.")
    db.close()


if __name__ == "__main__":
    seed()
