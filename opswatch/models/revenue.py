"""Payment mirror tables and the inferred revenue expectation."""
from sqlalchemy import Column, Integer, Float, String, ForeignKey, DateTime

from opswatch.database import Base, utcnow


class ExpectedRevenue(Base):
    """What we expect a customer to pay, and how often. One row per customer."""

    __tablename__ = "expected_revenue"

    customer_id = Column(Integer, ForeignKey("customers.id"), primary_key=True)
    cadence_days = Column(Integer)
    expected_amount_cents = Column(Integer)
    last_paid_at = Column(DateTime)
    confidence = Column(Float)  # 0-1, how much we trust this expectation
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Invoice(Base):
    """Stripe invoice, amounts in cents."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    stripe_invoice_id = Column(String(100), nullable=False, unique=True, index=True)
    amount_due_cents = Column(Integer)
    status = Column(String(30))
    invoice_date = Column(DateTime, index=True)
    paid_at = Column(DateTime)
    sync_at = Column(DateTime, default=utcnow)


class Payment(Base):
    """Received payment, amounts in cents."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    external_id = Column(String(100), nullable=False, unique=True, index=True)
    amount_cents = Column(Integer)
    paid_at = Column(DateTime, index=True)
    sync_at = Column(DateTime, default=utcnow)
