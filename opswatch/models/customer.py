"""Customer, lifecycle state and per-customer tunables."""
from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship

from opswatch.database import Base, utcnow


class Customer(Base):
    """Organization whose upstream systems we watch."""

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # API authentication
    api_key = Column(String(64), unique=True, index=True)

    # Payments (Stripe)
    stripe_customer_id = Column(String(100), unique=True, index=True)

    # Accounting connection (QuickBooks)
    qbo_realm_id = Column(String(50), index=True)
    qbo_environment = Column(String(20), default="sandbox")  # sandbox | production
    access_token = Column(String(2000))
    refresh_token = Column(String(500))
    token_expires_at = Column(DateTime)

    # Workspaces
    jira_project_key = Column(String(50))
    notion_database_id = Column(String(100))

    state = relationship("CustomerState", back_populates="customer", uselist=False)
    settings = relationship("CustomerSettings", back_populates="customer", uselist=False)
    alerts = relationship("Alert", back_populates="customer")


class CustomerState(Base):
    """Lifecycle status that drives suppression. Only settings management writes it."""

    __tablename__ = "customer_state"

    customer_id = Column(Integer, ForeignKey("customers.id"), primary_key=True)
    status = Column(String(20), nullable=False, default="active")  # active, onboarding, paused, inactive
    reason = Column(String(500))
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="state")


class CustomerSettings(Base):
    """Detector tunables. Created once with defaults, never silently overwritten."""

    __tablename__ = "customer_settings"

    customer_id = Column(Integer, ForeignKey("customers.id"), primary_key=True)

    missed_payment_grace_days = Column(Integer, nullable=False, default=2)
    missed_payment_low_conf_cutoff = Column(Float, nullable=False, default=0.5)
    missed_payment_low_conf_min_risk_cents = Column(Integer, nullable=False, default=500000)
    amount_drift_threshold_pct = Column(Float, nullable=False, default=0.25)
    jira_activity_lookback = Column(String(10), nullable=False, default="7d")
    notion_stale_days = Column(Integer, nullable=False, default=14)
    invoice_overdue_days = Column(Integer, nullable=False, default=7)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="settings")
