"""Alert row: one open-or-terminal issue instance."""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON, Index
from sqlalchemy.orm import relationship

from opswatch.database import Base, utcnow

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"  # dismissed by a person
STATUS_RESOLVED = "resolved"  # condition cleared or suppressed by a detector pass
TERMINAL_STATUSES = (STATUS_CLOSED, STATUS_RESOLVED)

# Payload columns a detector owns; an update replaces all of them together
PAYLOAD_FIELDS = (
    "message",
    "source_system",
    "primary_entity_type",
    "amount_at_risk_cents",
    "expected_amount_cents",
    "observed_amount_cents",
    "expected_at",
    "observed_at",
    "confidence",
    "confidence_reason",
    "context",
)


class Alert(Base):
    """
    Dedup key is (customer_id, type, primary_entity_id); primary_entity_id is
    null for aggregate detectors. At most one open row per key.
    """

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    # Null only for provider-level integration_error alerts
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    source_system = Column(String(50))

    primary_entity_type = Column(String(50))
    primary_entity_id = Column(String(100))

    status = Column(String(20), nullable=False, default=STATUS_OPEN)

    message = Column(Text)
    amount_at_risk_cents = Column(Integer)
    expected_amount_cents = Column(Integer)
    observed_amount_cents = Column(Integer)
    expected_at = Column(DateTime)
    observed_at = Column(DateTime)

    confidence = Column(String(10))  # high, medium, low
    confidence_reason = Column(Text)
    context = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    closed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_alerts_dedup", "customer_id", "type", "status"),
    )

    customer = relationship("Customer", back_populates="alerts")

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN
