"""Upstream entities a customer asked us to stop alerting on."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint

from opswatch.database import Base, utcnow


class IgnoredEntity(Base):
    """Per (customer, alert type). Detectors skip these entity ids until unignored."""

    __tablename__ = "ignored_entities"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    alert_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("customer_id", "alert_type", "entity_id", name="uq_ignored_entity"),
    )
