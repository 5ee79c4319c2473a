"""Snapshot of upstream state forced by a debug toggle."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint

from opswatch.database import Base, utcnow


class DebugMutation(Base):
    """One live override per key; `original` is the only way back to normal."""

    __tablename__ = "debug_mutations"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(200), nullable=False)  # "<toggle key>:<customer id>"
    table_name = Column(String(100), nullable=False)
    row_id = Column(String(100), nullable=False)
    original = Column(JSON, nullable=False)
    mutated = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("key", name="uq_debug_mutation_key"),
    )
