"""
Alert reconciliation: turn a detector's signal plus the currently open rows
into the insert/update/close operations that bring storage in line.

Pure: reads the rows it is given, writes nothing. store.AlertStore applies
the resulting plan.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from opswatch.detection.signals import AlertPayload, Finding, Signal, Suppression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertInsert:
    customer_id: Optional[int]
    type: str
    entity_id: Optional[str]
    payload: AlertPayload


@dataclass(frozen=True)
class AlertUpdate:
    alert_id: int
    payload: AlertPayload


@dataclass(frozen=True)
class AlertClose:
    alert_id: int
    # Set when the close comes from suppression; stamped onto the row
    suppression: Optional[Suppression] = None


@dataclass
class ReconcilePlan:
    to_insert: list[AlertInsert] = field(default_factory=list)
    to_update: list[AlertUpdate] = field(default_factory=list)
    to_close: list[AlertClose] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_insert or self.to_update or self.to_close)

    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.to_insert),
            "updated": len(self.to_update),
            "resolved": len(self.to_close),
        }


def _sort_key(alert):
    return (alert.created_at or datetime.min, alert.id or 0)


def _dedupe(open_alerts: Sequence, alert_type: str) -> tuple[dict, list]:
    """Group open rows by entity id. Keep the oldest per key, return the rest as duplicates."""
    by_entity: dict[Optional[str], list] = {}
    for alert in open_alerts:
        by_entity.setdefault(alert.primary_entity_id, []).append(alert)

    keep = {}
    duplicates = []
    for entity_id, rows in by_entity.items():
        rows = sorted(rows, key=_sort_key)
        keep[entity_id] = rows[0]
        if len(rows) > 1:
            logger.warning(
                "%d open %s alerts for entity %s (keeping id=%s); closing duplicates",
                len(rows), alert_type, entity_id, rows[0].id,
            )
            duplicates.extend(rows[1:])
    return keep, duplicates


def _upsert(plan: ReconcilePlan, customer_id, alert_type, entity_id, finding: Finding, row) -> None:
    if row is None:
        plan.to_insert.append(AlertInsert(customer_id, alert_type, entity_id, finding.payload))
    elif finding.payload.differs_from(row):
        plan.to_update.append(AlertUpdate(row.id, finding.payload))


def reconcile(
    customer_id: Optional[int],
    alert_type: str,
    signal: Signal,
    open_alerts: Sequence,
    suppressed: Suppression,
    per_entity: bool = True,
) -> ReconcilePlan:
    """
    Decide inserts, updates and closes for one (customer, type).

    - suppressed: close everything open (or touch nothing when the
      suppression freezes state); never insert.
    - absent signal: close everything open.
    - per-entity: one open row per entity in the signal; rows for entities
      not in the signal close, legacy null-entity rows always close.
    - aggregate: a single null-entity row, updated in place; stray
      per-entity rows close.

    Updates are only emitted when the payload actually changed, so running
    twice over the same signal yields an empty plan the second time.
    """
    plan = ReconcilePlan()

    if suppressed.active:
        if not suppressed.freeze:
            plan.to_close.extend(AlertClose(a.id, suppressed) for a in open_alerts)
        return plan

    if signal.absent:
        plan.to_close.extend(AlertClose(a.id) for a in open_alerts)
        return plan

    keep, duplicates = _dedupe(open_alerts, alert_type)
    plan.to_close.extend(AlertClose(a.id) for a in duplicates)

    if per_entity:
        findings: dict[str, Finding] = {}
        for finding in signal.findings:
            if finding.entity_id is None:
                logger.warning("Dropping %s finding with no entity id", alert_type)
                continue
            findings[finding.entity_id] = finding

        for entity_id, finding in findings.items():
            _upsert(plan, customer_id, alert_type, entity_id, finding, keep.get(entity_id))
        for entity_id, row in keep.items():
            # None is never a key of findings, so legacy aggregate rows land here
            if entity_id not in findings:
                plan.to_close.append(AlertClose(row.id))
        return plan

    for entity_id, row in keep.items():
        if entity_id is not None:
            plan.to_close.append(AlertClose(row.id))
    current = keep.get(None)
    if not signal.findings:
        if current is not None:
            plan.to_close.append(AlertClose(current.id))
        return plan
    if len(signal.findings) > 1:
        logger.warning("%s is aggregate but got %d findings; using the first", alert_type, len(signal.findings))
    _upsert(plan, customer_id, alert_type, None, signal.findings[0], current)
    return plan
