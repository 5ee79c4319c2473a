"""Row-level alert storage. Applies a ReconcilePlan inside the caller's session."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from opswatch.database import utcnow
from opswatch.detection.reconcile import ReconcilePlan
from opswatch.detection.signals import AlertPayload, Suppression
from opswatch.models import Alert, IgnoredEntity
from opswatch.models.alert import STATUS_CLOSED, STATUS_OPEN, STATUS_RESOLVED

logger = logging.getLogger(__name__)

_UNSET = object()


class AlertStore:
    """
    Nothing here commits. The engine commits once per pass so a failure
    part-way through leaves no partial plan behind.
    """

    def __init__(self, db: Session):
        self.db = db

    def open_alerts(self, customer_id: Optional[int], alert_type: str, entity_id=_UNSET) -> list[Alert]:
        q = self.db.query(Alert).filter(
            Alert.customer_id.is_(None) if customer_id is None else Alert.customer_id == customer_id,
            Alert.type == alert_type,
            Alert.status == STATUS_OPEN,
        )
        if entity_id is not _UNSET:
            q = q.filter(
                Alert.primary_entity_id.is_(None) if entity_id is None else Alert.primary_entity_id == entity_id
            )
        return q.order_by(Alert.created_at, Alert.id).all()

    def insert(self, customer_id: Optional[int], alert_type: str, entity_id: Optional[str], payload: AlertPayload) -> Alert:
        alert = Alert(
            customer_id=customer_id,
            type=alert_type,
            primary_entity_id=entity_id,
            status=STATUS_OPEN,
            **payload.as_row(),
        )
        self.db.add(alert)
        return alert

    def update(self, alert_id: int, payload: AlertPayload) -> Alert:
        alert = self.db.get(Alert, alert_id)
        for name, value in payload.as_row().items():
            setattr(alert, name, value)
        alert.updated_at = utcnow()
        return alert

    def close(self, alert_id: int, suppression: Optional[Suppression] = None, status: str = STATUS_RESOLVED) -> Alert:
        alert = self.db.get(Alert, alert_id)
        alert.status = status
        alert.closed_at = utcnow()
        alert.updated_at = alert.closed_at
        if suppression is not None and suppression.active:
            alert.confidence_reason = suppression.describe()
            # New dict so the JSON column registers the change
            alert.context = {**(alert.context or {}), "suppression_reason": suppression.reason}
        return alert

    def close_where(self, customer_id: Optional[int], alert_type: str, entity_id=_UNSET) -> int:
        """Close every open row matching the filter; entity_id=None matches aggregate rows only."""
        rows = self.open_alerts(customer_id, alert_type, entity_id)
        for row in rows:
            self.close(row.id)
        self.db.flush()
        if rows:
            logger.info("Closed %d open %s alerts for customer %s", len(rows), alert_type, customer_id)
        return len(rows)

    def apply(self, plan: ReconcilePlan) -> None:
        for ins in plan.to_insert:
            self.insert(ins.customer_id, ins.type, ins.entity_id, ins.payload)
        for upd in plan.to_update:
            self.update(upd.alert_id, upd.payload)
        for closing in plan.to_close:
            self.close(closing.alert_id, closing.suppression)
        self.db.flush()

    def ignored_ids(self, customer_id: int, alert_type: str) -> frozenset[str]:
        rows = (
            self.db.query(IgnoredEntity.entity_id)
            .filter(IgnoredEntity.customer_id == customer_id, IgnoredEntity.alert_type == alert_type)
            .all()
        )
        return frozenset(row.entity_id for row in rows)

    def ignore(self, alert: Alert) -> None:
        """Remember the alert's entity as ignored and dismiss the alert if still open."""
        exists = (
            self.db.query(IgnoredEntity)
            .filter(
                IgnoredEntity.customer_id == alert.customer_id,
                IgnoredEntity.alert_type == alert.type,
                IgnoredEntity.entity_id == alert.primary_entity_id,
            )
            .first()
        )
        if exists is None:
            self.db.add(IgnoredEntity(
                customer_id=alert.customer_id,
                alert_type=alert.type,
                entity_id=alert.primary_entity_id,
            ))
        if alert.is_open:
            self.close(alert.id, status=STATUS_CLOSED)
        self.db.flush()
        logger.info("Customer %s ignoring %s entity %s", alert.customer_id, alert.type, alert.primary_entity_id)

    def unignore(self, customer_id: int, alert_type: str, entity_id: str) -> bool:
        """Returns False if the entity was not ignored. The next pass may alert on it again."""
        removed = (
            self.db.query(IgnoredEntity)
            .filter(
                IgnoredEntity.customer_id == customer_id,
                IgnoredEntity.alert_type == alert_type,
                IgnoredEntity.entity_id == entity_id,
            )
            .delete(synchronize_session=False)
        )
        self.db.flush()
        if removed:
            logger.info("Customer %s no longer ignoring %s entity %s", customer_id, alert_type, entity_id)
        return bool(removed)
