"""
Debug override store: force upstream state into a test condition and get
back out exactly once.

At most one snapshot per key. The first snapshot taken is authoritative;
enabling again re-applies its forced value without re-capturing. Disabling
restores the snapshot (or a computed fallback when there is none) and
deletes the row, so calling it repeatedly is safe.
"""
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from opswatch.models import DebugMutation

logger = logging.getLogger(__name__)


def override_key(toggle_key: str, customer_id: int) -> str:
    return f"{toggle_key}:{customer_id}"


class DebugOverrideStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, customer_id: int):
        return (
            self.db.query(DebugMutation)
            .filter(DebugMutation.key == override_key(key, customer_id))
            .first()
        )

    def enable(
        self,
        key: str,
        customer_id: int,
        table_name: str,
        row_id: str,
        original: Any,
        compute_forced_state: Callable[[], Any],
        apply: Callable[[Any], None],
    ) -> DebugMutation:
        """Snapshot `original` (first time only), then apply the forced value. Commits."""
        snapshot = self.get(key, customer_id)
        if snapshot is None:
            forced = compute_forced_state()
            # Wrapped so a null original still round-trips through JSON
            snapshot = DebugMutation(
                key=override_key(key, customer_id),
                table_name=table_name,
                row_id=str(row_id),
                original={"value": original},
                mutated={"value": forced},
            )
            self.db.add(snapshot)
            logger.info("Debug override %s enabled for customer %s", key, customer_id)
        else:
            forced = snapshot.mutated["value"]
            logger.info("Debug override %s already enabled for customer %s; re-applying", key, customer_id)
        apply(forced)
        self.db.commit()
        return snapshot

    def disable(
        self,
        key: str,
        customer_id: int,
        compute_restore_state: Callable[[], Any],
        apply: Callable[[Any], None],
    ) -> Any:
        """Restore the snapshot (or the fallback) and drop it. Commits. Returns the restored value."""
        snapshot = self.get(key, customer_id)
        if snapshot is not None:
            value = snapshot.original["value"]
            self.db.delete(snapshot)
            logger.info("Debug override %s disabled for customer %s; original restored", key, customer_id)
        else:
            value = compute_restore_state()
            logger.info("Debug override %s not enabled for customer %s; applying fallback", key, customer_id)
        apply(value)
        self.db.commit()
        return value
