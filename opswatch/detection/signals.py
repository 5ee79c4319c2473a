"""Value types passed between providers, suppression and reconciliation."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from opswatch.models.alert import PAYLOAD_FIELDS


@dataclass(frozen=True)
class AlertPayload:
    """Everything a detector owns on an alert row. Updates replace it whole."""

    message: str
    source_system: str
    primary_entity_type: Optional[str] = None
    amount_at_risk_cents: Optional[int] = None
    expected_amount_cents: Optional[int] = None
    observed_amount_cents: Optional[int] = None
    expected_at: Optional[datetime] = None
    observed_at: Optional[datetime] = None
    confidence: Optional[str] = None
    confidence_reason: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    def as_row(self) -> dict[str, Any]:
        row = {name: getattr(self, name) for name in PAYLOAD_FIELDS}
        row["context"] = dict(self.context)
        return row

    def differs_from(self, alert) -> bool:
        """True when the stored row does not already carry this payload."""
        for name, value in self.as_row().items():
            if getattr(alert, name) != value:
                return True
        return False


@dataclass(frozen=True)
class Finding:
    """One detected condition. entity_id is None for aggregate detectors."""

    payload: AlertPayload
    entity_id: Optional[str] = None


@dataclass(frozen=True)
class Signal:
    """
    Current-truth snapshot for one customer and detector type.

    absent: nothing to evaluate (no expectation configured, integration not
    connected). has_history: False when the provider has never recorded
    anything for this customer.
    """

    findings: tuple[Finding, ...] = ()
    absent: bool = False
    has_history: bool = True

    @classmethod
    def of(cls, *findings: Finding) -> "Signal":
        return cls(findings=tuple(findings))


ABSENT = Signal(absent=True)
NO_HISTORY = Signal(has_history=False)
CLEAR = Signal()


@dataclass(frozen=True)
class DetectorHealth:
    """How the provider behaved during this pass."""

    provider: str
    reachable: bool = True
    error: Optional[str] = None
    has_history: bool = True


@dataclass(frozen=True)
class Suppression:
    """
    Verdict from the suppression policy. reason is None when not suppressed.
    freeze leaves existing rows untouched instead of closing them.
    """

    reason: Optional[str] = None
    detail: Optional[str] = None
    freeze: bool = False

    @property
    def active(self) -> bool:
        return self.reason is not None

    def describe(self) -> str:
        if self.detail:
            return f"suppressed: {self.reason} ({self.detail})"
        return f"suppressed: {self.reason}"


NOT_SUPPRESSED = Suppression()
