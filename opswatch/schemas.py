"""
Pydantic schemas for the API with strict validation.

- All string inputs have explicit max_length.
- Request body models use extra="forbid" to reject unexpected fields.
"""
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

MAX_LEN_NAME = 255
MAX_LEN_REALM_ID = 50
MAX_LEN_OAUTH_TOKEN = 2000
MAX_LEN_EXTERNAL_ID = 100
MAX_LEN_REASON = 500
MAX_LEN_TOGGLE_KEY = 100

# Jira relative date: number + unit (w, d, h, m)
LOOKBACK_PATTERN = r"^[1-9][0-9]{0,3}[wdhm]$"

CustomerStatus = Literal["active", "onboarding", "paused", "inactive"]


class CustomerCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(..., min_length=1, max_length=MAX_LEN_NAME)
    stripe_customer_id: Optional[str] = Field(None, max_length=MAX_LEN_EXTERNAL_ID)
    jira_project_key: Optional[str] = Field(None, max_length=50, pattern=r"^[A-Z][A-Z0-9_]*$")
    notion_database_id: Optional[str] = Field(None, max_length=MAX_LEN_EXTERNAL_ID)


class CustomerOut(BaseModel):
    """Customer response; never includes api_key or tokens."""
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    stripe_customer_id: Optional[str] = None
    qbo_realm_id: Optional[str] = None
    qbo_environment: Optional[str] = None
    jira_project_key: Optional[str] = None
    notion_database_id: Optional[str] = None
    created_at: Optional[datetime] = None


class CustomerCreateResponse(CustomerOut):
    """Returned once on create; the only response that includes api_key."""
    api_key: str


class CustomerStateUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: CustomerStatus
    reason: Optional[str] = Field(None, max_length=MAX_LEN_REASON)


class CustomerStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    customer_id: int
    status: str
    reason: Optional[str] = None


class CustomerSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    model_config = ConfigDict(extra="forbid")
    missed_payment_grace_days: Optional[int] = Field(None, ge=0, le=365)
    missed_payment_low_conf_cutoff: Optional[float] = Field(None, ge=0, le=1)
    missed_payment_low_conf_min_risk_cents: Optional[int] = Field(None, ge=0)
    amount_drift_threshold_pct: Optional[float] = Field(None, ge=0.05, le=1.0)
    jira_activity_lookback: Optional[str] = Field(None, pattern=LOOKBACK_PATTERN)
    notion_stale_days: Optional[int] = Field(None, ge=1, le=365)
    invoice_overdue_days: Optional[int] = Field(None, ge=0, le=365)


class CustomerSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    customer_id: int
    missed_payment_grace_days: int
    missed_payment_low_conf_cutoff: float
    missed_payment_low_conf_min_risk_cents: int
    amount_drift_threshold_pct: float
    jira_activity_lookback: str
    notion_stale_days: int
    invoice_overdue_days: int


class ConnectQBOBody(BaseModel):
    """Request body for QBO token storage; strict length limits on tokens."""
    model_config = ConfigDict(extra="forbid")
    realm_id: str = Field(..., min_length=1, max_length=MAX_LEN_REALM_ID)
    access_token: str = Field(..., min_length=1, max_length=MAX_LEN_OAUTH_TOKEN)
    refresh_token: str = Field(..., min_length=1, max_length=MAX_LEN_OAUTH_TOKEN)
    expires_at: Optional[datetime] = None
    environment: Literal["sandbox", "production"] = "sandbox"


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    customer_id: Optional[int]
    type: str
    source_system: Optional[str] = None
    primary_entity_type: Optional[str] = None
    primary_entity_id: Optional[str] = None
    status: str
    message: Optional[str] = None
    amount_at_risk_cents: Optional[int] = None
    expected_amount_cents: Optional[int] = None
    observed_amount_cents: Optional[int] = None
    expected_at: Optional[datetime] = None
    observed_at: Optional[datetime] = None
    confidence: Optional[str] = None
    confidence_reason: Optional[str] = None
    context: dict[str, Any] = {}
    created_at: datetime
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    score: Optional[int] = None
    severity: Optional[str] = None


class PassResult(BaseModel):
    customer_id: int
    type: str
    created: int
    updated: int
    resolved: int
    suppressed: Optional[str] = None
    ok: bool = True
    error: Optional[str] = None


class DebugToggleBody(BaseModel):
    model_config = ConfigDict(extra="forbid")
    key: str = Field(..., min_length=1, max_length=MAX_LEN_TOGGLE_KEY)
    enabled: bool
    customer_id: Optional[int] = Field(None, gt=0)
    alert_id: Optional[int] = Field(None, gt=0)


class IgnoreBody(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: Literal["ignore", "unignore"] = "ignore"


class IgnoreResult(BaseModel):
    alert_id: int
    type: str
    entity_id: str
    mode: str
    ignored_entity_ids: list[str]
