"""Authentication dependencies: per-customer API key and the cron secret."""
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Depends
from sqlalchemy.orm import Session

from opswatch.config import settings
from opswatch.database import get_db
from opswatch.models import Customer


def get_customer_by_key(x_api_key: str = Header(...), db: Session = Depends(get_db)) -> Customer:
    """Validate X-API-Key header and return the matching customer."""
    customer = db.query(Customer).filter(Customer.api_key == x_api_key).first()
    if not customer:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return customer


def require_cron(
    x_cron_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> None:
    """Accept X-Cron-Secret or Authorization: Bearer <secret>. Open when no CRON_SECRET is set."""
    expected = settings.cron_secret
    if not expected:
        return
    supplied = x_cron_secret
    if not supplied and authorization and authorization.startswith("Bearer "):
        supplied = authorization[len("Bearer "):]
    if not supplied or not secrets.compare_digest(supplied, expected):
        raise HTTPException(status_code=401, detail="Invalid cron secret")
