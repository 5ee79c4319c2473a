"""Stripe connector: paginated invoice listing over the REST API."""
from typing import Any

from opswatch.config import Settings
from opswatch.connectors.http import request_json
from opswatch.errors import ConfigurationError

PROVIDER = "stripe"


class StripeClient:
    def __init__(self, config: Settings):
        self.config = config

    def list_invoices(self, stripe_customer_id: str, max_pages: int = 25) -> list[dict[str, Any]]:
        """All invoices for one Stripe customer, newest first."""
        if not self.config.stripe_secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY not configured")
        url = f"{self.config.stripe_api_base.rstrip('/')}/invoices"
        results = []
        starting_after = None
        for _ in range(max_pages):
            params = {"customer": stripe_customer_id, "limit": 100}
            if starting_after:
                params["starting_after"] = starting_after
            data = request_json(
                PROVIDER,
                "GET",
                url,
                self.config.http_timeout_seconds,
                params=params,
                auth=(self.config.stripe_secret_key, ""),
            )
            page = data.get("data", []) or []
            results.extend(page)
            if not data.get("has_more") or not page:
                break
            starting_after = page[-1].get("id")
        return results
