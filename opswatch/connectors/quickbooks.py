"""QuickBooks Online connector: token refresh + overdue invoice query."""
from datetime import datetime
from typing import Any, Optional

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from opswatch.config import Settings
from opswatch.connectors.http import request_json
from opswatch.errors import ConfigurationError, ProviderError

PROVIDER = "quickbooks"
API_BASES = {
    "production": "https://quickbooks.api.intuit.com",
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
}
APP_BASES = {
    "production": "https://app.qbo.intuit.com",
    "sandbox": "https://sandbox.qbo.intuit.com",
}
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
MINOR_VERSION = "75"

OVERDUE_QUERY = (
    "select Id, DocNumber, CustomerRef, TotalAmt, Balance, DueDate, TxnDate "
    "from Invoice where Balance > '0' and DueDate < CURRENT_DATE maxresults 100"
)


def _headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}


def parse_qbo_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value[:10], "%Y-%m-%d")


class QuickBooksClient:
    """Thin QBO client. Credentials come from the Settings it is built with."""

    def __init__(self, config: Settings):
        self.config = config

    def _environment(self, environment: Optional[str]) -> str:
        env = environment or self.config.qbo_environment
        return "production" if env == "production" else "sandbox"

    def api_base(self, environment: Optional[str] = None) -> str:
        return API_BASES[self._environment(environment)]

    def invoice_url(self, txn_id: str, realm_id: str, environment: Optional[str] = None) -> str:
        base = APP_BASES[self._environment(environment)]
        return f"{base}/app/invoice?txnId={txn_id}&companyId={realm_id}"

    def get_oauth_client(self) -> OAuth2Session:
        if not self.config.qbo_client_id or not self.config.qbo_client_secret:
            raise ConfigurationError("QBO_CLIENT_ID / QBO_CLIENT_SECRET not configured")
        return OAuth2Session(
            client_id=self.config.qbo_client_id,
            client_secret=self.config.qbo_client_secret,
            scope="com.intuit.quickbooks.accounting",
        )

    def refresh_tokens(self, refresh_token: str) -> dict[str, Any]:
        """Refresh access token using refresh token."""
        client = self.get_oauth_client()
        try:
            return client.refresh_token(TOKEN_URL, refresh_token=refresh_token, timeout=self.config.http_timeout_seconds)
        except (AuthlibBaseError, requests.RequestException) as exc:
            raise ProviderError(PROVIDER, f"token refresh failed: {exc}") from exc

    def fetch_overdue_invoices(
        self, access_token: str, realm_id: str, environment: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Open invoices with a positive balance whose due date has passed."""
        url = f"{self.api_base(environment)}/v3/company/{realm_id}/query"
        data = request_json(
            PROVIDER,
            "GET",
            url,
            self.config.http_timeout_seconds,
            params={"query": OVERDUE_QUERY, "minorversion": MINOR_VERSION},
            headers=_headers(access_token),
        )
        return data.get("QueryResponse", {}).get("Invoice", []) or []
