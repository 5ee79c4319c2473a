"""Jira Cloud connector: recent issue activity for a project."""
from typing import Any, Optional

from opswatch.config import Settings
from opswatch.connectors.http import request_json
from opswatch.errors import ConfigurationError

PROVIDER = "jira"


def activity_jql(project_key: str, lookback: Optional[str] = None) -> str:
    if lookback:
        return f"project = {project_key} AND updated >= -{lookback} ORDER BY updated DESC"
    return f"project = {project_key} ORDER BY updated DESC"


class JiraClient:
    def __init__(self, config: Settings):
        self.config = config

    @property
    def configured(self) -> bool:
        return bool(self.config.jira_base_url and self.config.jira_email and self.config.jira_api_token)

    def recent_issues(self, project_key: str, lookback: Optional[str] = None, limit: int = 1) -> list[dict[str, Any]]:
        """Issues updated within lookback (e.g. "7d"); all issues when lookback is None."""
        if not self.configured:
            raise ConfigurationError("JIRA_BASE_URL / JIRA_EMAIL / JIRA_API_TOKEN not configured")
        url = f"{self.config.jira_base_url.rstrip('/')}/rest/api/3/search/jql"
        data = request_json(
            PROVIDER,
            "GET",
            url,
            self.config.http_timeout_seconds,
            params={"jql": activity_jql(project_key, lookback), "maxResults": limit, "fields": "summary,updated"},
            auth=(self.config.jira_email, self.config.jira_api_token),
            headers={"Accept": "application/json"},
        )
        return data.get("issues", []) or []
