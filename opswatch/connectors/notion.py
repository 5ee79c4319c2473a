"""Notion connector: most recent edit in a database."""
from datetime import datetime, timezone
from typing import Optional

from opswatch.config import Settings
from opswatch.connectors.http import request_json
from opswatch.errors import ConfigurationError

PROVIDER = "notion"


def parse_notion_time(value: Optional[str]) -> Optional[datetime]:
    """Notion timestamps are ISO-8601 UTC ("2024-05-01T12:00:00.000Z"); return naive UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class NotionClient:
    def __init__(self, config: Settings):
        self.config = config

    def last_edited_at(self, database_id: str) -> Optional[datetime]:
        """Latest last_edited_time across pages, or None for an empty database."""
        if not self.config.notion_token:
            raise ConfigurationError("NOTION_TOKEN not configured")
        url = f"{self.config.notion_api_base.rstrip('/')}/databases/{database_id}/query"
        data = request_json(
            PROVIDER,
            "POST",
            url,
            self.config.http_timeout_seconds,
            json={
                "page_size": 1,
                "sorts": [{"timestamp": "last_edited_time", "direction": "descending"}],
            },
            headers={
                "Authorization": f"Bearer {self.config.notion_token}",
                "Notion-Version": self.config.notion_version,
                "Content-Type": "application/json",
            },
        )
        pages = data.get("results", []) or []
        if not pages:
            return None
        return parse_notion_time(pages[0].get("last_edited_time"))
