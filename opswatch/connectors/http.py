"""Shared request helper: every non-2xx or transport failure becomes a ProviderError."""
import logging
from typing import Any

import requests

from opswatch.errors import ProviderError

logger = logging.getLogger(__name__)


def request_json(provider: str, method: str, url: str, timeout: float, **kwargs) -> dict[str, Any]:
    try:
        r = requests.request(method, url, timeout=timeout, **kwargs)
        r.raise_for_status()
        return r.json()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        logger.warning("%s %s %s returned %s", provider, method, url, status)
        raise ProviderError(provider, f"HTTP {status}", status_code=status) from exc
    except requests.RequestException as exc:
        logger.warning("%s %s %s failed: %s", provider, method, url, exc)
        raise ProviderError(provider, str(exc)) from exc
    except ValueError as exc:
        # Body was not JSON
        raise ProviderError(provider, "invalid JSON response") from exc
