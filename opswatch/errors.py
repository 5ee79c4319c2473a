"""Error taxonomy for detector passes."""
from typing import Optional


class OpsWatchError(Exception):
    """Base class for errors raised by the alert engine."""


class ConfigurationError(OpsWatchError):
    """Missing setting, credential or upstream row. Fatal for one customer's pass only."""


class ProviderError(OpsWatchError):
    """Upstream provider unreachable or returned an error status."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


class StorageError(OpsWatchError):
    """Alert write failed; the pass was rolled back."""


class PassInProgressError(OpsWatchError):
    """Another pass for the same (customer, detector type) is already running."""
