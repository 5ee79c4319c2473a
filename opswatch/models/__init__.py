"""SQLAlchemy models."""
from opswatch.models.customer import Customer, CustomerState, CustomerSettings
from opswatch.models.alert import Alert
from opswatch.models.debug_mutation import DebugMutation
from opswatch.models.ignored_entity import IgnoredEntity
from opswatch.models.revenue import ExpectedRevenue, Invoice, Payment

__all__ = [
    "Customer",
    "CustomerState",
    "CustomerSettings",
    "Alert",
    "DebugMutation",
    "IgnoredEntity",
    "ExpectedRevenue",
    "Invoice",
    "Payment",
]
