"""CostGuard - budget circuit breaker for LLM API spend."""

__version__ = "0.1.0"

from costguard.core.attributor import AttributedCall, CostAttributor, ResponseShape
from costguard.core.display import CostDisplay
from costguard.core.errors import (
    BudgetExceededError,
    BudgetKilledError,
    CostGuardError,
    PricingError,
)
from costguard.core.estimator import TokenEstimator
from costguard.core.factory import create_guard
from costguard.core.guard import BudgetGuard, EnforcementMode
from costguard.core.ledger import BudgetLedger, LocalLedger, SharedLedger
from costguard.core.notifier import WebhookNotifier
from costguard.core.pricing import PriceEntry, PricingRegistry
from costguard.core.refresh import PriceRefresher
from costguard.config.settings import Settings

__all__ = [
    "AttributedCall",
    "CostAttributor",
    "ResponseShape",
    "CostDisplay",
    "BudgetExceededError",
    "BudgetKilledError",
    "CostGuardError",
    "PricingError",
    "TokenEstimator",
    "create_guard",
    "BudgetGuard",
    "EnforcementMode",
    "BudgetLedger",
    "LocalLedger",
    "SharedLedger",
    "WebhookNotifier",
    "PriceEntry",
    "PricingRegistry",
    "PriceRefresher",
    "Settings",
]
