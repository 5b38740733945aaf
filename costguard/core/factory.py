"""Factory for building a fully wired BudgetGuard from Settings. Callers don't assemble collaborators."""

import logging
from typing import Any, Optional

from costguard.config.settings import Settings
from costguard.core.attributor import CostAttributor
from costguard.core.display import CostDisplay
from costguard.core.estimator import TokenEstimator
from costguard.core.guard import BudgetGuard
from costguard.core.ledger import BudgetLedger, LocalLedger, SharedLedger
from costguard.core.notifier import WebhookNotifier
from costguard.core.pricing import PricingRegistry
from costguard.core.refresh import PriceRefresher

logger = logging.getLogger(__name__)


def create_ledger(settings: Settings) -> BudgetLedger:
    """SharedLedger when a Redis URL is configured, else LocalLedger."""
    if settings.redis_url:
        logger.info("Using shared budget %s", settings.shared_key)
        return SharedLedger(
            url=settings.redis_url,
            key=settings.shared_key,
            ttl_seconds=settings.shared_ttl_seconds,
        )
    return LocalLedger()


def create_guard(settings: Optional[Settings] = None, **overrides: Any) -> BudgetGuard:
    """Create a BudgetGuard. Pricing, ledger and notification wiring stay inside the factory.

    Args:
        settings: Optional settings (else loaded from COSTGUARD_* env / .env)
        **overrides: Settings fields to override, e.g. limit=5.0, mode="hard_exit",
            or exit_func= to replace process termination

    Returns:
        Configured BudgetGuard (call start() / start_sync() to connect and refresh prices)

    Raises:
        ValueError: If an override is invalid (e.g. limit <= 0 or unknown mode)
    """
    exit_func = overrides.pop("exit_func", None)
    _settings = settings or Settings()
    if overrides:
        _settings = Settings(**{**_settings.model_dump(), **overrides})

    pricing = PricingRegistry(pricing_file_path=_settings.pricing_file_path)
    attributor = CostAttributor(
        pricing_registry=pricing,
        token_estimator=TokenEstimator(estimation_mode=_settings.token_estimation_mode),
        privacy=_settings.privacy,
    )
    refresher = PriceRefresher(
        pricing,
        cache_path=str(_settings.get_price_cache_path()),
        cache_ttl_seconds=_settings.price_cache_ttl_seconds,
        source_url=_settings.price_source_url,
    )
    notifier = (
        WebhookNotifier(_settings.webhook, timeout=_settings.webhook_timeout)
        if _settings.webhook
        else None
    )

    return BudgetGuard(
        limit=_settings.limit,
        mode=_settings.mode,
        ledger=create_ledger(_settings),
        attributor=attributor,
        notifier=notifier,
        display=CostDisplay(silent=_settings.silent),
        refresher=refresher,
        enabled=_settings.enabled,
        refresh_prices_on_start=_settings.refresh_prices_on_start,
        exit_code=_settings.exit_code,
        exit_delay=_settings.exit_delay,
        exit_func=exit_func,
    )
