"""Shared fixtures for costguard tests."""

import pytest
from unittest.mock import AsyncMock, Mock

from costguard.core.attributor import CostAttributor
from costguard.core.display import CostDisplay
from costguard.core.estimator import TokenEstimator
from costguard.core.guard import BudgetGuard
from costguard.core.notifier import WebhookNotifier
from costguard.core.pricing import PricingRegistry


@pytest.fixture
def registry():
    """Bundled price table."""
    return PricingRegistry()


@pytest.fixture
def attributor(registry):
    """Attributor with the heuristic estimator, so token counts are deterministic."""
    return CostAttributor(
        pricing_registry=registry,
        token_estimator=TokenEstimator(estimation_mode="heuristic"),
    )


@pytest.fixture
def three_dollar_attributor():
    """Attributor where 1000 prompt tokens of model "m" cost exactly $3."""
    prices = {
        "default": {"input": 0.01, "output": 0.03},
        "m": {"input": 3.0, "output": 0.0},
    }
    return CostAttributor(
        pricing_registry=PricingRegistry(prices=prices),
        token_estimator=TokenEstimator(estimation_mode="heuristic"),
    )


@pytest.fixture
def notifier():
    mock = Mock(spec=WebhookNotifier)
    mock.send.return_value = True
    mock.send_async = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def make_guard(three_dollar_attributor, notifier):
    """Build a quiet guard over the $3 price table."""

    def _make(limit=10.0, mode="soft", **kwargs):
        kwargs.setdefault("attributor", three_dollar_attributor)
        kwargs.setdefault("notifier", notifier)
        kwargs.setdefault("display", CostDisplay(silent=True))
        kwargs.setdefault("exit_delay", 0)
        return BudgetGuard(limit=limit, mode=mode, **kwargs)

    return _make
