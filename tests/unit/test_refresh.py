"""Unit tests for price refresh."""

import json
import time

import httpx
import pytest

from costguard.core.pricing import PricingRegistry
from costguard.core.refresh import PriceRefresher

SOURCE_URL = "https://prices.example.com/models.json"


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "prices-cache.json"


def _transport(status=200, body=None, calls=None):
    async def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status, json=body if body is not None else {})

    return httpx.MockTransport(handler)


def test_cache_round_trip(cache_path):
    registry = PricingRegistry()
    refresher = PriceRefresher(registry, cache_path=str(cache_path))

    refresher.save_cache({"gpt-4": {"input": 0.5, "output": 1.0}})

    assert refresher.load_cache() == {"gpt-4": {"input": 0.5, "output": 1.0}}
    data = json.loads(cache_path.read_text())
    assert isinstance(data["timestamp"], int)


def test_stale_cache_ignored(cache_path):
    cache_path.write_text(json.dumps({
        "timestamp": int((time.time() - 7200) * 1000),
        "prices": {"gpt-4": {"input": 0.5, "output": 1.0}},
    }))
    refresher = PriceRefresher(PricingRegistry(), cache_path=str(cache_path), cache_ttl_seconds=3600)

    assert refresher.load_cache() is None


@pytest.mark.asyncio
async def test_fresh_cache_is_merged_without_fetching(cache_path):
    registry = PricingRegistry()
    calls = []
    refresher = PriceRefresher(
        registry, cache_path=str(cache_path), source_url=SOURCE_URL, transport=_transport(calls=calls)
    )
    refresher.save_cache({"gpt-4": {"input": 0.5, "output": 1.0}})

    assert await refresher.refresh() is True
    assert registry.get_model_pricing("gpt-4") == (0.5, 1.0)
    assert calls == []


@pytest.mark.asyncio
async def test_remote_prices_merged_and_cached(cache_path):
    registry = PricingRegistry()
    body = {
        "gpt-4o": {"input_cost_per_token": 0.000005, "output_cost_per_token": 0.000015},
        "sample_spec": {"max_tokens": "n/a"},
    }
    refresher = PriceRefresher(
        registry, cache_path=str(cache_path), source_url=SOURCE_URL, transport=_transport(body=body)
    )

    assert await refresher.refresh() is True
    assert registry.get_model_pricing("gpt-4o") == pytest.approx((0.005, 0.015))
    assert "gpt-4o" in refresher.load_cache()
    # Existing entries survive the merge.
    assert registry.has_model("claude-3-haiku")


@pytest.mark.asyncio
async def test_remote_failure_keeps_table(cache_path, caplog):
    registry = PricingRegistry()
    before = registry.snapshot()
    refresher = PriceRefresher(
        registry, cache_path=str(cache_path), source_url=SOURCE_URL, transport=_transport(status=503)
    )

    assert await refresher.refresh() is False
    assert registry.snapshot() == before
    assert "Failed to update prices" in caplog.text


@pytest.mark.asyncio
async def test_corrupt_cache_does_not_raise(cache_path):
    cache_path.write_text("{not json")
    refresher = PriceRefresher(PricingRegistry(), cache_path=str(cache_path))

    assert await refresher.refresh() is False


@pytest.mark.asyncio
async def test_cache_only_without_source(cache_path):
    refresher = PriceRefresher(PricingRegistry(), cache_path=str(cache_path))

    assert await refresher.refresh() is False
