"""Price refresh: on-disk snapshot cache plus an optional remote price source.

Refresh never raises. On any failure the registry keeps the prices it already has.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import httpx

from costguard.core.pricing import PricingRegistry, parse_price_entry

logger = logging.getLogger(__name__)

DEFAULT_CACHE_FILE = ".costguard-cache.json"
DEFAULT_CACHE_TTL_SECONDS = 3600.0


class PriceRefresher:
    """Keeps a PricingRegistry up to date from a cache snapshot or a remote JSON source."""

    def __init__(
        self,
        registry: PricingRegistry,
        cache_path: Optional[str] = DEFAULT_CACHE_FILE,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        source_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            registry: Registry to merge refreshed prices into.
            cache_path: Snapshot file ({"timestamp": epoch_ms, "prices": {...}}). None disables caching.
            cache_ttl_seconds: Snapshots younger than this are used instead of fetching.
            source_url: URL of a JSON price document. None means cache-only refresh.
            timeout: HTTP timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._registry = registry
        self._cache_path = Path(cache_path) if cache_path else None
        self._cache_ttl = cache_ttl_seconds
        self._source_url = source_url
        self._timeout = timeout
        self._transport = transport

    def load_cache(self) -> Optional[Dict[str, Any]]:
        """Return cached prices if the snapshot exists and is fresh, else None."""
        if self._cache_path is None or not self._cache_path.exists():
            return None
        with open(self._cache_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        timestamp_ms = data.get("timestamp", 0)
        age = time.time() - timestamp_ms / 1000
        if age >= self._cache_ttl:
            logger.debug("Price cache %s is stale (%.0fs old)", self._cache_path, age)
            return None
        prices = data.get("prices")
        return prices if isinstance(prices, dict) else None

    def save_cache(self, prices: Mapping[str, Any]) -> None:
        """Write a snapshot of prices with the current timestamp."""
        if self._cache_path is None:
            return
        snapshot = {"timestamp": int(time.time() * 1000), "prices": dict(prices)}
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._cache_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)

    async def fetch_remote(self) -> Dict[str, Dict[str, float]]:
        """Download and parse the remote price document.

        Returns:
            {model: {"input_cost_per_1k_tokens": x, "output_cost_per_1k_tokens": y}} for every
            valid entry in the document.

        Raises:
            httpx.HTTPError: On network or HTTP status errors.
            ValueError: If the body is not a JSON object.
        """
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(self._source_url, headers={"User-Agent": "costguard"})
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            raise ValueError("Price source did not return a JSON object")

        prices = {}
        for model, raw in data.items():
            entry = parse_price_entry(model, raw)
            if entry is not None:
                prices[model] = entry.to_dict()
        return prices

    async def refresh(self) -> bool:
        """Refresh the registry from the cache or the remote source.

        Returns:
            True if new prices were merged, False otherwise (including on failure).
        """
        try:
            cached = self.load_cache()
            if cached is not None:
                merged = self._registry.merge(cached)
                logger.debug("Loaded %d prices from cache %s", merged, self._cache_path)
                return True

            if not self._source_url:
                return False

            prices = await self.fetch_remote()
            if not prices:
                logger.warning("Price source %s returned no usable prices", self._source_url)
                return False

            merged = self._registry.merge(prices)
            self.save_cache(self._registry.snapshot())
            logger.info("Updated pricing for %d models", merged)
            return True
        except Exception as e:
            logger.warning("Failed to update prices, using cached values: %s", e)
            return False
