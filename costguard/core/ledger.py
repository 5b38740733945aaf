"""Budget ledgers: the authoritative running total and the call log.

LocalLedger keeps the total in process. SharedLedger delegates it to a Redis
counter so several processes draw on one budget; if Redis becomes unreachable it
degrades to local accounting for the rest of the session.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from costguard.core.attributor import AttributedCall

logger = logging.getLogger(__name__)

DEFAULT_SHARED_KEY = "costguard:budget"
DEFAULT_SHARED_TTL_SECONDS = 86400


class BudgetLedger(ABC):
    """Running total plus an append-only call log."""

    def __init__(self) -> None:
        self._local_total = 0.0
        self._calls: List["AttributedCall"] = []
        self._lock = threading.Lock()

    def _add_local(self, cost: float) -> float:
        with self._lock:
            self._local_total += max(0.0, cost)
            return self._local_total

    @abstractmethod
    async def increment(self, cost: float) -> float:
        """Atomically add cost to the running total and return the new total."""
        pass

    @abstractmethod
    def current_total(self) -> Optional[float]:
        """Current total, or None when the authoritative total lives elsewhere."""
        pass

    @abstractmethod
    async def reset(self) -> None:
        """Zero the total and clear the call log."""
        pass

    def append_call(self, call: "AttributedCall") -> None:
        with self._lock:
            self._calls.append(call)

    def calls(self) -> List["AttributedCall"]:
        """Point-in-time copy of the call log, in completion order."""
        with self._lock:
            return list(self._calls)

    def clear_local(self) -> None:
        """Zero the local total and call log without touching any shared state."""
        with self._lock:
            self._local_total = 0.0
            self._calls.clear()

    async def aclose(self) -> None:
        """Release connections held by the ledger."""
        pass


class LocalLedger(BudgetLedger):
    """In-process ledger. Safe across asyncio tasks and threads."""

    def add(self, cost: float) -> float:
        """Synchronous increment for hosts without an event loop."""
        return self._add_local(cost)

    async def increment(self, cost: float) -> float:
        return self._add_local(cost)

    def current_total(self) -> Optional[float]:
        with self._lock:
            return self._local_total

    async def reset(self) -> None:
        self.clear_local()


class SharedLedger(BudgetLedger):
    """Ledger backed by a Redis float counter shared between processes.

    Each increment is INCRBYFLOAT followed by EXPIRE, so an abandoned budget key
    disappears after ttl_seconds. Any Redis failure switches the ledger to local
    accounting for the rest of the session (warned once).
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: str = DEFAULT_SHARED_KEY,
        ttl_seconds: int = DEFAULT_SHARED_TTL_SECONDS,
        client=None,
    ):
        """
        Args:
            url: Redis URL (e.g. "redis://localhost:6379/0"). Ignored if client is given.
            key: Counter key shared by all participating processes.
            ttl_seconds: Expiry refreshed on every increment.
            client: Pre-built redis.asyncio client (tests pass a mock).
        """
        super().__init__()
        if client is None and not url:
            raise ValueError("SharedLedger requires a Redis url or client")
        self._url = url
        self._key = key
        self._ttl = ttl_seconds
        self._client = client
        self._degraded = False

    @property
    def key(self) -> str:
        return self._key

    @property
    def degraded(self) -> bool:
        """True once the ledger has fallen back to local accounting."""
        return self._degraded

    def _get_client(self):
        """Lazy-init the redis.asyncio client."""
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(self._url)
        return self._client

    def _degrade(self, action: str, error: Exception) -> None:
        with self._lock:
            if self._degraded:
                return
            self._degraded = True
        logger.warning(
            "Shared budget %s failed, using local tracking for this session: %s", action, error
        )

    async def connect(self) -> bool:
        """Check the store is reachable. Returns False (and degrades) if it is not."""
        if self._degraded:
            return False
        try:
            await self._get_client().ping()
            return True
        except Exception as e:
            self._degrade("connection", e)
            return False

    async def increment(self, cost: float) -> float:
        cost = max(0.0, cost)
        if not self._degraded:
            try:
                client = self._get_client()
                new_total = await client.incrbyfloat(self._key, cost)
                await client.expire(self._key, self._ttl)
                return float(new_total)
            except Exception as e:
                self._degrade("increment", e)
        return self._add_local(cost)

    def current_total(self) -> Optional[float]:
        if not self._degraded:
            return None
        with self._lock:
            return self._local_total

    async def shared_total(self) -> Optional[float]:
        """Read the shared counter (0.0 if unset, None if unreachable)."""
        try:
            value = await self._get_client().get(self._key)
        except Exception as e:
            logger.warning("Failed to read shared budget %s: %s", self._key, e)
            return None
        return float(value) if value is not None else 0.0

    async def reset(self) -> None:
        try:
            await self._get_client().delete(self._key)
        except Exception as e:
            logger.warning("Failed to reset shared budget %s: %s", self._key, e)
        self.clear_local()
        with self._lock:
            self._degraded = False

    async def aclose(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as e:
            logger.debug("Error closing Redis client: %s", e)
