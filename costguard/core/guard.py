"""Budget enforcement: the controller that decides what happens when spend crosses the limit.

A BudgetGuard session is Active until the running total first reaches the limit,
then Tripped until reset(). Tripping happens exactly once per session, even when
several completions cross the limit concurrently, and runs the configured mode:

    soft       raise BudgetExceededError (catchable, process keeps running)
    hard_exit  notify, flush output, terminate the process with a non-zero status
    warn_only  log and notify, keep running

Usage:
    guard = create_guard(limit=5.0, mode="soft")
    await guard.observe(response_dict, source_url=str(request.url))
"""

import asyncio
import logging
import math
import os
import sys
import threading
import time
from enum import Enum
from typing import Any, Callable, List, Optional, Set, Union

from costguard.core.attributor import AttributedCall, CostAttributor
from costguard.core.display import CostDisplay
from costguard.core.errors import BudgetExceededError, BudgetKilledError, percent_of
from costguard.core.ledger import BudgetLedger, LocalLedger, SharedLedger
from costguard.core.notifier import WebhookNotifier
from costguard.core.pricing import PricingRegistry
from costguard.core.refresh import PriceRefresher
from costguard.utils.helpers import format_cost

logger = logging.getLogger(__name__)

# Savings shown on trip assume an unchecked runaway would have spent this multiple of the limit.
SAVINGS_MULTIPLE = 5
TRIP_REASON = "COST LIMIT EXCEEDED"
DEFAULT_EXIT_CODE = 1
DEFAULT_EXIT_DELAY = 0.1


class EnforcementMode(str, Enum):
    """What a guard does when the budget trips."""

    SOFT = "soft"
    HARD_EXIT = "hard_exit"
    WARN_ONLY = "warn_only"

    @classmethod
    def parse(cls, value: Union[str, "EnforcementMode"]) -> "EnforcementMode":
        """Accept members, values, camelCase names and the throw/kill/notify aliases."""
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        mode = _MODE_ALIASES.get(key) or _MODE_ALIASES.get(key.lower())
        if mode is None:
            raise ValueError(
                f"Unknown mode: {value!r}. Supported: soft, hard_exit, warn_only"
            )
        return mode


_MODE_ALIASES = {
    "soft": EnforcementMode.SOFT,
    "throw": EnforcementMode.SOFT,
    "hard_exit": EnforcementMode.HARD_EXIT,
    "hardExit": EnforcementMode.HARD_EXIT,
    "hardexit": EnforcementMode.HARD_EXIT,
    "kill": EnforcementMode.HARD_EXIT,
    "warn_only": EnforcementMode.WARN_ONLY,
    "warnOnly": EnforcementMode.WARN_ONLY,
    "warnonly": EnforcementMode.WARN_ONLY,
    "notify": EnforcementMode.WARN_ONLY,
}


def validate_limit(limit: Any) -> float:
    """Return limit as a float. Must be > 0; infinity means unlimited.

    Raises:
        ValueError: For non-numeric, NaN, zero or negative limits.
    """
    if isinstance(limit, bool):
        raise ValueError(f"Invalid budget limit: {limit!r}")
    try:
        value = float(limit)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid budget limit: {limit!r}") from None
    if math.isnan(value) or value <= 0:
        raise ValueError(f"Budget limit must be > 0, got {limit!r}")
    return value


def estimated_savings(limit: float, total: float) -> float:
    """Informational figure shown on trip: SAVINGS_MULTIPLE x limit minus spend, floored at 0."""
    if math.isinf(limit):
        return 0.0
    return max(0.0, limit * SAVINGS_MULTIPLE - total)


class BudgetGuard:
    """Tracks spend of observed API calls against a limit and enforces it.

    One instance per budget; instances share no state, so separate subsystems
    (or tests) can each have their own guard.
    """

    def __init__(
        self,
        limit: float,
        mode: Union[str, EnforcementMode] = EnforcementMode.SOFT,
        ledger: Optional[BudgetLedger] = None,
        attributor: Optional[CostAttributor] = None,
        notifier: Optional[WebhookNotifier] = None,
        display: Optional[CostDisplay] = None,
        refresher: Optional[PriceRefresher] = None,
        enabled: bool = True,
        refresh_prices_on_start: bool = True,
        exit_code: int = DEFAULT_EXIT_CODE,
        exit_delay: float = DEFAULT_EXIT_DELAY,
        exit_func: Optional[Callable[[int], Any]] = None,
    ):
        """
        Args:
            limit: Budget ceiling in dollars (> 0, may be float("inf")).
            mode: Action on trip (soft, hard_exit, warn_only or an alias).
            ledger: Running-total store (LocalLedger if None).
            attributor: Payload -> cost attribution (bundled pricing if None).
            notifier: Webhook notifier for trip events (None = no notification).
            display: Cost readout (stderr readout if None).
            refresher: Price refresher used by update_prices() (None = no refresh).
            enabled: Master switch.
            refresh_prices_on_start: start() refreshes prices when True.
            exit_code: Process exit status in hard_exit mode.
            exit_delay: Seconds to wait for output to flush before exiting.
            exit_func: Process terminator (os._exit if None).
        """
        self._limit = validate_limit(limit)
        self._mode = EnforcementMode.parse(mode)
        self.ledger = ledger or LocalLedger()
        self.attributor = attributor or CostAttributor()
        self.notifier = notifier
        self.display = display or CostDisplay()
        self.refresher = refresher
        self.refresh_prices_on_start = refresh_prices_on_start
        self._enabled = enabled
        self._exit_code = exit_code
        self._exit_delay = exit_delay
        self._exit_func = exit_func or os._exit

        self._tripped = False
        self._state_lock = threading.Lock()
        self._background: Set[asyncio.Task] = set()
        self._threads: List[threading.Thread] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # --- State ---

    @property
    def limit(self) -> float:
        return self._limit

    @property
    def mode(self) -> EnforcementMode:
        return self._mode

    @property
    def is_tripped(self) -> bool:
        """True once the budget tripped in this session."""
        with self._state_lock:
            return self._tripped

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def pricing_registry(self) -> PricingRegistry:
        return self.attributor.pricing_registry

    def get_cost(self) -> Optional[float]:
        """Current total in dollars, or None while a healthy shared ledger owns the total."""
        return self.ledger.current_total()

    def get_limit(self) -> float:
        return self._limit

    def set_limit(self, limit: float) -> None:
        """Change the budget ceiling. The new limit applies from the next evaluation."""
        self._limit = validate_limit(limit)

    def set_mode(self, mode: Union[str, EnforcementMode]) -> None:
        self._mode = EnforcementMode.parse(mode)

    def get_logs(self) -> List[AttributedCall]:
        """Copy of the call log, in completion order."""
        return self.ledger.calls()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Connect the shared ledger (if any) and refresh prices."""
        if isinstance(self.ledger, SharedLedger):
            await self.ledger.connect()
        if self.refresh_prices_on_start:
            await self.update_prices()

    def start_sync(self) -> None:
        """start() for hosts without an event loop."""
        self._run_sync(self.start())

    async def update_prices(self) -> bool:
        """Refresh the price table. Never raises; returns True if prices changed."""
        if self.refresher is None:
            return False
        return await self.refresher.refresh()

    async def reset(self) -> None:
        """Start a new session: zero the total (shared counter included), clear logs, un-trip."""
        await self.ledger.reset()
        self._clear_trip()

    def reset_sync(self) -> None:
        """reset() for hosts without an event loop."""
        if isinstance(self.ledger, LocalLedger):
            self.ledger.clear_local()
        else:
            self._run_sync(self.ledger.reset())
        self._clear_trip()

    def disable(self) -> None:
        """Stop attribution and enforcement, and drop local totals and logs."""
        self._enabled = False
        self.ledger.clear_local()
        self._clear_trip()

    def enable(self) -> None:
        """Resume with a fresh local session."""
        self._enabled = True

    def _clear_trip(self) -> None:
        with self._state_lock:
            self._tripped = False

    async def aclose(self) -> None:
        """Wait for pending notifications and close the ledger."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.ledger.aclose()

    def close(self) -> None:
        """Sync counterpart of aclose(); also closes the private event loop."""
        self.wait_for_notifications()
        if isinstance(self.ledger, SharedLedger):
            self._run_sync(self.ledger.aclose())
        if self._loop is not None and not self._loop.is_closed():
            self._loop.close()
        self._loop = None

    def wait_for_notifications(self, timeout: float = 5.0) -> None:
        """Join webhook threads started from sync code."""
        for thread in list(self._threads):
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    # --- Observation ---

    async def observe(
        self,
        payload: Any,
        model_hint: Optional[str] = None,
        source_url: Optional[str] = None,
        source: str = "manual",
    ) -> Optional[AttributedCall]:
        """Attribute, account and enforce one observed payload.

        Returns:
            The AttributedCall, or None if disabled or the payload is not an API response.

        Raises:
            BudgetExceededError: In soft mode, when this call trips the budget.
        """
        if not self._enabled:
            return None
        call = self.attributor.attribute(payload, model_hint, source_url, source)
        if call is None:
            return None
        await self.record(call)
        return call

    def observe_sync(
        self,
        payload: Any,
        model_hint: Optional[str] = None,
        source_url: Optional[str] = None,
        source: str = "manual",
    ) -> Optional[AttributedCall]:
        """observe() for sync hosts (see observe)."""
        if not self._enabled:
            return None
        call = self.attributor.attribute(payload, model_hint, source_url, source)
        if call is None:
            return None
        self.record_sync(call)
        return call

    async def record(self, call: AttributedCall) -> float:
        """Account an already-attributed call and enforce the limit. Returns the new total."""
        total = await self.ledger.increment(call.cost)
        self.ledger.append_call(call)
        self.display.update(total, self._limit)
        self.evaluate(total)
        return total

    def record_sync(self, call: AttributedCall) -> float:
        """record() for sync hosts."""
        if isinstance(self.ledger, LocalLedger):
            total = self.ledger.add(call.cost)
        else:
            total = self._run_sync(self.ledger.increment(call.cost))
        self.ledger.append_call(call)
        self.display.update(total, self._limit)
        self.evaluate(total)
        return total

    def _run_sync(self, coro):
        """Run a ledger coroutine on the guard's private event loop."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            coro.close()
            raise RuntimeError(
                "Sync guard methods cannot run inside an event loop with a shared ledger; "
                "use the async methods (await guard.observe(...))"
            )
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(coro)

    # --- Enforcement ---

    def evaluate(self, total: Optional[float]) -> bool:
        """Compare a running total with the limit and trip on the first crossing.

        Returns:
            True if this evaluation tripped the budget.

        Raises:
            BudgetExceededError: In soft mode, on the tripping evaluation only.
            BudgetKilledError: In hard_exit mode, if the process was not terminated.
        """
        if not self._enabled or total is None or total < self._limit:
            return False

        with self._state_lock:
            already_tripped = self._tripped
            self._tripped = True

        if already_tripped:
            if self._mode is EnforcementMode.WARN_ONLY:
                logger.warning(
                    "Budget still exceeded: spent %s of %s", format_cost(total), format_cost(self._limit, 2)
                )
            return False

        self._trip(total)
        return True

    def _trip(self, total: float) -> None:
        savings = estimated_savings(self._limit, total)
        message = f"COSTGUARD: {TRIP_REASON} - Saved you ~${savings:.2f}"
        logger.warning(
            "%s (spent %s of %s, %.1f%% used, mode %s)",
            message,
            format_cost(total),
            format_cost(self._limit, 2),
            percent_of(total, self._limit),
            self._mode.value,
        )
        self.display.trip_summary(total, self._limit, savings, _MODE_NOTES[self._mode])

        if self._mode is EnforcementMode.HARD_EXIT:
            self._hard_exit(message, total, savings)
            return

        self._dispatch_notification(message, total)
        if self._mode is EnforcementMode.SOFT:
            raise BudgetExceededError(
                message, total_cost=total, limit=self._limit, estimated_savings=savings
            )
        logger.warning("Mode warn_only: continuing execution with cost monitoring")

    def _dispatch_notification(self, message: str, total: float) -> None:
        """Send the webhook in the background: a task under a running loop, else a daemon thread."""
        if self.notifier is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.notifier.send_async(message, total, self._limit))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        else:
            thread = threading.Thread(
                target=self.notifier.send,
                args=(message, total, self._limit),
                name="costguard-webhook",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def _hard_exit(self, message: str, total: float, savings: float) -> None:
        # The process is going away, so the notification is sent inline.
        if self.notifier is not None:
            self.notifier.send(message, total, self._limit)
        for stream in (sys.stdout, sys.stderr):
            if stream is not None:
                stream.flush()
        time.sleep(self._exit_delay)
        self._exit_func(self._exit_code)
        raise BudgetKilledError(
            f"COSTGUARD_KILLED: {message}",
            total_cost=total,
            limit=self._limit,
            estimated_savings=savings,
        )

    def __repr__(self) -> str:
        return (
            f"BudgetGuard(limit={format_cost(self._limit, 2)}, mode={self._mode.value}, "
            f"cost={format_cost(self.get_cost())}, tripped={self.is_tripped})"
        )


_MODE_NOTES = {
    EnforcementMode.SOFT: "Mode soft: raising BudgetExceededError",
    EnforcementMode.HARD_EXIT: "Mode hard_exit: terminating process",
    EnforcementMode.WARN_ONLY: "Mode warn_only: continuing execution",
}
