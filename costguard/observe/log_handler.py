"""Logging handler that charges response objects passing through log calls.

Agent frameworks often log raw API responses; attaching GuardLogHandler to their
logger puts those calls on the budget without touching the framework:

    logging.getLogger("agent").addHandler(GuardLogHandler(guard))
"""

import logging
from collections.abc import Mapping
from typing import Any, List

from costguard.core.attributor import looks_like_response
from costguard.core.errors import BudgetExceededError
from costguard.core.guard import BudgetGuard

SOURCE = "logging"


class GuardLogHandler(logging.Handler):
    """Feeds response-like log message objects and arguments to guard.observe_sync()."""

    def __init__(self, guard: BudgetGuard, level: int = logging.NOTSET):
        super().__init__(level)
        self.guard = guard

    @staticmethod
    def candidates(record: logging.LogRecord) -> List[Any]:
        """Message object and arguments of a record that look like API responses."""
        items: List[Any] = []
        if not isinstance(record.msg, str):
            items.append(record.msg)
        args = record.args
        # logging collapses a single mapping argument into record.args itself
        if isinstance(args, Mapping):
            items.append(args)
        elif isinstance(args, tuple):
            items.extend(args)

        seen = set()
        found = []
        for item in items:
            if id(item) in seen or not looks_like_response(item):
                continue
            seen.add(id(item))
            found.append(item)
        return found

    def emit(self, record: logging.LogRecord) -> None:
        try:
            for payload in self.candidates(record):
                self.guard.observe_sync(payload, source=SOURCE)
        except BudgetExceededError:
            raise
        except Exception:
            self.handleError(record)
