"""Collaborators that observe API responses and feed them to a BudgetGuard."""

from costguard.observe.httpx_hooks import install
from costguard.observe.log_handler import GuardLogHandler

__all__ = ["install", "GuardLogHandler"]
