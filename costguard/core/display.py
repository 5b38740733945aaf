"""Live cost readout and trip summary, rendered with rich."""

import time
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from costguard.core.errors import percent_of
from costguard.utils.helpers import format_cost, format_percentage

# Readout refreshes at most this often (seconds).
DISPLAY_THROTTLE = 0.1


def readout_style(total: float, limit: float) -> tuple[str, str]:
    """(rich style, status label) for the current spend level."""
    if total > limit * 0.9:
        return "bold red", "DANGER"
    if total > limit * 0.8:
        return "bold yellow", "WARNING"
    if total > limit * 0.5:
        return "cyan", ""
    return "green", ""


class CostDisplay:
    """One-line running cost readout on stderr. Silent mode suppresses all output."""

    def __init__(self, console: Optional[Console] = None, silent: bool = False):
        self.console = console or Console(stderr=True)
        self.silent = silent
        self._last_render = 0.0

    def update(self, total: Optional[float], limit: float, force: bool = False) -> None:
        """Render the readout (throttled)."""
        if self.silent or total is None:
            return
        now = time.monotonic()
        if not force and now - self._last_render < DISPLAY_THROTTLE:
            return
        self._last_render = now

        style, status = readout_style(total, limit)
        line = Text()
        line.append(format_cost(total), style=style)
        line.append(f" / {format_cost(limit, 2)} ")
        label = format_percentage(percent_of(total, limit))
        line.append(f"{status} {label}".strip(), style=style)
        self.console.print(line)

    def trip_summary(
        self,
        total: Optional[float],
        limit: float,
        estimated_savings: float,
        mode_note: str,
    ) -> None:
        """Print the budget-exceeded summary panel."""
        if self.silent:
            return
        body = Text()
        body.append(f"Limit:             {format_cost(limit, 2)}\n")
        body.append(f"Spent:             {format_cost(total)}\n", style="cyan")
        if total is not None:
            body.append(f"Budget used:       {format_percentage(percent_of(total, limit))}\n", style="yellow")
        body.append(f"Estimated savings: ~{format_cost(estimated_savings, 2)}\n", style="green")
        body.append(mode_note, style="dim")
        self.console.print(Panel(body, title="COST LIMIT EXCEEDED", border_style="red"))
