"""Scheduling engines.

This package provides:
- Recurrence variants and next-run computation
- Sweeper (import from tidyinbox.engine.sweeper)
- APScheduler driver (import from tidyinbox.engine.scheduler)
"""

from tidyinbox.engine.recurrence import (
    Daily,
    Monthly,
    Recurrence,
    Weekly,
    next_run_after,
    parse_recurrence,
)

__all__ = [
    "Daily",
    "Monthly",
    "Recurrence",
    "Weekly",
    "next_run_after",
    "parse_recurrence",
]
