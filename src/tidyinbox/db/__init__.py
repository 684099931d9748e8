"""Database layer for tidyinbox.

This module provides SQLite database access with async operations.

Usage:
    from tidyinbox.db import DatabaseStore

    store = DatabaseStore("data/tidyinbox.db")
    await store.initialize()

    rules = await store.get_due_rules(datetime.now(UTC))
"""

from tidyinbox.db.models import (
    SCHEMA_VERSION,
    init_database,
    verify_schema,
)
from tidyinbox.db.store import (
    DatabaseStore,
    ExecutionLogEntry,
    ScheduleRule,
    SenderObservation,
    SenderProfile,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    # Dataclasses
    "ExecutionLogEntry",
    "ScheduleRule",
    "SenderObservation",
    "SenderProfile",
]
