"""SQLite database schema and initialization for tidyinbox.

Tables:
- sender_profiles: Per-owner sender engagement history and trust category
- sender_observations: Message ids already counted into a sender profile
- sender_feedback: User agreement/disagreement with suggested actions
- schedule_rules: Recurring automation definitions
- execution_logs: Append-only audit trail of sweep outcomes

Usage:
    from tidyinbox.db.models import init_database

    await init_database("data/tidyinbox.db")
"""

import stat
from pathlib import Path

import aiosqlite

from tidyinbox.core.errors import DatabaseError
from tidyinbox.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

REQUIRED_TABLES = (
    "sender_profiles",
    "sender_observations",
    "sender_feedback",
    "schedule_rules",
    "execution_logs",
)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS sender_profiles (
    owner_id TEXT NOT NULL,
    sender_email TEXT NOT NULL,             -- lowercased address
    domain TEXT NOT NULL,
    total_seen INTEGER DEFAULT 0,
    opened_count INTEGER DEFAULT 0,
    replied_count INTEGER DEFAULT 0,
    archived_count INTEGER DEFAULT 0,
    deleted_count INTEGER DEFAULT 0,
    spam_marked_count INTEGER DEFAULT 0,
    open_rate REAL DEFAULT 0,
    reply_rate REAL DEFAULT 0,
    spam_score REAL DEFAULT 0,
    importance_score REAL DEFAULT 0.5,
    feedback_adjustment REAL DEFAULT 0,     -- accumulated user feedback nudge
    category TEXT DEFAULT 'Unknown',        -- 'VIP', 'Work', 'Personal', 'Newsletter',
                                            -- 'Promotion', 'Spam', 'Unknown'
    is_protected INTEGER DEFAULT 0,
    last_interaction_at DATETIME,
    first_seen_at DATETIME,
    updated_at DATETIME,
    PRIMARY KEY (owner_id, sender_email)
);

CREATE INDEX IF NOT EXISTS idx_sender_profiles_importance
    ON sender_profiles(owner_id, importance_score DESC);
CREATE INDEX IF NOT EXISTS idx_sender_profiles_domain ON sender_profiles(owner_id, domain);

CREATE TABLE IF NOT EXISTS sender_observations (
    owner_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    sender_email TEXT NOT NULL,
    observed_at DATETIME,
    PRIMARY KEY (owner_id, message_id)
);

CREATE TABLE IF NOT EXISTS sender_feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    sender_email TEXT NOT NULL,
    suggested_action TEXT,                  -- what the classifier proposed
    user_action TEXT,                       -- 'kept', 'archived', 'deleted', 'marked_spam'
    agreed INTEGER,
    created_at DATETIME
);

CREATE INDEX IF NOT EXISTS idx_sender_feedback_sender
    ON sender_feedback(owner_id, sender_email);

CREATE TABLE IF NOT EXISTS schedule_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    recurrence_type TEXT NOT NULL,          -- 'daily', 'weekly', 'monthly'
    time_of_day TEXT NOT NULL,              -- 'HH:MM' in the rule's timezone
    day_of_week INTEGER,                    -- 0=Sunday..6=Saturday, weekly only
    day_of_month INTEGER,                   -- 1..31, monthly only
    timezone TEXT NOT NULL DEFAULT 'UTC',
    confidence_threshold TEXT NOT NULL DEFAULT 'high',  -- 'high', 'medium', 'all'
    target_action TEXT NOT NULL DEFAULT 'archive',      -- 'archive', 'delete'
    category_filter_json TEXT,              -- JSON list of categories, NULL = any
    is_active INTEGER DEFAULT 1,
    last_run_at DATETIME,
    next_run_at DATETIME,                   -- UTC ISO timestamp
    total_runs INTEGER DEFAULT 0,
    total_items_processed INTEGER DEFAULT 0,
    created_at DATETIME,
    updated_at DATETIME
);

CREATE INDEX IF NOT EXISTS idx_schedule_rules_due ON schedule_rules(is_active, next_run_at);
CREATE INDEX IF NOT EXISTS idx_schedule_rules_owner ON schedule_rules(owner_id, is_active);

CREATE TABLE IF NOT EXISTS execution_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    rule_id INTEGER NOT NULL REFERENCES schedule_rules(id) ON DELETE CASCADE,
    owner_id TEXT NOT NULL,
    executed_at DATETIME NOT NULL,
    items_processed INTEGER DEFAULT 0,
    action_taken TEXT,
    status TEXT NOT NULL,                   -- 'success', 'failed', 'partial'
    error_message TEXT,
    duration_ms INTEGER
);

CREATE INDEX IF NOT EXISTS idx_execution_logs_rule ON execution_logs(rule_id);
CREATE INDEX IF NOT EXISTS idx_execution_logs_owner ON execution_logs(owner_id, executed_at);

-- Execution log entries are immutable once written
CREATE TRIGGER IF NOT EXISTS trg_execution_logs_no_update
BEFORE UPDATE ON execution_logs
BEGIN
    SELECT RAISE(ABORT, 'execution_logs is append-only');
END;
"""


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode and
    creates all tables, indexes and triggers.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "wal_mode_not_enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # Mailbox metadata is personal data: owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "database_initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables=table_count,
        )

    except aiosqlite.Error as e:
        logger.error("database_init_failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Check that every required table exists.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        True if all tables exist, False otherwise
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("schema_verification_failed", db_path=str(db_path), error=str(e))
        return False

    missing = set(REQUIRED_TABLES) - existing_tables
    if missing:
        logger.warning("missing_database_tables", missing=sorted(missing), db_path=str(db_path))
        return False
    return True
