"""Database store for sender profiles, schedule rules and execution logs.

This module provides the DatabaseStore class that encapsulates all database
operations for tidyinbox. It uses aiosqlite for async access and returns
typed dataclasses.

Usage:
    from tidyinbox.db.store import DatabaseStore

    store = DatabaseStore("data/tidyinbox.db")
    await store.initialize()

    rule = await store.create_schedule_rule(
        owner_id="user-1",
        recurrence=Daily(time(9, 0)),
        timezone="Asia/Manila",
    )
    due = await store.get_due_rules(datetime.now(UTC))
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from tidyinbox.classifier.sender_profiles import (
    apply_feedback,
    apply_observation,
    auto_categorize,
    recompute_metrics,
    set_protected,
)
from tidyinbox.classifier.types import (
    SENDER_CATEGORIES,
    ConfidenceThreshold,
    SenderCategory,
    TargetAction,
)
from tidyinbox.core.errors import DatabaseError, RuleValidationError
from tidyinbox.core.logging import get_logger
from tidyinbox.db.models import init_database
from tidyinbox.engine.recurrence import (
    Recurrence,
    next_run_after,
    parse_recurrence,
    recurrence_fields,
    validate_timezone,
)

logger = get_logger(__name__)

RunStatus = Literal["success", "failed", "partial"]
UserAction = Literal["kept", "archived", "deleted", "marked_spam"]

CONFIDENCE_THRESHOLDS: tuple[ConfidenceThreshold, ...] = ("high", "medium", "all")
TARGET_ACTIONS: tuple[TargetAction, ...] = ("archive", "delete")
RUN_STATUSES: tuple[RunStatus, ...] = ("success", "failed", "partial")

# Fixed-width UTC format so timestamps compare correctly as text in SQL
_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def _to_db_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_TS_FORMAT)


def _from_db_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class SenderProfile:
    """Engagement history and trust category for one (owner, sender) pair."""

    owner_id: str
    sender_email: str
    domain: str
    total_seen: int = 0
    opened_count: int = 0
    replied_count: int = 0
    archived_count: int = 0
    deleted_count: int = 0
    spam_marked_count: int = 0
    open_rate: float = 0.0
    reply_rate: float = 0.0
    spam_score: float = 0.0
    importance_score: float = 0.5
    feedback_adjustment: float = 0.0
    category: SenderCategory = "Unknown"
    is_protected: bool = False
    last_interaction_at: datetime | None = None
    first_seen_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ScheduleRule:
    """A user's recurring cleanup automation."""

    id: int
    owner_id: str
    recurrence: Recurrence
    timezone: str = "UTC"
    confidence_threshold: ConfidenceThreshold = "high"
    target_action: TargetAction = "archive"
    category_filter: frozenset[str] = field(default_factory=frozenset)
    is_active: bool = True
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    total_runs: int = 0
    total_items_processed: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ExecutionLogEntry:
    """One immutable audit record of a rule run."""

    id: int
    rule_id: int
    owner_id: str
    executed_at: datetime
    items_processed: int
    action_taken: str
    status: RunStatus
    error_message: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class SenderObservation:
    """A message sighting to fold into its sender's profile."""

    message_id: str
    sender_email: str
    opened: bool = False
    replied: bool = False


def _domain_of(address: str) -> str:
    return address.rsplit("@", 1)[1].lower() if "@" in address else "unknown"


class DatabaseStore:
    """Async SQLite store backing the sender profile, schedule and log stores.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create tables if needed. Must be called before any other operation."""
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets the PRAGMAs every connection needs:
        - busy_timeout: 10s to ride out the sweeper and CLI writing together
        - foreign_keys: ON so deleting a rule removes its log entries
        - synchronous: NORMAL (safe with WAL, faster writes)
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA synchronous = NORMAL")
            db.row_factory = aiosqlite.Row
            yield db

    # =========================================================================
    # Sender Profile Operations
    # =========================================================================

    async def get_sender_profile(self, owner_id: str, sender_email: str) -> SenderProfile | None:
        """Get one sender profile, or None if the sender was never seen."""
        try:
            async with self._db() as db:
                return await self._fetch_profile(db, owner_id, sender_email.lower())
        except aiosqlite.Error as e:
            logger.error("get_sender_profile_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to get sender profile: {e}") from e

    async def observe_senders(
        self,
        owner_id: str,
        observations: Iterable[SenderObservation],
        now: datetime | None = None,
    ) -> dict[str, SenderProfile]:
        """Fold message sightings into sender profiles.

        Profiles are created lazily on the first sighting of a sender. Each
        message id is counted at most once per owner, so re-classifying the
        same inbox does not inflate engagement counters. Runs as a single
        write transaction (atomic read-modify-write per profile).

        Args:
            owner_id: Mailbox owner
            observations: Sightings from one classification pass
            now: Observation time (defaults to now)

        Returns:
            Dict of sender_email -> current SenderProfile for every sender seen
        """
        now = now or datetime.now(UTC)
        observations = list(observations)
        if not observations:
            return {}

        profiles: dict[str, SenderProfile] = {}
        dirty: set[str] = set()

        try:
            async with self._db() as db:
                await db.execute("BEGIN IMMEDIATE")
                for obs in observations:
                    sender = obs.sender_email.lower()
                    if sender not in profiles:
                        profile = await self._fetch_profile(db, owner_id, sender)
                        if profile is None:
                            profile = SenderProfile(
                                owner_id=owner_id,
                                sender_email=sender,
                                domain=_domain_of(sender),
                                first_seen_at=now,
                            )
                            auto_categorize(profile)
                            recompute_metrics(profile, now)
                            dirty.add(sender)
                        profiles[sender] = profile

                    cursor = await db.execute(
                        """
                        INSERT OR IGNORE INTO sender_observations (
                            owner_id, message_id, sender_email, observed_at
                        ) VALUES (?, ?, ?, ?)
                        """,
                        (owner_id, obs.message_id, sender, _to_db_ts(now)),
                    )
                    if cursor.rowcount == 1:
                        apply_observation(
                            profiles[sender], opened=obs.opened, replied=obs.replied, now=now
                        )
                        dirty.add(sender)

                for sender in dirty:
                    await self._save_profile(db, profiles[sender], now)
                await db.commit()

        except aiosqlite.Error as e:
            logger.error(
                "observe_senders_failed",
                owner_id=owner_id,
                count=len(observations),
                error=str(e),
            )
            raise DatabaseError(f"Failed to update sender profiles: {e}") from e

        logger.debug("senders_observed", owner_id=owner_id, senders=len(profiles), updated=len(dirty))
        return profiles

    async def set_sender_protected(
        self,
        owner_id: str,
        sender_email: str,
        protected: bool = True,
    ) -> SenderProfile:
        """Set the manual protected-sender override.

        Protected senders are always VIP and never touched by cleanup.
        Creates the profile if the sender was never seen.
        """

        def mutate(profile: SenderProfile, now: datetime) -> None:
            set_protected(profile, protected, now)

        profile = await self._modify_profile(owner_id, sender_email, mutate)
        logger.info(
            "sender_protection_changed",
            owner_id=owner_id,
            sender_domain=profile.domain,
            protected=protected,
        )
        return profile

    async def record_feedback(
        self,
        owner_id: str,
        sender_email: str,
        suggested_action: str,
        user_action: UserAction,
        agreed: bool,
    ) -> SenderProfile:
        """Record what the user did with a suggestion and learn from it.

        Args:
            owner_id: Mailbox owner
            sender_email: Sender the suggestion was about
            suggested_action: Action the classifier proposed
            user_action: What the user actually did
            agreed: Whether the user accepted the suggestion

        Returns:
            The updated SenderProfile
        """

        def mutate(profile: SenderProfile, now: datetime) -> None:
            apply_feedback(profile, user_action=user_action, agreed=agreed, now=now)

        async def also(db: aiosqlite.Connection, now: datetime) -> None:
            await db.execute(
                """
                INSERT INTO sender_feedback (
                    owner_id, sender_email, suggested_action, user_action, agreed, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    owner_id,
                    sender_email.lower(),
                    suggested_action,
                    user_action,
                    1 if agreed else 0,
                    _to_db_ts(now),
                ),
            )

        profile = await self._modify_profile(owner_id, sender_email, mutate, also)
        logger.info(
            "sender_feedback_recorded",
            owner_id=owner_id,
            user_action=user_action,
            agreed=agreed,
            importance_score=round(profile.importance_score, 2),
        )
        return profile

    async def list_sender_profiles(
        self,
        owner_id: str,
        category: SenderCategory | None = None,
        limit: int = 50,
    ) -> list[SenderProfile]:
        """List an owner's sender profiles, most important first."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM sender_profiles WHERE owner_id = ?"
                params: list[Any] = [owner_id]
                if category:
                    query += " AND category = ?"
                    params.append(category)
                query += " ORDER BY importance_score DESC, total_seen DESC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                return [self._row_to_sender_profile(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("list_sender_profiles_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to list sender profiles: {e}") from e

    async def _modify_profile(self, owner_id, sender_email, mutate, also=None) -> SenderProfile:
        now = datetime.now(UTC)
        sender = sender_email.lower()
        try:
            async with self._db() as db:
                await db.execute("BEGIN IMMEDIATE")
                profile = await self._fetch_profile(db, owner_id, sender)
                if profile is None:
                    profile = SenderProfile(
                        owner_id=owner_id,
                        sender_email=sender,
                        domain=_domain_of(sender),
                        first_seen_at=now,
                    )
                    auto_categorize(profile)
                mutate(profile, now)
                await self._save_profile(db, profile, now)
                if also is not None:
                    await also(db, now)
                await db.commit()
                return profile

        except aiosqlite.Error as e:
            logger.error("modify_sender_profile_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to update sender profile: {e}") from e

    async def _fetch_profile(
        self, db: aiosqlite.Connection, owner_id: str, sender_email: str
    ) -> SenderProfile | None:
        cursor = await db.execute(
            "SELECT * FROM sender_profiles WHERE owner_id = ? AND sender_email = ?",
            (owner_id, sender_email),
        )
        row = await cursor.fetchone()
        return self._row_to_sender_profile(row) if row else None

    async def _save_profile(
        self, db: aiosqlite.Connection, profile: SenderProfile, now: datetime
    ) -> None:
        profile.updated_at = now
        await db.execute(
            """
            INSERT INTO sender_profiles (
                owner_id, sender_email, domain, total_seen, opened_count, replied_count,
                archived_count, deleted_count, spam_marked_count, open_rate, reply_rate,
                spam_score, importance_score, feedback_adjustment, category, is_protected,
                last_interaction_at, first_seen_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(owner_id, sender_email) DO UPDATE SET
                total_seen = excluded.total_seen,
                opened_count = excluded.opened_count,
                replied_count = excluded.replied_count,
                archived_count = excluded.archived_count,
                deleted_count = excluded.deleted_count,
                spam_marked_count = excluded.spam_marked_count,
                open_rate = excluded.open_rate,
                reply_rate = excluded.reply_rate,
                spam_score = excluded.spam_score,
                importance_score = excluded.importance_score,
                feedback_adjustment = excluded.feedback_adjustment,
                category = excluded.category,
                is_protected = excluded.is_protected,
                last_interaction_at = excluded.last_interaction_at,
                updated_at = excluded.updated_at
            """,
            (
                profile.owner_id,
                profile.sender_email,
                profile.domain,
                profile.total_seen,
                profile.opened_count,
                profile.replied_count,
                profile.archived_count,
                profile.deleted_count,
                profile.spam_marked_count,
                profile.open_rate,
                profile.reply_rate,
                profile.spam_score,
                profile.importance_score,
                profile.feedback_adjustment,
                profile.category,
                1 if profile.is_protected else 0,
                _to_db_ts(profile.last_interaction_at),
                _to_db_ts(profile.first_seen_at),
                _to_db_ts(profile.updated_at),
            ),
        )

    def _row_to_sender_profile(self, row: aiosqlite.Row) -> SenderProfile:
        """Convert a database row to a SenderProfile dataclass."""
        category = row["category"] if row["category"] in SENDER_CATEGORIES else "Unknown"
        return SenderProfile(
            owner_id=row["owner_id"],
            sender_email=row["sender_email"],
            domain=row["domain"],
            total_seen=row["total_seen"],
            opened_count=row["opened_count"],
            replied_count=row["replied_count"],
            archived_count=row["archived_count"],
            deleted_count=row["deleted_count"],
            spam_marked_count=row["spam_marked_count"],
            open_rate=row["open_rate"],
            reply_rate=row["reply_rate"],
            spam_score=row["spam_score"],
            importance_score=row["importance_score"],
            feedback_adjustment=row["feedback_adjustment"],
            category=category,
            is_protected=bool(row["is_protected"]),
            last_interaction_at=_from_db_ts(row["last_interaction_at"]),
            first_seen_at=_from_db_ts(row["first_seen_at"]),
            updated_at=_from_db_ts(row["updated_at"]),
        )

    # =========================================================================
    # Schedule Rule Operations
    # =========================================================================

    async def create_schedule_rule(
        self,
        owner_id: str,
        recurrence: Recurrence,
        timezone: str = "UTC",
        confidence_threshold: ConfidenceThreshold = "high",
        target_action: TargetAction = "archive",
        category_filter: Iterable[str] = (),
        is_active: bool = True,
        now: datetime | None = None,
    ) -> ScheduleRule:
        """Create a schedule rule, validating it and computing its first run.

        Raises:
            RuleValidationError: If any field is invalid
            DatabaseError: If the insert fails
        """
        validate_timezone(timezone)
        if confidence_threshold not in CONFIDENCE_THRESHOLDS:
            raise RuleValidationError(
                f"confidence_threshold must be one of {CONFIDENCE_THRESHOLDS}",
                field="confidence_threshold",
            )
        if target_action not in TARGET_ACTIONS:
            raise RuleValidationError(
                f"target_action must be one of {TARGET_ACTIONS}", field="target_action"
            )
        if not owner_id:
            raise RuleValidationError("owner_id is required", field="owner_id")

        now = now or datetime.now(UTC)
        categories = sorted(set(category_filter))
        next_run = next_run_after(recurrence, now, timezone)
        recurrence_type, time_of_day, day_of_week, day_of_month = recurrence_fields(recurrence)

        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO schedule_rules (
                        owner_id, recurrence_type, time_of_day, day_of_week, day_of_month,
                        timezone, confidence_threshold, target_action, category_filter_json,
                        is_active, next_run_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        owner_id,
                        recurrence_type,
                        time_of_day,
                        day_of_week,
                        day_of_month,
                        timezone,
                        confidence_threshold,
                        target_action,
                        json.dumps(categories) if categories else None,
                        1 if is_active else 0,
                        _to_db_ts(next_run),
                        _to_db_ts(now),
                        _to_db_ts(now),
                    ),
                )
                await db.commit()
                rule_id = cursor.lastrowid

        except aiosqlite.Error as e:
            logger.error("create_schedule_rule_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError(f"Failed to create schedule rule: {e}") from e

        logger.info(
            "schedule_rule_created",
            rule_id=rule_id,
            owner_id=owner_id,
            recurrence=recurrence.describe(),
            next_run_at=next_run.isoformat(),
        )
        rule = await self.get_schedule_rule(rule_id)
        if rule is None:
            raise DatabaseError(f"Schedule rule {rule_id} was not found after insert")
        return rule

    async def get_schedule_rule(self, rule_id: int) -> ScheduleRule | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM schedule_rules WHERE id = ?", (rule_id,))
                row = await cursor.fetchone()
                return self._row_to_schedule_rule(row) if row else None
        except aiosqlite.Error as e:
            logger.error("get_schedule_rule_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError(f"Failed to get schedule rule: {e}") from e

    async def list_schedule_rules(self, owner_id: str | None = None) -> list[ScheduleRule]:
        """List schedule rules, optionally for a single owner."""
        try:
            async with self._db() as db:
                if owner_id:
                    cursor = await db.execute(
                        "SELECT * FROM schedule_rules WHERE owner_id = ? ORDER BY id",
                        (owner_id,),
                    )
                else:
                    cursor = await db.execute("SELECT * FROM schedule_rules ORDER BY id")
                return [self._row_to_schedule_rule(row) for row in await cursor.fetchall()]
        except aiosqlite.Error as e:
            logger.error("list_schedule_rules_failed", error=str(e))
            raise DatabaseError(f"Failed to list schedule rules: {e}") from e

    async def get_due_rules(self, now: datetime) -> list[ScheduleRule]:
        """Active rules whose next run is at or before ``now``, oldest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM schedule_rules
                    WHERE is_active = 1 AND next_run_at IS NOT NULL AND next_run_at <= ?
                    ORDER BY next_run_at, id
                    """,
                    (_to_db_ts(now),),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("get_due_rules_failed", error=str(e))
            raise DatabaseError(f"Failed to get due schedule rules: {e}") from e

        # A malformed row is skipped so it cannot stall every other owner's rules
        rules = []
        for row in rows:
            try:
                rule = self._row_to_schedule_rule(row)
                self._check_stored_rule(rule)
            except RuleValidationError as e:
                logger.warning(
                    "schedule_rule_skipped",
                    rule_id=row["id"],
                    owner_id=row["owner_id"],
                    field=e.field,
                    error=str(e),
                )
                continue
            rules.append(rule)
        return rules

    def _check_stored_rule(self, rule: ScheduleRule) -> None:
        """Validate the fields a sweep relies on that the row decoder does not."""
        validate_timezone(rule.timezone)
        if rule.confidence_threshold not in CONFIDENCE_THRESHOLDS:
            raise RuleValidationError(
                f"Unknown confidence_threshold {rule.confidence_threshold!r}",
                field="confidence_threshold",
            )
        if rule.target_action not in TARGET_ACTIONS:
            raise RuleValidationError(
                f"Unknown target_action {rule.target_action!r}", field="target_action"
            )

    async def set_rule_active(
        self,
        rule_id: int,
        is_active: bool,
        now: datetime | None = None,
    ) -> ScheduleRule | None:
        """Enable or disable a rule.

        Re-enabling recomputes next_run_at from now so a rule that was off for
        a while does not fire immediately for occurrences it missed.

        Returns:
            The updated rule, or None if it does not exist
        """
        rule = await self.get_schedule_rule(rule_id)
        if rule is None:
            return None

        now = now or datetime.now(UTC)
        next_run = rule.next_run_at
        if is_active and not rule.is_active:
            next_run = next_run_after(rule.recurrence, now, rule.timezone)

        try:
            async with self._db() as db:
                await db.execute(
                    """
                    UPDATE schedule_rules
                    SET is_active = ?, next_run_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (1 if is_active else 0, _to_db_ts(next_run), _to_db_ts(now), rule_id),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("set_rule_active_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError(f"Failed to update schedule rule: {e}") from e

        logger.info("schedule_rule_active_changed", rule_id=rule_id, is_active=is_active)
        return await self.get_schedule_rule(rule_id)

    async def delete_schedule_rule(self, rule_id: int) -> bool:
        """Delete a rule and its execution history. Returns False if not found."""
        try:
            async with self._db() as db:
                cursor = await db.execute("DELETE FROM schedule_rules WHERE id = ?", (rule_id,))
                await db.commit()
                return cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error("delete_schedule_rule_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError(f"Failed to delete schedule rule: {e}") from e

    async def complete_rule_run(
        self,
        rule: ScheduleRule,
        *,
        ran_at: datetime,
        next_run_at: datetime,
        items_processed: int,
        status: RunStatus,
        error_message: str | None,
        duration_ms: int,
    ) -> ExecutionLogEntry:
        """Append the execution log entry and update run bookkeeping atomically.

        Only the sweeper-owned columns are written (last-write-wins on those);
        user edits to other columns made during the run are preserved. Counters
        are incremented in SQL so concurrent edits cannot lose a run.

        Returns:
            The written ExecutionLogEntry
        """
        if status not in RUN_STATUSES:
            raise ValueError(f"Invalid run status: {status}")

        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO execution_logs (
                        rule_id, owner_id, executed_at, items_processed, action_taken,
                        status, error_message, duration_ms
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rule.id,
                        rule.owner_id,
                        _to_db_ts(ran_at),
                        items_processed,
                        rule.target_action,
                        status,
                        error_message,
                        duration_ms,
                    ),
                )
                log_id = cursor.lastrowid
                await db.execute(
                    """
                    UPDATE schedule_rules
                    SET last_run_at = ?,
                        next_run_at = ?,
                        total_runs = total_runs + 1,
                        total_items_processed = total_items_processed + ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        _to_db_ts(ran_at),
                        _to_db_ts(next_run_at),
                        items_processed,
                        _to_db_ts(ran_at),
                        rule.id,
                    ),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("complete_rule_run_failed", rule_id=rule.id, error=str(e))
            raise DatabaseError(f"Failed to record rule run: {e}") from e

        return ExecutionLogEntry(
            id=log_id,
            rule_id=rule.id,
            owner_id=rule.owner_id,
            executed_at=ran_at,
            items_processed=items_processed,
            action_taken=rule.target_action,
            status=status,
            error_message=error_message,
            duration_ms=duration_ms,
        )

    def _row_to_schedule_rule(self, row: aiosqlite.Row) -> ScheduleRule:
        """Convert a database row to a ScheduleRule dataclass."""
        categories: frozenset[str] = frozenset()
        if row["category_filter_json"]:
            try:
                categories = frozenset(json.loads(row["category_filter_json"]))
            except json.JSONDecodeError:
                logger.warning("invalid_category_filter", rule_id=row["id"])

        return ScheduleRule(
            id=row["id"],
            owner_id=row["owner_id"],
            recurrence=parse_recurrence(
                row["recurrence_type"],
                row["time_of_day"],
                row["day_of_week"],
                row["day_of_month"],
            ),
            timezone=row["timezone"],
            confidence_threshold=row["confidence_threshold"],
            target_action=row["target_action"],
            category_filter=categories,
            is_active=bool(row["is_active"]),
            last_run_at=_from_db_ts(row["last_run_at"]),
            next_run_at=_from_db_ts(row["next_run_at"]),
            total_runs=row["total_runs"],
            total_items_processed=row["total_items_processed"],
            created_at=_from_db_ts(row["created_at"]),
            updated_at=_from_db_ts(row["updated_at"]),
        )

    # =========================================================================
    # Execution Log Operations
    # =========================================================================

    async def get_execution_logs(
        self,
        rule_id: int | None = None,
        owner_id: str | None = None,
        limit: int = 50,
    ) -> list[ExecutionLogEntry]:
        """Get execution log entries, newest first, with optional filters."""
        try:
            async with self._db() as db:
                query = "SELECT * FROM execution_logs WHERE 1=1"
                params: list[Any] = []
                if rule_id is not None:
                    query += " AND rule_id = ?"
                    params.append(rule_id)
                if owner_id:
                    query += " AND owner_id = ?"
                    params.append(owner_id)
                query += " ORDER BY executed_at DESC, id DESC LIMIT ?"
                params.append(limit)

                cursor = await db.execute(query, params)
                return [self._row_to_execution_log(row) for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("get_execution_logs_failed", error=str(e))
            raise DatabaseError(f"Failed to get execution logs: {e}") from e

    async def count_execution_logs(self, rule_id: int) -> int:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT COUNT(*) AS count FROM execution_logs WHERE rule_id = ?", (rule_id,)
                )
                row = await cursor.fetchone()
                return row["count"] if row else 0
        except aiosqlite.Error as e:
            logger.error("count_execution_logs_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError(f"Failed to count execution logs: {e}") from e

    def _row_to_execution_log(self, row: aiosqlite.Row) -> ExecutionLogEntry:
        """Convert a database row to an ExecutionLogEntry dataclass."""
        return ExecutionLogEntry(
            id=row["id"],
            rule_id=row["rule_id"],
            owner_id=row["owner_id"],
            executed_at=_from_db_ts(row["executed_at"]) or datetime.now(UTC),
            items_processed=row["items_processed"],
            action_taken=row["action_taken"],
            status=row["status"],
            error_message=row["error_message"],
            duration_ms=row["duration_ms"] or 0,
        )
