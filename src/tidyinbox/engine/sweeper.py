"""Sweeper: the unattended, self-rescheduling cleanup driver.

One tick processes every due rule sequentially. Per rule:

    IDLE -> DUE -> FETCHING -> CLASSIFYING -> FILTERING -> EXECUTING
         -> LOGGING -> IDLE (next run scheduled)

Any exception while fetching, classifying or executing moves the rule to
FAILED: the run is logged as failed with the captured message, but the
rule is still rescheduled and the owner is still notified.

Ticks never overlap. A tick that starts while another is still running
returns immediately as skipped; it is not queued.

Each tick generates a UUID4 sweep_id for log correlation.

Usage:
    from tidyinbox.engine.sweeper import Sweeper

    sweeper = Sweeper(store, gateway, credentials, notifier, config)
    result = await sweeper.tick()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from tidyinbox.classifier.engine import ClassificationEngine
from tidyinbox.classifier.types import Confidence, Recommendation
from tidyinbox.core.errors import AuthExpiredError, DatabaseError
from tidyinbox.core.logging import get_logger, log_context, set_correlation_id
from tidyinbox.engine.recurrence import next_run_after
from tidyinbox.gateway import mutation_labels, require_credential
from tidyinbox.notifier import NotificationPayload

if TYPE_CHECKING:
    from tidyinbox.config_schema import AppConfig
    from tidyinbox.db.store import DatabaseStore, RunStatus, ScheduleRule
    from tidyinbox.gateway import CredentialProvider, MailGateway
    from tidyinbox.notifier import Notifier

logger = get_logger(__name__)

# Lowest confidence tier each rule threshold accepts
THRESHOLD_MIN_CONFIDENCE = {
    "high": Confidence.HIGH,
    "medium": Confidence.MEDIUM,
    "all": Confidence.LOW,
}

# Cutoffs are cumulative: anything eligible for delete is also eligible for archive
ACCEPTED_ACTIONS = {
    "archive": frozenset({"archive", "delete"}),
    "delete": frozenset({"delete"}),
}


class RunState(StrEnum):
    IDLE = "idle"
    DUE = "due"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    FILTERING = "filtering"
    EXECUTING = "executing"
    LOGGING = "logging"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class RuleRunResult:
    """Outcome of running one rule within a tick."""

    rule_id: int
    owner_id: str
    status: RunStatus
    items_processed: int = 0
    items_matched: int = 0
    duration_ms: int = 0
    next_run_at: datetime | None = None
    error_message: str | None = None
    log_entry_id: int | None = None
    notified: bool = False


@dataclass
class SweepResult:
    """Outcome of one tick."""

    sweep_id: str | None = None
    skipped: bool = False
    rules_due: int = 0
    duration_ms: int = 0
    runs: list[RuleRunResult] = field(default_factory=list)

    @property
    def items_processed(self) -> int:
        return sum(run.items_processed for run in self.runs)


@dataclass
class _Execution:
    """Internal result of the mutation step."""

    succeeded: int = 0
    failed: int = 0


def filter_recommendations(
    recommendations: Sequence[Recommendation],
    confidence_threshold: str,
    target_action: str,
    category_filter: frozenset[str] | set[str] = frozenset(),
) -> list[Recommendation]:
    """Select the recommendations a rule may act on.

    Unsafe recommendations are always dropped. The remainder must propose
    an action the rule's target action covers (an archive rule also takes
    messages proposed for deletion), meet its confidence threshold and, when
    the rule has a category filter, fall in one of its categories.
    """
    minimum = THRESHOLD_MIN_CONFIDENCE[confidence_threshold]
    accepted = ACCEPTED_ACTIONS[target_action]
    return [
        rec
        for rec in recommendations
        if rec.is_safe
        and rec.action in accepted
        and rec.confidence >= minimum
        and (not category_filter or rec.category in category_filter)
    ]


class Sweeper:
    """Periodic driver that runs due schedule rules against the Mail Gateway.

    Attributes:
        _store: DatabaseStore for rules, logs and sender profiles
        _gateway: MailGateway for listing and mutating messages
        _credentials: CredentialProvider for owner credentials
        _notifier: Notifier for run outcomes
        _config: Application configuration
        _engine: ClassificationEngine for per-message decisions
        _lock: Non-reentrant guard preventing overlapping ticks
    """

    def __init__(
        self,
        store: DatabaseStore,
        gateway: MailGateway,
        credentials: CredentialProvider,
        notifier: Notifier,
        config: AppConfig,
    ):
        self._store = store
        self._gateway = gateway
        self._credentials = credentials
        self._notifier = notifier
        self._lock = asyncio.Lock()
        self.apply_config(config)

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def apply_config(self, config: AppConfig) -> None:
        """Swap in a reloaded config. Takes effect at the next rule run."""
        self._config = config
        self._engine = ClassificationEngine(self._store, config.classifier)

    async def tick(self, now: datetime | None = None) -> SweepResult:
        """Run every due rule once.

        Args:
            now: Tick time (defaults to now); due-ness and next runs use it

        Returns:
            SweepResult; ``skipped=True`` if another tick was still running
        """
        if self._lock.locked():
            logger.info("sweep_skipped", reason="previous sweep still running")
            return SweepResult(skipped=True)

        async with self._lock:
            now = now or datetime.now(UTC)
            sweep_id = str(uuid.uuid4())
            set_correlation_id(sweep_id)
            start_time = time.monotonic()
            result = SweepResult(sweep_id=sweep_id)

            try:
                due_rules = await self._store.get_due_rules(now)
                result.rules_due = len(due_rules)
                logger.info("sweep_start", rules_due=len(due_rules), now=now.isoformat())

                for rule in due_rules:
                    with log_context(rule_id=rule.id, owner_id=rule.owner_id):
                        result.runs.append(await self._run_rule(rule, now))

                result.duration_ms = int((time.monotonic() - start_time) * 1000)
                logger.info(
                    "sweep_complete",
                    rules_due=result.rules_due,
                    items_processed=result.items_processed,
                    failed=sum(1 for run in result.runs if run.status == "failed"),
                    duration_ms=result.duration_ms,
                )
                return result
            finally:
                set_correlation_id(None)

    async def _run_rule(self, rule: ScheduleRule, now: datetime) -> RuleRunResult:
        start_time = time.monotonic()
        self._transition(rule, RunState.DUE)

        status: RunStatus = "success"
        items_processed = 0
        items_matched = 0
        error_message: str | None = None
        needs_reauth = False

        try:
            self._transition(rule, RunState.FETCHING)
            credential = await require_credential(self._credentials, rule.owner_id)
            messages = await self._gateway.list_recent(
                credential, self._config.sweeper.fetch_limit
            )

            if messages:
                self._transition(rule, RunState.CLASSIFYING)
                recommendations = await self._engine.classify(rule.owner_id, messages, now)

                self._transition(rule, RunState.FILTERING)
                selected = filter_recommendations(
                    recommendations,
                    rule.confidence_threshold,
                    rule.target_action,
                    rule.category_filter,
                )
                items_matched = len(selected)

                if selected:
                    self._transition(rule, RunState.EXECUTING)
                    execution = await self._execute(
                        rule, credential, [rec.item_id for rec in selected]
                    )
                    items_processed = execution.succeeded
                    if execution.failed:
                        status = "partial"
                        error_message = (
                            f"{execution.failed} of {items_matched} emails could not be "
                            f"{'archived' if rule.target_action == 'archive' else 'deleted'}"
                        )
            else:
                logger.info("inbox_empty", rule_id=rule.id, owner_id=rule.owner_id)

        except Exception as e:
            self._transition(rule, RunState.FAILED)
            status = "failed"
            items_processed = 0
            error_message = str(e) or type(e).__name__
            needs_reauth = isinstance(e, AuthExpiredError)
            logger.error(
                "rule_run_failed",
                rule_id=rule.id,
                owner_id=rule.owner_id,
                error_type=type(e).__name__,
                error=error_message,
            )

        self._transition(rule, RunState.LOGGING)
        duration_ms = int((time.monotonic() - start_time) * 1000)
        next_run_at = next_run_after(rule.recurrence, now, rule.timezone)

        run = RuleRunResult(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            status=status,
            items_processed=items_processed,
            items_matched=items_matched,
            duration_ms=duration_ms,
            next_run_at=next_run_at,
            error_message=error_message,
        )

        try:
            entry = await self._store.complete_rule_run(
                rule,
                ran_at=now,
                next_run_at=next_run_at,
                items_processed=items_processed,
                status=status,
                error_message=error_message,
                duration_ms=duration_ms,
            )
            run.log_entry_id = entry.id
        except DatabaseError as e:
            logger.error("rule_bookkeeping_failed", rule_id=rule.id, error=str(e))

        run.notified = await self._notify(rule, run, next_run_at, needs_reauth)
        self._transition(rule, RunState.IDLE)

        logger.info(
            "rule_run_complete",
            rule_id=rule.id,
            owner_id=rule.owner_id,
            status=status,
            items_matched=items_matched,
            items_processed=items_processed,
            duration_ms=duration_ms,
            next_run_at=next_run_at.isoformat(),
        )
        return run

    async def _execute(
        self, rule: ScheduleRule, credential: object, item_ids: list[str]
    ) -> _Execution:
        """Submit the rule's mutation in batches with a delay between batches."""
        add_labels, remove_labels = mutation_labels(rule.target_action)
        batch_size = self._config.sweeper.batch_size
        execution = _Execution()

        for index in range(0, len(item_ids), batch_size):
            if index > 0:
                await asyncio.sleep(self._config.sweeper.batch_delay_seconds)
            batch = item_ids[index : index + batch_size]
            outcome = await self._gateway.mutate(
                credential,
                batch,
                add_labels=add_labels,
                remove_labels=remove_labels,
            )
            applied = sum(1 for item_id in batch if outcome.get(item_id))
            execution.succeeded += applied
            execution.failed += len(batch) - applied
            logger.debug(
                "batch_mutated",
                rule_id=rule.id,
                batch_number=index // batch_size + 1,
                applied=applied,
                failed=len(batch) - applied,
            )

        return execution

    async def _notify(
        self,
        rule: ScheduleRule,
        run: RuleRunResult,
        next_run_at: datetime,
        needs_reauth: bool,
    ) -> bool:
        payload = NotificationPayload(
            items_processed=run.items_processed,
            action=rule.target_action,
            duration_ms=run.duration_ms,
            next_run_at=next_run_at,
            status="failed" if run.status == "failed" else "success",
            error_message=run.error_message,
            rule_id=rule.id,
            needs_reauth=needs_reauth,
        )
        try:
            await self._notifier.notify(rule.owner_id, payload)
            return True
        except Exception as e:
            logger.warning(
                "notify_failed",
                rule_id=rule.id,
                owner_id=rule.owner_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def _transition(self, rule: ScheduleRule, state: RunState) -> None:
        logger.debug("rule_state", rule_id=rule.id, state=state.value)
