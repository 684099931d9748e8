"""Rule-based classification engine.

Scores each message with an ordered table of named, weighted predicates and
forms suggestion groups from the per-message recommendations.

Pipeline per message:
1. Record the sighting against the sender's profile (always, even for keep)
2. Evaluate the safety gate (every never-act predicate, unconditionally)
3. Sum the weights of every scoring predicate that holds, clamp to 0..100
4. Map the score to a confidence tier and, for safe messages only, an action

The safety gate can only suppress an action. A message that fails it is
always ``keep``, whatever its score.

Usage:
    from tidyinbox.classifier.engine import ClassificationEngine

    engine = ClassificationEngine(store, config.classifier)
    recommendations = await engine.classify("user-1", messages)
    report = await engine.analyze_grouped("user-1", messages)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tidyinbox.classifier.signals import LOW_VALUE_CATEGORIES, SignalDetector
from tidyinbox.classifier.types import (
    Action,
    AnalysisReport,
    Confidence,
    GroupAction,
    GroupReason,
    GroupSafety,
    MessageMetadata,
    Recommendation,
    SafetyCheck,
    SafetyCheckId,
    ScoringFactor,
    SuggestionGroup,
)
from tidyinbox.core.logging import get_logger
from tidyinbox.db.store import SenderObservation

if TYPE_CHECKING:
    from tidyinbox.config_schema import ClassifierConfig
    from tidyinbox.db.store import DatabaseStore, SenderProfile

logger = get_logger(__name__)

NEUTRAL_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

# Score -> confidence tier, shared by grouping and the sweeper
VERY_HIGH_CUTOFF = 95
HIGH_CUTOFF = 80
MEDIUM_CUTOFF = 60

# Score -> action for messages that passed the safety gate
DELETE_CUTOFF = 95
ARCHIVE_CUTOFF = 50

LOW_IMPORTANCE_THRESHOLD = 0.3
ENGAGED_OPEN_RATE = 0.7
RECURRING_SENDER_MIN = 5


def confidence_for_score(score: float) -> Confidence:
    """Map a 0-100 score to its confidence tier."""
    if score >= VERY_HIGH_CUTOFF:
        return Confidence.VERY_HIGH
    if score >= HIGH_CUTOFF:
        return Confidence.HIGH
    if score >= MEDIUM_CUTOFF:
        return Confidence.MEDIUM
    return Confidence.LOW


@dataclass(frozen=True, slots=True)
class MessageFeatures:
    """Everything the safety gate and scoring rules look at for one message."""

    age_in_days: int
    is_unread: bool
    replied: bool
    has_unsubscribe: bool
    is_promotional: bool
    has_important_keywords: bool
    is_human: bool
    is_protected: bool
    sender_category: str
    sender_importance: float
    sender_open_rate: float
    message_category: str = "Unknown"


@dataclass(frozen=True, slots=True)
class ScoringRule:
    factor: ScoringFactor
    weight: int
    applies: Callable[[MessageFeatures, ClassifierConfig], bool]


# Evaluated in order; every rule that applies contributes its weight
SCORING_RULES: tuple[ScoringRule, ...] = (
    ScoringRule(ScoringFactor.UNSUBSCRIBE_TEXT, 8, lambda f, c: f.has_unsubscribe),
    ScoringRule(ScoringFactor.PROMOTIONAL_CONTENT, 8, lambda f, c: f.is_promotional),
    ScoringRule(
        ScoringFactor.LOW_VALUE_SENDER,
        8,
        lambda f, c: f.sender_category in LOW_VALUE_CATEGORIES
        or f.message_category in LOW_VALUE_CATEGORIES,
    ),
    ScoringRule(ScoringFactor.OLD, 10, lambda f, c: f.age_in_days >= c.old_email_days),
    ScoringRule(ScoringFactor.VERY_OLD, 10, lambda f, c: f.age_in_days >= c.very_old_email_days),
    ScoringRule(ScoringFactor.UNREAD, 8, lambda f, c: f.is_unread),
    ScoringRule(
        ScoringFactor.LOW_SENDER_IMPORTANCE,
        6,
        lambda f, c: f.sender_importance < LOW_IMPORTANCE_THRESHOLD,
    ),
    ScoringRule(ScoringFactor.IMPORTANT_KEYWORDS, -40, lambda f, c: f.has_important_keywords),
    ScoringRule(ScoringFactor.HUMAN_SENDER, -30, lambda f, c: f.is_human),
    ScoringRule(ScoringFactor.RECENT, -20, lambda f, c: f.age_in_days < c.recent_email_days),
    ScoringRule(ScoringFactor.REPLIED, -40, lambda f, c: f.replied),
    ScoringRule(
        ScoringFactor.VIP_SENDER,
        -30,
        lambda f, c: f.is_protected or f.sender_category == "VIP",
    ),
    ScoringRule(
        ScoringFactor.ENGAGED_SENDER,
        -10,
        lambda f, c: f.sender_open_rate > ENGAGED_OPEN_RATE,
    ),
)

# Never-act predicates; any one failing makes the message unsafe
SAFETY_CHECKS: tuple[tuple[SafetyCheckId, Callable[[MessageFeatures, ClassifierConfig], bool]], ...] = (
    (SafetyCheckId.REPLIED_TO, lambda f, c: f.replied),
    (SafetyCheckId.HUMAN_SENDER, lambda f, c: f.is_human),
    (SafetyCheckId.IMPORTANT_KEYWORDS, lambda f, c: f.has_important_keywords),
    (SafetyCheckId.TOO_RECENT, lambda f, c: f.age_in_days < c.recent_email_days),
    (SafetyCheckId.PROTECTED_SENDER, lambda f, c: f.is_protected),
)


def evaluate_safety(features: MessageFeatures, config: ClassifierConfig) -> SafetyCheck:
    """Run every safety predicate and collect the ones that fail."""
    failed = tuple(check for check, fails in SAFETY_CHECKS if fails(features, config))
    return SafetyCheck(is_safe=not failed, failed_checks=failed)


def score_features(
    features: MessageFeatures, config: ClassifierConfig
) -> tuple[int, tuple[ScoringFactor, ...]]:
    """Sum the weights of the applicable scoring rules.

    Returns:
        Tuple of (score clamped to 0..100, factors that applied)
    """
    total = NEUTRAL_SCORE
    factors = []
    for rule in SCORING_RULES:
        if rule.applies(features, config):
            total += rule.weight
            factors.append(rule.factor)
    return max(MIN_SCORE, min(MAX_SCORE, total)), tuple(factors)


def decide_action(score: int, safety: SafetyCheck, sender_category: str) -> Action:
    if not safety.is_safe:
        return "keep"
    if sender_category == "Spam" and score >= ARCHIVE_CUTOFF:
        return "mark_spam"
    if score >= DELETE_CUTOFF:
        return "delete"
    if score >= ARCHIVE_CUTOFF:
        return "archive"
    return "keep"


class ClassificationEngine:
    """Scores messages and groups them into safety-gated suggestions.

    Attributes:
        _store: DatabaseStore holding sender profiles
        _config: Classifier thresholds and keyword lists
        _signals: Keyword and sender signal detector
    """

    def __init__(self, store: DatabaseStore, config: ClassifierConfig):
        self._store = store
        self._config = config
        self._signals = SignalDetector(config)

    async def classify(
        self,
        owner_id: str,
        messages: Sequence[MessageMetadata],
        now: datetime | None = None,
    ) -> list[Recommendation]:
        """Produce one recommendation per message.

        Updates the owners' sender profiles as a side effect, independent of
        whether any action is recommended.

        Args:
            owner_id: Mailbox owner
            messages: Message metadata from the Mail Gateway
            now: Reference time for age computation (defaults to now)

        Returns:
            Recommendations in input order
        """
        now = now or datetime.now(UTC)
        if not messages:
            return []

        profiles = await self._store.observe_senders(
            owner_id,
            (
                SenderObservation(
                    message_id=message.id,
                    sender_email=message.sender_email,
                    opened=not message.is_unread,
                    replied=message.replied,
                )
                for message in messages
            ),
            now=now,
        )

        recommendations = [
            self._recommend(message, profiles.get(message.sender_email), now)
            for message in messages
        ]

        logger.info(
            "messages_classified",
            owner_id=owner_id,
            count=len(recommendations),
            unsafe=sum(1 for r in recommendations if not r.is_safe),
            actionable=sum(1 for r in recommendations if r.action != "keep"),
        )
        return recommendations

    async def analyze_grouped(
        self,
        owner_id: str,
        messages: Sequence[MessageMetadata],
        now: datetime | None = None,
    ) -> AnalysisReport:
        """Classify messages and bucket them into suggestion groups."""
        recommendations = await self.classify(owner_id, messages, now)
        groups = self.build_groups(recommendations)

        statistics = {
            "total_analyzed": len(recommendations),
            "total_groups": len(groups),
            "high_confidence": sum(1 for g in groups if g.confidence >= Confidence.HIGH),
            "safe_to_act": sum(1 for g in groups if g.safety_check.is_safe),
        }
        logger.info("grouped_analysis_complete", owner_id=owner_id, **statistics)
        return AnalysisReport(
            recommendations=tuple(recommendations),
            groups=tuple(groups),
            statistics=statistics,
        )

    def build_groups(self, recommendations: Sequence[Recommendation]) -> list[SuggestionGroup]:
        """Bucket recommendations by (sender domain, category).

        Buckets smaller than the configured minimum are dropped. A bucket with
        any unsafe member is still reported, but with no suggested actions.
        """
        buckets: dict[tuple[str, str], list[Recommendation]] = defaultdict(list)
        for recommendation in recommendations:
            buckets[(recommendation.sender_domain, recommendation.category)].append(recommendation)

        groups = [
            self._build_group(domain, category, members)
            for (domain, category), members in buckets.items()
            if len(members) >= self._config.min_group_size
        ]
        groups.sort(
            key=lambda g: (g.confidence != Confidence.VERY_HIGH, -len(g.members))
        )
        return groups

    def _features(
        self, message: MessageMetadata, profile: SenderProfile | None, now: datetime
    ) -> MessageFeatures:
        sender_email = message.sender_email
        return MessageFeatures(
            age_in_days=message.age_in_days(now),
            is_unread=message.is_unread,
            replied=message.replied,
            has_unsubscribe=self._signals.has_unsubscribe(message.snippet),
            is_promotional=self._signals.is_promotional(
                sender_email, message.subject, message.snippet
            ),
            has_important_keywords=self._signals.has_important_keywords(
                message.subject, message.snippet
            ),
            is_human=self._signals.is_human_sender(sender_email, profile),
            is_protected=profile.is_protected if profile else False,
            sender_category=profile.category if profile else "Unknown",
            sender_importance=profile.importance_score if profile else 0.5,
            sender_open_rate=profile.open_rate if profile else 0.0,
            message_category=self._signals.categorize_message(
                sender_email, message.subject, profile
            ),
        )

    def _recommend(
        self, message: MessageMetadata, profile: SenderProfile | None, now: datetime
    ) -> Recommendation:
        features = self._features(message, profile, now)
        safety = evaluate_safety(features, self._config)
        score, factors = score_features(features, self._config)
        action = decide_action(score, safety, features.sender_category)

        return Recommendation(
            item_id=message.id,
            sender=message.sender,
            sender_domain=message.sender_domain,
            subject=message.subject,
            age_in_days=features.age_in_days,
            score=score,
            confidence=confidence_for_score(score),
            action=action,
            category=features.message_category,
            safety=safety,
            factors=factors,
            is_unopened=features.is_unread,
            has_unsubscribe=features.has_unsubscribe,
        )

    def _build_group(
        self, domain: str, category: str, members: list[Recommendation]
    ) -> SuggestionGroup:
        average_age = round(sum(m.age_in_days for m in members) / len(members))
        average_score = sum(m.score for m in members) / len(members)
        unsafe_count = sum(1 for m in members if not m.is_safe)

        if unsafe_count:
            return SuggestionGroup(
                sender_domain=domain,
                category=category,
                members=tuple(members),
                confidence=Confidence.LOW,
                suggested_actions=(),
                safety_check=GroupSafety(is_safe=False, unsafe_count=unsafe_count),
                reasons=(GroupReason.CONTAINS_IMPORTANT,),
                average_age=average_age,
                average_score=average_score,
            )

        all_old_unopened = all(
            m.is_unopened and m.age_in_days >= self._config.old_email_days for m in members
        )
        confidence = confidence_for_score(average_score)
        if confidence == Confidence.VERY_HIGH and not all_old_unopened:
            confidence = Confidence.HIGH

        actions = [GroupAction.ARCHIVE_ALL]
        if (
            confidence == Confidence.VERY_HIGH
            and category == "Promotion"
            and average_age >= self._config.very_old_email_days
        ):
            actions.append(GroupAction.DELETE_ALL)
        has_unsubscribe = any(m.has_unsubscribe for m in members)
        if has_unsubscribe and confidence >= Confidence.MEDIUM:
            actions.append(GroupAction.UNSUBSCRIBE)

        reasons = []
        if all_old_unopened:
            reasons.append(GroupReason.UNOPENED_OLD)
        if len(members) >= RECURRING_SENDER_MIN:
            reasons.append(GroupReason.RECURRING_SENDER)
        if all(ScoringFactor.LOW_SENDER_IMPORTANCE in m.factors or m.is_unopened for m in members):
            reasons.append(GroupReason.LOW_ENGAGEMENT)
        if has_unsubscribe and any(ScoringFactor.PROMOTIONAL_CONTENT in m.factors for m in members):
            reasons.append(GroupReason.PROMOTIONAL_CONTENT)

        return SuggestionGroup(
            sender_domain=domain,
            category=category,
            members=tuple(members),
            confidence=confidence,
            suggested_actions=tuple(actions),
            safety_check=GroupSafety(is_safe=True),
            reasons=tuple(reasons),
            average_age=average_age,
            average_score=average_score,
        )
