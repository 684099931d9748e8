"""Tests for the classification engine.

Covers the safety gate, weighted scoring, action/confidence mapping, grouping
rules and the sender profile side effect of classification.
"""

from datetime import UTC, datetime, timedelta

import pytest

from tidyinbox.classifier.engine import (
    ClassificationEngine,
    MessageFeatures,
    confidence_for_score,
    decide_action,
    evaluate_safety,
    score_features,
)
from tidyinbox.classifier.types import (
    Confidence,
    GroupAction,
    GroupReason,
    MessageMetadata,
    SafetyCheck,
    SafetyCheckId,
    ScoringFactor,
)
from tidyinbox.config_schema import ClassifierConfig
from tidyinbox.db.store import DatabaseStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


def _message(
    msg_id: str,
    sender: str = "Shop Deals <promo@shop.example>",
    subject: str = "Big sale this weekend",
    snippet: str = "Save on shoes. Unsubscribe anytime.",
    age_days: int = 40,
    unread: bool = True,
    replied: bool = False,
) -> MessageMetadata:
    """Create a MessageMetadata received ``age_days`` before NOW."""
    return MessageMetadata(
        id=msg_id,
        sender=sender,
        subject=subject,
        snippet=snippet,
        date=NOW - timedelta(days=age_days),
        labels=("INBOX", "UNREAD") if unread else ("INBOX",),
        replied=replied,
    )


def _features(**overrides) -> MessageFeatures:
    values = {
        "age_in_days": 40,
        "is_unread": True,
        "replied": False,
        "has_unsubscribe": True,
        "is_promotional": True,
        "has_important_keywords": False,
        "is_human": False,
        "is_protected": False,
        "sender_category": "Promotion",
        "sender_importance": 0.5,
        "sender_open_rate": 0.0,
    }
    values.update(overrides)
    return MessageFeatures(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(store: DatabaseStore, classifier_config: ClassifierConfig) -> ClassificationEngine:
    return ClassificationEngine(store, classifier_config)


# ---------------------------------------------------------------------------
# Pure scoring and safety
# ---------------------------------------------------------------------------


class TestConfidenceTiers:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (100, Confidence.VERY_HIGH),
            (95, Confidence.VERY_HIGH),
            (94, Confidence.HIGH),
            (90, Confidence.HIGH),
            (80, Confidence.HIGH),
            (70, Confidence.MEDIUM),
            (60, Confidence.MEDIUM),
            (50, Confidence.LOW),
            (0, Confidence.LOW),
        ],
    )
    def test_score_to_tier(self, score: int, expected: Confidence) -> None:
        assert confidence_for_score(score) == expected

    def test_tiers_are_ordered(self) -> None:
        assert Confidence.VERY_HIGH > Confidence.HIGH > Confidence.MEDIUM > Confidence.LOW


class TestSafetyGate:
    def test_clean_promotion_is_safe(self, classifier_config: ClassifierConfig) -> None:
        assert evaluate_safety(_features(), classifier_config) == SafetyCheck(is_safe=True)

    @pytest.mark.parametrize(
        ("overrides", "check"),
        [
            ({"replied": True}, SafetyCheckId.REPLIED_TO),
            ({"is_human": True}, SafetyCheckId.HUMAN_SENDER),
            ({"has_important_keywords": True}, SafetyCheckId.IMPORTANT_KEYWORDS),
            ({"age_in_days": 3}, SafetyCheckId.TOO_RECENT),
            ({"is_protected": True}, SafetyCheckId.PROTECTED_SENDER),
        ],
    )
    def test_each_predicate_fails_safety(
        self, classifier_config: ClassifierConfig, overrides: dict, check: SafetyCheckId
    ) -> None:
        safety = evaluate_safety(_features(**overrides), classifier_config)
        assert safety.is_safe is False
        assert safety.failed_check == check
        assert safety.reason == check.description

    def test_all_failing_predicates_are_listed(self, classifier_config: ClassifierConfig) -> None:
        safety = evaluate_safety(
            _features(replied=True, has_important_keywords=True, age_in_days=1),
            classifier_config,
        )
        assert safety.failed_checks == (
            SafetyCheckId.REPLIED_TO,
            SafetyCheckId.IMPORTANT_KEYWORDS,
            SafetyCheckId.TOO_RECENT,
        )

    def test_no_score_overrides_failed_safety(self) -> None:
        unsafe = SafetyCheck(is_safe=False, failed_checks=(SafetyCheckId.REPLIED_TO,))
        assert decide_action(100, unsafe, "Promotion") == "keep"
        assert decide_action(100, unsafe, "Spam") == "keep"


class TestScoring:
    def test_old_unread_promotion(self, classifier_config: ClassifierConfig) -> None:
        score, factors = score_features(_features(), classifier_config)
        assert score == 92
        assert factors == (
            ScoringFactor.UNSUBSCRIBE_TEXT,
            ScoringFactor.PROMOTIONAL_CONTENT,
            ScoringFactor.LOW_VALUE_SENDER,
            ScoringFactor.OLD,
            ScoringFactor.UNREAD,
        )

    def test_score_clamped_to_100(self, classifier_config: ClassifierConfig) -> None:
        score, factors = score_features(
            _features(age_in_days=200, sender_importance=0.1), classifier_config
        )
        assert score == 100
        assert ScoringFactor.VERY_OLD in factors
        assert ScoringFactor.LOW_SENDER_IMPORTANCE in factors

    def test_score_clamped_to_zero(self, classifier_config: ClassifierConfig) -> None:
        score, _ = score_features(
            _features(
                has_unsubscribe=False,
                is_promotional=False,
                sender_category="VIP",
                age_in_days=1,
                is_unread=False,
                replied=True,
                is_human=True,
                has_important_keywords=True,
            ),
            classifier_config,
        )
        assert score == 0

    def test_engaged_sender_lowers_score(self, classifier_config: ClassifierConfig) -> None:
        base, _ = score_features(_features(), classifier_config)
        engaged, factors = score_features(_features(sender_open_rate=0.9), classifier_config)
        assert engaged == base - 10
        assert ScoringFactor.ENGAGED_SENDER in factors

    def test_message_category_marks_low_value(self, classifier_config: ClassifierConfig) -> None:
        _, factors = score_features(
            _features(sender_category="Unknown", message_category="Promotion"),
            classifier_config,
        )
        assert ScoringFactor.LOW_VALUE_SENDER in factors

        _, factors = score_features(
            _features(sender_category="Unknown", message_category="Job Alert"),
            classifier_config,
        )
        assert ScoringFactor.LOW_VALUE_SENDER not in factors


class TestDecideAction:
    safe = SafetyCheck(is_safe=True)

    def test_very_high_score_deletes(self) -> None:
        assert decide_action(95, self.safe, "Promotion") == "delete"

    def test_mid_score_archives(self) -> None:
        assert decide_action(70, self.safe, "Newsletter") == "archive"
        assert decide_action(50, self.safe, "Unknown") == "archive"

    def test_low_score_keeps(self) -> None:
        assert decide_action(49, self.safe, "Promotion") == "keep"

    def test_spam_sender_marked_spam(self) -> None:
        assert decide_action(60, self.safe, "Spam") == "mark_spam"
        assert decide_action(40, self.safe, "Spam") == "keep"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestClassify:
    async def test_empty_input(self, engine: ClassificationEngine) -> None:
        assert await engine.classify("owner-1", [], NOW) == []

    async def test_old_promotion_is_archive_candidate(self, engine: ClassificationEngine) -> None:
        [rec] = await engine.classify("owner-1", [_message("m1")], NOW)

        assert rec.is_safe
        assert rec.score == 92
        assert rec.confidence == Confidence.HIGH
        assert rec.action == "archive"
        assert rec.category == "Promotion"
        assert rec.sender_domain == "shop.example"
        assert rec.is_unopened and rec.has_unsubscribe
        assert "Never opened" in rec.explain()

    async def test_important_keyword_always_unsafe(self, engine: ClassificationEngine) -> None:
        messages = [
            _message("m1", subject="Your invoice is ready", age_days=400),
            _message("m2", snippet="Security alert. Unsubscribe anytime.", age_days=60),
        ]
        recommendations = await engine.classify("owner-1", messages, NOW)

        for rec in recommendations:
            assert rec.is_safe is False
            assert SafetyCheckId.IMPORTANT_KEYWORDS in rec.safety.failed_checks
            assert rec.action == "keep"

    async def test_replied_message_never_actioned(self, engine: ClassificationEngine) -> None:
        [rec] = await engine.classify("owner-1", [_message("m1", replied=True, age_days=200)], NOW)
        assert rec.is_safe is False
        assert rec.safety.failed_check == SafetyCheckId.REPLIED_TO
        assert rec.action == "keep"

    async def test_recent_message_unsafe(self, engine: ClassificationEngine) -> None:
        [rec] = await engine.classify("owner-1", [_message("m1", age_days=2)], NOW)
        assert rec.safety.failed_checks == (SafetyCheckId.TOO_RECENT,)
        assert ScoringFactor.RECENT in rec.factors

    async def test_protected_sender_unsafe(
        self, engine: ClassificationEngine, store: DatabaseStore
    ) -> None:
        await store.set_sender_protected("owner-1", "promo@shop.example")
        [rec] = await engine.classify("owner-1", [_message("m1")], NOW)
        assert SafetyCheckId.PROTECTED_SENDER in rec.safety.failed_checks
        assert ScoringFactor.VIP_SENDER in rec.factors
        assert rec.action == "keep"

    async def test_sender_with_reply_history_is_human(
        self, engine: ClassificationEngine
    ) -> None:
        person = "Alice <alice@friends.example>"
        await engine.classify(
            "owner-1", [_message("m1", sender=person, subject="Lunch?", replied=True)], NOW
        )
        [rec] = await engine.classify(
            "owner-1", [_message("m2", sender=person, subject="Photos from the trip")], NOW
        )
        assert SafetyCheckId.HUMAN_SENDER in rec.safety.failed_checks

    async def test_automated_sender_is_never_human(self, engine: ClassificationEngine) -> None:
        sender = "Updates <noreply@service.example>"
        await engine.classify("owner-1", [_message("m1", sender=sender, replied=True)], NOW)
        [rec] = await engine.classify("owner-1", [_message("m2", sender=sender)], NOW)
        assert SafetyCheckId.HUMAN_SENDER not in rec.safety.failed_checks

    async def test_classification_updates_sender_profile(
        self, engine: ClassificationEngine, store: DatabaseStore
    ) -> None:
        messages = [_message("m1"), _message("m2", unread=False)]
        await engine.classify("owner-1", messages, NOW)

        profile = await store.get_sender_profile("owner-1", "promo@shop.example")
        assert profile is not None
        assert profile.total_seen == 2
        assert profile.opened_count == 1
        assert profile.open_rate == pytest.approx(0.5)
        assert profile.category == "Promotion"

    async def test_reclassifying_same_messages_does_not_inflate_counts(
        self, engine: ClassificationEngine, store: DatabaseStore
    ) -> None:
        messages = [_message("m1"), _message("m2")]
        await engine.classify("owner-1", messages, NOW)
        await engine.classify("owner-1", messages, NOW + timedelta(minutes=5))

        profile = await store.get_sender_profile("owner-1", "promo@shop.example")
        assert profile is not None
        assert profile.total_seen == 2


class TestGrouping:
    async def test_scenario_a_old_promotions_archive(self, engine: ClassificationEngine) -> None:
        messages = [_message(f"m{i}", age_days=30 + i) for i in range(10)]
        report = await engine.analyze_grouped("owner-1", messages, NOW)

        [group] = report.groups
        assert group.key == ("shop.example", "Promotion")
        assert group.safety_check.is_safe
        assert group.confidence == Confidence.HIGH
        assert GroupAction.ARCHIVE_ALL in group.suggested_actions
        assert GroupAction.DELETE_ALL not in group.suggested_actions
        assert GroupAction.UNSUBSCRIBE in group.suggested_actions
        assert GroupReason.UNOPENED_OLD in group.reasons
        assert GroupReason.RECURRING_SENDER in group.reasons
        assert len(group.item_ids) == 10

    async def test_scenario_a_very_old_promotions_delete(
        self, engine: ClassificationEngine
    ) -> None:
        messages = [_message(f"m{i}", age_days=95 + i) for i in range(10)]
        report = await engine.analyze_grouped("owner-1", messages, NOW)

        [group] = report.groups
        assert group.confidence == Confidence.VERY_HIGH
        assert GroupAction.ARCHIVE_ALL in group.suggested_actions
        assert GroupAction.DELETE_ALL in group.suggested_actions

    async def test_promotional_subject_counts_without_sender_history(
        self, engine: ClassificationEngine, store: DatabaseStore
    ) -> None:
        messages = [
            _message(f"m{i}", sender="Shop <deals@shop.example>", age_days=95 + i)
            for i in range(10)
        ]
        report = await engine.analyze_grouped("owner-1", messages, NOW)

        profile = await store.get_sender_profile("owner-1", "deals@shop.example")
        assert profile.category == "Unknown"

        [group] = report.groups
        assert group.category == "Promotion"
        assert group.confidence == Confidence.VERY_HIGH
        assert GroupAction.ARCHIVE_ALL in group.suggested_actions
        assert GroupAction.DELETE_ALL in group.suggested_actions
        assert all(ScoringFactor.LOW_VALUE_SENDER in m.factors for m in group.members)

    async def test_scenario_b_one_invoice_blocks_group(self, engine: ClassificationEngine) -> None:
        messages = [_message(f"m{i}", age_days=40) for i in range(9)]
        messages.append(_message("m9", subject="Your invoice for March", age_days=40))
        report = await engine.analyze_grouped("owner-1", messages, NOW)

        [group] = report.groups
        assert group.safety_check.is_safe is False
        assert group.safety_check.unsafe_count == 1
        assert group.suggested_actions == ()
        assert group.confidence != Confidence.VERY_HIGH
        assert GroupReason.CONTAINS_IMPORTANT in group.reasons
        assert report.statistics["safe_to_act"] == 0

    async def test_small_bucket_not_reported(self, engine: ClassificationEngine) -> None:
        messages = [_message("m1"), _message("m2")]
        report = await engine.analyze_grouped("owner-1", messages, NOW)
        assert report.groups == ()
        assert report.statistics["total_analyzed"] == 2

    async def test_opened_members_prevent_very_high(self, engine: ClassificationEngine) -> None:
        messages = [_message(f"m{i}", age_days=120) for i in range(3)]
        messages.append(_message("m3", age_days=120, unread=False))
        report = await engine.analyze_grouped("owner-1", messages, NOW)

        [group] = report.groups
        assert group.average_score >= 95
        assert group.confidence == Confidence.HIGH
        assert GroupAction.DELETE_ALL not in group.suggested_actions

    async def test_groups_sorted_very_high_first(self, engine: ClassificationEngine) -> None:
        old = [_message(f"old{i}", age_days=100) for i in range(3)]
        recent_news = [
            _message(
                f"news{i}",
                sender="News <news@daily.example>",
                subject="Your newsletter",
                snippet="Top stories. Unsubscribe here.",
                age_days=40,
            )
            for i in range(5)
        ]
        report = await engine.analyze_grouped("owner-1", recent_news + old, NOW)

        assert [g.sender_domain for g in report.groups] == ["shop.example", "daily.example"]
        assert report.groups[0].confidence == Confidence.VERY_HIGH
        assert report.statistics == {
            "total_analyzed": 8,
            "total_groups": 2,
            "high_confidence": 2,
            "safe_to_act": 2,
        }
