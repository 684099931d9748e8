"""Sender profile metric maintenance.

A profile's derived fields (open/reply/spam rates and importance score) are
never written directly: every counter change goes through
``recompute_metrics`` so the importance score always reflects the counters.
The only manual input is ``is_protected``, which forces the VIP category and
the VIP importance boost.

Usage:
    from tidyinbox.classifier.sender_profiles import apply_observation

    apply_observation(profile, opened=True, replied=False, now=now)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tidyinbox.db.store import SenderProfile

BASE_IMPORTANCE = 0.5
FEEDBACK_AGREE_DELTA = -0.1
FEEDBACK_DISAGREE_DELTA = 0.2

# user_action -> counter incremented on the profile
FEEDBACK_COUNTERS = {
    "archived": "archived_count",
    "deleted": "deleted_count",
    "marked_spam": "spam_marked_count",
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def recompute_metrics(profile: SenderProfile, now: datetime | None = None) -> None:
    """Recompute rates and importance from the profile counters (in place)."""
    now = now or datetime.now(UTC)

    if profile.total_seen > 0:
        profile.open_rate = _clamp(profile.opened_count / profile.total_seen)
        profile.reply_rate = _clamp(profile.replied_count / profile.total_seen)
        profile.spam_score = _clamp(profile.spam_marked_count / profile.total_seen)

    if profile.is_protected:
        profile.category = "VIP"

    score = BASE_IMPORTANCE
    if profile.open_rate > 0.7:
        score += 0.2
    if profile.reply_rate > 0.3:
        score += 0.3
    if profile.spam_score > 0.5:
        score -= 0.5

    if profile.last_interaction_at is not None:
        days_since = (now - profile.last_interaction_at).total_seconds() / 86400
        if days_since < 7:
            score += 0.1
        elif days_since > 90:
            score -= 0.1

    if profile.category == "VIP" or profile.is_protected:
        score += 0.2

    score += profile.feedback_adjustment
    profile.importance_score = _clamp(score)


def auto_categorize(profile: SenderProfile) -> None:
    """Assign a category from the address and engagement (in place)."""
    if profile.is_protected:
        profile.category = "VIP"
        return

    email = profile.sender_email.lower()
    domain = profile.domain.lower()

    if "noreply" in email or "no-reply" in email:
        profile.category = "Newsletter"
    elif "marketing" in domain or "promo" in email:
        profile.category = "Promotion"
    elif profile.spam_score > 0.7:
        profile.category = "Spam"
    elif profile.open_rate > 0.8 and profile.reply_rate > 0.3:
        profile.category = "VIP"
    elif "company" in domain or "corp" in domain:
        profile.category = "Work"
    elif profile.reply_rate > 0.1:
        profile.category = "Personal"
    else:
        profile.category = "Unknown"


def apply_observation(
    profile: SenderProfile,
    *,
    opened: bool,
    replied: bool,
    now: datetime | None = None,
) -> None:
    """Count one newly observed message from this sender (in place)."""
    now = now or datetime.now(UTC)
    profile.total_seen += 1
    if opened:
        profile.opened_count += 1
    if replied:
        profile.replied_count += 1
    if opened or replied:
        profile.last_interaction_at = now
    if profile.first_seen_at is None:
        profile.first_seen_at = now

    recompute_metrics(profile, now)
    if profile.category == "Unknown":
        auto_categorize(profile)
        recompute_metrics(profile, now)


def apply_feedback(
    profile: SenderProfile,
    *,
    user_action: str,
    agreed: bool,
    now: datetime | None = None,
) -> None:
    """Fold one piece of user feedback into the profile (in place).

    Agreeing with a suggested cleanup makes the sender less important;
    disagreeing makes it more important.
    """
    now = now or datetime.now(UTC)
    counter = FEEDBACK_COUNTERS.get(user_action)
    if counter is not None:
        setattr(profile, counter, getattr(profile, counter) + 1)

    delta = FEEDBACK_AGREE_DELTA if agreed else FEEDBACK_DISAGREE_DELTA
    profile.feedback_adjustment = _clamp(profile.feedback_adjustment + delta, -1.0, 1.0)
    profile.last_interaction_at = now
    recompute_metrics(profile, now)


def set_protected(profile: SenderProfile, protected: bool, now: datetime | None = None) -> None:
    """Toggle the manual protected-sender override (in place)."""
    profile.is_protected = protected
    if not protected and profile.category == "VIP":
        auto_categorize(profile)
    recompute_metrics(profile, now)
