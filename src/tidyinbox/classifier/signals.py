"""Keyword and sender signal detection.

All matching is case-insensitive substring search over configured keyword
lists. No regex is used, so there is no ReDoS risk on hostile subjects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tidyinbox.config_schema import ClassifierConfig
    from tidyinbox.db.store import SenderProfile

HUMAN_CATEGORIES = frozenset({"Personal", "VIP"})
LOW_VALUE_CATEGORIES = frozenset({"Newsletter", "Promotion", "Spam"})

_SOCIAL_SENDERS = ("linkedin", "facebook", "twitter", "instagram")


def contains_any(text: str, keywords: list[str] | tuple[str, ...]) -> bool:
    """Check whether any keyword occurs in text (case-insensitive)."""
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


class SignalDetector:
    """Detects message features used by scoring and the safety gate."""

    def __init__(self, config: ClassifierConfig):
        self._config = config

    def has_important_keywords(self, subject: str, snippet: str) -> bool:
        return contains_any(f"{subject} {snippet}", self._config.importance_keywords)

    def has_unsubscribe(self, snippet: str) -> bool:
        return "unsubscribe" in snippet.lower()

    def is_promotional(self, sender: str, subject: str, snippet: str) -> bool:
        """Promotional or newsletter wording anywhere in sender, subject or snippet."""
        text = f"{sender} {subject} {snippet}"
        return contains_any(text, self._config.promotional_keywords) or contains_any(
            text, self._config.newsletter_keywords
        )

    def is_automated_sender(self, sender_email: str) -> bool:
        return contains_any(sender_email, self._config.automated_sender_patterns)

    def is_human_sender(self, sender_email: str, profile: SenderProfile | None) -> bool:
        """Decide whether a real person sent the message.

        Automated-looking addresses are never human. Otherwise the sender
        profile decides: a Personal/VIP category or any historical reply.
        """
        if self.is_automated_sender(sender_email):
            return False
        if profile is None:
            return False
        return profile.category in HUMAN_CATEGORIES or profile.reply_rate > 0

    def categorize_message(
        self,
        sender_email: str,
        subject: str,
        profile: SenderProfile | None,
    ) -> str:
        """Grouping category: the sender's profile category, else a subject heuristic."""
        if profile is not None and profile.category != "Unknown":
            return profile.category

        subject_lower = subject.lower()
        if "noreply" in sender_email or "no-reply" in sender_email or "newsletter" in subject_lower:
            return "Newsletter"
        if any(word in subject_lower for word in ("promotion", "sale", "discount")):
            return "Promotion"
        if any(name in sender_email for name in _SOCIAL_SENDERS):
            return "Social"
        if "job" in subject_lower or "hiring" in subject_lower:
            return "Job Alert"
        return "Unknown"
