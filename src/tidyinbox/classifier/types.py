"""Domain types shared by the classifier and the sweeper.

Reasons attached to recommendations and groups are tagged enumerations; the
human-readable text is generated from the tag rather than stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parseaddr, parsedate_to_datetime
from enum import IntEnum, StrEnum
from typing import Any, Literal

Action = Literal["keep", "archive", "delete", "mark_spam", "unsubscribe"]
TargetAction = Literal["archive", "delete"]
ConfidenceThreshold = Literal["high", "medium", "all"]
SenderCategory = Literal["VIP", "Work", "Personal", "Newsletter", "Promotion", "Spam", "Unknown"]

SENDER_CATEGORIES: tuple[SenderCategory, ...] = (
    "VIP",
    "Work",
    "Personal",
    "Newsletter",
    "Promotion",
    "Spam",
    "Unknown",
)


class Confidence(IntEnum):
    """Confidence bucket derived from a 0-100 score.

    Ordered so that ``Confidence.HIGH >= Confidence.MEDIUM``.
    """

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    VERY_HIGH = 3


class SafetyCheckId(StrEnum):
    """Never-act predicates of the safety gate."""

    REPLIED_TO = "replied_to"
    HUMAN_SENDER = "human_sender"
    IMPORTANT_KEYWORDS = "important_keywords"
    TOO_RECENT = "too_recent"
    PROTECTED_SENDER = "protected_sender"

    @property
    def description(self) -> str:
        return _SAFETY_TEXT[self]


_SAFETY_TEXT = {
    SafetyCheckId.REPLIED_TO: "You replied to this email",
    SafetyCheckId.HUMAN_SENDER: "Sent by a real person",
    SafetyCheckId.IMPORTANT_KEYWORDS: "Mentions invoices, payments, security or other important topics",
    SafetyCheckId.TOO_RECENT: "Too recent to clean up yet",
    SafetyCheckId.PROTECTED_SENDER: "Sender is marked as VIP/protected",
}


class ScoringFactor(StrEnum):
    """Named signals contributing a signed weight to a message's score."""

    UNSUBSCRIBE_TEXT = "unsubscribe_text"
    PROMOTIONAL_CONTENT = "promotional_content"
    LOW_VALUE_SENDER = "low_value_sender"
    OLD = "old"
    VERY_OLD = "very_old"
    UNREAD = "unread"
    LOW_SENDER_IMPORTANCE = "low_sender_importance"
    IMPORTANT_KEYWORDS = "important_keywords"
    HUMAN_SENDER = "human_sender"
    RECENT = "recent"
    REPLIED = "replied"
    VIP_SENDER = "vip_sender"
    ENGAGED_SENDER = "engaged_sender"

    @property
    def description(self) -> str:
        return _FACTOR_TEXT[self]


_FACTOR_TEXT = {
    ScoringFactor.UNSUBSCRIBE_TEXT: "Has an unsubscribe link",
    ScoringFactor.PROMOTIONAL_CONTENT: "Promotional or newsletter content",
    ScoringFactor.LOW_VALUE_SENDER: "Newsletter, promotion or spam",
    ScoringFactor.OLD: "Older than a month",
    ScoringFactor.VERY_OLD: "Older than three months",
    ScoringFactor.UNREAD: "Never opened",
    ScoringFactor.LOW_SENDER_IMPORTANCE: "You rarely engage with this sender",
    ScoringFactor.IMPORTANT_KEYWORDS: "Mentions important topics",
    ScoringFactor.HUMAN_SENDER: "Sent by a real person",
    ScoringFactor.RECENT: "Received this week",
    ScoringFactor.REPLIED: "You replied to it",
    ScoringFactor.VIP_SENDER: "VIP or protected sender",
    ScoringFactor.ENGAGED_SENDER: "You usually open mail from this sender",
}


class GroupReason(StrEnum):
    """Why a suggestion group was proposed (or blocked)."""

    UNOPENED_OLD = "unopened_old"
    RECURRING_SENDER = "recurring_sender"
    LOW_ENGAGEMENT = "low_engagement"
    PROMOTIONAL_CONTENT = "promotional_content"
    CONTAINS_IMPORTANT = "contains_important_emails"

    @property
    def description(self) -> str:
        return _GROUP_REASON_TEXT[self]


_GROUP_REASON_TEXT = {
    GroupReason.UNOPENED_OLD: "All unopened and at least a month old",
    GroupReason.RECURRING_SENDER: "Frequent sender",
    GroupReason.LOW_ENGAGEMENT: "You rarely engage with these",
    GroupReason.PROMOTIONAL_CONTENT: "Promotional content with unsubscribe links",
    GroupReason.CONTAINS_IMPORTANT: "Contains emails that must not be touched",
}


class GroupAction(StrEnum):
    """Collective actions a suggestion group can propose."""

    ARCHIVE_ALL = "ARCHIVE_ALL"
    DELETE_ALL = "DELETE_ALL"
    UNSUBSCRIBE = "UNSUBSCRIBE"


@dataclass(frozen=True, slots=True)
class MessageMetadata:
    """Mailbox item as returned by the Mail Gateway.

    Attributes:
        id: Provider message id
        sender: Raw From header ('Name <addr@host>' or a bare address)
        subject: Subject line
        snippet: Short body preview
        date: When the message was received (None if unknown)
        labels: Provider labels (e.g. 'INBOX', 'UNREAD')
        replied: Whether the owner has replied in this thread
    """

    id: str
    sender: str = ""
    subject: str = ""
    snippet: str = ""
    date: datetime | None = None
    labels: tuple[str, ...] = ()
    replied: bool = False

    @property
    def sender_email(self) -> str:
        """Lowercased bare address of the sender."""
        _, address = parseaddr(self.sender)
        return (address or self.sender).strip().lower()

    @property
    def sender_domain(self) -> str:
        address = self.sender_email
        if "@" not in address:
            return "unknown"
        return address.rsplit("@", 1)[1] or "unknown"

    @property
    def is_unread(self) -> bool:
        return "UNREAD" in self.labels

    def age_in_days(self, now: datetime | None = None) -> int:
        """Whole days since receipt; 0 when the date is unknown."""
        if self.date is None:
            return 0
        now = now or datetime.now(UTC)
        received = self.date if self.date.tzinfo else self.date.replace(tzinfo=UTC)
        return max(0, (now - received).days)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageMetadata:
        """Build from a loosely-typed gateway dict.

        Accepts ``id``/``emailId``, ``sender``/``from``, RFC 2822 or ISO 8601
        dates and ``replied``/``repliedFlag``.
        """
        return cls(
            id=str(data.get("id") or data.get("emailId") or ""),
            sender=data.get("sender") or data.get("from") or "",
            subject=data.get("subject") or "",
            snippet=data.get("snippet") or "",
            date=parse_message_date(data.get("date")),
            labels=tuple(data.get("labels") or ()),
            replied=bool(data.get("replied", data.get("repliedFlag", False))),
        )


def parse_message_date(value: Any) -> datetime | None:
    """Parse a message date header or ISO timestamp; None if unparseable."""
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class SafetyCheck:
    """Outcome of the safety gate for one message.

    Attributes:
        is_safe: True only if no never-act predicate holds
        failed_checks: Every predicate that held, in declaration order
    """

    is_safe: bool
    failed_checks: tuple[SafetyCheckId, ...] = ()

    @property
    def failed_check(self) -> SafetyCheckId | None:
        return self.failed_checks[0] if self.failed_checks else None

    @property
    def reason(self) -> str | None:
        check = self.failed_check
        return check.description if check else None


@dataclass(frozen=True, slots=True)
class Recommendation:
    """Per-message decision produced by the classification engine."""

    item_id: str
    sender: str
    sender_domain: str
    subject: str
    age_in_days: int
    score: int
    confidence: Confidence
    action: Action
    category: str
    safety: SafetyCheck
    factors: tuple[ScoringFactor, ...] = ()
    is_unopened: bool = False
    has_unsubscribe: bool = False

    @property
    def is_safe(self) -> bool:
        return self.safety.is_safe

    def explain(self) -> list[str]:
        """Human-readable reasons, safety first."""
        if not self.safety.is_safe:
            return [check.description for check in self.safety.failed_checks]
        return [factor.description for factor in self.factors]


@dataclass(frozen=True, slots=True)
class GroupSafety:
    is_safe: bool
    unsafe_count: int = 0


@dataclass(frozen=True)
class SuggestionGroup:
    """Messages from one (sender domain, category) bucket."""

    sender_domain: str
    category: str
    members: tuple[Recommendation, ...]
    confidence: Confidence
    suggested_actions: tuple[GroupAction, ...]
    safety_check: GroupSafety
    reasons: tuple[GroupReason, ...] = ()
    average_age: int = 0
    average_score: float = 0.0

    @property
    def key(self) -> tuple[str, str]:
        return (self.sender_domain, self.category)

    @property
    def title(self) -> str:
        return f"{len(self.members)} emails from {self.sender_domain}"

    @property
    def item_ids(self) -> list[str]:
        return [member.item_id for member in self.members]


@dataclass(frozen=True)
class AnalysisReport:
    """Result of a grouped analysis pass."""

    recommendations: tuple[Recommendation, ...]
    groups: tuple[SuggestionGroup, ...]
    statistics: dict[str, int] = field(default_factory=dict)
