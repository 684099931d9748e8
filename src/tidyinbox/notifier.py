"""Owner notifications for automation runs.

Every rule run produces exactly one notification, including runs that
matched nothing, so an owner can tell "ran and found nothing" apart from
"stopped running".

Implementations:
- LogNotifier: writes the notification to the structured log
- WebhookNotifier: POSTs the payload as JSON with httpx

Usage:
    from tidyinbox.notifier import NotificationPayload, create_notifier

    notifier = create_notifier(config.notifier)
    await notifier.notify("user-1", payload)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

import httpx

from tidyinbox.core.errors import ConfigValidationError, NotifierError
from tidyinbox.core.logging import get_logger

if TYPE_CHECKING:
    from tidyinbox.config_schema import NotifierConfig

logger = get_logger(__name__)

NotificationStatus = Literal["success", "failed"]

REAUTH_HINT = "Your mailbox connection has expired. Reconnect it to resume automatic cleanup."


@dataclass(frozen=True)
class NotificationPayload:
    """Outcome of one rule run, as reported to the owner.

    Attributes:
        items_processed: Messages mutated by the run
        action: The rule's target action ('archive' or 'delete')
        duration_ms: Wall time of the run
        next_run_at: When the rule will run next (UTC)
        status: 'success' or 'failed' (partial runs report success)
        error_message: Failure detail, or the partial-failure summary
        rule_id: Rule that ran
        needs_reauth: True when the run failed on an expired credential
    """

    items_processed: int
    action: str
    duration_ms: int
    next_run_at: datetime
    status: NotificationStatus
    error_message: str | None = None
    rule_id: int | None = None
    needs_reauth: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["next_run_at"] = self.next_run_at.isoformat()
        return data


@dataclass(frozen=True)
class NotificationMessage:
    subject: str
    body: str


def build_notification_message(payload: NotificationPayload) -> NotificationMessage:
    """Shape the subject and plain-text body shown to the owner."""
    action_text = "archived" if payload.action == "archive" else "deleted"
    next_run = payload.next_run_at.strftime("%Y-%m-%d %H:%M UTC")

    if payload.status == "success":
        subject = f"Auto-Cleanup Complete: {payload.items_processed} emails {action_text}"
        lines = [
            f"{payload.items_processed} emails {action_text} in {payload.duration_ms / 1000:.1f}s.",
        ]
        if payload.items_processed == 0:
            lines.append("Nothing in your inbox matched this rule this time.")
        if payload.error_message:
            lines.append(f"Some emails could not be processed: {payload.error_message}")
    else:
        subject = "Auto-Cleanup Failed"
        lines = [f"The cleanup could not be completed: {payload.error_message or 'unknown error'}"]
        if payload.needs_reauth:
            lines.append(REAUTH_HINT)

    lines.append(f"Next run: {next_run}")
    return NotificationMessage(subject=subject, body="\n".join(lines))


@runtime_checkable
class Notifier(Protocol):
    """Interface for reporting run outcomes to the owning user."""

    async def notify(self, owner_id: str, payload: NotificationPayload) -> None:
        """Deliver a notification. May raise NotifierError."""
        ...


class LogNotifier:
    """Writes notifications to the structured log."""

    async def notify(self, owner_id: str, payload: NotificationPayload) -> None:
        message = build_notification_message(payload)
        logger.info(
            "owner_notified",
            owner_id=owner_id,
            subject=message.subject,
            status=payload.status,
            items_processed=payload.items_processed,
            next_run_at=payload.next_run_at.isoformat(),
        )


class WebhookNotifier:
    """POSTs notifications as JSON to a configured URL.

    Attributes:
        _url: Webhook endpoint
        _timeout: Request timeout in seconds
        _client: Optional shared client (tests inject one with a mock transport)
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = url
        self._timeout = timeout_seconds
        self._client = client

    async def notify(self, owner_id: str, payload: NotificationPayload) -> None:
        message = build_notification_message(payload)
        body = {
            "owner_id": owner_id,
            "subject": message.subject,
            "body": message.body,
            **payload.to_dict(),
        }

        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=body, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotifierError(
                f"Webhook rejected notification: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotifierError(f"Webhook delivery failed: {e}") from e

        logger.debug("webhook_notification_sent", owner_id=owner_id, status=payload.status)


def create_notifier(config: NotifierConfig) -> Notifier:
    """Build the notifier selected in config."""
    if config.kind == "webhook":
        if not config.webhook_url:
            raise ConfigValidationError(
                "notifier.webhook_url is required when notifier kind is 'webhook'"
            )
        return WebhookNotifier(config.webhook_url, timeout_seconds=config.timeout_seconds)
    return LogNotifier()
