"""Tests for owner notifications."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from tidyinbox.config_schema import NotifierConfig
from tidyinbox.core.errors import ConfigValidationError, NotifierError
from tidyinbox.notifier import (
    REAUTH_HINT,
    LogNotifier,
    NotificationPayload,
    WebhookNotifier,
    build_notification_message,
    create_notifier,
)

NEXT_RUN = datetime(2026, 6, 3, 9, 0, tzinfo=UTC)


def _payload(**overrides) -> NotificationPayload:
    values = {
        "items_processed": 12,
        "action": "archive",
        "duration_ms": 2400,
        "next_run_at": NEXT_RUN,
        "status": "success",
        "rule_id": 7,
    }
    values.update(overrides)
    return NotificationPayload(**values)


class TestBuildNotificationMessage:
    def test_success(self) -> None:
        message = build_notification_message(_payload())
        assert message.subject == "Auto-Cleanup Complete: 12 emails archived"
        assert "12 emails archived in 2.4s." in message.body
        assert "Next run: 2026-06-03 09:00 UTC" in message.body

    def test_delete_wording(self) -> None:
        message = build_notification_message(_payload(action="delete", items_processed=3))
        assert message.subject == "Auto-Cleanup Complete: 3 emails deleted"

    def test_zero_items_still_reported(self) -> None:
        message = build_notification_message(_payload(items_processed=0))
        assert message.subject == "Auto-Cleanup Complete: 0 emails archived"
        assert "Nothing in your inbox matched" in message.body

    def test_partial_run_mentions_failures(self) -> None:
        message = build_notification_message(
            _payload(error_message="1 of 3 emails could not be archived")
        )
        assert message.subject.startswith("Auto-Cleanup Complete")
        assert "1 of 3 emails could not be archived" in message.body

    def test_failure(self) -> None:
        message = build_notification_message(
            _payload(status="failed", items_processed=0, error_message="Rate limit exceeded")
        )
        assert message.subject == "Auto-Cleanup Failed"
        assert "Rate limit exceeded" in message.body
        assert REAUTH_HINT not in message.body
        assert "Next run:" in message.body

    def test_failure_with_expired_credential(self) -> None:
        message = build_notification_message(
            _payload(status="failed", error_message="expired", needs_reauth=True)
        )
        assert REAUTH_HINT in message.body


class TestPayload:
    def test_to_dict_serializes_next_run(self) -> None:
        data = _payload().to_dict()
        assert data["next_run_at"] == "2026-06-03T09:00:00+00:00"
        assert data["items_processed"] == 12
        json.dumps(data)


class TestWebhookNotifier:
    async def test_posts_json(self) -> None:
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier("https://hooks.example/notify", client=client)
            await notifier.notify("owner-1", _payload())

        [request] = received
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example/notify"
        body = json.loads(request.content)
        assert body["owner_id"] == "owner-1"
        assert body["subject"] == "Auto-Cleanup Complete: 12 emails archived"
        assert body["status"] == "success"
        assert body["rule_id"] == 7

    async def test_http_error_raises_notifier_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            notifier = WebhookNotifier("https://hooks.example/notify", client=client)
            with pytest.raises(NotifierError, match="HTTP 500"):
                await notifier.notify("owner-1", _payload())

    async def test_transport_error_raises_notifier_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier("https://hooks.example/notify", client=client)
            with pytest.raises(NotifierError, match="delivery failed"):
                await notifier.notify("owner-1", _payload())


class TestCreateNotifier:
    def test_log_by_default(self) -> None:
        assert isinstance(create_notifier(NotifierConfig()), LogNotifier)

    def test_webhook(self) -> None:
        config = NotifierConfig(kind="webhook", webhook_url="https://hooks.example/notify")
        assert isinstance(create_notifier(config), WebhookNotifier)

    def test_webhook_without_url_rejected(self) -> None:
        # Bypasses the schema check, as a config assembled in code can
        config = NotifierConfig.model_construct(kind="webhook", webhook_url=None)
        with pytest.raises(ConfigValidationError, match="webhook_url"):
            create_notifier(config)

    async def test_log_notifier_does_not_raise(self) -> None:
        await LogNotifier().notify("owner-1", _payload())
