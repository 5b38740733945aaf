"""Unit tests for webhook notifications."""

import json
import logging

import httpx
import pytest

from costguard.core.notifier import WebhookNotifier, build_payload

WEBHOOK_URL = "https://hooks.example.com/T000/B000"


def test_build_payload():
    payload = build_payload("limit hit", 12.5, 10.0)

    assert payload["text"] == "limit hit"
    assert payload["cost"] == 12.5
    assert payload["limit"] == 10.0
    assert "T" in payload["timestamp"]


def test_send_posts_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    assert notifier.send("limit hit", 12.5, 10.0) is True
    assert len(received) == 1
    request = received[0]
    assert request.method == "POST"
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["content-type"] == "application/json"
    assert set(json.loads(request.content)) == {"text", "timestamp", "cost", "limit"}


def test_send_failure_is_logged_not_raised(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    with caplog.at_level(logging.WARNING, logger="costguard.core.notifier"):
        assert notifier.send("limit hit", 12.5, 10.0) is False

    assert "Webhook notification" in caplog.text


def test_send_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    assert notifier.send("limit hit", 1.0, 1.0) is False


@pytest.mark.asyncio
async def test_send_async():
    received = []

    async def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = WebhookNotifier(WEBHOOK_URL, async_transport=httpx.MockTransport(handler))

    assert await notifier.send_async("limit hit", 3.0, 2.0) is True
    assert received[0]["cost"] == 3.0
