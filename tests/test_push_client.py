"""Tests for community_dispatch/notifications/push_client.py.

HTTP is served by httpx.MockTransport; nothing leaves the process.
"""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from community_dispatch.core.errors import DeliveryError
from community_dispatch.core.settings import Settings
from community_dispatch.notifications.push_client import (
    FcmPushClient,
    LogOnlyPushClient,
    build_push_client,
)

ENDPOINT = "https://push.test/send"


def _client(handler) -> FcmPushClient:
    transport = httpx.MockTransport(handler)
    return FcmPushClient(
        server_key="server-key",
        endpoint=ENDPOINT,
        timeout_s=2.0,
        client=httpx.AsyncClient(transport=transport),
    )


def _push(client: FcmPushClient, payload=None):
    async def scenario():
        try:
            return await client.send_push("device-token", "Title", "Body", payload)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


class TestFcmPushClient:
    def test_success_returns_message_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": 1, "results": [{"message_id": "0:abc"}]})

        result = _push(_client(handler), {"type": "visit", "count": 3, "urgent": True})

        assert result.success is True
        assert result.provider_message_id == "0:abc"
        assert seen["auth"] == "key=server-key"
        assert seen["body"]["to"] == "device-token"
        assert seen["body"]["notification"] == {"title": "Title", "body": "Body"}
        assert seen["body"]["data"] == {"type": "visit", "count": "3", "urgent": "True"}

    def test_token_rejection_is_a_failed_result(self):
        def handler(request):
            return httpx.Response(200, json={"failure": 1, "results": [{"error": "NotRegistered"}]})

        result = _push(_client(handler))

        assert result.success is False
        assert result.error == "NotRegistered"

    def test_missing_message_id_is_a_failed_result(self):
        result = _push(_client(lambda request: httpx.Response(200, json={})))
        assert result.success is False

    def test_http_error_raises_delivery_error(self):
        with pytest.raises(DeliveryError, match="HTTP 503"):
            _push(_client(lambda request: httpx.Response(503)))

    def test_timeout_raises_delivery_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DeliveryError, match="timed out"):
            _push(_client(handler))

    def test_connection_error_raises_delivery_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DeliveryError, match="unreachable"):
            _push(_client(handler))


class TestBuildPushClient:
    def test_without_server_key_logs_only(self):
        client = build_push_client(Settings(FCM_SERVER_KEY=None))
        assert isinstance(client, LogOnlyPushClient)

    def test_with_server_key_uses_fcm(self):
        client = build_push_client(Settings(FCM_SERVER_KEY="k", FCM_ENDPOINT=ENDPOINT))
        try:
            assert isinstance(client, FcmPushClient)
            assert client.endpoint == ENDPOINT
        finally:
            asyncio.run(client.aclose())

    def test_log_only_client_reports_success(self):
        result = asyncio.run(LogOnlyPushClient().send_push("t", "Title", "Body"))
        assert result.success is True
        assert result.provider_message_id.startswith("local-")
