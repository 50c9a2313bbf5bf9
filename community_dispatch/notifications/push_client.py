"""Push provider clients.

``FcmPushClient`` talks to the Firebase Cloud Messaging HTTP endpoint with
``httpx.AsyncClient``.  Transport failures, timeouts and non-2xx responses are
raised as :class:`DeliveryError`; a per-token rejection inside an otherwise
successful response comes back as ``PushResult(success=False)``.

``LogOnlyPushClient`` is wired in when no server key is configured so local
environments can exercise the full dispatch path without a provider.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

import httpx

from community_dispatch.core.errors import DeliveryError
from community_dispatch.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushResult:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None


class PushClient(Protocol):
    async def send_push(
        self,
        token: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> PushResult:
        ...

    async def aclose(self) -> None:
        ...


def _stringify(payload: dict[str, Any] | None) -> dict[str, str]:
    """FCM data messages only carry string values."""
    return {str(key): str(value) for key, value in (payload or {}).items()}


class FcmPushClient:
    """Async client for the FCM HTTP send endpoint.

    Parameters
    ----------
    server_key:
        FCM server key, sent as ``Authorization: key=<server_key>``.
    endpoint:
        Send URL.  Defaults to ``settings.fcm_endpoint``.
    timeout_s:
        Per-request timeout.  Defaults to ``settings.push_timeout_s``.
    client:
        Optional pre-built ``httpx.AsyncClient`` (tests use a mock transport).
    """

    def __init__(
        self,
        *,
        server_key: str,
        endpoint: str | None = None,
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self.endpoint = endpoint or settings.fcm_endpoint
        self.timeout_s = timeout_s if timeout_s is not None else settings.push_timeout_s
        self._server_key = server_key
        self._client = client or httpx.AsyncClient(timeout=self.timeout_s)

    async def send_push(
        self,
        token: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> PushResult:
        message = {
            "to": token,
            "notification": {"title": title, "body": body},
            "data": _stringify(payload),
            "priority": "high",
        }
        try:
            response = await self._client.post(
                self.endpoint,
                json=message,
                headers={"Authorization": f"key={self._server_key}"},
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise DeliveryError(f"Push provider timed out after {self.timeout_s}s") from exc
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(f"Push provider returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Push provider unreachable: {exc}") from exc

        data = response.json()
        results = data.get("results") or [{}]
        first = results[0]
        if "error" in first:
            return PushResult(success=False, error=str(first["error"]))
        message_id = first.get("message_id") or data.get("message_id")
        if message_id is None:
            return PushResult(success=False, error="provider response carried no message id")
        return PushResult(success=True, provider_message_id=str(message_id))

    async def aclose(self) -> None:
        await self._client.aclose()


class LogOnlyPushClient:
    """Logs the push instead of sending it and reports success."""

    async def send_push(
        self,
        token: str,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
    ) -> PushResult:
        message_id = f"local-{uuid4()}"
        logger.info("Push provider not configured; logged push %s: %s", message_id, title)
        return PushResult(success=True, provider_message_id=message_id)

    async def aclose(self) -> None:
        return None


def build_push_client(settings: Settings | None = None) -> PushClient:
    settings = settings or get_settings()
    if not settings.fcm_server_key:
        return LogOnlyPushClient()
    return FcmPushClient(
        server_key=settings.fcm_server_key,
        endpoint=settings.fcm_endpoint,
        timeout_s=settings.push_timeout_s,
    )
