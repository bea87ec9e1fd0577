"""External Action Adapter - the only component that talks to the provider.

The engine core sees two operations (reply to a comment, send a direct
message) and one failure type, :class:`ExternalActionError`, whose
message is the provider's own error text when it sent one.

Example::

    with InstagramGraphAdapter(access_token="IGQ...") as api:
        api.reply_to_comment("17890000000000000", "Check DM!")
        api.send_direct_message("user-psid", "Here's our catalog",
                                buttons=[{"title": "Shop", "url": "https://shop"}])

Tags:
    replyflow, adapters, instagram, graph-api, httpx

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

import httpx

from replyflow.core.errors import ExternalActionError
from replyflow.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://graph.instagram.com"


class ExternalActionAdapter(Protocol):
    """Side-effecting calls against the social-messaging provider."""

    def reply_to_comment(self, comment_id: str, text: str) -> dict[str, Any]: ...

    def send_direct_message(
        self,
        user_id: str,
        text: str,
        *,
        buttons: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]: ...


AdapterFactory = Callable[[Any], ExternalActionAdapter]
"""Builds an adapter for an integration row (anything with ``access_token``)."""


class InstagramGraphAdapter:
    """Instagram Graph API client over a synchronous ``httpx.Client``.

    Args:
        access_token: Integration's long-lived token
        base_url: API root
        timeout: Per-request timeout in seconds
        client: Pre-built client (tests pass one with ``httpx.MockTransport``)
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self._token = access_token
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    def __enter__(self) -> InstagramGraphAdapter:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("instagram.transport_error", operation=operation, error=str(exc))
            raise ExternalActionError(f"Failed to {operation}: {exc}", cause=exc) from exc

        if response.is_error:
            message = _provider_message(response) or f"Failed to {operation}"
            logger.error(
                "instagram.api_error",
                operation=operation,
                status_code=response.status_code,
                error=message,
            )
            raise ExternalActionError(message, status_code=response.status_code)

        return response.json() if response.content else {}

    def reply_to_comment(self, comment_id: str, text: str) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/{comment_id}/replies",
            "reply to comment",
            json={"message": text, "access_token": self._token},
        )

    def send_direct_message(
        self,
        user_id: str,
        text: str,
        *,
        buttons: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Send a DM; the page id is looked up from ``/me`` first."""
        me = self._request(
            "GET",
            "/me",
            "send direct message",
            params={"fields": "id", "access_token": self._token},
        )
        page_id = me.get("id")
        if not page_id:
            raise ExternalActionError("Failed to send direct message: no page id for token")

        message: dict[str, Any] = {"text": text}
        if buttons:
            message["quick_replies"] = [
                {"content_type": "text", "title": b.get("title", ""), "payload": b.get("url", "")}
                for b in buttons
            ]

        return self._request(
            "POST",
            f"/{page_id}/messages",
            "send direct message",
            json={
                "recipient": {"id": user_id},
                "message": message,
                "messaging_type": "RESPONSE",
                "access_token": self._token,
            },
        )


def _provider_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message")
    return None


def instagram_adapter_factory(base_url: str = DEFAULT_BASE_URL, timeout: float = 15.0) -> AdapterFactory:
    """Return a factory building one adapter per integration."""

    def build(integration: Any) -> ExternalActionAdapter:
        return InstagramGraphAdapter(integration.access_token or "", base_url=base_url, timeout=timeout)

    return build


__all__ = [
    "AdapterFactory",
    "DEFAULT_BASE_URL",
    "ExternalActionAdapter",
    "InstagramGraphAdapter",
    "instagram_adapter_factory",
]
