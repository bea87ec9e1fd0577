"""Tests for the Instagram Graph adapter, served by ``httpx.MockTransport``."""

import json
from types import SimpleNamespace

import httpx
import pytest

from replyflow.adapters import InstagramGraphAdapter, instagram_adapter_factory
from replyflow.core.errors import ErrorCategory, ExternalActionError

BASE_URL = "https://graph.test"


def _adapter(handler, token="tok-1"):
    client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return InstagramGraphAdapter(token, client=client)


class Recorder:
    """Collects requests and answers from a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes[(request.method, request.url.path)]

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


class TestReplyToComment:
    def test_posts_reply(self):
        recorder = Recorder({("POST", "/c-1/replies"): httpx.Response(200, json={"id": "r-1"})})
        result = _adapter(recorder).reply_to_comment("c-1", "Check DM!")

        assert result == {"id": "r-1"}
        assert recorder.body(0) == {"message": "Check DM!", "access_token": "tok-1"}

    def test_provider_error_message_surfaced(self):
        error = {"error": {"message": "(#100) Invalid comment id", "code": 100}}
        recorder = Recorder({("POST", "/bad/replies"): httpx.Response(400, json=error)})

        with pytest.raises(ExternalActionError) as exc_info:
            _adapter(recorder).reply_to_comment("bad", "hi")

        assert exc_info.value.message == "(#100) Invalid comment id"
        assert exc_info.value.status_code == 400
        assert exc_info.value.category == ErrorCategory.EXTERNAL

    def test_error_without_body_uses_operation(self):
        recorder = Recorder({("POST", "/c-1/replies"): httpx.Response(500, text="oops")})
        with pytest.raises(ExternalActionError, match="Failed to reply to comment"):
            _adapter(recorder).reply_to_comment("c-1", "hi")

    def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalActionError, match="connection refused") as exc_info:
            _adapter(handler).reply_to_comment("c-1", "hi")
        assert isinstance(exc_info.value.cause, httpx.ConnectError)


class TestSendDirectMessage:
    def _routes(self):
        return {
            ("GET", "/me"): httpx.Response(200, json={"id": "page-9"}),
            ("POST", "/page-9/messages"): httpx.Response(200, json={"message_id": "m-1"}),
        }

    def test_looks_up_page_then_sends(self):
        recorder = Recorder(self._routes())
        result = _adapter(recorder).send_direct_message("u1", "Here's our catalog")

        assert result == {"message_id": "m-1"}
        me = recorder.requests[0]
        assert me.url.params["fields"] == "id"
        assert me.url.params["access_token"] == "tok-1"
        assert recorder.body(1) == {
            "recipient": {"id": "u1"},
            "message": {"text": "Here's our catalog"},
            "messaging_type": "RESPONSE",
            "access_token": "tok-1",
        }

    def test_buttons_become_quick_replies(self):
        recorder = Recorder(self._routes())
        _adapter(recorder).send_direct_message("u1", "Shop", buttons=[{"title": "Store", "url": "https://shop"}])

        assert recorder.body(1)["message"]["quick_replies"] == [
            {"content_type": "text", "title": "Store", "payload": "https://shop"}
        ]

    def test_missing_page_id(self):
        recorder = Recorder({("GET", "/me"): httpx.Response(200, json={})})
        with pytest.raises(ExternalActionError, match="no page id"):
            _adapter(recorder).send_direct_message("u1", "hi")
        assert len(recorder.requests) == 1

    def test_recipient_rejected(self):
        routes = self._routes()
        routes[("POST", "/page-9/messages")] = httpx.Response(
            403, json={"error": {"message": "(#10) User cannot receive messages"}}
        )
        with pytest.raises(ExternalActionError, match="cannot receive messages"):
            _adapter(Recorder(routes)).send_direct_message("u1", "hi")


class TestFactory:
    def test_builds_adapter_per_integration(self):
        build = instagram_adapter_factory(base_url=BASE_URL, timeout=3.0)
        with build(SimpleNamespace(access_token="tok-x")) as adapter:
            assert isinstance(adapter, InstagramGraphAdapter)

    def test_injected_client_not_closed(self):
        client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        InstagramGraphAdapter("tok", client=client).close()
        assert client.is_closed is False
