"""
Unit tests for backend forwarding.
"""

import json

import httpx
import pytest
from fastapi import Request

from service_gateway.app.models import ClientRecord, CreditResult, TargetDescriptor
from service_gateway.app.proxy import ProxyForwarder, build_upstream_headers, filter_response_headers
from shared.errors import UpstreamUnavailableError


def make_target(**overrides):
    data = {
        "id": "t",
        "name": "T",
        "pattern": "/t/*",
        "targetUrl": "https://b.example",
    }
    data.update(overrides)
    return TargetDescriptor.model_validate(data)


def make_request(method="GET", path="/t/foo/bar", query=b"", headers=None, body=b""):
    raw_headers = [(b"host", b"gateway.example")]
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode(), value.encode()))
    scope = {
        "type": "http",
        "method": method,
        "scheme": "https",
        "path": path,
        "root_path": "",
        "query_string": query,
        "headers": raw_headers,
        "server": ("gateway.example", 443),
        "client": ("203.0.113.9", 50000),
    }

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


CLIENT = ClientRecord(id="c1", name="Acme", plan="basic", type="service")
CREDITS = CreditResult(success=True, remaining=5, used=2)


class TestBuildUpstreamHeaders:
    """Test cases for outbound header rewriting."""

    INCOMING = [
        ("Content-Type", "application/json"),
        ("Accept", "application/json"),
        ("User-Agent", "tests"),
        ("X-API-Key", "apk_secret"),
        ("X-Forwarded-For", "203.0.113.9"),
        ("CF-Ray", "abc"),
        ("Connection", "keep-alive"),
        ("X-Custom", "kept-by-denylist"),
    ]

    def test_allowlist_copies_only_safe_headers(self):
        headers = dict(build_upstream_headers(self.INCOMING, make_target(), policy="allowlist"))

        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "tests"
        assert "X-Custom" not in headers
        assert "X-API-Key" not in headers
        assert "X-Forwarded-For" not in headers

    def test_denylist_strips_proxy_headers(self):
        headers = dict(build_upstream_headers(self.INCOMING, make_target(), policy="denylist"))

        assert headers["X-Custom"] == "kept-by-denylist"
        assert "X-Forwarded-For" not in headers
        assert "CF-Ray" not in headers
        assert "Connection" not in headers
        assert "X-API-Key" not in headers

    def test_gateway_headers_injected(self):
        """Test client, correlation and credit headers are added."""
        headers = dict(build_upstream_headers(
            self.INCOMING,
            make_target(),
            client=CLIENT,
            credit_result=CREDITS,
            request_id="abcd1234",
        ))

        assert headers["X-Gateway-Client-Id"] == "c1"
        assert headers["X-Gateway-Client-Type"] == "service"
        assert headers["X-Gateway-Plan"] == "basic"
        assert headers["X-Request-ID"] == "abcd1234"
        assert headers["X-Gateway-Credits-Remaining"] == "5"
        assert headers["X-Gateway-Credits-Used"] == "2"

    def test_credit_headers_suppressed(self):
        headers = dict(build_upstream_headers(
            self.INCOMING,
            make_target(addCreditsHeader=False),
            credit_result=CREDITS,
        ))

        assert "X-Gateway-Credits-Remaining" not in headers

    def test_custom_headers_applied_last(self):
        target = make_target(customHeaders={"X-Org": "acme", "Accept": "text/plain"})
        headers = build_upstream_headers(self.INCOMING, target)

        assert dict(headers)["X-Org"] == "acme"
        assert [value for name, value in headers if name.lower() == "accept"] == ["text/plain"]

    def test_api_key_forwarded_when_enabled(self):
        headers = dict(build_upstream_headers(
            self.INCOMING,
            make_target(forwardApiKey=True),
            api_key="apk_secret",
        ))

        assert headers["X-API-Key"] == "apk_secret"

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            build_upstream_headers(self.INCOMING, make_target(), policy="everything")


class TestFilterResponseHeaders:
    def test_drops_hop_by_hop_and_encoding(self):
        headers = filter_response_headers([
            ("Content-Type", "application/json"),
            ("Content-Encoding", "gzip"),
            ("Content-Length", "10"),
            ("Transfer-Encoding", "chunked"),
            ("Set-Cookie", "a=1"),
        ])

        assert headers == [("Content-Type", "application/json"), ("Set-Cookie", "a=1")]


class TestProxyForwarder:
    """Test cases for ProxyForwarder."""

    @pytest.mark.asyncio
    async def test_forward_rewrites_url_and_annotates_response(self):
        """Test /t/foo/bar goes to https://b.example/foo/bar."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["method"] = request.method
            seen["body"] = request.content
            seen["headers"] = request.headers
            return httpx.Response(
                201,
                json={"ok": True},
                headers={"X-Backend": "yes", "Connection": "close"},
            )

        forwarder = ProxyForwarder(transport=httpx.MockTransport(handler))
        request = make_request(
            method="POST",
            query=b"q=1",
            headers={"Content-Type": "application/json", "X-API-Key": "apk_secret"},
            body=b'{"a": 1}',
        )

        response = await forwarder.forward(
            request, make_target(), client_id="c1", credit_result=CREDITS, request_id="abcd1234", client=CLIENT,
        )
        await forwarder.close()

        assert seen["url"] == "https://b.example/foo/bar?q=1"
        assert seen["method"] == "POST"
        assert seen["body"] == b'{"a": 1}'
        assert "x-api-key" not in seen["headers"]
        assert seen["headers"]["x-gateway-client-id"] == "c1"

        assert response.status_code == 201
        assert json.loads(response.body) == {"ok": True}
        assert response.headers["X-Backend"] == "yes"
        assert "connection" not in response.headers
        assert response.headers["X-Request-ID"] == "abcd1234"
        assert response.headers["X-Api-Gateway"] == "true"
        assert response.headers["X-Credits-Remaining"] == "5"
        assert response.headers["X-Credits-Used"] == "2"

    @pytest.mark.asyncio
    async def test_backend_status_passed_through(self):
        forwarder = ProxyForwarder(transport=httpx.MockTransport(lambda request: httpx.Response(404, text="nope")))

        response = await forwarder.forward(
            make_request(), make_target(), client_id="c1", credit_result=CREDITS, request_id="abcd1234",
        )
        await forwarder.close()

        assert response.status_code == 404
        assert response.body == b"nope"

    @pytest.mark.asyncio
    async def test_connection_error_raises_upstream_unavailable(self):
        """Test network failures become 502 with credit headers."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        forwarder = ProxyForwarder(transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await forwarder.forward(
                make_request(), make_target(), client_id="c1", credit_result=CREDITS, request_id="abcd1234",
            )
        await forwarder.close()

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Backend request failed"
        assert exc_info.value.headers["X-Credits-Remaining"] == "5"

    @pytest.mark.asyncio
    async def test_timeout_raises_upstream_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        forwarder = ProxyForwarder(transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnavailableError):
            await forwarder.forward(
                make_request(), make_target(), client_id="c1", credit_result=CREDITS, request_id="abcd1234",
            )
        await forwarder.close()

    @pytest.mark.asyncio
    async def test_redirects_followed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/foo/bar":
                return httpx.Response(302, headers={"Location": "https://b.example/moved"})
            return httpx.Response(200, text="moved here")

        forwarder = ProxyForwarder(transport=httpx.MockTransport(handler))

        response = await forwarder.forward(
            make_request(), make_target(), client_id="c1", credit_result=CREDITS, request_id="abcd1234",
        )
        await forwarder.close()

        assert response.status_code == 200
        assert response.body == b"moved here"
