"""
Reverse-proxy forwarding to target backends.
"""

import time
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import httpx
from fastapi import Request, Response

from shared.errors import UpstreamUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import ClientRecord, CreditResult, TargetDescriptor
from ..routing import build_backend_url


HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

ALLOWED_REQUEST_HEADERS = frozenset({
    "content-type",
    "accept",
    "accept-language",
    "user-agent",
})

# Platform and proxy identification never reaches a backend.
DENIED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | frozenset({
    "host",
    "content-length",
    "x-api-key",
    "x-admin-key",
    "cf-connecting-ip",
    "cf-ipcountry",
    "cf-ray",
    "cf-visitor",
    "cf-worker",
    "cdn-loop",
    "true-client-ip",
    "x-forwarded-for",
    "x-forwarded-proto",
    "x-real-ip",
})

# The body is re-encoded by the gateway.
DROPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | frozenset({
    "content-encoding",
    "content-length",
})

HEADER_POLICIES = ("allowlist", "denylist")


def credit_headers(credit_result: Optional[CreditResult], prefix: str = "X-Credits") -> Dict[str, str]:
    if credit_result is None:
        return {}
    return {
        f"{prefix}-Remaining": str(credit_result.remaining),
        f"{prefix}-Used": str(credit_result.used),
    }


def build_upstream_headers(
    incoming: Iterable[Tuple[str, str]],
    target: TargetDescriptor,
    policy: str = "allowlist",
    client: Optional[ClientRecord] = None,
    client_id: Optional[str] = None,
    credit_result: Optional[CreditResult] = None,
    request_id: Optional[str] = None,
    api_key: Optional[str] = None,
) -> List[Tuple[str, str]]:
    """Headers sent to the backend for one request."""
    if policy not in HEADER_POLICIES:
        raise ValueError(f"Unknown header policy: {policy}")

    headers: List[Tuple[str, str]] = []
    for name, value in incoming:
        lowered = name.lower()
        if policy == "allowlist":
            if lowered in ALLOWED_REQUEST_HEADERS:
                headers.append((name, value))
        elif lowered not in DENIED_REQUEST_HEADERS and not lowered.startswith("x-gateway-"):
            headers.append((name, value))

    injected: Dict[str, str] = {}
    if client is not None:
        injected["X-Gateway-Client-Id"] = client.id
        injected["X-Gateway-Client-Type"] = client.type
        injected["X-Gateway-Plan"] = client.plan
    elif client_id:
        injected["X-Gateway-Client-Id"] = client_id
    if request_id:
        injected["X-Request-ID"] = request_id
    if target.add_credits_header:
        injected.update(credit_headers(credit_result, prefix="X-Gateway-Credits"))
    injected.update(target.custom_headers)
    if target.forward_api_key and api_key:
        injected["X-API-Key"] = api_key

    overridden = {name.lower() for name in injected}
    headers = [(name, value) for name, value in headers if name.lower() not in overridden]
    headers.extend(injected.items())
    return headers


def filter_response_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    return [(name, value) for name, value in headers if name.lower() not in DROPPED_RESPONSE_HEADERS]


class ProxyForwarder:
    """Sends a metered request to its backend and annotates the response."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        follow_redirects: bool = True,
        header_policy: str = "allowlist",
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if header_policy not in HEADER_POLICIES:
            raise ValueError(f"Unknown header policy: {header_policy}")
        self.header_policy = header_policy
        self.metrics = metrics
        self.logger = get_logger("gateway.forwarder")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=follow_redirects,
            transport=transport,
        )

    async def forward(
        self,
        request: Request,
        target: TargetDescriptor,
        client_id: str,
        credit_result: CreditResult,
        request_id: str,
        client: Optional[ClientRecord] = None,
        api_key: Optional[str] = None,
    ) -> Response:
        url = build_backend_url(target, request.url.path, request.url.query)
        headers = build_upstream_headers(
            request.headers.items(),
            target,
            policy=self.header_policy,
            client=client,
            client_id=client_id,
            credit_result=credit_result,
            request_id=request_id,
            api_key=api_key,
        )
        body = await request.body()

        self.logger.info("Proxying request", target_id=target.id, method=request.method, url=url)

        start_time = time.time()
        try:
            upstream = await self._client.request(
                request.method,
                url,
                headers=headers,
                content=body or None,
            )
        except httpx.RequestError as e:
            duration = time.time() - start_time
            if self.metrics:
                self.metrics.record_upstream(target.id, "error", duration)
            self.logger.error(
                "Backend request failed",
                target_id=target.id,
                url=url,
                error_type=type(e).__name__,
                error=str(e),
            )
            error_headers = credit_headers(credit_result) if target.add_credits_header else {}
            raise UpstreamUnavailableError(
                details={"target_id": target.id, "error": type(e).__name__},
                headers=error_headers,
            ) from e

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_upstream(target.id, "ok", duration)

        return self._annotate(upstream, target, credit_result, request_id)

    def _annotate(
        self,
        upstream: httpx.Response,
        target: TargetDescriptor,
        credit_result: CreditResult,
        request_id: str,
    ) -> Response:
        response = Response(content=upstream.content, status_code=upstream.status_code)
        for name, value in filter_response_headers(upstream.headers.multi_items()):
            response.headers.append(name, value)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Api-Gateway"] = "true"
        if target.add_credits_header:
            for name, value in credit_headers(credit_result).items():
                response.headers[name] = value
        return response

    async def close(self) -> None:
        await self._client.aclose()
