"""
Credit-metered request pipeline.

Each inbound request goes through key validation, client lookup, target
resolution, cost lookup, credit debit and forwarding, strictly in that
order. Any stage may end the request with a typed error; every response
carries the request's correlation id in ``X-Request-ID``.
"""

from typing import List, Optional

from fastapi import Request, Response

from shared.errors import (
    AuthRequiredError,
    ClientNotFoundError,
    GatewayException,
    InsufficientCreditsError,
    UpstreamUnavailableError,
)
from shared.logging import get_logger, mask_key, set_client_context, set_request_id
from shared.metrics import MetricsCollector
from shared.responses import (
    error_response,
    exception_response,
    preflight_response,
    resolve_allowed_origin,
)

from ..auth import ApiKeyValidator, ClientLookup
from ..credits import CostTable, CreditLedger
from ..proxy import ProxyForwarder
from ..proxy.forwarder import credit_headers
from ..routing import TargetRegistry


class GatewayPipeline:
    """Composes the gateway stages for one request at a time."""

    def __init__(
        self,
        validator: ApiKeyValidator,
        clients: ClientLookup,
        targets: TargetRegistry,
        costs: CostTable,
        ledger: CreditLedger,
        forwarder: ProxyForwarder,
        allowed_origins: Optional[List[str]] = None,
        require_client_record: bool = True,
        insufficient_credits_status: int = 429,
        refund_on_upstream_failure: bool = False,
        generic_errors: bool = False,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.validator = validator
        self.clients = clients
        self.targets = targets
        self.costs = costs
        self.ledger = ledger
        self.forwarder = forwarder
        self.allowed_origins = allowed_origins or []
        self.require_client_record = require_client_record
        self.insufficient_credits_status = insufficient_credits_status
        self.refund_on_upstream_failure = refund_on_upstream_failure
        self.generic_errors = generic_errors
        self.metrics = metrics
        self.logger = get_logger("gateway.pipeline")

    async def handle(self, request: Request) -> Response:
        """Produce the final response for ``request``; never raises."""
        request_id = getattr(request.state, "request_id", None) or set_request_id()
        origin = request.headers.get("Origin")

        if request.method == "OPTIONS":
            return preflight_response(origin, self.allowed_origins, request_id)

        try:
            response = await self._process(request, request_id)
        except GatewayException as exc:
            self.logger.info(
                "Request rejected",
                code=exc.code,
                status_code=exc.status_code,
                path=request.url.path,
                details=exc.details,
            )
            response = exception_response(exc, request_id, generic=self.generic_errors)
        except Exception as e:
            self.logger.error("Gateway error", path=request.url.path, error=str(e), exc_info=True)
            if self.metrics:
                self.metrics.record_error(type(e).__name__)
            response = error_response(500, "Internal Server Error", request_id)

        if origin:
            response.headers["Access-Control-Allow-Origin"] = resolve_allowed_origin(origin, self.allowed_origins)
        return response

    async def _process(self, request: Request, request_id: str) -> Response:
        raw_key = request.headers.get("X-API-Key")
        if not raw_key:
            raise AuthRequiredError()

        key_record = await self.validator.validate(raw_key)
        client_id = key_record.client_id
        set_client_context(client_id)

        client = await self.clients.get(client_id)
        if client is None and self.require_client_record:
            raise ClientNotFoundError(details={"client_id": client_id})

        path = request.url.path
        target = self.targets.resolve(path, key_record.target_id)
        cost = self.costs.cost_for_target(path, target)

        credit_result = await self.ledger.debit(client_id, cost)
        if not credit_result.success:
            raise InsufficientCreditsError(
                remaining=credit_result.remaining,
                required=cost,
                status_code=self.insufficient_credits_status,
            )

        self.logger.info(
            "Request authorised",
            api_key=mask_key(raw_key),
            target_id=target.id,
            cost=cost,
            remaining=credit_result.remaining,
        )

        try:
            return await self.forwarder.forward(
                request,
                target,
                client_id=client_id,
                credit_result=credit_result,
                request_id=request_id,
                client=client,
                api_key=raw_key,
            )
        except UpstreamUnavailableError as exc:
            if self.refund_on_upstream_failure and credit_result.used > 0:
                balance = await self.ledger.refund(client_id, credit_result.used)
                if target.add_credits_header:
                    refunded = credit_result.model_copy(update={"remaining": balance, "used": 0})
                    exc.headers.update(credit_headers(refunded))
            raise
