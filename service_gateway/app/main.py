"""
Gateway service main application.

Serves the admin API under ``/admin`` and meters and proxies every other
path through the gateway pipeline.
"""

import asyncio
from typing import Optional

import httpx
from fastapi import Depends, Request, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import MethodNotAllowedError, NotFoundError
from shared.keystore import KeyValueStore, create_store
from shared.responses import ADMIN_HEADERS, preflight_response, success_response
from shared.ttl_cache import TTLCache

from .admin import AdminAuthenticator, ApiKeyService, ClientService, CreditService
from .auth import ApiKeyValidator, ClientLookup
from .credits import CostTable, CreditLedger
from .domain import GatewayPipeline
from .models import (
    ApiKeyCreate,
    ApiKeyUpdate,
    ClientCreate,
    ClientUpdate,
    CreditAdd,
    CreditCreate,
    CreditSet,
)
from .proxy import ProxyForwarder
from .routing import TargetRegistry
from .usage import UsageTracker


PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# Paths served by the service itself, never proxied
SERVICE_PATHS = {"health", "metrics"}


class GatewayService(BaseService):
    """Credit-metered API gateway service."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[KeyValueStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("gateway", 8000, config=config)

        self.store = store or create_store(self.config.storage_backend, self.config.redis_url)
        self.targets = TargetRegistry.load(self.config.targets_file)
        self.costs = CostTable.load(self.config.cost_table_file)
        self.usage = UsageTracker(self.store, ttl_days=self.config.usage_ttl_days)

        self.api_key_cache = TTLCache(
            ttl_seconds=self.config.api_key_cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )
        self.client_cache = TTLCache(
            ttl_seconds=self.config.client_cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )

        self.validator = ApiKeyValidator(self.store, self.api_key_cache, usage=self.usage, metrics=self.metrics)
        self.client_lookup = ClientLookup(self.store, self.client_cache, metrics=self.metrics)
        self.ledger = CreditLedger(self.store, usage=self.usage, metrics=self.metrics)
        self.forwarder = ProxyForwarder(
            timeout_seconds=self.config.backend_timeout_seconds,
            follow_redirects=self.config.follow_redirects,
            header_policy=self.config.header_policy,
            metrics=self.metrics,
            transport=transport,
        )

        self.pipeline = GatewayPipeline(
            validator=self.validator,
            clients=self.client_lookup,
            targets=self.targets,
            costs=self.costs,
            ledger=self.ledger,
            forwarder=self.forwarder,
            allowed_origins=self.config.allowed_origins,
            require_client_record=self.config.require_client_record,
            insufficient_credits_status=self.config.insufficient_credits_status,
            refund_on_upstream_failure=self.config.refund_on_upstream_failure,
            generic_errors=self.config.is_production,
            metrics=self.metrics,
        )

        self.admin_auth = AdminAuthenticator(self.config.admin_auth_key)
        self.client_service = ClientService(
            self.store,
            self.ledger,
            client_lookup=self.client_lookup,
            validator=self.validator,
        )
        self.api_key_service = ApiKeyService(self.store, self.targets, validator=self.validator)
        self.credit_service = CreditService(self.ledger)

        self._sweep_task: Optional[asyncio.Task] = None

        @self.app.on_event("startup")
        async def _startup():
            self._sweep_task = asyncio.create_task(self._sweep_caches())
            self.logger.info(
                "Gateway started",
                storage_backend=self.config.storage_backend,
                targets=len(self.targets),
                header_policy=self.config.header_policy,
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._sweep_task:
                self._sweep_task.cancel()
                try:
                    await self._sweep_task
                except asyncio.CancelledError:
                    pass
            await self.usage.drain()
            await self.forwarder.close()
            await self.store.close()

        self._setup_admin_headers()
        self._setup_admin_routes()
        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def _check_dependencies(self):
        return {"store": "ok" if await self.store.ping() else "error"}

    async def _sweep_caches(self):
        """Periodically drop expired cache entries."""
        while True:
            await asyncio.sleep(self.config.cache_sweep_interval_seconds)
            purged = self.api_key_cache.purge_expired() + self.client_cache.purge_expired()
            if purged:
                self.logger.debug("Cache sweep", purged=purged)

    def _setup_admin_headers(self):
        """Admin responses are never cached."""

        @self.app.middleware("http")
        async def admin_cache_headers(request: Request, call_next):
            response = await call_next(request)
            if request.url.path.startswith("/admin"):
                for name, value in ADMIN_HEADERS.items():
                    response.headers[name] = value
            return response

    def _setup_admin_routes(self):
        """Set up admin API routes."""

        async def require_admin(request: Request):
            self.admin_auth.verify(request)

        admin = [Depends(require_admin)]

        # Clients

        @self.app.get("/admin/clients", dependencies=admin)
        async def list_clients():
            clients = await self.client_service.list_clients()
            return success_response({"clients": [client.to_json_dict() for client in clients]})

        @self.app.post("/admin/clients", dependencies=admin)
        async def create_client(payload: ClientCreate):
            result = await self.client_service.create_client(payload)
            return success_response(result, status_code=201)

        @self.app.get("/admin/clients/{client_id}", dependencies=admin)
        async def get_client(client_id: str):
            client = await self.client_service.get_client(client_id)
            return success_response({"client": client.to_json_dict()})

        @self.app.put("/admin/clients/{client_id}", dependencies=admin)
        async def update_client(client_id: str, payload: ClientUpdate):
            client = await self.client_service.update_client(client_id, payload)
            return success_response({"success": True, "client": client.to_json_dict()})

        @self.app.delete("/admin/clients/{client_id}", dependencies=admin)
        async def delete_client(client_id: str):
            await self.client_service.delete_client(client_id)
            return success_response({"success": True})

        @self.app.get("/admin/clients/{client_id}/api-keys", dependencies=admin)
        async def list_client_api_keys(client_id: str):
            records = await self.api_key_service.list_for_client(client_id)
            return success_response({"apiKeys": [record.to_json_dict() for record in records]})

        # API keys

        @self.app.post("/admin/api-keys", dependencies=admin)
        async def create_api_key(payload: ApiKeyCreate):
            record = await self.api_key_service.create_api_key(payload)
            return success_response({"apiKeyConfig": record.to_json_dict()}, status_code=201)

        @self.app.get("/admin/api-keys/{api_key}", dependencies=admin)
        async def get_api_key(api_key: str):
            record = await self.api_key_service.get_api_key(api_key)
            return success_response({"apiKeyConfig": record.to_json_dict()})

        @self.app.put("/admin/api-keys/{api_key}", dependencies=admin)
        async def update_api_key(api_key: str, payload: ApiKeyUpdate):
            record = await self.api_key_service.update_api_key(api_key, payload)
            return success_response({"apiKeyConfig": record.to_json_dict()})

        @self.app.delete("/admin/api-keys/{api_key}", dependencies=admin)
        async def delete_api_key(api_key: str):
            await self.api_key_service.delete_api_key(api_key)
            return success_response({"success": True})

        # Credits

        @self.app.post("/admin/credits", dependencies=admin)
        async def create_credits(payload: CreditCreate):
            result = await self.credit_service.create_credits(payload.client_id, payload.credits)
            return success_response(result, status_code=201)

        @self.app.get("/admin/credits/{client_id}", dependencies=admin)
        async def get_credits(client_id: str):
            return success_response(await self.credit_service.get_credits(client_id))

        @self.app.put("/admin/credits/{client_id}", dependencies=admin)
        async def set_credits(client_id: str, payload: CreditSet):
            return success_response(await self.credit_service.set_credits(client_id, payload.credits))

        @self.app.post("/admin/credits/{client_id}/add", dependencies=admin)
        async def add_credits(client_id: str, payload: CreditAdd):
            return success_response(await self.credit_service.add_credits(client_id, payload.amount))

        # Targets (read-only)

        @self.app.get("/admin/targets", dependencies=admin)
        async def list_targets():
            return success_response({"targets": [target.to_json_dict() for target in self.targets.list()]})

        @self.app.get("/admin/targets/{target_id}", dependencies=admin)
        async def get_target(target_id: str):
            if target_id not in self.targets:
                raise NotFoundError("Target not found", details={"target_id": target_id})
            return success_response({"target": self.targets.get_target(target_id).to_json_dict()})

        @self.app.api_route("/admin", methods=PROXY_METHODS, include_in_schema=False)
        @self.app.api_route("/admin/{rest:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def admin_not_found(request: Request, rest: str = ""):
            if request.method == "OPTIONS":
                return preflight_response(
                    request.headers.get("Origin"),
                    self.config.allowed_origins,
                    getattr(request.state, "request_id", None),
                )
            self.admin_auth.verify(request)
            raise NotFoundError()

    def _setup_gateway_routes(self):
        """Route every remaining path through the metered pipeline."""

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def gateway_proxy(path: str, request: Request) -> Response:
            if path in SERVICE_PATHS:
                raise MethodNotAllowedError(headers={"Allow": "GET"})
            return await self.pipeline.handle(request)


def create_app(
    config: Optional[ServiceConfig] = None,
    store: Optional[KeyValueStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
):
    """Create FastAPI application."""
    service = GatewayService(config=config, store=store, transport=transport)
    return service.app


if __name__ == "__main__":
    service = GatewayService(config=get_config("gateway", 8000))
    service.run()
