"""
Base service class for gateway services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from typing import Dict, Optional
import time
import os

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import GatewayException
from shared.responses import apply_security_headers, exception_response, error_response


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Credit-metered API {self.service_name.title()}",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            openapi_url="/openapi.json" if self.config.env == "local" else None,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            request_id = set_request_id()
            request.state.request_id = request_id
            start_time = time.time()

            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.time() - start_time
            # Label by route template to keep proxied paths out of metric cardinality
            route = request.scope.get("route")
            endpoint = getattr(route, "path", None) or "unmatched"

            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id
            )

            if "X-Request-ID" not in response.headers:
                response.headers["X-Request-ID"] = request_id
            return apply_security_headers(response)

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(value == "ok" for value in dependencies.values()) else "error"
            self.metrics.record_health_check(status)

            payload = {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }
            if status != "ok":
                return JSONResponse(status_code=503, content=payload)
            return payload

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(GatewayException)
        async def gateway_exception_handler(request: Request, exc: GatewayException):
            """Handle GatewayException."""
            self.logger.warning(
                "Gateway error",
                code=exc.code,
                status_code=exc.status_code,
                message=exc.message,
                details=exc.details
            )
            return exception_response(
                exc,
                request_id=getattr(request.state, "request_id", None),
                generic=self.config.is_production,
            )

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            """Render request validation failures in the standard envelope."""
            self.logger.info("Invalid request", path=request.url.path, errors=exc.errors())
            return error_response(
                400,
                "Invalid request body",
                request_id=getattr(request.state, "request_id", None),
                generic=self.config.is_production,
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error(type(exc).__name__)
            return error_response(
                500,
                "Internal Server Error",
                request_id=getattr(request.state, "request_id", None),
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
