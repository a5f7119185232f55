"""
Shared utilities for the credit-metered API gateway.

This package aggregates common building blocks consumed by the gateway and
its admin surface:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- keystore: Key-value store abstraction (Redis and in-memory)
- ttl_cache: Bounded, time-expiring read-through cache
- responses: JSON envelopes, CORS and security headers
- base_service: FastAPI service shell with health, metrics and error handlers

Do not import from service packages into shared/.
"""
