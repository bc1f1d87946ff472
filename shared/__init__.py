"""
Shared utilities for the Todo Service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators with exponential backoff
- base_service: FastAPI application shell (middleware, health, error handlers)

Do not import from service_* packages into shared/.
"""
