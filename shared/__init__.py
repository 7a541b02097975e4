"""
Shared utilities for the petstore query service.

This package aggregates common building blocks:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for idempotent calls
- circuit_breaker: Resilient external call protection
- base_service: FastAPI app wiring shared by services

Do not import from service packages into shared/.
"""
