"""
Shared utilities for the loadcache engine.

This package aggregates common building blocks consumed by the engine:

- config: Engine configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry policy with exponential backoff

Any cross-cutting logic should live here to avoid import cycles. Do not
import from loadcache into shared/.
"""
