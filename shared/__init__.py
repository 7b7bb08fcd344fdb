"""
Shared utilities for the LicenseIQ Royalty Engine.

This package aggregates common building blocks consumed by the engine:

- config: Base configuration via pydantic-settings
- logging: Structured logging with calculation correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types, diagnostics and responses
- test_helpers: Record factories for tests

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
