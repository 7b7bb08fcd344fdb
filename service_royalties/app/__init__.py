"""
Royalty Engine package for LicenseIQ.

This package rates sales line items against royalty rules extracted from
a licensing contract. It provides:

- app.coercion: Defensive conversion of external values into numbers.
- app.expressions: Calculation expression trees (parse, evaluate, render).
- app.rules: Rule and line-item models, record loading, rule matching.
- app.calculation: Pricing paths and the batch royalty calculator.
- app.service: Wiring of configuration, logging, metrics and calculator.

Guidelines:
- The engine is purely computational; no network or disk access.
- Data-quality problems become per-line diagnostics, never exceptions.
- Keep calculations deterministic and explainable (audit steps + logs).
"""
