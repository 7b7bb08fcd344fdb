"""
Rules package.

Defines the rule and line-item models used by the Royalty Engine and the
matcher that selects one rule per line item. Specific rules (scoped to
product categories) always beat global fallback rules; priority only
orders rules within each phase.

Modules of interest:
- models: Dataclasses for Rule, LineItem and calculations, plus pydantic
  record models for incoming JSON.
- loader: Builds models from records, skipping invalid ones in batches.
- matcher: Two-phase rule selection with an audit trail.
"""
