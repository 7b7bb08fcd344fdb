"""
Calculation package.

Modules of interest:
- models: Per-line and batch results, and their camelCase response models.
- seasons: Season lookup from transaction dates.
- tiers: Tier, container-size and multiplier selection.
- pricing: Formula and legacy pricing paths for a matched rule.
- calculator: Batch orchestration with guarantee and cap reconciliation.
"""

from .calculator import RoyaltyCalculator, reconcile
from .models import BatchResult, BatchResultResponse, CalculationResult, CalculationType

__all__ = [
    "BatchResult",
    "BatchResultResponse",
    "CalculationResult",
    "CalculationType",
    "RoyaltyCalculator",
    "reconcile",
]
