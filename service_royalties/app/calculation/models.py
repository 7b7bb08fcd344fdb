"""
Calculation result models.

``CalculationResult`` and ``BatchResult`` are what the engine returns.
The pydantic response models render them with the camelCase field names
the reporting and audit layer reads.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.errors import DiagnosticCode

from ..rules.matcher import RuleSelection
from ..rules.models import ConditionCheck


class CalculationType(str, Enum):
    """Which pricing path produced a line's royalty."""
    CONTAINER_SIZE = "container_size"
    VOLUME_TIER = "volume_tier"
    PERCENTAGE = "percentage"
    FORMULA = "formula"
    FLAT_RATE = "flat_rate"
    NONE = "none"


@dataclass(frozen=True)
class Diagnostic:
    code: DiagnosticCode
    message: str


@dataclass(frozen=True)
class CalculationStep:
    """One numbered step of the audit trail."""
    step: int
    description: str
    formula: str
    values: str
    result: str


@dataclass(frozen=True)
class CalculationResult:
    """Per-line calculation result."""
    line_item_id: str
    product_name: str
    category: str
    territory: str
    quantity: Optional[float]
    gross_amount: Optional[float]
    container_size: Optional[str] = None
    transaction_date: Optional[str] = None
    season: Optional[str] = None
    matched: bool = False
    coerced: bool = True
    rule_id: Optional[str] = None
    rule_applied: Optional[str] = None
    rule_type: Optional[str] = None
    calculation_type: CalculationType = CalculationType.NONE
    base_rate: float = 0.0
    tier_rate: float = 0.0
    seasonal_multiplier: float = 1.0
    territory_multiplier: float = 1.0
    calculated_royalty: float = 0.0
    explanation: str = ""
    volume_discount_applied: bool = False
    calculation_steps: Tuple[CalculationStep, ...] = ()
    conditions_checked: Tuple[ConditionCheck, ...] = ()
    selection: Optional[RuleSelection] = None
    diagnostics: Tuple[Diagnostic, ...] = ()

    def has_diagnostic(self, code: DiagnosticCode) -> bool:
        return any(d.code == code for d in self.diagnostics)


@dataclass(frozen=True)
class BatchResult:
    """Result of rating one batch of line items against one contract."""
    contract_id: str
    calculation_id: str
    total_royalty: float
    final_royalty: float
    minimum_guarantee: Optional[float] = None
    cap_amount: Optional[float] = None
    minimum_guarantee_applied: bool = False
    cap_applied: bool = False
    rules_applied: Tuple[str, ...] = ()
    breakdown: Tuple[CalculationResult, ...] = ()

    @property
    def matched_count(self) -> int:
        return sum(1 for line in self.breakdown if line.matched)

    @property
    def excluded_count(self) -> int:
        return sum(1 for line in self.breakdown if not line.coerced)

    @property
    def unmatched_count(self) -> int:
        return sum(1 for line in self.breakdown if not line.matched)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CalculationStepResponse(_CamelModel):
    step: int
    description: str
    formula: str
    values: str
    result: str


class ConditionCheckResponse(_CamelModel):
    condition: str
    expected: str
    actual: str
    matched: bool


class DiagnosticResponse(_CamelModel):
    code: DiagnosticCode
    message: str


class BreakdownItemResponse(_CamelModel):
    """Response model for one line of a calculation."""
    sale_id: str
    product_name: str
    category: str
    territory: str
    quantity: Optional[float] = None
    gross_amount: Optional[float] = None
    container_size: Optional[str] = None
    transaction_date: Optional[str] = None
    season: Optional[str] = None
    matched: bool
    coerced: bool
    rule_id: Optional[str] = None
    rule_applied: Optional[str] = None
    rule_type: Optional[str] = None
    calculation_type: CalculationType
    base_rate: float
    tier_rate: float
    seasonal_multiplier: float
    territory_multiplier: float
    calculated_royalty: float
    explanation: str
    volume_discount_applied: bool
    match_phase: Optional[str] = None
    match_quality: Optional[str] = None
    calculation_steps: List[CalculationStepResponse] = Field(default_factory=list)
    conditions_checked: List[ConditionCheckResponse] = Field(default_factory=list)
    diagnostics: List[DiagnosticResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: CalculationResult) -> "BreakdownItemResponse":
        selection = result.selection
        return cls(
            sale_id=result.line_item_id,
            product_name=result.product_name,
            category=result.category,
            territory=result.territory,
            quantity=result.quantity,
            gross_amount=result.gross_amount,
            container_size=result.container_size,
            transaction_date=result.transaction_date,
            season=result.season,
            matched=result.matched,
            coerced=result.coerced,
            rule_id=result.rule_id,
            rule_applied=result.rule_applied,
            rule_type=result.rule_type,
            calculation_type=result.calculation_type,
            base_rate=result.base_rate,
            tier_rate=result.tier_rate,
            seasonal_multiplier=result.seasonal_multiplier,
            territory_multiplier=result.territory_multiplier,
            calculated_royalty=result.calculated_royalty,
            explanation=result.explanation,
            volume_discount_applied=result.volume_discount_applied,
            match_phase=selection.phase.value if selection else None,
            match_quality=selection.match_quality.value if selection else None,
            calculation_steps=[CalculationStepResponse(**vars(step)) for step in result.calculation_steps],
            conditions_checked=[ConditionCheckResponse(**vars(check)) for check in result.conditions_checked],
            diagnostics=[DiagnosticResponse(code=d.code, message=d.message) for d in result.diagnostics],
        )


class BatchResultResponse(_CamelModel):
    """Response model for a batch calculation."""
    contract_id: str
    calculation_id: str
    total_royalty: float
    minimum_guarantee: Optional[float] = None
    cap_amount: Optional[float] = None
    final_royalty: float
    minimum_guarantee_applied: bool
    cap_applied: bool
    rules_applied: List[str]
    matched_count: int
    unmatched_count: int
    excluded_count: int
    breakdown: List[BreakdownItemResponse]

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchResultResponse":
        return cls(
            contract_id=result.contract_id,
            calculation_id=result.calculation_id,
            total_royalty=result.total_royalty,
            minimum_guarantee=result.minimum_guarantee,
            cap_amount=result.cap_amount,
            final_royalty=result.final_royalty,
            minimum_guarantee_applied=result.minimum_guarantee_applied,
            cap_applied=result.cap_applied,
            rules_applied=list(result.rules_applied),
            matched_count=result.matched_count,
            unmatched_count=result.unmatched_count,
            excluded_count=result.excluded_count,
            breakdown=[BreakdownItemResponse.from_result(line) for line in result.breakdown],
        )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize with camelCase keys for the reporting layer."""
        return self.model_dump(by_alias=True, mode="json")
