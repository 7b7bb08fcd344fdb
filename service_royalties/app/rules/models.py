"""
Rule and line-item data models for the Royalty Engine.

Dataclasses here are the engine's internal, immutable view of its inputs.
The pydantic ``*Record`` models describe the JSON shape collaborators hand
over (camelCase keys, numbers that may still be strings) and are turned
into dataclasses by ``rules.loader``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..expressions.nodes import ExpressionNode, Lookup


class RuleType(str, Enum):
    """Royalty rule types produced by contract extraction."""
    TIERED = "tiered"
    TIERED_PRICING = "tiered_pricing"
    FORMULA_BASED = "formula_based"
    PERCENTAGE = "percentage"
    MINIMUM_GUARANTEE = "minimum_guarantee"
    CAP = "cap"
    FIXED_FEE = "fixed_fee"
    FIXED_PRICE = "fixed_price"
    VARIABLE_PRICE = "variable_price"
    PER_SEAT = "per_seat"
    PER_UNIT = "per_unit"
    PER_TIME_PERIOD = "per_time_period"
    VOLUME_DISCOUNT = "volume_discount"
    LICENSE_SCOPE = "license_scope"
    USAGE_BASED = "usage_based"
    CONTAINER_SIZE_TIERED = "container_size_tiered"


# Contract-level clauses; never matched against individual line items.
CONTRACT_LEVEL_RULE_TYPES = (RuleType.MINIMUM_GUARANTEE, RuleType.CAP)


class RateBasis(str, Enum):
    """What a rate is multiplied by."""
    PER_UNIT = "per_unit"
    GROSS_AMOUNT = "gross_amount"


@dataclass(frozen=True)
class VolumeTier:
    """Legacy quantity band; ``max`` of None means unbounded."""
    min: float
    max: Optional[float]
    rate: float
    label: Optional[str] = None

    def contains(self, quantity: float) -> bool:
        if quantity < self.min:
            return False
        return self.max is None or quantity <= self.max


@dataclass(frozen=True)
class ContainerSizeRate:
    """Per-unit rate for one container size, with an optional volume discount."""
    size: str
    base_rate: float
    volume_threshold: Optional[float] = None
    discounted_rate: Optional[float] = None


@dataclass(frozen=True)
class LegacyCalculation:
    """Flat rate record used by rules without an expression tree."""
    base_rate: Optional[float] = None
    volume_tiers: Tuple[VolumeTier, ...] = ()
    seasonal_adjustments: Mapping[str, float] = field(default_factory=dict)
    territory_premiums: Mapping[str, float] = field(default_factory=dict)
    container_size_rates: Tuple[ContainerSizeRate, ...] = ()
    basis: RateBasis = RateBasis.PER_UNIT


@dataclass(frozen=True)
class FormulaCalculation:
    """Expression-tree calculation.

    ``expression`` yields the effective rate. The optional lookups yield
    seasonal and territory multipliers. ``fallback`` holds flat fields
    found on the same record and is used when the tree produces no rate.
    """
    expression: ExpressionNode
    seasonal_adjustments: Optional[Lookup] = None
    territory_premiums: Optional[Lookup] = None
    basis: RateBasis = RateBasis.PER_UNIT
    description: Optional[str] = None
    fallback: Optional[LegacyCalculation] = None


Calculation = Union[LegacyCalculation, FormulaCalculation]


@dataclass(frozen=True)
class Rule:
    """Contract-derived royalty rule."""
    rule_id: str
    name: str
    rule_type: RuleType = RuleType.PERCENTAGE
    contract_id: Optional[str] = None
    product_categories: Tuple[str, ...] = ()
    territories: Tuple[str, ...] = ()
    priority: Optional[int] = None
    calculation: Optional[Calculation] = None
    minimum_guarantee: Any = None
    cap_amount: Any = None
    is_active: bool = True
    source_text: Optional[str] = None
    confidence: Optional[float] = None

    @property
    def is_global(self) -> bool:
        """Rules without product categories are generic fallbacks."""
        return not self.product_categories


@dataclass(frozen=True)
class LineItem:
    """One sales transaction. Numeric fields hold raw external values."""
    line_item_id: str
    product_name: str = ""
    category: str = ""
    territory: str = ""
    quantity: Any = None
    gross_amount: Any = None
    transaction_date: Union[date, datetime, str, None] = None
    container_size: Optional[str] = None


@dataclass(frozen=True)
class ConditionCheck:
    """One applicability or calculation condition, recorded for audit."""
    condition: str
    expected: str
    actual: str
    matched: bool


def _as_string_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return value


class RuleRecord(BaseModel):
    """Rule record as produced by the rule source."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Rule ID")
    contract_id: Optional[str] = Field(None, alias="contractId")
    rule_name: str = Field(..., alias="ruleName")
    rule_type: RuleType = Field(RuleType.PERCENTAGE, alias="ruleType")
    product_categories: List[str] = Field(default_factory=list, alias="productCategories")
    territories: List[str] = Field(default_factory=list)
    priority: Any = Field(None, description="Lower value wins")
    base_rate: Any = Field(None, alias="baseRate")
    volume_tiers: List[Dict[str, Any]] = Field(default_factory=list, alias="volumeTiers")
    container_size_rates: List[Dict[str, Any]] = Field(default_factory=list, alias="containerSizeRates")
    seasonal_adjustments: Dict[str, Any] = Field(default_factory=dict, alias="seasonalAdjustments")
    territory_premiums: Dict[str, Any] = Field(default_factory=dict, alias="territoryPremiums")
    calculation_basis: Optional[RateBasis] = Field(None, alias="calculationBasis")
    formula_definition: Optional[Dict[str, Any]] = Field(None, alias="formulaDefinition")
    minimum_guarantee: Any = Field(None, alias="minimumGuarantee")
    cap_amount: Any = Field(None, alias="capAmount")
    is_active: bool = Field(True, alias="isActive")
    source_text: Optional[str] = Field(None, alias="sourceText")
    confidence: Optional[float] = Field(None)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("product_categories", "territories", mode="before")
    @classmethod
    def _string_lists(cls, value: Any) -> Any:
        return _as_string_list(value)

    @field_validator("volume_tiers", "container_size_rates", mode="before")
    @classmethod
    def _record_lists(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return value

    @field_validator("seasonal_adjustments", "territory_premiums", mode="before")
    @classmethod
    def _record_maps(cls, value: Any) -> Any:
        return value or {}


class LineItemRecord(BaseModel):
    """Sales record as produced by the line-item source."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Sale ID")
    product_name: str = Field("", alias="productName")
    category: str = Field("")
    territory: str = Field("")
    quantity: Any = Field(None)
    gross_amount: Any = Field(None, alias="grossAmount")
    transaction_date: Any = Field(None, alias="transactionDate")
    container_size: Optional[str] = Field(None, alias="containerSize")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("product_name", "category", "territory", mode="before")
    @classmethod
    def _blank_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value
