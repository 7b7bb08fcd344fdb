"""
Expression tree node types.

A calculation is a tree of immutable nodes. ``ExpressionNode`` is the
closed union of every variant; the parser only ever produces these types
and the evaluator and renderer handle each of them explicitly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class PremiumMode(str, Enum):
    """How a premium percentage is applied to its base."""
    ADDITIVE = "additive"
    MULTIPLICATIVE = "multiplicative"


class RoundMode(str, Enum):
    """Rounding direction."""
    NEAREST = "nearest"
    FLOOR = "floor"
    CEIL = "ceil"


class ConditionOperator(str, Enum):
    """Condition operators for ``If`` nodes."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


PERCENT_UNITS = ("percent", "%")


@dataclass(frozen=True)
class Condition:
    """A test against one binding, resolved by the caller's binding context."""
    field: str
    operator: ConditionOperator
    value: Any = None


@dataclass(frozen=True)
class Literal:
    value: Any
    unit: Optional[str] = None

    @property
    def is_percent(self) -> bool:
        return (self.unit or "").strip().lower() in PERCENT_UNITS


@dataclass(frozen=True)
class Reference:
    field: str


@dataclass(frozen=True)
class Multiply:
    operands: Tuple[Optional["ExpressionNode"], ...] = ()


@dataclass(frozen=True)
class Add:
    operands: Tuple[Optional["ExpressionNode"], ...] = ()


@dataclass(frozen=True)
class Subtract:
    left: Optional["ExpressionNode"] = None
    right: Optional["ExpressionNode"] = None


@dataclass(frozen=True)
class Premium:
    base: Optional["ExpressionNode"] = None
    percentage: Optional["ExpressionNode"] = None
    mode: PremiumMode = PremiumMode.ADDITIVE


@dataclass(frozen=True)
class Max:
    operands: Tuple[Optional["ExpressionNode"], ...] = ()


@dataclass(frozen=True)
class Min:
    operands: Tuple[Optional["ExpressionNode"], ...] = ()


# Decimal places a float can still resolve.
MAX_ROUND_PRECISION = 15


@dataclass(frozen=True)
class Round:
    value: Optional["ExpressionNode"] = None
    precision: int = 2
    mode: RoundMode = RoundMode.NEAREST


@dataclass(frozen=True)
class TierEntry:
    min: float
    max: Optional[float] = None
    rate: Optional["ExpressionNode"] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class Tier:
    tiers: Tuple[TierEntry, ...] = ()


@dataclass(frozen=True)
class Lookup:
    """Table keyed by the value of ``field`` (e.g. "season", "territory")."""
    field: str
    table: Tuple[Tuple[str, Optional["ExpressionNode"]], ...] = ()

    @property
    def entries(self) -> Dict[str, Optional["ExpressionNode"]]:
        return dict(self.table)


@dataclass(frozen=True)
class If:
    condition: Union[bool, Condition, None] = None
    then: Optional["ExpressionNode"] = None
    otherwise: Optional["ExpressionNode"] = None


ExpressionNode = Union[
    Literal, Reference, Multiply, Add, Subtract, Premium,
    Max, Min, Round, Tier, Lookup, If,
]

NODE_TYPES = (Literal, Reference, Multiply, Add, Subtract, Premium, Max, Min, Round, Tier, Lookup, If)


def percent_scale(node: Optional[ExpressionNode]) -> float:
    """Factor that turns a node's value into a fractional rate (0.01 for percent literals)."""
    if isinstance(node, Literal) and node.is_percent:
        return 0.01
    return 1.0
