"""
Build expression trees from JSON-shaped rule data.

Formula definitions arrive as nested mappings such as::

    {"type": "multiply", "operands": [
        {"type": "literal", "value": 4.0},
        {"type": "lookup", "reference": {"field": "season"},
         "table": {"Spring": 1.1, "Holiday": 1.25}}]}

Bare numbers and strings are accepted wherever a node is expected and
become ``Literal`` nodes. Anything the parser does not recognise becomes
``None``; the evaluator treats a ``None`` child as unresolvable.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..coercion import coerce, coerce_int
from .nodes import (
    MAX_ROUND_PRECISION, Add, Condition, ConditionOperator, ExpressionNode, If,
    Literal, Lookup, Max, Min, Multiply, Premium, PremiumMode, Reference, Round,
    RoundMode, Subtract, Tier, TierEntry,
)


def parse_expression(raw: Any) -> Optional[ExpressionNode]:
    """Parse a raw formula definition into an ``ExpressionNode`` tree."""
    if isinstance(raw, bool):
        return Literal(value=raw)

    if isinstance(raw, (int, float, str)):
        return Literal(value=raw)

    if not isinstance(raw, Mapping):
        return None

    node_type = str(raw.get("type") or "").strip().lower()
    parser = _PARSERS.get(node_type)
    if parser is None:
        return None

    try:
        return parser(raw)
    except (TypeError, ValueError, AttributeError):
        return None


def _parse_literal(raw: Mapping[str, Any]) -> ExpressionNode:
    unit = raw.get("unit")
    return Literal(value=raw.get("value"), unit=str(unit) if unit is not None else None)


def _parse_reference(raw: Mapping[str, Any]) -> Optional[ExpressionNode]:
    field = raw.get("field")
    if not isinstance(field, str) or not field.strip():
        return None
    return Reference(field=field.strip())


def _operands(raw: Mapping[str, Any]) -> Tuple[Optional[ExpressionNode], ...]:
    operands = raw.get("operands")
    if not isinstance(operands, (list, tuple)):
        return ()
    return tuple(parse_expression(operand) for operand in operands)


def _parse_multiply(raw: Mapping[str, Any]) -> ExpressionNode:
    return Multiply(operands=_operands(raw))


def _parse_add(raw: Mapping[str, Any]) -> ExpressionNode:
    return Add(operands=_operands(raw))


def _parse_max(raw: Mapping[str, Any]) -> ExpressionNode:
    return Max(operands=_operands(raw))


def _parse_min(raw: Mapping[str, Any]) -> ExpressionNode:
    return Min(operands=_operands(raw))


def _parse_subtract(raw: Mapping[str, Any]) -> ExpressionNode:
    return Subtract(left=parse_expression(raw.get("left")), right=parse_expression(raw.get("right")))


def _parse_premium(raw: Mapping[str, Any]) -> ExpressionNode:
    mode = str(raw.get("mode") or PremiumMode.ADDITIVE.value).strip().lower()
    return Premium(
        base=parse_expression(raw.get("base")),
        percentage=parse_expression(raw.get("percentage")),
        mode=PremiumMode(mode),
    )


def _parse_round(raw: Mapping[str, Any]) -> ExpressionNode:
    mode = str(raw.get("mode") or RoundMode.NEAREST.value).strip().lower()
    return Round(
        value=parse_expression(raw.get("value")),
        precision=min(max(coerce_int(raw.get("precision"), default=2), 0), MAX_ROUND_PRECISION),
        mode=RoundMode(mode),
    )


def _parse_tier(raw: Mapping[str, Any]) -> ExpressionNode:
    entries = []
    for tier in raw.get("tiers") or ():
        if not isinstance(tier, Mapping):
            continue
        lower = coerce(tier.get("min"))
        if lower is None:
            continue
        label = tier.get("label")
        entries.append(TierEntry(
            min=lower,
            max=coerce(tier.get("max")),
            rate=parse_expression(tier.get("rate")),
            label=str(label) if label is not None else None,
        ))
    return Tier(tiers=tuple(entries))


def _parse_lookup(raw: Mapping[str, Any]) -> Optional[ExpressionNode]:
    reference = raw.get("reference")
    if isinstance(reference, Mapping):
        field = reference.get("field")
    else:
        field = raw.get("field")
    if not isinstance(field, str) or not field.strip():
        return None

    table = raw.get("table")
    if not isinstance(table, Mapping):
        return None

    return Lookup(
        field=field.strip(),
        table=tuple((str(key), parse_expression(value)) for key, value in table.items()),
    )


def _parse_condition(raw: Any) -> Any:
    if isinstance(raw, bool) or raw is None:
        return raw
    if isinstance(raw, Mapping) and raw.get("field"):
        operator = str(raw.get("operator") or ConditionOperator.EQUALS.value).strip().lower()
        return Condition(
            field=str(raw["field"]),
            operator=ConditionOperator(operator),
            value=raw.get("value"),
        )
    return None


def _parse_if(raw: Mapping[str, Any]) -> ExpressionNode:
    return If(
        condition=_parse_condition(raw.get("condition")),
        then=parse_expression(raw.get("then")),
        otherwise=parse_expression(raw.get("else")),
    )


_PARSERS: Dict[str, Callable[[Mapping[str, Any]], Optional[ExpressionNode]]] = {
    "literal": _parse_literal,
    "reference": _parse_reference,
    "multiply": _parse_multiply,
    "add": _parse_add,
    "subtract": _parse_subtract,
    "premium": _parse_premium,
    "max": _parse_max,
    "min": _parse_min,
    "round": _parse_round,
    "tier": _parse_tier,
    "lookup": _parse_lookup,
    "if": _parse_if,
}
