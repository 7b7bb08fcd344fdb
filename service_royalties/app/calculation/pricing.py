"""
Per-line pricing for a matched rule.

``price_rule`` branches on the rule's calculation: an expression tree
(``FormulaCalculation``), a flat legacy record (``LegacyCalculation``), or
nothing at all. Each path returns a ``PricingOutcome`` carrying the royalty
and the audit trail that explains it. Nothing here raises for bad data;
problems become diagnostics and a zero contribution.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from shared.errors import DiagnosticCode
from shared.logging import get_logger

from ..coercion import coerce
from ..config import EngineConfig
from ..expressions import check_condition, evaluate, percent_scale, render_expression, select_branch
from ..expressions.nodes import (
    Add, Condition, ExpressionNode, If, Lookup, Max, Min, Multiply, Premium,
    Round, Subtract, Tier,
)
from ..rules.models import (
    ConditionCheck, ContainerSizeRate, FormulaCalculation, LegacyCalculation,
    LineItem, RateBasis, Rule, RuleType,
)
from .models import CalculationStep, CalculationType, Diagnostic
from .tiers import (
    container_volume_discount, describe_tier, lookup_entry, multiplier_for,
    select_container_rate, select_tier,
)

logger = get_logger("royalties.pricing")


@dataclass(frozen=True)
class LineContext:
    """Coerced values and expression bindings for one line item."""
    item: LineItem
    quantity: float
    gross_amount: float
    season: Optional[str]
    bindings: Dict[str, Any]

    @classmethod
    def build(cls, item: LineItem, quantity: float, gross_amount: float, season: Optional[str]) -> "LineContext":
        bindings = {
            "quantity": quantity,
            "units": quantity,
            "salesVolume": quantity,
            "grossAmount": gross_amount,
            "gross_amount": gross_amount,
            "category": item.category,
            "territory": item.territory,
            "product": item.product_name,
            "productName": item.product_name,
            "season": season,
            "containerSize": item.container_size,
        }
        return cls(item=item, quantity=quantity, gross_amount=gross_amount, season=season, bindings=bindings)


@dataclass
class PricingOutcome:
    """Royalty for one line plus everything needed to explain it."""
    calculation_type: CalculationType = CalculationType.NONE
    royalty: float = 0.0
    base_rate: float = 0.0
    tier_rate: float = 0.0
    seasonal_multiplier: float = 1.0
    territory_multiplier: float = 1.0
    explanation: str = ""
    volume_discount_applied: bool = False
    steps: List[CalculationStep] = field(default_factory=list)
    checks: List[ConditionCheck] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def add_step(self, description: str, formula: str, values: str, result: str) -> None:
        self.steps.append(CalculationStep(len(self.steps) + 1, description, formula, values, result))

    def flag(self, code: DiagnosticCode, message: str) -> None:
        self.diagnostics.append(Diagnostic(code, message))


def price_rule(rule: Rule, context: LineContext, config: EngineConfig) -> PricingOutcome:
    """Price one line item under ``rule``."""
    calculation = rule.calculation

    if calculation is None:
        outcome = PricingOutcome()
        outcome.flag(DiagnosticCode.MISSING_CALCULATION, f"Rule {rule.name} has no calculation")
        outcome.explanation = f"Rule {rule.name}: no calculation configured, no royalty"
        return outcome

    if isinstance(calculation, FormulaCalculation):
        return price_formula(rule, calculation, context, config)

    if isinstance(calculation, LegacyCalculation):
        return price_legacy(rule, calculation, context, config)

    raise TypeError(f"Unsupported calculation: {type(calculation).__name__}")


# Formula path

def price_formula(
    rule: Rule,
    calculation: FormulaCalculation,
    context: LineContext,
    config: EngineConfig,
) -> PricingOutcome:
    outcome = PricingOutcome(calculation_type=CalculationType.FORMULA)
    rendered = render_expression(calculation.expression)
    outcome.add_step("Formula", "rate = " + rendered, calculation.description or rule.name, "")

    try:
        rate = _resolve_rate(calculation.expression, context, config, outcome)
    except _UnresolvedFormula as e:
        message = f"Formula for rule {rule.name} did not produce a rate: {e}"
        logger.warning(
            "Unresolvable formula",
            rule_id=rule.rule_id,
            line_item_id=context.item.line_item_id,
            reason=str(e)
        )
        if calculation.fallback is not None:
            fallback = price_legacy(rule, calculation.fallback, context, config)
            fallback.diagnostics.insert(0, Diagnostic(DiagnosticCode.UNRESOLVABLE_EXPRESSION, message))
            fallback.explanation = f"{fallback.explanation} (formula unresolved, flat fields used)"
            return fallback
        outcome.flag(DiagnosticCode.UNRESOLVABLE_EXPRESSION, message)
        outcome.explanation = f"Formula for rule {rule.name} could not be resolved, no royalty"
        return outcome

    seasonal = _lookup_multiplier(calculation.seasonal_adjustments, context, context.season)
    territory = _lookup_multiplier(calculation.territory_premiums, context, context.item.territory)

    if calculation.basis == RateBasis.GROSS_AMOUNT:
        amount, amount_label = context.gross_amount, "gross amount"
    else:
        amount, amount_label = context.quantity, "units"

    royalty = amount * rate * seasonal * territory

    outcome.base_rate = rate
    outcome.tier_rate = rate
    outcome.seasonal_multiplier = seasonal
    outcome.territory_multiplier = territory
    outcome.royalty = royalty
    outcome.add_step("Effective rate", rendered, _bindings_summary(context), _num(rate))
    outcome.add_step(
        "Multipliers",
        "seasonal x territory",
        f"{context.season or 'no season'}: {_num(seasonal)}, {context.item.territory or 'no territory'}: {_num(territory)}",
        _num(seasonal * territory),
    )
    outcome.add_step(
        "Royalty",
        f"{amount_label} x rate x seasonal x territory",
        f"{_num(amount)} x {_num(rate)} x {_num(seasonal)} x {_num(territory)}",
        _money(royalty),
    )
    outcome.explanation = f"Formula: {calculation.description or rule.name} = {_money(royalty)}"
    return outcome


class _UnresolvedFormula(Exception):
    """A formula has no rate for this line item."""


def _resolve_rate(
    node: Optional[ExpressionNode],
    context: LineContext,
    config: EngineConfig,
    outcome: PricingOutcome,
) -> float:
    resolved = _resolve_node(node, context, config, outcome)
    value = coerce(evaluate(resolved, context.bindings))
    if value is None:
        raise _UnresolvedFormula(f"{render_expression(resolved)} is not a number")
    return value * percent_scale(resolved)


def _resolve_node(
    node: Optional[ExpressionNode],
    context: LineContext,
    config: EngineConfig,
    outcome: PricingOutcome,
) -> Optional[ExpressionNode]:
    """Replace every If, Tier and Lookup in the tree with the subtree it picks for this line."""
    bindings = context.bindings

    if isinstance(node, If):
        resolved, branch = select_branch(node, lambda condition: check_condition(condition, bindings))
        if isinstance(node.condition, Condition):
            outcome.checks.append(_condition_check(node.condition, bindings))
        if not resolved:
            field_name = node.condition.field if isinstance(node.condition, Condition) else "condition"
            raise _UnresolvedFormula(f"condition on {field_name} could not be decided")
        return _resolve_node(branch, context, config, outcome)

    if isinstance(node, Tier):
        choice = select_tier(node.tiers, context.quantity, config.tier_out_of_range)
        expected = ", ".join(describe_tier(tier) for tier in node.tiers)
        actual = f"{_num(context.quantity)} units"
        if choice is None:
            outcome.checks.append(ConditionCheck("Volume Tier", expected, actual, False))
            outcome.flag(DiagnosticCode.TIER_OUT_OF_RANGE, f"Quantity {_num(context.quantity)} is outside every tier")
            raise _UnresolvedFormula(f"quantity {_num(context.quantity)} is outside every tier")
        outcome.checks.append(ConditionCheck("Volume Tier", expected, actual, choice.in_range))
        if not choice.in_range:
            outcome.flag(
                DiagnosticCode.TIER_OUT_OF_RANGE,
                f"Quantity {_num(context.quantity)} outside every tier, using {describe_tier(choice.tier)}"
            )
        return _resolve_node(choice.tier.rate, context, config, outcome)

    if isinstance(node, Lookup):
        key = _text(bindings.get(node.field))
        entry = lookup_entry(node.table, key)
        if entry is None:
            raise _UnresolvedFormula(f"no {node.field} entry for {key or 'an unset value'}")
        return _resolve_node(entry[1], context, config, outcome)

    if isinstance(node, (Multiply, Add, Max, Min)):
        return replace(node, operands=tuple(_resolve_node(o, context, config, outcome) for o in node.operands))

    if isinstance(node, Subtract):
        return replace(
            node,
            left=_resolve_node(node.left, context, config, outcome),
            right=_resolve_node(node.right, context, config, outcome),
        )

    if isinstance(node, Premium):
        return replace(
            node,
            base=_resolve_node(node.base, context, config, outcome),
            percentage=_resolve_node(node.percentage, context, config, outcome),
        )

    if isinstance(node, Round):
        return replace(node, value=_resolve_node(node.value, context, config, outcome))

    return node


def _lookup_multiplier(lookup: Optional[Lookup], context: LineContext, default_key: Optional[str]) -> float:
    if lookup is None:
        return 1.0
    key = _text(context.bindings.get(lookup.field)) or default_key
    entry = lookup_entry(lookup.table, key)
    if entry is None:
        return 1.0
    value = coerce(evaluate(entry[1], context.bindings))
    return 1.0 if value is None else value


def _condition_check(condition: Condition, bindings: Dict[str, Any]) -> ConditionCheck:
    actual = bindings.get(condition.field)
    return ConditionCheck(
        condition=f"Formula condition on {condition.field}",
        expected=f"{condition.operator.value} {condition.value}",
        actual="Not specified" if actual is None else str(actual),
        matched=bool(check_condition(condition, bindings)),
    )


# Legacy path

def price_legacy(
    rule: Rule,
    calculation: LegacyCalculation,
    context: LineContext,
    config: EngineConfig,
) -> PricingOutcome:
    if rule.rule_type == RuleType.CONTAINER_SIZE_TIERED:
        return _price_container(rule, calculation, context)

    outcome = PricingOutcome()
    tiers = calculation.volume_tiers
    gross_basis = calculation.basis == RateBasis.GROSS_AMOUNT

    if tiers:
        outcome.calculation_type = CalculationType.VOLUME_TIER
        expected = ", ".join(f"{describe_tier(t)}: {_num(t.rate)}" for t in tiers)
        actual = f"{_num(context.quantity)} units"
        choice = select_tier(tiers, context.quantity, config.tier_out_of_range)
        if choice is None:
            outcome.checks.append(ConditionCheck("Volume Tier", expected, actual, False))
            outcome.flag(DiagnosticCode.TIER_OUT_OF_RANGE, f"Quantity {_num(context.quantity)} is outside every tier")
            outcome.explanation = f"Rule {rule.name}: quantity outside every volume tier, no royalty"
            return outcome
        outcome.checks.append(ConditionCheck("Volume Tier", expected, actual, choice.in_range))
        if not choice.in_range:
            outcome.flag(
                DiagnosticCode.TIER_OUT_OF_RANGE,
                f"Quantity {_num(context.quantity)} outside every tier, using {describe_tier(choice.tier)}"
            )
        rate = choice.tier.rate
        outcome.add_step("Volume tier", "tier containing quantity", actual, f"{describe_tier(choice.tier)} @ {_num(rate)}")
    else:
        outcome.calculation_type = CalculationType.PERCENTAGE if gross_basis else CalculationType.FLAT_RATE
        rate = calculation.base_rate
        if rate is None:
            outcome.flag(DiagnosticCode.MISSING_CALCULATION, f"Rule {rule.name} has no base rate or tiers")
            outcome.explanation = f"Rule {rule.name}: no rate configured, no royalty"
            return outcome

    seasonal = multiplier_for(calculation.seasonal_adjustments, context.season)
    territory = multiplier_for(calculation.territory_premiums, context.item.territory)

    if gross_basis:
        royalty = context.gross_amount * rate / 100 * seasonal * territory
        formula = "gross amount x rate% x seasonal x territory"
        values = f"{_money(context.gross_amount)} x {_num(rate)}% x {_num(seasonal)} x {_num(territory)}"
        explanation = f"{_money(context.gross_amount)} x {_num(rate)}%"
    else:
        royalty = rate * context.quantity * seasonal * territory
        formula = "rate x quantity x seasonal x territory"
        values = f"{_num(rate)} x {_num(context.quantity)} x {_num(seasonal)} x {_num(territory)}"
        explanation = f"{_num(context.quantity)} units x {_money(rate)}/unit"

    outcome.base_rate = calculation.base_rate or 0.0
    outcome.tier_rate = rate
    outcome.seasonal_multiplier = seasonal
    outcome.territory_multiplier = territory
    outcome.royalty = royalty
    outcome.add_step("Royalty", formula, values, _money(royalty))
    outcome.explanation = explanation + _multiplier_note(seasonal, context.season, territory, context.item.territory)
    return outcome


def _price_container(rule: Rule, calculation: LegacyCalculation, context: LineContext) -> PricingOutcome:
    outcome = PricingOutcome(calculation_type=CalculationType.CONTAINER_SIZE)
    rates = calculation.container_size_rates
    choice = select_container_rate(rates, context.item.container_size, context.item.product_name)

    if choice is None:
        outcome.checks.append(
            ConditionCheck("Container Size Rates Configured", "At least one valid rate", "No valid rates found", False)
        )
        outcome.flag(DiagnosticCode.MISSING_CALCULATION, f"Rule {rule.name} has no valid container size rates")
        outcome.explanation = f"Rule {rule.name}: no valid container size rates configured"
        return outcome

    rate: ContainerSizeRate = choice.rate
    sizes = ", ".join(r.size for r in rates)
    discounted = choice.matched and container_volume_discount(rate, context.quantity)
    effective = rate.discounted_rate if discounted else rate.base_rate

    outcome.checks.append(ConditionCheck(
        "Container Size Match",
        sizes,
        context.item.container_size or ("inferred" if choice.matched else context.item.product_name),
        choice.matched,
    ))
    if choice.matched:
        threshold = rate.volume_threshold
        outcome.checks.append(ConditionCheck(
            "Volume Threshold",
            f">= {_num(threshold)} units" if threshold else "No threshold",
            f"{_num(context.quantity)} units",
            discounted or not threshold,
        ))

    seasonal = multiplier_for(calculation.seasonal_adjustments, context.season)
    territory = multiplier_for(calculation.territory_premiums, context.item.territory)
    royalty = effective * context.quantity * seasonal * territory

    size_label = rate.size if choice.matched else f"{rate.size} (default)"
    outcome.add_step(
        "Container size",
        "rate = lookup(containerSize)",
        f"Sale container: {context.item.container_size or 'inferred from product'}",
        f"Matched: {size_label}",
    )
    outcome.add_step(
        "Royalty",
        "rate x quantity x seasonal x territory",
        f"{_num(effective)} x {_num(context.quantity)} x {_num(seasonal)} x {_num(territory)}",
        _money(royalty),
    )

    outcome.base_rate = rate.base_rate
    outcome.tier_rate = effective
    outcome.seasonal_multiplier = seasonal
    outcome.territory_multiplier = territory
    outcome.royalty = royalty
    outcome.volume_discount_applied = discounted

    if choice.matched:
        explanation = f"Container size {rate.size}: {_money(effective)}/unit x {_num(context.quantity)} units"
        if discounted:
            explanation += f" (volume discount at {_num(rate.volume_threshold)}+)"
    else:
        explanation = (
            f"Default container size {rate.size}: {_money(effective)}/unit x "
            f"{_num(context.quantity)} units (no exact match found)"
        )
    outcome.explanation = explanation + _multiplier_note(seasonal, context.season, territory, context.item.territory)
    return outcome


# Formatting

def _multiplier_note(seasonal: float, season: Optional[str], territory: float, territory_name: str) -> str:
    notes = []
    if seasonal != 1.0:
        notes.append(f"{season} adjustment x{_num(seasonal)}")
    if territory != 1.0:
        notes.append(f"{territory_name} premium x{_num(territory)}")
    return " (" + ", ".join(notes) + ")" if notes else ""


def _bindings_summary(context: LineContext) -> str:
    parts = [f"quantity={_num(context.quantity)}"]
    if context.season:
        parts.append(f"season={context.season}")
    if context.item.territory:
        parts.append(f"territory={context.item.territory}")
    return ", ".join(parts)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _num(value: Optional[float]) -> str:
    if value is None:
        return "?"
    return f"{value:.10g}"


def _money(value: float) -> str:
    return f"${value:,.2f}"
