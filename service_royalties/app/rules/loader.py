"""
Turn collaborator records into engine models.

``parse_rule`` / ``parse_line_item`` validate a single record and raise on
failure. ``load_rules`` works on a whole batch, logs and skips records that
fail validation, and never raises for bad data.
"""

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from shared.errors import LineItemDefinitionError, RuleDefinitionError
from shared.logging import get_logger

from ..coercion import coerce, coerce_int
from ..expressions.nodes import Lookup
from ..expressions.parser import parse_expression
from .models import (
    ContainerSizeRate, FormulaCalculation, LegacyCalculation, LineItem,
    LineItemRecord, RateBasis, Rule, RuleRecord, RuleType, VolumeTier,
)

logger = get_logger("royalties.loader")

RuleInput = Union[Rule, RuleRecord, Mapping[str, Any]]
LineItemInput = Union[LineItem, LineItemRecord, Mapping[str, Any]]

# Keys under formulaDefinition that hold the rate tree itself.
_EXPRESSION_KEYS = ("expression", "formula", "rate")


def parse_rule(raw: RuleInput) -> Rule:
    """Build a ``Rule`` from a record; raises ``RuleDefinitionError``."""
    if isinstance(raw, Rule):
        return raw

    try:
        record = raw if isinstance(raw, RuleRecord) else RuleRecord.model_validate(raw)
    except ValidationError as e:
        raise RuleDefinitionError(
            "Rule record failed validation",
            details={"errors": e.errors(include_url=False)}
        ) from e

    return Rule(
        rule_id=record.id,
        name=record.rule_name,
        rule_type=record.rule_type,
        contract_id=record.contract_id,
        product_categories=tuple(c.strip() for c in record.product_categories if c and c.strip()),
        territories=tuple(t.strip() for t in record.territories if t and t.strip()),
        priority=coerce_int(record.priority),
        calculation=_build_calculation(record),
        minimum_guarantee=record.minimum_guarantee,
        cap_amount=record.cap_amount,
        is_active=record.is_active,
        source_text=record.source_text,
        confidence=record.confidence,
    )


def parse_line_item(raw: LineItemInput) -> LineItem:
    """Build a ``LineItem`` from a record; raises ``LineItemDefinitionError``."""
    if isinstance(raw, LineItem):
        return raw

    try:
        record = raw if isinstance(raw, LineItemRecord) else LineItemRecord.model_validate(raw)
    except ValidationError as e:
        raise LineItemDefinitionError(
            "Line item record failed validation",
            details={"errors": e.errors(include_url=False)}
        ) from e

    return LineItem(
        line_item_id=record.id,
        product_name=record.product_name,
        category=record.category,
        territory=record.territory,
        quantity=record.quantity,
        gross_amount=record.gross_amount,
        transaction_date=record.transaction_date,
        container_size=record.container_size,
    )


def load_rules(records: Iterable[RuleInput]) -> List[Rule]:
    """Parse a batch of rule records, skipping the ones that fail validation."""
    rules = []
    for index, raw in enumerate(records):
        try:
            rules.append(parse_rule(raw))
        except RuleDefinitionError as e:
            logger.warning("Skipping invalid rule record", index=index, error=e.message, details=e.details)
    return rules


def _build_calculation(record: RuleRecord) -> Optional[Union[FormulaCalculation, LegacyCalculation]]:
    legacy = _build_legacy(record)

    formula = record.formula_definition
    if formula:
        raw_expression = next((formula[key] for key in _EXPRESSION_KEYS if key in formula), formula)
        expression = parse_expression(raw_expression)
        if expression is not None:
            basis = _basis(formula.get("basis"), record.calculation_basis or RateBasis.PER_UNIT)
            description = formula.get("description")
            return FormulaCalculation(
                expression=expression,
                seasonal_adjustments=_lookup(formula.get("seasonalAdjustments")),
                territory_premiums=_lookup(formula.get("territoryPremiums")),
                basis=basis,
                description=str(description) if description else None,
                fallback=legacy,
            )
        logger.warning("Unparseable formula definition", rule_id=record.id, rule_name=record.rule_name)

    return legacy


def _basis(raw: Any, default: RateBasis) -> RateBasis:
    if raw is None:
        return default
    try:
        return RateBasis(str(raw).strip().lower())
    except ValueError:
        logger.warning("Unknown calculation basis, using default", basis=raw, default=default.value)
        return default


def _lookup(raw: Any) -> Optional[Lookup]:
    node = parse_expression(raw)
    return node if isinstance(node, Lookup) else None


def _build_legacy(record: RuleRecord) -> Optional[LegacyCalculation]:
    has_flat_fields = (
        record.base_rate is not None
        or record.volume_tiers
        or record.container_size_rates
        or record.seasonal_adjustments
        or record.territory_premiums
    )
    if not has_flat_fields:
        return None

    sized = [tier for tier in record.volume_tiers if tier.get("size")]
    banded = [tier for tier in record.volume_tiers if not tier.get("size")]

    container_rates = record.container_size_rates or []
    if not container_rates and record.rule_type == RuleType.CONTAINER_SIZE_TIERED:
        container_rates = sized

    return LegacyCalculation(
        base_rate=coerce(record.base_rate),
        volume_tiers=_volume_tiers(banded),
        seasonal_adjustments=_multipliers(record.seasonal_adjustments),
        territory_premiums=_multipliers(record.territory_premiums),
        container_size_rates=_container_rates(container_rates),
        basis=record.calculation_basis or RateBasis.PER_UNIT,
    )


def _volume_tiers(raw_tiers: List[Mapping[str, Any]]) -> Tuple[VolumeTier, ...]:
    tiers = []
    for raw in raw_tiers:
        lower = coerce(raw.get("min"))
        rate = coerce(raw.get("rate"))
        if lower is None or rate is None:
            continue
        label = raw.get("label")
        tiers.append(VolumeTier(
            min=lower,
            max=coerce(raw.get("max")),
            rate=rate,
            label=str(label) if label is not None else None,
        ))
    return tuple(sorted(tiers, key=lambda tier: tier.min))


def _container_rates(raw_rates: List[Mapping[str, Any]]) -> Tuple[ContainerSizeRate, ...]:
    rates = []
    for raw in raw_rates:
        size = raw.get("size")
        base_rate = coerce(raw.get("baseRate", raw.get("rate")))
        if not size or base_rate is None or base_rate <= 0:
            continue
        rates.append(ContainerSizeRate(
            size=str(size),
            base_rate=base_rate,
            volume_threshold=coerce(raw.get("volumeThreshold")),
            discounted_rate=coerce(raw.get("discountedRate")),
        ))
    return tuple(rates)


def _multipliers(raw: Mapping[str, Any]) -> Mapping[str, float]:
    multipliers = {}
    for key, value in raw.items():
        number = coerce(value)
        if number is not None:
            multipliers[str(key)] = number
    return MappingProxyType(multipliers)
