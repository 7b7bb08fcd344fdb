"""
Royalty calculator.

Rates a batch of line items against one contract's rules: select a rule
per line, price it, sum the lines and reconcile the total against the
contract's minimum guarantee and cap.
"""

import contextvars
import math
import time
from collections.abc import Iterable as IterableABC
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from shared.errors import DiagnosticCode, InvalidInputError, LineItemDefinitionError
from shared.logging import clear_context, get_logger, set_calculation_context
from shared.metrics import MetricsCollector

from ..coercion import coerce, coerce_non_negative
from ..config import EngineConfig
from ..expressions import evaluate
from ..rules.loader import LineItemInput, RuleInput, load_rules, parse_line_item
from ..rules.matcher import RuleMatcher
from ..rules.models import (
    CONTRACT_LEVEL_RULE_TYPES, FormulaCalculation, LegacyCalculation, LineItem,
    Rule, RuleType,
)
from .models import BatchResult, CalculationResult, Diagnostic
from .pricing import LineContext, price_rule
from .seasons import determine_season

# A parsed line item, or the excluded result for a record that failed validation
LineEntry = Union[LineItem, CalculationResult]


class RoyaltyCalculator:
    """Rates sales line items against contract rules."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        matcher: Optional[RuleMatcher] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or EngineConfig()
        self.matcher = matcher or RuleMatcher(self.config)
        self.metrics = metrics
        self.logger = get_logger("royalties.calculator")

    def calculate_royalty(
        self,
        contract_id: str,
        rules: Iterable[RuleInput],
        line_items: Iterable[LineItemInput],
        calculation_id: Optional[str] = None,
    ) -> BatchResult:
        """Calculate royalties for a batch of line items.

        Args:
            contract_id: Contract the rules and sales belong to.
            rules: Rule dataclasses or rule records for the contract.
            line_items: LineItem dataclasses or sales records.
            calculation_id: Correlation ID for logs; generated when omitted.

        Returns:
            The batch total, the reconciled final royalty and a per-line
            breakdown in input order.

        Raises:
            InvalidInputError: If ``rules`` or ``line_items`` is not a
                sequence of records.
        """
        _require_sequence("rules", rules)
        _require_sequence("line_items", line_items)

        calculation_id = set_calculation_context(contract_id=contract_id, calculation_id=calculation_id)
        start_time = time.time()
        try:
            all_rules = [rule for rule in load_rules(rules) if rule.is_active]
            entries = self._load_entries(line_items)

            line_rules = [r for r in all_rules if r.rule_type not in CONTRACT_LEVEL_RULE_TYPES]
            minimum_guarantee = self._clause_amount(all_rules, RuleType.MINIMUM_GUARANTEE, "minimum_guarantee")
            cap_amount = self._clause_amount(all_rules, RuleType.CAP, "cap_amount")

            self.logger.info(
                "Calculating royalties",
                line_items=len(entries),
                rules=len(line_rules),
                minimum_guarantee=minimum_guarantee,
                cap_amount=cap_amount
            )

            breakdown = self._calculate_lines(line_rules, entries)

            total_royalty = math.fsum(line.calculated_royalty for line in breakdown)
            final_royalty, guarantee_applied, cap_applied = reconcile(
                total_royalty, minimum_guarantee, cap_amount, has_lines=bool(breakdown)
            )

            rules_applied: List[str] = []
            for line in breakdown:
                if line.rule_applied and line.rule_applied not in rules_applied:
                    rules_applied.append(line.rule_applied)

            result = BatchResult(
                contract_id=contract_id,
                calculation_id=calculation_id,
                total_royalty=total_royalty,
                final_royalty=final_royalty,
                minimum_guarantee=minimum_guarantee,
                cap_amount=cap_amount,
                minimum_guarantee_applied=guarantee_applied,
                cap_applied=cap_applied,
                rules_applied=tuple(rules_applied),
                breakdown=tuple(breakdown),
            )

            self._record_metrics(result, time.time() - start_time)
            self.logger.info(
                "Royalty calculation complete",
                total_royalty=round(total_royalty, 2),
                final_royalty=round(final_royalty, 2),
                matched=result.matched_count,
                unmatched=result.unmatched_count,
                excluded=result.excluded_count,
                minimum_guarantee_applied=guarantee_applied,
                cap_applied=cap_applied
            )
            return result
        finally:
            clear_context()

    def calculate_line(self, rules: Sequence[Rule], item: LineItem) -> CalculationResult:
        """Rate a single line item against already-filtered rules."""
        quantity, quantity_ok = _coerce_field(item.quantity)
        gross_amount, gross_ok = _coerce_field(item.gross_amount)
        season = determine_season(item.transaction_date)

        echo = dict(
            line_item_id=item.line_item_id,
            product_name=item.product_name,
            category=item.category,
            territory=item.territory,
            quantity=quantity,
            gross_amount=gross_amount,
            container_size=item.container_size,
            transaction_date=_date_text(item.transaction_date),
            season=season,
        )

        if not (quantity_ok and gross_ok):
            rejected = [name for name, ok in (("quantity", quantity_ok), ("gross_amount", gross_ok)) if not ok]
            self.logger.warning(
                "Excluding line item with unusable numbers",
                line_item_id=item.line_item_id,
                fields=rejected,
                quantity=repr(item.quantity),
                gross_amount=repr(item.gross_amount)
            )
            return CalculationResult(
                **echo,
                coerced=False,
                explanation=f"Excluded: {', '.join(rejected)} is not a usable number",
                diagnostics=(Diagnostic(
                    DiagnosticCode.COERCION_FAILURE,
                    f"Could not interpret {', '.join(rejected)} as a non-negative number"
                ),),
            )

        selection = self.matcher.select(rules, item)
        if selection.rule is None:
            return CalculationResult(
                **echo,
                selection=selection,
                explanation="No matching rule, no royalty",
                diagnostics=(Diagnostic(
                    DiagnosticCode.NO_RULE_MATCHED,
                    f"No rule matched product '{item.product_name}' in territory '{item.territory or 'unspecified'}'"
                ),),
            )

        rule = selection.rule
        context = LineContext.build(item, quantity or 0.0, gross_amount or 0.0, season)
        outcome = price_rule(rule, context, self.config)

        diagnostics = list(outcome.diagnostics)
        if self._exceeds_gross(outcome.royalty, context.gross_amount):
            self.logger.warning(
                "Royalty exceeds gross amount",
                line_item_id=item.line_item_id,
                rule_id=rule.rule_id,
                royalty=round(outcome.royalty, 2),
                gross_amount=context.gross_amount
            )
            diagnostics.append(Diagnostic(
                DiagnosticCode.EXCEEDS_GROSS_AMOUNT,
                f"Royalty {outcome.royalty:,.2f} exceeds gross amount {context.gross_amount:,.2f}"
            ))

        return CalculationResult(
            **echo,
            matched=True,
            rule_id=rule.rule_id,
            rule_applied=rule.name,
            rule_type=rule.rule_type.value,
            calculation_type=outcome.calculation_type,
            base_rate=outcome.base_rate,
            tier_rate=outcome.tier_rate,
            seasonal_multiplier=outcome.seasonal_multiplier,
            territory_multiplier=outcome.territory_multiplier,
            calculated_royalty=outcome.royalty,
            explanation=outcome.explanation,
            volume_discount_applied=outcome.volume_discount_applied,
            calculation_steps=tuple(outcome.steps),
            conditions_checked=selection.conditions_checked + tuple(outcome.checks),
            selection=selection,
            diagnostics=tuple(diagnostics),
        )

    def _load_entries(self, records: Iterable[LineItemInput]) -> List[LineEntry]:
        """Parse sales records; a record failing validation becomes its excluded result."""
        entries: List[LineEntry] = []
        for index, raw in enumerate(records):
            try:
                entries.append(parse_line_item(raw))
            except LineItemDefinitionError as e:
                self.logger.warning(
                    "Excluding invalid line item record",
                    index=index,
                    error=e.message,
                    details=e.details
                )
                entries.append(_rejected_record(raw, index, e))
        return entries

    def _rate_entry(self, rules: Sequence[Rule], entry: LineEntry) -> CalculationResult:
        if isinstance(entry, CalculationResult):
            return entry
        return self.calculate_line(rules, entry)

    def _calculate_lines(self, rules: Sequence[Rule], entries: Sequence[LineEntry]) -> List[CalculationResult]:
        if self.config.max_workers <= 1 or len(entries) <= 1:
            return [self._rate_entry(rules, entry) for entry in entries]

        # Each worker runs in a copy of the caller's context so log lines keep the calculation ID
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, self._rate_entry, rules, entry)
                for entry in entries
            ]
            return [future.result() for future in futures]

    def _clause_amount(self, rules: Sequence[Rule], rule_type: RuleType, attribute: str) -> Optional[float]:
        for rule in self.matcher.order_rules([r for r in rules if r.rule_type == rule_type]):
            amount = coerce(getattr(rule, attribute))
            if amount is None:
                amount = _calculation_amount(rule)
            if amount is not None and amount > 0:
                return amount
            self.logger.warning("Ignoring contract clause without a positive amount", rule_id=rule.rule_id,
                                rule_type=rule_type.value)
        return None

    def _exceeds_gross(self, royalty: float, gross_amount: float) -> bool:
        return gross_amount > 0 and royalty > gross_amount * self.config.gross_amount_tolerance

    def _record_metrics(self, result: BatchResult, duration: float):
        if self.metrics is None:
            return

        self.metrics.observe_histogram("royalty_calculation_duration_seconds", duration)
        for line in result.breakdown:
            if not line.coerced:
                outcome = "excluded"
            elif line.matched:
                outcome = "matched"
            else:
                outcome = "unmatched"
            self.metrics.increment_counter("royalty_line_items_total", outcome=outcome)
            if line.selection is not None and line.selection.matched:
                self.metrics.increment_counter("royalty_rule_matches_total", phase=line.selection.phase.value)
            for diagnostic in line.diagnostics:
                self.metrics.increment_counter("royalty_diagnostics_total", code=diagnostic.code.value)

        if result.minimum_guarantee_applied:
            self.metrics.increment_counter("royalty_adjustments_total", kind="minimum_guarantee")
        if result.cap_applied:
            self.metrics.increment_counter("royalty_adjustments_total", kind="cap")


def reconcile(
    total_royalty: float,
    minimum_guarantee: Optional[float],
    cap_amount: Optional[float],
    has_lines: bool = True,
) -> Tuple[float, bool, bool]:
    """Apply the guarantee floor, then the cap ceiling.

    The order is fixed: when the guarantee exceeds the cap, the cap wins.
    An empty batch stays at zero.

    Returns:
        ``(final_royalty, guarantee_applied, cap_applied)``
    """
    if not has_lines:
        return 0.0, False, False

    final_royalty = total_royalty
    guarantee_applied = False
    cap_applied = False

    if minimum_guarantee is not None and final_royalty < minimum_guarantee:
        final_royalty = minimum_guarantee
        guarantee_applied = True

    if cap_amount is not None and final_royalty > cap_amount:
        final_royalty = cap_amount
        cap_applied = True

    return final_royalty, guarantee_applied, cap_applied


def _calculation_amount(rule: Rule) -> Optional[float]:
    calculation = rule.calculation
    if isinstance(calculation, LegacyCalculation):
        return calculation.base_rate
    if isinstance(calculation, FormulaCalculation):
        return coerce(evaluate(calculation.expression))
    return None


def _rejected_record(raw: Any, index: int, error: LineItemDefinitionError) -> CalculationResult:
    fields = raw if isinstance(raw, Mapping) else {}
    record_id = fields.get("id")
    fields_failed = sorted({
        str(problem["loc"][0]) for problem in error.details.get("errors", ()) if problem.get("loc")
    })
    return CalculationResult(
        line_item_id=str(record_id) if record_id is not None else f"#{index}",
        product_name=_text_field(fields.get("productName")),
        category=_text_field(fields.get("category")),
        territory=_text_field(fields.get("territory")),
        quantity=None,
        gross_amount=None,
        coerced=False,
        explanation="Excluded: record failed validation",
        diagnostics=(Diagnostic(
            DiagnosticCode.INVALID_RECORD,
            f"Line item record {index} failed validation on {', '.join(fields_failed) or 'its shape'}"
        ),),
    )


def _text_field(value: Any) -> str:
    return "" if value is None else str(value)


def _coerce_field(value) -> Tuple[Optional[float], bool]:
    """Coerce a line-item number; absent values are fine, unusable ones are not."""
    if value is None:
        return None, True
    number = coerce_non_negative(value)
    return number, number is not None


def _date_text(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _require_sequence(name: str, value) -> None:
    if value is None or isinstance(value, (str, bytes)) or not isinstance(value, IterableABC):
        raise InvalidInputError(
            f"{name} must be a sequence of records",
            details={"argument": name, "type": type(value).__name__}
        )
