"""
Rule matching for the Royalty Engine.

Selection runs in two phases over rules sorted by ascending priority:

1. Specific rules (non-empty product categories) that match the line's
   product or category and its territory.
2. Global rules (no categories) that match the territory.

A category-bearing rule therefore always beats a generic one, whatever
their priority numbers; priority only orders rules within a phase.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Sequence, Tuple

from shared.errors import InvalidInputError
from shared.logging import get_logger

from ..coercion import coerce_int
from ..config import EngineConfig
from .models import ConditionCheck, LineItem, Rule

_TOKEN_SPLIT = re.compile(r"[\s&,/\-().;:]+")

# Tier and grade labels say nothing about what the product is.
GENERIC_LABELS: FrozenSet[str] = frozenset({"tier", "grade", "level", "class", "type"})

UNCONSTRAINED_TERRITORY = "all"


class MatchPhase(str, Enum):
    SPECIFIC = "specific"
    FALLBACK = "fallback"
    NONE = "none"


class MatchQuality(str, Enum):
    """How a rule's category matched, best first."""
    EXACT = "exact"
    CONTAINS = "contains"
    KEYWORD = "keyword"
    FALLBACK = "fallback"
    NONE = "none"


@dataclass(frozen=True)
class RuleSelection:
    """Outcome of rule selection for one line item."""
    rule: Optional[Rule]
    phase: MatchPhase = MatchPhase.NONE
    match_quality: MatchQuality = MatchQuality.NONE
    candidates_considered: int = 0
    conditions_checked: Tuple[ConditionCheck, ...] = ()
    skipped_rule_ids: Tuple[str, ...] = field(default=())

    @property
    def matched(self) -> bool:
        return self.rule is not None


class RuleMatcher:
    """Selects the single applicable rule for a line item."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.logger = get_logger("royalties.rule_matcher")
        self.abstract_territories = frozenset(self.config.abstract_territories)
        self.stop_words = frozenset(self.config.category_stop_words)

    def match(self, rules: Sequence[Rule], item: LineItem) -> Optional[Rule]:
        """Return the most applicable rule for ``item``, or None."""
        return self.select(rules, item).rule

    def select(self, rules: Sequence[Rule], item: LineItem) -> RuleSelection:
        """Select a rule and keep the evidence for the audit trail."""
        if rules is None or isinstance(rules, (str, bytes)):
            raise InvalidInputError("rules must be a sequence of Rule", details={"type": type(rules).__name__})
        if item is None:
            raise InvalidInputError("line item is required")

        ordered = self.order_rules(rules)
        considered = 0
        skipped: List[str] = []

        # Phase 1: category-bearing rules
        for rule in ordered:
            if self._is_global(rule):
                continue
            considered += 1
            try:
                quality = self._category_match(rule, item)
                if quality is None:
                    continue
                territory_ok, territory_check = self._territory_match(rule, item)
                if not territory_ok:
                    continue
            except Exception as e:
                skipped.append(str(getattr(rule, "rule_id", "?")))
                self.logger.warning("Skipping malformed rule", rule_id=getattr(rule, "rule_id", None), error=str(e))
                continue

            checks = (self._category_check(rule, item), territory_check)
            self.logger.debug(
                "Rule selected",
                rule_id=rule.rule_id,
                line_item_id=item.line_item_id,
                phase=MatchPhase.SPECIFIC.value,
                match_quality=quality.value
            )
            return RuleSelection(
                rule=rule,
                phase=MatchPhase.SPECIFIC,
                match_quality=quality,
                candidates_considered=considered,
                conditions_checked=checks,
                skipped_rule_ids=tuple(skipped),
            )

        # Phase 2: global fallback rules, territory only
        for rule in ordered:
            if not self._is_global(rule):
                continue
            considered += 1
            try:
                territory_ok, territory_check = self._territory_match(rule, item)
            except Exception as e:
                skipped.append(str(getattr(rule, "rule_id", "?")))
                self.logger.warning("Skipping malformed rule", rule_id=getattr(rule, "rule_id", None), error=str(e))
                continue
            if not territory_ok:
                continue

            self.logger.debug(
                "Fallback rule selected",
                rule_id=rule.rule_id,
                line_item_id=item.line_item_id,
                phase=MatchPhase.FALLBACK.value
            )
            return RuleSelection(
                rule=rule,
                phase=MatchPhase.FALLBACK,
                match_quality=MatchQuality.FALLBACK,
                candidates_considered=considered,
                conditions_checked=(territory_check,),
                skipped_rule_ids=tuple(skipped),
            )

        self.logger.info(
            "No matching rule for line item",
            line_item_id=item.line_item_id,
            product_name=item.product_name,
            category=item.category
        )
        return RuleSelection(
            rule=None,
            candidates_considered=considered,
            skipped_rule_ids=tuple(skipped),
        )

    def order_rules(self, rules: Sequence[Rule]) -> List[Rule]:
        """Sort by ascending priority; ties keep their input order."""
        return sorted(rules, key=self._priority)

    def _priority(self, rule: Rule) -> int:
        priority = coerce_int(getattr(rule, "priority", None))
        return self.config.default_priority if priority is None else priority

    @staticmethod
    def _is_global(rule: Rule) -> bool:
        return not getattr(rule, "product_categories", None)

    # Category matching

    def _category_match(self, rule: Rule, item: LineItem) -> Optional[MatchQuality]:
        product = _clean(item.product_name)
        category = _clean(item.category)
        configured = [_clean(c) for c in rule.product_categories]
        configured = [c for c in configured if c]

        for candidate in configured:
            if product and candidate == product:
                return MatchQuality.EXACT

        for candidate in configured:
            if _contains_either(candidate, product) or _contains_either(candidate, category):
                return MatchQuality.CONTAINS

        for candidate in configured:
            if self._keywords_overlap(candidate, category) or self._keywords_overlap(candidate, product):
                return MatchQuality.KEYWORD

        return None

    def _keywords_overlap(self, left: str, right: str) -> bool:
        left_tokens = self._tokenize(left)
        right_tokens = self._tokenize(right)
        if not left_tokens or not right_tokens:
            return False

        # "Tier 1" and "Tier 2" name different bands of the same product line
        left_numbers = {t for t in left_tokens if t.isdigit()}
        right_numbers = {t for t in right_tokens if t.isdigit()}
        if left_numbers and right_numbers and left_numbers != right_numbers:
            return False

        left_words = [t for t in left_tokens if not _is_label(t)]
        right_words = [t for t in right_tokens if not _is_label(t)]
        return any(a in b or b in a for a in left_words for b in right_words)

    def _tokenize(self, text: str) -> List[str]:
        return [t for t in _TOKEN_SPLIT.split(text.lower()) if t and t not in self.stop_words]

    # Territory matching

    def _territory_match(self, rule: Rule, item: LineItem) -> Tuple[bool, ConditionCheck]:
        configured = [_clean(t) for t in rule.territories]
        configured = [t for t in configured if t]
        territory = _clean(item.territory)
        expected = ", ".join(rule.territories) if rule.territories else "All"
        actual = item.territory or "Not specified"

        if not configured or UNCONSTRAINED_TERRITORY in configured:
            return True, ConditionCheck("Territory", expected, actual, True)

        # Placeholder regions in synthetic sales data are not enforced
        if territory in self.abstract_territories:
            return True, ConditionCheck("Territory", expected, f"{actual} (not enforced)", True)

        matched = bool(territory) and any(_contains_either(t, territory) for t in configured)
        return matched, ConditionCheck("Territory", expected, actual, matched)

    @staticmethod
    def _category_check(rule: Rule, item: LineItem) -> ConditionCheck:
        return ConditionCheck(
            condition="Product Category",
            expected=", ".join(rule.product_categories),
            actual=item.category or item.product_name or "Not specified",
            matched=True,
        )


def _clean(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _contains_either(left: str, right: str) -> bool:
    if not left or not right:
        return False
    return left in right or right in left


def _is_label(token: str) -> bool:
    return token in GENERIC_LABELS or token.isdigit()
