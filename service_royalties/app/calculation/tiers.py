"""
Tier, container-size and multiplier selection.

These helpers work on both legacy ``VolumeTier`` records and formula
``TierEntry`` nodes; anything with ``min`` and ``max`` attributes will do.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, TypeVar

from ..config import TierOutOfRangePolicy
from ..rules.models import ContainerSizeRate

T = TypeVar("T")


@dataclass(frozen=True)
class TierChoice:
    """Tier picked for a quantity; ``index`` is its position in the input."""
    tier: Any
    index: int
    in_range: bool


@dataclass(frozen=True)
class ContainerChoice:
    rate: ContainerSizeRate
    matched: bool
    inferred: bool = False


def tier_contains(tier: Any, quantity: float) -> bool:
    lower = tier.min
    upper = tier.max
    if quantity < lower:
        return False
    return upper is None or quantity <= upper


def select_tier(
    tiers: Sequence[Any],
    quantity: float,
    policy: TierOutOfRangePolicy = TierOutOfRangePolicy.CLAMP,
) -> Optional[TierChoice]:
    """Pick the tier for ``quantity``.

    Tiers are scanned ascending by ``min`` and the first containing the
    quantity wins. Outside every tier, ``CLAMP`` falls back to the lowest
    tier (below range) or the highest tier starting at or below the
    quantity (gaps and above range); ``UNMATCHED`` returns None.
    """
    if not tiers:
        return None

    ordered = sorted(enumerate(tiers), key=lambda pair: pair[1].min)
    for index, tier in ordered:
        if tier_contains(tier, quantity):
            return TierChoice(tier=tier, index=index, in_range=True)

    if policy == TierOutOfRangePolicy.UNMATCHED:
        return None

    index, tier = ordered[0]
    for candidate_index, candidate in ordered:
        if candidate.min <= quantity:
            index, tier = candidate_index, candidate
    return TierChoice(tier=tier, index=index, in_range=False)


def describe_tier(tier: Any) -> str:
    upper = "+" if tier.max is None else f"-{_number(tier.max)}"
    return f"{_number(tier.min)}{upper}"


def select_container_rate(
    rates: Sequence[ContainerSizeRate],
    container_size: Optional[str],
    product_name: Optional[str],
) -> Optional[ContainerChoice]:
    """Find the rate for a sale's container size.

    Tries an exact size match, then containment in either direction, then
    a size named inside the product name. Falls back to the first rate
    with ``matched=False``.
    """
    if not rates:
        return None

    size = (container_size or "").strip().lower()
    if size:
        for rate in rates:
            if rate.size.strip().lower() == size:
                return ContainerChoice(rate=rate, matched=True)
        for rate in rates:
            candidate = rate.size.strip().lower()
            if candidate and (candidate in size or size in candidate):
                return ContainerChoice(rate=rate, matched=True)

    product = (product_name or "").lower()
    if product:
        for rate in rates:
            candidate = rate.size.strip().lower()
            if candidate and candidate in product:
                return ContainerChoice(rate=rate, matched=True, inferred=True)

    return ContainerChoice(rate=rates[0], matched=False)


def container_volume_discount(rate: ContainerSizeRate, quantity: float) -> bool:
    """Whether a container rate's volume discount applies to ``quantity``."""
    threshold = rate.volume_threshold
    return (
        threshold is not None
        and threshold > 0
        and quantity >= threshold
        and rate.discounted_rate is not None
    )


def lookup_entry(table: Iterable[Tuple[str, T]], key: Optional[str]) -> Optional[Tuple[str, T]]:
    """Find the entry for ``key``.

    Exact case-insensitive key match first, otherwise the first table key
    contained in ``key``.
    """
    if not key:
        return None
    entries = list(table)
    wanted = str(key).strip().lower()

    for name, value in entries:
        if str(name).strip().lower() == wanted:
            return name, value

    for name, value in entries:
        candidate = str(name).strip().lower()
        if candidate and candidate in wanted:
            return name, value

    return None


def multiplier_for(table: Mapping[str, float], key: Optional[str]) -> float:
    """Multiplier from a legacy adjustment table; 1.0 when nothing applies."""
    entry = lookup_entry(table.items(), key)
    if entry is None:
        return 1.0
    return entry[1]


def _number(value: float) -> str:
    return f"{value:.10g}"
