"""
Pricing -- tiered volume pricing.

Responsibility:
    Maps (base price, tier schedule, quantity) to the effective unit price,
    the tier that produced it, and the per-unit saving against the base
    price.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Never mutates the
    schedule it is given or the product it came from.

Invariants enforced:
    - Tiers are considered by min_quantity descending; the first tier with
      min_quantity <= quantity wins.  No qualifying tier -> base price.
    - Equal min_quantity entries (e.g. "10" and "010" in the same JSON
      object) resolve to the LOWEST price.
    - All prices are Decimal; floats are converted through ``str``.

Failure modes:
    - InvalidTierScheduleError for a non-integer or non-positive minimum,
      or a non-numeric or non-positive price.
    - ValidationError for a non-positive base price or quantity.

Call sites:
    - Bulk-order creation prices against the TARGET quantity.
    - Individual-order creation prices against that order's own quantity.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from coop_kernel.db.types import round_money, to_money
from coop_kernel.exceptions import InvalidTierScheduleError, ValidationError


@dataclass(frozen=True, order=True)
class PriceTier:
    """A (minimum quantity, unit price) pair."""

    min_quantity: int
    price: Decimal


@dataclass(frozen=True)
class PriceResolution:
    """
    Result of resolving a unit price.

    ``applied_tier`` is None when the base price applies, in which case
    ``savings_per_unit`` is zero.
    """

    unit_price: Decimal
    applied_tier: PriceTier | None
    savings_per_unit: Decimal

    @property
    def is_discounted(self) -> bool:
        return self.applied_tier is not None


@dataclass(frozen=True)
class TierLadderStep:
    """One rung of the ascending tier ladder shown to buyers."""

    min_quantity: int
    unit_price: Decimal
    savings_per_unit: Decimal
    savings_percent: Decimal


TierSchedule = Union[Mapping[Any, Any], Iterable[PriceTier], None]


def _parse_min_quantity(raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidTierScheduleError(str(raw), "minimum quantity must be an integer")
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw).strip()
        if not (text.isascii() and text.isdigit()):
            raise InvalidTierScheduleError(str(raw), "minimum quantity must be an integer")
        value = int(text)
    if value <= 0:
        raise InvalidTierScheduleError(str(raw), "minimum quantity must be positive")
    return value


def _parse_price(key: Any, raw: Any) -> Decimal:
    try:
        price = to_money(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidTierScheduleError(str(key), f"price {raw!r} is not numeric") from None
    if not price.is_finite() or price <= 0:
        raise InvalidTierScheduleError(str(key), f"price {raw!r} must be positive")
    return round_money(price)


def parse_tier_schedule(schedule: TierSchedule) -> tuple[PriceTier, ...]:
    """
    Normalize a tier schedule to PriceTier values sorted by min_quantity
    descending, then price ascending.

    Accepts the catalog's JSON shape (``{"10": "90.00", "50": 80}``) or an
    iterable of PriceTier.  ``None`` and ``{}`` are an empty schedule.
    """
    if not schedule:
        return ()

    tiers: list[PriceTier] = []
    if isinstance(schedule, Mapping):
        for key, raw_price in schedule.items():
            tiers.append(PriceTier(_parse_min_quantity(key), _parse_price(key, raw_price)))
    else:
        for tier in schedule:
            tiers.append(
                PriceTier(
                    _parse_min_quantity(tier.min_quantity),
                    _parse_price(tier.min_quantity, tier.price),
                )
            )

    return tuple(sorted(tiers, key=lambda t: (-t.min_quantity, t.price)))


def resolve_unit_price(
    base_price: Decimal | int | str,
    tier_schedule: TierSchedule,
    quantity: int,
) -> PriceResolution:
    """
    Resolve the effective unit price for ``quantity``.

    Examples (schedule {10: 90, 50: 80, 100: 70}, base 100):
        quantity 5   -> 100 (no tier)
        quantity 10  -> 90
        quantity 60  -> 80
        quantity 150 -> 70
    """
    base = round_money(to_money(base_price))
    if base <= 0:
        raise ValidationError("unit_price", "base price must be positive")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", "quantity must be a positive integer")

    # Sorted min_quantity desc, price asc: the first match is also the
    # cheapest among equal minimums.
    for tier in parse_tier_schedule(tier_schedule):
        if tier.min_quantity <= quantity:
            return PriceResolution(
                unit_price=tier.price,
                applied_tier=tier,
                savings_per_unit=base - tier.price,
            )

    return PriceResolution(unit_price=base, applied_tier=None, savings_per_unit=Decimal("0.00"))


def describe_tiers(
    base_price: Decimal | int | str,
    tier_schedule: TierSchedule,
) -> tuple[TierLadderStep, ...]:
    """Ascending tier ladder with savings against the base price."""
    base = round_money(to_money(base_price))
    ladder: dict[int, PriceTier] = {}
    for tier in parse_tier_schedule(tier_schedule):
        # Descending sort puts the cheapest duplicate first; keep it
        ladder.setdefault(tier.min_quantity, tier)

    steps = []
    for min_quantity in sorted(ladder):
        price = ladder[min_quantity].price
        saving = base - price
        percent = round_money(saving * 100 / base) if base > 0 else Decimal("0.00")
        steps.append(
            TierLadderStep(
                min_quantity=min_quantity,
                unit_price=price,
                savings_per_unit=saving,
                savings_percent=percent,
            )
        )
    return tuple(steps)
