"""
Usage Pricing

Consumable per-block pricing and capacity tier lookup against a catalog
usage section.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Dict, List, Mapping, Tuple

from .base import CatalogError, Tier, Usage


@dataclass(frozen=True)
class TierCharge:
    """Blocks consumed in one tier for one unit type."""

    tier: int  # 1-based position in the usage section
    unit_type: str
    block_size: Decimal
    blocks: Decimal
    price: Decimal

    @property
    def amount(self) -> Decimal:
        return self.blocks * self.price

    @property
    def quantity(self) -> Decimal:
        return self.blocks * self.block_size

    def to_dict(self) -> Dict[str, str]:
        return {
            "tier": str(self.tier),
            "unit_type": self.unit_type,
            "block_size": str(self.block_size),
            "blocks": str(self.blocks),
            "quantity": str(self.quantity),
            "price": str(self.price),
            "amount": str(self.amount),
        }


def _blocks_needed(quantity: Decimal, size: Decimal) -> Decimal:
    return (quantity / size).to_integral_value(rounding=ROUND_CEILING)


def compute_consumable_charges(
    usage: Usage,
    unit_type: str,
    quantity: Decimal,
) -> List[TierCharge]:
    """
    Spread ``quantity`` over the tiered blocks defined for ``unit_type``.

    Tiers fill in catalog order; a tier takes at most ``max_blocks`` blocks
    before the remainder moves on to the next one.
    """
    tiered_blocks = [
        (index, block)
        for index, tier in enumerate(usage.tiers, start=1)
        for block in tier.blocks
        if block.unit_type == unit_type
    ]
    if not tiered_blocks:
        raise CatalogError(
            f"No tiered block for unit type {unit_type} in usage {usage.name}",
            usage_name=usage.name,
        )

    charges: List[TierCharge] = []
    remaining = quantity
    for index, block in tiered_blocks:
        if remaining <= 0:
            break
        if block.size <= 0:
            raise CatalogError(
                f"Invalid block size {block.size} in usage {usage.name}",
                usage_name=usage.name,
            )

        needed = _blocks_needed(remaining, block.size)
        if block.max_blocks is not None and needed > block.max_blocks:
            used = block.max_blocks
            remaining -= used * block.size
        else:
            used = needed
            remaining = Decimal("0")

        if used > 0:
            charges.append(
                TierCharge(
                    tier=index,
                    unit_type=unit_type,
                    block_size=block.size,
                    blocks=used,
                    price=block.price,
                )
            )

    if remaining > 0:
        raise CatalogError(
            f"Quantity {quantity} of {unit_type} exceeds every tier of usage {usage.name}",
            usage_name=usage.name,
        )
    return charges


def select_capacity_tier(
    usage: Usage,
    amounts: Mapping[str, Decimal],
) -> Tuple[int, Tier]:
    """
    Return the first tier (1-based index) whose limits cover every amount.

    Unit types with no usage never disqualify a tier.
    """
    for index, tier in enumerate(usage.tiers, start=1):
        limits = {limit.unit_type: limit for limit in tier.limits}
        covered = True
        for unit_type, amount in amounts.items():
            if amount == 0:
                continue
            limit = limits.get(unit_type)
            if limit is None or (limit.max_value is not None and amount > limit.max_value):
                covered = False
                break

        if covered:
            if tier.recurring_price is None:
                raise CatalogError(
                    f"Capacity tier {index} of usage {usage.name} has no price",
                    usage_name=usage.name,
                )
            return index, tier

    raise CatalogError(
        f"No capacity tier of usage {usage.name} covers {dict(amounts)}",
        usage_name=usage.name,
    )
