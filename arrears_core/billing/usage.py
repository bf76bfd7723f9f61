"""
Raw Usage Selection

Selects a subscription's metered records and rolls them up per bucket.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import AbstractSet, Dict, Iterable, List, Set

from .base import RawUsage, TrackingRecordId


def raw_usage_sort_key(record: RawUsage):
    """Total order on raw usage: date, unit type, then ingestion sequence."""
    return (record.date, record.unit_type, record.record_id)


def filter_subscription_usage(
    raw_usage: Iterable[RawUsage],
    subscription_id: str,
) -> List[RawUsage]:
    """Return the records of one subscription in deterministic order."""
    return sorted(
        (r for r in raw_usage if r.subscription_id == subscription_id),
        key=raw_usage_sort_key,
    )


@dataclass
class RolledUpUsage:
    """Usage of one bucket summed per unit type."""

    subscription_id: str
    start: date
    end: date
    amounts: Dict[str, Decimal] = field(default_factory=dict)
    tracking_ids: Set[TrackingRecordId] = field(default_factory=set)

    def amount_for(self, unit_type: str) -> Decimal:
        return self.amounts.get(unit_type, Decimal("0"))


def roll_up_usage(
    records: Iterable[RawUsage],
    subscription_id: str,
    start: date,
    end: date,
    unit_types: AbstractSet[str],
    invoice_id: str,
) -> RolledUpUsage:
    """
    Sum the records dated in ``[start, end)`` for the given unit types.

    Every unit type gets an entry, zero when nothing was reported.
    """
    amounts: Dict[str, Decimal] = defaultdict(Decimal)
    for unit_type in unit_types:
        amounts[unit_type] = Decimal("0")

    tracking_ids: Set[TrackingRecordId] = set()
    for record in records:
        if record.date < start or record.date >= end:
            continue
        if record.unit_type not in unit_types:
            continue
        amounts[record.unit_type] += record.amount
        tracking_ids.add(
            TrackingRecordId(
                tracking_id=record.tracking_id,
                subscription_id=subscription_id,
                unit_type=record.unit_type,
                record_date=record.date,
                invoice_id=invoice_id,
            )
        )

    return RolledUpUsage(
        subscription_id=subscription_id,
        start=start,
        end=end,
        amounts=dict(amounts),
        tracking_ids=tracking_ids,
    )
