"""
Contiguous Usage Intervals

An interval owns the run of billing events during which one usage section
(same name, same catalog version) stays referenced. Once built it splits its
window into billing-period buckets, rolls up raw usage per bucket and diffs
the result against invoice items already issued.
"""

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timezone, tzinfo
from decimal import Decimal
from typing import AbstractSet, Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from ..config import UsageDetailMode
from ..core.logging import get_logger
from .base import (
    BillingEvent,
    BillingMode,
    InvoiceDataError,
    InvoiceItem,
    InvoiceItemType,
    RawUsage,
    TrackingRecordId,
    Usage,
    UsageKey,
)
from .periods import billing_cycle_dates, to_local_date
from .pricing import compute_consumable_charges, select_capacity_tier
from .usage import RolledUpUsage, roll_up_usage


logger = get_logger(__name__)


@dataclass(frozen=True)
class TransitionPeriod:
    """One billing bucket ``[start, end)`` of an interval."""

    start: date
    end: date
    event_index: int  # Event in force at ``start``
    aligned_start: date  # Cycle-aligned start before raw usage clipping


@dataclass(frozen=True)
class UsageInArrearItemsAndNextNotificationDate:
    """Result of reconciling one interval."""

    invoice_items: Tuple[InvoiceItem, ...]
    next_notification_date: Optional[date]
    tracking_ids: FrozenSet[TrackingRecordId]


class ContiguousIntervalUsageInArrear(ABC):
    """
    Accumulator for one usage section over a contiguous run of events.

    Lifecycle: events are added while the interval is open, then ``build``
    is called exactly once. Only a built interval can compute items.
    """

    def __init__(
        self,
        usage: Usage,
        account_id: str,
        invoice_id: str,
        raw_subscription_usage: Sequence[RawUsage],
        existing_tracking_ids: AbstractSet[TrackingRecordId],
        target_date: date,
        raw_usage_start_date: date,
        usage_detail_mode: UsageDetailMode = UsageDetailMode.AGGREGATE,
        zero_amount_disabled: bool = False,
        time_zone: tzinfo = timezone.utc,
    ):
        if usage.billing_mode != BillingMode.IN_ARREAR:
            raise ValueError(f"Usage {usage.name} is not billed in arrear")

        self._usage = usage
        self._account_id = account_id
        self._invoice_id = invoice_id
        self._raw_usage = raw_subscription_usage
        self._existing_tracking_ids = existing_tracking_ids
        self._target_date = target_date
        self._raw_usage_start_date = raw_usage_start_date
        self._usage_detail_mode = usage_detail_mode
        self._zero_amount_disabled = zero_amount_disabled
        self._time_zone = time_zone

        self._billing_events: List[BillingEvent] = []
        self._seen_unit_types: List[Optional[FrozenSet[str]]] = []

        self._closed: Optional[bool] = None
        self._transition_periods: List[TransitionPeriod] = []
        self._next_notification_date: Optional[date] = None

    # ── Accumulation ──────────────────────────────────────────────────

    def add_billing_event(self, event: BillingEvent) -> None:
        """Append the next event of the run."""
        self._check_not_built()
        if self._billing_events and event.subscription_id != self.subscription_id:
            raise ValueError(
                f"Event for subscription {event.subscription_id} added to "
                f"interval of subscription {self.subscription_id}"
            )
        self._billing_events.append(event)
        self._seen_unit_types.append(None)

    def add_all_seen_unit_types_for_billing_event(
        self,
        event: BillingEvent,
        unit_types: Iterable[str],
    ) -> None:
        """Record the unit types in force at ``event``, the latest event added."""
        self._check_not_built()
        if not self._billing_events or self._billing_events[-1] is not event:
            raise ValueError("Unit types can only be recorded for the latest event")
        self._seen_unit_types[-1] = frozenset(unit_types)

    def get_unit_types(self) -> FrozenSet[str]:
        return self._usage.unit_types

    def build(self, closed_interval: bool) -> "ContiguousIntervalUsageInArrear":
        """
        Freeze the interval and compute its buckets.

        ``closed_interval`` is True when the last event ended the run, False
        when the usage section is still active after the last event.
        """
        self._check_not_built()
        if not self._billing_events:
            raise ValueError(f"Interval for usage {self._usage.name} has no billing events")

        self._closed = closed_interval
        self._transition_periods = self._compute_transition_periods()
        self._next_notification_date = self._compute_next_notification_date()
        return self

    # ── Properties ────────────────────────────────────────────────────

    @property
    def usage(self) -> Usage:
        return self._usage

    @property
    def usage_key(self) -> UsageKey:
        return UsageKey(self._usage.name, self._billing_events[0].catalog_effective_date)

    @property
    def subscription_id(self) -> str:
        return self._billing_events[0].subscription_id

    @property
    def billing_events(self) -> Tuple[BillingEvent, ...]:
        return tuple(self._billing_events)

    @property
    def is_built(self) -> bool:
        return self._closed is not None

    @property
    def is_closed(self) -> bool:
        return bool(self._closed)

    @property
    def start_date(self) -> date:
        return self._local_date(self._billing_events[0])

    @property
    def end_date(self) -> Optional[date]:
        """Last event date of a closed interval, None while still active."""
        if not self._closed:
            return None
        return self._local_date(self._billing_events[-1])

    @property
    def transition_periods(self) -> Tuple[TransitionPeriod, ...]:
        return tuple(self._transition_periods)

    @property
    def next_notification_date(self) -> Optional[date]:
        return self._next_notification_date

    def seen_unit_types(self, event_index: int) -> FrozenSet[str]:
        return self._seen_unit_types[event_index] or frozenset()

    # ── Reconciliation ────────────────────────────────────────────────

    def compute_missing_items_and_next_notification_date(
        self,
        existing_items: Iterable[InvoiceItem],
    ) -> UsageInArrearItemsAndNextNotificationDate:
        """Return the items still owed for this interval and the next date to look again."""
        if not self.is_built:
            raise ValueError(f"Interval for usage {self._usage.name} has not been built")

        billed_items = [
            item for item in existing_items
            if item.item_type == InvoiceItemType.USAGE
            and item.usage_name == self._usage.name
            and item.subscription_id == self.subscription_id
        ]

        new_items: List[InvoiceItem] = []
        tracking_ids = set()
        for period in self._transition_periods:
            billed_for_period = self._billed_items_for_period(billed_items, period)
            unit_types = self._unit_types_for_period(period)
            if not unit_types:
                continue

            rolled_up = roll_up_usage(
                self._raw_usage,
                self.subscription_id,
                period.start,
                period.end,
                unit_types,
                self._invoice_id,
            )
            new_items.extend(self._compute_period_items(period, rolled_up, billed_for_period))
            tracking_ids.update(
                t for t in rolled_up.tracking_ids if t not in self._existing_tracking_ids
            )

        logger.debug(
            "usage_interval_reconciled",
            usage_name=self._usage.name,
            periods=len(self._transition_periods),
            new_items=len(new_items),
            tracking_ids=len(tracking_ids),
        )
        return UsageInArrearItemsAndNextNotificationDate(
            invoice_items=tuple(new_items),
            next_notification_date=self._next_notification_date,
            tracking_ids=frozenset(tracking_ids),
        )

    @abstractmethod
    def _compute_period_items(
        self,
        period: TransitionPeriod,
        rolled_up: RolledUpUsage,
        billed_items: List[InvoiceItem],
    ) -> List[InvoiceItem]:
        """Items missing for one bucket given what was already billed for it."""

    # ── Helpers ───────────────────────────────────────────────────────

    def _check_not_built(self) -> None:
        if self._closed is not None:
            raise ValueError(f"Interval for usage {self._usage.name} is already built")

    def _local_date(self, event: BillingEvent) -> date:
        return to_local_date(event.effective_date, self._time_zone)

    def _compute_transition_periods(self) -> List[TransitionPeriod]:
        start = self.start_date
        end = self.end_date
        first_event = self._billing_events[0]

        boundaries = [start]
        if self._target_date >= start:
            for cycle_date in billing_cycle_dates(
                start, first_event.bill_cycle_day_local, self._usage.billing_period
            ):
                if cycle_date > self._target_date:
                    break
                if end is not None and cycle_date >= end:
                    break
                boundaries.append(cycle_date)
            # Trailing partial bucket of a closed interval
            if end is not None and start < end <= self._target_date:
                boundaries.append(end)

        periods = []
        for period_start, period_end in zip(boundaries, boundaries[1:]):
            if period_end <= self._raw_usage_start_date:
                continue
            periods.append(
                TransitionPeriod(
                    start=max(period_start, self._raw_usage_start_date),
                    end=period_end,
                    event_index=self._event_index_at(period_start),
                    aligned_start=period_start,
                )
            )
        return periods

    def _compute_next_notification_date(self) -> Optional[date]:
        end = self.end_date
        if end is not None and end <= self._target_date:
            return None

        first_event = self._billing_events[0]
        next_date = next(
            cycle_date
            for cycle_date in billing_cycle_dates(
                self.start_date, first_event.bill_cycle_day_local, self._usage.billing_period
            )
            if cycle_date > self._target_date
        )
        if end is not None:
            next_date = min(next_date, end)
        return next_date

    def _event_index_at(self, day: date) -> int:
        index = 0
        for i, event in enumerate(self._billing_events):
            if self._local_date(event) <= day:
                index = i
        return index

    def _unit_types_for_period(self, period: TransitionPeriod) -> FrozenSet[str]:
        seen = self._seen_unit_types[period.event_index]
        # The trailing bucket of a closed interval is governed by the closing event
        if self._closed and period.end == self.end_date and self._seen_unit_types[-1] is not None:
            seen = self._seen_unit_types[-1]
        if seen is None:
            return self._usage.unit_types
        return seen & self._usage.unit_types

    def _billed_items_for_period(
        self,
        billed_items: List[InvoiceItem],
        period: TransitionPeriod,
    ) -> List[InvoiceItem]:
        result = []
        for item in billed_items:
            if item.end_date <= period.aligned_start or item.start_date >= period.end:
                continue
            if item.start_date != period.aligned_start or item.end_date != period.end:
                raise InvoiceDataError(
                    f"Usage item {item.id} [{item.start_date}, {item.end_date}) does not "
                    f"match billing period [{period.aligned_start}, {period.end}) of usage {self._usage.name}",
                    invoice_item_id=item.id,
                )
            result.append(item)
        return result

    def _amount_owed(
        self,
        period: TransitionPeriod,
        due: Decimal,
        billed_items: List[InvoiceItem],
        unit_type: Optional[str] = None,
    ) -> Optional[Decimal]:
        """Amount still to invoice for a bucket, None when nothing should be emitted."""
        billed = sum((item.amount for item in billed_items), Decimal("0"))
        if billed_items and billed == due:
            return None
        if billed > due:
            logger.warning(
                "usage_billed_above_due",
                usage_name=self._usage.name,
                unit_type=unit_type,
                period_start=period.start.isoformat(),
                period_end=period.end.isoformat(),
                billed=str(billed),
                due=str(due),
            )
            return None

        owed = due - billed
        if owed == 0 and self._zero_amount_disabled:
            return None
        return owed

    def _new_item(
        self,
        period: TransitionPeriod,
        amount: Decimal,
        unit_type: Optional[str] = None,
        quantity: Optional[Decimal] = None,
        rate: Optional[Decimal] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> InvoiceItem:
        event = self._billing_events[period.event_index]
        return InvoiceItem(
            id=str(uuid.uuid4()),
            invoice_id=self._invoice_id,
            account_id=self._account_id,
            subscription_id=event.subscription_id,
            plan_name=event.plan_name,
            phase_name=event.phase_name,
            usage_name=self._usage.name,
            start_date=period.aligned_start,
            end_date=period.end,
            amount=amount,
            currency=event.currency,
            item_type=InvoiceItemType.USAGE,
            unit_type=unit_type,
            quantity=quantity,
            rate=rate,
            catalog_effective_date=event.catalog_effective_date,
            item_details=json.dumps(details, sort_keys=True) if details else None,
        )

    def __repr__(self) -> str:
        state = "open" if not self.is_built else ("closed" if self._closed else "active")
        return (
            f"{type(self).__name__}(usage={self._usage.name!r}, "
            f"events={len(self._billing_events)}, state={state})"
        )


class ContiguousIntervalConsumableUsageInArrear(ContiguousIntervalUsageInArrear):
    """Per-unit pricing: each unit type of a bucket is charged on its total."""

    def _compute_period_items(
        self,
        period: TransitionPeriod,
        rolled_up: RolledUpUsage,
        billed_items: List[InvoiceItem],
    ) -> List[InvoiceItem]:
        for item in billed_items:
            if item.unit_type not in self._usage.unit_types:
                raise InvoiceDataError(
                    f"Usage item {item.id} references unit type {item.unit_type} "
                    f"not defined by usage {self._usage.name}",
                    invoice_item_id=item.id,
                )

        items: List[InvoiceItem] = []
        for unit_type in sorted(rolled_up.amounts):
            quantity = rolled_up.amount_for(unit_type)
            charges = compute_consumable_charges(self._usage, unit_type, quantity)
            due = sum((charge.amount for charge in charges), Decimal("0"))

            billed_for_unit = [item for item in billed_items if item.unit_type == unit_type]
            owed = self._amount_owed(period, due, billed_for_unit, unit_type)
            if owed is None:
                continue

            if (
                self._usage_detail_mode == UsageDetailMode.DETAIL
                and not billed_for_unit
                and charges
            ):
                for charge in charges:
                    if charge.amount == 0 and self._zero_amount_disabled:
                        continue
                    items.append(
                        self._new_item(
                            period,
                            charge.amount,
                            unit_type=unit_type,
                            quantity=charge.blocks,
                            rate=charge.price,
                            details=charge.to_dict(),
                        )
                    )
                continue

            details: Dict[str, Any] = {
                "quantity": str(quantity),
                "tiers": [charge.to_dict() for charge in charges],
            }
            if billed_for_unit:
                details["previously_billed"] = str(due - owed)
            items.append(
                self._new_item(
                    period,
                    owed,
                    unit_type=unit_type,
                    quantity=self._quantity_owed(quantity, billed_for_unit),
                    rate=charges[0].price if len(charges) == 1 else None,
                    details=details,
                )
            )
        return items

    @staticmethod
    def _quantity_owed(quantity: Decimal, billed_items: List[InvoiceItem]) -> Optional[Decimal]:
        """Units not yet invoiced, None when an earlier item did not record its quantity."""
        billed_quantities = [item.quantity for item in billed_items]
        if any(billed is None for billed in billed_quantities):
            return None
        return quantity - sum(billed_quantities, Decimal("0"))


class ContiguousIntervalCapacityUsageInArrear(ContiguousIntervalUsageInArrear):
    """Capacity pricing: a bucket is charged the price of the lowest covering tier."""

    def _compute_period_items(
        self,
        period: TransitionPeriod,
        rolled_up: RolledUpUsage,
        billed_items: List[InvoiceItem],
    ) -> List[InvoiceItem]:
        for item in billed_items:
            if item.unit_type is not None:
                raise InvoiceDataError(
                    f"Capacity usage item {item.id} carries unit type {item.unit_type}",
                    invoice_item_id=item.id,
                )

        tier_index, tier = select_capacity_tier(self._usage, rolled_up.amounts)
        owed = self._amount_owed(period, tier.recurring_price, billed_items)
        if owed is None:
            return []

        details: Dict[str, Any] = {
            "tier": tier_index,
            "amounts": {unit: str(amount) for unit, amount in sorted(rolled_up.amounts.items())},
        }
        if billed_items:
            details["previously_billed"] = str(tier.recurring_price - owed)
        return [
            self._new_item(
                period,
                owed,
                rate=tier.recurring_price,
                details=details,
            )
        ]
