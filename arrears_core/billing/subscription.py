"""
Subscription Usage In Arrear

Walks one subscription's billing events, groups them into contiguous usage
intervals and merges what each interval still owes into a single result.
"""

from datetime import date
from typing import AbstractSet, Dict, Iterable, List, Optional, Sequence, Set

from ..config import Settings, UsageDetailMode, get_settings
from ..core.logging import LogContext, get_logger
from .base import (
    BillingEvent,
    BillingMode,
    InvoiceItem,
    RawUsage,
    TrackingRecordId,
    Usage,
    UsageKey,
    UsageType,
)
from .intervals import (
    ContiguousIntervalCapacityUsageInArrear,
    ContiguousIntervalConsumableUsageInArrear,
    ContiguousIntervalUsageInArrear,
    UsageInArrearItemsAndNextNotificationDate,
)
from .usage import filter_subscription_usage


logger = get_logger(__name__)


class SubscriptionUsageInArrearItemsAndNextNotificationDate:
    """New items, next notification date per usage name and consumed tracking ids of a run."""

    def __init__(self):
        self.invoice_items: List[InvoiceItem] = []
        self.per_usage_notification_dates: Dict[str, date] = {}
        self.tracking_ids: Set[TrackingRecordId] = set()

    def add_usage_in_arrear_items_and_next_notification_date(
        self,
        usage_name: str,
        result: UsageInArrearItemsAndNextNotificationDate,
    ) -> None:
        self.invoice_items.extend(result.invoice_items)

        if result.next_notification_date is None:
            return
        previous = self.per_usage_notification_dates.get(usage_name)
        if previous is not None and previous != result.next_notification_date:
            logger.warning(
                "usage_notification_date_overwritten",
                usage_name=usage_name,
                previous=previous.isoformat(),
                current=result.next_notification_date.isoformat(),
            )
        self.per_usage_notification_dates[usage_name] = result.next_notification_date

    def add_tracking_ids(self, tracking_ids: Iterable[TrackingRecordId]) -> None:
        self.tracking_ids.update(tracking_ids)


class UsageIntervalArena:
    """Intervals still accepting events, keyed by usage key, and those already built."""

    def __init__(self):
        self._open: Dict[UsageKey, ContiguousIntervalUsageInArrear] = {}
        self._built: List[ContiguousIntervalUsageInArrear] = []

    def get(self, key: UsageKey) -> Optional[ContiguousIntervalUsageInArrear]:
        return self._open.get(key)

    def open(
        self,
        key: UsageKey,
        interval: ContiguousIntervalUsageInArrear,
    ) -> ContiguousIntervalUsageInArrear:
        if key in self._open:
            raise ValueError(f"An interval is already open for {key!r}")
        self._open[key] = interval
        return interval

    def open_keys(self) -> List[UsageKey]:
        """Open keys in the order their intervals were opened."""
        return list(self._open)

    def finish(self, key: UsageKey, closed_interval: bool) -> ContiguousIntervalUsageInArrear:
        interval = self._open.pop(key)
        self._built.append(interval.build(closed_interval))
        return interval

    @property
    def built(self) -> List[ContiguousIntervalUsageInArrear]:
        return list(self._built)


class SubscriptionUsageInArrear:
    """
    In-arrear usage reconciliation for one subscription.

    Given the subscription's billing events (sorted by effective date), its
    raw usage and the usage items already invoiced, computes the items still
    owed up to ``target_date``. The computation is pure: nothing is persisted
    and a failure leaves no partial result behind.
    """

    def __init__(
        self,
        account_id: str,
        invoice_id: str,
        subscription_billing_events: Sequence[BillingEvent],
        raw_usage: Iterable[RawUsage],
        existing_tracking_ids: AbstractSet[TrackingRecordId],
        target_date: date,
        raw_usage_start_date: date,
        usage_detail_mode: Optional[UsageDetailMode] = None,
        settings: Optional[Settings] = None,
    ):
        if not subscription_billing_events:
            raise ValueError("At least one billing event is required")

        subscription_ids = {event.subscription_id for event in subscription_billing_events}
        if len(subscription_ids) > 1:
            raise ValueError(
                f"Billing events span several subscriptions: {sorted(subscription_ids)}"
            )

        for previous, current in zip(subscription_billing_events, subscription_billing_events[1:]):
            if current.effective_date < previous.effective_date:
                raise ValueError("Billing events must be sorted by effective date")

        settings = settings or get_settings()

        self._account_id = account_id
        self._invoice_id = invoice_id
        self._billing_events = list(subscription_billing_events)
        self._subscription_id = self._billing_events[0].subscription_id
        self._target_date = target_date
        self._raw_usage_start_date = raw_usage_start_date
        self._raw_subscription_usage = filter_subscription_usage(raw_usage, self._subscription_id)
        self._existing_tracking_ids = frozenset(existing_tracking_ids)
        self._usage_detail_mode = usage_detail_mode or settings.usage_detail_mode
        self._zero_amount_disabled = settings.usage_zero_amount_disabled
        self._time_zone = settings.time_zone

    @property
    def subscription_id(self) -> str:
        return self._subscription_id

    @property
    def raw_subscription_usage(self) -> List[RawUsage]:
        return list(self._raw_subscription_usage)

    def compute_missing_usage_invoice_items(
        self,
        existing_usage: Iterable[InvoiceItem],
    ) -> SubscriptionUsageInArrearItemsAndNextNotificationDate:
        """
        Figure out what remains to be billed.

        Args:
            existing_usage: Invoice items already issued for the subscription

        Returns:
            New items, next notification date per usage name and the tracking
            ids these items consume

        Raises:
            CatalogError: Pricing cannot be resolved for a bucket
            InvoiceDataError: Existing items do not fit the usage model
        """
        existing_usage = list(existing_usage)
        result = SubscriptionUsageInArrearItemsAndNextNotificationDate()

        with LogContext(
            account_id=self._account_id,
            invoice_id=self._invoice_id,
            subscription_id=self._subscription_id,
        ):
            for interval in self.compute_in_arrear_usage_interval():
                interval_result = interval.compute_missing_items_and_next_notification_date(
                    existing_usage
                )
                logger.debug(
                    "usage_interval_computed",
                    usage_name=interval.usage.name,
                    catalog_version=interval.usage_key.catalog_version.isoformat(),
                    closed=interval.is_closed,
                    new_items=len(interval_result.invoice_items),
                    next_notification_date=(
                        interval_result.next_notification_date.isoformat()
                        if interval_result.next_notification_date
                        else None
                    ),
                )
                result.add_usage_in_arrear_items_and_next_notification_date(
                    interval.usage.name, interval_result
                )
                result.add_tracking_ids(interval_result.tracking_ids)

            logger.info(
                "usage_items_computed",
                target_date=self._target_date.isoformat(),
                new_items=len(result.invoice_items),
                tracking_ids=len(result.tracking_ids),
            )
        return result

    def compute_in_arrear_usage_interval(self) -> List[ContiguousIntervalUsageInArrear]:
        """
        Split the event timeline into built intervals.

        Each event is one state transition: intervals for the usage keys it
        references are opened or extended, and every open interval it no
        longer references is closed on it.
        """
        arena = UsageIntervalArena()
        previous_unit_types: frozenset = frozenset()

        for event in self._billing_events:
            active = self._find_usage_in_arrear_usages(event)

            unit_types: Set[str] = set()
            referenced: List[ContiguousIntervalUsageInArrear] = []
            for key, usage in active.items():
                interval = arena.get(key) or arena.open(key, self._new_interval(usage))
                interval.add_billing_event(event)
                unit_types.update(interval.get_unit_types())
                referenced.append(interval)

            current_unit_types = frozenset(unit_types)
            for interval in referenced:
                interval.add_all_seen_unit_types_for_billing_event(event, current_unit_types)

            for key in arena.open_keys():
                if key in active:
                    continue
                interval = arena.get(key)
                interval.add_billing_event(event)
                # A cancellation carries no usage section of its own
                interval.add_all_seen_unit_types_for_billing_event(
                    event, current_unit_types if active else previous_unit_types
                )
                arena.finish(key, closed_interval=True)

            previous_unit_types = current_unit_types

        for key in arena.open_keys():
            arena.finish(key, closed_interval=False)
        return arena.built

    def _find_usage_in_arrear_usages(self, event: BillingEvent) -> Dict[UsageKey, Usage]:
        usages: Dict[UsageKey, Usage] = {}
        for usage in event.usages:
            if usage.billing_mode != BillingMode.IN_ARREAR:
                continue
            usages.setdefault(UsageKey(usage.name, event.catalog_effective_date), usage)
        return usages

    def _new_interval(self, usage: Usage) -> ContiguousIntervalUsageInArrear:
        interval_class = (
            ContiguousIntervalCapacityUsageInArrear
            if usage.usage_type == UsageType.CAPACITY
            else ContiguousIntervalConsumableUsageInArrear
        )
        return interval_class(
            usage=usage,
            account_id=self._account_id,
            invoice_id=self._invoice_id,
            raw_subscription_usage=self._raw_subscription_usage,
            existing_tracking_ids=self._existing_tracking_ids,
            target_date=self._target_date,
            raw_usage_start_date=self._raw_usage_start_date,
            usage_detail_mode=self._usage_detail_mode,
            zero_amount_disabled=self._zero_amount_disabled,
            time_zone=self._time_zone,
        )
