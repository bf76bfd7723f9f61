"""In-arrear usage invoicing."""

from .base import (
    BillingError,
    BillingEvent,
    BillingMode,
    BillingPeriod,
    CatalogError,
    InvoiceDataError,
    InvoiceItem,
    InvoiceItemType,
    Limit,
    RawUsage,
    Tier,
    TieredBlock,
    TrackingRecordId,
    Usage,
    UsageKey,
    UsageType,
)
from .intervals import (
    ContiguousIntervalCapacityUsageInArrear,
    ContiguousIntervalConsumableUsageInArrear,
    ContiguousIntervalUsageInArrear,
    TransitionPeriod,
    UsageInArrearItemsAndNextNotificationDate,
)
from .periods import billing_cycle_dates, first_billing_cycle_date, to_local_date
from .pricing import TierCharge, compute_consumable_charges, select_capacity_tier
from .subscription import (
    SubscriptionUsageInArrear,
    SubscriptionUsageInArrearItemsAndNextNotificationDate,
    UsageIntervalArena,
)
from .usage import RolledUpUsage, filter_subscription_usage, roll_up_usage

__all__ = [
    # Base
    "BillingError",
    "BillingEvent",
    "BillingMode",
    "BillingPeriod",
    "CatalogError",
    "InvoiceDataError",
    "InvoiceItem",
    "InvoiceItemType",
    "Limit",
    "RawUsage",
    "Tier",
    "TieredBlock",
    "TrackingRecordId",
    "Usage",
    "UsageKey",
    "UsageType",
    # Intervals
    "ContiguousIntervalCapacityUsageInArrear",
    "ContiguousIntervalConsumableUsageInArrear",
    "ContiguousIntervalUsageInArrear",
    "TransitionPeriod",
    "UsageInArrearItemsAndNextNotificationDate",
    # Periods
    "billing_cycle_dates",
    "first_billing_cycle_date",
    "to_local_date",
    # Pricing
    "TierCharge",
    "compute_consumable_charges",
    "select_capacity_tier",
    # Subscription
    "SubscriptionUsageInArrear",
    "SubscriptionUsageInArrearItemsAndNextNotificationDate",
    "UsageIntervalArena",
    # Usage
    "RolledUpUsage",
    "filter_subscription_usage",
    "roll_up_usage",
]
