"""Shared pytest fixtures for testing."""

import itertools
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from arrears_core.billing.base import (
    BillingEvent,
    BillingMode,
    BillingPeriod,
    InvoiceItem,
    InvoiceItemType,
    Limit,
    RawUsage,
    Tier,
    TieredBlock,
    Usage,
    UsageType,
)
from arrears_core.config import Settings, UsageDetailMode, get_settings


CATALOG_V1 = datetime(2023, 12, 1, tzinfo=timezone.utc)
CATALOG_V2 = datetime(2024, 2, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Drop cached settings around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment running the tests."""
    return Settings(
        _env_file=None,
        environment="development",
        usage_detail_mode=UsageDetailMode.AGGREGATE,
        usage_zero_amount_disabled=False,
        account_time_zone="UTC",
    )


# =============================================================================
# Catalog Fixtures
# =============================================================================


@pytest.fixture
def consumable_usage() -> Usage:
    """API calls billed one cent per call."""
    return Usage(
        name="API-CALLS",
        billing_mode=BillingMode.IN_ARREAR,
        usage_type=UsageType.CONSUMABLE,
        billing_period=BillingPeriod.MONTHLY,
        tiers=(
            Tier(blocks=(TieredBlock(unit_type="call", size=Decimal("1"), price=Decimal("0.01")),)),
        ),
    )


@pytest.fixture
def tiered_consumable_usage() -> Usage:
    """First 100 calls at two cents, the rest at one cent."""
    return Usage(
        name="API-CALLS",
        billing_mode=BillingMode.IN_ARREAR,
        usage_type=UsageType.CONSUMABLE,
        billing_period=BillingPeriod.MONTHLY,
        tiers=(
            Tier(blocks=(
                TieredBlock(unit_type="call", size=Decimal("1"), price=Decimal("0.02"), max_blocks=Decimal("100")),
            )),
            Tier(blocks=(
                TieredBlock(unit_type="call", size=Decimal("1"), price=Decimal("0.01")),
            )),
        ),
    )


@pytest.fixture
def messaging_usage() -> Usage:
    """Calls and text messages billed by one usage section."""
    return Usage(
        name="MESSAGING",
        billing_mode=BillingMode.IN_ARREAR,
        usage_type=UsageType.CONSUMABLE,
        billing_period=BillingPeriod.MONTHLY,
        tiers=(
            Tier(blocks=(
                TieredBlock(unit_type="call", size=Decimal("1"), price=Decimal("0.01")),
                TieredBlock(unit_type="sms", size=Decimal("1"), price=Decimal("0.05")),
            )),
        ),
    )


@pytest.fixture
def capacity_usage() -> Usage:
    """Bandwidth and connections priced by the lowest covering tier."""
    return Usage(
        name="BANDWIDTH",
        billing_mode=BillingMode.IN_ARREAR,
        usage_type=UsageType.CAPACITY,
        billing_period=BillingPeriod.MONTHLY,
        tiers=(
            Tier(
                limits=(Limit("gb", Decimal("100")), Limit("conn", Decimal("10"))),
                recurring_price=Decimal("10"),
            ),
            Tier(
                limits=(Limit("gb", Decimal("1000")), Limit("conn", Decimal("100"))),
                recurring_price=Decimal("50"),
            ),
            Tier(
                limits=(Limit("gb"), Limit("conn")),
                recurring_price=Decimal("200"),
            ),
        ),
    )


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def make_event():
    """Build billing events; plain dates become midnight UTC."""

    def _make(
        day,
        usages=(),
        catalog_effective_date=CATALOG_V1,
        bill_cycle_day=1,
        subscription_id="sub_1",
        plan_name="api-plan",
        phase_name="api-plan-evergreen",
        currency="USD",
    ) -> BillingEvent:
        if not isinstance(day, datetime):
            day = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        return BillingEvent(
            subscription_id=subscription_id,
            effective_date=day,
            catalog_effective_date=catalog_effective_date,
            bill_cycle_day_local=bill_cycle_day,
            plan_name=plan_name,
            phase_name=phase_name,
            currency=currency,
            usages=tuple(usages),
        )

    return _make


@pytest.fixture
def make_raw_usage():
    """Build raw usage records with increasing record ids."""
    counter = itertools.count(1)

    def _make(day: date, amount, unit_type="call", subscription_id="sub_1", tracking_id=None) -> RawUsage:
        record_id = next(counter)
        return RawUsage(
            subscription_id=subscription_id,
            unit_type=unit_type,
            date=day,
            amount=Decimal(str(amount)),
            tracking_id=tracking_id or f"trk_{record_id}",
            record_id=record_id,
        )

    return _make


@pytest.fixture
def make_item():
    """Build an already issued usage invoice item."""

    def _make(
        start_date: date,
        end_date: date,
        amount,
        usage_name="API-CALLS",
        unit_type="call",
        subscription_id="sub_1",
        item_type=InvoiceItemType.USAGE,
        quantity=None,
    ) -> InvoiceItem:
        return InvoiceItem(
            id=f"item_{usage_name}_{start_date.isoformat()}_{unit_type}",
            invoice_id="inv_0",
            account_id="acc_1",
            subscription_id=subscription_id,
            plan_name="api-plan",
            phase_name="api-plan-evergreen",
            usage_name=usage_name,
            start_date=start_date,
            end_date=end_date,
            amount=Decimal(str(amount)),
            currency="USD",
            item_type=item_type,
            unit_type=unit_type,
            quantity=Decimal(str(quantity)) if quantity is not None else None,
        )

    return _make


@pytest.fixture
def make_interval():
    """Build a usage interval directly from a list of events."""
    from arrears_core.billing.intervals import (
        ContiguousIntervalCapacityUsageInArrear,
        ContiguousIntervalConsumableUsageInArrear,
    )
    from arrears_core.billing.usage import raw_usage_sort_key

    def _make(
        usage,
        events,
        raw_usage=(),
        closed=True,
        target_date=date(2024, 1, 31),
        raw_usage_start_date=date(2024, 1, 1),
        existing_tracking_ids=frozenset(),
        usage_detail_mode=UsageDetailMode.AGGREGATE,
        zero_amount_disabled=False,
        build=True,
    ):
        interval_class = (
            ContiguousIntervalCapacityUsageInArrear
            if usage.usage_type == UsageType.CAPACITY
            else ContiguousIntervalConsumableUsageInArrear
        )
        interval = interval_class(
            usage=usage,
            account_id="acc_1",
            invoice_id="inv_1",
            raw_subscription_usage=sorted(raw_usage, key=raw_usage_sort_key),
            existing_tracking_ids=existing_tracking_ids,
            target_date=target_date,
            raw_usage_start_date=raw_usage_start_date,
            usage_detail_mode=usage_detail_mode,
            zero_amount_disabled=zero_amount_disabled,
        )
        for event in events:
            interval.add_billing_event(event)
        if build:
            interval.build(closed)
        return interval

    return _make


@pytest.fixture
def make_subscription_usage(settings):
    """Build the per-subscription reconciliation entry point."""
    from arrears_core.billing.subscription import SubscriptionUsageInArrear

    def _make(
        events,
        raw_usage=(),
        existing_tracking_ids=frozenset(),
        target_date=date(2024, 1, 31),
        raw_usage_start_date=date(2024, 1, 1),
        usage_detail_mode=None,
        run_settings=None,
    ):
        return SubscriptionUsageInArrear(
            account_id="acc_1",
            invoice_id="inv_1",
            subscription_billing_events=events,
            raw_usage=raw_usage,
            existing_tracking_ids=existing_tracking_ids,
            target_date=target_date,
            raw_usage_start_date=raw_usage_start_date,
            usage_detail_mode=usage_detail_mode,
            settings=run_settings or settings,
        )

    return _make
