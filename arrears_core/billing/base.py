"""
Billing Base Types

Core types and data structures for in-arrear usage invoicing.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple


class BillingMode(str, Enum):
    """When a usage section is billed relative to consumption."""
    IN_ADVANCE = "in_advance"
    IN_ARREAR = "in_arrear"


class UsageType(str, Enum):
    """Pricing model of a usage section."""
    CAPACITY = "capacity"
    CONSUMABLE = "consumable"


class BillingPeriod(str, Enum):
    """Billing period options."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    THIRTY_DAYS = "thirty_days"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    BIANNUAL = "biannual"
    ANNUAL = "annual"


class InvoiceItemType(str, Enum):
    """Invoice item kinds; only USAGE items are reconciled here."""
    USAGE = "usage"
    RECURRING = "recurring"
    FIXED = "fixed"


# Catalog definitions

@dataclass(frozen=True)
class TieredBlock:
    """Per-unit pricing block of a consumable tier."""

    unit_type: str
    size: Decimal
    price: Decimal
    max_blocks: Optional[Decimal] = None  # None for unlimited


@dataclass(frozen=True)
class Limit:
    """Upper bound of a unit type inside a capacity tier."""

    unit_type: str
    max_value: Optional[Decimal] = None  # None for unlimited


@dataclass(frozen=True)
class Tier:
    """Pricing tier of a usage section."""

    blocks: Tuple[TieredBlock, ...] = ()
    limits: Tuple[Limit, ...] = ()
    recurring_price: Optional[Decimal] = None


@dataclass(frozen=True)
class Usage:
    """Usage section definition from the catalog."""

    name: str
    billing_mode: BillingMode
    usage_type: UsageType
    billing_period: BillingPeriod
    tiers: Tuple[Tier, ...] = ()

    @property
    def unit_types(self) -> FrozenSet[str]:
        """All unit types referenced by the tiers of this section."""
        units = set()
        for tier in self.tiers:
            units.update(block.unit_type for block in tier.blocks)
            units.update(limit.unit_type for limit in tier.limits)
        return frozenset(units)


# Timeline and metered input

@dataclass(frozen=True)
class BillingEvent:
    """
    Point on a subscription's plan timeline.

    A cancellation carries no usage sections.
    """

    subscription_id: str
    effective_date: datetime
    catalog_effective_date: datetime
    bill_cycle_day_local: int
    plan_name: str
    phase_name: str
    currency: str = "USD"
    usages: Tuple[Usage, ...] = ()


@dataclass(frozen=True)
class RawUsage:
    """One metered fact reported for a subscription."""

    subscription_id: str
    unit_type: str
    date: date
    amount: Decimal
    tracking_id: str
    record_id: int  # Ingestion sequence number


@dataclass(frozen=True)
class TrackingRecordId:
    """Marks a raw usage fact as converted into an invoice item."""

    tracking_id: str
    subscription_id: str
    unit_type: str
    record_date: date
    invoice_id: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class InvoiceItem:
    """Line item on an invoice."""

    id: str
    invoice_id: str
    account_id: str
    subscription_id: str
    plan_name: str
    phase_name: str
    usage_name: str
    start_date: date
    end_date: date
    amount: Decimal
    currency: str
    item_type: InvoiceItemType = InvoiceItemType.USAGE
    unit_type: Optional[str] = None
    quantity: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    catalog_effective_date: Optional[datetime] = None
    item_details: Optional[str] = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UsageKey:
    """
    Identity of a usage section within one catalog version.

    Catalog versions are compared by instant, so the same version expressed
    with different UTC offsets yields the same key. Naive datetimes are read
    as UTC.
    """

    __slots__ = ("usage_name", "catalog_version")

    def __init__(self, usage_name: str, catalog_version: datetime):
        self.usage_name = usage_name
        self.catalog_version = catalog_version

    def __eq__(self, other: Any) -> bool:
        if self is other:
            return True
        if not isinstance(other, UsageKey):
            return NotImplemented
        if self.usage_name != other.usage_name:
            return False
        return _as_utc(self.catalog_version) == _as_utc(other.catalog_version)

    def __hash__(self) -> int:
        return hash((self.usage_name, _as_utc(self.catalog_version)))

    def __repr__(self) -> str:
        return f"UsageKey({self.usage_name!r}, {self.catalog_version.isoformat()})"


# Billing errors

class BillingError(Exception):
    """Base billing error."""

    def __init__(self, message: str, code: str = "billing_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class CatalogError(BillingError):
    """Usage pricing cannot be resolved from the catalog."""

    def __init__(self, message: str, usage_name: Optional[str] = None):
        self.usage_name = usage_name
        super().__init__(message, "catalog_error")


class InvoiceDataError(BillingError):
    """Existing invoice items are inconsistent with the usage model."""

    def __init__(self, message: str, invoice_item_id: Optional[str] = None):
        self.invoice_item_id = invoice_item_id
        super().__init__(message, "invoice_data_error")
