from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

BOOK_STATUSES = ("profitable", "break-even", "loss", "pending")
INVENTORY_STATUSES = ("in_stock", "listed", "sold", "returned", "written_off")
LISTING_STATUSES = ("draft", "active", "failed", "ended")
LISTING_PLATFORMS = ("ebay", "amazon")
ALERT_TYPES = ("profitable", "target_margin", "price_drop", "price_increase")
ALERT_STATUSES = ("active", "triggered", "paused", "expired")
NOTIFICATION_METHODS = ("toast", "email", "push")
REPRICING_STRATEGIES = ("match_lowest", "beat_by_percent", "beat_by_amount", "target_margin")
REPRICING_PLATFORMS = ("ebay", "amazon", "all")
REPRICING_FREQUENCIES = ("hourly", "daily", "weekly")
SUBSCRIPTION_TIERS = ("trial", "free", "basic", "pro", "enterprise")
SYNC_PENDING = 0
SYNC_DONE = 1
SYNC_FAILED = -1


def _row_dict(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: row[key] for key in row.keys()}


@dataclass
class User:
    id: int
    username: str
    email: str
    password_hash: str = ""
    email_verified: bool = False
    subscription_tier: str = "trial"
    subscription_status: str = "active"
    subscription_expires_at: Optional[str] = None
    trial_started_at: Optional[str] = None
    trial_ends_at: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        data = _row_dict(row)
        data["email_verified"] = bool(data.get("email_verified"))
        return cls(**data)

    def public_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("password_hash", None)
        return data


@dataclass
class Book:
    id: int
    user_id: int
    isbn: str
    title: str
    author: Optional[str] = None
    publisher: Optional[str] = None
    thumbnail: Optional[str] = None
    amazon_price: Optional[float] = None
    ebay_price: Optional[float] = None
    your_cost: Optional[float] = None
    profit: Optional[float] = None
    status: str = "pending"
    scanned_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Book":
        return cls(**_row_dict(row))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Listing:
    id: int
    user_id: int
    book_id: int
    platform: str
    price: float
    condition: str
    platform_listing_id: Optional[str] = None
    description: Optional[str] = None
    quantity: int = 1
    status: str = "draft"
    error_message: Optional[str] = None
    listed_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Listing":
        return cls(**_row_dict(row))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InventoryItem:
    id: int
    user_id: int
    book_id: int
    purchase_date: str
    purchase_cost: float
    condition: str
    listing_id: Optional[int] = None
    sku: Optional[str] = None
    purchase_source: Optional[str] = None
    location: Optional[str] = None
    sold_date: Optional[str] = None
    sale_price: Optional[float] = None
    sold_platform: Optional[str] = None
    actual_profit: Optional[float] = None
    status: str = "in_stock"
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InventoryItem":
        return cls(**_row_dict(row))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PriceAlert:
    id: int
    user_id: int
    alert_type: str
    isbn: Optional[str] = None
    target_value: Optional[float] = None
    notification_method: str = "toast"
    status: str = "active"
    last_checked: Optional[str] = None
    triggered_at: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PriceAlert":
        return cls(**_row_dict(row))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncQueueItem:
    id: int
    operation: str
    entity: str
    data: Dict[str, Any]
    timestamp: str
    synced: int = SYNC_PENDING
    error: Optional[str] = None
    retry_count: int = 0
    synced_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SyncQueueItem":
        data = _row_dict(row)
        raw = data.get("data")
        data["data"] = json.loads(raw) if raw else {}
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApiCredentials:
    user_id: int
    platform: str
    credentials: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class BookMetadata:
    isbn: str
    title: str = ""
    authors: Tuple[str, ...] = tuple()
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    description: Optional[str] = None
    page_count: Optional[int] = None
    categories: Tuple[str, ...] = tuple()
    thumbnail: Optional[str] = None
    language: Optional[str] = None
    identifiers: Tuple[str, ...] = tuple()
    source: str = "google_books"
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def author(self) -> Optional[str]:
        return ", ".join(self.authors) if self.authors else None


@dataclass
class EbayListingSummary:
    title: str
    price: float
    condition: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class EbayPriceData:
    isbn: str
    current_price: Optional[float]
    average_price: Optional[float]
    min_price: Optional[float]
    max_price: Optional[float]
    active_listings: int
    currency: str = "GBP"
    listings: List[EbayListingSummary] = field(default_factory=list)


@dataclass
class AmazonPriceData:
    isbn: str
    price: Optional[float]
    list_price: Optional[float] = None
    currency: str = "GBP"
    asin: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None


@dataclass
class CachedPrice:
    isbn: str
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    thumbnail: Optional[str] = None
    ebay_price: Optional[float] = None
    amazon_price: Optional[float] = None
    cached_at: Optional[str] = None
    confidence: str = "low"
    source: str = "heuristic"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CachedPrice":
        return cls(**_row_dict(row))


@dataclass
class PriceLookupResult:
    isbn: str
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    thumbnail: Optional[str] = None
    ebay_price: Optional[float] = None
    amazon_price: Optional[float] = None
    profit: Optional[float] = None
    confidence: str = "low"
    recommendation: str = "unknown"
    reason: str = ""
    source: str = "cache"
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProfitCalculation:
    platform: str
    sale_price: float
    purchase_cost: float
    commission_fee: float
    fulfillment_fee: float
    storage_fee: float
    closing_fee: float
    total_fees: float
    shipping_cost: float
    packaging_cost: float
    inbound_shipping_cost: float
    total_costs: float
    net_profit: float
    profit_margin: float
    roi: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShippingRate:
    carrier: str
    service: str
    cost: float
    tracked: bool = False
    estimated_days: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrialStatus:
    scans_used: int
    scans_limit: int
    scans_remaining: int
    is_trial_active: bool
    requires_upgrade: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScanLimitInfo:
    scans_used: int
    scans_limit: int
    scans_remaining: Optional[int]
    percent_used: int
    is_unlimited: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SalesVelocity:
    rating: str
    estimated_sales_per_month: str
    confidence: str
    description: str
    buy_recommendation: str
    rank_category: str
    competitive_level: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BuyRecommendation:
    recommendation: str
    reason: str
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RepricingRule:
    id: int
    user_id: int
    platform: str
    strategy: str
    min_price: float
    max_price: float
    listing_id: Optional[int] = None
    strategy_value: Optional[float] = None
    is_active: bool = True
    run_frequency: str = "hourly"
    last_run: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RepricingRule":
        data = _row_dict(row)
        data["is_active"] = bool(data.get("is_active"))
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RepricingHistory:
    id: int
    user_id: int
    listing_id: int
    old_price: float
    new_price: float
    reason: str
    success: bool
    rule_id: Optional[int] = None
    competitor_price: Optional[float] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RepricingHistory":
        data = _row_dict(row)
        data["success"] = bool(data.get("success"))
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RepricingResult:
    listing_id: int
    old_price: float
    new_price: float
    competitor_price: Optional[float]
    reason: str
    success: bool
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
