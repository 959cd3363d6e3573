from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from scout_shared.alerts import evaluate_alerts, validate_alert
from scout_shared.amazon_pricing import AmazonPricingClient
from scout_shared.database import DatabaseManager
from scout_shared.ebay_pricing import DAILY_CALL_LIMIT, EbayPricingClient
from scout_shared.export import books_to_csv, books_to_json, filter_books
from scout_shared.metadata import GoogleBooksClient
from scout_shared.models import (
    ALERT_STATUSES,
    INVENTORY_STATUSES,
    LISTING_PLATFORMS,
    LISTING_STATUSES,
    ApiCredentials,
    Book,
    EbayPriceData,
    InventoryItem,
    Listing,
    PriceAlert,
    PriceLookupResult,
    RepricingHistory,
    RepricingResult,
    RepricingRule,
    User,
)
from scout_shared.price_cache import PriceCache
from scout_shared.profit import (
    DEFAULT_PURCHASE_COST,
    SCAN_FEE_RATE,
    book_status_for_profit,
    calculate_verdict,
    estimate_scan_profit,
)
from scout_shared.repricing import calculate_new_price, repricing_reason, validate_rule
from scout_shared.utils import clean_isbn, is_valid_isbn, isoformat, parse_timestamp, round_money, utc_now

from .auth import AuthService, Session
from .billing import PLANS, BillingError, StripeBilling, apply_webhook_event
from .ebay_sell import EbaySellClient, EbaySellError
from .errors import (
    NotFound,
    PermissionDenied,
    ScanLimitExceeded,
    SubscriptionRequired,
    UpstreamError,
    ValidationFailed,
)
from .mailer import MailerError, ResendMailer
from .subscriptions import DEFAULT_TRIAL_DAYS, ScanLimitService, get_subscription_limits
from .sync_queue import SyncQueue, build_target
from .trial import TrialService

logger = logging.getLogger(__name__)

PRICING_CACHE_TTL = timedelta(hours=24)
DEMO_CACHE_TTL = timedelta(days=7)
AI_ISBN_PREFIX = "AI-"

DEMO_BASE_PRICE = 12.99
DEMO_PREMIUM_PRICE = 15.99
PREMIUM_PUBLISHERS = ("penguin", "vintage", "harper", "random house", "bloomsbury")

BOOK_UPDATE_FIELDS = frozenset({
    "title", "author", "publisher", "thumbnail", "amazon_price", "ebay_price", "your_cost", "profit", "status",
})
INVENTORY_UPDATE_FIELDS = frozenset({
    "listing_id", "sku", "purchase_date", "purchase_cost", "purchase_source", "condition", "location",
    "sold_date", "sale_price", "sold_platform", "actual_profit", "status", "notes",
})
ALERT_UPDATE_FIELDS = frozenset({"alert_type", "isbn", "target_value", "notification_method", "status", "notes"})
LISTING_UPDATE_FIELDS = frozenset({"price", "condition", "description", "quantity", "status"})
REPRICING_RULE_FIELDS = frozenset({
    "listing_id", "platform", "strategy", "strategy_value", "min_price", "max_price", "is_active", "run_frequency",
})


def _isbn_hash(isbn: str) -> int:
    return sum(ord(char) for char in isbn)


def demo_price_estimate(isbn: str, publisher: Optional[str] = None) -> float:
    """Stand-in price when no marketplace returned one: a publisher-based base price, +/-20% keyed on the ISBN."""
    base = DEMO_BASE_PRICE
    if publisher and any(name in publisher.lower() for name in PREMIUM_PUBLISHERS):
        base = DEMO_PREMIUM_PRICE
    variation = ((_isbn_hash(isbn) % 41) - 20) / 100 * base
    return round(base + variation, 2)


def mock_ebay_prices(book: Book) -> EbayPriceData:
    """Deterministic eBay figures used when the Browse API is unavailable."""
    hashed = _isbn_hash(book.isbn)
    base = 3 + (hashed % 15)
    variation = 0.5 + (hashed % 5) * 0.2
    return EbayPriceData(
        isbn=book.isbn,
        current_price=round(base + variation, 2),
        average_price=round(float(base), 2),
        min_price=round(base - variation * 1.5, 2),
        max_price=round(base + variation * 2, 2),
        active_listings=8 + (hashed % 20),
    )


def _lowest(*prices: Optional[float]) -> Optional[float]:
    known = [price for price in prices if price]
    return min(known) if known else None


class ScoutService:
    """
    Ties the storage layer to the metadata, pricing, billing and mail clients.

    Route handlers and the CLI talk to this class only. Every third-party client
    can be injected, which is how the tests avoid the network.
    """

    def __init__(
        self,
        database_path: Optional[Path] = None,
        *,
        db: Optional[DatabaseManager] = None,
        google_books_api_key: Optional[str] = None,
        ebay_app_id: Optional[str] = None,
        ebay_cert_id: Optional[str] = None,
        ebay_marketplace: str = "EBAY_GB",
        ebay_sandbox: Optional[bool] = None,
        amazon_access_key: Optional[str] = None,
        amazon_secret_key: Optional[str] = None,
        amazon_partner_tag: Optional[str] = None,
        amazon_country: Optional[str] = None,
        stripe_secret_key: Optional[str] = None,
        stripe_webhook_secret: Optional[str] = None,
        resend_api_key: Optional[str] = None,
        email_from: Optional[str] = None,
        app_url: Optional[str] = None,
        sync_remote_url: Optional[str] = None,
        sync_remote_token: Optional[str] = None,
        trial_days: int = DEFAULT_TRIAL_DAYS,
        metadata_client: Any = None,
        ebay_client: Any = None,
        amazon_client: Any = None,
        sync_target: Any = None,
        mailer: Any = None,
        billing: Any = None,
        sell_client_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> None:
        if db is None:
            if database_path is None:
                raise ValueError("database_path or db is required")
            db = DatabaseManager(database_path)
        self.db = db
        self.trial_days = trial_days

        self.metadata = metadata_client or GoogleBooksClient(api_key=google_books_api_key)
        self.ebay = ebay_client or EbayPricingClient(
            ebay_app_id,
            ebay_cert_id,
            marketplace=ebay_marketplace,
            sandbox=ebay_sandbox,
            usage_callback=self._record_api_call,
        )
        self.amazon = amazon_client or AmazonPricingClient(
            amazon_access_key, amazon_secret_key, amazon_partner_tag, amazon_country
        )
        self.mailer = mailer or ResendMailer(api_key=resend_api_key, sender=email_from, app_url=app_url)
        self.billing = billing or StripeBilling(stripe_secret_key, stripe_webhook_secret)
        self.sell_client_factory = sell_client_factory or EbaySellClient.from_credentials

        self.price_cache = PriceCache(self.db)
        self.scan_limits = ScanLimitService(self.db)
        self.trials = TrialService(self.db)
        self.auth = AuthService(self.db, trial_days=trial_days)
        self.sync_queue = SyncQueue(self.db, sync_target or build_target(sync_remote_url, sync_remote_token))

    # ------------------------------------------------------------------
    # Lifecycle

    def close(self) -> None:
        for client in (self.metadata, self.ebay):
            session = getattr(client, "session", None)
            if session is not None:
                session.close()
        self.db.close()

    def _record_api_call(self, service: str) -> None:
        self.db.increment_api_usage(service, utc_now().date().isoformat())

    # ------------------------------------------------------------------
    # Pricing

    def _fetch_metadata(self, isbn: str) -> Dict[str, Any]:
        try:
            meta = self.metadata.lookup_isbn(isbn)
        except Exception as exc:
            logger.warning("Google Books lookup failed for %s: %s", isbn, exc)
            return {}
        if meta is None:
            return {}
        return {
            "title": meta.title or None,
            "author": meta.author,
            "publisher": meta.publisher,
            "thumbnail": meta.thumbnail,
        }

    def _fetch_ebay(self, isbn: str) -> Optional[EbayPriceData]:
        if not self.ebay.is_configured():
            return None
        try:
            return self.ebay.get_price_by_isbn(isbn)
        except Exception as exc:
            logger.warning("eBay pricing failed for %s: %s", isbn, exc)
            return None

    def _fetch_amazon_price(self, isbn: str) -> Optional[float]:
        if not self.amazon.is_configured():
            return None
        try:
            data = self.amazon.get_price_by_isbn(isbn)
        except Exception as exc:
            logger.warning("Amazon pricing failed for %s: %s", isbn, exc)
            return None
        return data.price if data else None

    def lookup_pricing(self, isbn: str, user: Optional[User] = None) -> Dict[str, Any]:
        """
        Price a barcode for the scan screen.

        A cache entry younger than 24 hours answers immediately. Otherwise
        metadata and both marketplaces are queried, falling back to a demo
        estimate so the screen always has a number to show.
        """
        isbn = clean_isbn(isbn)
        if not isbn:
            raise ValidationFailed("ISBN is required")

        cached = self.price_cache.get_cached_price(isbn, max_age=PRICING_CACHE_TTL)
        if cached is not None:
            lowest = _lowest(cached.ebay_price, cached.amazon_price)
            profit = round_money(lowest - DEFAULT_PURCHASE_COST - lowest * SCAN_FEE_RATE) if lowest else None
            return {
                "isbn": cached.isbn,
                "title": cached.title,
                "author": cached.author,
                "publisher": cached.publisher,
                "thumbnail": cached.thumbnail,
                "amazon_price": cached.amazon_price,
                "ebay_price": cached.ebay_price,
                "lowest_price": lowest,
                "profit": profit,
                "source": "cache",
            }

        result: Dict[str, Any] = {
            "isbn": isbn,
            "title": None,
            "author": None,
            "publisher": None,
            "thumbnail": None,
            "amazon_price": None,
            "ebay_price": None,
            "lowest_price": None,
            "profit": None,
            "source": "api",
        }
        result.update(self._fetch_metadata(isbn))

        ebay = self._fetch_ebay(isbn)
        if ebay is not None and ebay.average_price:
            result["ebay_price"] = ebay.average_price
            result["lowest_price"] = ebay.min_price or ebay.average_price

        amazon_price = self._fetch_amazon_price(isbn)
        if amazon_price:
            result["amazon_price"] = amazon_price
            result["lowest_price"] = _lowest(result["lowest_price"], amazon_price)

        if not result["lowest_price"]:
            estimate = demo_price_estimate(isbn, result["publisher"])
            result.update(
                ebay_price=estimate,
                amazon_price=round(estimate * 1.1, 2),
                lowest_price=estimate,
                source="demo",
            )
            logger.info("No marketplace prices for %s, using demo estimate £%.2f", isbn, estimate)

        profit = estimate_scan_profit(result["lowest_price"])
        result["profit"] = profit
        roi = (profit / DEFAULT_PURCHASE_COST) * 100 if profit is not None else 0.0
        confidence = "low" if result["source"] == "demo" else "high"
        result["verdict"], result["reason"] = calculate_verdict(profit or 0.0, roi, confidence)

        self.price_cache.cache_price(
            isbn,
            title=result["title"],
            author=result["author"],
            publisher=result["publisher"],
            thumbnail=result["thumbnail"],
            ebay_price=result["ebay_price"],
            amazon_price=result["amazon_price"],
            source="estimate" if result["source"] == "demo" else "api",
        )
        return result

    def demo_lookup(self, isbn: str, user: Optional[User] = None, visitor: Optional[str] = None) -> Dict[str, Any]:
        """
        Landing-page lookup. Stale cache is fine for up to a week and errors return a fixed sample.

        When ``visitor`` is given the lookup counts against that visitor's free
        trial scans; paid subscribers are never counted.
        """
        isbn = clean_isbn(isbn)
        if not isbn:
            raise ValidationFailed("ISBN is required")
        if visitor is None:
            return self._demo_prices(isbn)

        if not self.trials.can_scan(user, visitor):
            status = self.trials.get_trial_status(visitor)
            raise ScanLimitExceeded(
                "You've used all your free scans. Sign up to keep scanning.",
                code="trial_limit_reached",
                scans_used=status.scans_used,
                scans_limit=status.scans_limit,
            )
        result = self._demo_prices(isbn)
        if self.trials.counts_against_trial(user):
            result["trial"] = self.trials.record_trial_scan(visitor).to_dict()
        return result

    def _demo_prices(self, isbn: str) -> Dict[str, Any]:
        cached = self.price_cache.get_cached_price(isbn, max_age=DEMO_CACHE_TTL)
        if cached is not None:
            return {
                "isbn": cached.isbn,
                "title": cached.title,
                "author": cached.author,
                "ebay_price": cached.ebay_price,
                "amazon_price": cached.amazon_price,
                "cached": True,
            }

        try:
            meta = self.metadata.lookup_isbn(isbn)
            ebay = self.ebay.get_price_by_isbn(isbn) if self.ebay.is_configured() else None
        except Exception as exc:
            logger.warning("Demo lookup failed for %s: %s", isbn, exc)
            return {
                "isbn": isbn,
                "title": "Sample Textbook",
                "author": "Various Authors",
                "ebay_price": 11.50,
                "amazon_price": 12.90,
                "cached": False,
                "fallback": True,
            }

        title = meta.title if meta and meta.title else "Unknown Book"
        author = meta.author if meta else None
        ebay_price = ebay.average_price if ebay else None
        self.price_cache.cache_price(isbn, title=title, author=author, ebay_price=ebay_price)
        return {
            "isbn": isbn,
            "title": title,
            "author": author,
            "ebay_price": ebay_price,
            "amazon_price": None,
            "cached": False,
        }

    def book_prices(self, isbn: str) -> Dict[str, Any]:
        """eBay prices for a book: by ISBN, then by title, then a deterministic mock for known books."""
        isbn = clean_isbn(isbn)
        if not isbn:
            raise ValidationFailed("ISBN is required")
        known = self.db.find_books_by_isbn(isbn)
        book = known[0] if known else None

        ebay: Optional[EbayPriceData] = None
        if self.ebay.is_configured():
            ebay = self._fetch_ebay(isbn)
            if ebay is None and book is not None and book.title:
                query = f"{book.title} {book.author}" if book.author else book.title
                try:
                    ebay = self.ebay.search_by_title(query, limit=10)
                except Exception as exc:
                    logger.warning("eBay title search failed for %r: %s", query, exc)
                if ebay is not None:
                    ebay.isbn = isbn
        if ebay is None and book is not None:
            logger.info("Using mock eBay prices for %s", isbn)
            ebay = mock_ebay_prices(book)

        if ebay is None:
            return {"message": "No pricing found for this book", "ebay_price": None, "amazon_price": None}

        ebay_price = ebay.current_price or ebay.average_price
        self.price_cache.cache_price(
            isbn,
            title=book.title if book else None,
            author=book.author if book else None,
            ebay_price=ebay_price,
        )
        return {
            "ebay_price": ebay_price,
            "ebay_data": ebay,
            "amazon_price": None,
            "currency": "GBP",
            "last_updated": isoformat(utc_now()),
        }

    # ------------------------------------------------------------------
    # Scans

    def _resolve_metadata(self, isbn: str, title: Optional[str], author: Optional[str]) -> Dict[str, Any]:
        is_placeholder = isbn.startswith(AI_ISBN_PREFIX)
        if title and title != f"Book with ISBN {isbn}" and not is_placeholder:
            return {}
        found: Dict[str, Any] = {}
        try:
            if is_placeholder:
                if title and author:
                    meta = self.metadata.search_title_author(title, author)
                    if meta is not None:
                        found = {"isbn": meta.isbn or isbn, "title": meta.title, "author": meta.author,
                                 "publisher": meta.publisher, "thumbnail": meta.thumbnail}
            else:
                found = self._fetch_metadata(isbn)
        except Exception as exc:
            logger.warning("Metadata lookup failed for %s: %s", isbn, exc)
        return {key: value for key, value in found.items() if value}

    def record_scan(self, user: User, payload: Dict[str, Any]) -> Book:
        """Check the monthly allowance, fill in metadata and prices, then store the scan."""
        decision = self.scan_limits.can_scan(user)
        if not decision.allowed:
            raise ScanLimitExceeded(
                decision.message or "Scan limit reached",
                scans_used=decision.scans_used,
                scans_limit=decision.scans_limit,
            )

        raw_isbn = str(payload.get("isbn") or "").strip()
        if not raw_isbn:
            raise ValidationFailed("ISBN is required")
        if raw_isbn.startswith(AI_ISBN_PREFIX):
            isbn = raw_isbn
        elif is_valid_isbn(raw_isbn):
            isbn = clean_isbn(raw_isbn)
        else:
            raise ValidationFailed(f"Invalid ISBN: {raw_isbn}")

        data = {key: payload.get(key) for key in BOOK_UPDATE_FIELDS if payload.get(key) is not None}
        data.update(self._resolve_metadata(isbn, data.get("title"), data.get("author")))
        isbn = data.pop("isbn", isbn)
        data.setdefault("title", f"Book with ISBN {isbn}")
        data.setdefault("author", "Unknown Author")

        if data.get("ebay_price") is None:
            ebay = self._fetch_ebay(isbn)
            if ebay is not None and ebay.average_price:
                data["ebay_price"] = ebay.average_price
        if data.get("amazon_price") is None:
            amazon_price = self._fetch_amazon_price(isbn)
            if amazon_price:
                data["amazon_price"] = amazon_price

        if data.get("profit") is None:
            data["profit"] = estimate_scan_profit(
                _lowest(data.get("ebay_price"), data.get("amazon_price")), data.get("your_cost")
            )
        data.setdefault("status", book_status_for_profit(data["profit"]))
        data["isbn"] = isbn

        book = self.db.upsert_book(user.id, data)
        logger.info("Recorded scan %s for user %s (status=%s)", isbn, user.id, book.status)

        self._trigger_alerts(user, [book])
        self.sync_queue.enqueue("book", "create", book.to_dict())
        return book

    def _owned_book(self, user: User, isbn: str) -> Book:
        isbn = clean_isbn(isbn) if not isbn.startswith(AI_ISBN_PREFIX) else isbn
        book = self.db.get_book_by_isbn(user.id, isbn)
        if book is not None:
            return book
        if self.db.find_books_by_isbn(isbn):
            raise PermissionDenied("You do not have permission to update this book")
        raise NotFound("Book not found")

    def update_book(self, user: User, isbn: str, updates: Dict[str, Any]) -> Book:
        book = self._owned_book(user, isbn)
        unknown = set(updates) - BOOK_UPDATE_FIELDS
        if unknown:
            raise ValidationFailed(f"Unknown book fields: {', '.join(sorted(unknown))}")
        changes = dict(updates)
        if "your_cost" in changes and "profit" not in changes:
            changes["profit"] = estimate_scan_profit(_lowest(book.ebay_price, book.amazon_price), changes["your_cost"])
        if "profit" in changes and "status" not in changes:
            changes["status"] = book_status_for_profit(changes["profit"])
        if not changes:
            return book
        updated = self.db.update_book(book.id, **changes)
        self._trigger_alerts(user, [updated])
        self.sync_queue.enqueue("book", "update", {"isbn": updated.isbn, "updates": changes})
        return updated

    def delete_book(self, user: User, isbn: str) -> None:
        book = self._owned_book(user, isbn)
        self.db.delete_book(book.id)
        logger.info("Deleted book %s for user %s", book.isbn, user.id)
        self.sync_queue.enqueue("book", "delete", {"isbn": book.isbn})

    def list_books(self, user: User) -> List[Book]:
        return self.db.list_books(user.id)

    def scan_history(self, user: User, limit: int = 100, offset: int = 0) -> Dict[str, Any]:
        return {
            "scans": self.db.list_books(user.id, limit=limit, offset=offset),
            "total": self.db.count_books(user.id),
            "limit": limit,
            "offset": offset,
        }

    def sync_scans(self, user: User, scans: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
        """Import scans captured offline. Each scan stands alone; one bad row does not stop the batch."""
        synced, failed = 0, 0
        errors: List[Dict[str, str]] = []
        for scan in scans:
            isbn = clean_isbn(scan.get("isbn")) if isinstance(scan, dict) else ""
            if not isbn:
                failed += 1
                errors.append({"isbn": "unknown", "error": "ISBN is required"})
                continue
            data = {key: scan.get(key) for key in BOOK_UPDATE_FIELDS if scan.get(key) is not None}
            data["isbn"] = isbn
            data["scanned_at"] = scan.get("scanned_at") or scan.get("created_at")
            try:
                self.db.upsert_book(user.id, data)
            except Exception as exc:
                logger.warning("Failed to import offline scan %s: %s", isbn, exc)
                failed += 1
                errors.append({"isbn": isbn, "error": str(exc)})
                continue
            synced += 1
        logger.info("Imported %d offline scans for user %s (%d failed)", synced, user.id, failed)
        return {"success": True, "synced": synced, "failed": failed, "errors": errors}

    def export_books(
        self,
        user: User,
        fmt: str = "csv",
        profitable_only: bool = False,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> str:
        if fmt not in ("csv", "json"):
            raise ValidationFailed(f"Unsupported export format: {fmt}")
        try:
            start = parse_timestamp(date_from)
            end = parse_timestamp(date_to)
        except ValueError as exc:
            raise ValidationFailed(f"Invalid date: {exc}") from exc
        if end is not None and date_to and len(date_to.strip()) == 10:
            # A bare date includes the whole day.
            end += timedelta(days=1, microseconds=-1)
        books = filter_books(self.db.list_books(user.id), profitable_only, start, end)
        return books_to_csv(books) if fmt == "csv" else books_to_json(books)

    # ------------------------------------------------------------------
    # Inventory

    def _owned_inventory_item(self, user: User, item_id: int) -> InventoryItem:
        item = self.db.get_inventory_item(item_id)
        if item is None:
            raise NotFound("Inventory item not found")
        if item.user_id != user.id:
            raise PermissionDenied("You do not have permission to access this inventory item")
        return item

    def _owned_book_by_id(self, user: User, book_id: int) -> Book:
        book = self.db.get_book(book_id)
        if book is None:
            raise NotFound("Book not found")
        if book.user_id != user.id:
            raise PermissionDenied("You do not have permission to access this book")
        return book

    def create_inventory_item(self, user: User, payload: Dict[str, Any]) -> InventoryItem:
        missing = [key for key in ("book_id", "purchase_date", "purchase_cost", "condition") if payload.get(key) is None]
        if missing:
            raise ValidationFailed("book_id, purchase_date, purchase_cost, and condition are required")
        status = payload.get("status") or "in_stock"
        if status not in INVENTORY_STATUSES:
            raise ValidationFailed(f"Unknown inventory status: {status}")
        self._owned_book_by_id(user, int(payload["book_id"]))
        data = {key: payload.get(key) for key in INVENTORY_UPDATE_FIELDS if payload.get(key) is not None}
        data.update(user_id=user.id, book_id=int(payload["book_id"]), status=status)
        item = self.db.create_inventory_item(data)
        self.sync_queue.enqueue("inventoryItem", "create", item.to_dict())
        return item

    def list_inventory(self, user: User, status: Optional[str] = None) -> List[InventoryItem]:
        return self.db.list_inventory(user.id, status)

    def get_inventory_item(self, user: User, item_id: int) -> InventoryItem:
        return self._owned_inventory_item(user, item_id)

    def inventory_for_book(self, user: User, book_id: int) -> List[InventoryItem]:
        return self.db.inventory_for_book(user.id, book_id)

    def update_inventory_item(self, user: User, item_id: int, updates: Dict[str, Any]) -> InventoryItem:
        self._owned_inventory_item(user, item_id)
        unknown = set(updates) - INVENTORY_UPDATE_FIELDS
        if unknown:
            raise ValidationFailed(f"Unknown inventory fields: {', '.join(sorted(unknown))}")
        if updates.get("status") and updates["status"] not in INVENTORY_STATUSES:
            raise ValidationFailed(f"Unknown inventory status: {updates['status']}")
        item = self.db.update_inventory_item(item_id, **updates)
        self.sync_queue.enqueue("inventoryItem", "update", {"id": item_id, "updates": updates})
        return item

    def delete_inventory_item(self, user: User, item_id: int) -> None:
        self._owned_inventory_item(user, item_id)
        self.db.delete_inventory_item(item_id)
        self.sync_queue.enqueue("inventoryItem", "delete", {"id": item_id})

    def record_sale(
        self,
        user: User,
        item_id: int,
        sale_price: float,
        sold_platform: Optional[str] = None,
        sold_date: Optional[str] = None,
    ) -> InventoryItem:
        item = self._owned_inventory_item(user, item_id)
        if sale_price is None or sale_price < 0:
            raise ValidationFailed("Sale price must be zero or more")
        return self.update_inventory_item(user, item_id, {
            "status": "sold",
            "sale_price": round_money(sale_price),
            "sold_platform": sold_platform,
            "sold_date": sold_date or isoformat(utc_now()),
            "actual_profit": round_money(sale_price - item.purchase_cost),
        })

    # ------------------------------------------------------------------
    # Listings

    def create_listing(self, user: User, payload: Dict[str, Any]) -> Listing:
        """
        List a book on a marketplace.

        eBay listings are published through the Sell API with the user's stored
        token; a failed publish is still stored, with status ``failed`` and the
        error message. Amazon listings are saved as drafts.
        """
        platform = payload.get("platform")
        if platform not in LISTING_PLATFORMS:
            raise ValidationFailed(f"Unknown platform: {platform}")
        price = payload.get("price")
        if price is None or float(price) <= 0:
            raise ValidationFailed("Price must be greater than 0")
        condition = payload.get("condition")
        if not condition:
            raise ValidationFailed("Condition is required")
        book = self._owned_book_by_id(user, int(payload["book_id"]))
        quantity = int(payload.get("quantity") or 1)
        inventory_item_id = payload.get("inventory_item_id")
        if inventory_item_id is not None:
            self._owned_inventory_item(user, int(inventory_item_id))

        record: Dict[str, Any] = {
            "user_id": user.id,
            "book_id": book.id,
            "platform": platform,
            "price": round_money(float(price)),
            "condition": condition,
            "description": payload.get("description"),
            "quantity": quantity,
            "status": "draft",
        }

        if platform == "ebay":
            credentials = self.db.get_credentials(user.id, "ebay")
            if credentials is None:
                raise ValidationFailed("No ebay credentials found. Please add your API credentials in Settings.")
            try:
                client = self.sell_client_factory(credentials.credentials)
                record["platform_listing_id"] = client.list_book(
                    book, float(price), condition, quantity, payload.get("description")
                )
                record["status"] = "active"
            except EbaySellError as exc:
                logger.error("eBay listing failed for %s: %s", book.isbn, exc)
                record["status"] = "failed"
                record["error_message"] = str(exc)

        listing = self.db.create_listing(record)
        if inventory_item_id is not None and listing.status == "active":
            self.db.update_inventory_item(int(inventory_item_id), listing_id=listing.id, status="listed")
        self.sync_queue.enqueue("listing", "create", listing.to_dict())
        return listing

    def list_listings(self, user: User) -> List[Listing]:
        return self.db.list_listings(user.id)

    def listings_for_book(self, user: User, book_id: int) -> List[Listing]:
        return self.db.listings_for_book(user.id, book_id)

    def _owned_listing(self, user: User, listing_id: int) -> Listing:
        listing = self.db.get_listing(listing_id)
        if listing is None:
            raise NotFound("Listing not found")
        if listing.user_id != user.id:
            raise PermissionDenied("You do not have permission to access this listing")
        return listing

    def get_listing(self, user: User, listing_id: int) -> Listing:
        return self._owned_listing(user, listing_id)

    def update_listing(self, user: User, listing_id: int, updates: Dict[str, Any]) -> Listing:
        """Local edits only: status changes (e.g. ``ended`` after a sale elsewhere) and draft details."""
        self._owned_listing(user, listing_id)
        unknown = set(updates) - LISTING_UPDATE_FIELDS
        if unknown:
            raise ValidationFailed(f"Unknown listing fields: {', '.join(sorted(unknown))}")
        if updates.get("status") and updates["status"] not in LISTING_STATUSES:
            raise ValidationFailed(f"Unknown listing status: {updates['status']}")
        if "price" in updates:
            if updates["price"] is None or float(updates["price"]) <= 0:
                raise ValidationFailed("Price must be greater than 0")
            updates = dict(updates, price=round_money(float(updates["price"])))
        listing = self.db.update_listing(listing_id, **updates)
        self.sync_queue.enqueue("listing", "updateStatus" if set(updates) == {"status"} else "update",
                                {"id": listing_id, "updates": updates})
        return listing

    # ------------------------------------------------------------------
    # Repricing

    def _require_repricing(self, user: User) -> None:
        if not get_subscription_limits(user.subscription_tier).repricing:
            raise SubscriptionRequired(
                "Automatic repricing is available on the Pro and Enterprise plans",
                code="feature_not_available",
                tier=user.subscription_tier,
            )

    def _owned_rule(self, user: User, rule_id: int) -> RepricingRule:
        rule = self.db.get_repricing_rule(rule_id)
        if rule is None or rule.user_id != user.id:
            raise NotFound("Rule not found")
        return rule

    def create_repricing_rule(self, user: User, payload: Dict[str, Any]) -> RepricingRule:
        self._require_repricing(user)
        errors = validate_rule(
            payload.get("platform"),
            payload.get("strategy"),
            payload.get("min_price"),
            payload.get("max_price"),
            payload.get("strategy_value"),
            payload.get("run_frequency"),
        )
        if errors:
            raise ValidationFailed(errors[0], errors=errors)
        if payload.get("listing_id") is not None:
            self._owned_listing(user, int(payload["listing_id"]))
        data = {key: payload.get(key) for key in REPRICING_RULE_FIELDS if payload.get(key) is not None}
        data["user_id"] = user.id
        rule = self.db.create_repricing_rule(data)
        logger.info("Created %s repricing rule %s for user %s", rule.strategy, rule.id, user.id)
        return rule

    def list_repricing_rules(self, user: User) -> List[RepricingRule]:
        return self.db.list_repricing_rules(user.id)

    def get_repricing_rule(self, user: User, rule_id: int) -> RepricingRule:
        return self._owned_rule(user, rule_id)

    def update_repricing_rule(self, user: User, rule_id: int, updates: Dict[str, Any]) -> RepricingRule:
        rule = self._owned_rule(user, rule_id)
        unknown = set(updates) - REPRICING_RULE_FIELDS
        if unknown:
            raise ValidationFailed(f"Unknown rule fields: {', '.join(sorted(unknown))}")
        merged = dict(rule.to_dict(), **updates)
        errors = validate_rule(
            merged["platform"],
            merged["strategy"],
            merged["min_price"],
            merged["max_price"],
            merged["strategy_value"],
            merged["run_frequency"],
        )
        if errors:
            raise ValidationFailed(errors[0], errors=errors)
        if updates.get("listing_id") is not None:
            self._owned_listing(user, int(updates["listing_id"]))
        return self.db.update_repricing_rule(rule_id, **updates)

    def delete_repricing_rule(self, user: User, rule_id: int) -> None:
        self._owned_rule(user, rule_id)
        self.db.delete_repricing_rule(rule_id)

    def repricing_history(self, user: User, listing_id: Optional[int] = None) -> List[RepricingHistory]:
        return self.db.list_repricing_history(user.id, listing_id)

    def _competitor_price(self, book: Optional[Book], platform: str) -> Optional[float]:
        if book is None:
            return None
        if platform == "amazon":
            return self._fetch_amazon_price(book.isbn)
        ebay = self._fetch_ebay(book.isbn)
        if ebay is None:
            return None
        return ebay.min_price or ebay.current_price or None

    def _push_price(self, user: User, listing: Listing, book: Book, price: float) -> None:
        # Drafts and Amazon listings have nothing live to update.
        if listing.platform != "ebay" or listing.status != "active":
            return
        credentials = self.db.get_credentials(user.id, "ebay")
        if credentials is None:
            raise EbaySellError("No ebay credentials found")
        self.sell_client_factory(credentials.credentials).update_price(book, price, listing.quantity)

    def _apply_rule(self, user: User, listing: Listing, rule: RepricingRule) -> RepricingResult:
        old_price = listing.price
        book = self.db.get_book(listing.book_id)
        platform = listing.platform if rule.platform == "all" else rule.platform
        competitor = self._competitor_price(book, platform)

        if competitor is None:
            result = RepricingResult(listing.id, old_price, old_price, None, "No competitor price available",
                                     False, "Could not fetch market price")
        else:
            new_price = calculate_new_price(old_price, competitor, rule)
            if abs(new_price - old_price) < 0.01:
                result = RepricingResult(listing.id, old_price, old_price, competitor, "Price unchanged", True)
            else:
                try:
                    self._push_price(user, listing, book, new_price)
                except EbaySellError as exc:
                    logger.warning("Repricing listing %s on eBay failed: %s", listing.id, exc)
                    result = RepricingResult(listing.id, old_price, old_price, competitor, "API update failed",
                                             False, str(exc))
                else:
                    self.db.update_listing(listing.id, price=new_price)
                    self.sync_queue.enqueue("listing", "update", {"id": listing.id, "updates": {"price": new_price}})
                    result = RepricingResult(listing.id, old_price, new_price, competitor,
                                             repricing_reason(rule.strategy, competitor, new_price), True)

        self.db.create_repricing_history(dict(result.to_dict(), user_id=user.id, rule_id=rule.id))
        self.db.update_repricing_rule(rule.id, last_run=isoformat(utc_now()))
        return result

    def reprice_listing(self, user: User, listing_id: int) -> RepricingResult:
        """Run the most specific active rule for one listing and record the outcome."""
        self._require_repricing(user)
        listing = self._owned_listing(user, listing_id)
        rules = self.db.active_rules_for_listing(user.id, listing.id, listing.platform)
        if not rules:
            raise ValidationFailed("No active repricing rules found for this listing")
        return self._apply_rule(user, listing, rules[0])

    def reprice_all(self, user: User) -> List[RepricingResult]:
        """Reprice every active listing that has a rule. Used by ``scripts/run_repricing.py``."""
        self._require_repricing(user)
        results = []
        for listing in self.db.list_listings(user.id):
            if listing.status != "active":
                continue
            rules = self.db.active_rules_for_listing(user.id, listing.id, listing.platform)
            if rules:
                results.append(self._apply_rule(user, listing, rules[0]))
        changed = sum(1 for result in results if result.new_price != result.old_price)
        logger.info("Repriced %d of %d listings for user %s", changed, len(results), user.id)
        return results

    # ------------------------------------------------------------------
    # Alerts

    def _owned_alert(self, user: User, alert_id: int) -> PriceAlert:
        alert = self.db.get_alert(alert_id)
        if alert is None:
            raise NotFound("Alert not found")
        if alert.user_id != user.id:
            raise PermissionDenied("You do not have permission to access this alert")
        return alert

    def create_alert(self, user: User, payload: Dict[str, Any]) -> PriceAlert:
        method = payload.get("notification_method") or "toast"
        errors = validate_alert(payload.get("alert_type"), payload.get("target_value"), method)
        if errors:
            raise ValidationFailed(errors[0], errors=errors)
        data = {key: payload.get(key) for key in ALERT_UPDATE_FIELDS}
        data.update(user_id=user.id, notification_method=method)
        if data.get("isbn"):
            data["isbn"] = clean_isbn(data["isbn"])
        return self.db.create_alert(data)

    def list_alerts(self, user: User, status: Optional[str] = None) -> List[PriceAlert]:
        return self.db.list_alerts(user.id, status)

    def update_alert(self, user: User, alert_id: int, updates: Dict[str, Any]) -> PriceAlert:
        alert = self._owned_alert(user, alert_id)
        unknown = set(updates) - ALERT_UPDATE_FIELDS
        if unknown:
            raise ValidationFailed(f"Unknown alert fields: {', '.join(sorted(unknown))}")
        if updates.get("status") and updates["status"] not in ALERT_STATUSES:
            raise ValidationFailed(f"Unknown alert status: {updates['status']}")
        errors = validate_alert(
            updates.get("alert_type", alert.alert_type),
            updates.get("target_value", alert.target_value),
            updates.get("notification_method", alert.notification_method),
        )
        if errors:
            raise ValidationFailed(errors[0], errors=errors)
        return self.db.update_alert(alert_id, **updates)

    def delete_alert(self, user: User, alert_id: int) -> None:
        self._owned_alert(user, alert_id)
        self.db.delete_alert(alert_id)

    def _trigger_alerts(self, user: User, books: List[Book]) -> List[Tuple[PriceAlert, Book]]:
        alerts = self.db.list_alerts(user.id, "active")
        if not alerts:
            return []
        now = isoformat(utc_now())
        triggered = evaluate_alerts(alerts, books)
        for alert, book in triggered:
            self.db.update_alert(alert.id, status="triggered", triggered_at=now, last_checked=now)
            logger.info("Alert %s triggered by %s for user %s", alert.id, book.isbn, user.id)
        fired = {alert.id for alert, _ in triggered}
        for alert in alerts:
            if alert.id not in fired:
                self.db.update_alert(alert.id, last_checked=now)
        return triggered

    def check_alerts(self, user: User) -> List[Dict[str, Any]]:
        triggered = self._trigger_alerts(user, self.db.list_books(user.id))
        return [
            {"alert": self.db.get_alert(alert.id), "book": book}
            for alert, book in triggered
        ]

    # ------------------------------------------------------------------
    # Credentials and usage

    def save_credentials(self, user: User, platform: str, credentials: Dict[str, Any]) -> ApiCredentials:
        if platform not in LISTING_PLATFORMS:
            raise ValidationFailed(f"Unknown platform: {platform}")
        if not credentials:
            raise ValidationFailed("Credentials are required")
        saved = self.db.save_credentials(user.id, platform, credentials)
        self.sync_queue.enqueue("apiCredentials", "save", {"platform": platform, "credentials": credentials})
        return saved

    def credentials_summary(self, user: User, platform: str) -> Dict[str, Any]:
        credentials = self.db.get_credentials(user.id, platform)
        if credentials is None:
            raise NotFound("Credentials not found")
        return {"has_credentials": True, "platform": credentials.platform, "is_active": credentials.is_active}

    def api_usage(self) -> Dict[str, Any]:
        today = utc_now().date().isoformat()
        calls = self.db.get_api_usage("ebay", today)
        return {
            "today": {"ebay": {"service": "ebay", "date": today, "call_count": calls}},
            "limits": {"ebay": {"daily": DAILY_CALL_LIMIT, "remaining": max(0, DAILY_CALL_LIMIT - calls)}},
        }

    def offline_lookup(
        self,
        isbn: str,
        title: Optional[str] = None,
        author: Optional[str] = None,
        publisher: Optional[str] = None,
    ) -> PriceLookupResult:
        if not clean_isbn(isbn):
            raise ValidationFailed("ISBN is required")
        return self.price_cache.lookup_offline(isbn, title, author, publisher)

    # ------------------------------------------------------------------
    # Accounts and billing

    def signup(self, username: str, email: str, password: str) -> Session:
        session = self.auth.signup(username, email, password)
        try:
            self.mailer.send_welcome(session.user.username, session.user.email, self.trial_days)
        except MailerError as exc:
            logger.warning("Welcome email to user %s failed: %s", session.user.id, exc)
        return session

    def start_checkout(self, user: User, plan_id: str, success_url: str, cancel_url: str) -> Dict[str, str]:
        try:
            customer_id = user.stripe_customer_id
            if not customer_id:
                customer_id = self.billing.create_customer(user.email, user.id)
                self.db.update_user(user.id, stripe_customer_id=customer_id)
            return self.billing.create_checkout_session(plan_id, customer_id, success_url, cancel_url, user.id)
        except BillingError as exc:
            if plan_id not in PLANS or PLANS[plan_id].price == 0:
                raise ValidationFailed(str(exc)) from exc
            raise UpstreamError(str(exc)) from exc

    def verify_checkout(self, user: User, session_id: str) -> Dict[str, Any]:
        """
        Confirm a finished Checkout session from the success page.

        The webhook does the same upgrade; this covers the window before it
        arrives. Only a paid session started by this user is honoured.
        """
        if not session_id:
            raise ValidationFailed("Session ID is required")
        try:
            checkout = self.billing.retrieve_checkout_session(session_id)
        except BillingError as exc:
            raise UpstreamError(str(exc)) from exc
        reference = checkout.get("client_reference_id")
        if reference is not None and str(reference) != str(user.id):
            raise PermissionDenied("This checkout session belongs to another account")
        if checkout.get("payment_status") != "paid":
            raise ValidationFailed("Payment not completed", code="payment_incomplete")

        plan_id = (checkout.get("metadata") or {}).get("planId") or "pro"
        updated = self.db.update_user(
            user.id,
            subscription_tier=plan_id,
            subscription_status="active",
            stripe_customer_id=checkout.get("customer") or user.stripe_customer_id,
            stripe_subscription_id=checkout.get("subscription") or user.stripe_subscription_id,
        )
        logger.info("Verified checkout %s for user %s: plan=%s", session_id, user.id, plan_id)
        return {"success": True, "plan_id": plan_id, "status": "active", "user": updated.public_dict()}

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        self.auth.change_password(user, current_password, new_password)
        logger.info("Password changed for user %s", user.id)

    def handle_billing_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            event = self.billing.verify_webhook(payload, signature)
        except BillingError as exc:
            raise ValidationFailed(str(exc), code="invalid_signature") from exc
        return apply_webhook_event(event, self.db, self.mailer)
