"""
Local price cache used for offline scanning.

Every successful online lookup is written here, so that a later scan of the
same ISBN without connectivity still gets a buy/maybe/skip answer. Books never
seen before fall back to author and publisher heuristics.
"""
from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from .database import DatabaseManager
from .models import CachedPrice, PriceLookupResult
from .utils import clean_isbn, isoformat, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

ASSUMED_COST = 1.50
CACHE_MAX_AGE_DAYS = 30

SOURCE_CONFIDENCE = {"api": "high", "estimate": "medium", "heuristic": "low"}

PROFITABLE_AUTHORS = frozenset({
    "j.r.r. tolkien",
    "j.k. rowling",
    "george r.r. martin",
    "terry pratchett",
    "neil gaiman",
    "brandon sanderson",
    "patrick rothfuss",
    "stephen king",
    "dean koontz",
    "james patterson",
    "lee child",
    "michael connelly",
    "jane austen",
    "charles dickens",
    "f. scott fitzgerald",
    "ernest hemingway",
    "george orwell",
    "harper lee",
    "mark twain",
    "dan brown",
    "john grisham",
    "malcolm gladwell",
    "yuval noah harari",
    "gillian flynn",
    "paula hawkins",
    "roald dahl",
    "dr. seuss",
    "jeff kinney",
    "rick riordan",
})
HIGH_VALUE_AUTHORS = frozenset({"j.r.r. tolkien", "j.k. rowling", "stephen king"})

COLLECTIBLE_PUBLISHERS = (
    "folio society",
    "franklin library",
    "easton press",
    "limited editions club",
    "heritage press",
    "penguin classics",
    "everyman's library",
)


def default_author_price(author: str) -> float:
    author = author.lower()
    if author in HIGH_VALUE_AUTHORS:
        return 12.0
    if author in PROFITABLE_AUTHORS:
        return 8.0
    return 5.0


class PriceCache:
    def __init__(self, db: DatabaseManager):
        self.db = db

    def cache_price(
        self,
        isbn: str,
        *,
        title: Optional[str] = None,
        author: Optional[str] = None,
        publisher: Optional[str] = None,
        thumbnail: Optional[str] = None,
        ebay_price: Optional[float] = None,
        amazon_price: Optional[float] = None,
        source: str = "api",
    ) -> CachedPrice:
        entry = CachedPrice(
            isbn=clean_isbn(isbn),
            title=title,
            author=author,
            publisher=publisher,
            thumbnail=thumbnail,
            ebay_price=ebay_price,
            amazon_price=amazon_price,
            cached_at=isoformat(utc_now()),
            confidence=SOURCE_CONFIDENCE.get(source, "low"),
            source=source,
        )
        self.db.upsert_cached_price(entry)
        return entry

    def get_cached_price(self, isbn: str, max_age: Optional[timedelta] = None) -> Optional[CachedPrice]:
        cached = self.db.get_cached_price(clean_isbn(isbn))
        if cached is None or max_age is None:
            return cached
        cached_at = parse_timestamp(cached.cached_at)
        if cached_at is None or utc_now() - cached_at > max_age:
            return None
        return cached

    def lookup_offline(
        self,
        isbn: str,
        title: Optional[str] = None,
        author: Optional[str] = None,
        publisher: Optional[str] = None,
    ) -> PriceLookupResult:
        isbn = clean_isbn(isbn)
        cached = self.db.get_cached_price(isbn)
        if cached is not None:
            return self._build_result(cached, title, author, publisher)

        if not author:
            return PriceLookupResult(
                isbn=isbn,
                title=title,
                recommendation="unknown",
                reason="No cached data and no author info available",
                source="heuristic",
            )

        author_key = author.lower()
        publisher_key = (publisher or "").lower()
        if author_key in PROFITABLE_AUTHORS:
            price = self.db.average_ebay_price_for_author(author_key) or default_author_price(author_key)
            confidence = "medium"
            recommendation = "buy" if price > 5 else "maybe"
            reason = f"Known profitable author. Similar books avg £{price:.2f}"
        elif any(name in publisher_key for name in COLLECTIBLE_PUBLISHERS):
            price = 15.0
            confidence = "medium"
            recommendation = "buy"
            reason = "Collectible publisher - typically valuable"
        else:
            return PriceLookupResult(
                isbn=isbn,
                title=title,
                author=author,
                publisher=publisher,
                recommendation="skip",
                reason="Unknown author and publisher - risky offline purchase",
                source="heuristic",
            )

        return PriceLookupResult(
            isbn=isbn,
            title=title,
            author=author,
            publisher=publisher,
            ebay_price=round(price, 2),
            amazon_price=round(price * 0.9, 2),
            profit=round(price - ASSUMED_COST, 2),
            confidence=confidence,
            recommendation=recommendation,
            reason=reason,
            source="heuristic",
        )

    def _build_result(
        self,
        cached: CachedPrice,
        title: Optional[str],
        author: Optional[str],
        publisher: Optional[str],
    ) -> PriceLookupResult:
        price = cached.ebay_price or cached.amazon_price or 0.0
        profit = round(price - ASSUMED_COST, 2)

        if cached.confidence == "high":
            if profit > 5:
                recommendation, reason = "buy", f"Cached data shows £{profit:.2f} profit"
            elif profit > 2:
                recommendation, reason = "maybe", f"Modest profit of £{profit:.2f}"
            else:
                recommendation, reason = "skip", f"Low profit (£{profit:.2f})"
        else:
            recommendation, reason = "maybe", "Estimated data - actual price may vary"

        return PriceLookupResult(
            isbn=cached.isbn,
            title=title or cached.title,
            author=author or cached.author,
            publisher=publisher or cached.publisher,
            thumbnail=cached.thumbnail,
            ebay_price=cached.ebay_price,
            amazon_price=cached.amazon_price,
            profit=profit,
            confidence=cached.confidence,
            recommendation=recommendation,
            reason=reason,
            source=cached.source,
            cached=True,
        )

    def get_stats(self) -> Dict[str, int]:
        since = isoformat(utc_now() - timedelta(days=7))
        return self.db.price_cache_stats(since)

    def clear_old_cache(self, days: int = CACHE_MAX_AGE_DAYS) -> int:
        removed = self.db.delete_cached_before(isoformat(utc_now() - timedelta(days=days)))
        logger.info("Cleared %d price cache entries older than %d days", removed, days)
        return removed

    def export_cache(self) -> List[Dict[str, Any]]:
        return [asdict(entry) for entry in self.db.all_cached_prices()]

    def import_cache(self, rows: Iterable[Dict[str, Any]]) -> int:
        count = 0
        for row in rows:
            isbn = clean_isbn(row.get("isbn"))
            if not isbn:
                continue
            source = row.get("source") or "api"
            self.db.upsert_cached_price(CachedPrice(
                isbn=isbn,
                title=row.get("title"),
                author=row.get("author"),
                publisher=row.get("publisher"),
                thumbnail=row.get("thumbnail"),
                ebay_price=row.get("ebay_price"),
                amazon_price=row.get("amazon_price"),
                cached_at=row.get("cached_at") or isoformat(utc_now()),
                confidence=row.get("confidence") or SOURCE_CONFIDENCE.get(source, "low"),
                source=source,
            ))
            count += 1
        logger.info("Imported %d price cache entries", count)
        return count
