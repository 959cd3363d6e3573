from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import (
    SYNC_DONE,
    SYNC_FAILED,
    SYNC_PENDING,
    ApiCredentials,
    Book,
    CachedPrice,
    InventoryItem,
    Listing,
    PriceAlert,
    RepricingHistory,
    RepricingRule,
    SyncQueueItem,
    User,
)
from .profit import book_status_for_profit
from .utils import isoformat, utc_now


# ------------------------------------------------------------------------------
# Activity log for every write that goes through the storage layer.
# Writes to ~/.isbnscout/activity.log unless ISBNSCOUT_ACTIVITY_LOG is set.
LOG_DIR = Path(os.getenv("ISBNSCOUT_LOG_DIR", str(Path.home() / ".isbnscout")))
LOG_PATH = Path(os.getenv("ISBNSCOUT_ACTIVITY_LOG", str(LOG_DIR / "activity.log")))
_logger = logging.getLogger("isbnscout.db")
if not _logger.handlers:
    _logger.setLevel(logging.INFO)
    try:
        LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
        _handler: logging.Handler = RotatingFileHandler(LOG_PATH, maxBytes=512 * 1024, backupCount=3)
    except OSError:
        _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    _logger.addHandler(_handler)
    _logger.propagate = False


def _log(action: str, **fields: Any) -> None:
    _logger.info("%s %s", action, json.dumps(fields, ensure_ascii=False, sort_keys=True, default=str))
# ------------------------------------------------------------------------------

USER_COLUMNS = {
    "username",
    "email",
    "password_hash",
    "email_verified",
    "subscription_tier",
    "subscription_status",
    "subscription_expires_at",
    "trial_started_at",
    "trial_ends_at",
    "stripe_customer_id",
    "stripe_subscription_id",
}
BOOK_COLUMNS = {
    "title",
    "author",
    "publisher",
    "thumbnail",
    "amazon_price",
    "ebay_price",
    "your_cost",
    "profit",
    "status",
    "scanned_at",
}
LISTING_COLUMNS = {
    "platform_listing_id",
    "price",
    "condition",
    "description",
    "quantity",
    "status",
    "error_message",
}
INVENTORY_COLUMNS = {
    "listing_id",
    "sku",
    "purchase_date",
    "purchase_cost",
    "purchase_source",
    "condition",
    "location",
    "sold_date",
    "sale_price",
    "sold_platform",
    "actual_profit",
    "status",
    "notes",
}
ALERT_COLUMNS = {
    "alert_type",
    "isbn",
    "target_value",
    "notification_method",
    "status",
    "last_checked",
    "triggered_at",
    "notes",
}
RULE_COLUMNS = {
    "listing_id",
    "platform",
    "strategy",
    "strategy_value",
    "min_price",
    "max_price",
    "is_active",
    "run_frequency",
    "last_run",
}
PRICE_CACHE_COLUMNS = (
    "isbn",
    "title",
    "author",
    "publisher",
    "thumbnail",
    "ebay_price",
    "amazon_price",
    "cached_at",
    "confidence",
    "source",
)


def _assignments(updates: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    allowed = set(allowed)
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return dict(updates)


class DatabaseManager:
    """SQLite storage for users, scanned books, listings, inventory and the offline sync queue."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        if not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._initialise()

    def _initialise(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(
                """
                PRAGMA journal_mode=WAL;
                PRAGMA foreign_keys=ON;

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    email_verified INTEGER DEFAULT 0,
                    subscription_tier TEXT DEFAULT 'trial',
                    subscription_status TEXT DEFAULT 'active',
                    subscription_expires_at TEXT,
                    trial_started_at TEXT,
                    trial_ends_at TEXT,
                    stripe_customer_id TEXT,
                    stripe_subscription_id TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS auth_tokens (
                    token TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    created_at TEXT,
                    expires_at TEXT
                );

                CREATE TABLE IF NOT EXISTS api_credentials (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    platform TEXT NOT NULL,
                    credentials TEXT NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE(user_id, platform)
                );

                CREATE TABLE IF NOT EXISTS books (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    isbn TEXT NOT NULL,
                    title TEXT NOT NULL,
                    author TEXT,
                    thumbnail TEXT,
                    amazon_price REAL,
                    ebay_price REAL,
                    your_cost REAL,
                    profit REAL,
                    status TEXT DEFAULT 'pending',
                    scanned_at TEXT,
                    UNIQUE(user_id, isbn)
                );
                CREATE INDEX IF NOT EXISTS idx_books_user_scanned ON books(user_id, scanned_at);

                CREATE TABLE IF NOT EXISTS listings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
                    platform TEXT NOT NULL,
                    platform_listing_id TEXT,
                    price REAL NOT NULL,
                    condition TEXT NOT NULL,
                    description TEXT,
                    quantity INTEGER DEFAULT 1,
                    status TEXT DEFAULT 'draft',
                    error_message TEXT,
                    listed_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS inventory_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
                    listing_id INTEGER REFERENCES listings(id) ON DELETE SET NULL,
                    sku TEXT,
                    purchase_date TEXT NOT NULL,
                    purchase_cost REAL NOT NULL,
                    purchase_source TEXT,
                    condition TEXT NOT NULL,
                    location TEXT,
                    sold_date TEXT,
                    sale_price REAL,
                    sold_platform TEXT,
                    actual_profit REAL,
                    status TEXT DEFAULT 'in_stock',
                    notes TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS price_alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    alert_type TEXT NOT NULL,
                    isbn TEXT,
                    target_value REAL,
                    notification_method TEXT DEFAULT 'toast',
                    status TEXT DEFAULT 'active',
                    last_checked TEXT,
                    triggered_at TEXT,
                    notes TEXT,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS repricing_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    listing_id INTEGER REFERENCES listings(id) ON DELETE CASCADE,
                    platform TEXT NOT NULL,
                    strategy TEXT NOT NULL,
                    strategy_value REAL,
                    min_price REAL NOT NULL,
                    max_price REAL NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    run_frequency TEXT DEFAULT 'hourly',
                    last_run TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS repricing_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    listing_id INTEGER NOT NULL REFERENCES listings(id) ON DELETE CASCADE,
                    rule_id INTEGER REFERENCES repricing_rules(id) ON DELETE SET NULL,
                    old_price REAL NOT NULL,
                    new_price REAL NOT NULL,
                    competitor_price REAL,
                    reason TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    error_message TEXT,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS sync_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation TEXT NOT NULL,
                    entity TEXT NOT NULL,
                    data TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    synced INTEGER DEFAULT 0,
                    error TEXT,
                    retry_count INTEGER DEFAULT 0,
                    synced_at TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_sync_queue_synced ON sync_queue(synced, timestamp);

                CREATE TABLE IF NOT EXISTS trial_scans (
                    fingerprint TEXT PRIMARY KEY,
                    scans_used INTEGER DEFAULT 0,
                    first_scan_at TEXT,
                    last_scan_at TEXT,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS price_cache (
                    isbn TEXT PRIMARY KEY,
                    title TEXT,
                    author TEXT,
                    publisher TEXT,
                    thumbnail TEXT,
                    ebay_price REAL,
                    amazon_price REAL,
                    cached_at TEXT,
                    confidence TEXT DEFAULT 'low',
                    source TEXT DEFAULT 'heuristic'
                );

                CREATE TABLE IF NOT EXISTS api_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    service TEXT NOT NULL,
                    date TEXT NOT NULL,
                    call_count INTEGER DEFAULT 0,
                    UNIQUE(service, date)
                );
                """
            )
            self._ensure_book_publisher(conn)
            self._ensure_sync_synced_at(conn)

    def _get_connection(self) -> sqlite3.Connection:
        """Return the calling thread's connection, opening it on first use."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
        return self._local.conn

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _ensure_book_publisher(self, conn: sqlite3.Connection) -> None:
        cursor = conn.execute("PRAGMA table_info(books)")
        existing_columns = {row[1] for row in cursor.fetchall()}
        if "publisher" not in existing_columns:
            conn.execute("ALTER TABLE books ADD COLUMN publisher TEXT")

    def _ensure_sync_synced_at(self, conn: sqlite3.Connection) -> None:
        cursor = conn.execute("PRAGMA table_info(sync_queue)")
        existing_columns = {row[1] for row in cursor.fetchall()}
        if "synced_at" not in existing_columns:
            conn.execute("ALTER TABLE sync_queue ADD COLUMN synced_at TEXT")

    def _update(self, table: str, row_id: int, updates: Dict[str, Any], allowed: Iterable[str], stamp: bool = True) -> None:
        data = _assignments(updates, allowed)
        if stamp:
            data["updated_at"] = isoformat(utc_now())
        if not data:
            return
        clause = ", ".join(f"{column} = :{column}" for column in data)
        data["_id"] = row_id
        with self._get_connection() as conn:
            conn.execute(f"UPDATE {table} SET {clause} WHERE id = :_id", data)

    # ------------------------------------------------------------------
    # Users and tokens

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        subscription_tier: str = "trial",
        trial_started_at: Optional[str] = None,
        trial_ends_at: Optional[str] = None,
    ) -> User:
        now = isoformat(utc_now())
        _log("create_user", username=username, email=email, tier=subscription_tier)
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (
                    username, email, password_hash, subscription_tier, subscription_status,
                    trial_started_at, trial_ends_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 'active', ?, ?, ?, ?)
                """,
                (username, email, password_hash, subscription_tier, trial_started_at, trial_ends_at, now, now),
            )
            user_id = cursor.lastrowid
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> Optional[User]:
        row = self._get_connection().execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._get_connection().execute(
            "SELECT * FROM users WHERE lower(email) = lower(?)", (email,)
        ).fetchone()
        return User.from_row(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        row = self._get_connection().execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return User.from_row(row) if row else None

    def get_user_by_stripe_customer(self, customer_id: str) -> Optional[User]:
        row = self._get_connection().execute(
            "SELECT * FROM users WHERE stripe_customer_id = ?", (customer_id,)
        ).fetchone()
        return User.from_row(row) if row else None

    def list_users(self) -> List[User]:
        rows = self._get_connection().execute("SELECT * FROM users ORDER BY created_at, id").fetchall()
        return [User.from_row(row) for row in rows]

    def users_with_trial_ending_between(self, start: str, end: str) -> List[User]:
        rows = self._get_connection().execute(
            """
            SELECT * FROM users
            WHERE subscription_tier = 'trial'
              AND trial_ends_at IS NOT NULL
              AND trial_ends_at >= ? AND trial_ends_at < ?
            ORDER BY trial_ends_at
            """,
            (start, end),
        ).fetchall()
        return [User.from_row(row) for row in rows]

    def update_user(self, user_id: int, **updates: Any) -> Optional[User]:
        if "email_verified" in updates:
            updates["email_verified"] = 1 if updates["email_verified"] else 0
        _log("update_user", user_id=user_id, fields=sorted(updates))
        self._update("users", user_id, updates, USER_COLUMNS)
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> bool:
        _log("delete_user", user_id=user_id)
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cursor.rowcount > 0

    def create_token(self, user_id: int, token: str, expires_at: Optional[str] = None) -> None:
        _log("create_token", user_id=user_id)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO auth_tokens (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (token, user_id, isoformat(utc_now()), expires_at),
            )

    def get_user_for_token(self, token: str, now: Optional[str] = None) -> Optional[User]:
        now = now or isoformat(utc_now())
        row = self._get_connection().execute(
            """
            SELECT users.* FROM auth_tokens
            JOIN users ON users.id = auth_tokens.user_id
            WHERE auth_tokens.token = ?
              AND (auth_tokens.expires_at IS NULL OR auth_tokens.expires_at > ?)
            """,
            (token, now),
        ).fetchone()
        return User.from_row(row) if row else None

    def delete_token(self, token: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM auth_tokens WHERE token = ?", (token,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Marketplace credentials

    def save_credentials(self, user_id: int, platform: str, credentials: Dict[str, Any]) -> ApiCredentials:
        now = isoformat(utc_now())
        _log("save_credentials", user_id=user_id, platform=platform, keys=sorted(credentials))
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO api_credentials (user_id, platform, credentials, is_active, created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?)
                ON CONFLICT(user_id, platform) DO UPDATE SET
                    credentials = excluded.credentials,
                    is_active = 1,
                    updated_at = excluded.updated_at
                """,
                (user_id, platform, json.dumps(credentials), now, now),
            )
        return self.get_credentials(user_id, platform)

    def get_credentials(self, user_id: int, platform: str) -> Optional[ApiCredentials]:
        row = self._get_connection().execute(
            "SELECT * FROM api_credentials WHERE user_id = ? AND platform = ? AND is_active = 1",
            (user_id, platform),
        ).fetchone()
        if not row:
            return None
        return ApiCredentials(
            user_id=row["user_id"],
            platform=row["platform"],
            credentials=json.loads(row["credentials"] or "{}"),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Books

    def upsert_book(self, user_id: int, payload: Dict[str, Any]) -> Book:
        """
        Insert a scanned book, or refresh the existing row when the user already scanned the ISBN.

        Fields missing from ``payload`` keep their stored values. Unless a status is given it
        follows the merged profit.
        """
        data = {column: payload.get(column) for column in BOOK_COLUMNS}
        data["isbn"] = payload["isbn"]
        data["user_id"] = user_id
        data["scanned_at"] = data.get("scanned_at") or isoformat(utc_now())

        existing = self.get_book_by_isbn(user_id, data["isbn"])
        profit = data.get("profit")
        if existing is None:
            data["title"] = data.get("title") or f"Book with ISBN {data['isbn']}"
        else:
            data["title"] = data.get("title") or existing.title
            if profit is None:
                profit = existing.profit
        data["status"] = data.get("status") or book_status_for_profit(profit)

        _log("upsert_book", user_id=user_id, isbn=data["isbn"], title=data["title"], existing=existing is not None)

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO books (
                    user_id, isbn, title, author, publisher, thumbnail,
                    amazon_price, ebay_price, your_cost, profit, status, scanned_at
                ) VALUES (
                    :user_id, :isbn, :title, :author, :publisher, :thumbnail,
                    :amazon_price, :ebay_price, :your_cost, :profit, :status, :scanned_at
                )
                ON CONFLICT(user_id, isbn) DO UPDATE SET
                    title = excluded.title,
                    author = COALESCE(excluded.author, books.author),
                    publisher = COALESCE(excluded.publisher, books.publisher),
                    thumbnail = COALESCE(excluded.thumbnail, books.thumbnail),
                    amazon_price = COALESCE(excluded.amazon_price, books.amazon_price),
                    ebay_price = COALESCE(excluded.ebay_price, books.ebay_price),
                    your_cost = COALESCE(excluded.your_cost, books.your_cost),
                    profit = COALESCE(excluded.profit, books.profit),
                    status = excluded.status,
                    scanned_at = excluded.scanned_at
                """,
                data,
            )
        return self.get_book_by_isbn(user_id, data["isbn"])

    def get_book(self, book_id: int) -> Optional[Book]:
        row = self._get_connection().execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def get_book_by_isbn(self, user_id: int, isbn: str) -> Optional[Book]:
        row = self._get_connection().execute(
            "SELECT * FROM books WHERE user_id = ? AND isbn = ?", (user_id, isbn)
        ).fetchone()
        return Book.from_row(row) if row else None

    def find_books_by_isbn(self, isbn: str) -> List[Book]:
        rows = self._get_connection().execute("SELECT * FROM books WHERE isbn = ?", (isbn,)).fetchall()
        return [Book.from_row(row) for row in rows]

    def list_books(self, user_id: int, limit: Optional[int] = None, offset: int = 0) -> List[Book]:
        query = "SELECT * FROM books WHERE user_id = ? ORDER BY scanned_at DESC, id DESC"
        params: List[Any] = [user_id]
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        rows = self._get_connection().execute(query, params).fetchall()
        return [Book.from_row(row) for row in rows]

    def count_books(self, user_id: int) -> int:
        row = self._get_connection().execute(
            "SELECT COUNT(*) FROM books WHERE user_id = ?", (user_id,)
        ).fetchone()
        return int(row[0])

    def count_books_scanned_since(self, user_id: int, since: str) -> int:
        row = self._get_connection().execute(
            "SELECT COUNT(*) FROM books WHERE user_id = ? AND scanned_at >= ?", (user_id, since)
        ).fetchone()
        return int(row[0])

    def update_book(self, book_id: int, **updates: Any) -> Optional[Book]:
        _log("update_book", book_id=book_id, fields=sorted(updates))
        self._update("books", book_id, updates, BOOK_COLUMNS, stamp=False)
        return self.get_book(book_id)

    def delete_book(self, book_id: int) -> bool:
        _log("delete_book", book_id=book_id)
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Listings

    def create_listing(self, payload: Dict[str, Any]) -> Listing:
        now = isoformat(utc_now())
        _log("create_listing", user_id=payload["user_id"], book_id=payload["book_id"], platform=payload["platform"])
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO listings (
                    user_id, book_id, platform, platform_listing_id, price, condition,
                    description, quantity, status, error_message, listed_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payload["user_id"],
                    payload["book_id"],
                    payload["platform"],
                    payload.get("platform_listing_id"),
                    payload["price"],
                    payload["condition"],
                    payload.get("description"),
                    payload.get("quantity", 1),
                    payload.get("status", "draft"),
                    payload.get("error_message"),
                    now,
                    now,
                ),
            )
            listing_id = cursor.lastrowid
        return self.get_listing(listing_id)

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        row = self._get_connection().execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
        return Listing.from_row(row) if row else None

    def list_listings(self, user_id: int) -> List[Listing]:
        rows = self._get_connection().execute(
            "SELECT * FROM listings WHERE user_id = ? ORDER BY listed_at DESC, id DESC", (user_id,)
        ).fetchall()
        return [Listing.from_row(row) for row in rows]

    def listings_for_book(self, user_id: int, book_id: int) -> List[Listing]:
        rows = self._get_connection().execute(
            "SELECT * FROM listings WHERE user_id = ? AND book_id = ? ORDER BY listed_at DESC, id DESC",
            (user_id, book_id),
        ).fetchall()
        return [Listing.from_row(row) for row in rows]

    def update_listing(self, listing_id: int, **updates: Any) -> Optional[Listing]:
        _log("update_listing", listing_id=listing_id, fields=sorted(updates))
        self._update("listings", listing_id, updates, LISTING_COLUMNS)
        return self.get_listing(listing_id)

    # ------------------------------------------------------------------
    # Inventory

    def create_inventory_item(self, payload: Dict[str, Any]) -> InventoryItem:
        now = isoformat(utc_now())
        _log("create_inventory_item", user_id=payload["user_id"], book_id=payload["book_id"])
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO inventory_items (
                    user_id, book_id, listing_id, sku, purchase_date, purchase_cost,
                    purchase_source, condition, location, status, notes, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payload["user_id"],
                    payload["book_id"],
                    payload.get("listing_id"),
                    payload.get("sku"),
                    payload["purchase_date"],
                    payload["purchase_cost"],
                    payload.get("purchase_source"),
                    payload["condition"],
                    payload.get("location"),
                    payload.get("status", "in_stock"),
                    payload.get("notes"),
                    now,
                    now,
                ),
            )
            item_id = cursor.lastrowid
        return self.get_inventory_item(item_id)

    def get_inventory_item(self, item_id: int) -> Optional[InventoryItem]:
        row = self._get_connection().execute(
            "SELECT * FROM inventory_items WHERE id = ?", (item_id,)
        ).fetchone()
        return InventoryItem.from_row(row) if row else None

    def list_inventory(self, user_id: int, status: Optional[str] = None) -> List[InventoryItem]:
        query = "SELECT * FROM inventory_items WHERE user_id = ?"
        params: List[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY purchase_date DESC, id DESC"
        rows = self._get_connection().execute(query, params).fetchall()
        return [InventoryItem.from_row(row) for row in rows]

    def inventory_for_book(self, user_id: int, book_id: int) -> List[InventoryItem]:
        rows = self._get_connection().execute(
            "SELECT * FROM inventory_items WHERE user_id = ? AND book_id = ? ORDER BY id",
            (user_id, book_id),
        ).fetchall()
        return [InventoryItem.from_row(row) for row in rows]

    def update_inventory_item(self, item_id: int, **updates: Any) -> Optional[InventoryItem]:
        _log("update_inventory_item", item_id=item_id, fields=sorted(updates))
        self._update("inventory_items", item_id, updates, INVENTORY_COLUMNS)
        return self.get_inventory_item(item_id)

    def delete_inventory_item(self, item_id: int) -> bool:
        _log("delete_inventory_item", item_id=item_id)
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM inventory_items WHERE id = ?", (item_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Price alerts

    def create_alert(self, payload: Dict[str, Any]) -> PriceAlert:
        _log("create_alert", user_id=payload["user_id"], alert_type=payload["alert_type"])
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO price_alerts (
                    user_id, alert_type, isbn, target_value,
                    notification_method, status, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, 'active', ?, ?)
                """,
                (
                    payload["user_id"],
                    payload["alert_type"],
                    payload.get("isbn"),
                    payload.get("target_value"),
                    payload.get("notification_method", "toast"),
                    payload.get("notes"),
                    isoformat(utc_now()),
                ),
            )
            alert_id = cursor.lastrowid
        return self.get_alert(alert_id)

    def get_alert(self, alert_id: int) -> Optional[PriceAlert]:
        row = self._get_connection().execute("SELECT * FROM price_alerts WHERE id = ?", (alert_id,)).fetchone()
        return PriceAlert.from_row(row) if row else None

    def list_alerts(self, user_id: int, status: Optional[str] = None) -> List[PriceAlert]:
        query = "SELECT * FROM price_alerts WHERE user_id = ?"
        params: List[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        rows = self._get_connection().execute(query + " ORDER BY id", params).fetchall()
        return [PriceAlert.from_row(row) for row in rows]

    def update_alert(self, alert_id: int, **updates: Any) -> Optional[PriceAlert]:
        _log("update_alert", alert_id=alert_id, fields=sorted(updates))
        self._update("price_alerts", alert_id, updates, ALERT_COLUMNS, stamp=False)
        return self.get_alert(alert_id)

    def delete_alert(self, alert_id: int) -> bool:
        _log("delete_alert", alert_id=alert_id)
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM price_alerts WHERE id = ?", (alert_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Repricing

    def create_repricing_rule(self, payload: Dict[str, Any]) -> RepricingRule:
        now = isoformat(utc_now())
        _log("create_repricing_rule", user_id=payload["user_id"], strategy=payload["strategy"])
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO repricing_rules (
                    user_id, listing_id, platform, strategy, strategy_value, min_price,
                    max_price, is_active, run_frequency, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payload["user_id"],
                    payload.get("listing_id"),
                    payload["platform"],
                    payload["strategy"],
                    payload.get("strategy_value"),
                    payload["min_price"],
                    payload["max_price"],
                    int(payload.get("is_active", True)),
                    payload.get("run_frequency") or "hourly",
                    now,
                    now,
                ),
            )
            rule_id = cursor.lastrowid
        return self.get_repricing_rule(rule_id)

    def get_repricing_rule(self, rule_id: int) -> Optional[RepricingRule]:
        row = self._get_connection().execute("SELECT * FROM repricing_rules WHERE id = ?", (rule_id,)).fetchone()
        return RepricingRule.from_row(row) if row else None

    def list_repricing_rules(self, user_id: int) -> List[RepricingRule]:
        rows = self._get_connection().execute(
            "SELECT * FROM repricing_rules WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [RepricingRule.from_row(row) for row in rows]

    def active_rules_for_listing(self, user_id: int, listing_id: int, platform: str) -> List[RepricingRule]:
        """Active rules covering a listing, rules naming the listing ahead of catch-all ones."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM repricing_rules
            WHERE user_id = ? AND is_active = 1
              AND (listing_id IS NULL OR listing_id = ?)
              AND (platform = 'all' OR platform = ?)
            ORDER BY listing_id IS NULL, id
            """,
            (user_id, listing_id, platform),
        ).fetchall()
        return [RepricingRule.from_row(row) for row in rows]

    def update_repricing_rule(self, rule_id: int, **updates: Any) -> Optional[RepricingRule]:
        _log("update_repricing_rule", rule_id=rule_id, fields=sorted(updates))
        if "is_active" in updates:
            updates["is_active"] = int(bool(updates["is_active"]))
        self._update("repricing_rules", rule_id, updates, RULE_COLUMNS)
        return self.get_repricing_rule(rule_id)

    def delete_repricing_rule(self, rule_id: int) -> bool:
        _log("delete_repricing_rule", rule_id=rule_id)
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM repricing_rules WHERE id = ?", (rule_id,))
        return cursor.rowcount > 0

    def create_repricing_history(self, payload: Dict[str, Any]) -> RepricingHistory:
        _log("create_repricing_history", listing_id=payload["listing_id"], success=payload["success"])
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO repricing_history (
                    user_id, listing_id, rule_id, old_price, new_price,
                    competitor_price, reason, success, error_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payload["user_id"],
                    payload["listing_id"],
                    payload.get("rule_id"),
                    payload["old_price"],
                    payload["new_price"],
                    payload.get("competitor_price"),
                    payload["reason"],
                    int(bool(payload["success"])),
                    payload.get("error_message"),
                    isoformat(utc_now()),
                ),
            )
            entry_id = cursor.lastrowid
        row = self._get_connection().execute("SELECT * FROM repricing_history WHERE id = ?", (entry_id,)).fetchone()
        return RepricingHistory.from_row(row)

    def list_repricing_history(self, user_id: int, listing_id: Optional[int] = None) -> List[RepricingHistory]:
        query = "SELECT * FROM repricing_history WHERE user_id = ?"
        params: List[Any] = [user_id]
        if listing_id is not None:
            query += " AND listing_id = ?"
            params.append(listing_id)
        rows = self._get_connection().execute(query + " ORDER BY created_at DESC, id DESC", params).fetchall()
        return [RepricingHistory.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Offline sync queue

    def enqueue_sync(self, entity: str, operation: str, data: Dict[str, Any], timestamp: Optional[str] = None) -> SyncQueueItem:
        timestamp = timestamp or isoformat(utc_now())
        _log("enqueue_sync", entity=entity, operation=operation)
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO sync_queue (operation, entity, data, timestamp, synced, retry_count) VALUES (?, ?, ?, ?, ?, 0)",
                (operation, entity, json.dumps(data, default=str), timestamp, SYNC_PENDING),
            )
            item_id = cursor.lastrowid
        return self.get_sync_item(item_id)

    def get_sync_item(self, item_id: int) -> Optional[SyncQueueItem]:
        row = self._get_connection().execute("SELECT * FROM sync_queue WHERE id = ?", (item_id,)).fetchone()
        return SyncQueueItem.from_row(row) if row else None

    def pending_sync_items(self, limit: int = 50) -> List[SyncQueueItem]:
        rows = self._get_connection().execute(
            "SELECT * FROM sync_queue WHERE synced = ? ORDER BY timestamp ASC, id ASC LIMIT ?",
            (SYNC_PENDING, limit),
        ).fetchall()
        return [SyncQueueItem.from_row(row) for row in rows]

    def failed_sync_items(self, limit: Optional[int] = None) -> List[SyncQueueItem]:
        query = "SELECT * FROM sync_queue WHERE synced = ? ORDER BY timestamp ASC, id ASC"
        params: List[Any] = [SYNC_FAILED]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self._get_connection().execute(query, params).fetchall()
        return [SyncQueueItem.from_row(row) for row in rows]

    def mark_synced(self, item_id: int) -> None:
        _log("mark_synced", item_id=item_id)
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE sync_queue SET synced = ?, error = NULL, synced_at = ? WHERE id = ?",
                (SYNC_DONE, isoformat(utc_now()), item_id),
            )

    def mark_sync_failure(self, item_id: int, error: str, max_retries: int) -> int:
        """Record a failed push. Returns the new ``synced`` state of the row."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT retry_count FROM sync_queue WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                raise KeyError(item_id)
            retries = int(row["retry_count"] or 0) + 1
            state = SYNC_FAILED if retries >= max_retries else SYNC_PENDING
            conn.execute(
                "UPDATE sync_queue SET error = ?, retry_count = ?, synced = ? WHERE id = ?",
                (error, retries, state, item_id),
            )
        _log("sync_failure", item_id=item_id, retries=retries, state=state, error=error)
        return state

    def sync_counts(self) -> Dict[str, int]:
        rows = self._get_connection().execute(
            "SELECT synced, COUNT(*) AS total FROM sync_queue GROUP BY synced"
        ).fetchall()
        by_state = {row["synced"]: row["total"] for row in rows}
        return {
            "pending": by_state.get(SYNC_PENDING, 0),
            "synced": by_state.get(SYNC_DONE, 0),
            "failed": by_state.get(SYNC_FAILED, 0),
        }

    def last_synced_at(self) -> Optional[str]:
        row = self._get_connection().execute(
            "SELECT MAX(synced_at) FROM sync_queue WHERE synced = ?", (SYNC_DONE,)
        ).fetchone()
        return row[0]

    def sync_failure_breakdown(self) -> Dict[str, int]:
        rows = self._get_connection().execute(
            """
            SELECT entity, operation, COUNT(*) AS total FROM sync_queue
            WHERE synced = ? GROUP BY entity, operation ORDER BY entity, operation
            """,
            (SYNC_FAILED,),
        ).fetchall()
        return {f"{row['entity']}-{row['operation']}": row["total"] for row in rows}

    def delete_synced_before(self, cutoff: str) -> int:
        _log("delete_synced_before", cutoff=cutoff)
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE synced = ? AND timestamp < ?", (SYNC_DONE, cutoff)
            )
        return cursor.rowcount

    def delete_failed_sync(self) -> int:
        _log("delete_failed_sync")
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE synced = ?", (SYNC_FAILED,))
        return cursor.rowcount

    def clear_sync_queue(self) -> int:
        _log("clear_sync_queue")
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM sync_queue")
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Anonymous trial scans

    def get_trial_scan(self, fingerprint: str) -> Optional[sqlite3.Row]:
        return self._get_connection().execute(
            "SELECT * FROM trial_scans WHERE fingerprint = ?", (fingerprint,)
        ).fetchone()

    def record_trial_scan(self, fingerprint: str) -> int:
        now = isoformat(utc_now())
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO trial_scans (fingerprint, scans_used, first_scan_at, last_scan_at, created_at)
                VALUES (?, 1, ?, ?, ?)
                ON CONFLICT(fingerprint) DO UPDATE SET
                    scans_used = trial_scans.scans_used + 1,
                    last_scan_at = excluded.last_scan_at
                """,
                (fingerprint, now, now, now),
            )
            row = conn.execute(
                "SELECT scans_used FROM trial_scans WHERE fingerprint = ?", (fingerprint,)
            ).fetchone()
        _log("record_trial_scan", fingerprint=fingerprint, scans_used=row["scans_used"])
        return int(row["scans_used"])

    def trial_stats(self, limit: int) -> Dict[str, int]:
        row = self._get_connection().execute(
            """
            SELECT
                COUNT(*) AS total_users,
                COALESCE(SUM(scans_used), 0) AS total_scans,
                COALESCE(SUM(CASE WHEN scans_used >= ? THEN 1 ELSE 0 END), 0) AS hit_limit
            FROM trial_scans
            """,
            (limit,),
        ).fetchone()
        return {
            "total_trial_users": int(row["total_users"]),
            "total_trial_scans": int(row["total_scans"]),
            "users_hit_limit": int(row["hit_limit"]),
            "conversion_opportunities": int(row["hit_limit"]),
        }

    def delete_trials_before(self, cutoff: str) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM trial_scans WHERE created_at < ?", (cutoff,))
        _log("delete_trials_before", cutoff=cutoff, deleted=cursor.rowcount)
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Price cache

    def upsert_cached_price(self, entry: CachedPrice) -> None:
        data = {column: getattr(entry, column) for column in PRICE_CACHE_COLUMNS}
        data["cached_at"] = data["cached_at"] or isoformat(utc_now())
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO price_cache (isbn, title, author, publisher, thumbnail, ebay_price,
                                         amazon_price, cached_at, confidence, source)
                VALUES (:isbn, :title, :author, :publisher, :thumbnail, :ebay_price,
                        :amazon_price, :cached_at, :confidence, :source)
                ON CONFLICT(isbn) DO UPDATE SET
                    title = COALESCE(excluded.title, price_cache.title),
                    author = COALESCE(excluded.author, price_cache.author),
                    publisher = COALESCE(excluded.publisher, price_cache.publisher),
                    thumbnail = COALESCE(excluded.thumbnail, price_cache.thumbnail),
                    ebay_price = excluded.ebay_price,
                    amazon_price = excluded.amazon_price,
                    cached_at = excluded.cached_at,
                    confidence = excluded.confidence,
                    source = excluded.source
                """,
                data,
            )

    def get_cached_price(self, isbn: str) -> Optional[CachedPrice]:
        row = self._get_connection().execute("SELECT * FROM price_cache WHERE isbn = ?", (isbn,)).fetchone()
        return CachedPrice.from_row(row) if row else None

    def all_cached_prices(self) -> List[CachedPrice]:
        rows = self._get_connection().execute("SELECT * FROM price_cache ORDER BY cached_at DESC").fetchall()
        return [CachedPrice.from_row(row) for row in rows]

    def average_ebay_price_for_author(self, author: str) -> Optional[float]:
        row = self._get_connection().execute(
            """
            SELECT AVG(ebay_price) FROM price_cache
            WHERE lower(author) = ? AND ebay_price IS NOT NULL
            """,
            (author.lower(),),
        ).fetchone()
        return float(row[0]) if row and row[0] is not None else None

    def price_cache_stats(self, since: str) -> Dict[str, int]:
        row = self._get_connection().execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN confidence = 'high' THEN 1 ELSE 0 END), 0) AS high,
                COALESCE(SUM(CASE WHEN ebay_price IS NOT NULL THEN 1 ELSE 0 END), 0) AS priced,
                COALESCE(SUM(CASE WHEN cached_at >= ? THEN 1 ELSE 0 END), 0) AS recent
            FROM price_cache
            """,
            (since,),
        ).fetchone()
        return {
            "total_cached": int(row["total"]),
            "high_confidence": int(row["high"]),
            "with_prices": int(row["priced"]),
            "cached_last_week": int(row["recent"]),
        }

    def delete_cached_before(self, cutoff: str) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM price_cache WHERE cached_at < ?", (cutoff,))
        _log("delete_cached_before", cutoff=cutoff, deleted=cursor.rowcount)
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Third-party API usage

    def increment_api_usage(self, service: str, date: str, calls: int = 1) -> int:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO api_usage (service, date, call_count) VALUES (?, ?, ?)
                ON CONFLICT(service, date) DO UPDATE SET call_count = api_usage.call_count + excluded.call_count
                """,
                (service, date, calls),
            )
        return self.get_api_usage(service, date)

    def get_api_usage(self, service: str, date: str) -> int:
        row = self._get_connection().execute(
            "SELECT call_count FROM api_usage WHERE service = ? AND date = ?", (service, date)
        ).fetchone()
        return int(row["call_count"]) if row else 0
