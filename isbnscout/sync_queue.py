"""
Offline sync queue.

Writes made while offline are recorded in the ``sync_queue`` table and pushed
to a remote ISBNScout server later. Each push that fails bumps the row's retry
counter; after ``max_retries`` failures the row is parked as permanently
failed (``synced = -1``) and left for ``scripts/clean_failed_sync.py``.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import requests

from scout_shared.database import DatabaseManager
from scout_shared.models import SYNC_FAILED, SyncQueueItem
from scout_shared.utils import isoformat, utc_now

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BATCH_SIZE = 50
SYNCED_RETENTION_DAYS = 7

ENTITIES = ("book", "user", "listing", "inventoryItem", "apiCredentials")
OPERATIONS = ("create", "update", "delete", "updateStatus", "save")


class SyncError(Exception):
    """Raised by a sync target when an item could not be applied remotely."""


@dataclass
class SyncResult:
    processed: int = 0
    synced: int = 0
    failed: int = 0
    permanently_failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NullSyncTarget:
    """Used when no remote server is configured: items are only kept locally."""

    def push(self, item: SyncQueueItem) -> None:
        logger.debug("No sync remote configured, keeping %s %s locally", item.entity, item.operation)


class HttpSyncTarget:
    """Replays queued writes against a remote ISBNScout API with a user's bearer token."""

    ROUTES: Dict[Tuple[str, str], Tuple[str, str]] = {
        ("book", "create"): ("POST", "/api/scans/sync"),
        ("book", "update"): ("PATCH", "/api/books/{isbn}"),
        ("apiCredentials", "save"): ("POST", "/api/credentials"),
    }

    def __init__(self, base_url: str, token: Optional[str] = None, session: Optional[requests.Session] = None, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, item: SyncQueueItem) -> Optional[Tuple[str, str, Dict[str, Any]]]:
        if item.entity not in ENTITIES or item.operation not in OPERATIONS:
            raise SyncError(f"Unknown sync operation: {item.entity} {item.operation}")
        route = self.ROUTES.get((item.entity, item.operation))
        if route is None:
            return None
        method, path = route
        data = dict(item.data)
        if item.entity == "book" and item.operation == "create":
            body: Dict[str, Any] = {"scans": [data]}
        elif item.operation == "update":
            body = dict(data.get("updates") or {})
        else:
            body = data
        try:
            path = path.format(**data)
        except KeyError as exc:
            raise SyncError(f"Missing {exc.args[0]} for {item.entity} {item.operation}") from exc
        return method, path, body

    def push(self, item: SyncQueueItem) -> None:
        request = self._request(item)
        if request is None:
            # Listings and inventory reference local ids; the remote has no counterpart.
            logger.debug("Keeping %s %s local, no remote route", item.entity, item.operation)
            return
        method, path, body = request
        try:
            response = self.session.request(method, self.base_url + path, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SyncError(str(exc)) from exc
        if response.status_code >= 400:
            raise SyncError(f"HTTP {response.status_code}: {response.text[:200]}")
        if path == "/api/scans/sync":
            try:
                payload = response.json()
            except ValueError as exc:
                raise SyncError(f"Invalid JSON from remote: {response.text[:200]}") from exc
            if not isinstance(payload, dict):
                raise SyncError(f"Unexpected response from remote: {str(payload)[:200]}")
            if payload.get("failed"):
                errors = payload.get("errors") or ["remote rejected scan"]
                raise SyncError(str(errors[0]))


class SyncQueue:
    def __init__(
        self,
        db: DatabaseManager,
        target: Any = None,
        *,
        max_retries: int = MAX_RETRIES,
        batch_size: int = BATCH_SIZE,
    ):
        self.db = db
        self.target = target or NullSyncTarget()
        self.max_retries = max_retries
        self.batch_size = batch_size
        self._lock = threading.Lock()

    def enqueue(self, entity: str, operation: str, data: Dict[str, Any]) -> SyncQueueItem:
        if entity not in ENTITIES:
            raise ValueError(f"Unknown sync entity: {entity}")
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown sync operation: {operation}")
        return self.db.enqueue_sync(entity, operation, data)

    def pending(self, limit: Optional[int] = None) -> List[SyncQueueItem]:
        return self.db.pending_sync_items(limit or self.batch_size)

    def process(self) -> SyncResult:
        """Push one batch of pending items, oldest first."""
        result = SyncResult()
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already running, skipping")
            return result
        try:
            items = self.db.pending_sync_items(self.batch_size)
            if items:
                logger.info("Syncing %d queued operations", len(items))
            for item in items:
                result.processed += 1
                try:
                    self.target.push(item)
                except Exception as exc:
                    if not isinstance(exc, SyncError):
                        logger.exception("Sync target crashed on %s %s (#%d)", item.entity, item.operation, item.id)
                    state = self.db.mark_sync_failure(item.id, str(exc), self.max_retries)
                    result.failed += 1
                    result.errors.append(f"{item.entity} {item.operation}: {exc}")
                    if state == SYNC_FAILED:
                        result.permanently_failed += 1
                        logger.warning("Giving up on %s %s (#%d): %s", item.entity, item.operation, item.id, exc)
                    continue
                self.db.mark_synced(item.id)
                result.synced += 1
            self.cleanup()
        finally:
            self._lock.release()
        return result

    def cleanup(self, days: int = SYNCED_RETENTION_DAYS) -> int:
        return self.db.delete_synced_before(isoformat(utc_now() - timedelta(days=days)))

    def status(self) -> Dict[str, Any]:
        counts = self.db.sync_counts()
        return {
            "pending": counts["pending"],
            "failed": counts["failed"],
            "last_sync": self.db.last_synced_at(),
        }

    def failed(self, limit: Optional[int] = None) -> List[SyncQueueItem]:
        return self.db.failed_sync_items(limit)

    def clean_failed(self) -> Dict[str, Any]:
        breakdown = self.db.sync_failure_breakdown()
        removed = self.db.delete_failed_sync()
        return {"removed": removed, "breakdown": breakdown}

    def clear(self) -> int:
        return self.db.clear_sync_queue()


def build_target(remote_url: Optional[str], token: Optional[str] = None) -> Any:
    if remote_url:
        return HttpSyncTarget(remote_url, token)
    return NullSyncTarget()
