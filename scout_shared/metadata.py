"""Google Books metadata lookups."""
from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List, Optional

import requests

from .models import BookMetadata
from .utils import clean_isbn

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
_DEFAULT_HEADERS = {
    "User-Agent": "ISBNScout/1.0",
    "Accept": "application/json",
}
_REQUEST_TIMEOUT = 15
_ISBN_RE = re.compile(r"^\d{10}(\d{3})?$|^\d{9}X$")
MAX_SEARCH_RESULTS = 40


class GoogleBooksError(Exception):
    """Raised when Google Books rejects a request."""


def create_http_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(_DEFAULT_HEADERS)
    return session


def clean_thumbnail(url: Optional[str]) -> Optional[str]:
    """Return a larger, https thumbnail URL without the page-curl effect."""
    if not url:
        return None
    url = url.replace("&edge=curl", "")
    url = re.sub(r"zoom=\d", "zoom=1", url)
    if url.startswith("http://"):
        url = "https://" + url[len("http://"):]
    return url


def _identifiers(info: Dict[str, Any]) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for ident in info.get("industryIdentifiers") or []:
        if isinstance(ident, dict) and ident.get("type") and ident.get("identifier"):
            found[ident["type"]] = ident["identifier"].replace("-", "")
    return found


def parse_volume(info: Dict[str, Any], isbn: str = "") -> BookMetadata:
    identifiers = _identifiers(info)
    image_links = info.get("imageLinks") or {}
    return BookMetadata(
        isbn=isbn or identifiers.get("ISBN_13") or identifiers.get("ISBN_10") or "",
        title=info.get("title") or "",
        authors=tuple(str(a) for a in info.get("authors", []) if a),
        publisher=info.get("publisher"),
        published_date=info.get("publishedDate"),
        description=info.get("description"),
        page_count=info.get("pageCount"),
        categories=tuple(str(c) for c in info.get("categories", []) if c),
        thumbnail=clean_thumbnail(image_links.get("thumbnail") or image_links.get("smallThumbnail")),
        language=info.get("language"),
        identifiers=tuple(identifiers.values()),
        raw={"imageLinks": image_links},
    )


class GoogleBooksClient:
    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key if api_key is not None else os.getenv("GOOGLE_BOOKS_API_KEY")
        self.session = session or create_http_session()

    def _get(self, params: Dict[str, str]) -> Dict[str, Any]:
        if self.api_key:
            params["key"] = self.api_key
        response = self.session.get(GOOGLE_BOOKS_URL, params=params, timeout=_REQUEST_TIMEOUT)
        if response.status_code == 403:
            raise GoogleBooksError("Google Books API access denied: invalid key or rate limit exceeded")
        if response.status_code != 200:
            raise GoogleBooksError(f"Google Books API error: HTTP {response.status_code}")
        return response.json() or {}

    def lookup_isbn(self, isbn: str) -> Optional[BookMetadata]:
        cleaned = clean_isbn(isbn)
        if not _ISBN_RE.match(cleaned):
            raise ValueError(f"Invalid ISBN format: {isbn}")
        payload = self._get({"q": f"isbn:{cleaned}", "maxResults": "1", "printType": "books"})
        for item in payload.get("items") or []:
            info = item.get("volumeInfo")
            if isinstance(info, dict):
                return parse_volume(info, cleaned)
        logger.info("No Google Books match for %s", cleaned)
        return None

    def search(self, query: str, max_results: int = 10) -> List[BookMetadata]:
        max_results = max(1, min(int(max_results), MAX_SEARCH_RESULTS))
        payload = self._get({"q": query, "maxResults": str(max_results), "printType": "books"})
        results = []
        for item in payload.get("items") or []:
            info = item.get("volumeInfo")
            if not isinstance(info, dict):
                continue
            meta = parse_volume(info)
            if meta.isbn:
                results.append(meta)
        return results

    def search_title_author(self, title: str, author: Optional[str] = None) -> Optional[BookMetadata]:
        query = f"intitle:{title}"
        if author:
            query += f" inauthor:{author}"
        matches = self.search(query, max_results=1)
        return matches[0] if matches else None
