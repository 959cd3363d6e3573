"""Tests for Google Books metadata lookups."""
from __future__ import annotations

from unittest.mock import Mock

import pytest

from scout_shared.metadata import GoogleBooksClient, GoogleBooksError, clean_thumbnail, parse_volume


def _response(status: int = 200, payload=None) -> Mock:
    response = Mock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    return response


VOLUME = {
    "title": "The Sympathizer",
    "authors": ["Viet Thanh Nguyen"],
    "publisher": "Grove Press",
    "publishedDate": "2015-04-07",
    "pageCount": 384,
    "categories": ["Fiction"],
    "industryIdentifiers": [
        {"type": "ISBN_10", "identifier": "0802123457"},
        {"type": "ISBN_13", "identifier": "978-0802123459"},
    ],
    "imageLinks": {"thumbnail": "http://books.google.com/books/content?id=x&zoom=5&edge=curl"},
}


@pytest.mark.unit
class TestParsing:
    def test_clean_thumbnail(self):
        assert clean_thumbnail(VOLUME["imageLinks"]["thumbnail"]) == "https://books.google.com/books/content?id=x&zoom=1"
        assert clean_thumbnail(None) is None

    def test_parse_volume_prefers_isbn13(self):
        meta = parse_volume(VOLUME)

        assert meta.isbn == "9780802123459"
        assert meta.authors == ("Viet Thanh Nguyen",)
        assert meta.page_count == 384
        assert meta.thumbnail.startswith("https://")

    def test_parse_volume_keeps_requested_isbn(self):
        assert parse_volume(VOLUME, "0802123457").isbn == "0802123457"


@pytest.mark.unit
class TestGoogleBooksClient:
    def test_lookup_isbn(self):
        session = Mock()
        session.get.return_value = _response(payload={"items": [{"volumeInfo": VOLUME}]})
        client = GoogleBooksClient(api_key="secret", session=session)

        meta = client.lookup_isbn("978-0-8021-2345-9")

        assert meta.title == "The Sympathizer"
        assert meta.isbn == "9780802123459"
        params = session.get.call_args.kwargs["params"]
        assert params["q"] == "isbn:9780802123459"
        assert params["key"] == "secret"

    def test_lookup_without_match(self):
        session = Mock()
        session.get.return_value = _response(payload={"totalItems": 0})
        assert GoogleBooksClient(api_key="", session=session).lookup_isbn("9780802123459") is None

    def test_invalid_isbn_is_rejected_before_request(self):
        session = Mock()
        with pytest.raises(ValueError):
            GoogleBooksClient(api_key="", session=session).lookup_isbn("not-an-isbn")
        session.get.assert_not_called()

    @pytest.mark.parametrize("status", [403, 500])
    def test_http_errors(self, status):
        session = Mock()
        session.get.return_value = _response(status)
        with pytest.raises(GoogleBooksError):
            GoogleBooksClient(api_key="", session=session).lookup_isbn("9780802123459")

    def test_search_skips_volumes_without_isbn(self):
        session = Mock()
        session.get.return_value = _response(payload={"items": [
            {"volumeInfo": {"title": "No identifiers"}},
            {"volumeInfo": VOLUME},
        ]})
        client = GoogleBooksClient(api_key="", session=session)

        results = client.search("sympathizer", max_results=500)

        assert [m.title for m in results] == ["The Sympathizer"]
        assert session.get.call_args.kwargs["params"]["maxResults"] == "40"

    def test_search_title_author_query(self):
        session = Mock()
        session.get.return_value = _response(payload={"items": [{"volumeInfo": VOLUME}]})
        client = GoogleBooksClient(api_key="", session=session)

        assert client.search_title_author("The Sympathizer", "Nguyen").publisher == "Grove Press"
        assert session.get.call_args.kwargs["params"]["q"] == "intitle:The Sympathizer inauthor:Nguyen"
