from __future__ import annotations

import csv
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

ISBN_PATTERN = re.compile(r"^\d{10}(\d{3})?$|^\d{9}X$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 or SQLite ``CURRENT_TIMESTAMP`` string into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def detect_isbn_field(fieldnames: Sequence[str]) -> str:
    for name in fieldnames:
        if not name:
            continue
        if name.strip().lower() in ("isbn", "isbn13", "isbn_13", "barcode"):
            return name
    return fieldnames[0]


def read_isbn_csv(path: Path) -> Tuple[List[Dict[str, str]], str]:
    """Read a bulk scan export. Returns the rows and the name of the ISBN column."""
    with Path(path).open("r", newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None:
            raise ValueError("CSV file must have a header row.")
        isbn_field = detect_isbn_field(reader.fieldnames)
        rows = [row for row in reader]
    return rows, isbn_field


def clean_isbn(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"[\s\-]", "", str(value)).upper()


def is_valid_isbn(value: Optional[str]) -> bool:
    cleaned = clean_isbn(value)
    if not ISBN_PATTERN.match(cleaned):
        return False
    if len(cleaned) == 13:
        return validate_isbn13(cleaned)
    if len(cleaned) == 10:
        return validate_isbn10(cleaned)
    return False


def normalise_isbn(value: Optional[str]) -> Optional[str]:
    """Return the canonical ISBN-13 for ``value`` or ``None`` when it cannot be coerced."""
    if not value:
        return None
    cleaned = "".join(
        ch.upper() for ch in str(value) if ch.isdigit() or ch.upper() == "X"
    )
    if not cleaned:
        return None
    return coerce_isbn13(cleaned)


def coerce_isbn13(cleaned: str) -> Optional[str]:
    cleaned = cleaned.upper()

    if len(cleaned) == 13 and cleaned.isdigit():
        if cleaned[:3] not in ("978", "979"):
            return None
        if validate_isbn13(cleaned):
            return cleaned
        return cleaned[:12] + compute_isbn13_check_digit(cleaned[:12])

    if len(cleaned) == 10:
        core = cleaned[:9]
        if not core.isdigit():
            return None
        return isbn10_to_isbn13(core + compute_isbn10_check_digit(core))

    return None


def isbn10_to_isbn13(isbn10: str) -> str:
    core = isbn10[:9]
    if len(isbn10) != 10 or not core.isdigit():
        raise ValueError(f"Cannot convert malformed ISBN-10: {isbn10}")
    prefix = "978" + core
    return prefix + compute_isbn13_check_digit(prefix)


def isbn13_to_isbn10(isbn13: str) -> Optional[str]:
    if len(isbn13) != 13 or not isbn13.isdigit() or not isbn13.startswith("978"):
        return None
    core = isbn13[3:12]
    return core + compute_isbn10_check_digit(core)


def compute_isbn13_check_digit(prefix: str) -> str:
    if len(prefix) != 12 or not prefix.isdigit():
        raise ValueError(f"ISBN-13 prefix must be 12 digits, received '{prefix}'")
    total = 0
    for idx, digit in enumerate(prefix):
        factor = 3 if idx % 2 else 1
        total += factor * int(digit)
    return str((10 - (total % 10)) % 10)


def compute_isbn10_check_digit(prefix: str) -> str:
    if len(prefix) != 9 or not prefix.isdigit():
        raise ValueError(f"ISBN-10 prefix must be 9 digits, received '{prefix}'")
    total = 0
    for idx, digit in enumerate(prefix):
        total += (10 - idx) * int(digit)
    check = (11 - total % 11) % 11
    return "X" if check == 10 else str(check)


def validate_isbn13(isbn: str) -> bool:
    if len(isbn) != 13 or not isbn.isdigit():
        return False
    return isbn[-1] == compute_isbn13_check_digit(isbn[:12])


def validate_isbn10(isbn: str) -> bool:
    if len(isbn) != 10 or not isbn[:9].isdigit():
        return False
    return isbn[-1].upper() == compute_isbn10_check_digit(isbn[:9])


def round_money(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), 2)
