"""
Keyboard-wedge barcode input.

Bluetooth and USB scanners pair as keyboards: they "type" the barcode very
quickly and usually finish with Enter. ``KeyboardWedgeBuffer`` turns a stream
of timestamped key presses back into barcodes. Timestamps are passed in by the
caller so that the buffer can be driven from a terminal, a test, or a recorded
key log.
"""
from __future__ import annotations

import logging
import re
import time
from typing import Callable, Iterable, Iterator, Optional, Pattern

logger = logging.getLogger(__name__)

ISBN_BARCODE = re.compile(r"^(\d{9}[\dX]|\d{13})$")
ENTER_KEYS = ("Enter", "\n", "\r")


class KeyboardWedgeBuffer:
    def __init__(
        self,
        min_length: int = 10,
        max_length: int = 13,
        timeout: float = 0.1,
        rapid_interval: float = 0.05,
        pattern: Optional[Pattern[str]] = None,
        on_scan: Optional[Callable[[str], None]] = None,
    ):
        self.min_length = min_length
        self.max_length = max_length
        self.timeout = timeout
        self.rapid_interval = rapid_interval
        self.pattern = pattern
        self.on_scan = on_scan
        self.last_scan: Optional[str] = None
        self._buffer = ""
        self._last_input: Optional[float] = None

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""

    def _is_valid(self, barcode: str) -> bool:
        if not (self.min_length <= len(barcode) <= self.max_length):
            logger.debug("Ignoring barcode with invalid length %d", len(barcode))
            return False
        if self.pattern is not None and not self.pattern.match(barcode):
            logger.debug("Ignoring barcode that fails pattern: %s", barcode)
            return False
        return True

    def _flush(self) -> Optional[str]:
        barcode = self._buffer.strip()
        self._buffer = ""
        if not self._is_valid(barcode):
            return None
        self.last_scan = barcode
        if self.on_scan is not None:
            self.on_scan(barcode)
        return barcode

    def poll(self, now: float) -> Optional[str]:
        """Flush the buffer if no character arrived within ``timeout``."""
        if self._buffer and self._last_input is not None and now - self._last_input >= self.timeout:
            return self._flush()
        return None

    def feed(self, key: str, at: Optional[float] = None) -> Optional[str]:
        """Process one key press. Returns a completed barcode, if this key finished one."""
        now = time.monotonic() if at is None else at
        timed_out = self.poll(now)
        if timed_out is not None:
            # The previous barcode ended without Enter; this key starts fresh.
            self._feed_key(key, now)
            return timed_out
        return self._feed_key(key, now)

    def _feed_key(self, key: str, now: float) -> Optional[str]:
        if key in ENTER_KEYS:
            return self._flush()

        if len(key) != 1 or not key.isascii() or not key.isalnum():
            self._buffer = ""
            return None

        rapid = self._last_input is not None and now - self._last_input < self.rapid_interval
        if rapid or not self._buffer:
            self._buffer += key
            self._last_input = now
        return None

    def feed_text(self, text: str, start: float = 0.0, interval: float = 0.01) -> Iterator[str]:
        """Feed a whole string as if typed by a scanner, ``interval`` seconds apart."""
        at = start
        for key in text:
            barcode = self.feed(key, at)
            if barcode:
                yield barcode
            at += interval


def iter_barcodes(lines: Iterable[str], buffer: Optional[KeyboardWedgeBuffer] = None) -> Iterator[str]:
    """Yield barcodes from line-oriented wedge input, such as a terminal in cooked mode."""
    buffer = buffer or KeyboardWedgeBuffer(pattern=ISBN_BARCODE)
    clock = 0.0
    for line in lines:
        for barcode in buffer.feed_text(line.rstrip("\r\n") + "\n", start=clock):
            yield barcode
        # Lines are complete scans; leave a gap larger than the timeout between them.
        clock += len(line) * 0.01 + buffer.timeout * 2
        buffer.reset()
