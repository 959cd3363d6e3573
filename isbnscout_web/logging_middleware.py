"""HTTP request/response logging middleware."""
from __future__ import annotations

import json
import logging
import time
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .config import settings

SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key", "stripe-signature"})

request_logger = logging.getLogger("isbnscout_web.requests")
if not request_logger.handlers:
    request_logger.setLevel(logging.INFO)
    try:
        settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            settings.LOG_DIR / "http_requests.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
    except OSError:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    request_logger.addHandler(handler)
    request_logger.propagate = False


def redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        key: "[REDACTED]" if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request and response.

    Logs include method, path, query string, client IP, status code and
    duration. Credentials in headers are never written out.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        method = request.method
        path = request.url.path
        query = str(request.url.query) if request.url.query else ""
        client_ip = request.client.host if request.client else "unknown"

        request_logger.info(
            f"-> {method} {path}"
            + (f"?{query}" if query else "")
            + f" | IP: {client_ip}"
        )
        request_logger.debug(f"   headers: {json.dumps(redact_headers(dict(request.headers)))}")

        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(f"x {method} {path} | ERROR: {e}")
            raise

        duration = time.time() - start_time
        request_logger.info(
            f"<- {method} {path} | Status: {response.status_code} | Time: {duration:.3f}s"
        )
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def log_custom_event(event_type: str, **data: Any) -> None:
    """
    Log a business event with arbitrary data.

    Usage:
        log_custom_event("scan_recorded", isbn="9780143127550", status="profitable")
    """
    request_logger.info(f"* {event_type} | {json.dumps(data, ensure_ascii=False, default=str)}")
