from __future__ import annotations

from typing import Any, Dict, Optional


class ScoutError(Exception):
    """Base class for errors raised by the service layer.

    ``status_code`` and ``code`` are what the HTTP layer reports back.
    """

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, code: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        payload.update(self.extra)
        return payload


class ValidationFailed(ScoutError):
    status_code = 400
    code = "validation_error"


class AuthError(ScoutError):
    status_code = 401
    code = "authentication_required"


class PermissionDenied(ScoutError):
    status_code = 403
    code = "forbidden"


class ScanLimitExceeded(ScoutError):
    status_code = 403
    code = "scan_limit_reached"


class SubscriptionRequired(ScoutError):
    status_code = 403
    code = "no_active_subscription"


class NotFound(ScoutError):
    status_code = 404
    code = "not_found"


class Conflict(ScoutError):
    status_code = 409
    code = "conflict"


class UpstreamError(ScoutError):
    status_code = 502
    code = "upstream_error"
