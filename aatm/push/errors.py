"""Failure types returned by push adapters.

Callers react differently per class: authentication problems need new
credentials, rate limiting needs a later retry, anything else is a generic
upstream failure.
"""

from typing import Optional

DETAILS_LIMIT = 500


def truncate_details(text: Optional[str]) -> str:
    return (text or "").strip()[:DETAILS_LIMIT]


class PushError(Exception):
    """Generic upstream failure (non-2xx response, timeout, connection error)."""

    status_code = 502

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = truncate_details(details)

    def to_dict(self) -> dict:
        data = {"error": self.message}
        if self.details:
            data["details"] = self.details
        return data


class PushAuthError(PushError):
    """The remote service rejected our credentials or session."""

    status_code = 401


class PushRateLimitError(PushError):
    """The remote service asked us to slow down."""

    status_code = 429

    def __init__(self, message: str, details: Optional[str] = None, retry_after: Optional[int] = None):
        super().__init__(message, details)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        return data


class PushConfigError(PushError):
    """The adapter is disabled or missing required settings."""

    status_code = 400


class ArtifactError(PushError):
    """The artifact to push is missing or is not a torrent file."""

    status_code = 400


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(0, int(value.strip()))
    except ValueError:
        return None
