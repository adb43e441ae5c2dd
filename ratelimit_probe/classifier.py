"""
Rate-limit classification.

``is_rate_limited`` is the only place that decides whether a response was a
rate-limit rejection. The bootstrapper, the probe and the reporter all go
through it so the same response is always classified the same way.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .transport import HttpResponse

RATE_LIMIT_STATUS = 429
RATE_LIMIT_MARKER = "Too many requests"


def is_rate_limited(status: int, body: Optional[str]) -> bool:
    """True for HTTP 429 or a body containing "Too many requests"."""
    if status == RATE_LIMIT_STATUS:
        return True
    return bool(body) and RATE_LIMIT_MARKER in body


def classify(response: "HttpResponse") -> bool:
    return is_rate_limited(response.status, response.body)


def retry_after(response: "HttpResponse") -> Optional[float]:
    """
    Server-provided retry hint in seconds, if any.

    Looks at the ``Retry-After`` header first, then at the JSON envelope's
    ``data.retry_after_seconds``. The hint is reported only; it never changes
    classification or the client's backoff.
    """
    header = response.header("Retry-After")
    if header is not None:
        try:
            return float(header)
        except ValueError:
            pass

    value = response.json_path("data.retry_after_seconds")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None
