"""Rate-limit metadata parsed from 429 responses."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from multidict import CIMultiDict

# Header names per field, in lookup order. The first name present wins.
RATE_LIMIT_HEADERS: dict[str, tuple[str, ...]] = {
    "retry_after": ("Retry-After", "X-Retry-After"),
    "limit": ("X-RateLimit-Limit", "X-Rate-Limit-Limit", "RateLimit-Limit"),
    "remaining": (
        "X-RateLimit-Remaining",
        "X-Rate-Limit-Remaining",
        "RateLimit-Remaining",
    ),
    "reset_at": ("X-RateLimit-Reset", "X-Rate-Limit-Reset", "RateLimit-Reset"),
    "limit_type": ("X-RateLimit-Type", "X-Rate-Limit-Type", "RateLimit-Type"),
    "client_id": (
        "X-RateLimit-Client-ID",
        "X-Rate-Limit-Client-ID",
        "RateLimit-Client-ID",
    ),
}

# Body keys used when a header is missing.
RATE_LIMIT_BODY_FIELDS: dict[str, str] = {
    "retry_after": "retry_after",
    "limit": "rate_limit",
    "remaining": "remaining",
    "reset_at": "reset_time",
    "limit_type": "limit_type",
}

# Keys accepted by ``RateLimitInfo.from_mapping``.
RATE_LIMIT_INFO_KEYS: dict[str, str] = {
    "retry_after": "retry_after",
    "limit": "rate_limit",
    "remaining": "rate_limit_remaining",
    "reset_at": "rate_limit_reset",
    "limit_type": "limit_type",
    "client_id": "client_id",
}

_TEXT_FIELDS = frozenset({"limit_type", "client_id"})

UTC = ZoneInfo("UTC")


def _to_int(value: Any) -> int | None:
    """Coerce a header or body value to int, or None if it isn't numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
    except (ValueError, OverflowError):
        return None
    # inf, nan and values like 1e400 carry no usable count
    if not math.isfinite(number):
        return None
    return value if isinstance(value, int) else int(number)


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _coerce(name: str, value: Any) -> Any:
    return _to_text(value) if name in _TEXT_FIELDS else _to_int(value)


def parse_retry_after(value: str | None, now: float | None = None) -> int | None:
    """Parse a ``Retry-After`` header value into seconds.

    The header is either a number of seconds or an HTTP-date. Dates in the
    past yield 0. Anything unparseable yields None.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    seconds = _to_int(value)
    if seconds is not None:
        return seconds
    try:
        when = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = time.time() if now is None else now
    return max(0, int(when.timestamp() - current))


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate-limit state reported by the server alongside a 429.

    All fields are optional; servers send different subsets.
    """

    retry_after: int | None = None
    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None  # Unix seconds
    limit_type: str | None = None
    client_id: str | None = None

    @classmethod
    def from_headers(
        cls, headers: Mapping[str, str] | None, now: float | None = None
    ) -> RateLimitInfo:
        """Build from response headers using the synonym table.

        Header names are matched case-insensitively. A header that is
        present but not numeric still claims its field, leaving it as None.
        ``Retry-After`` may also be an HTTP-date, resolved against ``now``.
        """
        if not headers:
            return cls()
        headers = CIMultiDict(headers)
        values: dict[str, Any] = {}
        for name, header_names in RATE_LIMIT_HEADERS.items():
            for header in header_names:
                if header in headers:
                    if name == "retry_after":
                        values[name] = parse_retry_after(headers[header], now)
                    else:
                        values[name] = _coerce(name, headers[header])
                    break
        return cls(**values)

    @classmethod
    def from_body(cls, body: Mapping[str, Any] | None) -> RateLimitInfo:
        """Build from a decoded JSON error body."""
        if not body:
            return cls()
        return cls(
            **{
                name: _coerce(name, body.get(key))
                for name, key in RATE_LIMIT_BODY_FIELDS.items()
            }
        )

    @classmethod
    def from_mapping(cls, info: Mapping[str, Any]) -> RateLimitInfo:
        """Build from a caller supplied mapping (``rate_limit``, ``rate_limit_remaining``, ...)."""
        return cls(
            **{
                name: _coerce(name, info.get(key))
                for name, key in RATE_LIMIT_INFO_KEYS.items()
            }
        )

    @classmethod
    def from_response(
        cls,
        headers: Mapping[str, str] | None,
        body: Mapping[str, Any] | None,
        now: float | None = None,
    ) -> RateLimitInfo:
        """Headers first, body fields for anything the headers left out."""
        return cls.from_headers(headers, now).merged(cls.from_body(body))

    def merged(self, other: RateLimitInfo) -> RateLimitInfo:
        """Return a copy with unknown fields filled in from ``other``."""
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if getattr(self, f.name) is None and getattr(other, f.name) is not None
        }
        return replace(self, **updates) if updates else self

    @property
    def has_retry_after(self) -> bool:
        return self.retry_after is not None and self.retry_after > 0

    @property
    def is_exhausted(self) -> bool:
        """Whether the server reported no remaining requests."""
        return self.remaining == 0

    @property
    def usage_percent(self) -> float | None:
        """Percentage of the limit already consumed.

        A limit of 0 counts as fully used. None when limit or remaining is
        unknown.
        """
        if self.limit is None or self.remaining is None:
            return None
        if self.limit == 0:
            return 100.0
        return (self.limit - self.remaining) / self.limit * 100.0

    @property
    def reset_datetime(self) -> datetime | None:
        if self.reset_at is None:
            return None
        try:
            return datetime.fromtimestamp(self.reset_at, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    def seconds_until_reset(self, now: float | None = None) -> int:
        if self.reset_at is None:
            return 0
        current = time.time() if now is None else now
        return max(0, int(self.reset_at - current))

    def is_reset(self, now: float | None = None) -> bool:
        if self.reset_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.reset_at

    def describe(self, now: float | None = None) -> str:
        """Compose a message from whichever fields are known.

        e.g. ``Rate limit exceeded. Retry after 30 seconds (80/100 requests used) [Type: hourly]``
        """
        message = "Rate limit exceeded"
        if self.retry_after:
            message += f". Retry after {self.retry_after} seconds"
        elif self.reset_at:
            seconds_left = self.seconds_until_reset(now)
            if seconds_left > 0:
                message += f". Limit resets in {seconds_left} seconds"
        if self.limit and self.remaining is not None:
            used = self.limit - self.remaining
            message += f" ({used}/{self.limit} requests used)"
        if self.limit_type:
            message += f" [Type: {self.limit_type}]"
        return message

    def as_dict(self, now: float | None = None) -> dict[str, Any]:
        reset = self.reset_datetime
        return {
            "retry_after": self.retry_after,
            "rate_limit": self.limit,
            "rate_limit_remaining": self.remaining,
            "rate_limit_reset": self.reset_at,
            "rate_limit_reset_datetime": reset.isoformat() if reset else None,
            "limit_type": self.limit_type,
            "client_id": self.client_id,
            "seconds_until_reset": self.seconds_until_reset(now),
            "is_fully_exhausted": self.is_exhausted,
            "usage_percentage": self.usage_percent,
        }
