"""Beds24 API credit accounting.

Every v2 response reports what the call cost and how many credits are left in
the current five-minute window. Callers slow down once the pool runs low.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

# Header names; older accounts still send the x-api-credits-* variants
REQUEST_COST_HEADERS = ("x-request-cost", "x-api-request-cost")
REMAINING_HEADERS = ("x-five-min-limit-remaining", "x-api-credits-remaining")
RESETS_IN_HEADERS = ("x-five-min-limit-resets-in", "x-api-credits-resets-in")

BACKOFF_THRESHOLD = 50
DEFAULT_RESETS_IN = 3600


@dataclass
class CreditInfo:
    """Credit usage reported by one provider response."""

    request_cost: int = 0
    remaining: Optional[int] = None  # None when the provider did not report it
    resets_in: int = DEFAULT_RESETS_IN

    @property
    def should_backoff(self) -> bool:
        return self.remaining is not None and should_backoff(self.remaining)


def _first_int(headers: Mapping[str, str], names) -> Optional[int]:
    for name in names:
        raw = headers.get(name)
        if raw is None or raw == "":
            continue
        try:
            return int(float(raw))
        except ValueError:
            continue
    return None


def parse_credit_headers(headers: Mapping[str, str]) -> CreditInfo:
    """Read credit headers. httpx.Headers lookups are case-insensitive."""
    cost = _first_int(headers, REQUEST_COST_HEADERS)
    remaining = _first_int(headers, REMAINING_HEADERS)
    resets_in = _first_int(headers, RESETS_IN_HEADERS)
    return CreditInfo(
        request_cost=cost if cost is not None else 0,
        remaining=remaining,
        resets_in=resets_in if resets_in is not None else DEFAULT_RESETS_IN,
    )


def should_backoff(remaining: int) -> bool:
    return remaining < BACKOFF_THRESHOLD


def backoff_delay(remaining: int, resets_in: int) -> float:
    """Seconds to wait before the next call, growing as credits run out.

    - under 10 left: wait for the reset, at most 30 minutes
    - under 25 left: half the reset time, at most 15 minutes
    - under 50 left: a tenth of the reset time, at most 5 minutes
    """
    if remaining >= BACKOFF_THRESHOLD:
        return 0.0
    if remaining < 10:
        return float(min(resets_in, 30 * 60))
    if remaining < 25:
        return float(min(resets_in * 0.5, 15 * 60))
    return float(min(5 * 60, resets_in * 0.1))
