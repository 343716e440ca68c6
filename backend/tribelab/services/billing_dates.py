"""
Date validation for billing periods.

Razorpay webhook payloads and older records are not always trustworthy:
timestamps can be missing, zero, or land on the Unix epoch. Anything on or
before 1971-01-01 is treated as a sentinel for "clearly wrong".
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple

from tribelab.core.clock import as_naive_utc

logger = logging.getLogger(__name__)

MIN_VALID_DATE = datetime(1971, 1, 1)
SECONDS_PER_DAY = 24 * 60 * 60

# Unix timestamps below one year after the epoch are rejected
MIN_VALID_TIMESTAMP = 365 * SECONDS_PER_DAY


def is_valid_billing_date(value: Any) -> bool:
    """True when ``value`` is a datetime later than the 1971 sentinel."""
    if not isinstance(value, datetime):
        return False
    return as_naive_utc(value) > MIN_VALID_DATE


def from_gateway_timestamp(value: Any, fallback: Optional[datetime]) -> Optional[datetime]:
    """
    Convert a Razorpay unix timestamp (seconds) to a naive UTC datetime.

    Args:
        value: Timestamp from the gateway payload
        fallback: Returned when the timestamp is missing or implausible

    Returns:
        Converted datetime or ``fallback``
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if value < MIN_VALID_TIMESTAMP:
        logger.warning(f"Rejected implausible gateway timestamp {value}, using fallback")
        return fallback
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"Gateway timestamp {value} out of range, using fallback")
        return fallback


def resolve_billing_period(
    start: Any,
    end: Any,
    now: datetime,
    period_days: int = 30,
) -> Tuple[datetime, datetime]:
    """
    Return a trustworthy (start, end) pair.

    An invalid start becomes ``now``; an invalid end, or one not after the
    start, becomes ``start + period_days``.
    """
    safe_start = as_naive_utc(start) if is_valid_billing_date(start) else now
    if is_valid_billing_date(end) and as_naive_utc(end) > safe_start:
        safe_end = as_naive_utc(end)
    else:
        safe_end = safe_start + timedelta(days=period_days)
    return safe_start, safe_end


def days_until(end: datetime, now: datetime) -> int:
    """Whole days until ``end``, rounded up and floored at zero."""
    seconds = (as_naive_utc(end) - as_naive_utc(now)).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))
