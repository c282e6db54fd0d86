"""NYSE session helpers for gating the monitoring jobs.

Regular session only (Mon-Fri 9:30-16:00 ET); exchange holidays are not
modelled.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

ET = ZoneInfo("America/New_York")
MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)


def now_et() -> datetime:
    """Current time in US Eastern."""
    return datetime.now(ET)


def is_market_open(dt: datetime | None = None) -> bool:
    """True during the regular session."""
    now = dt or now_et()
    if now.weekday() > 4:
        return False
    return MARKET_OPEN <= now.time() < MARKET_CLOSE


def next_session_open(dt: datetime | None = None) -> datetime:
    """Open of the next regular session that has not started yet."""
    now = dt or now_et()
    candidate = datetime.combine(now.date(), MARKET_OPEN, tzinfo=now.tzinfo)
    if now.time() >= MARKET_OPEN or now.weekday() > 4:
        candidate += timedelta(days=1)
    while candidate.weekday() > 4:
        candidate += timedelta(days=1)
    return candidate


def market_status(dt: datetime | None = None) -> dict:
    """Session state for status payloads."""
    now = dt or now_et()
    is_open = is_market_open(now)
    status = {
        "is_open": is_open,
        "current_time_et": now.strftime("%Y-%m-%d %H:%M:%S ET"),
    }
    if is_open:
        closes_at = datetime.combine(now.date(), MARKET_CLOSE, tzinfo=now.tzinfo)
        status["closes_in_seconds"] = int((closes_at - now).total_seconds())
    else:
        opens_at = next_session_open(now)
        status["next_open_et"] = opens_at.strftime("%Y-%m-%d %H:%M ET")
        status["opens_in_seconds"] = int((opens_at - now).total_seconds())
    return status
