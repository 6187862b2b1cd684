"""US equity market hours (America/New_York, 09:30-16:00, weekdays)."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

EASTERN = ZoneInfo("America/New_York")
MARKET_OPEN_MINUTES = 9 * 60 + 30
MARKET_CLOSE_MINUTES = 16 * 60


def _eastern(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(EASTERN)
    return now.astimezone(EASTERN)


def is_market_hours(now: datetime | None = None) -> bool:
    et = _eastern(now)
    if et.weekday() >= 5:
        return False
    minutes = et.hour * 60 + et.minute
    return MARKET_OPEN_MINUTES <= minutes <= MARKET_CLOSE_MINUTES


def market_status_message(now: datetime | None = None) -> str:
    """One-line market status, e.g. ``03/14/2025 10:15:00 AM EDT - Market open (closes in 5h 45m)``."""
    et = _eastern(now)
    stamp = f"{et:%m/%d/%Y} {et:%I:%M:%S %p} {et.tzname()}"

    if et.weekday() >= 5:
        return f"{stamp} - Market closed (weekend)"

    minutes = et.hour * 60 + et.minute
    if minutes < MARKET_OPEN_MINUTES:
        hours, mins = divmod(MARKET_OPEN_MINUTES - minutes, 60)
        return f"{stamp} - Market opens in {hours}h {mins}m"
    if minutes <= MARKET_CLOSE_MINUTES:
        hours, mins = divmod(MARKET_CLOSE_MINUTES - minutes, 60)
        return f"{stamp} - Market open (closes in {hours}h {mins}m)"
    return f"{stamp} - Market closed (opens next trading day at 9:30 AM {et.tzname()})"
