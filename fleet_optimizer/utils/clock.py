"""UTC calendar helpers shared by the services and the repository."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_today() -> date:
    """Current calendar day in UTC, the day boundary used for stored data."""
    return datetime.now(timezone.utc).date()
