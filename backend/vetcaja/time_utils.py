# Overview: UTC clock and ISO-8601 helpers shared by models, services and routes.

"""
Timestamps are stored naive and always mean UTC. Anything coming in with an
offset is converted; anything going out gets a trailing 'Z'.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time, naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a client timestamp.

    Blank input gives None. A bare "2026-03-10T18:00" is taken as UTC; a
    "Z" suffix or explicit offset is converted. Raises ValueError on junk.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"

    return as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """'2026-03-10T09:00:00Z' (seconds precision)."""
    if moment is None:
        return None
    return as_naive_utc(moment).replace(microsecond=0).isoformat() + "Z"


def start_of_day(moment: datetime) -> datetime:
    return datetime(moment.year, moment.month, moment.day)
