"""
Clock abstraction for everything that depends on local wall-clock time.

Quota hour/day buckets and cache TTL windows are evaluated in the target
locale (India Standard Time by default). Components take a ``Clock`` so
tests can simulate any hour without patching system time.
"""
from datetime import datetime, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


class Clock(Protocol):
    """Source of the current time in the target locale."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock converted to a fixed timezone."""

    def __init__(self, tz: tzinfo = IST):
        self.tz = tz

    @classmethod
    def for_zone(cls, name: str) -> "SystemClock":
        return cls(ZoneInfo(name))

    def now(self) -> datetime:
        return datetime.now(self.tz)


def hour_bucket(moment: datetime) -> tuple:
    """Identify the local clock hour a timestamp falls in."""
    return (moment.date(), moment.hour)


def day_bucket(moment: datetime) -> tuple:
    """Identify the local calendar day a timestamp falls in."""
    return (moment.date(),)
