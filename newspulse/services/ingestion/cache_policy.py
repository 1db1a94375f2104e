"""
Time-aware cache keys and TTLs.

Every local-time window the ingestion core cares about (market hours,
evening sports, business hours, peak traffic) is defined here and
evaluated against an injected clock, so TTL selection can be tested at
any hour.
"""

from dataclasses import dataclass
from datetime import datetime, time
from typing import Any, Mapping, Optional
from urllib.parse import quote

from newspulse.core.clock import Clock, SystemClock

# =============================================================================
# Local time windows (target locale)
# =============================================================================

MARKET_OPEN = time(9, 15)
MARKET_CLOSE = time(15, 30)
SPORTS_WINDOW = (19, 22)  # inclusive hours: evening match / IPL slot
BUSINESS_HOURS = (9, 18)
PEAK_HOURS = (9, 22)

FALLBACK_TTL_BUSINESS = 2700
FALLBACK_TTL_OTHER = 3600


def is_market_hours(moment: datetime) -> bool:
    return MARKET_OPEN <= moment.time() <= MARKET_CLOSE


def is_sports_window(moment: datetime) -> bool:
    return SPORTS_WINDOW[0] <= moment.hour <= SPORTS_WINDOW[1]


def is_business_hours(moment: datetime) -> bool:
    return BUSINESS_HOURS[0] <= moment.hour <= BUSINESS_HOURS[1]


def is_peak_hour(moment: datetime) -> bool:
    return PEAK_HOURS[0] <= moment.hour <= PEAK_HOURS[1]


# =============================================================================
# Per-category TTL table
# =============================================================================

@dataclass(frozen=True)
class CategoryTTL:
    """TTL settings for one category, in seconds."""
    peak: int
    off_peak: int
    event: int
    target_hit_rate: int  # percent, monitoring only


CATEGORY_TTLS: dict[str, CategoryTTL] = {
    "breaking": CategoryTTL(peak=300, off_peak=900, event=120, target_hit_rate=60),
    "sports": CategoryTTL(peak=600, off_peak=1800, event=300, target_hit_rate=65),
    "business": CategoryTTL(peak=900, off_peak=2700, event=600, target_hit_rate=70),
    "finance": CategoryTTL(peak=900, off_peak=2700, event=600, target_hit_rate=70),
    "politics": CategoryTTL(peak=1800, off_peak=3600, event=900, target_hit_rate=75),
    "technology": CategoryTTL(peak=7200, off_peak=10800, event=3600, target_hit_rate=80),
    "health": CategoryTTL(peak=14400, off_peak=18000, event=7200, target_hit_rate=85),
    "entertainment": CategoryTTL(peak=3600, off_peak=7200, event=1800, target_hit_rate=75),
    "general": CategoryTTL(peak=2700, off_peak=5400, event=1200, target_hit_rate=70),
}

TIME_SENSITIVE = frozenset({"sports"})
MARKET_LINKED = frozenset({"business", "finance"})
ALWAYS_EVENT = frozenset({"breaking"})


class CachePolicy:
    """
    Computes cache keys and the TTL that applies to a category right now.

    Holds no cache state; the cache store owns entries and their expiry.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        key_prefix: str = "newspulse",
        ttls: Optional[dict[str, CategoryTTL]] = None,
    ):
        self.clock = clock or SystemClock()
        self.key_prefix = key_prefix
        self.ttls = ttls if ttls is not None else CATEGORY_TTLS

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def build_key(
        self,
        content_type: str,
        category: str,
        page: int = 1,
        limit: int = 20,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Build a deterministic key for a read request.

        Filter keys are sorted and None values dropped, so the same
        logical request always maps to the same key whatever order its
        filters were supplied in. Names and values are percent-encoded so
        no value can mimic another filter or a glob.
        """
        key = f"{self.key_prefix}:{content_type}:{category}:p{page}:l{limit}"
        if filters:
            parts = []
            for name in sorted(filters):
                rendered = _render_filter_value(filters[name])
                if rendered is not None:
                    parts.append(f"{_escape(name)}={rendered}")
            if parts:
                key += ":" + "&".join(parts)
        return key

    def category_pattern(self, category: str) -> str:
        """Glob matching every key for a category, whatever the content type."""
        return f"{self.key_prefix}:*:{category}:*"

    # ------------------------------------------------------------------
    # TTLs
    # ------------------------------------------------------------------

    def ttl_rule(self, category: str, now: Optional[datetime] = None) -> str:
        """Name of the rule that decides the TTL: event, peak, off_peak or fallback_*."""
        now = now or self.clock.now()

        if category not in self.ttls:
            return "fallback_business" if is_business_hours(now) else "fallback_other"
        if category in ALWAYS_EVENT:
            return "event"
        if category in TIME_SENSITIVE:
            return "event" if is_sports_window(now) else "peak"
        if category in MARKET_LINKED:
            return "event" if is_market_hours(now) else "off_peak"
        return "peak" if is_business_hours(now) else "off_peak"

    def ttl_for(self, category: str, now: Optional[datetime] = None) -> int:
        """TTL in seconds for a category at the given (or current) local time."""
        rule = self.ttl_rule(category, now)
        if rule == "fallback_business":
            return FALLBACK_TTL_BUSINESS
        if rule == "fallback_other":
            return FALLBACK_TTL_OTHER
        return getattr(self.ttls[category], rule)

    def target_hit_rate(self, category: str) -> Optional[int]:
        config = self.ttls.get(category)
        return config.target_hit_rate if config else None


def _escape(value: Any) -> str:
    return quote(str(value), safe="")


def _render_filter_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_escape(v) for v in value))
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return _escape(value.isoformat())
    return _escape(value)
