# crawler/models/source_models.py
"""
Source and priority tier models.

A source's type decides its priority tier, and the tier decides how often the
source may be swept by the producer.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, Optional, Tuple


class PriorityTier(Enum):
    """Crawl priority tiers."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


TIER_SOURCE_TYPES: Dict[PriorityTier, Tuple[str, ...]] = {
    PriorityTier.HIGH: ("article", "blog", "news"),
    PriorityTier.MEDIUM: ("podcast", "video"),
    PriorityTier.LOW: ("twitter", "newsletter", "wechat", "social"),
}

TIER_INTERVALS: Dict[PriorityTier, timedelta] = {
    PriorityTier.HIGH: timedelta(hours=1),
    PriorityTier.MEDIUM: timedelta(hours=3),
    PriorityTier.LOW: timedelta(hours=6),
}

TIER_CRONS: Dict[PriorityTier, str] = {
    PriorityTier.HIGH: "5 * * * *",
    PriorityTier.MEDIUM: "10 */3 * * *",
    PriorityTier.LOW: "15 */6 * * *",
}


def tier_for_source_type(source_type: str) -> PriorityTier:
    """Map a source type to its priority tier. Unknown types are low priority."""
    normalized = (source_type or "").strip().lower()
    for tier, types in TIER_SOURCE_TYPES.items():
        if normalized in types:
            return tier
    return PriorityTier.LOW


def tier_for_cron(cron: str) -> PriorityTier:
    """Resolve a cron trigger expression to the tier it schedules.

    Unrecognized expressions fall back to the high tier.
    """
    for tier, expression in TIER_CRONS.items():
        if expression == (cron or "").strip():
            return tier
    return PriorityTier.HIGH


def tier_interval_ms(tier: PriorityTier) -> int:
    """Tier crawl interval in milliseconds."""
    return int(TIER_INTERVALS[tier].total_seconds() * 1000)


@dataclass
class Source:
    """A syndication source tracked by the content store."""
    id: str
    url: str
    name: str
    type: str = "article"
    category: str = ""
    language: str = "en"
    is_active: bool = True
    last_crawled_at: Optional[int] = None
    error_count: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Validate identity fields."""
        if not str(self.id).strip():
            raise ValueError("Source id cannot be empty")
        if not self.url.strip():
            raise ValueError("Source URL cannot be empty")

    @property
    def tier(self) -> PriorityTier:
        return tier_for_source_type(self.type)

    @property
    def next_due_at(self) -> Optional[int]:
        """Epoch ms when the source becomes due again, None if never crawled."""
        if self.last_crawled_at is None:
            return None
        return self.last_crawled_at + tier_interval_ms(self.tier)

    def is_due(self, now: int) -> bool:
        """Check whether the source should be swept at ``now`` (epoch ms)."""
        if not self.is_active:
            return False
        due_at = self.next_due_at
        return due_at is None or due_at <= now
