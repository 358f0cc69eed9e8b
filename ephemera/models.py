# ephemera/models.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def normalize_dt(value: Any) -> Optional[datetime]:
    """Return a timezone-aware datetime in UTC (Mongo hands back naive ones)."""
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Entry:
    slug: str
    name: str
    sum: str
    size: int
    timestamp: datetime
    lifetime: Optional[datetime] = None

    def expired(self, now: datetime) -> bool:
        return self.lifetime is not None and now >= self.lifetime

    def remaining(self, now: datetime) -> int:
        """Whole seconds until expiry, never negative. Zero when there is no lifetime."""
        if self.lifetime is None:
            return 0
        return max(int((self.lifetime - now).total_seconds()), 0)

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.slug,
            "name": self.name,
            "sum": self.sum,
            "size": self.size,
            "timestamp": self.timestamp,
            "lifetime": self.lifetime,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Entry":
        return cls(
            slug=str(doc["_id"]),
            name=doc.get("name") or "",
            sum=doc.get("sum") or "",
            size=int(doc.get("size") or 0),
            timestamp=normalize_dt(doc.get("timestamp")) or datetime.fromtimestamp(0, timezone.utc),
            lifetime=normalize_dt(doc.get("lifetime")),
        )
