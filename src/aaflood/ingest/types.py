"""
Normalized reading types shared by all source adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional

from ..db.models import DataSource


@dataclass(frozen=True)
class Reading:
    """One normalized data point from an external source for a basin."""
    basin: str
    source: DataSource
    series_id: str
    observed_at: datetime
    value: Optional[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy, stored with trigger history."""
        return {
            "basin": self.basin,
            "source": self.source.value,
            "series_id": self.series_id,
            "observed_at": self.observed_at.isoformat(),
            "value": self.value,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class FetchWindow:
    """Time span an adapter should cover in one fetch."""
    start: datetime
    end: datetime

    @classmethod
    def for_day(cls, day: date, days_back: int = 1, tzinfo=None) -> "FetchWindow":
        """From midnight ``days_back`` days before ``day`` until the end of ``day``."""
        start = datetime.combine(day - timedelta(days=days_back), time(0, 0, 0), tzinfo=tzinfo)
        end = datetime.combine(day, time(23, 59, 59), tzinfo=tzinfo)
        return cls(start=start, end=end)

    @property
    def forecast_time(self) -> str:
        # GLOFAS expects the forecast run at midnight of the requested day
        return self.end.strftime("%Y-%m-%dT00:00:00")
