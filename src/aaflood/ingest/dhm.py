"""
DHM river and rainfall telemetry adapter (bipadportal API).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..config import BasinSettings, DhmSeries
from ..db.models import DataSource
from ..errors import FetchErrorKind
from .base import SourceAdapter
from .types import FetchWindow, Reading

# series type -> (endpoint, value field, timestamp field)
SERIES_ENDPOINTS: Dict[str, Tuple[str, str, str]] = {
    "WATER_LEVEL": ("river", "water_level", "water_level_on"),
    "RAINFALL": ("rain", "rainfall", "measured_on"),
}

RIVER_FIELDS = (
    "id,created_on,title,basin,point,image,water_level,danger_level,"
    "warning_level,water_level_on,status,steady,description,station"
)

METADATA_FIELDS = ("danger_level", "warning_level", "status", "steady", "station", "title")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class DhmAdapter(SourceAdapter):
    """One request per configured series; the latest observation becomes a Reading."""

    data_source = DataSource.DHM

    def is_configured(self, basin: BasinSettings) -> bool:
        return basin.dhm is not None and bool(basin.dhm.series)

    def fetch(self, basin: BasinSettings, window: FetchWindow) -> List[Reading]:
        readings: List[Reading] = []
        for series in basin.dhm.series:
            reading = self._fetch_series(basin, series, window)
            if reading is not None:
                readings.append(reading)
        return readings

    def _fetch_series(self, basin: BasinSettings, series: DhmSeries, window: FetchWindow) -> Optional[Reading]:
        if series.type not in SERIES_ENDPOINTS:
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"unknown DHM series type {series.type}")
        endpoint, value_key, time_key = SERIES_ENDPOINTS[series.type]

        params = {
            "title": basin.dhm.location,
            "series_id": series.series_id,
            "historical": "true",
            "format": "json",
            f"{time_key}__gt": window.start.isoformat(),
            f"{time_key}__lt": window.end.isoformat(),
            "limit": "-1",
        }
        if series.type == "WATER_LEVEL":
            params["fields"] = RIVER_FIELDS

        url = f"{basin.dhm.url}/{endpoint}"
        payload = self._get_json(url, params=params)

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"{url}: missing 'results' list")

        observations = []
        for item in results:
            observed_at = _parse_timestamp(item.get(time_key))
            if observed_at is None or item.get(value_key) is None:
                continue
            observations.append((observed_at, item))

        if not observations:
            self.logger.info(f"DHM:{basin.river_basin}: no {series.type} data in window")
            return None

        observed_at, latest = max(observations, key=lambda pair: pair[0])
        try:
            value = float(latest[value_key])
        except (TypeError, ValueError):
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"{url}: non-numeric {value_key}")

        metadata: Dict[str, Any] = {"series_type": series.type}
        for key in METADATA_FIELDS:
            if key in latest:
                metadata[key] = latest[key]

        return Reading(
            basin=basin.river_basin,
            source=self.data_source,
            series_id=series.series_id,
            observed_at=observed_at,
            value=value,
            metadata=metadata,
        )
