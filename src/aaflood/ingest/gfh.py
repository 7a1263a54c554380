"""
Google Flood Hub (GFH) forecast adapter.

The basin's station is matched to the nearest published gauge (or to an
explicitly configured gauge id), then the latest issued forecast for that
gauge is turned into one ``discharge`` reading per forecast range.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from ..config import BasinSettings, GfhSettings, get_floods_api_key
from ..db.models import DataSource
from ..errors import FetchErrorKind
from .base import SourceAdapter
from .types import FetchWindow, Reading

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two WGS84 points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass
class GaugeMatch:
    gauge_id: str
    distance_km: float
    source: str
    latitude: float
    longitude: float
    quality_verified: bool


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GfhAdapter(SourceAdapter):
    data_source = DataSource.GFH

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        api_key: Optional[str] = None,
    ) -> None:
        super().__init__(config, session)
        self.base_url = self.config.get("base_url", "https://floodforecasting.googleapis.com/v1").rstrip("/")
        self.region_code = self.config.get("region_code", "NP")
        self.page_size = int(self.config.get("page_size", 1000))
        self.match_radius_km = float(self.config.get("match_radius_km", 12))
        self.days_back = int(self.config.get("days_back", 7))
        self.api_key = api_key if api_key is not None else get_floods_api_key()
        self._gauges: Optional[List[Dict[str, Any]]] = None

    def is_configured(self, basin: BasinSettings) -> bool:
        if basin.gfh is None:
            return False
        if not self.api_key:
            self.logger.warning(f"GFH:{basin.river_basin}: FLOODS_API_KEY not set, skipping")
            return False
        return True

    def fetch(self, basin: BasinSettings, window: FetchWindow) -> List[Reading]:
        match = self.match_station(self.fetch_all_gauges(), basin.gfh)
        if match is None:
            self.logger.warning(
                f"GFH:{basin.river_basin}: no gauge within {self.match_radius_km}km of station {basin.gfh.station_id}"
            )
            return []

        thresholds = self.fetch_gauge_metadata(match.gauge_id).get("thresholds") or {}
        forecasts = self.fetch_gauge_forecasts(match.gauge_id, window.end)
        if not forecasts:
            self.logger.info(f"GFH:{basin.river_basin}: no forecasts for gauge {match.gauge_id}")
            return []

        latest = max(forecasts, key=lambda f: _parse_time(f.get("issuedTime")) or datetime.min.replace(tzinfo=timezone.utc))
        return self._to_readings(basin, match, thresholds, latest)

    # -----------------------------
    # Gauge lookup
    # -----------------------------
    def fetch_all_gauges(self) -> List[Dict[str, Any]]:
        """All gauges in the configured region, cached for the adapter's lifetime."""
        if self._gauges is not None:
            return self._gauges

        body: Dict[str, Any] = {
            "regionCode": self.region_code,
            "pageSize": self.page_size,
            "includeNonQualityVerified": True,
        }
        gauges: List[Dict[str, Any]] = []
        while True:
            payload = self._call("gauges:searchGaugesByArea", method="POST", json=body)
            gauges.extend(payload.get("gauges") or [])
            token = payload.get("nextPageToken")
            if not token:
                break
            body["pageToken"] = token

        self.logger.info(f"GFH: loaded {len(gauges)} gauges for region {self.region_code}")
        self._gauges = gauges
        return gauges

    def match_station(self, gauges: List[Dict[str, Any]], station: GfhSettings) -> Optional[GaugeMatch]:
        valid = [
            g for g in gauges
            if isinstance(g.get("location"), dict)
            and isinstance(g["location"].get("latitude"), (int, float))
            and isinstance(g["location"].get("longitude"), (int, float))
        ]

        def to_match(gauge: Dict[str, Any]) -> GaugeMatch:
            loc = gauge["location"]
            return GaugeMatch(
                gauge_id=gauge["gaugeId"],
                distance_km=haversine_km(station.latitude, station.longitude, loc["latitude"], loc["longitude"]),
                source=gauge.get("source") or "",
                latitude=loc["latitude"],
                longitude=loc["longitude"],
                quality_verified=bool(gauge.get("qualityVerified", False)),
            )

        if station.river_gauge_id:
            for gauge in valid:
                if gauge.get("gaugeId") == station.river_gauge_id:
                    return to_match(gauge)

        candidates = [to_match(g) for g in valid if g.get("gaugeId")]
        nearby = [m for m in candidates if m.distance_km <= self.match_radius_km]
        if not nearby:
            return None
        return min(nearby, key=lambda m: m.distance_km)

    def fetch_gauge_metadata(self, gauge_id: str) -> Dict[str, Any]:
        payload = self._call("gaugeModels:batchGet", params={"names": f"gaugeModels/{gauge_id}"})
        models = payload.get("gaugeModels") or []
        return models[0] if models else {}

    def fetch_gauge_forecasts(self, gauge_id: str, until: datetime) -> List[Dict[str, Any]]:
        start = until - timedelta(days=self.days_back)
        payload = self._call(
            "gauges:queryGaugeForecasts",
            params={
                "gaugeIds": [gauge_id],
                "issuedTimeStart": start.date().isoformat(),
                "issuedTimeEnd": until.date().isoformat(),
            },
        )
        per_gauge = (payload.get("forecasts") or {}).get(gauge_id) or {}
        return per_gauge.get("forecasts") or []

    def _call(self, endpoint: str, method: str = "GET", params: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        params = dict(params or {})
        params["key"] = self.api_key
        url = f"{self.base_url}/{endpoint}"
        if method == "POST":
            payload = self._post_json(url, params=params, **kwargs)
        else:
            payload = self._get_json(url, params=params, **kwargs)
        if not isinstance(payload, dict):
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"{endpoint}: expected a JSON object")
        return payload

    # -----------------------------
    # Normalization
    # -----------------------------
    def _to_readings(
        self,
        basin: BasinSettings,
        match: GaugeMatch,
        thresholds: Dict[str, Any],
        forecast: Dict[str, Any],
    ) -> List[Reading]:
        issued_time = forecast.get("issuedTime")
        base_metadata = {
            "station_id": basin.gfh.station_id,
            "gauge_id": match.gauge_id,
            "distance_km": round(match.distance_km, 2),
            "gauge_source": match.source,
            "quality_verified": match.quality_verified,
            "issued_time": issued_time,
            "warning_level": thresholds.get("warningLevel"),
            "danger_level": thresholds.get("dangerLevel"),
            "extreme_danger_level": thresholds.get("extremeDangerLevel"),
        }

        readings = []
        for index, forecast_range in enumerate(forecast.get("forecastRanges") or []):
            observed_at = _parse_time(forecast_range.get("forecastStartTime")) or _parse_time(issued_time)
            if observed_at is None:
                raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"gauge {match.gauge_id}: forecast range has no time")
            value = forecast_range.get("value")
            if value is not None and not isinstance(value, (int, float)):
                raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"gauge {match.gauge_id}: non-numeric forecast value")

            metadata = dict(base_metadata)
            metadata.update({
                "lead_index": index,
                "forecast_end_time": forecast_range.get("forecastEndTime"),
                "trend": forecast_range.get("trend", "UNKNOWN"),
                "severity": forecast_range.get("severity", "UNKNOWN"),
            })
            readings.append(Reading(
                basin=basin.river_basin,
                source=self.data_source,
                series_id="discharge",
                observed_at=observed_at,
                value=float(value) if value is not None else None,
                metadata=metadata,
            ))
        return readings
