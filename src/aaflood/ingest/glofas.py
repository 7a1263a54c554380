"""
GLOFAS forecast adapter.

Queries the GLOFAS WMS ``GetFeatureInfo`` endpoint for the basin's reporting
point, parses the embedded HTML forecast and flattens it into readings:

  * one ``point_forecast`` reading (value = 2 yr maximum probability)
  * one ``rp2`` / ``rp5`` / ``rp20`` reading per forecast day after the issue
    day, taken from the latest row of each return-period table
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from ..config import BasinSettings
from ..db.models import DataSource
from ..errors import FetchErrorKind
from .base import SourceAdapter
from .glofas_parser import ForecastBundle, ReturnPeriodTable, parse_glofas_forecast
from .types import FetchWindow, Reading

WMS_PARAMS = {
    "SERVICE": "WMS",
    "VERSION": "1.3.0",
    "REQUEST": "GetFeatureInfo",
    "FORMAT": "image/png",
    "TRANSPARENT": "true",
    "QUERY_LAYERS": "reportingPoints",
    "LAYERS": "reportingPoints",
    "INFO_FORMAT": "application/json",
    "WIDTH": "832",
    "HEIGHT": "832",
    "CRS": "EPSG:3857",
    "STYLES": "",
}


def _to_float(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    try:
        return float(text.strip())
    except ValueError:
        return None


def _split_probabilities(text: str) -> List[Optional[float]]:
    """'3 / 1 / 0' -> [3.0, 1.0, 0.0] (2 yr / 5 yr / 20 yr)."""
    return [_to_float(part) for part in (text or "").split("/")]


class GlofasAdapter(SourceAdapter):
    data_source = DataSource.GLOFAS

    def is_configured(self, basin: BasinSettings) -> bool:
        return basin.glofas is not None

    def fetch(self, basin: BasinSettings, window: FetchWindow) -> List[Reading]:
        html = self.fetch_page(basin, window)
        try:
            bundle = parse_glofas_forecast(html)
        except Exception as e:
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"forecast page could not be parsed: {e}") from e

        if bundle is None:
            # no forecast published for this point; a legitimate empty result
            self.logger.info(f"GLOFAS:{basin.river_basin}: forecast page incomplete, no data")
            return []

        return self.flatten(basin.river_basin, bundle)

    def fetch_page(self, basin: BasinSettings, window: FetchWindow) -> str:
        """Return the HTML document describing the basin's reporting point."""
        params = dict(WMS_PARAMS)
        params.update({
            "BBOX": basin.glofas.bbox,
            "I": basin.glofas.i,
            "J": basin.glofas.j,
            "TIME": window.forecast_time,
        })
        self.logger.info(f"Fetching GLOFAS data for {basin.river_basin} at {window.forecast_time}")
        payload = self._get_json(basin.glofas.url, params=params)

        content = payload.get("content") if isinstance(payload, dict) else None
        if not isinstance(content, dict) or not content:
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, "response has no 'content' layers")

        for layer in content.values():
            if isinstance(layer, dict) and isinstance(layer.get("point"), str):
                return layer["point"]
        raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, "no reporting point HTML in response")

    # -----------------------------
    # Flattening
    # -----------------------------
    def flatten(self, river_basin: str, bundle: ForecastBundle) -> List[Reading]:
        pf = bundle.point_forecast
        forecast_date = pf.forecast_date.data or ""
        observed_at = self._forecast_datetime(forecast_date)

        probabilities = _split_probabilities(pf.max_probability.data or "")
        probabilities += [None] * (3 - len(probabilities))

        readings = [
            Reading(
                basin=river_basin,
                source=self.data_source,
                series_id="point_forecast",
                observed_at=observed_at,
                value=probabilities[0],
                metadata={
                    "forecast_date": forecast_date,
                    "lead_day": 0,
                    "max_probability_2yr": probabilities[0],
                    "max_probability_5yr": probabilities[1],
                    "max_probability_20yr": probabilities[2],
                    "alert_level": pf.alert_level.data,
                    "max_probability_step": pf.max_probability_step.data,
                    "discharge_tendency_image": pf.discharge_tendency_image.data,
                    "peak_forecasted": pf.peak_forecasted.data,
                    "hydrograph_image_url": bundle.hydrograph_image_url,
                },
            )
        ]

        for table in bundle.return_period_tables:
            readings.extend(self._return_period_readings(river_basin, table))
        return readings

    def _return_period_readings(self, river_basin: str, table: ReturnPeriodTable) -> List[Reading]:
        if not table.rows or not table.rows[0]:
            return []

        latest = table.rows[0]
        forecast_date = latest[0]
        observed_at = self._forecast_datetime(forecast_date)

        # '2025-08-05' -> column headed '5'
        issue_day = forecast_date.split("-")[-1]
        try:
            issue_index = list(table.headers).index(str(int(issue_day)))
        except ValueError:
            raise self._fail(
                FetchErrorKind.UNEXPECTED_FORMAT,
                f"{table.return_period} yr RP table has no column for issue day {issue_day!r}",
            )

        readings = []
        for index in range(issue_index + 1, min(len(latest), len(table.headers))):
            value = _to_float(latest[index])
            if value is None:
                continue
            readings.append(Reading(
                basin=river_basin,
                source=self.data_source,
                series_id=f"rp{table.return_period}",
                observed_at=observed_at,
                value=value,
                metadata={
                    "return_period": table.return_period,
                    "lead_day": index - issue_index,
                    "forecast_day": table.headers[index],
                    "forecast_date": forecast_date,
                },
            ))
        return readings

    def _forecast_datetime(self, forecast_date: str) -> datetime:
        try:
            return datetime.strptime(forecast_date, "%Y-%m-%d")
        except ValueError:
            raise self._fail(FetchErrorKind.UNEXPECTED_FORMAT, f"bad forecast date {forecast_date!r}")
