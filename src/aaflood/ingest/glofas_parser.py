"""
GLOFAS forecast page parser.

Turns the HTML served by the GLOFAS reporting-point service into a typed
``ForecastBundle``. The parser is a pure structural extractor: it keeps cell
text exactly as published and leaves numeric interpretation to the adapter
and the trigger evaluator.

Upstream pages routinely omit sections when no forecast exists, so the page
is only accepted when all five anchors are present:

  * the three "ECMWF-ENS > N yr RP" return-period tables (N = 2, 5, 20)
  * the "Point Forecast" table
  * the "Discharge Hydrograph (ECMWF-ENS)" image
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from bs4 import BeautifulSoup

RETURN_PERIODS: Tuple[int, ...] = (2, 5, 20)
RETURN_PERIOD_ROWS = 5
HYDROGRAPH_ALT = "Discharge Hydrograph (ECMWF-ENS)"


@dataclass(frozen=True)
class ReturnPeriodTable:
    """Probability of exceeding the N-year return-period discharge."""
    return_period: int
    headers: Tuple[str, ...]
    # most recent forecast day first
    rows: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class ForecastField:
    header: str
    data: Optional[str]


@dataclass(frozen=True)
class PointForecast:
    forecast_date: ForecastField
    max_probability: ForecastField
    alert_level: ForecastField
    max_probability_step: ForecastField
    discharge_tendency_image: ForecastField
    peak_forecasted: ForecastField


@dataclass(frozen=True)
class ForecastBundle:
    return_period_tables: Tuple[ReturnPeriodTable, ...]
    point_forecast: PointForecast
    hydrograph_image_url: str

    def table(self, return_period: int) -> ReturnPeriodTable:
        for table in self.return_period_tables:
            if table.return_period == return_period:
                return table
        raise KeyError(return_period)


def parse_glofas_forecast(html: str) -> Optional[ForecastBundle]:
    """
    Parse one GLOFAS reporting-point page.

    Returns:
        The parsed bundle, or None when any required anchor is missing.
    """
    soup = BeautifulSoup(html or "", "html.parser")

    rp_tables = {}
    for rp in RETURN_PERIODS:
        table = soup.find(
            "table",
            class_="table-forecast-result",
            attrs={"summary": f"ECMWF-ENS > {rp} yr RP"},
        )
        if table is None:
            return None
        rp_tables[rp] = table

    pf_table = soup.find("table", class_="tbl_info_point", attrs={"summary": "Point Forecast"})
    if pf_table is None:
        return None

    images = soup.find(class_="forecast_images")
    hydrograph = images.find("img", alt=HYDROGRAPH_ALT) if images is not None else None
    if hydrograph is None:
        return None

    point_forecast = _parse_point_forecast(pf_table)
    if point_forecast is None:
        return None

    return ForecastBundle(
        return_period_tables=tuple(
            _parse_return_period_table(rp, rp_tables[rp]) for rp in RETURN_PERIODS
        ),
        point_forecast=point_forecast,
        hydrograph_image_url=hydrograph.get("src", ""),
    )


def _text(element) -> str:
    return element.get_text().strip()


def _parse_return_period_table(return_period: int, table) -> ReturnPeriodTable:
    rows = table.find_all("tr")
    headers = tuple(_text(th) for th in rows[0].find_all("th")) if rows else ()
    data = tuple(
        tuple(_text(td) for td in row.find_all("td"))
        for row in rows[1:1 + RETURN_PERIOD_ROWS]
    )
    return ReturnPeriodTable(return_period=return_period, headers=headers, rows=data)


def _parse_point_forecast(table) -> Optional[PointForecast]:
    rows = table.find_all("tr")
    if len(rows) < 2:
        return None

    headers = [_text(th) for th in rows[0].find_all("th")]
    cells = rows[1].find_all("td")

    def field_at(index: int) -> ForecastField:
        header = headers[index] if index < len(headers) else ""
        data = _text(cells[index]) if index < len(cells) else ""
        return ForecastField(header=header, data=data)

    image = cells[4].find("img") if len(cells) > 4 else None
    tendency_header = headers[4] if len(headers) > 4 else ""

    return PointForecast(
        forecast_date=field_at(0),
        max_probability=field_at(1),
        alert_level=field_at(2),
        max_probability_step=field_at(3),
        discharge_tendency_image=ForecastField(
            header=tendency_header,
            data=image.get("src") if image is not None else None,
        ),
        peak_forecasted=field_at(5),
    )
