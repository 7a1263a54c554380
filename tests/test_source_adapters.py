"""
Unit tests for the DHM, GLOFAS and GFH source adapters.

HTTP is mocked at the requests.Session level.
"""

from datetime import date
from unittest.mock import Mock

import pytest
import requests

from aaflood.config import BasinSettings, DhmSeries, DhmSettings, GfhSettings, GlofasSettings
from aaflood.db.models import DataSource
from aaflood.errors import FetchError, FetchErrorKind
from aaflood.ingest.dhm import DhmAdapter
from aaflood.ingest.gfh import GfhAdapter, haversine_km
from aaflood.ingest.glofas import GlofasAdapter
from aaflood.ingest.types import FetchWindow

from glofas_pages import forecast_page

BASIN = "Karnali at Chisapani"
WINDOW = FetchWindow.for_day(date(2025, 8, 5))


def _response(payload=None, json_error=False, http_error=False):
    resp = Mock()
    resp.status_code = 500 if http_error else 200
    if http_error:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError("500 Server Error")
    if json_error:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        resp.json.return_value = payload
    return resp


def _session(*responses):
    session = Mock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


@pytest.fixture
def dhm_basin():
    return BasinSettings(
        river_basin=BASIN,
        dhm=DhmSettings(
            url="https://bipadportal.gov.np/api/v1",
            location=BASIN,
            series=[DhmSeries(type="WATER_LEVEL", series_id="29089")],
        ),
    )


@pytest.fixture
def glofas_basin():
    return BasinSettings(
        river_basin=BASIN,
        glofas=GlofasSettings(
            url="https://ows.globalfloods.eu/glofas-ows/ows.py",
            bbox="8753364.64714296,3117815.425733483,9092541.220653716,3456991.999244238",
            i="721",
            j="303",
        ),
    )


@pytest.fixture
def gfh_basin():
    return BasinSettings(
        river_basin=BASIN,
        gfh=GfhSettings(station_id="G10165", latitude=28.6451, longitude=81.2945),
    )


class TestDhmAdapter:
    """River telemetry from the DHM API."""

    def test_latest_observation_becomes_reading(self, dhm_basin):
        session = _session(_response({"results": [
            {"title": BASIN, "water_level": 95.5, "water_level_on": "2025-08-05T04:00:00+05:45",
             "danger_level": 10.8, "warning_level": 10.0, "status": "BELOW WARNING LEVEL", "steady": "STEADY"},
            {"title": BASIN, "water_level": 120.0, "water_level_on": "2025-08-05T05:00:00+05:45",
             "danger_level": 10.8, "warning_level": 10.0, "status": "ABOVE DANGER LEVEL", "steady": "RISING"},
        ]}))
        adapter = DhmAdapter({"timeout_seconds": 5}, session=session)

        readings = adapter.fetch(dhm_basin, WINDOW)

        assert len(readings) == 1
        reading = readings[0]
        assert reading.source == DataSource.DHM
        assert reading.series_id == "29089"
        assert reading.value == 120.0
        assert reading.metadata["status"] == "ABOVE DANGER LEVEL"
        assert reading.metadata["series_type"] == "WATER_LEVEL"

        method, url = session.request.call_args[0]
        params = session.request.call_args[1]["params"]
        assert method == "GET"
        assert url == "https://bipadportal.gov.np/api/v1/river"
        assert params["title"] == BASIN
        assert params["format"] == "json"
        assert params["limit"] == "-1"
        assert "water_level_on__gt" in params and "water_level_on__lt" in params
        assert session.request.call_args[1]["timeout"] == 5

    def test_no_observations(self, dhm_basin):
        adapter = DhmAdapter(session=_session(_response({"results": []})))
        assert adapter.fetch(dhm_basin, WINDOW) == []

    def test_missing_results_is_unexpected_format(self, dhm_basin):
        adapter = DhmAdapter(session=_session(_response({"detail": "not found"})))
        with pytest.raises(FetchError) as exc:
            adapter.fetch(dhm_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.UNEXPECTED_FORMAT
        assert exc.value.source == "DHM"

    def test_timeout(self, dhm_basin):
        session = _session()
        session.request.side_effect = requests.exceptions.Timeout("read timed out")
        with pytest.raises(FetchError) as exc:
            DhmAdapter(session=session).fetch(dhm_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.TIMEOUT

    def test_connection_error_is_unreachable(self, dhm_basin):
        session = _session()
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(FetchError) as exc:
            DhmAdapter(session=session).fetch(dhm_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.UNREACHABLE

    def test_http_error_is_unreachable(self, dhm_basin):
        adapter = DhmAdapter(session=_session(_response(http_error=True)))
        with pytest.raises(FetchError) as exc:
            adapter.fetch(dhm_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.UNREACHABLE

    def test_non_json_body(self, dhm_basin):
        adapter = DhmAdapter(session=_session(_response(json_error=True)))
        with pytest.raises(FetchError) as exc:
            adapter.fetch(dhm_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.UNEXPECTED_FORMAT

    def test_is_configured(self, dhm_basin, glofas_basin):
        adapter = DhmAdapter(session=_session())
        assert adapter.is_configured(dhm_basin)
        assert not adapter.is_configured(glofas_basin)


class TestGlofasAdapter:
    """Forecast pages from the GLOFAS WMS service."""

    def test_flattens_forecast_page(self, glofas_basin):
        payload = {"content": {"Reporting Points": {"point": forecast_page()}}}
        session = _session(_response(payload))
        adapter = GlofasAdapter(session=session)

        readings = adapter.fetch(glofas_basin, WINDOW)

        point = [r for r in readings if r.series_id == "point_forecast"]
        assert len(point) == 1
        assert point[0].value == 60.0
        assert point[0].metadata["max_probability_5yr"] == 20.0
        assert point[0].metadata["max_probability_20yr"] == 1.0
        assert point[0].metadata["alert_level"] == "Medium"

        rp2 = [r for r in readings if r.series_id == "rp2"]
        assert [(r.metadata["lead_day"], r.value) for r in rp2] == [(1, 12.0), (2, 45.0), (3, 60.0)]
        assert rp2[0].metadata["forecast_day"] == "6"
        assert rp2[0].metadata["return_period"] == 2
        assert len([r for r in readings if r.series_id == "rp5"]) == 3
        assert len([r for r in readings if r.series_id == "rp20"]) == 3

        params = session.request.call_args[1]["params"]
        assert params["REQUEST"] == "GetFeatureInfo"
        assert params["BBOX"] == glofas_basin.glofas.bbox
        assert params["I"] == "721"
        assert params["J"] == "303"
        assert params["TIME"] == "2025-08-05T00:00:00"

    def test_incomplete_page_is_no_data(self, glofas_basin):
        payload = {"content": {"Reporting Points": {"point": forecast_page(omit=("hydrograph",))}}}
        adapter = GlofasAdapter(session=_session(_response(payload)))
        assert adapter.fetch(glofas_basin, WINDOW) == []

    def test_issue_day_missing_from_headers(self, glofas_basin):
        rows = {2: [["2025-08-25", "", "", "", "", "0", "12", "45", "60"]]}
        payload = {"content": {"Reporting Points": {"point": forecast_page(rp_rows=rows)}}}
        adapter = GlofasAdapter(session=_session(_response(payload)))
        with pytest.raises(FetchError) as exc:
            adapter.fetch(glofas_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.UNEXPECTED_FORMAT

    def test_missing_content(self, glofas_basin):
        adapter = GlofasAdapter(session=_session(_response({"type": "FeatureCollection"})))
        with pytest.raises(FetchError) as exc:
            adapter.fetch(glofas_basin, WINDOW)
        assert exc.value.kind == FetchErrorKind.UNEXPECTED_FORMAT


class TestGfhAdapter:
    """Gauge forecasts from the flood-forecasting API."""

    GAUGES = {
        "gauges": [
            {"gaugeId": "hybas_far", "location": {"latitude": 29.5, "longitude": 82.5}, "source": "HYBAS"},
            {"gaugeId": "hybas_near", "location": {"latitude": 28.66, "longitude": 81.30},
             "source": "HYBAS", "qualityVerified": True},
            {"gaugeId": "no_location"},
        ]
    }

    def test_haversine(self):
        assert haversine_km(0, 0, 0, 1) == pytest.approx(111.19, abs=0.01)
        assert haversine_km(28.6, 81.3, 28.6, 81.3) == 0

    def test_match_nearest_within_radius(self, gfh_basin):
        adapter = GfhAdapter(session=_session(), api_key="k")
        match = adapter.match_station(self.GAUGES["gauges"], gfh_basin.gfh)
        assert match.gauge_id == "hybas_near"
        assert match.distance_km < 12
        assert match.quality_verified is True

    def test_no_gauge_within_radius(self, gfh_basin):
        adapter = GfhAdapter(session=_session(), api_key="k")
        assert adapter.match_station(self.GAUGES["gauges"][:1], gfh_basin.gfh) is None

    def test_configured_gauge_id_wins(self):
        station = GfhSettings(station_id="G1", latitude=28.6451, longitude=81.2945, river_gauge_id="hybas_far")
        adapter = GfhAdapter(session=_session(), api_key="k")
        assert adapter.match_station(self.GAUGES["gauges"], station).gauge_id == "hybas_far"

    def test_fetch_latest_forecast(self, gfh_basin):
        session = _session(
            _response(self.GAUGES),
            _response({"gaugeModels": [{"thresholds": {"warningLevel": 4500.0, "dangerLevel": 6200.0,
                                                       "extremeDangerLevel": 9000.0}}]}),
            _response({"forecasts": {"hybas_near": {"forecasts": [
                {"issuedTime": "2025-08-04T06:00:00Z", "forecastRanges": [
                    {"value": 100.0, "forecastStartTime": "2025-08-04T00:00:00Z"}]},
                {"issuedTime": "2025-08-05T06:00:00Z", "forecastRanges": [
                    {"value": 5100.0, "forecastStartTime": "2025-08-05T00:00:00Z",
                     "trend": "RISE", "severity": "ABOVE_NORMAL"},
                    {"value": 6500.0, "forecastStartTime": "2025-08-06T00:00:00Z",
                     "trend": "RISE", "severity": "DANGER"},
                ]},
            ]}}}),
        )
        adapter = GfhAdapter({"match_radius_km": 12}, session=session, api_key="secret")

        readings = adapter.fetch(gfh_basin, WINDOW)

        assert [r.value for r in readings] == [5100.0, 6500.0]
        assert readings[1].metadata["severity"] == "DANGER"
        assert readings[1].metadata["danger_level"] == 6200.0
        assert readings[0].metadata["gauge_id"] == "hybas_near"
        assert all(r.source == DataSource.GFH for r in readings)

        search_call = session.request.call_args_list[0]
        assert search_call[0][0] == "POST"
        assert search_call[0][1].endswith("gauges:searchGaugesByArea")
        assert search_call[1]["params"]["key"] == "secret"
        assert search_call[1]["json"]["regionCode"] == "NP"

    def test_not_configured_without_api_key(self, gfh_basin):
        adapter = GfhAdapter(session=_session(), api_key="")
        assert not adapter.is_configured(gfh_basin)
