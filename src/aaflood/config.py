"""
Configuration module for aaflood.

Provides centralized configuration loading and management. The YAML file
holds per-basin data-source settings; secrets and the active-year list can be
overridden from the environment.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()


DEFAULT_CONFIG: Dict[str, Any] = {
    'active_years': [],
    'evaluator': {
        'identity': 'aaflood-evaluator',
    },
    'sources': {
        'timeout_seconds': 30,
        'max_workers': 4,
        'window_days': 1,
        'timezone': 'Asia/Kathmandu',
    },
    'gfh': {
        'base_url': 'https://floodforecasting.googleapis.com/v1',
        'region_code': 'NP',
        'page_size': 1000,
        'match_radius_km': 12,
        'days_back': 7,
    },
    'comms': {
        'base_url': 'http://localhost:5500/v1',
        'timeout_seconds': 30,
        'max_workers': 4,
        'completed_by': 'aaflood-dispatcher',
    },
    'chain': {
        'endpoint': 'http://localhost:5500/v1/actions',
        'batch_size': 2,
        'delay_seconds': 4,
        'timeout_seconds': 30,
        'dry_run': False,
    },
    'basins': {},
}


@dataclass
class DhmSeries:
    """One telemetry series for a basin (e.g. water level at a station)."""
    type: str  # "WATER_LEVEL" | "RAINFALL"
    series_id: str


@dataclass
class DhmSettings:
    url: str
    location: str
    series: List[DhmSeries] = field(default_factory=list)


@dataclass
class GlofasSettings:
    url: str
    bbox: str
    i: str
    j: str


@dataclass
class GfhSettings:
    station_id: str
    latitude: float
    longitude: float
    river_gauge_id: Optional[str] = None


@dataclass
class BasinSettings:
    """Data-source settings for one river basin, loaded once at startup."""
    river_basin: str
    dhm: Optional[DhmSettings] = None
    glofas: Optional[GlofasSettings] = None
    gfh: Optional[GfhSettings] = None

    @property
    def data_sources(self) -> List[str]:
        configured = []
        if self.dhm:
            configured.append('DHM')
        if self.glofas:
            configured.append('GLOFAS')
        if self.gfh:
            configured.append('GFH')
        return configured


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses AAFLOOD_CONFIG or the
            default location under the project root.

    Returns:
        Configuration dictionary, merged over the built-in defaults
    """
    if config_path is None:
        config_path = os.getenv('AAFLOOD_CONFIG')
    if config_path is None:
        project_root = Path(__file__).parent.parent.parent
        candidate = project_root / "config" / "config.yaml"
        if candidate.exists():
            config_path = str(candidate)

    loaded: Dict[str, Any] = {}
    if config_path is not None:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}

    config = _merge(DEFAULT_CONFIG, loaded)

    env_years = os.getenv('ACTIVE_YEAR')
    if env_years:
        config['active_years'] = parse_active_years(env_years)

    return config


def parse_active_years(raw: Any) -> List[int]:
    """
    Normalize the ACTIVE_YEAR setting into a sorted list of unique years.

    Accepts a JSON list string ("[2024, 2025]"), a single year, or a list.
    """
    if isinstance(raw, str):
        raw = raw.strip()
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValueError(f"ACTIVE_YEAR must be a JSON list of years, got {raw!r}")
    if isinstance(raw, (int, str)):
        raw = [raw]
    years = sorted({int(year) for year in raw})
    return years


def load_basin_settings(config: Dict[str, Any]) -> List[BasinSettings]:
    """Parse the ``basins`` section into typed settings."""
    basins: List[BasinSettings] = []
    for river_basin, sources in (config.get('basins') or {}).items():
        sources = sources or {}
        settings = BasinSettings(river_basin=river_basin)

        dhm = sources.get('DHM')
        if dhm:
            settings.dhm = DhmSettings(
                url=dhm['url'].rstrip('/'),
                location=dhm.get('location', river_basin),
                series=[
                    DhmSeries(type=s['type'].upper(), series_id=str(s['series_id']))
                    for s in dhm.get('series', [])
                ],
            )

        glofas = sources.get('GLOFAS')
        if glofas:
            settings.glofas = GlofasSettings(
                url=glofas['url'],
                bbox=glofas['bbox'],
                i=str(glofas['i']),
                j=str(glofas['j']),
            )

        gfh = sources.get('GFH')
        if gfh:
            settings.gfh = GfhSettings(
                station_id=str(gfh['station_id']),
                latitude=float(gfh['latitude']),
                longitude=float(gfh['longitude']),
                river_gauge_id=gfh.get('river_gauge_id'),
            )

        basins.append(settings)
    return basins


def get_floods_api_key() -> str:
    """API key for the flood-forecasting (GFH) feed."""
    return os.getenv('FLOODS_API_KEY', '')


def get_chain_access_token() -> str:
    return os.getenv('CHAIN_ACCESS_TOKEN', '')
