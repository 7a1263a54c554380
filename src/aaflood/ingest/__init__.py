"""
Source adapters turning external telemetry and forecasts into Readings.
"""

from .types import FetchWindow, Reading
from .glofas_parser import ForecastBundle, parse_glofas_forecast
from .base import SourceAdapter
from .dhm import DhmAdapter
from .glofas import GlofasAdapter
from .gfh import GfhAdapter
from .registry import ADAPTERS, CollectionResult, ReadingCollector, build_adapters

__all__ = [
    "FetchWindow",
    "Reading",
    "ForecastBundle",
    "parse_glofas_forecast",
    "SourceAdapter",
    "DhmAdapter",
    "GlofasAdapter",
    "GfhAdapter",
    "ADAPTERS",
    "CollectionResult",
    "ReadingCollector",
    "build_adapters",
]
