"""
Adapter lookup and concurrent reading collection.

One task is submitted per basin x source. Each HTTP call has its own timeout
inside the adapter, and the whole collection is bounded here. A failed or
timed-out task never aborts the others; it is recorded as "no new data this
cycle".
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from ..config import BasinSettings
from ..db.models import DataSource
from ..errors import FetchError, FetchErrorKind
from .base import SourceAdapter
from .dhm import DhmAdapter
from .gfh import GfhAdapter
from .glofas import GlofasAdapter
from .types import FetchWindow, Reading

logger = logging.getLogger(__name__)

ADAPTERS: Dict[DataSource, Type[SourceAdapter]] = {
    DataSource.DHM: DhmAdapter,
    DataSource.GLOFAS: GlofasAdapter,
    DataSource.GFH: GfhAdapter,
}


def build_adapters(config: Dict[str, Any]) -> Dict[DataSource, SourceAdapter]:
    """Instantiate every registered adapter from the loaded configuration."""
    sources = config.get("sources", {})
    adapters: Dict[DataSource, SourceAdapter] = {}
    for data_source, adapter_cls in ADAPTERS.items():
        settings = dict(sources)
        settings.update(config.get(data_source.value.lower(), {}) or {})
        adapters[data_source] = adapter_cls(settings)
    return adapters


@dataclass
class SourceFailure:
    basin: str
    source: DataSource
    kind: FetchErrorKind
    message: str


@dataclass
class CollectionResult:
    readings: Dict[str, List[Reading]] = field(default_factory=lambda: defaultdict(list))
    failures: List[SourceFailure] = field(default_factory=list)

    def for_basin(self, river_basin: str) -> List[Reading]:
        return list(self.readings.get(river_basin, []))

    @property
    def total_readings(self) -> int:
        return sum(len(r) for r in self.readings.values())


class ReadingCollector:
    def __init__(
        self,
        adapters: Dict[DataSource, SourceAdapter],
        max_workers: int = 4,
        task_timeout: Optional[float] = None,
    ):
        self.adapters = adapters
        self.max_workers = max_workers
        # seconds allowed per wave of tasks; the adapter HTTP timeout normally fires first
        self.task_timeout = task_timeout
        self.logger = logging.getLogger(__name__)

    def collect(self, basins: List[BasinSettings], window: FetchWindow) -> CollectionResult:
        result = CollectionResult()
        tasks: List[Tuple[BasinSettings, DataSource, SourceAdapter]] = []
        for basin in basins:
            for data_source, adapter in self.adapters.items():
                if adapter.is_configured(basin):
                    tasks.append((basin, data_source, adapter))

        if not tasks:
            self.logger.info("No configured sources to collect")
            return result

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        futures = {
            executor.submit(adapter.fetch, basin, window): (basin, data_source)
            for basin, data_source, adapter in tasks
        }
        pending = set(futures)
        overall_timeout = None
        if self.task_timeout is not None:
            waves = -(-len(tasks) // self.max_workers)
            overall_timeout = self.task_timeout * waves

        try:
            for future in as_completed(futures, timeout=overall_timeout):
                pending.discard(future)
                basin, data_source = futures[future]
                try:
                    readings = future.result()
                except FetchError as e:
                    self._record_failure(result, basin, data_source, e.kind, str(e))
                    continue
                except Exception as e:
                    self.logger.exception(f"{data_source.value}:{basin.river_basin}: unexpected adapter failure")
                    self._record_failure(result, basin, data_source, FetchErrorKind.UNEXPECTED_FORMAT, str(e))
                    continue

                result.readings[basin.river_basin].extend(readings)
                self.logger.info(f"{data_source.value}:{basin.river_basin}: {len(readings)} readings")
        except FuturesTimeoutError:
            for future in pending:
                future.cancel()
                basin, data_source = futures[future]
                self._record_failure(
                    result, basin, data_source, FetchErrorKind.TIMEOUT,
                    f"no result within {overall_timeout}s",
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return result

    def _record_failure(
        self,
        result: CollectionResult,
        basin: BasinSettings,
        data_source: DataSource,
        kind: FetchErrorKind,
        message: str,
    ) -> None:
        self.logger.warning(f"{data_source.value}:{basin.river_basin}: no new data this cycle ({kind.value}): {message}")
        result.failures.append(SourceFailure(basin.river_basin, data_source, kind, message))
