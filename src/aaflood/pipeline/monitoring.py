"""
One monitoring cycle: collect readings, evaluate triggers, dispatch activities.

Fetching happens before any database work, so slow sources never hold a
transaction open. Reconciliation runs on its own cadence (see
``aaflood.chain``) and is not part of the cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ..activities.dispatcher import ActivityDispatcher
from ..config import BasinSettings, load_basin_settings
from ..errors import EvaluationError
from ..ingest.registry import ReadingCollector, SourceFailure
from ..ingest.types import FetchWindow
from ..phases.manager import PhaseManager
from ..triggers.evaluator import FiredTrigger, TriggerEvaluator
from ..utils.run_id import make_cycle_id

logger = logging.getLogger(__name__)


@dataclass
class CycleSummary:
    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    readings: int = 0
    failures: List[SourceFailure] = field(default_factory=list)
    fired: List[FiredTrigger] = field(default_factory=list)
    errors: List[EvaluationError] = field(default_factory=list)
    activities_completed: List[str] = field(default_factory=list)
    activities_pending: List[str] = field(default_factory=list)


class MonitoringCycle:
    def __init__(
        self,
        config: Dict[str, Any],
        collector: ReadingCollector,
        session: Session,
        dispatcher: ActivityDispatcher,
        evaluator: Optional[TriggerEvaluator] = None,
        basins: Optional[List[BasinSettings]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config
        self.collector = collector
        self.session = session
        self.dispatcher = dispatcher
        self.evaluator = evaluator or TriggerEvaluator(
            session, identity=config.get("evaluator", {}).get("identity", "aaflood-evaluator")
        )
        self.basins = basins if basins is not None else load_basin_settings(config)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def window_for(self, day: Optional[date] = None) -> FetchWindow:
        sources = self.config.get("sources", {})
        tz = ZoneInfo(sources.get("timezone", "UTC"))
        if day is None:
            day = self.clock().astimezone(tz).date()
        return FetchWindow.for_day(day, days_back=int(sources.get("window_days", 1)), tzinfo=tz)

    def run(self, day: Optional[date] = None) -> CycleSummary:
        summary = CycleSummary(cycle_id=make_cycle_id(now=self.clock()), started_at=self.clock())
        years = self.config.get("active_years") or []
        if not years:
            self.logger.warning("No active years configured; nothing to evaluate")

        window = self.window_for(day)
        self.logger.info(f"[{summary.cycle_id}] collecting {len(self.basins)} basins for {window.start} .. {window.end}")

        collected = self.collector.collect(self.basins, window)
        summary.readings = collected.total_readings
        summary.failures = list(collected.failures)

        phases = PhaseManager(self.session)
        for basin in self.basins:
            phases.ensure_source(basin.river_basin, basin.data_sources)
            phases.ensure_phases(basin.river_basin, years)
            self.session.commit()

            readings = collected.for_basin(basin.river_basin)
            for year in years:
                report = self.evaluator.run(basin.river_basin, year, readings)
                summary.fired.extend(report.fired)
                summary.errors.extend(report.errors)

                for event in report.fired:
                    dispatched = self.dispatcher.on_fired(event)
                    summary.activities_completed.extend(dispatched.completed)
                    summary.activities_pending.extend(dispatched.pending)

        summary.finished_at = self.clock()
        self.logger.info(
            f"[{summary.cycle_id}] done: {summary.readings} readings, {len(summary.failures)} source failures, "
            f"{len(summary.fired)} fired, {len(summary.errors)} evaluation errors"
        )
        return summary
