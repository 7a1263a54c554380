"""
Activity dispatch on trigger firing.

Activities are first marked WORK_IN_PROGRESS and committed, then their
external side effects run on a thread pool with no transaction open. Only
activities whose side effects all succeeded are completed; the rest stay
WORK_IN_PROGRESS and are picked up again by ``retry_pending``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import Activity, ActivityStatus, Phase, Trigger
from ..errors import DispatchError
from ..phases.manager import PhaseManager
from ..triggers.evaluator import FiredTrigger
from ..utils.timediff import as_utc, format_completion_difference
from .comms import CommsClient

logger = logging.getLogger(__name__)

DISPATCHABLE = (ActivityStatus.NOT_STARTED, ActivityStatus.WORK_IN_PROGRESS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DispatchReport:
    completed: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    payout_requested: bool = False


class ActivityDispatcher:
    def __init__(
        self,
        session: Session,
        comms: CommsClient,
        completed_by: str = "aaflood-dispatcher",
        max_workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.comms = comms
        self.completed_by = completed_by
        self.max_workers = max_workers
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # -----------------------------
    # Entry points
    # -----------------------------
    def on_fired(self, event: FiredTrigger) -> DispatchReport:
        """Dispatch the automated activities released by one firing."""
        trigger = self.session.execute(
            select(Trigger).where(Trigger.uuid == event.trigger_uuid)
        ).scalar_one()

        activities = [
            activity for activity in self._automated_activities(event.phase_id)
            if not activity.triggers or any(t.id == trigger.id for t in activity.triggers)
        ]
        self.logger.info(f"Trigger {event.trigger_uuid}: {len(activities)} automated activities to dispatch")

        report = self._dispatch([(activity, event.triggered_at) for activity in activities])
        report.payout_requested = self._activate_phase(trigger.phase)
        return report

    def retry_pending(self) -> DispatchReport:
        """Re-dispatch automated activities left WORK_IN_PROGRESS by a failed send."""
        activities = self.session.execute(
            select(Activity).where(
                Activity.is_automated.is_(True),
                Activity.is_deleted.is_(False),
                Activity.status == ActivityStatus.WORK_IN_PROGRESS,
            ).order_by(Activity.id)
        ).scalars().all()

        jobs = []
        for activity in activities:
            triggered_at = self._reference_time(activity)
            if triggered_at is None:
                continue
            jobs.append((activity, triggered_at))

        self.logger.info(f"Retrying {len(jobs)} pending activities")
        return self._dispatch(jobs)

    # -----------------------------
    # Internals
    # -----------------------------
    def _automated_activities(self, phase_id: int) -> List[Activity]:
        return list(
            self.session.execute(
                select(Activity).where(
                    Activity.phase_id == phase_id,
                    Activity.is_automated.is_(True),
                    Activity.is_deleted.is_(False),
                    Activity.status.in_(DISPATCHABLE),
                ).order_by(Activity.id)
            ).scalars()
        )

    def _reference_time(self, activity: Activity) -> Optional[datetime]:
        """Latest firing among the activity's linked triggers, or its phase's triggers."""
        candidates = activity.triggers or activity.phase.triggers
        fired = [t.triggered_at for t in candidates if t.is_triggered and not t.is_deleted and t.triggered_at]
        if not fired:
            return None
        return max(fired, key=as_utc)

    def _dispatch(self, jobs: List[Tuple[Activity, datetime]]) -> DispatchReport:
        report = DispatchReport()
        if not jobs:
            return report

        # status is committed before any external call is made
        work: Dict[str, Tuple[List[Dict[str, Any]], datetime]] = {}
        for activity, triggered_at in jobs:
            activity.status = ActivityStatus.WORK_IN_PROGRESS
            work[activity.uuid] = (list(activity.communications or []), triggered_at)
        self.session.commit()

        succeeded: List[str] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._send_all, uuid, communications): uuid
                for uuid, (communications, _) in work.items()
            }
            for future in as_completed(futures):
                uuid = futures[future]
                try:
                    future.result()
                except DispatchError as e:
                    self.logger.warning(f"Activity {uuid}: dispatch failed, will retry: {e}")
                    report.pending.append(uuid)
                    continue
                except Exception:
                    self.logger.exception(f"Activity {uuid}: unexpected dispatch error, will retry")
                    report.pending.append(uuid)
                    continue
                succeeded.append(uuid)

        for activity, _ in jobs:
            if activity.uuid not in succeeded:
                continue
            completed_at = self.clock()
            activity.status = ActivityStatus.COMPLETED
            activity.completed_at = completed_at
            activity.completed_by = self.completed_by
            activity.difference_in_trigger_and_activity_completion = format_completion_difference(
                work[activity.uuid][1], completed_at
            )
            report.completed.append(activity.uuid)
        self.session.commit()

        self.logger.info(f"Dispatch finished: {len(report.completed)} completed, {len(report.pending)} pending")
        return report

    def _send_all(self, activity_uuid: str, communications: List[Dict[str, Any]]) -> int:
        for communication in communications:
            self.comms.send_communication(activity_uuid, communication)
        return len(communications)

    def _activate_phase(self, phase: Phase) -> bool:
        """Activate the phase if its requirements are now met; request the payout once."""
        if not PhaseManager(self.session).activate_if_ready(phase, now=self.clock()):
            return False
        self.session.commit()

        if not phase.can_trigger_payout:
            return False
        try:
            self.comms.disburse(phase.uuid, phase.river_basin, phase.active_year)
        except DispatchError as e:
            self.logger.error(f"Phase {phase.uuid}: payout request failed: {e}")
            return False
        self.logger.info(f"Phase {phase.uuid}: payout requested")
        return True
