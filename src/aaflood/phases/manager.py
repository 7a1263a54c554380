"""
Per-basin, per-year phase state.

Phases are created lazily for every active year and never deleted. The
"current" phase is derived from trigger state rather than stored, so it can
never drift from the triggers that justify it.
"""

from __future__ import annotations

import logging
import uuid as uuid_lib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import PHASE_ORDER, Activity, ActivityStatus, Phase, PhaseName, Source, Trigger
from ..errors import PhaseError
from ..utils.timediff import format_completion_difference

logger = logging.getLogger(__name__)


def next_phase(name: PhaseName) -> Optional[PhaseName]:
    """The phase after ``name`` in PHASE_ORDER, or None for the last one."""
    index = PHASE_ORDER.index(PhaseName(name))
    if index + 1 < len(PHASE_ORDER):
        return PHASE_ORDER[index + 1]
    return None


@dataclass
class PhaseTriggerStats:
    total_mandatory: int = 0
    mandatory_triggered: int = 0
    total_optional: int = 0
    optional_triggered: int = 0
    triggers: List[Trigger] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.triggers)


class PhaseManager:
    def __init__(self, session: Session):
        self.session = session
        self.logger = logging.getLogger(__name__)

    # -----------------------------
    # Creation
    # -----------------------------
    def ensure_source(self, river_basin: str, data_sources: Optional[List[str]] = None) -> Source:
        source = self.session.execute(
            select(Source).where(Source.river_basin == river_basin)
        ).scalar_one_or_none()
        if source is not None:
            return source

        try:
            with self.session.begin_nested():
                source = Source(river_basin=river_basin, sources=list(data_sources or []))
                self.session.add(source)
        except IntegrityError:
            # created concurrently
            source = self.session.execute(
                select(Source).where(Source.river_basin == river_basin)
            ).scalar_one()
        return source

    def ensure_phases(self, river_basin: str, active_years: Iterable[int]) -> List[Phase]:
        """
        Make sure every phase exists for every active year of the basin.

        Existing rows are returned untouched, so repeated calls change neither
        row counts nor timestamps.
        """
        self.ensure_source(river_basin)

        phases: List[Phase] = []
        created = 0
        for year in sorted(set(int(y) for y in active_years)):
            for name in PHASE_ORDER:
                phase = self._get_phase(river_basin, year, name)
                if phase is None:
                    phase = self._insert_phase(river_basin, year, name)
                    created += 1
                phases.append(phase)

        self.session.flush()
        if created:
            self.logger.info(f"{river_basin}: created {created} phases")
        return phases

    def _get_phase(self, river_basin: str, year: int, name: PhaseName) -> Optional[Phase]:
        return self.session.execute(
            select(Phase).where(
                Phase.river_basin == river_basin,
                Phase.active_year == year,
                Phase.name == name,
            )
        ).scalar_one_or_none()

    def _insert_phase(self, river_basin: str, year: int, name: PhaseName) -> Phase:
        try:
            with self.session.begin_nested():
                phase = Phase(river_basin=river_basin, active_year=year, name=name)
                self.session.add(phase)
            return phase
        except IntegrityError:
            self.logger.info(f"{river_basin}/{year}/{name.value}: created concurrently, reusing")
            return self._get_phase(river_basin, year, name)

    # -----------------------------
    # Queries
    # -----------------------------
    def get_phase(self, river_basin: str, active_year: int, name: PhaseName) -> Optional[Phase]:
        return self._get_phase(river_basin, active_year, PhaseName(name))

    def current_phase(self, river_basin: str, active_year: int) -> PhaseName:
        """
        The most advanced phase holding at least one triggered, non-deleted
        mandatory trigger; PREPAREDNESS when there is none.
        """
        rows = self.session.execute(
            select(Phase.name)
            .join(Trigger, Trigger.phase_id == Phase.id)
            .where(
                Phase.river_basin == river_basin,
                Phase.active_year == active_year,
                Trigger.is_mandatory.is_(True),
                Trigger.is_triggered.is_(True),
                Trigger.is_deleted.is_(False),
            )
            .distinct()
        ).scalars().all()

        if not rows:
            return PHASE_ORDER[0]
        return max((PhaseName(r) for r in rows), key=PHASE_ORDER.index)

    # -----------------------------
    # Activation bookkeeping
    # -----------------------------
    def activate_if_ready(self, phase: Phase, now: Optional[datetime] = None) -> bool:
        """
        Mark ``phase`` active once its mandatory and optional trigger
        requirements are met. Phases without any requirement never activate
        automatically. Returns True only on the call that activates.
        """
        if phase.is_active:
            return False

        required_mandatory = phase.required_mandatory_triggers or 0
        required_optional = phase.required_optional_triggers or 0
        if required_mandatory == 0 and required_optional == 0:
            return False

        counts = dict(
            self.session.execute(
                select(Trigger.is_mandatory, func.count(Trigger.id))
                .where(
                    Trigger.phase_id == phase.id,
                    Trigger.is_triggered.is_(True),
                    Trigger.is_deleted.is_(False),
                )
                .group_by(Trigger.is_mandatory)
            ).all()
        )
        received_mandatory = counts.get(True, 0)
        received_optional = counts.get(False, 0)

        if received_mandatory < required_mandatory or received_optional < required_optional:
            return False

        phase.is_active = True
        phase.activated_at = now or datetime.now(timezone.utc)
        self.session.flush()
        self.logger.info(
            f"{phase.river_basin}/{phase.active_year}: phase {phase.name.value} activated "
            f"(mandatory {received_mandatory}/{required_mandatory}, optional {received_optional}/{required_optional})"
        )
        return True

    def trigger_stats(self, phase: Phase) -> PhaseTriggerStats:
        """Counts of the phase's non-deleted triggers, split by mandatory and fired."""
        triggers = list(
            self.session.execute(
                select(Trigger)
                .where(Trigger.phase_id == phase.id, Trigger.is_deleted.is_(False))
                .order_by(Trigger.id)
            ).scalars()
        )
        stats = PhaseTriggerStats(triggers=triggers)
        for trigger in triggers:
            if trigger.is_mandatory:
                stats.total_mandatory += 1
                stats.mandatory_triggered += int(trigger.is_triggered)
            else:
                stats.total_optional += 1
                stats.optional_triggered += int(trigger.is_triggered)
        return stats

    # -----------------------------
    # Revert
    # -----------------------------
    def revert_phase(self, phase_uuid: str) -> Phase:
        """
        Undo an activation so the phase can be reached again.

        Only an active phase flagged ``can_revert`` that still has triggers can
        be reverted. Every trigger starts a new repeat-key period and is reset
        to unfired; its firing history is kept. Completed activities of the
        phase that never got a completion difference are measured against the
        activation time before it is cleared.

        Raises:
            PhaseError: unknown phase, or the phase cannot be reverted.
        """
        phase = self.session.execute(
            select(Phase).where(Phase.uuid == phase_uuid)
        ).scalar_one_or_none()
        if phase is None:
            raise PhaseError(f"phase {phase_uuid} not found")

        triggers = self.trigger_stats(phase).triggers
        if not triggers or not phase.is_active or not phase.can_revert:
            raise PhaseError(f"phase {phase_uuid} cannot be reverted")

        backfilled = self._backfill_completion_differences(phase)

        for trigger in triggers:
            trigger.repeat_key = str(uuid_lib.uuid4())
            trigger.is_triggered = False
            trigger.triggered_at = None
            trigger.triggered_by = None

        phase.is_active = False
        phase.activated_at = None
        self.session.flush()
        self.logger.info(
            f"{phase.river_basin}/{phase.active_year}: phase {phase.name.value} reverted "
            f"({len(triggers)} triggers reset, {backfilled} activities backfilled)"
        )
        return phase

    def _backfill_completion_differences(self, phase: Phase) -> int:
        if phase.activated_at is None:
            return 0
        activities = self.session.execute(
            select(Activity).where(
                Activity.phase_id == phase.id,
                Activity.status == ActivityStatus.COMPLETED,
                Activity.is_deleted.is_(False),
                Activity.completed_at.is_not(None),
                Activity.difference_in_trigger_and_activity_completion.is_(None),
            )
        ).scalars().all()
        for activity in activities:
            activity.difference_in_trigger_and_activity_completion = format_completion_difference(
                phase.activated_at, activity.completed_at
            )
        return len(activities)
