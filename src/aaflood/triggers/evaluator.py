"""
Trigger evaluation and exactly-once firing.

A trigger fires through a single conditional UPDATE guarded on its repeat
key, so two evaluators racing on the same trigger cannot both fire it and a
trigger never fires twice within one repeat-key period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ..db.models import DataSource, Phase, PhaseName, Trigger, TriggerHistory
from ..errors import EvaluationError, FieldMismatch
from ..ingest.types import Reading
from ..phases.manager import PhaseManager, next_phase
from .statement import Statement, parse_statement

logger = logging.getLogger(__name__)
operator_log = logging.getLogger("aaflood.operator")

DEFAULT_IDENTITY = "aaflood-evaluator"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FiredTrigger:
    """Emitted once per successful firing."""
    trigger_uuid: str
    phase_id: int
    phase_name: PhaseName
    river_basin: str
    active_year: int
    repeat_key: str
    triggered_at: datetime
    triggered_by: str
    reading: Optional[Dict[str, Any]] = None


@dataclass
class EvaluationReport:
    fired: List[FiredTrigger] = field(default_factory=list)
    errors: List[EvaluationError] = field(default_factory=list)
    evaluated: int = 0


class TriggerEvaluator:
    def __init__(
        self,
        session: Session,
        identity: str = DEFAULT_IDENTITY,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.identity = identity
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # -----------------------------
    # Authoring
    # -----------------------------
    def create_trigger(
        self,
        phase: Phase,
        title: str,
        data_source: DataSource,
        trigger_statement: Dict[str, Any],
        is_mandatory: bool = False,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        repeat_key: Optional[str] = None,
    ) -> Trigger:
        """
        Create a trigger after validating its statement.

        Raises:
            MalformedStatement: the statement does not parse (MANUAL triggers
                carry no statement and are not validated).
        """
        data_source = DataSource(data_source)
        if data_source != DataSource.MANUAL:
            parse_statement(trigger_statement)

        trigger = Trigger(
            phase_id=phase.id,
            title=title,
            data_source=data_source,
            trigger_statement=trigger_statement or {},
            is_mandatory=is_mandatory,
            description=description,
            notes=notes,
        )
        if repeat_key is not None:
            trigger.repeat_key = repeat_key
        self.session.add(trigger)
        self.session.flush()
        return trigger

    # -----------------------------
    # Evaluation
    # -----------------------------
    def eligible_phase_names(self, current_phase: PhaseName) -> List[PhaseName]:
        names = [PhaseName(current_phase)]
        following = next_phase(current_phase)
        if following is not None:
            names.append(following)
        return names

    def load_triggers(self, river_basin: str, active_year: int, current_phase: PhaseName) -> List[Trigger]:
        """Non-deleted, non-manual triggers of the current and next phase."""
        return list(
            self.session.execute(
                select(Trigger)
                .join(Phase, Trigger.phase_id == Phase.id)
                .where(
                    Phase.river_basin == river_basin,
                    Phase.active_year == active_year,
                    Phase.name.in_(self.eligible_phase_names(current_phase)),
                    Trigger.is_deleted.is_(False),
                    Trigger.data_source != DataSource.MANUAL,
                )
                .order_by(Trigger.id)
            ).scalars()
        )

    def evaluate(
        self,
        current_phase: PhaseName,
        triggers: Sequence[Trigger],
        readings: Iterable[Reading],
    ) -> EvaluationReport:
        """
        Evaluate ``triggers`` against ``readings`` and fire those satisfied.

        Triggers outside the current/next phase, deleted or manual triggers
        and triggers with no reading from their own source are skipped.
        Errors are isolated per trigger and collected in the report.
        """
        report = EvaluationReport()
        eligible_names = set(self.eligible_phase_names(current_phase))

        by_source: Dict[DataSource, List[Reading]] = {}
        for reading in readings:
            by_source.setdefault(reading.source, []).append(reading)

        for trigger in triggers:
            if trigger.is_deleted or trigger.data_source == DataSource.MANUAL:
                continue
            if trigger.phase.name not in eligible_names:
                continue
            candidates = [
                r for r in by_source.get(trigger.data_source, [])
                if r.basin == trigger.phase.river_basin
            ]
            if not candidates:
                continue

            report.evaluated += 1
            try:
                matched = self._first_match(trigger, candidates)
            except EvaluationError as e:
                e.trigger_uuid = trigger.uuid
                report.errors.append(e)
                operator_log.error(f"trigger {trigger.uuid} ({trigger.title}): {e}")
                continue

            if matched is None:
                continue

            fired = self._fire(trigger, self.identity, matched)
            if fired is not None:
                report.fired.append(fired)

        self.session.commit()
        self.logger.info(
            f"Evaluated {report.evaluated} triggers: {len(report.fired)} fired, {len(report.errors)} errors"
        )
        return report

    def run(self, river_basin: str, active_year: int, readings: Iterable[Reading]) -> EvaluationReport:
        """Resolve the current phase and evaluate the basin's eligible triggers."""
        current = PhaseManager(self.session).current_phase(river_basin, active_year)
        triggers = self.load_triggers(river_basin, active_year, current)
        return self.evaluate(current, triggers, readings)

    def _first_match(self, trigger: Trigger, readings: List[Reading]) -> Optional[Reading]:
        statement: Statement = parse_statement(trigger.trigger_statement)

        # a reading lacking a referenced field simply does not match;
        # only when no reading could be evaluated is it an error
        last_mismatch: Optional[FieldMismatch] = None
        evaluated_any = False
        for reading in readings:
            try:
                satisfied = statement.evaluate(reading)
            except FieldMismatch as e:
                last_mismatch = e
                continue
            evaluated_any = True
            if satisfied:
                return reading

        if not evaluated_any and last_mismatch is not None:
            raise last_mismatch
        return None

    # -----------------------------
    # Firing
    # -----------------------------
    def _fire(self, trigger: Trigger, triggered_by: str, reading: Optional[Reading]) -> Optional[FiredTrigger]:
        now = self.clock()
        repeat_key = trigger.repeat_key

        result = self.session.execute(
            update(Trigger)
            .where(
                Trigger.id == trigger.id,
                Trigger.repeat_key == repeat_key,
                or_(Trigger.fired_repeat_key.is_(None), Trigger.fired_repeat_key != repeat_key),
            )
            .values(
                is_triggered=True,
                triggered_at=now,
                triggered_by=triggered_by,
                fired_repeat_key=repeat_key,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.logger.debug(f"trigger {trigger.uuid}: already fired for repeat key {repeat_key}")
            return None

        snapshot = reading.snapshot() if reading is not None else {}
        self.session.add(TriggerHistory(
            trigger_id=trigger.id,
            repeat_key=repeat_key,
            triggered_at=now,
            triggered_by=triggered_by,
            reading=snapshot,
        ))
        self.session.flush()
        self.session.refresh(trigger)

        phase = trigger.phase
        self.logger.info(f"Trigger fired: {trigger.title} ({trigger.uuid}) in {phase.river_basin}/{phase.name.value}")
        return FiredTrigger(
            trigger_uuid=trigger.uuid,
            phase_id=phase.id,
            phase_name=phase.name,
            river_basin=phase.river_basin,
            active_year=phase.active_year,
            repeat_key=repeat_key,
            triggered_at=now,
            triggered_by=triggered_by,
            reading=snapshot or None,
        )

    def fire_manually(self, trigger_uuid: str, user: str) -> Optional[FiredTrigger]:
        """Fire a trigger on an operator's behalf; None if it already fired this period."""
        trigger = self._get(trigger_uuid)
        if trigger.is_deleted:
            raise EvaluationError("trigger is deleted", trigger_uuid=trigger_uuid)
        fired = self._fire(trigger, user, None)
        self.session.commit()
        return fired

    def roll_repeat_key(self, trigger_uuid: str, new_key: str) -> Trigger:
        """
        Start a new firing period. The trigger may fire again once;
        its history is kept.
        """
        trigger = self._get(trigger_uuid)
        if new_key == trigger.repeat_key:
            return trigger
        trigger.repeat_key = new_key
        self.session.commit()
        self.logger.info(f"trigger {trigger_uuid}: repeat key rolled to {new_key}")
        return trigger

    def _get(self, trigger_uuid: str) -> Trigger:
        trigger = self.session.execute(
            select(Trigger).where(Trigger.uuid == trigger_uuid)
        ).scalar_one_or_none()
        if trigger is None:
            raise EvaluationError(f"unknown trigger {trigger_uuid}", trigger_uuid=trigger_uuid)
        return trigger
