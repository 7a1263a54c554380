"""
Tests for phase creation, ordering, the current-phase rule, stats and reverts.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from aaflood.db.models import PHASE_ORDER, ActivityStatus, Phase, PhaseName, Source, TriggerHistory
from aaflood.errors import PhaseError
from aaflood.phases.manager import PhaseManager, next_phase
from aaflood.triggers.evaluator import TriggerEvaluator

from conftest import BASIN, YEAR, make_reading


class TestPhaseOrder:

    def test_order(self):
        assert PHASE_ORDER == (PhaseName.PREPAREDNESS, PhaseName.ACTIVATION, PhaseName.READINESS)

    def test_next_phase(self):
        assert next_phase(PhaseName.PREPAREDNESS) == PhaseName.ACTIVATION
        assert next_phase(PhaseName.ACTIVATION) == PhaseName.READINESS
        assert next_phase(PhaseName.READINESS) is None

    def test_next_phase_accepts_plain_strings(self):
        assert next_phase("PREPAREDNESS") == PhaseName.ACTIVATION


class TestEnsurePhases:

    def test_creates_three_phases_per_year(self, session):
        manager = PhaseManager(session)
        phases = manager.ensure_phases(BASIN, [2024, 2025])
        session.commit()

        assert len(phases) == 6
        assert session.scalar(select(func.count(Phase.id))) == 6
        assert session.scalar(select(func.count(Source.id))) == 1
        assert {(p.active_year, p.name) for p in phases} == {
            (year, name) for year in (2024, 2025) for name in PHASE_ORDER
        }

    def test_idempotent(self, session):
        manager = PhaseManager(session)
        first = manager.ensure_phases(BASIN, [YEAR])
        session.commit()
        stamps = {p.id: (p.created_at, p.updated_at) for p in first}

        second = manager.ensure_phases(BASIN, [YEAR, YEAR])
        session.commit()

        assert session.scalar(select(func.count(Phase.id))) == 3
        assert [p.id for p in second] == [p.id for p in first]
        for phase in second:
            session.refresh(phase)
            assert (phase.created_at, phase.updated_at) == stamps[phase.id]

    def test_adds_only_missing_years(self, session):
        manager = PhaseManager(session)
        manager.ensure_phases(BASIN, [2024])
        session.commit()
        manager.ensure_phases(BASIN, [2024, 2025])
        session.commit()
        assert session.scalar(select(func.count(Phase.id))) == 6

    def test_existing_source_is_reused(self, session):
        session.add(Source(river_basin=BASIN, sources=["DHM"]))
        session.commit()

        source = PhaseManager(session).ensure_source(BASIN, ["DHM", "GLOFAS"])

        assert source.sources == ["DHM"]
        assert session.scalar(select(func.count(Source.id))) == 1


class TestCurrentPhase:

    def test_defaults_to_preparedness(self, session, phases):
        assert PhaseManager(session).current_phase(BASIN, YEAR) == PhaseName.PREPAREDNESS

    def test_most_advanced_triggered_mandatory(self, session, phases, make_trigger):
        make_trigger(phases[PhaseName.PREPAREDNESS], is_mandatory=True, is_triggered=True)
        make_trigger(phases[PhaseName.ACTIVATION], is_mandatory=True, is_triggered=True)

        assert PhaseManager(session).current_phase(BASIN, YEAR) == PhaseName.ACTIVATION

    def test_optional_and_deleted_triggers_do_not_advance(self, session, phases, make_trigger):
        make_trigger(phases[PhaseName.ACTIVATION], is_mandatory=False, is_triggered=True)
        make_trigger(phases[PhaseName.READINESS], is_mandatory=True, is_triggered=True, is_deleted=True)

        assert PhaseManager(session).current_phase(BASIN, YEAR) == PhaseName.PREPAREDNESS

    def test_other_years_are_ignored(self, session, phases, make_trigger):
        other = PhaseManager(session).ensure_phases(BASIN, [2026])
        session.commit()
        readiness_2026 = next(p for p in other if p.name == PhaseName.READINESS)
        make_trigger(readiness_2026, is_mandatory=True, is_triggered=True)

        assert PhaseManager(session).current_phase(BASIN, YEAR) == PhaseName.PREPAREDNESS
        assert PhaseManager(session).current_phase(BASIN, 2026) == PhaseName.READINESS


class TestActivateIfReady:

    NOW = datetime(2025, 8, 5, 8, 0, tzinfo=timezone.utc)

    def test_without_requirements_never_activates(self, session, phases, make_trigger):
        phase = phases[PhaseName.ACTIVATION]
        make_trigger(phase, is_mandatory=True, is_triggered=True)

        assert PhaseManager(session).activate_if_ready(phase, now=self.NOW) is False
        assert phase.is_active is False

    def test_activates_once_requirements_met(self, session, phases, make_trigger):
        phase = phases[PhaseName.ACTIVATION]
        phase.required_mandatory_triggers = 1
        phase.required_optional_triggers = 1
        session.commit()

        make_trigger(phase, is_mandatory=True, is_triggered=True)
        optional = make_trigger(phase, is_mandatory=False)
        manager = PhaseManager(session)

        assert manager.activate_if_ready(phase, now=self.NOW) is False

        optional.is_triggered = True
        session.commit()

        assert manager.activate_if_ready(phase, now=self.NOW) is True
        assert phase.is_active is True
        assert phase.activated_at == self.NOW
        assert manager.activate_if_ready(phase, now=self.NOW) is False


class TestTriggerStats:

    def test_counts(self, session, phases, make_trigger):
        phase = phases[PhaseName.ACTIVATION]
        make_trigger(phase, is_mandatory=True, is_triggered=True)
        make_trigger(phase, is_mandatory=True)
        make_trigger(phase, is_mandatory=False, is_triggered=True)
        make_trigger(phase, is_mandatory=True, is_triggered=True, is_deleted=True)
        make_trigger(phases[PhaseName.READINESS], is_mandatory=True, is_triggered=True)

        stats = PhaseManager(session).trigger_stats(phase)

        assert stats.total == 3
        assert (stats.total_mandatory, stats.mandatory_triggered) == (2, 1)
        assert (stats.total_optional, stats.optional_triggered) == (1, 1)

    def test_empty_phase(self, session, phases):
        stats = PhaseManager(session).trigger_stats(phases[PhaseName.READINESS])
        assert stats.total == 0
        assert stats.triggers == []


class TestRevertPhase:

    ACTIVATED_AT = datetime(2025, 8, 5, 8, 0, tzinfo=timezone.utc)

    @pytest.fixture
    def active_phase(self, session, phases, make_trigger, make_activity):
        """An activated, revertible phase with one fired trigger and one completed activity."""
        phase = phases[PhaseName.ACTIVATION]
        phase.can_revert = True
        phase.required_mandatory_triggers = 1
        session.commit()

        trigger = make_trigger(phase, is_mandatory=True, repeat_key="2025-cycle-1")
        report = TriggerEvaluator(session, clock=lambda: self.ACTIVATED_AT).evaluate(
            PhaseName.PREPAREDNESS, [trigger], [make_reading(120.0)]
        )
        assert len(report.fired) == 1
        assert PhaseManager(session).activate_if_ready(phase, now=self.ACTIVATED_AT) is True

        activity = make_activity(
            phase,
            title="Cash transfer",
            status=ActivityStatus.COMPLETED,
            completed_at=self.ACTIVATED_AT + timedelta(hours=2),
        )
        session.commit()
        return phase, trigger, activity

    def test_revert(self, session, active_phase):
        phase, trigger, activity = active_phase

        PhaseManager(session).revert_phase(phase.uuid)
        session.commit()

        session.refresh(phase)
        session.refresh(trigger)
        session.refresh(activity)
        assert phase.is_active is False
        assert phase.activated_at is None
        assert trigger.is_triggered is False
        assert trigger.triggered_at is None
        assert trigger.repeat_key != "2025-cycle-1"
        assert activity.difference_in_trigger_and_activity_completion == "2 hours"
        assert PhaseManager(session).current_phase(BASIN, YEAR) == PhaseName.PREPAREDNESS

        history = session.execute(select(TriggerHistory)).scalars().all()
        assert [h.repeat_key for h in history] == ["2025-cycle-1"]

    def test_reverted_trigger_fires_again(self, session, active_phase):
        phase, trigger, _ = active_phase
        PhaseManager(session).revert_phase(phase.uuid)
        session.commit()

        report = TriggerEvaluator(session).evaluate(PhaseName.PREPAREDNESS, [trigger], [make_reading(130.0)])

        assert [f.trigger_uuid for f in report.fired] == [trigger.uuid]
        assert session.scalar(select(func.count(TriggerHistory.id))) == 2

    def test_requires_can_revert(self, session, active_phase):
        phase, _, _ = active_phase
        phase.can_revert = False
        session.commit()

        with pytest.raises(PhaseError):
            PhaseManager(session).revert_phase(phase.uuid)

    def test_requires_active_phase_with_triggers(self, session, phases, make_trigger):
        phase = phases[PhaseName.READINESS]
        phase.can_revert = True
        session.commit()
        manager = PhaseManager(session)

        with pytest.raises(PhaseError):
            manager.revert_phase(phase.uuid)

        make_trigger(phase)
        with pytest.raises(PhaseError):
            manager.revert_phase(phase.uuid)

    def test_unknown_phase(self, session):
        with pytest.raises(PhaseError):
            PhaseManager(session).revert_phase("no-such-phase")
