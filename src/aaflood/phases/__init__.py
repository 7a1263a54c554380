from .manager import PhaseManager, PhaseTriggerStats, next_phase

__all__ = ["PhaseManager", "PhaseTriggerStats", "next_phase"]
