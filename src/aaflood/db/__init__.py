# Re-export so callers can do: from aaflood.db import Database
from .session import (
    Database,
    database_url,
    make_engine,
    Base,
)
from .models import (
    Activity,
    ActivityStatus,
    DataSource,
    Phase,
    PhaseName,
    PHASE_ORDER,
    Source,
    Trigger,
    TriggerHistory,
    activity_triggers,
)

__all__ = [
    "Database",
    "database_url",
    "make_engine",
    "Base",
    "Activity",
    "ActivityStatus",
    "DataSource",
    "Phase",
    "PhaseName",
    "PHASE_ORDER",
    "Source",
    "Trigger",
    "TriggerHistory",
    "activity_triggers",
]
