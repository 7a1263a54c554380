# tests/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aaflood.db.models import (
    Activity,
    ActivityStatus,
    Base,
    DataSource,
    Phase,
    PhaseName,
    Source,
    Trigger,
)
from aaflood.ingest.types import Reading

BASIN = "Karnali at Chisapani"
YEAR = 2025


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy own BEGIN so SAVEPOINTs work on pysqlite
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    s = Session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def phases(session):
    """The three phases of the test basin for the test year, keyed by name."""
    session.add(Source(river_basin=BASIN, sources=["DHM", "GLOFAS"]))
    session.flush()
    created = {}
    for name in PhaseName:
        phase = Phase(river_basin=BASIN, active_year=YEAR, name=name)
        session.add(phase)
        created[name] = phase
    session.commit()
    return created


@pytest.fixture
def make_trigger(session):
    def _make(phase, statement=None, data_source=DataSource.DHM, **kwargs):
        trigger = Trigger(
            phase_id=phase.id,
            title=kwargs.pop("title", "Water level above danger"),
            data_source=data_source,
            trigger_statement=statement if statement is not None else {"field": "value", "op": ">", "threshold": 100},
            **kwargs,
        )
        session.add(trigger)
        session.commit()
        return trigger
    return _make


@pytest.fixture
def make_activity(session):
    def _make(phase, title="Send SMS alert", triggers=(), **kwargs):
        kwargs.setdefault("is_automated", True)
        kwargs.setdefault("status", ActivityStatus.NOT_STARTED)
        kwargs.setdefault("communications", [
            {"groupType": "BENEFICIARY", "groupId": "grp-1", "communicationType": "SMS", "message": "Flood alert"},
        ])
        activity = Activity(phase_id=phase.id, title=title, **kwargs)
        activity.triggers = list(triggers)
        session.add(activity)
        session.commit()
        return activity
    return _make


def make_reading(value, source=DataSource.DHM, series_id="29089", basin=BASIN, **metadata):
    return Reading(
        basin=basin,
        source=source,
        series_id=series_id,
        observed_at=datetime(2025, 8, 5, 6, 0, tzinfo=timezone.utc),
        value=value,
        metadata=metadata,
    )


@pytest.fixture
def reading_factory():
    return make_reading
