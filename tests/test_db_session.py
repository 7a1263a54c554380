"""
Tests for database handles.
"""

import pytest
from sqlalchemy import func, select

from aaflood.db import Database, database_url
from aaflood.db.models import Source


@pytest.fixture
def two_databases(tmp_path):
    first = Database(f"sqlite+pysqlite:///{tmp_path / 'a.db'}")
    second = Database(f"sqlite+pysqlite:///{tmp_path / 'b.db'}")
    first.create_all()
    second.create_all()
    try:
        yield first, second
    finally:
        first.dispose()
        second.dispose()


class TestDatabase:

    def test_each_url_gets_its_own_engine(self, two_databases, tmp_path):
        first, second = two_databases

        with first.session_scope() as s:
            assert s.get_bind().url.database == str(tmp_path / "a.db")
        with second.session_scope() as s:
            assert s.get_bind().url.database == str(tmp_path / "b.db")

    def test_writes_stay_in_their_database(self, two_databases):
        first, second = two_databases

        with first.session_scope() as s:
            s.add(Source(river_basin="Karnali at Chisapani", sources=["DHM"]))

        with first.session_scope() as s:
            assert s.scalar(select(func.count(Source.id))) == 1
        with second.session_scope() as s:
            assert s.scalar(select(func.count(Source.id))) == 0

    def test_scope_rolls_back_on_error(self, two_databases):
        first, _ = two_databases

        with pytest.raises(RuntimeError):
            with first.session_scope() as s:
                s.add(Source(river_basin="Babai at Chepang", sources=[]))
                s.flush()
                raise RuntimeError("boom")

        with first.session_scope() as s:
            assert s.scalar(select(func.count(Source.id))) == 0


class TestDatabaseUrl:

    def test_override_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://env/db")
        assert database_url("sqlite+pysqlite:///x.db") == "sqlite+pysqlite:///x.db"

    def test_env_fallbacks(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_DSN", "postgresql://dsn/db")
        assert database_url() == "postgresql://dsn/db"

        monkeypatch.delenv("POSTGRES_DSN")
        assert database_url() == "sqlite+pysqlite:///:memory:"
