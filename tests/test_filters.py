"""
Tests for the filter language shared by memory and SQL adapters.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lifecycle_toolkit.schema import Base, Task
from lifecycle_toolkit.soft_delete.filters import (
    NOT_NULL,
    matches,
    merge_filters,
    where,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database session with a few tasks."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()

    session.add_all(
        [
            Task(id=1, title="live", project_id=10),
            Task(id=2, title="old", project_id=10, deleted_at=NOW - timedelta(days=40)),
            Task(id=3, title="new", project_id=20, deleted_at=NOW - timedelta(days=2)),
        ]
    )
    session.commit()

    yield session

    session.close()


class TestMatches:
    """Test in-memory filter evaluation."""

    def test_scalar_equality(self):
        """Scalar conditions compare for equality."""
        assert matches({"project_id": 7}, {"project_id": 7})
        assert not matches({"project_id": 8}, {"project_id": 7})

    def test_none_means_null(self):
        """None matches only null or missing fields."""
        assert matches({"deleted_at": None}, {"deleted_at": None})
        assert matches({}, {"deleted_at": None})
        assert not matches({"deleted_at": NOW}, {"deleted_at": None})

    def test_not_null(self):
        """The not-null operator excludes live records."""
        assert matches({"deleted_at": NOW}, {"deleted_at": NOT_NULL})
        assert not matches({"deleted_at": None}, {"deleted_at": NOT_NULL})

    def test_not_value(self):
        """``not`` with a value is inequality."""
        assert matches({"status": "open"}, {"status": {"not": "closed"}})
        assert not matches({"status": "closed"}, {"status": {"not": "closed"}})

    def test_not_value_excludes_null(self):
        """``not`` with a value never matches a null field, as in SQL."""
        assert not matches({"status": None}, {"status": {"not": "closed"}})
        assert not matches({}, {"status": {"not": "closed"}})

    def test_in_excludes_null(self):
        """A null field is never a member, even of a list holding None."""
        assert not matches({"id": None}, {"id": {"in": [None, 1]}})

    def test_combined_operators(self):
        """All operators in one condition must hold."""
        cutoff = NOW - timedelta(days=30)
        expired = {"deleted_at": {"not": None, "lt": cutoff}}

        assert matches({"deleted_at": NOW - timedelta(days=31)}, expired)
        assert not matches({"deleted_at": NOW - timedelta(days=29)}, expired)
        assert not matches({"deleted_at": None}, expired)

    def test_ordering_against_null_never_matches(self):
        """Ordering comparisons with a null field are false."""
        assert not matches({"deleted_at": None}, {"deleted_at": {"lt": NOW}})
        assert not matches({"deleted_at": None}, {"deleted_at": {"gte": NOW}})

    def test_in_operator(self):
        """``in`` tests membership."""
        assert matches({"id": 2}, {"id": {"in": [1, 2, 3]}})
        assert not matches({"id": 4}, {"id": {"in": [1, 2, 3]}})
        assert not matches({"id": 1}, {"id": {"in": []}})

    def test_range_operators(self):
        """Inclusive and exclusive bounds."""
        assert matches({"n": 5}, {"n": {"gte": 5, "lte": 5}})
        assert not matches({"n": 5}, {"n": {"gt": 5}})
        assert matches({"n": 6}, {"n": {"gt": 5, "lt": 7}})

    def test_unknown_operator_rejected(self):
        """Typos in operator names are errors, not silent misses."""
        with pytest.raises(ValueError, match="Unknown filter operator"):
            matches({"n": 1}, {"n": {"greater": 0}})

    def test_empty_filter_matches_everything(self):
        """An empty or missing filter matches every record."""
        assert matches({"id": 1}, {})
        assert matches({"id": 1}, None)


class TestMergeFilters:
    """Test filter merging."""

    def test_extra_wins(self):
        """Keys in the second filter override the first."""
        merged = merge_filters({"id": 1, "deleted_at": NOT_NULL}, {"deleted_at": None})
        assert merged == {"id": 1, "deleted_at": None}

    def test_base_not_mutated(self):
        """Merging returns a new dict."""
        base = {"id": 1}
        merge_filters(base, {"project_id": 2})
        assert base == {"id": 1}

    def test_none_base(self):
        """A missing base filter is treated as empty."""
        assert merge_filters(None, {"id": 1}) == {"id": 1}

    def test_not_null_is_read_only(self):
        """The shared not-null condition cannot be changed in place."""
        with pytest.raises(TypeError):
            NOT_NULL["lt"] = NOW  # type: ignore[index]

    def test_merged_conditions_are_copies(self):
        """Operator dicts in a merged filter are not shared with the inputs."""
        merged = merge_filters(None, {"deleted_at": NOT_NULL})
        merged["deleted_at"]["lt"] = NOW

        assert dict(NOT_NULL) == {"not": None}
        assert merge_filters(None, {"deleted_at": NOT_NULL}) == {"deleted_at": {"not": None}}


class TestWhere:
    """Test translation to SQLAlchemy clauses."""

    def _ids(self, session, filter):
        return [t.id for t in session.query(Task).filter(where(Task, filter)).order_by(Task.id)]

    def test_live_and_deleted(self, db_session):
        """Null and not-null conditions partition the table."""
        assert self._ids(db_session, {"deleted_at": None}) == [1]
        assert self._ids(db_session, {"deleted_at": NOT_NULL}) == [2, 3]

    def test_expired(self, db_session):
        """Combined operators translate to ANDed clauses."""
        cutoff = NOW - timedelta(days=30)
        assert self._ids(db_session, {"deleted_at": {"not": None, "lt": cutoff}}) == [2]

    def test_in_and_scalar(self, db_session):
        """``in`` and equality combine."""
        assert self._ids(db_session, {"id": {"in": [1, 2, 3]}, "project_id": 10}) == [1, 2]

    def test_empty_in_matches_nothing(self, db_session):
        """An empty ``in`` list selects no rows."""
        assert self._ids(db_session, {"id": {"in": []}}) == []

    def test_empty_filter(self, db_session):
        """An empty filter selects every row."""
        assert self._ids(db_session, {}) == [1, 2, 3]

    def test_unknown_column(self, db_session):
        """Filtering on a missing column raises."""
        with pytest.raises(ValueError, match="no column"):
            where(Task, {"nonexistent": 1})

    def test_null_semantics_match_memory(self, db_session):
        """SQL and in-memory evaluation agree on null fields."""
        db_session.add(Task(id=4, title="orphan", project_id=None))
        db_session.commit()
        records = [
            {"id": t.id, "project_id": t.project_id}
            for t in db_session.query(Task).order_by(Task.id)
        ]

        for filter in (
            {"project_id": {"not": 10}},
            {"project_id": {"in": [10, 20]}},
            {"project_id": NOT_NULL},
            {"project_id": None},
        ):
            expected = [r["id"] for r in records if matches(r, filter)]
            assert self._ids(db_session, filter) == expected
