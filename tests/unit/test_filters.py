"""Typed filter builder: predicates compile to one parameterised WHERE."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select, true
from sqlalchemy.dialects import sqlite

from edugame.db.models import Challenge
from edugame.filters import Compare, Equals, EqualsOrUnset, FilterBuilder, IsTrue, OneOf


def _sql(query) -> str:
    return str(query.compile(dialect=sqlite.dialect()))


class TestFilterBuilder:
    def test_none_values_are_skipped(self):
        builder = FilterBuilder().eq(Challenge.type, None).eq_or_unset(Challenge.subject, None).compare(
            Challenge.start_date, "le", None
        )
        assert builder.predicates == []
        query = select(Challenge.id)
        assert builder.apply(query) is query

    def test_collects_typed_predicates(self):
        builder = (
            FilterBuilder()
            .eq(Challenge.type, "weekly")
            .eq_or_unset(Challenge.subject, "math")
            .one_of(Challenge.metric, ["problems_solved", "time_spent"])
            .is_true(Challenge.is_active)
        )
        kinds = [type(p) for p in builder.predicates]
        assert kinds == [Equals, EqualsOrUnset, OneOf, IsTrue]

    def test_values_are_bound_not_inlined(self):
        hostile = "weekly' OR 1=1 --"
        sql = _sql(FilterBuilder().eq(Challenge.type, hostile).apply(select(Challenge.id)))
        assert hostile not in sql
        assert "challenges.type = ?" in sql

    def test_eq_or_unset_matches_null(self):
        sql = _sql(FilterBuilder().eq_or_unset(Challenge.grade_level, "5").apply(select(Challenge.id)))
        assert "challenges.grade_level IS NULL OR challenges.grade_level = ?" in sql

    def test_compare_ops(self):
        now = datetime(2026, 3, 2, tzinfo=timezone.utc)
        sql = _sql(
            FilterBuilder()
            .compare(Challenge.start_date, "le", now)
            .compare(Challenge.end_date, "gt", now)
            .apply(select(Challenge.id))
        )
        assert "challenges.start_date <= ?" in sql
        assert "challenges.end_date > ?" in sql

    def test_unknown_compare_op(self):
        with pytest.raises(ValueError, match="unsupported comparison"):
            Compare(Challenge.start_date, "between", 1)

    def test_empty_clause_is_true(self):
        assert FilterBuilder().clause().compare(true())
