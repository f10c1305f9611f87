"""Leaderboard scopes: which students a board ranks.

Scope ids are stored as strings:

- ``class``: the class id, e.g. ``"7"``
- ``school``: the school id, e.g. ``"3"``
- ``grade``: ``"<school_id>:<grade_level>"``, e.g. ``"3:5"``. Grades are
  always ranked within one school.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Select, select

from edugame.db.models import ClassEnrollment, SchoolClass, Student
from edugame.errors import InvalidLeaderboard

CLASS = "class"
GRADE = "grade"
SCHOOL = "school"

SCOPES = (CLASS, GRADE, SCHOOL)


def _int_id(scope: str, scope_id: str) -> int:
    try:
        return int(scope_id)
    except (TypeError, ValueError):
        raise InvalidLeaderboard(f"{scope} scope id must be an integer, got {scope_id!r}") from None


def _grade_id(scope_id: str) -> tuple[int, str]:
    school, sep, grade = str(scope_id).partition(":")
    if not sep or not grade:
        raise InvalidLeaderboard(f"grade scope id must look like '<school_id>:<grade>', got {scope_id!r}")
    return _int_id(SCHOOL, school), grade


def validate_scope(scope: str, scope_id: str) -> None:
    if scope == CLASS or scope == SCHOOL:
        _int_id(scope, scope_id)
    elif scope == GRADE:
        _grade_id(scope_id)
    else:
        raise InvalidLeaderboard(f"unknown leaderboard scope: {scope}")


def grade_scope_id(school_id: int, grade_level: str) -> str:
    return f"{school_id}:{grade_level}"


def population_query(scope: str, scope_id: str) -> Select[Any]:
    """SELECT of the student ids in a scope."""
    if scope == CLASS:
        return select(ClassEnrollment.student_id).where(
            ClassEnrollment.class_id == _int_id(scope, scope_id),
            ClassEnrollment.is_active.is_(True),
        )
    if scope == SCHOOL:
        return select(Student.id).where(
            Student.school_id == _int_id(scope, scope_id),
            Student.role == "student",
        )
    if scope == GRADE:
        school_id, grade = _grade_id(scope_id)
        return select(Student.id).where(
            Student.school_id == school_id,
            Student.grade_level == grade,
            Student.role == "student",
        )
    raise InvalidLeaderboard(f"unknown leaderboard scope: {scope}")


def active_scope_keys_query() -> Select[Any]:
    """Active classes with the columns needed to derive every scope key."""
    return select(SchoolClass.id, SchoolClass.school_id, SchoolClass.grade_level).where(
        SchoolClass.is_active.is_(True)
    )
