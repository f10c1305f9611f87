"""Typed filter builder.

Listing endpoints build a list of predicate objects and compile them into one
parameterised ``WHERE`` clause. Values are always bound parameters; column
names come from mapped attributes, never from request strings.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement, Select, and_, or_, true
from sqlalchemy.orm import InstrumentedAttribute


@dataclass(frozen=True)
class Predicate:
    column: InstrumentedAttribute[Any]

    def clause(self) -> ColumnElement[bool]:
        raise NotImplementedError


@dataclass(frozen=True)
class Equals(Predicate):
    value: Any

    def clause(self) -> ColumnElement[bool]:
        return self.column == self.value


@dataclass(frozen=True)
class EqualsOrUnset(Predicate):
    """Matches rows scoped to ``value`` and rows with no scoping at all."""

    value: Any

    def clause(self) -> ColumnElement[bool]:
        return or_(self.column.is_(None), self.column == self.value)


@dataclass(frozen=True)
class OneOf(Predicate):
    values: tuple[Any, ...]

    def clause(self) -> ColumnElement[bool]:
        return self.column.in_(self.values)


@dataclass(frozen=True)
class IsTrue(Predicate):
    def clause(self) -> ColumnElement[bool]:
        return self.column.is_(True)


@dataclass(frozen=True)
class IsFalse(Predicate):
    def clause(self) -> ColumnElement[bool]:
        return self.column.is_(False)


_COMPARATORS = {
    "lt": operator.lt,
    "le": operator.le,
    "gt": operator.gt,
    "ge": operator.ge,
}


@dataclass(frozen=True)
class Compare(Predicate):
    """Range bound; ``op`` is one of lt, le, gt, ge."""

    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _COMPARATORS:
            raise ValueError(f"unsupported comparison: {self.op}")

    def clause(self) -> ColumnElement[bool]:
        return _COMPARATORS[self.op](self.column, self.value)


class FilterBuilder:
    """Accumulates predicates. Optional filters given ``None`` are skipped."""

    def __init__(self) -> None:
        self._predicates: list[Predicate] = []

    @property
    def predicates(self) -> list[Predicate]:
        return list(self._predicates)

    def add(self, predicate: Predicate) -> FilterBuilder:
        self._predicates.append(predicate)
        return self

    def eq(self, column: InstrumentedAttribute[Any], value: Any) -> FilterBuilder:
        if value is not None:
            self.add(Equals(column, value))
        return self

    def eq_or_unset(self, column: InstrumentedAttribute[Any], value: Any) -> FilterBuilder:
        if value is not None:
            self.add(EqualsOrUnset(column, value))
        return self

    def one_of(self, column: InstrumentedAttribute[Any], values: Any) -> FilterBuilder:
        if values:
            self.add(OneOf(column, tuple(values)))
        return self

    def is_true(self, column: InstrumentedAttribute[Any]) -> FilterBuilder:
        return self.add(IsTrue(column))

    def is_false(self, column: InstrumentedAttribute[Any]) -> FilterBuilder:
        return self.add(IsFalse(column))

    def compare(self, column: InstrumentedAttribute[Any], op: str, value: Any) -> FilterBuilder:
        if value is not None:
            self.add(Compare(column, op, value))
        return self

    def clause(self) -> ColumnElement[bool]:
        if not self._predicates:
            return true()
        return and_(*(p.clause() for p in self._predicates))

    def apply(self, query: Select[Any]) -> Select[Any]:
        if not self._predicates:
            return query
        return query.where(self.clause())
