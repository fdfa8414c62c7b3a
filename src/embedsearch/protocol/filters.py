"""
Structured filter and sort expressions.

Filters are small trees that compile to the engine's filter syntax, e.g.::

    And([Equal("genre", "horror"), Between("year", 1990, 1999)]).to_expression()
    # '(genre = "horror") AND (year 1990 TO 1999)'
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Union

from embedsearch.errors import EncodingError

FilterValue = Union[str, int, float, bool]


def format_value(value: FilterValue) -> str:
    """Render a scalar as a filter literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise EncodingError("filter", "non-finite numbers cannot be used in a filter")
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    raise EncodingError("filter", f"unsupported filter value type {type(value).__name__}")


def format_field(field: str) -> str:
    if not field:
        raise EncodingError("filter", "field name must not be empty")
    # Fields with spaces or quotes must be quoted like values
    if any(c in field for c in ' "\'()[],'):
        return format_value(field)
    return field


class Filter(ABC):
    """Base class of all filter nodes."""

    @abstractmethod
    def to_expression(self) -> str:
        ...

    def __and__(self, other: "Filter") -> "Filter":
        return And([self, other])

    def __or__(self, other: "Filter") -> "Filter":
        return Or([self, other])

    def __invert__(self) -> "Filter":
        return Not(self)

    def __str__(self) -> str:
        return self.to_expression()


@dataclass(frozen=True)
class And(Filter):
    filters: Sequence[Filter]

    def to_expression(self) -> str:
        if not self.filters:
            raise EncodingError("filter", "And() needs at least one filter")
        return " AND ".join(f"({f.to_expression()})" for f in self.filters)


@dataclass(frozen=True)
class Or(Filter):
    filters: Sequence[Filter]

    def to_expression(self) -> str:
        if not self.filters:
            raise EncodingError("filter", "Or() needs at least one filter")
        return " OR ".join(f"({f.to_expression()})" for f in self.filters)


@dataclass(frozen=True)
class Not(Filter):
    filter: Filter

    def to_expression(self) -> str:
        return f"NOT ({self.filter.to_expression()})"


@dataclass(frozen=True)
class In(Filter):
    field: str
    values: Sequence[FilterValue]

    def to_expression(self) -> str:
        rendered = ", ".join(format_value(v) for v in self.values)
        return f"{format_field(self.field)} IN [{rendered}]"


@dataclass(frozen=True)
class _Comparison(Filter):
    field: str
    value: FilterValue

    operator = "="

    def to_expression(self) -> str:
        return f"{format_field(self.field)} {self.operator} {format_value(self.value)}"


class Equal(_Comparison):
    operator = "="


class NotEqual(_Comparison):
    operator = "!="


class GreaterThan(_Comparison):
    operator = ">"


class GreaterThanOrEqual(_Comparison):
    operator = ">="


class LessThan(_Comparison):
    operator = "<"


class LessThanOrEqual(_Comparison):
    operator = "<="


@dataclass(frozen=True)
class Between(Filter):
    """Inclusive range."""

    field: str
    start: FilterValue
    end: FilterValue

    def to_expression(self) -> str:
        return f"{format_field(self.field)} {format_value(self.start)} TO {format_value(self.end)}"


@dataclass(frozen=True)
class Exists(Filter):
    field: str

    def to_expression(self) -> str:
        return f"{format_field(self.field)} EXISTS"


@dataclass(frozen=True)
class IsNull(Filter):
    field: str

    def to_expression(self) -> str:
        return f"{format_field(self.field)} IS NULL"


@dataclass(frozen=True)
class IsEmpty(Filter):
    field: str

    def to_expression(self) -> str:
        return f"{format_field(self.field)} IS EMPTY"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortBy:
    field: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def asc(cls, field: str) -> "SortBy":
        return cls(field, SortDirection.ASC)

    @classmethod
    def desc(cls, field: str) -> "SortBy":
        return cls(field, SortDirection.DESC)

    def to_expression(self) -> str:
        return f"{self.field}:{SortDirection(self.direction).value}"


def render_filter(value: Union[str, Filter, List]) -> Union[str, List]:
    """Render a Query.filter value into its wire form."""
    if isinstance(value, Filter):
        return value.to_expression()
    if isinstance(value, list):
        return [render_filter(v) for v in value]
    if isinstance(value, str):
        return value
    raise EncodingError("filter", f"unsupported filter type {type(value).__name__}")


def render_sort(value: Sequence[Union[str, SortBy]]) -> List[str]:
    return [v.to_expression() if isinstance(v, SortBy) else str(v) for v in value]
