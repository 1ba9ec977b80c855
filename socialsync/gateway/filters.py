"""
Row filter expressions.

A filter renders to the auto-generated REST query grammar
(``sender_id=eq.X``, ``or=(and(a.eq.1,b.eq.2),...)``) and can also be
evaluated against a plain row dict, so the same expression drives the
remote query, the in-memory backend and the realtime predicate.
"""
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def comparable(value: Any) -> Any:
    """Normalize a row value so ISO strings compare against datetimes."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


class Filter:
    """Base filter expression."""

    def to_params(self) -> List[Tuple[str, str]]:
        """Render as top-level query parameters."""
        raise NotImplementedError

    def fragment(self) -> str:
        """Render as a nested fragment inside ``or=(...)`` / ``and(...)``."""
        raise NotImplementedError

    def matches(self, row: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def __and__(self, other: "Filter") -> "And":
        return And(self, other)

    def __or__(self, other: "Filter") -> "Or":
        return Or(self, other)


class Eq(Filter):
    def __init__(self, column: str, value: Any):
        self.column = column
        self.value = value

    def to_params(self) -> List[Tuple[str, str]]:
        return [(self.column, f"eq.{_render_value(self.value)}")]

    def fragment(self) -> str:
        return f"{self.column}.eq.{_render_value(self.value)}"

    def matches(self, row: Dict[str, Any]) -> bool:
        actual = row.get(self.column)
        if isinstance(self.value, bool) or self.value is None:
            return actual == self.value
        return _render_value(actual) == _render_value(self.value)

    def __repr__(self) -> str:
        return f"Eq({self.column!r}, {self.value!r})"


class Gt(Filter):
    def __init__(self, column: str, value: Any):
        self.column = column
        self.value = value

    def to_params(self) -> List[Tuple[str, str]]:
        return [(self.column, f"gt.{_render_value(self.value)}")]

    def fragment(self) -> str:
        return f"{self.column}.gt.{_render_value(self.value)}"

    def matches(self, row: Dict[str, Any]) -> bool:
        actual = row.get(self.column)
        if actual is None:
            return False
        try:
            return comparable(actual) > comparable(self.value)
        except TypeError:
            return False

    def __repr__(self) -> str:
        return f"Gt({self.column!r}, {self.value!r})"


class In(Filter):
    def __init__(self, column: str, values: Sequence[Any]):
        self.column = column
        self.values = list(values)

    def to_params(self) -> List[Tuple[str, str]]:
        return [(self.column, f"in.({','.join(_render_value(v) for v in self.values)})")]

    def fragment(self) -> str:
        return f"{self.column}.in.({','.join(_render_value(v) for v in self.values)})"

    def matches(self, row: Dict[str, Any]) -> bool:
        rendered = {_render_value(v) for v in self.values}
        return _render_value(row.get(self.column)) in rendered

    def __repr__(self) -> str:
        return f"In({self.column!r}, {self.values!r})"


class And(Filter):
    def __init__(self, *filters: Filter):
        self.filters = list(filters)

    def to_params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        for f in self.filters:
            params.extend(f.to_params())
        return params

    def fragment(self) -> str:
        return f"and({','.join(f.fragment() for f in self.filters)})"

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(f.matches(row) for f in self.filters)

    def __repr__(self) -> str:
        return f"And({', '.join(repr(f) for f in self.filters)})"


class Or(Filter):
    def __init__(self, *filters: Filter):
        self.filters = list(filters)

    def to_params(self) -> List[Tuple[str, str]]:
        return [("or", f"({','.join(f.fragment() for f in self.filters)})")]

    def fragment(self) -> str:
        return f"or({','.join(f.fragment() for f in self.filters)})"

    def matches(self, row: Dict[str, Any]) -> bool:
        return any(f.matches(row) for f in self.filters)

    def __repr__(self) -> str:
        return f"Or({', '.join(repr(f) for f in self.filters)})"


def between(user_a: str, user_b: str) -> Or:
    """Rows of the conversation between two users, in either direction."""
    return Or(
        And(Eq("sender_id", user_a), Eq("receiver_id", user_b)),
        And(Eq("sender_id", user_b), Eq("receiver_id", user_a)),
    )
