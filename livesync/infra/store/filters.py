"""Row filters shared by fetches and push subscriptions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class Condition:
    column: str
    op: str  # "eq" | "in"
    value: Any

    def matches(self, row: Dict[str, Any]) -> bool:
        actual = row.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        raise ValueError(f"Unsupported filter operator: {self.op}")

    def render(self) -> str:
        """PostgREST operator syntax, e.g. ``eq.abc`` or ``in.(a,b)``."""
        if self.op == "in":
            return "in.(" + ",".join(_format_value(v) for v in self.value) + ")"
        return f"{self.op}.{_format_value(self.value)}"


@dataclass(frozen=True)
class Filter:
    """
    Conjunction of equality / membership conditions.

    Filter.eq("session_id", sid).and_eq("is_online", True)
    Filter.in_("participant_id", ["p1", "p2"])
    """

    conditions: Tuple[Condition, ...] = ()

    @classmethod
    def eq(cls, column: str, value: Any) -> "Filter":
        return cls((Condition(column, "eq", value),))

    @classmethod
    def in_(cls, column: str, values: Iterable[Any]) -> "Filter":
        return cls((Condition(column, "in", tuple(values)),))

    def and_eq(self, column: str, value: Any) -> "Filter":
        return Filter(self.conditions + (Condition(column, "eq", value),))

    def and_in(self, column: str, values: Iterable[Any]) -> "Filter":
        return Filter(self.conditions + (Condition(column, "in", tuple(values)),))

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(c.matches(row) for c in self.conditions)

    def to_params(self) -> List[Tuple[str, str]]:
        """PostgREST query parameters."""
        return [(c.column, c.render()) for c in self.conditions]

    def to_realtime(self) -> Optional[str]:
        """
        Realtime change filter. Realtime accepts a single condition, so only
        the first (scoping) condition is pushed down; the rest are applied by
        the re-fetch that every notification triggers.
        """
        if not self.conditions:
            return None
        first = self.conditions[0]
        return f"{first.column}={first.render()}"

    def scope_key(self) -> str:
        """Short human-readable scope used in channel names."""
        if not self.conditions:
            return "all"
        first = self.conditions[0]
        if first.op == "in":
            return f"{first.column}-in{len(first.value)}"
        return f"{first.column}-{_format_value(first.value)[:12]}"


ALL = Filter()
