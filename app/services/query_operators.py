from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class OperatorKind(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    NOT_IN = "nin"
    BETWEEN = "between"
    IS_NULL = "null"
    NOT_NULL = "notNull"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    CONTAINS = "contains"


class Arity(str, Enum):
    NONE = "none"  # value ignored
    UNARY = "unary"  # one scalar
    LIST = "list"  # list, scalar is wrapped
    PAIR = "pair"  # exactly two ordered bounds


class MalformedCondition(ValueError):
    pass


@dataclass(frozen=True)
class OperatorRule:
    kind: OperatorKind
    arity: Arity
    clause: Callable[[Any, Any], Any]
    null_aware: bool = False
    # Text-matching operators compare against the raw string, not a typed column value.
    coerce: bool = True

    def normalize(self, value: Any) -> Any:
        """Check the value shape for this operator and return it in canonical form."""
        if self.arity is Arity.NONE:
            return None
        if self.arity is Arity.LIST:
            if value is None:
                raise MalformedCondition(f'"{self.kind.value}" requires a value')
            if isinstance(value, (list, tuple, set)):
                return tuple(value)
            if isinstance(value, dict):
                raise MalformedCondition(f'"{self.kind.value}" requires a list of values')
            return (value,)
        if self.arity is Arity.PAIR:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise MalformedCondition(f'"{self.kind.value}" requires exactly two values')
            # low <= high is not checked: inverted bounds simply match nothing.
            return (value[0], value[1])
        if value is None:
            if self.null_aware:
                return None
            raise MalformedCondition(f'"{self.kind.value}" requires a value')
        if isinstance(value, (list, tuple, set, dict)):
            raise MalformedCondition(f'"{self.kind.value}" requires a single value')
        return value


def _eq(column, value):
    return column.is_(None) if value is None else column == value


def _ne(column, value):
    return column.is_not(None) if value is None else column != value


OPERATORS: dict[str, OperatorRule] = {
    rule.kind.value: rule
    for rule in (
        OperatorRule(OperatorKind.EQ, Arity.UNARY, _eq, null_aware=True),
        OperatorRule(OperatorKind.NE, Arity.UNARY, _ne, null_aware=True),
        OperatorRule(OperatorKind.GT, Arity.UNARY, lambda c, v: c > v),
        OperatorRule(OperatorKind.GTE, Arity.UNARY, lambda c, v: c >= v),
        OperatorRule(OperatorKind.LT, Arity.UNARY, lambda c, v: c < v),
        OperatorRule(OperatorKind.LTE, Arity.UNARY, lambda c, v: c <= v),
        # like/ilike keep caller wildcards; the value is wrapped as a substring pattern.
        OperatorRule(OperatorKind.LIKE, Arity.UNARY, lambda c, v: c.like(f"%{v}%"), coerce=False),
        OperatorRule(OperatorKind.ILIKE, Arity.UNARY, lambda c, v: c.ilike(f"%{v}%"), coerce=False),
        OperatorRule(OperatorKind.IN, Arity.LIST, lambda c, v: c.in_(list(v))),
        OperatorRule(OperatorKind.NOT_IN, Arity.LIST, lambda c, v: c.not_in(list(v))),
        OperatorRule(OperatorKind.BETWEEN, Arity.PAIR, lambda c, v: c.between(v[0], v[1])),
        OperatorRule(OperatorKind.IS_NULL, Arity.NONE, lambda c, v: c.is_(None)),
        OperatorRule(OperatorKind.NOT_NULL, Arity.NONE, lambda c, v: c.is_not(None)),
        OperatorRule(
            OperatorKind.STARTS_WITH,
            Arity.UNARY,
            lambda c, v: c.startswith(str(v), autoescape=True),
            coerce=False,
        ),
        OperatorRule(
            OperatorKind.ENDS_WITH,
            Arity.UNARY,
            lambda c, v: c.endswith(str(v), autoescape=True),
            coerce=False,
        ),
        OperatorRule(
            OperatorKind.CONTAINS,
            Arity.UNARY,
            lambda c, v: c.icontains(str(v), autoescape=True),
            coerce=False,
        ),
    )
}


def lookup_operator(name: Any) -> OperatorRule | None:
    return OPERATORS.get(str(name or "").strip())
