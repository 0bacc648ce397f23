"""Engine-neutral boolean predicate algebra.

A compiled filter is a tree of ``Leaf`` comparisons joined by ``And``/``Or``.
``TRUE`` is the neutral element: it disappears inside ``And`` (identity) and is
treated as absent inside ``Or``. The tree is immutable, so two compilations of the
same input compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Union

from app.services.query_operators import OperatorKind


class _Always:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TRUE"

    def __bool__(self) -> bool:
        return True


TRUE = _Always()


@dataclass(frozen=True)
class Leaf:
    field: str
    operator: OperatorKind
    value: Any = None


@dataclass(frozen=True)
class And:
    items: tuple["Predicate", ...]


@dataclass(frozen=True)
class Or:
    items: tuple["Predicate", ...]


Predicate = Union[Leaf, And, Or, _Always]


def is_true(predicate: Predicate) -> bool:
    return predicate is TRUE


def all_of(items: Iterable[Predicate]) -> Predicate:
    flat: list[Predicate] = []
    for item in items:
        if is_true(item):
            continue
        if isinstance(item, And):
            flat.extend(item.items)
        else:
            flat.append(item)
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def any_of(items: Iterable[Predicate]) -> Predicate:
    flat: list[Predicate] = []
    for item in items:
        if is_true(item):
            continue
        if isinstance(item, Or):
            flat.extend(item.items)
        else:
            flat.append(item)
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def distribute(disjunction: Or, other: Predicate, *, other_first: bool = False) -> Predicate:
    """(a OR b) AND c  ->  (a AND c) OR (b AND c)."""
    if other_first:
        return any_of(conjoin(other, branch) for branch in disjunction.items)
    return any_of(conjoin(branch, other) for branch in disjunction.items)


def conjoin(left: Predicate, right: Predicate) -> Predicate:
    if is_true(left):
        return right
    if is_true(right):
        return left
    if isinstance(left, Or):
        return distribute(left, right)
    if isinstance(right, Or):
        return distribute(right, left, other_first=True)
    return all_of((left, right))

