from __future__ import annotations

from functools import lru_cache
from typing import Any, NamedTuple

import sqlalchemy as sa

from .associations import Association
from .entity import Entity


class JoinStep(NamedTuple):
    """One ``left.left_column = right.right_column`` join of an association."""

    left: Entity[Any]
    left_column: str
    right: Entity[Any]
    right_column: str
    outer: bool


@lru_cache(maxsize=1024)
def _join_steps(association: Association) -> tuple[JoinStep, ...]:
    outer = association.kind.outer
    if association.through is None:
        (pair,) = association.keys
        return (JoinStep(association.origin, pair.origin, association.target, pair.target, outer),)

    pivot, target = association.keys
    # When the target side may be missing, so may the junction row.
    return (
        JoinStep(association.origin, pivot.origin, association.through, pivot.target, outer),
        JoinStep(association.through, target.origin, association.target, target.target, outer),
    )


def join_steps(association: Association) -> tuple[JoinStep, ...]:
    """Resolve *association* into the joins that reach its target.

    Direct associations yield a single step. Through associations yield two,
    origin to junction then junction to target; both are outer joins for
    optional and to-many kinds, and inner joins for ``HAS_ONE_THROUGH``.

    Results are cached per descriptor.
    """
    return _join_steps(association)


def join_condition(
    step: JoinStep,
    left: sa.FromClause,
    right: sa.FromClause,
) -> sa.ColumnElement[bool]:
    """Rewrite *step* as an ON clause between the given aliases."""
    return left.c[step.left_column] == right.c[step.right_column]


def key_cache_info() -> dict[str, Any]:
    return {"join_steps": _join_steps.cache_info()}


def key_cache_clear() -> None:
    _join_steps.cache_clear()
