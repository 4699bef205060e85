from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, NamedTuple

from .entity import Entity
from .errors import InvalidAssociation


class AssociationKind(str, enum.Enum):
    BELONGS_TO = "belongs_to"
    BELONGS_TO_OPTIONAL = "belongs_to_optional"
    HAS_ONE = "has_one"
    HAS_ONE_OPTIONAL = "has_one_optional"
    HAS_MANY = "has_many"
    HAS_ONE_THROUGH = "has_one_through"
    HAS_ONE_OPTIONAL_THROUGH = "has_one_optional_through"
    HAS_MANY_THROUGH = "has_many_through"

    @property
    def is_through(self) -> bool:
        return self in _THROUGH

    @property
    def is_many(self) -> bool:
        return self in (AssociationKind.HAS_MANY, AssociationKind.HAS_MANY_THROUGH)

    @property
    def is_optional(self) -> bool:
        """The target row may be missing for a given origin row."""
        return self in _OPTIONAL

    @property
    def outer(self) -> bool:
        """Whether the edge compiles to a LEFT OUTER join."""
        return self.is_optional or self.is_many


_THROUGH = frozenset({
    AssociationKind.HAS_ONE_THROUGH,
    AssociationKind.HAS_ONE_OPTIONAL_THROUGH,
    AssociationKind.HAS_MANY_THROUGH,
})
_OPTIONAL = frozenset({
    AssociationKind.BELONGS_TO_OPTIONAL,
    AssociationKind.HAS_ONE_OPTIONAL,
    AssociationKind.HAS_ONE_OPTIONAL_THROUGH,
})


class KeyPair(NamedTuple):
    """``left.<origin> = right.<target>`` for one hop of an association."""

    origin: str
    target: str


@dataclass(frozen=True, slots=True)
class Association:
    """Immutable description of one declared relationship.

    Direct kinds carry a single :class:`KeyPair` from ``origin`` to ``target``.
    Through kinds carry two: ``origin`` to ``through`` and ``through`` to
    ``target``.
    """

    kind: AssociationKind
    origin: Entity[Any]
    target: Entity[Any]
    keys: tuple[KeyPair, ...]
    through: Entity[Any] | None = None

    def __post_init__(self) -> None:
        if self.kind.is_through:
            if self.through is None or len(self.keys) != 2:  # noqa: PLR2004
                raise InvalidAssociation(
                    f"{self.kind.value} needs an intermediate entity and two key pairs"
                )
            hops = ((self.origin, self.through), (self.through, self.target))
        else:
            if self.through is not None or len(self.keys) != 1:
                raise InvalidAssociation(
                    f"{self.kind.value} takes exactly one key pair and no intermediate entity"
                )
            hops = ((self.origin, self.target),)

        for (left, right), pair in zip(hops, self.keys, strict=True):
            if pair.origin not in left.table.c:
                raise InvalidAssociation(f"Column {pair.origin!r} is not on {left.name!r}")
            if pair.target not in right.table.c:
                raise InvalidAssociation(f"Column {pair.target!r} is not on {right.name!r}")

    @property
    def is_many(self) -> bool:
        return self.kind.is_many

    @property
    def entities(self) -> tuple[Entity[Any], ...]:
        """Every entity the association touches, in join order."""
        if self.through is None:
            return (self.origin, self.target)
        return (self.origin, self.through, self.target)

    def __repr__(self) -> str:
        via = f" via {self.through.name}" if self.through is not None else ""
        return f"<Association {self.kind.value} {self.origin.name} -> {self.target.name}{via}>"


def _foreign_key(child: Entity[Any], parent: Entity[Any], column: str | None) -> tuple[str, str]:
    """Find ``(child column, parent column)`` for the FK from *child* to *parent*.

    With an explicit *column* and no declared foreign key, the parent side
    defaults to the parent's primary key.
    """
    candidates: list[tuple[str, str]] = []
    for fk in child.table.foreign_keys:
        # "[schema.]table.column", readable without resolving the referenced table
        table_key, _, remote = fk.target_fullname.rpartition(".")
        if table_key == parent.table.fullname and column in (None, fk.parent.name):
            candidates.append((fk.parent.name, remote))
    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        if column is not None:
            return column, parent.primary_key
        raise InvalidAssociation(
            f"No foreign key from {child.name!r} to {parent.name!r}; pass foreign_key explicitly"
        )

    raise InvalidAssociation(
        f"Several foreign keys from {child.name!r} to {parent.name!r}: "
        f"{sorted(name for name, _ in candidates)}; pass foreign_key explicitly"
    )


def belongs_to(
    origin: Entity[Any],
    target: Entity[Any],
    *,
    foreign_key: str | None = None,
    optional: bool = False,
) -> Association:
    """*origin* holds a foreign key to *target* (``book.author_id -> author.id``)."""
    local, remote = _foreign_key(origin, target, foreign_key)
    return Association(
        kind=AssociationKind.BELONGS_TO_OPTIONAL if optional else AssociationKind.BELONGS_TO,
        origin=origin,
        target=target,
        keys=(KeyPair(local, remote),),
    )


def has_one(
    origin: Entity[Any],
    target: Entity[Any],
    *,
    foreign_key: str | None = None,
    optional: bool = False,
) -> Association:
    """*target* holds a unique foreign key to *origin* (``profile.user_id -> user.id``)."""
    remote, local = _foreign_key(target, origin, foreign_key)
    return Association(
        kind=AssociationKind.HAS_ONE_OPTIONAL if optional else AssociationKind.HAS_ONE,
        origin=origin,
        target=target,
        keys=(KeyPair(local, remote),),
    )


def has_many(
    origin: Entity[Any],
    target: Entity[Any],
    *,
    foreign_key: str | None = None,
) -> Association:
    """*target* holds a foreign key to *origin* (``book.author_id -> author.id``)."""
    remote, local = _foreign_key(target, origin, foreign_key)
    return Association(
        kind=AssociationKind.HAS_MANY,
        origin=origin,
        target=target,
        keys=(KeyPair(local, remote),),
    )


def through(
    pivot: Association,
    target: Association,
    *,
    kind: AssociationKind | None = None,
) -> Association:
    """Compose ``pivot`` (origin -> intermediate) and ``target`` (intermediate -> target).

    The kind is derived from the hops unless given: to-many if either hop is
    to-many, optional if either hop is optional, required otherwise.

    Raises:
        InvalidAssociation: If the hops do not meet at the same entity, either
            hop is itself a through association, or *kind* cannot hold the
            cardinality of the hops.
    """
    if pivot.kind.is_through or target.kind.is_through:
        raise InvalidAssociation("Through associations cannot be nested")

    if pivot.target is not target.origin:
        raise InvalidAssociation(
            f"Pivot ends at {pivot.target.name!r} but target starts at {target.origin.name!r}"
        )

    if pivot.is_many or target.is_many:
        derived = AssociationKind.HAS_MANY_THROUGH
    elif pivot.kind.is_optional or target.kind.is_optional:
        derived = AssociationKind.HAS_ONE_OPTIONAL_THROUGH
    else:
        derived = AssociationKind.HAS_ONE_THROUGH

    if kind is None:
        kind = derived
    elif not kind.is_through:
        raise InvalidAssociation(f"{kind.value} is not a through kind")
    elif derived.is_many and not kind.is_many:
        raise InvalidAssociation(f"A to-many hop cannot compose into {kind.value}")
    elif derived.is_optional and kind is AssociationKind.HAS_ONE_THROUGH:
        raise InvalidAssociation(
            f"An optional hop cannot compose into {kind.value}; use "
            f"{AssociationKind.HAS_ONE_OPTIONAL_THROUGH.value}"
        )

    return Association(
        kind=kind,
        origin=pivot.origin,
        target=target.target,
        keys=(pivot.keys[0], target.keys[0]),
        through=pivot.target,
    )
