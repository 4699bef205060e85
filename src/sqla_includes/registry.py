from __future__ import annotations

import logging
import threading
from typing import Any, final

from . import associations as assoc
from .associations import Association, AssociationKind
from .datastructures import frozendict
from .entity import Entity
from .errors import (
    DuplicateAssociation,
    InvalidAssociation,
    RegistryFrozen,
    UnknownAssociation,
)


logger = logging.getLogger(__name__)


def entity_name(entity: Entity[Any] | str) -> str:
    return entity if isinstance(entity, str) else entity.name


@final
class AssociationRegistry:
    """Process-wide table of declared associations, keyed by entity and name.

    The registry follows a single-writer-then-many-readers lifecycle: populate
    it once during application startup, then hand the same instance to every
    request. Writes are serialized by a lock; reads take no lock and only see
    immutable snapshots. Compiling the first request freezes the registry, after
    which any registration raises :class:`RegistryFrozen`.

    Example:
        >>> registry = AssociationRegistry()
        >>> registry.has_many(author, book, "books")
        >>> registry.belongs_to(book, author, "author")
        >>> registry.resolve(author, "books").kind
        <AssociationKind.HAS_MANY: 'has_many'>
    """

    __slots__ = ("_associations", "_entities", "_frozen", "_lock")

    def __init__(self) -> None:
        self._associations: frozendict[str, frozendict[str, Association]] = frozendict()
        self._entities: frozendict[str, Entity[Any]] = frozendict()
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Forbid further registration. Idempotent."""
        if not self._frozen:
            with self._lock:
                self._frozen = True
            logger.debug("Association registry frozen with %d entities", len(self._entities))

    def register(self, entity: Entity[Any], name: str, association: Association) -> Association:
        """Register *association* as ``entity.<name>``.

        Raises:
            DuplicateAssociation: If *name* is already registered on *entity*.
            InvalidAssociation: If the association does not start at *entity*,
                or another entity object already uses the same name.
            RegistryFrozen: If the registry has been frozen.
        """
        if association.origin is not entity:
            raise InvalidAssociation(
                f"Association {name!r} starts at {association.origin.name!r}, not {entity.name!r}"
            )

        with self._lock:
            if self._frozen:
                raise RegistryFrozen(
                    f"Cannot register {entity.name}.{name}: registry is frozen"
                )

            entities = self._entities
            for candidate in association.entities:
                bound = entities.get(candidate.name)
                if bound is not None and bound is not candidate:
                    raise InvalidAssociation(
                        f"Entity name {candidate.name!r} is already bound to another entity"
                    )
                if bound is None:
                    entities = entities.copy({candidate.name: candidate})

            own = self._associations.get(entity.name, frozendict())
            if name in own:
                raise DuplicateAssociation(entity.name, name)

            # Readers never lock, so swap in fresh snapshots instead of mutating.
            self._entities = entities
            self._associations = self._associations.copy({entity.name: own.copy({name: association})})

        logger.debug("Registered %s.%s as %r", entity.name, name, association)
        return association

    def resolve(self, entity: Entity[Any] | str, name: str) -> Association:
        """Return the association registered as ``entity.<name>``.

        Raises:
            UnknownAssociation: If nothing is registered under that name.
        """
        key = entity_name(entity)
        try:
            return self._associations[key][name]
        except KeyError:
            raise UnknownAssociation(key, name) from None

    def get(self, entity: Entity[Any] | str, name: str) -> Association | None:
        return self._associations.get(entity_name(entity), frozendict()).get(name)

    def associations(self, entity: Entity[Any] | str) -> frozendict[str, Association]:
        """Associations declared on *entity*, in registration order (read-only)."""
        return self._associations.get(entity_name(entity), frozendict())

    def entity(self, name: str) -> Entity[Any]:
        """Look up a known entity by name, raising ``KeyError`` if absent."""
        return self._entities[name]

    def entities(self) -> tuple[Entity[Any], ...]:
        return tuple(self._entities.values())

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, tuple) or len(item) != 2:  # noqa: PLR2004
            return False
        entity, name = item
        return self.get(entity, name) is not None

    def __len__(self) -> int:
        return sum(len(own) for own in self._associations.values())

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"<AssociationRegistry {len(self)} associations, {state}>"

    # Declarators: build a descriptor and register it in one step.

    def belongs_to(
        self,
        origin: Entity[Any],
        target: Entity[Any],
        name: str,
        *,
        foreign_key: str | None = None,
        optional: bool = False,
    ) -> Association:
        return self.register(
            origin,
            name,
            assoc.belongs_to(origin, target, foreign_key=foreign_key, optional=optional),
        )

    def has_one(
        self,
        origin: Entity[Any],
        target: Entity[Any],
        name: str,
        *,
        foreign_key: str | None = None,
        optional: bool = False,
    ) -> Association:
        return self.register(
            origin,
            name,
            assoc.has_one(origin, target, foreign_key=foreign_key, optional=optional),
        )

    def has_many(
        self,
        origin: Entity[Any],
        target: Entity[Any],
        name: str,
        *,
        foreign_key: str | None = None,
    ) -> Association:
        return self.register(
            origin, name, assoc.has_many(origin, target, foreign_key=foreign_key)
        )

    def has_one_through(
        self,
        origin: Entity[Any],
        name: str,
        *,
        pivot: str,
        target: str,
        optional: bool | None = None,
    ) -> Association:
        """Register ``origin.<name>`` as ``origin.<pivot>.<target>`` with to-one cardinality.

        ``optional`` defaults to whether either hop is optional. Passing
        ``optional=False`` over an optional hop raises :class:`InvalidAssociation`.
        """
        kind = None
        if optional is not None:
            kind = (
                AssociationKind.HAS_ONE_OPTIONAL_THROUGH
                if optional
                else AssociationKind.HAS_ONE_THROUGH
            )
        return self._through(origin, name, pivot=pivot, target=target, kind=kind)

    def has_many_through(
        self,
        origin: Entity[Any],
        name: str,
        *,
        pivot: str,
        target: str,
    ) -> Association:
        """Register ``origin.<name>`` as ``origin.<pivot>.<target>`` with to-many cardinality."""
        return self._through(
            origin, name, pivot=pivot, target=target, kind=AssociationKind.HAS_MANY_THROUGH
        )

    def _through(
        self,
        origin: Entity[Any],
        name: str,
        *,
        pivot: str,
        target: str,
        kind: AssociationKind | None,
    ) -> Association:
        first = self.resolve(origin, pivot)
        second = self.resolve(first.target, target)
        if kind is None:
            kind = (
                AssociationKind.HAS_ONE_OPTIONAL_THROUGH
                if first.kind.is_optional or second.kind.is_optional
                else AssociationKind.HAS_ONE_THROUGH
            )
        return self.register(origin, name, assoc.through(first, second, kind=kind))
