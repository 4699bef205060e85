from __future__ import annotations

import warnings
from collections.abc import Mapping
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY

from .associations import Association, AssociationKind, KeyPair
from .entity import Decoder, Entity
from .registry import AssociationRegistry


T = TypeVar("T", bound=orm.DeclarativeBase)


def entity_from_model(
    model: type[T],
    *,
    name: str | None = None,
    decoders: Mapping[str, Decoder] | None = None,
) -> Entity[T]:
    """Describe a mapped class as an :class:`Entity`.

    Hydrated instances are built with the model's constructor from its column
    attributes; they are transient and not attached to any session.
    """
    mapper = sa.inspect(model)
    table = mapper.local_table
    assert isinstance(table, sa.Table), f"{model.__name__} is not mapped to a single table"

    attributes = {
        prop.columns[0].name: prop.key
        for prop in mapper.column_attrs
        if prop.columns[0].table is table
    }

    def build(values: Mapping[str, Any]) -> T:
        return model(**{attributes[column]: value for column, value in values.items()})

    return Entity.from_table(
        table,
        build,
        name=name or model.__name__,
        primary_key=next(iter(mapper.primary_key)).name,
        columns=tuple(attributes),
        decoders=decoders,
    )


def _junction(table: sa.FromClause, known: dict[sa.FromClause, Entity[Any]]) -> Entity[Any]:
    entity = known.get(table)
    if entity is None:
        assert isinstance(table, sa.Table)
        pk = next(iter(table.primary_key), None)
        entity = known[table] = Entity.from_table(
            table,
            primary_key=(pk if pk is not None else next(iter(table.c))).name,
        )
    return entity


def _describe(
    relationship: orm.RelationshipProperty[Any],
    entities: Mapping[type[Any], Entity[Any]],
    tables: dict[sa.FromClause, Entity[Any]],
) -> Association | None:
    origin = entities[relationship.parent.class_]
    target = entities.get(relationship.mapper.class_)
    if target is None:
        return None

    if relationship.direction is MANYTOMANY:
        if not relationship.uselist or relationship.secondary is None:
            return None
        if len(relationship.synchronize_pairs) != 1 or len(relationship.secondary_synchronize_pairs) != 1:
            return None
        (origin_col, pivot_col), = relationship.synchronize_pairs
        (target_col, junction_col), = relationship.secondary_synchronize_pairs
        return Association(
            kind=AssociationKind.HAS_MANY_THROUGH,
            origin=origin,
            target=target,
            keys=(KeyPair(origin_col.name, pivot_col.name), KeyPair(junction_col.name, target_col.name)),
            through=_junction(relationship.secondary, tables),
        )

    # Only plain "a.x == b.y" joins; extra criteria would be silently dropped.
    if not isinstance(relationship.primaryjoin, sa.BinaryExpression):
        return None
    if len(relationship.local_remote_pairs) != 1:
        return None
    (local, remote), = relationship.local_remote_pairs

    if relationship.direction is MANYTOONE:
        kind = (
            AssociationKind.BELONGS_TO_OPTIONAL if local.nullable else AssociationKind.BELONGS_TO
        )
    elif relationship.direction is ONETOMANY:
        kind = AssociationKind.HAS_MANY if relationship.uselist else AssociationKind.HAS_ONE_OPTIONAL
    else:
        return None

    return Association(kind=kind, origin=origin, target=target, keys=(KeyPair(local.name, remote.name),))


def registry_from_base(
    base: type[orm.DeclarativeBase],
    registry: AssociationRegistry | None = None,
) -> AssociationRegistry:
    """Populate a registry from every relationship mapped on *base*.

    Many-to-one relationships become ``BELONGS_TO`` (``BELONGS_TO_OPTIONAL``
    when the foreign key is nullable), one-to-many become ``HAS_MANY`` or
    ``HAS_ONE_OPTIONAL`` (``uselist=False``), and ``secondary`` many-to-many
    become ``HAS_MANY_THROUGH`` via the association table. Relationships with
    composite or custom join conditions are skipped with a warning.

    Raises:
        AssertionError: If *base* is not a direct subclass of ``orm.DeclarativeBase``.
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )

    registry = registry if registry is not None else AssociationRegistry()
    mappers = sorted(base.registry.mappers, key=lambda m: m.class_.__name__)
    entities = {mapper.class_: entity_from_model(mapper.class_) for mapper in mappers}
    tables: dict[sa.FromClause, Entity[Any]] = {
        entity.table: entity for entity in entities.values()
    }

    for mapper in mappers:
        origin = entities[mapper.class_]
        for relationship in mapper.relationships.values():
            association = _describe(relationship, entities, tables)
            if association is None:
                warnings.warn(
                    f"Skipping {mapper.class_.__name__}.{relationship.key}: "
                    "only single-column joins are supported",
                    stacklevel=2,
                )
                continue
            registry.register(origin, relationship.key, association)

    return registry
