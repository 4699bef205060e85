from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import sqlalchemy as sa

from .datastructures import frozendict
from .errors import InvalidAssociation


R = TypeVar("R")
Decoder = Callable[[Any], Any]
Factory = Callable[[Mapping[str, Any]], R]


def passthrough(value: Any) -> Any:
    """Default column decoder: SQLAlchemy already applied the column type."""
    return value


@dataclass(frozen=True, eq=False, slots=True)
class Entity(Generic[R]):
    """What the query core needs to know about one record type.

    An entity is a capability set rather than a base class: a stable ``name``,
    the backing ``table``, a single-column ``primary_key``, an ordered column
    manifest of ``(column name, decoder)`` pairs, and a ``factory`` that builds
    an instance from a decoded ``{column: value}`` mapping.

    Entities compare and hash by identity; create one per record type at
    startup and reuse it.
    """

    name: str
    table: sa.Table
    primary_key: str
    columns: tuple[tuple[str, Decoder], ...]
    factory: Factory[R]

    def __post_init__(self) -> None:
        names = self.column_names
        if len(set(names)) != len(names):
            raise InvalidAssociation(f"Duplicate column in manifest of {self.name!r}: {names}")

        missing = [name for name in names if name not in self.table.c]
        if missing:
            raise InvalidAssociation(
                f"Columns {missing} of {self.name!r} are not on table {self.table.name!r}"
            )

        if self.primary_key not in names:
            raise InvalidAssociation(
                f"Primary key {self.primary_key!r} of {self.name!r} is not a selected column"
            )

    @classmethod
    def from_table(
        cls,
        table: sa.Table,
        factory: Factory[R] = dict,  # type: ignore[assignment]
        *,
        name: str | None = None,
        primary_key: str | None = None,
        columns: Sequence[str] | None = None,
        decoders: Mapping[str, Decoder] | None = None,
    ) -> Entity[R]:
        """Build an entity from table metadata.

        Args:
            table: Table holding the records.
            factory: Called with the decoded ``{column: value}`` mapping of one
                record. Defaults to ``dict``.
            name: Entity identifier. Defaults to the table name.
            primary_key: Key column. Defaults to the table's first primary key
                column; composite keys are not supported.
            columns: Subset and order of columns to select. Defaults to all.
            decoders: Per-column decoders overriding :func:`passthrough`.

        Raises:
            InvalidAssociation: If no primary key can be determined or a named
                column is not on the table.
        """
        decoders = decoders or {}
        if primary_key is None:
            pk = next(iter(table.primary_key), None)
            if pk is None:
                raise InvalidAssociation(
                    f"Table {table.name!r} has no primary key; pass primary_key explicitly"
                )
            primary_key = pk.name

        selected = tuple(columns) if columns is not None else tuple(c.name for c in table.c)
        unknown = set(decoders) - set(selected)
        if unknown:
            raise InvalidAssociation(f"Decoders given for unselected columns: {sorted(unknown)}")

        return cls(
            name=name or table.name,
            table=table,
            primary_key=primary_key,
            columns=tuple((column, decoders.get(column, passthrough)) for column in selected),
            factory=factory,
        )

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.columns)

    @property
    def key_position(self) -> int:
        """Index of the primary key column inside the manifest."""
        return self.column_names.index(self.primary_key)

    def decode(self, raw: Sequence[Any]) -> frozendict[str, Any]:
        """Decode one slice of raw values, in manifest order."""
        return frozendict(
            (name, None if value is None else decoder(value))
            for (name, decoder), value in zip(self.columns, raw, strict=True)
        )

    def build(self, values: Mapping[str, Any]) -> R:
        return self.factory(values)

    def __repr__(self) -> str:
        return f"<Entity {self.name!r} table={self.table.name!r} pk={self.primary_key!r}>"
