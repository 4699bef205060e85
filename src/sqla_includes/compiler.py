from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import sqlalchemy as sa

from .associations import Association
from .datastructures import frozendict
from .entity import Entity
from .errors import AmbiguousColumn
from .keys import join_condition, join_steps
from .request import OrderKey, RequestNode


logger = logging.getLogger(__name__)

DEFAULT_ALIAS_PREFIX: Final[str] = "t"
DEFAULT_LABEL_SEPARATOR: Final[str] = "_"


@dataclass(slots=True, frozen=True)
class CompileOptions:
    alias_prefix: str = field(default=DEFAULT_ALIAS_PREFIX)
    label_separator: str = field(default=DEFAULT_LABEL_SEPARATOR)
    dialect: sa.Dialect | None = field(default=None)


@dataclass(slots=True, frozen=True)
class NodePartition:
    """Where one request node's columns live in a result row.

    ``start``/``stop`` delimit the node's half-open column range and
    ``key_index`` is the absolute position of its primary key. ``parent`` is
    the index of the parent partition inside :attr:`CompiledPlan.partitions`;
    partitions are stored in depth-first order, so parents always precede
    their children.
    """

    path: tuple[str, ...]
    entity: Entity[Any]
    alias: str
    start: int
    stop: int
    key_index: int
    outer: bool
    parent: int | None = None
    name: str | None = None
    association: Association | None = None

    @property
    def many(self) -> bool:
        return self.association is not None and self.association.is_many

    def take(self, values: Sequence[Any]) -> Sequence[Any]:
        return values[self.start : self.stop]


@dataclass(slots=True, frozen=True)
class CompiledPlan:
    """A compiled request: the statement, its rendering and the partition map."""

    statement: sa.Select[Any]
    sql: str
    parameters: Sequence[Any] | Mapping[str, Any]
    partitions: tuple[NodePartition, ...]
    join_count: int

    @property
    def aliases(self) -> tuple[str, ...]:
        """Aliases of the request nodes, root first (junction aliases excluded)."""
        return tuple(partition.alias for partition in self.partitions)

    def partition(self, path: str | tuple[str, ...] = ()) -> NodePartition:
        """Return the partition of the node at *path* (``"books.author"`` or a tuple)."""
        key = tuple(path.split(".")) if isinstance(path, str) and path else tuple(path)
        for partition in self.partitions:
            if partition.path == key:
                return partition
        raise KeyError(path)

    def __str__(self) -> str:
        return self.sql


class PlanCompiler:
    """Compile a request tree into one SELECT and its column partition map.

    Nodes are visited depth-first. Every node, and every junction table of a
    through association, gets a fresh alias from a per-statement counter, so
    repeated entities (self-referential or sibling includes) never collide.
    The compiler does not deduplicate fan-out rows; :mod:`.hydrator` does.

    One instance compiles one statement.
    """

    __slots__ = (
        "_counter",
        "_from",
        "_joins",
        "_labels",
        "_orders",
        "_partitions",
        "_selected",
        "_where",
        "options",
    )

    def __init__(self, options: CompileOptions | None = None) -> None:
        self.options = options or CompileOptions()
        self._counter = 0
        self._joins = 0
        self._from: sa.FromClause | None = None
        self._selected: list[sa.Label[Any]] = []
        self._labels: set[str] = set()
        self._where: list[sa.ColumnElement[bool]] = []
        self._orders: list[sa.ColumnElement[Any]] = []
        self._partitions: list[NodePartition] = []

    def compile(self, root: RequestNode) -> CompiledPlan:
        """Compile the tree rooted at *root*, freezing it and its registry.

        Raises:
            ValueError: If *root* is not the root of its tree.
            AmbiguousColumn: If two selected columns share a label.
        """
        if not root.is_root:
            raise ValueError(f"{root!r} is not a root request node")
        if self._partitions:
            raise RuntimeError("PlanCompiler instances compile a single statement")

        root.freeze()
        root.registry.freeze()

        self._visit(root, parent_alias=None, parent_index=None, parent_outer=False)

        assert self._from is not None
        statement = sa.select(*self._selected).select_from(self._from)
        if self._where:
            statement = statement.where(*self._where)
        if self._orders:
            statement = statement.order_by(*self._orders)

        # expanding parameters (IN lists) are rendered so sql/parameters run as-is
        compiled = statement.compile(
            dialect=self.options.dialect,
            compile_kwargs={"render_postcompile": True},
        )
        parameters: Sequence[Any] | Mapping[str, Any]
        if compiled.positional and compiled.positiontup is not None:
            parameters = tuple(compiled.params[name] for name in compiled.positiontup)
        else:
            parameters = frozendict(compiled.params)

        plan = CompiledPlan(
            statement=statement,
            sql=str(compiled),
            parameters=parameters,
            partitions=tuple(self._partitions),
            join_count=self._joins,
        )
        logger.debug(
            "Compiled request %s: %d nodes, %d aliases, %d joins, %d columns",
            root.entity.name,
            len(plan.partitions),
            self._counter,
            self._joins,
            len(self._selected),
        )
        return plan

    def _alias(self, entity: Entity[Any]) -> sa.Alias:
        alias = entity.table.alias(f"{self.options.alias_prefix}{self._counter}")
        self._counter += 1
        return alias

    def _visit(
        self,
        node: RequestNode,
        *,
        parent_alias: sa.Alias | None,
        parent_index: int | None,
        parent_outer: bool,
    ) -> None:
        outer = parent_outer
        if node.association is None:
            alias = self._alias(node.entity)
            self._from = alias
            self._where.extend(condition(alias) for condition in node.filters)
        else:
            assert parent_alias is not None
            alias, outer = self._join(node, node.association, parent_alias, parent_outer)

        start = len(self._selected)
        for column in node.entity.column_names:
            label = f"{alias.name}{self.options.label_separator}{column}"
            if label in self._labels:
                raise AmbiguousColumn(f"Label {label!r} selected twice")
            self._labels.add(label)
            self._selected.append(alias.c[column].label(label))

        index = len(self._partitions)
        self._partitions.append(
            NodePartition(
                path=node.path,
                entity=node.entity,
                alias=alias.name,
                start=start,
                stop=len(self._selected),
                key_index=start + node.entity.key_position,
                outer=outer,
                parent=parent_index,
                name=node.name,
                association=node.association,
            )
        )
        self._orders.extend(_order_clause(alias, key) for key in node.orders)

        for _, child in node.includes:
            self._visit(child, parent_alias=alias, parent_index=index, parent_outer=outer)

    def _join(
        self,
        node: RequestNode,
        association: Association,
        parent_alias: sa.Alias,
        parent_outer: bool,
    ) -> tuple[sa.Alias, bool]:
        """Join *node* onto *parent_alias* and return its alias and outerness.

        Below an outer-joined node every join stays outer, otherwise an inner
        edge would drop the rows where the optional parent is absent.
        """
        assert self._from is not None
        steps = join_steps(association)
        left = parent_alias
        outer = parent_outer
        for position, step in enumerate(steps, start=1):
            right = self._alias(step.right)
            onclause = join_condition(step, left, right)
            if position == len(steps) and node.filters:
                onclause = sa.and_(onclause, *(condition(right) for condition in node.filters))

            outer = outer or step.outer
            self._from = self._from.join(right, onclause, isouter=outer)
            self._joins += 1
            left = right

        return left, outer


def _order_clause(alias: sa.Alias, key: OrderKey) -> sa.ColumnElement[Any]:
    if callable(key):
        return key(alias)

    if key.startswith("-"):
        return alias.c[key[1:]].desc()

    return alias.c[key].asc()


def compile_request(
    root: RequestNode,
    *,
    dialect: sa.Dialect | None = None,
    alias_prefix: str = DEFAULT_ALIAS_PREFIX,
    label_separator: str = DEFAULT_LABEL_SEPARATOR,
) -> CompiledPlan:
    """Compile the request tree rooted at *root* into a :class:`CompiledPlan`.

    Args:
        root: Root node built with :func:`~sqla_includes.request.fetch`.
        dialect: Dialect used to render ``plan.sql`` and ``plan.parameters``.
            Defaults to SQLAlchemy's generic dialect.
        alias_prefix: Prefix of the generated table aliases.
        label_separator: Separator between alias and column in result labels.

    Example:
        >>> authors = fetch(registry, author)
        >>> authors.include("books")
        >>> plan = compile_request(authors)
        >>> plan.aliases
        ('t0', 't1')
    """
    options = CompileOptions(
        alias_prefix=alias_prefix,
        label_separator=label_separator,
        dialect=dialect,
    )
    return PlanCompiler(options).compile(root)
