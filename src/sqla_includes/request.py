from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, Union

import sqlalchemy as sa

from .associations import Association
from .entity import Entity
from .errors import CyclicInclude, DuplicateInclude, RequestFrozen
from .registry import AssociationRegistry


Condition = Callable[[sa.FromClause], sa.ColumnElement[bool]]
OrderKey = Union[str, Callable[[sa.FromClause], sa.ColumnElement[Any]]]


class RequestNode:
    """One node of a request tree: an entity to fetch plus its eager includes.

    Filters and orders are callables that receive the node's aliased table at
    compile time, so they can never reference another node's columns by
    accident::

        authors = fetch(registry, author)
        authors.filter(lambda t: t.c.name.startswith("A")).order_by("name")
        authors.include("books", lambda books: books.order_by("-id"))

    Nodes are mutable until the tree is compiled; compiling freezes every node
    of the tree.
    """

    __slots__ = (
        "_filters",
        "_frozen",
        "_includes",
        "_orders",
        "association",
        "entity",
        "name",
        "parent",
        "registry",
    )

    def __init__(
        self,
        registry: AssociationRegistry,
        entity: Entity[Any],
        *,
        name: str | None = None,
        association: Association | None = None,
        parent: RequestNode | None = None,
    ) -> None:
        if (parent is None) != (association is None):
            raise ValueError("Only the root node may lack an incoming association")

        self.registry = registry
        self.entity = entity
        self.name = name
        self.association = association
        self.parent = parent
        self._includes: dict[str, RequestNode] = {}
        self._filters: list[Condition] = []
        self._orders: list[OrderKey] = []
        self._frozen = False

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def root(self) -> RequestNode:
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def path(self) -> tuple[str, ...]:
        """Association names from the root down to this node."""
        names: list[str] = []
        node: RequestNode | None = self
        while node is not None and node.name is not None:
            names.append(node.name)
            node = node.parent
        return tuple(reversed(names))

    @property
    def includes(self) -> tuple[tuple[str, RequestNode], ...]:
        return tuple(self._includes.items())

    @property
    def filters(self) -> tuple[Condition, ...]:
        return tuple(self._filters)

    @property
    def orders(self) -> tuple[OrderKey, ...]:
        return tuple(self._orders)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def child(self, name: str) -> RequestNode:
        """Return the included child named *name*, raising ``KeyError`` if absent."""
        return self._includes[name]

    def include(
        self,
        name: str,
        configure: Callable[[RequestNode], object] | None = None,
    ) -> RequestNode:
        """Eagerly include the association ``<entity>.<name>``.

        Args:
            name: Association name registered on this node's entity.
            configure: Optional callback receiving the new child, for filters,
                orders or nested includes.

        Returns:
            The new child node.

        Raises:
            UnknownAssociation: If *name* is not registered for the entity.
            DuplicateInclude: If *name* is already included on this node.
            CyclicInclude: If the association is already open on the path from
                the root.
        """
        self._check_mutable()
        association = self.registry.resolve(self.entity, name)

        if name in self._includes:
            raise DuplicateInclude(f"{self._describe(name)} is already included")

        node: RequestNode | None = self
        while node is not None and node.association is not None:
            if node.association == association:
                raise CyclicInclude(
                    f"{self._describe(name)} re-enters association {node._describe()} "
                    "that is already open on this path"
                )
            node = node.parent

        child = RequestNode(
            self.registry,
            association.target,
            name=name,
            association=association,
            parent=self,
        )
        self._includes[name] = child
        if configure is not None:
            configure(child)

        return child

    def include_path(self, dotted: str) -> RequestNode:
        """Include a dot-separated chain such as ``"books.author.publisher"``.

        Segments already included are reused, so several paths may share a
        prefix. Returns the node of the last segment.
        """
        node = self
        for segment in dotted.split("."):
            if not segment:
                raise ValueError(f"Empty segment in include path {dotted!r}")
            existing = node._includes.get(segment)
            node = existing if existing is not None else node.include(segment)

        return node

    def filter(self, *conditions: Condition) -> RequestNode:
        """Restrict this node's rows. Conditions receive the node's aliased table."""
        self._check_mutable()
        self._filters.extend(conditions)
        return self

    def order_by(self, *keys: OrderKey) -> RequestNode:
        """Order by column names (``"-name"`` for descending) or callables."""
        self._check_mutable()
        for key in keys:
            if isinstance(key, str):
                column = key.removeprefix("-")
                if column not in self.entity.table.c:
                    raise ValueError(
                        f"Column {column!r} not found on {self.entity.name!r}. "
                        f"Available: {[c.name for c in self.entity.table.c]}"
                    )
        self._orders.extend(keys)
        return self

    def walk(self) -> Iterator[RequestNode]:
        """Yield this node and its descendants, depth-first in include order."""
        stack: list[RequestNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node._includes.values()))

    def freeze(self) -> None:
        for node in self.walk():
            node._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RequestFrozen(f"Request node {self._describe()} has already been compiled")

    def _describe(self, name: str | None = None) -> str:
        return ".".join((self.root.entity.name, *self.path, *((name,) if name else ())))

    def __repr__(self) -> str:
        return f"<RequestNode {self._describe()} includes={list(self._includes)}>"


def fetch(registry: AssociationRegistry, entity: Entity[Any]) -> RequestNode:
    """Start a request tree rooted at *entity*."""
    return RequestNode(registry, entity)
