from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from .compiler import CompiledPlan, NodePartition
from .errors import HydrationConsistencyError


logger = logging.getLogger(__name__)

R = TypeVar("R")
Included = Union["GraphNode[Any]", list["GraphNode[Any]"], None]


@dataclass(slots=True, eq=False)
class GraphNode(Generic[R]):
    """A hydrated entity plus its included associations.

    ``includes`` maps every association name requested on the node to a list
    of children (to-many) or to a single child or ``None`` (to-one).
    """

    entity: R
    key: Any
    includes: dict[str, Included] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Included:
        return self.includes[name]

    def __repr__(self) -> str:
        return f"<GraphNode {self.entity!r} includes={list(self.includes)}>"


class Hydrator:
    """Regroup flat joined rows into trees of distinct entities.

    Rows are fed one at a time; each row is cut into per-node slices with the
    plan's partition map. Entities are materialized on first sight and reused
    afterwards: roots by primary key, every other node by ``(parent, key)``,
    so each child belongs to exactly one parent. This collapses the fan-out of
    to-many joins back into one parent holding many children.
    """

    __slots__ = ("_children", "_owned", "_roots", "plan", "rows")

    def __init__(self, plan: CompiledPlan) -> None:
        self.plan = plan
        self.rows = 0
        self._roots: dict[Any, GraphNode[Any]] = {}
        self._owned: dict[tuple[int, int, Any], GraphNode[Any]] = {}
        self._children: tuple[tuple[NodePartition, ...], ...] = tuple(
            tuple(p for p in plan.partitions if p.parent == index)
            for index in range(len(plan.partitions))
        )

    def feed(self, row: Iterable[Any]) -> None:
        """Merge one result row into the graph.

        Raises:
            HydrationConsistencyError: If an inner-joined node has a null key,
                or a to-one include changes identity under the same parent.
        """
        values = tuple(row)
        self.rows += 1
        seen: list[GraphNode[Any] | None] = []

        for index, partition in enumerate(self.plan.partitions):
            parent = seen[partition.parent] if partition.parent is not None else None
            if partition.parent is not None and parent is None:
                # the parent is absent in this row, and so is its whole subtree
                seen.append(None)
                continue

            key = values[partition.key_index]
            if key is None:
                if not partition.outer:
                    raise HydrationConsistencyError(
                        f"Inner-joined node {_describe(partition)} returned a null primary key"
                    )
                seen.append(None)
                continue

            if parent is None:
                node = self._roots.get(key)
                if node is None:
                    node = self._roots[key] = self._materialize(index, partition, key, values)
            else:
                node = self._attach(index, partition, parent, key, values)

            seen.append(node)

    def _attach(
        self,
        index: int,
        partition: NodePartition,
        parent: GraphNode[Any],
        key: Any,
        values: Sequence[Any],
    ) -> GraphNode[Any]:
        assert partition.name is not None
        if partition.many:
            owned_key = (index, id(parent), key)
            node = self._owned.get(owned_key)
            if node is None:
                node = self._owned[owned_key] = self._materialize(index, partition, key, values)
                children = parent.includes[partition.name]
                assert isinstance(children, list)
                children.append(node)
            return node

        current = parent.includes[partition.name]
        if current is None:
            node = self._materialize(index, partition, key, values)
            parent.includes[partition.name] = node
            return node

        assert isinstance(current, GraphNode)
        if current.key != key:
            raise HydrationConsistencyError(
                f"To-one include {_describe(partition)} of {parent.entity!r} "
                f"resolved to both {current.key!r} and {key!r}"
            )
        return current

    def _materialize(
        self,
        index: int,
        partition: NodePartition,
        key: Any,
        values: Sequence[Any],
    ) -> GraphNode[Any]:
        entity = partition.entity
        instance = entity.build(entity.decode(partition.take(values)))
        includes: dict[str, Included] = {
            child.name: ([] if child.many else None)  # type: ignore[misc]
            for child in self._children[index]
        }
        return GraphNode(entity=instance, key=key, includes=includes)

    def result(self) -> list[GraphNode[Any]]:
        """Root entities in the order their keys first appeared."""
        return list(self._roots.values())


def _describe(partition: NodePartition) -> str:
    return ".".join(partition.path) or partition.entity.name


def hydrate(plan: CompiledPlan, rows: Iterable[Iterable[Any]]) -> list[GraphNode[Any]]:
    """Hydrate *rows* produced by executing *plan* into root graph nodes.

    Args:
        plan: The plan whose statement produced the rows.
        rows: Result rows, each addressable by position (``sqlalchemy.Row``,
            tuples, ...). Consumed once, in order.

    Returns:
        Root :class:`GraphNode` objects in first-seen order, with every include
        populated (empty list or ``None`` when the data has none).
    """
    hydrator = Hydrator(plan)
    for row in rows:
        hydrator.feed(row)

    roots = hydrator.result()
    logger.debug("Hydrated %d root entities from %d rows", len(roots), hydrator.rows)
    return roots
