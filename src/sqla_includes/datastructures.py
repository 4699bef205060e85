from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, TypeVar


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Read-only, hashable mapping.

    Registry snapshots and per-entity association tables are handed out as
    ``frozendict`` so callers cannot mutate shared configuration, and so the
    values can take part in ``lru_cache`` keys.

    Example:
        >>> fd = frozendict(books=1)
        >>> fd["books"]
        1
        >>> fd.copy(author=2)
        <frozendict {'books': 1, 'author': 2}>
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: object) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def copy(self, *args: Any, **add_or_replace: Any) -> frozendict[K, V]:
        """Return a new ``frozendict`` with items added or replaced."""
        merged = dict(self._dict)
        merged.update(*args, **add_or_replace)
        return type(self)(merged)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Computed lazily: values such as association descriptors are
        # hashable, but plain dict values are not and never get hashed.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))
        return self._hash
