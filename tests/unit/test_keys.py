from __future__ import annotations

import sqlalchemy as sa

from sqla_includes import AssociationRegistry, JoinStep, join_condition, join_steps
from sqla_includes.keys import key_cache_info


class TestJoinSteps:
    def test_direct_has_many(self, registry: AssociationRegistry) -> None:
        (step,) = join_steps(registry.resolve("author", "books"))

        assert step == JoinStep(
            registry.entity("author"), "id", registry.entity("book"), "author_id", True
        )

    def test_direct_belongs_to_is_inner(self, registry: AssociationRegistry) -> None:
        (step,) = join_steps(registry.resolve("book", "author"))

        assert (step.left_column, step.right_column, step.outer) == ("author_id", "id", False)

    def test_optional_is_outer(self, registry: AssociationRegistry) -> None:
        (publisher,) = join_steps(registry.resolve("author", "publisher"))
        (profile,) = join_steps(registry.resolve("author", "profile"))

        assert publisher.outer and profile.outer

    def test_many_through_has_two_outer_steps(self, registry: AssociationRegistry) -> None:
        first, second = join_steps(registry.resolve("book", "tags"))

        assert first.left is registry.entity("book")
        assert first.right is registry.entity("book_tag")
        assert (first.left_column, first.right_column) == ("id", "book_id")
        assert second.left is registry.entity("book_tag")
        assert second.right is registry.entity("tag")
        assert (second.left_column, second.right_column) == ("tag_id", "id")
        assert first.outer and second.outer

    def test_one_through_is_inner(self, registry: AssociationRegistry) -> None:
        steps = join_steps(registry.resolve("review", "author"))

        assert [step.outer for step in steps] == [False, False]

    def test_optional_through_is_outer(self, registry: AssociationRegistry) -> None:
        steps = join_steps(registry.resolve("book", "publisher"))

        assert [step.outer for step in steps] == [True, True]

    def test_cached_per_descriptor(self, registry: AssociationRegistry) -> None:
        association = registry.resolve("author", "books")
        first = join_steps(association)
        second = join_steps(association)

        assert first is second
        assert key_cache_info()["join_steps"].hits >= 1


class TestJoinCondition:
    def test_rewritten_to_aliases(self, registry: AssociationRegistry) -> None:
        (step,) = join_steps(registry.resolve("author", "books"))
        left = registry.entity("author").table.alias("a")
        right = registry.entity("book").table.alias("b")
        clause = join_condition(step, left, right)

        assert str(clause) == "a.id = b.author_id"
        assert isinstance(clause, sa.BinaryExpression)
