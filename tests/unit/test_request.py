from __future__ import annotations

import pytest

from sqla_includes import (
    AssociationRegistry,
    CyclicInclude,
    DuplicateInclude,
    RequestFrozen,
    UnknownAssociation,
    compile_request,
    fetch,
)


class TestInclude:
    def test_include_returns_child(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        books = authors.include("books")

        assert books.entity is registry.entity("book")
        assert books.parent is authors
        assert books.association is registry.resolve("author", "books")
        assert authors.child("books") is books
        assert authors.includes == (("books", books),)

    def test_configure_callback(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        books = authors.include("books", lambda node: node.include("reviews"))

        assert [name for name, _ in books.includes] == ["reviews"]

    def test_nested_path(self, registry: AssociationRegistry) -> None:
        books = fetch(registry, registry.entity("book"))
        publisher = books.include("author").include("publisher")

        assert publisher.path == ("author", "publisher")
        assert publisher.root is books
        assert books.is_root and not publisher.is_root

    def test_unknown_association(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))

        with pytest.raises(UnknownAssociation, match="'chapters'"):
            authors.include("chapters")
        assert authors.includes == ()

    def test_duplicate_include(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        authors.include("books")

        with pytest.raises(DuplicateInclude, match=r"author\.books is already included"):
            authors.include("books")

    def test_reentering_open_association_rejected(self, registry: AssociationRegistry) -> None:
        categories = fetch(registry, registry.entity("category"))
        children = categories.include("children")

        with pytest.raises(CyclicInclude, match="already open"):
            children.include("children")

    def test_cyclic_include_is_duplicate_include(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        books = authors.include("books")
        author = books.include("author")

        with pytest.raises(DuplicateInclude):
            author.include("books")

    def test_inverse_association_allowed(self, registry: AssociationRegistry) -> None:
        categories = fetch(registry, registry.entity("category"))
        parent = categories.include("children").include("parent")

        assert parent.path == ("children", "parent")

    def test_siblings_may_share_entity(self, registry: AssociationRegistry) -> None:
        books = fetch(registry, registry.entity("book"))
        books.include("tags")
        books.include("book_tags").include("tag")

        assert [name for name, _ in books.includes] == ["tags", "book_tags"]


class TestIncludePath:
    def test_dotted_path(self, registry: AssociationRegistry) -> None:
        books = fetch(registry, registry.entity("book"))
        leaf = books.include_path("author.publisher")

        assert leaf.path == ("author", "publisher")

    def test_shared_prefix_is_reused(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        authors.include_path("books.reviews")
        authors.include_path("books.tags")

        books = authors.child("books")
        assert [name for name, _ in authors.includes] == ["books"]
        assert [name for name, _ in books.includes] == ["reviews", "tags"]

    def test_invalid_segment(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))

        with pytest.raises(UnknownAssociation, match="No association 'chapters' registered on 'book'"):
            authors.include_path("books.chapters")

    def test_empty_segment(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))

        with pytest.raises(ValueError, match="Empty segment"):
            authors.include_path("books..reviews")


class TestFiltersAndOrders:
    def test_filters_accumulate(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        authors.filter(lambda t: t.c.id > 1).filter(lambda t: t.c.name != "x")

        assert len(authors.filters) == 2

    def test_order_by_validates_columns(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        authors.order_by("name", "-id")

        with pytest.raises(ValueError, match="Column 'age' not found on 'author'"):
            authors.order_by("-age")
        assert authors.orders == ("name", "-id")


class TestFreeze:
    def test_compile_freezes_tree(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        books = authors.include("books")
        compile_request(authors)

        assert authors.frozen and books.frozen
        with pytest.raises(RequestFrozen):
            books.include("reviews")
        with pytest.raises(RequestFrozen):
            authors.filter(lambda t: t.c.id == 1)
        with pytest.raises(RequestFrozen):
            books.order_by("title")

    def test_walk_is_depth_first(self, registry: AssociationRegistry) -> None:
        authors = fetch(registry, registry.entity("author"))
        authors.include("books").include("reviews")
        authors.include("profile")

        assert [node.path for node in authors.walk()] == [
            (),
            ("books",),
            ("books", "reviews"),
            ("profile",),
        ]
