from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, create_async_engine

from sqla_includes import AssociationRegistry, Entity
from sqla_includes.keys import key_cache_clear

from .models import (
    Author,
    Base,
    Book,
    BookTag,
    Category,
    Profile,
    Publisher,
    Review,
    Tag,
)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "postgres"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session")
def entities() -> SimpleNamespace:
    """Plain entities over the test tables, hydrating to ``dict`` records."""
    return SimpleNamespace(
        publisher=Entity.from_table(Publisher.__table__, name="publisher"),
        author=Entity.from_table(Author.__table__, name="author"),
        profile=Entity.from_table(Profile.__table__, name="profile"),
        book=Entity.from_table(Book.__table__, name="book"),
        review=Entity.from_table(Review.__table__, name="review"),
        tag=Entity.from_table(Tag.__table__, name="tag"),
        book_tag=Entity.from_table(BookTag.__table__, name="book_tag"),
        category=Entity.from_table(Category.__table__, name="category"),
    )


def build_registry(e: SimpleNamespace) -> AssociationRegistry:
    registry = AssociationRegistry()
    registry.belongs_to(e.author, e.publisher, "publisher", optional=True)
    registry.has_many(e.publisher, e.author, "authors")
    registry.has_many(e.author, e.book, "books")
    registry.has_one(e.author, e.profile, "profile", optional=True)
    registry.belongs_to(e.profile, e.author, "author")
    registry.belongs_to(e.book, e.author, "author")
    registry.has_many(e.book, e.review, "reviews")
    registry.has_many(e.book, e.book_tag, "book_tags")
    registry.belongs_to(e.book_tag, e.tag, "tag")
    registry.belongs_to(e.review, e.book, "book")
    registry.has_many_through(e.book, "tags", pivot="book_tags", target="tag")
    registry.has_many_through(e.author, "reviews", pivot="books", target="reviews")
    registry.has_one_through(e.book, "publisher", pivot="author", target="publisher", optional=True)
    registry.has_one_through(e.review, "author", pivot="book", target="author")
    registry.belongs_to(e.category, e.category, "parent", optional=True)
    registry.has_many(e.category, e.category, "children")
    return registry


@pytest.fixture
def registry(entities: SimpleNamespace) -> AssociationRegistry:
    return build_registry(entities)


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+asyncpg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def session(connection: AsyncConnection) -> AsyncIterator[AsyncSession]:
    sess = AsyncSession(bind=connection, expire_on_commit=False)
    yield sess
    await sess.close()


@pytest.fixture
async def seed_data(session: AsyncSession) -> dict[str, list[Base]]:
    penguin = Publisher(id=1, name="Penguin")
    vintage = Publisher(id=2, name="Vintage")
    session.add_all([penguin, vintage])
    await session.flush()

    ann = Author(id=1, name="Ann", publisher_id=1)
    bob = Author(id=2, name="Bob", publisher_id=None)
    cid = Author(id=3, name="Cid", publisher_id=1)
    session.add_all([ann, bob, cid])
    await session.flush()

    ann_profile = Profile(id=1, bio="Ann bio", author_id=1)
    cid_profile = Profile(id=2, bio="Cid bio", author_id=3)
    session.add_all([ann_profile, cid_profile])
    await session.flush()

    book1 = Book(id=1, title="X", author_id=1)
    book2 = Book(id=2, title="Y", author_id=1)
    book3 = Book(id=3, title="Z", author_id=3)
    session.add_all([book1, book2, book3])
    await session.flush()

    review1 = Review(id=1, score=5, book_id=1)
    review2 = Review(id=2, score=3, book_id=1)
    review3 = Review(id=3, score=4, book_id=3)
    session.add_all([review1, review2, review3])
    await session.flush()

    fiction = Tag(id=1, name="fiction")
    classic = Tag(id=2, name="classic")
    unused = Tag(id=3, name="unused")
    session.add_all([fiction, classic, unused])
    await session.flush()

    session.add_all([
        BookTag(id=1, book_id=1, tag_id=1),
        BookTag(id=2, book_id=1, tag_id=2),
        BookTag(id=3, book_id=2, tag_id=1),
    ])
    await session.flush()

    root = Category(id=1, name="root", parent_id=None)
    child1 = Category(id=2, name="child_1", parent_id=1)
    child2 = Category(id=3, name="child_2", parent_id=1)
    grandchild = Category(id=4, name="grandchild", parent_id=2)
    session.add_all([root, child1, child2, grandchild])
    await session.flush()

    session.expunge_all()

    return {
        "publishers": [penguin, vintage],
        "authors": [ann, bob, cid],
        "profiles": [ann_profile, cid_profile],
        "books": [book1, book2, book3],
        "reviews": [review1, review2, review3],
        "tags": [fiction, classic, unused],
        "categories": [root, child1, child2, grandchild],
    }


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    key_cache_clear()
