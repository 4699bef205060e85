"""Basic sqla-includes usage.

Declares a small blog schema with Core tables, registers its associations
once, then loads posts with their author, comments and tags in one query.
Runs standalone against an in-memory SQLite database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import sqlalchemy as sa

from sqla_includes import AssociationRegistry, Entity, compile_request, fetch, fetch_all


metadata = sa.MetaData()

users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(100)),
)
posts = sa.Table(
    "posts",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("title", sa.String(200)),
    sa.Column("author_id", sa.ForeignKey("users.id")),
)
comments = sa.Table(
    "comments",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("body", sa.Text),
    sa.Column("post_id", sa.ForeignKey("posts.id")),
)
tags = sa.Table(
    "tags",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(50)),
)
post_tags = sa.Table(
    "post_tags",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("post_id", sa.ForeignKey("posts.id")),
    sa.Column("tag_id", sa.ForeignKey("tags.id")),
)


@dataclass
class Post:
    id: int
    title: str
    author_id: int


# ── 1. Describe entities and register associations once ──────────────

user = Entity.from_table(users, name="user")
post = Entity.from_table(posts, lambda values: Post(**values), name="post")
comment = Entity.from_table(comments, name="comment")
tag = Entity.from_table(tags, name="tag")
post_tag = Entity.from_table(post_tags, name="post_tag")

registry = AssociationRegistry()
registry.belongs_to(post, user, "author")
registry.has_many(user, post, "posts")
registry.has_many(post, comment, "comments")
registry.has_many(post, post_tag, "post_tags")
registry.belongs_to(post_tag, tag, "tag")
registry.has_many_through(post, "tags", pivot="post_tags", target="tag")


# ── 2. Build a request tree ──────────────────────────────────────────


def posts_request():
    request = fetch(registry, post).order_by("id")
    request.include("author")
    request.include("comments", lambda c: c.order_by("id"))
    request.include("tags", lambda t: t.filter(lambda alias: alias.c.name != "draft"))
    return request


# ── 3. Execute and walk the graph ────────────────────────────────────


def main() -> None:
    logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    engine = sa.create_engine("sqlite://")
    metadata.create_all(engine)

    with engine.begin() as conn:
        conn.execute(users.insert(), [{"id": 1, "name": "ann"}, {"id": 2, "name": "bob"}])
        conn.execute(
            posts.insert(),
            [
                {"id": 1, "title": "Hello", "author_id": 1},
                {"id": 2, "title": "Again", "author_id": 1},
            ],
        )
        conn.execute(
            comments.insert(),
            [{"id": 1, "body": "nice", "post_id": 1}, {"id": 2, "body": "+1", "post_id": 1}],
        )
        conn.execute(tags.insert(), [{"id": 1, "name": "intro"}, {"id": 2, "name": "draft"}])
        conn.execute(
            post_tags.insert(),
            [{"id": 1, "post_id": 1, "tag_id": 1}, {"id": 2, "post_id": 2, "tag_id": 2}],
        )

    print(compile_request(posts_request(), dialect=engine.dialect))

    with engine.connect() as conn:
        for node in fetch_all(conn, posts_request()):
            print(node.entity.title, "by", node["author"].entity["name"])
            print("  comments:", [c.entity["body"] for c in node["comments"]])
            print("  tags:", [t.entity["name"] for t in node["tags"]])


if __name__ == "__main__":
    main()
