from __future__ import annotations

from typing import TYPE_CHECKING, Any, Union

import sqlalchemy as sa
from sqlalchemy import orm

from .compiler import CompiledPlan, compile_request
from .hydrator import GraphNode, hydrate
from .request import RequestNode


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

SyncBind = Union[sa.Connection, orm.Session]
AsyncBind = Union["AsyncConnection", "AsyncSession"]


def _dialect(bind: Any) -> sa.Dialect:
    dialect = getattr(bind, "dialect", None)
    return dialect if dialect is not None else bind.get_bind().dialect


def _plan(bind: Any, request: RequestNode | CompiledPlan) -> CompiledPlan:
    if isinstance(request, CompiledPlan):
        return request
    return compile_request(request, dialect=_dialect(bind))


def fetch_all(bind: SyncBind, request: RequestNode | CompiledPlan) -> list[GraphNode[Any]]:
    """Compile *request* if needed, execute it on *bind* and hydrate the rows.

    Errors raised by the connection are not caught or retried.

    Example::

        with engine.connect() as conn:
            authors = fetch_all(conn, fetch(registry, author).include("books").root)
    """
    plan = _plan(bind, request)
    return hydrate(plan, bind.execute(plan.statement))


async def afetch_all(bind: AsyncBind, request: RequestNode | CompiledPlan) -> list[GraphNode[Any]]:
    """Async variant of :func:`fetch_all` for ``AsyncConnection``/``AsyncSession``."""
    plan = _plan(bind, request)
    result = await bind.execute(plan.statement)
    return hydrate(plan, result)
