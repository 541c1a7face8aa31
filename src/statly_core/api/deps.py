"""Dependency providers for route handlers.

Database connections are opened per request and closed when the response is
done. Async generators keep them on the event loop thread.
"""
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request

from ..attribution.links import LinkStore
from ..context import ServiceContext
from ..metrics.store import MetricStore


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


Context = Annotated[ServiceContext, Depends(get_context)]


async def get_metric_store(context: Context) -> AsyncIterator[MetricStore]:
    conn = context.open_db()
    try:
        yield MetricStore(conn)
    finally:
        conn.close()


async def get_link_store(context: Context) -> AsyncIterator[LinkStore]:
    conn = context.open_db()
    try:
        yield LinkStore(conn)
    finally:
        conn.close()


Store = Annotated[MetricStore, Depends(get_metric_store)]
Links = Annotated[LinkStore, Depends(get_link_store)]
