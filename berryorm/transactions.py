from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

_logger = logging.getLogger("berryorm")

T = TypeVar('T')
Database = Union[AsyncEngine, AsyncConnection]


async def run_in_transaction(
    db: Database,
    trx: Optional[AsyncConnection],
    work: Callable[[AsyncConnection], Awaitable[T]],
) -> T:
    """Run ``work`` inside one transaction.

    An inherited ``trx`` is reused as-is (its owner commits or rolls back). A
    connection passed as ``db`` joins its open transaction or starts one. An
    engine opens a connection and a transaction that commits when ``work``
    returns and rolls back on any exception.
    """
    if trx is not None:
        return await work(trx)
    if isinstance(db, AsyncConnection):
        if db.in_transaction():
            return await work(db)
        async with db.begin():
            return await work(db)
    async with db.begin() as conn:
        _logger.debug("transaction opened")
        return await work(conn)


@asynccontextmanager
async def connect(db: Database, trx: Optional[AsyncConnection] = None) -> AsyncIterator[AsyncConnection]:
    """Yield a connection for reads; never opens a transaction of its own."""
    if trx is not None:
        yield trx
    elif isinstance(db, AsyncConnection):
        yield db
    else:
        async with db.connect() as conn:
            yield conn


def dialect_name(db: Any, trx: Optional[AsyncConnection] = None) -> str:
    return (trx if trx is not None else db).dialect.name


__all__ = ['Database', 'run_in_transaction', 'connect', 'dialect_name']
