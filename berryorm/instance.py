from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from . import migrations, mutations, queries
from .config import Settings, load_settings
from .extensions import install_default_extensions
from .schema import Schema

_logger = logging.getLogger("berryorm")


class Instance:
    """A schema bound to an async engine.

    Every method accepts ``trx=`` to join a transaction opened with
    ``transaction()``; without it reads use a fresh connection and each write
    call commits on its own.
    """

    def __init__(self, schema: Schema, engine: AsyncEngine):
        self.schema = schema
        self.engine = engine

    def __repr__(self) -> str:
        return f"Instance(tables={list(self.schema)!r}, dialect={self.engine.dialect.name!r})"

    # ----- reads -----
    async def find(self, table_name: str, **params: Any) -> List[Dict[str, Any]]:
        return await queries.find(self.engine, self.schema, table_name, **params)

    async def find_one(self, table_name: str, primary_key: Any = queries._UNSET, **params: Any) -> Optional[Dict[str, Any]]:
        return await queries.find_one(self.engine, self.schema, table_name, primary_key, **params)

    # ----- writes -----
    async def create(self, table_name: str, records: Sequence[Mapping[str, Any]], *, trx: Optional[AsyncConnection] = None) -> List[Dict[str, Any]]:
        return await mutations.create(self.engine, self.schema, table_name, records, trx=trx)

    async def create_one(self, table_name: str, record: Mapping[str, Any], *, trx: Optional[AsyncConnection] = None) -> Dict[str, Any]:
        return await mutations.create_one(self.engine, self.schema, table_name, record, trx=trx)

    async def update(self, table_name: str, where: Optional[Mapping[str, Any]], patch: Mapping[str, Any], *, trx: Optional[AsyncConnection] = None) -> int:
        return await mutations.update(self.engine, self.schema, table_name, where, patch, trx=trx)

    async def update_one(self, table_name: str, where: Optional[Mapping[str, Any]], patch: Mapping[str, Any], *, trx: Optional[AsyncConnection] = None) -> Optional[Dict[str, Any]]:
        return await mutations.update_one(self.engine, self.schema, table_name, where, patch, trx=trx)

    async def remove(self, table_name: str, where: Optional[Mapping[str, Any]], *, trx: Optional[AsyncConnection] = None) -> int:
        return await mutations.remove(self.engine, self.schema, table_name, where, trx=trx)

    async def remove_one(self, table_name: str, where: Optional[Mapping[str, Any]], *, trx: Optional[AsyncConnection] = None) -> Optional[Dict[str, Any]]:
        return await mutations.remove_one(self.engine, self.schema, table_name, where, trx=trx)

    # ----- migrations -----
    async def plan_migrations(self) -> List[migrations.SchemaOperation]:
        return await migrations.plan(self.engine, self.schema)

    async def migrate(self) -> migrations.MigrationResult:
        return await migrations.migrate(self.engine, self.schema)

    # ----- lifecycle -----
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Open a transaction; pass the yielded connection as ``trx=``.

        Commits on normal exit and rolls back when the block raises.
        """
        async with self.engine.begin() as conn:
            yield conn

    async def dispose(self) -> None:
        await self.engine.dispose()


def create_instance_with_engine(schema: Schema, engine: AsyncEngine, *, extensions: bool = True) -> Instance:
    if extensions:
        install_default_extensions()
    return Instance(schema, engine)


def create_instance(
    schema: Schema,
    url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    **engine_kwargs: Any,
) -> Instance:
    """Create an engine from ``url`` (or the configured database URL) and bind ``schema``."""
    settings = settings or load_settings()
    if url is not None and url != settings.database_url:
        settings = Settings(database_url=url, echo=settings.echo, default_extensions=settings.default_extensions)
    kwargs = {**settings.engine_kwargs(), **engine_kwargs}
    engine = create_async_engine(settings.database_url, **kwargs)
    _logger.debug("engine created for %s", engine.url.render_as_string(hide_password=True))
    return create_instance_with_engine(schema, engine, extensions=settings.default_extensions)


__all__ = ['Instance', 'create_instance', 'create_instance_with_engine']
