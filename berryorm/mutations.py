"""Nested writes.

Every top-level call runs partition -> resolve parents -> write self -> fan out
children inside one transaction. Children are written one at a time, in payload
order, on the same connection.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, update as sa_update
from sqlalchemy.ext.asyncio import AsyncConnection

from .adapters import BaseAdapter, get_adapter
from .data_types import transform_input_record
from .errors import UnknownField
from .queries import fetch_by_ids, find_one, insert_record, select_ids
from .schema import BelongsTo, HasMany, HasOne, ManyToMany, RelationDefinition, Schema, to_array
from .transactions import Database, run_in_transaction

_logger = logging.getLogger("berryorm")


@dataclass
class RelationPayload:
    name: str
    definition: RelationDefinition
    value: Any


@dataclass
class _Writer:
    """Connection-bound state shared by every step of one mutation tree."""
    conn: AsyncConnection
    schema: Schema
    adapter: BaseAdapter

    @property
    def dialect(self) -> str:
        return self.adapter.transformer_key


def partition_record(schema: Schema, table_name: str, record: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[RelationPayload]]:
    """Split ``record`` into column values and relation payloads.

    A belongs-to key holding a mapping is a nested parent payload; any other
    value under it is the raw foreign key and stays a column value.
    """
    columns = schema.columns(table_name, include_belongs_to=True)
    relations = schema.relations(table_name)
    scalar: Dict[str, Any] = {}
    nested: List[RelationPayload] = []
    for key, value in record.items():
        relation = relations.get(key)
        if relation is not None and not (isinstance(relation, BelongsTo) and not isinstance(value, Mapping)):
            nested.append(RelationPayload(name=key, definition=relation, value=value))
        elif key in columns:
            scalar[key] = value
        else:
            raise UnknownField(table_name, key, 'payload')
    return scalar, nested


def _as_payload(schema: Schema, table_name: str, value: Any) -> Dict[str, Any]:
    # A bare key value references an existing record
    if isinstance(value, Mapping):
        return dict(value)
    return {schema.primary_key(table_name): value}


# ----- internal steps (all on one connection) -----

async def _insert(w: _Writer, table_name: str, scalar: Mapping[str, Any]) -> Dict[str, Any]:
    data = transform_input_record(w.dialect, w.schema.columns(table_name, include_belongs_to=True), scalar)
    return await insert_record(w.conn, w.schema, table_name, data, w.adapter)


async def _create_one(w: _Writer, table_name: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    scalar, nested = partition_record(w.schema, table_name, record)
    await _resolve_parents(w, nested, scalar)
    inserted = await _insert(w, table_name, scalar)
    await _fan_out_on_create(w, table_name, nested, inserted)
    return inserted


async def _update_ids(w: _Writer, table_name: str, ids: Sequence[Any], patch: Mapping[str, Any]) -> List[Dict[str, Any]]:
    scalar, nested = partition_record(w.schema, table_name, patch)
    await _resolve_parents(w, nested, scalar)
    if scalar and ids:
        tbl = w.schema.table(table_name)
        pk = w.schema.primary_key(table_name)
        data = transform_input_record(w.dialect, w.schema.columns(table_name, include_belongs_to=True), scalar)
        await w.conn.execute(sa_update(tbl).where(tbl.c[pk].in_(list(ids))).values(data))
        if pk in data:
            # the patch moved the key; later reads must follow it
            ids = [data[pk]]
    refreshed = await fetch_by_ids(w.conn, w.schema, table_name, ids, w.dialect)
    for record in refreshed:
        await _fan_out_on_update(w, table_name, nested, record)
    return refreshed


async def _upsert(w: _Writer, table_name: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Update the record named by the payload's primary key, or insert it when absent."""
    pk = w.schema.primary_key(table_name)
    key = payload.get(pk)
    if key is not None:
        existing = await select_ids(w.conn, w.schema, table_name, {pk: key}, w.dialect)
        if existing:
            patch = {k: v for k, v in payload.items() if k != pk}
            updated = await _update_ids(w, table_name, existing, patch)
            return updated[0]
    return await _create_one(w, table_name, payload)


async def _resolve_parents(w: _Writer, nested: List[RelationPayload], scalar: Dict[str, Any]) -> None:
    for rel in nested:
        if not isinstance(rel.definition, BelongsTo) or not rel.value:
            continue
        parent = await _upsert(w, rel.definition.table, rel.value)
        # belongs-to field name is the owning column
        scalar[rel.name] = parent[rel.definition.foreign_key]


async def _link(w: _Writer, relation: ManyToMany, parent_key: Any, payloads: List[Any]) -> None:
    target_pk = w.schema.primary_key(relation.table)
    through = relation.through
    for value in payloads:
        child = await _upsert(w, relation.table, _as_payload(w.schema, relation.table, value))
        await _insert(w, through.table, {through.source_fk: parent_key, through.target_fk: child[target_pk]})


async def _fan_out_on_create(w: _Writer, table_name: str, nested: List[RelationPayload], parent: Mapping[str, Any]) -> None:
    parent_key = parent[w.schema.primary_key(table_name)]
    for rel in nested:
        definition = rel.definition
        if isinstance(definition, BelongsTo) or not rel.value:
            continue
        payloads = to_array(rel.value) if isinstance(rel.value, (list, tuple, Mapping)) else [rel.value]
        if isinstance(definition, ManyToMany):
            await _link(w, definition, parent_key, payloads)
        elif isinstance(definition, (HasOne, HasMany)):
            for value in payloads:
                # a child carrying its key is re-parented rather than duplicated
                child = {**_as_payload(w.schema, definition.table, value), definition.foreign_key: parent_key}
                await _upsert(w, definition.table, child)


async def _fan_out_on_update(w: _Writer, table_name: str, nested: List[RelationPayload], parent: Mapping[str, Any]) -> None:
    parent_key = parent[w.schema.primary_key(table_name)]
    for rel in nested:
        definition = rel.definition
        if isinstance(definition, BelongsTo) or rel.value is None:
            continue
        payloads = to_array(rel.value) if isinstance(rel.value, (list, tuple, Mapping)) else [rel.value]
        if isinstance(definition, ManyToMany):
            # Replace-all: existing links (and any extra junction columns) are dropped
            through = definition.through
            junction = w.schema.table(through.table)
            await w.conn.execute(delete(junction).where(junction.c[through.source_fk] == parent_key))
            await _link(w, definition, parent_key, payloads)
        elif isinstance(definition, (HasOne, HasMany)):
            for value in payloads:
                child = {**_as_payload(w.schema, definition.table, value), definition.foreign_key: parent_key}
                await _upsert(w, definition.table, child)


def _writer(conn: AsyncConnection, schema: Schema) -> _Writer:
    return _Writer(conn=conn, schema=schema, adapter=get_adapter(conn.dialect.name))


# ----- public API -----

async def create(
    db: Database,
    schema: Schema,
    table_name: str,
    records: Sequence[Mapping[str, Any]],
    *,
    trx: Optional[AsyncConnection] = None,
) -> List[Dict[str, Any]]:
    """Insert ``records`` with their nested relations; returns the persisted rows."""
    if not records:
        return []
    schema.collection(table_name)

    async def _work(conn: AsyncConnection) -> List[Dict[str, Any]]:
        w = _writer(conn, schema)
        created = [await _create_one(w, table_name, record) for record in records]
        _logger.debug("created %d %s record(s)", len(created), table_name)
        return created

    return await run_in_transaction(db, trx, _work)


async def create_one(
    db: Database,
    schema: Schema,
    table_name: str,
    record: Mapping[str, Any],
    *,
    trx: Optional[AsyncConnection] = None,
) -> Dict[str, Any]:
    created = await create(db, schema, table_name, [record], trx=trx)
    return created[0]


async def update(
    db: Database,
    schema: Schema,
    table_name: str,
    where: Optional[Mapping[str, Any]],
    patch: Mapping[str, Any],
    *,
    trx: Optional[AsyncConnection] = None,
) -> int:
    """Apply ``patch`` to every record matching ``where``; returns how many matched."""
    schema.collection(table_name)

    async def _work(conn: AsyncConnection) -> int:
        w = _writer(conn, schema)
        ids = await select_ids(conn, schema, table_name, where, w.dialect)
        if not ids:
            return 0
        await _update_ids(w, table_name, ids, patch)
        _logger.debug("updated %d %s record(s)", len(ids), table_name)
        return len(ids)

    return await run_in_transaction(db, trx, _work)


async def update_one(
    db: Database,
    schema: Schema,
    table_name: str,
    where: Optional[Mapping[str, Any]],
    patch: Mapping[str, Any],
    *,
    trx: Optional[AsyncConnection] = None,
) -> Optional[Dict[str, Any]]:
    """Update matching records and return the first of them as stored afterwards.

    The record is re-read by the primary keys it holds after the patch rather
    than by ``where``, so a patch that changes a filtered column or the key
    itself still returns it.
    """
    schema.collection(table_name)

    async def _work(conn: AsyncConnection) -> Optional[Dict[str, Any]]:
        w = _writer(conn, schema)
        ids = await select_ids(conn, schema, table_name, where, w.dialect)
        if not ids:
            return None
        refreshed = await _update_ids(w, table_name, ids, patch)
        pk = schema.primary_key(table_name)
        keys = [record[pk] for record in refreshed]
        return await find_one(conn, schema, table_name, where={pk: keys}, trx=conn) if keys else None

    return await run_in_transaction(db, trx, _work)


async def remove(
    db: Database,
    schema: Schema,
    table_name: str,
    where: Optional[Mapping[str, Any]],
    *,
    trx: Optional[AsyncConnection] = None,
) -> int:
    """Delete every record matching ``where``; returns how many matched."""
    schema.collection(table_name)

    async def _work(conn: AsyncConnection) -> int:
        dialect = get_adapter(conn.dialect.name).transformer_key
        ids = await select_ids(conn, schema, table_name, where, dialect)
        if not ids:
            return 0
        tbl = schema.table(table_name)
        pk = schema.primary_key(table_name)
        await conn.execute(delete(tbl).where(tbl.c[pk].in_(ids)))
        _logger.debug("removed %d %s record(s)", len(ids), table_name)
        return len(ids)

    return await run_in_transaction(db, trx, _work)


async def remove_one(
    db: Database,
    schema: Schema,
    table_name: str,
    where: Optional[Mapping[str, Any]],
    *,
    trx: Optional[AsyncConnection] = None,
) -> Optional[Dict[str, Any]]:
    """Remove matching records and return the first of them as it was before deletion."""
    schema.collection(table_name)

    async def _work(conn: AsyncConnection) -> Optional[Dict[str, Any]]:
        record = await find_one(conn, schema, table_name, where=where, trx=conn)
        if record is None:
            return None
        await remove(conn, schema, table_name, where, trx=conn)
        return record

    return await run_in_transaction(db, trx, _work)


__all__ = [
    'RelationPayload',
    'partition_record',
    'create',
    'create_one',
    'update',
    'update_one',
    'remove',
    'remove_one',
]
