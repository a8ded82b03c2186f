"""Read path: ``find``/``find_one`` plus the insert and id-selection helpers used by writes."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.sql import FromClause, Select

from .adapters import BaseAdapter, get_adapter
from .core.filters import FilterCompiler
from .core.hydration import Hydrator
from .core.naming import column_label, ensure_list
from .core.selection import (
    WILDCARD,
    RelationTree,
    build_joins_and_selects,
    expand_wildcards,
    parse_column_paths,
    selected_fields,
)
from .errors import MissingPrimaryKey, UnknownField
from .schema import Schema
from .transactions import Database, connect, dialect_name

_logger = logging.getLogger("berryorm")

_UNSET: Any = object()
# Keys that mark a mapping passed to find_one as query params rather than a key value
_PARAM_KEYS = ('where', 'columns', 'order_by', 'offset', 'trx')


def filter_clause(schema: Schema, table_name: str, base: FromClause, where: Optional[Mapping[str, Any]], dialect: str = '*'):
    """WHERE clause restricting ``base`` to rows matching ``where``.

    Filters that need joins are compiled against a separate ``<table>_match``
    alias and applied as ``pk IN (subquery)`` so joined rows never multiply the
    outer result.
    """
    if not where:
        return None
    pk = schema.primary_key(table_name)
    match = schema.table(table_name).alias(f"{table_name}_match")
    compiler = FilterCompiler(schema, match, dialect)
    clause = compiler.compile(table_name, where, match)
    if compiler.joined:
        sub = select(match.c[pk]).select_from(compiler.from_clause)
        if clause is not None:
            sub = sub.where(clause)
        return base.c[pk].in_(sub)
    if clause is None:
        return None
    return FilterCompiler(schema, base, dialect).compile(table_name, where, base)


def order_clauses(schema: Schema, table_name: str, base: FromClause, order_by: Any) -> list:
    columns = schema.columns(table_name, include_belongs_to=True)
    out = []
    for entry in ensure_list(order_by) or []:
        if not entry:
            continue
        descending = entry.startswith('-')
        name = (entry[1:] if descending else entry).split('.')[0]
        if name not in columns:
            raise UnknownField(table_name, name, 'order_by')
        col = base.c[name]
        out.append(col.desc() if descending else col.asc())
    if not out:
        out.append(base.c[schema.primary_key(table_name)].asc())
    return out


def build_find_statement(
    schema: Schema,
    table_name: str,
    *,
    columns: Optional[Sequence[str]] = None,
    where: Optional[Mapping[str, Any]] = None,
    order_by: Any = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    dialect: str = '*',
) -> Tuple[Select, RelationTree, List[str]]:
    """Compile a find into one SELECT.

    Returns the statement, the expanded relation tree and the base fields to
    emit. Base columns are emitted when no columns are given, when ``"*"`` is
    selected, or when a top-level relation wildcard is used; otherwise only the
    requested ones are. The base primary key is always selected for grouping.
    """
    base = schema.table(table_name)
    pk = schema.primary_key(table_name)
    tree, base_columns = parse_column_paths(columns)
    include_all = not columns or WILDCARD in base_columns or WILDCARD in tree
    tree = expand_wildcards(tree, schema, table_name)

    requested = [c for c in base_columns if c != WILDCARD]
    base_fields = selected_fields(schema, table_name, requested, include_all)

    selects = [base.c[f].label(column_label(table_name, f)) for f in base_fields]
    if pk not in base_fields:
        selects.append(base.c[pk].label(column_label(table_name, pk)))
    related_keys: list = []
    from_clause = build_joins_and_selects(schema, table_name, table_name, base, tree, base, selects, related_keys)

    stmt = select(*selects).select_from(from_clause)
    ordering = order_clauses(schema, table_name, base, order_by)

    if tree and (limit is not None or offset is not None):
        # Paginate distinct base records, not the multiplied joined rows
        page_base = schema.table(table_name).alias(f"{table_name}_page")
        page = select(page_base.c[pk])
        page_where = filter_clause(schema, table_name, page_base, where, dialect)
        if page_where is not None:
            page = page.where(page_where)
        page = page.order_by(*order_clauses(schema, table_name, page_base, order_by))
        if limit is not None:
            page = page.limit(limit)
        if offset is not None:
            page = page.offset(offset)
        page_sub = page.subquery(f"{table_name}_page_ids")
        stmt = stmt.where(base.c[pk].in_(select(page_sub.c[pk])))
    else:
        where_clause = filter_clause(schema, table_name, base, where, dialect)
        if where_clause is not None:
            stmt = stmt.where(where_clause)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)

    stmt = stmt.order_by(*ordering, *related_keys)
    return stmt, tree, base_fields


async def find(
    db: Database,
    schema: Schema,
    table_name: str,
    *,
    columns: Optional[Sequence[str]] = None,
    where: Optional[Mapping[str, Any]] = None,
    order_by: Any = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    trx: Optional[AsyncConnection] = None,
) -> List[Dict[str, Any]]:
    """Find records of ``table_name`` as nested dictionaries."""
    adapter = get_adapter(dialect_name(db, trx))
    stmt, tree, base_fields = build_find_statement(
        schema,
        table_name,
        columns=columns,
        where=where,
        order_by=order_by,
        limit=limit,
        offset=offset,
        dialect=adapter.transformer_key,
    )
    _logger.debug("find %s: %s", table_name, stmt)
    async with connect(db, trx) as conn:
        result = await conn.execute(stmt)
        rows = result.mappings().all()
    return Hydrator(schema, table_name, adapter.transformer_key).reconstruct(rows, tree, base_fields)


async def find_one(
    db: Database,
    schema: Schema,
    table_name: str,
    primary_key: Any = _UNSET,
    *,
    where: Optional[Mapping[str, Any]] = None,
    columns: Optional[Sequence[str]] = None,
    order_by: Any = None,
    offset: Optional[int] = None,
    trx: Optional[AsyncConnection] = None,
) -> Optional[Dict[str, Any]]:
    """Find a single record by primary key value or by query params.

    ``primary_key`` may also be a mapping of params (``where``, ``columns``,
    ``order_by``, ``offset``, ``trx``); explicit keyword arguments win.
    """
    if isinstance(primary_key, Mapping):
        params = dict(primary_key)
        unknown = [k for k in params if k not in _PARAM_KEYS]
        if unknown:
            raise TypeError(
                f"find_one() got unexpected param(s) {unknown!r}; "
                f"filters go under 'where', e.g. {{'where': {params!r}}}"
            )
        primary_key = _UNSET
        where = where if where is not None else params.get('where')
        columns = columns if columns is not None else params.get('columns')
        order_by = order_by if order_by is not None else params.get('order_by')
        offset = offset if offset is not None else params.get('offset')
        trx = trx if trx is not None else params.get('trx')

    if primary_key is not _UNSET:
        by_key = {schema.primary_key(table_name): primary_key}
        where = {'$and': [where, by_key]} if where else by_key

    records = await find(
        db, schema, table_name,
        columns=columns, where=where, order_by=order_by, limit=1, offset=offset, trx=trx,
    )
    return records[0] if records else None


async def select_ids(conn: AsyncConnection, schema: Schema, table_name: str, where: Optional[Mapping[str, Any]], dialect: str = '*') -> List[Any]:
    """Distinct primary keys of the rows matching ``where``."""
    base = schema.table(table_name)
    pk = schema.primary_key(table_name)
    stmt = select(base.c[pk])
    clause = filter_clause(schema, table_name, base, where, dialect)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await conn.execute(stmt)
    return list(dict.fromkeys(result.scalars().all()))


async def fetch_by_ids(conn: AsyncConnection, schema: Schema, table_name: str, ids: Sequence[Any], dialect: str = '*') -> List[Dict[str, Any]]:
    if not ids:
        return []
    tbl = schema.table(table_name)
    pk = schema.primary_key(table_name)
    result = await conn.execute(select(tbl).where(tbl.c[pk].in_(list(ids))).order_by(tbl.c[pk]))
    hydrator = Hydrator(schema, table_name, dialect)
    return [hydrator.decode_record(table_name, row) for row in result.mappings().all()]


async def insert_record(conn: AsyncConnection, schema: Schema, table_name: str, data: Mapping[str, Any], adapter: BaseAdapter) -> Dict[str, Any]:
    """Insert one row and return it as persisted (defaults included).

    Uses RETURNING where the adapter supports it, otherwise re-fetches by the
    primary key from ``data`` or the driver's last-insert id.
    """
    tbl = schema.table(table_name)
    hydrator = Hydrator(schema, table_name, adapter.transformer_key)
    if adapter.supports_returning():
        result = await conn.execute(insert(tbl).values(dict(data)).returning(*tbl.c))
        return hydrator.decode_record(table_name, result.mappings().one())

    result = await conn.execute(insert(tbl).values(dict(data)))
    pk = schema.primary_key(table_name)
    pk_value = data.get(pk)
    if pk_value is None:
        inserted = result.inserted_primary_key
        pk_value = inserted[0] if inserted else None
    if pk_value is None:
        raise MissingPrimaryKey(f"Unable to determine primary key for {table_name} insert")
    row = (await conn.execute(select(tbl).where(tbl.c[pk] == pk_value))).mappings().first()
    if row is None:
        raise MissingPrimaryKey(f"Failed to fetch inserted record from {table_name} (key {pk_value!r})")
    return hydrator.decode_record(table_name, row)


__all__ = [
    'filter_clause',
    'order_clauses',
    'build_find_statement',
    'find',
    'find_one',
    'select_ids',
    'fetch_by_ids',
    'insert_record',
]
