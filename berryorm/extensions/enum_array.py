"""``enum-array`` column type.

A list of values drawn from ``options``. PostgreSQL stores it as a native array
of a per-column enum type, MySQL as a SET of the options; every other
dialect stores comma-joined text.
"""
from __future__ import annotations

from typing import Any, List

from sqlalchemy import Text
from sqlalchemy.dialects import mysql, postgresql

from ..adapters import get_adapter
from ..data_types import ColumnContext, define_data_type, define_value_transformer, has_data_type

TYPE_NAME = 'enum-array'


def _options(ctx: ColumnContext):
    return tuple(ctx.definition.options or ())


def _create(ctx: ColumnContext):
    native = postgresql.ARRAY(postgresql.ENUM(*_options(ctx), name=ctx.enum_name, create_type=False))
    return Text().with_variant(native, 'postgresql').with_variant(mysql.SET(*_options(ctx)), 'mysql')


def _before_create(ctx: ColumnContext, conn) -> None:
    if get_adapter(conn.dialect.name).supports_native_enum_array():
        postgresql.ENUM(*_options(ctx), name=ctx.enum_name).create(conn, checkfirst=True)


def _join(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return ','.join(str(v) for v in value)
    return value


def _split(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, (set, frozenset)):
        # mysql.SET results arrive as python sets
        return sorted(value)
    if value == '':
        return []
    return str(value).split(',')


def _as_list(value: Any) -> Any:
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    return value


def parse_pg_array(value: Any) -> List[str]:
    """Parse a ``{a,b}`` array literal; drivers return these for arrays of custom enums."""
    if isinstance(value, (list, tuple)):
        return list(value)
    raw = str(value).strip()
    if raw.startswith('{') and raw.endswith('}'):
        raw = raw[1:-1]
    if not raw:
        return []
    return [part.strip().strip('"') for part in raw.split(',')]


def install() -> None:
    if has_data_type(TYPE_NAME):
        return
    define_data_type(
        'string', TYPE_NAME, _create,
        before_create=_before_create,
        operators={'$contains', '$ncontains', '$null', '$nnull'},
    )
    define_value_transformer(['*', 'sqlite', 'mysql'], TYPE_NAME, serialize=_join, deserialize=_split)
    define_value_transformer('postgresql', TYPE_NAME, serialize=_as_list, deserialize=parse_pg_array)
