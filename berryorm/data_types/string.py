from __future__ import annotations

import uuid

from sqlalchemy import CHAR, Enum, String, Text
from sqlalchemy.dialects import postgresql

from ..adapters import get_adapter
from .registry import ColumnContext, define_data_type, define_data_type_group, define_value_transformer

define_data_type_group('string')


def _text(ctx: ColumnContext):
    return Text()


def _varchar(ctx: ColumnContext):
    return String(ctx.definition.length or 255)


def _char(ctx: ColumnContext):
    return CHAR(ctx.definition.length or 1)


def _uuid(ctx: ColumnContext):
    return String(36).with_variant(postgresql.UUID(as_uuid=False), 'postgresql')


def _enum_options(ctx: ColumnContext):
    return tuple(ctx.definition.options or ())


def _enum(ctx: ColumnContext):
    return Enum(*_enum_options(ctx), name=ctx.enum_name, create_constraint=False)


def _enum_before_create(ctx: ColumnContext, conn) -> None:
    # Alembic's add_column does not emit CREATE TYPE on its own
    if get_adapter(conn.dialect.name).supports_named_enum_types():
        postgresql.ENUM(*_enum_options(ctx), name=ctx.enum_name).create(conn, checkfirst=True)


def _to_uuid_string(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


define_data_type('string', 'text', _text)
define_data_type('string', 'varchar', _varchar)
define_data_type('string', 'char', _char)
define_data_type('string', 'uuid', _uuid, operators={'$eq', '$neq', '$in', '$nin', '$null', '$nnull'})
define_data_type(
    'string', 'enum', _enum,
    before_create=_enum_before_create,
    operators={'$eq', '$neq', '$in', '$nin', '$null', '$nnull'},
)
define_value_transformer('*', 'uuid', serialize=_to_uuid_string, deserialize=_to_uuid_string)
