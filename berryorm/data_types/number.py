from __future__ import annotations

from sqlalchemy import BigInteger, Float, Integer, Numeric, SmallInteger
from sqlalchemy.dialects import mysql

from .registry import ColumnContext, define_data_type, define_data_type_group

define_data_type_group('number', {
    '$eq', '$neq', '$gt', '$gte', '$lt', '$lte',
    '$in', '$nin', '$between', '$nbetween', '$null', '$nnull',
})


def _unsigned(ctx: ColumnContext, sa_type, mysql_type):
    if ctx.definition.unsigned:
        return sa_type.with_variant(mysql_type(unsigned=True), 'mysql')
    return sa_type


def _integer(ctx: ColumnContext):
    return _unsigned(ctx, Integer(), mysql.INTEGER)


def _bigint(ctx: ColumnContext):
    # SQLite only auto-increments INTEGER PRIMARY KEY columns
    return _unsigned(ctx, BigInteger().with_variant(Integer(), 'sqlite'), mysql.BIGINT)


def _smallint(ctx: ColumnContext):
    return _unsigned(ctx, SmallInteger(), mysql.SMALLINT)


def _decimal(ctx: ColumnContext):
    return Numeric(precision=ctx.definition.precision or 8, scale=ctx.definition.scale or 2)


def _float(ctx: ColumnContext):
    return Float(precision=ctx.definition.precision)


def _double(ctx: ColumnContext):
    return Float(precision=53)


def _real(ctx: ColumnContext):
    return Float(precision=24)


define_data_type('number', 'integer', _integer)
define_data_type('number', 'bigint', _bigint)
define_data_type('number', 'smallint', _smallint)
define_data_type('number', 'decimal', _decimal)
define_data_type('number', 'float', _float)
define_data_type('number', 'double', _double)
define_data_type('number', 'real', _real)
