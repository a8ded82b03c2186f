from __future__ import annotations

from datetime import date, datetime, time

from sqlalchemy import Date, DateTime, Time

from .registry import ColumnContext, define_data_type, define_data_type_group, define_value_transformer

define_data_type_group('date', {
    '$eq', '$neq', '$gt', '$gte', '$lt', '$lte',
    '$in', '$nin', '$between', '$nbetween', '$null', '$nnull',
})


def _parse_date(value):
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        return value.date()
    return value


def _parse_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    return value


def _parse_time(value):
    if isinstance(value, str):
        return time.fromisoformat(value)
    return value


define_data_type('date', 'date', lambda ctx: Date())
define_data_type('date', 'datetime', lambda ctx: DateTime())
define_data_type('date', 'timestamp', lambda ctx: DateTime(timezone=True))
define_data_type('date', 'time', lambda ctx: Time())

define_value_transformer('*', 'date', serialize=_parse_date)
define_value_transformer('*', 'datetime', serialize=_parse_datetime)
define_value_transformer('*', 'timestamp', serialize=_parse_datetime)
define_value_transformer('*', 'time', serialize=_parse_time)
