import uuid
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import Boolean, DateTime, Numeric, String, Text
from sqlalchemy.dialects import mysql, postgresql, sqlite

from berryorm import UnsupportedDataType, define_data_type, define_value_transformer
from berryorm.data_types import (
    allowed_operators,
    build_column,
    get_data_type,
    run_hooks,
    transform_input_value,
    transform_output_value,
)
from berryorm.extensions.enum_array import parse_pg_array
from berryorm.schema import ColumnDefinition, Reference


def _type_sql(column, dialect):
    return column.type.compile(dialect=dialect)


def test_builtin_types_build_sqlalchemy_columns():
    assert isinstance(build_column('t', 'c', ColumnDefinition('text')).type, Text)
    varchar = build_column('t', 'c', ColumnDefinition('varchar', length=40)).type
    assert isinstance(varchar, String) and varchar.length == 40
    decimal = build_column('t', 'c', ColumnDefinition('decimal', precision=10, scale=3)).type
    assert isinstance(decimal, Numeric) and (decimal.precision, decimal.scale) == (10, 3)
    assert isinstance(build_column('t', 'c', ColumnDefinition('boolean')).type, Boolean)
    stamp = build_column('t', 'c', ColumnDefinition('timestamp')).type
    assert isinstance(stamp, DateTime) and stamp.timezone


def test_dialect_variants():
    uuid_col = build_column('t', 'c', ColumnDefinition('uuid'))
    assert _type_sql(uuid_col, postgresql.dialect()) == 'UUID'
    assert _type_sql(uuid_col, sqlite.dialect()) == 'VARCHAR(36)'
    json_col = build_column('t', 'c', ColumnDefinition('json'))
    assert _type_sql(json_col, postgresql.dialect()) == 'JSONB'
    enum_array = build_column('t', 'action', ColumnDefinition('enum-array', options=('a', 'b')))
    assert _type_sql(enum_array, sqlite.dialect()) == 'TEXT'
    assert _type_sql(enum_array, postgresql.dialect()) == 't_action_enum[]'
    assert _type_sql(enum_array, mysql.dialect()) == "SET('a','b')"


def test_constraints_and_defaults():
    pk = build_column('t', 'id', ColumnDefinition('integer', primary=True, increments=True, nullable=True))
    assert pk.primary_key and pk.nullable is False and pk.autoincrement is True

    unique = build_column('t', 'email', ColumnDefinition('varchar', unique=True, nullable=False))
    assert unique.unique and unique.nullable is False

    now = build_column('t', 'at', ColumnDefinition('timestamp', default='{now}'))
    assert 'CURRENT_TIMESTAMP' in str(now.server_default.arg).upper()

    generated = build_column('t', 'id', ColumnDefinition('uuid', default='{uuid}', primary=True))
    value = generated.default.arg(None)
    assert str(uuid.UUID(value)) == value

    flag = build_column('t', 'on', ColumnDefinition('boolean', default=True))
    assert flag.server_default is not None
    text = build_column('t', 'state', ColumnDefinition('varchar', default='draft'))
    assert text.server_default.arg == 'draft'
    number = build_column('t', 'n', ColumnDefinition('integer', default=3))
    assert str(number.server_default.arg) == '3'


def test_foreign_key_can_be_left_out():
    definition = ColumnDefinition('integer', references=Reference('users', 'id', 'CASCADE', 'SET NULL'))
    with_fk = build_column('posts', 'author', definition)
    fk = next(iter(with_fk.foreign_keys))
    assert (fk.target_fullname, fk.ondelete, fk.onupdate) == ('users.id', 'CASCADE', 'SET NULL')
    assert not build_column('posts', 'author', definition, foreign_key=False).foreign_keys


def test_unknown_type():
    with pytest.raises(UnsupportedDataType, match='hologram'):
        get_data_type('hologram')


def test_group_and_type_operator_subsets():
    assert '$like' in allowed_operators('varchar')
    assert '$like' not in allowed_operators('uuid')
    assert '$gt' in allowed_operators('integer')
    assert '$contains' not in allowed_operators('integer')
    assert allowed_operators('boolean') == frozenset({'$eq', '$neq', '$null', '$nnull'})
    assert allowed_operators('enum-array') == frozenset({'$contains', '$ncontains', '$null', '$nnull'})


def test_value_transforms():
    assert transform_input_value('sqlite', 'enum-array', ['a', 'b']) == 'a,b'
    assert transform_output_value('sqlite', 'enum-array', 'a,b') == ['a', 'b']
    assert transform_output_value('mysql', 'enum-array', '') == []
    assert transform_output_value('postgresql', 'enum-array', '{a,b}') == ['a', 'b']
    assert transform_output_value('sqlite', 'boolean', 1) is True
    assert transform_input_value('sqlite', 'date', '2024-05-06') == date(2024, 5, 6)
    assert transform_input_value('*', 'timestamp', '2024-05-06T07:08:09Z').utcoffset().total_seconds() == 0
    assert transform_input_value('postgresql', 'uuid', uuid.UUID(int=1)) == '00000000-0000-0000-0000-000000000001'
    # None is never transformed
    assert transform_input_value('sqlite', 'enum-array', None) is None
    # no transformer registered: value passes through
    assert transform_output_value('sqlite', 'decimal', Decimal('1.5')) == Decimal('1.5')


def test_enum_types_are_created_only_where_the_dialect_names_them(monkeypatch):
    created = []
    monkeypatch.setattr(postgresql.ENUM, 'create', lambda self, bind, checkfirst=False: created.append(self.name))
    enum = ColumnDefinition('enum', options=('a', 'b'))
    enum_array = ColumnDefinition('enum-array', options=('a', 'b'))
    for dialect in ('sqlite', 'mysql', 'postgresql'):
        conn = SimpleNamespace(dialect=SimpleNamespace(name=dialect))
        run_hooks('before_create', 't', {'state': enum, 'action': enum_array}, conn)
    assert created == ['t_state_enum', 't_action_enum']


def test_mysql_set_values_come_back_as_lists():
    assert transform_output_value('mysql', 'enum-array', {'write', 'read'}) == ['read', 'write']


def test_parse_pg_array():
    assert parse_pg_array(['a']) == ['a']
    assert parse_pg_array('{}') == []
    assert parse_pg_array('{"read",write}') == ['read', 'write']


def test_custom_type_and_transformer():
    define_data_type('string', 'slug', lambda ctx: String(64), operators={'$eq', '$like'})
    define_value_transformer('*', 'slug', serialize=lambda v: v.strip().lower())
    column = build_column('t', 's', ColumnDefinition('slug'))
    assert column.type.length == 64
    assert allowed_operators('slug') == frozenset({'$eq', '$like'})
    assert transform_input_value('sqlite', 'slug', ' Hello ') == 'hello'


def test_datetime_values_parse_from_iso():
    assert transform_input_value('sqlite', 'datetime', '2024-01-02T03:04:05') == datetime(2024, 1, 2, 3, 4, 5)
