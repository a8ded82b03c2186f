from datetime import datetime

import pytest
from sqlalchemy.dialects import sqlite

from berryorm import UnknownField, UnsupportedOperator, register_operator
from berryorm.core.filters import OPERATOR_REGISTRY, FilterCompiler, compile_filter, is_simple_filter
from berryorm.core.naming import relation_alias
from tests.schema import schema


def _sql(clause):
    return str(clause.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


def _unwrap(sql):
    # SQLAlchemy releases differ on grouping a lone NOT IN; drop parentheses around the whole clause
    while sql.startswith("(") and sql.endswith(")"):
        depth = 0
        for i, ch in enumerate(sql):
            depth += {"(": 1, ")": -1}.get(ch, 0)
            if depth == 0 and i < len(sql) - 1:
                return sql
        sql = sql[1:-1]
    return sql


def _where(table, query):
    _, where = compile_filter(schema, table, query, schema.table(table))
    return _unwrap(_sql(where))


def test_empty_filter_compiles_to_nothing():
    from_clause, where = compile_filter(schema, 'users', {}, schema.table('users'))
    assert where is None
    assert from_clause is schema.table('users')


def test_scalar_and_list_shorthands():
    assert _where('users', {'status': 'active'}) == "users.status = 'active'"
    assert _where('users', {'status': ['a', 'b']}) == "users.status IN ('a', 'b')"
    assert _where('users', {'status': None}) == "users.status IS NULL"


@pytest.mark.parametrize("query, expected", [
    ({'$neq': 'x'}, "users.status != 'x'"),
    ({'$neq': None}, "users.status IS NOT NULL"),
    ({'$nin': ['x']}, "users.status NOT IN ('x')"),
    ({'$null': True}, "users.status IS NULL"),
    ({'$null': False}, "users.status IS NOT NULL"),
    ({'$nnull': True}, "users.status IS NOT NULL"),
    ({'$startsWith': 'ab'}, "users.status LIKE 'ab%'"),
    ({'$endsWith': 'yz'}, "users.status LIKE '%yz'"),
    ({'$like': 'a_c'}, "users.status LIKE 'a_c'"),
])
def test_string_operators(query, expected):
    assert _where('users', {'status': query}) == expected


def test_numeric_comparisons_and_between():
    assert _where('users', {'id': {'$gte': 2, '$lt': 5}}) == "users.id >= 2 AND users.id < 5"
    assert _where('users', {'id': {'$between': [1, 3]}}) == "users.id BETWEEN 1 AND 3"
    assert "NOT BETWEEN 1 AND 3" in _where('users', {'id': {'$nbetween': [1, 3]}})


def test_malformed_between_is_ignored():
    _, where = compile_filter(schema, 'users', {'id': {'$between': [1]}}, schema.table('users'))
    assert where is None


def test_and_or_are_grouped():
    sql = _where('users', {
        'status': 'active',
        '$or': [{'email': 'a@x.io'}, {'email': 'b@x.io'}],
    })
    assert sql == "users.status = 'active' AND (users.email = 'a@x.io' OR users.email = 'b@x.io')"

    sql = _where('users', {'$and': [{'status': 'active'}, {'email': {'$like': '%@x.io'}}]})
    assert sql == "users.status = 'active' AND users.email LIKE '%@x.io'"


def test_belongs_to_simple_filter_stays_on_the_column():
    compiler = FilterCompiler(schema, schema.table('posts'))
    where = compiler.compile('posts', {'author': 3}, schema.table('posts'))
    assert _sql(where) == "posts.author = 3"
    assert compiler.joined is False


def test_belongs_to_nested_filter_joins_parent():
    from_clause, where = compile_filter(schema, 'posts', {'author': {'status': 'active'}}, schema.table('posts'))
    alias = relation_alias('posts', 'author')
    assert _sql(where) == f"{alias}.status = 'active'"
    joined = _sql(from_clause)
    assert f"JOIN users AS {alias} ON {alias}.id = posts.author" in joined
    assert "LEFT OUTER" not in joined


def test_has_many_filter_joins_children():
    from_clause, where = compile_filter(schema, 'users', {'posts': {'title': 'Hello'}}, schema.table('users'))
    alias = relation_alias('users', 'posts')
    assert _sql(where) == f"{alias}.title = 'Hello'"
    assert f"JOIN posts AS {alias} ON {alias}.author = users.id" in _sql(from_clause)


def test_many_to_many_filter_joins_through_junction():
    from_clause, where = compile_filter(schema, 'users', {'roles': {'name': 'admin'}}, schema.table('users'))
    junction = relation_alias('users', 'roles.junction')
    roles = relation_alias('users', 'roles')
    joined = _sql(from_clause)
    assert f"JOIN users_roles AS {junction} ON" in joined
    assert f"JOIN roles AS {roles} ON {roles}.id = {junction}." in joined
    assert _sql(where) == f"{roles}.name = 'admin'"


def test_simple_relation_filter_targets_related_key():
    _, where = compile_filter(schema, 'users', {'posts': [1, 2]}, schema.table('users'))
    assert _sql(where) == f"{relation_alias('users', 'posts')}.id IN (1, 2)"


def test_relation_inside_or_uses_outer_join():
    from_clause, where = compile_filter(schema, 'users', {
        '$or': [{'status': 'vip'}, {'posts': {'title': 'Hello'}}],
    }, schema.table('users'))
    assert "LEFT OUTER JOIN posts" in _sql(from_clause)


def test_empty_nested_filter_under_outer_join_requires_a_related_row():
    _, where = compile_filter(schema, 'users', {'$or': [{'profile': {}}]}, schema.table('users'))
    assert f"{relation_alias('users', 'profile')}.id IS NOT NULL" in _sql(where)


def test_repeated_relation_gets_a_fresh_alias():
    from_clause, _ = compile_filter(schema, 'users', {
        '$and': [{'posts': {'title': 'a'}}, {'posts': {'title': 'b'}}],
    }, schema.table('users'))
    alias = relation_alias('users', 'posts')
    joined = _sql(from_clause)
    assert f"AS {alias} " in joined
    assert f"AS {alias}_2 " in joined


def test_deep_relation_filter():
    from_clause, where = compile_filter(schema, 'users', {
        'roles': {'policies': {'permissions': {'name': 'read-users'}}},
    }, schema.table('users'))
    assert "JOIN permissions AS" in _sql(from_clause)
    assert "name = 'read-users'" in _sql(where)


def test_values_are_serialized_for_the_column_type():
    compiler = FilterCompiler(schema, schema.table('users'), 'sqlite')
    where = compiler.compile('users', {'created_at': {'$gt': '2024-01-02T03:04:05'}}, schema.table('users'))
    params = where.compile(dialect=sqlite.dialect()).params
    assert list(params.values()) == [datetime(2024, 1, 2, 3, 4, 5)]


def test_unknown_field_is_rejected():
    with pytest.raises(UnknownField, match='nickname'):
        compile_filter(schema, 'users', {'nickname': 'x'}, schema.table('users'))


def test_unknown_operator_is_rejected():
    with pytest.raises(UnsupportedOperator, match=r'\$approx'):
        compile_filter(schema, 'users', {'status': {'$approx': 'x'}}, schema.table('users'))


def test_operator_not_allowed_for_type():
    with pytest.raises(UnsupportedOperator) as exc:
        compile_filter(schema, 'permissions', {'action': {'$gt': 'read'}}, schema.table('permissions'))
    assert exc.value.type_name == 'enum-array'


def test_enum_array_contains():
    assert "LIKE" in _where('permissions', {'action': {'$contains': 'read'}})


def test_custom_operator_can_be_registered():
    register_operator('$ieq', lambda col, v: col.ilike(v))
    try:
        assert "lower(users.status) LIKE lower('ACTIVE')" == _where('users', {'status': {'$ieq': 'ACTIVE'}})
    finally:
        OPERATOR_REGISTRY.pop('$ieq')


def test_is_simple_filter():
    assert is_simple_filter(1)
    assert is_simple_filter([1, 2])
    assert is_simple_filter({'$in': [1]})
    assert not is_simple_filter({'name': 'x'})
    assert not is_simple_filter({})
