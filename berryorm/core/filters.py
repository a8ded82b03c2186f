from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import and_, or_, true
from sqlalchemy.sql import ColumnElement, FromClause

from ..data_types import ALL_OPERATORS, allowed_operators, transform_input_value
from ..errors import UnknownField, UnsupportedOperator
from ..schema import BelongsTo, HasMany, HasOne, ManyToMany, Schema
from .naming import relation_alias

_logger = logging.getLogger("berryorm")

LOGICAL_KEYS = ('$and', '$or')


def _as_list(v: Any) -> List[Any]:
    return list(v) if isinstance(v, (list, tuple, set, frozenset)) else [v]


def _between(col, v, negate=False):
    if not isinstance(v, (list, tuple)) or len(v) != 2:
        return None
    expr = col.between(v[0], v[1])
    return ~expr if negate else expr


# Global operator registry (extensible)
OPERATOR_REGISTRY: Dict[str, Callable[[Any, Any], Any]] = {
    '$eq': lambda col, v: col.is_(None) if v is None else col == v,
    '$neq': lambda col, v: col.is_not(None) if v is None else col != v,
    '$gt': lambda col, v: col > v,
    '$gte': lambda col, v: col >= v,
    '$lt': lambda col, v: col < v,
    '$lte': lambda col, v: col <= v,
    '$in': lambda col, v: col.in_(_as_list(v)),
    '$nin': lambda col, v: col.not_in(_as_list(v)),
    '$between': lambda col, v: _between(col, v),
    '$nbetween': lambda col, v: _between(col, v, negate=True),
    '$null': lambda col, v: col.is_(None) if v or v is None else col.is_not(None),
    '$nnull': lambda col, v: col.is_not(None) if v or v is None else col.is_(None),
    '$contains': lambda col, v: col.contains(v),
    '$ncontains': lambda col, v: ~col.contains(v),
    '$startsWith': lambda col, v: col.like(f"{v}%"),
    '$nstartsWith': lambda col, v: ~col.like(f"{v}%"),
    '$endsWith': lambda col, v: col.like(f"%{v}"),
    '$nendsWith': lambda col, v: ~col.like(f"%{v}"),
    '$like': lambda col, v: col.like(v),
    '$nlike': lambda col, v: ~col.like(v),
}

# Operators whose operand is one or more column values (run through input transforms)
VALUE_OPERATORS = frozenset({'$eq', '$neq', '$gt', '$gte', '$lt', '$lte', '$in', '$nin', '$between', '$nbetween'})


def register_operator(name: str, fn: Callable[[Any, Any], Any]):  # pragma: no cover - simple
    OPERATOR_REGISTRY[name] = fn


def is_operator_object(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and len(value) > 0
        and all(isinstance(k, str) and k.startswith('$') and k not in LOGICAL_KEYS for k in value)
    )


def is_simple_filter(value: Any) -> bool:
    """Scalar, list, or an object holding operators only."""
    if not isinstance(value, Mapping):
        return True
    return is_operator_object(value)


def _combine(clauses: List[Any]) -> Optional[ColumnElement]:
    clauses = [c for c in clauses if c is not None]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return and_(*clauses)


class FilterCompiler:
    """Compile filter expressions into a WHERE clause plus the joins it needs.

    ``from_clause`` starts as the base selectable and grows one join per relation
    predicate; callers select from it after ``compile``. Relation joins are
    INNER, except inside ``$or`` branches where they become LEFT OUTER so a
    branch that does not match its relation cannot drop rows matched by a
    sibling branch.
    """

    def __init__(self, schema: Schema, from_clause: FromClause, dialect: str = '*'):
        self.schema = schema
        self.from_clause = from_clause
        self.dialect = dialect
        self.joined = False
        self._alias_counts: Dict[str, int] = {}

    # ----- public -----
    def compile(self, table_name: str, query: Optional[Mapping[str, Any]], alias: FromClause, *, outer: bool = False) -> Optional[ColumnElement]:
        if not query:
            return None
        columns = self.schema.columns(table_name, include_belongs_to=True)
        relations = self.schema.relations(table_name)
        clauses: List[Any] = []
        for key, value in query.items():
            if key in LOGICAL_KEYS:
                continue
            relation = relations.get(key)
            if relation is not None and not (isinstance(relation, BelongsTo) and is_simple_filter(value)):
                clauses.append(self._relation(table_name, alias, key, relation, value, outer))
            elif key in columns:
                clauses.append(self._field(alias.c[key], columns[key].type, value))
            else:
                raise UnknownField(table_name, key)

        and_items = query.get('$and')
        if isinstance(and_items, (list, tuple)) and and_items:
            parts = [self.compile(table_name, nested, alias, outer=outer) for nested in and_items]
            grouped = _combine(parts)
            if grouped is not None:
                clauses.append(and_(grouped).self_group())

        or_items = query.get('$or')
        if isinstance(or_items, (list, tuple)) and or_items:
            parts = [self.compile(table_name, nested, alias, outer=True) for nested in or_items]
            # An empty branch matches everything
            parts = [true() if p is None else p for p in parts]
            clauses.append(or_(*parts).self_group())

        return _combine(clauses)

    # ----- fields -----
    def _field(self, column, type_name: str, value: Any):
        if isinstance(value, Mapping):
            if not is_operator_object(value):
                raise UnsupportedOperator(next(iter(value), '{}'))
            return _combine([self._apply(op, column, type_name, operand, explicit=True) for op, operand in value.items()])
        if isinstance(value, (list, tuple, set, frozenset)):
            return self._apply('$in', column, type_name, list(value), explicit=False)
        return self._apply('$eq', column, type_name, value, explicit=False)

    def _apply(self, op: str, column, type_name: str, operand: Any, *, explicit: bool):
        fn = OPERATOR_REGISTRY.get(op)
        if fn is None:
            raise UnsupportedOperator(op)
        if explicit and op in ALL_OPERATORS and op not in allowed_operators(type_name):
            raise UnsupportedOperator(op, type_name)
        if op in VALUE_OPERATORS and operand is not None:
            if isinstance(operand, (list, tuple, set, frozenset)):
                operand = [transform_input_value(self.dialect, type_name, v) for v in operand]
            else:
                operand = transform_input_value(self.dialect, type_name, operand)
        return fn(column, operand)

    # ----- relations -----
    def _next_alias(self, base_name: str, relation_name: str, table: str) -> FromClause:
        name = relation_alias(base_name, relation_name)
        count = self._alias_counts.get(name, 0) + 1
        self._alias_counts[name] = count
        if count > 1:
            name = f"{name}_{count}"
        return self.schema.table(table).alias(name)

    def _join(self, target: FromClause, onclause, outer: bool) -> None:
        self.from_clause = self.from_clause.join(target, onclause, isouter=outer)
        self.joined = True

    def _relation(self, table_name: str, alias: FromClause, name: str, relation, value: Any, outer: bool):
        base_pk = self.schema.primary_key(table_name)
        related_pk = self.schema.primary_key(relation.table)
        related = self._next_alias(alias.name, name, relation.table)

        if isinstance(relation, BelongsTo):
            self._join(related, related.c[relation.foreign_key] == alias.c[name], outer)
        elif isinstance(relation, (HasOne, HasMany)):
            self._join(related, related.c[relation.foreign_key] == alias.c[base_pk], outer)
        elif isinstance(relation, ManyToMany):
            through = relation.through
            junction = self._next_alias(alias.name, f"{name}.junction", through.table)
            self._join(junction, junction.c[through.source_fk] == alias.c[base_pk], outer)
            self._join(related, related.c[related_pk] == junction.c[through.target_fk], outer)
        else:  # pragma: no cover - closed union
            raise TypeError(f"Unsupported relation definition: {relation!r}")

        if is_simple_filter(value):
            pk_type = self.schema.columns(relation.table)[related_pk].type
            predicate = self._field(related.c[related_pk], pk_type, value)
        else:
            predicate = self.compile(relation.table, value, related, outer=outer)
        if predicate is None and outer:
            # Keep "has a related row" semantics for an empty nested filter under LEFT JOIN
            predicate = related.c[related_pk].is_not(None)
        return predicate


def compile_filter(schema: Schema, table_name: str, query: Optional[Mapping[str, Any]], alias: FromClause, dialect: str = '*'):
    """Compile ``query`` against ``alias``; returns ``(from_clause, where_clause)``."""
    compiler = FilterCompiler(schema, alias, dialect)
    where = compiler.compile(table_name, query, alias)
    return compiler.from_clause, where


__all__ = [
    'OPERATOR_REGISTRY',
    'VALUE_OPERATORS',
    'register_operator',
    'is_simple_filter',
    'is_operator_object',
    'FilterCompiler',
    'compile_filter',
]
