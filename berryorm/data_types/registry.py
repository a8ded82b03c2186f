from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from sqlalchemy import Column, ForeignKey, func, text, true, false
from sqlalchemy.types import TypeEngine

from ..errors import UnsupportedDataType

_logger = logging.getLogger("berryorm")

ALL_OPERATORS: FrozenSet[str] = frozenset({
    '$eq', '$neq', '$gt', '$gte', '$lt', '$lte',
    '$in', '$nin', '$between', '$nbetween',
    '$null', '$nnull',
    '$contains', '$ncontains', '$startsWith', '$nstartsWith', '$endsWith', '$nendsWith',
    '$like', '$nlike',
})

# Special default tokens
NOW_DEFAULT = '{now}'
UUID_DEFAULT = '{uuid}'

FALLBACK_DIALECT = '*'


@dataclass(frozen=True)
class ColumnContext:
    """What a type builder or DDL hook knows about the column it is acting on."""
    table: str
    column: str
    definition: Any  # ColumnDefinition

    @property
    def enum_name(self) -> str:
        return f"{self.table}_{self.column}_enum"


@dataclass(frozen=True)
class DataType:
    name: str
    group: str
    create: Callable[[ColumnContext], TypeEngine]
    # Hooks receive (ctx, sync_connection) and may issue auxiliary DDL
    before_create: Optional[Callable[[ColumnContext, Any], None]] = None
    after_create: Optional[Callable[[ColumnContext, Any], None]] = None
    operators: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class ValueTransformer:
    serialize: Optional[Callable[[Any], Any]] = None
    deserialize: Optional[Callable[[Any], Any]] = None


# group name -> default operator subset
_GROUPS: Dict[str, FrozenSet[str]] = {}
# type name -> DataType
_TYPES: Dict[str, DataType] = {}
# (dialect, type name) -> ValueTransformer
_TRANSFORMERS: Dict[Tuple[str, str], ValueTransformer] = {}


def define_data_type_group(group: str, operators: Iterable[str] = ALL_OPERATORS) -> None:
    _GROUPS[group] = frozenset(operators)


def define_data_type(
    group: str,
    name: str,
    create: Callable[[ColumnContext], TypeEngine],
    *,
    before_create: Optional[Callable[[ColumnContext, Any], None]] = None,
    after_create: Optional[Callable[[ColumnContext, Any], None]] = None,
    operators: Optional[Iterable[str]] = None,
) -> DataType:
    """Register (or replace) a column type under ``group``.

    When ``operators`` is omitted the type accepts the group's operator subset.
    """
    if group not in _GROUPS:
        define_data_type_group(group)
    data_type = DataType(
        name=name,
        group=group,
        create=create,
        before_create=before_create,
        after_create=after_create,
        operators=frozenset(operators) if operators is not None else None,
    )
    _TYPES[name] = data_type
    return data_type


def get_data_type(name: str) -> DataType:
    try:
        return _TYPES[name]
    except KeyError:
        raise UnsupportedDataType(name) from None


def has_data_type(name: str) -> bool:
    return name in _TYPES


def allowed_operators(name: str) -> FrozenSet[str]:
    data_type = get_data_type(name)
    if data_type.operators is not None:
        return data_type.operators
    return _GROUPS.get(data_type.group, ALL_OPERATORS)


# ----- value transformers -----

def define_value_transformer(
    dialects: Iterable[str] | str,
    type_name: str,
    *,
    serialize: Optional[Callable[[Any], Any]] = None,
    deserialize: Optional[Callable[[Any], Any]] = None,
) -> None:
    if isinstance(dialects, str):
        dialects = [dialects]
    for dialect in dialects:
        _TRANSFORMERS[(dialect, type_name)] = ValueTransformer(serialize=serialize, deserialize=deserialize)


def _find_transformer(dialect: str, type_name: str) -> Optional[ValueTransformer]:
    found = _TRANSFORMERS.get((dialect, type_name))
    if found is None:
        found = _TRANSFORMERS.get((FALLBACK_DIALECT, type_name))
    return found


def transform_input_value(dialect: str, type_name: str, value: Any) -> Any:
    if value is None:
        return None
    transformer = _find_transformer(dialect, type_name)
    if transformer is None or transformer.serialize is None:
        return value
    return transformer.serialize(value)


def transform_output_value(dialect: str, type_name: str, value: Any) -> Any:
    if value is None:
        return None
    transformer = _find_transformer(dialect, type_name)
    if transformer is None or transformer.deserialize is None:
        return value
    return transformer.deserialize(value)


def transform_input_record(dialect: str, columns: Mapping[str, Any], record: Mapping[str, Any]) -> Dict[str, Any]:
    """Serialize every known column of ``record``; unknown keys pass through."""
    out: Dict[str, Any] = {}
    for key, value in record.items():
        definition = columns.get(key)
        out[key] = transform_input_value(dialect, definition.type, value) if definition is not None else value
    return out


# ----- DDL -----

def _server_default(value: Any) -> Any:
    if isinstance(value, bool):
        return true() if value else false()
    if isinstance(value, (int, float, Decimal)):
        return text(str(value))
    if isinstance(value, str):
        return value
    return None


def build_column(table: str, column: str, definition: Any, *, foreign_key: bool = True) -> Column:
    """Build a SQLAlchemy Column for one declared column.

    The type-specific builder runs first; primary, unique, nullable, default and
    foreign-key constraints are applied uniformly afterwards. A new Column is
    returned on every call so it can be handed to Alembic as well as a Table.
    ``foreign_key=False`` leaves out the REFERENCES constraint.
    """
    data_type = get_data_type(definition.type)
    ctx = ColumnContext(table=table, column=column, definition=definition)
    sa_type = data_type.create(ctx)

    args: list = []
    ref = definition.references
    if ref is not None and foreign_key:
        args.append(ForeignKey(f"{ref.table}.{ref.column}", ondelete=ref.on_delete, onupdate=ref.on_update))

    kwargs: Dict[str, Any] = {
        'primary_key': bool(definition.primary),
        'nullable': False if definition.primary else bool(definition.nullable),
    }
    if definition.unique and not definition.primary:
        kwargs['unique'] = True
    if definition.primary:
        kwargs['autoincrement'] = bool(definition.increments)
    elif definition.increments:
        kwargs['autoincrement'] = True

    default = definition.default
    if default == NOW_DEFAULT:
        kwargs['server_default'] = func.current_timestamp()
    elif default == UUID_DEFAULT:
        kwargs['default'] = lambda: str(uuid.uuid4())
    elif default is not None:
        server_default = _server_default(default)
        if server_default is not None:
            kwargs['server_default'] = server_default
        else:
            # json / structured defaults are applied client-side
            kwargs['default'] = lambda: default
    return Column(column, sa_type, *args, **kwargs)


def run_hooks(phase: str, table: str, columns: Mapping[str, Any], sync_conn: Any) -> None:
    """Run ``before_create``/``after_create`` hooks of every column in ``columns``."""
    for column, definition in columns.items():
        data_type = get_data_type(definition.type)
        hook = getattr(data_type, phase)
        if hook is None:
            continue
        _logger.debug("running %s hook for %s.%s (%s)", phase, table, column, definition.type)
        hook(ColumnContext(table=table, column=column, definition=definition), sync_conn)
