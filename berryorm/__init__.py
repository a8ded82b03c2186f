"""berryorm: schema-driven async data access on SQLAlchemy Core."""
from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Lazy exports to avoid importing SQLAlchemy/Alembic machinery at package import time
_EXPORTS = {
    # schema
    'Schema': ('.schema', 'Schema'),
    'define_schema': ('.schema', 'define_schema'),
    'define_collection': ('.schema', 'define_collection'),
    'with_id': ('.schema', 'with_id'),
    'with_uuid': ('.schema', 'with_uuid'),
    'with_timestamps': ('.schema', 'with_timestamps'),
    'with_defaults': ('.schema', 'with_defaults'),
    'ColumnDefinition': ('.schema', 'ColumnDefinition'),
    'HasOne': ('.schema', 'HasOne'),
    'HasMany': ('.schema', 'HasMany'),
    'BelongsTo': ('.schema', 'BelongsTo'),
    'ManyToMany': ('.schema', 'ManyToMany'),
    'Through': ('.schema', 'Through'),
    # operations
    'find': ('.queries', 'find'),
    'find_one': ('.queries', 'find_one'),
    'create': ('.mutations', 'create'),
    'create_one': ('.mutations', 'create_one'),
    'update': ('.mutations', 'update'),
    'update_one': ('.mutations', 'update_one'),
    'remove': ('.mutations', 'remove'),
    'remove_one': ('.mutations', 'remove_one'),
    'plan': ('.migrations', 'plan'),
    'migrate': ('.migrations', 'migrate'),
    'MigrationResult': ('.migrations', 'MigrationResult'),
    # facade
    'Instance': ('.instance', 'Instance'),
    'create_instance': ('.instance', 'create_instance'),
    'create_instance_with_engine': ('.instance', 'create_instance_with_engine'),
    # registry
    'define_data_type': ('.data_types', 'define_data_type'),
    'define_value_transformer': ('.data_types', 'define_value_transformer'),
    'register_operator': ('.core.filters', 'register_operator'),
    # errors
    'BerryORMError': ('.errors', 'BerryORMError'),
    'SchemaError': ('.errors', 'SchemaError'),
    'UnknownCollection': ('.errors', 'UnknownCollection'),
    'UnknownField': ('.errors', 'UnknownField'),
    'UnknownRelation': ('.errors', 'UnknownRelation'),
    'UnsupportedOperator': ('.errors', 'UnsupportedOperator'),
    'UnsupportedDataType': ('.errors', 'UnsupportedDataType'),
    'MissingPrimaryKey': ('.errors', 'MissingPrimaryKey'),
    'UnsupportedOperation': ('.errors', 'UnsupportedOperation'),
}

__all__ = list(_EXPORTS)


def __getattr__(name: str):  # PEP 562 lazy attribute access
    target = _EXPORTS.get(name)
    if target is None:
        raise AttributeError(name)
    import importlib

    module = importlib.import_module(target[0], __name__)
    value = getattr(module, target[1])
    globals()[name] = value
    return value


if TYPE_CHECKING:  # pragma: no cover - static analyzers only
    from .errors import *  # noqa: F401,F403
    from .instance import Instance, create_instance, create_instance_with_engine  # noqa: F401
    from .schema import Schema, define_schema  # noqa: F401
