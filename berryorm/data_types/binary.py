from __future__ import annotations

from sqlalchemy import LargeBinary

from .registry import define_data_type, define_data_type_group, define_value_transformer

define_data_type_group('binary', {'$eq', '$neq', '$in', '$nin', '$null', '$nnull'})

define_data_type('binary', 'binary', lambda ctx: LargeBinary(ctx.definition.length))
# memoryview (asyncpg, sqlite3) is normalised to bytes
define_value_transformer('*', 'binary', serialize=bytes, deserialize=bytes)
