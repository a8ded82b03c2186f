from __future__ import annotations

from sqlalchemy import Boolean

from .registry import define_data_type, define_data_type_group, define_value_transformer

define_data_type_group('boolean', {'$eq', '$neq', '$null', '$nnull'})

define_data_type('boolean', 'boolean', lambda ctx: Boolean())
# Boolean columns read through raw SQL on SQLite/MySQL come back as 0/1
define_value_transformer(['sqlite', 'mysql'], 'boolean', deserialize=lambda v: bool(v))
