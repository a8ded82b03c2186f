from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.dialects import postgresql

from .registry import define_data_type, define_data_type_group

define_data_type_group('json', {'$eq', '$neq', '$in', '$nin', '$null', '$nnull'})

define_data_type('json', 'json', lambda ctx: JSON().with_variant(postgresql.JSONB(), 'postgresql'))
