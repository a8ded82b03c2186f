from __future__ import annotations
from .base import BaseAdapter


class PostgresAdapter(BaseAdapter):
    name = 'postgresql'
    transformer_key = 'postgresql'

    def supports_returning(self) -> bool:
        return True

    def supports_native_enum_array(self) -> bool:
        return True

    def supports_named_enum_types(self) -> bool:
        return True
