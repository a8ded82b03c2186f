from __future__ import annotations
from .base import BaseAdapter


class MySQLAdapter(BaseAdapter):
    name = 'mysql'
    transformer_key = 'mysql'

    def supports_returning(self) -> bool:
        return False
