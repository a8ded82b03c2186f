from __future__ import annotations
from .base import BaseAdapter


class SQLiteAdapter(BaseAdapter):
    name = 'sqlite'
    transformer_key = 'sqlite'

    # RETURNING exists since SQLite 3.35 but aiosqlite builds vary; re-fetch instead
    def supports_returning(self) -> bool:
        return False

    def supports_alter_in_place(self) -> bool:
        return False
