from __future__ import annotations
from typing import Any


class BaseAdapter:
    name = 'base'
    # Key used to look up value transformers; '*' is the fallback dialect
    transformer_key = '*'

    def supports_returning(self) -> bool:
        return False

    def supports_native_enum_array(self) -> bool:
        return False

    def supports_named_enum_types(self) -> bool:
        """Whether enum columns need a CREATE TYPE before the column is added."""
        return False

    def supports_alter_in_place(self) -> bool:
        """Whether ALTER TABLE can add/alter a column without rebuilding the table."""
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other: Any) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))
