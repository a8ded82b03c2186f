from __future__ import annotations

import hashlib
import re
from typing import Any, List, Optional

__all__ = [
    'from_camel',
    'ensure_list',
    'column_label',
    'relation_alias',
]

_camel_to_snake_pattern = re.compile(r'(?<!^)(?=[A-Z])')


def from_camel(name: str) -> str:
    """Convert lower/upper camelCase to snake_case."""
    if not name:
        return name
    return _camel_to_snake_pattern.sub('_', str(name)).lower()


def ensure_list(value: Any) -> Optional[List[Any]]:
    """Wrap scalars into a list, preserving list inputs."""
    if value is None:
        return None
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def column_label(alias: str, field: str) -> str:
    """Label used for a selected column in a joined statement (``alias_field``)."""
    return f"{alias}_{field}"


def relation_alias(base: str, relation: str) -> str:
    """Deterministic short alias for a relation joined by the filter compiler.

    The same (base, relation) pair always hashes to the same alias, so compiled
    SQL is stable across runs and can be asserted on in tests.
    """
    digest = hashlib.sha1(f"{base}.{relation}".encode('utf-8')).hexdigest()
    return f"r_{digest[:10]}"
