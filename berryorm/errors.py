"""Exception hierarchy for berryorm.

Every error raised by the package derives from BerryORMError. Driver errors
(unique or foreign key violations and the like) are not wrapped; they surface as
the SQLAlchemy exception the driver produced.
"""
from __future__ import annotations

from typing import Optional


class BerryORMError(Exception):
    """Root of all berryorm errors."""


class SchemaError(BerryORMError, ValueError):
    """Schema definition is invalid or incomplete (configuration error)."""


class UnknownCollection(BerryORMError, KeyError):
    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unknown collection: {table}")

    def __str__(self) -> str:  # KeyError quotes its message otherwise
        return self.args[0]


class UnknownField(BerryORMError, KeyError):
    def __init__(self, table: str, field: str, context: str = 'filter'):
        self.table = table
        self.field = field
        super().__init__(f'Unknown field "{field}" in {context} for table "{table}"')

    def __str__(self) -> str:
        return self.args[0]


class UnknownRelation(BerryORMError, KeyError):
    def __init__(self, table: str, relation: str):
        self.table = table
        self.relation = relation
        super().__init__(f'Relation "{relation}" not found on table "{table}"')

    def __str__(self) -> str:
        return self.args[0]


class UnsupportedOperator(BerryORMError, ValueError):
    def __init__(self, operator: str, type_name: Optional[str] = None):
        self.operator = operator
        self.type_name = type_name
        if type_name is None:
            super().__init__(f"Invalid operator: {operator}")
        else:
            super().__init__(f"Operator {operator} is not supported for {type_name} columns")


class UnsupportedDataType(BerryORMError, ValueError):
    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"Unsupported data type: {type_name}")


class MissingPrimaryKey(BerryORMError, LookupError):
    """A collection declares no primary column, or an inserted row's key is unknown."""


class UnsupportedOperation(BerryORMError, ValueError):
    def __init__(self, operation: object):
        self.operation = operation
        kind = getattr(operation, 'type', None) or type(operation).__name__
        super().__init__(f"Unsupported operation: {kind}")


__all__ = [
    'BerryORMError',
    'SchemaError',
    'UnknownCollection',
    'UnknownField',
    'UnknownRelation',
    'UnsupportedOperator',
    'UnsupportedDataType',
    'MissingPrimaryKey',
    'UnsupportedOperation',
]
