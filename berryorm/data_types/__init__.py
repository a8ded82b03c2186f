"""Column-type registry.

Built-in types are registered by importing their group modules; extensions add
more through ``define_data_type``.
"""
from __future__ import annotations

from .registry import (
    ALL_OPERATORS,
    NOW_DEFAULT,
    UUID_DEFAULT,
    ColumnContext,
    DataType,
    ValueTransformer,
    allowed_operators,
    build_column,
    define_data_type,
    define_data_type_group,
    define_value_transformer,
    get_data_type,
    has_data_type,
    run_hooks,
    transform_input_record,
    transform_input_value,
    transform_output_value,
)
from . import string, number, date, boolean, json, binary  # noqa: F401  (registers built-in types)

__all__ = [
    'ALL_OPERATORS',
    'NOW_DEFAULT',
    'UUID_DEFAULT',
    'ColumnContext',
    'DataType',
    'ValueTransformer',
    'allowed_operators',
    'build_column',
    'define_data_type',
    'define_data_type_group',
    'define_value_transformer',
    'get_data_type',
    'has_data_type',
    'run_hooks',
    'transform_input_record',
    'transform_input_value',
    'transform_output_value',
]
