"""Current-state schema migrations.

``plan`` compares the declared schema with the live database and returns the
operations needed to converge it; ``migrate`` applies them in order inside one
transaction. Only missing tables, missing columns and nullability mismatches
are detected. There is no migration history.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.ext.asyncio import AsyncConnection

from .adapters import get_adapter
from .data_types import build_column, run_hooks
from .errors import SchemaError, UnsupportedOperation
from .schema import BelongsTo, Collection, ColumnDefinition, Schema
from .transactions import Database, connect, run_in_transaction

_logger = logging.getLogger("berryorm")


@dataclass(frozen=True)
class CreateTable:
    table_name: str
    collection: Collection
    type: ClassVar[str] = 'createTable'

    def describe(self) -> str:
        return f"create table {self.table_name}"


@dataclass(frozen=True)
class AddColumn:
    table: str
    column: str
    definition: ColumnDefinition
    type: ClassVar[str] = 'addColumn'

    def describe(self) -> str:
        return f"add column {self.table}.{self.column} ({self.definition.type})"


@dataclass(frozen=True)
class AlterColumn:
    table: str
    column: str
    definition: ColumnDefinition
    type: ClassVar[str] = 'alterColumn'

    def describe(self) -> str:
        state = 'NULL' if declared_nullable(self.definition) else 'NOT NULL'
        return f"alter column {self.table}.{self.column} set {state}"


SchemaOperation = Union[CreateTable, AddColumn, AlterColumn]


@dataclass
class MigrationResult:
    operations: List[SchemaOperation] = field(default_factory=list)


def declared_nullable(definition: ColumnDefinition) -> bool:
    return False if definition.primary else bool(definition.nullable)


def ordered_tables(schema: Schema) -> List[str]:
    """Table names with belongs-to targets before the tables that reference them.

    Tables caught in a reference cycle keep their declared order.
    """
    ordered: List[str] = []
    state: Dict[str, int] = {}

    def _visit(name: str) -> None:
        if state.get(name) is not None:
            return
        state[name] = 0
        for definition in schema.collection(name).values():
            if isinstance(definition, BelongsTo) and definition.table != name and state.get(definition.table) is None:
                _visit(definition.table)
        state[name] = 1
        ordered.append(name)

    for table_name in schema:
        _visit(table_name)
    return ordered


# ----- diff -----

def diff_schema(sync_conn: Any, schema: Schema) -> List[SchemaOperation]:
    """Compare ``schema`` with the database behind ``sync_conn`` (no side effects)."""
    inspector = sa.inspect(sync_conn)
    operations: List[SchemaOperation] = []
    for table_name in ordered_tables(schema):
        if not inspector.has_table(table_name):
            operations.append(CreateTable(table_name=table_name, collection=schema.collection(table_name)))
            continue
        live = {info['name']: info for info in inspector.get_columns(table_name)}
        for column, definition in schema.columns(table_name, include_belongs_to=True).items():
            info = live.get(column)
            if info is None:
                operations.append(AddColumn(table=table_name, column=column, definition=definition))
            elif bool(info.get('nullable', True)) != declared_nullable(definition):
                operations.append(AlterColumn(table=table_name, column=column, definition=definition))
    return operations


# ----- apply -----

def _operations(sync_conn: Any) -> Operations:
    return Operations(MigrationContext.configure(connection=sync_conn))


def _create_table(sync_conn: Any, operation: CreateTable, schema: Schema) -> None:
    columns = schema.columns(operation.table_name, include_belongs_to=True)
    run_hooks('before_create', operation.table_name, columns, sync_conn)
    schema.table(operation.table_name).create(sync_conn, checkfirst=True)
    run_hooks('after_create', operation.table_name, columns, sync_conn)


def _add_column(sync_conn: Any, operation: AddColumn) -> None:
    adapter = get_adapter(sync_conn.dialect.name)
    columns = {operation.column: operation.definition}
    run_hooks('before_create', operation.table, columns, sync_conn)
    # SQLite cannot add a constraint to an existing table without a rebuild
    column = build_column(
        operation.table, operation.column, operation.definition,
        foreign_key=adapter.supports_alter_in_place(),
    )
    ops = _operations(sync_conn)
    if adapter.supports_alter_in_place():
        ops.add_column(operation.table, column)
    else:
        with ops.batch_alter_table(operation.table) as batch:
            batch.add_column(column)
    run_hooks('after_create', operation.table, columns, sync_conn)


def _alter_column(sync_conn: Any, operation: AlterColumn) -> None:
    adapter = get_adapter(sync_conn.dialect.name)
    existing = build_column(operation.table, operation.column, operation.definition, foreign_key=False)
    nullable = declared_nullable(operation.definition)
    ops = _operations(sync_conn)
    if adapter.supports_alter_in_place():
        ops.alter_column(operation.table, operation.column, nullable=nullable, existing_type=existing.type)
    else:
        with ops.batch_alter_table(operation.table) as batch:
            batch.alter_column(operation.column, nullable=nullable, existing_type=existing.type)


def apply_operation(sync_conn: Any, operation: Any, schema: Optional[Schema] = None) -> None:
    """Apply one schema operation on a synchronous connection.

    ``CreateTable`` needs the whole schema to resolve belongs-to column types
    and foreign keys; calling it without one is a configuration error.
    """
    if isinstance(operation, CreateTable):
        if schema is None:
            raise SchemaError(f"Creating table {operation.table_name!r} requires the full schema")
        _create_table(sync_conn, operation, schema)
    elif isinstance(operation, AddColumn):
        _add_column(sync_conn, operation)
    elif isinstance(operation, AlterColumn):
        _alter_column(sync_conn, operation)
    else:
        raise UnsupportedOperation(operation)


def migrate_sync(sync_conn: Any, schema: Schema) -> MigrationResult:
    operations = diff_schema(sync_conn, schema)
    for operation in operations:
        _logger.info("migrate: %s", operation.describe())
        apply_operation(sync_conn, operation, schema)
    if not operations:
        _logger.info("migrate: schema is up to date")
    return MigrationResult(operations=operations)


async def plan(db: Database, schema: Schema) -> List[SchemaOperation]:
    """Operations ``migrate`` would apply right now."""
    async with connect(db) as conn:
        return await conn.run_sync(diff_schema, schema)


async def migrate(db: Database, schema: Schema, *, trx: Optional[AsyncConnection] = None) -> MigrationResult:
    """Diff and apply in one transaction."""
    async def _work(conn: AsyncConnection) -> MigrationResult:
        return await conn.run_sync(migrate_sync, schema)

    return await run_in_transaction(db, trx, _work)


__all__ = [
    'CreateTable',
    'AddColumn',
    'AlterColumn',
    'SchemaOperation',
    'MigrationResult',
    'declared_nullable',
    'ordered_tables',
    'diff_schema',
    'apply_operation',
    'migrate_sync',
    'plan',
    'migrate',
]
