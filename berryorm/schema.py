"""Declarative schema model.

A schema is a mapping of table name to collection, and a collection maps field
names to either a ColumnDefinition or one of the four relation definitions.
Raw dictionaries (camelCase keys such as ``foreignKey`` are accepted) are
normalised into frozen dataclasses by ``define_collection``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields as dc_fields
from typing import Any, Callable, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from sqlalchemy import MetaData, Table

from .core.naming import from_camel
from .errors import MissingPrimaryKey, SchemaError, UnknownCollection, UnknownRelation

_logger = logging.getLogger("berryorm")

RELATION_ACTIONS = ('CASCADE', 'RESTRICT', 'NO ACTION', 'SET NULL', 'SET DEFAULT')


@dataclass(frozen=True)
class Reference:
    table: str
    column: str
    on_delete: Optional[str] = None
    on_update: Optional[str] = None


@dataclass(frozen=True)
class ColumnDefinition:
    type: str
    nullable: bool = True
    unique: bool = False
    primary: bool = False
    increments: bool = False
    default: Any = None
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    options: Optional[Tuple[str, ...]] = None
    unsigned: bool = False
    # Only set on columns derived from a belongs-to relation
    references: Optional[Reference] = None


@dataclass(frozen=True)
class Through:
    table: str
    source_fk: str
    target_fk: str


@dataclass(frozen=True)
class HasOne:
    table: str
    foreign_key: str
    type: ClassVar[str] = 'has-one'


@dataclass(frozen=True)
class HasMany:
    table: str
    foreign_key: str
    type: ClassVar[str] = 'has-many'


@dataclass(frozen=True)
class BelongsTo:
    table: str
    foreign_key: str
    on_delete: Optional[str] = 'CASCADE'
    on_update: Optional[str] = 'CASCADE'
    nullable: bool = True
    type: ClassVar[str] = 'belongs-to'


@dataclass(frozen=True)
class ManyToMany:
    table: str
    foreign_key: str
    through: Through
    type: ClassVar[str] = 'many-to-many'


RelationDefinition = Union[HasOne, HasMany, BelongsTo, ManyToMany]
FieldDefinition = Union[ColumnDefinition, HasOne, HasMany, BelongsTo, ManyToMany]
Collection = Dict[str, FieldDefinition]

_RELATION_CLASSES = {
    'has-one': HasOne,
    'has-many': HasMany,
    'belongs-to': BelongsTo,
    'many-to-many': ManyToMany,
}


def is_relation(definition: Any) -> bool:
    return isinstance(definition, (HasOne, HasMany, BelongsTo, ManyToMany))


def _snake_keys(raw: Mapping[str, Any]) -> Dict[str, Any]:
    return {from_camel(str(k)): v for k, v in raw.items()}


def _normalize_through(raw: Any) -> Through:
    if isinstance(raw, Through):
        return raw
    if not isinstance(raw, Mapping):
        raise SchemaError(f"many-to-many 'through' must be a mapping, got {raw!r}")
    data = _snake_keys(raw)
    # 'table_fk' is accepted as an alias of 'target_fk'
    target_fk = data.get('target_fk') or data.get('table_fk')
    try:
        return Through(table=data['table'], source_fk=data['source_fk'], target_fk=target_fk)
    except KeyError as exc:
        raise SchemaError(f"many-to-many 'through' is missing {exc.args[0]!r}") from exc


def normalize_field(raw: Any) -> FieldDefinition:
    """Turn a raw field description into its typed definition.

    Columns default to ``nullable=True`` unless they are primary keys; belongs-to
    relations default ``on_delete``/``on_update`` to CASCADE.
    """
    if isinstance(raw, (ColumnDefinition, HasOne, HasMany, BelongsTo, ManyToMany)):
        return raw
    if not isinstance(raw, Mapping) or 'type' not in raw:
        raise SchemaError(f"Field definition must be a mapping with a 'type' key, got {raw!r}")
    data = _snake_keys(raw)
    kind = data.pop('type')
    if kind in _RELATION_CLASSES:
        cls = _RELATION_CLASSES[kind]
        if cls is ManyToMany:
            data['through'] = _normalize_through(data.get('through'))
        allowed = {f.name for f in dc_fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise SchemaError(f"Unknown attribute(s) {sorted(unknown)} on {kind} relation")
        if 'table' not in data or 'foreign_key' not in data:
            raise SchemaError(f"{kind} relation requires 'table' and 'foreignKey'")
        if cls is BelongsTo:
            for action in ('on_delete', 'on_update'):
                if data.get(action) is not None and str(data[action]).upper() not in RELATION_ACTIONS:
                    raise SchemaError(f"Unsupported {action} action: {data[action]!r}")
                if data.get(action) is None:
                    data.pop(action, None)
        return cls(**data)
    allowed = {f.name for f in dc_fields(ColumnDefinition)} - {'type', 'references'}
    unknown = set(data) - allowed
    if unknown:
        raise SchemaError(f"Unknown attribute(s) {sorted(unknown)} on {kind} column")
    if data.get('options') is not None:
        data['options'] = tuple(data['options'])
    if 'nullable' not in data:
        data['nullable'] = not data.get('primary', False)
    return ColumnDefinition(type=kind, **data)


def define_collection(fields_map: Mapping[str, Any]) -> Collection:
    """Normalise every field of a collection."""
    return {str(name): normalize_field(raw) for name, raw in fields_map.items()}


def with_id(fields_map: Mapping[str, Any]) -> Dict[str, Any]:
    """Add an auto-incremented integer primary key column named ``id``."""
    return {
        **fields_map,
        'id': {'type': 'integer', 'primary': True, 'increments': True, 'nullable': False},
    }


def with_uuid(fields_map: Mapping[str, Any]) -> Dict[str, Any]:
    """Add a UUID primary key column named ``id`` generated client-side."""
    return {
        **fields_map,
        'id': {'type': 'uuid', 'default': '{uuid}', 'primary': True, 'nullable': False},
    }


def with_timestamps(fields_map: Mapping[str, Any]) -> Dict[str, Any]:
    """Add ``created_at``/``updated_at`` timestamp columns defaulting to now."""
    return {
        **fields_map,
        'created_at': {'type': 'timestamp', 'nullable': False, 'default': '{now}'},
        'updated_at': {'type': 'timestamp', 'nullable': False, 'default': '{now}'},
    }


def with_defaults(fields_map: Mapping[str, Any]) -> Dict[str, Any]:
    return with_timestamps(with_id(fields_map))


class SchemaCache:
    """Memoised lookups derived from one immutable Schema.

    A schema is never mutated after construction, so entries stay valid for
    its lifetime.
    """

    def __init__(self) -> None:
        self._stores: Dict[str, Dict[Any, Any]] = {}
        self.metadata = MetaData()

    def use(self, store: str, key: Any, fn: Callable[[], Any]) -> Any:
        bucket = self._stores.setdefault(store, {})
        if key not in bucket:
            bucket[key] = fn()
        return bucket[key]


class Schema(Mapping[str, Collection]):
    """Immutable table name -> collection mapping with cached lookup helpers."""

    def __init__(self, collections: Mapping[str, Mapping[str, Any]]):
        self._collections: Dict[str, Collection] = {
            str(name): define_collection(fields_map) for name, fields_map in collections.items()
        }
        self.cache = SchemaCache()

    # ----- Mapping protocol -----
    def __getitem__(self, name: str) -> Collection:
        return self._collections[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._collections)

    def __len__(self) -> int:
        return len(self._collections)

    def __repr__(self) -> str:
        return f"Schema({list(self._collections)!r})"

    # ----- lookups -----
    def collection(self, name: str) -> Collection:
        try:
            return self._collections[name]
        except KeyError:
            raise UnknownCollection(name) from None

    def primary_key(self, name: str) -> str:
        def _find() -> str:
            for field_name, definition in self.collection(name).items():
                if isinstance(definition, ColumnDefinition) and definition.primary:
                    return field_name
            raise MissingPrimaryKey(f"No primary key column was found on table {name!r}")
        return self.cache.use('primary_key', name, _find)

    def columns(self, name: str, include_belongs_to: bool = False) -> Dict[str, ColumnDefinition]:
        """Column definitions of a table, optionally with belongs-to FK columns."""
        def _build() -> Dict[str, ColumnDefinition]:
            out: Dict[str, ColumnDefinition] = {}
            for field_name, definition in self.collection(name).items():
                if isinstance(definition, ColumnDefinition):
                    out[field_name] = definition
                elif include_belongs_to and isinstance(definition, BelongsTo):
                    out[field_name] = self.belongs_to_column(definition)
            return out
        return self.cache.use('columns', (name, include_belongs_to), _build)

    def relations(self, name: str, include_belongs_to: bool = True) -> Dict[str, RelationDefinition]:
        def _build() -> Dict[str, RelationDefinition]:
            return {
                field_name: definition
                for field_name, definition in self.collection(name).items()
                if is_relation(definition) and (include_belongs_to or not isinstance(definition, BelongsTo))
            }
        return self.cache.use('relations', (name, include_belongs_to), _build)

    def relation(self, name: str, relation_name: str) -> RelationDefinition:
        relation = self.relations(name).get(relation_name)
        if relation is None:
            raise UnknownRelation(name, relation_name)
        return relation

    def belongs_to_column(self, definition: BelongsTo) -> ColumnDefinition:
        """Column stored on the owning table for a belongs-to relation.

        Its type mirrors the referenced column. When that column is itself a
        belongs-to, the chain is followed until a real column is reached.
        """
        target = self.collection(definition.table).get(definition.foreign_key)
        seen = {(definition.table, definition.foreign_key)}
        while isinstance(target, BelongsTo):
            key = (target.table, target.foreign_key)
            if key in seen:
                raise SchemaError(f"Circular belongs-to chain through {definition.table}.{definition.foreign_key}")
            seen.add(key)
            target = self.collection(target.table).get(target.foreign_key)
        if not isinstance(target, ColumnDefinition):
            raise SchemaError(
                f"belongs-to reference {definition.table}.{definition.foreign_key} is not a column"
            )
        return ColumnDefinition(
            type=target.type,
            nullable=definition.nullable,
            length=target.length,
            precision=target.precision,
            scale=target.scale,
            options=target.options,
            unsigned=target.unsigned,
            references=Reference(
                table=definition.table,
                column=definition.foreign_key,
                on_delete=definition.on_delete,
                on_update=definition.on_update,
            ),
        )

    # ----- SQLAlchemy tables -----
    @property
    def metadata(self) -> MetaData:
        """MetaData holding one Table per collection (built on first access)."""
        return self.cache.use('metadata', None, self._build_metadata)

    def table(self, name: str) -> Table:
        self.collection(name)
        return self.metadata.tables[name]

    def _build_metadata(self) -> MetaData:
        from .data_types import build_column

        metadata = self.cache.metadata
        for table_name in self._collections:
            columns = [
                build_column(table_name, column_name, definition)
                for column_name, definition in self.columns(table_name, include_belongs_to=True).items()
            ]
            Table(table_name, metadata, *columns)
        return metadata

    # ----- validation -----
    def validate(self) -> None:
        """Check the structural invariants, raising SchemaError on the first failure."""
        from .data_types import get_data_type

        for table_name, collection in self._collections.items():
            primaries = [n for n, d in collection.items() if isinstance(d, ColumnDefinition) and d.primary]
            if len(primaries) != 1:
                raise SchemaError(
                    f"Table {table_name!r} must declare exactly one primary column, found {len(primaries)}"
                )
            for field_name, definition in collection.items():
                if isinstance(definition, ColumnDefinition):
                    get_data_type(definition.type)
                    continue
                if definition.table not in self._collections:
                    raise SchemaError(
                        f"Relation {table_name}.{field_name} references unknown table {definition.table!r}"
                    )
                if isinstance(definition, BelongsTo):
                    self.belongs_to_column(definition)
                elif isinstance(definition, (HasOne, HasMany)):
                    fk = self._collections[definition.table].get(definition.foreign_key)
                    if fk is None:
                        raise SchemaError(
                            f"Relation {table_name}.{field_name}: {definition.table}.{definition.foreign_key} does not exist"
                        )
                elif isinstance(definition, ManyToMany):
                    through = definition.through
                    junction = self._collections.get(through.table)
                    if junction is None:
                        raise SchemaError(
                            f"Relation {table_name}.{field_name} uses unknown through table {through.table!r}"
                        )
                    for fk in (through.source_fk, through.target_fk):
                        if fk not in junction:
                            raise SchemaError(f"Through table {through.table!r} has no field {fk!r}")


def define_schema(collections: Mapping[str, Mapping[str, Any]], *, extensions: bool = True) -> Schema:
    """Build and validate a Schema.

    ``extensions`` installs the default data-type extensions first so that
    their column types (``enum-array``) validate.
    """
    if extensions:
        from .extensions import install_default_extensions
        install_default_extensions()
    schema = Schema(collections)
    schema.validate()
    _logger.debug("schema defined with %d collections", len(schema))
    return schema


def to_array(value: Any) -> List[Any]:
    """Normalise a relation payload to a list of entries."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, Mapping):
        return [value]
    return []


__all__ = [
    'Reference',
    'ColumnDefinition',
    'Through',
    'HasOne',
    'HasMany',
    'BelongsTo',
    'ManyToMany',
    'RelationDefinition',
    'FieldDefinition',
    'Collection',
    'Schema',
    'SchemaCache',
    'define_schema',
    'define_collection',
    'normalize_field',
    'with_id',
    'with_uuid',
    'with_timestamps',
    'with_defaults',
    'is_relation',
    'to_array',
]
