from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from sqlalchemy.sql import FromClause

from ..errors import UnknownField, UnknownRelation
from ..schema import BelongsTo, HasMany, HasOne, ManyToMany, Schema
from .naming import column_label

WILDCARD = '*'


@dataclass
class RelationNode:
    """One relation in a selection tree.

    ``fields`` holds requested leaf names; an empty set or ``"*"`` means every
    column of the related table.
    """
    fields: Set[str] = field(default_factory=set)
    nested: Dict[str, 'RelationNode'] = field(default_factory=dict)

    @property
    def all_fields(self) -> bool:
        return not self.fields or WILDCARD in self.fields

    def copy(self) -> 'RelationNode':
        return RelationNode(set(self.fields), {k: v.copy() for k, v in self.nested.items()})

    def merge(self, other: 'RelationNode') -> 'RelationNode':
        if self.all_fields or other.all_fields:
            fields = {WILDCARD}
        else:
            fields = self.fields | other.fields
        nested = {k: v.copy() for k, v in self.nested.items()}
        for k, v in other.nested.items():
            nested[k] = nested[k].merge(v) if k in nested else v.copy()
        return RelationNode(fields, nested)


RelationTree = Dict[str, RelationNode]


def parse_column_paths(paths: Optional[Iterable[str]]) -> Tuple[RelationTree, List[str]]:
    """Split dot-notation paths into a relation tree and the base column list.

    ``["id", "posts.title", "posts.tags.name"]`` gives base columns ``["id"]`` and
    ``{"posts": {fields: {"title"}, nested: {"tags": {fields: {"name"}}}}}``.
    """
    tree: RelationTree = {}
    base_columns: List[str] = []
    for path in paths or ():
        if not path:
            continue
        parts = str(path).split('.')
        if len(parts) == 1:
            if parts[0] not in base_columns:
                base_columns.append(parts[0])
            continue
        current = tree
        for i, part in enumerate(parts[:-1]):
            node = current.setdefault(part, RelationNode())
            if i == len(parts) - 2:
                node.fields.add(parts[-1])
            current = node.nested
    return tree, base_columns


def expand_wildcards(
    tree: RelationTree,
    schema: Schema,
    table: str,
    visited: FrozenSet[str] = frozenset(),
    *,
    lenient: bool = False,
) -> RelationTree:
    """Replace ``"*"`` relation keys by the relations of ``table``.

    A wildcard never expands into a relation whose target is ``table`` or one of
    its ancestors on the current branch. Each recursion adds ``table`` to
    ``visited``, so expansion always terminates. Subtrees copied from a wildcard
    are expanded leniently: names that do not exist on a given target are
    dropped rather than raised.
    """
    ancestors = frozenset(visited) | {table}
    relations = schema.relations(table)
    merged: Dict[str, Tuple[RelationNode, bool]] = {}

    def _add(name: str, node: RelationNode, from_wildcard: bool) -> None:
        if name in merged:
            prev, prev_lenient = merged[name]
            merged[name] = (prev.merge(node), prev_lenient and from_wildcard)
        else:
            merged[name] = (node, from_wildcard)

    for name, node in tree.items():
        if name == WILDCARD:
            for rel_name, relation in relations.items():
                if relation.table in ancestors:
                    continue
                _add(rel_name, node.copy(), True)
        elif name in relations:
            _add(name, node, lenient)
        elif not lenient:
            raise UnknownRelation(table, name)

    out: RelationTree = {}
    for name, (node, node_lenient) in merged.items():
        target = relations[name].table
        target_columns = schema.columns(target, include_belongs_to=True)
        target_relations = schema.relations(target)
        fields: Set[str] = set()
        nested = dict(node.nested)
        for leaf in node.fields:
            if leaf == WILDCARD or leaf in target_columns:
                fields.add(leaf)
            elif leaf in target_relations:
                # Leaf naming a virtual relation selects that relation in full
                nested[leaf] = nested[leaf].merge(RelationNode()) if leaf in nested else RelationNode()
            elif not node_lenient:
                raise UnknownField(target, leaf, 'selection')
        if node.fields and not fields:
            # Only relations were requested below this node; keep just its key
            fields = {schema.primary_key(target)}
        out[name] = RelationNode(fields, expand_wildcards(nested, schema, target, ancestors, lenient=node_lenient))
    return out


def selected_fields(schema: Schema, table: str, node_fields: Optional[Iterable[str]], all_fields: bool) -> List[str]:
    """Concrete column names for a node, validated against the table."""
    columns = schema.columns(table, include_belongs_to=True)
    if all_fields:
        return list(columns)
    out: List[str] = []
    for name in node_fields or ():
        if name not in columns:
            raise UnknownField(table, name, 'selection')
        if name not in out:
            out.append(name)
    return out


def build_joins_and_selects(
    schema: Schema,
    root_table: str,
    table_name: str,
    base: FromClause,
    tree: RelationTree,
    from_clause: FromClause,
    selects: list,
    order_keys: Optional[list] = None,
) -> FromClause:
    """Add one LEFT JOIN per relation node and append labelled columns to ``selects``.

    Aliases are ``<parent alias>_<relation>``; many-to-many junctions use
    ``<alias>_junction``. Related primary keys are appended to ``order_keys`` when
    given so nested arrays come back in a stable order. Returns the extended FROM
    clause.
    """
    base_pk = schema.primary_key(table_name)
    relations = schema.relations(table_name)
    for name, node in tree.items():
        relation = relations.get(name)
        if relation is None:
            raise UnknownRelation(table_name, name)
        if relation.table == root_table:
            continue
        alias_name = f"{base.name}_{name}"
        related = schema.table(relation.table).alias(alias_name)
        related_pk = schema.primary_key(relation.table)

        if isinstance(relation, BelongsTo):
            from_clause = from_clause.outerjoin(related, related.c[relation.foreign_key] == base.c[name])
        elif isinstance(relation, (HasOne, HasMany)):
            from_clause = from_clause.outerjoin(related, related.c[relation.foreign_key] == base.c[base_pk])
        elif isinstance(relation, ManyToMany):
            through = relation.through
            junction = schema.table(through.table).alias(f"{alias_name}_junction")
            from_clause = from_clause.outerjoin(junction, junction.c[through.source_fk] == base.c[base_pk])
            from_clause = from_clause.outerjoin(related, related.c[related_pk] == junction.c[through.target_fk])
        else:  # pragma: no cover - closed union
            raise TypeError(f"Unsupported relation definition: {relation!r}")

        selects.append(related.c[related_pk].label(column_label(alias_name, related_pk)))
        if order_keys is not None:
            order_keys.append(related.c[related_pk])
        for field_name in selected_fields(schema, relation.table, node.fields, node.all_fields):
            if field_name != related_pk:
                selects.append(related.c[field_name].label(column_label(alias_name, field_name)))

        if node.nested:
            from_clause = build_joins_and_selects(
                schema, root_table, relation.table, related, node.nested, from_clause, selects, order_keys
            )
    return from_clause


__all__ = [
    'WILDCARD',
    'RelationNode',
    'RelationTree',
    'parse_column_paths',
    'expand_wildcards',
    'selected_fields',
    'build_joins_and_selects',
]
