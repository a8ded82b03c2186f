from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..data_types import transform_output_value
from ..schema import BelongsTo, HasOne, Schema
from .naming import column_label
from .selection import RelationTree, selected_fields


class Hydrator:
    """Rebuild nested records from the flat rows of a joined select.

    Rows sharing a primary key belong to one logical record; has-many and
    many-to-many joins multiply rows, so every level regroups its rows by the
    related key before recursing. Values are decoded through the registry's
    output transforms for ``dialect``.
    """

    def __init__(self, schema: Schema, root_table: str, dialect: str = '*'):
        self.schema = schema
        self.root_table = root_table
        self.dialect = dialect

    # ----- basic helpers -----
    @staticmethod
    def group_rows(rows: Sequence[Mapping[str, Any]], key: str) -> List[List[Mapping[str, Any]]]:
        """Group rows by ``key`` preserving first-seen order; rows with a NULL key are dropped."""
        groups: Dict[Any, List[Mapping[str, Any]]] = {}
        for row in rows:
            value = row.get(key)
            if value is None:
                continue
            groups.setdefault(value, []).append(row)
        return list(groups.values())

    def _value(self, table: str, field: str, raw: Any) -> Any:
        definition = self.schema.columns(table, include_belongs_to=True)[field]
        return transform_output_value(self.dialect, definition.type, raw)

    # ----- reconstruction -----
    def reconstruct(
        self,
        rows: Sequence[Mapping[str, Any]],
        tree: RelationTree,
        base_fields: List[str],
        alias: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if not rows:
            return []
        alias = alias or self.root_table
        pk_label = column_label(alias, self.schema.primary_key(self.root_table))
        return [
            self._build(self.root_table, alias, group, tree, base_fields)
            for group in self.group_rows(rows, pk_label)
        ]

    def _build(
        self,
        table: str,
        alias: str,
        rows: List[Mapping[str, Any]],
        tree: RelationTree,
        fields: List[str],
    ) -> Dict[str, Any]:
        first = rows[0]
        out: Dict[str, Any] = {}
        for field_name in fields:
            out[field_name] = self._value(table, field_name, first.get(column_label(alias, field_name)))

        relations = self.schema.relations(table)
        for name, node in tree.items():
            relation = relations[name]
            if relation.table == self.root_table:
                continue
            child_alias = f"{alias}_{name}"
            child_pk = self.schema.primary_key(relation.table)
            child_fields = selected_fields(self.schema, relation.table, node.fields, node.all_fields)
            groups = self.group_rows(rows, column_label(child_alias, child_pk))

            if isinstance(relation, (BelongsTo, HasOne)):
                if groups:
                    out[name] = self._build(relation.table, child_alias, groups[0], node.nested, child_fields)
                elif isinstance(relation, BelongsTo):
                    # the object replaces the raw foreign key, NULL stays NULL
                    out[name] = None
            else:
                out[name] = [
                    self._build(relation.table, child_alias, group, node.nested, child_fields)
                    for group in groups
                ]
        return out

    def decode_record(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Decode a plain (unlabelled) row of ``table``."""
        columns = self.schema.columns(table, include_belongs_to=True)
        return {
            key: transform_output_value(self.dialect, columns[key].type, value) if key in columns else value
            for key, value in row.items()
        }


__all__ = ['Hydrator']
