"""
Diff computation between a source's live schema and the catalog.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..catalog.models import CatalogContext, Column, RelationOptions, Table
from ..catalog.store import CatalogStore
from ..catalog.types import ModelType, RelationType, is_links_or_ltar, is_virtual_column
from ..config import BaseConfig, SourceConfig
from ..database.introspection import ColumnInfo, RelationInfo, SchemaIntrospector, TableInfo
from ..exceptions import ReferentialInconsistencyError
from .changes import MetaDiff, MetaDiffChange, MetaDiffType
from .type_mapping import is_mysql_family


logger = logging.getLogger(__name__)

IGNORED_TABLES = frozenset({"nc_evolutions"})


def filter_tables(
    tables: Iterable[TableInfo], prefix: str = "", is_meta: bool = False
) -> List[TableInfo]:
    """Drop internal tables; meta sources only keep tables carrying the base prefix."""
    result = []
    for table in tables:
        if table.name in IGNORED_TABLES:
            continue
        if prefix and is_meta and not table.name.startswith(prefix):
            continue
        result.append(table)
    return result


def column_type_changed(client: str, old: Column, info: ColumnInfo) -> bool:
    if old.dt != info.data_type:
        return True
    return (
        is_mysql_family(client)
        and (info.data_type or "").lower() in ("set", "enum")
        and old.dtxp != info.type_params
    )


def column_props_changed(old: Column, info: ColumnInfo) -> bool:
    return (
        bool(old.pk) != bool(info.is_primary_key)
        or bool(old.rqd) != bool(info.required)
        or bool(old.un) != bool(info.is_unsigned)
        or bool(old.ai) != bool(info.is_auto_increment)
        or bool(old.unique) != bool(info.is_unique)
    )


class _RelationState:
    """Physical foreign keys and the relation directions already modeled for them."""

    def __init__(self, relations: List[RelationInfo]):
        self.relations = relations
        self.found: Dict[Tuple[str, str, str, str], Set[str]] = {r.key: set() for r in relations}

    def lookup(self, child_table, child_column, parent_table, parent_column) -> Optional[RelationInfo]:
        for relation in self.relations:
            if relation.key == (child_table, child_column, parent_table, parent_column):
                return relation
        return None

    def mark(self, relation: RelationInfo, relation_type: str) -> None:
        self.found[relation.key].add(relation_type)

    def is_found(self, relation: RelationInfo, relation_type: str) -> bool:
        found = self.found[relation.key]
        return relation_type in found or RelationType.ONE_TO_ONE.value in found


@dataclass
class DiffRun:
    """Lookups shared by one `compute` call."""

    context: CatalogContext
    source: SourceConfig
    introspector: SchemaIntrospector
    relations: _RelationState
    tables_by_id: Dict[str, Table] = field(default_factory=dict)
    columns_by_id: Dict[str, Column] = field(default_factory=dict)
    column_lists: Dict[str, List[ColumnInfo]] = field(default_factory=dict)
    physical_names: Set[str] = field(default_factory=set)

    async def columns(self, table_name: str) -> List[ColumnInfo]:
        if table_name not in self.column_lists:
            self.column_lists[table_name] = await self.introspector.columns(
                table_name, self.source.schema_name
            )
        return self.column_lists[table_name]


class DiffComputer:
    """Classifies every discrepancy between a source's live schema and its catalog tables."""

    def __init__(self, store: CatalogStore):
        self.store = store

    async def compute(
        self,
        context: CatalogContext,
        base: BaseConfig,
        source: SourceConfig,
        introspector: SchemaIntrospector,
    ) -> List[MetaDiff]:
        """Per table changes for one source. Tables without changes are left out."""
        if source.is_meta:
            return []

        schema = source.schema_name
        physical_tables = filter_tables(await introspector.tables(schema), base.prefix, source.is_meta)
        physical_views = filter_tables(await introspector.views(schema), base.prefix, source.is_meta)
        relations = _RelationState(await introspector.relations(schema))

        catalog_tables = await self.store.list_tables(context, source.id, with_columns=True)
        old_tables = [t for t in catalog_tables if t.type == ModelType.TABLE.value]
        old_views = [t for t in catalog_tables if t.type == ModelType.VIEW.value]

        run = DiffRun(
            context,
            source,
            introspector,
            relations,
            tables_by_id={t.id: t for t in catalog_tables},
            columns_by_id={c.id: c for t in catalog_tables for c in t.columns or []},
            physical_names={t.name for t in physical_tables},
        )

        diffs: List[MetaDiff] = []
        relation_columns: List[Column] = []

        for table in physical_tables:
            old = next((t for t in old_tables if t.table_name == table.name), None)
            if old is None:
                diffs.append(
                    MetaDiff(
                        table_name=table.name,
                        source_id=source.id,
                        type=ModelType.TABLE.value,
                        changes=[MetaDiffChange(MetaDiffType.TABLE_NEW, msg="New table")],
                    )
                )
                continue
            old_tables.remove(old)

            diff = MetaDiff(table.name, source.id, ModelType.TABLE.value, title=old.title)
            diffs.append(diff)
            columns = await run.columns(table.name)
            remaining = self._diff_columns(source, old, columns, diff, is_view=False)

            for column in remaining:
                if is_virtual_column(column):
                    if is_links_or_ltar(column):
                        relation_columns.append(column)
                    continue
                diff.changes.append(
                    MetaDiffChange(
                        MetaDiffType.TABLE_COLUMN_REMOVE,
                        msg=f"Column removed({column.column_name})",
                        cn=column.column_name,
                        table_id=old.id,
                        column=column,
                        col_id=column.id,
                    )
                )

        for old in old_tables:
            diffs.append(
                MetaDiff(
                    table_name=old.table_name,
                    source_id=source.id,
                    type=ModelType.TABLE.value,
                    title=old.title,
                    changes=[
                        MetaDiffChange(
                            MetaDiffType.TABLE_REMOVE,
                            msg="Table removed",
                            tn=old.table_name,
                            table_id=old.id,
                            model=old,
                        )
                    ],
                )
            )

        for column in relation_columns:
            await self._diff_relation_column(run, column, diffs)

        for relation in relations.relations:
            if not relations.is_found(relation, RelationType.BELONGS_TO.value):
                self._attach(
                    diffs,
                    relation.child_table,
                    MetaDiffChange(
                        MetaDiffType.TABLE_RELATION_ADD,
                        msg="New relation added",
                        tn=relation.child_table,
                        rtn=relation.parent_table,
                        cn=relation.child_column,
                        rcn=relation.parent_column,
                        relation_type=RelationType.BELONGS_TO,
                        cstn=relation.constraint_name,
                    ),
                )
            if not relations.is_found(relation, RelationType.HAS_MANY.value):
                self._attach(
                    diffs,
                    relation.parent_table,
                    MetaDiffChange(
                        MetaDiffType.TABLE_RELATION_ADD,
                        msg="New relation added",
                        tn=relation.child_table,
                        rtn=relation.parent_table,
                        cn=relation.child_column,
                        rcn=relation.parent_column,
                        relation_type=RelationType.HAS_MANY,
                        cstn=relation.constraint_name,
                    ),
                )

        for view in physical_views:
            old = next((t for t in old_views if t.table_name == view.name), None)
            if old is None:
                diffs.append(
                    MetaDiff(
                        table_name=view.name,
                        source_id=source.id,
                        type=ModelType.VIEW.value,
                        changes=[MetaDiffChange(MetaDiffType.VIEW_NEW, msg="New view")],
                    )
                )
                continue
            old_views.remove(old)

            diff = MetaDiff(view.name, source.id, ModelType.VIEW.value, title=old.title)
            diffs.append(diff)
            columns = await run.columns(view.name)
            remaining = self._diff_columns(source, old, columns, diff, is_view=True)

            for column in remaining:
                if is_virtual_column(column):
                    continue
                diff.changes.append(
                    MetaDiffChange(
                        MetaDiffType.VIEW_COLUMN_REMOVE,
                        msg=f"Column removed({column.column_name})",
                        cn=column.column_name,
                        table_id=old.id,
                        column=column,
                        col_id=column.id,
                    )
                )

        for old in old_views:
            diffs.append(
                MetaDiff(
                    table_name=old.table_name,
                    source_id=source.id,
                    type=ModelType.VIEW.value,
                    title=old.title,
                    changes=[
                        MetaDiffChange(
                            MetaDiffType.VIEW_REMOVE,
                            msg="View removed",
                            tn=old.table_name,
                            table_id=old.id,
                            model=old,
                        )
                    ],
                )
            )

        return [d for d in diffs if d.has_changes]

    def _diff_columns(
        self,
        source: SourceConfig,
        old: Table,
        columns: List[ColumnInfo],
        diff: MetaDiff,
        is_view: bool,
    ) -> List[Column]:
        """Record add / type / props changes. Returns catalog columns with no physical match."""
        remaining = list(old.columns or [])
        add_type = MetaDiffType.VIEW_COLUMN_ADD if is_view else MetaDiffType.TABLE_COLUMN_ADD
        type_change = (
            MetaDiffType.VIEW_COLUMN_TYPE_CHANGE if is_view else MetaDiffType.TABLE_COLUMN_TYPE_CHANGE
        )

        for info in columns:
            match = next(
                (c for c in remaining if c.column_name == info.name and not is_virtual_column(c)),
                None,
            )
            if match is None:
                diff.changes.append(
                    MetaDiffChange(add_type, msg=f"New column({info.name})", cn=info.name, table_id=old.id)
                )
                continue
            remaining.remove(match)

            if column_type_changed(source.client, match, info):
                diff.changes.append(
                    MetaDiffChange(
                        type_change,
                        msg=f"Column type changed({info.name})",
                        cn=match.column_name,
                        table_id=old.id,
                        column=match,
                        col_id=match.id,
                    )
                )

            if not is_view and column_props_changed(match, info):
                diff.changes.append(
                    MetaDiffChange(
                        MetaDiffType.TABLE_COLUMN_PROPS_CHANGED,
                        msg=f"Column properties changed ({info.name})",
                        cn=match.column_name,
                        table_id=old.id,
                        column=match,
                        col_id=match.id,
                    )
                )

        return remaining

    async def _resolve_column(self, run: DiffRun, column_id: Optional[str]) -> Column:
        if column_id and column_id in run.columns_by_id:
            return run.columns_by_id[column_id]
        column = await self.store.get_column(run.context, column_id) if column_id else None
        if column is None:
            raise ReferentialInconsistencyError("Relation", column_id or "?", "column")
        run.columns_by_id[column.id] = column
        return column

    async def _resolve_table(self, run: DiffRun, table_id: Optional[str]) -> Table:
        if table_id and table_id in run.tables_by_id:
            return run.tables_by_id[table_id]
        table = await self.store.get_table(run.context, table_id, with_columns=False) if table_id else None
        if table is None:
            raise ReferentialInconsistencyError("Relation", table_id or "?", "table")
        run.tables_by_id[table.id] = table
        return table

    async def _diff_relation_column(
        self, run: DiffRun, column: Column, diffs: List[MetaDiff]
    ) -> None:
        options: Optional[RelationOptions] = column.options
        owner = run.tables_by_id.get(column.fk_model_id)
        if options is None:
            return

        try:
            parent_col = await self._resolve_column(run, options.fk_parent_column_id)
            child_col = await self._resolve_column(run, options.fk_child_column_id)
            parent_model = await self._resolve_table(run, parent_col.fk_model_id)
            child_model = await self._resolve_table(run, child_col.fk_model_id)
        except ReferentialInconsistencyError as e:
            logger.warning(f"{e}; scheduling removal of relation column '{column.title}'")
            kind = (
                MetaDiffType.TABLE_VIRTUAL_M2M_REMOVE
                if options.type == RelationType.MANY_TO_MANY
                else MetaDiffType.TABLE_RELATION_REMOVE
            )
            if owner is not None:
                self._attach(
                    diffs,
                    owner.table_name,
                    MetaDiffChange(kind, msg="Relation removed", col_id=column.id, column=column),
                )
            return

        if options.type == RelationType.MANY_TO_MANY:
            await self._diff_m2m_column(
                run, column, options, parent_col, child_col, parent_model, child_model, diffs
            )
            return

        if options.virtual:
            return

        relation = run.relations.lookup(
            child_model.table_name, child_col.column_name, parent_model.table_name, parent_col.column_name
        )
        if relation is not None:
            run.relations.mark(relation, options.type)
            return

        attach_to = (
            child_model.table_name
            if options.type == RelationType.BELONGS_TO
            or (options.type == RelationType.ONE_TO_ONE and column.meta.get("bt"))
            else parent_model.table_name
        )
        self._attach(
            diffs,
            attach_to,
            MetaDiffChange(
                MetaDiffType.TABLE_RELATION_REMOVE,
                msg="Relation removed",
                tn=child_model.table_name,
                rtn=parent_model.table_name,
                cn=child_col.column_name,
                rcn=parent_col.column_name,
                col_id=column.id,
                column=column,
            ),
        )

    async def _diff_m2m_column(
        self, run, column, options, parent_col, child_col, parent_model, child_model, diffs
    ) -> None:
        def removal(msg: str) -> MetaDiffChange:
            return MetaDiffChange(
                MetaDiffType.TABLE_VIRTUAL_M2M_REMOVE, msg=msg, col_id=column.id, column=column
            )

        try:
            mm_model = await self._resolve_table(run, options.fk_mm_model_id)
            mm_child_col = await self._resolve_column(run, options.fk_mm_child_column_id)
            mm_parent_col = await self._resolve_column(run, options.fk_mm_parent_column_id)
        except ReferentialInconsistencyError as e:
            logger.warning(f"{e}; scheduling removal of many to many column '{column.title}'")
            self._attach(diffs, child_model.table_name, removal("Many to many removed"))
            return

        if parent_model.table_name not in run.physical_names:
            self._attach(
                diffs,
                child_model.table_name,
                removal(f"Many to many removed({parent_model.table_name} removed)"),
            )
            return
        if mm_model.table_name not in run.physical_names:
            self._attach(
                diffs,
                child_model.table_name,
                removal(f"Many to many removed({mm_model.table_name} removed)"),
            )
            return

        child_names = {c.name for c in await run.columns(child_model.table_name)}
        parent_names = {c.name for c in await run.columns(parent_model.table_name)}
        mm_names = {c.name for c in await run.columns(mm_model.table_name)}

        if (
            parent_col.column_name not in parent_names
            or child_col.column_name not in child_names
            or mm_child_col.column_name not in mm_names
            or mm_parent_col.column_name not in mm_names
        ):
            self._attach(
                diffs,
                child_model.table_name,
                removal("Many to many removed(One of the relation column removed)"),
            )

    @staticmethod
    def _attach(diffs: List[MetaDiff], table_name: str, change: MetaDiffChange) -> None:
        for diff in diffs:
            if diff.table_name == table_name and diff.type == ModelType.TABLE.value:
                diff.changes.append(change)
                return
        logger.warning(
            f"No diff entry for table '{table_name}', dropping change: {change.msg}"
        )
