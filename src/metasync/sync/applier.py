"""
Applies classified changes to the catalog.

Changes of one table are applied sequentially in precedence order.
Relation columns requested by ``TABLE_RELATION_ADD`` are queued and
created after every table has been processed, under the concurrency
limit of the source's client type.
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from ..catalog.models import CatalogContext, Column, RelationOptions, Table
from ..catalog.store import CatalogStore
from ..catalog.types import ModelType, RelationType, UIType
from ..config import BaseConfig, ConcurrencyConfig, SourceConfig
from ..database.introspection import ColumnInfo, SchemaIntrospector
from .changes import MetaDiff, MetaDiffChange, MetaDiffType
from .executor import Operation, execute_for_client
from .invalidation import DependentInvalidator
from .naming import (
    get_column_name_alias,
    get_table_name_alias,
    get_unique_column_alias_name,
    get_unique_table_alias_name,
    map_default_display_value,
    pluralize,
    singularize,
)
from .type_mapping import get_column_ui_type


logger = logging.getLogger(__name__)

# uidts the engine assigns itself and type inference must not overwrite
_PRESERVED_UI_TYPES = (UIType.FOREIGN_KEY.value,)


@dataclass
class ApplyRun:
    """State shared by the handlers of one source's run."""

    context: CatalogContext
    base: BaseConfig
    source: SourceConfig
    introspector: SchemaIntrospector
    queued: List[Operation] = field(default_factory=list)
    column_lists: Dict[str, List[ColumnInfo]] = field(default_factory=dict)
    model_locks: Dict[str, asyncio.Lock] = field(default_factory=dict)

    async def columns(self, table_name: str) -> List[ColumnInfo]:
        if table_name not in self.column_lists:
            self.column_lists[table_name] = await self.introspector.columns(
                table_name, self.source.schema_name
            )
        return self.column_lists[table_name]

    async def column(self, table_name: str, column_name: str) -> Optional[ColumnInfo]:
        for info in await self.columns(table_name):
            if info.name == column_name:
                return info
        return None

    def lock(self, model_id: str) -> asyncio.Lock:
        if model_id not in self.model_locks:
            self.model_locks[model_id] = asyncio.Lock()
        return self.model_locks[model_id]


Handler = Callable[[ApplyRun, MetaDiff, MetaDiffChange], Awaitable[None]]


class ChangeApplier:
    """Executes a source's diff against the catalog store."""

    def __init__(
        self,
        store: CatalogStore,
        invalidator: Optional[DependentInvalidator] = None,
        concurrency: Optional[ConcurrencyConfig] = None,
    ):
        self.store = store
        self.invalidator = invalidator or DependentInvalidator(store)
        self.concurrency = concurrency or ConcurrencyConfig()

        self._handlers: Dict[str, Handler] = {
            MetaDiffType.TABLE_NEW.value: self._table_new,
            MetaDiffType.VIEW_NEW.value: self._table_new,
            MetaDiffType.TABLE_REMOVE.value: self._table_remove,
            MetaDiffType.VIEW_REMOVE.value: self._table_remove,
            MetaDiffType.TABLE_COLUMN_ADD.value: self._column_add,
            MetaDiffType.VIEW_COLUMN_ADD.value: self._column_add,
            MetaDiffType.TABLE_COLUMN_TYPE_CHANGE.value: self._column_type_change,
            MetaDiffType.VIEW_COLUMN_TYPE_CHANGE.value: self._column_type_change,
            MetaDiffType.TABLE_COLUMN_PROPS_CHANGED.value: self._column_props_changed,
            MetaDiffType.TABLE_COLUMN_REMOVE.value: self._column_remove,
            MetaDiffType.VIEW_COLUMN_REMOVE.value: self._column_remove,
            MetaDiffType.TABLE_RELATION_REMOVE.value: self._column_remove,
            MetaDiffType.TABLE_VIRTUAL_M2M_REMOVE.value: self._column_remove,
            MetaDiffType.TABLE_RELATION_ADD.value: self._relation_add,
        }

    async def apply(
        self,
        context: CatalogContext,
        base: BaseConfig,
        source: SourceConfig,
        introspector: SchemaIntrospector,
        diffs: List[MetaDiff],
    ) -> int:
        """Apply every change in ``diffs``. Returns the number of changes applied."""
        run = ApplyRun(context, base, source, introspector)
        applied = 0

        for diff in diffs:
            changes = diff.ordered_changes()
            if not changes:
                logger.debug(f"No changes detected for {diff.table_name}")
                continue

            logger.info(f"Applying changes for {diff.table_name}")
            for change in changes:
                handler = self._handlers.get(change.type)
                if handler is None:
                    logger.warning(f"Skipping unsupported change type '{change.type}'")
                    continue
                logger.info(f"Applying change: {change.msg}")
                await handler(run, diff, change)
                applied += 1
            logger.debug(f"Changes applied for {diff.table_name}")

        if run.queued:
            logger.info("Processing virtual column changes")
            await execute_for_client(run.queued, source.client, self.concurrency)
            logger.info("Virtual column changes applied")

        return applied

    def _build_columns(self, run: ApplyRun, infos: List[ColumnInfo]) -> List[Column]:
        columns = []
        for info in infos:
            columns.append(
                Column(
                    fk_model_id="",
                    title=get_column_name_alias(info.name, run.source),
                    uidt=get_column_ui_type(run.source.client, info),
                    **info.to_column_attrs(),
                )
            )
        map_default_display_value(columns)
        return columns

    async def _table_new(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        is_view = change.type == MetaDiffType.VIEW_NEW.value
        infos = await run.columns(diff.table_name)
        prefix = run.base.prefix if run.source.is_meta or is_view else ""
        table = Table(
            base_id=run.context.base_id,
            source_id=run.source.id,
            table_name=diff.table_name,
            title=get_unique_table_alias_name(
                await self.store.list_tables(run.context, run.source.id),
                get_table_name_alias(diff.table_name, prefix, run.source),
            ),
            type=(ModelType.VIEW if is_view else ModelType.TABLE).value,
        )
        await self.store.insert_table(run.context, table, self._build_columns(run, infos))

    async def _table_remove(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        table_id = change.table_id or (change.model.id if change.model else None)
        if table_id is None:
            logger.warning(f"Table removal for {diff.table_name} carries no table id")
            return
        await self.invalidator.remove_table(run.context, table_id)

    async def _column_add(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        info = await run.column(diff.table_name, change.cn)
        if info is None:
            logger.warning(f"Column {change.cn} no longer exists in {diff.table_name}")
            return
        table = await self.store.get_table(run.context, change.table_id)
        if table is None:
            logger.warning(f"Table {diff.table_name} is missing from the catalog")
            return

        column = Column(
            fk_model_id=table.id,
            title=get_unique_column_alias_name(
                table.columns, get_column_name_alias(info.name, run.source)
            ),
            uidt=get_column_ui_type(run.source.client, info),
            **info.to_column_attrs(),
        )
        await self.store.insert_column(run.context, column)

    async def _column_type_change(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        info = await run.column(diff.table_name, change.cn)
        if info is None or change.column is None:
            return

        values = info.to_column_attrs()
        if change.column.uidt not in _PRESERVED_UI_TYPES:
            values["uidt"] = get_column_ui_type(run.source.client, info)
        await self.store.update_column(run.context, change.column.id, values)

        updated = await self.store.get_column(run.context, change.column.id)
        if updated is not None:
            await self.invalidator.column_type_changed(run.context, updated)

    async def _column_props_changed(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        info = await run.column(diff.table_name, change.cn)
        if info is None or change.column is None:
            return
        attrs = info.to_column_attrs()
        await self.store.update_column(
            run.context,
            change.column.id,
            {key: attrs[key] for key in ("pk", "ai", "rqd", "un", "unique")},
        )

    async def _column_remove(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        column_id = change.col_id or (change.column.id if change.column else None)
        if column_id is None:
            return
        # an earlier cascade may already have removed it
        await self.invalidator.remove_column(run.context, column_id)

    async def _relation_add(self, run: ApplyRun, diff: MetaDiff, change: MetaDiffChange) -> None:
        async def create_relation_column() -> None:
            await self._create_relation_column(run, change)

        run.queued.append(create_relation_column)

    async def _create_relation_column(self, run: ApplyRun, change: MetaDiffChange) -> None:
        context = run.context
        parent = await self.store.get_table_by_name(context, run.source.id, change.rtn)
        child = await self.store.get_table_by_name(context, run.source.id, change.tn)
        if parent is None or child is None:
            logger.warning(
                f"Skipping relation {change.tn}.{change.cn} -> {change.rtn}.{change.rcn}: "
                f"table missing from the catalog"
            )
            return

        async with AsyncExitStack() as stack:
            for model_id in sorted({parent.id, child.id}):
                await stack.enter_async_context(run.lock(model_id))

            parent = await self.store.get_table(context, parent.id)
            child = await self.store.get_table(context, child.id)
            parent_col = parent.get_column(change.rcn)
            child_col = child.get_column(change.cn)
            if parent_col is None or child_col is None:
                logger.warning(
                    f"Skipping relation {change.tn}.{change.cn} -> {change.rtn}.{change.rcn}: "
                    f"column missing from the catalog"
                )
                return

            if child_col.uidt != UIType.FOREIGN_KEY.value:
                await self.store.update_column(
                    context, child_col.id, {"uidt": UIType.FOREIGN_KEY.value}
                )
            if not child_col.system:
                await self.store.mark_as_system_field(context, child_col.id)

            if change.relation_type == RelationType.BELONGS_TO:
                await self.store.insert_column(
                    context,
                    Column(
                        fk_model_id=child.id,
                        title=get_unique_column_alias_name(
                            child.columns, parent.title or parent.table_name
                        ),
                        uidt=UIType.LINK_TO_ANOTHER_RECORD.value,
                        options=RelationOptions(
                            fk_column_id="",
                            type=RelationType.BELONGS_TO.value,
                            fk_child_column_id=child_col.id,
                            fk_parent_column_id=parent_col.id,
                            fk_related_model_id=parent.id,
                            fk_index_name=change.cstn,
                            virtual=False,
                        ),
                    ),
                )
            elif change.relation_type == RelationType.HAS_MANY:
                child_title = child.title or child.table_name
                await self.store.insert_column(
                    context,
                    Column(
                        fk_model_id=parent.id,
                        title=get_unique_column_alias_name(parent.columns, pluralize(child_title)),
                        uidt=UIType.LINKS.value,
                        meta={"plural": pluralize(child_title), "singular": singularize(child_title)},
                        options=RelationOptions(
                            fk_column_id="",
                            type=RelationType.HAS_MANY.value,
                            fk_child_column_id=child_col.id,
                            fk_parent_column_id=parent_col.id,
                            fk_related_model_id=child.id,
                            fk_index_name=change.cstn,
                            virtual=False,
                        ),
                    ),
                )
            else:
                logger.warning(f"Unsupported relation type '{change.relation_type}' in relation add")
