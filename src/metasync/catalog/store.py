"""
Cache-aware catalog store.

All operations take a ``CatalogContext`` and read through the catalog
cache, falling back to the meta store on a miss. Writes go to the meta
store first and then keep entity, list and alias cache entries in step.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type

from ..config import MetaSyncConfig
from ..exceptions import ReferentialInconsistencyError, ValidationError
from .cache import CacheDelDirection, CacheScope, CatalogCache, create_cache
from .meta_store import MetaStore, MetaTable, create_meta_store
from .models import (
    AIOptions,
    BarcodeOptions,
    ButtonOptions,
    CatalogContext,
    Column,
    FormulaOptions,
    LookupOptions,
    QrCodeOptions,
    RelationOptions,
    RollupOptions,
    RowModel,
    Table,
    View,
    ViewColumn,
)
from .types import UIType, ViewType, is_ai_prompt_column, is_virtual_column


logger = logging.getLogger(__name__)

ALL_SOURCES = "all"

OptionSpec = Tuple[MetaTable, CacheScope, Type[RowModel]]

OPTION_SPECS: Dict[str, OptionSpec] = {
    UIType.LINK_TO_ANOTHER_RECORD.value: (MetaTable.COL_RELATIONS, CacheScope.COL_RELATION, RelationOptions),
    UIType.LINKS.value: (MetaTable.COL_RELATIONS, CacheScope.COL_RELATION, RelationOptions),
    UIType.FORMULA.value: (MetaTable.COL_FORMULA, CacheScope.COL_FORMULA, FormulaOptions),
    UIType.BUTTON.value: (MetaTable.COL_BUTTON, CacheScope.COL_BUTTON, ButtonOptions),
    UIType.LOOKUP.value: (MetaTable.COL_LOOKUP, CacheScope.COL_LOOKUP, LookupOptions),
    UIType.ROLLUP.value: (MetaTable.COL_ROLLUP, CacheScope.COL_ROLLUP, RollupOptions),
    UIType.QR_CODE.value: (MetaTable.COL_QRCODE, CacheScope.COL_QRCODE, QrCodeOptions),
    UIType.BARCODE.value: (MetaTable.COL_BARCODE, CacheScope.COL_BARCODE, BarcodeOptions),
}

AI_OPTION_SPEC: OptionSpec = (MetaTable.COL_LONG_TEXT, CacheScope.COL_LONG_TEXT, AIOptions)


def option_spec(column: Column) -> Optional[OptionSpec]:
    """Where the options of a column kind are stored, if it has any."""
    if is_ai_prompt_column(column):
        return AI_OPTION_SPEC
    return OPTION_SPECS.get(column.uidt)


class CatalogStore:
    """CRUD over tables, columns, column options, views and view columns."""

    def __init__(self, meta: MetaStore, cache: Optional[CatalogCache] = None):
        self.meta = meta
        self.cache = cache or CatalogCache(None)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """All-or-nothing scope. A rollback also drops the cache namespace."""
        try:
            async with self.meta.transaction():
                yield
        except BaseException:
            await self.cache.destroy()
            raise

    async def close(self) -> None:
        await self.cache.close()
        await self.meta.close()

    # Tables

    async def list_tables(
        self,
        context: CatalogContext,
        source_id: Optional[str] = None,
        with_columns: bool = False,
    ) -> List[Table]:
        sub_keys = [context.base_id, source_id or ALL_SOURCES]
        rows = await self.cache.get_list(CacheScope.MODEL, sub_keys)
        if rows is None:
            condition = {"source_id": source_id} if source_id else None
            rows = await self.meta.list(
                context, MetaTable.MODELS, condition, order_by=["order"]
            )
            await self.cache.set_list(CacheScope.MODEL, sub_keys, rows)
        else:
            rows = sorted(rows, key=lambda r: (r.get("order") is None, r.get("order") or 0))

        tables = [Table.from_row(row) for row in rows]
        if with_columns:
            for table in tables:
                table.columns = await self.list_columns(context, table.id)
        return tables

    async def get_table(
        self, context: CatalogContext, table_id: str, with_columns: bool = True
    ) -> Optional[Table]:
        row = await self.cache.get(CacheScope.MODEL, table_id)
        if row is None:
            row = await self.meta.get(context, MetaTable.MODELS, table_id)
            if row is None:
                return None
            await self.cache.set(CacheScope.MODEL, table_id, row)
        table = Table.from_row(row)
        if with_columns:
            table.columns = await self.list_columns(context, table.id)
        return table

    async def get_table_by_name(
        self, context: CatalogContext, source_id: str, table_name: str
    ) -> Optional[Table]:
        for table in await self.list_tables(context, source_id):
            if table.table_name == table_name:
                return await self.get_table(context, table.id)
        return None

    async def get_table_by_title(
        self, context: CatalogContext, source_id: str, title: str
    ) -> Optional[Table]:
        table_id = await self.cache.get_alias(CacheScope.MODEL, [context.base_id, source_id, title])
        if table_id:
            table = await self.get_table(context, table_id)
            if table is not None and table.title == title:
                return table
        for table in await self.list_tables(context, source_id):
            if table.title == title:
                await self.cache.set_alias(CacheScope.MODEL, [context.base_id, source_id, title], table.id)
                return await self.get_table(context, table.id)
        return None

    async def insert_table(
        self,
        context: CatalogContext,
        table: Table,
        columns: Optional[List[Column]] = None,
    ) -> Table:
        """Insert a table with its columns and a default grid view."""
        existing = await self.list_tables(context)
        for other in existing:
            if other.source_id != table.source_id:
                continue
            if other.table_name == table.table_name:
                raise ValidationError(
                    f"Table '{table.table_name}' already exists in the catalog",
                    {"source_id": table.source_id},
                )
            if other.title.lower() == table.title.lower():
                raise ValidationError(
                    f"Duplicate table alias '{table.title}'",
                    {"table_name": table.table_name},
                )

        if table.order is None:
            table.order = max((t.order or 0 for t in existing), default=0) + 1
        table.base_id = context.base_id

        row = await self.meta.insert(context, MetaTable.MODELS, table.to_row())
        await self.cache.append_to_list(CacheScope.MODEL, [context.base_id, table.source_id], row)
        await self.cache.append_to_list(CacheScope.MODEL, [context.base_id, ALL_SOURCES], row)
        await self.cache.set_alias(CacheScope.MODEL, [context.base_id, table.source_id, table.title], row["id"])
        logger.debug(f"Inserted table {table.table_name} ({row['id']})")

        await self.insert_view(
            context,
            View(
                fk_model_id=row["id"],
                title=table.title,
                source_id=table.source_id,
                type=ViewType.GRID.value,
                is_default=True,
            ),
        )

        for column in columns or []:
            column.fk_model_id = row["id"]
            await self.insert_column(context, column)

        return await self.get_table(context, row["id"])

    async def update_table(
        self, context: CatalogContext, table_id: str, values: Dict[str, Any]
    ) -> None:
        current = await self.get_table(context, table_id, with_columns=False)
        if current is None:
            raise ReferentialInconsistencyError("Table", table_id, "catalog entry")
        await self.meta.update(context, MetaTable.MODELS, table_id, values)
        await self.cache.update(CacheScope.MODEL, table_id, values)
        if "title" in values and values["title"] != current.title:
            await self.cache.delete_alias(
                CacheScope.MODEL, [context.base_id, current.source_id, current.title]
            )
            await self.cache.set_alias(
                CacheScope.MODEL, [context.base_id, current.source_id, values["title"]], table_id
            )

    async def mark_as_mm_table(
        self, context: CatalogContext, table_id: str, is_mm: bool = True
    ) -> None:
        await self.update_table(context, table_id, {"mm": is_mm})

    async def delete_table(self, context: CatalogContext, table_id: str) -> None:
        """Remove a table with its views, view columns, columns and column options."""
        table = await self.get_table(context, table_id)
        if table is None:
            return

        for view in await self.list_views(context, table_id):
            await self.delete_view(context, view.id)
        for column in table.columns or []:
            await self.delete_column(context, column.id)

        await self.meta.delete(context, MetaTable.MODELS, {"id": table_id})
        await self.cache.deep_del(CacheScope.MODEL, table_id, CacheDelDirection.CHILD_TO_PARENT)
        await self.cache.delete_alias(CacheScope.MODEL, [context.base_id, table.source_id, table.title])
        await self.cache.invalidate_list(CacheScope.COLUMN, [table_id])
        await self.cache.invalidate_list(CacheScope.VIEW, [table_id])
        logger.debug(f"Deleted table {table.table_name} ({table_id})")

    # Columns

    async def list_columns(self, context: CatalogContext, table_id: str) -> List[Column]:
        rows = await self.cache.get_list(CacheScope.COLUMN, [table_id])
        if rows is None:
            rows = await self.meta.list(
                context, MetaTable.COLUMNS, {"fk_model_id": table_id}, order_by=["order"]
            )
            await self.cache.set_list(CacheScope.COLUMN, [table_id], rows)
        else:
            rows = sorted(rows, key=lambda r: (r.get("order") is None, r.get("order") or 0))

        columns = []
        for row in rows:
            column = Column.from_row(row)
            column.options = await self.get_column_options(context, column)
            columns.append(column)
        return columns

    async def get_column(self, context: CatalogContext, column_id: str) -> Optional[Column]:
        row = await self.cache.get(CacheScope.COLUMN, column_id)
        if row is None:
            row = await self.meta.get(context, MetaTable.COLUMNS, column_id)
            if row is None:
                return None
            await self.cache.set(CacheScope.COLUMN, column_id, row)
        column = Column.from_row(row)
        column.options = await self.get_column_options(context, column)
        return column

    async def get_column_options(self, context: CatalogContext, column: Column):
        spec = option_spec(column)
        if spec is None or column.id is None:
            return None
        meta_table, scope, option_cls = spec

        row = await self.cache.get(scope, column.id)
        if row is None:
            rows = await self.meta.list(context, meta_table, {"fk_column_id": column.id})
            if not rows:
                return None
            row = rows[0]
            await self.cache.set(scope, column.id, row)
        return option_cls.from_row(row)

    async def insert_column(self, context: CatalogContext, column: Column) -> Column:
        """Insert a column, its options and its view columns."""
        table = await self.get_table(context, column.fk_model_id)
        if table is None:
            raise ReferentialInconsistencyError("Column", column.title, f"table {column.fk_model_id}")

        for other in table.columns or []:
            if (
                column.column_name
                and not is_virtual_column(column)
                and not is_virtual_column(other)
                and other.column_name == column.column_name
            ):
                raise ValidationError(
                    f"Column '{column.column_name}' already exists in table '{table.table_name}'"
                )
            if other.title.lower() == column.title.lower():
                raise ValidationError(
                    f"Duplicate column alias '{column.title}' in table '{table.table_name}'"
                )

        if column.order is None:
            column.order = max((c.order or 0 for c in table.columns or []), default=0) + 1
        column.base_id = context.base_id
        column.source_id = table.source_id

        row = await self.meta.insert(context, MetaTable.COLUMNS, column.to_row())
        column.id = row["id"]
        await self.cache.append_to_list(CacheScope.COLUMN, [table.id], row)
        await self.cache.set_alias(CacheScope.COLUMN, [table.id, column.title], column.id)

        spec = option_spec(column)
        if spec is not None and column.options is not None:
            meta_table, scope, _ = spec
            column.options.fk_column_id = column.id
            option_row = await self.meta.insert(context, meta_table, column.options.to_row())
            column.options.id = option_row["id"]
            await self.cache.set(scope, column.id, option_row)

        for view in await self.list_views(context, table.id):
            await self.insert_view_column(
                context,
                ViewColumn(
                    fk_view_id=view.id,
                    fk_column_id=column.id,
                    show=not column.system,
                    order=column.order,
                ),
            )

        return column

    async def update_column(
        self, context: CatalogContext, column_id: str, values: Dict[str, Any]
    ) -> None:
        current = await self.get_column(context, column_id)
        if current is None:
            raise ReferentialInconsistencyError("Column", column_id, "catalog entry")

        new_title = values.get("title")
        if new_title is not None and new_title != current.title:
            for other in await self.list_columns(context, current.fk_model_id):
                if other.id != column_id and other.title.lower() == new_title.lower():
                    raise ValidationError(f"Duplicate column alias '{new_title}'")

        await self.meta.update(context, MetaTable.COLUMNS, column_id, values)
        await self.cache.update(CacheScope.COLUMN, column_id, values)

        if new_title is not None and new_title != current.title:
            await self.cache.delete_alias(CacheScope.COLUMN, [current.fk_model_id, current.title])
            await self.cache.set_alias(CacheScope.COLUMN, [current.fk_model_id, new_title], column_id)

    async def update_column_options(
        self, context: CatalogContext, column: Column, values: Dict[str, Any]
    ) -> None:
        spec = option_spec(column)
        if spec is None or column.options is None or column.options.id is None:
            return
        meta_table, scope, _ = spec
        await self.meta.update(context, meta_table, column.options.id, values)
        await self.cache.update(scope, column.id, values)
        for key, value in values.items():
            setattr(column.options, key, value)

    async def mark_as_system_field(
        self, context: CatalogContext, column_id: str, system: bool = True
    ) -> None:
        """Flag a column as system and hide it from every view."""
        await self.update_column(context, column_id, {"system": system})
        for view_column in await self.meta.list(
            context, MetaTable.VIEW_COLUMNS, {"fk_column_id": column_id}
        ):
            await self.update_view_column(
                context, view_column["id"], view_column["fk_view_id"], {"show": not system}
            )

    async def delete_column(self, context: CatalogContext, column_id: str) -> None:
        """Remove a column record with its options and view columns. No cascade."""
        column = await self.get_column(context, column_id)
        if column is None:
            return

        spec = option_spec(column)
        if spec is not None:
            meta_table, scope, _ = spec
            await self.meta.delete(context, meta_table, {"fk_column_id": column_id})
            await self.cache.deep_del(scope, column_id, CacheDelDirection.CHILD_TO_PARENT)

        for view_column in await self.meta.list(
            context, MetaTable.VIEW_COLUMNS, {"fk_column_id": column_id}
        ):
            await self.meta.delete(context, MetaTable.VIEW_COLUMNS, {"id": view_column["id"]})
            await self.cache.deep_del(
                CacheScope.VIEW_COLUMN, view_column["id"], CacheDelDirection.CHILD_TO_PARENT
            )

        await self.meta.delete(context, MetaTable.COLUMNS, {"id": column_id})
        await self.cache.deep_del(CacheScope.COLUMN, column_id, CacheDelDirection.CHILD_TO_PARENT)
        await self.cache.delete_alias(CacheScope.COLUMN, [column.fk_model_id, column.title])
        logger.debug(f"Deleted column {column.title} ({column_id})")

    async def find_columns_by_options(
        self, context: CatalogContext, meta_table: MetaTable, condition: Dict[str, Any]
    ) -> List[Column]:
        """Columns whose option rows match a condition."""
        columns = []
        for row in await self.meta.list(context, meta_table, condition):
            column = await self.get_column(context, row["fk_column_id"])
            if column is not None:
                columns.append(column)
        return columns

    # Views

    async def list_views(self, context: CatalogContext, table_id: str) -> List[View]:
        rows = await self.cache.get_list(CacheScope.VIEW, [table_id])
        if rows is None:
            rows = await self.meta.list(
                context, MetaTable.VIEWS, {"fk_model_id": table_id}, order_by=["order"]
            )
            await self.cache.set_list(CacheScope.VIEW, [table_id], rows)
        return [View.from_row(row) for row in rows]

    async def insert_view(self, context: CatalogContext, view: View) -> View:
        """Insert a view showing every existing column of its table."""
        existing = await self.list_views(context, view.fk_model_id)
        if view.order is None:
            view.order = max((v.order or 0 for v in existing), default=0) + 1
        view.base_id = context.base_id

        row = await self.meta.insert(context, MetaTable.VIEWS, view.to_row())
        view.id = row["id"]
        await self.cache.append_to_list(CacheScope.VIEW, [view.fk_model_id], row)

        for column in await self.list_columns(context, view.fk_model_id):
            await self.insert_view_column(
                context,
                ViewColumn(
                    fk_view_id=view.id,
                    fk_column_id=column.id,
                    show=not column.system,
                    order=column.order,
                ),
            )
        return view

    async def delete_view(self, context: CatalogContext, view_id: str) -> None:
        await self.meta.delete(context, MetaTable.VIEW_COLUMNS, {"fk_view_id": view_id})
        await self.cache.invalidate_list(CacheScope.VIEW_COLUMN, [view_id])
        await self.meta.delete(context, MetaTable.VIEWS, {"id": view_id})
        await self.cache.deep_del(CacheScope.VIEW, view_id, CacheDelDirection.CHILD_TO_PARENT)

    async def list_view_columns(self, context: CatalogContext, view_id: str) -> List[ViewColumn]:
        rows = await self.cache.get_list(CacheScope.VIEW_COLUMN, [view_id])
        if rows is None:
            rows = await self.meta.list(
                context, MetaTable.VIEW_COLUMNS, {"fk_view_id": view_id}, order_by=["order"]
            )
            await self.cache.set_list(CacheScope.VIEW_COLUMN, [view_id], rows)
        return [ViewColumn.from_row(row) for row in rows]

    async def insert_view_column(self, context: CatalogContext, view_column: ViewColumn) -> ViewColumn:
        view_column.base_id = context.base_id
        row = await self.meta.insert(context, MetaTable.VIEW_COLUMNS, view_column.to_row())
        view_column.id = row["id"]
        await self.cache.append_to_list(CacheScope.VIEW_COLUMN, [view_column.fk_view_id], row)
        return view_column

    async def update_view_column(
        self, context: CatalogContext, view_column_id: str, view_id: str, values: Dict[str, Any]
    ) -> None:
        await self.meta.update(context, MetaTable.VIEW_COLUMNS, view_column_id, values)
        await self.cache.update(CacheScope.VIEW_COLUMN, view_column_id, values)


async def create_store(config: MetaSyncConfig) -> CatalogStore:
    """Catalog store with backing storage prepared for use."""
    meta = create_meta_store(config.catalog)
    await meta.setup()
    return CatalogStore(meta, create_cache(config.cache))
