"""
Dependent invalidation for catalog column and table removal.

Removing a column first settles every column that depends on it: kinds
that cannot exist without it are removed recursively, the rest are
flagged with an error or lose their cached parse. Only then is the
column itself deleted.
"""

import logging
from typing import Dict, List, Optional, Set

from ..catalog.meta_store import MetaTable
from ..catalog.models import CatalogContext, Column
from ..catalog.store import CatalogStore
from ..catalog.types import is_virtual_column
from .virtual_columns import InvalidationAction, kind_for


logger = logging.getLogger(__name__)

# option rows that point at another column, by the field holding its id
_OPTION_REFERENCES = (
    (MetaTable.COL_LOOKUP, "fk_relation_column_id"),
    (MetaTable.COL_LOOKUP, "fk_lookup_column_id"),
    (MetaTable.COL_ROLLUP, "fk_relation_column_id"),
    (MetaTable.COL_ROLLUP, "fk_rollup_column_id"),
    (MetaTable.COL_RELATIONS, "fk_child_column_id"),
    (MetaTable.COL_RELATIONS, "fk_parent_column_id"),
    (MetaTable.COL_RELATIONS, "fk_mm_child_column_id"),
    (MetaTable.COL_RELATIONS, "fk_mm_parent_column_id"),
    (MetaTable.COL_QRCODE, "fk_qr_value_column_id"),
    (MetaTable.COL_BARCODE, "fk_barcode_value_column_id"),
)


class DependentInvalidator:
    """Cascades column and table removal through dependent virtual columns."""

    def __init__(self, store: CatalogStore):
        self.store = store

    async def dependents_of(self, context: CatalogContext, column: Column) -> List[Column]:
        """Virtual columns that reference ``column``."""
        candidates: Dict[str, Column] = {}

        for other in await self.store.list_columns(context, column.fk_model_id):
            candidates[other.id] = other

        for meta_table, field_name in _OPTION_REFERENCES:
            for other in await self.store.find_columns_by_options(
                context, meta_table, {field_name: column.id}
            ):
                candidates.setdefault(other.id, other)

        dependents = []
        for other in candidates.values():
            if other.id == column.id:
                continue
            kind = kind_for(other)
            if kind is not None and kind.references(other, column):
                dependents.append(other)
        return dependents

    async def remove_column(
        self,
        context: CatalogContext,
        column_id: str,
        _visited: Optional[Set[str]] = None,
    ) -> None:
        """Delete a column after settling everything that depends on it."""
        visited = _visited if _visited is not None else set()
        if column_id in visited:
            return
        visited.add(column_id)

        column = await self.store.get_column(context, column_id)
        if column is None:
            return

        for dependent in await self.dependents_of(context, column):
            if dependent.id in visited:
                continue
            result = kind_for(dependent).on_referenced_column_removed(dependent, column)
            if result.action == InvalidationAction.DELETE:
                logger.info(
                    f"Removing column '{dependent.title}' which depends on removed column '{column.title}'"
                )
                await self.remove_column(context, dependent.id, visited)
            elif result.action == InvalidationAction.UPDATE:
                logger.info(
                    f"Invalidating column '{dependent.title}' after removal of '{column.title}'"
                )
                await self.store.update_column_options(context, dependent, result.option_updates)

        await self.store.delete_column(context, column.id)

    async def column_type_changed(self, context: CatalogContext, column: Column) -> None:
        """Drop cached parses of columns computed from a column whose type changed."""
        for dependent in await self.dependents_of(context, column):
            result = kind_for(dependent).on_referenced_column_type_changed(dependent, column)
            if result.action == InvalidationAction.UPDATE:
                await self.store.update_column_options(context, dependent, result.option_updates)
            elif result.action == InvalidationAction.DELETE:
                await self.remove_column(context, dependent.id)

    async def remove_table(self, context: CatalogContext, table_id: str) -> None:
        """Delete a table, its columns and relation columns elsewhere pointing at it."""
        table = await self.store.get_table(context, table_id)
        if table is None:
            return

        visited: Set[str] = set()
        for field_name in ("fk_related_model_id", "fk_mm_model_id"):
            for column in await self.store.find_columns_by_options(
                context, MetaTable.COL_RELATIONS, {field_name: table_id}
            ):
                if column.fk_model_id != table_id:
                    await self.remove_column(context, column.id, visited)

        # virtual columns go before the physical columns they are built on
        for column in sorted(table.columns or [], key=lambda c: not is_virtual_column(c)):
            await self.remove_column(context, column.id, visited)

        await self.store.delete_table(context, table_id)
        logger.info(f"Removed table '{table.table_name}' from the catalog")
